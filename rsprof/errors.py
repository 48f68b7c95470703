"""Error types raised by the profiler and the exit codes they map to."""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes used by the command-line interface."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    INVALID_ARGUMENTS = 2
    PROCESS_NOT_FOUND = 3
    PERMISSION_DENIED = 4
    MISSING_DEBUG_INFO = 5
    DATABASE_ERROR = 6


class RsprofError(Exception):
    """Base class for all profiler errors."""

    prefix = ""
    exit_code: ExitCode = ExitCode.GENERAL_ERROR

    def __init__(self, detail: object = "") -> None:
        self.detail = detail
        super().__init__(f"{self.prefix}{detail}")


class ProcessNotFound(RsprofError):
    """The target process does not exist or cannot be inspected."""

    prefix = "Process not found: "
    exit_code = ExitCode.PROCESS_NOT_FOUND


class MultipleProcesses(RsprofError):
    """A name pattern matched more than one process."""

    exit_code = ExitCode.PROCESS_NOT_FOUND

    def __init__(self, pattern: str, matches: str) -> None:
        self.pattern = pattern
        self.matches = matches
        self.detail = matches
        Exception.__init__(
            self,
            f"Multiple processes match '{pattern}':\n{matches}"
            "Use --pid to specify exactly one.",
        )


class PermissionDenied(RsprofError):
    """The profiler lacks the privileges it needs."""

    prefix = "Permission denied: "
    exit_code = ExitCode.PERMISSION_DENIED


class MissingDebugInfo(RsprofError):
    """The target binary carries no debug information."""

    exit_code = ExitCode.MISSING_DEBUG_INFO

    def __init__(self, path: str) -> None:
        self.path = path
        self.detail = path
        Exception.__init__(
            self,
            f"Missing debug info in {path}. "
            "Recompile with `debug = true` in Cargo.toml",
        )


class PerfEventError(RsprofError):
    """Setting up or reading a perf event failed."""

    prefix = "perf_event error: "


class BpfError(RsprofError):
    """Setting up tracing failed."""

    prefix = "eBPF error: "


class DatabaseError(RsprofError):
    """A profile database could not be read or written."""

    prefix = "Database error: "
    exit_code = ExitCode.DATABASE_ERROR


class InvalidArgument(RsprofError):
    """A command-line argument was rejected."""

    prefix = "Invalid argument: "
    exit_code = ExitCode.INVALID_ARGUMENTS


class SymbolResolutionError(RsprofError):
    """Addresses could not be mapped to symbols."""

    prefix = "Symbol resolution error: "


class UnsupportedPlatform(RsprofError):
    """The current platform lacks a required facility."""

    prefix = "Unsupported platform: "