"""Inspecting target processes through a proc file system."""

from __future__ import annotations

import os
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Union

from rsprof.errors import MultipleProcesses, PermissionDenied, ProcessNotFound

PathLike = Union[str, "os.PathLike[str]"]

_DELETED_SUFFIX = " (deleted)"
_HEX_DIGITS = frozenset(string.hexdigits)


@dataclass(frozen=True)
class ProcessInfo:
    """Identity of a target process."""

    pid: int
    name: str
    exe_path: Path
    proc_exe_path: Path

    @classmethod
    def from_pid(cls, pid: int, proc_root: PathLike = "/proc") -> "ProcessInfo":
        """Look up a process by PID, raising if it is missing or unreadable."""
        proc_path = Path(proc_root) / str(pid)
        if not proc_path.exists():
            raise ProcessNotFound(f"PID {pid}")

        try:
            name = (proc_path / "comm").read_text().strip()
        except OSError:
            raise ProcessNotFound(f"Cannot read comm for PID {pid}") from None

        proc_exe_path = proc_path / "exe"
        try:
            target = os.readlink(proc_exe_path)
        except OSError as exc:
            raise PermissionDenied(f"Cannot read exe for PID {pid}: {exc}") from exc

        if target.endswith(_DELETED_SUFFIX):
            target = target[: -len(_DELETED_SUFFIX)]

        return cls(
            pid=pid,
            name=name,
            exe_path=Path(target),
            proc_exe_path=proc_exe_path,
        )

    @property
    def _proc_root(self) -> Path:
        return self.proc_exe_path.parent.parent

    def thread_ids(self) -> list[int]:
        """Return the IDs of all threads of the process."""
        task_path = self._proc_root / str(self.pid) / "task"
        try:
            names = os.listdir(task_path)
        except OSError as exc:
            raise ProcessNotFound(
                f"Cannot read tasks for PID {self.pid}: {exc}"
            ) from exc
        return [int(name) for name in names if name.isdigit()]


def find_process_by_name(pattern: str, proc_root: PathLike = "/proc") -> int:
    """Find the single process whose name contains ``pattern``."""
    root = Path(proc_root)
    matches: list[tuple[int, str]] = []
    for entry in os.listdir(root):
        if not entry.isdigit():
            continue
        pid = int(entry)
        try:
            comm = (root / entry / "comm").read_text().strip()
        except OSError:
            continue
        if pattern in comm:
            matches.append((pid, comm))

    if not matches:
        raise ProcessNotFound(f"No process matching '{pattern}'")
    if len(matches) == 1:
        return matches[0][0]
    listing = "\n".join(f"  PID {pid}: {name}" for pid, name in matches)
    raise MultipleProcesses(pattern, listing)


def sanitize_name(name: str) -> str:
    """Make a process name safe for use in a file name (at most 32 chars)."""
    return "".join(
        c if c.isalnum() or c in "-_" else "-" for c in name
    )[:32]


def _parse_hex(text: str) -> Optional[int]:
    if not text or not all(c in _HEX_DIGITS for c in text):
        return None
    value = int(text, 16)
    return value if value < 1 << 64 else None


@dataclass(frozen=True)
class MemoryMapping:
    """One line of a process memory map."""

    start: int
    end: int
    perms: str
    offset: int
    pathname: Optional[str] = None

    def is_executable(self) -> bool:
        return "x" in self.perms


def parse_map_line(line: str) -> Optional[MemoryMapping]:
    """Parse one maps line, returning None if it is malformed."""
    parts = line.split()
    if len(parts) < 5:
        return None

    addr = parts[0].split("-")
    if len(addr) != 2:
        return None
    start = _parse_hex(addr[0])
    end = _parse_hex(addr[1])
    offset = _parse_hex(parts[2])
    if start is None or end is None or offset is None:
        return None

    pathname = " ".join(parts[5:]) if len(parts) >= 6 else None
    return MemoryMapping(
        start=start, end=end, perms=parts[1], offset=offset, pathname=pathname
    )


@dataclass
class MemoryMaps:
    """All memory mappings of a process."""

    mappings: list[MemoryMapping] = field(default_factory=list)

    @classmethod
    def parse(cls, text: str) -> "MemoryMaps":
        parsed = (parse_map_line(line) for line in text.splitlines())
        return cls([m for m in parsed if m is not None])

    @classmethod
    def for_pid(cls, pid: int, proc_root: PathLike = "/proc") -> "MemoryMaps":
        path = Path(proc_root) / str(pid) / "maps"
        try:
            content = path.read_text()
        except OSError as exc:
            raise ProcessNotFound(
                f"Cannot read maps for PID {pid}: {exc}"
            ) from exc
        return cls.parse(content)

    def aslr_offset(self, exe_path: PathLike) -> int:
        """Load base of the executable: start minus file offset of its first mapping.

        Returns 0 when the executable is not found in the maps.
        """
        exe_str = os.fspath(exe_path)
        file_name = Path(exe_str).name
        for mapping in self.mappings:
            pathname = mapping.pathname
            if pathname is None:
                continue
            if pathname == exe_str or (file_name and pathname.endswith(file_name)):
                return mapping.start - mapping.offset
        return 0

    def executable_mappings(self) -> Iterator[MemoryMapping]:
        return (m for m in self.mappings if m.is_executable())

    def is_executable_addr(self, addr: int) -> bool:
        return any(
            m.is_executable() and m.start <= addr < m.end for m in self.mappings
        )