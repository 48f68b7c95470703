"""Command-line interface: argument parsing, validation and dispatch."""

from __future__ import annotations

import argparse
import re
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional, Sequence

from rsprof.errors import ExitCode, RsprofError, UnsupportedPlatform
from rsprof.process import ProcessInfo, find_process_by_name
from rsprof.profiles import find_profiles, render_profile_list, run_query

_MIN_CPU_FREQ = 1
_MAX_CPU_FREQ = 10_000
_U64_LIMIT = 1 << 64

_NS_PER_UNIT = {
    **dict.fromkeys(("nanos", "nsec", "ns"), 1),
    **dict.fromkeys(("usec", "us", "µs"), 1_000),
    **dict.fromkeys(("millis", "msec", "ms"), 1_000_000),
    **dict.fromkeys(("seconds", "second", "secs", "sec", "s"), 1_000_000_000),
    **dict.fromkeys(("minutes", "minute", "mins", "min", "m"), 60 * 1_000_000_000),
    **dict.fromkeys(("hours", "hour", "hrs", "hr", "h"), 3_600 * 1_000_000_000),
    **dict.fromkeys(("days", "day", "d"), 86_400 * 1_000_000_000),
    **dict.fromkeys(("weeks", "week", "w"), 604_800 * 1_000_000_000),
    **dict.fromkeys(("months", "month", "M"), 2_630_016 * 1_000_000_000),
    **dict.fromkeys(("years", "year", "y"), 31_557_600 * 1_000_000_000),
}

_TOKEN_RE = re.compile(r"\s*([0-9]+)\s*([A-Za-zµ]+)")
_BARE_SECONDS_RE = re.compile(r"\+?[0-9]+")


def _parse_human(text: str) -> Optional[int]:
    """Total nanoseconds of a ``1h30m``-style duration, or None if malformed."""
    pos = 0
    total = 0
    matched = False
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            if text[pos:].strip():
                return None
            break
        number, unit = match.groups()
        factor = _NS_PER_UNIT.get(unit)
        if factor is None:
            return None
        total += int(number) * factor
        matched = True
        pos = match.end()
    if not matched or total >= _U64_LIMIT * 1_000_000_000:
        return None
    return total


def _to_timedelta(nanos: int) -> timedelta:
    seconds, rest = divmod(nanos, 1_000_000_000)
    return timedelta(seconds=seconds, microseconds=rest / 1000)


def parse_duration(text: str) -> timedelta:
    """Parse ``30s``, ``5m``, ``2h``, ``1h30m`` or a bare number of seconds."""
    try:
        nanos = _parse_human(text)
        if nanos is not None:
            return _to_timedelta(nanos)
        if _BARE_SECONDS_RE.fullmatch(text):
            secs = int(text)
            if secs < _U64_LIMIT:
                return timedelta(seconds=secs)
    except OverflowError:
        pass
    raise ValueError(
        f"Invalid duration '{text}'. Examples: 30s, 5m, 2h, 1h30m, 90"
    )


def _duration_arg(text: str) -> timedelta:
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def _add_global_options(parser: argparse.ArgumentParser, suppress: bool) -> None:
    default = argparse.SUPPRESS if suppress else None
    target = parser.add_mutually_exclusive_group()
    target.add_argument(
        "-p", "--pid", type=int, default=default, help="Process ID to profile"
    )
    target.add_argument(
        "-P",
        "--process",
        default=default,
        help="Process name to profile (pgrep-style matching)",
    )
    parser.add_argument(
        "-o", "--output", type=Path, default=default, help="Output database path"
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the ``rsprof`` command."""
    parser = argparse.ArgumentParser(
        prog="rsprof",
        description="Zero-instrumentation profiler for Rust processes",
    )
    _add_global_options(parser, suppress=False)
    parser.add_argument(
        "-i",
        "--interval",
        type=_duration_arg,
        default="1s",
        help="Checkpoint interval",
    )
    parser.add_argument(
        "-d",
        "--duration",
        type=_duration_arg,
        default=None,
        help="Recording duration (default: until Ctrl-C)",
    )
    parser.add_argument(
        "--cpu-freq", type=int, default=99, help="CPU sampling frequency in Hz"
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Disable TUI, record only"
    )

    subparsers = parser.add_subparsers(dest="command")

    list_parser = subparsers.add_parser("list", help="List saved profile databases")
    _add_global_options(list_parser, suppress=True)
    list_parser.add_argument(
        "-d",
        "--dir",
        type=Path,
        default=None,
        help="Directory to search (defaults to current directory)",
    )

    query_parser = subparsers.add_parser(
        "query", help="Execute raw SQL query on a profile database"
    )
    _add_global_options(query_parser, suppress=True)
    query_parser.add_argument("file", type=Path, help="Profile database file")
    query_parser.add_argument("sql", help="SQL query to execute")

    return parser


def validate(args: argparse.Namespace) -> None:
    """Check parsed arguments, raising ValueError with a message if invalid."""
    if args.pid is not None and args.process is not None:
        raise ValueError("--pid and --process cannot be used together")
    if args.command is None and args.pid is None and args.process is None:
        raise ValueError("Either --pid or --process is required for recording")
    if not _MIN_CPU_FREQ <= args.cpu_freq <= _MAX_CPU_FREQ:
        raise ValueError(
            f"CPU frequency must be between {_MIN_CPU_FREQ} and "
            f"{_MAX_CPU_FREQ} Hz, got {args.cpu_freq}"
        )


def _record(args: argparse.Namespace) -> None:
    pid = args.pid if args.pid is not None else find_process_by_name(args.process)
    info = ProcessInfo.from_pid(pid)
    raise UnsupportedPlatform(
        f"cannot record {info.name} (PID {info.pid}): symbol resolution and "
        "profile storage are not available in this installation"
    )


def _dispatch(args: argparse.Namespace) -> None:
    if args.command == "list":
        directory = args.dir if args.dir is not None else Path(".")
        sys.stdout.write(render_profile_list(find_profiles(directory), directory))
    elif args.command == "query":
        sys.stdout.write(run_query(args.file, args.sql))
    else:
        _record(args)


def _report(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the command line and return the process exit code."""
    args = build_parser().parse_args(argv)
    try:
        validate(args)
    except ValueError as exc:
        _report(f"Invalid arguments: {exc}")
        return int(ExitCode.GENERAL_ERROR)

    try:
        _dispatch(args)
    except RsprofError as exc:
        _report(str(exc))
        return int(exc.exit_code)
    except OSError as exc:
        _report(f"I/O error: {exc}")
        return int(ExitCode.GENERAL_ERROR)
    return int(ExitCode.SUCCESS)


if __name__ == "__main__":
    raise SystemExit(main())