"""Finding, summarising and querying recorded profile databases."""

from __future__ import annotations

import math
import os
import re
import sqlite3
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from rsprof.errors import DatabaseError

PathLike = Union[str, "os.PathLike[str]"]

_PROFILE_PREFIX = "rsprof."
_PROFILE_SUFFIX = ".db"
_UNKNOWN = "unknown"
_U32_LIMIT = 1 << 32
_U64_MASK = (1 << 64) - 1
_PID_RE = re.compile(r"\+?[0-9]+")


@dataclass(frozen=True)
class ProfileInfo:
    """Summary of one profile database."""

    path: Path
    process_name: str
    pid: int
    duration_secs: float
    samples: int
    created: str


def _connect(path: PathLike) -> sqlite3.Connection:
    uri = Path(path).resolve().as_uri() + "?mode=rw"
    try:
        return sqlite3.connect(uri, uri=True, isolation_level=None)
    except sqlite3.Error as exc:
        raise DatabaseError(exc) from exc


def _scalar(conn: sqlite3.Connection, sql: str) -> Any:
    try:
        row = conn.execute(sql).fetchone()
    except sqlite3.Error:
        return None
    return row[0] if row else None


def _text_or(value: Any, default: str) -> str:
    return value if isinstance(value, str) else default


def _int_or_zero(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _parse_pid(value: Any) -> int:
    if isinstance(value, str) and _PID_RE.fullmatch(value):
        pid = int(value)
        if pid < _U32_LIMIT:
            return pid
    return 0


def read_profile_info(path: PathLike) -> ProfileInfo:
    """Read the metadata of a profile; missing fields get defaults."""
    with closing(_connect(path)) as conn:
        process_name = _text_or(
            _scalar(conn, "SELECT value FROM meta WHERE key = 'process_name'"),
            _UNKNOWN,
        )
        pid = _parse_pid(_scalar(conn, "SELECT value FROM meta WHERE key = 'pid'"))
        created = _text_or(
            _scalar(conn, "SELECT value FROM meta WHERE key = 'start_time'"),
            _UNKNOWN,
        )
        duration_ms = _int_or_zero(
            _scalar(conn, "SELECT COALESCE(MAX(timestamp_ms), 0) FROM checkpoints")
        )
        samples = _int_or_zero(
            _scalar(conn, "SELECT COALESCE(SUM(count), 0) FROM cpu_samples")
        )
    return ProfileInfo(
        path=Path(path),
        process_name=process_name,
        pid=pid,
        duration_secs=duration_ms / 1000.0,
        samples=samples & _U64_MASK,
        created=created,
    )


def find_profiles(directory: PathLike) -> list[ProfileInfo]:
    """All readable ``rsprof.*.db`` profiles in a directory, newest first."""
    profiles = []
    with os.scandir(directory) as entries:
        for entry in entries:
            path = Path(entry.path)
            if path.suffix != _PROFILE_SUFFIX or not path.name.startswith(_PROFILE_PREFIX):
                continue
            try:
                profiles.append(read_profile_info(path))
            except DatabaseError:
                continue
    return sorted(profiles, key=lambda p: p.created, reverse=True)


def most_recent_profile(directory: PathLike) -> Optional[Path]:
    """Path of the newest profile in a directory, or None if there is none."""
    profiles = find_profiles(directory)
    return profiles[0].path if profiles else None


def format_duration(seconds: float) -> str:
    """Short duration text: minutes and seconds from a minute up."""
    if seconds >= 60.0:
        return f"{seconds / 60.0:.0f}m{math.fmod(seconds, 60.0):.0f}s"
    return f"{seconds:.1f}s"


def render_profile_list(profiles: Sequence[ProfileInfo], directory: PathLike) -> str:
    """Table of profiles, or a notice when there are none."""
    if not profiles:
        return f"No rsprof profiles found in {os.fspath(directory)}\n"
    lines = [
        f"{'FILE':<40} {'PROCESS':>12} {'DURATION':>10} {'SAMPLES':>10}",
        "-" * 76,
    ]
    lines.extend(
        f"{p.path.name:<40} {p.process_name:>12} "
        f"{format_duration(p.duration_secs):>10} {p.samples:>10}"
        for p in profiles
    )
    return "\n".join(lines) + "\n"


def format_value(value: Any) -> str:
    """Text for one SQL result value."""
    if value is None:
        return "NULL"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<blob {len(value)} bytes>"
    if isinstance(value, float):
        return f"{value:.6f}"
    if isinstance(value, int):
        return str(value)
    return str(value)


def run_query(file: PathLike, sql: str) -> str:
    """Run a single SQL statement on a profile; return a tab-separated table."""
    with closing(_connect(file)) as conn:
        try:
            cursor = conn.execute(sql)
            names = [column[0] for column in cursor.description or ()]
            lines = ["\t".join(names)]
            lines.extend("\t".join(format_value(v) for v in row) for row in cursor)
        except sqlite3.Error as exc:
            raise DatabaseError(exc) from exc
    return "\n".join(lines) + "\n"