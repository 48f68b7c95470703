"""Rendering top-consumer reports for CPU and heap profiles."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Sequence, Union

PathLike = Union[str, "os.PathLike[str]"]

_RULE = "-" * 80
_HASH_SUFFIX_LEN = 16
_HEX = frozenset("0123456789abcdefABCDEF")

_PREFIXES_TO_SHORTEN = (
    ("core::slice::sort::", "sort::"),
    ("core::ptr::", "ptr::"),
    ("core::fmt::", "fmt::"),
    ("core::iter::", "iter::"),
    ("core::hash::", "hash::"),
    ("core::str::", "str::"),
    ("core::num::", "num::"),
    ("alloc::vec::", "Vec::"),
    ("alloc::string::", "String::"),
    ("alloc::alloc::", "alloc::"),
    ("hashbrown::raw::", "hashbrown::"),
    ("std::collections::hash_map::", "HashMap::"),
)


@dataclass(frozen=True)
class CpuEntry:
    """One row of a CPU report."""

    file: str
    line: int
    function: str
    total_percent: float


@dataclass(frozen=True)
class HeapEntry:
    """One row of a heap report."""

    file: str
    line: int
    function: str
    total_alloc_bytes: int = 0
    alloc_count: int = 0
    total_free_bytes: int = 0
    free_count: int = 0
    live_bytes: int = 0


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // b
    return q if a >= 0 else -q


def _duration_parts(ms: int) -> tuple[int, int]:
    secs = _trunc_div(ms, 1000)
    mins = _trunc_div(secs, 60)
    return mins, secs - mins * 60


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def _join(lines: Sequence[str]) -> str:
    return "\n".join(lines) + "\n"


def format_bytes(n: int) -> str:
    """Human-readable byte count with a G/M/K/B suffix."""
    magnitude = abs(n)
    sign = "-" if n < 0 else ""
    if magnitude >= 1024**3:
        return f"{sign}{magnitude / 1024**3:.2f}G"
    if magnitude >= 1024**2:
        return f"{sign}{magnitude / 1024**2:.2f}M"
    if magnitude >= 1024:
        return f"{sign}{magnitude / 1024:.1f}K"
    return f"{sign}{magnitude}B"


def format_count(n: int) -> str:
    """A number with thousands separated by commas."""
    return f"{n:,}"


def simplify_type_path(path: str) -> str:
    """Keep only the last two components of a ``::`` path."""
    parts = path.split("::")
    if len(parts) >= 2:
        return f"{parts[-2]}::{parts[-1]}"
    return path


def format_function(func: str) -> str:
    """Shorten a symbol name for display."""
    result = func

    idx = result.rfind("::h")
    if idx != -1:
        suffix = result[idx + 3 :]
        if len(suffix) == _HASH_SUFFIX_LEN and all(c in _HEX for c in suffix):
            result = result[:idx]

    if result.startswith("<"):
        as_pos = result.find(" as ")
        gt_pos = result.find(">::")
        if as_pos != -1 and gt_pos != -1:
            impl_type = result[1:as_pos]
            method = result[gt_pos + 3 :]
            result = f"{simplify_type_path(impl_type)}::{method}"

    for prefix, replacement in _PREFIXES_TO_SHORTEN:
        if result.startswith(prefix):
            result = replacement + result[len(prefix) :]
            break

    while True:
        start = result.find("<")
        end = result.rfind(">")
        if start == -1 or end == -1 or start >= end:
            break
        generic = result[start : end + 1]
        if len(generic.encode("utf-8")) > 20 or "::" in generic:
            result = f"{result[:start]}<_>{result[end + 1:]}"
        else:
            break

    return result


def simplify_path(path: str) -> str:
    """Reduce a source path to its most meaningful part."""
    if path.startswith("["):
        return path

    if "/rust/library/" in path or "/rustc/" in path:
        return f"<std>/{path.rsplit('/', 1)[-1]}"

    if "/.cargo/" in path:
        idx = path.find("/src/")
        if idx != -1:
            before_src = path[:idx]
            crate_start = before_src.rfind("/")
            if crate_start != -1:
                crate_name = before_src[crate_start + 1 :]
                return f"<{crate_name}>/{path[idx + 5:]}"

    idx = path.find("/src/")
    if idx != -1:
        return path[idx + 1 :]

    idx = path.find("/examples/")
    if idx != -1:
        return path[idx + 1 :]

    return path.rsplit("/", 1)[-1]


def format_location(file: str, line: int) -> str:
    """Simplified path, followed by ``:line`` when the line is known."""
    simplified = simplify_path(file)
    return f"{simplified}:{line}" if line > 0 else simplified


def render_cpu_table(
    file: PathLike,
    duration_ms: Optional[int],
    total_samples: int,
    entries: Sequence[CpuEntry],
) -> str:
    """Aligned plain-text CPU report."""
    lines = [f"# {os.fspath(file)}"]
    if duration_ms is not None:
        mins, secs = _duration_parts(duration_ms)
        lines.append(f"# Duration: {mins}m{secs:02d}s | Samples: {total_samples}")
    lines.append("")
    lines.append(f"{'CPU%':>6}  {'LOCATION':<30}  FUNCTION")
    lines.append(_RULE)
    for entry in entries:
        location = format_location(entry.file, entry.line)
        function = format_function(entry.function)
        lines.append(f"{entry.total_percent:>5.1f}%  {location:<30}  {function}")
    return _join(lines)


def render_cpu_json(
    file: PathLike,
    duration_ms: Optional[int],
    total_samples: int,
    entries: Sequence[CpuEntry],
) -> str:
    """CPU report as JSON."""
    lines = ["{", f'  "file": "{os.fspath(file)}",']
    if duration_ms is not None:
        lines.append(f'  "duration_ms": {duration_ms},')
    lines.append(f'  "total_samples": {total_samples},')
    lines.append('  "entries": [')
    last = len(entries) - 1
    for i, entry in enumerate(entries):
        comma = "," if i < last else ""
        lines.append(
            f'    {{ "cpu_pct": {entry.total_percent:.1f}, '
            f'"file": "{_escape(entry.file)}", "line": {entry.line}, '
            f'"function": "{_escape(entry.function)}" }}{comma}'
        )
    lines.append("  ]")
    lines.append("}")
    return _join(lines)


def render_cpu_csv(entries: Sequence[CpuEntry]) -> str:
    """CPU report as CSV."""
    lines = ["cpu_pct,file,line,function"]
    lines.extend(
        f'{e.total_percent:.1f},{e.file},{e.line},"{e.function}"' for e in entries
    )
    return _join(lines)


def render_heap_table(
    file: PathLike,
    duration_ms: Optional[int],
    entries: Sequence[HeapEntry],
) -> str:
    """Aligned plain-text heap report."""
    lines = [f"# {os.fspath(file)}"]
    if duration_ms is not None:
        mins, secs = _duration_parts(duration_ms)
        total_allocs = sum(e.alloc_count for e in entries)
        total_bytes = sum(e.total_alloc_bytes for e in entries)
        lines.append(
            f"# Duration: {mins}m{secs:02d}s | Allocs: {format_count(total_allocs)}"
            f" | Total: {format_bytes(total_bytes)}"
        )
    lines.append("")
    lines.append(f"{'SIZE':>10}  {'CALLS':>12}  {'LOCATION':<30}  FUNCTION")
    lines.append(_RULE)
    for entry in entries:
        location = format_location(entry.file, entry.line)
        function = format_function(entry.function)
        size = format_bytes(entry.total_alloc_bytes)
        calls = f"{format_count(entry.alloc_count)} calls"
        lines.append(f"{size:>10}  {calls:>12}  {location:<30}  {function}")
    return _join(lines)


def render_heap_json(
    file: PathLike,
    duration_ms: Optional[int],
    entries: Sequence[HeapEntry],
) -> str:
    """Heap report as JSON."""
    lines = ["{", f'  "file": "{os.fspath(file)}",']
    if duration_ms is not None:
        lines.append(f'  "duration_ms": {duration_ms},')
    lines.append('  "entries": [')
    last = len(entries) - 1
    for i, entry in enumerate(entries):
        comma = "," if i < last else ""
        lines.append(
            f'    {{ "alloc_bytes": {entry.total_alloc_bytes}, '
            f'"alloc_count": {entry.alloc_count}, '
            f'"free_bytes": {entry.total_free_bytes}, '
            f'"free_count": {entry.free_count}, '
            f'"live_bytes": {entry.live_bytes}, '
            f'"file": "{_escape(entry.file)}", "line": {entry.line}, '
            f'"function": "{_escape(entry.function)}" }}{comma}'
        )
    lines.append("  ]")
    lines.append("}")
    return _join(lines)


def render_heap_csv(entries: Sequence[HeapEntry]) -> str:
    """Heap report as CSV."""
    lines = [
        "alloc_bytes,alloc_count,free_bytes,free_count,live_bytes,file,line,function"
    ]
    lines.extend(
        f"{e.total_alloc_bytes},{e.alloc_count},{e.total_free_bytes},"
        f'{e.free_count},{e.live_bytes},{e.file},{e.line},"{e.function}"'
        for e in entries
    )
    return _join(lines)