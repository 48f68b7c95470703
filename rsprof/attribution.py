"""Attributing sampled stacks to the user code responsible for them."""

from __future__ import annotations

from dataclasses import dataclass
from itertools import chain
from typing import Callable, Iterable, Optional, Sequence

UNKNOWN_FUNCTION = "[unknown]"
INTERNAL_MARKER = "[internal]"


def _paths(crate: str, modules: Iterable[str]) -> list[str]:
    return [f"{crate}::{module}::" for module in modules]


# Module paths of the allocator, core and std libraries.
_LIBRARY_PATHS = chain(
    _paths("alloc", "alloc raw_vec vec string collections fmt ffi".split()),
    _paths(
        "core",
        "ptr slice iter sync option result ops::function ops::drop ffi fmt "
        "num str hash mem".split(),
    ),
    _paths("std", "io fmt sys thread sync".split()),
    ["std::collections::hash"],
)

# Whole crates (or crate-like path heads) whose frames are never user code.
_FOREIGN_CRATES = (
    "hashbrown addr2line gimli object miniz_oxide rustc_demangle "
    "rsprof_alloc rsprof_trace profiling rsprof fmt::num fmt::Write "
    "sort::shared::smallsort"
).split()

# Trait implementations as they appear in raw debug names.
_TRAIT_IMPLS = chain(
    (f"<{crate}::" for crate in ("alloc", "core", "std")),
    (f" as {path}::" for path in ("core::fmt", "std::fmt", "core::hash", "alloc")),
    ["<_>::", "::{{closure}}"],
)

# Runtime, libc and unwinding symbols.
_RUNTIME_SYMBOLS = (
    "__rust_alloc __rust_dealloc __rust_realloc __rustc "
    "malloc calloc realloc free memcpy memmove memset memchr "
    "_start __libc_start_main _Unwind_ __cxa_ _fini _init rust_eh_personality"
).split()

# Functions belonging to the allocator, standard library, runtime or the
# profiler itself; samples in them are charged to the user code calling them.
SKIP_FUNCTION_PATTERNS: tuple[str, ...] = tuple(
    chain(
        _RUNTIME_SYMBOLS,
        _LIBRARY_PATHS,
        (f"{crate}::" for crate in _FOREIGN_CRATES),
        _TRAIT_IMPLS,
    )
)

# Small helpers whose cost belongs to whoever called them.
UTILITY_PATTERNS: tuple[str, ...] = tuple(
    chain(
        (f">::{method}" for method in "clone fmt hash eq partial_cmp cmp".split()),
        (f"::{method}" for method in "to_string to_owned into".split()),
        ["::utils::"],
        "format_bytes format_size sanitize_ generate_trace_id".split(),
    )
)

_INTERNAL_PATH_PARTS = (
    "/rustc/",
    "/.cargo/registry/",
    "/rust/library/",
    "rsprof-alloc",
    "rsprof-trace",
    "profiling.rs",
)
_INTERNAL_BARE_FILES = frozenset({"lib.rs", "time.rs", "unix.rs"})
_INTERNAL_FILE_SUFFIXES = ("memchr.rs", "maybe_uninit.rs", "methods.rs")


@dataclass(frozen=True)
class Location:
    """A resolved source location."""

    file: str
    line: int = 0
    column: int = 0
    function: str = ""


Resolver = Callable[[int], Location]


def is_internal_file(file: str) -> bool:
    """Whether a source path looks like library or profiler code."""
    if not file or file.startswith(("[", "<")):
        return True
    if any(part in file for part in _INTERNAL_PATH_PARTS):
        return True
    if file in _INTERNAL_BARE_FILES:
        return True
    if file.endswith(_INTERNAL_FILE_SUFFIXES):
        return True
    return file.endswith("mod.rs") and "/src/" not in file


def _has_internal_function(function: str) -> bool:
    return any(pattern in function for pattern in SKIP_FUNCTION_PATTERNS)


def is_internal_location(loc: Location) -> bool:
    """Whether a location belongs to library, runtime or profiler code."""
    return is_internal_file(loc.file) or _has_internal_function(loc.function)


def is_utility_function(func: str) -> bool:
    """Whether a function is a helper that should be charged to its caller."""
    return any(pattern in func for pattern in UTILITY_PATTERNS)


def _is_named(loc: Location) -> bool:
    return bool(loc.function) and loc.function != UNKNOWN_FUNCTION


def find_user_frame(stack: Sequence[int], resolve: Resolver) -> Location:
    """Pick the frame of a stack that best represents the responsible user code.

    The first named frame outside internal code is chosen; if that is a
    utility helper, its nearest named non-internal caller is chosen instead.
    Failing that, the first frame outside internal code is returned, and if
    there is none an ``[internal]`` marker location.
    """
    first: Optional[Location] = None
    first_idx = 0
    for idx, addr in enumerate(stack):
        loc = resolve(addr)
        if is_internal_location(loc):
            continue
        if _is_named(loc):
            first, first_idx = loc, idx
            break

    if first is not None:
        if is_utility_function(first.function):
            for addr in stack[first_idx + 1 :]:
                loc = resolve(addr)
                if not _has_internal_function(loc.function) and _is_named(loc):
                    return loc
        return first

    for addr in stack:
        loc = resolve(addr)
        if not is_internal_location(loc):
            return loc

    return Location(file=INTERNAL_MARKER, line=0, column=0, function=INTERNAL_MARKER)