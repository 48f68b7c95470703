"""Shared-memory trace ring buffer: binary layout and a writer for it.

A traced process writes CPU samples and heap events, each with a captured
stack, into a ring buffer placed in shared memory. A profiler maps the same
region read-only and consumes the events.
"""

from __future__ import annotations

import mmap
import os
import struct
import time
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Union

MAX_STACK_DEPTH = 64
RING_BUFFER_SIZE = 64 * 1024
SHM_NAME = "/rsprof-trace"
DEFAULT_SHM_PATH = Path("/dev/shm") / SHM_NAME.lstrip("/")

MAGIC = 0x5253_5052_4F46_5452  # "RSPROFTR"
VERSION = 2

_HEADER_STRUCT = struct.Struct("<QIIQII")
_EVENT_STRUCT = struct.Struct(f"<B7xQQQII{MAX_STACK_DEPTH}Q")
_WRITE_INDEX_STRUCT = struct.Struct("<Q")
_WRITE_INDEX_OFFSET = 16

HEADER_SIZE = _HEADER_STRUCT.size
EVENT_SIZE = _EVENT_STRUCT.size

_U64_MASK = (1 << 64) - 1
_MIN_FRAME = 0x1000
_MAX_FRAME = 0x7FFF_FFFF_FFFF
_MAPS_READ_LIMIT = 8192
_MAPS_SCAN_LIMIT = 2000


class EventType(IntEnum):
    """Kind of event stored in a ring-buffer slot."""

    ALLOC = 1
    DEALLOC = 2
    CPU_SAMPLE = 3


def _coerce_type(value: int) -> Union[EventType, int]:
    try:
        return EventType(value)
    except ValueError:
        return value


@dataclass(frozen=True)
class EventRecord:
    """One slot of the ring buffer."""

    event_type: Union[EventType, int]
    ptr: int = 0
    size: int = 0
    timestamp: int = 0
    stack: tuple[int, ...] = field(default_factory=tuple)

    def pack(self) -> bytes:
        """Encode the record into its fixed-size binary form."""
        stack = tuple(self.stack)
        if len(stack) > MAX_STACK_DEPTH:
            raise ValueError(
                f"stack depth {len(stack)} exceeds maximum of {MAX_STACK_DEPTH}"
            )
        padded = stack + (0,) * (MAX_STACK_DEPTH - len(stack))
        return _EVENT_STRUCT.pack(
            int(self.event_type),
            self.ptr & _U64_MASK,
            self.size & _U64_MASK,
            self.timestamp & _U64_MASK,
            len(stack),
            0,
            *(addr & _U64_MASK for addr in padded),
        )

    @classmethod
    def unpack(cls, data: bytes) -> "EventRecord":
        """Decode a record from the start of ``data``."""
        if len(data) < EVENT_SIZE:
            raise ValueError(
                f"event needs {EVENT_SIZE} bytes, got {len(data)}"
            )
        event_type, ptr, size, timestamp, depth, _reserved, *stack = (
            _EVENT_STRUCT.unpack_from(data)
        )
        if depth > MAX_STACK_DEPTH:
            raise ValueError(
                f"stack depth {depth} exceeds maximum of {MAX_STACK_DEPTH}"
            )
        return cls(
            event_type=_coerce_type(event_type),
            ptr=ptr,
            size=size,
            timestamp=timestamp,
            stack=tuple(stack[:depth]),
        )


@dataclass(frozen=True)
class RingHeader:
    """Header stored at the start of the shared region."""

    magic: int = MAGIC
    version: int = VERSION
    capacity: int = RING_BUFFER_SIZE
    write_index: int = 0
    pid: int = 0

    def pack(self) -> bytes:
        return _HEADER_STRUCT.pack(
            self.magic,
            self.version,
            self.capacity,
            self.write_index & _U64_MASK,
            self.pid,
            0,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "RingHeader":
        if len(data) < HEADER_SIZE:
            raise ValueError(
                f"header needs {HEADER_SIZE} bytes, got {len(data)}"
            )
        magic, version, capacity, write_index, pid, _reserved = (
            _HEADER_STRUCT.unpack_from(data)
        )
        return cls(
            magic=magic,
            version=version,
            capacity=capacity,
            write_index=write_index,
            pid=pid,
        )


def buffer_size(capacity: int = RING_BUFFER_SIZE) -> int:
    """Bytes needed for a ring buffer holding ``capacity`` events."""
    return HEADER_SIZE + capacity * EVENT_SIZE


def _lenient_hex(text: str) -> int:
    value = 0
    for c in text:
        if "0" <= c <= "9":
            digit = ord(c) - ord("0")
        elif "a" <= c <= "f":
            digit = ord(c) - ord("a") + 10
        else:
            digit = 0
        value = (value * 16 + digit) & _U64_MASK
    return value


def find_code_segment(maps_text: str) -> Optional[tuple[int, int]]:
    """Return the address range of the first private executable mapping.

    Only the head of the maps text is examined, since the binary's own
    mappings are listed first.
    """
    text = maps_text[:_MAPS_READ_LIMIT]
    offset = 0
    for line in text.splitlines(keepends=True):
        if offset > _MAPS_SCAN_LIMIT:
            break
        offset += len(line)
        start_text, _, rest = line.partition("-")
        end_text, _, rest = rest.partition(" ")
        perms = rest[:4]
        if len(perms) == 4 and perms[0] == "r" and perms[2] == "x" and perms[3] == "p":
            return _lenient_hex(start_text), _lenient_hex(end_text)
    return None


def walk_frame_pointers(
    read_word: Callable[[int], int],
    start_fp: int,
    max_depth: int = MAX_STACK_DEPTH,
) -> list[int]:
    """Collect return addresses by following a chain of saved frame pointers.

    ``read_word(addr)`` returns the 64-bit word stored at ``addr``. The walk
    stops at a misaligned or out-of-range frame pointer, a zero return
    address, or a chain that does not move strictly upwards.
    """
    stack: list[int] = []
    fp = start_fp
    while fp and len(stack) < max_depth:
        if fp & 0x7:
            break
        if not _MIN_FRAME <= fp <= _MAX_FRAME:
            break
        ret_addr = read_word(fp + 8)
        if ret_addr == 0:
            break
        stack.append(ret_addr)
        next_fp = read_word(fp)
        if next_fp <= fp:
            break
        fp = next_fp
    return stack


class RingBufferWriter:
    """Writes trace events into a ring buffer laid out in ``buffer``."""

    def __init__(
        self,
        buffer: Union[bytearray, memoryview, mmap.mmap],
        pid: Optional[int] = None,
        capacity: int = RING_BUFFER_SIZE,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        needed = buffer_size(capacity)
        if len(buffer) < needed:
            raise ValueError(
                f"buffer of {len(buffer)} bytes is too small; {needed} needed"
            )
        self._buffer = buffer
        self._owned: Optional[mmap.mmap] = None
        self.capacity = capacity
        self.pid = os.getpid() if pid is None else pid
        self._start_ns = time.monotonic_ns()
        header = RingHeader(capacity=capacity, write_index=0, pid=self.pid)
        self._buffer[:HEADER_SIZE] = header.pack()

    @classmethod
    def create(
        cls,
        path: Union[str, "os.PathLike[str]"] = DEFAULT_SHM_PATH,
        pid: Optional[int] = None,
        capacity: int = RING_BUFFER_SIZE,
    ) -> "RingBufferWriter":
        """Create (or reuse) a shared file at ``path`` and map it for writing."""
        size = buffer_size(capacity)
        fd = os.open(os.fspath(path), os.O_CREAT | os.O_RDWR, 0o666)
        try:
            os.ftruncate(fd, size)
            region = mmap.mmap(fd, size, mmap.MAP_SHARED, mmap.PROT_READ | mmap.PROT_WRITE)
        finally:
            os.close(fd)
        writer = cls(region, pid=pid, capacity=capacity)
        writer._owned = region
        return writer

    @property
    def write_index(self) -> int:
        """Total number of events written so far."""
        return _WRITE_INDEX_STRUCT.unpack_from(self._buffer, _WRITE_INDEX_OFFSET)[0]

    def _timestamp(self) -> int:
        return max(0, time.monotonic_ns() - self._start_ns)

    def record(
        self,
        event_type: Union[EventType, int],
        ptr: int = 0,
        size: int = 0,
        stack: Iterable[int] = (),
        timestamp: Optional[int] = None,
    ) -> int:
        """Write one event into the next slot and return that slot's index."""
        counter = self.write_index
        _WRITE_INDEX_STRUCT.pack_into(
            self._buffer, _WRITE_INDEX_OFFSET, (counter + 1) & _U64_MASK
        )
        slot = counter % self.capacity
        event = EventRecord(
            event_type=event_type,
            ptr=ptr,
            size=size,
            timestamp=self._timestamp() if timestamp is None else timestamp,
            stack=tuple(stack)[:MAX_STACK_DEPTH],
        )
        offset = HEADER_SIZE + slot * EVENT_SIZE
        self._buffer[offset : offset + EVENT_SIZE] = event.pack()
        return slot

    def record_alloc(self, ptr: int, size: int, stack: Iterable[int] = ()) -> int:
        return self.record(EventType.ALLOC, ptr, size, stack)

    def record_dealloc(self, ptr: int, size: int, stack: Iterable[int] = ()) -> int:
        return self.record(EventType.DEALLOC, ptr, size, stack)

    def record_cpu_sample(self, rip: int, stack: Sequence[int] = ()) -> int:
        """Record a CPU sample whose first frame is the interrupted PC."""
        frames = ([rip] if rip else []) + list(stack)
        return self.record(EventType.CPU_SAMPLE, 0, 0, frames)

    def close(self) -> None:
        """Release the mapping if this writer created it."""
        if self._owned is not None and not self._owned.closed:
            self._owned.close()
        self._owned = None

    def __enter__(self) -> "RingBufferWriter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()