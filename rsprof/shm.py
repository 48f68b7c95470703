"""Reading CPU samples and heap events from the shared-memory trace buffer."""

from __future__ import annotations

import dataclasses
import mmap
import os
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Union

from rsprof.errors import BpfError
from rsprof.tracebuf import (
    DEFAULT_SHM_PATH,
    EVENT_SIZE,
    HEADER_SIZE,
    MAGIC,
    EventRecord,
    EventType,
    RingHeader,
    buffer_size,
)

_U64_MASK = (1 << 64) - 1
_FNV_PRIME = 0x100000001B3
_KEY_SKIP = 6
_KEY_TAKE = 6

Buffer = Union[bytearray, bytes, memoryview, mmap.mmap]


def _as_signed(value: int) -> int:
    value &= _U64_MASK
    return value - (1 << 64) if value >= 1 << 63 else value


def stack_key(stack: Sequence[int]) -> int:
    """Aggregation key for an allocation site.

    The first six frames (allocator and profiler internals) are skipped and
    the next six are hashed, so allocations reaching the same library code
    from different user code paths are kept apart.
    """
    key = 0
    for addr in list(stack)[_KEY_SKIP : _KEY_SKIP + _KEY_TAKE]:
        key ^= addr
        key = (key * _FNV_PRIME) & _U64_MASK
    return key


@dataclass
class HeapStats:
    """Allocation statistics for one call site."""

    live_bytes: int = 0
    total_allocs: int = 0
    total_frees: int = 0
    total_alloc_bytes: int = 0
    total_free_bytes: int = 0


@dataclass(frozen=True)
class CpuSample:
    """A CPU sample and the stack captured with it."""

    timestamp: int
    stack: tuple[int, ...]


class TraceEventType(Enum):
    """Kind of a decoded trace event."""

    ALLOC = "alloc"
    DEALLOC = "dealloc"
    CPU_SAMPLE = "cpu_sample"


_TYPE_MAP = {
    EventType.ALLOC: TraceEventType.ALLOC,
    EventType.DEALLOC: TraceEventType.DEALLOC,
    EventType.CPU_SAMPLE: TraceEventType.CPU_SAMPLE,
}


@dataclass(frozen=True)
class TraceEvent:
    """A decoded event read from the ring buffer."""

    timestamp: int
    event_type: TraceEventType
    ptr: int
    size: int
    stack: tuple[int, ...]


class ShmTraceSampler:
    """Consumes events from a trace ring buffer and aggregates them.

    Reading starts at the buffer's write position at the time the sampler
    is created; earlier events are ignored.
    """

    def __init__(self, buffer: Buffer, pid: int) -> None:
        try:
            header = RingHeader.unpack(buffer[:HEADER_SIZE])
        except ValueError as exc:
            raise BpfError(f"Shared memory region too small: {exc}") from exc

        if header.magic != MAGIC:
            raise BpfError(
                f"Invalid shared memory magic: expected 0x{MAGIC:x}, "
                f"got 0x{header.magic:x}"
            )
        if header.capacity <= 0 or len(buffer) < buffer_size(header.capacity):
            raise BpfError(
                f"Shared memory region of {len(buffer)} bytes cannot hold "
                f"{header.capacity} events"
            )
        if header.pid != pid:
            print(
                f"[WARN] Shared memory PID ({header.pid}) doesn't match "
                f"target PID ({pid})",
                file=sys.stderr,
            )

        self._buffer = buffer
        self._owned: Optional[mmap.mmap] = None
        self.target_pid = pid
        self.capacity = header.capacity
        self._last_read_index = header.write_index
        self._heap_stats: dict[int, HeapStats] = {}
        self._live_allocs: dict[int, tuple[int, tuple[int, ...]]] = {}
        self._cpu_samples: list[CpuSample] = []

    @classmethod
    def open(
        cls,
        pid: int,
        path: Union[str, "os.PathLike[str]"] = DEFAULT_SHM_PATH,
    ) -> "ShmTraceSampler":
        """Map the shared trace file at ``path`` read-only."""
        try:
            fd = os.open(os.fspath(path), os.O_RDONLY)
        except OSError:
            raise BpfError(
                f"Failed to open shared memory '{os.fspath(path)}'. Is the target "
                "app using rsprof-trace with profiling feature?"
            ) from None
        try:
            size = os.fstat(fd).st_size
            region = mmap.mmap(fd, size, mmap.MAP_SHARED, mmap.PROT_READ)
        except (OSError, ValueError):
            raise BpfError("Failed to map shared memory") from None
        finally:
            os.close(fd)

        try:
            sampler = cls(region, pid)
        except BaseException:
            region.close()
            raise
        sampler._owned = region
        return sampler

    def _header(self) -> RingHeader:
        return RingHeader.unpack(self._buffer[:HEADER_SIZE])

    def _read_slot(self, slot: int) -> Optional[EventRecord]:
        offset = HEADER_SIZE + slot * EVENT_SIZE
        try:
            return EventRecord.unpack(self._buffer[offset : offset + EVENT_SIZE])
        except ValueError:
            return None

    def poll_events(self) -> list[TraceEvent]:
        """Read all events written since the last poll and aggregate them."""
        current = self._header().write_index
        last = self._last_read_index
        if current >= last:
            pending = current - last
        else:
            pending = (current + self.capacity - last) & _U64_MASK
        pending = min(pending, self.capacity)

        events: list[TraceEvent] = []
        for i in range(pending):
            record = self._read_slot((last + i) % self.capacity)
            if record is None:
                continue
            event_type = _TYPE_MAP.get(record.event_type)
            if event_type is None:
                continue
            stack = tuple(addr for addr in record.stack if addr != 0)

            if event_type is TraceEventType.ALLOC:
                self._on_alloc(record.ptr, record.size, stack)
            elif event_type is TraceEventType.DEALLOC:
                self._on_dealloc(record.ptr)
            else:
                self._cpu_samples.append(CpuSample(record.timestamp, stack))

            events.append(
                TraceEvent(
                    timestamp=record.timestamp,
                    event_type=event_type,
                    ptr=record.ptr,
                    size=_as_signed(record.size),
                    stack=stack,
                )
            )

        self._last_read_index = current
        return events

    def _on_alloc(self, ptr: int, size: int, stack: tuple[int, ...]) -> None:
        if not stack:
            return
        stats = self._heap_stats.setdefault(stack_key(stack), HeapStats())
        stats.live_bytes += _as_signed(size)
        stats.total_allocs += 1
        stats.total_alloc_bytes += size
        self._live_allocs[ptr] = (size, stack)

    def _on_dealloc(self, ptr: int) -> None:
        entry = self._live_allocs.pop(ptr, None)
        if entry is None:
            return
        size, old_stack = entry
        if not old_stack:
            return
        stats = self._heap_stats.get(stack_key(old_stack))
        if stats is not None:
            stats.live_bytes -= _as_signed(size)
            stats.total_frees += 1
            stats.total_free_bytes += size

    def read_stats(self) -> dict[int, HeapStats]:
        """Return a copy of the per-site heap statistics."""
        return {key: dataclasses.replace(s) for key, s in self._heap_stats.items()}

    def read_inline_stacks(self) -> dict[int, tuple[int, ...]]:
        """Map each site key to a full stack taken from a live allocation."""
        result: dict[int, tuple[int, ...]] = {}
        for _size, stack in self._live_allocs.values():
            if stack:
                result.setdefault(stack_key(stack), stack)
        return result

    def read_cpu_samples(self) -> list[CpuSample]:
        """Return the CPU samples collected so far and forget them."""
        samples, self._cpu_samples = self._cpu_samples, []
        return samples

    def shm_pid(self) -> int:
        """PID recorded in the shared-memory header."""
        return self._header().pid

    def close(self) -> None:
        """Release the mapping if this sampler created it."""
        if self._owned is not None and not self._owned.closed:
            self._owned.close()
        self._owned = None

    def __enter__(self) -> "ShmTraceSampler":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()