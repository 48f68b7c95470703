"""Building blocks of a demonstration workload with deliberate hot spots.

The workload contains a CPU-heavy transform, a validator that keeps an
ever-growing history, a metrics hook called far too often and an audit log
that never really releases what it archives. It exists to give a profiler
something worth finding.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence

_U64_MASK = (1 << 64) - 1

_BACKUP_HEADER = b"AUDIT_BACKUP_V1:"
_BACKUP_DATA = b":DATA:"
_BACKUP_END = b":END"

_AUDIT_FLUSH_THRESHOLD = 50
_ARCHIVE_LIMIT = 10_000
_HISTORY_LIMIT = 10_000
_HISTORY_TRIM = 1_000
_SAMPLE_LIMIT = 100
_TRANSFORM_ROUNDS = 50
_HASH_ROUNDS = 100
_PREVIEW_LEN = 32


@dataclass
class Request:
    """An incoming request handled by the demo application."""

    key: str
    payload: bytes
    priority: int


def _system_time_debug() -> str:
    ns = time.time_ns()
    return f"SystemTime {{ tv_sec: {ns // 1_000_000_000}, tv_nsec: {ns % 1_000_000_000} }}"


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


# ---------------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------------


def format_bytes(n: int) -> str:
    """Human-readable size; allocates a new string on every call."""
    if n < 1024:
        return f"{n}B"
    if n < 1024 * 1024:
        return f"{n / 1024.0:.1f}KB"
    return f"{n / (1024.0 * 1024.0):.2f}MB"


def generate_trace_id() -> str:
    """A trace identifier derived from the current time in nanoseconds."""
    return f"trace_{time.time_ns():x}"


def sanitize_for_log(text: str) -> str:
    """Replace every character other than ASCII letters, digits and ``_`` with ``.``."""
    return "".join(
        c if (c.isascii() and c.isalnum()) or c == "_" else "." for c in text
    )


def safe_clone_bytes(data: bytes) -> bytes:
    """Copy ``data`` after a pointless validation pass over it."""
    for byte in data:
        if byte == 0xFF:
            continue
    return bytes(data)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


@dataclass
class _CacheEntry:
    data: bytes
    hits: int = 0


class DataCache:
    """Bounded cache that evicts its least-used entry when full."""

    def __init__(self, max_size: int = 200) -> None:
        self.max_size = max_size
        self._entries: dict[str, _CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[bytes]:
        """Return the cached data for ``key`` and count the hit, or None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        entry.hits += 1
        return entry.data

    def put(self, key: str, data: bytes) -> None:
        """Store ``data`` under ``key``, evicting one entry first if full."""
        if len(self._entries) >= self.max_size:
            self._evict_one()
        self._entries[key] = _CacheEntry(data)

    def _evict_one(self) -> None:
        if not self._entries:
            return
        victim = min(self._entries, key=lambda k: self._entries[k].hits)
        del self._entries[victim]


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


class RequestProcessor:
    """Transforms request payloads; the transform is needlessly expensive."""

    def __init__(self) -> None:
        self._transform_buffer = bytearray()

    def process(self, request: Request) -> bytes:
        """Transform the payload, then compute a result according to priority."""
        transformed = self._transform(request.payload)
        if request.priority == 0:
            return self._compute_fast(transformed)
        if request.priority == 1:
            return self._compute_medium(transformed)
        return self._compute_slow(transformed)

    def _transform(self, data: bytes) -> bytes:
        safe_data = safe_clone_bytes(data)
        buf = self._transform_buffer
        buf.clear()
        buf.extend(safe_data)
        for _ in range(_TRANSFORM_ROUNDS):
            digest = self.hash_data(buf)
            buf.append(digest & 0xFF)
            del buf[len(data):]
        return bytes(buf)

    def hash_data(self, data: bytes) -> int:
        """A deliberately slow 64-bit hash."""
        value = 0
        for i, byte in enumerate(data):
            for j in range(_HASH_ROUNDS):
                value = (value * 31 + byte) & _U64_MASK
                value ^= (i * j) & _U64_MASK
        return value

    @staticmethod
    def _compute_fast(data: bytes) -> bytes:
        return bytes((b + 1) & 0xFF for b in data)

    @staticmethod
    def _compute_medium(data: bytes) -> bytes:
        return bytes(sorted(data))

    @staticmethod
    def _compute_slow(data: bytes) -> bytes:
        return bytes(sum(data[i : i + 8]) % 256 for i in range(0, len(data), 8))


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _ValidationRule:
    name: str
    min_len: int
    max_len: int


@dataclass(frozen=True)
class _ValidationRecord:
    key: str
    passed: bool
    timestamp: int
    debug_info: str


class InputValidator:
    """Checks requests against length rules and keeps a bloated history."""

    def __init__(self) -> None:
        self.rules: list[_ValidationRule] = [
            _ValidationRule("length", 1, 1000),
            _ValidationRule("payload", 0, 10000),
        ]
        self.history: list[_ValidationRecord] = []

    def validate(self, request: Request) -> bool:
        """Check ``request`` and record the outcome in the history."""
        passed = self._check_rules(request)
        self._record_validation(request, passed)
        return passed

    def _check_rules(self, request: Request) -> bool:
        for rule in self.rules:
            if rule.name == "length":
                length = _byte_len(request.key)
            elif rule.name == "payload":
                length = len(request.payload)
            else:
                length = 0
            if length < rule.min_len or length > rule.max_len:
                return False
        return True

    def _record_validation(self, request: Request, passed: bool) -> None:
        record = _ValidationRecord(
            key=request.key,
            passed=passed,
            timestamp=int(time.time()),
            debug_info=self._generate_debug_info(request),
        )
        self.history.append(record)
        if len(self.history) > _HISTORY_LIMIT:
            del self.history[:_HISTORY_TRIM]

    def _generate_debug_info(self, request: Request) -> str:
        trace_id = generate_trace_id()
        sanitized_key = sanitize_for_log(request.key)
        size_str = format_bytes(len(request.payload))
        rule_names = "[" + ", ".join(f'"{r.name}"' for r in self.rules) + "]"
        preview = "[" + ", ".join(str(b) for b in request.payload[:_PREVIEW_LEN]) + "]"
        return (
            f"[{trace_id}] Validated request '{sanitized_key}' with {size_str} payload. "
            f"Rules checked: {rule_names}. Priority level: {request.priority}. "
            f"Current history size: {len(self.history)}. "
            f"Timestamp: {_system_time_debug()}. "
            f"Payload preview: {preview}"
        )


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def compute_mean(samples: Sequence[float]) -> float:
    """Arithmetic mean; NaN for no samples."""
    if not samples:
        return math.nan
    return sum(samples) / len(samples)


def compute_stddev(samples: Sequence[float]) -> float:
    """Population standard deviation; NaN for no samples."""
    mean = compute_mean(samples)
    if not samples:
        return math.nan
    variance = sum((x - mean) ** 2 for x in samples) / len(samples)
    return math.sqrt(variance)


@dataclass
class _MetricsCollector:
    counters: dict[str, int] = field(default_factory=dict)
    samples: list[float] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)


_METRICS = _MetricsCollector()


def record_alloc_size(size: int) -> int:
    """Count ``size`` in its 64-byte bucket; return the bucket's new count."""
    with _METRICS.lock:
        key = f"alloc_bucket_{size // 64}"
        count = _METRICS.counters.get(key, 0) + 1
        _METRICS.counters[key] = count
        _METRICS.samples.append(float(size))
        if len(_METRICS.samples) > _SAMPLE_LIMIT:
            compute_mean(_METRICS.samples)
            compute_stddev(_METRICS.samples)
            _METRICS.samples.clear()
        return count


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _AuditEntry:
    timestamp: int
    operation: str
    details: str
    backup_blob: bytes

    def footprint(self) -> int:
        return len(self.backup_blob) + _byte_len(self.details) + _byte_len(self.operation)


def create_backup_blob(payload: bytes) -> bytes:
    """Wrap ``payload`` in a header carrying its little-endian length."""
    return b"".join(
        (
            _BACKUP_HEADER,
            len(payload).to_bytes(8, "little"),
            _BACKUP_DATA,
            bytes(payload),
            _BACKUP_END,
        )
    )


def _build_audit_details(operation: str, key: str, size: int) -> str:
    return (
        f"OP={operation} KEY={key} SIZE={size} "
        f"THREAD=ThreadId({threading.get_ident()}) TIME={_system_time_debug()}"
    )


class AuditLogger:
    """Audit log whose flush archives copies instead of releasing entries."""

    def __init__(self) -> None:
        self.pending_entries: list[_AuditEntry] = []
        self.archived_entries: list[_AuditEntry] = []
        self.flush_count = 0
        self._lock = threading.Lock()

    def log(self, operation: str, key: str, payload: bytes) -> None:
        """Record one audit event, flushing every 50 pending entries."""
        with self._lock:
            entry = _AuditEntry(
                timestamp=time.time_ns(),
                operation=operation,
                details=_build_audit_details(operation, key, len(payload)),
                backup_blob=create_backup_blob(payload),
            )
            self.pending_entries.append(entry)
            if len(self.pending_entries) >= _AUDIT_FLUSH_THRESHOLD:
                self._flush()

    def _flush(self) -> None:
        self.flush_count += 1
        self.archived_entries.extend(replace(e) for e in self.pending_entries)
        self.pending_entries.clear()
        if len(self.archived_entries) > _ARCHIVE_LIMIT:
            del self.archived_entries[: len(self.archived_entries) // 10]

    def memory_usage(self) -> int:
        """Bytes held by pending and archived entries."""
        with self._lock:
            return sum(e.footprint() for e in self.pending_entries) + sum(
                e.footprint() for e in self.archived_entries
            )


_AUDIT_LOG = AuditLogger()


def log_audit_event(operation: str, key: str, payload: bytes) -> None:
    """Record an audit event in the process-wide audit log."""
    _AUDIT_LOG.log(operation, key, payload)


def get_audit_memory_usage() -> int:
    """Bytes held by the process-wide audit log."""
    return _AUDIT_LOG.memory_usage()