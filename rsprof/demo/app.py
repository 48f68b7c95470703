"""A small request-handling loop built on the demo workload."""

from __future__ import annotations

import argparse
import os
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence

from rsprof.demo.workload import (
    AuditLogger,
    DataCache,
    InputValidator,
    Request,
    RequestProcessor,
    log_audit_event,
    record_alloc_size,
)

_KEY_SPACE = 150
_REPORT_EVERY = 500
_TICK_SLEEP = 0.002


@dataclass
class Stats:
    """Counters maintained by the application."""

    cache_hits: int = 0
    cache_misses: int = 0
    errors: int = 0


@dataclass
class Application:
    """Generates, validates, caches and processes synthetic requests."""

    audit_logger: Optional[AuditLogger] = None
    tick_count: int = 0
    stats: Stats = field(default_factory=Stats)
    cache: DataCache = field(default_factory=DataCache)
    processor: RequestProcessor = field(default_factory=RequestProcessor)
    validator: InputValidator = field(default_factory=InputValidator)

    def tick(self) -> None:
        """Handle one synthetic request."""
        self.tick_count += 1
        request = self.generate_request()
        try:
            self._handle(request)
        finally:
            record_alloc_size(len(request.payload))

    def _handle(self, request: Request) -> None:
        if not self.validator.validate(request):
            self.stats.errors += 1
            return

        if self.audit_logger is None:
            log_audit_event("process", request.key, request.payload)
        else:
            self.audit_logger.log("process", request.key, request.payload)

        if self.cache.get(request.key) is not None:
            self.stats.cache_hits += 1
            return
        self.stats.cache_misses += 1

        result = self.processor.process(request)
        self.cache.put(request.key, result)

    def generate_request(self) -> Request:
        """Build the request for the current tick."""
        return Request(
            key=f"req_{self.tick_count % _KEY_SPACE}",
            payload=bytes(64 + self.tick_count % 64),
            priority=self.tick_count % 3,
        )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rsprof-demo",
        description="Run a workload with hidden performance bottlenecks.",
    )
    parser.add_argument(
        "--ticks",
        type=int,
        default=None,
        help="Stop after this many requests (default: run until interrupted)",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the demo loop; returns the exit code."""
    args = _build_parser().parse_args(argv)

    print("=== Performance CTF ===")
    print(f"PID: {os.getpid()}")
    print()
    print("This app has hidden performance bottlenecks.")
    print("Use rsprof to find the 3 major optimization targets!")
    print()
    print("Press Ctrl-C to stop.")
    print()

    application = Application()
    start = time.monotonic()
    try:
        while args.ticks is None or application.tick_count < args.ticks:
            application.tick()
            if application.tick_count % _REPORT_EVERY == 0:
                stats = application.stats
                print(
                    f"[{time.monotonic() - start:>5.1f}s] "
                    f"processed={application.tick_count:<6} "
                    f"cache_hits={stats.cache_hits:<5} "
                    f"errors={stats.errors:<3}"
                )
            time.sleep(_TICK_SLEEP)
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())