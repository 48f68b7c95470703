"""Profiler toolkit: shared-memory trace buffer, heap aggregation, frame attribution and profile database tools."""

__version__ = "0.1.1"