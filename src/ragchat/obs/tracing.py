"""Per-request tracing for the chat tool loop."""

from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone

from ragchat.types import ToolTrace


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    model: str
    outcome: str
    iterations: int
    model_calls: int
    streamed: bool
    tools_used: list[str]
    tool_traces: list[ToolTrace]
    latency_ms: float
    error: str | None = None


class TraceStore:
    """Bounded in-memory trace storage for API-level observability.

    Shared by concurrent requests; every access to the records holds a lock.
    """

    def __init__(self, max_records: int = 1000) -> None:
        self._records: OrderedDict[str, TraceRecord] = OrderedDict()
        self._max_records = max_records
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        model: str,
        outcome: str,
        iterations: int,
        model_calls: int,
        streamed: bool,
        tools_used: list[str],
        tool_traces: list[ToolTrace],
        latency_ms: float,
        error: str | None = None,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            model=model,
            outcome=outcome,
            iterations=iterations,
            model_calls=model_calls,
            streamed=streamed,
            tools_used=tools_used,
            tool_traces=tool_traces,
            latency_ms=latency_ms,
            error=error,
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self._max_records:
                self._records.popitem(last=False)
        return record

    def get(self, trace_id: str) -> TraceRecord:
        with self._lock:
            record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        with self._lock:
            return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate tool-loop metrics for dashboard display."""
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_iterations": 0.0,
                "streamed_requests": 0,
                "failed_requests": 0,
                "total_tool_calls": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_iterations": sum(record.iterations for record in records) / total,
            "streamed_requests": sum(1 for record in records if record.streamed),
            "failed_requests": sum(1 for record in records if record.error is not None),
            "total_tool_calls": sum(len(record.tools_used) for record in records),
        }


class Timer:
    """Simple context timer used by the orchestrator."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
