"""Per-query search traces and latency accounting."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(slots=True)
class SearchTrace:
    trace_id: str
    timestamp_utc: str
    query: str
    candidate_count: int
    result_count: int
    stage_latency_ms: dict[str, float]
    latency_ms: float
    corrected: bool
    fallback_used: bool
    degraded: bool
    correction_reason: str | None = None
    recovered_failures: list[str] = field(default_factory=list)


class TraceStore:
    """In-memory, bounded trace storage for API-level observability."""

    def __init__(self, max_records: int = 1000) -> None:
        self._records: dict[str, SearchTrace] = {}
        self._max_records = max_records
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        query: str,
        candidate_count: int,
        result_count: int,
        stage_latency_ms: dict[str, float],
        latency_ms: float,
        corrected: bool = False,
        fallback_used: bool = False,
        degraded: bool = False,
        correction_reason: str | None = None,
        recovered_failures: list[str] | None = None,
    ) -> SearchTrace:
        record = SearchTrace(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            query=query,
            candidate_count=candidate_count,
            result_count=result_count,
            stage_latency_ms=dict(stage_latency_ms),
            latency_ms=latency_ms,
            corrected=corrected,
            fallback_used=fallback_used,
            degraded=degraded,
            correction_reason=correction_reason,
            recovered_failures=list(recovered_failures or []),
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self._max_records:
                self._records.pop(next(iter(self._records)))
        return record

    def get(self, trace_id: str) -> SearchTrace:
        with self._lock:
            record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[SearchTrace]:
        with self._lock:
            return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate pipeline metrics for dashboard display."""
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_queries": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_result_count": 0.0,
                "correction_rate": 0.0,
                "fallback_rate": 0.0,
                "degraded_count": 0,
                "recovered_failure_count": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_queries": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_result_count": sum(r.result_count for r in records) / total,
            "correction_rate": sum(1 for r in records if r.corrected) / total,
            "fallback_rate": sum(1 for r in records if r.fallback_used) / total,
            "degraded_count": sum(1 for r in records if r.degraded),
            "recovered_failure_count": sum(len(r.recovered_failures) for r in records),
        }


class Timer:
    """Simple context timer used by the pipeline."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
