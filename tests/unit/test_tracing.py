import pytest

from knowledge_rag.obs.tracing import Timer, TraceStore


def _record(store: TraceStore, latency: float, **kwargs) -> str:
    record = store.create_record(
        query="q",
        candidate_count=3,
        result_count=2,
        stage_latency_ms={"search": latency / 2},
        latency_ms=latency,
        **kwargs,
    )
    return record.trace_id


def test_trace_store_summary_counts_corrections_and_failures() -> None:
    store = TraceStore()
    _record(store, 10.0)
    _record(store, 30.0, corrected=True, fallback_used=True, correction_reason="all irrelevant")
    _record(store, 20.0, degraded=True, recovered_failures=["search stage failed: boom"])

    summary = store.summary()

    assert summary["total_queries"] == 3
    assert summary["avg_latency_ms"] == pytest.approx(20.0)
    assert summary["correction_rate"] == pytest.approx(1 / 3)
    assert summary["fallback_rate"] == pytest.approx(1 / 3)
    assert summary["degraded_count"] == 1
    assert summary["recovered_failure_count"] == 1


def test_trace_store_is_bounded_and_lookup_fails_for_evicted() -> None:
    store = TraceStore(max_records=2)
    first = _record(store, 1.0)
    _record(store, 2.0)
    last = _record(store, 3.0)

    assert [r.latency_ms for r in store.list_recent()] == [2.0, 3.0]
    assert store.get(last).latency_ms == 3.0
    with pytest.raises(KeyError):
        store.get(first)


def test_empty_summary_and_timer() -> None:
    assert TraceStore().summary()["total_queries"] == 0

    with Timer() as timer:
        sum(range(1000))
    assert timer.elapsed_ms >= 0.0
