from concurrent.futures import ThreadPoolExecutor
from uuid import uuid4

import pytest
from factories import interaction
from sqlalchemy.exc import OperationalError

from coaching_engine.core.entities import UserFeedback
from coaching_engine.core.errors import FeedbackAlreadyRecordedError, PersistenceError
from coaching_engine.db.models import (
    REALTIME_METRICS_KEY,
    AIInteractionRecord,
    ClarificationMetricRecord,
    ImprovementOpportunityRecord,
)
from coaching_engine.db.session import SessionLocal
from coaching_engine.db.store import ConcurrentUpdateError, atomic_update, retry_once
from coaching_engine.services import performance_monitor


def _new_metric(key: str):
    def _create() -> ClarificationMetricRecord:
        return ClarificationMetricRecord(question_id=key, times_asked=0)

    return _create


def _increment(row: ClarificationMetricRecord) -> int:
    row.times_asked += 1
    return row.times_asked


def _bump_elsewhere(key: str, amount: int) -> None:
    other = SessionLocal()
    try:
        row = other.get(ClarificationMetricRecord, key)
        row.times_asked += amount
        other.commit()
    finally:
        other.close()


def test_concurrent_tracking_counts_every_interaction(monitor) -> None:
    before = monitor.get_realtime_metrics().total_requests
    items = [interaction(user_id=f"stress-{idx}") for idx in range(24)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(monitor.track_interaction, items))

    assert all(results)
    assert monitor.get_realtime_metrics().total_requests == before + len(items)


def test_failed_aggregate_write_keeps_retry_countable(monitor, db_session, monkeypatch) -> None:
    item = interaction()
    before = monitor.get_realtime_metrics().total_requests
    real_rolling = performance_monitor._rolling
    failures = [ConcurrentUpdateError("RealtimeMetrics", REALTIME_METRICS_KEY, 200)]

    def _flaky_rolling(mean: float, sample: float, count: int) -> float:
        if failures:
            raise failures.pop()
        return real_rolling(mean, sample, count)

    monkeypatch.setattr(performance_monitor, "_rolling", _flaky_rolling)

    assert monitor.track_interaction(item) is False
    assert db_session.get(AIInteractionRecord, item.id) is None
    assert monitor.get_realtime_metrics().total_requests == before

    assert monitor.track_interaction(item) is True
    assert monitor.track_interaction(item) is False
    assert monitor.get_realtime_metrics().total_requests == before + 1


def test_concurrent_duplicates_count_once(monitor) -> None:
    item = interaction()
    before = monitor.get_realtime_metrics().total_requests

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(monitor.track_interaction, [item] * 8))

    assert results.count(True) == 1
    assert monitor.get_realtime_metrics().total_requests == before + 1


def test_atomic_update_retries_after_stale_read(test_db_path) -> None:
    key = f"q-{uuid4().hex[:8]}"
    atomic_update(SessionLocal, ClarificationMetricRecord, key, _increment, _new_metric(key))
    seen: list[int] = []

    def _racing_increment(row: ClarificationMetricRecord) -> int:
        seen.append(row.times_asked)
        if len(seen) == 1:
            _bump_elsewhere(key, 10)
        return _increment(row)

    result = atomic_update(SessionLocal, ClarificationMetricRecord, key, _racing_increment, _new_metric(key))

    assert seen == [1, 11]
    assert result == 12


def test_atomic_update_gives_up_after_max_attempts(test_db_path) -> None:
    key = f"q-{uuid4().hex[:8]}"
    atomic_update(SessionLocal, ClarificationMetricRecord, key, _increment, _new_metric(key))

    def _always_loses(row: ClarificationMetricRecord) -> int:
        _bump_elsewhere(key, 1)
        return _increment(row)

    with pytest.raises(ConcurrentUpdateError):
        atomic_update(
            SessionLocal, ClarificationMetricRecord, key, _always_loses, _new_metric(key), max_attempts=2
        )


def test_concurrent_feedback_lands_once(monitor, db_session) -> None:
    item = interaction()
    monitor.track_interaction(item)
    feedback = UserFeedback(accuracy=1, helpfulness=1)

    def _submit(_: int) -> str:
        try:
            monitor.process_feedback(item.id, feedback)
        except FeedbackAlreadyRecordedError:
            return "duplicate"
        return "recorded"

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(_submit, range(4)))

    assert outcomes.count("recorded") == 1
    opportunities = (
        db_session.query(ImprovementOpportunityRecord)
        .filter(ImprovementOpportunityRecord.interaction_id == item.id)
        .count()
    )
    assert opportunities == 1


def test_retry_once_recovers_from_one_store_failure(test_db_path) -> None:
    attempts: list[int] = []

    def _flaky(db) -> str:
        attempts.append(1)
        if len(attempts) == 1:
            raise OperationalError("UPDATE", {}, Exception("database is locked"))
        return "ok"

    assert retry_once("flaky_write", SessionLocal, _flaky) == "ok"
    assert len(attempts) == 2


def test_retry_once_raises_persistence_error(test_db_path) -> None:
    def _broken(db) -> None:
        raise OperationalError("UPDATE", {}, Exception("disk I/O error"))

    with pytest.raises(PersistenceError):
        retry_once("broken_write", SessionLocal, _broken)


def test_retry_once_does_not_retry_domain_errors(test_db_path) -> None:
    attempts: list[int] = []

    def _domain(db) -> None:
        attempts.append(1)
        raise FeedbackAlreadyRecordedError("insight", "abc")

    with pytest.raises(FeedbackAlreadyRecordedError):
        retry_once("domain_write", SessionLocal, _domain)
    assert len(attempts) == 1
