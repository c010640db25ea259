import pytest
from factories import interaction

from coaching_engine.core.config import MonitorThresholds
from coaching_engine.core.entities import FeedbackRating, Priority, UserFeedback
from coaching_engine.db.models import ClarificationMetricRecord
from coaching_engine.services.performance_monitor import (
    apply_clarification_feedback,
    calculate_priority,
    categorize_issue,
    find_anomalies,
    should_retire,
    suggest_improvement,
)

THRESHOLDS = MonitorThresholds()


def _metric_row() -> ClarificationMetricRecord:
    return ClarificationMetricRecord(
        question_id="portion-size",
        times_asked=0,
        thumbs_up_rate=0.0,
        thumbs_down_rate=0.0,
        skip_rate=0.0,
        accuracy_samples=0,
        average_impact_on_accuracy=0.0,
        should_retire=False,
    )


def test_clean_interaction_has_no_anomalies() -> None:
    assert find_anomalies(interaction(), THRESHOLDS) == []


def test_all_anomalies_detected() -> None:
    noisy = interaction(response_time=12000, tokens_used=6000, retry_count=3, confidence=0.2)
    assert find_anomalies(noisy, THRESHOLDS) == [
        "slow_response",
        "high_token_usage",
        "multiple_retries",
        "low_confidence",
    ]


def test_missing_confidence_and_tokens_are_not_anomalies() -> None:
    assert find_anomalies(interaction(tokens_used=None, confidence=None), THRESHOLDS) == []


def test_should_retire_rules() -> None:
    assert should_retire(10, 0.1, 0.6, THRESHOLDS) is True
    assert should_retire(150, 0.2, 0.1, THRESHOLDS) is True
    assert should_retire(50, 0.2, 0.1, THRESHOLDS) is False
    assert should_retire(150, 0.5, 0.1, THRESHOLDS) is False


def test_clarification_rates_are_rolling_means() -> None:
    row = _metric_row()
    apply_clarification_feedback(row, UserFeedback(clarification_quality=5, accuracy=4), THRESHOLDS)
    apply_clarification_feedback(row, UserFeedback(clarification_quality=1, accuracy=2), THRESHOLDS)
    apply_clarification_feedback(row, UserFeedback(), THRESHOLDS)
    apply_clarification_feedback(row, UserFeedback(clarification_quality=3), THRESHOLDS)

    assert row.times_asked == 4
    assert row.thumbs_up_rate == pytest.approx(0.25)
    assert row.thumbs_down_rate == pytest.approx(0.25)
    assert row.skip_rate == pytest.approx(0.25)
    assert row.accuracy_samples == 2
    assert row.average_impact_on_accuracy == pytest.approx(3.0)
    assert row.should_retire is False


def test_clarification_retired_when_mostly_disliked() -> None:
    row = _metric_row()
    apply_clarification_feedback(row, UserFeedback(clarification_quality=1), THRESHOLDS)
    assert row.thumbs_down_rate == 1.0
    assert row.should_retire is True


def test_categorize_issue() -> None:
    assert categorize_issue(UserFeedback(accuracy=1)) == "low_accuracy"
    assert categorize_issue(UserFeedback(accuracy=4, helpfulness=2)) == "not_helpful"
    assert categorize_issue(UserFeedback(specific_feedback="That is WRONG")) == "incorrect_information"
    assert categorize_issue(UserFeedback(specific_feedback="confusing answer")) == "confusing_response"
    assert categorize_issue(UserFeedback(rating=FeedbackRating.negative)) == "other"


def test_calculate_priority() -> None:
    assert calculate_priority(UserFeedback(accuracy=1, helpfulness=2)) == Priority.high
    assert calculate_priority(UserFeedback(accuracy=2)) == Priority.medium
    assert calculate_priority(UserFeedback(rating=FeedbackRating.negative)) == Priority.low


def test_suggest_improvement_has_a_default() -> None:
    assert suggest_improvement("low_accuracy") == "Improve training data for this food type or scenario"
    assert suggest_improvement("other") == "Review user feedback for specific improvements"


def test_slow_response_boundary() -> None:
    assert "slow_response" in find_anomalies(interaction(response_time=10001), THRESHOLDS)
    assert "slow_response" not in find_anomalies(interaction(response_time=10000), THRESHOLDS)


@pytest.mark.parametrize(
    "times_asked,up,down",
    [(0, 0.0, 0.0), (101, 0.29, 0.1), (3, 0.2, 0.51), (500, 0.9, 0.05)],
)
def test_should_retire_is_idempotent(times_asked, up, down) -> None:
    assert should_retire(times_asked, up, down, THRESHOLDS) == should_retire(times_asked, up, down, THRESHOLDS)
