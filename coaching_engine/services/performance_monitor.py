"""AI interaction tracking and the feedback learning loop.

Every gateway call is recorded as an ``AIInteraction``. Shared aggregates (the
realtime metrics row and one row per clarification question) only change via
``atomic_update``. Telemetry writes are best effort: failures are logged and
never reach the caller.
"""

import csv
import io
import json
import logging
import time
import uuid
from collections import Counter
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coaching_engine.core.config import MonitorThresholds, load_model_rates
from coaching_engine.core.entities import (
    REPORT_LOOKBACK_HOURS,
    ABTest,
    ABTestDefinition,
    AIInteraction,
    ClarificationMetric,
    ClarificationQuestion,
    ImprovementOpportunity,
    InteractionRequest,
    InteractionResponse,
    InteractionType,
    ModelMetrics,
    ModelPerformanceReport,
    OpportunityStatus,
    PerformanceMetrics,
    Priority,
    RealtimeMetricsSnapshot,
    ReportPeriod,
    UserFeedback,
    utc_now,
    validate_record,
)
from coaching_engine.core.errors import FeedbackAlreadyRecordedError, InteractionNotFoundError
from coaching_engine.db.models import (
    REALTIME_METRICS_KEY,
    ABTestRecord,
    AIInteractionRecord,
    AnomalyRecord,
    ClarificationMetricRecord,
    ImprovementOpportunityRecord,
    RealtimeMetrics,
)
from coaching_engine.db.session import SessionLocal
from coaching_engine.db.store import ConcurrentUpdateError, atomic_update, retry_once
from coaching_engine.services.llm import LLMClient, LLMJSONResult, ParseFailure

logger = logging.getLogger("uvicorn.error")

EXPORT_INTERACTION_LIMIT = 1000
TOP_ISSUE_LIMIT = 5

ISSUE_SUGGESTIONS = {
    "low_accuracy": "Improve training data for this food type or scenario",
    "not_helpful": "Enhance response relevance and actionability",
    "incorrect_information": "Update knowledge base and fact-checking",
    "confusing_response": "Simplify language and structure responses better",
}
DEFAULT_ISSUE_SUGGESTION = "Review user feedback for specific improvements"

REPORT_IMPROVEMENTS = {
    "low_accuracy": "Enhance training data quality and diversity",
    "slow_response": "Optimize prompt length and complexity",
    "high_token_usage": "Implement response summarization",
    "not_helpful": "Enhance response relevance and actionability",
    "incorrect_information": "Update knowledge base and fact-checking",
    "confusing_response": "Simplify language and structure responses better",
}

CSV_COLUMNS = [
    "record_type",
    "id",
    "timestamp",
    "interaction_type",
    "model",
    "response_time",
    "error_rate",
    "tokens_used",
    "satisfaction",
    "issue",
    "priority",
    "status",
    "question",
    "times_asked",
    "thumbs_up_rate",
    "thumbs_down_rate",
    "skip_rate",
    "should_retire",
]


class ExportFormat(str, Enum):
    json = "json"
    csv = "csv"


class AlertSink(Protocol):
    def send(self, opportunity: ImprovementOpportunity) -> None:
        ...


class LoggingAlertSink:
    def send(self, opportunity: ImprovementOpportunity) -> None:
        logger.error(
            "ai_performance_alert issue=%s priority=%s interaction_id=%s model=%s timestamp=%s",
            opportunity.issue,
            opportunity.priority.value,
            opportunity.interaction_id,
            opportunity.model_used,
            opportunity.timestamp.isoformat(),
        )


def find_anomalies(interaction: AIInteraction, thresholds: MonitorThresholds) -> list[str]:
    anomalies = []
    if interaction.metrics.response_time > thresholds.slow_response_ms:
        anomalies.append("slow_response")
    tokens = interaction.response.tokens_used
    if tokens is not None and tokens > thresholds.high_token_usage:
        anomalies.append("high_token_usage")
    if interaction.metrics.retry_count > thresholds.max_retries:
        anomalies.append("multiple_retries")
    confidence = interaction.response.confidence
    if confidence is not None and confidence < thresholds.low_confidence:
        anomalies.append("low_confidence")
    return anomalies


def should_retire(
    times_asked: int, thumbs_up_rate: float, thumbs_down_rate: float, thresholds: MonitorThresholds
) -> bool:
    return thumbs_down_rate > thresholds.retire_thumbs_down_rate or (
        times_asked > thresholds.retire_min_times_asked and thumbs_up_rate < thresholds.retire_thumbs_up_floor
    )


def _rolling(mean: float, sample: float, count: int) -> float:
    return mean + (sample - mean) / count


def apply_clarification_feedback(
    row: ClarificationMetricRecord, feedback: UserFeedback, thresholds: MonitorThresholds
) -> None:
    row.times_asked = (row.times_asked or 0) + 1
    count = row.times_asked
    quality = feedback.clarification_quality
    row.thumbs_up_rate = _rolling(row.thumbs_up_rate or 0.0, float(quality is not None and quality >= 4), count)
    row.thumbs_down_rate = _rolling(row.thumbs_down_rate or 0.0, float(quality is not None and quality <= 2), count)
    row.skip_rate = _rolling(row.skip_rate or 0.0, float(quality is None), count)
    if feedback.accuracy is not None:
        row.accuracy_samples = (row.accuracy_samples or 0) + 1
        row.average_impact_on_accuracy = _rolling(
            row.average_impact_on_accuracy or 0.0, feedback.accuracy, row.accuracy_samples
        )
    row.should_retire = should_retire(row.times_asked, row.thumbs_up_rate, row.thumbs_down_rate, thresholds)
    row.last_updated = utc_now()


def categorize_issue(feedback: UserFeedback) -> str:
    if feedback.accuracy is not None and feedback.accuracy <= 2:
        return "low_accuracy"
    if feedback.helpfulness is not None and feedback.helpfulness <= 2:
        return "not_helpful"
    text = (feedback.specific_feedback or "").lower()
    if "wrong" in text or "incorrect" in text:
        return "incorrect_information"
    if "confus" in text or "unclear" in text:
        return "confusing_response"
    return "other"


def calculate_priority(feedback: UserFeedback) -> Priority:
    score = (feedback.accuracy if feedback.accuracy is not None else 3) + (
        feedback.helpfulness if feedback.helpfulness is not None else 3
    )
    if score <= 3:
        return Priority.high
    if score <= 5:
        return Priority.medium
    return Priority.low


def suggest_improvement(issue: str) -> str:
    return ISSUE_SUGGESTIONS.get(issue, DEFAULT_ISSUE_SUGGESTION)


def report_improvement(issue: str) -> str:
    return REPORT_IMPROVEMENTS.get(issue, f"Address {issue} through targeted improvements")


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _loads(raw: Optional[str], fallback: Any = None) -> Any:
    if not raw:
        return fallback
    return json.loads(raw)


def interaction_to_row(interaction: AIInteraction) -> AIInteractionRecord:
    return AIInteractionRecord(
        id=interaction.id,
        user_id=interaction.user_id,
        created_at=interaction.timestamp,
        interaction_type=interaction.interaction_type.value,
        model_used=interaction.request.model_used,
        request_input_json=_dumps(interaction.request.input),
        request_context_json=_dumps(interaction.request.context),
        response_output_json=_dumps(interaction.response.output),
        clarification_questions_json=_dumps(
            [question.model_dump(mode="json") for question in interaction.response.clarification_questions]
        ),
        processing_time_ms=interaction.response.processing_time,
        tokens_used=interaction.response.tokens_used,
        confidence=interaction.response.confidence,
        response_time_ms=interaction.metrics.response_time,
        error_rate=interaction.metrics.error_rate,
        retry_count=interaction.metrics.retry_count,
        cache_hit=interaction.metrics.cache_hit,
        edge_cases_json=_dumps(list(interaction.metrics.edge_cases)),
        feedback_json=interaction.feedback.model_dump_json() if interaction.feedback else None,
    )


def interaction_from_row(row: AIInteractionRecord) -> AIInteraction:
    feedback = _loads(row.feedback_json)
    return AIInteraction(
        id=row.id,
        user_id=row.user_id,
        timestamp=row.created_at,
        interaction_type=row.interaction_type,
        request=InteractionRequest(
            input=_loads(row.request_input_json, {}),
            context=_loads(row.request_context_json, {}),
            model_used=row.model_used,
        ),
        response=InteractionResponse(
            output=_loads(row.response_output_json),
            confidence=row.confidence,
            processing_time=row.processing_time_ms,
            tokens_used=row.tokens_used,
            clarification_questions=tuple(
                ClarificationQuestion.model_validate(item) for item in _loads(row.clarification_questions_json, [])
            ),
        ),
        metrics=PerformanceMetrics(
            response_time=row.response_time_ms,
            error_rate=row.error_rate,
            retry_count=row.retry_count,
            cache_hit=row.cache_hit,
            edge_cases=tuple(_loads(row.edge_cases_json, [])),
        ),
        feedback=UserFeedback.model_validate(feedback) if feedback else None,
    )


def clarification_from_row(row: ClarificationMetricRecord) -> ClarificationMetric:
    return ClarificationMetric(
        question_id=row.question_id,
        question=row.question,
        category=row.category,
        times_asked=row.times_asked,
        thumbs_up_rate=min(1.0, max(0.0, row.thumbs_up_rate)),
        thumbs_down_rate=min(1.0, max(0.0, row.thumbs_down_rate)),
        skip_rate=min(1.0, max(0.0, row.skip_rate)),
        accuracy_samples=row.accuracy_samples,
        average_impact_on_accuracy=row.average_impact_on_accuracy,
        should_retire=row.should_retire,
    )


def opportunity_from_row(row: ImprovementOpportunityRecord) -> ImprovementOpportunity:
    return ImprovementOpportunity(
        id=row.id,
        timestamp=row.created_at,
        interaction_id=row.interaction_id,
        interaction_type=row.interaction_type,
        model_used=row.model_used,
        issue=row.issue,
        priority=row.priority,
        status=row.status,
        suggested_improvement=row.suggested_improvement,
        user_feedback=UserFeedback.model_validate_json(row.user_feedback_json),
    )


def ab_test_from_row(row: ABTestRecord) -> ABTest:
    return ABTest(
        id=row.id,
        name=row.name,
        variants=tuple(_loads(row.variants_json, [])),
        sample_size=row.sample_size,
        success_metric=row.success_metric,
        status=row.status,
        started_at=row.started_at,
    )


def _new_realtime_row() -> RealtimeMetrics:
    return RealtimeMetrics(
        id=REALTIME_METRICS_KEY,
        total_requests=0,
        requests_by_type_json=_dumps({item.value: 0 for item in InteractionType}),
        average_response_time=0.0,
        error_count=0,
        hourly_distribution_json=_dumps([0] * 24),
    )


class PerformanceMonitor:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        thresholds: Optional[MonitorThresholds] = None,
        model_rates: Optional[dict[str, float]] = None,
        alert_sink: Optional[AlertSink] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.session_factory = session_factory
        self.thresholds = thresholds or MonitorThresholds()
        self.model_rates = model_rates if model_rates is not None else load_model_rates()
        self.alert_sink = alert_sink or LoggingAlertSink()
        self.clock = clock

    # -- tracking -----------------------------------------------------------

    def track_interaction(self, interaction: AIInteraction) -> bool:
        """Record one gateway call. Returns False for a duplicate id or a failed write.

        The interaction row and the realtime aggregate commit in one
        transaction, so a failed write leaves nothing behind and a retry with
        the same id is counted exactly once.
        """
        interaction = validate_record(AIInteraction, interaction, "interaction")
        try:
            recorded = self._record_interaction(interaction)
        except (SQLAlchemyError, ConcurrentUpdateError):
            logger.exception("ai_interaction_store_error interaction_id=%s", interaction.id)
            return False
        if not recorded:
            logger.info("ai_interaction_duplicate interaction_id=%s", interaction.id)
            return False

        logger.info(
            "ai_interaction interaction_type=%s model_used=%s response_time=%s error_rate=%s user_id=%s",
            interaction.interaction_type.value,
            interaction.request.model_used,
            interaction.metrics.response_time,
            interaction.metrics.error_rate,
            interaction.user_id,
        )
        self.detect_anomalies(interaction)
        return True

    def _record_interaction(self, interaction: AIInteraction) -> bool:
        def _insert(db: Session) -> bool:
            # A concurrent insert of the same id fails the commit and is retried into this check.
            if db.get(AIInteractionRecord, interaction.id) is not None:
                return False
            db.add(interaction_to_row(interaction))
            return True

        def _apply(row: RealtimeMetrics) -> bool:
            by_type = _loads(row.requests_by_type_json, {})
            hourly = _loads(row.hourly_distribution_json, []) or [0] * 24
            row.total_requests = (row.total_requests or 0) + 1
            by_type[interaction.interaction_type.value] = by_type.get(interaction.interaction_type.value, 0) + 1
            row.average_response_time = _rolling(
                row.average_response_time or 0.0, interaction.metrics.response_time, row.total_requests
            )
            if interaction.metrics.error_rate > 0:
                row.error_count = (row.error_count or 0) + 1
            hourly[interaction.timestamp.hour] += 1
            row.requests_by_type_json = _dumps(by_type)
            row.hourly_distribution_json = _dumps(hourly)
            row.last_updated = self.clock()
            return True

        recorded = atomic_update(
            self.session_factory, RealtimeMetrics, REALTIME_METRICS_KEY, _apply, _new_realtime_row, prepare=_insert
        )
        return bool(recorded)

    def detect_anomalies(self, interaction: AIInteraction) -> list[str]:
        anomalies = find_anomalies(interaction, self.thresholds)
        if not anomalies:
            return anomalies
        db = self.session_factory()
        try:
            db.add(
                AnomalyRecord(
                    interaction_id=interaction.id,
                    created_at=self.clock(),
                    anomalies_csv=",".join(anomalies),
                )
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("ai_anomaly_store_error interaction_id=%s anomalies=%s", interaction.id, anomalies)
        finally:
            db.close()
        logger.warning("ai_anomaly_detected interaction_id=%s anomalies=%s", interaction.id, ",".join(anomalies))
        return anomalies

    def get_realtime_metrics(self) -> RealtimeMetricsSnapshot:
        db = self.session_factory()
        try:
            row = db.get(RealtimeMetrics, REALTIME_METRICS_KEY)
            if row is None:
                return RealtimeMetricsSnapshot()
            return RealtimeMetricsSnapshot(
                total_requests=row.total_requests,
                requests_by_type=_loads(row.requests_by_type_json, {}),
                average_response_time=row.average_response_time,
                error_count=row.error_count,
                hourly_distribution=tuple(_loads(row.hourly_distribution_json, [0] * 24)),
                last_updated=row.last_updated,
            )
        finally:
            db.close()

    # -- feedback -----------------------------------------------------------

    def process_feedback(self, interaction_id: str, feedback: UserFeedback) -> Optional[ImprovementOpportunity]:
        """Attach feedback to a stored interaction and run the learning bookkeeping.

        Attaching the feedback is the primary write: a missing interaction or a
        second submission raises. Clarification metrics, improvement
        opportunities and alerts are secondary and only logged on failure.
        Returns the opportunity opened for negative feedback, if any.
        """
        feedback = validate_record(UserFeedback, feedback, "feedback")

        def _attach(db: Session) -> AIInteraction:
            # Conditional update: only the first submission for an interaction lands.
            updated = (
                db.query(AIInteractionRecord)
                .filter(AIInteractionRecord.id == interaction_id, AIInteractionRecord.feedback_json.is_(None))
                .update(
                    {
                        AIInteractionRecord.feedback_json: feedback.model_dump_json(),
                        AIInteractionRecord.feedback_received_at: self.clock(),
                    },
                    synchronize_session=False,
                )
            )
            row = db.get(AIInteractionRecord, interaction_id)
            if row is None:
                raise InteractionNotFoundError(interaction_id)
            if not updated:
                raise FeedbackAlreadyRecordedError("interaction", interaction_id)
            return interaction_from_row(row)

        interaction = retry_once("interaction_feedback", self.session_factory, _attach)

        for question in interaction.response.clarification_questions:
            try:
                self._update_clarification_metric(question, feedback)
            except Exception:
                logger.exception(
                    "clarification_metric_error interaction_id=%s question_id=%s", interaction_id, question.id
                )

        if not feedback.is_negative:
            return None
        try:
            return self.log_improvement_opportunity(interaction, feedback)
        except Exception:
            logger.exception("improvement_opportunity_error interaction_id=%s", interaction_id)
            return None

    def _update_clarification_metric(self, question: ClarificationQuestion, feedback: UserFeedback) -> None:
        def _create() -> ClarificationMetricRecord:
            return ClarificationMetricRecord(
                question_id=question.id,
                question=question.question,
                category=question.category,
                times_asked=0,
                thumbs_up_rate=0.0,
                thumbs_down_rate=0.0,
                skip_rate=0.0,
                accuracy_samples=0,
                average_impact_on_accuracy=0.0,
                should_retire=False,
            )

        atomic_update(
            self.session_factory,
            ClarificationMetricRecord,
            question.id,
            lambda row: apply_clarification_feedback(row, feedback, self.thresholds),
            _create,
        )

    def log_improvement_opportunity(
        self, interaction: AIInteraction, feedback: UserFeedback
    ) -> ImprovementOpportunity:
        issue = categorize_issue(feedback)
        opportunity = ImprovementOpportunity(
            id=uuid.uuid4().hex,
            timestamp=self.clock(),
            interaction_id=interaction.id,
            interaction_type=interaction.interaction_type,
            model_used=interaction.request.model_used,
            issue=issue,
            priority=calculate_priority(feedback),
            status=OpportunityStatus.pending,
            suggested_improvement=suggest_improvement(issue),
            user_feedback=feedback,
        )
        db = self.session_factory()
        try:
            db.add(
                ImprovementOpportunityRecord(
                    id=opportunity.id,
                    created_at=opportunity.timestamp,
                    interaction_id=opportunity.interaction_id,
                    interaction_type=opportunity.interaction_type.value,
                    model_used=opportunity.model_used,
                    issue=opportunity.issue,
                    priority=opportunity.priority.value,
                    status=opportunity.status.value,
                    suggested_improvement=opportunity.suggested_improvement,
                    user_feedback_json=feedback.model_dump_json(),
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        if opportunity.priority == Priority.high:
            try:
                self.alert_sink.send(opportunity)
            except Exception:
                logger.exception("ai_alert_error opportunity_id=%s", opportunity.id)
        return opportunity

    def list_clarification_metrics(self) -> list[ClarificationMetric]:
        db = self.session_factory()
        try:
            rows = db.query(ClarificationMetricRecord).order_by(ClarificationMetricRecord.question_id.asc()).all()
            return [clarification_from_row(row) for row in rows]
        finally:
            db.close()

    def get_clarification_metric(self, question_id: str) -> Optional[ClarificationMetric]:
        db = self.session_factory()
        try:
            row = db.get(ClarificationMetricRecord, question_id)
            return clarification_from_row(row) if row is not None else None
        finally:
            db.close()

    def get_clarification_performance(self) -> dict[str, list[ClarificationMetric]]:
        metrics = self.list_clarification_metrics()
        return {
            "effective": [m for m in metrics if m.thumbs_up_rate > self.thresholds.effective_thumbs_up_rate],
            "ineffective": [m for m in metrics if m.thumbs_down_rate > self.thresholds.ineffective_thumbs_down_rate],
            "to_retire": [m for m in metrics if m.should_retire],
        }

    # -- reporting ----------------------------------------------------------

    def generate_performance_report(
        self, period: ReportPeriod, now: Optional[datetime] = None
    ) -> list[ModelPerformanceReport]:
        period = ReportPeriod(period)
        since = (now or self.clock()) - timedelta(hours=REPORT_LOOKBACK_HOURS[period])
        db = self.session_factory()
        try:
            return [
                self._model_report(db, model, rate, period, since) for model, rate in self.model_rates.items()
            ]
        finally:
            db.close()

    def _model_report(
        self, db: Session, model: str, rate: float, period: ReportPeriod, since: datetime
    ) -> ModelPerformanceReport:
        rows = (
            db.query(AIInteractionRecord)
            .filter(AIInteractionRecord.model_used == model, AIInteractionRecord.created_at >= since)
            .all()
        )
        total = len(rows)
        helpfulness = []
        for row in rows:
            feedback = _loads(row.feedback_json)
            if feedback and feedback.get("helpfulness") is not None:
                helpfulness.append(feedback["helpfulness"])
        avg_tokens = sum(row.tokens_used or 0 for row in rows) / total if total else 0.0
        metrics = ModelMetrics(
            total_requests=total,
            success_rate=sum(1 for row in rows if row.error_rate == 0) / total if total else 0.0,
            average_response_time=sum(row.response_time_ms for row in rows) / total if total else 0.0,
            average_tokens_used=avg_tokens,
            user_satisfaction=sum(helpfulness) / len(helpfulness) if helpfulness else 0.0,
            estimated_cost=avg_tokens * rate,
        )
        top_issues = self._top_issues(db, model, since)
        return ModelPerformanceReport(
            model=model,
            period=period,
            metrics=metrics,
            top_issues=tuple(top_issues),
            improvements=tuple(report_improvement(issue) for issue in top_issues),
        )

    def _top_issues(self, db: Session, model: str, since: datetime) -> list[str]:
        counts: Counter = Counter()
        opportunities = (
            db.query(ImprovementOpportunityRecord.issue)
            .filter(
                ImprovementOpportunityRecord.model_used == model,
                ImprovementOpportunityRecord.created_at >= since,
            )
            .all()
        )
        counts.update(issue for (issue,) in opportunities)
        anomalies = (
            db.query(AnomalyRecord.anomalies_csv)
            .join(AIInteractionRecord, AIInteractionRecord.id == AnomalyRecord.interaction_id)
            .filter(AIInteractionRecord.model_used == model, AnomalyRecord.created_at >= since)
            .all()
        )
        for (tags,) in anomalies:
            counts.update(tag for tag in tags.split(",") if tag)
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [issue for issue, _ in ranked[:TOP_ISSUE_LIMIT]]

    def export_metrics(self, export_format: ExportFormat = ExportFormat.json) -> str:
        export_format = ExportFormat(export_format)
        db = self.session_factory()
        try:
            interactions = [
                interaction_from_row(row)
                for row in db.query(AIInteractionRecord)
                .order_by(AIInteractionRecord.created_at.desc())
                .limit(EXPORT_INTERACTION_LIMIT)
                .all()
            ]
            clarifications = [
                clarification_from_row(row)
                for row in db.query(ClarificationMetricRecord).order_by(ClarificationMetricRecord.question_id).all()
            ]
            opportunities = [
                opportunity_from_row(row)
                for row in db.query(ImprovementOpportunityRecord)
                .order_by(ImprovementOpportunityRecord.created_at.desc())
                .all()
            ]
        finally:
            db.close()

        if export_format == ExportFormat.json:
            return json.dumps(
                {
                    "interactions": [item.model_dump(mode="json") for item in interactions],
                    "clarifications": [item.model_dump(mode="json") for item in clarifications],
                    "opportunities": [item.model_dump(mode="json") for item in opportunities],
                    "exported_at": self.clock().isoformat(),
                },
                indent=2,
            )
        return self._export_csv(interactions, clarifications, opportunities)

    @staticmethod
    def _export_csv(
        interactions: Sequence[AIInteraction],
        clarifications: Sequence[ClarificationMetric],
        opportunities: Sequence[ImprovementOpportunity],
    ) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, restval="", lineterminator="\n")
        writer.writeheader()
        for item in interactions:
            writer.writerow(
                {
                    "record_type": "interaction",
                    "id": item.id,
                    "timestamp": item.timestamp.isoformat(),
                    "interaction_type": item.interaction_type.value,
                    "model": item.request.model_used,
                    "response_time": item.metrics.response_time,
                    "error_rate": item.metrics.error_rate,
                    "tokens_used": item.response.tokens_used if item.response.tokens_used is not None else "",
                    "satisfaction": item.feedback.helpfulness if item.feedback and item.feedback.helpfulness else "",
                }
            )
        for item in clarifications:
            writer.writerow(
                {
                    "record_type": "clarification",
                    "id": item.question_id,
                    "question": item.question,
                    "times_asked": item.times_asked,
                    "thumbs_up_rate": round(item.thumbs_up_rate, 4),
                    "thumbs_down_rate": round(item.thumbs_down_rate, 4),
                    "skip_rate": round(item.skip_rate, 4),
                    "should_retire": item.should_retire,
                }
            )
        for item in opportunities:
            writer.writerow(
                {
                    "record_type": "opportunity",
                    "id": item.id,
                    "timestamp": item.timestamp.isoformat(),
                    "interaction_type": item.interaction_type.value,
                    "model": item.model_used,
                    "issue": item.issue,
                    "priority": item.priority.value,
                    "status": item.status.value,
                }
            )
        return buffer.getvalue()

    # -- A/B tests ----------------------------------------------------------

    def register_ab_test(self, definition: ABTestDefinition) -> ABTest:
        definition = validate_record(ABTestDefinition, definition, "ab_test")
        test = ABTest(
            id=uuid.uuid4().hex,
            name=definition.name,
            variants=definition.variants,
            sample_size=definition.sample_size,
            success_metric=definition.success_metric,
            status="running",
            started_at=self.clock(),
        )

        def _write(db: Session) -> None:
            db.add(
                ABTestRecord(
                    id=test.id,
                    name=test.name,
                    variants_json=_dumps([variant.model_dump() for variant in test.variants]),
                    sample_size=test.sample_size,
                    success_metric=test.success_metric,
                    status=test.status,
                    started_at=test.started_at,
                )
            )

        retry_once("register_ab_test", self.session_factory, _write)
        logger.info("ab_test_started test_id=%s name=%s variants=%s", test.id, test.name, len(test.variants))
        return test

    def get_ab_test(self, test_id: str) -> Optional[ABTest]:
        db = self.session_factory()
        try:
            row = db.get(ABTestRecord, test_id)
            return ab_test_from_row(row) if row is not None else None
        finally:
            db.close()


class TrackedLLMClient:
    """Gateway client wrapper that records every call with a ``PerformanceMonitor``."""

    def __init__(
        self,
        inner: LLMClient,
        monitor: PerformanceMonitor,
        user_id: str,
        interaction_type: InteractionType = InteractionType.coaching,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        self.inner = inner
        self.monitor = monitor
        self.user_id = user_id
        self.interaction_type = interaction_type
        self.context = context or {}

    def generate_json(
        self, prompt: str, task_type: str = "reasoning", system_instruction: str = ""
    ) -> LLMJSONResult:
        started = time.perf_counter()
        try:
            result = self.inner.generate_json(prompt, task_type=task_type, system_instruction=system_instruction)
        except Exception as exc:
            self._track(prompt, task_type, started, None, error=str(exc)[:200])
            raise
        self._track(prompt, task_type, started, result)
        return result

    def _model_name(self, task_type: str, result: Optional[LLMJSONResult]) -> str:
        if result is not None and result.model:
            return result.model
        model_for_task = getattr(self.inner, "model_for_task", None)
        if model_for_task is not None:
            try:
                return model_for_task(task_type)
            except ValueError:
                pass
        return "unknown"

    def _track(
        self,
        prompt: str,
        task_type: str,
        started: float,
        result: Optional[LLMJSONResult],
        error: Optional[str] = None,
    ) -> None:
        elapsed_ms = (time.perf_counter() - started) * 1000
        failed = result is None or isinstance(result, ParseFailure)
        if result is None:
            output: Any = {"error": error}
        elif isinstance(result, ParseFailure):
            output = {"parse_failure": result.reason, "raw": result.raw[:500]}
        else:
            output = result.payload
        try:
            interaction = AIInteraction(
                id=uuid.uuid4().hex,
                user_id=self.user_id,
                timestamp=self.monitor.clock(),
                interaction_type=self.interaction_type,
                request=InteractionRequest(
                    input={"prompt": prompt[:2000], "task_type": task_type},
                    context=self.context,
                    model_used=self._model_name(task_type, result),
                ),
                response=InteractionResponse(
                    output=output,
                    processing_time=elapsed_ms,
                    tokens_used=result.tokens_used if result is not None else None,
                ),
                metrics=PerformanceMetrics(
                    response_time=elapsed_ms,
                    error_rate=1 if failed else 0,
                    edge_cases=("parse_failure",) if isinstance(result, ParseFailure) else (),
                ),
            )
            self.monitor.track_interaction(interaction)
        except Exception:
            logger.exception("ai_interaction_track_error user_id=%s task_type=%s", self.user_id, task_type)


def get_performance_monitor() -> PerformanceMonitor:
    return PerformanceMonitor(
        session_factory=SessionLocal,
        thresholds=MonitorThresholds.from_env(),
        model_rates=load_model_rates(),
        alert_sink=LoggingAlertSink(),
    )
