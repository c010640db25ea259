import json
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from coaching_engine.core.config import INSIGHT_PREVIOUS_LIMIT, INSIGHT_RETENTION_DAYS
from coaching_engine.core.entities import Insight, InsightFeedback, utc_now
from coaching_engine.core.errors import FeedbackAlreadyRecordedError, InsightNotFoundError
from coaching_engine.db.models import CoachingInsight
from coaching_engine.db.store import retry_once

logger = logging.getLogger("uvicorn.error")


def insight_from_row(row: CoachingInsight) -> Insight:
    feedback = None
    if row.user_feedback_json:
        feedback = InsightFeedback.model_validate(json.loads(row.user_feedback_json))
    return Insight(
        id=row.id,
        type=row.insight_type,
        title=row.title,
        description=row.description,
        data_supporting=json.loads(row.data_supporting_json or "{}"),
        action_items=tuple(json.loads(row.action_items_json)),
        priority=row.priority,
        impact=row.impact,
        created_at=row.created_at,
        user_feedback=feedback,
    )


def save_insights(
    session_factory: Callable[[], Session],
    user_id: str,
    insights: Sequence[Insight],
    retention_days: int = INSIGHT_RETENTION_DAYS,
) -> None:
    def _write(db: Session) -> None:
        for insight in insights:
            db.merge(
                CoachingInsight(
                    id=insight.id,
                    user_id=user_id,
                    insight_type=insight.type.value,
                    title=insight.title,
                    description=insight.description,
                    data_supporting_json=json.dumps(insight.data_supporting, default=str),
                    action_items_json=json.dumps(list(insight.action_items)),
                    priority=insight.priority.value,
                    impact=insight.impact,
                    created_at=insight.created_at,
                    expires_at=insight.created_at + timedelta(days=retention_days),
                )
            )

    retry_once("save_insights", session_factory, _write)


def list_active_insights(db: Session, user_id: str, now: Optional[datetime] = None) -> list[Insight]:
    timestamp = now or utc_now()
    rows = (
        db.query(CoachingInsight)
        .filter(CoachingInsight.user_id == user_id, CoachingInsight.expires_at > timestamp)
        .order_by(CoachingInsight.created_at.desc())
        .all()
    )
    return [insight_from_row(row) for row in rows]


def list_previous_insights(db: Session, user_id: str, limit: int = INSIGHT_PREVIOUS_LIMIT) -> list[Insight]:
    rows = (
        db.query(CoachingInsight)
        .filter(CoachingInsight.user_id == user_id)
        .order_by(CoachingInsight.created_at.desc())
        .limit(limit)
        .all()
    )
    return [insight_from_row(row) for row in rows]


def process_insight_feedback(
    session_factory: Callable[[], Session],
    user_id: str,
    insight_id: str,
    feedback: InsightFeedback,
) -> Insight:
    def _attach(db: Session) -> Insight:
        owned = (CoachingInsight.id == insight_id, CoachingInsight.user_id == user_id)
        updated = (
            db.query(CoachingInsight)
            .filter(*owned, CoachingInsight.user_feedback_json.is_(None))
            .update(
                {
                    CoachingInsight.user_feedback_json: feedback.model_dump_json(),
                    CoachingInsight.feedback_received_at: utc_now(),
                },
                synchronize_session=False,
            )
        )
        row = db.query(CoachingInsight).filter(*owned).first()
        if row is None:
            raise InsightNotFoundError(insight_id)
        if not updated:
            raise FeedbackAlreadyRecordedError("insight", insight_id)
        return insight_from_row(row)

    insight = retry_once("insight_feedback", session_factory, _attach)
    if not feedback.was_helpful:
        logger.info(
            "insight_feedback_negative user_id=%s insight_id=%s title=%s comments=%s",
            user_id,
            insight_id,
            insight.title,
            (feedback.additional_comments or "")[:200],
        )
    return insight
