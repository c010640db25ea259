import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from coaching_engine.api.auth import get_current_user
from coaching_engine.core.coaching import CoachingEngine
from coaching_engine.core.context_builder import build_coaching_context
from coaching_engine.core.entities import Insight, InsightFeedback, InteractionType, Timeframe
from coaching_engine.core.errors import FeedbackAlreadyRecordedError, InsightNotFoundError, PersistenceError
from coaching_engine.core.insight_store import list_active_insights, process_insight_feedback
from coaching_engine.core.prioritizer import InsightPrioritizer
from coaching_engine.db.models import User
from coaching_engine.db.session import SessionLocal, get_db
from coaching_engine.services.llm import LLMClient, get_llm_client
from coaching_engine.services.performance_monitor import (
    PerformanceMonitor,
    TrackedLLMClient,
    get_performance_monitor,
)

router = APIRouter(prefix="/insights", tags=["insights"])
logger = logging.getLogger("uvicorn.error")


class GenerateInsightsRequest(BaseModel):
    timeframe: Timeframe = Timeframe.daily


class GenerateInsightsResponse(BaseModel):
    insights: list[Insight]
    persisted: bool


class InsightListResponse(BaseModel):
    items: list[Insight]


def build_engine(llm_client: LLMClient, monitor: PerformanceMonitor, user_id: str) -> CoachingEngine:
    tracked = TrackedLLMClient(
        llm_client,
        monitor,
        user_id=user_id,
        interaction_type=InteractionType.coaching,
        context={"purpose": "insight_rerank"},
    )
    return CoachingEngine(prioritizer=InsightPrioritizer(tracked), session_factory=SessionLocal)


@router.post("/generate", response_model=GenerateInsightsResponse)
def generate_insights(
    payload: GenerateInsightsRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    llm_client: LLMClient = Depends(get_llm_client),
    monitor: PerformanceMonitor = Depends(get_performance_monitor),
) -> GenerateInsightsResponse:
    context = build_coaching_context(db, user.id, payload.timeframe)
    engine = build_engine(llm_client, monitor, user.id)
    insights, persisted = engine.generate_and_store(context)
    if not persisted:
        logger.warning("insights_not_persisted user_id=%s count=%s", user.id, len(insights))
    return GenerateInsightsResponse(insights=insights, persisted=persisted)


@router.get("", response_model=InsightListResponse)
def list_insights(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> InsightListResponse:
    return InsightListResponse(items=list_active_insights(db, user.id))


@router.post("/{insight_id}/feedback", response_model=Insight, status_code=status.HTTP_200_OK)
def submit_insight_feedback(
    insight_id: str,
    payload: InsightFeedback,
    user: User = Depends(get_current_user),
) -> Insight:
    try:
        return process_insight_feedback(SessionLocal, user.id, insight_id, payload)
    except InsightNotFoundError:
        raise HTTPException(status_code=404, detail="Insight not found")
    except FeedbackAlreadyRecordedError:
        raise HTTPException(status_code=409, detail="Feedback already recorded for this insight")
    except PersistenceError as exc:
        logger.exception("insight_feedback_persist_error user_id=%s insight_id=%s", user.id, insight_id)
        raise HTTPException(status_code=503, detail="Feedback could not be saved") from exc
