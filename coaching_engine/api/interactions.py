import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from coaching_engine.api.auth import get_current_user
from coaching_engine.core.entities import (
    ABTest,
    ABTestDefinition,
    AIInteraction,
    ClarificationMetric,
    ImprovementOpportunity,
    InteractionRequest,
    InteractionResponse,
    InteractionType,
    ModelPerformanceReport,
    PerformanceMetrics,
    RealtimeMetricsSnapshot,
    ReportPeriod,
    UserFeedback,
    utc_now,
)
from coaching_engine.core.errors import FeedbackAlreadyRecordedError, InteractionNotFoundError, PersistenceError
from coaching_engine.db.models import AIInteractionRecord, User
from coaching_engine.db.session import get_db
from coaching_engine.services.performance_monitor import ExportFormat, PerformanceMonitor, get_performance_monitor

router = APIRouter(prefix="/ai", tags=["ai"])
logger = logging.getLogger("uvicorn.error")


class InteractionCreateRequest(BaseModel):
    id: Optional[str] = Field(default=None, min_length=1, max_length=128)
    timestamp: Optional[datetime] = None
    interaction_type: InteractionType
    request: InteractionRequest
    response: InteractionResponse
    metrics: PerformanceMetrics


class InteractionTrackedResponse(BaseModel):
    id: str
    tracked: bool


class FeedbackResponse(BaseModel):
    interaction_id: str
    opportunity: Optional[ImprovementOpportunity] = None


class ClarificationPerformanceResponse(BaseModel):
    effective: list[ClarificationMetric]
    ineffective: list[ClarificationMetric]
    to_retire: list[ClarificationMetric]


@router.post("/interactions", response_model=InteractionTrackedResponse, status_code=status.HTTP_201_CREATED)
def track_interaction(
    payload: InteractionCreateRequest,
    user: User = Depends(get_current_user),
    monitor: PerformanceMonitor = Depends(get_performance_monitor),
) -> InteractionTrackedResponse:
    interaction = AIInteraction(
        id=payload.id or uuid.uuid4().hex,
        user_id=user.id,
        timestamp=payload.timestamp or utc_now(),
        interaction_type=payload.interaction_type,
        request=payload.request,
        response=payload.response,
        metrics=payload.metrics,
    )
    tracked = monitor.track_interaction(interaction)
    return InteractionTrackedResponse(id=interaction.id, tracked=tracked)


@router.post("/interactions/{interaction_id}/feedback", response_model=FeedbackResponse)
def submit_interaction_feedback(
    interaction_id: str,
    payload: UserFeedback,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    monitor: PerformanceMonitor = Depends(get_performance_monitor),
) -> FeedbackResponse:
    owner = db.query(AIInteractionRecord.user_id).filter(AIInteractionRecord.id == interaction_id).scalar()
    if owner is None or owner != user.id:
        raise HTTPException(status_code=404, detail="Interaction not found")
    try:
        opportunity = monitor.process_feedback(interaction_id, payload)
    except InteractionNotFoundError:
        raise HTTPException(status_code=404, detail="Interaction not found")
    except FeedbackAlreadyRecordedError:
        raise HTTPException(status_code=409, detail="Feedback already recorded for this interaction")
    except PersistenceError as exc:
        logger.exception("interaction_feedback_persist_error user_id=%s interaction_id=%s", user.id, interaction_id)
        raise HTTPException(status_code=503, detail="Feedback could not be saved") from exc
    return FeedbackResponse(interaction_id=interaction_id, opportunity=opportunity)


@router.get("/metrics/realtime", response_model=RealtimeMetricsSnapshot)
def realtime_metrics(
    _: User = Depends(get_current_user),
    monitor: PerformanceMonitor = Depends(get_performance_monitor),
) -> RealtimeMetricsSnapshot:
    return monitor.get_realtime_metrics()


@router.get("/clarifications/performance", response_model=ClarificationPerformanceResponse)
def clarification_performance(
    _: User = Depends(get_current_user),
    monitor: PerformanceMonitor = Depends(get_performance_monitor),
) -> ClarificationPerformanceResponse:
    return ClarificationPerformanceResponse(**monitor.get_clarification_performance())


@router.get("/reports/{period}", response_model=list[ModelPerformanceReport])
def performance_report(
    period: ReportPeriod,
    _: User = Depends(get_current_user),
    monitor: PerformanceMonitor = Depends(get_performance_monitor),
) -> list[ModelPerformanceReport]:
    return monitor.generate_performance_report(period)


@router.get("/export")
def export_metrics(
    export_format: ExportFormat = Query(default=ExportFormat.json, alias="format"),
    _: User = Depends(get_current_user),
    monitor: PerformanceMonitor = Depends(get_performance_monitor),
) -> Response:
    body = monitor.export_metrics(export_format)
    if export_format == ExportFormat.csv:
        return PlainTextResponse(body, media_type="text/csv")
    return Response(content=body, media_type="application/json")


@router.post("/ab-tests", response_model=ABTest, status_code=status.HTTP_201_CREATED)
def register_ab_test(
    payload: ABTestDefinition,
    _: User = Depends(get_current_user),
    monitor: PerformanceMonitor = Depends(get_performance_monitor),
) -> ABTest:
    try:
        return monitor.register_ab_test(payload)
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail="A/B test could not be saved") from exc


@router.get("/ab-tests/{test_id}", response_model=ABTest)
def get_ab_test(
    test_id: str,
    _: User = Depends(get_current_user),
    monitor: PerformanceMonitor = Depends(get_performance_monitor),
) -> ABTest:
    test = monitor.get_ab_test(test_id)
    if test is None:
        raise HTTPException(status_code=404, detail="A/B test not found")
    return test
