from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from coaching_engine.core.errors import MalformedInputError


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_wall_clock(value: datetime) -> datetime:
    # Behavioral records keep the hour the user logged them at.
    return value.replace(tzinfo=None)


class Priority(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


PRIORITY_ORDER: dict[Priority, int] = {Priority.high: 0, Priority.medium: 1, Priority.low: 2}


class InsightType(str, Enum):
    pattern = "pattern"
    recommendation = "recommendation"
    warning = "warning"
    achievement = "achievement"
    opportunity = "opportunity"


class Timeframe(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


TIMEFRAME_DAYS: dict[Timeframe, int] = {Timeframe.daily: 1, Timeframe.weekly: 7, Timeframe.monthly: 30}


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class FoodItem(_Record):
    name: str = Field(min_length=1, max_length=200)
    quantity: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = Field(default=None, max_length=32)
    calories: Optional[float] = Field(default=None, ge=0)
    protein: Optional[float] = Field(default=None, ge=0)
    carbs: Optional[float] = Field(default=None, ge=0)
    fat: Optional[float] = Field(default=None, ge=0)


class MealRecord(_Record):
    id: str
    timestamp: datetime
    meal_type: str = Field(min_length=1, max_length=32)
    calories: float = Field(default=0, ge=0)
    protein: float = Field(default=0, ge=0)
    carbs: float = Field(default=0, ge=0)
    fat: float = Field(default=0, ge=0)
    fiber: float = Field(default=0, ge=0)
    foods: tuple[FoodItem, ...] = ()
    post_meal_energy: Optional[int] = Field(default=None, ge=1, le=10)
    post_meal_satisfaction: Optional[int] = Field(default=None, ge=1, le=10)

    @field_validator("timestamp")
    @classmethod
    def _wall_clock(cls, value: datetime) -> datetime:
        return to_wall_clock(value)

    @field_validator("meal_type")
    @classmethod
    def _lower_meal_type(cls, value: str) -> str:
        return value.strip().lower()


class SleepRecord(_Record):
    """One night of sleep. ``date`` is the bedtime of that night."""

    date: datetime
    duration_hours: float = Field(ge=0, le=24)
    quality: int = Field(ge=1, le=10)
    deep_sleep_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    pre_sleep_meal_time: Optional[datetime] = None
    pre_sleep_meal_size: Optional[str] = Field(default=None, pattern="^(light|moderate|heavy)$")

    @field_validator("date", "pre_sleep_meal_time")
    @classmethod
    def _wall_clock(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_wall_clock(value) if value is not None else None


class EnergySample(_Record):
    timestamp: datetime
    level: int = Field(ge=1, le=10)
    context: str = Field(default="check-in", max_length=32)
    affecting_factors: tuple[str, ...] = ()

    @field_validator("timestamp")
    @classmethod
    def _wall_clock(cls, value: datetime) -> datetime:
        return to_wall_clock(value)


class ActivityRecord(_Record):
    date: datetime
    type: str = Field(min_length=1, max_length=64)
    duration_minutes: float = Field(ge=0)
    intensity: str = Field(default="moderate", max_length=32)
    performance_rating: Optional[int] = Field(default=None, ge=1, le=10)

    @field_validator("date")
    @classmethod
    def _wall_clock(cls, value: datetime) -> datetime:
        return to_wall_clock(value)

    @field_validator("type")
    @classmethod
    def _lower_type(cls, value: str) -> str:
        return value.strip().lower()


class CurrentMetrics(_Record):
    weight: float = 0
    body_fat: Optional[float] = None
    energy_average: float = 5
    sleep_quality_average: float = 5


class UserProfile(_Record):
    name: str = "User"
    primary_goal: str = "ENERGY_OPTIMIZATION"
    secondary_goals: tuple[str, ...] = ()
    restrictions: tuple[str, ...] = ()
    preferences: tuple[str, ...] = ()
    daily_calorie_target: Optional[float] = Field(default=None, gt=0)
    current_metrics: CurrentMetrics = CurrentMetrics()


class InsightFeedback(_Record):
    was_helpful: bool
    actions_taken: tuple[str, ...] = ()
    outcome: Optional[str] = Field(default=None, max_length=500)
    additional_comments: Optional[str] = Field(default=None, max_length=2000)


class Insight(_Record):
    id: str
    type: InsightType
    title: str
    description: str
    data_supporting: dict[str, Any] = Field(default_factory=dict)
    action_items: tuple[str, ...] = Field(min_length=1)
    priority: Priority
    impact: str
    created_at: datetime = Field(default_factory=utc_now)
    user_feedback: Optional[InsightFeedback] = None


class CoachingContext(_Record):
    user_id: str
    user_profile: UserProfile = UserProfile()
    recent_meals: tuple[MealRecord, ...] = ()
    sleep_data: tuple[SleepRecord, ...] = ()
    energy_levels: tuple[EnergySample, ...] = ()
    activity_data: tuple[ActivityRecord, ...] = ()
    previous_insights: tuple[Insight, ...] = ()
    window_days: int = Field(default=7, ge=1)


class InteractionType(str, Enum):
    food_scan = "food_scan"
    voice_input = "voice_input"
    coaching = "coaching"
    recipe = "recipe"
    blueprint = "blueprint"


class ClarificationQuestion(_Record):
    id: str = Field(min_length=1, max_length=128)
    question: str = Field(default="", max_length=512)
    category: str = Field(default="", max_length=32)
    options: tuple[str, ...] = ()
    impact: Optional[str] = Field(default=None, pattern="^(high|medium|low)$")


class InteractionRequest(_Record):
    input: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)
    model_used: str = Field(min_length=1, max_length=128)


class InteractionResponse(_Record):
    output: Any = None
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    processing_time: float = Field(default=0, ge=0)
    tokens_used: Optional[int] = Field(default=None, ge=0)
    clarification_questions: tuple[ClarificationQuestion, ...] = ()


class PerformanceMetrics(_Record):
    response_time: float = Field(ge=0)
    error_rate: int = Field(default=0, ge=0, le=1)
    retry_count: int = Field(default=0, ge=0)
    cache_hit: bool = False
    edge_cases: tuple[str, ...] = ()


class FeedbackRating(str, Enum):
    positive = "positive"
    negative = "negative"
    neutral = "neutral"


class UserFeedback(_Record):
    rating: Optional[FeedbackRating] = None
    accuracy: Optional[int] = Field(default=None, ge=1, le=5)
    helpfulness: Optional[int] = Field(default=None, ge=1, le=5)
    clarification_quality: Optional[int] = Field(default=None, ge=1, le=5)
    specific_feedback: Optional[str] = Field(default=None, max_length=4000)
    corrections_provided: Optional[dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return to_utc_naive(value)

    @property
    def is_negative(self) -> bool:
        return self.rating == FeedbackRating.negative or (self.accuracy is not None and self.accuracy < 3)


class AIInteraction(_Record):
    id: str = Field(min_length=1, max_length=128)
    user_id: str = Field(min_length=1, max_length=128)
    timestamp: datetime = Field(default_factory=utc_now)
    interaction_type: InteractionType
    request: InteractionRequest
    response: InteractionResponse
    metrics: PerformanceMetrics
    feedback: Optional[UserFeedback] = None

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return to_utc_naive(value)


class ClarificationMetric(_Record):
    question_id: str
    question: str = ""
    category: str = ""
    times_asked: int = Field(default=0, ge=0)
    thumbs_up_rate: float = Field(default=0, ge=0, le=1)
    thumbs_down_rate: float = Field(default=0, ge=0, le=1)
    skip_rate: float = Field(default=0, ge=0, le=1)
    accuracy_samples: int = Field(default=0, ge=0)
    average_impact_on_accuracy: float = 0
    should_retire: bool = False


class OpportunityStatus(str, Enum):
    pending = "pending"
    reviewed = "reviewed"


class ImprovementOpportunity(_Record):
    id: str
    timestamp: datetime
    interaction_id: str
    interaction_type: InteractionType
    model_used: str
    issue: str
    priority: Priority
    status: OpportunityStatus = OpportunityStatus.pending
    suggested_improvement: str
    user_feedback: UserFeedback


class ReportPeriod(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


REPORT_LOOKBACK_HOURS: dict[ReportPeriod, int] = {
    ReportPeriod.daily: 24,
    ReportPeriod.weekly: 24 * 7,
    ReportPeriod.monthly: 24 * 30,
}


class ModelMetrics(_Record):
    total_requests: int = 0
    success_rate: float = 0
    average_response_time: float = 0
    average_tokens_used: float = 0
    user_satisfaction: float = 0
    estimated_cost: float = 0


class ModelPerformanceReport(_Record):
    model: str
    period: ReportPeriod
    metrics: ModelMetrics
    top_issues: tuple[str, ...] = ()
    improvements: tuple[str, ...] = ()


class RealtimeMetricsSnapshot(_Record):
    total_requests: int = 0
    requests_by_type: dict[str, int] = Field(default_factory=dict)
    average_response_time: float = 0
    error_count: int = 0
    hourly_distribution: tuple[int, ...] = (0,) * 24
    last_updated: Optional[datetime] = None


class ABTestVariant(_Record):
    name: str = Field(min_length=1, max_length=64)
    prompt: str = Field(min_length=1)
    model: str = Field(min_length=1, max_length=128)


class ABTestDefinition(_Record):
    name: str = Field(min_length=1, max_length=128)
    variants: tuple[ABTestVariant, ...] = Field(min_length=2)
    sample_size: int = Field(gt=0)
    success_metric: str = Field(default="helpfulness", min_length=1, max_length=64)


class ABTest(_Record):
    id: str
    name: str
    variants: tuple[ABTestVariant, ...]
    sample_size: int
    success_metric: str
    status: str = "running"
    started_at: datetime


def validate_record(model: type[BaseModel], payload: Any, entity: Optional[str] = None):
    """Coerce an ingress payload into ``model`` or raise ``MalformedInputError``."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise MalformedInputError.from_validation_error(entity or model.__name__, exc) from exc
