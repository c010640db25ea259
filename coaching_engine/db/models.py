from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()

REALTIME_METRICS_KEY = "realtime"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    profile: Mapped["UserProfile"] = relationship(
        "UserProfile", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    meals: Mapped[list["MealRecord"]] = relationship(
        "MealRecord", back_populates="user", cascade="all, delete-orphan"
    )
    sleep_records: Mapped[list["SleepRecord"]] = relationship(
        "SleepRecord", back_populates="user", cascade="all, delete-orphan"
    )
    energy_samples: Mapped[list["EnergySample"]] = relationship(
        "EnergySample", back_populates="user", cascade="all, delete-orphan"
    )
    activities: Mapped[list["ActivityRecord"]] = relationship(
        "ActivityRecord", back_populates="user", cascade="all, delete-orphan"
    )
    insights: Mapped[list["CoachingInsight"]] = relationship(
        "CoachingInsight", back_populates="user", cascade="all, delete-orphan"
    )


class UserProfile(Base):
    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="User")
    primary_goal: Mapped[str] = mapped_column(String(64), nullable=False)
    secondary_goals_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    restrictions_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    preferences_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    weight: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    body_fat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    daily_calorie_target: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    # Behavioral timestamps are stored on the user's local clock.
    utc_offset_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user: Mapped[User] = relationship("User", back_populates="profile")


class MealRecord(Base):
    __tablename__ = "meals"
    __table_args__ = (Index("ix_meals_user_eaten", "user_id", "eaten_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    eaten_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    meal_type: Mapped[str] = mapped_column(String(32), nullable=False)
    calories: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    protein: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    carbs: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    fat: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    fiber: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    foods_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    post_meal_energy: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    post_meal_satisfaction: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    user: Mapped[User] = relationship("User", back_populates="meals")


class SleepRecord(Base):
    __tablename__ = "sleep_records"
    __table_args__ = (Index("ix_sleep_user_bedtime", "user_id", "bedtime"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    bedtime: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    duration_hours: Mapped[float] = mapped_column(Float, nullable=False)
    quality: Mapped[int] = mapped_column(Integer, nullable=False)
    deep_sleep_percentage: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pre_sleep_meal_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    pre_sleep_meal_size: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    user: Mapped[User] = relationship("User", back_populates="sleep_records")


class EnergySample(Base):
    __tablename__ = "energy_samples"
    __table_args__ = (Index("ix_energy_user_taken", "user_id", "taken_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    taken_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    context: Mapped[str] = mapped_column(String(32), nullable=False)
    affecting_factors_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user: Mapped[User] = relationship("User", back_populates="energy_samples")


class ActivityRecord(Base):
    __tablename__ = "activity_records"
    __table_args__ = (Index("ix_activity_user_performed", "user_id", "performed_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    performed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    activity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    duration_minutes: Mapped[float] = mapped_column(Float, nullable=False)
    intensity: Mapped[str] = mapped_column(String(32), nullable=False)
    performance_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    user: Mapped[User] = relationship("User", back_populates="activities")


class CoachingInsight(Base):
    __tablename__ = "coaching_insights"
    __table_args__ = (Index("ix_insights_user_created", "user_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    insight_type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    data_supporting_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    action_items_json: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False)
    impact: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    user_feedback_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    feedback_received_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    user: Mapped[User] = relationship("User", back_populates="insights")


class AIInteractionRecord(Base):
    __tablename__ = "ai_interactions"
    __table_args__ = (
        Index("ix_ai_interactions_model_created", "model_used", "created_at"),
        Index("ix_ai_interactions_user_created", "user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    interaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    model_used: Mapped[str] = mapped_column(String(128), nullable=False)
    request_input_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    request_context_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    response_output_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    clarification_questions_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processing_time_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    tokens_used: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    response_time_ms: Mapped[float] = mapped_column(Float, nullable=False)
    error_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cache_hit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edge_cases_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    feedback_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    feedback_received_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class RealtimeMetrics(Base):
    __tablename__ = "ai_realtime_metrics"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=REALTIME_METRICS_KEY)
    total_requests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requests_by_type_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    average_response_time: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hourly_distribution_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class ClarificationMetricRecord(Base):
    __tablename__ = "clarification_metrics"

    question_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    question: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    times_asked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    thumbs_up_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    thumbs_down_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    skip_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    accuracy_samples: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_impact_on_accuracy: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    should_retire: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class ImprovementOpportunityRecord(Base):
    __tablename__ = "improvement_opportunities"
    __table_args__ = (Index("ix_opportunities_model_created", "model_used", "created_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    interaction_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    interaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    model_used: Mapped[str] = mapped_column(String(128), nullable=False)
    issue: Mapped[str] = mapped_column(String(64), nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    suggested_improvement: Mapped[str] = mapped_column(String(255), nullable=False)
    user_feedback_json: Mapped[str] = mapped_column(Text, nullable=False)


class AnomalyRecord(Base):
    __tablename__ = "ai_anomalies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    interaction_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    anomalies_csv: Mapped[str] = mapped_column(String(255), nullable=False)


class ABTestRecord(Base):
    __tablename__ = "ab_tests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    variants_json: Mapped[str] = mapped_column(Text, nullable=False)
    sample_size: Mapped[int] = mapped_column(Integer, nullable=False)
    success_metric: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="running")
    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
