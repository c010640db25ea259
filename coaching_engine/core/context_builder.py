import json
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from coaching_engine.core.entities import (
    TIMEFRAME_DAYS,
    ActivityRecord,
    CoachingContext,
    CurrentMetrics,
    EnergySample,
    FoodItem,
    MealRecord,
    SleepRecord,
    Timeframe,
    UserProfile,
    utc_now,
)
from coaching_engine.core.insight_store import list_previous_insights
from coaching_engine.db import models


def _avg(values: list[float]) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def _json_list(raw: Optional[str]) -> list:
    if not raw:
        return []
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, list) else []


def meal_from_row(row: models.MealRecord) -> MealRecord:
    return MealRecord(
        id=row.id,
        timestamp=row.eaten_at,
        meal_type=row.meal_type,
        calories=row.calories,
        protein=row.protein,
        carbs=row.carbs,
        fat=row.fat,
        fiber=row.fiber,
        foods=tuple(FoodItem.model_validate(item) for item in _json_list(row.foods_json)),
        post_meal_energy=row.post_meal_energy,
        post_meal_satisfaction=row.post_meal_satisfaction,
    )


def sleep_from_row(row: models.SleepRecord) -> SleepRecord:
    return SleepRecord(
        date=row.bedtime,
        duration_hours=row.duration_hours,
        quality=row.quality,
        deep_sleep_percentage=row.deep_sleep_percentage,
        pre_sleep_meal_time=row.pre_sleep_meal_time,
        pre_sleep_meal_size=row.pre_sleep_meal_size,
    )


def energy_from_row(row: models.EnergySample) -> EnergySample:
    return EnergySample(
        timestamp=row.taken_at,
        level=row.level,
        context=row.context,
        affecting_factors=tuple(_json_list(row.affecting_factors_json)),
    )


def activity_from_row(row: models.ActivityRecord) -> ActivityRecord:
    return ActivityRecord(
        date=row.performed_at,
        type=row.activity_type,
        duration_minutes=row.duration_minutes,
        intensity=row.intensity,
        performance_rating=row.performance_rating,
    )


def derive_meal_energy(meals: list[MealRecord]) -> list[EnergySample]:
    return [
        EnergySample(timestamp=meal.timestamp, level=meal.post_meal_energy, context=f"post-{meal.meal_type}")
        for meal in meals
        if meal.post_meal_energy is not None
    ]


def profile_from_row(
    row: Optional[models.UserProfile], energy: list[EnergySample], sleep: list[SleepRecord]
) -> UserProfile:
    metrics = CurrentMetrics(
        weight=(row.weight or 0) if row else 0,
        body_fat=row.body_fat if row else None,
        energy_average=_avg([sample.level for sample in energy]) or 5,
        sleep_quality_average=_avg([record.quality for record in sleep]) or 5,
    )
    if row is None:
        return UserProfile(current_metrics=metrics)
    return UserProfile(
        name=row.name,
        primary_goal=row.primary_goal,
        secondary_goals=tuple(_json_list(row.secondary_goals_json)),
        restrictions=tuple(_json_list(row.restrictions_json)),
        preferences=tuple(_json_list(row.preferences_json)),
        daily_calorie_target=row.daily_calorie_target,
        current_metrics=metrics,
    )


def build_coaching_context(
    db: Session,
    user_id: str,
    timeframe: Timeframe = Timeframe.daily,
    now: Optional[datetime] = None,
) -> CoachingContext:
    timestamp = now or utc_now()
    window_days = TIMEFRAME_DAYS[Timeframe(timeframe)]
    profile_row = db.get(models.UserProfile, user_id)
    # Records carry local wall-clock time, so the window is cut on the same clock.
    offset_minutes = (profile_row.utc_offset_minutes or 0) if profile_row else 0
    since = timestamp + timedelta(minutes=offset_minutes) - timedelta(days=window_days)

    meal_rows = (
        db.query(models.MealRecord)
        .filter(models.MealRecord.user_id == user_id, models.MealRecord.eaten_at >= since)
        .order_by(models.MealRecord.eaten_at.asc())
        .all()
    )
    sleep_rows = (
        db.query(models.SleepRecord)
        .filter(models.SleepRecord.user_id == user_id, models.SleepRecord.bedtime >= since)
        .order_by(models.SleepRecord.bedtime.asc())
        .all()
    )
    energy_rows = (
        db.query(models.EnergySample)
        .filter(models.EnergySample.user_id == user_id, models.EnergySample.taken_at >= since)
        .order_by(models.EnergySample.taken_at.asc())
        .all()
    )
    activity_rows = (
        db.query(models.ActivityRecord)
        .filter(models.ActivityRecord.user_id == user_id, models.ActivityRecord.performed_at >= since)
        .order_by(models.ActivityRecord.performed_at.asc())
        .all()
    )

    meals = [meal_from_row(row) for row in meal_rows]
    sleep = [sleep_from_row(row) for row in sleep_rows]
    energy = sorted(
        [energy_from_row(row) for row in energy_rows] + derive_meal_energy(meals),
        key=lambda sample: sample.timestamp,
    )
    activities = [activity_from_row(row) for row in activity_rows]

    return CoachingContext(
        user_id=user_id,
        user_profile=profile_from_row(profile_row, energy, sleep),
        recent_meals=tuple(meals),
        sleep_data=tuple(sleep),
        energy_levels=tuple(energy),
        activity_data=tuple(activities),
        previous_insights=tuple(list_previous_insights(db, user_id)),
        window_days=window_days,
    )
