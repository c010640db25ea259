import json
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from coaching_engine.api.auth import get_current_user
from coaching_engine.core.context_builder import build_coaching_context
from coaching_engine.core.entities import (
    ActivityRecord,
    CoachingContext,
    EnergySample,
    FoodItem,
    SleepRecord,
    Timeframe,
    to_wall_clock,
    utc_now,
)
from coaching_engine.db import models
from coaching_engine.db.models import User
from coaching_engine.db.session import get_db

router = APIRouter(prefix="/records", tags=["records"])


class ProfileUpsertRequest(BaseModel):
    name: str = Field(default="User", min_length=1, max_length=128)
    primary_goal: str = Field(default="ENERGY_OPTIMIZATION", min_length=1, max_length=64)
    secondary_goals: list[str] = Field(default_factory=list, max_length=10)
    restrictions: list[str] = Field(default_factory=list, max_length=30)
    preferences: list[str] = Field(default_factory=list, max_length=30)
    weight: Optional[float] = Field(default=None, gt=0, le=500)
    body_fat: Optional[float] = Field(default=None, ge=0, le=80)
    daily_calorie_target: Optional[float] = Field(default=None, gt=0, le=10000)
    utc_offset_minutes: int = Field(default=0, ge=-840, le=840)


class ProfileResponse(ProfileUpsertRequest):
    user_id: str
    updated_at: datetime


class MealCreateRequest(BaseModel):
    id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    timestamp: datetime
    meal_type: str = Field(min_length=1, max_length=32)
    calories: float = Field(default=0, ge=0)
    protein: float = Field(default=0, ge=0)
    carbs: float = Field(default=0, ge=0)
    fat: float = Field(default=0, ge=0)
    fiber: float = Field(default=0, ge=0)
    foods: list[FoodItem] = Field(default_factory=list, max_length=50)
    post_meal_energy: Optional[int] = Field(default=None, ge=1, le=10)
    post_meal_satisfaction: Optional[int] = Field(default=None, ge=1, le=10)


class RecordCreatedResponse(BaseModel):
    id: str
    kind: str


def _new_id() -> str:
    return uuid.uuid4().hex


def _to_profile_response(row: models.UserProfile) -> ProfileResponse:
    return ProfileResponse(
        user_id=row.user_id,
        name=row.name,
        primary_goal=row.primary_goal,
        secondary_goals=json.loads(row.secondary_goals_json or "[]"),
        restrictions=json.loads(row.restrictions_json or "[]"),
        preferences=json.loads(row.preferences_json or "[]"),
        weight=row.weight,
        body_fat=row.body_fat,
        daily_calorie_target=row.daily_calorie_target,
        utc_offset_minutes=row.utc_offset_minutes or 0,
        updated_at=row.updated_at,
    )


@router.put("/profile", response_model=ProfileResponse)
def upsert_profile(
    payload: ProfileUpsertRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ProfileResponse:
    row = db.get(models.UserProfile, user.id)
    if row is None:
        row = models.UserProfile(user_id=user.id)
        db.add(row)
    row.name = payload.name
    row.primary_goal = payload.primary_goal.strip()
    row.secondary_goals_json = json.dumps(payload.secondary_goals)
    row.restrictions_json = json.dumps(payload.restrictions)
    row.preferences_json = json.dumps(payload.preferences)
    row.weight = payload.weight
    row.body_fat = payload.body_fat
    row.daily_calorie_target = payload.daily_calorie_target
    row.utc_offset_minutes = payload.utc_offset_minutes
    row.updated_at = utc_now()
    db.commit()
    db.refresh(row)
    return _to_profile_response(row)


@router.post("/meals", response_model=RecordCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_meal(
    payload: MealCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RecordCreatedResponse:
    meal_id = payload.id or _new_id()
    existing = db.get(models.MealRecord, meal_id)
    if existing is not None and existing.user_id != user.id:
        raise HTTPException(status_code=409, detail="Meal id already in use")
    row = models.MealRecord(
        id=meal_id,
        user_id=user.id,
        eaten_at=to_wall_clock(payload.timestamp),
        meal_type=payload.meal_type.strip().lower(),
        calories=payload.calories,
        protein=payload.protein,
        carbs=payload.carbs,
        fat=payload.fat,
        fiber=payload.fiber,
        foods_json=json.dumps([food.model_dump() for food in payload.foods]),
        post_meal_energy=payload.post_meal_energy,
        post_meal_satisfaction=payload.post_meal_satisfaction,
    )
    db.merge(row)
    db.commit()
    return RecordCreatedResponse(id=row.id, kind="meal")


@router.post("/sleep", response_model=RecordCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_sleep_record(
    payload: SleepRecord,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RecordCreatedResponse:
    row = models.SleepRecord(
        id=_new_id(),
        user_id=user.id,
        bedtime=payload.date,
        duration_hours=payload.duration_hours,
        quality=payload.quality,
        deep_sleep_percentage=payload.deep_sleep_percentage,
        pre_sleep_meal_time=payload.pre_sleep_meal_time,
        pre_sleep_meal_size=payload.pre_sleep_meal_size,
    )
    db.add(row)
    db.commit()
    return RecordCreatedResponse(id=row.id, kind="sleep")


@router.post("/energy", response_model=RecordCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_energy_sample(
    payload: EnergySample,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RecordCreatedResponse:
    row = models.EnergySample(
        id=_new_id(),
        user_id=user.id,
        taken_at=payload.timestamp,
        level=payload.level,
        context=payload.context,
        affecting_factors_json=json.dumps(list(payload.affecting_factors)),
    )
    db.add(row)
    db.commit()
    return RecordCreatedResponse(id=row.id, kind="energy")


@router.post("/activity", response_model=RecordCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_activity_record(
    payload: ActivityRecord,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RecordCreatedResponse:
    row = models.ActivityRecord(
        id=_new_id(),
        user_id=user.id,
        performed_at=payload.date,
        activity_type=payload.type,
        duration_minutes=payload.duration_minutes,
        intensity=payload.intensity,
        performance_rating=payload.performance_rating,
    )
    db.add(row)
    db.commit()
    return RecordCreatedResponse(id=row.id, kind="activity")


@router.get("/context", response_model=CoachingContext)
def get_context(
    timeframe: Timeframe = Query(default=Timeframe.daily),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CoachingContext:
    return build_coaching_context(db, user.id, timeframe)
