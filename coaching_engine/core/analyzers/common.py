import uuid
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Iterable, Optional, Sequence

from coaching_engine.core.entities import Insight, InsightType, MealRecord, Priority, utc_now


def new_insight_id() -> str:
    return uuid.uuid4().hex


def average(values: Iterable[float]) -> Optional[float]:
    data = list(values)
    if not data:
        return None
    return sum(data) / len(data)


def hour_of(value: datetime) -> float:
    return value.hour + value.minute / 60.0


def format_clock(hour: float) -> str:
    whole = int(hour) % 24
    minutes = int(round((hour - int(hour)) * 60))
    if minutes == 60:
        whole, minutes = (whole + 1) % 24, 0
    suffix = "AM" if whole < 12 else "PM"
    display = whole % 12 or 12
    return f"{display}:{minutes:02d} {suffix}"


def meals_of_type(meals: Sequence[MealRecord], meal_type: str) -> list[MealRecord]:
    return [meal for meal in meals if meal.meal_type == meal_type]


def daily_calorie_totals(meals: Sequence[MealRecord]) -> dict[date, float]:
    totals: dict[date, float] = defaultdict(float)
    for meal in meals:
        totals[meal.timestamp.date()] += meal.calories
    return dict(totals)


def make_insight(
    insight_type: InsightType,
    title: str,
    description: str,
    data_supporting: dict[str, Any],
    action_items: Sequence[str],
    priority: Priority,
    impact: str,
) -> Insight:
    return Insight(
        id=new_insight_id(),
        type=insight_type,
        title=title,
        description=description,
        data_supporting=data_supporting,
        action_items=tuple(action_items),
        priority=priority,
        impact=impact,
        created_at=utc_now(),
    )
