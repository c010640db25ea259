import json
from datetime import timedelta
from uuid import uuid4

from coaching_engine.core.context_builder import build_coaching_context
from coaching_engine.core.entities import Timeframe, utc_now
from coaching_engine.db import models


def _add_meal(db_session, user_id: str, eaten_at, **kwargs) -> None:
    db_session.add(
        models.MealRecord(
            id=uuid4().hex,
            user_id=user_id,
            eaten_at=eaten_at,
            meal_type=kwargs.pop("meal_type", "lunch"),
            calories=kwargs.pop("calories", 600),
            protein=kwargs.pop("protein", 30),
            carbs=kwargs.pop("carbs", 60),
            fat=kwargs.pop("fat", 20),
            fiber=kwargs.pop("fiber", 5),
            foods_json=json.dumps([{"name": "Chicken bowl"}]),
            **kwargs,
        )
    )


def test_context_builder_defaults_without_profile(create_user, db_session) -> None:
    user = create_user()
    context = build_coaching_context(db_session, user.id)

    assert context.user_id == user.id
    assert context.user_profile.primary_goal == "ENERGY_OPTIMIZATION"
    assert context.user_profile.current_metrics.energy_average == 5
    assert context.recent_meals == ()
    assert context.window_days == 1


def test_context_builder_filters_by_timeframe(create_user, db_session) -> None:
    user = create_user()
    now = utc_now()
    _add_meal(db_session, user.id, now - timedelta(hours=3), post_meal_energy=4)
    _add_meal(db_session, user.id, now - timedelta(days=3))
    _add_meal(db_session, user.id, now - timedelta(days=12))
    db_session.add(
        models.UserProfile(
            user_id=user.id,
            name="Sam",
            primary_goal="WEIGHT_LOSS",
            restrictions_json=json.dumps(["gluten"]),
            daily_calorie_target=1800,
        )
    )
    db_session.add(
        models.EnergySample(
            id=uuid4().hex, user_id=user.id, taken_at=now - timedelta(hours=5), level=8, context="check-in"
        )
    )
    db_session.commit()

    daily = build_coaching_context(db_session, user.id, Timeframe.daily, now=now)
    weekly = build_coaching_context(db_session, user.id, Timeframe.weekly, now=now)

    assert len(daily.recent_meals) == 1
    assert len(weekly.recent_meals) == 2
    assert weekly.window_days == 7
    assert daily.recent_meals[0].foods[0].name == "Chicken bowl"
    assert daily.user_profile.primary_goal == "WEIGHT_LOSS"
    assert daily.user_profile.restrictions == ("gluten",)
    assert daily.user_profile.daily_calorie_target == 1800


def test_post_meal_energy_becomes_an_energy_sample(create_user, db_session) -> None:
    user = create_user()
    now = utc_now()
    _add_meal(db_session, user.id, now - timedelta(hours=2), meal_type="lunch", post_meal_energy=4)
    db_session.commit()

    context = build_coaching_context(db_session, user.id, now=now)
    assert [(sample.level, sample.context) for sample in context.energy_levels] == [(4, "post-lunch")]
    assert context.user_profile.current_metrics.energy_average == 4


def test_daily_window_follows_the_users_local_clock(create_user, db_session) -> None:
    behind, ahead = create_user(), create_user()
    now = utc_now()
    db_session.add(models.UserProfile(user_id=behind.id, primary_goal="ENERGY_OPTIMIZATION", utc_offset_minutes=-300))
    db_session.add(models.UserProfile(user_id=ahead.id, primary_goal="ENERGY_OPTIMIZATION", utc_offset_minutes=600))
    local_behind = now - timedelta(hours=5)
    local_ahead = now + timedelta(hours=10)
    _add_meal(db_session, behind.id, local_behind - timedelta(hours=20), meal_type="breakfast")
    _add_meal(db_session, behind.id, local_behind - timedelta(hours=26), meal_type="dinner")
    _add_meal(db_session, ahead.id, local_ahead - timedelta(hours=2), meal_type="lunch")
    _add_meal(db_session, ahead.id, local_ahead - timedelta(hours=30), meal_type="dinner")
    db_session.commit()

    behind_context = build_coaching_context(db_session, behind.id, now=now)
    ahead_context = build_coaching_context(db_session, ahead.id, now=now)

    assert [meal.meal_type for meal in behind_context.recent_meals] == ["breakfast"]
    assert [meal.meal_type for meal in ahead_context.recent_meals] == ["lunch"]
