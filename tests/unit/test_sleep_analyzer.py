from datetime import timedelta

from factories import DAY, context, meal

from coaching_engine.core.analyzers.sleep import analyze_sleep_correlations, pair_dinners_with_sleep
from coaching_engine.core.entities import FoodItem, InsightType, Priority, SleepRecord


def _sleep(day: int, bed_hour: float, quality: int, **kwargs) -> SleepRecord:
    return SleepRecord(
        date=DAY + timedelta(days=day, hours=bed_hour), duration_hours=7.5, quality=quality, **kwargs
    )


def test_late_dinners_lower_sleep_quality() -> None:
    ctx = context(
        recent_meals=(meal(21, "dinner", day=0), meal(18, "dinner", day=1)),
        sleep_data=(_sleep(0, 23, 4), _sleep(1, 23, 8)),
    )
    insights = analyze_sleep_correlations(ctx)

    assert len(insights) == 1
    late = insights[0]
    assert late.title == "Late Dinners Hurting Your Sleep"
    assert late.priority == Priority.high
    assert late.data_supporting["late_dinner_sleep_quality"] == 4
    assert late.data_supporting["early_dinner_sleep_quality"] == 8
    assert late.data_supporting["quality_loss_percentage"] == 50.0


def test_no_pattern_without_both_groups() -> None:
    ctx = context(
        recent_meals=(meal(21, "dinner", day=0), meal(21.5, "dinner", day=1)),
        sleep_data=(_sleep(0, 23, 4), _sleep(1, 23, 5)),
    )
    assert analyze_sleep_correlations(ctx) == []


def test_latest_same_day_dinner_is_used() -> None:
    ctx = context(
        recent_meals=(meal(17, "dinner"), meal(21, "dinner")),
        sleep_data=(_sleep(0, 23, 6),),
    )
    pairs = pair_dinners_with_sleep(ctx)
    assert [round(gap, 2) for _, gap in pairs] == [2.0]


def test_pre_sleep_meal_time_used_when_no_dinner_logged() -> None:
    night = _sleep(0, 23, 6, pre_sleep_meal_time=DAY + timedelta(hours=22))
    pairs = pair_dinners_with_sleep(context(sleep_data=(night,)))
    assert [round(gap, 2) for _, gap in pairs] == [1.0]


def test_dinner_after_bedtime_is_skipped() -> None:
    ctx = context(recent_meals=(meal(23.5, "dinner"),), sleep_data=(_sleep(0, 22, 6),))
    assert pair_dinners_with_sleep(ctx) == []


def test_afternoon_caffeine_flagged_as_disruptor() -> None:
    ctx = context(
        recent_meals=(
            meal(9, "breakfast", foods=(FoodItem(name="Coffee"),)),
            meal(15, "snack", foods=(FoodItem(name="Iced Coffee"), FoodItem(name="Teacake"))),
        ),
    )
    insights = analyze_sleep_correlations(ctx)

    assert len(insights) == 1
    warning = insights[0]
    assert warning.type == InsightType.warning
    assert warning.priority == Priority.medium
    assert warning.action_items == ("Avoid caffeine after 2:00 PM",)
    disruptor = warning.data_supporting["disruptive_foods"][0]
    assert disruptor["occurrences"] == 1
    assert disruptor["foods"] == ["Iced Coffee"]
