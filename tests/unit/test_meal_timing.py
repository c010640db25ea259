from factories import context, meal

from coaching_engine.core.analyzers.meal_timing import analyze_meal_timing, fasting_windows
from coaching_engine.core.entities import InsightType, Priority


def test_late_breakfast_recommends_shift() -> None:
    insights = analyze_meal_timing(context(recent_meals=(meal(10.5, "breakfast"),)))

    assert len(insights) == 1
    rec = insights[0]
    assert rec.title == "Optimize Breakfast Timing"
    assert rec.type == InsightType.recommendation
    assert rec.priority == Priority.medium
    assert rec.data_supporting["current_average"] == "10:30 AM"
    assert rec.data_supporting["optimal"] == "7:00 AM - 9:00 AM"
    assert rec.data_supporting["deviation_hours"] == 3.5


def test_breakfast_inside_tolerance_is_quiet() -> None:
    assert analyze_meal_timing(context(recent_meals=(meal(8.5, "breakfast"),))) == []


def test_fasting_windows_keep_only_overnight_gaps() -> None:
    meals = [meal(7, "breakfast", day=1), meal(21, "dinner", day=0), meal(12, "lunch", day=1)]
    assert fasting_windows(meals, 8) == [10.0]


def test_short_overnight_fast_is_an_opportunity() -> None:
    meals = (meal(21, "dinner", day=0), meal(7, "breakfast", day=1))
    insights = analyze_meal_timing(context(recent_meals=meals))

    assert [item.title for item in insights] == ["Extend Your Overnight Fast"]
    assert insights[0].type == InsightType.opportunity
    assert insights[0].priority == Priority.low
    assert insights[0].data_supporting["current_fasting_hours"] == 10.0
    assert insights[0].data_supporting["target_fasting_hours"] == 12


def test_goal_without_fasting_target_skips_fasting() -> None:
    meals = (meal(21, "dinner", day=0), meal(7, "breakfast", day=1))
    assert analyze_meal_timing(context(goal="MUSCLE_BUILDING", recent_meals=meals)) == []
