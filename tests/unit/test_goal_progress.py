from datetime import timedelta

from factories import DAY, context, energy, meal

from coaching_engine.core.analyzers.goal_progress import (
    adherence_checks,
    analyze_goal_progress,
    calculate_adherence_score,
)
from coaching_engine.core.config import AnalyzerThresholds
from coaching_engine.core.entities import ActivityRecord, InsightType, Priority, SleepRecord, UserProfile

THRESHOLDS = AnalyzerThresholds()


def _on_target_day(day: int = 0):
    return (
        meal(8, "breakfast", calories=600, day=day),
        meal(12.5, "lunch", calories=700, day=day),
        meal(19, "dinner", calories=700, day=day),
    )


def _night() -> SleepRecord:
    return SleepRecord(date=DAY + timedelta(hours=23), duration_hours=7.5, quality=7)


def test_full_adherence_is_an_achievement() -> None:
    ctx = context(recent_meals=_on_target_day(), sleep_data=(_night(),))
    assert calculate_adherence_score(ctx) == 100

    insights = analyze_goal_progress(ctx)
    achievement = [item for item in insights if item.type == InsightType.achievement]
    assert len(achievement) == 1
    assert achievement[0].priority == Priority.low


def test_partial_adherence_emits_nothing_in_the_middle_band() -> None:
    ctx = context(recent_meals=_on_target_day())
    assert calculate_adherence_score(ctx) == 75
    assert analyze_goal_progress(ctx) == []


def test_unknown_goal_lowers_adherence() -> None:
    ctx = context(goal="RUN_FASTER", recent_meals=_on_target_day(), sleep_data=(_night(),))
    checks = adherence_checks(ctx, THRESHOLDS)
    assert checks == {"calories": True, "macros": False, "timing": False, "sleep": True}

    insights = analyze_goal_progress(ctx)
    assert [item.title for item in insights] == ["Blueprint Adherence Needs Improvement"]
    assert insights[0].data_supporting["adherence_score"] == 50
    assert insights[0].data_supporting["missed_targets"] == ["macros", "timing"]


def test_adherence_uses_profile_calorie_target() -> None:
    profile = UserProfile(primary_goal="ENERGY_OPTIMIZATION", daily_calorie_target=1500)
    ctx = context(user_profile=profile, recent_meals=_on_target_day())
    assert adherence_checks(ctx, THRESHOLDS)["calories"] is False


def test_calorie_check_includes_the_tolerance_edge() -> None:
    profile = UserProfile(primary_goal="ENERGY_OPTIMIZATION", daily_calorie_target=2000)
    at_edge = _on_target_day() + (meal(16, "snack", calories=200),)
    past_edge = _on_target_day() + (meal(16, "snack", calories=201),)

    assert adherence_checks(context(user_profile=profile, recent_meals=at_edge), THRESHOLDS)["calories"] is True
    assert adherence_checks(context(user_profile=profile, recent_meals=past_edge), THRESHOLDS)["calories"] is False


def test_no_meals_means_no_adherence_insight() -> None:
    assert analyze_goal_progress(context(sleep_data=(_night(),))) == []


def test_weight_loss_inconsistent_deficit() -> None:
    ctx = context(goal="WEIGHT_LOSS", recent_meals=_on_target_day(0) + _on_target_day(1), window_days=7)
    insights = analyze_goal_progress(ctx)
    deficit = next(item for item in insights if item.title == "Inconsistent Calorie Deficit")
    assert deficit.data_supporting["deficit_days"] == 0
    assert deficit.priority == Priority.high


def test_muscle_building_requirements() -> None:
    activities = tuple(
        ActivityRecord(date=DAY + timedelta(days=day, hours=18), type="Strength", duration_minutes=45)
        for day in range(2)
    )
    ctx = context(goal="MUSCLE_BUILDING", recent_meals=_on_target_day(), activity_data=activities)
    insights = analyze_goal_progress(ctx)
    muscle = next(item for item in insights if item.title == "Muscle Building Requirements Not Met")
    assert muscle.data_supporting["strength_sessions"] == 2
    assert muscle.data_supporting["high_protein_days"] == 1


def test_unstable_energy_for_energy_goal() -> None:
    ctx = context(energy_levels=(energy(8, 2), energy(10, 9), energy(14, 2), energy(16, 9)))
    insights = analyze_goal_progress(ctx)
    assert [item.title for item in insights] == ["Unstable Energy Levels"]
    assert insights[0].data_supporting["variability"] == 3.5


def test_single_energy_sample_is_not_volatility() -> None:
    assert analyze_goal_progress(context(energy_levels=(energy(8, 2),))) == []


def test_adherence_score_is_a_multiple_of_25() -> None:
    contexts = [
        context(),
        context(recent_meals=_on_target_day()),
        context(goal="RUN_FASTER", recent_meals=(meal(8, "breakfast", calories=100),)),
        context(goal="SLEEP_QUALITY", recent_meals=_on_target_day(), sleep_data=(_night(),)),
    ]
    for ctx in contexts:
        score = calculate_adherence_score(ctx)
        assert 0 <= score <= 100
        assert score % 25 == 0
