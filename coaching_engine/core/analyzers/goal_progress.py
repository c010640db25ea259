from statistics import pstdev
from typing import Any, Optional

from coaching_engine.core.analyzers.common import average, daily_calorie_totals, make_insight
from coaching_engine.core.config import AnalyzerThresholds
from coaching_engine.core.entities import CoachingContext, Insight, InsightType, Priority
from coaching_engine.core.protocols import normalize_goal, protocol_for_goal

DEFAULT_THRESHOLDS = AnalyzerThresholds()

ADHERENCE_CHECKS = ("calories", "macros", "timing", "sleep")


def _calorie_target(context: CoachingContext, thresholds: AnalyzerThresholds) -> float:
    return context.user_profile.daily_calorie_target or thresholds.default_calorie_target


def adherence_checks(context: CoachingContext, thresholds: AnalyzerThresholds) -> dict[str, bool]:
    target = _calorie_target(context, thresholds)
    avg_daily = average(daily_calorie_totals(context.recent_meals).values())
    protocol = protocol_for_goal(context.user_profile.primary_goal)
    return {
        "calories": avg_daily is not None and abs(avg_daily - target) <= target * thresholds.calorie_tolerance,
        "macros": protocol is not None,
        "timing": protocol is not None and bool(protocol.breakfast_window),
        "sleep": bool(context.sleep_data),
    }


def calculate_adherence_score(
    context: CoachingContext, thresholds: AnalyzerThresholds = DEFAULT_THRESHOLDS
) -> int:
    """Blueprint adherence in [0, 100], equal points per passed check."""
    checks = adherence_checks(context, thresholds)
    possible = thresholds.adherence_check_points * len(ADHERENCE_CHECKS)
    if possible <= 0:
        return 0
    earned = thresholds.adherence_check_points * sum(1 for name in ADHERENCE_CHECKS if checks[name])
    return max(0, min(100, round(earned / possible * 100)))


def _missed_target_actions(
    context: CoachingContext, thresholds: AnalyzerThresholds, checks: dict[str, bool]
) -> list[str]:
    actions = []
    if not checks["calories"]:
        actions.append(
            f"Keep daily calories within {thresholds.calorie_tolerance * 100:.0f}% of "
            f"{_calorie_target(context, thresholds):.0f} kcal"
        )
    if not checks["macros"] or not checks["timing"]:
        actions.append("Pick a supported nutrition goal so your macro and timing targets apply")
    if not checks["sleep"]:
        actions.append("Log your sleep every night")
    return actions


def analyze_weight_loss_progress(context: CoachingContext, thresholds: AnalyzerThresholds) -> Optional[Insight]:
    totals = daily_calorie_totals(context.recent_meals)
    if not totals:
        return None
    target = _calorie_target(context, thresholds)
    deficit_days = sum(1 for total in totals.values() if total < target)
    per_week = deficit_days * 7 / context.window_days
    if per_week >= thresholds.deficit_days_per_week:
        return None
    return make_insight(
        InsightType.warning,
        "Inconsistent Calorie Deficit",
        "You need to maintain a deficit more consistently for weight loss.",
        {
            "deficit_days": deficit_days,
            "logged_days": len(totals),
            "deficit_days_per_week": round(per_week, 1),
            "target_days_per_week": thresholds.deficit_days_per_week,
            "calorie_target": target,
        },
        [
            "Track portions more carefully",
            "Reduce portion sizes by 10-15%",
            "Add 20 minutes of walking daily",
        ],
        Priority.high,
        "Achieve 1-2 lbs loss per week",
    )


def analyze_muscle_gain_progress(context: CoachingContext, thresholds: AnalyzerThresholds) -> Optional[Insight]:
    if not context.recent_meals and not context.activity_data:
        return None
    strength_sessions = sum(1 for activity in context.activity_data if "strength" in activity.type)
    protein_days = len(
        {
            meal.timestamp.date()
            for meal in context.recent_meals
            if meal.protein >= thresholds.high_protein_meal_grams
        }
    )
    if strength_sessions >= thresholds.strength_sessions_min and protein_days >= thresholds.high_protein_days_min:
        return None
    return make_insight(
        InsightType.warning,
        "Muscle Building Requirements Not Met",
        "Consistency in training and protein intake is crucial for muscle growth.",
        {
            "strength_sessions": strength_sessions,
            "strength_sessions_target": thresholds.strength_sessions_min,
            "high_protein_days": protein_days,
            "high_protein_days_target": thresholds.high_protein_days_min,
        },
        [
            "Schedule 4 strength training sessions",
            "Set protein reminders every 3-4 hours",
            "Prep protein-rich snacks",
        ],
        Priority.high,
        "Maximize muscle protein synthesis",
    )


def analyze_energy_progress(context: CoachingContext, thresholds: AnalyzerThresholds) -> Optional[Insight]:
    levels = [sample.level for sample in context.energy_levels]
    if len(levels) < 2:
        return None
    variability = pstdev(levels)
    if variability <= thresholds.energy_instability_stdev:
        return None
    return make_insight(
        InsightType.pattern,
        "Unstable Energy Levels",
        "Your energy fluctuates too much throughout the day.",
        {
            "average_energy": round(average(levels), 2),
            "variability": round(variability, 2),
            "pattern": "High volatility indicates blood sugar swings",
        },
        [
            "Eat protein with every meal",
            "Replace refined carbs with complex carbs",
            "Add mid-morning and mid-afternoon snacks",
        ],
        Priority.high,
        "Achieve stable all-day energy",
    )


GOAL_SUB_ANALYSES = {
    "WEIGHT_LOSS": analyze_weight_loss_progress,
    "MUSCLE_BUILDING": analyze_muscle_gain_progress,
    "ENERGY_OPTIMIZATION": analyze_energy_progress,
}


def analyze_goal_progress(
    context: CoachingContext, thresholds: AnalyzerThresholds = DEFAULT_THRESHOLDS
) -> list[Insight]:
    insights: list[Insight] = []

    if context.recent_meals:
        checks = adherence_checks(context, thresholds)
        score = calculate_adherence_score(context, thresholds)
        data: dict[str, Any] = {
            "adherence_score": score,
            "checks": checks,
            "missed_targets": [name for name in ADHERENCE_CHECKS if not checks[name]],
        }
        if score < thresholds.adherence_warning_below:
            insights.append(
                make_insight(
                    InsightType.warning,
                    "Blueprint Adherence Needs Improvement",
                    f"You're following your personalized plan {score}% of the time. "
                    "Small improvements here yield big results.",
                    data,
                    _missed_target_actions(context, thresholds, checks) or ["Review your daily targets"],
                    Priority.high,
                    "Get back on track for your goals",
                )
            )
        elif score > thresholds.adherence_achievement_above:
            insights.append(
                make_insight(
                    InsightType.achievement,
                    "Excellent Blueprint Adherence!",
                    f"You're crushing it with {score}% adherence. Your consistency is paying off.",
                    data,
                    ["Keep up the great work!", "Try one new whole-food recipe this week"],
                    Priority.low,
                    "Maintaining momentum towards goals",
                )
            )

    sub_analysis = GOAL_SUB_ANALYSES.get(normalize_goal(context.user_profile.primary_goal))
    if sub_analysis is not None:
        progress = sub_analysis(context, thresholds)
        if progress is not None:
            insights.append(progress)

    return insights
