from typing import Sequence

from coaching_engine.core.analyzers.common import average, format_clock, hour_of, make_insight, meals_of_type
from coaching_engine.core.config import AnalyzerThresholds
from coaching_engine.core.entities import CoachingContext, Insight, InsightType, MealRecord, Priority
from coaching_engine.core.protocols import resolve_protocol

DEFAULT_THRESHOLDS = AnalyzerThresholds()


def fasting_windows(meals: Sequence[MealRecord], min_hours: float) -> list[float]:
    ordered = sorted(meals, key=lambda meal: meal.timestamp)
    windows: list[float] = []
    for previous, current in zip(ordered, ordered[1:]):
        gap = (current.timestamp - previous.timestamp).total_seconds() / 3600
        if gap > min_hours:
            windows.append(gap)
    return windows


def analyze_meal_timing(
    context: CoachingContext, thresholds: AnalyzerThresholds = DEFAULT_THRESHOLDS
) -> list[Insight]:
    insights: list[Insight] = []
    goal = context.user_profile.primary_goal
    protocol = resolve_protocol(goal)

    avg_breakfast = average(hour_of(meal.timestamp) for meal in meals_of_type(context.recent_meals, "breakfast"))
    if avg_breakfast is not None:
        deviation = abs(avg_breakfast - protocol.optimal_breakfast_hour)
        if deviation > thresholds.breakfast_shift_hours:
            insights.append(
                make_insight(
                    InsightType.recommendation,
                    "Optimize Breakfast Timing",
                    f"Shifting breakfast to {protocol.breakfast_window_label} aligns with your "
                    f"circadian rhythm for better {goal} results.",
                    {
                        "current_average": format_clock(avg_breakfast),
                        "optimal": protocol.breakfast_window_label,
                        "deviation_hours": round(deviation, 1),
                        "scientific_basis": protocol.scientific_basis[-1],
                    },
                    [
                        "Set breakfast alarm for optimal window",
                        "Prep overnight oats for quick morning meals",
                        "Gradually shift by 15 minutes daily",
                    ],
                    Priority.medium,
                    "Improved hormone balance and energy",
                )
            )

    target_fasting = protocol.target_fasting_hours
    avg_fasting = average(fasting_windows(context.recent_meals, thresholds.overnight_fast_min_hours))
    if (
        target_fasting is not None
        and avg_fasting is not None
        and avg_fasting < target_fasting - thresholds.fasting_shortfall_hours
    ):
        insights.append(
            make_insight(
                InsightType.opportunity,
                "Extend Your Overnight Fast",
                f"Increasing your fasting window to {target_fasting:g} hours can accelerate "
                f"your {goal} progress.",
                {
                    "current_fasting_hours": round(avg_fasting, 1),
                    "target_fasting_hours": target_fasting,
                    "fasting_protocol": protocol.fasting_protocol,
                    "benefit_explanation": "Enhances fat burning and cellular repair",
                },
                [
                    "Finish dinner 30 minutes earlier",
                    "Replace late-night snacks with herbal tea",
                    "Delay breakfast by 30 minutes",
                ],
                Priority.low,
                "5-10% improvement in metabolic flexibility",
            )
        )

    return insights
