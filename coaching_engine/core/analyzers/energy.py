from typing import Any, Optional

from coaching_engine.core.analyzers.common import average, make_insight, meals_of_type
from coaching_engine.core.config import AnalyzerThresholds
from coaching_engine.core.entities import CoachingContext, EnergySample, Insight, InsightType, Priority
from coaching_engine.core.protocols import goal_mentions

DEFAULT_THRESHOLDS = AnalyzerThresholds()


def _window_levels(samples: tuple[EnergySample, ...], start_hour: int, end_hour: int) -> list[int]:
    return [sample.level for sample in samples if start_hour <= sample.timestamp.hour < end_hour]


def analyze_lunch_impact(context: CoachingContext, thresholds: AnalyzerThresholds) -> dict[str, Any]:
    lunches = meals_of_type(context.recent_meals, "lunch")
    high_carb = [meal for meal in lunches if meal.carbs > thresholds.high_carb_lunch_grams]
    crash_days = len({meal.timestamp.date() for meal in high_carb})
    return {
        "lunch_count": len(lunches),
        "high_carb_lunches": len(high_carb),
        "crash_frequency_pct": round(min(100.0, crash_days / context.window_days * 100)),
        "primary_cause": "high carb intake" if len(high_carb) > len(lunches) / 2 else "meal timing",
        "recommended_carbs": thresholds.recommended_lunch_carbs,
    }


def analyze_breakfast_impact(context: CoachingContext, thresholds: AnalyzerThresholds) -> dict[str, Any]:
    breakfasts = meals_of_type(context.recent_meals, "breakfast")
    avg_protein = average(meal.protein for meal in breakfasts) or 0.0
    recommendations = []
    if avg_protein < thresholds.breakfast_protein_target:
        recommendations.append(
            f"Increase breakfast protein to {thresholds.breakfast_protein_target - 5:.0f}-"
            f"{thresholds.breakfast_protein_target:.0f}g"
        )
    if any(meal.fiber < thresholds.breakfast_fiber_floor for meal in breakfasts):
        recommendations.append("Add fiber-rich foods (berries, oats)")
    recommendations.append("Include healthy fats for sustained energy")
    return {
        "breakfast_count": len(breakfasts),
        "current_protein": round(avg_protein, 1),
        "target_protein": thresholds.breakfast_protein_target,
        "recommendations": recommendations,
    }


def analyze_energy_patterns(
    context: CoachingContext, thresholds: AnalyzerThresholds = DEFAULT_THRESHOLDS
) -> list[Insight]:
    """Morning/afternoon energy comparison.

    Emits an afternoon-crash pattern when the afternoon mean sits more than
    ``energy_crash_drop`` points under the morning mean, and a breakfast
    recommendation when mornings are low for an energy-focused goal.
    """
    insights: list[Insight] = []
    samples = context.energy_levels
    avg_morning: Optional[float] = average(
        _window_levels(samples, thresholds.morning_start_hour, thresholds.morning_end_hour)
    )
    avg_afternoon: Optional[float] = average(
        _window_levels(samples, thresholds.afternoon_start_hour, thresholds.afternoon_end_hour)
    )

    if (
        avg_morning is not None
        and avg_afternoon is not None
        and avg_afternoon < avg_morning - thresholds.energy_crash_drop
    ):
        drop_pct = (avg_morning - avg_afternoon) / avg_morning * 100
        lunch = analyze_lunch_impact(context, thresholds)
        insights.append(
            make_insight(
                InsightType.pattern,
                "Afternoon Energy Crashes Detected",
                f"Your energy drops by {round(drop_pct)}% after lunch. "
                "This pattern is affecting your productivity.",
                {
                    "morning_average": round(avg_morning, 2),
                    "afternoon_average": round(avg_afternoon, 2),
                    "drop_percentage": round(drop_pct, 1),
                    "crash_frequency": f"{lunch['crash_frequency_pct']}% of days",
                    "likely_cause": lunch["primary_cause"],
                    "recommended_carbs": lunch["recommended_carbs"],
                },
                [
                    f"Reduce lunch carbs to under {lunch['recommended_carbs']:.0f}g",
                    "Add 10-minute walk after lunch",
                    "Consider splitting lunch into two smaller meals",
                ],
                Priority.high,
                "Could improve afternoon productivity by 30-40%",
            )
        )

    if (
        avg_morning is not None
        and avg_morning < thresholds.morning_energy_floor
        and goal_mentions(context.user_profile.primary_goal, "energy")
    ):
        breakfast = analyze_breakfast_impact(context, thresholds)
        insights.append(
            make_insight(
                InsightType.recommendation,
                "Optimize Your Morning Fuel",
                "Your morning energy is suboptimal. Adjusting breakfast composition "
                "can significantly improve your start to the day.",
                {"morning_average": round(avg_morning, 2), **breakfast},
                breakfast["recommendations"],
                Priority.high,
                "Start your day with 25% more energy",
            )
        )

    return insights
