from typing import Any, Optional, Sequence

from coaching_engine.core.analyzers.common import make_insight, meals_of_type
from coaching_engine.core.config import AnalyzerThresholds
from coaching_engine.core.entities import CoachingContext, Insight, InsightType, MealRecord, Priority
from coaching_engine.core.protocols import goal_mentions, resolve_protocol

DEFAULT_THRESHOLDS = AnalyzerThresholds()


def macro_split(meals: Sequence[MealRecord]) -> Optional[dict[str, Any]]:
    total_calories = sum(meal.calories for meal in meals)
    if total_calories <= 0:
        return None
    protein = sum(meal.protein for meal in meals)
    carbs = sum(meal.carbs for meal in meals)
    fat = sum(meal.fat for meal in meals)
    return {
        "total_calories": total_calories,
        "protein_pct": protein * 4 / total_calories * 100,
        "carbs_pct": carbs * 4 / total_calories * 100,
        "fat_pct": fat * 9 / total_calories * 100,
        "avg_calories": total_calories / len(meals),
    }


def protein_gap_grams(target_pct: float, actual_pct: float, total_calories: float) -> float:
    return (target_pct - actual_pct) * total_calories / 100 / 4


def _protein_impact(goal: str) -> str:
    if goal_mentions(goal, "muscle"):
        return "Critical for muscle growth"
    if goal_mentions(goal, "weight"):
        return "Essential for maintaining muscle while losing fat"
    return "Steadier energy and faster recovery"


def analyze_macro_balance(
    context: CoachingContext, thresholds: AnalyzerThresholds = DEFAULT_THRESHOLDS
) -> list[Insight]:
    insights: list[Insight] = []
    goal = context.user_profile.primary_goal
    protocol = resolve_protocol(goal)

    overall = macro_split(context.recent_meals)
    if overall is None:
        return insights

    actual_pct = overall["protein_pct"]
    target_pct = protocol.protein_pct
    if actual_pct < target_pct - thresholds.protein_deficit_points:
        grams = protein_gap_grams(target_pct, actual_pct, overall["total_calories"])
        insights.append(
            make_insight(
                InsightType.warning,
                "Insufficient Protein Intake",
                f"You're {round((target_pct - actual_pct) / target_pct * 100)}% below your protein "
                f"target. This is limiting your {goal} progress.",
                {
                    "current_intake_pct": round(actual_pct, 1),
                    "target_intake_pct": target_pct,
                    "total_calories": round(overall["total_calories"], 1),
                    "grams_needed": round(grams, 1),
                },
                [
                    f"Add about {round(grams)}g protein across your meals",
                    "Add 20-30g protein to breakfast",
                    "Include protein snacks between meals",
                ],
                Priority.high,
                _protein_impact(goal),
            )
        )

    breakfast = macro_split(meals_of_type(context.recent_meals, "breakfast"))
    if (
        breakfast is not None
        and breakfast["carbs_pct"] > thresholds.breakfast_carb_share_pct
        and goal_mentions(goal, "energy")
    ):
        insights.append(
            make_insight(
                InsightType.recommendation,
                "Rebalance Your Breakfast",
                "Your breakfast is too carb-heavy, causing mid-morning energy crashes.",
                {key: round(value, 1) for key, value in breakfast.items()},
                [
                    "Reduce breakfast carbs by 20g",
                    "Add 2 eggs or Greek yogurt",
                    "Include healthy fats (avocado, nuts)",
                ],
                Priority.medium,
                "Sustained morning energy until lunch",
            )
        )

    return insights
