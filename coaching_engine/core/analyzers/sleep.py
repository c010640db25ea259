import re
from datetime import datetime
from typing import Any, Optional

from coaching_engine.core.analyzers.common import average, format_clock, make_insight, meals_of_type
from coaching_engine.core.config import AnalyzerThresholds
from coaching_engine.core.entities import CoachingContext, Insight, InsightType, MealRecord, Priority, SleepRecord

DEFAULT_THRESHOLDS = AnalyzerThresholds()

CAFFEINE_PATTERN = re.compile(
    r"\b(coffee|espresso|latte|cappuccino|tea|matcha|cola|energy drink)s?\b",
    re.IGNORECASE,
)


def _dinner_time(sleep: SleepRecord, dinners: list[MealRecord]) -> Optional[datetime]:
    same_day = [meal.timestamp for meal in dinners if meal.timestamp.date() == sleep.date.date()]
    if same_day:
        return max(same_day)
    return sleep.pre_sleep_meal_time


def pair_dinners_with_sleep(context: CoachingContext) -> list[tuple[SleepRecord, float]]:
    dinners = meals_of_type(context.recent_meals, "dinner")
    pairs: list[tuple[SleepRecord, float]] = []
    for sleep in context.sleep_data:
        dinner_at = _dinner_time(sleep, dinners)
        if dinner_at is None:
            continue
        gap_hours = (sleep.date - dinner_at).total_seconds() / 3600
        if gap_hours < 0:
            continue
        pairs.append((sleep, gap_hours))
    return pairs


def identify_sleep_disruptors(context: CoachingContext, thresholds: AnalyzerThresholds) -> list[dict[str, Any]]:
    matched: list[str] = []
    occurrences = 0
    for meal in context.recent_meals:
        if meal.timestamp.hour < thresholds.caffeine_cutoff_hour:
            continue
        hits = [food.name for food in meal.foods if CAFFEINE_PATTERN.search(food.name)]
        if hits:
            occurrences += 1
            matched.extend(name for name in hits if name not in matched)
    if not occurrences:
        return []
    return [
        {
            "name": "Caffeine",
            "cutoff_time": format_clock(thresholds.caffeine_cutoff_hour),
            "impact": "Disrupts deep sleep",
            "occurrences": occurrences,
            "foods": matched,
        }
    ]


def analyze_sleep_correlations(
    context: CoachingContext, thresholds: AnalyzerThresholds = DEFAULT_THRESHOLDS
) -> list[Insight]:
    insights: list[Insight] = []
    pairs = pair_dinners_with_sleep(context)
    late = [sleep.quality for sleep, gap in pairs if gap < thresholds.late_dinner_hours]
    early = [sleep.quality for sleep, gap in pairs if gap >= thresholds.late_dinner_hours]

    if late and early:
        avg_late = average(late)
        avg_early = average(early)
        if avg_early > avg_late + thresholds.sleep_quality_gap:
            loss_pct = (avg_early - avg_late) / avg_early * 100
            insights.append(
                make_insight(
                    InsightType.pattern,
                    "Late Dinners Hurting Your Sleep",
                    f"Eating within {thresholds.late_dinner_hours:g} hours of bed reduces your "
                    f"sleep quality by {round(loss_pct)}%.",
                    {
                        "late_dinner_sleep_quality": round(avg_late, 2),
                        "early_dinner_sleep_quality": round(avg_early, 2),
                        "late_dinner_count": len(late),
                        "early_dinner_count": len(early),
                        "quality_loss_percentage": round(loss_pct, 1),
                        "recommendation": "Finish dinner by 7 PM",
                    },
                    [
                        "Finish dinner by 7 PM",
                        "Prep meals on Sunday for quick dinners",
                        "If hungry before bed, try herbal tea or 1 oz almonds",
                    ],
                    Priority.high,
                    "Improve sleep quality by 20-30%",
                )
            )

    disruptors = identify_sleep_disruptors(context, thresholds)
    if disruptors:
        insights.append(
            make_insight(
                InsightType.warning,
                "Foods Disrupting Your Sleep",
                "Certain foods in your diet are consistently associated with poor sleep quality.",
                {"disruptive_foods": disruptors},
                [f"Avoid {item['name'].lower()} after {item['cutoff_time']}" for item in disruptors],
                Priority.medium,
                "Better recovery and next-day energy",
            )
        )

    return insights
