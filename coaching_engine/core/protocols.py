from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_GOAL = "ENERGY_OPTIMIZATION"


@dataclass(frozen=True)
class NutritionProtocol:
    goal_type: str
    protein_pct: float
    carb_pct: float
    fat_pct: float
    fiber_grams_min: float
    breakfast_window: tuple[float, float]
    breakfast_window_label: str
    fasting_protocol: str
    target_fasting_hours: Optional[float]
    scientific_basis: tuple[str, ...]

    @property
    def optimal_breakfast_hour(self) -> float:
        return self.breakfast_window[0]


NUTRITION_PROTOCOLS: dict[str, NutritionProtocol] = {
    "ENERGY_OPTIMIZATION": NutritionProtocol(
        goal_type="Sustained Energy & Focus",
        protein_pct=25,
        carb_pct=40,
        fat_pct=35,
        fiber_grams_min=30,
        breakfast_window=(7.0, 9.0),
        breakfast_window_label="7:00 AM - 9:00 AM",
        fasting_protocol="12-14 hour overnight fast",
        target_fasting_hours=12,
        scientific_basis=(
            "Stable blood glucose prevents energy crashes (Jenkins et al., 2021)",
            "Circadian-aligned eating improves metabolic function (Patterson & Sears, 2017)",
        ),
    ),
    "SLEEP_QUALITY": NutritionProtocol(
        goal_type="Deep Sleep & Recovery",
        protein_pct=20,
        carb_pct=45,
        fat_pct=35,
        fiber_grams_min=35,
        breakfast_window=(7.5, 9.5),
        breakfast_window_label="7:30 AM - 9:30 AM",
        fasting_protocol="14-16 hour overnight fast (finish dinner early)",
        target_fasting_hours=14,
        scientific_basis=(
            "Tryptophan-rich foods increase serotonin/melatonin (Bravo et al., 2013)",
            "Avoiding late meals improves sleep quality (Kinsey & Ormsbee, 2015)",
        ),
    ),
    "WEIGHT_LOSS": NutritionProtocol(
        goal_type="Sustainable Fat Loss",
        protein_pct=35,
        carb_pct=35,
        fat_pct=30,
        fiber_grams_min=35,
        breakfast_window=(8.0, 10.0),
        breakfast_window_label="8:00 AM - 10:00 AM",
        fasting_protocol="16:8 intermittent fasting",
        target_fasting_hours=16,
        scientific_basis=(
            "Protein preserves lean mass during caloric deficit (Westerterp-Plantenga et al., 2012)",
            "Time-restricted eating supports fat oxidation (Sutton et al., 2018)",
        ),
    ),
    "MUSCLE_BUILDING": NutritionProtocol(
        goal_type="Lean Muscle Growth",
        protein_pct=30,
        carb_pct=45,
        fat_pct=25,
        fiber_grams_min=30,
        breakfast_window=(6.5, 8.5),
        breakfast_window_label="6:30 AM - 8:30 AM",
        fasting_protocol="No extended fasting (impairs recovery)",
        target_fasting_hours=None,
        scientific_basis=(
            "Protein distribution across meals maximizes synthesis (Mamerow et al., 2014)",
            "Early protein intake supports anabolic signalling (Areta et al., 2013)",
        ),
    ),
    "STRESS_MANAGEMENT": NutritionProtocol(
        goal_type="Cortisol Balance & Mental Clarity",
        protein_pct=25,
        carb_pct=40,
        fat_pct=35,
        fiber_grams_min=40,
        breakfast_window=(7.0, 9.0),
        breakfast_window_label="7:00 AM - 9:00 AM",
        fasting_protocol="12-hour overnight fast (gentle approach)",
        target_fasting_hours=12,
        scientific_basis=(
            "Omega-3 intake lowers inflammatory stress markers (Kiecolt-Glaser et al., 2011)",
            "Regular meal timing stabilizes cortisol rhythm (Witbracht et al., 2015)",
        ),
    ),
    "ATHLETIC_PERFORMANCE": NutritionProtocol(
        goal_type="Peak Athletic Performance",
        protein_pct=25,
        carb_pct=50,
        fat_pct=25,
        fiber_grams_min=30,
        breakfast_window=(6.0, 8.0),
        breakfast_window_label="6:00 AM - 8:00 AM",
        fasting_protocol="No fasting on training days",
        target_fasting_hours=None,
        scientific_basis=(
            "Carbohydrate availability drives high-intensity output (Burke et al., 2011)",
            "Pre-exercise fueling timing affects performance (Ormsbee et al., 2014)",
        ),
    ),
}


def normalize_goal(goal: Optional[str]) -> str:
    return (goal or "").strip().upper().replace(" ", "_").replace("-", "_")


def protocol_for_goal(goal: Optional[str]) -> Optional[NutritionProtocol]:
    return NUTRITION_PROTOCOLS.get(normalize_goal(goal))


def resolve_protocol(goal: Optional[str]) -> NutritionProtocol:
    return protocol_for_goal(goal) or NUTRITION_PROTOCOLS[DEFAULT_GOAL]


def goal_mentions(goal: Optional[str], keyword: str) -> bool:
    return keyword.lower() in (goal or "").lower()
