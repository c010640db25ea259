import json
import os
from dataclasses import dataclass, fields, replace
from typing import Any, TypeVar

INSIGHT_RERANK_TIMEOUT_SECONDS = float(os.getenv("INSIGHT_RERANK_TIMEOUT_SECONDS", "8"))
INSIGHT_RETENTION_DAYS = int(os.getenv("INSIGHT_RETENTION_DAYS", "7"))
INSIGHT_PREVIOUS_LIMIT = int(os.getenv("INSIGHT_PREVIOUS_LIMIT", "10"))
MAX_INSIGHTS = int(os.getenv("MAX_INSIGHTS", "5"))

DEFAULT_MODEL_RATES: dict[str, float] = {
    # Estimated cost per token. Refresh from the provider price sheet as needed.
    "gemini-1.5-flash": 0.0001,
    "gemini-1.5-pro": 0.001,
    "gemini-2.5-pro-thinking": 0.002,
}

ConfigT = TypeVar("ConfigT")


def _from_env(config: ConfigT, prefix: str) -> ConfigT:
    overrides: dict[str, Any] = {}
    for item in fields(config):
        raw = os.getenv(f"{prefix}{item.name.upper()}")
        if raw is None or not raw.strip():
            continue
        current = getattr(config, item.name)
        overrides[item.name] = int(raw) if isinstance(current, int) else float(raw)
    return replace(config, **overrides)


@dataclass(frozen=True)
class AnalyzerThresholds:
    """Tunable constants for the pattern analyzers.

    Defaults are product placeholders rather than fitted values. Every field
    can be overridden with ``INSIGHT_<FIELD_NAME>`` in the environment.
    """

    morning_start_hour: int = 6
    morning_end_hour: int = 12
    afternoon_start_hour: int = 12
    afternoon_end_hour: int = 17
    energy_crash_drop: float = 2.0
    high_carb_lunch_grams: float = 60.0
    recommended_lunch_carbs: float = 40.0
    morning_energy_floor: float = 7.0
    breakfast_protein_target: float = 30.0
    breakfast_fiber_floor: float = 5.0

    late_dinner_hours: float = 3.0
    sleep_quality_gap: float = 1.0
    caffeine_cutoff_hour: int = 14

    protein_deficit_points: float = 5.0
    breakfast_carb_share_pct: float = 60.0

    breakfast_shift_hours: float = 2.0
    overnight_fast_min_hours: float = 8.0
    fasting_shortfall_hours: float = 1.0

    calorie_tolerance: float = 0.10
    default_calorie_target: float = 2000.0
    adherence_check_points: int = 25
    adherence_warning_below: float = 70.0
    adherence_achievement_above: float = 85.0
    deficit_days_per_week: float = 5.0
    strength_sessions_min: int = 3
    high_protein_meal_grams: float = 25.0
    high_protein_days_min: int = 6
    energy_instability_stdev: float = 2.0

    @classmethod
    def from_env(cls) -> "AnalyzerThresholds":
        return _from_env(cls(), "INSIGHT_")


@dataclass(frozen=True)
class MonitorThresholds:
    """Anomaly and clarification-retirement limits, overridable with ``AI_MONITOR_<FIELD_NAME>``."""

    slow_response_ms: float = 10000.0
    high_token_usage: int = 5000
    max_retries: int = 2
    low_confidence: float = 0.5
    retire_thumbs_down_rate: float = 0.5
    retire_min_times_asked: int = 100
    retire_thumbs_up_floor: float = 0.3
    effective_thumbs_up_rate: float = 0.7
    ineffective_thumbs_down_rate: float = 0.3

    @classmethod
    def from_env(cls) -> "MonitorThresholds":
        return _from_env(cls(), "AI_MONITOR_")


def load_model_rates() -> dict[str, float]:
    raw = os.getenv("AI_MODEL_RATES", "").strip()
    if not raw:
        return dict(DEFAULT_MODEL_RATES)
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("AI_MODEL_RATES must be a JSON object of model -> cost per token") from exc
    if not isinstance(parsed, dict) or not parsed:
        raise ValueError("AI_MODEL_RATES must be a non-empty JSON object")
    return {str(model): float(rate) for model, rate in parsed.items()}
