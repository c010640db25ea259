import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from coaching_engine.core.analyzers.energy import analyze_energy_patterns
from coaching_engine.core.analyzers.goal_progress import analyze_goal_progress
from coaching_engine.core.analyzers.macro_balance import analyze_macro_balance
from coaching_engine.core.analyzers.meal_timing import analyze_meal_timing
from coaching_engine.core.analyzers.sleep import analyze_sleep_correlations
from coaching_engine.core.config import INSIGHT_RETENTION_DAYS, AnalyzerThresholds
from coaching_engine.core.entities import CoachingContext, Insight
from coaching_engine.core.errors import PersistenceError
from coaching_engine.core.insight_store import save_insights
from coaching_engine.core.prioritizer import InsightPrioritizer

logger = logging.getLogger("uvicorn.error")

Analyzer = Callable[[CoachingContext, AnalyzerThresholds], list[Insight]]

ANALYZERS: tuple[Analyzer, ...] = (
    analyze_energy_patterns,
    analyze_sleep_correlations,
    analyze_macro_balance,
    analyze_meal_timing,
    analyze_goal_progress,
)

ANALYZER_EXECUTOR = ThreadPoolExecutor(max_workers=len(ANALYZERS), thread_name_prefix="insight-analyzer")


class CoachingEngine:
    """Runs the pattern analyzers over a context snapshot and ranks the merged candidates."""

    def __init__(
        self,
        prioritizer: Optional[InsightPrioritizer] = None,
        thresholds: Optional[AnalyzerThresholds] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        analyzers: Sequence[Analyzer] = ANALYZERS,
        executor: Optional[Executor] = None,
        retention_days: int = INSIGHT_RETENTION_DAYS,
    ) -> None:
        self.prioritizer = prioritizer or InsightPrioritizer()
        self.thresholds = thresholds or AnalyzerThresholds.from_env()
        self.session_factory = session_factory
        self.analyzers = tuple(analyzers)
        self.executor = executor or ANALYZER_EXECUTOR
        self.retention_days = retention_days

    def run_analyzers(self, context: CoachingContext) -> list[Insight]:
        futures = [
            (analyzer, self.executor.submit(analyzer, context, self.thresholds)) for analyzer in self.analyzers
        ]
        candidates: list[Insight] = []
        for analyzer, future in futures:
            try:
                candidates.extend(future.result())
            except Exception:
                logger.exception(
                    "insight_analyzer_error analyzer=%s user_id=%s", analyzer.__name__, context.user_id
                )
        return candidates

    def generate_coaching_insights(self, context: CoachingContext) -> list[Insight]:
        candidates = self.run_analyzers(context)
        insights = self.prioritizer.prioritize(candidates, context)
        logger.info(
            "insights_generated user_id=%s candidates=%s returned=%s",
            context.user_id,
            len(candidates),
            len(insights),
        )
        return insights

    def generate_and_store(self, context: CoachingContext) -> tuple[list[Insight], bool]:
        """Generate insights and persist them; returns ``(insights, persisted)``."""
        insights = self.generate_coaching_insights(context)
        if not insights:
            return insights, True
        if self.session_factory is None:
            return insights, False
        try:
            save_insights(self.session_factory, context.user_id, insights, self.retention_days)
        except PersistenceError:
            logger.exception("insight_persist_error user_id=%s count=%s", context.user_id, len(insights))
            return insights, False
        return insights, True
