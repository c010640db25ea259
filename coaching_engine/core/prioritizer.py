import json
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Optional, Sequence

from coaching_engine.core.config import INSIGHT_RERANK_TIMEOUT_SECONDS, MAX_INSIGHTS
from coaching_engine.core.entities import PRIORITY_ORDER, CoachingContext, Insight
from coaching_engine.services.llm import LLMClient, ParseFailure

logger = logging.getLogger("uvicorn.error")

RERANK_EXECUTOR = ThreadPoolExecutor(max_workers=4, thread_name_prefix="insight-rerank")

RERANK_SYSTEM_INSTRUCTION = (
    "You rank nutrition coaching insights. Return strict JSON only in the form "
    '{"ranked_ids": ["<insight id>", ...]} using ids from the provided list.'
)


def fallback_order(candidates: Sequence[Insight], limit: int = MAX_INSIGHTS) -> list[Insight]:
    # sorted() is stable, so emission order breaks ties within a priority.
    return sorted(candidates, key=lambda insight: PRIORITY_ORDER[insight.priority])[:limit]


def build_rerank_prompt(candidates: Sequence[Insight], context: CoachingContext, limit: int) -> str:
    profile = context.user_profile
    payload = [
        {
            "id": insight.id,
            "type": insight.type.value,
            "title": insight.title,
            "description": insight.description,
            "priority": insight.priority.value,
            "impact": insight.impact,
            "action_items": list(insight.action_items),
        }
        for insight in candidates
    ]
    previous_titles = [insight.title for insight in context.previous_insights]
    return (
        f"Prioritize these coaching insights for maximum impact on {profile.primary_goal}.\n\n"
        f"INSIGHTS:\n{json.dumps(payload, indent=2)}\n\n"
        "USER CONTEXT:\n"
        f"- Primary goal: {profile.primary_goal}\n"
        f"- Secondary goals: {', '.join(profile.secondary_goals) or 'none'}\n"
        f"- Restrictions: {', '.join(profile.restrictions) or 'none'}\n"
        f"- Recently shown insights: {json.dumps(previous_titles)}\n\n"
        "Rank insights by:\n"
        "1. Impact on primary goal\n"
        "2. Ease of implementation\n"
        "3. Likelihood of adherence\n"
        "4. Cascading benefits\n"
        "Prefer insights that do not repeat recently shown ones.\n\n"
        f'Return the top {limit} insight ids in priority order as {{"ranked_ids": [...]}}.'
    )


def validate_ranking(payload: dict[str, Any], candidates: Sequence[Insight], limit: int) -> Optional[list[Insight]]:
    ranked_ids = payload.get("ranked_ids")
    if not isinstance(ranked_ids, list) or not ranked_ids:
        return None
    by_id = {insight.id: insight for insight in candidates}
    if any(not isinstance(item, str) or item not in by_id for item in ranked_ids):
        return None
    if len(set(ranked_ids)) != len(ranked_ids):
        return None
    return [by_id[item] for item in ranked_ids[:limit]]


class InsightPrioritizer:
    """Orders candidate insights and bounds the result.

    The optional LLM re-rank runs on ``RERANK_EXECUTOR`` and is abandoned after
    ``timeout_seconds``. Any failure, timeout or invalid ordering falls back to
    the deterministic priority sort. ``prioritize`` never raises.
    """

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        timeout_seconds: float = INSIGHT_RERANK_TIMEOUT_SECONDS,
        limit: int = MAX_INSIGHTS,
        executor: Optional[Executor] = None,
    ) -> None:
        self.llm_client = llm_client
        self.timeout_seconds = timeout_seconds
        self.limit = limit
        self.executor = executor or RERANK_EXECUTOR

    def prioritize(self, candidates: Sequence[Insight], context: CoachingContext) -> list[Insight]:
        if not candidates:
            return []
        if self.llm_client is None or len(candidates) == 1:
            return fallback_order(candidates, self.limit)
        ranked = self._rerank(candidates, context)
        if ranked is None:
            return fallback_order(candidates, self.limit)
        return ranked

    def _rerank(self, candidates: Sequence[Insight], context: CoachingContext) -> Optional[list[Insight]]:
        prompt = build_rerank_prompt(candidates, context, self.limit)
        try:
            future = self.executor.submit(
                self.llm_client.generate_json,
                prompt,
                "ranking",
                RERANK_SYSTEM_INSTRUCTION,
            )
        except Exception:
            logger.exception("insight_rerank_submit_error user_id=%s", context.user_id)
            return None
        try:
            result = future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "insight_rerank_timeout user_id=%s timeout_seconds=%s", context.user_id, self.timeout_seconds
            )
            return None
        except Exception:
            logger.exception("insight_rerank_error user_id=%s", context.user_id)
            return None

        if isinstance(result, ParseFailure):
            logger.warning("insight_rerank_parse_failure user_id=%s reason=%s", context.user_id, result.reason)
            return None
        ranked = validate_ranking(result.payload, candidates, self.limit)
        if ranked is None:
            logger.warning(
                "insight_rerank_invalid_ranking user_id=%s payload=%s", context.user_id, str(result.payload)[:200]
            )
        return ranked
