import json
import os
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Tuple, Union

import httpx

LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
LLM_CONNECT_TIMEOUT_SECONDS = float(os.getenv("LLM_CONNECT_TIMEOUT_SECONDS", "10"))
LLM_WRITE_TIMEOUT_SECONDS = float(os.getenv("LLM_WRITE_TIMEOUT_SECONDS", "30"))
LLM_POOL_TIMEOUT_SECONDS = float(os.getenv("LLM_POOL_TIMEOUT_SECONDS", "60"))
LLM_RETRY_COUNT = int(os.getenv("LLM_RETRY_COUNT", "1"))
LLM_RETRY_BACKOFF_SECONDS = float(os.getenv("LLM_RETRY_BACKOFF_SECONDS", "0.75"))
LLM_MAX_TOKENS_UTILITY = int(os.getenv("LLM_MAX_TOKENS_UTILITY", "320"))
LLM_MAX_TOKENS_REASONING = int(os.getenv("LLM_MAX_TOKENS_REASONING", "700"))
LLM_MAX_TOKENS_DEEP = int(os.getenv("LLM_MAX_TOKENS_DEEP", "900"))

DEFAULT_SYSTEM_INSTRUCTION = "Return strict JSON only. Do not wrap the JSON in prose or markdown."


def _http_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=LLM_CONNECT_TIMEOUT_SECONDS,
        read=LLM_TIMEOUT_SECONDS,
        write=LLM_WRITE_TIMEOUT_SECONDS,
        pool=LLM_POOL_TIMEOUT_SECONDS,
    )


def _max_output_tokens(task_type: str) -> int:
    normalized = (task_type or "").strip().lower()
    if normalized in UTILITY_TASK_TYPES:
        return LLM_MAX_TOKENS_UTILITY
    if normalized in DEEP_THINK_TASK_TYPES:
        return LLM_MAX_TOKENS_DEEP
    return LLM_MAX_TOKENS_REASONING


class LLMRequestError(RuntimeError):
    def __init__(self, provider: str, model: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code


@dataclass(frozen=True)
class ParsedJSON:
    payload: dict[str, Any]
    model: str = ""
    tokens_used: int = 0


@dataclass(frozen=True)
class ParseFailure:
    raw: str
    reason: str
    model: str = ""
    tokens_used: int = 0


LLMJSONResult = Union[ParsedJSON, ParseFailure]


def parse_llm_json(raw_text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw_text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            parsed = json.loads(raw_text[start : end + 1])
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass
    raise ValueError("Invalid JSON response from LLM")


def to_json_result(raw_text: str, model: str = "", tokens_used: int = 0) -> LLMJSONResult:
    try:
        return ParsedJSON(payload=parse_llm_json(raw_text), model=model, tokens_used=tokens_used)
    except ValueError as exc:
        return ParseFailure(raw=str(raw_text), reason=str(exc), model=model, tokens_used=tokens_used)


UTILITY_TASK_TYPES = {
    "utility",
    "summarization",
    "routing",
    "classification",
    "extraction",
    "ranking",
}

DEEP_THINK_TASK_TYPES = {
    "deep_think",
    "deep_thinker",
}


@dataclass(frozen=True)
class GatewayConfig:
    provider: str
    reasoning_model: str
    deep_thinker_model: str
    utility_model: str
    api_key: str


def resolve_gateway_config() -> GatewayConfig:
    provider = os.getenv("DEFAULT_AI_PROVIDER", "").strip().lower()
    reasoning_model = os.getenv("DEFAULT_REASONING_MODEL", "").strip() or os.getenv("DEFAULT_AI_MODEL", "").strip()
    deep_thinker_model = os.getenv("DEFAULT_DEEP_THINKER_MODEL", "").strip() or reasoning_model
    utility_model = os.getenv("DEFAULT_UTILITY_MODEL", "").strip() or reasoning_model
    if provider == "openai":
        key = os.getenv("OPENAI_API_KEY", "")
    elif provider == "gemini":
        key = os.getenv("GEMINI_API_KEY", "")
    else:
        key = ""

    if provider and reasoning_model and deep_thinker_model and utility_model and key:
        return GatewayConfig(provider, reasoning_model, deep_thinker_model, utility_model, key)
    raise ValueError("AI config missing")


def select_model_for_task(
    reasoning_model: str, deep_thinker_model: str, utility_model: str, task_type: str
) -> str:
    normalized_task = (task_type or "").strip().lower()
    if normalized_task in UTILITY_TASK_TYPES:
        return utility_model
    if normalized_task in DEEP_THINK_TASK_TYPES:
        return deep_thinker_model
    return reasoning_model


def _openai_request(
    model: str, api_key: str, prompt: str, system_instruction: str, max_output_tokens: int
) -> Tuple[str, int]:
    payload = {
        "model": model,
        "response_format": {"type": "json_object"},
        "messages": [
            {"role": "system", "content": system_instruction},
            {"role": "user", "content": prompt},
        ],
        "max_completion_tokens": max_output_tokens,
    }
    attempts = max(1, LLM_RETRY_COUNT + 1)
    last_error = "unknown error"
    for idx in range(attempts):
        try:
            response = httpx.post(
                "https://api.openai.com/v1/chat/completions",
                headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
                json=payload,
                timeout=_http_timeout(),
            )
            response.raise_for_status()
            data = response.json()
            usage = data.get("usage", {}) if isinstance(data, dict) else {}
            total_tokens = int(usage.get("total_tokens", 0) or 0)
            text = str(data["choices"][0]["message"].get("content", "")).strip()
            if not text:
                raise ValueError("OpenAI chat completion returned empty content")
            return text, total_tokens
        except httpx.ReadTimeout as exc:
            last_error = "read timeout"
            if idx < attempts - 1:
                time.sleep(LLM_RETRY_BACKOFF_SECONDS * (idx + 1))
                continue
            raise LLMRequestError(
                provider="openai",
                model=model,
                message="OpenAI request timed out while waiting for response.",
            ) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code if exc.response is not None else None
            detail = ""
            if exc.response is not None:
                detail = (exc.response.text or "").strip()[:220]
            if status is not None and status >= 500 and idx < attempts - 1:
                time.sleep(LLM_RETRY_BACKOFF_SECONDS * (idx + 1))
                continue
            raise LLMRequestError(
                provider="openai",
                model=model,
                status_code=status,
                message=f"OpenAI request failed (status={status}): {detail or 'no response body'}",
            ) from exc
        except Exception as exc:
            last_error = str(exc)[:220]
            if idx < attempts - 1:
                time.sleep(LLM_RETRY_BACKOFF_SECONDS * (idx + 1))
                continue
            raise LLMRequestError(
                provider="openai",
                model=model,
                message=f"OpenAI request failed: {last_error}",
            ) from exc
    raise LLMRequestError(provider="openai", model=model, message=f"OpenAI request failed: {last_error}")


def _gemini_request(
    model: str, api_key: str, prompt: str, system_instruction: str, max_output_tokens: int
) -> Tuple[str, int]:
    url = f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={api_key}"
    try:
        response = httpx.post(
            url,
            headers={"Content-Type": "application/json"},
            json={
                "systemInstruction": {"parts": [{"text": system_instruction}]},
                "generationConfig": {
                    "responseMimeType": "application/json",
                    "temperature": 0.3,
                    "maxOutputTokens": max_output_tokens,
                },
                "contents": [{"parts": [{"text": prompt}]}],
            },
            timeout=_http_timeout(),
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code if exc.response is not None else None
        detail = ""
        if exc.response is not None:
            detail = (exc.response.text or "").strip()[:220]
        raise LLMRequestError(
            provider="gemini",
            model=model,
            status_code=status,
            message=f"Gemini request failed (status={status}): {detail or 'no response body'}",
        ) from exc
    except httpx.HTTPError as exc:
        raise LLMRequestError(provider="gemini", model=model, message=f"Gemini request failed: {str(exc)[:220]}") from exc
    data = response.json()
    usage = data.get("usageMetadata", {}) if isinstance(data, dict) else {}
    prompt_tokens = int(usage.get("promptTokenCount", 0) or 0)
    completion_tokens = int(usage.get("candidatesTokenCount", 0) or 0)
    total_tokens = int(usage.get("totalTokenCount", prompt_tokens + completion_tokens) or 0)
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as exc:
        raise LLMRequestError(provider="gemini", model=model, message="Gemini response had no candidates") from exc
    return text, total_tokens


class LLMClient(Protocol):
    def generate_json(
        self, prompt: str, task_type: str = "reasoning", system_instruction: str = ""
    ) -> LLMJSONResult:
        ...


class RealLLMClient:
    def __init__(self, config: Optional[GatewayConfig] = None) -> None:
        self._config = config

    @property
    def config(self) -> GatewayConfig:
        if self._config is None:
            self._config = resolve_gateway_config()
        return self._config

    def model_for_task(self, task_type: str) -> str:
        cfg = self.config
        return select_model_for_task(cfg.reasoning_model, cfg.deep_thinker_model, cfg.utility_model, task_type)

    def generate_json(
        self, prompt: str, task_type: str = "reasoning", system_instruction: str = ""
    ) -> LLMJSONResult:
        cfg = self.config
        model = self.model_for_task(task_type)
        max_output_tokens = _max_output_tokens(task_type)
        instruction = system_instruction or DEFAULT_SYSTEM_INSTRUCTION
        if cfg.provider == "openai":
            raw, tokens = _openai_request(model, cfg.api_key, prompt, instruction, max_output_tokens)
        elif cfg.provider == "gemini":
            raw, tokens = _gemini_request(model, cfg.api_key, prompt, instruction, max_output_tokens)
        else:
            raise ValueError("Unsupported AI provider")
        return to_json_result(raw, model=model, tokens_used=tokens)


def get_llm_client() -> LLMClient:
    return RealLLMClient()
