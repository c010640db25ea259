import pytest

from coaching_engine.services.llm import RealLLMClient, resolve_gateway_config, select_model_for_task


def test_select_model_for_utility_task() -> None:
    chosen = select_model_for_task("gemini-1.5-pro", "gemini-2.5-pro-thinking", "gemini-1.5-flash", "ranking")
    assert chosen == "gemini-1.5-flash"


def test_select_model_for_reasoning_task() -> None:
    chosen = select_model_for_task("gemini-1.5-pro", "gemini-2.5-pro-thinking", "gemini-1.5-flash", "reasoning")
    assert chosen == "gemini-1.5-pro"


def test_select_model_for_deep_think_task() -> None:
    chosen = select_model_for_task("gemini-1.5-pro", "gemini-2.5-pro-thinking", "gemini-1.5-flash", "deep_think")
    assert chosen == "gemini-2.5-pro-thinking"


def test_gateway_config_requires_provider_and_key(monkeypatch) -> None:
    monkeypatch.delenv("DEFAULT_AI_PROVIDER", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    with pytest.raises(ValueError):
        resolve_gateway_config()


def test_real_client_routes_from_env(monkeypatch) -> None:
    monkeypatch.setenv("DEFAULT_AI_PROVIDER", "gemini")
    monkeypatch.setenv("DEFAULT_REASONING_MODEL", "gemini-1.5-pro")
    monkeypatch.setenv("DEFAULT_UTILITY_MODEL", "gemini-1.5-flash")
    monkeypatch.delenv("DEFAULT_DEEP_THINKER_MODEL", raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")

    client = RealLLMClient()
    assert client.model_for_task("ranking") == "gemini-1.5-flash"
    assert client.model_for_task("deep_think") == "gemini-1.5-pro"
