import os
import tempfile
import time
from enum import Enum
from pathlib import Path
from typing import Callable
from uuid import uuid4

# The engine is built at import time from DB_PATH.
os.environ.setdefault("DB_PATH", str(Path(tempfile.mkdtemp(prefix="coaching_engine_")) / "bootstrap.db"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from coaching_engine.db.models import User
from coaching_engine.db.session import SessionLocal, configure_database, create_tables
from coaching_engine.services.llm import LLMJSONResult, ParsedJSON, get_llm_client, to_json_result
from coaching_engine.services.performance_monitor import PerformanceMonitor, get_performance_monitor


class FakeScenario(str, Enum):
    OK_RERANK = "OK_RERANK"
    REVERSED_RERANK = "REVERSED_RERANK"
    MALFORMED_JSON = "MALFORMED_JSON"
    UNKNOWN_IDS = "UNKNOWN_IDS"
    TIMEOUT = "TIMEOUT"
    SLOW = "SLOW"


class FakeLLMClient:
    def __init__(self, scenario: FakeScenario, delay_seconds: float = 0.5) -> None:
        self.scenario = scenario
        self.delay_seconds = delay_seconds
        self.calls: list[dict] = []

    def model_for_task(self, task_type: str) -> str:
        return "gemini-1.5-flash"

    def generate_json(self, prompt: str, task_type: str = "reasoning", system_instruction: str = "") -> LLMJSONResult:
        self.calls.append({"prompt": prompt, "task_type": task_type, "system_instruction": system_instruction})
        ids = _ids_in_prompt(prompt)
        if self.scenario == FakeScenario.OK_RERANK:
            return ParsedJSON(payload={"ranked_ids": ids}, model="gemini-1.5-flash", tokens_used=120)
        if self.scenario == FakeScenario.REVERSED_RERANK:
            return ParsedJSON(payload={"ranked_ids": list(reversed(ids))}, model="gemini-1.5-flash", tokens_used=120)
        if self.scenario == FakeScenario.MALFORMED_JSON:
            return to_json_result('{"ranked_ids": ["a",', model="gemini-1.5-flash", tokens_used=40)
        if self.scenario == FakeScenario.UNKNOWN_IDS:
            return ParsedJSON(payload={"ranked_ids": ["not-a-real-id"]}, model="gemini-1.5-flash", tokens_used=30)
        if self.scenario == FakeScenario.TIMEOUT:
            raise TimeoutError("simulated timeout")
        if self.scenario == FakeScenario.SLOW:
            time.sleep(self.delay_seconds)
            return ParsedJSON(payload={"ranked_ids": ids}, model="gemini-1.5-flash", tokens_used=120)
        raise ValueError("Unknown fake scenario")


def _ids_in_prompt(prompt: str) -> list[str]:
    ids = []
    for line in prompt.splitlines():
        stripped = line.strip()
        if stripped.startswith('"id": "'):
            ids.append(stripped[len('"id": "') :].rstrip('",'))
    return ids


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    db_path = tmp_path_factory.mktemp("db") / "coaching_engine_test.db"
    configure_database(str(db_path))
    create_tables()
    return db_path


@pytest.fixture(scope="session")
def app(test_db_path: Path):
    from coaching_engine.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def client(app):
    app.dependency_overrides = {}
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


@pytest.fixture
def db_session(test_db_path: Path):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def create_user(db_session: Session) -> Callable[[], User]:
    def _create_user() -> User:
        user = User(id=f"user_{uuid4().hex[:10]}")
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def user_headers() -> Callable[[], dict[str, str]]:
    def _headers() -> dict[str, str]:
        return {"X-User-Id": f"user_{uuid4().hex[:10]}"}

    return _headers


@pytest.fixture
def monitor(test_db_path: Path) -> PerformanceMonitor:
    return PerformanceMonitor(session_factory=SessionLocal, model_rates={f"model-{uuid4().hex[:8]}": 0.001})


@pytest.fixture
def fake_llm_factory() -> Callable[[FakeScenario], FakeLLMClient]:
    def _factory(scenario: FakeScenario) -> FakeLLMClient:
        return FakeLLMClient(scenario=scenario)

    return _factory


@pytest.fixture
def override_llm(app, fake_llm_factory):
    def _override(scenario: FakeScenario) -> FakeLLMClient:
        fake = fake_llm_factory(scenario)
        app.dependency_overrides[get_llm_client] = lambda: fake
        return fake

    return _override


@pytest.fixture
def override_monitor(app):
    def _override(instance: PerformanceMonitor) -> PerformanceMonitor:
        app.dependency_overrides[get_performance_monitor] = lambda: instance
        return instance

    return _override
