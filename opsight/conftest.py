# opsight/conftest.py
from datetime import datetime, timezone

import pytest

from opsight.core.config import settings
from opsight.core.metrics import METRICS
from opsight.features.insights.gateway import InMemoryInsightStore, reset_store, set_store


class FakeChatModel:
    """Stands in for LanguageModelClient; records every call."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def complete(self, system_instruction, user_message, *, max_tokens, temperature):
        self.calls.append(
            {
                "system_instruction": system_instruction,
                "user_message": user_message,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """No real model calls, fresh counters, no store leaking between tests."""
    monkeypatch.setattr(settings, "GROQ_API_KEY", None)
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    METRICS.reset()
    reset_store()
    yield
    reset_store()


@pytest.fixture
def fixed_now():
    return datetime(2025, 6, 16, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    memory = InMemoryInsightStore()
    set_store(memory)
    return memory


@pytest.fixture
def sql_store():
    """SqlInsightStore over a fresh in-memory SQLite database."""
    from opsight.core.database import create_all_tables, dispose_engine, init_engine
    from opsight.features.insights.store_sql import SqlInsightStore

    init_engine("sqlite://")
    create_all_tables()
    sql = SqlInsightStore()
    set_store(sql)
    yield sql
    dispose_engine()


@pytest.fixture
def fake_model():
    """Factory: fake_model(response="...") or fake_model(error=SomeError())."""
    def build(response=None, error=None):
        return FakeChatModel(response=response, error=error)
    return build
