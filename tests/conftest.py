"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from chatbranch.config import Config, reset_config
from chatbranch.context.tree import MessageTree
from chatbranch.session.session import ChatSession

from tests.utils import FakeClock

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch):
    """Keep environment overrides and cached config out of every test."""
    for name in ("CHATBRANCH_LOG", "CHATBRANCH_MODEL", "CHATBRANCH_CONTEXT_LIMIT"):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tree() -> MessageTree:
    return MessageTree()


@pytest.fixture
def config() -> Config:
    return Config()


@pytest.fixture
def session(config: Config, clock: FakeClock) -> ChatSession:
    return ChatSession("llama3.1:8b", config=config, clock=clock)
