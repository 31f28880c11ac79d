import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


class _StubChatModel:
    def __init__(self, provider, kwargs):
        self.provider = provider
        self.kwargs = kwargs

    def invoke(self, messages):
        self.provider.calls.append(messages)
        if self.provider.error is not None:
            raise self.provider.error
        return SimpleNamespace(content=self.provider.reply)

    async def astream(self, messages):
        self.provider.calls.append(messages)
        if self.provider.error is not None:
            raise self.provider.error
        items = self.provider.tokens if self.provider.tokens is not None else [self.provider.reply]
        try:
            for item in items:
                if isinstance(item, BaseException):
                    raise item
                if isinstance(item, (int, float)):
                    await asyncio.sleep(item)
                    continue
                yield SimpleNamespace(content=item)
        finally:
            self.provider.closed += 1


class StubProvider:
    """Stands in for ``ChatOpenAI``; records every call it receives.

    ``tokens`` drives ``astream``: strings are yielded, numbers are sleeps in
    seconds and exceptions are raised at that point.
    """

    def __init__(self):
        self.reply = "OK"
        self.tokens = None
        self.error = None
        self.calls = []
        self.init_kwargs = []
        self.closed = 0

    def __call__(self, *args, **kwargs):
        self.init_kwargs.append(kwargs)
        return _StubChatModel(self, kwargs)


@pytest.fixture(autouse=True)
def _fresh_state(monkeypatch):
    """Fresh in-memory storage and no external services for every test."""
    from src.projectbot.infrastructure import events, storage
    from src.projectbot.security import rate_limit
    from src.projectbot.services import asana_client, context_assembler, slack_client

    for name in ("SLACK_BOT_TOKEN", "ASANA_ACCESS_TOKEN", "REDIS_URL", "PROJECTBOT_TEST_HARNESS_REFERERS"):
        monkeypatch.delenv(name, raising=False)
    for name in ("SMTP_HOST", "SMTP_USER", "SMTP_PASS", "SMTP_FROM"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("PROJECTBOT_STORAGE_IMPL", "memory")

    monkeypatch.setattr(storage, "_storage", storage.InMemoryStorage())
    monkeypatch.setattr(slack_client, "_client", None)
    monkeypatch.setattr(asana_client, "_client", None)
    events.reset_publisher()
    context_assembler.clear_document_cache()
    rate_limit.reset_rate_limits()
    yield
    context_assembler.clear_document_cache()


@pytest.fixture
def stub_llm(monkeypatch):
    from src.projectbot.services import llm

    provider = StubProvider()
    monkeypatch.setattr(llm, "ChatOpenAI", provider)
    return provider


@pytest.fixture
def storage():
    from src.projectbot.infrastructure.storage import get_storage

    return get_storage()
