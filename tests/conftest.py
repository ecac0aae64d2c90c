import pytest

from moodtube import config, youtube


@pytest.fixture(autouse=True)
def isolated(monkeypatch):
    # No real OpenAI or YouTube traffic from tests
    monkeypatch.setattr(config, "OPENAI_API_KEY", "")
    youtube._matches.clear()
    yield
    youtube._matches.clear()
