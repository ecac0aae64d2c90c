import asyncio
from types import SimpleNamespace

import pytest

from moodtube import config, recommender
from moodtube.recommender import RecommendationError


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def model_reply(monkeypatch):
    """Point the recommender at a fake OpenAI client answering with *content*."""
    def install(content=None, error=None):
        completions = FakeCompletions(content, error)
        client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
        monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(recommender, "get_client", lambda: client)
        return completions
    return install


def test_parse_songs_ignores_commentary_around_array():
    content = 'Sure! Here you go:\n[{"title": "Hurt", "artist": "Johnny Cash"}]\nEnjoy.'
    assert recommender.parse_songs(content) == [{"title": "Hurt", "artist": "Johnny Cash"}]


def test_parse_songs_rejects_non_json():
    with pytest.raises(RecommendationError):
        recommender.parse_songs("I can't help with that")


def test_parse_songs_rejects_non_list():
    with pytest.raises(RecommendationError):
        recommender.parse_songs('{"title": "Hurt", "artist": "Johnny Cash"}')


def test_validate_songs_drops_malformed_and_strips():
    raw = [
        {"title": "  Black ", "artist": "Pearl Jam "},
        {"title": "", "artist": "Nobody"},
        {"title": "No Artist"},
        {"title": 7, "artist": "Numbers"},
        "Hurt by Johnny Cash",
        None,
    ]
    songs = recommender.validate_songs(raw, count=10)
    assert [(s.title, s.artist) for s in songs] == [("Black", "Pearl Jam")]


def test_validate_songs_truncates_to_count():
    raw = [{"title": f"T{i}", "artist": f"A{i}"} for i in range(8)]
    assert len(recommender.validate_songs(raw, count=5)) == 5


def test_validate_songs_filters_excluded_and_repeats():
    raw = [
        {"title": "Hurt", "artist": "Johnny Cash"},
        {"title": "Black", "artist": "Pearl Jam"},
        {"title": "black", "artist": "pearl  jam"},
        {"title": "River", "artist": "Joni Mitchell"},
    ]
    songs = recommender.validate_songs(raw, count=10, exclude=["JOHNNY CASH hurt"])
    assert [s.title for s in songs] == ["Black", "River"]


def test_prompt_lists_exclusions():
    prompt = recommender.build_prompt("rainy", 4, ["Pearl Jam Black"])
    assert '"rainy"' in prompt
    assert "recommend 4 songs" in prompt
    assert "Do NOT include these songs that were already recommended: Pearl Jam Black" in prompt


def test_missing_credential_uses_fallback_for_mood():
    rec = asyncio.run(recommender.recommend("잔잔한"))
    assert rec.warning == recommender.FALLBACK_WARNING
    assert [s.title for s in rec.songs] == ["River", "Mad World", "봄날"]


def test_unknown_mood_uses_default_fallback():
    rec = asyncio.run(recommender.recommend("hyperpop at 3am"))
    default = recommender.FALLBACK_SONGS[recommender.DEFAULT_FALLBACK_MOOD]
    assert [s.title for s in rec.songs] == [s["title"] for s in default]
    assert rec.warning


def test_model_reply_is_used(model_reply):
    completions = model_reply(
        'Here:\n[{"title": "Dynamite", "artist": "BTS"}, {"title": "Happy", "artist": "Pharrell Williams"}]'
    )
    rec = asyncio.run(recommender.recommend("신나는", count=2, exclude=["Queen Don't Stop Me Now"]))

    assert rec.warning is None
    assert [(s.title, s.artist) for s in rec.songs] == [("Dynamite", "BTS"), ("Happy", "Pharrell Williams")]
    call = completions.calls[0]
    assert call["model"] == config.OPENAI_MODEL
    assert "Queen Don't Stop Me Now" in call["messages"][0]["content"]


def test_upstream_error_falls_back(model_reply):
    model_reply(error=ConnectionError("network down"))
    rec = asyncio.run(recommender.recommend("우울한"))
    assert rec.warning
    assert [s.artist for s in rec.songs] == ["Johnny Cash", "Pearl Jam", "한효주"]


def test_empty_valid_set_falls_back(model_reply):
    model_reply('[{"title": "", "artist": ""}]')
    rec = asyncio.run(recommender.recommend("신나는"))
    assert rec.warning
    assert len(rec.songs) == 3


def test_all_excluded_falls_back(model_reply):
    model_reply('[{"title": "Dynamite", "artist": "BTS"}]')
    rec = asyncio.run(recommender.recommend("신나는", exclude=["BTS Dynamite"]))
    assert rec.warning


def test_count_is_clamped(model_reply):
    completions = model_reply('[{"title": "Dynamite", "artist": "BTS"}]')
    asyncio.run(recommender.recommend("신나는", count=500))
    assert f"recommend {config.MAX_SONG_COUNT} songs" in completions.calls[0]["messages"][0]["content"]
