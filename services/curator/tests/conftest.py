from datetime import datetime, timezone

import pytest

from services.curator.oracle import Scored
from shared.config.settings import get_settings
from shared.schemas.messages import ArticleScore, RawArticle, article_id


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("CURATOR_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CURATOR_ISSUES_DIR", str(tmp_path / "issues"))
    monkeypatch.setenv("CURATOR_CACHE_BACKEND", "file")
    monkeypatch.setenv("CURATOR_BATCH_DELAY", "0")
    monkeypatch.delenv("ALERT_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_article():
    def factory(title, url=None, summary="", source_id="src", published_at=None):
        url = url or "https://example.ro/" + "-".join(title.lower().split())
        return RawArticle(
            id=article_id(source_id, url),
            source_id=source_id,
            source_name=source_id.title(),
            title=title,
            url=url,
            summary=summary,
            published_at=published_at,
            fetched_at=datetime(2026, 1, 12, tzinfo=timezone.utc),
        )

    return factory


@pytest.fixture
def make_score():
    def factory(id, positivity=70, impact=50, romania_relevant=True, category="wins"):
        return ArticleScore(
            id=id,
            summary=f"Rezumat {id}",
            positivity=positivity,
            impact=impact,
            romania_relevant=romania_relevant,
            category=category,
        )

    return factory


class ScriptedOracle:
    """Replays queued outcomes; once the queue is empty, scores every article."""

    def __init__(self, outcomes=None, positivity=70, impact=50):
        self.outcomes = list(outcomes or [])
        self.positivity = positivity
        self.impact = impact
        self.batches = []

    def score_batch(self, articles):
        self.batches.append([a.id for a in articles])
        if self.outcomes:
            return self.outcomes.pop(0)
        return Scored(
            scores=[
                ArticleScore(
                    id=a.id,
                    summary=f"Rezumat: {a.title}",
                    positivity=self.positivity,
                    impact=self.impact,
                    romania_relevant=True,
                    category="wins",
                )
                for a in articles
            ]
        )


@pytest.fixture
def scripted_oracle():
    return ScriptedOracle
