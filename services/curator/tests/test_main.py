import json
from datetime import date, datetime, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest

from services.curator.cache import NullScoreCache
from services.curator.errors import EmptyBatchError, InputMissingError, InsufficientYieldError
from services.curator.main import main, parse_args, run_pipeline
from services.curator.oracle import QuotaExhausted, Scored
from services.curator.refine import SelectionRefiner
from services.curator.storage import iso_week_id
from services.curator.wrapper_copy import DEFAULT_WRAPPER_COPY
from shared.config.settings import get_settings
from shared.schemas.messages import ArticleScore, WeeklyBuffer, WrapperCopy

WEEK = "2026-W03"

TITLES = [
    "Cluj deschide un parc de cinci hectare",
    "Elevii din Iași câștigă olimpiada internațională de matematică",
    "Un nou tren electric leagă Bucureștiul de Constanța",
    "Voluntarii din Brașov au plantat zece mii de stejari",
    "Spitalul din Timișoara inaugurează o secție de pediatrie",
    "Startup românesc atrage o finanțare de milioane de euro",
    "Delta Dunării primește o nouă arie protejată",
    "Bibliotecile din Sibiu rămân deschise nonstop",
    "Cercetătorii clujeni descoperă un tratament promițător",
    "Oradea termină centura ocolitoare înainte de termen",
    "Festivalul de film din Alba atrage un record de spectatori",
    "Pescărușii revin pe lacurile din Herăstrău după curățare",
]


class YieldOracle:
    """Scores the first ``positive`` articles as good news and the rest as bad."""

    def __init__(self, positive):
        self.positive = positive
        self.seen = 0

    def score_batch(self, articles):
        scores = []
        for article in articles:
            good = self.seen < self.positive
            self.seen += 1
            scores.append(ArticleScore(
                id=article.id,
                summary=f"Rezumat: {article.title}",
                positivity=85 if good else 10,
                impact=60,
                romania_relevant=True,
                category="wins",
            ))
        return Scored(scores)


class StubCopyWriter:
    def write(self, articles, week_id):
        return WrapperCopy(greeting="Salut!", intro="Intro", sign_off="Pa!", short_summary="Pe scurt")


class FailingCopyWriter:
    def write(self, articles, week_id):
        raise ValueError("No response from copy model")


def data_dir() -> Path:
    return Path(get_settings().curator.data_dir)


@pytest.fixture
def raw_buffer(make_article):
    def write(titles=TITLES, week_id=WEEK):
        articles = [make_article(title) for title in titles]
        buffer = WeeklyBuffer(week_id=week_id, articles=articles, last_updated=datetime.now(timezone.utc))
        path = data_dir() / "raw" / f"{week_id}.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(buffer.to_wire()), encoding="utf-8")
        return articles

    return write


def test_iso_week_id():
    assert iso_week_id(date(2026, 1, 15)) == "2026-W03"
    assert iso_week_id(date(2027, 1, 1)) == "2026-W53"


def test_parse_args():
    args = parse_args(["--week", WEEK, "--refresh", "--no-refine", "--limit", "20"])
    assert args.week == WEEK and args.refresh and args.no_refine and args.limit == 20


def test_happy_path_writes_draft_and_trace(raw_buffer):
    raw_buffer()

    draft = run_pipeline(
        WEEK,
        oracle=YieldOracle(positive=12),
        cache=NullScoreCache(),
        copy_writer=StubCopyWriter(),
        refine=False,
    )

    assert len(draft.selected) == 10
    assert len(draft.reserves) == 2
    assert draft.total_processed == 12
    assert draft.discarded == 0
    assert draft.wrapper_copy.intro == "Intro"

    saved = json.loads((data_dir() / "drafts" / f"{WEEK}.json").read_text(encoding="utf-8"))
    assert saved["weekId"] == WEEK
    assert saved["totalProcessed"] == 12
    assert saved["wrapperCopy"]["shortSummary"] == "Pe scurt"
    assert "originalTitle" in saved["selected"][0]

    trace = json.loads((data_dir() / "traces" / f"{WEEK}.json").read_text(encoding="utf-8"))
    assert trace["stages"]["loaded"] == 12
    assert trace["stages"]["selected"] == 10
    assert trace["refinement"]["applied"] is False


def test_discards_are_counted_and_copy_falls_back(raw_buffer):
    raw_buffer()

    draft = run_pipeline(
        WEEK,
        oracle=YieldOracle(positive=7),
        cache=NullScoreCache(),
        copy_writer=FailingCopyWriter(),
        refine=False,
    )

    assert len(draft.selected) == 7
    assert draft.reserves == []
    assert draft.discarded == 5
    assert draft.total_processed == 12
    assert draft.wrapper_copy == DEFAULT_WRAPPER_COPY


def test_refiner_receives_ranked_draft(raw_buffer):
    raw_buffer()
    refiner = Mock(spec=SelectionRefiner)
    refiner.refine.side_effect = lambda selected, reserves, copy, titles, week_id: Mock(
        selected=list(reversed(selected)), reserves=reserves, wrapper_copy=copy, applied=True, note="reordered"
    )

    draft = run_pipeline(
        WEEK,
        oracle=YieldOracle(positive=12),
        cache=NullScoreCache(),
        copy_writer=StubCopyWriter(),
        refiner=refiner,
        refine=True,
    )

    refiner.refine.assert_called_once()
    assert draft.selected[-1].original_title == TITLES[0]


def test_previous_edition_stories_are_not_repeated(raw_buffer):
    articles = raw_buffer()
    issues = Path(get_settings().curator.issues_dir)
    issues.mkdir(parents=True)
    (issues / "2026-01-08-issue.md").write_text(
        f"## 🌳 {TITLES[0]}\n[Citește]({articles[0].url})\n", encoding="utf-8"
    )

    draft = run_pipeline(
        WEEK,
        oracle=YieldOracle(positive=12),
        cache=NullScoreCache(),
        copy_writer=StubCopyWriter(),
        refine=False,
    )

    assert draft.total_processed == 11
    assert articles[0].id not in {a.id for a in draft.selected + draft.reserves}


def test_limit_caps_the_raw_batch(raw_buffer):
    raw_buffer()
    draft = run_pipeline(
        WEEK, oracle=YieldOracle(positive=12), cache=NullScoreCache(),
        copy_writer=StubCopyWriter(), refine=False, limit=6,
    )
    assert draft.total_processed == 6


def test_zero_limit_is_rejected(raw_buffer):
    raw_buffer()
    with pytest.raises(ValueError):
        run_pipeline(WEEK, oracle=YieldOracle(positive=12), cache=NullScoreCache(), limit=0)
    with pytest.raises(SystemExit):
        parse_args(["--limit", "0"])


def test_missing_buffer_raises():
    with pytest.raises(InputMissingError):
        run_pipeline(WEEK, oracle=YieldOracle(positive=12), cache=NullScoreCache())


def test_empty_buffer_raises(raw_buffer):
    raw_buffer(titles=[])
    with pytest.raises(EmptyBatchError):
        run_pipeline(WEEK, oracle=YieldOracle(positive=12), cache=NullScoreCache())


def test_four_positive_articles_is_fatal(raw_buffer):
    raw_buffer()
    with pytest.raises(InsufficientYieldError) as exc:
        run_pipeline(WEEK, oracle=YieldOracle(positive=4), cache=NullScoreCache(), refine=False)
    assert "Only 4 articles passed filtering" in exc.value.reason
    assert not (data_dir() / "drafts" / f"{WEEK}.json").exists()


def test_main_alerts_on_insufficient_yield(raw_buffer):
    raw_buffer()
    notifier = Mock()

    code = main(
        ["--week", WEEK, "--no-refine"],
        notifier=notifier,
        oracle=YieldOracle(positive=4),
        cache=NullScoreCache(),
    )

    assert code == 1
    alert = notifier.send.call_args[0][0]
    assert alert.title == "Not enough positive articles"
    assert alert.week_id == WEEK


def test_main_alerts_on_missing_input():
    notifier = Mock()
    assert main(["--week", WEEK], notifier=notifier) == 1
    assert notifier.send.call_args[0][0].title == "No raw data for this week"


def test_main_alerts_on_uncaught_errors(raw_buffer):
    raw_buffer()
    notifier = Mock()
    oracle = Mock()
    oracle.score_batch.side_effect = RuntimeError("boom")

    code = main(["--week", WEEK], notifier=notifier, oracle=oracle, cache=NullScoreCache())

    assert code == 1
    alert = notifier.send.call_args[0][0]
    assert alert.title == "Uncaught pipeline error"
    assert alert.reason == "boom"
    assert "RuntimeError" in alert.details


def test_main_succeeds(raw_buffer):
    raw_buffer()
    notifier = Mock()

    code = main(
        ["--week", WEEK, "--no-refine"],
        notifier=notifier,
        oracle=YieldOracle(positive=12),
        cache=NullScoreCache(),
        copy_writer=StubCopyWriter(),
    )

    assert code == 0
    notifier.send.assert_not_called()
    assert (data_dir() / "drafts" / f"{WEEK}.json").exists()


def test_main_alerts_on_quota_exhaustion(raw_buffer):
    raw_buffer()
    notifier = Mock()
    oracle = Mock()
    oracle.score_batch.return_value = QuotaExhausted("insufficient_quota")

    code = main(["--week", WEEK], notifier=notifier, oracle=oracle, cache=NullScoreCache())

    assert code == 1
    assert oracle.score_batch.call_count == 1
    alert = notifier.send.call_args[0][0]
    assert alert.title == "Scoring quota exhausted"
    assert alert.week_id == WEEK


def test_main_alerts_on_invalid_settings(monkeypatch):
    monkeypatch.setenv("CURATOR_CACHE_BACKEND", "foo")
    get_settings.cache_clear()
    notifier = Mock()

    assert main(["--week", WEEK], notifier=notifier) == 1
    alert = notifier.send.call_args[0][0]
    assert alert.title == "Invalid configuration"
    assert "CURATOR_CACHE_BACKEND" in alert.details


def test_invalid_settings_alert_is_built_from_alert_settings(monkeypatch):
    monkeypatch.setenv("CURATOR_CACHE_BACKEND", "foo")
    monkeypatch.setenv("ALERT_WEBHOOK_URL", "https://hooks.example/curator")
    get_settings.cache_clear()
    sent = []

    class RecordingNotifier:
        def __init__(self, **kw):
            self.alert_settings = kw["alert_settings"]

        def send(self, alert):
            sent.append((self.alert_settings.webhook_url, alert.title))

    monkeypatch.setattr("services.curator.main.AlertNotifier", RecordingNotifier)

    assert main(["--week", WEEK]) == 1
    assert sent == [("https://hooks.example/curator", "Invalid configuration")]
