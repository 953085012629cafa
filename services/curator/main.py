"""
Weekly curation run: raw buffer in, newsletter draft out.

    python -m services.curator.main --week 2026-W03

Every fatal condition is logged and sent to the operator webhook before the
process exits with status 1.
"""

import argparse
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from pydantic import ValidationError

from services.curator.cache import RefreshScoreCache, ScoreCache, build_score_cache
from services.curator.cross_edition import filter_cross_edition
from services.curator.dedup import deduplicate_articles
from services.curator.errors import EmptyBatchError, InsufficientYieldError, PipelineAbort
from services.curator.history import historical_titles, load_history
from services.curator.oracle import OpenAIScoringOracle, ScoringOracle
from services.curator.ranking import filter_articles, rank_articles
from services.curator.refine import OpenAIRefinementOracle, SelectionRefiner
from services.curator.scoring import ScoringOrchestrator
from services.curator.storage import iso_week_id, load_weekly_buffer, save_draft, save_trace
from services.curator.wrapper_copy import OpenAICopyWriter, generate_wrapper_copy
from shared.app_logging.logger import (
    CorrelationContext,
    generate_correlation_id,
    get_logger,
    log_error_with_context,
    setup_logging,
)
from shared.config.settings import AlertSettings, Settings, get_settings
from shared.schemas.messages import AlertMessage, NewsletterDraft, ProcessedArticle
from shared.utils.alerts import AlertNotifier
from shared.utils.redis_client import close_all_redis_clients

logger = get_logger("curator.main")


def run_pipeline(
    week_id: str,
    settings: Optional[Settings] = None,
    oracle: Optional[ScoringOracle] = None,
    cache: Optional[ScoreCache] = None,
    copy_writer=None,
    refiner: Optional[SelectionRefiner] = None,
    refine: Optional[bool] = None,
    limit: Optional[int] = None,
    scorer: Optional[ScoringOrchestrator] = None,
) -> NewsletterDraft:
    """
    Run every stage for ``week_id`` and persist the draft.

    Collaborators default to the OpenAI-backed implementations; tests pass
    stubs. Raises a PipelineAbort subclass for conditions that need an operator.
    """
    settings = settings or get_settings()
    curator = settings.curator
    data_dir = Path(curator.data_dir)
    if refine is None:
        refine = curator.refine_enabled

    trace: Dict[str, Any] = {"weekId": week_id, "stages": {}}

    # 1. Load
    buffer = load_weekly_buffer(data_dir, week_id)
    articles = list(buffer.articles)
    if not articles:
        raise EmptyBatchError("No articles found in raw data", week_id=week_id)
    if limit is not None:
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        articles = articles[:limit]
        logger.info(f"Limiting run to the first {len(articles)} articles")
    trace["stages"]["loaded"] = len(articles)

    # 2. Intra-batch deduplication
    dedup = deduplicate_articles(articles, threshold=curator.intra_batch_similarity)
    trace["stages"]["deduplicated"] = dedup.output_count
    trace["clusters"] = [cluster.to_wire() for cluster in dedup.clusters]

    # 3. Cross-edition filter
    history = load_history(
        data_dir / "drafts",
        Path(curator.issues_dir),
        draft_limit=curator.history_draft_limit,
        issue_limit=curator.history_issue_limit,
        exclude_week=week_id,
    )
    fresh = filter_cross_edition(dedup.output_articles, history)
    trace["stages"]["afterCrossEdition"] = len(fresh.kept)
    trace["crossEditionDrops"] = [
        {"id": article.id, "title": article.title, **match.model_dump()}
        for article, match in fresh.dropped
    ]

    # 4. Scoring
    if scorer is None:
        scorer = ScoringOrchestrator(
            oracle=oracle or OpenAIScoringOracle(),
            cache=cache if cache is not None else build_score_cache(),
        )
    report = scorer.score(fresh.kept, week_id=week_id)
    trace["stages"]["scored"] = len(report.scores)
    trace["scoring"] = {
        "cached": report.cached,
        "requested": report.requested,
        "oracleCalls": report.oracle_calls,
        "droppedIds": report.dropped_ids,
    }

    processed_at = datetime.now(timezone.utc)
    scores_by_id = report.by_id()
    processed: Dict[str, ProcessedArticle] = {
        article.id: ProcessedArticle.from_parts(article, scores_by_id[article.id], processed_at)
        for article in fresh.kept
        if article.id in scores_by_id
    }

    # 5. Filter and rank
    filtered = filter_articles(report.scores, positivity_threshold=curator.positivity_threshold)
    trace["stages"]["passedFilter"] = filtered.passed_count
    trace["discarded"] = [reason.to_wire() for reason in filtered.discarded]

    if filtered.passed_count < curator.min_positive_articles:
        save_trace(data_dir, week_id, trace)
        raise InsufficientYieldError(
            f"Only {filtered.passed_count} articles passed filtering "
            f"(minimum: {curator.min_positive_articles})",
            week_id=week_id,
            details=(
                f"Scored: {len(report.scores)}\n"
                f"Passed: {filtered.passed_count}\n"
                f"Discarded: {filtered.discarded_count}"
            ),
        )

    ranking = rank_articles(
        filtered.passed,
        selected_count=curator.selected_count,
        reserve_count=curator.reserve_count,
    )
    selected = [processed[r.id] for r in ranking.selected]
    reserves = [processed[r.id] for r in ranking.reserves]

    # 6. Wrapper copy
    wrapper_copy = generate_wrapper_copy(copy_writer or OpenAICopyWriter(), selected, week_id)

    # 7. Refinement
    if refine:
        refiner = refiner or SelectionRefiner(OpenAIRefinementOracle())
        titles = historical_titles(history, curator.history_title_sample)
        refined = refiner.refine(selected, reserves, wrapper_copy, titles, week_id)
        selected, reserves, wrapper_copy = refined.selected, refined.reserves, refined.wrapper_copy
        trace["refinement"] = {"applied": refined.applied, "note": refined.note}
    else:
        logger.info("Refinement disabled; keeping ranked selection")
        trace["refinement"] = {"applied": False, "note": "disabled"}

    # 8. Persist
    draft = NewsletterDraft(
        week_id=week_id,
        generated_at=datetime.now(timezone.utc),
        selected=selected,
        reserves=reserves,
        discarded=filtered.discarded_count,
        total_processed=len(report.scores),
        wrapper_copy=wrapper_copy,
    )
    save_draft(data_dir, draft)
    trace["stages"]["selected"] = len(draft.selected)
    trace["stages"]["reserves"] = len(draft.reserves)
    save_trace(data_dir, week_id, trace)

    logger.info(
        f"✓ Draft for {week_id}: {len(draft.selected)} selected, {len(draft.reserves)} reserves, "
        f"{draft.discarded} discarded of {draft.total_processed} scored"
    )
    return draft


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive number, got {value}")
    return number


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Curate the weekly Good Brief draft.")
    parser.add_argument("--week", help="ISO week id (YYYY-Www); defaults to the current week")
    parser.add_argument("--refresh", action="store_true", help="Ignore cached scores and re-score everything")
    parser.add_argument("--no-refine", action="store_true", help="Skip the refinement pass")
    parser.add_argument("--limit", type=positive_int, help="Only process the first N raw articles")
    return parser.parse_args(argv)


def report_invalid_settings(error: ValidationError, week_id: str, notifier: Optional[AlertNotifier]) -> int:
    """Log and alert a configuration error using only the alert settings."""
    setup_logging("curator", log_level="INFO", json_logs=False, include_correlation_id=False)
    logger.error(f"Invalid configuration: {error}")

    if notifier is None:
        try:
            notifier = AlertNotifier(alert_settings=AlertSettings())
        except ValidationError as e:
            logger.error(f"Cannot alert, the alert settings are invalid too: {e}")
            return 1

    notifier.send(
        AlertMessage(
            title="Invalid configuration",
            reason=f"{error.error_count()} setting(s) failed validation",
            week_id=week_id,
            details=str(error),
            action_items=[
                "Fix the environment variables named in the details",
                "Re-run the curator",
            ],
        )
    )
    return 1


def main(argv: Optional[Sequence[str]] = None, notifier: Optional[AlertNotifier] = None, **overrides) -> int:
    args = parse_args(argv)
    week_id = args.week or iso_week_id()

    try:
        get_settings()
    except ValidationError as e:
        return report_invalid_settings(e, week_id, notifier)

    setup_logging("curator")
    notifier = notifier or AlertNotifier()

    with CorrelationContext(generate_correlation_id(week_id)):
        logger.info(f"Starting curation for {week_id}")

        try:
            if args.refresh:
                overrides.setdefault("cache", RefreshScoreCache(build_score_cache()))
            run_pipeline(
                week_id,
                refine=False if args.no_refine else None,
                limit=args.limit,
                **overrides,
            )
        except PipelineAbort as e:
            logger.error(f"Pipeline aborted: {e.title}: {e.reason}")
            if e.details:
                logger.error(e.details)
            notifier.send(e.alert)
            return 1
        except Exception as e:
            log_error_with_context(logger, e, {"week_id": week_id, "stage": "pipeline"})
            notifier.send(
                AlertMessage(
                    title="Uncaught pipeline error",
                    reason=str(e) or type(e).__name__,
                    week_id=week_id,
                    details=traceback.format_exc(),
                    action_items=[
                        "Check the pipeline logs for the full stack trace",
                        "Fix the underlying issue and re-run the curator",
                    ],
                )
            )
            return 1
        finally:
            close_all_redis_clients()

    return 0


if __name__ == "__main__":
    sys.exit(main())
