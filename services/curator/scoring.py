"""
Scoring orchestration: cache lookups, bounded oracle batches, retries and pacing.
"""

from typing import Callable, Dict, List, Optional, Sequence

from prometheus_client import Counter
from pydantic import BaseModel

from services.curator.cache import ScoreCache
from services.curator.errors import QuotaExhaustedError
from services.curator.oracle import (
    BatchOutcome,
    QuotaExhausted,
    Scored,
    ScoringOracle,
    is_retryable,
)
from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings
from shared.schemas.messages import ArticleScore, RawArticle
from shared.utils.pacing import FixedDelayPacer
from shared.utils.retry import RetryConfig, retry_outcome

logger = get_logger("curator.scoring")

ORACLE_CALLS = Counter("curator_oracle_calls_total", "Scoring oracle calls, including retries")
CACHE_HITS = Counter("curator_score_cache_hits_total", "Articles served from the score cache")
DROPPED_BATCHES = Counter("curator_dropped_batches_total", "Batches dropped after exhausting retries")


class ScoringReport(BaseModel):
    scores: List[ArticleScore]
    cached: int = 0
    requested: int = 0
    oracle_calls: int = 0
    dropped_ids: List[str] = []

    def by_id(self) -> Dict[str, ArticleScore]:
        return {score.id: score for score in self.scores}


def chunked(items: Sequence, size: int) -> List[Sequence]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class ScoringOrchestrator:
    """
    Obtain one ArticleScore per article id.

    Cached ids never reach the oracle. Uncached ids are sent serially in
    batches of ``batch_size``; each batch gets up to ``retry_config.max_attempts``
    attempts and its results are written to the cache as soon as it succeeds.
    A batch that keeps failing is dropped; quota exhaustion aborts the run.
    """

    def __init__(
        self,
        oracle: ScoringOracle,
        cache: ScoreCache,
        batch_size: Optional[int] = None,
        retry_config: Optional[RetryConfig] = None,
        pacer: Optional[FixedDelayPacer] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        curator = get_settings().curator
        self.oracle = oracle
        self.cache = cache
        self.batch_size = batch_size or curator.batch_size
        self.retry_config = retry_config or RetryConfig.from_settings()
        self.pacer = pacer or FixedDelayPacer(curator.batch_delay)
        self._sleep = sleep
        self.oracle_calls = 0

    def _call_oracle(self, batch: Sequence[RawArticle]) -> BatchOutcome:
        self.oracle_calls += 1
        ORACLE_CALLS.inc()
        return self.oracle.score_batch(batch)

    def _score_with_retry(self, batch: Sequence[RawArticle], label: str) -> BatchOutcome:
        return retry_outcome(
            lambda: self._call_oracle(batch),
            is_retryable=is_retryable,
            config=self.retry_config,
            sleep=self._sleep,
            label=label,
        )

    @staticmethod
    def _match_to_batch(batch: Sequence[RawArticle], scores: Sequence[ArticleScore]) -> List[ArticleScore]:
        """Re-associate results by id; unknown and repeated ids are ignored."""
        expected = {article.id for article in batch}
        matched: Dict[str, ArticleScore] = {}
        for score in scores:
            if score.id not in expected:
                logger.warning(f"Oracle returned a score for unknown id {score.id!r}; ignoring")
                continue
            if score.id in matched:
                logger.debug(f"Oracle returned id {score.id!r} twice; keeping the first")
                continue
            matched[score.id] = score
        return list(matched.values())

    def score(self, articles: Sequence[RawArticle], week_id: Optional[str] = None) -> ScoringReport:
        results: Dict[str, ArticleScore] = {}
        uncached: List[RawArticle] = []
        seen = set()

        for article in articles:
            if article.id in seen:
                continue
            seen.add(article.id)

            cached = self.cache.get(article.id)
            if cached is not None:
                results[article.id] = cached
                CACHE_HITS.inc()
            else:
                uncached.append(article)

        cached_count = len(results)
        calls_before = self.oracle_calls
        dropped_ids: List[str] = []

        if not uncached:
            logger.info(f"All {cached_count} articles found in score cache")
        else:
            batches = chunked(uncached, self.batch_size)
            logger.info(
                f"Scoring {len(uncached)} uncached articles in {len(batches)} batch(es) "
                f"({cached_count} served from cache)"
            )

            for number, batch in enumerate(batches, start=1):
                self.pacer.wait()
                label = f"Batch {number}/{len(batches)}"
                logger.info(f"Processing {label.lower()} ({len(batch)} articles)...")

                try:
                    outcome = self._score_with_retry(batch, label)
                finally:
                    self.pacer.mark_done()

                if isinstance(outcome, QuotaExhausted):
                    logger.error(f"{label}: scoring quota exhausted; aborting: {outcome.error}")
                    raise QuotaExhaustedError(
                        "The scoring oracle reported quota exhaustion",
                        week_id=week_id,
                        details=outcome.error,
                    )

                if not isinstance(outcome, Scored):
                    DROPPED_BATCHES.inc()
                    dropped_ids.extend(article.id for article in batch)
                    logger.error(
                        f"{label} failed after {self.retry_config.max_attempts} attempts, "
                        f"dropping {len(batch)} articles: {outcome}"
                    )
                    continue

                scores = self._match_to_batch(batch, outcome.scores)
                for score in scores:
                    results[score.id] = score
                    self.cache.put(score.id, score)
                self.cache.flush()

                missing = len(batch) - len(scores)
                logger.info(
                    f"{label}: scored {len(scores)} articles"
                    + (f", {missing} missing from response" if missing else "")
                )

        # Keep input order
        ordered = [results[a_id] for a_id in dict.fromkeys(a.id for a in articles) if a_id in results]

        return ScoringReport(
            scores=ordered,
            cached=cached_count,
            requested=len(uncached),
            oracle_calls=self.oracle_calls - calls_before,
            dropped_ids=dropped_ids,
        )
