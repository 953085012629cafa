from typing import List, Optional, Sequence

from pydantic import BaseModel

from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings
from shared.schemas.messages import ArticleScore, DiscardReason, RankedArticle

logger = get_logger("curator.ranking")

POSITIVITY_WEIGHT = 0.6
IMPACT_WEIGHT = 0.4


class FilterResult(BaseModel):
    passed: List[ArticleScore]
    discarded: List[DiscardReason]

    @property
    def passed_count(self) -> int:
        return len(self.passed)

    @property
    def discarded_count(self) -> int:
        return len(self.discarded)


class RankingResult(BaseModel):
    selected: List[RankedArticle]
    reserves: List[RankedArticle]


def composite_score(positivity: int, impact: int) -> float:
    return positivity * POSITIVITY_WEIGHT + impact * IMPACT_WEIGHT


def rank_key(positivity: int, impact: int) -> int:
    """Integer form of the composite score (scaled by 5) so equal scores compare equal."""
    return 3 * positivity + 2 * impact


def filter_articles(scores: Sequence[ArticleScore], positivity_threshold: Optional[int] = None) -> FilterResult:
    """Drop stories that are not about Romania or not positive enough."""
    if positivity_threshold is None:
        positivity_threshold = get_settings().curator.positivity_threshold

    passed: List[ArticleScore] = []
    discarded: List[DiscardReason] = []

    for score in scores:
        if not score.romania_relevant:
            discarded.append(DiscardReason(id=score.id, reason="romaniaRelevant: false"))
            continue

        if score.positivity < positivity_threshold:
            discarded.append(
                DiscardReason(id=score.id, reason=f"positivity {score.positivity} < {positivity_threshold}")
            )
            continue

        passed.append(score)

    logger.info(f"Filtering: {len(passed)} passed, {len(discarded)} discarded")
    return FilterResult(passed=passed, discarded=discarded)


def rank_articles(
    scores: Sequence[ArticleScore],
    selected_count: Optional[int] = None,
    reserve_count: Optional[int] = None,
) -> RankingResult:
    """Weighted score, descending; ties keep input order."""
    curator = get_settings().curator
    if selected_count is None:
        selected_count = curator.selected_count
    if reserve_count is None:
        reserve_count = curator.reserve_count

    ranked = [
        RankedArticle(
            id=s.id,
            score=composite_score(s.positivity, s.impact),
            positivity=s.positivity,
            impact=s.impact,
        )
        for s in scores
    ]
    ranked.sort(key=lambda r: rank_key(r.positivity, r.impact), reverse=True)

    result = RankingResult(
        selected=ranked[:selected_count],
        reserves=ranked[selected_count:selected_count + reserve_count],
    )
    logger.info(f"Ranking: {len(result.selected)} selected, {len(result.reserves)} reserves")
    return result
