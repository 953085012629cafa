"""
Intra-batch near-duplicate clustering.

Grouping is greedy and seed-based: each unassigned article opens a group and
pulls in every later unassigned article whose title is similar to the *seed*.
Membership is never re-checked against other members, so A~B, B~C, A!~C can
still end up split or merged depending on input order.
"""

import re
import unicodedata
from datetime import datetime
from typing import List, Optional, Sequence

from pydantic import BaseModel
from rapidfuzz.distance import Levenshtein

from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings
from shared.schemas.messages import DeduplicationCluster, RawArticle

logger = get_logger("curator.dedup")

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


class DeduplicationResult(BaseModel):
    output_articles: List[RawArticle]
    clusters: List[DeduplicationCluster]
    input_count: int
    output_count: int


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_title(title: str) -> str:
    """Lowercase, strip diacritics and punctuation, collapse whitespace."""
    text = strip_diacritics(title or "").lower()
    text = _PUNCTUATION.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def title_similarity(a: str, b: str) -> float:
    """1 - normalized Levenshtein distance of the normalized titles."""
    norm_a = normalize_title(a)
    norm_b = normalize_title(b)
    if not norm_a and not norm_b:
        return 1.0
    return 1.0 - Levenshtein.normalized_distance(norm_a, norm_b)


def _published_ms(published_at: Optional[datetime]) -> float:
    if published_at is None:
        return 0.0
    return published_at.timestamp() * 1000


def representative_score(article: RawArticle) -> float:
    """Prefer richer summaries; break ties toward more recent publication."""
    return len(article.summary) + _published_ms(article.published_at) / 1e12


def pick_representative(group: Sequence[RawArticle]) -> RawArticle:
    best = group[0]
    for candidate in group[1:]:
        if representative_score(candidate) > representative_score(best):
            best = candidate
    return best


def group_articles(articles: Sequence[RawArticle], threshold: float) -> List[List[RawArticle]]:
    groups: List[List[RawArticle]] = []
    assigned = set()

    for i, seed in enumerate(articles):
        if i in assigned:
            continue
        group = [seed]
        assigned.add(i)

        for j in range(i + 1, len(articles)):
            if j in assigned:
                continue
            if title_similarity(seed.title, articles[j].title) >= threshold:
                group.append(articles[j])
                assigned.add(j)

        groups.append(group)

    return groups


def deduplicate_articles(
    articles: Sequence[RawArticle],
    threshold: Optional[float] = None,
) -> DeduplicationResult:
    """Collapse near-duplicate titles into one representative per group."""
    if threshold is None:
        threshold = get_settings().curator.intra_batch_similarity

    groups = group_articles(articles, threshold)

    representatives: List[RawArticle] = []
    clusters: List[DeduplicationCluster] = []

    for group in groups:
        best = pick_representative(group)
        representatives.append(best)

        if len(group) > 1:
            others = [a for a in group if a is not best]
            max_similarity = max(title_similarity(best.title, a.title) for a in others)
            clusters.append(
                DeduplicationCluster(
                    kept=best.id,
                    merged=[a.id for a in others],
                    similarity=round(max_similarity, 2),
                )
            )
            logger.debug(
                f"Merged {len(others)} article(s) into {best.id} "
                f"(sim={max_similarity:.2f}): {best.title!r}"
            )

    logger.info(
        f"Deduplication: {len(articles)} -> {len(representatives)} articles "
        f"({len(clusters)} clusters)"
    )

    return DeduplicationResult(
        output_articles=representatives,
        clusters=clusters,
        input_count=len(articles),
        output_count=len(representatives),
    )
