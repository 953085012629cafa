"""
Cross-edition duplicate suppression.

An article is dropped when it repeats a story from a recent draft or
published edition. Checks run from most to least confident: id, canonical
URL, title similarity, significant-token overlap.
"""

import re
from typing import List, Optional, Sequence, Set, Tuple
from urllib.parse import unquote, urlparse

from pydantic import BaseModel

from services.curator.dedup import normalize_title, strip_diacritics, title_similarity
from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings
from shared.schemas.messages import HistoricalArticleCandidate, RawArticle

logger = get_logger("curator.cross_edition")

TITLE_STOPWORDS = frozenset({
    "a", "ai", "al", "ale", "au", "ca", "care", "ce", "cu", "de", "din", "doar",
    "este", "fost", "in", "la", "mai", "nu", "pe", "pentru", "prin", "se", "si",
    "sunt", "un", "una", "unui", "unei", "vor",
})

_PATH_DISALLOWED = re.compile(r"[^a-z0-9/_-]")
_TRAILING_SLASHES = re.compile(r"/+$")

ID_MATCH = "id-match"
URL_MATCH = "url-match"
TITLE_SIMILARITY = "title-similarity"
TOKEN_OVERLAP = "token-overlap"


class CrossEditionMatch(BaseModel):
    reason: str
    previous_title: str
    previous_url: str
    title_similarity: float
    token_overlap: float


class CrossEditionResult(BaseModel):
    kept: List[RawArticle]
    dropped: List[Tuple[RawArticle, CrossEditionMatch]]

    @property
    def dropped_count(self) -> int:
        return len(self.dropped)


def canonicalize_story_url(url: str) -> str:
    """
    Host without ``www.`` plus a reduced, ASCII-only path.
    Returns an empty string when the URL cannot be parsed.
    """
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        return ""
    if not parsed.scheme or not hostname:
        return ""

    hostname = hostname.lower()
    if hostname.startswith("www."):
        hostname = hostname[4:]

    path = strip_diacritics(unquote(parsed.path or "/")).lower()
    path = _TRAILING_SLASHES.sub("", path)
    path = _PATH_DISALLOWED.sub("", path)

    return f"{hostname}{path or '/'}"


def tokenize_title(title: str) -> List[str]:
    return [
        token for token in normalize_title(title).split(" ")
        if len(token) > 2 and token not in TITLE_STOPWORDS
    ]


def token_overlap(a: str, b: str) -> Tuple[float, int]:
    """Jaccard overlap of significant title tokens and the shared-token count."""
    tokens_a: Set[str] = set(tokenize_title(a))
    tokens_b: Set[str] = set(tokenize_title(b))

    if not tokens_a or not tokens_b:
        return 0.0, 0

    common = len(tokens_a & tokens_b)
    union = len(tokens_a | tokens_b)
    return common / union, common


def find_cross_edition_duplicate(
    article: RawArticle,
    history: Sequence[HistoricalArticleCandidate],
    similarity_threshold: Optional[float] = None,
    overlap_threshold: Optional[float] = None,
    min_common_tokens: Optional[int] = None,
) -> Optional[CrossEditionMatch]:
    """Return the match that disqualifies ``article``, or None if it is new."""
    curator = get_settings().curator
    if similarity_threshold is None:
        similarity_threshold = curator.cross_edition_similarity
    if overlap_threshold is None:
        overlap_threshold = curator.token_overlap_threshold
    if min_common_tokens is None:
        min_common_tokens = curator.min_common_tokens

    canonical_url = canonicalize_story_url(article.url)
    best_match: Optional[CrossEditionMatch] = None
    best_strength = 0.0

    for previous in history:
        if previous.id and previous.id == article.id:
            return CrossEditionMatch(
                reason=ID_MATCH,
                previous_title=previous.title,
                previous_url=previous.url,
                title_similarity=1.0,
                token_overlap=1.0,
            )

        previous_url = canonicalize_story_url(previous.url)
        if canonical_url and previous_url and canonical_url == previous_url:
            return CrossEditionMatch(
                reason=URL_MATCH,
                previous_title=previous.title,
                previous_url=previous.url,
                title_similarity=title_similarity(article.title, previous.title),
                token_overlap=token_overlap(article.title, previous.title)[0],
            )

        similarity = title_similarity(article.title, previous.title)
        overlap, common = token_overlap(article.title, previous.title)

        is_title_match = similarity >= similarity_threshold
        is_overlap_match = overlap >= overlap_threshold and common >= min_common_tokens
        if not is_title_match and not is_overlap_match:
            continue

        strength = max(similarity, overlap)
        if strength > best_strength:
            best_strength = strength
            best_match = CrossEditionMatch(
                reason=TITLE_SIMILARITY if is_title_match else TOKEN_OVERLAP,
                previous_title=previous.title,
                previous_url=previous.url,
                title_similarity=similarity,
                token_overlap=overlap,
            )

    return best_match


def filter_cross_edition(
    articles: Sequence[RawArticle],
    history: Sequence[HistoricalArticleCandidate],
) -> CrossEditionResult:
    """Split representatives into new stories and repeats of recent editions."""
    if not history:
        logger.info("No historical articles loaded; skipping cross-edition filter")
        return CrossEditionResult(kept=list(articles), dropped=[])

    kept: List[RawArticle] = []
    dropped: List[Tuple[RawArticle, CrossEditionMatch]] = []

    for article in articles:
        match = find_cross_edition_duplicate(article, history)
        if match is None:
            kept.append(article)
            continue

        dropped.append((article, match))
        logger.info(
            f"Cross-edition duplicate ({match.reason}, sim={match.title_similarity:.2f}, "
            f"overlap={match.token_overlap:.2f}): {article.title!r} ~ {match.previous_title!r}"
        )

    logger.info(
        f"Cross-edition filter: {len(articles)} -> {len(kept)} articles "
        f"({len(dropped)} repeats of recent editions, {len(history)} historical candidates)"
    )
    return CrossEditionResult(kept=kept, dropped=dropped)
