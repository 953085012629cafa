import hashlib
from datetime import datetime
from typing import List, Literal, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import BaseModel, ConfigDict, Field

ArticleCategory = Literal["local-heroes", "wins", "green-stuff", "quick-hits"]

TRACKING_PARAMS = {
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content", "fbclid", "gclid",
}


def normalize_article_url(url: str) -> str:
    """Drop tracking query parameters; anything unparsable is returned as-is."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not parsed.scheme or not parsed.netloc:
        return url
    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k not in TRACKING_PARAMS]
    return urlunparse(parsed._replace(query=urlencode(query)))


def article_id(source_id: str, url: str) -> str:
    """Stable article identity: sha256 of ``source:normalized_url``, 16 hex chars."""
    digest = hashlib.sha256(f"{source_id}:{normalize_article_url(url)}".encode("utf-8"))
    return digest.hexdigest()[:16]


class WireModel(BaseModel):
    """Base for documents persisted as camelCase JSON."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RawArticle(WireModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., description="Content hash of (sourceId, normalized url)")
    source_id: str = Field(..., alias="sourceId", description="Feed identifier")
    source_name: str = Field(..., alias="sourceName", description="Human-readable feed name")
    title: str = Field(..., description="Article title as published")
    url: str = Field(..., description="Normalized article URL")
    summary: str = Field("", description="Summary/description from the feed")
    published_at: Optional[datetime] = Field(None, alias="publishedAt", description="Original publication timestamp")
    fetched_at: Optional[datetime] = Field(None, alias="fetchedAt", description="When the collector fetched it")


class WeeklyBuffer(WireModel):
    week_id: str = Field(..., alias="weekId", description="ISO week id, YYYY-Www")
    articles: List[RawArticle] = Field(default_factory=list)
    last_updated: Optional[datetime] = Field(None, alias="lastUpdated")


class DeduplicationCluster(WireModel):
    kept: str = Field(..., description="Id of the representative")
    merged: List[str] = Field(default_factory=list, description="Ids folded into the representative")
    similarity: float = Field(..., description="Max title similarity kept vs merged, 2 decimals")


class HistoricalArticleCandidate(WireModel):
    id: Optional[str] = None
    title: str
    url: str


class ArticleScore(WireModel):
    id: str
    summary: str
    positivity: int = Field(..., ge=0, le=100)
    impact: int = Field(..., ge=0, le=100)
    romania_relevant: bool = Field(..., alias="romaniaRelevant")
    category: ArticleCategory
    reasoning: Optional[str] = None


class CachedScore(ArticleScore):
    cached_at: datetime = Field(..., alias="cachedAt")

    def to_score(self) -> ArticleScore:
        return ArticleScore.model_validate(self.model_dump(exclude={"cached_at"}))


class ProcessedArticle(WireModel):
    id: str
    source_id: str = Field(..., alias="sourceId")
    source_name: str = Field(..., alias="sourceName")
    original_title: str = Field(..., alias="originalTitle")
    url: str
    summary: str
    positivity: int
    impact: int
    romania_relevant: bool = Field(True, alias="romaniaRelevant")
    category: ArticleCategory
    reasoning: Optional[str] = None
    published_at: Optional[datetime] = Field(None, alias="publishedAt")
    processed_at: datetime = Field(..., alias="processedAt")

    @classmethod
    def from_parts(cls, raw: RawArticle, score: ArticleScore, processed_at: datetime) -> "ProcessedArticle":
        return cls(
            id=raw.id,
            source_id=raw.source_id,
            source_name=raw.source_name,
            original_title=raw.title,
            url=raw.url,
            summary=score.summary,
            positivity=score.positivity,
            impact=score.impact,
            romania_relevant=score.romania_relevant,
            category=score.category,
            reasoning=score.reasoning,
            published_at=raw.published_at,
            processed_at=processed_at,
        )


class RankedArticle(WireModel):
    id: str
    score: float
    positivity: int
    impact: int


class DiscardReason(WireModel):
    id: str
    reason: str


class WrapperCopy(WireModel):
    greeting: str
    intro: str
    sign_off: str = Field(..., alias="signOff")
    short_summary: str = Field(..., alias="shortSummary")


class NewsletterDraft(WireModel):
    week_id: str = Field(..., alias="weekId")
    generated_at: datetime = Field(..., alias="generatedAt")
    selected: List[ProcessedArticle] = Field(default_factory=list)
    reserves: List[ProcessedArticle] = Field(default_factory=list)
    discarded: int = 0
    total_processed: int = Field(0, alias="totalProcessed")
    wrapper_copy: Optional[WrapperCopy] = Field(None, alias="wrapperCopy")


class AlertMessage(BaseModel):
    title: str = Field(..., description="Short headline of the failure")
    reason: str = Field(..., description="What went wrong")
    week_id: Optional[str] = Field(None, description="Edition the run was curating")
    details: Optional[str] = Field(None, description="Diagnostics, stack traces")
    action_items: List[str] = Field(default_factory=list, description="What the operator should do")
