"""
Scoring oracle: the LLM that assigns summary, positivity, impact, category
and Romania relevance to articles.

Every call reports its result as a tagged outcome (``Scored``,
``TransientFailure``, ``QuotaExhausted``, ``ParseFailure``) so the batch loop
can decide on retries without catching exceptions.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Sequence, Union

import openai
from openai import OpenAI
from pydantic import ValidationError

from shared.app_logging.logger import get_logger
from shared.config.settings import get_openai_api_key, get_settings
from shared.schemas.messages import ArticleScore, RawArticle

logger = get_logger("curator.oracle")


@dataclass
class Scored:
    scores: List[ArticleScore]


@dataclass
class TransientFailure:
    error: str


@dataclass
class QuotaExhausted:
    error: str


@dataclass
class ParseFailure:
    error: str
    raw: Optional[str] = field(default=None, repr=False)


BatchOutcome = Union[Scored, TransientFailure, QuotaExhausted, ParseFailure]


def is_retryable(outcome: BatchOutcome) -> bool:
    return isinstance(outcome, (TransientFailure, ParseFailure))


class ScoringOracle(Protocol):
    def score_batch(self, articles: Sequence[RawArticle]) -> BatchOutcome:
        ...


_FENCE_START = re.compile(r"^\s*```[a-zA-Z]*\s*")
_FENCE_END = re.compile(r"\s*```\s*$")


def _strip_trailing_commas(text: str) -> str:
    """Remove commas directly before a closing bracket, leaving string contents alone."""
    out: List[str] = []
    in_string = False
    escaped = False
    pending_comma: Optional[int] = None

    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif not ch.isspace():
            if ch in "]}" and pending_comma is not None:
                del out[pending_comma]
            pending_comma = len(out) if ch == "," else None
            if ch == '"':
                in_string = True
        out.append(ch)

    return "".join(out)


def repair_json(text: str) -> str:
    """
    Best-effort cleanup of LLM JSON: strip markdown fences, drop trailing
    commas, and close a truncated document after its last complete element.
    """
    text = _FENCE_END.sub("", _FENCE_START.sub("", text.strip()))
    text = _strip_trailing_commas(text)

    stack: List[str] = []
    in_string = False
    escaped = False
    last_complete: Optional[tuple] = None

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in "[{":
            stack.append("]" if ch == "[" else "}")
        elif ch in "]}":
            if stack and stack[-1] == ch:
                stack.pop()
                last_complete = (i, tuple(stack))

    if not stack and not in_string:
        return text

    if last_complete is not None:
        cut, open_closers = last_complete
        head = text[: cut + 1].rstrip()
        return head + "".join(reversed(open_closers))

    # Nothing complete yet: close whatever is open
    if in_string:
        text += '"'
    return text.rstrip().rstrip(",") + "".join(reversed(stack))


def parse_json_payload(text: str) -> Any:
    """Strict parse after repair; raises ValueError on failure."""
    if not text or not text.strip():
        raise ValueError("empty response")
    return json.loads(repair_json(text))


def parse_score_records(text: str) -> List[dict]:
    """Accept a bare JSON array or an object wrapping it under ``articles``."""
    payload = parse_json_payload(text)
    if isinstance(payload, dict):
        payload = payload.get("articles", payload.get("scores"))
    if not isinstance(payload, list):
        raise ValueError("expected a JSON array of scores")
    return [record for record in payload if isinstance(record, dict)]


def validate_scores(records: Sequence[dict]) -> List[ArticleScore]:
    """Validate records one by one; bad records are dropped, not fatal."""
    scores: List[ArticleScore] = []
    for record in records:
        try:
            scores.append(ArticleScore.model_validate(record))
        except ValidationError as e:
            logger.warning(
                f"Dropping invalid score record for id={record.get('id')!r}: "
                f"{e.error_count()} validation error(s)"
            )
    return scores


SCORING_PROMPT = """You are scoring articles for Good Brief, a Romanian positive-news newsletter \
for young educated Romanians (20-30). Write like a smart friend sharing good news: warm, calm, \
slightly witty, informal "tu", never formal or cheesy.

For each article return:
1. "summary": 2-3 sentences in Romanian. Key fact first, then context, then what it means for people.
2. "positivity" (0-100): 80-100 inspiring wins and good deeds; 60-80 clear positive outcomes; \
40-60 hopeful but mixed; 0-40 tragedy, crime, political conflict, scandal, gossip.
3. "impact" (0-100): how much the story matters to our readers. High for Romanian community wins, \
achievements, health/science breakthroughs, environmental progress; low for distant feel-good \
stories, entertainment, celebrity news.
4. "romaniaRelevant": true only for events in Romania, Romanian people/companies/organizations, \
or topics directly affecting Romanians (diaspora included). Being reported by Romanian media \
does NOT make a story relevant.
5. "category": exactly one of "green-stuff" (environment, nature, climate, animals), \
"local-heroes" (people or small groups doing good in their community), \
"wins" (achievements, awards, records, culture, new infrastructure), \
"quick-hits" (small or niche good news). Check them in that order and pick the first that fits.
{reasoning_instruction}
Return ONLY a JSON array, one object per article, echoing each article's id:
[{{"id": "...", "summary": "...", "positivity": N, "impact": N, "romaniaRelevant": true, "category": "..."{reasoning_field}}}]

Articles:
{articles}"""

REASONING_INSTRUCTION = (
    '6. "reasoning": 2-3 sentences explaining the positivity and impact scores.\n'
)


def format_articles(articles: Sequence[RawArticle], max_content_chars: int) -> str:
    return "\n\n---\n\n".join(
        f"ID: {a.id}\nTitle: {a.title}\nContent: {a.summary[:max_content_chars]}"
        for a in articles
    )


def build_scoring_prompt(
    articles: Sequence[RawArticle],
    max_content_chars: int,
    include_reasoning: bool = False,
) -> str:
    return SCORING_PROMPT.format(
        reasoning_instruction=REASONING_INSTRUCTION if include_reasoning else "",
        reasoning_field=', "reasoning": "..."' if include_reasoning else "",
        articles=format_articles(articles, max_content_chars),
    )


def build_openai_client() -> OpenAI:
    """OpenAI client with a bounded per-call timeout and SDK retries off."""
    settings = get_settings()
    return OpenAI(
        api_key=get_openai_api_key(),
        timeout=settings.openai.timeout,
        max_retries=0,
    )


def classify_openai_error(error: openai.OpenAIError) -> Optional[BatchOutcome]:
    """
    Map SDK errors onto outcomes. Returns None for errors that are neither
    transient nor quota related (bad key, bad request); those propagate.
    """
    if isinstance(error, openai.RateLimitError):
        code = getattr(error, "code", None)
        body = getattr(error, "body", None)
        if code == "insufficient_quota" or (isinstance(body, dict) and body.get("code") == "insufficient_quota"):
            return QuotaExhausted(error=str(error))
        return TransientFailure(error=f"rate limited: {error}")
    if isinstance(error, (openai.APIConnectionError, openai.InternalServerError)):
        return TransientFailure(error=str(error))
    return None


class OpenAIScoringOracle:
    """Scores a batch with one chat completion."""

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        include_reasoning: Optional[bool] = None,
    ):
        settings = get_settings()
        self._client = client
        self.model = model or settings.openai.model
        self.temperature = settings.openai.temperature
        self.max_tokens = settings.openai.max_tokens
        self.max_content_chars = settings.curator.max_content_chars
        if include_reasoning is None:
            include_reasoning = settings.curator.include_reasoning
        self.include_reasoning = include_reasoning

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = build_openai_client()
        return self._client

    def score_batch(self, articles: Sequence[RawArticle]) -> BatchOutcome:
        prompt = build_scoring_prompt(articles, self.max_content_chars, self.include_reasoning)
        logger.debug(f"Requesting scores for {len(articles)} articles from {self.model}")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.OpenAIError as e:
            outcome = classify_openai_error(e)
            if outcome is None:
                logger.error(f"OpenAI API call failed with non-retryable error: {e}")
                raise
            return outcome

        content = response.choices[0].message.content if response.choices else None
        if not content:
            return ParseFailure(error="empty completion")

        try:
            records = parse_score_records(content)
        except ValueError as e:
            return ParseFailure(error=f"unparsable scores: {e}", raw=content)

        return Scored(scores=validate_scores(records))
