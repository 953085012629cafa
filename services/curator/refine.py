"""
Second-pass review of the draft selection.

The refinement oracle may reorder the selection, swap in reserves and sharpen
the intro/short summary. Its answer is only applied when it passes every
check; otherwise the draft stays exactly as it was.
"""

from typing import Dict, List, Optional, Protocol, Sequence

import openai
from openai import OpenAI
from pydantic import BaseModel, Field, ValidationError

from services.curator.oracle import build_openai_client, parse_json_payload
from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings
from shared.schemas.messages import ProcessedArticle, WrapperCopy

logger = get_logger("curator.refine")

MIN_SELECTED = 9
MAX_SELECTED = 12


class RefinementProposal(BaseModel):
    selected_ids: List[str] = Field(..., alias="selectedIds")
    intro: str
    short_summary: str = Field(..., alias="shortSummary")
    reasoning: str = ""


class RefinementResult(BaseModel):
    selected: List[ProcessedArticle]
    reserves: List[ProcessedArticle]
    wrapper_copy: WrapperCopy
    applied: bool
    note: str


class RefinementRejected(ValueError):
    pass


class RefinementOracle(Protocol):
    def propose(
        self,
        selected: Sequence[ProcessedArticle],
        reserves: Sequence[ProcessedArticle],
        wrapper_copy: WrapperCopy,
        historical_titles: Sequence[str],
        week_id: str,
    ) -> Optional[str]:
        ...


REFINE_PROMPT = """You are reviewing a Good Brief newsletter draft for week {week_id}.

CURRENT SELECTION (top {selected_count}):
{selection}

CURRENT INTRO:
"{intro}"

CURRENT SHORT SUMMARY:
"{short_summary}"

ALL AVAILABLE ARTICLES (selected + reserves):
{article_list}

RECENTLY PUBLISHED OR DRAFTED (do not repeat these stories):
{history}

REVIEW CRITERIA:
1. Story variety: no duplicate stories or near-identical topics.
2. Category balance: a mix of wins, local-heroes, green-stuff, quick-hits.
3. Substance over fluff.
4. Prefer recent stories when quality is similar.
5. Nothing that repeats a recently published story.
6. No promotional or sponsored content (marked "(P)").

TASK:
- Swap in reserves where the selection has duplicates, weak stories or imbalance.
- Improve the intro and short summary if they no longer fit the final selection.
- Return {min_selected}-{max_selected} article IDs in display order.

Return only a JSON object:
{{"selectedIds": ["..."], "intro": "...", "shortSummary": "...", "reasoning": "what changed and why, or No changes needed"}}"""


def build_refine_prompt(
    selected: Sequence[ProcessedArticle],
    reserves: Sequence[ProcessedArticle],
    wrapper_copy: WrapperCopy,
    historical_titles: Sequence[str],
    week_id: str,
) -> str:
    union = list(selected) + list(reserves)
    return REFINE_PROMPT.format(
        week_id=week_id,
        selected_count=len(selected),
        selection="\n".join(f'{i}. [ID: {a.id}] "{a.original_title}"' for i, a in enumerate(selected, 1)),
        intro=wrapper_copy.intro,
        short_summary=wrapper_copy.short_summary,
        article_list="\n\n".join(
            f'{i}. [ID: {a.id}] [{a.category}] (pos:{a.positivity}, impact:{a.impact}) '
            f'"{a.original_title}"\n   Summary: {a.summary}'
            for i, a in enumerate(union, 1)
        ),
        history="\n".join(f"- {title}" for title in historical_titles) or "- (none)",
        min_selected=MIN_SELECTED,
        max_selected=MAX_SELECTED,
    )


class OpenAIRefinementOracle:
    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None):
        settings = get_settings()
        self._client = client
        self.model = model or settings.openai.model
        self.temperature = settings.openai.temperature

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = build_openai_client()
        return self._client

    def propose(self, selected, reserves, wrapper_copy, historical_titles, week_id) -> Optional[str]:
        prompt = build_refine_prompt(selected, reserves, wrapper_copy, historical_titles, week_id)
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            temperature=self.temperature,
        )
        return response.choices[0].message.content if response.choices else None


def resolve_selection(
    proposal: RefinementProposal,
    articles: Dict[str, ProcessedArticle],
) -> List[ProcessedArticle]:
    """Apply the acceptance rules; raises RefinementRejected on any violation."""
    count = len(proposal.selected_ids)
    if not MIN_SELECTED <= count <= MAX_SELECTED:
        raise RefinementRejected(f"expected {MIN_SELECTED}-{MAX_SELECTED} ids, got {count}")

    unknown = [article_id for article_id in proposal.selected_ids if article_id not in articles]
    if unknown:
        raise RefinementRejected(f"unknown article ids: {', '.join(unknown)}")

    resolved = [articles[article_id] for article_id in dict.fromkeys(proposal.selected_ids)]
    if not MIN_SELECTED <= len(resolved) <= MAX_SELECTED:
        raise RefinementRejected(
            f"only {len(resolved)} distinct ids after removing duplicates"
        )
    return resolved


class SelectionRefiner:
    def __init__(self, oracle: RefinementOracle):
        self.oracle = oracle

    def refine(
        self,
        selected: Sequence[ProcessedArticle],
        reserves: Sequence[ProcessedArticle],
        wrapper_copy: WrapperCopy,
        historical_titles: Sequence[str],
        week_id: str,
    ) -> RefinementResult:
        def keep(note: str) -> RefinementResult:
            logger.warning(f"Refinement rejected, keeping original draft: {note}")
            return RefinementResult(
                selected=list(selected),
                reserves=list(reserves),
                wrapper_copy=wrapper_copy,
                applied=False,
                note=note,
            )

        logger.info("Reviewing draft for improvements...")
        try:
            content = self.oracle.propose(selected, reserves, wrapper_copy, historical_titles, week_id)
        except openai.OpenAIError as e:
            return keep(f"refinement call failed: {e}")

        if not content:
            return keep("empty refinement response")

        try:
            proposal = RefinementProposal.model_validate(parse_json_payload(content))
        except (ValueError, ValidationError) as e:
            return keep(f"malformed refinement response: {e}")

        union = list(selected) + list(reserves)
        articles = {a.id: a for a in union}

        try:
            new_selected = resolve_selection(proposal, articles)
        except RefinementRejected as e:
            return keep(str(e))

        chosen = {a.id for a in new_selected}
        new_reserves = [a for a in union if a.id not in chosen]
        new_copy = wrapper_copy.model_copy(
            update={"intro": proposal.intro, "short_summary": proposal.short_summary}
        )

        logger.info(f"✓ Review complete ({len(new_selected)} selected): {proposal.reasoning}")
        return RefinementResult(
            selected=new_selected,
            reserves=new_reserves,
            wrapper_copy=new_copy,
            applied=True,
            note=proposal.reasoning or "applied",
        )
