"""Greeting, intro, sign-off and archive teaser around the selected stories."""

from typing import Optional, Sequence

import openai
from openai import OpenAI
from pydantic import ValidationError

from services.curator.oracle import build_openai_client, parse_json_payload
from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings
from shared.schemas.messages import ProcessedArticle, WrapperCopy

logger = get_logger("curator.wrapper_copy")

DEFAULT_WRAPPER_COPY = WrapperCopy(
    greeting="Bună dimineața! 👋",
    intro="Am adunat pentru tine cele mai bune vești din România de săptămâna asta. Ia-ți o cafea și hai să vedem.",
    sign_off="Mulțumim că ne citești! Ne vedem săptămâna viitoare. 🙏",
    short_summary="Cele mai bune vești din România săptămâna aceasta.",
)

COPY_PROMPT = """You are the voice of Good Brief, a Romanian positive news newsletter.
Calm, warm, slightly witty, never cheesy. A smart friend who curates "vești bune".
Romanian first, at most 1-2 English words per sentence. Use "tu", never "Dumneavoastră".

Write the wrapper copy for week {week_id}.

This week's articles:
{articles}

Return only a JSON object with:
- "greeting": a variation on "Bună dimineața!"
- "intro": 2-3 sentences themed on this week's stories
- "signOff": a fresh closing line, warm but not cheesy
- "shortSummary": a 60-80 character teaser naming 2-3 key topics, for the archive"""


def format_copy_articles(articles: Sequence[ProcessedArticle], limit: int = 10) -> str:
    return "\n".join(
        f"{i}. [{a.category}] {a.original_title}: {a.summary}"
        for i, a in enumerate(articles[:limit], start=1)
    )


class OpenAICopyWriter:
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

    def write(self, articles: Sequence[ProcessedArticle], week_id: str) -> WrapperCopy:
        """Raises ValueError when the response is missing or malformed."""
        prompt = COPY_PROMPT.format(week_id=week_id, articles=format_copy_articles(articles))
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            response_format={"type": "json_object"},
            temperature=self.temperature,
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ValueError("No response from copy model")

        try:
            return WrapperCopy.model_validate(parse_json_payload(content))
        except ValidationError as e:
            raise ValueError(f"Incomplete wrapper copy: {e.error_count()} field error(s)") from e


def generate_wrapper_copy(writer, articles: Sequence[ProcessedArticle], week_id: str) -> WrapperCopy:
    """Wrapper copy from ``writer``, or the house default when generation fails."""
    try:
        copy = writer.write(articles, week_id)
    except (openai.OpenAIError, ValueError) as e:
        logger.warning(f"Wrapper copy generation failed, using default copy: {e}")
        return DEFAULT_WRAPPER_COPY.model_copy()

    logger.info("✓ Generated wrapper copy")
    return copy
