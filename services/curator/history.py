"""
Loads recently drafted and published stories for cross-edition comparison.

Drafts are ``<data_dir>/drafts/<weekId>.json`` documents; published editions
are markdown files whose stories are ``## Title`` headings followed by a
markdown link to the source article. Unreadable files are skipped.
"""

import json
import re
from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import ValidationError

from shared.app_logging.logger import get_logger
from shared.schemas.messages import HistoricalArticleCandidate, NewsletterDraft

logger = get_logger("curator.history")

_HEADING = re.compile(r"^##\s+(.+?)\s*$")
_LINK = re.compile(r"\[[^\]]*\]\((https?://[^)\s]+)\)")
_LEADING_SYMBOLS = re.compile(r"^[^\w\"'„«(\[]+", re.UNICODE)


def load_draft_candidates(
    drafts_dir: Path,
    limit: int,
    exclude_week: Optional[str] = None,
) -> List[HistoricalArticleCandidate]:
    """Selected stories from the ``limit`` most recent drafts (by week id)."""
    drafts_dir = Path(drafts_dir)
    if limit <= 0 or not drafts_dir.is_dir():
        return []

    files = sorted(
        (p for p in drafts_dir.glob("*.json") if p.stem != exclude_week),
        key=lambda p: p.stem,
        reverse=True,
    )[:limit]

    candidates: List[HistoricalArticleCandidate] = []
    for path in files:
        try:
            draft = NewsletterDraft.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Skipping unreadable draft {path}: {e}")
            continue

        candidates.extend(
            HistoricalArticleCandidate(id=a.id, title=a.original_title, url=a.url)
            for a in draft.selected
        )
        logger.debug(f"Loaded {len(draft.selected)} stories from draft {path.name}")

    return candidates


def parse_issue_markdown(markdown: str) -> List[HistoricalArticleCandidate]:
    """Pair each ``## Title`` heading with the first link that follows it."""
    candidates: List[HistoricalArticleCandidate] = []
    pending_title: Optional[str] = None

    for line in markdown.splitlines():
        heading = _HEADING.match(line)
        if heading:
            pending_title = _LEADING_SYMBOLS.sub("", heading.group(1)).strip() or None
            continue

        if pending_title is None:
            continue

        link = _LINK.search(line)
        if link:
            candidates.append(HistoricalArticleCandidate(title=pending_title, url=link.group(1)))
            pending_title = None

    return candidates


def load_issue_candidates(issues_dir: Path, limit: int) -> List[HistoricalArticleCandidate]:
    """Stories from the ``limit`` most recent published editions (by filename)."""
    issues_dir = Path(issues_dir)
    if limit <= 0 or not issues_dir.is_dir():
        return []

    files = sorted(issues_dir.glob("*.md"), key=lambda p: p.name, reverse=True)[:limit]

    candidates: List[HistoricalArticleCandidate] = []
    for path in files:
        try:
            stories = parse_issue_markdown(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping unreadable edition {path}: {e}")
            continue

        candidates.extend(stories)
        logger.debug(f"Loaded {len(stories)} stories from edition {path.name}")

    return candidates


def load_history(
    drafts_dir: Path,
    issues_dir: Path,
    draft_limit: int,
    issue_limit: int,
    exclude_week: Optional[str] = None,
) -> List[HistoricalArticleCandidate]:
    """Drafts first (newest first), then published editions."""
    drafts = load_draft_candidates(drafts_dir, draft_limit, exclude_week=exclude_week)
    issues = load_issue_candidates(issues_dir, issue_limit)
    logger.info(
        f"Loaded {len(drafts)} stories from drafts and {len(issues)} from published editions"
    )
    return drafts + issues


def historical_titles(candidates: Iterable[HistoricalArticleCandidate], limit: int) -> List[str]:
    """Ordered, de-duplicated title sample used as "do not repeat" guidance."""
    titles: List[str] = []
    seen = set()
    for candidate in candidates:
        key = candidate.title.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        titles.append(candidate.title.strip())
        if len(titles) >= limit:
            break
    return titles
