"""Filesystem layout under the data directory: raw buffers, drafts, run traces."""

import json
import os
import tempfile
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from services.curator.errors import InputMissingError
from shared.app_logging.logger import get_logger
from shared.schemas.messages import NewsletterDraft, WeeklyBuffer

logger = get_logger("curator.storage")


def iso_week_id(day: Optional[date] = None) -> str:
    """``YYYY-Www`` for the ISO week containing ``day`` (today by default)."""
    year, week, _ = (day or date.today()).isocalendar()
    return f"{year}-W{week:02d}"


def raw_buffer_path(data_dir: Path, week_id: str) -> Path:
    return Path(data_dir) / "raw" / f"{week_id}.json"


def draft_path(data_dir: Path, week_id: str) -> Path:
    return Path(data_dir) / "drafts" / f"{week_id}.json"


def trace_path(data_dir: Path, week_id: str) -> Path:
    return Path(data_dir) / "traces" / f"{week_id}.json"


def write_json_atomic(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fp:
            json.dump(payload, fp, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def load_weekly_buffer(data_dir: Path, week_id: str) -> WeeklyBuffer:
    path = raw_buffer_path(data_dir, week_id)
    if not path.exists():
        raise InputMissingError(
            f"Raw data file not found for week {week_id}",
            week_id=week_id,
            details=f"Expected file: {path}",
        )

    try:
        buffer = WeeklyBuffer.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError) as e:
        raise InputMissingError(
            f"Raw data file for week {week_id} is unreadable",
            week_id=week_id,
            details=f"{path}: {e}",
        ) from e

    logger.info(f"Loaded {len(buffer.articles)} raw articles from {path}")
    return buffer


def save_draft(data_dir: Path, draft: NewsletterDraft) -> Path:
    path = draft_path(data_dir, draft.week_id)
    write_json_atomic(path, draft.to_wire())
    logger.info(f"Saved draft to {path}")
    return path


def save_trace(data_dir: Path, week_id: str, trace: Dict[str, Any]) -> Path:
    path = trace_path(data_dir, week_id)
    write_json_atomic(path, trace)
    logger.debug(f"Saved pipeline trace to {path}")
    return path
