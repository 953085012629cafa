"""
Score cache stores.

Scores are keyed by article id and kept indefinitely: the oracle is treated
as deterministic enough that a scored id never needs to be scored again.
"""

import json
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError

from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings
from shared.schemas.messages import ArticleScore, CachedScore

logger = get_logger("curator.cache")


class ScoreCache(ABC):
    """get / put / flush; ``flush`` makes everything put so far durable."""

    @abstractmethod
    def get(self, article_id: str) -> Optional[ArticleScore]:
        ...

    @abstractmethod
    def put(self, article_id: str, score: ArticleScore) -> None:
        ...

    @abstractmethod
    def flush(self) -> None:
        ...


def _stamp(score: ArticleScore) -> CachedScore:
    return CachedScore(**score.model_dump(), cached_at=datetime.now(timezone.utc))


class NullScoreCache(ScoreCache):
    """Caching disabled (refresh runs)."""

    def get(self, article_id: str) -> Optional[ArticleScore]:
        return None

    def put(self, article_id: str, score: ArticleScore) -> None:
        pass

    def flush(self) -> None:
        pass


class RefreshScoreCache(ScoreCache):
    """Never serves hits but still records fresh scores in ``inner``."""

    def __init__(self, inner: ScoreCache):
        self.inner = inner

    def get(self, article_id: str) -> Optional[ArticleScore]:
        return None

    def put(self, article_id: str, score: ArticleScore) -> None:
        self.inner.put(article_id, score)

    def flush(self) -> None:
        self.inner.flush()


class JsonFileScoreCache(ScoreCache):
    """``{articleId: ArticleScore & {cachedAt}}`` in one JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._entries: Dict[str, CachedScore] = {}
        self._dirty = False
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            logger.info(f"No score cache at {self.path}; starting empty")
            return

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Score cache {self.path} is unreadable ({e}); starting empty")
            return

        if not isinstance(raw, dict):
            logger.warning(f"Score cache {self.path} is not a JSON object; starting empty")
            return

        for article_id, entry in raw.items():
            try:
                self._entries[article_id] = CachedScore.model_validate(entry)
            except ValidationError as e:
                logger.warning(f"Ignoring invalid cache entry {article_id}: {e.error_count()} error(s)")

        logger.info(f"Loaded {len(self._entries)} cached scores from {self.path}")

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, article_id: str) -> Optional[ArticleScore]:
        entry = self._entries.get(article_id)
        return entry.to_score() if entry else None

    def put(self, article_id: str, score: ArticleScore) -> None:
        self._entries[article_id] = _stamp(score)
        self._dirty = True

    def flush(self) -> None:
        if not self._dirty:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {article_id: entry.to_wire() for article_id, entry in self._entries.items()}

        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".scores-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                json.dump(payload, fp, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        self._dirty = False
        logger.debug(f"Flushed {len(payload)} cached scores to {self.path}")


class RedisScoreCache(ScoreCache):
    """Scores stored as JSON values in a Redis hash; every put is durable."""

    def __init__(self, client, key: Optional[str] = None):
        self.client = client
        self.key = key or get_settings().curator.cache_key

    def get(self, article_id: str) -> Optional[ArticleScore]:
        value = self.client.hget(self.key, article_id)
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")

        try:
            return CachedScore.model_validate_json(value).to_score()
        except ValidationError as e:
            logger.warning(f"Ignoring invalid cache entry {article_id}: {e.error_count()} error(s)")
            return None

    def put(self, article_id: str, score: ArticleScore) -> None:
        self.client.hset(self.key, article_id, json.dumps(_stamp(score).to_wire(), ensure_ascii=False))

    def flush(self) -> None:
        pass

    def __len__(self) -> int:
        return self.client.hlen(self.key)


def build_score_cache(backend: Optional[str] = None) -> ScoreCache:
    """
    Cache store selected by CURATOR_CACHE_BACKEND (file, redis, none).

    An unreachable Redis falls back to the JSON file store so the run keeps
    its cross-run caching.
    """
    settings = get_settings()
    backend = backend or settings.curator.cache_backend
    file_path = Path(settings.curator.data_dir) / "cache" / "scores.json"

    if backend == "none":
        return NullScoreCache()
    if backend == "redis":
        from shared.utils.redis_client import get_redis_client

        client = get_redis_client("curator")
        if not client.ping():
            logger.warning(f"Redis is unreachable; using the file score cache at {file_path}")
            return JsonFileScoreCache(file_path)

        cache = RedisScoreCache(client)
        logger.info(f"Using Redis score cache {cache.key} with {len(cache)} entries")
        return cache
    return JsonFileScoreCache(file_path)
