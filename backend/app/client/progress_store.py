"""Best-effort local persistence of in-flight attempt progress.

One snapshot per (quiz, attempt), keyed ``quiz_progress_{quizId}_{attemptId}``.
Saving overwrites, clearing a missing key is a no-op, and no backend ever
raises: failures are logged and the attempt carries on without persistence.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

import redis
from pydantic import Field, ValidationError

from app.core import redis_client
from app.core.config import Settings
from app.schemas.base import CamelModel

logger = logging.getLogger(__name__)


class ProgressSnapshot(CamelModel):
    answers: dict[str, str] = Field(default_factory=dict)
    current_question_index: int = 0
    remaining_time_seconds: int = Field(default=0, ge=0)
    saved_at: float = Field(allow_inf_nan=False)


def progress_key(quiz_id: str, attempt_id: str) -> str:
    return f"quiz_progress_{quiz_id}_{attempt_id}"


class ProgressStore(Protocol):
    def save(self, quiz_id: str, attempt_id: str, snapshot: ProgressSnapshot) -> None: ...

    def load(self, quiz_id: str, attempt_id: str) -> ProgressSnapshot | None: ...

    def clear(self, quiz_id: str, attempt_id: str) -> None: ...


def _decode(key: str, raw: str | bytes | None) -> ProgressSnapshot | None:
    if raw is None:
        return None
    try:
        return ProgressSnapshot.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("ignoring unreadable progress for %s: %s", key, e.error_count())
        return None


class MemoryProgressStore:
    def __init__(self):
        self._data: dict[str, str] = {}

    def save(self, quiz_id: str, attempt_id: str, snapshot: ProgressSnapshot) -> None:
        self._data[progress_key(quiz_id, attempt_id)] = snapshot.model_dump_json(by_alias=True)

    def load(self, quiz_id: str, attempt_id: str) -> ProgressSnapshot | None:
        key = progress_key(quiz_id, attempt_id)
        return _decode(key, self._data.get(key))

    def clear(self, quiz_id: str, attempt_id: str) -> None:
        self._data.pop(progress_key(quiz_id, attempt_id), None)


class FileProgressStore:
    """One JSON file per key under ``directory``."""

    def __init__(self, directory: str | os.PathLike):
        self.directory = Path(directory)

    def _path(self, quiz_id: str, attempt_id: str) -> Path:
        return self.directory / f"{progress_key(quiz_id, attempt_id)}.json"

    def save(self, quiz_id: str, attempt_id: str, snapshot: ProgressSnapshot) -> None:
        path = self._path(quiz_id, attempt_id)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(snapshot.model_dump_json(by_alias=True))
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            logger.warning("failed to save progress to %s: %s", path, e)

    def load(self, quiz_id: str, attempt_id: str) -> ProgressSnapshot | None:
        path = self._path(quiz_id, attempt_id)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("failed to read progress from %s: %s", path, e)
            return None
        return _decode(path.name, raw)

    def clear(self, quiz_id: str, attempt_id: str) -> None:
        path = self._path(quiz_id, attempt_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("failed to clear progress at %s: %s", path, e)


class RedisProgressStore:
    def __init__(self, client: redis.Redis, *, ttl_seconds: int | None = None):
        self.client = client
        self.ttl_seconds = ttl_seconds if ttl_seconds and ttl_seconds > 0 else None

    def save(self, quiz_id: str, attempt_id: str, snapshot: ProgressSnapshot) -> None:
        key = progress_key(quiz_id, attempt_id)
        try:
            self.client.set(key, snapshot.model_dump_json(by_alias=True), ex=self.ttl_seconds)
        except redis.RedisError as e:
            logger.warning("failed to save progress %s: %s", key, e)

    def load(self, quiz_id: str, attempt_id: str) -> ProgressSnapshot | None:
        key = progress_key(quiz_id, attempt_id)
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            logger.warning("failed to load progress %s: %s", key, e)
            return None
        return _decode(key, raw)

    def clear(self, quiz_id: str, attempt_id: str) -> None:
        key = progress_key(quiz_id, attempt_id)
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            logger.warning("failed to clear progress %s: %s", key, e)


def build_progress_store(settings: Settings) -> ProgressStore:
    kind = (settings.progress_store or "file").strip().lower()
    if kind == "memory":
        return MemoryProgressStore()
    if kind == "redis":
        return RedisProgressStore(redis_client.get_redis(settings.redis_url), ttl_seconds=settings.progress_ttl_seconds)
    if kind == "file":
        return FileProgressStore(settings.progress_dir)
    raise ValueError(f"unknown progress store: {settings.progress_store!r}")
