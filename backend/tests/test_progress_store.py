import json
import logging
import time

import pytest
import redis

from app.client.progress_store import (
    FileProgressStore,
    MemoryProgressStore,
    ProgressSnapshot,
    RedisProgressStore,
    build_progress_store,
    progress_key,
)
from app.core.config import Settings


def _snapshot(**overrides) -> ProgressSnapshot:
    data = {
        "answers": {"q1": "0", "q2": "2"},
        "current_question_index": 1,
        "remaining_time_seconds": 42,
        "saved_at": time.time(),
    }
    data.update(overrides)
    return ProgressSnapshot(**data)


@pytest.fixture(params=["memory", "file", "redis"])
def store(request, tmp_path, memory_redis):
    if request.param == "memory":
        return MemoryProgressStore()
    if request.param == "file":
        return FileProgressStore(tmp_path / "progress")
    return RedisProgressStore(memory_redis, ttl_seconds=60)


def test_key_shape():
    assert progress_key("quiz-1", "attempt-9") == "quiz_progress_quiz-1_attempt-9"


def test_save_then_load(store):
    snap = _snapshot()
    store.save("quiz", "a1", snap)

    loaded = store.load("quiz", "a1")
    assert loaded == snap


def test_last_write_wins_and_keys_are_independent(store):
    store.save("quiz", "a1", _snapshot(remaining_time_seconds=50))
    store.save("quiz", "a1", _snapshot(remaining_time_seconds=10))
    store.save("quiz", "a2", _snapshot(remaining_time_seconds=99))

    assert store.load("quiz", "a1").remaining_time_seconds == 10
    assert store.load("quiz", "a2").remaining_time_seconds == 99
    assert store.load("other", "a1") is None


def test_clear_is_idempotent(store):
    store.save("quiz", "a1", _snapshot())

    store.clear("quiz", "a1")
    assert store.load("quiz", "a1") is None

    store.clear("quiz", "a1")
    assert store.load("quiz", "a1") is None


def test_snapshot_is_stored_camel_case(tmp_path):
    store = FileProgressStore(tmp_path)
    store.save("quiz", "a1", _snapshot(saved_at=1700000000.5))

    raw = json.loads((tmp_path / "quiz_progress_quiz_a1.json").read_text())
    assert raw == {
        "answers": {"q1": "0", "q2": "2"},
        "currentQuestionIndex": 1,
        "remainingTimeSeconds": 42,
        "savedAt": 1700000000.5,
    }
    assert not [p for p in tmp_path.iterdir() if p.name.startswith(".tmp-")]


def test_corrupt_file_is_ignored(tmp_path, caplog):
    store = FileProgressStore(tmp_path)
    (tmp_path / "quiz_progress_quiz_a1.json").write_text("{not json")

    with caplog.at_level(logging.WARNING):
        assert store.load("quiz", "a1") is None
    assert "unreadable progress" in caplog.text


def test_invalid_utf8_file_is_ignored(tmp_path, caplog):
    store = FileProgressStore(tmp_path)
    (tmp_path / "quiz_progress_quiz_a1.json").write_bytes(b"\xff\xfe{garbage")

    with caplog.at_level(logging.WARNING):
        assert store.load("quiz", "a1") is None
    assert "unreadable progress" in caplog.text


@pytest.mark.parametrize("saved_at", ["-Infinity", "Infinity", "NaN"])
def test_non_finite_saved_at_is_rejected(tmp_path, saved_at):
    store = FileProgressStore(tmp_path)
    (tmp_path / "quiz_progress_quiz_a1.json").write_text(
        '{"answers":{},"currentQuestionIndex":0,"remainingTimeSeconds":30,"savedAt":%s}' % saved_at
    )

    assert store.load("quiz", "a1") is None


def test_negative_remaining_time_is_rejected(tmp_path):
    store = FileProgressStore(tmp_path)
    (tmp_path / "quiz_progress_quiz_a1.json").write_text(
        json.dumps({"answers": {}, "currentQuestionIndex": 0, "remainingTimeSeconds": -5, "savedAt": 1.0})
    )

    assert store.load("quiz", "a1") is None


def test_unwritable_directory_does_not_raise(tmp_path, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory")
    store = FileProgressStore(blocker / "progress")

    with caplog.at_level(logging.WARNING):
        store.save("quiz", "a1", _snapshot())
        assert store.load("quiz", "a1") is None
        store.clear("quiz", "a1")
    assert "failed to save progress" in caplog.text


class _BrokenRedis:
    def set(self, *args, **kwargs):
        raise redis.ConnectionError("down")

    def get(self, *args, **kwargs):
        raise redis.ConnectionError("down")

    def delete(self, *args, **kwargs):
        raise redis.ConnectionError("down")


def test_redis_failures_are_logged_not_raised(caplog):
    store = RedisProgressStore(_BrokenRedis())

    with caplog.at_level(logging.WARNING):
        store.save("quiz", "a1", _snapshot())
        assert store.load("quiz", "a1") is None
        store.clear("quiz", "a1")
    assert caplog.text.count("progress quiz_progress_quiz_a1") == 3


def test_redis_store_sets_ttl(memory_redis):
    store = RedisProgressStore(memory_redis, ttl_seconds=120)
    store.save("quiz", "a1", _snapshot())

    assert 0 < memory_redis.ttl("quiz_progress_quiz_a1") <= 120


def test_build_progress_store(tmp_path):
    assert isinstance(build_progress_store(Settings(PROGRESS_STORE="memory")), MemoryProgressStore)
    assert isinstance(build_progress_store(Settings(PROGRESS_STORE="redis")), RedisProgressStore)

    file_store = build_progress_store(Settings(PROGRESS_STORE="file", PROGRESS_DIR=str(tmp_path)))
    assert isinstance(file_store, FileProgressStore)
    assert file_store.directory == tmp_path

    with pytest.raises(ValueError):
        build_progress_store(Settings(PROGRESS_STORE="floppy"))
