from app.client.api import LmsApiClient
from app.client.attempt import AttemptState, ExpiredProgressPolicy, LoadError, Notice, QuizAttemptSession
from app.client.errors import ApiError, InvalidTransition
from app.client.progress_store import (
    FileProgressStore,
    MemoryProgressStore,
    ProgressSnapshot,
    ProgressStore,
    RedisProgressStore,
    build_progress_store,
)
from app.client.timer import CountdownTimer

__all__ = [
    "ApiError",
    "AttemptState",
    "CountdownTimer",
    "ExpiredProgressPolicy",
    "FileProgressStore",
    "InvalidTransition",
    "LmsApiClient",
    "LoadError",
    "MemoryProgressStore",
    "Notice",
    "ProgressSnapshot",
    "ProgressStore",
    "QuizAttemptSession",
    "RedisProgressStore",
    "build_progress_store",
]
