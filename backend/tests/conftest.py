import sys
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.core.security import hash_password
from app.db.base import Base
from app.db import session as session_module
from app.main import create_app

# Import models so that they are registered in Base.metadata before create_all.
from app.models import (  # noqa: F401
    Course,
    Enrollment,
    Lesson,
    Notification,
    Question,
    QuestionType,
    Quiz,
    QuizAttempt,
    User,
    UserPoints,
    UserRole,
)

PASSWORD = "testpass123"


class _MemoryRedis:
    def __init__(self):
        self._data: dict[str, tuple[str, float | None]] = {}

    def ping(self):
        return True

    def _now(self) -> float:
        return time.time()

    def _get_entry(self, key: str):
        v = self._data.get(key)
        if not v:
            return None
        value, exp = v
        if exp is not None and exp <= self._now():
            self._data.pop(key, None)
            return None
        return value, exp

    def get(self, key: str):
        entry = self._get_entry(key)
        return entry[0] if entry else None

    def set(self, key: str, value: str, ex: int | None = None):
        exp = (self._now() + int(ex)) if ex else None
        self._data[key] = (value, exp)
        return True

    def delete(self, key: str):
        return 1 if self._data.pop(key, None) is not None else 0

    def incr(self, key: str):
        cur = self.get(key)
        n = int(cur or 0) + 1
        _, exp = self._data.get(key, ("", None))
        self._data[key] = (str(n), exp)
        return n

    def expire(self, key: str, seconds: int):
        entry = self._get_entry(key)
        if not entry:
            return False
        value, _ = entry
        self._data[key] = (value, self._now() + int(seconds))
        return True

    def ttl(self, key: str):
        entry = self._get_entry(key)
        if not entry:
            return -2
        _, exp = entry
        if exp is None:
            return -1
        return max(0, int(exp - self._now()))

    def flushall(self):
        self._data.clear()


# Configure test DB (SQLite in-memory) at import time so all tests importing
# app.db.session.SessionLocal will get the patched version.
_engine = create_engine(
    "sqlite+pysqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
Base.metadata.create_all(bind=_engine)
session_module.engine = _engine
session_module.SessionLocal = session_module.sessionmaker(autocommit=False, autoflush=False, bind=_engine)


# Stub Redis at import time (rate limiting, readiness, redis progress store).
_mem_redis = _MemoryRedis()
import app.core.redis_client as redis_client_module

redis_client_module.get_redis = lambda url=None: _mem_redis


@pytest.fixture(autouse=True)
def _fresh_state(client):
    # Every test starts with fresh limiter windows and no auth cookie.
    _mem_redis.flushall()
    client.cookies.clear()
    yield


@pytest.fixture()
def memory_redis():
    return _mem_redis


@pytest.fixture(scope="session")
def app():
    return create_app()


@pytest.fixture(scope="session")
def client(app):
    return TestClient(app)


@pytest.fixture()
def db():
    with session_module.SessionLocal() as session:
        yield session


def create_user(*, role: UserRole = UserRole.learner, password: str = PASSWORD) -> User:
    with session_module.SessionLocal() as db:
        user = User(
            email=f"{role.value}_{uuid.uuid4().hex[:8]}@example.com",
            name=f"Test {role.value}",
            role=role,
            password_hash=hash_password(password),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        db.expunge(user)
        return user


def login(client, email: str, password: str = PASSWORD) -> str:
    r = client.post(
        "/auth/token",
        data={"username": email, "password": password},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert r.status_code == 200, r.text
    # Tests authenticate with the bearer header only.
    client.cookies.clear()
    return r.json()["access_token"]


def enroll(user_id: uuid.UUID, course_id: uuid.UUID) -> None:
    with session_module.SessionLocal() as db:
        db.add(Enrollment(user_id=user_id, course_id=course_id))
        db.commit()


@dataclass
class Account:
    id: uuid.UUID
    email: str
    token: str

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


@dataclass
class SeededQuiz:
    id: str
    course_id: uuid.UUID
    lesson_id: uuid.UUID
    instructor: Account
    question_ids: list[str] = field(default_factory=list)
    correct: dict[str, str] = field(default_factory=dict)
    wrong: dict[str, str] = field(default_factory=dict)


@pytest.fixture()
def make_account(client):
    def _make(role: UserRole = UserRole.learner) -> Account:
        user = create_user(role=role)
        return Account(id=user.id, email=user.email, token=login(client, user.email))

    return _make


@pytest.fixture()
def seed_quiz(make_account):
    """Create an instructor-owned course with one lesson and a multiple-choice quiz.

    Every question has options ["A", "B", "C"] with option 0 correct.
    """

    def _seed(
        *,
        n_questions: int = 2,
        passing_score: int = 50,
        time_limit_minutes: int | None = 1,
        attempts_allowed: int | None = None,
    ) -> SeededQuiz:
        instructor = make_account(UserRole.instructor)
        with session_module.SessionLocal() as db:
            course = Course(title="Site safety basics", slug=f"safety-{uuid.uuid4().hex[:8]}", instructor_id=instructor.id)
            db.add(course)
            db.flush()
            lesson = Lesson(course_id=course.id, title="Fall protection", order=1)
            db.add(lesson)
            db.flush()
            quiz = Quiz(
                lesson_id=lesson.id,
                title="Fall protection check",
                passing_score=passing_score,
                time_limit_minutes=time_limit_minutes,
                attempts_allowed=attempts_allowed,
            )
            db.add(quiz)
            db.flush()

            questions = []
            for i in range(n_questions):
                q = Question(
                    quiz_id=quiz.id,
                    question_text=f"Question {i + 1}?",
                    question_type=QuestionType.multiple_choice,
                    options=["A", "B", "C"],
                    correct_answer="0",
                    explanation=f"Because {i + 1}",
                    points=1,
                    order=i,
                )
                db.add(q)
                questions.append(q)
            db.commit()

            ids = [str(q.id) for q in questions]
            return SeededQuiz(
                id=str(quiz.id),
                course_id=course.id,
                lesson_id=lesson.id,
                instructor=instructor,
                question_ids=ids,
                correct={qid: "0" for qid in ids},
                wrong={qid: "1" for qid in ids},
            )

    return _seed


@pytest.fixture()
def enrolled_learner(make_account):
    def _make(quiz: SeededQuiz) -> Account:
        learner = make_account(UserRole.learner)
        enroll(learner.id, quiz.course_id)
        return learner

    return _make
