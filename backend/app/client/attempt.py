"""Client-side state machine for one learner taking one timed quiz.

    not-started --start()--> in-progress --submit()/timer expiry--> completed
         ^                                                            |
         +------------------------- retake() ------------------------+

The session owns a :class:`CountdownTimer` whose callbacks are bound methods,
so the tick and the auto-submit always act on the session's current answers
and attempt. Progress is mirrored to a :class:`ProgressStore` whenever an
answer or the current question changes, and restored when the same attempt is
started again.
"""

from __future__ import annotations

import enum
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from app.client.api import LmsApiClient
from app.client.errors import ApiError, InvalidTransition
from app.client.formatting import format_time
from app.client.progress_store import MemoryProgressStore, ProgressSnapshot, ProgressStore
from app.client.timer import CountdownTimer
from app.schemas.quiz import AttemptOut, QuestionPublic, QuizOut, Results

logger = logging.getLogger(__name__)

DEFAULT_TIME_LIMIT_MINUTES = 30


class AttemptState(str, enum.Enum):
    not_started = "not-started"
    in_progress = "in-progress"
    completed = "completed"


class ExpiredProgressPolicy(str, enum.Enum):
    """What to do with saved progress whose time ran out while the learner was away."""

    discard = "discard"
    submit = "submit"


@dataclass(frozen=True)
class Notice:
    level: str  # info | success | warning | error
    message: str


@dataclass(frozen=True)
class LoadError:
    message: str
    retriable: bool


class QuizAttemptSession:
    def __init__(
        self,
        api: LmsApiClient,
        quiz_id: str,
        *,
        store: ProgressStore | None = None,
        expired_policy: ExpiredProgressPolicy | str = ExpiredProgressPolicy.discard,
        default_time_limit_minutes: int = DEFAULT_TIME_LIMIT_MINUTES,
        tick_interval: float = 1.0,
        clock: Callable[[], float] = time.time,
        on_notice: Callable[[Notice], None] | None = None,
    ):
        self.api = api
        self.quiz_id = str(quiz_id)
        self.store = store if store is not None else MemoryProgressStore()
        self.expired_policy = ExpiredProgressPolicy(expired_policy)
        self.default_time_limit_minutes = int(default_time_limit_minutes)
        self.clock = clock
        self.on_notice = on_notice

        self.state = AttemptState.not_started
        self.quiz: QuizOut | None = None
        self.attempt: AttemptOut | None = None
        self.answers: dict[str, str] = {}
        self.current_index = 0
        self.remaining_seconds = 0
        self.results: Results | None = None

        self.loading = False
        self.load_error: LoadError | None = None
        self.starting = False
        self.submitting = False
        self.closed = False
        self.notices: list[Notice] = []

        self._timer = CountdownTimer(self._tick, self._on_expire, interval=tick_interval)

    # -- derived state -------------------------------------------------

    @property
    def questions(self) -> list[QuestionPublic]:
        return list(self.quiz.questions) if self.quiz else []

    @property
    def current_question(self) -> QuestionPublic | None:
        qs = self.questions
        return qs[self.current_index] if qs else None

    @property
    def time_allotment(self) -> int:
        minutes = self.quiz.time_limit_minutes if self.quiz else None
        return int(minutes or self.default_time_limit_minutes) * 60

    @property
    def answered_count(self) -> int:
        return sum(1 for q in self.questions if self.answers.get(q.id))

    @property
    def all_answered(self) -> bool:
        return self.answered_count == len(self.questions)

    @property
    def can_submit(self) -> bool:
        """Whether the submit button is enabled.

        Once the clock has run out a failed auto-submit may be retried with
        whatever was answered.
        """
        if self.state is not AttemptState.in_progress or self.submitting:
            return False
        return self.all_answered or self.remaining_seconds <= 0

    @property
    def formatted_time(self) -> str:
        return format_time(self.remaining_seconds)

    @property
    def timer_running(self) -> bool:
        return self._timer.running

    # -- lifecycle -----------------------------------------------------

    async def load(self) -> bool:
        """Fetch the quiz. On failure ``load_error`` says what happened and whether to retry."""
        if self.state is AttemptState.in_progress:
            raise InvalidTransition("cannot reload a quiz while an attempt is in progress")

        self.loading = True
        try:
            quiz = await self.api.get_quiz(self.quiz_id)
        except ApiError as e:
            logger.warning("failed to load quiz %s: %r", self.quiz_id, e)
            self.load_error = LoadError(message=e.message, retriable=e.retriable)
            self._notify("error", f"Failed to load quiz: {e.message}")
            return False
        finally:
            self.loading = False

        self.quiz = quiz
        self.load_error = None
        if self.state is AttemptState.not_started:
            self.remaining_seconds = self.time_allotment
        return True

    async def start(self) -> bool:
        if self.state is not AttemptState.not_started:
            raise InvalidTransition(f"cannot start from {self.state.value}")
        if self.quiz is None:
            raise InvalidTransition("quiz is not loaded")
        if self.starting:
            return False

        self.starting = True
        try:
            attempt = await self.api.start_attempt(self.quiz.id)
        except ApiError as e:
            logger.warning("failed to start quiz %s: %r", self.quiz.id, e)
            self._notify("error", f"Failed to start quiz: {e.message}")
            return False
        finally:
            self.starting = False

        if self.closed:
            return False

        self.attempt = attempt
        self.answers = {}
        self.current_index = 0
        self.results = None
        self.remaining_seconds = self.time_allotment

        submit_now = self._restore_progress()
        self.state = AttemptState.in_progress
        logger.info("attempt %s in progress (quiz=%s, %ds left)", attempt.id, self.quiz.id, self.remaining_seconds)

        if submit_now:
            await self._submit()
            return True

        self._save_progress()
        self._timer.start()
        return True

    async def submit(self) -> Results | None:
        """Manual submission. Returns None when a submission is already in flight."""
        if self.submitting:
            return None
        if self.state is not AttemptState.in_progress:
            raise InvalidTransition(f"cannot submit from {self.state.value}")
        if not self.can_submit:
            raise InvalidTransition("answer every question before submitting")
        return await self._submit()

    def retake(self) -> None:
        if self.state is not AttemptState.completed:
            raise InvalidTransition(f"cannot retake from {self.state.value}")
        if self.attempt is not None:
            self.store.clear(self.quiz_id, self.attempt.id)
        self.attempt = None
        self.answers = {}
        self.results = None
        self.current_index = 0
        self.remaining_seconds = self.time_allotment
        self.state = AttemptState.not_started

    def close(self) -> None:
        """Stop the timer; a submission still in flight completes but its result is dropped."""
        self.closed = True
        self._timer.stop()

    # -- answering and navigation --------------------------------------

    def _require_in_progress(self, action: str) -> None:
        if self.state is not AttemptState.in_progress:
            raise InvalidTransition(f"cannot {action} from {self.state.value}")

    def select_answer(self, question_id: str, token: str) -> None:
        self._require_in_progress("answer")
        question_id = str(question_id)
        if question_id not in {q.id for q in self.questions}:
            raise ValueError(f"question {question_id} is not part of this quiz")

        if token is None or str(token) == "":
            self.answers.pop(question_id, None)
        else:
            self.answers[question_id] = str(token)
        self._save_progress()

    def go_to(self, index: int) -> None:
        self._require_in_progress("navigate")
        self.current_index = self._clamp_index(index)
        self._save_progress()

    def next_question(self) -> None:
        self.go_to(self.current_index + 1)

    def previous_question(self) -> None:
        self.go_to(self.current_index - 1)

    def _clamp_index(self, index: int) -> int:
        last = max(0, len(self.questions) - 1)
        return min(max(int(index), 0), last)

    # -- timer callbacks -----------------------------------------------

    def _tick(self) -> bool:
        if self.state is not AttemptState.in_progress:
            return True
        # No save per tick: restore subtracts the time elapsed since savedAt.
        if self.remaining_seconds > 0:
            self.remaining_seconds -= 1
        return self.remaining_seconds > 0

    async def _on_expire(self) -> None:
        if self.closed or self.state is not AttemptState.in_progress:
            return
        logger.info("attempt %s ran out of time, auto-submitting", self.attempt.id if self.attempt else None)
        self._notify("warning", "Time's up! Submitting your answers.")
        await self._submit()

    # -- submission ----------------------------------------------------

    async def _submit(self) -> Results | None:
        if self.submitting:
            return None
        if self.quiz is None or self.attempt is None:
            raise InvalidTransition("no attempt to submit")

        self.submitting = True
        quiz_id, attempt_id = self.quiz.id, self.attempt.id
        answers = dict(self.answers)
        try:
            response = await self.api.submit(quiz_id, attempt_id, answers)
        except ApiError as e:
            logger.warning("submission of attempt %s failed: %r", attempt_id, e)
            if not self.closed:
                self._notify("error", f"Failed to submit quiz: {e.message}")
            return None
        finally:
            self.submitting = False

        # Graded server side, so the saved progress is stale either way.
        self.store.clear(quiz_id, attempt_id)
        logger.info(
            "attempt %s submitted with %d answer(s): score=%d passed=%s",
            attempt_id,
            len(answers),
            response.results.score,
            response.results.passed,
        )

        if self.closed:
            return None

        self._timer.stop()
        self.attempt = response.attempt
        self.results = response.results
        self.state = AttemptState.completed
        self._notify("success", response.message or f"Quiz submitted. Score: {response.results.score}%")
        return self.results

    # -- persistence ---------------------------------------------------

    def _save_progress(self) -> None:
        if self.state is not AttemptState.in_progress or self.attempt is None or self.closed:
            return
        self.store.save(
            self.quiz_id,
            self.attempt.id,
            ProgressSnapshot(
                answers=dict(self.answers),
                current_question_index=self.current_index,
                remaining_time_seconds=max(0, self.remaining_seconds),
                saved_at=self.clock(),
            ),
        )

    def _restore_progress(self) -> bool:
        """Apply saved progress for the current attempt.

        Returns True when saved answers ran out of time and the expired
        policy says to submit them right away.
        """
        snapshot = self.store.load(self.quiz_id, self.attempt.id)
        if snapshot is None:
            return False

        elapsed = math.floor(max(0.0, self.clock() - snapshot.saved_at))
        adjusted = max(0, snapshot.remaining_time_seconds - elapsed)

        known = {q.id for q in self.questions}
        answers = {qid: token for qid, token in snapshot.answers.items() if qid in known and token}
        dropped = len(snapshot.answers) - len(answers)
        if dropped:
            logger.warning("dropped %d saved answer(s) not in quiz %s", dropped, self.quiz_id)

        if adjusted > 0:
            self.answers = answers
            self.current_index = self._clamp_index(snapshot.current_question_index)
            self.remaining_seconds = adjusted
            logger.info("restored progress for attempt %s (%d answers, %ds left)", self.attempt.id, len(answers), adjusted)
            self._notify("info", "Progress restored")
            return False

        if self.expired_policy is ExpiredProgressPolicy.submit:
            self.answers = answers
            self.current_index = self._clamp_index(snapshot.current_question_index)
            self.remaining_seconds = 0
            self._notify("warning", "Time ran out while you were away. Submitting your saved answers.")
            return True

        self.store.clear(self.quiz_id, self.attempt.id)
        self._notify("warning", "Time ran out while you were away. Saved progress was discarded.")
        return False

    def _notify(self, level: str, message: str) -> None:
        notice = Notice(level=level, message=message)
        self.notices.append(notice)
        if self.on_notice is not None:
            self.on_notice(notice)
