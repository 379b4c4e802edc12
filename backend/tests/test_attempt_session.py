import asyncio
import time

import httpx
import pytest

from app.client.api import LmsApiClient
from app.client.attempt import AttemptState, ExpiredProgressPolicy, QuizAttemptSession
from app.client.errors import ApiError, InvalidTransition
from app.client.progress_store import FileProgressStore, MemoryProgressStore, ProgressSnapshot


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SpyApi(LmsApiClient):
    """Counts submissions; can slow them down or fail the first few."""

    def __init__(self, *args, delay: float = 0.0, fail_times: int = 0, **kwargs):
        super().__init__(*args, **kwargs)
        self.submissions: list[dict[str, str]] = []
        self.delay = delay
        self.fail_times = fail_times

    async def submit(self, quiz_id, attempt_id, answers):
        self.submissions.append(dict(answers))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times:
            self.fail_times -= 1
            raise ApiError(503, "unavailable", "service unavailable")
        return await super().submit(quiz_id, attempt_id, answers)


class RecordingStore(MemoryProgressStore):
    def __init__(self):
        super().__init__()
        self.saved_remaining: list[int] = []

    def save(self, quiz_id, attempt_id, snapshot):
        self.saved_remaining.append(snapshot.remaining_time_seconds)
        super().save(quiz_id, attempt_id, snapshot)


def _api(app, account, **kwargs) -> SpyApi:
    return SpyApi("http://testserver", token=account.token, transport=httpx.ASGITransport(app=app), **kwargs)


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def _messages(session, level: str) -> list[str]:
    return [n.message for n in session.notices if n.level == level]


def test_submit_enabled_only_when_all_answered(app, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=3)
    learner = enrolled_learner(quiz)

    async def main():
        async with _api(app, learner) as api:
            session = QuizAttemptSession(api, quiz.id, tick_interval=60)
            assert await session.load()
            assert not session.can_submit
            assert await session.start()

            for qid in quiz.question_ids:
                assert not session.all_answered
                assert not session.can_submit
                with pytest.raises(InvalidTransition):
                    await session.submit()
                session.select_answer(qid, "0")

            assert session.all_answered
            assert session.can_submit
            results = await session.submit()
            session.close()
            return session, results, api

    session, results, api = asyncio.run(main())
    assert results.score == 100
    assert session.state is AttemptState.completed
    assert len(api.submissions) == 1


def test_clearing_an_answer_disables_submit(app, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=1)
    learner = enrolled_learner(quiz)

    async def main():
        async with _api(app, learner) as api:
            session = QuizAttemptSession(api, quiz.id, tick_interval=60)
            await session.load()
            await session.start()
            qid = quiz.question_ids[0]
            session.select_answer(qid, "1")
            assert session.can_submit
            session.select_answer(qid, "")
            assert qid not in session.answers
            assert not session.can_submit
            session.close()

    asyncio.run(main())


def test_timer_expiry_auto_submits_partial_answers(app, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=2, passing_score=50, time_limit_minutes=1)
    learner = enrolled_learner(quiz)
    q1, q2 = quiz.question_ids
    store = RecordingStore()

    async def main():
        async with _api(app, learner) as api:
            session = QuizAttemptSession(api, quiz.id, store=store, tick_interval=0.001)
            await session.load()
            await session.start()
            assert session.remaining_seconds == 60
            session.select_answer(q1, quiz.correct[q1])

            await _wait_for(lambda: session.state is AttemptState.completed)
            await asyncio.sleep(0.02)
            session.close()
            return session, api

    session, api = asyncio.run(main())
    assert api.submissions == [{q1: "0"}]
    assert session.results.score == 50
    assert session.results.correct_count == 1
    assert session.results.total_questions == 2
    assert session.results.passed is True
    assert session.remaining_seconds == 0
    assert not session.timer_running
    assert "Time's up! Submitting your answers." in _messages(session, "warning")
    assert store.load(quiz.id, session.attempt.id) is None

    # saved on start and on the answer, never on a tick
    assert store.saved_remaining == [60, 60]


def test_reopening_within_ten_seconds_restores_progress(app, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=2, time_limit_minutes=1)
    learner = enrolled_learner(quiz)
    q1 = quiz.question_ids[0]
    store = MemoryProgressStore()
    clock = FakeClock()

    async def main():
        async with _api(app, learner) as api:
            first = QuizAttemptSession(api, quiz.id, store=store, clock=clock, tick_interval=60)
            await first.load()
            await first.start()
            first.select_answer(q1, "2")
            first.next_question()
            first.close()
            assert not first.timer_running

            clock.advance(10)

            second = QuizAttemptSession(api, quiz.id, store=store, clock=clock, tick_interval=60)
            await second.load()
            await second.start()
            second.close()
            return first, second

    first, second = asyncio.run(main())
    assert second.attempt.id == first.attempt.id
    assert second.state is AttemptState.in_progress
    assert second.answers == {q1: "2"}
    assert second.current_index == 1
    assert second.remaining_seconds == 50
    assert "Progress restored" in _messages(second, "info")


def test_instant_restore_round_trip(app, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=3, time_limit_minutes=2)
    learner = enrolled_learner(quiz)
    store = MemoryProgressStore()
    clock = FakeClock()

    async def main():
        async with _api(app, learner) as api:
            first = QuizAttemptSession(api, quiz.id, store=store, clock=clock, tick_interval=60)
            await first.load()
            await first.start()
            first.remaining_seconds = 77
            first.select_answer(quiz.question_ids[2], "1")
            first.go_to(2)
            first.close()

            clock.advance(0.4)

            second = QuizAttemptSession(api, quiz.id, store=store, clock=clock, tick_interval=60)
            await second.load()
            await second.start()
            second.close()
            return first, second

    first, second = asyncio.run(main())
    assert second.answers == first.answers
    assert second.current_index == 2
    assert abs(second.remaining_seconds - 77) <= 1


def _seed_expired_snapshot(client, quiz, learner, store, clock, answers):
    r = client.post(f"/quizzes/{quiz.id}/attempts", headers=learner.headers)
    attempt_id = r.json()["id"]
    store.save(
        quiz.id,
        attempt_id,
        ProgressSnapshot(
            answers=answers,
            current_question_index=1,
            remaining_time_seconds=10,
            saved_at=clock() - 10,
        ),
    )
    return attempt_id


def test_zero_remaining_snapshot_is_discarded_by_default(app, client, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=2, time_limit_minutes=1)
    learner = enrolled_learner(quiz)
    store = MemoryProgressStore()
    clock = FakeClock()
    q1 = quiz.question_ids[0]
    attempt_id = _seed_expired_snapshot(client, quiz, learner, store, clock, {q1: "0"})

    async def main():
        async with _api(app, learner) as api:
            session = QuizAttemptSession(api, quiz.id, store=store, clock=clock, tick_interval=60)
            await session.load()
            await session.start()
            session.close()
            return session, api

    session, api = asyncio.run(main())
    assert session.attempt.id == attempt_id
    assert session.state is AttemptState.in_progress
    assert session.answers == {}
    assert session.current_index == 0
    assert session.remaining_seconds == 60
    assert api.submissions == []
    assert any("discarded" in m for m in _messages(session, "warning"))
    fresh = store.load(quiz.id, attempt_id)
    assert fresh.answers == {} and fresh.remaining_time_seconds == 60


def test_zero_remaining_snapshot_can_be_submitted(app, client, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=2, passing_score=50, time_limit_minutes=1)
    learner = enrolled_learner(quiz)
    store = MemoryProgressStore()
    clock = FakeClock()
    q1 = quiz.question_ids[0]
    attempt_id = _seed_expired_snapshot(client, quiz, learner, store, clock, {q1: "0"})

    async def main():
        async with _api(app, learner) as api:
            session = QuizAttemptSession(
                api,
                quiz.id,
                store=store,
                clock=clock,
                tick_interval=60,
                expired_policy=ExpiredProgressPolicy.submit,
            )
            await session.load()
            await session.start()
            session.close()
            return session, api

    session, api = asyncio.run(main())
    assert api.submissions == [{q1: "0"}]
    assert session.state is AttemptState.completed
    assert session.results.score == 50
    assert not session.timer_running
    assert store.load(quiz.id, attempt_id) is None


@pytest.mark.parametrize(
    "payload",
    [
        b"\xff\xfe{garbage",
        b'{"answers":{},"currentQuestionIndex":0,"remainingTimeSeconds":30,"savedAt":-Infinity}',
    ],
)
def test_unreadable_progress_file_starts_fresh(app, client, seed_quiz, enrolled_learner, tmp_path, payload):
    quiz = seed_quiz(n_questions=2, time_limit_minutes=1)
    learner = enrolled_learner(quiz)
    attempt_id = client.post(f"/quizzes/{quiz.id}/attempts", headers=learner.headers).json()["id"]
    store = FileProgressStore(tmp_path)
    (tmp_path / f"quiz_progress_{quiz.id}_{attempt_id}.json").write_bytes(payload)

    async def main():
        async with _api(app, learner) as api:
            session = QuizAttemptSession(api, quiz.id, store=store, tick_interval=60)
            await session.load()
            ok = await session.start()
            session.close()
            return session, ok

    session, ok = asyncio.run(main())
    assert ok is True
    assert session.attempt.id == attempt_id
    assert session.state is AttemptState.in_progress
    assert session.answers == {}
    assert session.remaining_seconds == 60
    assert store.load(quiz.id, attempt_id).remaining_time_seconds == 60


def test_double_click_submits_once(app, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=2)
    learner = enrolled_learner(quiz)

    async def main():
        async with _api(app, learner, delay=0.05) as api:
            session = QuizAttemptSession(api, quiz.id, tick_interval=60)
            await session.load()
            await session.start()
            for qid, token in quiz.correct.items():
                session.select_answer(qid, token)

            first, second = await asyncio.gather(session.submit(), session.submit())
            session.close()
            return session, api, first, second

    session, api, first, second = asyncio.run(main())
    assert len(api.submissions) == 1
    assert first is not None and first.score == 100
    assert second is None
    assert session.state is AttemptState.completed


def test_timer_expiry_during_manual_submit_does_not_resubmit(app, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=1, time_limit_minutes=1)
    learner = enrolled_learner(quiz)

    async def main():
        async with _api(app, learner, delay=1.0) as api:
            session = QuizAttemptSession(api, quiz.id, tick_interval=0.001)
            await session.load()
            await session.start()
            session.select_answer(quiz.question_ids[0], "0")

            manual = asyncio.create_task(session.submit())
            await _wait_for(lambda: session.remaining_seconds == 0)
            result = await manual
            await asyncio.sleep(0.02)
            session.close()
            return session, api, result

    session, api, result = asyncio.run(main())
    assert len(api.submissions) == 1
    assert result is not None
    assert session.state is AttemptState.completed


def test_failed_submission_keeps_progress_for_retry(app, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=2)
    learner = enrolled_learner(quiz)
    store = MemoryProgressStore()

    async def main():
        async with _api(app, learner, fail_times=1) as api:
            session = QuizAttemptSession(api, quiz.id, store=store, tick_interval=60)
            await session.load()
            await session.start()
            for qid, token in quiz.correct.items():
                session.select_answer(qid, token)

            assert await session.submit() is None
            after_failure = (session.state, store.load(quiz.id, session.attempt.id), list(session.notices))

            results = await session.submit()
            session.close()
            return session, api, after_failure, results

    session, api, (state, snapshot, notices), results = asyncio.run(main())
    assert state is AttemptState.in_progress
    assert snapshot is not None and snapshot.answers == quiz.correct
    assert notices[-1].level == "error"
    assert "service unavailable" in notices[-1].message

    assert len(api.submissions) == 2
    assert results.score == 100
    assert session.state is AttemptState.completed
    assert store.load(quiz.id, session.attempt.id) is None


def test_retake_returns_to_not_started(app, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=1)
    learner = enrolled_learner(quiz)
    store = MemoryProgressStore()

    async def main():
        async with _api(app, learner) as api:
            session = QuizAttemptSession(api, quiz.id, store=store, tick_interval=60)
            await session.load()
            with pytest.raises(InvalidTransition):
                session.retake()

            await session.start()
            first_attempt = session.attempt
            with pytest.raises(InvalidTransition):
                session.retake()
            with pytest.raises(InvalidTransition):
                await session.start()

            session.select_answer(quiz.question_ids[0], "1")
            await session.submit()
            assert session.results.score == 0

            session.retake()
            snapshot = (session.state, dict(session.answers), session.results, session.remaining_seconds)

            await session.start()
            session.close()
            return session, first_attempt, snapshot

    session, first_attempt, (state, answers, results, remaining) = asyncio.run(main())
    assert state is AttemptState.not_started
    assert answers == {}
    assert results is None
    assert remaining == 60
    assert session.attempt.id != first_attempt.id
    assert session.attempt.attempt_number == 2


def test_closing_discards_in_flight_result(app, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=1)
    learner = enrolled_learner(quiz)
    store = MemoryProgressStore()

    async def main():
        async with _api(app, learner, delay=0.05) as api:
            session = QuizAttemptSession(api, quiz.id, store=store, tick_interval=60)
            await session.load()
            await session.start()
            session.select_answer(quiz.question_ids[0], "0")

            pending = asyncio.create_task(session.submit())
            await asyncio.sleep(0)
            session.close()
            result = await pending
            return session, result

    session, result = asyncio.run(main())
    assert result is None
    assert session.state is AttemptState.in_progress
    assert session.results is None
    assert not session.timer_running
    # the server graded it, so the local copy is gone
    assert store.load(quiz.id, session.attempt.id) is None


def test_actions_outside_in_progress_are_rejected(app, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=2)
    learner = enrolled_learner(quiz)

    async def main():
        async with _api(app, learner) as api:
            session = QuizAttemptSession(api, quiz.id, tick_interval=60)
            with pytest.raises(InvalidTransition):
                await session.start()

            await session.load()
            with pytest.raises(InvalidTransition):
                session.select_answer(quiz.question_ids[0], "0")
            with pytest.raises(InvalidTransition):
                session.next_question()
            with pytest.raises(InvalidTransition):
                await session.submit()

            await session.start()
            with pytest.raises(ValueError):
                session.select_answer("not-a-question", "0")

            session.go_to(99)
            assert session.current_index == 1
            session.previous_question()
            session.previous_question()
            assert session.current_index == 0
            assert session.current_question.id == quiz.question_ids[0]
            session.close()

    asyncio.run(main())


def test_load_failures_are_reported(app, seed_quiz, make_account):
    quiz = seed_quiz()
    outsider = make_account()

    def _down(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def main():
        async with _api(app, outsider) as api:
            forbidden = QuizAttemptSession(api, quiz.id)
            ok_forbidden = await forbidden.load()

        async with LmsApiClient("http://testserver", transport=httpx.MockTransport(_down)) as api:
            offline = QuizAttemptSession(api, quiz.id)
            ok_offline = await offline.load()

        return forbidden, ok_forbidden, offline, ok_offline

    forbidden, ok_forbidden, offline, ok_offline = asyncio.run(main())
    assert ok_forbidden is False
    assert forbidden.load_error.retriable is False
    assert "enrolled" in forbidden.load_error.message
    assert forbidden.notices[-1].level == "error"

    assert ok_offline is False
    assert offline.load_error.retriable is True
    assert offline.quiz is None


def test_start_failure_stays_not_started(app, client, seed_quiz, enrolled_learner):
    quiz = seed_quiz(n_questions=1, attempts_allowed=1)
    learner = enrolled_learner(quiz)
    attempt = client.post(f"/quizzes/{quiz.id}/attempts", headers=learner.headers).json()
    r = client.post(
        f"/quizzes/{quiz.id}/submit",
        json={"attemptId": attempt["id"], "answers": []},
        headers=learner.headers,
    )
    assert r.status_code == 200

    async def main():
        async with _api(app, learner) as api:
            session = QuizAttemptSession(api, quiz.id, tick_interval=60)
            await session.load()
            ok = await session.start()
            return session, ok

    session, ok = asyncio.run(main())
    assert ok is False
    assert session.state is AttemptState.not_started
    assert session.attempt is None
    assert not session.timer_running
    assert "no attempts remaining" in session.notices[-1].message


def test_missing_time_limit_defaults_to_thirty_minutes(app, seed_quiz, enrolled_learner):
    quiz = seed_quiz(time_limit_minutes=None)
    learner = enrolled_learner(quiz)

    async def main():
        async with _api(app, learner) as api:
            session = QuizAttemptSession(api, quiz.id, tick_interval=60)
            await session.load()
            await session.start()
            session.close()
            return session

    session = asyncio.run(main())
    assert session.time_allotment == 30 * 60
    assert session.remaining_seconds == 30 * 60
    assert session.formatted_time == "30:00"
