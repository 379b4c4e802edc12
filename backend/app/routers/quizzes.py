from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.rate_limit import rate_limit
from app.core.security import get_current_user, require_roles
from app.db.session import get_db
from app.models.attempt import QuizAttempt
from app.models.course import Course, Enrollment, Lesson
from app.models.quiz import Question, Quiz
from app.models.user import User, UserRole
from app.schemas.quiz import (
    AttemptOut,
    QuestionPublic,
    QuestionWithAnswers,
    QuizCreate,
    QuizOut,
    QuizUpdate,
    QuizWithAnswersOut,
    Results,
    SubmitRequest,
    SubmitResponse,
)
from app.services.grading import grade_submission
from app.services.points import record_quiz_outcome

router = APIRouter(prefix="/quizzes", tags=["quizzes"])

logger = logging.getLogger(__name__)

require_author = require_roles(UserRole.instructor)


def _parse_uuid(value: str, *, what: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid {what} id") from e


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; treat them as UTC.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _seconds_since_start(attempt: QuizAttempt, now: datetime) -> int:
    return max(0, int((now - _as_utc(attempt.started_at)).total_seconds()))


def _time_exceeded(quiz: Quiz, attempt: QuizAttempt, now: datetime) -> bool:
    if not quiz.time_limit_minutes:
        return False
    allowed = quiz.time_limit_minutes * 60 + max(0, settings.quiz_time_grace_seconds)
    return _seconds_since_start(attempt, now) > allowed


def _get_quiz(db: Session, quiz_id: str) -> Quiz:
    quiz = db.get(Quiz, _parse_uuid(quiz_id, what="quiz"))
    if quiz is None:
        raise HTTPException(status_code=404, detail="quiz not found")
    return quiz


def _course_of(db: Session, quiz: Quiz) -> Course:
    course = db.scalar(select(Course).join(Lesson, Lesson.course_id == Course.id).where(Lesson.id == quiz.lesson_id))
    if course is None:
        raise HTTPException(status_code=404, detail="course not found")
    return course


def _is_author(user: User, course: Course) -> bool:
    return user.is_admin or (course.instructor_id is not None and course.instructor_id == user.id)


def _require_author_of(user: User, course: Course) -> None:
    if not _is_author(user, course):
        raise HTTPException(status_code=403, detail="you do not own this course")


def _enrollment(db: Session, *, user: User, course: Course) -> Enrollment | None:
    return db.scalar(select(Enrollment).where(Enrollment.user_id == user.id, Enrollment.course_id == course.id))


def _questions(db: Session, quiz: Quiz) -> list[Question]:
    return list(db.scalars(select(Question).where(Question.quiz_id == quiz.id).order_by(Question.order, Question.id)))


def _quiz_out(quiz: Quiz, questions: list[Question], *, include_answers: bool) -> QuizOut:
    base = {
        "id": str(quiz.id),
        "lesson_id": str(quiz.lesson_id),
        "title": quiz.title,
        "description": quiz.description,
        "passing_score": quiz.passing_score,
        "time_limit_minutes": quiz.time_limit_minutes,
        "attempts_allowed": quiz.attempts_allowed,
    }
    public = [
        {
            "id": str(q.id),
            "question_text": q.question_text,
            "question_type": q.question_type,
            "options": list(q.options or []),
            "points": q.points,
            "order": q.order,
        }
        for q in questions
    ]
    if include_answers:
        full = [
            QuestionWithAnswers(**p, correct_answer=q.correct_answer, explanation=q.explanation)
            for p, q in zip(public, questions)
        ]
        return QuizWithAnswersOut(**base, questions=full)
    return QuizOut(**base, questions=[QuestionPublic(**p) for p in public])


def _attempt_out(a: QuizAttempt) -> AttemptOut:
    return AttemptOut(
        id=str(a.id),
        quiz_id=str(a.quiz_id),
        user_id=str(a.user_id),
        started_at=a.started_at,
        attempt_number=a.attempt_number,
        completed_at=a.completed_at,
        score_percentage=a.score_percentage,
        passed=bool(a.passed),
    )


@router.post("", status_code=201)
def create_quiz(
    body: QuizCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_author),
):
    lesson = db.get(Lesson, _parse_uuid(body.lesson_id, what="lesson"))
    if lesson is None:
        raise HTTPException(status_code=404, detail="lesson not found")
    course = db.get(Course, lesson.course_id)
    if course is None:
        raise HTTPException(status_code=404, detail="course not found")
    _require_author_of(user, course)

    quiz = Quiz(
        lesson_id=lesson.id,
        title=body.title.strip(),
        description=body.description,
        passing_score=body.passing_score,
        time_limit_minutes=body.time_limit_minutes,
        attempts_allowed=body.attempts_allowed,
    )
    db.add(quiz)
    db.flush()

    for i, q in enumerate(body.questions):
        db.add(
            Question(
                quiz_id=quiz.id,
                question_text=q.question_text,
                question_type=q.question_type,
                options=q.options,
                correct_answer=q.correct_answer,
                explanation=q.explanation,
                points=q.points,
                order=i,
            )
        )
    db.commit()
    logger.info("quiz %s created by %s with %d questions", quiz.id, user.id, len(body.questions))

    return _quiz_out(quiz, _questions(db, quiz), include_answers=True)


@router.get("/{quiz_id}")
def get_quiz(
    quiz_id: str,
    include_answers: bool = Query(default=False, alias="includeAnswers"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    quiz = _get_quiz(db, quiz_id)
    course = _course_of(db, quiz)
    is_author = _is_author(user, course)

    # Authorisation is decided before any answer data is read.
    if include_answers and not is_author:
        raise HTTPException(status_code=403, detail="you do not have permission to view quiz answers")

    if not is_author and _enrollment(db, user=user, course=course) is None:
        raise HTTPException(status_code=403, detail="you must be enrolled in this course to view quizzes")

    return _quiz_out(quiz, _questions(db, quiz), include_answers=include_answers)


@router.put("/{quiz_id}")
def update_quiz(
    quiz_id: str,
    body: QuizUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_author),
):
    quiz = _get_quiz(db, quiz_id)
    _require_author_of(user, _course_of(db, quiz))

    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(quiz, field, value)
    db.commit()

    return _quiz_out(quiz, _questions(db, quiz), include_answers=True)


@router.delete("/{quiz_id}")
def delete_quiz(
    quiz_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_author),
):
    quiz = _get_quiz(db, quiz_id)
    _require_author_of(user, _course_of(db, quiz))

    db.execute(delete(QuizAttempt).where(QuizAttempt.quiz_id == quiz.id))
    db.execute(delete(Question).where(Question.quiz_id == quiz.id))
    db.delete(quiz)
    db.commit()
    logger.info("quiz %s deleted by %s", quiz_id, user.id)
    return {"ok": True}


@router.post("/{quiz_id}/attempts", response_model=AttemptOut)
def start_attempt(
    quiz_id: str,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="quiz_start", limit=30, window_seconds=60),
):
    quiz = _get_quiz(db, quiz_id)
    course = _course_of(db, quiz)

    enrollment = _enrollment(db, user=user, course=course)
    if enrollment is None:
        raise HTTPException(status_code=403, detail="you must be enrolled in the course to take this quiz")

    # An unfinished attempt that can still be submitted is resumed instead of
    # opening a new one. The client keys its local progress by attempt id.
    in_progress = db.scalar(
        select(QuizAttempt)
        .where(
            QuizAttempt.quiz_id == quiz.id,
            QuizAttempt.user_id == user.id,
            QuizAttempt.completed_at.is_(None),
        )
        .order_by(QuizAttempt.started_at.desc())
        .limit(1)
    )
    if in_progress is not None and not _time_exceeded(quiz, in_progress, datetime.now(timezone.utc)):
        response.status_code = 200
        return _attempt_out(in_progress)

    previous = db.scalar(
        select(func.count(QuizAttempt.id)).where(QuizAttempt.quiz_id == quiz.id, QuizAttempt.user_id == user.id)
    ) or 0
    if quiz.attempts_allowed and previous >= quiz.attempts_allowed:
        raise HTTPException(status_code=409, detail="no attempts remaining")

    attempt = QuizAttempt(
        quiz_id=quiz.id,
        user_id=user.id,
        enrollment_id=enrollment.id,
        attempt_number=previous + 1,
        started_at=datetime.now(timezone.utc),
        answers=[],
        time_spent_seconds=0,
    )
    db.add(attempt)
    db.commit()
    logger.info("attempt %s started (quiz=%s user=%s n=%d)", attempt.id, quiz.id, user.id, attempt.attempt_number)

    response.status_code = 201
    return _attempt_out(attempt)


@router.post("/{quiz_id}/submit", response_model=SubmitResponse)
def submit_quiz(
    quiz_id: str,
    body: SubmitRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    _: object = rate_limit(key_prefix="quiz_submit", limit=20, window_seconds=60),
):
    quiz_uuid = _parse_uuid(quiz_id, what="quiz")

    attempt = db.get(QuizAttempt, _parse_uuid(body.attempt_id, what="attempt"))
    if attempt is None:
        raise HTTPException(status_code=404, detail="quiz attempt not found")
    if attempt.user_id != user.id:
        raise HTTPException(status_code=403, detail="this attempt does not belong to you")
    if attempt.quiz_id != quiz_uuid:
        raise HTTPException(status_code=400, detail="attempt id does not match quiz id")
    if attempt.completed_at is not None:
        raise HTTPException(status_code=409, detail="this attempt has already been submitted")

    quiz = _get_quiz(db, quiz_id)

    now = datetime.now(timezone.utc)
    if _time_exceeded(quiz, attempt, now):
        raise HTTPException(status_code=403, detail="time limit exceeded for this quiz")
    time_spent = _seconds_since_start(attempt, now)

    questions = _questions(db, quiz)
    known = {str(q.id) for q in questions}
    answers = {a.question_id: a.selected_answer for a in body.answers}
    unknown = set(answers) - known
    if unknown:
        logger.warning("attempt %s submitted answers for unknown questions: %s", attempt.id, sorted(unknown))

    grade = grade_submission(questions, answers, quiz.passing_score)

    attempt.completed_at = now
    attempt.score_percentage = grade.score
    attempt.passed = grade.passed
    attempt.answers = [a.model_dump(by_alias=True) for a in body.answers if a.question_id in known]
    attempt.time_spent_seconds = time_spent

    record_quiz_outcome(
        db,
        user_id=user.id,
        quiz_title=quiz.title,
        score=grade.score,
        passing_score=grade.passing_score,
        passed=grade.passed,
        pass_points=settings.quiz_pass_points,
    )
    db.commit()
    logger.info(
        "attempt %s graded: score=%d passed=%s (%d/%d)",
        attempt.id,
        grade.score,
        grade.passed,
        grade.correct_count,
        grade.total_questions,
    )

    return SubmitResponse(
        attempt=_attempt_out(attempt),
        results=Results(**dataclasses.asdict(grade)),
        message="Quiz passed successfully!" if grade.passed else "Quiz completed. You can try again.",
    )
