"""Quiz grading shared by every submission path.

Score is the share of correctly answered questions over all questions of the
quiz (unanswered questions count as wrong), rounded to a whole percentage.
Points are tracked alongside for weighted reporting.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from app.models.quiz import Question, QuestionType

logger = logging.getLogger(__name__)

ESSAY_PLACEHOLDER = "Manual grading required"


@dataclass
class QuestionGrade:
    question_id: str
    question_text: str
    selected_answer: str | None
    correct_answer: str | None
    is_correct: bool
    points: int
    earned_points: int
    explanation: str | None = None


@dataclass
class QuizGrade:
    score: int
    passed: bool
    correct_count: int
    total_questions: int
    passing_score: int
    earned_points: int
    total_points: int
    detailed_results: list[QuestionGrade] = field(default_factory=list)


def _normalize_text(value: str | None) -> str:
    return " ".join((value or "").split()).lower()


def _json_equal(a: str, b: str) -> bool:
    try:
        return json.loads(a) == json.loads(b)
    except (TypeError, ValueError):
        return False


def is_correct(*, question: Question, answer: str | None) -> bool:
    expected = question.correct_answer
    if answer is None or answer == "":
        return False

    qtype = question.question_type
    if qtype == QuestionType.essay:
        return False
    if expected is None:
        return False

    if qtype in (QuestionType.multiple_choice, QuestionType.true_false):
        return answer.strip() == expected.strip()

    if qtype in (QuestionType.short_answer, QuestionType.fill_blank):
        return _normalize_text(answer) == _normalize_text(expected)

    if qtype == QuestionType.matching:
        return _json_equal(answer, expected)

    logger.warning("unknown question type %r for question %s", qtype, question.id)
    return False


def grade_submission(
    questions: Iterable[Question],
    answers: Mapping[str, str],
    passing_score: int,
) -> QuizGrade:
    """Grade ``answers`` (question id -> selected answer) against ``questions``.

    Answers for ids that are not part of the quiz are ignored.
    """
    detailed: list[QuestionGrade] = []
    correct_count = 0
    earned_points = 0
    total_points = 0

    ordered = sorted(questions, key=lambda q: (q.order or 0, str(q.id)))
    for q in ordered:
        qid = str(q.id)
        points = int(q.points or 0)
        total_points += points

        selected = answers.get(qid)
        ok = is_correct(question=q, answer=selected)
        if ok:
            correct_count += 1
            earned_points += points

        correct_answer = ESSAY_PLACEHOLDER if q.question_type == QuestionType.essay else q.correct_answer
        detailed.append(
            QuestionGrade(
                question_id=qid,
                question_text=q.question_text,
                selected_answer=selected,
                correct_answer=correct_answer,
                is_correct=ok,
                points=points,
                earned_points=points if ok else 0,
                explanation=q.explanation,
            )
        )

    total = len(detailed)
    # half-up, so 12.5 -> 13
    score = int(correct_count * 100 / total + 0.5) if total > 0 else 0

    return QuizGrade(
        score=score,
        passed=score >= passing_score,
        correct_count=correct_count,
        total_questions=total,
        passing_score=passing_score,
        earned_points=earned_points,
        total_points=total_points,
        detailed_results=detailed,
    )
