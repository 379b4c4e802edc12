from __future__ import annotations

from datetime import datetime

from pydantic import Field, field_validator

from app.models.quiz import QuestionType
from app.schemas.base import CamelModel


class QuestionPublic(CamelModel):
    id: str
    question_text: str
    question_type: QuestionType = QuestionType.multiple_choice
    options: list[str] = Field(default_factory=list)
    points: int = 1
    order: int = 0


class QuestionWithAnswers(QuestionPublic):
    correct_answer: str | None = None
    explanation: str | None = None


class QuizOut(CamelModel):
    id: str
    lesson_id: str | None = None
    title: str
    description: str | None = None
    passing_score: int = 70
    time_limit_minutes: int | None = None
    attempts_allowed: int | None = None
    questions: list[QuestionPublic] = Field(default_factory=list)

    @property
    def question_ids(self) -> list[str]:
        return [q.id for q in self.questions]


class QuizWithAnswersOut(QuizOut):
    questions: list[QuestionWithAnswers] = Field(default_factory=list)


class QuestionCreate(CamelModel):
    question_text: str = Field(min_length=1)
    question_type: QuestionType = QuestionType.multiple_choice
    options: list[str] = Field(default_factory=list)
    correct_answer: str | None = None
    explanation: str | None = None
    points: int = Field(default=1, ge=0)

    @field_validator("options")
    @classmethod
    def _strip_options(cls, v: list[str]) -> list[str]:
        return [str(o).strip() for o in v]


class QuizCreate(CamelModel):
    lesson_id: str
    title: str = Field(min_length=1, max_length=300)
    description: str | None = None
    passing_score: int = Field(default=70, ge=0, le=100)
    time_limit_minutes: int | None = Field(default=None, ge=1)
    attempts_allowed: int | None = Field(default=None, ge=1)
    questions: list[QuestionCreate] = Field(default_factory=list)


class QuizUpdate(CamelModel):
    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = None
    passing_score: int | None = Field(default=None, ge=0, le=100)
    time_limit_minutes: int | None = Field(default=None, ge=1)
    attempts_allowed: int | None = Field(default=None, ge=1)


class AttemptOut(CamelModel):
    id: str
    quiz_id: str
    user_id: str
    started_at: datetime
    attempt_number: int
    completed_at: datetime | None = None
    score_percentage: int | None = None
    passed: bool = False


class SubmitAnswer(CamelModel):
    question_id: str
    selected_answer: str


class SubmitRequest(CamelModel):
    attempt_id: str
    answers: list[SubmitAnswer]


class QuestionResult(CamelModel):
    question_id: str
    question_text: str
    selected_answer: str | None = None
    correct_answer: str | None = None
    is_correct: bool = False
    points: int = 0
    earned_points: int = 0
    explanation: str | None = None


class Results(CamelModel):
    score: int
    passed: bool
    correct_count: int
    total_questions: int
    passing_score: int
    earned_points: int = 0
    total_points: int = 0
    detailed_results: list[QuestionResult] = Field(default_factory=list)


class SubmitResponse(CamelModel):
    attempt: AttemptOut
    results: Results
    message: str | None = None
