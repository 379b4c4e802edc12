from __future__ import annotations

import argparse
import os
import sys

# Allow `python scripts/seed_demo.py` from the backend directory.
sys.path.append(os.getcwd())

from sqlalchemy import select

from app.core.security import hash_password
from app.db.session import SessionLocal
from app.models.course import Course, Enrollment, Lesson
from app.models.quiz import Question, QuestionType, Quiz
from app.models.user import User, UserRole

DEMO_SLUG = "site-safety-basics"

DEMO_QUESTIONS = [
    (
        "At what height must fall protection be provided on most construction sites?",
        ["3 feet", "6 feet", "10 feet", "15 feet"],
        "1",
        "Fall protection is generally required at six feet above a lower level.",
    ),
    (
        "Who may inspect a scaffold before each shift?",
        ["Any worker", "A competent person", "The site visitor", "Nobody"],
        "1",
        "Scaffolds are inspected by a competent person before each work shift.",
    ),
    (
        "Hard hats protect against falling objects and bumps.",
        ["True", "False"],
        "0",
        None,
    ),
]


def ensure_user(db, *, email: str, name: str, role: UserRole, password: str) -> User:
    user = db.scalar(select(User).where(User.email == email))
    if user is None:
        user = User(email=email, name=name, role=role, password_hash=hash_password(password))
        db.add(user)
        db.flush()
    return user


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed a demo course with one timed quiz")
    parser.add_argument("--instructor-email", default=os.environ.get("SITESAFE_SEED_INSTRUCTOR_EMAIL", "instructor@example.com"))
    parser.add_argument("--learner-email", default=os.environ.get("SITESAFE_SEED_LEARNER_EMAIL", "learner@example.com"))
    parser.add_argument("--password", default=os.environ.get("SITESAFE_SEED_PASSWORD", "changeme123"))
    parser.add_argument("--time-limit", type=int, default=5, help="Quiz time limit in minutes")
    parser.add_argument("--passing-score", type=int, default=70)
    args = parser.parse_args()

    with SessionLocal() as db:
        instructor = ensure_user(
            db, email=args.instructor_email, name="Demo Instructor", role=UserRole.instructor, password=args.password
        )
        learner = ensure_user(db, email=args.learner_email, name="Demo Learner", role=UserRole.learner, password=args.password)

        course = db.scalar(select(Course).where(Course.slug == DEMO_SLUG))
        if course is None:
            course = Course(title="Site Safety Basics", slug=DEMO_SLUG, instructor_id=instructor.id)
            db.add(course)
            db.flush()

            lesson = Lesson(course_id=course.id, title="Working at height", order=1)
            db.add(lesson)
            db.flush()

            quiz = Quiz(
                lesson_id=lesson.id,
                title="Working at height check",
                description="Short check on fall protection and scaffolds.",
                passing_score=args.passing_score,
                time_limit_minutes=args.time_limit,
            )
            db.add(quiz)
            db.flush()

            for i, (text, options, correct, explanation) in enumerate(DEMO_QUESTIONS):
                qtype = QuestionType.true_false if len(options) == 2 else QuestionType.multiple_choice
                db.add(
                    Question(
                        quiz_id=quiz.id,
                        question_text=text,
                        question_type=qtype,
                        options=options,
                        correct_answer=correct,
                        explanation=explanation,
                        points=1,
                        order=i,
                    )
                )

        enrolled = db.scalar(
            select(Enrollment).where(Enrollment.user_id == learner.id, Enrollment.course_id == course.id)
        )
        if enrolled is None:
            db.add(Enrollment(user_id=learner.id, course_id=course.id))

        db.commit()

        quiz_id = db.scalar(
            select(Quiz.id).join(Lesson, Lesson.id == Quiz.lesson_id).where(Lesson.course_id == course.id).limit(1)
        )

    print("Demo data ensured:")
    print(f"  instructor: {args.instructor_email} / {args.password}")
    print(f"  learner:    {args.learner_email} / {args.password}")
    print(f"  quiz id:    {quiz_id}")


if __name__ == "__main__":
    main()
