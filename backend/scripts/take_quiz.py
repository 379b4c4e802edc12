from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

# Allow `python scripts/take_quiz.py` from the backend directory.
sys.path.append(os.getcwd())

from app.client.api import LmsApiClient
from app.client.attempt import AttemptState, Notice, QuizAttemptSession
from app.client.errors import ApiError, InvalidTransition
from app.client.formatting import format_score, progress_label
from app.client.progress_store import build_progress_store
from app.core.config import settings

HELP = "answer: option number or text | n: next | p: previous | s: submit | q: quit (progress is kept)"


def _print_notice(notice: Notice) -> None:
    print(f"\n[{notice.level}] {notice.message}")


def _show_question(session: QuizAttemptSession) -> None:
    q = session.current_question
    if q is None:
        return
    print()
    print(f"{progress_label(session.current_index, len(session.questions))}  [{session.formatted_time} left]")
    print(q.question_text)
    for i, option in enumerate(q.options):
        marker = "*" if session.answers.get(q.id) == str(i) else " "
        print(f"  {marker} {i + 1}) {option}")
    if not q.options and session.answers.get(q.id):
        print(f"  your answer: {session.answers[q.id]}")


def _apply(session: QuizAttemptSession, raw: str) -> None:
    q = session.current_question
    if q is None:
        return
    if q.options:
        try:
            index = int(raw) - 1
        except ValueError:
            print(HELP)
            return
        if not 0 <= index < len(q.options):
            print(f"pick 1-{len(q.options)}")
            return
        session.select_answer(q.id, str(index))
    else:
        session.select_answer(q.id, raw)


async def run(args) -> int:
    async with LmsApiClient(args.base_url) as api:
        try:
            await api.login(args.email, args.password)
        except ApiError as e:
            print(f"login failed: {e.message}")
            return 1

        session = QuizAttemptSession(
            api,
            args.quiz_id,
            store=build_progress_store(settings),
            expired_policy=settings.expired_progress_policy,
            default_time_limit_minutes=settings.quiz_default_time_limit_minutes,
            on_notice=_print_notice,
        )
        if not await session.load():
            hint = " (try again later)" if session.load_error.retriable else ""
            print(f"could not load quiz{hint}")
            return 1

        quiz = session.quiz
        print(f"{quiz.title}: {len(quiz.questions)} questions, time limit {session.formatted_time}, pass at {quiz.passing_score}%")
        if not await session.start():
            return 1

        print(HELP)
        try:
            while session.state is AttemptState.in_progress:
                _show_question(session)
                raw = (await asyncio.to_thread(input, "> ")).strip()
                if session.state is not AttemptState.in_progress:
                    break
                if raw == "q":
                    return 0
                if raw == "n":
                    session.next_question()
                elif raw == "p":
                    session.previous_question()
                elif raw == "s":
                    try:
                        await session.submit()
                    except InvalidTransition as e:
                        print(f"{e} ({session.answered_count}/{len(session.questions)} answered)")
                elif raw:
                    _apply(session, raw)
        finally:
            session.close()

        results = session.results
        if results is not None:
            print()
            print(f"Score: {format_score(results.score, results.passing_score)}")
            print(f"Correct: {results.correct_count}/{results.total_questions}")
            for d in results.detailed_results:
                mark = "ok " if d.is_correct else "x  "
                print(f"  {mark}{d.question_text}")
                if not d.is_correct and d.explanation:
                    print(f"     {d.explanation}")
        return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Take a timed quiz from the terminal")
    parser.add_argument("quiz_id")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", default=os.environ.get("SITESAFE_PASSWORD", ""))
    parser.add_argument("--base-url", default=settings.api_base_url)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
