from __future__ import annotations


def format_time(seconds: int) -> str:
    """``m:ss`` for a countdown; negative values render as ``0:00``."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def format_score(score: int, passing_score: int) -> str:
    verdict = "passed" if score >= passing_score else "not passed"
    return f"{score}% ({verdict}, {passing_score}% required)"


def progress_label(index: int, total: int) -> str:
    if total <= 0:
        return "Question 0 of 0"
    return f"Question {min(max(index, 0), total - 1) + 1} of {total}"
