"""Lesson XP rules.

Business rules:
- text lesson: 10 XP
- interactive lesson: 10 XP
- quiz 70-99%: 20 XP
- quiz 100%: 30 XP (perfect score bonus)
- quiz below 70% or without a score: 0 XP (not passing)
- practical lesson: 50 XP
"""

from __future__ import annotations

from typing import Literal

LessonType = Literal["text", "interactive", "quiz", "practical"]

QUIZ_PASSING_SCORE = 70
QUIZ_PERFECT_SCORE = 100

FIXED_LESSON_XP: dict[str, int] = {
    "text": 10,
    "interactive": 10,
    "practical": 50,
}
QUIZ_PASS_XP = 20
QUIZ_PERFECT_XP = 30


def is_passing_quiz_score(score: float | None, passing_score: int = QUIZ_PASSING_SCORE) -> bool:
    """True when a quiz score is present and at or above the passing mark."""
    return score is not None and score >= passing_score


def calculate_lesson_xp(lesson_type: LessonType, score: float | None = None) -> int:
    """XP for completing a lesson of ``lesson_type`` with an optional quiz score."""
    if lesson_type == "quiz":
        if not is_passing_quiz_score(score):
            return 0
        if score == QUIZ_PERFECT_SCORE:
            return QUIZ_PERFECT_XP
        return QUIZ_PASS_XP
    return FIXED_LESSON_XP.get(lesson_type, 0)
