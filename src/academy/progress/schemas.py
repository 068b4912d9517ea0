"""Pydantic models for the progress pipeline and its endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from academy.gamification.schemas import BadgeAwardResult


class CourseProgress(BaseModel):
    """Snapshot of the trigger-maintained user_progress row."""

    progress_percentage: float
    lessons_completed: int
    total_lessons: int
    current_lesson_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_complete(self) -> bool:
        return self.total_lessons > 0 and self.lessons_completed >= self.total_lessons


class LessonCompletionOut(BaseModel):
    lesson_id: str
    course_id: str
    completed_at: datetime
    time_spent_seconds: int | None = None
    score_percentage: float | None = None
    attempts: int = 1
    xp_earned: int


class LessonCompleteResult(BaseModel):
    success: bool = True
    xp_earned: int
    old_level: int
    new_level: int
    leveled_up: bool = False
    course_complete: bool = False
    already_completed: bool = False
    badges_earned: list[BadgeAwardResult] = Field(default_factory=list)


class CompleteLessonRequest(BaseModel):
    course_id: str = Field(min_length=1)
    score: float | None = Field(default=None, ge=0, le=100)
    time_spent_seconds: int | None = Field(default=None, ge=0)


class CurrentLessonRequest(BaseModel):
    lesson_id: str = Field(min_length=1)


class CompletedLessonsResponse(BaseModel):
    course_id: str
    lesson_ids: list[str]
