"""Progress store — single-statement reads and writes against the progress tables.

Each method is one independent round-trip. Writes commit immediately and a
failing statement rolls the session back before the error propagates, so the
caller can keep using the same session for the following steps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db import procedures
from academy.db.models import Lesson, LessonCompletion, User, UserProgress
from academy.progress.exceptions import CompletionExistsError
from academy.progress.schemas import CourseProgress, LessonCompletionOut
from academy.progress.xp_rules import LessonType

logger = logging.getLogger(__name__)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps (SQLite drops the offset)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class LessonRef:
    id: str
    course_id: str
    lesson_type: LessonType
    title: str


@dataclass(frozen=True)
class LessonPosition:
    current_lesson_id: str | None
    started_at: datetime | None


class ProgressStore:
    """Gateway over lesson_completions, lessons, user_progress and users."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # --- Completions ---

    async def find_completion(self, user_id: str, lesson_id: str) -> LessonCompletionOut | None:
        result = await self.db.execute(
            select(
                LessonCompletion.lesson_id,
                LessonCompletion.course_id,
                LessonCompletion.completed_at,
                LessonCompletion.time_spent_seconds,
                LessonCompletion.score_percentage,
                LessonCompletion.attempts,
                LessonCompletion.xp_earned,
            ).where(
                LessonCompletion.user_id == user_id,
                LessonCompletion.lesson_id == lesson_id,
            )
        )
        row = result.one_or_none()
        if row is None:
            return None
        return LessonCompletionOut(
            lesson_id=row.lesson_id,
            course_id=row.course_id,
            completed_at=as_utc(row.completed_at),
            time_spent_seconds=row.time_spent_seconds,
            score_percentage=row.score_percentage,
            attempts=row.attempts,
            xp_earned=row.xp_earned,
        )

    async def insert_completion(
        self,
        user_id: str,
        lesson_id: str,
        course_id: str,
        *,
        xp_earned: int,
        score: float | None = None,
        time_spent_seconds: int | None = None,
    ) -> None:
        """Insert the completion row.

        Raises CompletionExistsError when the (user, lesson) row is already
        there. Any other database error is re-raised after rollback.
        """
        self.db.add(
            LessonCompletion(
                user_id=user_id,
                lesson_id=lesson_id,
                course_id=course_id,
                completed_at=datetime.now(timezone.utc),
                time_spent_seconds=time_spent_seconds,
                score_percentage=score,
                attempts=1,
                xp_earned=xp_earned,
            )
        )
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            if await self.find_completion(user_id, lesson_id) is not None:
                raise CompletionExistsError(f"{user_id}:{lesson_id}") from exc
            raise
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def list_completed_lesson_ids(self, user_id: str, course_id: str) -> list[str]:
        result = await self.db.execute(
            select(LessonCompletion.lesson_id)
            .where(
                LessonCompletion.user_id == user_id,
                LessonCompletion.course_id == course_id,
            )
            .order_by(LessonCompletion.completed_at)
        )
        return list(result.scalars().all())

    # --- Lessons ---

    async def get_lesson(self, lesson_id: str) -> LessonRef | None:
        result = await self.db.execute(
            select(Lesson.id, Lesson.course_id, Lesson.lesson_type, Lesson.title).where(
                Lesson.id == lesson_id
            )
        )
        row = result.one_or_none()
        if row is None:
            return None
        return LessonRef(id=row.id, course_id=row.course_id, lesson_type=row.lesson_type, title=row.title)

    # --- Users ---

    async def increment_lessons_completed(self, user_id: str) -> None:
        """Bump users.lessons_completed through the stored procedure."""
        await procedures.call(self.db, procedures.INCREMENT_LESSONS_COMPLETED, p_user_id=user_id)

    async def get_user_level(self, user_id: str) -> int:
        result = await self.db.execute(select(User.current_level).where(User.id == user_id))
        level = result.scalar_one_or_none()
        return int(level) if level else 1

    # --- Course progress ---

    async def get_progress(self, user_id: str, course_id: str) -> CourseProgress | None:
        result = await self.db.execute(
            select(
                UserProgress.progress_percentage,
                UserProgress.lessons_completed,
                UserProgress.total_lessons,
                UserProgress.current_lesson_id,
                UserProgress.started_at,
                UserProgress.completed_at,
            ).where(
                UserProgress.user_id == user_id,
                UserProgress.course_id == course_id,
            )
        )
        row = result.one_or_none()
        if row is None:
            return None
        return CourseProgress(
            progress_percentage=float(row.progress_percentage or 0),
            lessons_completed=row.lessons_completed,
            total_lessons=row.total_lessons,
            current_lesson_id=row.current_lesson_id,
            started_at=as_utc(row.started_at),
            completed_at=as_utc(row.completed_at),
        )

    async def get_position(self, user_id: str, course_id: str) -> LessonPosition | None:
        result = await self.db.execute(
            select(UserProgress.current_lesson_id, UserProgress.started_at).where(
                UserProgress.user_id == user_id,
                UserProgress.course_id == course_id,
            )
        )
        row = result.one_or_none()
        if row is None:
            return None
        return LessonPosition(current_lesson_id=row.current_lesson_id, started_at=as_utc(row.started_at))

    async def set_current_lesson(self, user_id: str, course_id: str, lesson_id: str) -> bool:
        """Point the enrollment at ``lesson_id``; ``started_at`` is set only once."""
        now = datetime.now(timezone.utc)
        try:
            result = await self.db.execute(
                update(UserProgress)
                .where(
                    UserProgress.user_id == user_id,
                    UserProgress.course_id == course_id,
                )
                .values(
                    current_lesson_id=lesson_id,
                    last_accessed_at=now,
                    started_at=func.coalesce(UserProgress.started_at, now),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        return result.rowcount > 0
