"""Progress service — lesson completion, XP/level awards and progress reads.

The completion flow is a sequence of independent round-trips with no wrapping
transaction: once the completion row is in, later failures (XP, bonus,
badges) are logged and the flow carries on.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.config import Settings, get_settings
from academy.db import procedures
from academy.gamification import xp_service
from academy.gamification.badge_service import check_and_award_badges
from academy.gamification.schemas import BadgeAwardResult
from academy.progress.exceptions import (
    CompletionExistsError,
    CompletionSaveError,
    LessonCourseMismatchError,
    LessonNotFoundError,
    NotEnrolledError,
    ProgressReadError,
    QuizScoreTooLowError,
)
from academy.progress.schemas import CourseProgress, LessonCompleteResult, LessonCompletionOut
from academy.progress.store import ProgressStore
from academy.progress.xp_rules import calculate_lesson_xp, is_passing_quiz_score

logger = logging.getLogger(__name__)

BadgeChecker = Callable[[AsyncSession, str], Awaitable[list[BadgeAwardResult]]]

_TRANSIENT_MARKERS = ("NetworkError", "Content-Length", "fetch")


def is_transient_error(exc: BaseException) -> bool:
    """True for connectivity failures worth retrying."""
    # ConnectionError and TimeoutError are OSError subclasses.
    if isinstance(exc, OSError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    message = str(exc)
    return any(marker in message for marker in _TRANSIENT_MARKERS)


class ProgressService:
    """Records lesson completions and serves the per-course progress aggregate."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        badge_checker: BadgeChecker | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.store = ProgressStore(db)
        self._check_badges = badge_checker or check_and_award_badges

    # --- Completion ---

    async def mark_lesson_complete(
        self,
        user_id: str,
        lesson_id: str,
        course_id: str,
        score: float | None = None,
        time_spent_seconds: int | None = None,
    ) -> LessonCompleteResult:
        """Record a lesson completion and award its XP exactly once.

        Raises a ProgressError subclass for the user-facing failures: unknown
        lesson, lesson from another course, failing quiz score, missing
        enrollment and a failed completion insert.
        """
        # 1. Already completed: no state change
        try:
            existing = await self.store.find_completion(user_id, lesson_id)
        except SQLAlchemyError:
            logger.warning("Completion lookup failed for user %s lesson %s", user_id, lesson_id, exc_info=True)
            await self._rollback()
            existing = None
        if existing is not None:
            return await self._already_completed(user_id, course_id)

        # 2. Lesson must exist and belong to the course
        lesson = await self.store.get_lesson(lesson_id)
        if lesson is None:
            raise LessonNotFoundError()
        if lesson.course_id != course_id:
            logger.warning(
                "Lesson %s belongs to course %s, not %s", lesson_id, lesson.course_id, course_id
            )
            raise LessonCourseMismatchError()

        # 3. XP; a failing quiz is rejected before anything is written
        if lesson.lesson_type == "quiz" and not is_passing_quiz_score(score):
            raise QuizScoreTooLowError()
        xp = calculate_lesson_xp(lesson.lesson_type, score)

        # Progress snapshot before the insert, used for "just completed" detection
        try:
            before = await self.store.get_progress(user_id, course_id)
        except SQLAlchemyError:
            logger.warning("Progress snapshot failed for user %s course %s", user_id, course_id, exc_info=True)
            await self._rollback()
            before = None
        else:
            if before is None:
                raise NotEnrolledError()

        # 4. Completion row; the unique constraint is the idempotency signal
        try:
            await self.store.insert_completion(
                user_id,
                lesson_id,
                course_id,
                xp_earned=xp,
                score=score,
                time_spent_seconds=time_spent_seconds,
            )
        except CompletionExistsError:
            logger.info("Concurrent completion for user %s lesson %s", user_id, lesson_id)
            return await self._already_completed(user_id, course_id)
        except SQLAlchemyError as exc:
            logger.error("Failed to insert completion for user %s lesson %s", user_id, lesson_id, exc_info=True)
            raise CompletionSaveError() from exc

        # 5. lessons_completed counter, best-effort
        counted = True
        try:
            await self.store.increment_lessons_completed(user_id)
        except procedures.ProcedureError:
            counted = False
            logger.warning("Failed to update lessons counter for user %s", user_id)

        # 6. Level before any XP, level 1 when it cannot be read
        try:
            old_level = await self.store.get_user_level(user_id)
        except SQLAlchemyError:
            logger.warning("Level read failed for user %s", user_id, exc_info=True)
            await self._rollback()
            old_level = 1
        level = old_level

        # 7. Lesson XP; only XP that was actually awarded is reported
        awarded_xp = 0
        if xp > 0:
            try:
                award = await xp_service.award_xp(self.db, user_id, xp, count_lesson=not counted)
            except SQLAlchemyError:
                logger.error("XP award failed for user %s lesson %s", user_id, lesson_id, exc_info=True)
                await self._rollback()
            else:
                if award is not None:
                    awarded_xp = xp
                    level = award.level

        # 8. Let the progress trigger settle, then re-read the aggregate
        await asyncio.sleep(self.settings.progress_settle_delay_ms / 1000)
        progress = await self.get_course_progress(user_id, course_id)
        if progress is None:
            if before is not None:
                raise ProgressReadError()
            raise NotEnrolledError()

        # 9. Course completion
        course_complete = progress.is_complete

        # 10. One-time completion bonus
        bonus = 0
        if course_complete and self._course_just_completed(before, progress):
            bonus_xp = self.settings.course_completion_bonus_xp
            try:
                bonus_award = await xp_service.award_xp(self.db, user_id, bonus_xp)
            except SQLAlchemyError:
                logger.warning("Bonus XP award failed for user %s course %s", user_id, course_id, exc_info=True)
            else:
                if bonus_award is not None:
                    bonus = bonus_xp
                    level = bonus_award.level
                    logger.info("Course %s completed by user %s, +%d bonus XP", course_id, user_id, bonus_xp)

        # 11. Badges may grant XP of their own
        try:
            badges = await self._check_badges(self.db, user_id)
        except Exception:
            logger.warning("Badge check failed for user %s", user_id, exc_info=True)
            badges = []

        # 12. Final level is re-read, badges can level the user up
        try:
            new_level = await self.store.get_user_level(user_id)
        except SQLAlchemyError:
            logger.warning("Level re-read failed for user %s", user_id, exc_info=True)
            await self._rollback()
            new_level = level

        logger.info(
            "Lesson %s completed by user %s: +%d XP, level %d -> %d",
            lesson_id,
            user_id,
            awarded_xp + bonus,
            old_level,
            new_level,
        )
        return LessonCompleteResult(
            success=True,
            xp_earned=awarded_xp + bonus,
            old_level=old_level,
            new_level=new_level,
            leveled_up=new_level > old_level,
            course_complete=course_complete,
            badges_earned=[badge for badge in badges if badge.awarded],
        )

    async def _already_completed(self, user_id: str, course_id: str) -> LessonCompleteResult:
        level = await self.store.get_user_level(user_id)
        progress = await self.get_course_progress(user_id, course_id)
        return LessonCompleteResult(
            success=True,
            xp_earned=0,
            old_level=level,
            new_level=level,
            course_complete=progress is not None and progress.is_complete,
            already_completed=True,
        )

    def _course_just_completed(self, before: CourseProgress | None, after: CourseProgress) -> bool:
        if before is not None:
            return not before.is_complete and after.is_complete
        if after.completed_at is None:
            return False
        window = timedelta(seconds=self.settings.course_completion_window_seconds)
        return datetime.now(timezone.utc) - after.completed_at <= window

    # --- Reads ---

    async def get_course_progress(self, user_id: str, course_id: str) -> CourseProgress | None:
        """Read the progress aggregate, retrying transient failures.

        Returns None when there is no enrollment, on non-transient errors and
        once retries are exhausted. Never raises.
        """
        attempts = max(self.settings.progress_read_max_attempts, 1)
        for attempt in range(1, attempts + 1):
            try:
                return await self.store.get_progress(user_id, course_id)
            except Exception as exc:
                await self._rollback()
                if is_transient_error(exc) and attempt < attempts:
                    logger.warning(
                        "Transient error reading progress (attempt %d/%d): %s", attempt, attempts, exc
                    )
                    await asyncio.sleep(self.settings.progress_read_backoff_ms / 1000)
                    continue
                logger.error(
                    "Failed to read progress for user %s course %s", user_id, course_id, exc_info=True
                )
                return None
        return None

    async def get_lesson_completion(self, user_id: str, lesson_id: str) -> LessonCompletionOut | None:
        try:
            return await self.store.find_completion(user_id, lesson_id)
        except SQLAlchemyError:
            logger.error("Failed to read completion for user %s lesson %s", user_id, lesson_id, exc_info=True)
            await self._rollback()
            return None

    async def get_completed_lessons(self, user_id: str, course_id: str) -> list[str]:
        try:
            return await self.store.list_completed_lesson_ids(user_id, course_id)
        except SQLAlchemyError:
            logger.error("Failed to list completions for user %s course %s", user_id, course_id, exc_info=True)
            await self._rollback()
            return []

    # --- Position ---

    async def update_current_lesson(self, user_id: str, course_id: str, lesson_id: str) -> bool:
        """Move the learner's position; a repeat of the stored lesson writes nothing."""
        try:
            position = await self.store.get_position(user_id, course_id)
        except SQLAlchemyError as exc:
            await self._rollback()
            if is_transient_error(exc):
                logger.error("Database unreachable while reading progress for user %s: %s", user_id, exc)
            else:
                logger.error("Failed to read progress for user %s course %s", user_id, course_id, exc_info=True)
            return False

        if position is None:
            logger.warning("No progress row for user %s course %s, user may not be enrolled", user_id, course_id)
            return False

        if position.current_lesson_id == lesson_id:
            return True

        try:
            return await self.store.set_current_lesson(user_id, course_id, lesson_id)
        except SQLAlchemyError:
            logger.error("Failed to update current lesson for user %s", user_id, exc_info=True)
            return False

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError:
            logger.debug("Rollback failed", exc_info=True)
