"""Progress API endpoints — lesson completion, course progress and position."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.database import get_session
from academy.db.models import User
from academy.dependencies import get_progress_cache
from academy.progress.cache import (
    ProgressCache,
    completed_lessons_key,
    course_progress_key,
    lesson_completion_key,
)
from academy.progress.exceptions import ProgressError
from academy.progress.schemas import (
    CompletedLessonsResponse,
    CompleteLessonRequest,
    CourseProgress,
    CurrentLessonRequest,
    LessonCompleteResult,
    LessonCompletionOut,
)
from academy.progress.service import ProgressService

router = APIRouter(prefix="/api/v1/progress", tags=["Progress"])


@router.post("/lessons/{lesson_id}/complete", response_model=LessonCompleteResult)
async def complete_lesson(
    lesson_id: str,
    body: CompleteLessonRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    cache: ProgressCache = Depends(get_progress_cache),
) -> LessonCompleteResult:
    """Mark a lesson complete. Idempotent: a repeat awards no XP."""
    user_id = user.id
    svc = ProgressService(db)
    try:
        return await svc.mark_lesson_complete(
            user_id,
            lesson_id,
            body.course_id,
            score=body.score,
            time_spent_seconds=body.time_spent_seconds,
        )
    except ProgressError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e
    finally:
        # A failed re-read still follows a stored completion
        await cache.invalidate_after_completion(user_id, body.course_id, lesson_id)


@router.get("/courses/{course_id}", response_model=CourseProgress)
async def get_course_progress(
    course_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    cache: ProgressCache = Depends(get_progress_cache),
) -> CourseProgress:
    """Progress aggregate for one enrolled course."""
    user_id = user.id
    svc = ProgressService(db)
    progress = await cache.get_or_load(
        course_progress_key(user_id, course_id),
        cache.settings.course_progress_cache_ttl_seconds,
        lambda: svc.get_course_progress(user_id, course_id),
        CourseProgress,
    )
    if progress is None:
        raise HTTPException(404, "Course progress not found")
    return progress


@router.put("/courses/{course_id}/current-lesson")
async def update_current_lesson(
    course_id: str,
    body: CurrentLessonRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    cache: ProgressCache = Depends(get_progress_cache),
) -> dict:
    """Record the lesson the learner is on."""
    user_id = user.id
    svc = ProgressService(db)
    if not await svc.update_current_lesson(user_id, course_id, body.lesson_id):
        raise HTTPException(409, "Progress could not be updated. Are you enrolled in this course?")

    await cache.invalidate_course_progress(user_id, course_id)
    return {"success": True, "current_lesson_id": body.lesson_id}


@router.get("/lessons/{lesson_id}", response_model=LessonCompletionOut | None)
async def get_lesson_completion(
    lesson_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    cache: ProgressCache = Depends(get_progress_cache),
) -> LessonCompletionOut | None:
    """Completion record for a lesson, null when not completed."""
    user_id = user.id
    svc = ProgressService(db)
    return await cache.get_or_load(
        lesson_completion_key(user_id, lesson_id),
        cache.settings.lesson_completion_cache_ttl_seconds,
        lambda: svc.get_lesson_completion(user_id, lesson_id),
        LessonCompletionOut,
    )


@router.get("/courses/{course_id}/completed-lessons", response_model=CompletedLessonsResponse)
async def get_completed_lessons(
    course_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    cache: ProgressCache = Depends(get_progress_cache),
) -> CompletedLessonsResponse:
    """Ids of the lessons the learner completed in a course."""
    user_id = user.id
    svc = ProgressService(db)
    lesson_ids = await cache.get_or_load(
        completed_lessons_key(user_id, course_id),
        cache.settings.completed_lessons_cache_ttl_seconds,
        lambda: svc.get_completed_lessons(user_id, course_id),
        list[str],
    )
    return CompletedLessonsResponse(course_id=course_id, lesson_ids=lesson_ids or [])
