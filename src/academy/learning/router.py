"""Learning API endpoints — course catalog and enrollment."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.database import get_session
from academy.db.models import User
from academy.dependencies import get_progress_cache
from academy.learning.courses_service import (
    get_course,
    get_course_lessons,
    get_course_prerequisites,
    list_courses,
)
from academy.learning.enrollment_service import (
    EnrollmentError,
    enroll_in_course,
    get_enrollment_status,
    get_user_enrollments,
)
from academy.learning.schemas import (
    CourseDetail,
    CourseListResponse,
    EnrollmentListResponse,
    EnrollmentOut,
    PrerequisitesResponse,
)
from academy.progress.cache import ProgressCache, enrollments_key

router = APIRouter(prefix="/api/v1", tags=["Learning"])

_ENROLLMENT_ERROR_STATUS = {
    "ALREADY_ENROLLED": 409,
    "PREREQUISITES_NOT_MET": 403,
    "COURSE_NOT_FOUND": 404,
}


# ── Public endpoints ──


@router.get("/courses", response_model=CourseListResponse)
async def get_courses(
    track: str | None = Query(None),
    category: str | None = Query(None),
    difficulty: str | None = Query(None),
    featured: bool | None = Query(None),
    db: AsyncSession = Depends(get_session),
) -> CourseListResponse:
    """Published course catalog."""
    courses = await list_courses(
        db, track=track, category=category, difficulty=difficulty, featured=featured
    )
    return CourseListResponse(courses=courses, total=len(courses))


@router.get("/courses/{course_id}", response_model=CourseDetail)
async def get_course_detail(
    course_id: str,
    db: AsyncSession = Depends(get_session),
) -> CourseDetail:
    """Course detail with its lessons in order."""
    course = await get_course(db, course_id)
    if course is None:
        raise HTTPException(404, "Course not found")
    lessons = await get_course_lessons(db, course_id)
    return CourseDetail(**course.model_dump(), lessons=lessons)


@router.get("/courses/{course_id}/prerequisites", response_model=PrerequisitesResponse)
async def get_prerequisites(
    course_id: str,
    db: AsyncSession = Depends(get_session),
) -> PrerequisitesResponse:
    """Required prerequisite courses."""
    return PrerequisitesResponse(
        course_id=course_id,
        prerequisites=await get_course_prerequisites(db, course_id),
    )


# ── Authenticated endpoints ──


@router.post("/courses/{course_id}/enroll", response_model=EnrollmentOut, status_code=201)
async def enroll(
    course_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    cache: ProgressCache = Depends(get_progress_cache),
) -> EnrollmentOut:
    """Enroll the current user in a course."""
    user_id = user.id
    try:
        enrollment = await enroll_in_course(db, user_id, course_id)
    except EnrollmentError as e:
        raise HTTPException(status_code=_ENROLLMENT_ERROR_STATUS.get(e.code, 400), detail=str(e)) from e

    await cache.invalidate_enrollments(user_id)
    return enrollment


@router.get("/enrollments", response_model=EnrollmentListResponse)
async def get_my_enrollments(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    cache: ProgressCache = Depends(get_progress_cache),
) -> EnrollmentListResponse:
    """Current user's enrollments, newest first."""
    user_id = user.id
    enrollments = await cache.get_or_load(
        enrollments_key(user_id),
        cache.settings.enrollments_cache_ttl_seconds,
        lambda: get_user_enrollments(db, user_id),
        list[EnrollmentOut],
    )
    return EnrollmentListResponse(enrollments=enrollments or [])


@router.get("/courses/{course_id}/enrollment", response_model=EnrollmentOut | None)
async def get_my_enrollment(
    course_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> EnrollmentOut | None:
    """Enrollment in one course, null when not enrolled."""
    return await get_enrollment_status(db, user.id, course_id)
