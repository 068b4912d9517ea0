"""Enrollment service — prerequisite checks and user_progress creation."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db import procedures
from academy.db.models import Course, Lesson, UserProgress
from academy.learning.courses_service import get_course, get_course_prerequisites
from academy.learning.schemas import CourseSummary, EnrollmentOut, PrerequisiteCheck

logger = logging.getLogger(__name__)


class EnrollmentError(ValueError):
    """Enrollment rejected; ``code`` tells the API which status to answer with."""

    def __init__(self, message: str, code: str = "ENROLLMENT_FAILED") -> None:
        super().__init__(message)
        self.code = code


async def check_prerequisites(db: AsyncSession, user_id: str, course_id: str) -> PrerequisiteCheck:
    """Check whether every required prerequisite course is completed."""
    prerequisites = await get_course_prerequisites(db, course_id)
    if not prerequisites:
        return PrerequisiteCheck(can_enroll=True)

    result = await db.execute(
        select(UserProgress.course_id).where(
            UserProgress.user_id == user_id,
            UserProgress.completed_at.is_not(None),
        )
    )
    completed = set(result.scalars().all())

    missing = [course for course in prerequisites if course.id not in completed]
    if not missing:
        return PrerequisiteCheck(can_enroll=True)

    if len(missing) == 1:
        message = f'You must complete "{missing[0].title}" before enrolling in this course.'
    else:
        message = f"You must complete {len(missing)} prerequisite courses before enrolling."
    return PrerequisiteCheck(can_enroll=False, missing_prerequisites=missing, message=message)


async def enroll_in_course(db: AsyncSession, user_id: str, course_id: str) -> EnrollmentOut:
    """Enroll a user in a course.

    1. Reject a second enrollment
    2. Check prerequisites
    3. Create the user_progress row sized to the current lesson count
    4. Bump courses.enrollment_count (best-effort)
    """
    if await get_enrollment_status(db, user_id, course_id) is not None:
        raise EnrollmentError("Already enrolled in this course", code="ALREADY_ENROLLED")

    check = await check_prerequisites(db, user_id, course_id)
    if not check.can_enroll:
        raise EnrollmentError(check.message or "Prerequisites not met", code="PREREQUISITES_NOT_MET")

    course = await get_course(db, course_id)
    if course is None:
        raise EnrollmentError("Course not found", code="COURSE_NOT_FOUND")

    count_result = await db.execute(select(func.count(Lesson.id)).where(Lesson.course_id == course_id))
    total_lessons = count_result.scalar() or 0

    now = datetime.now(timezone.utc)
    db.add(
        UserProgress(
            user_id=user_id,
            course_id=course_id,
            enrollment_date=now,
            total_lessons=total_lessons,
            lessons_completed=0,
            progress_percentage=0,
        )
    )
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise EnrollmentError("Already enrolled in this course", code="ALREADY_ENROLLED") from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to create enrollment for user %s course %s", user_id, course_id, exc_info=True)
        raise EnrollmentError(f"Failed to create enrollment: {exc}") from exc

    await _increment_enrollment_count(db, course_id)
    logger.info("User %s enrolled in course %s", user_id, course_id)

    return EnrollmentOut(
        course_id=course_id,
        enrollment_date=now,
        lessons_completed=0,
        total_lessons=total_lessons,
        progress_percentage=0.0,
        course=course,
    )


async def _increment_enrollment_count(db: AsyncSession, course_id: str) -> None:
    """Procedure first; a direct update only when the function is not installed."""
    try:
        await procedures.call(db, procedures.INCREMENT_ENROLLMENT_COUNT, course_id_param=course_id)
        return
    except procedures.ProcedureError as exc:
        if not exc.is_missing:
            logger.warning("Failed to increment enrollment count for %s: %s", course_id, exc)
            return

    try:
        await db.execute(
            update(Course)
            .where(Course.id == course_id)
            .values(enrollment_count=Course.enrollment_count + 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.warning("Failed to increment enrollment count for %s", course_id, exc_info=True)


async def get_enrollment_status(db: AsyncSession, user_id: str, course_id: str) -> EnrollmentOut | None:
    """The user's enrollment in one course, None when not enrolled."""
    result = await db.execute(
        select(UserProgress).where(
            UserProgress.user_id == user_id,
            UserProgress.course_id == course_id,
        )
        .execution_options(populate_existing=True)
    )
    progress = result.scalar_one_or_none()
    return EnrollmentOut.model_validate(progress) if progress else None


async def get_user_enrollments(db: AsyncSession, user_id: str) -> list[EnrollmentOut]:
    """All enrollments with course details, newest first."""
    result = await db.execute(
        select(UserProgress, Course)
        .join(Course, Course.id == UserProgress.course_id)
        .where(UserProgress.user_id == user_id)
        .order_by(UserProgress.enrollment_date.desc())
        .execution_options(populate_existing=True)
    )
    enrollments = []
    for progress, course in result.all():
        enrollment = EnrollmentOut.model_validate(progress)
        enrollment.course = CourseSummary.model_validate(course)
        enrollments.append(enrollment)
    return enrollments
