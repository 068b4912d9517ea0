"""Course catalog reads."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db.models import Course, CoursePrerequisite, Lesson
from academy.learning.schemas import CourseSummary, LessonSummary


async def list_courses(
    db: AsyncSession,
    *,
    track: str | None = None,
    category: str | None = None,
    difficulty: str | None = None,
    featured: bool | None = None,
) -> list[CourseSummary]:
    """Published courses ordered by title, optionally filtered."""
    query = select(Course).where(Course.is_published.is_(True))
    if track is not None:
        query = query.where(Course.track == track)
    if category is not None:
        query = query.where(Course.category == category)
    if difficulty is not None:
        query = query.where(Course.difficulty == difficulty)
    if featured is not None:
        query = query.where(Course.is_featured.is_(featured))

    result = await db.execute(query.order_by(Course.title))
    return [CourseSummary.model_validate(course) for course in result.scalars().all()]


async def get_course(db: AsyncSession, course_id: str) -> CourseSummary | None:
    """A published course by id."""
    result = await db.execute(
        select(Course).where(Course.id == course_id, Course.is_published.is_(True))
    )
    course = result.scalar_one_or_none()
    return CourseSummary.model_validate(course) if course else None


async def get_course_lessons(db: AsyncSession, course_id: str) -> list[LessonSummary]:
    """Lessons of a course in sequence order."""
    result = await db.execute(
        select(Lesson).where(Lesson.course_id == course_id).order_by(Lesson.sequence_number)
    )
    return [LessonSummary.model_validate(lesson) for lesson in result.scalars().all()]


async def get_course_prerequisites(db: AsyncSession, course_id: str) -> list[CourseSummary]:
    """Courses that must be completed before enrolling in ``course_id``."""
    result = await db.execute(
        select(Course)
        .join(CoursePrerequisite, CoursePrerequisite.prerequisite_course_id == Course.id)
        .where(
            CoursePrerequisite.course_id == course_id,
            CoursePrerequisite.is_required.is_(True),
        )
        .order_by(Course.title)
    )
    return [CourseSummary.model_validate(course) for course in result.scalars().all()]
