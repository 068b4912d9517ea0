"""Course catalog and enrollment schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CourseSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str
    thumbnail_emoji: str | None = None
    track: str
    category: str
    difficulty: str
    estimated_hours: float
    total_lessons: int
    enrollment_count: int
    completion_xp: int
    is_featured: bool = False


class LessonSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    lesson_type: str
    sequence_number: int
    duration_minutes: int


class CourseDetail(CourseSummary):
    lessons: list[LessonSummary] = Field(default_factory=list)


class CourseListResponse(BaseModel):
    courses: list[CourseSummary]
    total: int


class PrerequisiteCheck(BaseModel):
    can_enroll: bool
    missing_prerequisites: list[CourseSummary] = Field(default_factory=list)
    message: str | None = None


class PrerequisitesResponse(BaseModel):
    course_id: str
    prerequisites: list[CourseSummary]


class EnrollmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    course_id: str
    enrollment_date: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_accessed_at: datetime | None = None
    lessons_completed: int
    total_lessons: int
    progress_percentage: float
    current_lesson_id: str | None = None
    course: CourseSummary | None = None


class EnrollmentListResponse(BaseModel):
    enrollments: list[EnrollmentOut]
