"""ORM models for the learning platform schema.

The tables, the ``update_course_progress`` trigger and the XP procedures are
created by Alembic (``alembic/versions/001_initial_schema.py``). Column types
stay portable so the same models can be materialised on SQLite for tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from academy.db.base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Learner account with denormalized gamification counters."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("total_xp >= 0", name="ck_users_total_xp"),
        CheckConstraint("current_level >= 1 AND current_level <= 100", name="ck_users_level_range"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    evm_address: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    hedera_account_id: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    avatar_emoji: Mapped[str | None] = mapped_column(String(16), nullable=True)

    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    courses_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lessons_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    badges_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class Course(Base):
    """Course catalog entry."""

    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    thumbnail_emoji: Mapped[str | None] = mapped_column(String(16), nullable=True)
    track: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False)
    estimated_hours: Mapped[float] = mapped_column(Numeric(4, 1, asdecimal=False), nullable=False)
    total_lessons: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    enrollment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    completion_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    completion_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=100, server_default="100")
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    lessons: Mapped[list[Lesson]] = relationship(
        "Lesson", back_populates="course", order_by="Lesson.sequence_number"
    )


class CoursePrerequisite(Base):
    """Course -> prerequisite course edge."""

    __tablename__ = "course_prerequisites"
    __table_args__ = (
        UniqueConstraint("course_id", "prerequisite_course_id", name="uq_course_prerequisite"),
        CheckConstraint("course_id != prerequisite_course_id", name="ck_prerequisite_not_self"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    course_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False
    )
    prerequisite_course_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False
    )
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")


class Lesson(Base):
    """Lesson within a course. ``lesson_type`` drives the XP rules."""

    __tablename__ = "lessons"
    __table_args__ = (
        UniqueConstraint("course_id", "sequence_number", name="uq_lesson_course_sequence"),
        CheckConstraint(
            "lesson_type IN ('text', 'interactive', 'quiz', 'practical')", name="ck_lesson_type"
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    course_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    lesson_type: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=5, server_default="5")
    completion_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=10, server_default="10")
    perfect_score_xp: Mapped[int | None] = mapped_column(Integer, nullable=True, default=30)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    course: Mapped[Course] = relationship("Course", back_populates="lessons")


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class UserProgress(Base):
    """Per-(user, course) enrollment and aggregate, recomputed by the DB trigger."""

    __tablename__ = "user_progress"
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_user_progress_user_course"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    course_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False
    )
    enrollment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_accessed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lessons_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_lessons: Mapped[int] = mapped_column(Integer, nullable=False)
    progress_percentage: Mapped[float] = mapped_column(
        Numeric(5, 2, asdecimal=False), nullable=False, default=0, server_default="0"
    )
    current_lesson_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("lessons.id"), nullable=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LessonCompletion(Base):
    """Completion record: UNIQUE(user_id, lesson_id) backs the XP-once invariant."""

    __tablename__ = "lesson_completions"
    __table_args__ = (UniqueConstraint("user_id", "lesson_id", name="uq_lesson_completion_user_lesson"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    lesson_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False
    )
    course_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False
    )
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    time_spent_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    score_percentage: Mapped[float | None] = mapped_column(Numeric(5, 2, asdecimal=False), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class Achievement(Base):
    """Badge definition. ``criteria`` is evaluated by the badge service."""

    __tablename__ = "achievements"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    icon_emoji: Mapped[str | None] = mapped_column(String(16), nullable=True)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False)
    criteria: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=50, server_default="50")
    times_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class UserAchievement(Base):
    """Badges earned by users: UNIQUE(user_id, achievement_id) prevents duplicates."""

    __tablename__ = "user_achievements"
    __table_args__ = (UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    achievement_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False
    )
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    achievement: Mapped[Achievement] = relationship("Achievement", lazy="joined")
