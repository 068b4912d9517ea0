"""Badge evaluation and award service with duplicate prevention.

Supported criteria types:
- lessons_completed: complete N lessons
- courses_completed: complete N courses
- perfect_scores: N quiz scores of 100%
- streak_days: current or longest streak of N days
- total_xp: reach N total XP
- level_reached: reach level N
- first_lesson / first_course: complete the first lesson / course

Criteria are stored as ``{"type": t, "value": n}``; the legacy single-key
form ``{t: n}`` is accepted too.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.config import get_settings
from academy.db.models import Achievement, LessonCompletion, User, UserAchievement
from academy.gamification import xp_service
from academy.gamification.schemas import (
    BadgeAwardResult,
    BadgeResponse,
    EarnedBadgeResponse,
    UserBadgesResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_BADGE_ICON = "\U0001f3c6"


@dataclass(frozen=True)
class UserStats:
    user_id: str
    lessons_completed: int = 0
    courses_completed: int = 0
    perfect_scores: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    total_xp: int = 0
    current_level: int = 1


@dataclass(frozen=True)
class BadgeDefinition:
    """Detached copy of an achievement row."""

    id: str
    name: str
    description: str
    icon_emoji: str | None
    category: str
    rarity: str
    criteria: dict[str, Any]
    xp_reward: int
    times_earned: int

    @classmethod
    def from_row(cls, row: Achievement) -> BadgeDefinition:
        return cls(
            id=row.id,
            name=row.name,
            description=row.description,
            icon_emoji=row.icon_emoji,
            category=row.category,
            rarity=row.rarity,
            criteria=dict(row.criteria or {}),
            xp_reward=row.xp_reward,
            times_earned=row.times_earned,
        )


# --- Criteria ---


def parse_criteria(criteria: Any) -> tuple[str, int] | None:
    """Normalize stored criteria to ``(type, value)``; None when unusable."""
    if not isinstance(criteria, dict) or not criteria:
        return None
    if "type" in criteria:
        criteria_type, value = criteria["type"], criteria.get("value", 1)
    elif len(criteria) == 1:
        criteria_type, value = next(iter(criteria.items()))
    else:
        return None
    try:
        return str(criteria_type), int(value)
    except (TypeError, ValueError):
        return None


def meets_criteria(stats: UserStats, criteria_type: str, value: int) -> bool:
    """Check if user stats satisfy one criterion. Unknown types never match."""
    if criteria_type == "lessons_completed":
        return stats.lessons_completed >= value
    if criteria_type == "courses_completed":
        return stats.courses_completed >= value
    if criteria_type == "perfect_scores":
        return stats.perfect_scores >= value
    if criteria_type == "streak_days":
        return stats.current_streak >= value or stats.longest_streak >= value
    if criteria_type == "total_xp":
        return stats.total_xp >= value
    if criteria_type == "level_reached":
        return stats.current_level >= value
    if criteria_type == "first_lesson":
        return stats.lessons_completed >= 1
    if criteria_type == "first_course":
        return stats.courses_completed >= 1
    logger.debug("Unknown criteria type: %s", criteria_type)
    return False


# --- Queries ---


async def get_user_stats(db: AsyncSession, user_id: str) -> UserStats | None:
    """Fetch the counters badge criteria are evaluated against."""
    result = await db.execute(
        select(
            User.lessons_completed,
            User.courses_completed,
            User.current_streak,
            User.longest_streak,
            User.total_xp,
            User.current_level,
        ).where(User.id == user_id)
    )
    row = result.one_or_none()
    if row is None:
        return None

    perfect_result = await db.execute(
        select(func.count(LessonCompletion.id)).where(
            LessonCompletion.user_id == user_id,
            LessonCompletion.score_percentage == 100,
        )
    )
    return UserStats(
        user_id=user_id,
        lessons_completed=row.lessons_completed or 0,
        courses_completed=row.courses_completed or 0,
        perfect_scores=perfect_result.scalar() or 0,
        current_streak=row.current_streak or 0,
        longest_streak=row.longest_streak or 0,
        total_xp=row.total_xp or 0,
        current_level=row.current_level or 1,
    )


async def get_active_badges(db: AsyncSession) -> list[BadgeDefinition]:
    result = await db.execute(
        select(Achievement).where(Achievement.is_active.is_(True)).order_by(Achievement.id)
    )
    return [BadgeDefinition.from_row(row) for row in result.scalars().all()]


async def get_badge(db: AsyncSession, badge_id: str) -> BadgeDefinition | None:
    result = await db.execute(
        select(Achievement).where(Achievement.id == badge_id, Achievement.is_active.is_(True))
    )
    row = result.scalar_one_or_none()
    return BadgeDefinition.from_row(row) if row else None


async def has_badge(db: AsyncSession, user_id: str, badge_id: str) -> bool:
    """Check if user already has a specific badge."""
    result = await db.execute(
        select(UserAchievement.id).where(
            UserAchievement.user_id == user_id,
            UserAchievement.achievement_id == badge_id,
        )
    )
    return result.first() is not None


# --- Awarding ---


def _details(badge: BadgeDefinition) -> dict[str, Any]:
    return {
        "badge_id": badge.id,
        "badge_name": badge.name,
        "badge_icon": badge.icon_emoji or DEFAULT_BADGE_ICON,
        "badge_rarity": badge.rarity,
        "badge_description": badge.description,
    }


async def award_badge_to_user(db: AsyncSession, user_id: str, badge: BadgeDefinition) -> BadgeAwardResult:
    """Award a badge to a user; a second award is a no-op.

    1. Insert into user_achievements (UNIQUE user/achievement)
    2. Grant badge XP through the XP service
    3. Bump users.badges_earned and achievements.times_earned
    """
    if await has_badge(db, user_id, badge.id):
        return BadgeAwardResult(awarded=False, **_details(badge), error="Badge already earned")

    db.add(
        UserAchievement(
            user_id=user_id,
            achievement_id=badge.id,
            earned_at=datetime.now(timezone.utc),
        )
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        # Race condition: badge already awarded
        return BadgeAwardResult(awarded=False, **_details(badge), error="Badge already earned")
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to insert badge %s for user %s", badge.id, user_id, exc_info=True)
        return BadgeAwardResult(awarded=False, **_details(badge), error=str(exc))

    xp_reward = badge.xp_reward or get_settings().default_badge_xp_reward
    try:
        await xp_service.award_xp(db, user_id, xp_reward)
    except SQLAlchemyError:
        logger.warning("Badge XP award failed for user %s badge %s", user_id, badge.id, exc_info=True)

    try:
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(badges_earned=User.badges_earned + 1)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            update(Achievement)
            .where(Achievement.id == badge.id)
            .values(times_earned=Achievement.times_earned + 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.warning("Badge counters not updated for user %s badge %s", user_id, badge.id, exc_info=True)

    logger.info("Badge awarded: %s (+%d XP) to user %s", badge.name, xp_reward, user_id)
    return BadgeAwardResult(awarded=True, **_details(badge), xp_earned=xp_reward)


async def check_and_award_badges(db: AsyncSession, user_id: str) -> list[BadgeAwardResult]:
    """Evaluate every active badge and award the ones the user now meets.

    Safe to call repeatedly. Returns only newly awarded badges and never
    raises: failures are logged and produce an empty (or partial) list.
    """
    try:
        stats = await get_user_stats(db, user_id)
        if stats is None:
            logger.warning("Badge check skipped, unknown user %s", user_id)
            return []
        badges = await get_active_badges(db)
    except SQLAlchemyError:
        await db.rollback()
        logger.error("Badge check failed for user %s", user_id, exc_info=True)
        return []

    awarded: list[BadgeAwardResult] = []
    for badge in badges:
        parsed = parse_criteria(badge.criteria)
        if parsed is None:
            logger.warning("Badge %s has invalid criteria", badge.id)
            continue
        if not meets_criteria(stats, *parsed):
            continue
        try:
            result = await award_badge_to_user(db, user_id, badge)
        except SQLAlchemyError:
            await db.rollback()
            logger.error("Error checking badge %s for user %s", badge.id, user_id, exc_info=True)
            continue
        if result.awarded:
            awarded.append(result)

    if awarded:
        logger.info("Awarded %d badge(s) to user %s", len(awarded), user_id)
    return awarded


async def award_specific_badge(db: AsyncSession, user_id: str, badge_id: str) -> BadgeAwardResult:
    """Award one badge by id regardless of its criteria."""
    badge = await get_badge(db, badge_id)
    if badge is None:
        return BadgeAwardResult(awarded=False, badge_id=badge_id, error="Badge not found or inactive")
    return await award_badge_to_user(db, user_id, badge)


# --- Listing ---


async def list_badges(db: AsyncSession) -> list[BadgeResponse]:
    return [
        BadgeResponse(
            id=badge.id,
            name=badge.name,
            description=badge.description,
            icon_emoji=badge.icon_emoji,
            category=badge.category,
            rarity=badge.rarity,
            xp_reward=badge.xp_reward,
            times_earned=badge.times_earned,
        )
        for badge in await get_active_badges(db)
    ]


async def get_user_badges(db: AsyncSession, user_id: str) -> UserBadgesResponse:
    result = await db.execute(
        select(
            Achievement.id,
            Achievement.name,
            Achievement.icon_emoji,
            Achievement.rarity,
            UserAchievement.earned_at,
        )
        .select_from(UserAchievement)
        .join(Achievement, Achievement.id == UserAchievement.achievement_id)
        .where(UserAchievement.user_id == user_id)
        .order_by(UserAchievement.earned_at.desc())
    )
    earned = [
        EarnedBadgeResponse(
            id=row.id,
            name=row.name,
            icon_emoji=row.icon_emoji,
            rarity=row.rarity,
            earned_at=row.earned_at,
        )
        for row in result.all()
    ]
    total_result = await db.execute(
        select(func.count(Achievement.id)).where(Achievement.is_active.is_(True))
    )
    return UserBadgesResponse(
        earned=earned,
        total_available=total_result.scalar() or 0,
        total_earned=len(earned),
    )
