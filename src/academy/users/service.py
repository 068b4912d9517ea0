"""User profile reads."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db.models import User
from academy.gamification.levels import compute_level
from academy.users.schemas import UserSummary


async def get_user_summary(db: AsyncSession, user_id: str) -> UserSummary | None:
    """Profile with XP, level progress and learning counters."""
    result = await db.execute(
        select(
            User.id,
            User.evm_address,
            User.hedera_account_id,
            User.username,
            User.avatar_emoji,
            User.total_xp,
            User.current_streak,
            User.longest_streak,
            User.lessons_completed,
            User.courses_completed,
            User.badges_earned,
            User.created_at,
        ).where(User.id == user_id)
    )
    row = result.one_or_none()
    if row is None:
        return None
    level = compute_level(row.total_xp)
    return UserSummary(
        id=row.id,
        evm_address=row.evm_address,
        hedera_account_id=row.hedera_account_id,
        username=row.username,
        avatar_emoji=row.avatar_emoji,
        total_xp=row.total_xp,
        current_level=level["level"],
        xp_into_level=level["xp_into_level"],
        xp_for_level=level["xp_for_level"],
        next_level=level["next_level"],
        current_streak=row.current_streak,
        longest_streak=row.longest_streak,
        lessons_completed=row.lessons_completed,
        courses_completed=row.courses_completed,
        badges_earned=row.badges_earned,
        created_at=row.created_at,
    )
