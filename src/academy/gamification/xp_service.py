"""XP award service: stored procedure first, verified direct-update fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db import procedures
from academy.db.models import User
from academy.gamification.levels import calculate_level

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class XPAward:
    """Outcome of a single XP award."""

    total_xp: int
    level: int
    used_fallback: bool = False


async def get_xp_state(db: AsyncSession, user_id: str) -> tuple[int, int, int] | None:
    """Return (total_xp, current_level, lessons_completed) for a user."""
    result = await db.execute(
        select(User.total_xp, User.current_level, User.lessons_completed).where(User.id == user_id)
    )
    row = result.one_or_none()
    if row is None:
        return None
    return int(row.total_xp), int(row.current_level), int(row.lessons_completed)


async def get_current_level(db: AsyncSession, user_id: str) -> int:
    """Current stored level, 1 when the user row is missing."""
    result = await db.execute(select(User.current_level).where(User.id == user_id))
    level = result.scalar_one_or_none()
    return int(level) if level else 1


async def award_xp(
    db: AsyncSession,
    user_id: str,
    amount: int,
    *,
    count_lesson: bool = False,
) -> XPAward | None:
    """Add ``amount`` XP to a user and recompute their level.

    1. Call the ``award_xp`` procedure; its return value is the new total.
    2. If the call fails, re-read the user. A total that already moved by
       ``amount`` means the procedure committed before the error surfaced,
       so nothing else is written.
    3. Otherwise apply the award with a direct update. ``count_lesson``
       also bumps ``lessons_completed``; callers pass it only when their own
       counter increment did not go through.

    Returns None when the user does not exist.
    """
    before = await get_xp_state(db, user_id)
    if before is None:
        logger.warning("XP award skipped, unknown user %s", user_id)
        return None
    total_before = before[0]

    try:
        new_total = await procedures.call(
            db, procedures.AWARD_XP, p_user_id=user_id, p_xp_amount=amount
        )
    except procedures.ProcedureError:
        logger.warning("award_xp procedure failed for user %s, checking state", user_id)
    else:
        if new_total is None:
            state = await get_xp_state(db, user_id)
            new_total = state[0] if state else total_before + amount
        return XPAward(total_xp=int(new_total), level=await get_current_level(db, user_id))

    after = await get_xp_state(db, user_id)
    if after is not None and after[0] >= total_before + amount:
        logger.info("award_xp committed despite error for user %s", user_id)
        return XPAward(total_xp=after[0], level=after[1])

    new_total = total_before + amount
    new_level = calculate_level(new_total)
    values: dict[str, object] = {
        "total_xp": new_total,
        "current_level": new_level,
        "updated_at": datetime.now(timezone.utc),
    }
    if count_lesson:
        values["lessons_completed"] = User.lessons_completed + 1

    try:
        await db.execute(update(User).where(User.id == user_id).values(**values))
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise

    logger.info("XP fallback applied for user %s: +%d -> %d", user_id, amount, new_total)
    return XPAward(total_xp=new_total, level=new_level, used_fallback=True)
