"""Gamification API endpoints — badges and XP."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.database import get_session
from academy.db.models import User
from academy.dependencies import get_progress_cache
from academy.gamification.badge_service import check_and_award_badges, get_user_badges, list_badges
from academy.gamification.levels import compute_level
from academy.gamification.schemas import (
    AllBadgesResponse,
    BadgeCheckResponse,
    UserBadgesResponse,
    XPResponse,
)
from academy.progress.cache import ProgressCache, user_summary_key

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


# ── Public endpoints ──


@router.get("/badges", response_model=AllBadgesResponse)
async def get_badges(db: AsyncSession = Depends(get_session)) -> AllBadgesResponse:
    """All active badge definitions."""
    return AllBadgesResponse(badges=await list_badges(db))


# ── Authenticated endpoints ──


@router.get("/badges/me", response_model=UserBadgesResponse)
async def get_my_badges(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> UserBadgesResponse:
    """Badges the current user has earned."""
    return await get_user_badges(db, user.id)


@router.post("/badges/check", response_model=BadgeCheckResponse)
async def check_my_badges(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    cache: ProgressCache = Depends(get_progress_cache),
) -> BadgeCheckResponse:
    """Evaluate badge criteria now and award anything newly earned."""
    user_id = user.id
    awarded = await check_and_award_badges(db, user_id)
    if awarded:
        await cache.invalidate(user_summary_key(user_id))
    return BadgeCheckResponse(awarded=awarded)


@router.get("/users/me/xp", response_model=XPResponse)
async def get_my_xp(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> XPResponse:
    """Total XP and level progress."""
    result = await db.execute(select(User.total_xp).where(User.id == user.id))
    total_xp = result.scalar_one_or_none() or 0
    return XPResponse(total_xp=total_xp, **compute_level(total_xp))
