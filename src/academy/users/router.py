"""User router — /api/v1/users/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user
from academy.database import get_session
from academy.db.models import User
from academy.dependencies import get_progress_cache
from academy.progress.cache import ProgressCache, user_summary_key
from academy.users.schemas import UserSummary
from academy.users.service import get_user_summary

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


@router.get("/me", response_model=UserSummary)
async def get_profile(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    cache: ProgressCache = Depends(get_progress_cache),
) -> UserSummary:
    """Own profile with XP, level and learning counters."""
    user_id = user.id
    summary = await cache.get_or_load(
        user_summary_key(user_id),
        cache.settings.user_summary_cache_ttl_seconds,
        lambda: get_user_summary(db, user_id),
        UserSummary,
    )
    if summary is None:
        raise HTTPException(404, "User not found")
    return summary
