"""User profile schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class UserSummary(BaseModel):
    id: str
    evm_address: str
    hedera_account_id: str | None = None
    username: str
    avatar_emoji: str | None = None
    total_xp: int
    current_level: int
    xp_into_level: int
    xp_for_level: int
    next_level: int
    current_streak: int
    longest_streak: int
    lessons_completed: int
    courses_completed: int
    badges_earned: int
    created_at: datetime | None = None
