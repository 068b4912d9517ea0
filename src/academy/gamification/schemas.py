"""Pydantic models for badges and XP."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


# --- Badge ---


class BadgeAwardResult(BaseModel):
    awarded: bool
    badge_id: str | None = None
    badge_name: str | None = None
    badge_icon: str | None = None
    badge_rarity: str | None = None
    badge_description: str | None = None
    xp_earned: int | None = None
    error: str | None = None


class BadgeResponse(BaseModel):
    id: str
    name: str
    description: str
    icon_emoji: str | None = None
    category: str
    rarity: str
    xp_reward: int
    times_earned: int = 0


class EarnedBadgeResponse(BaseModel):
    id: str
    name: str
    icon_emoji: str | None = None
    rarity: str
    earned_at: datetime


class AllBadgesResponse(BaseModel):
    badges: list[BadgeResponse]


class UserBadgesResponse(BaseModel):
    earned: list[EarnedBadgeResponse]
    total_available: int
    total_earned: int


class BadgeCheckResponse(BaseModel):
    awarded: list[BadgeAwardResult]


# --- XP ---


class XPResponse(BaseModel):
    total_xp: int
    level: int
    xp_into_level: int
    xp_for_level: int
    next_level: int
