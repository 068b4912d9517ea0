"""Achievement seed data — the default learning badge catalog."""

from __future__ import annotations

import logging

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db.models import Achievement

logger = logging.getLogger(__name__)

ACHIEVEMENT_SEED_DATA: list[dict] = [
    {
        "id": "badge_001",
        "name": "First Steps",
        "description": "Complete your first lesson",
        "icon_emoji": "\U0001f3af",
        "category": "learning",
        "rarity": "common",
        "criteria": {"type": "first_lesson", "value": 1},
        "xp_reward": 50,
    },
    {
        "id": "badge_003",
        "name": "Perfect Score",
        "description": "Get 100% on 10 quizzes",
        "icon_emoji": "\U0001f3c6",
        "category": "learning",
        "rarity": "epic",
        "criteria": {"type": "perfect_scores", "value": 10},
        "xp_reward": 200,
    },
    {
        "id": "badge_007",
        "name": "Week Warrior",
        "description": "Maintain a 7-day streak",
        "icon_emoji": "\U0001f525",
        "category": "learning",
        "rarity": "rare",
        "criteria": {"type": "streak_days", "value": 7},
        "xp_reward": 150,
    },
    {
        "id": "badge_010",
        "name": "Course Conqueror",
        "description": "Complete your first course",
        "icon_emoji": "\U0001f4dc",
        "category": "learning",
        "rarity": "rare",
        "criteria": {"type": "first_course", "value": 1},
        "xp_reward": 200,
    },
    {
        "id": "badge_011",
        "name": "Knowledge Seeker",
        "description": "Complete 5 courses",
        "icon_emoji": "\U0001f393",
        "category": "learning",
        "rarity": "epic",
        "criteria": {"type": "courses_completed", "value": 5},
        "xp_reward": 500,
    },
    {
        "id": "badge_012",
        "name": "Master Learner",
        "description": "Complete 10 courses",
        "icon_emoji": "\U0001f451",
        "category": "learning",
        "rarity": "legendary",
        "criteria": {"type": "courses_completed", "value": 10},
        "xp_reward": 1000,
    },
]


async def seed_achievements(db: AsyncSession) -> int:
    """Insert the default achievements, leaving existing rows untouched.

    Returns the number of catalog entries processed.
    """
    dialect = db.get_bind().dialect.name
    insert = sqlite_insert if dialect == "sqlite" else pg_insert

    seeded = 0
    for achievement in ACHIEVEMENT_SEED_DATA:
        stmt = insert(Achievement).values(**achievement)
        stmt = stmt.on_conflict_do_nothing(index_elements=["id"])
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d achievement definitions", seeded)
    return seeded
