"""Gateway to the stored procedures installed by the initial migration.

Each call is its own round-trip and commits on success. A failed call rolls
the session back so the caller can keep using it.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

AWARD_XP = "award_xp"
INCREMENT_LESSONS_COMPLETED = "increment_lessons_completed"
INCREMENT_ENROLLMENT_COUNT = "increment_enrollment_count"

KNOWN_PROCEDURES = frozenset({AWARD_XP, INCREMENT_LESSONS_COMPLETED, INCREMENT_ENROLLMENT_COUNT})

_MISSING_MARKERS = ("does not exist", "no such function", "UndefinedFunction")


class ProcedureError(RuntimeError):
    """A stored procedure call did not complete."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(f"{name}: {message}")
        self.name = name

    @property
    def is_missing(self) -> bool:
        """The function is not installed in the database."""
        return any(marker in str(self) for marker in _MISSING_MARKERS)


async def call(db: AsyncSession, name: str, **params: Any) -> Any:
    """Run ``SELECT name(:param, ...)`` and return its scalar result."""
    if name not in KNOWN_PROCEDURES:
        raise ProcedureError(name, "unknown procedure")

    placeholders = ", ".join(f":{key}" for key in params)
    try:
        result = await db.execute(text(f"SELECT {name}({placeholders})"), params)  # noqa: S608
        value = result.scalar()
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning("Procedure %s failed: %s", name, exc)
        raise ProcedureError(name, str(exc)) from exc
    return value
