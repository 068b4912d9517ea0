"""Redis read-through cache for progress reads.

Entries are JSON documents under short TTLs. A completion drops every key
that reflects the learner's progress so the next read goes to the database.
Redis failures are logged and bypassed; without Redis every read hits the
loader directly.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.asyncio as redis
from pydantic import TypeAdapter, ValidationError
from redis.exceptions import RedisError

from academy.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def course_progress_key(user_id: str, course_id: str) -> str:
    return f"progress:course:{user_id}:{course_id}"


def lesson_completion_key(user_id: str, lesson_id: str) -> str:
    return f"progress:lesson:{user_id}:{lesson_id}"


def completed_lessons_key(user_id: str, course_id: str) -> str:
    return f"progress:completed:{user_id}:{course_id}"


def user_summary_key(user_id: str) -> str:
    return f"user:{user_id}"


def enrollments_key(user_id: str) -> str:
    return f"enrollments:{user_id}"


class ProgressCache:
    """Read-through cache keyed per user."""

    def __init__(self, client: redis.Redis | None, settings: Settings) -> None:
        self.redis = client
        self.settings = settings

    async def get_or_load(
        self,
        key: str,
        ttl: int,
        loader: Callable[[], Awaitable[T | None]],
        model: Any,
    ) -> T | None:
        """Return the cached value for ``key`` or load, cache and return it.

        ``model`` is the type the value validates against. None is never cached.
        """
        adapter: TypeAdapter[Any] = TypeAdapter(model)
        if self.redis is not None:
            try:
                raw = await self.redis.get(key)
            except RedisError as exc:
                logger.warning("Cache read failed for %s: %s", key, exc)
                raw = None
            if raw is not None:
                try:
                    return adapter.validate_json(raw)
                except ValidationError:
                    logger.warning("Discarding unreadable cache entry %s", key)

        value = await loader()
        if value is not None and self.redis is not None:
            try:
                await self.redis.set(key, adapter.dump_json(value), ex=ttl)
            except RedisError as exc:
                logger.warning("Cache write failed for %s: %s", key, exc)
        return value

    async def invalidate(self, *keys: str) -> None:
        if self.redis is None or not keys:
            return
        try:
            await self.redis.delete(*keys)
        except RedisError as exc:
            logger.warning("Cache invalidation failed for %s: %s", ", ".join(keys), exc)

    async def invalidate_after_completion(self, user_id: str, course_id: str, lesson_id: str) -> None:
        """Drop everything a lesson completion can change."""
        await self.invalidate(
            course_progress_key(user_id, course_id),
            lesson_completion_key(user_id, lesson_id),
            completed_lessons_key(user_id, course_id),
            user_summary_key(user_id),
            enrollments_key(user_id),
        )

    async def invalidate_course_progress(self, user_id: str, course_id: str) -> None:
        await self.invalidate(course_progress_key(user_id, course_id))

    async def invalidate_enrollments(self, user_id: str) -> None:
        await self.invalidate(enrollments_key(user_id), user_summary_key(user_id))
