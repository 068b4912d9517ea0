"""Progress read cache — read-through, invalidation and Redis outages."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from academy.config import get_settings
from academy.progress.cache import (
    ProgressCache,
    completed_lessons_key,
    course_progress_key,
    enrollments_key,
    lesson_completion_key,
    user_summary_key,
)
from academy.progress.schemas import CourseProgress

PROGRESS = CourseProgress(progress_percentage=40.0, lessons_completed=2, total_lessons=5)


def _redis(cached: str | None = None) -> AsyncMock:
    client = AsyncMock()
    client.get = AsyncMock(return_value=cached)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    return client


class TestGetOrLoad:
    @pytest.mark.asyncio
    async def test_miss_loads_and_stores(self):
        redis = _redis()
        cache = ProgressCache(redis, get_settings())
        loader = AsyncMock(return_value=PROGRESS)

        value = await cache.get_or_load("progress:course:u1:c1", 60, loader, CourseProgress)

        assert value == PROGRESS
        loader.assert_awaited_once()
        redis.set.assert_awaited_once()
        assert redis.set.await_args.kwargs["ex"] == 60

    @pytest.mark.asyncio
    async def test_hit_skips_loader(self):
        redis = _redis(PROGRESS.model_dump_json())
        cache = ProgressCache(redis, get_settings())
        loader = AsyncMock()

        value = await cache.get_or_load("progress:course:u1:c1", 60, loader, CourseProgress)

        assert value == PROGRESS
        loader.assert_not_awaited()
        redis.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_none_is_not_cached(self):
        redis = _redis()
        cache = ProgressCache(redis, get_settings())

        value = await cache.get_or_load("k", 60, AsyncMock(return_value=None), CourseProgress)

        assert value is None
        redis.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_list_values(self):
        redis = _redis('["lesson_001", "lesson_002"]')
        cache = ProgressCache(redis, get_settings())

        value = await cache.get_or_load("k", 60, AsyncMock(), list[str])

        assert value == ["lesson_001", "lesson_002"]

    @pytest.mark.asyncio
    async def test_unreadable_entry_is_reloaded(self):
        redis = _redis('{"unexpected": true}')
        cache = ProgressCache(redis, get_settings())
        loader = AsyncMock(return_value=PROGRESS)

        value = await cache.get_or_load("k", 60, loader, CourseProgress)

        assert value == PROGRESS
        loader.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_redis_outage_falls_through_to_loader(self):
        redis = _redis()
        redis.get.side_effect = RedisConnectionError("Connection refused")
        redis.set.side_effect = RedisConnectionError("Connection refused")
        cache = ProgressCache(redis, get_settings())

        value = await cache.get_or_load("k", 60, AsyncMock(return_value=PROGRESS), CourseProgress)

        assert value == PROGRESS

    @pytest.mark.asyncio
    async def test_without_redis_always_loads(self):
        cache = ProgressCache(None, get_settings())
        loader = AsyncMock(return_value=PROGRESS)

        assert await cache.get_or_load("k", 60, loader, CourseProgress) == PROGRESS
        assert await cache.get_or_load("k", 60, loader, CourseProgress) == PROGRESS
        assert loader.await_count == 2


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_completion_drops_every_affected_key(self):
        redis = _redis()
        cache = ProgressCache(redis, get_settings())

        await cache.invalidate_after_completion("u1", "c1", "l1")

        redis.delete.assert_awaited_once_with(
            course_progress_key("u1", "c1"),
            lesson_completion_key("u1", "l1"),
            completed_lessons_key("u1", "c1"),
            user_summary_key("u1"),
            enrollments_key("u1"),
        )

    @pytest.mark.asyncio
    async def test_enrollment_drops_enrollments_and_profile(self):
        redis = _redis()
        cache = ProgressCache(redis, get_settings())

        await cache.invalidate_enrollments("u1")

        redis.delete.assert_awaited_once_with(enrollments_key("u1"), user_summary_key("u1"))

    @pytest.mark.asyncio
    async def test_invalidation_failure_is_swallowed(self):
        redis = _redis()
        redis.delete.side_effect = RedisConnectionError("Connection refused")
        cache = ProgressCache(redis, get_settings())

        await cache.invalidate_course_progress("u1", "c1")

    @pytest.mark.asyncio
    async def test_no_redis_is_a_no_op(self):
        await ProgressCache(None, get_settings()).invalidate("k")

    def test_keys_are_scoped_per_user(self):
        assert course_progress_key("u1", "c1") != course_progress_key("u2", "c1")
        assert lesson_completion_key("u1", "l1") == "progress:lesson:u1:l1"
