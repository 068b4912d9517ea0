"""Shared FastAPI dependencies."""

from academy.config import get_settings
from academy.progress.cache import ProgressCache
from academy.redis_client import get_redis as _get_redis


def get_progress_cache() -> ProgressCache:
    """Progress read cache over the shared Redis pool (a pass-through when Redis is off)."""
    return ProgressCache(_get_redis(), get_settings())
