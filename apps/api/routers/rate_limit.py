"""
Per-principal quotas for clip-spending routes.

Hits are counted in Redis so every API worker shares one budget per
business. When Redis cannot be reached each process counts in memory over
fixed windows instead.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple

from fastapi import Depends, HTTPException, Request
import redis.asyncio as redis

from config import settings
from routers.auth_scope import AuthContext, get_auth_context

logger = logging.getLogger(__name__)

# quota key -> (hits, window end as epoch seconds)
_local_windows: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def quota_key(scope: str, principal: str) -> str:
    return f"clip:quota:{scope}:{principal}"


def _prune_expired_windows(now: float) -> None:
    expired = [key for key, (_, window_end) in _local_windows.items() if window_end <= now]
    for key in expired:
        del _local_windows[key]


async def _count_locally(key: str, window_seconds: int, now: Optional[float] = None) -> int:
    current = time.time() if now is None else now
    async with _local_lock:
        _prune_expired_windows(current)
        hits, window_end = _local_windows.get(key, (0, current + window_seconds))
        hits += 1
        _local_windows[key] = (hits, window_end)
        return hits


async def _count_in_redis(key: str, window_seconds: int) -> int:
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        hits = await client.incr(key)
        if hits == 1:
            await client.expire(key, window_seconds)
        return int(hits)
    finally:
        await client.aclose()


def rate_limit(scope: str, limit: int, window_seconds: int) -> Callable:
    """Return a dependency capping how often one authenticated principal may call a route."""

    async def _dependency(request: Request, auth: AuthContext = Depends(get_auth_context)) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = quota_key(scope, auth.user_id)
        try:
            hits = await _count_in_redis(key, window_seconds)
        except Exception:
            logger.debug("Redis unavailable for quota %s, counting in process", scope)
            hits = await _count_locally(key, window_seconds)

        if hits > limit:
            logger.warning("Quota %s exhausted for %s", scope, auth.user_id)
            raise HTTPException(
                status_code=429,
                detail=f"Too many {scope} requests. Try again later.",
            )

    return _dependency
