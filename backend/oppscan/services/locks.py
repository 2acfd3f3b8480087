"""
Per-trigger mutual exclusion.

Two scans of the same trigger would race on its coverage records and
opportunities, so each scan holds the trigger's lock for its whole run.
Redis locks span every worker process; the local registry only covers one
event loop and is what tests and single-process setups use.
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.exceptions import LockError

from oppscan.exceptions import TriggerLockedError

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = "oppscan:trigger-lock:"


class LocalTriggerLocks:
    def __init__(self, wait_seconds: float = 0):
        self.wait_seconds = wait_seconds
        self._locks: dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    def is_held(self, trigger_id: int) -> bool:
        return self._locks[trigger_id].locked()

    @asynccontextmanager
    async def hold(self, trigger_id: int):
        lock = self._locks[trigger_id]
        if self.wait_seconds <= 0:
            if lock.locked():
                raise TriggerLockedError(trigger_id)
            await lock.acquire()
        else:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.wait_seconds)
            except asyncio.TimeoutError:
                raise TriggerLockedError(trigger_id) from None
        try:
            yield
        finally:
            lock.release()


class RedisTriggerLocks:
    def __init__(self, redis: aioredis.Redis, timeout_seconds: int = 900, wait_seconds: float = 0):
        self.redis = redis
        self.timeout_seconds = timeout_seconds
        self.wait_seconds = wait_seconds

    @asynccontextmanager
    async def hold(self, trigger_id: int):
        lock = self.redis.lock(
            f"{LOCK_KEY_PREFIX}{trigger_id}",
            timeout=self.timeout_seconds,
            blocking=self.wait_seconds > 0,
            blocking_timeout=self.wait_seconds or None,
        )
        if not await lock.acquire():
            raise TriggerLockedError(trigger_id)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Expired mid-scan; another scan may already have started
                logger.warning("Lock for trigger %s expired before release", trigger_id)


def build_locks(settings):
    if settings.redis_url:
        redis = aioredis.from_url(settings.redis_url, decode_responses=True)
        return RedisTriggerLocks(redis, settings.lock_timeout_seconds, settings.lock_wait_seconds)
    return LocalTriggerLocks(settings.lock_wait_seconds)
