"""Run lock guarding against overlapping orchestrator runs.

Two backends share one interface: a Redis lock for multi-process
deployments and an in-process lock for single-process use and tests.
"""

import asyncio
import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

import redis.asyncio as redis

from pricecompare.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

# Redis keys for the run lock
LOCK_KEY = "scheduler:run:lock"
HEARTBEAT_KEY = "scheduler:run:heartbeat"

# Returns: 0 = not found/already released, 1 = deleted, 2 = mismatch
RELEASE_SCRIPT = """
local lock_value = redis.call('GET', KEYS[1])
if not lock_value then
    return 0
end

local cjson = require('cjson')
local success, data = pcall(cjson.decode, lock_value)
if not success then
    return 2
end

if data.run_id == ARGV[1] and data.token == ARGV[2] then
    redis.call('DEL', KEYS[1])
    redis.call('DEL', KEYS[2])
    return 1
else
    return 2
end
"""

# Returns: 0 = not found, 1 = refreshed, 2 = mismatch
REFRESH_SCRIPT = """
local lock_value = redis.call('GET', KEYS[1])
if not lock_value then
    return 0
end

local cjson = require('cjson')
local success, data = pcall(cjson.decode, lock_value)
if not success then
    return 0
end

if data.run_id == ARGV[1] and data.token == ARGV[2] then
    redis.call('EXPIRE', KEYS[1], ARGV[3])
    redis.call('SET', KEYS[2], ARGV[4], 'EX', ARGV[3])
    return 1
else
    return 2
end
"""


class RunLock:
    """Interface shared by the lock backends."""

    async def acquire(self, run_id: str, ttl_seconds: int) -> Optional[str]:
        """Return an ownership token, or None if another run holds the lock."""
        raise NotImplementedError

    async def release(self, run_id: str, token: Optional[str]) -> bool:
        raise NotImplementedError

    async def refresh(self, run_id: str, token: str, ttl_seconds: int) -> bool:
        raise NotImplementedError

    async def force_unlock(self) -> bool:
        raise NotImplementedError

    async def get_lock_info(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def get_heartbeat_age(self) -> Optional[float]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class RedisRunLock(RunLock):
    """
    Distributed run lock using Redis.

    Features:
    - TTL-based expiration
    - Heartbeat key tracking last refresh
    - Token-based ownership verification
    """

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or default_settings.redis_url
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self) -> None:
        if self._redis:
            await self._redis.close()
            self._redis = None

    async def acquire(self, run_id: str, ttl_seconds: int = 7200) -> Optional[str]:
        redis_client = await self._get_redis()

        token = uuid4().hex
        lock_value = json.dumps({
            "run_id": run_id,
            "token": token,
            "started_at": datetime.utcnow().isoformat(),
        })

        acquired = await redis_client.set(LOCK_KEY, lock_value, nx=True, ex=ttl_seconds)
        if acquired:
            await redis_client.set(HEARTBEAT_KEY, str(time.time()), ex=ttl_seconds)
            logger.info(f"Acquired run lock for run_id: {run_id[:16]}...")
            return token

        existing_value = await redis_client.get(LOCK_KEY)
        if existing_value:
            try:
                existing_run_id = json.loads(existing_value).get("run_id", "unknown")
                logger.debug(f"Run lock already held by run_id: {existing_run_id[:16]}...")
            except (json.JSONDecodeError, AttributeError):
                logger.warning(f"Run lock exists but value is invalid: {existing_value}")
        return None

    async def release(self, run_id: str, token: Optional[str] = None) -> bool:
        """Release the lock only if run_id and token match (atomic)."""
        if not token:
            logger.warning("Unlock requested without token; refusing (use force_unlock for recovery).")
            return False

        redis_client = await self._get_redis()
        try:
            result = await redis_client.eval(
                RELEASE_SCRIPT, 2, LOCK_KEY, HEARTBEAT_KEY, run_id, token
            )
        except Exception as e:
            logger.error(f"Error executing release script: {e}")
            return False

        if result == 0:
            logger.debug("Run lock already released")
            return True
        if result == 1:
            logger.info(f"Released run lock for run_id: {run_id[:16]}...")
            return True
        logger.warning(
            f"Attempted to release run lock with mismatched token/run_id: "
            f"requested={run_id[:16]}..."
        )
        return False

    async def refresh(self, run_id: str, token: str, ttl_seconds: int = 7200) -> bool:
        """Refresh lock TTL and heartbeat if still owned (atomic)."""
        redis_client = await self._get_redis()
        try:
            result = await redis_client.eval(
                REFRESH_SCRIPT,
                2,
                LOCK_KEY,
                HEARTBEAT_KEY,
                run_id,
                token,
                str(ttl_seconds),
                str(time.time()),
            )
        except Exception as e:
            logger.error(f"Error executing refresh script: {e}")
            return False

        if result == 1:
            logger.debug(f"Refreshed run lock TTL for run_id: {run_id[:16]}...")
            return True
        if result == 0:
            logger.debug("Run lock not found (may have expired)")
        else:
            logger.warning(
                f"Attempted to refresh run lock with mismatched token/run_id: "
                f"requested={run_id[:16]}..."
            )
        return False

    async def force_unlock(self) -> bool:
        """Force unlock without token verification (watchdog/admin use)."""
        redis_client = await self._get_redis()
        try:
            await redis_client.delete(LOCK_KEY, HEARTBEAT_KEY)
            logger.warning("Force-cleared run lock and heartbeat keys")
            return True
        except Exception as e:
            logger.error(f"Failed to force unlock: {e}")
            return False

    async def get_lock_info(self) -> Optional[Dict[str, Any]]:
        redis_client = await self._get_redis()
        value = await redis_client.get(LOCK_KEY)
        ttl = await redis_client.ttl(LOCK_KEY)
        if not value:
            return None

        try:
            data = json.loads(value)
            return {
                "run_id": data.get("run_id"),
                "token": data.get("token"),
                "started_at": data.get("started_at"),
                "ttl_seconds": ttl if ttl > 0 else None,
            }
        except (json.JSONDecodeError, AttributeError) as e:
            logger.error(f"Invalid run lock value format: {e}")
            return {"raw_value": value, "ttl_seconds": ttl if ttl > 0 else None}

    async def get_heartbeat_age(self) -> Optional[float]:
        """Return seconds since last heartbeat, or None if missing."""
        redis_client = await self._get_redis()
        value = await redis_client.get(HEARTBEAT_KEY)
        if not value:
            return None
        try:
            last_ts = float(value)
        except (ValueError, TypeError):
            return None
        return max(0.0, time.time() - last_ts)


class LocalRunLock(RunLock):
    """In-process run lock with the same TTL and token semantics."""

    def __init__(self):
        self._holder: Optional[Dict[str, Any]] = None
        self._guard = asyncio.Lock()

    def _expired(self) -> bool:
        return self._holder is not None and self._holder["expires_at"] <= time.monotonic()

    async def acquire(self, run_id: str, ttl_seconds: int = 7200) -> Optional[str]:
        async with self._guard:
            if self._holder is not None and not self._expired():
                return None
            token = uuid4().hex
            now = time.monotonic()
            self._holder = {
                "run_id": run_id,
                "token": token,
                "started_at": datetime.utcnow().isoformat(),
                "expires_at": now + ttl_seconds,
                "heartbeat": time.time(),
            }
            logger.info(f"Acquired local run lock for run_id: {run_id[:16]}...")
            return token

    async def release(self, run_id: str, token: Optional[str] = None) -> bool:
        async with self._guard:
            if self._holder is None or self._expired():
                self._holder = None
                return True
            if self._holder["run_id"] == run_id and self._holder["token"] == token:
                self._holder = None
                return True
            logger.warning(f"Refusing to release local run lock held by another run ({run_id[:16]}...)")
            return False

    async def refresh(self, run_id: str, token: str, ttl_seconds: int = 7200) -> bool:
        async with self._guard:
            if self._holder is None or self._expired():
                return False
            if self._holder["run_id"] != run_id or self._holder["token"] != token:
                return False
            self._holder["expires_at"] = time.monotonic() + ttl_seconds
            self._holder["heartbeat"] = time.time()
            return True

    async def force_unlock(self) -> bool:
        async with self._guard:
            self._holder = None
        logger.warning("Force-cleared local run lock")
        return True

    async def get_lock_info(self) -> Optional[Dict[str, Any]]:
        if self._holder is None or self._expired():
            return None
        return {
            "run_id": self._holder["run_id"],
            "token": self._holder["token"],
            "started_at": self._holder["started_at"],
            "ttl_seconds": int(self._holder["expires_at"] - time.monotonic()),
        }

    async def get_heartbeat_age(self) -> Optional[float]:
        if self._holder is None or self._expired():
            return None
        return max(0.0, time.time() - self._holder["heartbeat"])


def build_run_lock(settings: Settings = default_settings) -> RunLock:
    """Create the lock backend named by `run_lock_backend`."""
    backend = settings.run_lock_backend.lower()
    if backend == "redis":
        return RedisRunLock(settings.redis_url)
    if backend == "local":
        return LocalRunLock()
    raise ValueError(f"Unknown run lock backend: {settings.run_lock_backend}")


async def refresh_lock_heartbeat(
    lock: RunLock,
    run_id: str,
    token: str,
    interval: int = 45,
    ttl: int = 7200,
) -> None:
    """
    Background task to refresh lock TTL periodically (heartbeat).

    Stops after three consecutive failed refreshes. A heartbeat task that
    finishes on its own means the lock is lost.
    """
    failure_count = 0
    try:
        while True:
            await asyncio.sleep(interval)

            if await lock.refresh(run_id, token, ttl):
                failure_count = 0
                continue

            failure_count += 1
            logger.warning(
                f"Heartbeat failed for run_id: {run_id[:16]}... "
                f"(consecutive failures: {failure_count})"
            )
            if failure_count >= 3:
                logger.error(
                    f"Heartbeat stopping after {failure_count} failures for run_id: "
                    f"{run_id[:16]}..."
                )
                break
    except asyncio.CancelledError:
        logger.debug(f"Heartbeat cancelled for run_id: {run_id[:16]}...")
        raise
    except Exception as e:
        logger.error(f"Heartbeat error: {e}", exc_info=True)
