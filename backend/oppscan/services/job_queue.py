"""
Scan job queue on Redis.

Scans are enqueued as JSON payloads on a Redis list and picked up by
worker.py; each job's progress lives in a hash that expires after a day.
"""

import json
import logging
from uuid import uuid4

import redis.asyncio as aioredis

from oppscan.config import settings
from oppscan.database import utcnow

logger = logging.getLogger(__name__)

QUEUE_KEY = "oppscan:scan:queue"
JOB_KEY_PREFIX = "oppscan:scan:job:"
JOB_TTL_SECONDS = 86400

SCAN_TRIGGER = "scan_trigger"
SCAN_ALL = "scan_all"
DEDUPLICATE = "deduplicate"
QUALITY_GATE = "quality_gate"
JOB_KINDS = (SCAN_TRIGGER, SCAN_ALL, DEDUPLICATE, QUALITY_GATE)


async def get_redis() -> aioredis.Redis:
    return aioredis.from_url(settings.redis_url, decode_responses=True)


async def enqueue_scan_job(kind: str, trigger_id: int | None = None, as_of: str | None = None) -> str:
    """Enqueue a scan job and return its job_id."""
    if kind not in JOB_KINDS:
        raise ValueError(f"Unknown job kind '{kind}'")
    if kind == SCAN_TRIGGER and trigger_id is None:
        raise ValueError("scan_trigger jobs need a trigger_id")

    job_id = f"SJOB-{uuid4().hex[:12].upper()}"
    r = await get_redis()

    job_data = {
        "job_id": job_id,
        "kind": kind,
        "status": "queued",
        "trigger_id": trigger_id if trigger_id is not None else "",
        "as_of": as_of or "",
        "started_at": "",
        "completed_at": "",
    }
    await r.hset(f"{JOB_KEY_PREFIX}{job_id}", mapping=job_data)
    await r.expire(f"{JOB_KEY_PREFIX}{job_id}", JOB_TTL_SECONDS)

    await r.lpush(QUEUE_KEY, json.dumps({
        "job_id": job_id,
        "kind": kind,
        "trigger_id": trigger_id,
        "as_of": as_of,
    }))

    await r.aclose()
    logger.info("Enqueued %s job %s", kind, job_id)
    return job_id


async def get_job_status(job_id: str) -> dict | None:
    r = await get_redis()
    data = await r.hgetall(f"{JOB_KEY_PREFIX}{job_id}")
    await r.aclose()
    if not data:
        return None
    if data.get("result"):
        data["result"] = json.loads(data["result"])
    return data


async def update_job_status(
    job_id: str,
    *,
    status: str | None = None,
    result: dict | None = None,
    error: str | None = None,
):
    """Update fields on a scan job."""
    r = await get_redis()
    updates: dict = {}
    if status is not None:
        updates["status"] = status
    if status == "running":
        updates["started_at"] = utcnow().isoformat()
    if status in ("completed", "failed"):
        updates["completed_at"] = utcnow().isoformat()
    if result:
        updates["result"] = json.dumps(result, default=str)
    if error:
        updates["error"] = error

    if updates:
        await r.hset(f"{JOB_KEY_PREFIX}{job_id}", mapping=updates)
    await r.aclose()
