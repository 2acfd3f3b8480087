"""
Worker entrypoint - runs scan jobs from the Redis queue.

Run with: python worker.py
"""

import asyncio
import json
import logging
from datetime import date

import redis.asyncio as aioredis
from prometheus_client import start_http_server

from oppscan.config import settings
from oppscan.database import async_session
from oppscan.exceptions import OppScanError
from oppscan.observability.logging_config import configure_logging
from oppscan.services.job_queue import (
    DEDUPLICATE, QUALITY_GATE, QUEUE_KEY, SCAN_ALL, SCAN_TRIGGER, update_job_status,
)
from oppscan.services.scan_engine import ScanEngine

logger = logging.getLogger("worker")

METRICS_PORT = 9108


async def process_scan_job(job_data: dict, engine: ScanEngine):
    job_id = job_data["job_id"]
    kind = job_data["kind"]
    as_of = date.fromisoformat(job_data["as_of"]) if job_data.get("as_of") else None

    await update_job_status(job_id, status="running")
    try:
        if kind == SCAN_TRIGGER:
            result = (await engine.scan_trigger(int(job_data["trigger_id"]), as_of=as_of)).to_dict()
        elif kind == SCAN_ALL:
            result = (await engine.scan_all(as_of=as_of)).to_dict()
        elif kind == DEDUPLICATE:
            result = (await engine.deduplicate()).to_dict()
        elif kind == QUALITY_GATE:
            result = (await engine.run_quality_gate()).to_dict()
        else:
            raise ValueError(f"Unknown job kind '{kind}'")
    except OppScanError as exc:
        logger.warning("Job %s could not run: %s", job_id, exc)
        await update_job_status(job_id, status="failed", error=str(exc))
        return
    except Exception as exc:
        logger.error("Job %s failed: %s", job_id, exc, exc_info=True)
        await update_job_status(job_id, status="failed", error=str(exc))
        return

    await update_job_status(job_id, status="completed", result=result)
    logger.info("Job %s (%s) completed", job_id, kind)


async def main():
    """Main worker loop - polls Redis queue for scan jobs."""
    configure_logging(settings.log_level, settings.log_format)
    start_http_server(METRICS_PORT)

    engine = ScanEngine(async_session, settings)
    r = aioredis.from_url(settings.redis_url, decode_responses=True)
    logger.info("Worker started, listening on %s", QUEUE_KEY)

    while True:
        try:
            # Block-pop from queue (5 second timeout)
            result = await r.brpop(QUEUE_KEY, timeout=5)
            if result is None:
                continue
            _, raw = result
            job_data = json.loads(raw)
            logger.info("Processing job: %s", job_data.get("job_id"))
            await process_scan_job(job_data, engine)
        except Exception as exc:
            logger.error("Worker loop error: %s", exc, exc_info=True)
            await asyncio.sleep(1)


if __name__ == "__main__":
    asyncio.run(main())
