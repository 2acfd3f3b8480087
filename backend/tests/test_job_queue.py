"""Tests for job dispatch and structured logging (no Redis needed)."""

import json
import logging

import pytest

import worker
from oppscan.observability.logging_config import JSONFormatter, get_scan_id, scan_context
from oppscan.services.job_queue import SCAN_TRIGGER, enqueue_scan_job
from tests.factories import AS_OF, seed_trigger


@pytest.mark.asyncio
class TestJobs:
    async def test_rejects_unknown_kind(self):
        with pytest.raises(ValueError):
            await enqueue_scan_job("rebuild_everything")

    async def test_scan_trigger_needs_an_id(self):
        with pytest.raises(ValueError):
            await enqueue_scan_job(SCAN_TRIGGER)

    async def test_worker_runs_a_trigger_scan(self, monkeypatch, scan_engine, session_factory):
        updates = []

        async def record(job_id, **fields):
            updates.append(fields)

        monkeypatch.setattr(worker, "update_job_status", record)
        async with session_factory() as session, session.begin():
            trigger = await seed_trigger(session)
            trigger_id = trigger.id

        await worker.process_scan_job(
            {"job_id": "SJOB-1", "kind": SCAN_TRIGGER, "trigger_id": trigger_id, "as_of": AS_OF.isoformat()},
            scan_engine,
        )

        assert updates[0] == {"status": "running"}
        assert updates[-1]["status"] == "completed"
        assert updates[-1]["result"]["trigger_id"] == trigger_id

    async def test_worker_reports_scan_errors(self, monkeypatch, scan_engine):
        updates = []

        async def record(job_id, **fields):
            updates.append(fields)

        monkeypatch.setattr(worker, "update_job_status", record)

        await worker.process_scan_job({"job_id": "SJOB-2", "kind": SCAN_TRIGGER, "trigger_id": 999}, scan_engine)

        assert updates[-1]["status"] == "failed"
        assert "999" in updates[-1]["error"]


class TestJSONFormatter:
    def test_includes_scan_id(self):
        record = logging.LogRecord("oppscan.test", logging.INFO, __file__, 1, "scanned %d", (3,), None)
        with scan_context("SCAN-ABC"):
            line = json.loads(JSONFormatter().format(record))
        assert line["message"] == "scanned 3"
        assert line["scan_id"] == "SCAN-ABC"
        assert get_scan_id() == ""
