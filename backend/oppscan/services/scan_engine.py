"""
Scan Engine

Orchestrates a trigger scan end to end:

  1. read    - trigger, active pharmacies, recent claims (one read session)
  2. coverage- resolve and persist CoverageRecords (one transaction, committed
               before any opportunity is written)
  3. generate- match claims, classify confidence, build drafts (no I/O)
  4. write   - one transaction per opportunity, quality gate included

`scan_all` runs every enabled trigger with bounded concurrency, then the
deduplication and data-quality post-passes. Each trigger's outcome is
reported on its own; one bad trigger never stops the others.
"""

import asyncio
import logging
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from uuid import uuid4

from sqlalchemy import select, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from oppscan.claims import ScanClaim
from oppscan.config import Settings, settings as default_settings
from oppscan.database import utcnow
from oppscan.exceptions import TriggerConfigError, TriggerLockedError, TriggerNotFoundError
from oppscan.matching.keywords import validate_trigger
from oppscan.models import Patient, Pharmacy, Prescription, ScanRun
from oppscan.observability import metrics
from oppscan.observability.logging_config import scan_context
from oppscan.opportunities.generator import SKIP_NO_MATCH, best_per_key, generate
from oppscan.schemas import TriggerDefinition
from oppscan.services.catalog import CatalogService
from oppscan.services.coverage_service import CoverageService
from oppscan.services.dedup_service import DedupResult, DedupService
from oppscan.services.locks import build_locks
from oppscan.services.opportunity_writer import OpportunityWriter
from oppscan.services.quality_service import QualityRunResult, QualityService

logger = logging.getLogger(__name__)

# Trigger scan outcomes
COMPLETED = "completed"
REJECTED = "rejected"
LOCKED = "locked"
NOT_FOUND = "not_found"
FAILED = "failed"

CONFIG_SNAPSHOT_FIELDS = {
    "coverage_lookback_days",
    "claim_lookback_days",
    "default_min_days_supply",
    "days_supply_floor_ratio",
    "default_annual_fills",
    "scan_concurrency",
    "coverage_min_claims",
    "coverage_min_profit",
    "coverage_min_profit_ndc",
}


@dataclass
class TriggerScanResult:
    trigger_id: int
    trigger_key: str | None = None
    status: str = COMPLETED
    reasons: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    claims_loaded: int = 0
    matched_claims: int = 0
    coverage: dict = field(default_factory=dict)
    candidates: int = 0
    writes: Counter = field(default_factory=Counter)
    skip_reasons: Counter = field(default_factory=Counter)
    write_failures: int = 0
    issues_opened: int = 0
    duration_seconds: float = 0.0

    @property
    def created(self) -> int:
        return self.writes["created"]

    @property
    def refreshed(self) -> int:
        return self.writes["refreshed"]

    def to_dict(self) -> dict:
        return {
            "trigger_id": self.trigger_id,
            "trigger_key": self.trigger_key,
            "status": self.status,
            "reasons": self.reasons,
            "notes": self.notes,
            "claims_loaded": self.claims_loaded,
            "matched_claims": self.matched_claims,
            "coverage": self.coverage,
            "candidates": self.candidates,
            "writes": dict(self.writes),
            "skip_reasons": dict(self.skip_reasons),
            "write_failures": self.write_failures,
            "issues_opened": self.issues_opened,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class CatalogScanResult:
    run_id: str
    triggers: list[TriggerScanResult] = field(default_factory=list)
    dedup: DedupResult | None = None
    quality: QualityRunResult | None = None
    duration_seconds: float = 0.0

    @property
    def status(self) -> str:
        if all(t.status == COMPLETED for t in self.triggers):
            return COMPLETED
        return "partial"

    def by_trigger(self, trigger_id: int) -> TriggerScanResult | None:
        return next((t for t in self.triggers if t.trigger_id == trigger_id), None)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "triggers": [t.to_dict() for t in self.triggers],
            "dedup": self.dedup.to_dict() if self.dedup else None,
            "quality": self.quality.to_dict() if self.quality else None,
            "duration_seconds": self.duration_seconds,
        }


def failure_status(exc: Exception) -> str:
    """Reported status for a scan that raised."""
    if isinstance(exc, TriggerConfigError):
        return REJECTED
    if isinstance(exc, TriggerLockedError):
        return LOCKED
    if isinstance(exc, TriggerNotFoundError):
        return NOT_FOUND
    return FAILED


def new_run_id() -> str:
    return f"SCAN-{uuid4().hex[:12].upper()}"


class ScanEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings = default_settings,
        locks=None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.locks = locks if locks is not None else build_locks(settings)

    # ── Public operations ────────────────────────────────────────────────

    async def scan_trigger(self, trigger_id: int, *, as_of: date | None = None) -> TriggerScanResult:
        """Scan one trigger and record the run.

        Raises TriggerNotFoundError, TriggerConfigError or TriggerLockedError
        when the scan cannot start. Every failure, those included, is recorded
        on the ScanRun before it propagates.
        """
        run_id = new_run_id()
        with scan_context(run_id):
            await self._start_run(run_id, "trigger", trigger_id)
            try:
                result = await self._scan_one(trigger_id, as_of or date.today(), run_id)
            except Exception as exc:
                status = failure_status(exc)
                if status == FAILED:
                    logger.error("Trigger %s scan failed: %s", trigger_id, exc, exc_info=True)
                metrics.trigger_scans_total.labels(status=status).inc()
                await self._finish_run(run_id, status, 0.0, {"error": str(exc)})
                raise
            metrics.trigger_scans_total.labels(status=result.status).inc()
            await self._finish_run(run_id, result.status, result.duration_seconds, result.to_dict())
            return result

    async def scan_all(self, *, as_of: date | None = None) -> CatalogScanResult:
        """Scan every enabled trigger, then deduplicate and run the quality gate."""
        as_of = as_of or date.today()
        run_id = new_run_id()
        started = time.time()
        with scan_context(run_id):
            await self._start_run(run_id, "catalog", None)
            async with self.session_factory() as session:
                trigger_ids = [t.id for t in await CatalogService(session).enabled_triggers()]
            logger.info("Catalog scan %s: %d enabled triggers", run_id, len(trigger_ids))

            semaphore = asyncio.Semaphore(self.settings.scan_concurrency)

            async def guarded(trigger_id: int) -> TriggerScanResult:
                async with semaphore:
                    return await self._scan_reported(trigger_id, as_of, run_id)

            catalog = CatalogScanResult(run_id=run_id)
            catalog.triggers = list(await asyncio.gather(*(guarded(tid) for tid in trigger_ids)))
            catalog.dedup = await self.deduplicate()
            catalog.quality = await self.run_quality_gate()
            catalog.duration_seconds = round(time.time() - started, 3)

            metrics.catalog_scan_duration_seconds.observe(catalog.duration_seconds)
            await self._finish_run(run_id, catalog.status, catalog.duration_seconds, catalog.to_dict())
            logger.info(
                "Catalog scan %s %s in %.1fs: %d triggers, %d created, %d refreshed",
                run_id, catalog.status, catalog.duration_seconds, len(catalog.triggers),
                sum(t.created for t in catalog.triggers), sum(t.refreshed for t in catalog.triggers),
            )
            return catalog

    async def deduplicate(self, *, dry_run: bool = False) -> DedupResult:
        return await DedupService(self.session_factory).run(dry_run=dry_run)

    async def run_quality_gate(self) -> QualityRunResult:
        async with self.session_factory() as session, session.begin():
            return await QualityService(session).run()

    async def validate_catalog(self) -> dict[str, list[str]]:
        async with self.session_factory() as session:
            return await CatalogService(session).validate_catalog()

    async def import_catalog(self, definitions: list[TriggerDefinition]) -> dict:
        """Insert or update trigger definitions, one transaction each.

        An existing trigger is only updated while its scan lock is held, so an
        import never changes a trigger under a running scan. Busy triggers are
        reported under "locked" and left as they are.
        """
        stats = {"created": 0, "updated": 0, "rejected": {}, "locked": []}
        for definition in definitions:
            async with self.session_factory() as session:
                existing_id = await CatalogService(session).trigger_id_for_key(definition.trigger_key)
            try:
                if existing_id is None:
                    action = await self._import_one(definition)
                else:
                    async with self.locks.hold(existing_id):
                        action = await self._import_one(definition)
            except TriggerConfigError as exc:
                stats["rejected"][definition.trigger_key] = exc.reasons
                continue
            except TriggerLockedError:
                logger.warning("Trigger %s is being scanned; import skipped", definition.trigger_key)
                stats["locked"].append(definition.trigger_key)
                continue
            stats[action] += 1

        logger.info(
            "Imported trigger definitions: %d created, %d updated, %d rejected, %d locked",
            stats["created"], stats["updated"], len(stats["rejected"]), len(stats["locked"]),
        )
        return stats

    async def _import_one(self, definition: TriggerDefinition) -> str:
        async with self.session_factory() as session, session.begin():
            return await CatalogService(session).import_definition(definition)

    # ── Per-trigger scan ─────────────────────────────────────────────────

    async def _scan_reported(self, trigger_id: int, as_of: date, run_id: str) -> TriggerScanResult:
        """_scan_one, with every failure turned into a reported status."""
        try:
            return await self._scan_one(trigger_id, as_of, run_id)
        except TriggerConfigError as exc:
            logger.warning("Trigger %s rejected: %s", exc.trigger_key, "; ".join(exc.reasons))
            result = TriggerScanResult(trigger_id, exc.trigger_key, REJECTED, reasons=exc.reasons)
        except Exception as exc:
            status = failure_status(exc)
            if status == FAILED:
                logger.error("Trigger %s scan failed: %s", trigger_id, exc, exc_info=True)
            else:
                logger.warning("Trigger %s skipped: %s", trigger_id, exc)
            result = TriggerScanResult(trigger_id, status=status, reasons=[str(exc)])
        metrics.trigger_scans_total.labels(status=result.status).inc()
        return result

    async def _scan_one(self, trigger_id: int, as_of: date, run_id: str) -> TriggerScanResult:
        async with self.locks.hold(trigger_id):
            started = time.time()

            async with self.session_factory() as session:
                trigger = await CatalogService(session).get_trigger(trigger_id)
                if trigger is None:
                    raise TriggerNotFoundError(trigger_id)
                reasons = validate_trigger(trigger)
                if not trigger.is_enabled:
                    reasons.append("trigger is disabled")
                if reasons:
                    raise TriggerConfigError(trigger.trigger_key, reasons)
                since = as_of - timedelta(days=max(self.settings.coverage_lookback_days, self.settings.claim_lookback_days))
                claims = await self._load_claims(session, since)

            result = TriggerScanResult(trigger_id, trigger.trigger_key, claims_loaded=len(claims))

            async with self.session_factory() as session, session.begin():
                refresh = await CoverageService(session, self.settings).refresh(trigger, claims, as_of)
            result.coverage = refresh.to_dict()

            drafts = self._generate(trigger, claims, refresh.index, as_of, result)
            result.candidates = len(drafts)
            if result.matched_claims == 0:
                result.notes.append("0 matching claims")

            for draft in sorted(drafts, key=lambda d: d.key):
                try:
                    async with self.session_factory() as session, session.begin():
                        outcome = await OpportunityWriter(session).write(draft, run_id)
                except SQLAlchemyError as exc:
                    logger.error("Write failed for %s: %s", draft.key, exc, exc_info=True)
                    result.write_failures += 1
                    metrics.opportunity_writes_total.labels(action="failed").inc()
                    continue
                result.writes[outcome.action] += 1
                result.issues_opened += outcome.issues_opened

            result.duration_seconds = round(time.time() - started, 3)
            metrics.trigger_scan_duration_seconds.observe(result.duration_seconds)
            metrics.claims_matched_total.inc(result.matched_claims)
            logger.info(
                "Trigger %s: %d matched, %d candidates, %s",
                trigger.trigger_key, result.matched_claims, result.candidates, dict(result.writes),
                extra={"trigger_id": trigger_id, "duration_ms": result.duration_seconds * 1000},
            )
            return result

    async def _load_claims(self, session: AsyncSession, since: date) -> list[ScanClaim]:
        pharmacy_ids = select(Pharmacy.id).where(Pharmacy.is_active.is_(True))
        rows = await session.execute(
            select(Prescription, Patient)
            .join(Patient, Prescription.patient_id == Patient.id)
            .where(Prescription.pharmacy_id.in_(pharmacy_ids))
            .where(or_(Prescription.dispensed_date >= since, Prescription.dispensed_date.is_(None)))
        )
        claims = [ScanClaim.from_prescription(rx, patient) for rx, patient in rows.all()]
        claims.sort(key=lambda c: (c.dispensed_date or date.min, c.id))
        return claims

    def _generate(self, trigger, claims: list[ScanClaim], index, as_of: date, result: TriggerScanResult):
        window_start = as_of - timedelta(days=self.settings.claim_lookback_days)

        patient_drugs: dict[int, list[str]] = defaultdict(list)
        for claim in claims:
            if claim.drug_name:
                patient_drugs[claim.patient_id].append(claim.drug_name)

        drafts = []
        for claim in claims:
            if claim.dispensed_date is None or not (window_start <= claim.dispensed_date <= as_of):
                continue
            generation = generate(
                trigger,
                claim,
                index,
                patient_drugs=patient_drugs[claim.patient_id],
                default_annual_fills=self.settings.default_annual_fills,
            )
            if generation.skip_reason != SKIP_NO_MATCH:
                result.matched_claims += 1
            if generation.draft is None:
                result.skip_reasons[generation.skip_reason] += 1
            else:
                drafts.append(generation.draft)
        return best_per_key(drafts)

    # ── Run records ──────────────────────────────────────────────────────

    def _config_snapshot(self) -> dict:
        return self.settings.model_dump(include=CONFIG_SNAPSHOT_FIELDS)

    async def _start_run(self, run_id: str, scope: str, trigger_id: int | None):
        async with self.session_factory() as session, session.begin():
            session.add(ScanRun(
                run_id=run_id,
                scope=scope,
                trigger_id=trigger_id,
                status="running",
                config_snapshot=self._config_snapshot(),
            ))

    async def _finish_run(self, run_id: str, status: str, duration: float, stats: dict):
        async with self.session_factory() as session, session.begin():
            run = (await session.execute(select(ScanRun).where(ScanRun.run_id == run_id))).scalar_one()
            run.status = status
            run.duration_seconds = duration
            run.completed_at = utcnow()
            run.stats = stats

