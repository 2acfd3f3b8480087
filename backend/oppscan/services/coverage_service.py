"""
Coverage cache writes.

Runs the pure resolver over a trigger's recent claims and makes the
trigger's CoverageRecord rows match the result: one row per (BIN, group),
scanned fields overwritten, admin exclusion and manual override fields left
alone, and rows the claims no longer support removed unless an admin has
touched them. Running it twice on the same claims changes nothing the second
time.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from oppscan.claims import normalize_group
from oppscan.config import Settings, settings as default_settings
from oppscan.coverage.index import CoverageIndex
from oppscan.coverage.resolver import VERIFIED, CoverageResolution, resolve
from oppscan.database import utcnow
from oppscan.models import CoverageRecord
from oppscan.observability import metrics
from oppscan.services.audit_service import AuditService

logger = logging.getLogger(__name__)

SCANNED_FIELDS = (
    "coverage_status",
    "verified_claim_count",
    "matched_claim_count",
    "profit_per_fill",
    "best_drug_name",
    "best_ndc",
)


def _stored_group(group: str | None) -> str:
    return normalize_group(group) or ""


@dataclass
class CoverageRefresh:
    resolution: CoverageResolution
    index: CoverageIndex
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    status_counts: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        r = self.resolution
        return {
            "matched_claims": r.matched_claims,
            "excluded_claims": r.excluded_claims,
            "short_fill_claims": r.short_fill_claims,
            "out_of_window_claims": r.out_of_window_claims,
            "missing_bin_claims": r.missing_bin_claims,
            "unnormalized_claims": r.unnormalized_claims,
            "records_inserted": self.inserted,
            "records_updated": self.updated,
            "records_unchanged": self.unchanged,
            "records_deleted": self.deleted,
            "status_counts": self.status_counts,
        }


class CoverageService:
    def __init__(self, session: AsyncSession, settings: Settings = default_settings):
        self.session = session
        self.settings = settings

    def _min_profit(self, trigger) -> Decimal | None:
        if trigger.trigger_type == "ndc_optimization":
            threshold = self.settings.coverage_min_profit_ndc
        else:
            threshold = self.settings.coverage_min_profit
        return None if threshold is None else Decimal(str(threshold))

    async def records_for(self, trigger_id: int) -> list[CoverageRecord]:
        result = await self.session.execute(
            select(CoverageRecord)
            .where(CoverageRecord.trigger_id == trigger_id)
            .order_by(CoverageRecord.insurance_bin, CoverageRecord.insurance_group)
        )
        return list(result.scalars())

    async def load_index(self, trigger_id: int) -> CoverageIndex:
        return CoverageIndex.from_records(await self.records_for(trigger_id))

    async def refresh(self, trigger, claims, as_of: date) -> CoverageRefresh:
        """Recompute and persist coverage for one trigger. Caller owns the transaction."""
        existing = {
            (r.insurance_bin, _stored_group(r.insurance_group)): r
            for r in await self.records_for(trigger.id)
        }
        excluded_keys = {
            (ins_bin, group or None) for (ins_bin, group), r in existing.items() if r.is_excluded
        }

        resolution = resolve(
            trigger,
            claims,
            as_of=as_of,
            lookback_days=self.settings.coverage_lookback_days,
            default_min_days_supply=self.settings.default_min_days_supply,
            floor_ratio=self.settings.days_supply_floor_ratio,
            excluded_keys=excluded_keys,
            min_claims=self.settings.coverage_min_claims,
            min_profit=self._min_profit(trigger),
        )

        refresh = CoverageRefresh(resolution=resolution, index=CoverageIndex())
        now = utcnow()
        seen = set()
        for result in resolution.results:
            key = (result.insurance_bin, _stored_group(result.insurance_group))
            seen.add(key)
            refresh.status_counts[result.coverage_status] = refresh.status_counts.get(result.coverage_status, 0) + 1
            record = existing.get(key)
            if record is None:
                record = CoverageRecord(
                    trigger_id=trigger.id,
                    insurance_bin=key[0],
                    insurance_group=key[1],
                    is_excluded=False,
                    is_manual_override=False,
                )
                self._apply(record, result, now)
                self.session.add(record)
                refresh.inserted += 1
            elif self._apply(record, result, now):
                refresh.updated += 1
            else:
                refresh.unchanged += 1
            metrics.coverage_records_written_total.labels(status=result.coverage_status).inc()

        for key, record in existing.items():
            if key in seen or record.is_excluded or record.is_manual_override:
                continue
            await self.session.delete(record)
            refresh.deleted += 1

        await self.session.flush()
        refresh.index = await self.load_index(trigger.id)

        if refresh.inserted or refresh.updated or refresh.deleted:
            await AuditService(self.session).log_coverage_refreshed(trigger.id, refresh.to_dict())

        logger.info(
            "Coverage for trigger %s: %d payers (%d new, %d updated, %d removed), %d matched claims",
            trigger.trigger_key, len(resolution.results), refresh.inserted, refresh.updated,
            refresh.deleted, resolution.matched_claims,
            extra={"trigger_id": trigger.id},
        )
        return refresh

    @staticmethod
    def _apply(record: CoverageRecord, result, now) -> bool:
        """Copy scanned values onto the record; True when anything changed."""
        changed = False
        for name in SCANNED_FIELDS:
            value = getattr(result, name)
            if getattr(record, name) != value:
                setattr(record, name, value)
                changed = True
        if result.coverage_status == VERIFIED and (changed or record.verified_at is None):
            record.verified_at = now
        return changed
