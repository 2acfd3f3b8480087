"""
Deduplication & status preservation.

Plans against a snapshot of all live opportunities, then applies each
duplicate group in its own transaction after re-reading the group, so a
status change made by staff between planning and applying is respected.
Losing "Not Submitted" rows are deleted after their staff notes are copied
to the survivor. Losers staff already acted on are never deleted; they get
a pending MergeReview instead.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from oppscan.models import DataQualityIssue, MergeReview, Opportunity
from oppscan.observability import metrics
from oppscan.opportunities.dedup import DedupPlan, key_of, plan_deduplication, plan_group
from oppscan.opportunities.status import NEGATIVE_STATUSES
from oppscan.services.audit_service import AuditService

logger = logging.getLogger(__name__)


def format_key(key) -> str:
    pharmacy_id, patient_id, drug = key
    return f"{pharmacy_id}|{patient_id}|{drug}"


def merge_notes(kept: str | None, incoming: str | None, source_id: str) -> str | None:
    """Append another opportunity's staff notes unless they are already there."""
    if not incoming or not incoming.strip():
        return kept
    if kept and incoming.strip() in kept:
        return kept
    addition = f"[merged from {source_id}] {incoming.strip()}"
    return f"{kept}\n{addition}" if kept else addition


@dataclass
class DedupResult:
    dry_run: bool = False
    groups: int = 0
    removed: int = 0
    merge_reviews: int = 0
    notes_transferred: int = 0
    failed_groups: int = 0
    preview: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "dry_run": self.dry_run,
            "groups": self.groups,
            "removed": self.removed,
            "merge_reviews": self.merge_reviews,
            "notes_transferred": self.notes_transferred,
            "failed_groups": self.failed_groups,
        }


class DedupService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _live_opportunities(self, session: AsyncSession, ids=None) -> list[Opportunity]:
        query = select(Opportunity).where(Opportunity.status.not_in(sorted(NEGATIVE_STATUSES)))
        if ids is not None:
            query = query.where(Opportunity.id.in_(ids))
        result = await session.execute(query.order_by(Opportunity.id))
        return list(result.scalars())

    async def run(self, dry_run: bool = False) -> DedupResult:
        stats = DedupResult(dry_run=dry_run)
        async with self.session_factory() as session:
            plans = plan_deduplication(await self._live_opportunities(session))

        stats.groups = len(plans)
        for plan in plans:
            if dry_run:
                stats.preview.append(self._describe(plan))
                stats.removed += len(plan.remove)
                stats.merge_reviews += len(plan.conflicts)
                continue
            try:
                async with self.session_factory() as session, session.begin():
                    removed, reviews, notes = await self._apply_group(session, plan)
            except Exception:
                logger.exception("Dedup group %s failed; rolled back", format_key(plan.key))
                stats.failed_groups += 1
                continue
            stats.removed += removed
            stats.merge_reviews += reviews
            stats.notes_transferred += notes

        logger.info(
            "Dedup%s: %d groups, %d removed, %d merge reviews",
            " (dry run)" if dry_run else "", stats.groups, stats.removed, stats.merge_reviews,
        )
        return stats

    @staticmethod
    def _describe(plan: DedupPlan) -> dict:
        return {
            "dedup_key": format_key(plan.key),
            "keep": plan.keep.opportunity_id,
            "remove": [o.opportunity_id for o in plan.remove],
            "merge_review": [o.opportunity_id for o in plan.conflicts],
        }

    async def _apply_group(self, session: AsyncSession, stale_plan: DedupPlan) -> tuple[int, int, int]:
        ids = [stale_plan.keep.id] + [o.id for o in stale_plan.remove + stale_plan.conflicts]
        members = [o for o in await self._live_opportunities(session, ids) if key_of(o) == stale_plan.key]
        if len(members) < 2:
            return 0, 0, 0

        plan = plan_group(stale_plan.key, members)
        key_text = format_key(plan.key)
        audit = AuditService(session)
        kept = plan.keep
        removed = reviews = notes = 0

        for loser in plan.remove:
            merged = merge_notes(kept.staff_notes, loser.staff_notes, loser.opportunity_id)
            if merged != kept.staff_notes:
                kept.staff_notes = merged
                notes += 1
            await session.execute(delete(DataQualityIssue).where(DataQualityIssue.opportunity_id == loser.id))
            await session.delete(loser)
            await audit.log_duplicate_removed(loser.opportunity_id, kept.opportunity_id, key_text)
            removed += 1

        for conflict in plan.conflicts:
            existing = await session.execute(
                select(MergeReview.id).where(
                    MergeReview.kept_opportunity_id == kept.opportunity_id,
                    MergeReview.duplicate_opportunity_id == conflict.opportunity_id,
                    MergeReview.status == "pending",
                )
            )
            if existing.first() is not None:
                continue
            session.add(MergeReview(
                kept_opportunity_id=kept.opportunity_id,
                duplicate_opportunity_id=conflict.opportunity_id,
                dedup_key=key_text,
                reason=f"Duplicate already {conflict.status}; merge manually into {kept.opportunity_id} ({kept.status})",
                status="pending",
            ))
            await audit.log_merge_review_opened(conflict.opportunity_id, kept.opportunity_id, conflict.status)
            reviews += 1

        await session.flush()
        metrics.dedup_removed_total.inc(removed)
        metrics.merge_reviews_total.inc(reviews)
        return removed, reviews, notes
