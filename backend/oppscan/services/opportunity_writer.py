"""
Opportunity writes.

Applies one OpportunityDraft against what is already stored for its
(pharmacy, patient, recommended drug) key:

  no live row                -> create "Not Submitted"
  only Denied/Declined rows  -> create a fresh "Not Submitted"
  live row staff acted on    -> leave it alone
  live "Not Submitted" row   -> refresh values (status untouched)

The data-quality gate runs on the written row before the caller commits.
"""

import logging
from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from oppscan.models import Opportunity
from oppscan.observability import metrics
from oppscan.opportunities.dedup import key_of, survivor_rank
from oppscan.opportunities.generator import OpportunityDraft
from oppscan.opportunities.status import NOT_SUBMITTED, is_actioned, is_live
from oppscan.services.audit_service import AuditService
from oppscan.services.quality_service import QualityService

logger = logging.getLogger(__name__)

CREATED = "created"
REFRESHED = "refreshed"
UNCHANGED = "unchanged"
SKIPPED_ACTIONED = "skipped_actioned"
SKIPPED_BETTER = "skipped_better_existing"

REFRESH_FIELDS = (
    "trigger_id",
    "prescription_id",
    "opportunity_type",
    "current_drug_name",
    "current_ndc",
    "recommended_drug_name",
    "recommended_ndc",
    "insurance_bin",
    "insurance_group",
    "potential_margin_gain",
    "annual_margin_gain",
    "coverage_confidence",
    "prescriber_name",
    "prescriber_npi",
    "clinical_rationale",
)


def new_opportunity_id() -> str:
    return f"OPP-{uuid4().hex[:12].upper()}"


@dataclass
class WriteOutcome:
    action: str
    opportunity_id: str | None = None
    issues_opened: int = 0
    issues_resolved: int = 0


class OpportunityWriter:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.audit = AuditService(session)
        self.quality = QualityService(session)

    async def existing_for(self, draft: OpportunityDraft) -> list[Opportunity]:
        result = await self.session.execute(
            select(Opportunity)
            .where(
                Opportunity.pharmacy_id == draft.pharmacy_id,
                Opportunity.patient_id == draft.patient_id,
            )
            .order_by(Opportunity.id)
        )
        return [o for o in result.scalars() if key_of(o) == draft.key]

    async def write(self, draft: OpportunityDraft, scan_batch_id: str | None = None) -> WriteOutcome:
        live = [o for o in await self.existing_for(draft) if is_live(o.status)]

        actioned = [o for o in live if is_actioned(o.status)]
        if actioned:
            metrics.opportunity_writes_total.labels(action=SKIPPED_ACTIONED).inc()
            return WriteOutcome(SKIPPED_ACTIONED, actioned[0].opportunity_id)

        if not live:
            return await self._create(draft, scan_batch_id)

        target = min(live, key=survivor_rank)
        if target.trigger_id != draft.trigger_id and draft.annual_margin_gain <= (target.annual_margin_gain or 0):
            # Another trigger already holds this key with an estimate at least as good
            metrics.opportunity_writes_total.labels(action=SKIPPED_BETTER).inc()
            return WriteOutcome(SKIPPED_BETTER, target.opportunity_id)
        return await self._refresh(target, draft, scan_batch_id)

    async def _create(self, draft: OpportunityDraft, scan_batch_id: str | None) -> WriteOutcome:
        opportunity = Opportunity(
            opportunity_id=new_opportunity_id(),
            pharmacy_id=draft.pharmacy_id,
            patient_id=draft.patient_id,
            status=NOT_SUBMITTED,
            scan_batch_id=scan_batch_id,
            **{name: getattr(draft, name) for name in REFRESH_FIELDS},
        )
        self.session.add(opportunity)
        await self.session.flush()
        await self.audit.log_opportunity_created(
            opportunity.opportunity_id, draft.trigger_id, draft.annual_margin_gain,
        )
        opened, resolved = await self.quality.sync(opportunity)
        metrics.opportunity_writes_total.labels(action=CREATED).inc()
        return WriteOutcome(CREATED, opportunity.opportunity_id, opened, resolved)

    async def _refresh(self, opportunity: Opportunity, draft: OpportunityDraft, scan_batch_id: str | None) -> WriteOutcome:
        changes = {}
        for name in REFRESH_FIELDS:
            value = getattr(draft, name)
            if getattr(opportunity, name) != value:
                changes[name] = {"old": getattr(opportunity, name), "new": value}
                setattr(opportunity, name, value)

        if changes:
            opportunity.scan_batch_id = scan_batch_id
            await self.session.flush()
            await self.audit.log_opportunity_refreshed(opportunity.opportunity_id, changes)
        opened, resolved = await self.quality.sync(opportunity)

        action = REFRESHED if changes else UNCHANGED
        metrics.opportunity_writes_total.labels(action=action).inc()
        return WriteOutcome(action, opportunity.opportunity_id, opened, resolved)
