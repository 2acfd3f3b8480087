"""
Data-Quality Gate persistence.

Keeps DataQualityIssue rows in step with the opportunities they describe:
a pending issue per attribution problem, resolved as soon as the field is
corrected. Opportunities with a pending issue are withheld from staff views.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import select, func, exists
from sqlalchemy.ext.asyncio import AsyncSession

from oppscan.database import utcnow
from oppscan.models import DataQualityIssue, Opportunity
from oppscan.observability import metrics
from oppscan.quality.gate import find_issues

logger = logging.getLogger(__name__)

PENDING = "pending"
RESOLVED = "resolved"


@dataclass
class QualityRunResult:
    checked: int = 0
    opened: int = 0
    resolved: int = 0
    pending: int = 0

    def to_dict(self) -> dict:
        return {"checked": self.checked, "opened": self.opened, "resolved": self.resolved, "pending": self.pending}


class QualityService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def sync(self, opportunity: Opportunity) -> tuple[int, int]:
        """Open and resolve issues for one opportunity. Returns (opened, resolved).

        A field keeps at most one pending issue. When its problem changes kind
        (UNKNOWN cleared to blank, say) the pending issue is retyped, not
        resolved.
        """
        result = await self.session.execute(
            select(DataQualityIssue)
            .where(
                DataQualityIssue.opportunity_id == opportunity.id,
                DataQualityIssue.status == PENDING,
            )
            .order_by(DataQualityIssue.id)
        )
        pending: dict[str, list[DataQualityIssue]] = defaultdict(list)
        for issue in result.scalars():
            pending[issue.field_name].append(issue)

        opened = 0
        changed = False
        for problem in find_issues(opportunity):
            current = pending.pop(problem.field_name, [])
            if any(issue.issue_type == problem.issue_type for issue in current):
                continue
            if current:
                issue = current[0]
                issue.issue_type = problem.issue_type
                issue.original_value = problem.original_value
                issue.description = problem.description
                changed = True
                continue
            self.session.add(DataQualityIssue(
                opportunity_id=opportunity.id,
                pharmacy_id=opportunity.pharmacy_id,
                patient_id=opportunity.patient_id,
                issue_type=problem.issue_type,
                field_name=problem.field_name,
                original_value=problem.original_value,
                description=problem.description,
                status=PENDING,
            ))
            opened += 1

        resolved = 0
        now = utcnow()
        for field_name, issues in pending.items():
            for issue in issues:
                issue.status = RESOLVED
                issue.resolved_value = getattr(opportunity, field_name)
                issue.resolved_at = now
                resolved += 1

        if opened or resolved or changed:
            await self.session.flush()
        return opened, resolved

    async def run(self) -> QualityRunResult:
        """Re-sync every trigger-attributed opportunity."""
        stats = QualityRunResult()
        result = await self.session.execute(
            select(Opportunity).where(Opportunity.trigger_id.is_not(None)).order_by(Opportunity.id)
        )
        for opportunity in result.scalars():
            opened, resolved = await self.sync(opportunity)
            stats.checked += 1
            stats.opened += opened
            stats.resolved += resolved

        stats.pending = await self.pending_count()
        metrics.pending_quality_issues.set(stats.pending)
        logger.info(
            "Quality gate: %d checked, %d opened, %d resolved, %d pending",
            stats.checked, stats.opened, stats.resolved, stats.pending,
        )
        return stats

    async def pending_count(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(DataQualityIssue).where(DataQualityIssue.status == PENDING)
        )
        return result.scalar() or 0

    async def display_ready(self, pharmacy_id: int | None = None) -> list[Opportunity]:
        """Opportunities staff may see: no pending data-quality issue."""
        has_pending = exists().where(
            DataQualityIssue.opportunity_id == Opportunity.id,
            DataQualityIssue.status == PENDING,
        )
        query = select(Opportunity).where(~has_pending).order_by(Opportunity.id)
        if pharmacy_id is not None:
            query = query.where(Opportunity.pharmacy_id == pharmacy_id)
        result = await self.session.execute(query)
        return list(result.scalars())
