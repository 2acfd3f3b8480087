"""
Deduplication planning.

Groups live opportunities by (pharmacy, patient, normalized recommended
drug) and decides, per group, which record survives. The survivor is the
one with the highest status precedence, then the highest annual estimate,
then the earliest creation. Only NOT_SUBMITTED losers may be removed;
actioned losers become merge conflicts for a human. Planning never changes
a status.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from oppscan.opportunities.generator import DedupKey, dedup_key
from oppscan.opportunities.status import is_actioned, is_live, precedence


@dataclass
class DedupPlan:
    key: DedupKey
    keep: object
    remove: list = field(default_factory=list)
    conflicts: list = field(default_factory=list)

    @property
    def changes_anything(self) -> bool:
        return bool(self.remove or self.conflicts)


def key_of(opportunity) -> DedupKey:
    return dedup_key(opportunity.pharmacy_id, opportunity.patient_id, opportunity.recommended_drug_name)


def survivor_rank(opportunity):
    """Sort key: best survivor first."""
    return (
        -precedence(opportunity.status),
        -(opportunity.annual_margin_gain or Decimal(0)),
        opportunity.created_at or datetime.max,
        opportunity.id or 0,
    )


def group_duplicates(opportunities) -> dict[DedupKey, list]:
    groups: dict[DedupKey, list] = defaultdict(list)
    for opp in opportunities:
        if is_live(opp.status):
            groups[key_of(opp)].append(opp)
    return {k: v for k, v in groups.items() if len(v) > 1}


def plan_group(key: DedupKey, members: list) -> DedupPlan:
    ranked = sorted(members, key=survivor_rank)
    plan = DedupPlan(key=key, keep=ranked[0])
    for loser in ranked[1:]:
        if is_actioned(loser.status):
            plan.conflicts.append(loser)
        else:
            plan.remove.append(loser)
    return plan


def plan_deduplication(opportunities) -> list[DedupPlan]:
    groups = group_duplicates(opportunities)
    return [plan_group(key, members) for key, members in sorted(groups.items(), key=lambda kv: kv[0])]
