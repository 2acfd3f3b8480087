"""Tests for duplicate planning and the dedup service."""

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select

from oppscan.models import DataQualityIssue, MergeReview, Opportunity
from oppscan.opportunities.dedup import plan_deduplication
from oppscan.services.dedup_service import merge_notes
from oppscan.services.quality_service import QualityService
from tests.factories import make_opportunity, seed_opportunity, seed_patient, seed_pharmacy, seed_trigger


class TestPlan:
    def test_status_precedence_beats_estimate(self):
        submitted = make_opportunity(id=1, opportunity_id="A", status="Submitted", annual_margin_gain=Decimal("10"))
        fresh = make_opportunity(id=2, opportunity_id="B", annual_margin_gain=Decimal("500"))
        [plan] = plan_deduplication([fresh, submitted])
        assert plan.keep is submitted
        assert plan.remove == [fresh]

    def test_highest_estimate_then_earliest(self):
        a = make_opportunity(id=1, opportunity_id="A", annual_margin_gain=Decimal("120"))
        b = make_opportunity(id=2, opportunity_id="B", annual_margin_gain=Decimal("340"))
        [plan] = plan_deduplication([a, b])
        assert plan.keep is b

        early = make_opportunity(id=3, opportunity_id="E", created_at=datetime(2026, 1, 1))
        late = make_opportunity(id=4, opportunity_id="L", created_at=datetime(2026, 3, 1))
        [plan] = plan_deduplication([late, early])
        assert plan.keep is early

    def test_actioned_losers_become_conflicts(self):
        approved = make_opportunity(id=1, opportunity_id="A", status="Approved")
        submitted = make_opportunity(id=2, opportunity_id="B", status="Submitted")
        [plan] = plan_deduplication([approved, submitted])
        assert plan.keep is approved
        assert plan.remove == []
        assert plan.conflicts == [submitted]

    def test_negatives_are_not_duplicates(self):
        denied = make_opportunity(id=1, opportunity_id="A", status="Denied")
        fresh = make_opportunity(id=2, opportunity_id="B")
        assert plan_deduplication([denied, fresh]) == []

    def test_key_uses_normalized_drug_name(self):
        a = make_opportunity(id=1, opportunity_id="A", recommended_drug_name="Pure Comfort Lancet")
        b = make_opportunity(id=2, opportunity_id="B", recommended_drug_name="PURE-COMFORT  LANCET")
        c = make_opportunity(id=3, opportunity_id="C", patient_id=2)
        plans = plan_deduplication([a, b, c])
        assert len(plans) == 1
        assert {plans[0].keep.opportunity_id, plans[0].remove[0].opportunity_id} == {"A", "B"}


def test_merge_notes():
    assert merge_notes(None, "called MD", "OPP-2") == "[merged from OPP-2] called MD"
    assert merge_notes("called MD", "called MD", "OPP-2") == "called MD"
    assert merge_notes("kept", "  ", "OPP-2") == "kept"


@pytest.mark.asyncio
class TestDedupService:
    async def _seed_pair(self, session_factory, low_status="Not Submitted", high_status="Not Submitted"):
        async with session_factory() as session, session.begin():
            pharmacy = await seed_pharmacy(session)
            patient = await seed_patient(session, pharmacy)
            low = await seed_opportunity(
                session, pharmacy, patient,
                annual_margin_gain=Decimal("120.00"), status=low_status, staff_notes="left voicemail",
            )
            high = await seed_opportunity(
                session, pharmacy, patient, annual_margin_gain=Decimal("340.00"), status=high_status,
            )
            return low.opportunity_id, high.opportunity_id

    async def test_keeps_higher_estimate_and_moves_notes(self, scan_engine, session_factory):
        low_id, high_id = await self._seed_pair(session_factory)

        result = await scan_engine.deduplicate()

        assert result.groups == 1
        assert result.removed == 1
        async with session_factory() as session:
            remaining = list((await session.execute(select(Opportunity))).scalars())
        assert [o.opportunity_id for o in remaining] == [high_id]
        assert remaining[0].annual_margin_gain == Decimal("340.00")
        assert "left voicemail" in remaining[0].staff_notes

    async def test_dry_run_changes_nothing(self, scan_engine, session_factory):
        low_id, high_id = await self._seed_pair(session_factory)

        result = await scan_engine.deduplicate(dry_run=True)

        assert result.removed == 1
        assert result.preview[0]["keep"] == high_id
        assert result.preview[0]["remove"] == [low_id]
        async with session_factory() as session:
            remaining = list((await session.execute(select(Opportunity))).scalars())
        assert len(remaining) == 2

    async def test_actioned_duplicate_gets_one_merge_review(self, scan_engine, session_factory):
        low_id, high_id = await self._seed_pair(session_factory, low_status="Submitted", high_status="Approved")

        first = await scan_engine.deduplicate()
        second = await scan_engine.deduplicate()

        assert first.merge_reviews == 1
        assert second.merge_reviews == 0
        async with session_factory() as session:
            remaining = list((await session.execute(select(Opportunity))).scalars())
            reviews = list((await session.execute(select(MergeReview))).scalars())
        assert {o.status for o in remaining} == {"Submitted", "Approved"}
        assert len(reviews) == 1
        assert reviews[0].kept_opportunity_id == high_id
        assert reviews[0].duplicate_opportunity_id == low_id
        assert reviews[0].status == "pending"

    async def test_second_run_is_a_no_op(self, scan_engine, session_factory):
        await self._seed_pair(session_factory)
        await scan_engine.deduplicate()
        again = await scan_engine.deduplicate()
        assert again.groups == 0
        assert again.removed == 0

    async def test_removed_duplicate_takes_its_issues_along(self, scan_engine, session_factory):
        async with session_factory() as session, session.begin():
            pharmacy = await seed_pharmacy(session)
            patient = await seed_patient(session, pharmacy)
            trigger = await seed_trigger(session)
            kept = await seed_opportunity(
                session, pharmacy, patient, trigger_id=trigger.id, status="Submitted",
            )
            loser = await seed_opportunity(
                session, pharmacy, patient, trigger_id=trigger.id, prescriber_name=None,
            )
            kept_id, loser_pk = kept.opportunity_id, loser.id
            await QualityService(session).sync(loser)

        async with session_factory() as session:
            [issue] = list((await session.execute(select(DataQualityIssue))).scalars())
        assert issue.opportunity_id == loser_pk

        result = await scan_engine.deduplicate()

        assert result.removed == 1
        async with session_factory() as session:
            remaining = list((await session.execute(select(Opportunity))).scalars())
            issues = list((await session.execute(select(DataQualityIssue))).scalars())
        assert [o.opportunity_id for o in remaining] == [kept_id]
        assert issues == []
