"""Tests for opportunity generation from a single claim."""

from decimal import Decimal

from oppscan.coverage.index import LIKELY, CoverageEntry, CoverageIndex
from oppscan.coverage.resolver import EXCLUDED, UNKNOWN, VERIFIED
from oppscan.opportunities.generator import (
    SKIP_COVERAGE_EXCLUDED,
    SKIP_EXCLUDED_KEYWORD,
    SKIP_NO_ESTIMATE,
    SKIP_NO_MATCH,
    SKIP_PATIENT_HISTORY,
    SKIP_PAYER_SCOPE,
    SKIP_PHARMACY_SCOPE,
    best_per_key,
    generate,
)
from tests.factories import make_claim, make_trigger

VERIFIED_XYZ = CoverageIndex([
    CoverageEntry("004336", "XYZ", VERIFIED, Decimal("45.00"), "PURE COMFORT LANCET 30G", "44444444444"),
])


class TestGenerate:
    def test_verified_exact_record_sets_estimate_and_ndc(self):
        draft = generate(make_trigger(), make_claim(), VERIFIED_XYZ).draft
        assert draft.coverage_confidence == VERIFIED
        assert draft.potential_margin_gain == Decimal("45.00")
        assert draft.annual_margin_gain == Decimal("540.00")
        assert draft.recommended_ndc == "44444444444"
        assert draft.prescriber_name == "DR SMITH"
        assert draft.current_drug_name == "PURE COMFORT LANCET"

    def test_likely_uses_default_profit_not_bin_profit(self):
        index = CoverageIndex([CoverageEntry("004336", "ABC", VERIFIED, Decimal("45.00"))])
        draft = generate(make_trigger(default_profit=Decimal("20")), make_claim(insurance_group="XYZ"), index).draft
        assert draft.coverage_confidence == LIKELY
        assert draft.potential_margin_gain == Decimal("20.00")
        assert draft.annual_margin_gain == Decimal("240.00")
        assert draft.recommended_ndc == "11111111111"

    def test_default_annual_fills(self):
        trigger = make_trigger(annual_fills=None)
        draft = generate(trigger, make_claim(), VERIFIED_XYZ, default_annual_fills=6).draft
        assert draft.annual_margin_gain == Decimal("270.00")

    def test_no_match(self):
        result = generate(make_trigger(), make_claim(drug_name="LISINOPRIL 10 MG"), VERIFIED_XYZ)
        assert result.draft is None
        assert result.skip_reason == SKIP_NO_MATCH

    def test_excluded_keyword(self):
        trigger = make_trigger(exclude_keywords=["SAFETY"])
        result = generate(trigger, make_claim(drug_name="SAFETY LANCET 30G"), VERIFIED_XYZ)
        assert result.skip_reason == SKIP_EXCLUDED_KEYWORD

    def test_excluded_coverage(self):
        index = CoverageIndex([CoverageEntry("004336", "XYZ", EXCLUDED)])
        assert generate(make_trigger(), make_claim(), index).skip_reason == SKIP_COVERAGE_EXCLUDED

    def test_no_estimate(self):
        index = CoverageIndex([CoverageEntry("004336", "XYZ", UNKNOWN)])
        trigger = make_trigger(default_profit=None)
        assert generate(trigger, make_claim(), index).skip_reason == SKIP_NO_ESTIMATE

    def test_payer_scope(self):
        assert generate(
            make_trigger(bin_exclusions=["004336"]), make_claim(), VERIFIED_XYZ,
        ).skip_reason == SKIP_PAYER_SCOPE
        assert generate(
            make_trigger(contract_prefix_exclusions=["S"]), make_claim(contract_id="S1234"), VERIFIED_XYZ,
        ).skip_reason == SKIP_PAYER_SCOPE
        assert generate(
            make_trigger(group_inclusions=["ABC"]), make_claim(), VERIFIED_XYZ,
        ).skip_reason == SKIP_PAYER_SCOPE

    def test_pharmacy_scope(self):
        result = generate(make_trigger(pharmacy_inclusions=["2"]), make_claim(pharmacy_id=1), VERIFIED_XYZ)
        assert result.skip_reason == SKIP_PHARMACY_SCOPE

    def test_patient_history_conditions(self):
        trigger = make_trigger(if_has_keywords=["METFORMIN"])
        claim = make_claim()
        assert generate(trigger, claim, VERIFIED_XYZ).skip_reason == SKIP_PATIENT_HISTORY
        assert generate(trigger, claim, VERIFIED_XYZ, patient_drugs=["METFORMIN 500 MG"]).draft is not None

        trigger = make_trigger(if_not_has_keywords=["INSULIN"])
        assert generate(trigger, claim, VERIFIED_XYZ, patient_drugs=["INSULIN GLARGINE"]).skip_reason == SKIP_PATIENT_HISTORY


class TestBestPerKey:
    def test_keeps_highest_estimate(self):
        low = generate(make_trigger(), make_claim(), CoverageIndex()).draft
        high = generate(make_trigger(), make_claim(), VERIFIED_XYZ).draft
        other_patient = generate(make_trigger(), make_claim(patient_id=2), VERIFIED_XYZ).draft
        kept = best_per_key([low, high, other_patient])
        assert len(kept) == 2
        assert high in kept and low not in kept
