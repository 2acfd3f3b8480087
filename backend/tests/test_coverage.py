"""Tests for coverage resolution and confidence lookup."""

from datetime import timedelta
from decimal import Decimal

from oppscan.coverage.index import LIKELY, CoverageEntry, CoverageIndex
from oppscan.coverage.resolver import EXCLUDED, UNKNOWN, VERIFIED, min_days_supply, resolve
from oppscan.config import Settings
from oppscan.models import CoverageRecord
from oppscan.services.coverage_service import CoverageService
from tests.factories import AS_OF, make_claim, make_trigger


def _resolve(trigger, claims, **kwargs):
    return resolve(trigger, claims, as_of=AS_OF, **kwargs)


class TestResolver:
    def test_median_not_sum(self):
        claims = [
            make_claim(raw_data={"gross_profit": "10"}),
            make_claim(raw_data={"gross_profit": "30"}),
            make_claim(raw_data={"gross_profit": "1000"}),
        ]
        resolution = _resolve(make_trigger(), claims)
        assert len(resolution.results) == 1
        result = resolution.results[0]
        assert result.coverage_status == VERIFIED
        assert result.profit_per_fill == Decimal("30.00")
        assert result.verified_claim_count == 3
        assert result.matched_claim_count == 3

    def test_groups_by_bin_and_group(self):
        claims = [
            make_claim(insurance_group="XYZ"),
            make_claim(insurance_group="ABC"),
            make_claim(insurance_group=None),
        ]
        keys = [r.key for r in _resolve(make_trigger(), claims).results]
        assert keys == [("004336", None), ("004336", "ABC"), ("004336", "XYZ")]

    def test_unknown_when_nothing_normalizes(self):
        resolution = _resolve(make_trigger(), [make_claim(raw_data={})])
        result = resolution.results[0]
        assert result.coverage_status == UNKNOWN
        assert result.profit_per_fill is None
        assert result.matched_claim_count == 1
        assert resolution.unnormalized_claims == 1

    def test_admin_exclusion(self):
        resolution = _resolve(make_trigger(), [make_claim()], excluded_keys={("004336", "XYZ")})
        assert resolution.results[0].coverage_status == EXCLUDED

    def test_coverage_uses_recommended_drug_words(self):
        # Detection matches any lancet; coverage only counts the recommended product
        claims = [make_claim(drug_name="ACCU CHEK LANCET")]
        resolution = _resolve(make_trigger(detection_keywords=["LANCET"]), claims)
        assert resolution.results == []
        assert resolution.matched_claims == 0

    def test_excluded_claims_do_not_count(self):
        trigger = make_trigger(recommended_drug="LANCET", exclude_keywords=["SAFETY"])
        resolution = _resolve(trigger, [make_claim(drug_name="SAFETY LANCET")])
        assert resolution.results == []
        assert resolution.excluded_claims == 1

    def test_short_fills_are_dropped(self):
        resolution = _resolve(make_trigger(), [make_claim(days_supply=10)])
        assert resolution.results == []
        assert resolution.short_fill_claims == 1

    def test_floor_follows_expected_days_supply(self):
        trigger = make_trigger(expected_days_supply=90)
        assert min_days_supply(trigger) == 72
        resolution = _resolve(trigger, [make_claim(days_supply=60)])
        assert resolution.short_fill_claims == 1

    def test_lookback_window(self):
        old = make_claim(dispensed_date=AS_OF - timedelta(days=400))
        resolution = _resolve(make_trigger(), [old])
        assert resolution.out_of_window_claims == 1
        assert resolution.results == []

    def test_missing_bin(self):
        resolution = _resolve(make_trigger(), [make_claim(insurance_bin=None)])
        assert resolution.missing_bin_claims == 1

    def test_best_product_by_count_then_name(self):
        claims = [
            make_claim(drug_name="PURE COMFORT LANCET 30G", ndc="B"),
            make_claim(drug_name="PURE COMFORT LANCET 33G", ndc="A"),
            make_claim(drug_name="PURE COMFORT LANCET 33G", ndc="A"),
        ]
        result = _resolve(make_trigger(), claims).results[0]
        assert (result.best_drug_name, result.best_ndc) == ("PURE COMFORT LANCET 33G", "A")

        tied = [
            make_claim(drug_name="PURE COMFORT LANCET 33G", ndc="A"),
            make_claim(drug_name="PURE COMFORT LANCET 30G", ndc="B"),
        ]
        result = _resolve(make_trigger(), tied).results[0]
        assert result.best_drug_name == "PURE COMFORT LANCET 30G"

    def test_thresholds_off_by_default(self):
        resolution = _resolve(make_trigger(), [make_claim(raw_data={"gross_profit": "0.50"})])
        assert resolution.results[0].coverage_status == VERIFIED

    def test_min_claims_and_min_profit(self):
        claims = [make_claim(raw_data={"gross_profit": "8"}), make_claim(raw_data={"gross_profit": "12"})]

        too_few = _resolve(make_trigger(), claims, min_claims=3).results[0]
        too_cheap = _resolve(make_trigger(), claims, min_profit=Decimal("10.01")).results[0]
        enough = _resolve(make_trigger(), claims, min_claims=2, min_profit=Decimal("10")).results[0]

        assert too_few.coverage_status == UNKNOWN
        assert too_few.profit_per_fill == Decimal("10.00")
        assert too_cheap.coverage_status == UNKNOWN
        assert enough.coverage_status == VERIFIED

    def test_same_input_same_output(self):
        claims = [make_claim(insurance_group=g) for g in ("B", "A", "C")]
        assert _resolve(make_trigger(), claims) == _resolve(make_trigger(), list(reversed(claims)))


def _entry(group, status, profit=None, ndc=None):
    return CoverageEntry("004336", group, status, Decimal(profit) if profit else None, None, ndc)


class TestConfidence:
    def test_exact_verified(self):
        index = CoverageIndex([_entry("XYZ", VERIFIED, "45")])
        assert index.confidence("004336", "xyz") == VERIFIED
        assert index.exact_profit("004336", "XYZ") == Decimal("45")

    def test_likely_from_sibling_group(self):
        index = CoverageIndex([_entry("ABC", VERIFIED, "45")])
        assert index.confidence("004336", "XYZ") == LIKELY
        assert index.exact_profit("004336", "XYZ") is None

    def test_exact_excluded_beats_everything(self):
        index = CoverageIndex([_entry("XYZ", EXCLUDED), _entry("ABC", VERIFIED, "45")])
        assert index.confidence("004336", "XYZ") == EXCLUDED

    def test_bin_wide_exclusion(self):
        index = CoverageIndex([_entry(None, EXCLUDED), _entry("ABC", VERIFIED, "45")])
        assert index.confidence("004336", "XYZ") == EXCLUDED
        assert index.confidence("004336", "ABC") == VERIFIED

    def test_exact_unknown_stays_unknown(self):
        index = CoverageIndex([_entry("XYZ", UNKNOWN), _entry("ABC", VERIFIED, "45")])
        assert index.confidence("004336", "XYZ") == UNKNOWN

    def test_unknown_without_evidence(self):
        assert CoverageIndex().confidence("004336", "XYZ") == UNKNOWN
        assert CoverageIndex([_entry("XYZ", VERIFIED, "45")]).confidence(None, "XYZ") == UNKNOWN


class TestCoverageEntry:
    def _record(self, **overrides):
        fields = {
            "insurance_bin": "004336",
            "insurance_group": "",
            "coverage_status": UNKNOWN,
            "profit_per_fill": None,
            "best_drug_name": None,
            "best_ndc": None,
            "is_excluded": False,
            "is_manual_override": False,
            "manual_profit": None,
            "manual_drug_name": None,
            "manual_ndc": None,
        }
        fields.update(overrides)
        return CoverageRecord(**fields)

    def test_empty_group_means_any_group(self):
        assert CoverageEntry.from_record(self._record()).insurance_group is None

    def test_admin_exclusion_wins(self):
        entry = CoverageEntry.from_record(self._record(coverage_status=VERIFIED, is_excluded=True))
        assert entry.coverage_status == EXCLUDED

    def test_manual_override_values(self):
        entry = CoverageEntry.from_record(self._record(
            is_manual_override=True, manual_profit=Decimal("25"), manual_ndc="33333333333",
        ))
        assert entry.coverage_status == VERIFIED
        assert entry.profit_per_fill == Decimal("25")
        assert entry.best_ndc == "33333333333"


class TestThresholdSettings:
    def test_ndc_optimization_uses_its_own_floor(self):
        service = CoverageService(None, Settings(coverage_min_profit=10, coverage_min_profit_ndc=3))
        assert service._min_profit(make_trigger()) == Decimal("10")
        assert service._min_profit(make_trigger(trigger_type="ndc_optimization")) == Decimal("3")

    def test_unset_means_no_floor(self):
        assert CoverageService(None, Settings())._min_profit(make_trigger()) is None
