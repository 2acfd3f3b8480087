"""
Opportunity Generator

Turns one (trigger, claim) pair into an opportunity draft, or explains why
not. Whether the draft becomes a new row, refreshes an existing one, or is
dropped because staff already acted on that patient/drug is decided by
OpportunityWriter, which has the session.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from oppscan.coverage.index import CoverageIndex
from oppscan.coverage.resolver import EXCLUDED, VERIFIED
from oppscan.matching.keywords import match, mentions_any, normalize_drug_text
from oppscan.pricing.normalizer import parse_money

CENTS = Decimal("0.01")
DEFAULT_ANNUAL_FILLS = 12

# Skip reasons, reported per trigger in scan stats
SKIP_NO_MATCH = "no_match"
SKIP_EXCLUDED_KEYWORD = "excluded_keyword"
SKIP_PHARMACY_SCOPE = "pharmacy_scope"
SKIP_PAYER_SCOPE = "payer_scope"
SKIP_PATIENT_HISTORY = "patient_history"
SKIP_COVERAGE_EXCLUDED = "coverage_excluded"
SKIP_NO_ESTIMATE = "no_estimate"

DedupKey = tuple[int, int, str]


def dedup_key(pharmacy_id: int, patient_id: int, recommended_drug_name: str | None) -> DedupKey:
    return pharmacy_id, patient_id, normalize_drug_text(recommended_drug_name)


@dataclass
class OpportunityDraft:
    pharmacy_id: int
    patient_id: int
    trigger_id: int
    prescription_id: int
    opportunity_type: str
    current_drug_name: str | None
    current_ndc: str | None
    recommended_drug_name: str
    recommended_ndc: str | None
    insurance_bin: str | None
    insurance_group: str | None
    potential_margin_gain: Decimal
    annual_margin_gain: Decimal
    coverage_confidence: str
    prescriber_name: str | None = None
    prescriber_npi: str | None = None
    clinical_rationale: str | None = None

    @property
    def key(self) -> DedupKey:
        return dedup_key(self.pharmacy_id, self.patient_id, self.recommended_drug_name)


@dataclass
class Generation:
    draft: OpportunityDraft | None = None
    skip_reason: str | None = None


def pharmacy_in_scope(trigger, pharmacy_id) -> bool:
    inclusions = [str(p) for p in (trigger.pharmacy_inclusions or [])]
    return not inclusions or str(pharmacy_id) in inclusions


def payer_in_scope(trigger, claim) -> bool:
    """BIN / group / contract-prefix restrictions configured on the trigger."""
    ins_bin = (claim.insurance_bin or "").strip()
    ins_group = (claim.insurance_group or "").strip().upper()

    bin_inclusions = [str(b).strip() for b in (trigger.bin_inclusions or [])]
    if bin_inclusions and ins_bin not in bin_inclusions:
        return False
    bin_exclusions = [str(b).strip() for b in (trigger.bin_exclusions or [])]
    if ins_bin and ins_bin in bin_exclusions:
        return False

    # A claim with no group is not rejected by a group allow-list
    group_inclusions = [str(g).strip().upper() for g in (trigger.group_inclusions or [])]
    if group_inclusions and ins_group and ins_group not in group_inclusions:
        return False
    group_exclusions = [str(g).strip().upper() for g in (trigger.group_exclusions or [])]
    if ins_group and ins_group in group_exclusions:
        return False

    contract = (claim.contract_id or "").upper()
    prefixes = [str(p).upper() for p in (trigger.contract_prefix_exclusions or []) if p]
    if contract and any(contract.startswith(p) for p in prefixes):
        return False
    return True


def patient_history_allows(trigger, patient_drugs) -> bool:
    if trigger.if_has_keywords and not mentions_any(patient_drugs, trigger.if_has_keywords):
        return False
    if trigger.if_not_has_keywords and mentions_any(patient_drugs, trigger.if_not_has_keywords):
        return False
    return True


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def generate(
    trigger,
    claim,
    coverage: CoverageIndex,
    *,
    patient_drugs=(),
    default_annual_fills: int = DEFAULT_ANNUAL_FILLS,
) -> Generation:
    """Build an opportunity draft for one claim, or return the skip reason.

    `patient_drugs` is every drug name the patient filled in the scan window,
    used for the trigger's if-has / if-not-has conditions.
    """
    result = match(claim.drug_name, trigger)
    if not result.matched:
        return Generation(skip_reason=SKIP_NO_MATCH)
    if result.excluded:
        return Generation(skip_reason=SKIP_EXCLUDED_KEYWORD)
    if not pharmacy_in_scope(trigger, claim.pharmacy_id):
        return Generation(skip_reason=SKIP_PHARMACY_SCOPE)
    if not payer_in_scope(trigger, claim):
        return Generation(skip_reason=SKIP_PAYER_SCOPE)
    if not patient_history_allows(trigger, list(patient_drugs)):
        return Generation(skip_reason=SKIP_PATIENT_HISTORY)

    confidence = coverage.confidence(claim.insurance_bin, claim.insurance_group)
    if confidence == EXCLUDED:
        return Generation(skip_reason=SKIP_COVERAGE_EXCLUDED)

    # Price only from the exact payer record; BIN-level evidence raises
    # confidence but never sets the number
    monthly = coverage.exact_profit(claim.insurance_bin, claim.insurance_group)
    if monthly is None:
        monthly = parse_money(trigger.default_profit)
    if monthly is None or monthly <= 0:
        return Generation(skip_reason=SKIP_NO_ESTIMATE)

    fills = trigger.annual_fills or default_annual_fills
    exact = coverage.exact(claim.insurance_bin, claim.insurance_group)
    recommended_ndc = trigger.recommended_ndc
    if exact is not None and exact.coverage_status == VERIFIED and exact.best_ndc:
        recommended_ndc = exact.best_ndc

    draft = OpportunityDraft(
        pharmacy_id=claim.pharmacy_id,
        patient_id=claim.patient_id,
        trigger_id=trigger.id,
        prescription_id=claim.id,
        opportunity_type=trigger.trigger_type or "therapeutic_interchange",
        current_drug_name=claim.drug_name,
        current_ndc=claim.ndc,
        recommended_drug_name=trigger.recommended_drug or trigger.display_name,
        recommended_ndc=recommended_ndc,
        insurance_bin=claim.insurance_bin,
        insurance_group=claim.insurance_group,
        potential_margin_gain=_money(monthly),
        annual_margin_gain=_money(monthly * fills),
        coverage_confidence=confidence,
        prescriber_name=claim.prescriber_name,
        prescriber_npi=claim.prescriber_npi,
        clinical_rationale=trigger.clinical_rationale or f"{trigger.display_name} opportunity identified.",
    )
    return Generation(draft=draft)


def best_per_key(drafts) -> list[OpportunityDraft]:
    """One draft per dedup key, keeping the highest annual estimate (first seen on ties)."""
    best: dict[DedupKey, OpportunityDraft] = {}
    for draft in drafts:
        current = best.get(draft.key)
        if current is None or draft.annual_margin_gain > current.annual_margin_gain:
            best[draft.key] = draft
    return list(best.values())
