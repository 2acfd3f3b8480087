"""
Coverage Resolver

Reduces a trigger's recent claims to one coverage result per
(BIN, group): how many claims show the payer reimbursing the recommended
product, the median profit per standard fill, and the concrete product that
was dispensed most often.

Median rather than mean: one claim with a broken quantity or a mistyped
profit column would otherwise set the estimate for the whole payer.
"""

import math
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from statistics import median

from oppscan.matching.keywords import coverage_keywords, match
from oppscan.pricing.normalizer import effective_days_supply, normalize

VERIFIED = "verified"
EXCLUDED = "excluded"
UNKNOWN = "unknown"

PayerKey = tuple[str, str | None]

CENTS = Decimal("0.01")


@dataclass
class CoverageResult:
    insurance_bin: str
    insurance_group: str | None
    coverage_status: str
    verified_claim_count: int = 0
    matched_claim_count: int = 0
    profit_per_fill: Decimal | None = None
    best_drug_name: str | None = None
    best_ndc: str | None = None

    @property
    def key(self) -> PayerKey:
        return self.insurance_bin, self.insurance_group


@dataclass
class CoverageResolution:
    """Coverage results plus the counts operators need to tell "found nothing" from "misconfigured"."""
    results: list[CoverageResult] = field(default_factory=list)
    matched_claims: int = 0
    excluded_claims: int = 0
    short_fill_claims: int = 0
    out_of_window_claims: int = 0
    missing_bin_claims: int = 0
    unnormalized_claims: int = 0


def min_days_supply(trigger, default_min: int = 28, floor_ratio: float = 0.8) -> int:
    """Shortest fill that still counts as a full fill for this trigger."""
    if trigger.expected_days_supply:
        return math.floor(trigger.expected_days_supply * floor_ratio)
    return default_min


def _cents(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def _meets_thresholds(count: int, profit: Decimal, min_claims: int, min_profit: Decimal | None) -> bool:
    if count < max(min_claims, 1):
        return False
    return min_profit is None or profit >= min_profit


def _best_product(claims) -> tuple[str | None, str | None]:
    counts = Counter((c.drug_name, c.ndc) for c in claims)
    if not counts:
        return None, None
    (name, ndc), _ = min(counts.items(), key=lambda kv: (-kv[1], kv[0][0] or "", kv[0][1] or ""))
    return name, ndc


def resolve(
    trigger,
    claims,
    *,
    as_of: date,
    lookback_days: int = 365,
    default_min_days_supply: int = 28,
    floor_ratio: float = 0.8,
    excluded_keys: frozenset[PayerKey] | set[PayerKey] = frozenset(),
    min_claims: int = 1,
    min_profit: Decimal | None = None,
) -> CoverageResolution:
    """Resolve coverage for one trigger from ScanClaim-like objects.

    Args:
        trigger: Trigger (or anything with the same attributes)
        claims: claims already filtered to the scan's pharmacies
        as_of: end of the lookback window
        excluded_keys: (BIN, group) pairs an admin marked excluded
        min_claims: fewest normalized claims that can verify a payer
        min_profit: lowest median per-fill profit that can verify a payer;
            None accepts any positive profit

    Returns:
        CoverageResolution with results sorted by BIN then group
    """
    resolution = CoverageResolution()
    keywords = coverage_keywords(trigger)
    window_start = as_of - timedelta(days=lookback_days)
    min_days = min_days_supply(trigger, default_min_days_supply, floor_ratio)

    groups: dict[PayerKey, list] = defaultdict(list)
    for claim in claims:
        result = match(claim.drug_name, trigger, keywords)
        if not result.matched:
            continue
        resolution.matched_claims += 1
        if result.excluded:
            resolution.excluded_claims += 1
            continue
        if claim.dispensed_date is None or not (window_start <= claim.dispensed_date <= as_of):
            resolution.out_of_window_claims += 1
            continue
        if effective_days_supply(claim.days_supply, claim.quantity_dispensed) < min_days:
            resolution.short_fill_claims += 1
            continue
        if not claim.insurance_bin:
            resolution.missing_bin_claims += 1
            continue
        groups[(claim.insurance_bin, claim.insurance_group)].append(claim)

    for key in sorted(groups, key=lambda k: (k[0], k[1] or "")):
        members = groups[key]
        profits = []
        for claim in members:
            value = normalize(claim, trigger)
            if value is None:
                resolution.unnormalized_claims += 1
            else:
                profits.append(value)

        profit = _cents(median(profits)) if profits else None
        if key in excluded_keys:
            status = EXCLUDED
        elif profit is not None and _meets_thresholds(len(profits), profit, min_claims, min_profit):
            status = VERIFIED
        else:
            status = UNKNOWN

        best_name, best_ndc = _best_product(members)
        resolution.results.append(CoverageResult(
            insurance_bin=key[0],
            insurance_group=key[1],
            coverage_status=status,
            verified_claim_count=len(profits),
            matched_claim_count=len(members),
            profit_per_fill=profit,
            best_drug_name=best_name,
            best_ndc=best_ndc,
        ))

    return resolution
