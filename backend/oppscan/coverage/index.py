"""
Coverage confidence lookup.

Built from a trigger's CoverageRecord rows once per scan, then consulted for
every candidate opportunity. Ranking, most specific first:

  excluded  exact (BIN, group) record is excluded
  verified  exact (BIN, group) record is verified
  excluded  BIN-wide (no group) exclusion override
  likely    no exact record, but another group under the BIN is verified
  unknown   nothing usable
"""

from dataclasses import dataclass
from decimal import Decimal

from oppscan.claims import normalize_bin, normalize_group
from oppscan.coverage.resolver import EXCLUDED, UNKNOWN, VERIFIED

LIKELY = "likely"

CONFIDENCE_LEVELS = (EXCLUDED, VERIFIED, LIKELY, UNKNOWN)


@dataclass(frozen=True)
class CoverageEntry:
    insurance_bin: str
    insurance_group: str | None
    coverage_status: str
    profit_per_fill: Decimal | None = None
    best_drug_name: str | None = None
    best_ndc: str | None = None

    @classmethod
    def from_record(cls, record) -> "CoverageEntry":
        """Flatten a CoverageRecord, letting admin overrides win."""
        status = EXCLUDED if record.is_excluded else record.coverage_status
        profit = record.profit_per_fill
        drug_name = record.best_drug_name
        ndc = record.best_ndc
        if record.is_manual_override:
            profit = record.manual_profit if record.manual_profit is not None else profit
            drug_name = record.manual_drug_name or drug_name
            ndc = record.manual_ndc or ndc
            if status == UNKNOWN and profit is not None and profit > 0:
                status = VERIFIED
        return cls(
            insurance_bin=record.insurance_bin,
            insurance_group=normalize_group(record.insurance_group),
            coverage_status=status,
            profit_per_fill=profit,
            best_drug_name=drug_name,
            best_ndc=ndc,
        )


class CoverageIndex:
    """Coverage entries for one trigger keyed by (BIN, group)."""

    def __init__(self, entries=()):
        self._exact: dict[tuple[str, str | None], CoverageEntry] = {}
        self._by_bin: dict[str, list[CoverageEntry]] = {}
        for entry in entries:
            key = (entry.insurance_bin, entry.insurance_group)
            self._exact[key] = entry
            self._by_bin.setdefault(entry.insurance_bin, []).append(entry)

    @classmethod
    def from_records(cls, records) -> "CoverageIndex":
        return cls(CoverageEntry.from_record(r) for r in records)

    def __len__(self) -> int:
        return len(self._exact)

    def exact(self, insurance_bin, insurance_group) -> CoverageEntry | None:
        return self._exact.get((normalize_bin(insurance_bin), normalize_group(insurance_group)))

    def confidence(self, insurance_bin, insurance_group) -> str:
        ins_bin = normalize_bin(insurance_bin)
        if ins_bin is None:
            return UNKNOWN

        exact = self.exact(ins_bin, insurance_group)
        if exact is not None:
            return exact.coverage_status

        bin_wide = self._exact.get((ins_bin, None))
        if bin_wide is not None and bin_wide.coverage_status == EXCLUDED:
            return EXCLUDED

        if any(e.coverage_status == VERIFIED for e in self._by_bin.get(ins_bin, [])):
            return LIKELY
        return UNKNOWN

    def exact_profit(self, insurance_bin, insurance_group) -> Decimal | None:
        """Profit from an exact verified record; BIN-level evidence is never used as a price."""
        exact = self.exact(insurance_bin, insurance_group)
        if exact is None or exact.coverage_status != VERIFIED:
            return None
        if exact.profit_per_fill is None or exact.profit_per_fill <= 0:
            return None
        return exact.profit_per_fill
