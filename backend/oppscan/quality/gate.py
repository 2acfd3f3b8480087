"""
Data-Quality Gate checks.

An opportunity with no prescriber or no current drug cannot be faxed or
explained to a prescriber, so it is held back until someone fixes it.
Legacy rows (no trigger) are not checked: the scanner did not produce them
and flagging them would flood the review queue.
"""

from dataclasses import dataclass

UNKNOWN_SENTINEL = "UNKNOWN"

MISSING_PRESCRIBER = "missing_prescriber"
UNKNOWN_PRESCRIBER = "unknown_prescriber"
MISSING_CURRENT_DRUG = "missing_current_drug"
UNKNOWN_CURRENT_DRUG = "unknown_current_drug"

# field name -> (issue type when missing, issue type when unknown)
CHECKED_FIELDS = {
    "prescriber_name": (MISSING_PRESCRIBER, UNKNOWN_PRESCRIBER),
    "current_drug_name": (MISSING_CURRENT_DRUG, UNKNOWN_CURRENT_DRUG),
}


@dataclass(frozen=True)
class AttributionIssue:
    issue_type: str
    field_name: str
    original_value: str | None

    @property
    def description(self) -> str:
        label = self.field_name.replace("_", " ")
        state = "missing" if self.original_value is None else "unknown"
        return f"Opportunity has {state} {label} - needs review before showing to staff"


def _is_missing(value: str | None) -> bool:
    return value is None or not value.strip()


def _is_unknown(value: str) -> bool:
    return UNKNOWN_SENTINEL in value.upper()


def in_scope(opportunity) -> bool:
    return opportunity.trigger_id is not None


def find_issues(opportunity) -> list[AttributionIssue]:
    """Attribution problems on a trigger-attributed opportunity."""
    if not in_scope(opportunity):
        return []
    issues = []
    for field_name, (missing_type, unknown_type) in CHECKED_FIELDS.items():
        value = getattr(opportunity, field_name)
        if _is_missing(value):
            issues.append(AttributionIssue(missing_type, field_name, None))
        elif _is_unknown(value):
            issues.append(AttributionIssue(unknown_type, field_name, value))
    return issues
