"""
Opportunity status lifecycle.

Higher precedence wins when duplicates are merged. The scanner only ever
creates NOT_SUBMITTED; every other state is applied by staff.
"""

DENIED = "Denied"
DECLINED = "Declined"
FLAGGED = "Flagged"
NOT_SUBMITTED = "Not Submitted"
SUBMITTED = "Submitted"
APPROVED = "Approved"
COMPLETED = "Completed"

STATUS_PRECEDENCE: dict[str, int] = {
    DENIED: 0,
    DECLINED: 0,
    FLAGGED: 2,
    NOT_SUBMITTED: 3,
    SUBMITTED: 4,
    APPROVED: 5,
    COMPLETED: 6,
}

# Terminal negatives may coexist with a fresh attempt for the same drug
NEGATIVE_STATUSES = frozenset({DENIED, DECLINED})


def precedence(status: str | None) -> int:
    """Unrecognised statuses rank just above the negatives so they are never deleted."""
    if status is None:
        return STATUS_PRECEDENCE[NOT_SUBMITTED]
    return STATUS_PRECEDENCE.get(status, 1)


def is_live(status: str | None) -> bool:
    return status not in NEGATIVE_STATUSES


def is_actioned(status: str | None) -> bool:
    """Anything other than the engine's default state is staff work."""
    return status is not None and status != NOT_SUBMITTED
