"""
Compliance case state machine.

The transition table is the only place case lifecycle rules live.
ComplianceTransaction.apply_transition checks every status change against it.
"""

from enum import Enum
from typing import Optional

from chainscreen.errors import StateTransitionError


class TransactionStatus(str, Enum):
    """Review status of a compliance case."""

    UNASSIGNED = "UNASSIGNED"
    UNREVIEWED = "UNREVIEWED"
    IN_REVIEW = "IN_REVIEW"
    APPROVED = "APPROVED"
    HOLD = "HOLD"
    CLOSED_WITH_NOTE = "CLOSED_WITH_NOTE"
    CLOSED_WITH_SAR = "CLOSED_WITH_SAR"


TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.UNASSIGNED: frozenset({TransactionStatus.UNREVIEWED}),
    TransactionStatus.UNREVIEWED: frozenset({TransactionStatus.IN_REVIEW}),
    TransactionStatus.IN_REVIEW: frozenset({
        TransactionStatus.APPROVED,
        TransactionStatus.HOLD,
    }),
    TransactionStatus.APPROVED: frozenset({
        TransactionStatus.CLOSED_WITH_NOTE,
        TransactionStatus.CLOSED_WITH_SAR,
    }),
    TransactionStatus.HOLD: frozenset({
        TransactionStatus.IN_REVIEW,
        TransactionStatus.CLOSED_WITH_NOTE,
        TransactionStatus.CLOSED_WITH_SAR,
    }),
    TransactionStatus.CLOSED_WITH_NOTE: frozenset(),
    TransactionStatus.CLOSED_WITH_SAR: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Statuses a case may be created in. Cases below the organization's
# thresholds are opened already closed with an explanatory note.
INITIAL_STATUSES = frozenset({
    TransactionStatus.UNASSIGNED,
    TransactionStatus.CLOSED_WITH_NOTE,
})


def allowed_transitions(status: TransactionStatus) -> frozenset[TransactionStatus]:
    return TRANSITIONS[status]


def is_terminal(status: TransactionStatus) -> bool:
    return status in TERMINAL_STATUSES


def check_transition(
    current: TransactionStatus,
    target: TransactionStatus,
    notes: Optional[str] = None,
    sar_report_ref: Optional[str] = None,
) -> None:
    """
    Validate a status change and its preconditions.

    Raises:
        StateTransitionError: if the edge is not in the table or a
            precondition (SAR reference, closing note) is missing
    """
    allowed = allowed_transitions(current)
    allowed_names = [s.value for s in allowed]

    if target not in allowed:
        raise StateTransitionError(current.value, target.value, allowed_names)

    if target == TransactionStatus.CLOSED_WITH_SAR and not (sar_report_ref or "").strip():
        raise StateTransitionError(
            current.value, target.value, allowed_names,
            reason="a SAR report reference is required",
        )

    if target == TransactionStatus.CLOSED_WITH_NOTE and not (notes or "").strip():
        raise StateTransitionError(
            current.value, target.value, allowed_names,
            reason="a closing note is required",
        )
