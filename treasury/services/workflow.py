"""Expense request state machine.

TRANSITIONS is the single authoritative table of which event may move a
request from which status to which. Everything here is pure: it reads a
request and its validation records, never the database.
"""

from enum import Enum
from typing import Iterable

from treasury.models.expense_request import ExpenseStatus
from treasury.models.validation_record import Decision, ValidationRecord
from treasury.services.errors import AuthorizationError, ConflictError, ValidationError


class WorkflowEvent(str, Enum):
    """Events that move an expense request between statuses."""

    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_INFO = "request_info"
    CONFIRM_PAYMENT = "confirm_payment"
    PAYMENT_FAILED = "payment_failed"
    CANCEL = "cancel"
    RESUBMIT = "resubmit"
    RETRY_PAYMENT = "retry_payment"


_REVIEWABLE = (ExpenseStatus.PENDING, ExpenseStatus.UNDER_REVIEW)
_CANCELLABLE = (*_REVIEWABLE, ExpenseStatus.ADDITIONAL_INFO_NEEDED)

# (from status, event) -> allowed target statuses
TRANSITIONS: dict[tuple[ExpenseStatus, WorkflowEvent], frozenset[ExpenseStatus]] = {
    **{
        (status, WorkflowEvent.APPROVE): frozenset(
            {ExpenseStatus.UNDER_REVIEW, ExpenseStatus.APPROVED}
        )
        for status in _REVIEWABLE
    },
    **{(status, WorkflowEvent.REJECT): frozenset({ExpenseStatus.REJECTED}) for status in _REVIEWABLE},
    **{
        (status, WorkflowEvent.REQUEST_INFO): frozenset({ExpenseStatus.ADDITIONAL_INFO_NEEDED})
        for status in _REVIEWABLE
    },
    **{(status, WorkflowEvent.CANCEL): frozenset({ExpenseStatus.CANCELLED}) for status in _CANCELLABLE},
    (ExpenseStatus.APPROVED, WorkflowEvent.CONFIRM_PAYMENT): frozenset({ExpenseStatus.PAID}),
    (ExpenseStatus.APPROVED, WorkflowEvent.PAYMENT_FAILED): frozenset({ExpenseStatus.PAYMENT_FAILED}),
    (ExpenseStatus.ADDITIONAL_INFO_NEEDED, WorkflowEvent.RESUBMIT): frozenset(
        {ExpenseStatus.PENDING, ExpenseStatus.UNDER_REVIEW}
    ),
    (ExpenseStatus.PAYMENT_FAILED, WorkflowEvent.RETRY_PAYMENT): frozenset({ExpenseStatus.APPROVED}),
}

# Statuses in which the requester may still edit the request
EDITABLE_STATUSES = frozenset(_CANCELLABLE)

DECISION_EVENTS = {
    Decision.APPROVED: WorkflowEvent.APPROVE,
    Decision.REJECTED: WorkflowEvent.REJECT,
    Decision.INFO_REQUESTED: WorkflowEvent.REQUEST_INFO,
}


def allowed_targets(status: ExpenseStatus, event: WorkflowEvent) -> frozenset[ExpenseStatus]:
    return TRANSITIONS.get((status, event), frozenset())


def is_valid_transition(status: ExpenseStatus, event: WorkflowEvent, target: ExpenseStatus) -> bool:
    return target in allowed_targets(status, event)


def ensure_transition(
    status: ExpenseStatus, event: WorkflowEvent, target: ExpenseStatus | None = None
) -> None:
    """Raise ConflictError unless event is accepted in status (and may lead to target)."""
    targets = allowed_targets(status, event)
    if not targets or (target is not None and target not in targets):
        raise ConflictError(
            f"Cannot {event.value} a request in status {status.value}",
            current_status=status,
            event=event,
        )


def approved_roles(records: Iterable[ValidationRecord]) -> set[str]:
    return {record.role for record in records if record.decision == Decision.APPROVED}


def has_rejection(records: Iterable[ValidationRecord]) -> bool:
    return any(record.decision == Decision.REJECTED for record in records)


def missing_roles(required: Iterable[str], records: Iterable[ValidationRecord]) -> list[str]:
    """Required roles without an approval yet, in required order."""
    approved = approved_roles(records)
    return [role for role in required if role not in approved]


def quorum_reached(required: Iterable[str], records: Iterable[ValidationRecord]) -> bool:
    """True when every required role approved and nobody rejected."""
    records = list(records)
    return not has_rejection(records) and not missing_roles(required, records)


def status_after_approval(required: Iterable[str], records: Iterable[ValidationRecord]) -> ExpenseStatus:
    """Status after an approval has been appended to records."""
    if quorum_reached(required, records):
        return ExpenseStatus.APPROVED
    return ExpenseStatus.UNDER_REVIEW


def status_after_resubmit(records: Iterable[ValidationRecord]) -> ExpenseStatus:
    """Back to pending when nobody approved yet, otherwise under_review."""
    if approved_roles(records):
        return ExpenseStatus.UNDER_REVIEW
    return ExpenseStatus.PENDING


def validation_progress(required: list[str], records: Iterable[ValidationRecord]) -> dict:
    """completed / total / percentage of required approvals."""
    total = len(required)
    completed = total - len(missing_roles(required, records))
    percentage = round(completed * 100 / total) if total else 100
    return {"completed": completed, "total": total, "percentage": percentage}


def parse_decision(value: str | Decision) -> Decision:
    """Map API input to a Decision.

    Raises:
        ValidationError: If value is not approved, rejected or info_requested
    """
    if isinstance(value, Decision):
        return value
    try:
        return Decision(value)
    except ValueError as e:
        raise ValidationError(
            f"Unknown decision {value!r}", allowed=[d.value for d in Decision]
        ) from e


def ensure_role_can_decide(role: str | None, required: Iterable[str]) -> str:
    """Return role when it is one of the required validators.

    Raises:
        AuthorizationError: If the caller holds no required role
    """
    required = list(required)
    if role is None or role not in required:
        raise AuthorizationError(
            "Your role cannot validate this request", role=role, required_roles=required
        )
    return role


def ensure_not_duplicate(
    role: str, records: Iterable[ValidationRecord], current_status: ExpenseStatus | None = None
) -> None:
    """One approval per role.

    Raises:
        ConflictError: If role already approved, carrying the current status
    """
    if role in approved_roles(records):
        raise ConflictError("duplicate validation", role=role, current_status=current_status)


__all__ = [
    "DECISION_EVENTS",
    "EDITABLE_STATUSES",
    "TRANSITIONS",
    "WorkflowEvent",
    "allowed_targets",
    "approved_roles",
    "ensure_not_duplicate",
    "ensure_role_can_decide",
    "ensure_transition",
    "has_rejection",
    "is_valid_transition",
    "missing_roles",
    "parse_decision",
    "quorum_reached",
    "status_after_approval",
    "status_after_resubmit",
    "validation_progress",
]
