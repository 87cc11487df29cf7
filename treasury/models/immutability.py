"""ORM-level immutability of treasury records.

Validation history, audit logs and loan repayments are never deleted.
Validation records and audit logs are never updated. Ledger entries only
change status. An expense request that reached paid, rejected or
cancelled keeps its fields.

Listeners fire during flush, before SQL reaches the database, so a
violating transaction is rolled back as a whole.
"""

from sqlalchemy import event, inspect

from treasury.models.audit_log import AuditLog
from treasury.models.expense_request import FROZEN_STATUSES, ExpenseRequest
from treasury.models.ledger_entry import LedgerEntry
from treasury.models.loan_repayment import LoanRepayment
from treasury.models.validation_record import ValidationRecord

_BOOKKEEPING_FIELDS = frozenset({"updated_at", "version"})
_LEDGER_MUTABLE_FIELDS = frozenset({"status", "updated_at"})


def _violation(message: str) -> Exception:
    # Inline import: services import models
    from treasury.services.errors import ImmutableRecordError

    return ImmutableRecordError(message)


def _changed_fields(target) -> set[str]:
    state = inspect(target)
    return {attr.key for attr in state.attrs if attr.history.has_changes()}


@event.listens_for(ValidationRecord, "before_update")
def _validation_record_update(mapper, connection, target):
    raise _violation(f"Validation record {target.id} is append-only")


@event.listens_for(ValidationRecord, "before_delete")
def _validation_record_delete(mapper, connection, target):
    raise _violation(f"Validation record {target.id} cannot be deleted")


@event.listens_for(AuditLog, "before_update")
def _audit_log_update(mapper, connection, target):
    raise _violation(f"Audit log {target.id} is append-only")


@event.listens_for(AuditLog, "before_delete")
def _audit_log_delete(mapper, connection, target):
    raise _violation(f"Audit log {target.id} cannot be deleted")


@event.listens_for(LedgerEntry, "before_update")
def _ledger_entry_update(mapper, connection, target):
    forbidden = _changed_fields(target) - _LEDGER_MUTABLE_FIELDS
    if forbidden:
        raise _violation(
            f"Ledger entry {target.id} only accepts status changes, got {sorted(forbidden)}"
        )


@event.listens_for(LedgerEntry, "before_delete")
def _ledger_entry_delete(mapper, connection, target):
    raise _violation(f"Ledger entry {target.id} cannot be deleted")


@event.listens_for(LoanRepayment, "before_delete")
def _loan_repayment_delete(mapper, connection, target):
    raise _violation(f"Loan repayment {target.id} cannot be deleted")


@event.listens_for(ExpenseRequest, "before_update")
def _expense_request_update(mapper, connection, target):
    status_history = inspect(target).attrs.status.history
    previous_status = status_history.deleted[0] if status_history.deleted else target.status
    if previous_status not in FROZEN_STATUSES:
        return
    forbidden = _changed_fields(target) - _BOOKKEEPING_FIELDS
    if forbidden:
        raise _violation(
            f"Expense request {target.id} is {previous_status.value}; "
            f"cannot modify {sorted(forbidden)}"
        )
