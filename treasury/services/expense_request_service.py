"""Expense request workflow: persistence and orchestration around workflow.py.

Every transition runs in one database transaction: status change,
validation record, audit log and (on payment) ledger entry commit together
or not at all. Transitions on the same request are serialized three ways:
an in-process asyncio.Lock per request, SELECT ... FOR UPDATE where the
database supports it, and the optimistic version column (StaleDataError
triggers a reload and a bounded retry).
"""

import asyncio
import logging
import weakref
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from treasury.config.settings import settings
from treasury.models import utcnow
from treasury.models.audit_log import AuditLog
from treasury.models.association import BureauRole
from treasury.models.expense_request import (
    ExpenseRequest,
    ExpenseStatus,
    PaymentMethod,
    PaymentMode,
    UrgencyLevel,
)
from treasury.models.ledger_entry import LedgerEntry
from treasury.models.validation_record import Decision, ValidationRecord
from treasury.services import workflow
from treasury.services.association_service import AssociationService
from treasury.services.audit_service import AuditService
from treasury.services.balance_service import BalanceService
from treasury.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from treasury.services.events import (
    DomainEvent,
    EventBus,
    PaymentFailed,
    PaymentRetried,
    RequestCancelled,
    RequestCreated,
    RequestDecided,
    RequestPaid,
    RequestResubmitted,
    event_bus,
)
from treasury.services.ledger_service import LOAN_DISBURSEMENT_TYPE, LedgerService
from treasury.services.loan_terms import loan_terms_to_json, parse_loan_terms
from treasury.services.money import parse_amount
from treasury.services.workflow import WorkflowEvent

logger = logging.getLogger(__name__)

SUPPORTED_CURRENCIES = ("EUR", "USD", "GBP", "CAD", "CHF", "XOF", "XAF")

# Expense type any member may submit; every other type needs a bureau role
MEMBER_EXPENSE_TYPE = "aide_membre"

BUREAU_ROLES = frozenset(role.value for role in BureauRole)

EDITABLE_FIELDS = ("title", "description", "amount_requested", "urgency_level", "expected_impact")


class RequestLockRegistry:
    """One asyncio.Lock per expense request id, dropped when nobody holds it."""

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, request_id: int) -> asyncio.Lock:
        lock = self._locks.get(request_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[request_id] = lock
        return lock


request_locks = RequestLockRegistry()


def _parse_enum(enum_cls, value, field: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid {field}: {value!r}", field=field, allowed=[m.value for m in enum_cls]
        ) from e


def _as_utc(value: datetime | None, field: str) -> datetime | None:
    """Convert an aware timestamp to UTC; naive ones are ambiguous and rejected."""
    if value is None:
        return None
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(f"{field} must carry a timezone offset", field=field, value=value.isoformat())
    return value.astimezone(timezone.utc)


class ExpenseRequestService:
    """Create expense requests and move them through the approval workflow."""

    def __init__(
        self,
        session: AsyncSession,
        events: EventBus | None = None,
        locks: RequestLockRegistry | None = None,
        retry_attempts: int | None = None,
    ):
        """Initialize with database session.

        Args:
            session: AsyncSession for database operations
            events: Bus receiving events after commit (default: module bus)
            locks: Per-request lock registry (default: process-wide registry)
            retry_attempts: Attempts when a concurrent write invalidated a transition
        """
        self.session = session
        self.events = events or event_bus
        self.locks = locks or request_locks
        self.retry_attempts = max(1, retry_attempts or settings.decision_retry_attempts)
        self.associations = AssociationService(session)
        self.balance = BalanceService(session)
        self.ledger = LedgerService(session)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def get_request(self, association_id: int, request_id: int) -> ExpenseRequest:
        """Load a request of an association.

        Raises:
            NotFoundError: If the request does not exist in this association
        """
        request = await self.session.get(ExpenseRequest, request_id)
        if request is None or request.association_id != association_id:
            raise NotFoundError(
                f"Expense request {request_id} not found",
                association_id=association_id,
                request_id=request_id,
            )
        return request

    async def _load_for_update(self, association_id: int, request_id: int) -> ExpenseRequest:
        result = await self.session.execute(
            select(ExpenseRequest)
            .where(ExpenseRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None or request.association_id != association_id:
            raise NotFoundError(
                f"Expense request {request_id} not found",
                association_id=association_id,
                request_id=request_id,
            )
        return request

    async def list_requests(
        self,
        association_id: int,
        status: ExpenseStatus | str | None = None,
        expense_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ExpenseRequest]:
        """Requests of an association, newest first."""
        stmt = select(ExpenseRequest).where(ExpenseRequest.association_id == association_id)
        if status is not None:
            stmt = stmt.where(ExpenseRequest.status == _parse_enum(ExpenseStatus, status, "status"))
        if expense_type is not None:
            stmt = stmt.where(ExpenseRequest.expense_type == expense_type)
        stmt = stmt.order_by(ExpenseRequest.id.desc()).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_pending_validations(self, association_id: int, user_id: int) -> list[ExpenseRequest]:
        """Requests still waiting for the caller's role to approve."""
        role = await self.associations.role_of(user_id, association_id)
        if role is None:
            return []
        result = await self.session.execute(
            select(ExpenseRequest)
            .where(
                ExpenseRequest.association_id == association_id,
                ExpenseRequest.status.in_([ExpenseStatus.PENDING, ExpenseStatus.UNDER_REVIEW]),
            )
            .order_by(ExpenseRequest.id)
        )
        # required_validators is JSON; filter in Python to stay dialect-neutral
        return [
            request
            for request in result.scalars().all()
            if role in workflow.missing_roles(request.required_validators, request.validation_records)
        ]

    async def validation_progress(self, association_id: int, request_id: int) -> dict[str, Any]:
        request = await self.get_request(association_id, request_id)
        progress = workflow.validation_progress(request.required_validators, request.validation_records)
        progress["missing_roles"] = workflow.missing_roles(
            request.required_validators, request.validation_records
        )
        return progress

    async def audit_trail(self, association_id: int, request_id: int) -> list[AuditLog]:
        """Audit rows of a request, oldest first."""
        request = await self.get_request(association_id, request_id)
        return await AuditService.history(self.session, "expense_request", request.id)

    async def find_unreconciled_payments(self, association_id: int) -> list[ExpenseRequest]:
        """Paid requests without their ledger entry. Empty under normal operation."""
        result = await self.session.execute(
            select(ExpenseRequest)
            .outerjoin(LedgerEntry, LedgerEntry.id == ExpenseRequest.transaction_id)
            .where(
                ExpenseRequest.association_id == association_id,
                ExpenseRequest.status == ExpenseStatus.PAID,
                LedgerEntry.id.is_(None),
            )
        )
        requests = list(result.scalars().all())
        if requests:
            logger.error(
                "Association %s has %d paid request(s) without ledger entry: %s",
                association_id,
                len(requests),
                [r.id for r in requests],
            )
        return requests

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_request(
        self,
        association_id: int,
        requester_id: int,
        expense_type: str,
        title: str,
        amount_requested: Any,
        expense_subtype: str | None = None,
        description: str | None = None,
        expected_impact: str | None = None,
        urgency_level: UrgencyLevel | str = UrgencyLevel.NORMAL,
        currency: str | None = None,
        beneficiary_id: int | None = None,
        beneficiary_external: dict[str, Any] | None = None,
        is_loan: bool = False,
        loan_terms: dict[str, Any] | None = None,
        section_id: int | None = None,
    ) -> ExpenseRequest:
        """Create a pending expense request.

        Raises:
            NotFoundError: Unknown association
            AuthorizationError: Requester is not an active member, or needs a bureau role
            ValidationError: Bad amount, subtype cap exceeded, bad loan terms, ...
        """
        association = await self.associations.get_association(association_id)
        role = await self.associations.role_of(requester_id, association_id)
        if role is None:
            raise AuthorizationError(
                "Only active members can submit expense requests",
                association_id=association_id,
                user_id=requester_id,
            )
        if expense_type != MEMBER_EXPENSE_TYPE and role not in BUREAU_ROLES:
            raise AuthorizationError(
                f"A bureau role is required to submit {expense_type} requests",
                role=role,
                expense_type=expense_type,
            )

        if not expense_type:
            raise ValidationError("expense_type is required", field="expense_type")
        configured_types = association.expense_types or {}
        if configured_types and expense_type not in configured_types:
            raise ValidationError(
                f"Expense type {expense_type} is not configured for this association",
                field="expense_type",
                allowed=sorted(configured_types),
            )
        if not title or not title.strip():
            raise ValidationError("title is required", field="title")

        amount = parse_amount(amount_requested, "amount_requested")
        self._check_max_amount(association, expense_type, expense_subtype, amount)

        currency = (currency or association.currency or settings.default_currency).upper()
        if currency not in SUPPORTED_CURRENCIES:
            raise ValidationError(
                f"Unsupported currency {currency}", field="currency", allowed=list(SUPPORTED_CURRENCIES)
            )

        if beneficiary_id is not None and beneficiary_external:
            raise ValidationError(
                "Give either an internal or an external beneficiary, not both", field="beneficiary"
            )
        if beneficiary_external is not None and not beneficiary_external.get("name"):
            raise ValidationError("External beneficiary needs a name", field="beneficiary_external")
        if expense_type == MEMBER_EXPENSE_TYPE and beneficiary_id is None and not beneficiary_external:
            beneficiary_id = requester_id

        terms_json = None
        if is_loan:
            terms_json = loan_terms_to_json(parse_loan_terms(loan_terms))
        elif loan_terms:
            raise ValidationError("loan_terms are only accepted on loan requests", field="loan_terms")

        request = ExpenseRequest(
            association_id=association_id,
            section_id=section_id,
            requester_id=requester_id,
            beneficiary_id=beneficiary_id,
            beneficiary_external=beneficiary_external or None,
            expense_type=expense_type,
            expense_subtype=expense_subtype,
            title=title.strip(),
            description=description,
            expected_impact=expected_impact,
            urgency_level=_parse_enum(UrgencyLevel, urgency_level, "urgency_level") or UrgencyLevel.NORMAL,
            amount_requested=amount,
            currency=currency,
            is_loan=is_loan,
            loan_terms=terms_json,
            status=ExpenseStatus.PENDING,
            required_validators=AssociationService.required_validators_for_type(association, expense_type),
            validation_records=[],
        )
        try:
            self.session.add(request)
            await self.session.flush()
            AuditService.log(
                self.session,
                "expense_request",
                request.id,
                "created",
                actor_id=requester_id,
                changes={"status": ExpenseStatus.PENDING, "amount_requested": amount},
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Expense request %s created in association %s: %s %s %s (validators=%s)",
            request.id,
            association_id,
            expense_type,
            amount,
            currency,
            request.required_validators,
        )
        await self.events.publish(
            RequestCreated(
                association_id=association_id,
                request_id=request.id,
                actor_id=requester_id,
                title=request.title,
                amount=amount,
                currency=currency,
                required_validators=tuple(request.required_validators),
            )
        )
        return request

    @staticmethod
    def _check_max_amount(association, expense_type: str, expense_subtype: str | None, amount: Decimal):
        max_amount = AssociationService.max_amount_for(association, expense_type, expense_subtype)
        if max_amount is not None and amount > max_amount:
            raise ValidationError(
                f"Amount exceeds the {max_amount} cap of subtype {expense_subtype}",
                field="amount_requested",
                max_amount=max_amount,
                amount=amount,
            )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _transition(
        self,
        association_id: int,
        request_id: int,
        apply: Callable[[ExpenseRequest], Awaitable[DomainEvent | None]],
    ) -> ExpenseRequest:
        """Run apply on a freshly locked request and commit, retrying on stale versions."""
        async with self.locks.get(request_id):
            for attempt in range(1, self.retry_attempts + 1):
                try:
                    request = await self._load_for_update(association_id, request_id)
                    event = await apply(request)
                    await self.session.commit()
                except StaleDataError:
                    await self.session.rollback()
                    logger.warning(
                        "Expense request %s changed concurrently (attempt %d/%d)",
                        request_id,
                        attempt,
                        self.retry_attempts,
                    )
                    if attempt == self.retry_attempts:
                        raise ConflictError(
                            "Request was modified concurrently, please retry",
                            request_id=request_id,
                        )
                    continue
                except Exception:
                    await self.session.rollback()
                    raise
                break

        if event is not None:
            await self.events.publish(event)
        return request

    async def _role(self, request: ExpenseRequest, user_id: int) -> str | None:
        return await self.associations.role_of(user_id, request.association_id)

    def _set_status(self, request: ExpenseRequest, event: WorkflowEvent, target: ExpenseStatus) -> ExpenseStatus:
        workflow.ensure_transition(request.status, event, target)
        previous = request.status
        request.status = target
        # Forces an UPDATE (and version check) even when only children changed
        request.updated_at = utcnow()
        return previous

    async def _ensure_requester_or_validator(self, request: ExpenseRequest, user_id: int) -> str | None:
        role = await self._role(request, user_id)
        if user_id != request.requester_id and role not in request.required_validators:
            raise AuthorizationError(
                "Only the requester or a required validator can do this",
                role=role,
                required_roles=request.required_validators,
            )
        return role

    async def _ensure_payment_role(self, request: ExpenseRequest, user_id: int) -> str:
        role = await self._role(request, user_id)
        if role not in request.required_validators and role != BureauRole.TRESORIER.value:
            raise AuthorizationError(
                "Only a required validator or the treasurer can handle payments",
                role=role,
                required_roles=request.required_validators,
            )
        return role

    async def decide(
        self,
        association_id: int,
        request_id: int,
        user_id: int,
        decision: Decision | str,
        comment: str | None = None,
        amount_approved: Any = None,
    ) -> ExpenseRequest:
        """Record a validator decision (approve, reject or request_info).

        Raises:
            ConflictError: Request not open for decisions, or role already approved
            AuthorizationError: Caller's role is not a required validator
            InsufficientFundsError: Approval amount not covered by the balance
            ValidationError: Unknown decision or bad approved amount
        """
        decision = workflow.parse_decision(decision)
        event = workflow.DECISION_EVENTS[decision]
        revised = parse_amount(amount_approved, "amount_approved") if amount_approved is not None else None

        async def apply(request: ExpenseRequest) -> DomainEvent:
            # Status first: a closed request answers Conflict whatever the role
            workflow.ensure_transition(request.status, event)
            role = workflow.ensure_role_can_decide(
                await self._role(request, user_id), request.required_validators
            )
            records = list(request.validation_records)

            if decision == Decision.APPROVED:
                workflow.ensure_not_duplicate(role, records, request.status)
                if revised is not None and revised > request.amount_requested and not (comment or "").strip():
                    raise ValidationError(
                        "Approving more than requested needs a comment",
                        field="amount_approved",
                        amount_requested=request.amount_requested,
                    )
                approved_amount = revised if revised is not None else (
                    request.amount_approved or request.amount_requested
                )
                await self.balance.ensure_sufficient_funds(request.association_id, approved_amount)

            record = ValidationRecord(
                user_id=user_id,
                role=role,
                decision=decision,
                comment=comment,
                amount_approved=revised if decision == Decision.APPROVED else None,
            )
            request.validation_records.append(record)

            if decision == Decision.APPROVED:
                if revised is not None:
                    request.amount_approved = revised
                target = workflow.status_after_approval(
                    request.required_validators, request.validation_records
                )
                if target == ExpenseStatus.APPROVED and request.amount_approved is None:
                    request.amount_approved = request.amount_requested
            elif decision == Decision.REJECTED:
                target = ExpenseStatus.REJECTED
                request.rejection_reason = comment
            else:
                target = ExpenseStatus.ADDITIONAL_INFO_NEEDED

            previous = self._set_status(request, event, target)
            AuditService.log(
                self.session,
                "expense_request",
                request.id,
                decision.value,
                actor_id=user_id,
                changes={
                    "role": role,
                    "status": AuditService.status_change(previous, target),
                    "amount_approved": request.amount_approved,
                },
            )
            logger.info(
                "Request %s: %s by %s (user %s), %s -> %s",
                request.id,
                decision.value,
                role,
                user_id,
                previous.value,
                target.value,
            )
            return RequestDecided(
                association_id=request.association_id,
                request_id=request.id,
                actor_id=user_id,
                role=role,
                decision=decision.value,
                new_status=target.value,
                comment=comment,
                amount_approved=request.amount_approved,
                remaining_roles=tuple(
                    workflow.missing_roles(request.required_validators, request.validation_records)
                ),
                currency=request.currency,
            )

        return await self._transition(association_id, request_id, apply)

    async def cancel(
        self, association_id: int, request_id: int, user_id: int, reason: str | None = None
    ) -> ExpenseRequest:
        """Cancel an open request (requester or required validator)."""

        async def apply(request: ExpenseRequest) -> DomainEvent:
            workflow.ensure_transition(request.status, WorkflowEvent.CANCEL)
            await self._ensure_requester_or_validator(request, user_id)
            request.rejection_reason = reason
            previous = self._set_status(request, WorkflowEvent.CANCEL, ExpenseStatus.CANCELLED)
            AuditService.log(
                self.session,
                "expense_request",
                request.id,
                "cancelled",
                actor_id=user_id,
                changes={
                    "status": AuditService.status_change(previous, ExpenseStatus.CANCELLED),
                    "reason": reason,
                },
            )
            logger.info("Request %s cancelled by user %s", request.id, user_id)
            return RequestCancelled(
                association_id=request.association_id,
                request_id=request.id,
                actor_id=user_id,
                reason=reason,
            )

        return await self._transition(association_id, request_id, apply)

    async def confirm_payment(
        self,
        association_id: int,
        request_id: int,
        user_id: int,
        payment_mode: PaymentMode | str = PaymentMode.MANUAL,
        payment_method: PaymentMethod | str | None = None,
        manual_payment_reference: str | None = None,
        paid_at: datetime | None = None,
    ) -> ExpenseRequest:
        """Pay an approved request.

        The funds check here is authoritative. The ledger entry, the status
        change and the audit log are committed in one transaction.

        Raises:
            ConflictError: Request is not approved
            ValidationError: paid_at has no timezone offset
            InsufficientFundsError: Balance no longer covers the amount
            LedgerError: Ledger entry could not be written (nothing is committed)
        """
        mode = _parse_enum(PaymentMode, payment_mode, "payment_mode") or PaymentMode.MANUAL
        method = _parse_enum(PaymentMethod, payment_method, "payment_method")
        paid_at = _as_utc(paid_at, "paid_at")

        async def apply(request: ExpenseRequest) -> DomainEvent:
            workflow.ensure_transition(request.status, WorkflowEvent.CONFIRM_PAYMENT)
            await self._ensure_payment_role(request, user_id)

            amount = request.payable_amount
            await self.balance.ensure_sufficient_funds(request.association_id, amount)

            entry = await self.ledger.append_entry(
                association_id=request.association_id,
                type=LOAN_DISBURSEMENT_TYPE if request.is_loan else request.expense_type,
                amount=amount,
                currency=request.currency,
                description=f"Paiement: {request.title}",
                expense_request_id=request.id,
            )
            request.payment_mode = mode
            request.payment_method = method
            request.manual_payment_reference = manual_payment_reference
            request.payment_validated_by = user_id
            request.transaction_id = entry.id
            request.paid_at = paid_at or utcnow()
            if request.amount_approved is None:
                request.amount_approved = amount
            previous = self._set_status(request, WorkflowEvent.CONFIRM_PAYMENT, ExpenseStatus.PAID)
            AuditService.log(
                self.session,
                "expense_request",
                request.id,
                "paid",
                actor_id=user_id,
                changes={
                    "status": AuditService.status_change(previous, ExpenseStatus.PAID),
                    "amount": amount,
                    "transaction_id": entry.id,
                },
            )
            logger.info(
                "Request %s paid: %s %s (ledger entry %s)", request.id, amount, request.currency, entry.id
            )
            return RequestPaid(
                association_id=request.association_id,
                request_id=request.id,
                actor_id=user_id,
                amount=amount,
                currency=request.currency,
                transaction_id=entry.id,
                is_loan=request.is_loan,
            )

        return await self._transition(association_id, request_id, apply)

    async def mark_payment_failed(
        self, association_id: int, request_id: int, user_id: int, reason: str | None = None
    ) -> ExpenseRequest:
        """Record that the payment of an approved request failed."""

        async def apply(request: ExpenseRequest) -> DomainEvent:
            workflow.ensure_transition(request.status, WorkflowEvent.PAYMENT_FAILED)
            await self._ensure_payment_role(request, user_id)
            request.payment_failure_reason = reason
            previous = self._set_status(request, WorkflowEvent.PAYMENT_FAILED, ExpenseStatus.PAYMENT_FAILED)
            AuditService.log(
                self.session,
                "expense_request",
                request.id,
                "payment_failed",
                actor_id=user_id,
                changes={
                    "status": AuditService.status_change(previous, ExpenseStatus.PAYMENT_FAILED),
                    "reason": reason,
                },
            )
            logger.warning("Payment of request %s failed: %s", request.id, reason)
            return PaymentFailed(
                association_id=request.association_id,
                request_id=request.id,
                actor_id=user_id,
                reason=reason,
            )

        return await self._transition(association_id, request_id, apply)

    async def retry_payment(self, association_id: int, request_id: int, user_id: int) -> ExpenseRequest:
        """Put a failed payment back to approved so it can be confirmed again."""

        async def apply(request: ExpenseRequest) -> DomainEvent:
            workflow.ensure_transition(request.status, WorkflowEvent.RETRY_PAYMENT)
            await self._ensure_payment_role(request, user_id)
            previous = self._set_status(request, WorkflowEvent.RETRY_PAYMENT, ExpenseStatus.APPROVED)
            AuditService.log(
                self.session,
                "expense_request",
                request.id,
                "payment_retry",
                actor_id=user_id,
                changes={"status": AuditService.status_change(previous, ExpenseStatus.APPROVED)},
            )
            return PaymentRetried(
                association_id=request.association_id, request_id=request.id, actor_id=user_id
            )

        return await self._transition(association_id, request_id, apply)

    async def resubmit(
        self, association_id: int, request_id: int, user_id: int, comment: str | None = None
    ) -> ExpenseRequest:
        """Send a request back to review once the requested information is provided."""

        async def apply(request: ExpenseRequest) -> DomainEvent:
            workflow.ensure_transition(request.status, WorkflowEvent.RESUBMIT)
            await self._ensure_requester_or_validator(request, user_id)
            if comment:
                request.description = f"{request.description}\n\n{comment}" if request.description else comment
            target = workflow.status_after_resubmit(request.validation_records)
            previous = self._set_status(request, WorkflowEvent.RESUBMIT, target)
            AuditService.log(
                self.session,
                "expense_request",
                request.id,
                "resubmitted",
                actor_id=user_id,
                changes={"status": AuditService.status_change(previous, target)},
            )
            return RequestResubmitted(
                association_id=request.association_id,
                request_id=request.id,
                actor_id=user_id,
                new_status=target.value,
            )

        return await self._transition(association_id, request_id, apply)

    async def update_request(
        self, association_id: int, request_id: int, user_id: int, **changes: Any
    ) -> ExpenseRequest:
        """Edit title, description, amount, urgency or expected impact of an open request.

        Raises:
            ValidationError: Unknown field or invalid value
            ConflictError: Request closed, or amount changed after an approval
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Fields cannot be edited: {sorted(unknown)}", allowed=list(EDITABLE_FIELDS)
            )

        async def apply(request: ExpenseRequest) -> None:
            if request.status not in workflow.EDITABLE_STATUSES:
                raise ConflictError(
                    f"Cannot edit a request in status {request.status.value}",
                    current_status=request.status,
                )
            await self._ensure_requester_or_validator(request, user_id)

            applied: dict[str, Any] = {}
            for field, value in changes.items():
                if value is None:
                    continue
                if field == "amount_requested":
                    value = parse_amount(value, "amount_requested")
                    if value == request.amount_requested:
                        continue
                    if workflow.approved_roles(request.validation_records):
                        raise ConflictError(
                            "Amount cannot change once an approval is recorded",
                            current_status=request.status,
                        )
                    association = await self.associations.get_association(request.association_id)
                    self._check_max_amount(association, request.expense_type, request.expense_subtype, value)
                elif field == "urgency_level":
                    value = _parse_enum(UrgencyLevel, value, "urgency_level")
                elif field == "title" and not str(value).strip():
                    raise ValidationError("title is required", field="title")
                setattr(request, field, value)
                applied[field] = value

            if applied:
                request.updated_at = utcnow()
                AuditService.log(
                    self.session, "expense_request", request.id, "updated", actor_id=user_id, changes=applied
                )
            return None

        return await self._transition(association_id, request_id, apply)


__all__ = [
    "BUREAU_ROLES",
    "EDITABLE_FIELDS",
    "ExpenseRequestService",
    "MEMBER_EXPENSE_TYPE",
    "RequestLockRegistry",
    "SUPPORTED_CURRENCIES",
    "request_locks",
]
