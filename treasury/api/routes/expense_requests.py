"""Expense request workflow API routes."""

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from treasury.api.errors import raise_app_error
from treasury.api.schemas import (
    AuditLogResponse,
    CreateExpenseRequestPayload,
    DecisionPayload,
    ExpenseRequestResponse,
    PaymentPayload,
    ReasonPayload,
    ResubmitPayload,
    UpdateExpenseRequestPayload,
    ValidationProgressResponse,
)
from treasury.models.expense_request import ExpenseStatus
from treasury.services import get_async_session
from treasury.services.errors import TreasuryError
from treasury.services.expense_request_service import ExpenseRequestService

router = APIRouter(
    prefix="/api/associations/{association_id}/expense-requests", tags=["expense-requests"]
)


@router.post("", response_model=ExpenseRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_expense_request(
    association_id: int,
    payload: CreateExpenseRequestPayload,
    user_id: int = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_async_session),
) -> ExpenseRequestResponse:
    """
    Submit a new expense request (status pending).

    Returns:
        201: Created request with its frozen required validators
        400: Invalid amount, subtype cap exceeded, invalid loan terms
        403: Caller is not a member, or needs a bureau role for this type
        404: Unknown association
    """
    try:
        request = await ExpenseRequestService(session).create_request(
            association_id=association_id,
            requester_id=user_id,
            expense_type=payload.expense_type,
            expense_subtype=payload.expense_subtype,
            title=payload.title,
            description=payload.description,
            expected_impact=payload.expected_impact,
            amount_requested=payload.amount_requested,
            currency=payload.currency,
            urgency_level=payload.urgency_level,
            beneficiary_id=payload.beneficiary_id,
            beneficiary_external=(
                payload.beneficiary_external.model_dump() if payload.beneficiary_external else None
            ),
            is_loan=payload.is_loan,
            loan_terms=payload.loan_terms.model_dump() if payload.loan_terms else None,
            section_id=payload.section_id,
        )
    except TreasuryError as e:
        raise_app_error(e)
    return ExpenseRequestResponse.model_validate(request)


@router.get("", response_model=list[ExpenseRequestResponse])
async def list_expense_requests(
    association_id: int,
    status: ExpenseStatus | None = None,
    expense_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
    session: AsyncSession = Depends(get_async_session),
) -> list[ExpenseRequestResponse]:
    """List requests of an association, newest first."""
    try:
        requests = await ExpenseRequestService(session).list_requests(
            association_id, status=status, expense_type=expense_type, limit=limit, offset=offset
        )
    except TreasuryError as e:
        raise_app_error(e)
    return [ExpenseRequestResponse.model_validate(r) for r in requests]


@router.get("/pending-validations", response_model=list[ExpenseRequestResponse])
async def list_pending_validations(
    association_id: int,
    user_id: int = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_async_session),
) -> list[ExpenseRequestResponse]:
    """Requests waiting for the caller's role."""
    requests = await ExpenseRequestService(session).list_pending_validations(association_id, user_id)
    return [ExpenseRequestResponse.model_validate(r) for r in requests]


@router.get("/{request_id}", response_model=ExpenseRequestResponse)
async def get_expense_request(
    association_id: int,
    request_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> ExpenseRequestResponse:
    try:
        request = await ExpenseRequestService(session).get_request(association_id, request_id)
    except TreasuryError as e:
        raise_app_error(e)
    return ExpenseRequestResponse.model_validate(request)


@router.get("/{request_id}/progress", response_model=ValidationProgressResponse)
async def get_validation_progress(
    association_id: int,
    request_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> ValidationProgressResponse:
    try:
        progress = await ExpenseRequestService(session).validation_progress(association_id, request_id)
    except TreasuryError as e:
        raise_app_error(e)
    return ValidationProgressResponse(**progress)


@router.get("/{request_id}/history", response_model=list[AuditLogResponse])
async def get_audit_trail(
    association_id: int,
    request_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> list[AuditLogResponse]:
    """Audit trail of a request: every transition with actor and changed fields."""
    try:
        rows = await ExpenseRequestService(session).audit_trail(association_id, request_id)
    except TreasuryError as e:
        raise_app_error(e)
    return [AuditLogResponse.model_validate(row) for row in rows]


@router.patch("/{request_id}", response_model=ExpenseRequestResponse)
async def update_expense_request(
    association_id: int,
    request_id: int,
    payload: UpdateExpenseRequestPayload,
    user_id: int = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_async_session),
) -> ExpenseRequestResponse:
    """Edit an open request. The amount is frozen once an approval is recorded."""
    try:
        request = await ExpenseRequestService(session).update_request(
            association_id, request_id, user_id, **payload.model_dump(exclude_unset=True)
        )
    except TreasuryError as e:
        raise_app_error(e)
    return ExpenseRequestResponse.model_validate(request)


@router.post("/{request_id}/decisions", response_model=ExpenseRequestResponse)
async def decide_expense_request(
    association_id: int,
    request_id: int,
    payload: DecisionPayload,
    user_id: int = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_async_session),
) -> ExpenseRequestResponse:
    """
    Approve, reject or request more information.

    Returns:
        200: Request after the decision
        400: Insufficient funds for the approved amount
        403: Caller's role is not a required validator
        409: Request closed for decisions, or role already approved
    """
    try:
        request = await ExpenseRequestService(session).decide(
            association_id,
            request_id,
            user_id,
            payload.decision,
            comment=payload.comment,
            amount_approved=payload.amount_approved,
        )
    except TreasuryError as e:
        raise_app_error(e)
    return ExpenseRequestResponse.model_validate(request)


@router.post("/{request_id}/cancel", response_model=ExpenseRequestResponse)
async def cancel_expense_request(
    association_id: int,
    request_id: int,
    payload: ReasonPayload,
    user_id: int = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_async_session),
) -> ExpenseRequestResponse:
    try:
        request = await ExpenseRequestService(session).cancel(
            association_id, request_id, user_id, reason=payload.reason
        )
    except TreasuryError as e:
        raise_app_error(e)
    return ExpenseRequestResponse.model_validate(request)


@router.post("/{request_id}/resubmit", response_model=ExpenseRequestResponse)
async def resubmit_expense_request(
    association_id: int,
    request_id: int,
    payload: ResubmitPayload,
    user_id: int = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_async_session),
) -> ExpenseRequestResponse:
    try:
        request = await ExpenseRequestService(session).resubmit(
            association_id, request_id, user_id, comment=payload.comment
        )
    except TreasuryError as e:
        raise_app_error(e)
    return ExpenseRequestResponse.model_validate(request)


@router.post("/{request_id}/payment", response_model=ExpenseRequestResponse)
async def confirm_payment(
    association_id: int,
    request_id: int,
    payload: PaymentPayload,
    user_id: int = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_async_session),
) -> ExpenseRequestResponse:
    """
    Confirm the payment of an approved request.

    Returns:
        200: Paid request with its ledger transaction_id
        400: Insufficient funds (body carries available_balance and shortage)
        409: Request is not approved
    """
    try:
        request = await ExpenseRequestService(session).confirm_payment(
            association_id,
            request_id,
            user_id,
            payment_mode=payload.payment_mode,
            payment_method=payload.payment_method,
            manual_payment_reference=payload.manual_payment_reference,
            paid_at=payload.paid_at,
        )
    except TreasuryError as e:
        raise_app_error(e)
    return ExpenseRequestResponse.model_validate(request)


@router.post("/{request_id}/payment-failure", response_model=ExpenseRequestResponse)
async def mark_payment_failed(
    association_id: int,
    request_id: int,
    payload: ReasonPayload,
    user_id: int = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_async_session),
) -> ExpenseRequestResponse:
    try:
        request = await ExpenseRequestService(session).mark_payment_failed(
            association_id, request_id, user_id, reason=payload.reason
        )
    except TreasuryError as e:
        raise_app_error(e)
    return ExpenseRequestResponse.model_validate(request)


@router.post("/{request_id}/payment-retry", response_model=ExpenseRequestResponse)
async def retry_payment(
    association_id: int,
    request_id: int,
    user_id: int = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_async_session),
) -> ExpenseRequestResponse:
    try:
        request = await ExpenseRequestService(session).retry_payment(association_id, request_id, user_id)
    except TreasuryError as e:
        raise_app_error(e)
    return ExpenseRequestResponse.model_validate(request)
