"""Loan repayment tracking API routes."""

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from treasury.api.errors import raise_app_error
from treasury.api.schemas import (
    LoanRepaymentResponse,
    LoanStatusResponse,
    RepaymentPayload,
    ScheduleInstallmentsPayload,
)
from treasury.services import get_async_session
from treasury.services.errors import TreasuryError
from treasury.services.loan_service import LoanService

router = APIRouter(prefix="/api/associations/{association_id}/loans", tags=["loans"])


@router.get("/{request_id}", response_model=LoanStatusResponse)
async def get_loan_status(
    association_id: int,
    request_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> LoanStatusResponse:
    """Repaid, outstanding, completion and late/upcoming installments of a loan."""
    try:
        loan_status = await LoanService(session).get_loan_status(association_id, request_id)
    except TreasuryError as e:
        raise_app_error(e)
    return LoanStatusResponse.model_validate(loan_status)


@router.get("/{request_id}/repayments", response_model=list[LoanRepaymentResponse])
async def list_repayments(
    association_id: int,
    request_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> list[LoanRepaymentResponse]:
    try:
        rows = await LoanService(session).repayment_history(association_id, request_id)
    except TreasuryError as e:
        raise_app_error(e)
    return [LoanRepaymentResponse.model_validate(row) for row in rows]


@router.post(
    "/{request_id}/repayments",
    response_model=LoanRepaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_repayment(
    association_id: int,
    request_id: int,
    payload: RepaymentPayload,
    user_id: int = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_async_session),
) -> LoanRepaymentResponse:
    """
    Record a repayment received on a paid loan.

    Returns:
        201: Validated repayment (excess_amount > 0 flags an over-repayment)
        403: Caller has no bureau role
        409: Loan not paid, or installment already validated
    """
    try:
        repayment = await LoanService(session).record_repayment(
            association_id,
            request_id,
            user_id,
            **payload.model_dump(),
        )
    except TreasuryError as e:
        raise_app_error(e)
    return LoanRepaymentResponse.model_validate(repayment)


@router.post(
    "/{request_id}/installments",
    response_model=list[LoanRepaymentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def schedule_installments(
    association_id: int,
    request_id: int,
    payload: ScheduleInstallmentsPayload,
    user_id: int = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_async_session),
) -> list[LoanRepaymentResponse]:
    try:
        rows = await LoanService(session).schedule_installments(
            association_id, request_id, user_id, first_due_date=payload.first_due_date
        )
    except TreasuryError as e:
        raise_app_error(e)
    return [LoanRepaymentResponse.model_validate(row) for row in rows]
