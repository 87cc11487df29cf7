"""Balance, financial summary, statistics and alert API routes."""

from decimal import Decimal

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from treasury.api.errors import raise_app_error
from treasury.api.schemas import (
    AlertResponse,
    BalanceResponse,
    ExpenseRequestResponse,
    ExpenseStatisticsResponse,
    FinancialSummaryResponse,
    FundsCheckResponse,
    MonthlyBalanceResponse,
    QuickSummaryResponse,
)
from treasury.services import get_async_session
from treasury.services.alert_service import AlertService
from treasury.services.association_service import AssociationService
from treasury.services.balance_service import BalanceService
from treasury.services.errors import TreasuryError
from treasury.services.expense_request_service import ExpenseRequestService
from treasury.services.money import parse_amount

router = APIRouter(prefix="/api/associations/{association_id}", tags=["treasury"])


async def _ensure_association(session: AsyncSession, association_id: int) -> None:
    await AssociationService(session).get_association(association_id)


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    association_id: int, session: AsyncSession = Depends(get_async_session)
) -> BalanceResponse:
    """available = income - paid expenses - outstanding loan principal."""
    try:
        await _ensure_association(session, association_id)
        snapshot = await BalanceService(session).get_available_balance(association_id)
    except TreasuryError as e:
        raise_app_error(e)
    return BalanceResponse.model_validate(snapshot)


@router.get("/balance/check", response_model=FundsCheckResponse)
async def check_funds(
    association_id: int,
    amount: Decimal,
    session: AsyncSession = Depends(get_async_session),
) -> FundsCheckResponse:
    try:
        await _ensure_association(session, association_id)
        check = await BalanceService(session).check_sufficient_funds(
            association_id, parse_amount(amount)
        )
    except TreasuryError as e:
        raise_app_error(e)
    return FundsCheckResponse.model_validate(check)


@router.get("/balance/history", response_model=list[MonthlyBalanceResponse])
async def get_balance_history(
    association_id: int,
    months: int = 12,
    session: AsyncSession = Depends(get_async_session),
) -> list[MonthlyBalanceResponse]:
    try:
        await _ensure_association(session, association_id)
        history = await BalanceService(session).get_balance_history(association_id, months)
    except TreasuryError as e:
        raise_app_error(e)
    return [MonthlyBalanceResponse.model_validate(month) for month in history]


@router.get("/financial-summary", response_model=FinancialSummaryResponse)
async def get_financial_summary(
    association_id: int,
    period: str = "all",
    session: AsyncSession = Depends(get_async_session),
) -> FinancialSummaryResponse:
    """Balance, pending commitments, upcoming repayments and per-type spending."""
    try:
        await _ensure_association(session, association_id)
        summary = await BalanceService(session).get_financial_summary(association_id, period)
    except TreasuryError as e:
        raise_app_error(e)
    return FinancialSummaryResponse.model_validate(summary)


@router.get("/expense-statistics", response_model=ExpenseStatisticsResponse)
async def get_expense_statistics(
    association_id: int,
    period: str = "all",
    include_loans: bool = True,
    session: AsyncSession = Depends(get_async_session),
) -> ExpenseStatisticsResponse:
    """Paid totals and averages per type, request counts per status."""
    try:
        await _ensure_association(session, association_id)
        statistics = await BalanceService(session).get_expense_statistics(association_id, period, include_loans)
    except TreasuryError as e:
        raise_app_error(e)
    return ExpenseStatisticsResponse.model_validate(statistics)


@router.get("/expense-summary", response_model=QuickSummaryResponse)
async def get_quick_summary(
    association_id: int, session: AsyncSession = Depends(get_async_session)
) -> QuickSummaryResponse:
    try:
        await _ensure_association(session, association_id)
        summary = await BalanceService(session).get_quick_summary(association_id)
    except TreasuryError as e:
        raise_app_error(e)
    return QuickSummaryResponse.model_validate(summary)


@router.get("/alerts", response_model=list[AlertResponse])
async def get_alerts(
    association_id: int, session: AsyncSession = Depends(get_async_session)
) -> list[AlertResponse]:
    try:
        alerts = await AlertService(session).get_alerts(association_id)
    except TreasuryError as e:
        raise_app_error(e)
    return [AlertResponse.model_validate(alert) for alert in alerts]


@router.get("/reconciliation", response_model=list[ExpenseRequestResponse])
async def get_unreconciled_payments(
    association_id: int, session: AsyncSession = Depends(get_async_session)
) -> list[ExpenseRequestResponse]:
    """Paid requests missing their ledger entry (empty when the books are consistent)."""
    try:
        await _ensure_association(session, association_id)
        requests = await ExpenseRequestService(session).find_unreconciled_payments(association_id)
    except TreasuryError as e:
        raise_app_error(e)
    return [ExpenseRequestResponse.model_validate(r) for r in requests]
