"""Treasury alerts derived from the balance and the loan tracker. Nothing is stored."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from treasury.models.expense_request import ExpenseRequest
from treasury.services.association_service import AssociationService
from treasury.services.balance_service import OPEN_SPENDING_STATUSES, BalanceService
from treasury.services.loan_service import LoanService
from treasury.services.locale_service import format_amount
from treasury.services.localizer import t

logger = logging.getLogger(__name__)


class AlertType(str, Enum):
    LOW_BALANCE = "low_balance"
    NEGATIVE_BALANCE = "negative_balance"
    LATE_REPAYMENTS = "late_repayments"
    LARGE_PENDING_EXPENSES = "large_pending_expenses"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Alert:
    type: AlertType
    severity: AlertSeverity
    message: str
    value: Decimal | int


def build_alerts(
    available_balance: Decimal,
    threshold: Decimal,
    late_repayments: int,
    large_pending_expenses: int,
    currency: str = "EUR",
) -> list[Alert]:
    """Alerts for the given figures.

    low_balance and negative_balance are exclusive: a negative balance is
    reported once, as critical.
    """
    alerts = []
    if available_balance < 0:
        alerts.append(
            Alert(
                AlertType.NEGATIVE_BALANCE,
                AlertSeverity.CRITICAL,
                t("alerts.negative_balance", amount=format_amount(available_balance, currency)),
                available_balance,
            )
        )
    elif available_balance < threshold:
        alerts.append(
            Alert(
                AlertType.LOW_BALANCE,
                AlertSeverity.WARNING,
                t("alerts.low_balance", amount=format_amount(available_balance, currency)),
                available_balance,
            )
        )
    if late_repayments > 0:
        alerts.append(
            Alert(
                AlertType.LATE_REPAYMENTS,
                AlertSeverity.WARNING,
                t("alerts.late_repayments", count=late_repayments),
                late_repayments,
            )
        )
    if large_pending_expenses > 0:
        alerts.append(
            Alert(
                AlertType.LARGE_PENDING_EXPENSES,
                AlertSeverity.INFO,
                t("alerts.large_pending_expenses", count=large_pending_expenses),
                large_pending_expenses,
            )
        )
    return alerts


class AlertService:
    """Collect alert inputs for one association."""

    def __init__(
        self,
        session: AsyncSession,
        balance: BalanceService | None = None,
        loans: LoanService | None = None,
    ):
        self.session = session
        self.balance = balance or BalanceService(session)
        self.loans = loans or LoanService(session)
        self.associations = AssociationService(session)

    async def count_large_pending_expenses(self, association_id: int, available_balance: Decimal) -> int:
        """Open requests asking for more than the available balance."""
        result = await self.session.execute(
            select(func.count(ExpenseRequest.id)).where(
                ExpenseRequest.association_id == association_id,
                ExpenseRequest.status.in_(OPEN_SPENDING_STATUSES),
                ExpenseRequest.amount_requested > available_balance,
            )
        )
        return int(result.scalar_one())

    async def get_alerts(self, association_id: int) -> list[Alert]:
        association = await self.associations.get_association(association_id)
        snapshot = await self.balance.get_available_balance(association_id)
        late = await self.loans.count_late_installments(association_id)
        large = await self.count_large_pending_expenses(association_id, snapshot.available_balance)

        alerts = build_alerts(
            snapshot.available_balance,
            AssociationService.low_balance_threshold(association),
            late,
            large,
            association.currency,
        )
        if alerts:
            logger.info(
                "Association %s alerts: %s", association_id, [alert.type.value for alert in alerts]
            )
        return alerts


__all__ = ["Alert", "AlertService", "AlertSeverity", "AlertType", "build_alerts"]
