"""Pydantic schemas of the treasury API."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from treasury.models.expense_request import ExpenseStatus, PaymentMethod, PaymentMode, UrgencyLevel
from treasury.models.loan_repayment import RepaymentStatus
from treasury.models.validation_record import Decision
from treasury.services.alert_service import AlertSeverity, AlertType
from treasury.services.loan_service import LoanRepaymentStatus


class ExternalBeneficiary(BaseModel):
    name: str = Field(..., min_length=1)
    contact: str | None = None


class LoanTermsPayload(BaseModel):
    duration_months: int
    interest_rate: Decimal = Decimal("0")
    monthly_payment: Decimal | None = None
    start_date: date | None = None


class CreateExpenseRequestPayload(BaseModel):
    """Request payload for POST /api/associations/{id}/expense-requests."""

    expense_type: str = Field(..., description="aide_membre, depense_operationnelle, ...")
    expense_subtype: str | None = None
    title: str = Field(..., max_length=255)
    description: str | None = None
    expected_impact: str | None = None
    amount_requested: Decimal = Field(..., description="Amount asked for, > 0")
    currency: str | None = Field(None, description="ISO code, association currency by default")
    urgency_level: UrgencyLevel = UrgencyLevel.NORMAL
    beneficiary_id: int | None = None
    beneficiary_external: ExternalBeneficiary | None = None
    is_loan: bool = False
    loan_terms: LoanTermsPayload | None = None
    section_id: int | None = None


class UpdateExpenseRequestPayload(BaseModel):
    title: str | None = Field(None, max_length=255)
    description: str | None = None
    amount_requested: Decimal | None = None
    urgency_level: UrgencyLevel | None = None
    expected_impact: str | None = None


class DecisionPayload(BaseModel):
    decision: Decision
    comment: str | None = None
    amount_approved: Decimal | None = None


class ReasonPayload(BaseModel):
    reason: str | None = None


class ResubmitPayload(BaseModel):
    comment: str | None = None


class PaymentPayload(BaseModel):
    payment_mode: PaymentMode = PaymentMode.MANUAL
    payment_method: PaymentMethod | None = None
    manual_payment_reference: str | None = None
    paid_at: datetime | None = None


class RepaymentPayload(BaseModel):
    amount: Decimal
    payment_date: date | None = None
    due_date: date | None = None
    installment_number: int | None = None
    principal_amount: Decimal | None = None
    interest_amount: Decimal | None = None
    payment_method: str | None = None
    manual_reference: str | None = None
    notes: str | None = None


class ScheduleInstallmentsPayload(BaseModel):
    first_due_date: date | None = None


class ValidationRecordResponse(BaseModel):
    id: int
    user_id: int
    role: str
    decision: Decision
    comment: str | None = None
    amount_approved: Decimal | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ExpenseRequestResponse(BaseModel):
    """Response schema for an expense request."""

    id: int
    association_id: int
    section_id: int | None = None
    requester_id: int
    beneficiary_id: int | None = None
    beneficiary_external: dict[str, Any] | None = None
    expense_type: str
    expense_subtype: str | None = None
    title: str
    description: str | None = None
    expected_impact: str | None = None
    urgency_level: UrgencyLevel
    amount_requested: Decimal
    amount_approved: Decimal | None = None
    currency: str
    is_loan: bool
    loan_terms: dict[str, Any] | None = None
    status: ExpenseStatus
    required_validators: list[str]
    validation_records: list[ValidationRecordResponse] = []
    rejection_reason: str | None = None
    payment_mode: PaymentMode | None = None
    payment_method: PaymentMethod | None = None
    manual_payment_reference: str | None = None
    payment_failure_reason: str | None = None
    transaction_id: int | None = None
    paid_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class AuditLogResponse(BaseModel):
    id: int
    action: str
    actor_id: int | None = None
    changes: dict[str, Any] | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ValidationProgressResponse(BaseModel):
    completed: int
    total: int
    percentage: int
    missing_roles: list[str]

    model_config = ConfigDict(from_attributes=True)


class LoanRepaymentResponse(BaseModel):
    id: int
    expense_request_id: int
    installment_number: int | None = None
    amount: Decimal
    principal_amount: Decimal
    interest_amount: Decimal
    excess_amount: Decimal
    due_date: date | None = None
    payment_date: date | None = None
    status: RepaymentStatus
    transaction_id: int | None = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class InstallmentResponse(BaseModel):
    id: int
    installment_number: int | None = None
    amount: Decimal
    due_date: date | None = None
    status: RepaymentStatus
    days_late: int
    penalty: Decimal = Decimal("0")

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class LoanStatusResponse(BaseModel):
    request_id: int
    loan_amount: Decimal
    currency: str
    total_repaid: Decimal
    total_interest: Decimal
    total_excess: Decimal
    outstanding: Decimal
    completion_percentage: int
    repayment_status: LoanRepaymentStatus
    overpaid: bool
    total_penalty: Decimal = Decimal("0")
    upcoming_installments: list[InstallmentResponse]
    late_installments: list[InstallmentResponse]

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class BalanceResponse(BaseModel):
    association_id: int
    total_income: Decimal
    total_expenses_paid: Decimal
    outstanding_loans: Decimal
    available_balance: Decimal
    calculated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FundsCheckResponse(BaseModel):
    sufficient: bool
    available_balance: Decimal
    requested_amount: Decimal
    shortage: Decimal

    model_config = ConfigDict(from_attributes=True)


class ExpenseTypeTotalResponse(BaseModel):
    type: str
    count: int
    total: Decimal

    model_config = ConfigDict(from_attributes=True)


class FinancialSummaryResponse(BaseModel):
    current_balance: BalanceResponse
    pending_expenses: Decimal
    upcoming_repayments: Decimal
    projected_balance: Decimal
    expenses_by_type: list[ExpenseTypeTotalResponse]
    period: str
    calculated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ExpenseTypeStatisticsResponse(BaseModel):
    type: str
    count: int
    total: Decimal
    average: Decimal

    model_config = ConfigDict(from_attributes=True)


class ExpenseStatisticsResponse(BaseModel):
    period: str
    include_loans: bool
    by_type: list[ExpenseTypeStatisticsResponse]
    by_status: dict[str, int]
    calculated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class QuickSummaryResponse(BaseModel):
    pending: int
    approved: int
    paid: int
    total_paid: Decimal

    model_config = ConfigDict(from_attributes=True)


class MonthlyBalanceResponse(BaseModel):
    month: str
    income: Decimal
    repayments: Decimal
    expenses: Decimal
    net: Decimal

    model_config = ConfigDict(from_attributes=True)


class AlertResponse(BaseModel):
    type: AlertType
    severity: AlertSeverity
    message: str
    value: Decimal

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
