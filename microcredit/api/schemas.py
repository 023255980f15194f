"""
Pydantic schemas for API requests, plus response serializers
"""

from datetime import date
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..amortization import AmortizationSystem, InstallmentRow, LoanTerms, ScheduleTotals
from ..currency import Money, decimal_from_string, format_currency
from ..models import Installment, Loan, Payment
from ..settlement import PaymentQuote


class LoanTermsModel(BaseModel):
    principal: str = Field(..., description="Decimal amount as string")
    annual_rate_percent: str = Field(..., description="Rate in percent, e.g. '10'")
    number_of_installments: int
    frequency: str = Field("monthly", description="weekly, biweekly or monthly")
    start_date: str = Field(..., description="ISO date string")
    amortization_system: Optional[str] = Field(
        None, description="declining_balance or flat; the configured default when omitted"
    )

    def to_loan_terms(self, default_system: AmortizationSystem) -> LoanTerms:
        return LoanTerms(
            principal=decimal_from_string(self.principal),
            annual_rate_percent=decimal_from_string(self.annual_rate_percent),
            number_of_installments=self.number_of_installments,
            frequency=self.frequency,
            start_date=date.fromisoformat(self.start_date),
            amortization_system=self.amortization_system or default_system,
        )


class CreateLoanRequest(BaseModel):
    client_id: str
    plan_id: Optional[str] = None
    terms: LoanTermsModel


class PaymentRequest(BaseModel):
    amount: str = Field(..., description="Amount tendered, decimal as string")
    as_of: Optional[str] = Field(None, description="ISO date or datetime of the payment")
    payment_method: str = "cash"


class UpdateParameterRequest(BaseModel):
    value: str
    description: Optional[str] = None


def money(value: Optional[Money]) -> Optional[str]:
    return str(value.amount) if value is not None else None


def schedule_row_to_dict(row: InstallmentRow) -> Dict[str, Any]:
    return {
        "installment_number": row.installment_number,
        "due_date": row.due_date.isoformat(),
        "installment_amount": money(row.installment_amount),
        "principal_portion": money(row.principal_portion),
        "interest_portion": money(row.interest_portion),
        "outstanding_balance_after": money(row.outstanding_balance_after),
    }


def totals_to_dict(totals: ScheduleTotals) -> Dict[str, Any]:
    return {
        "total_payable": money(totals.total_payable),
        "total_interest": money(totals.total_interest),
        "total_principal": money(totals.total_principal),
        "total_payable_display": format_currency(totals.total_payable),
    }


def loan_to_dict(loan: Loan, display_status: Optional[str] = None) -> Dict[str, Any]:
    result = {
        "id": loan.id,
        "client_id": loan.client_id,
        "plan_id": loan.plan_id,
        "principal": money(loan.principal),
        "annual_rate_percent": str(loan.annual_rate_percent),
        "number_of_installments": loan.number_of_installments,
        "frequency": loan.frequency.value,
        "amortization_system": loan.amortization_system.value,
        "start_date": loan.start_date.isoformat(),
        "end_date": loan.end_date.isoformat(),
        "outstanding_balance": money(loan.outstanding_balance),
        "outstanding_balance_display": format_currency(loan.outstanding_balance),
        "status": loan.status.value,
    }
    if display_status:
        result["display_status"] = display_status
    return result


def installment_to_dict(installment: Installment, late_fee: Optional[Money] = None) -> Dict[str, Any]:
    return {
        "id": installment.id,
        "loan_id": installment.loan_id,
        "installment_number": installment.installment_number,
        "due_date": installment.due_date.isoformat(),
        "installment_amount": money(installment.installment_amount),
        "principal_portion": money(installment.principal_portion),
        "interest_portion": money(installment.interest_portion),
        "outstanding_balance_after": money(installment.outstanding_balance_after),
        "status": installment.status.value,
        "paid_at": installment.paid_at.isoformat() if installment.paid_at else None,
        "late_fee_applied": money(installment.late_fee_applied),
        "late_fee": money(late_fee),
    }


def payment_to_dict(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "loan_id": payment.loan_id,
        "installment_id": payment.installment_id,
        "amount_tendered": money(payment.amount_tendered),
        "late_fee_applied": money(payment.late_fee_applied),
        "interest_applied": money(payment.interest_applied),
        "principal_applied": money(payment.principal_applied),
        "payment_method": payment.payment_method,
        "paid_at": payment.paid_at.isoformat(),
    }


def quote_to_dict(payment_quote: PaymentQuote) -> Dict[str, Any]:
    return {
        "installment_id": payment_quote.installment_id,
        "days_late": payment_quote.days_late,
        "late_fee": money(payment_quote.late_fee),
        "installment_amount": money(payment_quote.installment_amount),
        "suggested_amount": money(payment_quote.suggested_amount),
        "suggested_amount_display": format_currency(payment_quote.suggested_amount),
    }


def schedule_to_list(schedule: List[InstallmentRow]) -> List[Dict[str, Any]]:
    return [schedule_row_to_dict(row) for row in schedule]
