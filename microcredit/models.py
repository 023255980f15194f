"""
Persisted loan entities: loans, their installments and the payments settled
against them. Monetary fields use Money and are stored as Decimal strings.
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum

from .amortization import AmortizationSystem, InstallmentRow, LoanTerms, PaymentFrequency
from .currency import Money
from .storage import StorageRecord


class LoanStatus(Enum):
    """Loan lifecycle states, derived from the outstanding balance"""
    ACTIVE = "active"
    PAID = "paid"


class InstallmentStatus(Enum):
    """Installment states; PAID is terminal"""
    PENDING = "pending"
    PAID = "paid"


def _datetime_or_none(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Loan(StorageRecord):
    """Loan with its agreed terms and current balance"""
    client_id: str
    principal: Money
    annual_rate_percent: Decimal
    number_of_installments: int
    frequency: PaymentFrequency
    amortization_system: AmortizationSystem
    start_date: date
    end_date: date
    outstanding_balance: Money
    status: LoanStatus = LoanStatus.ACTIVE
    plan_id: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.status == LoanStatus.PAID

    @property
    def terms(self) -> LoanTerms:
        return LoanTerms(
            principal=self.principal.amount,
            annual_rate_percent=self.annual_rate_percent,
            number_of_installments=self.number_of_installments,
            frequency=self.frequency,
            start_date=self.start_date,
            amortization_system=self.amortization_system,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            client_id=data['client_id'],
            principal=Money(Decimal(data['principal'])),
            annual_rate_percent=Decimal(data['annual_rate_percent']),
            number_of_installments=data['number_of_installments'],
            frequency=PaymentFrequency(data['frequency']),
            amortization_system=AmortizationSystem(data['amortization_system']),
            start_date=date.fromisoformat(data['start_date']),
            end_date=date.fromisoformat(data['end_date']),
            outstanding_balance=Money(Decimal(data['outstanding_balance'])),
            status=LoanStatus(data['status']),
            plan_id=data.get('plan_id'),
        )


@dataclass
class Installment(StorageRecord):
    """A schedule row owned by a loan, with its settlement state"""
    loan_id: str
    installment_number: int
    installment_amount: Money
    principal_portion: Money
    interest_portion: Money
    outstanding_balance_after: Money
    due_date: date
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_at: Optional[datetime] = None
    late_fee_applied: Optional[Money] = None  # Frozen when the installment is paid

    @property
    def is_paid(self) -> bool:
        return self.status == InstallmentStatus.PAID

    @classmethod
    def from_row(cls, row: InstallmentRow, loan_id: str, installment_id: str,
                 now: datetime) -> 'Installment':
        return cls(
            id=installment_id,
            created_at=now,
            updated_at=now,
            loan_id=loan_id,
            installment_number=row.installment_number,
            installment_amount=row.installment_amount,
            principal_portion=row.principal_portion,
            interest_portion=row.interest_portion,
            outstanding_balance_after=row.outstanding_balance_after,
            due_date=row.due_date,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Installment':
        late_fee = data.get('late_fee_applied')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            installment_number=data['installment_number'],
            installment_amount=Money(Decimal(data['installment_amount'])),
            principal_portion=Money(Decimal(data['principal_portion'])),
            interest_portion=Money(Decimal(data['interest_portion'])),
            outstanding_balance_after=Money(Decimal(data['outstanding_balance_after'])),
            due_date=date.fromisoformat(data['due_date']),
            status=InstallmentStatus(data['status']),
            paid_at=_datetime_or_none(data.get('paid_at')),
            late_fee_applied=Money(Decimal(late_fee)) if late_fee is not None else None,
        )


@dataclass
class Payment(StorageRecord):
    """Record of one settlement; append-only"""
    loan_id: str
    installment_id: str
    amount_tendered: Money
    late_fee_applied: Money
    interest_applied: Money
    principal_applied: Money
    paid_at: datetime
    payment_method: str = "cash"

    def __post_init__(self):
        allocated = self.late_fee_applied + self.interest_applied + self.principal_applied
        if allocated != self.amount_tendered:
            raise ValueError(f"Payment of {self.amount_tendered.to_string()} does not equal its "
                             f"allocation {allocated.to_string()}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            installment_id=data['installment_id'],
            amount_tendered=Money(Decimal(data['amount_tendered'])),
            late_fee_applied=Money(Decimal(data['late_fee_applied'])),
            interest_applied=Money(Decimal(data['interest_applied'])),
            principal_applied=Money(Decimal(data['principal_applied'])),
            paid_at=datetime.fromisoformat(data['paid_at']),
            payment_method=data.get('payment_method', 'cash'),
        )
