"""
Amortization Module

Turns loan terms into an installment schedule under the declining-balance
(French) or flat interest system. Pure computation: no storage, no clock.

Rates are quoted per month. Weekly and biweekly plans divide that rate by 4
and 2, and due dates advance by a fixed 7, 15 or 30 days per period.
"""

from decimal import Decimal
from datetime import date, timedelta
from dataclasses import dataclass
from typing import List, Union
from enum import Enum
import logging

from .currency import Money, Number, round_money, to_decimal
from .exceptions import InvalidTermsError


logger = logging.getLogger(__name__)


class PaymentFrequency(Enum):
    """How often installments fall due"""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class AmortizationSystem(Enum):
    """Interest accrual policy"""
    DECLINING_BALANCE = "declining_balance"  # French method - level installment
    FLAT = "flat"                            # Interest charged once on the original principal


PERIOD_DAYS = {
    PaymentFrequency.WEEKLY: 7,
    PaymentFrequency.BIWEEKLY: 15,
    PaymentFrequency.MONTHLY: 30,
}

RATE_DIVISORS = {
    PaymentFrequency.WEEKLY: Decimal('4'),
    PaymentFrequency.BIWEEKLY: Decimal('2'),
    PaymentFrequency.MONTHLY: Decimal('1'),
}


def _coerce_enum(enum_type, value, label: str):
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise InvalidTermsError(f"Unknown {label} '{value}' (expected one of: {allowed})")


@dataclass(frozen=True)
class LoanTerms:
    """Loan terms as agreed at origination"""
    principal: Decimal
    annual_rate_percent: Decimal        # e.g. 10 for 10% per (monthly) period base
    number_of_installments: int
    frequency: PaymentFrequency
    start_date: date
    amortization_system: AmortizationSystem = AmortizationSystem.DECLINING_BALANCE

    def __post_init__(self):
        try:
            principal = to_decimal(self.principal)
            rate = to_decimal(self.annual_rate_percent)
        except ArithmeticError:
            raise InvalidTermsError("Principal and rate must be numeric")

        if not principal.is_finite() or principal <= 0:
            raise InvalidTermsError(f"Principal must be positive, got {self.principal}")
        if not rate.is_finite() or rate < 0:
            raise InvalidTermsError(f"Annual rate cannot be negative, got {self.annual_rate_percent}")
        if (isinstance(self.number_of_installments, bool)
                or not isinstance(self.number_of_installments, int)
                or self.number_of_installments <= 0):
            raise InvalidTermsError(
                f"Number of installments must be a positive integer, got {self.number_of_installments}"
            )
        if not isinstance(self.start_date, date):
            raise InvalidTermsError("Start date must be a date")

        object.__setattr__(self, 'principal', principal)
        object.__setattr__(self, 'annual_rate_percent', rate)
        object.__setattr__(self, 'frequency',
                           _coerce_enum(PaymentFrequency, self.frequency, "payment frequency"))
        object.__setattr__(self, 'amortization_system',
                           _coerce_enum(AmortizationSystem, self.amortization_system, "amortization system"))

    @property
    def period_rate(self) -> Decimal:
        return period_rate(self.annual_rate_percent, self.frequency)

    @property
    def days_per_period(self) -> int:
        return PERIOD_DAYS[self.frequency]

    @property
    def end_date(self) -> date:
        """Due date of the last installment"""
        return self.start_date + timedelta(days=self.days_per_period * self.number_of_installments)


@dataclass(frozen=True)
class InstallmentRow:
    """Single row of an amortization schedule"""
    installment_number: int
    installment_amount: Money
    principal_portion: Money
    interest_portion: Money
    outstanding_balance_after: Money
    due_date: date

    def __post_init__(self):
        # Validate that the installment equals principal + interest
        calculated = self.principal_portion + self.interest_portion
        if abs(calculated.amount - self.installment_amount.amount) > Decimal('0.01'):
            raise ValueError(f"Installment amount {self.installment_amount.to_string()} does not equal "
                             f"principal {self.principal_portion.to_string()} + "
                             f"interest {self.interest_portion.to_string()}")


@dataclass(frozen=True)
class ScheduleTotals:
    """Aggregates shown next to a schedule preview"""
    total_payable: Money
    total_interest: Money
    total_principal: Money


def period_rate(annual_rate_percent: Number, frequency: Union[PaymentFrequency, str]) -> Decimal:
    """Convert the quoted rate (percent) into the rate applied each period"""
    frequency = _coerce_enum(PaymentFrequency, frequency, "payment frequency")
    return to_decimal(annual_rate_percent) / Decimal('100') / RATE_DIVISORS[frequency]


def days_per_period(frequency: Union[PaymentFrequency, str]) -> int:
    """Fixed day count between due dates"""
    return PERIOD_DAYS[_coerce_enum(PaymentFrequency, frequency, "payment frequency")]


def level_installment(principal: Number, rate: Number, periods: int) -> Decimal:
    """
    Level installment for a declining-balance loan, unrounded.

    Standard formula: P * [r(1+r)^n] / [(1+r)^n - 1], or P/n when r is zero.
    """
    principal = to_decimal(principal)
    rate = to_decimal(rate)
    if periods <= 0:
        raise InvalidTermsError("Number of installments must be positive")
    if rate == Decimal('0'):
        return principal / Decimal(periods)
    factor = (Decimal('1') + rate) ** periods
    return principal * (rate * factor) / (factor - Decimal('1'))


def compute_schedule(terms: LoanTerms, absorb_final_residual: bool = True) -> List[InstallmentRow]:
    """
    Generate the installment schedule for loan terms.

    Every monetary field is rounded to cents row by row while the running
    balance is carried at full precision. A declining-balance row's principal
    portion is its rounded installment less its rounded interest.

    Args:
        terms: Validated loan terms
        absorb_final_residual: Make the last row's principal absorb the cents
            lost to per-row rounding so the principal portions sum exactly to
            the loan principal. Pass False to keep the rounding drift
            untouched. Applies to declining-balance schedules; flat rows
            always keep identical portions.

    Returns:
        Exactly ``terms.number_of_installments`` rows, numbered from 1
    """
    if terms.amortization_system == AmortizationSystem.FLAT:
        schedule = _flat_schedule(terms)
    else:
        schedule = _declining_balance_schedule(terms, absorb_final_residual)

    logger.debug(
        "Computed %s schedule: %d installments, principal %s, period rate %s",
        terms.amortization_system.value, len(schedule), terms.principal, terms.period_rate
    )
    return schedule


def compute_schedule_from(
    principal: Number,
    annual_rate_percent: Number,
    number_of_installments: int,
    frequency: Union[PaymentFrequency, str],
    start_date: date,
    amortization_system: Union[AmortizationSystem, str] = AmortizationSystem.DECLINING_BALANCE,
) -> List[InstallmentRow]:
    """Positional form of compute_schedule for host applications"""
    terms = LoanTerms(
        principal=principal,
        annual_rate_percent=annual_rate_percent,
        number_of_installments=number_of_installments,
        frequency=frequency,
        start_date=start_date,
        amortization_system=amortization_system,
    )
    return compute_schedule(terms)


def schedule_totals(schedule: List[InstallmentRow]) -> ScheduleTotals:
    """Sum installment, interest and principal columns"""
    total_payable = Money.zero()
    total_interest = Money.zero()
    total_principal = Money.zero()
    for row in schedule:
        total_payable = total_payable + row.installment_amount
        total_interest = total_interest + row.interest_portion
        total_principal = total_principal + row.principal_portion
    return ScheduleTotals(total_payable, total_interest, total_principal)


def _declining_balance_schedule(terms: LoanTerms, absorb_final_residual: bool) -> List[InstallmentRow]:
    """Level installment, interest on the remaining balance"""
    rate = terms.period_rate
    periods = terms.number_of_installments
    installment = level_installment(terms.principal, rate, periods)

    schedule = []
    balance = terms.principal
    principal_scheduled = Decimal('0')

    for number in range(1, periods + 1):
        interest = balance * rate
        principal = installment - interest
        balance = max(Decimal('0'), balance - principal)

        interest_portion = round_money(interest)
        installment_amount = round_money(installment)
        # Taken from the rounded figures so a row paid in full retires exactly its principal
        principal_portion = installment_amount - interest_portion
        balance_after = round_money(balance)

        if number == periods and absorb_final_residual:
            principal_portion = round_money(terms.principal) - principal_scheduled
            installment_amount = principal_portion + interest_portion
            balance_after = Decimal('0')

        principal_scheduled += principal_portion
        schedule.append(InstallmentRow(
            installment_number=number,
            installment_amount=Money(installment_amount),
            principal_portion=Money(principal_portion),
            interest_portion=Money(interest_portion),
            outstanding_balance_after=Money(balance_after),
            due_date=terms.start_date + timedelta(days=terms.days_per_period * number),
        ))

    return schedule


def _flat_schedule(terms: LoanTerms) -> List[InstallmentRow]:
    """
    Interest charged once on the original principal, spread evenly.

    Every row carries the same rounded portions, whatever the residual mode.
    Cents lost to that rounding are retired when the last installment is
    settled (see settlement.settle).
    """
    periods = terms.number_of_installments
    total_interest = terms.principal * terms.annual_rate_percent / Decimal('100')
    principal_each = terms.principal / Decimal(periods)

    installment_amount = Money(round_money((terms.principal + total_interest) / Decimal(periods)))
    principal_portion = Money(round_money(principal_each))
    interest_portion = Money(round_money(total_interest / Decimal(periods)))

    schedule = []
    balance = terms.principal
    for number in range(1, periods + 1):
        balance = max(Decimal('0'), balance - principal_each)
        schedule.append(InstallmentRow(
            installment_number=number,
            installment_amount=installment_amount,
            principal_portion=principal_portion,
            interest_portion=interest_portion,
            outstanding_balance_after=Money(balance),
            due_date=terms.start_date + timedelta(days=terms.days_per_period * number),
        ))

    return schedule
