"""
Payment Settlement Module

Settles a tendered cash amount against one installment: computes the late fee
accrued after the grace period, allocates the payment to fee, interest and
principal (in that fixed order), and derives the loan's new balance and status.

Everything here is pure. Inputs are never mutated; settle() returns new
payment, installment and loan objects for the caller to persist together.
"""

from decimal import Decimal
from datetime import date, datetime, time, timezone, tzinfo
from dataclasses import dataclass, replace
from typing import Optional, Union
import logging
import uuid

from .currency import Money, Number
from .exceptions import InstallmentAlreadyPaidError, SettlementError
from .models import Installment, InstallmentStatus, Loan, LoanStatus, Payment
from .parameters import LateFeeConfig


logger = logging.getLogger(__name__)

AsOf = Union[date, datetime, None]

# Installment and interest are rounded separately, so a row's principal drifts by at most a cent
ROUNDING_PER_ROW = Decimal('0.01')


@dataclass(frozen=True)
class Allocation:
    """How a tendered amount splits across fee, interest and principal"""
    late_fee: Money
    interest: Money
    principal: Money


@dataclass(frozen=True)
class PaymentQuote:
    """What the cashier is told before taking a payment"""
    installment_id: str
    days_late: int
    late_fee: Money
    installment_amount: Money
    suggested_amount: Money


@dataclass(frozen=True)
class SettlementResult:
    """The three updated entities of one settlement"""
    payment: Payment
    installment: Installment
    loan: Loan


def _as_datetime(as_of: AsOf, tz: tzinfo = timezone.utc) -> datetime:
    if as_of is None:
        return datetime.now(tz)
    if isinstance(as_of, datetime):
        # Naive moments are local to the business timezone
        return as_of if as_of.tzinfo else as_of.replace(tzinfo=tz)
    return datetime.combine(as_of, time.min, tzinfo=tz)


def days_late(due_date: date, as_of: AsOf = None, tz: tzinfo = timezone.utc) -> int:
    """
    Whole calendar days from the due date to ``as_of``; 0 when not yet due.

    Both ends are taken at midnight in ``tz``, so any time on the local day
    after the due date counts as one day late.
    """
    local_day = _as_datetime(as_of, tz).astimezone(tz).date()
    return max(0, (local_day - due_date).days)


def compute_late_fee(installment_amount: Money, due_date: date, config: LateFeeConfig,
                     as_of: AsOf = None) -> Money:
    """
    Late fee accrued on an installment.

    No fee while ``days_late <= grace_days``. Past the grace period the fee is
    charged for every day late, including the grace days, with no ceiling.
    """
    late = days_late(due_date, as_of, config.business_timezone)
    if late <= config.grace_days:
        return Money.zero(installment_amount.currency)
    daily_rate = config.daily_late_rate_percent / Decimal('100')
    return Money(installment_amount.amount * daily_rate * Decimal(late), installment_amount.currency)


def rounding_residual_limit(loan: Loan) -> Decimal:
    """Largest balance per-row rounding of the schedule can leave behind"""
    return ROUNDING_PER_ROW * Decimal(loan.number_of_installments)


def allocate_payment(amount_tendered: Money, late_fee: Money, interest_portion: Money) -> Allocation:
    """
    Split a payment: late fee first, then the scheduled interest, remainder to principal.

    There is no floor. A payment smaller than fee plus interest yields a
    negative principal allocation, which is returned unchanged.
    """
    principal = amount_tendered - late_fee - interest_portion
    return Allocation(late_fee=late_fee, interest=interest_portion, principal=principal)


def current_late_fee(installment: Installment, config: LateFeeConfig, as_of: AsOf = None) -> Money:
    """Live fee for pending installments, the frozen settled fee for paid ones"""
    if installment.is_paid:
        return installment.late_fee_applied or Money.zero(installment.installment_amount.currency)
    return compute_late_fee(installment.installment_amount, installment.due_date, config, as_of)


def quote(installment: Installment, config: LateFeeConfig, as_of: AsOf = None) -> PaymentQuote:
    """Late fee and suggested amount (installment plus fee) for a pending installment"""
    if installment.is_paid:
        raise InstallmentAlreadyPaidError(
            f"Installment {installment.installment_number} of loan {installment.loan_id} is already paid"
        )
    fee = compute_late_fee(installment.installment_amount, installment.due_date, config, as_of)
    return PaymentQuote(
        installment_id=installment.id,
        days_late=days_late(installment.due_date, as_of, config.business_timezone),
        late_fee=fee,
        installment_amount=installment.installment_amount,
        suggested_amount=installment.installment_amount + fee,
    )


def settle(
    installment: Installment,
    loan: Loan,
    config: LateFeeConfig,
    amount_tendered: Union[Money, Number],
    as_of: AsOf = None,
    payment_method: str = "cash",
    payment_id: Optional[str] = None,
    closes_schedule: bool = False,
) -> SettlementResult:
    """
    Settle a tendered amount against an installment.

    Args:
        installment: Pending installment being paid
        loan: Loan owning the installment
        config: Late fee snapshot read once for this settlement
        amount_tendered: Cash received; any amount is accepted
        as_of: Settlement moment (defaults to now in the business timezone)
        payment_method: Free-form method label stored on the payment
        payment_id: Identifier for the new payment (generated when omitted)
        closes_schedule: True when this is the loan's last pending installment.
            A remaining balance no larger than the schedule's rounding drift
            (a cent per installment) is then retired and the loan paid.

    Returns:
        SettlementResult with the new payment and updated installment and loan

    Raises:
        InstallmentAlreadyPaidError: If the installment was already settled
        SettlementError: If the installment does not belong to the loan
    """
    if installment.is_paid:
        raise InstallmentAlreadyPaidError(
            f"Installment {installment.installment_number} of loan {loan.id} is already paid"
        )
    if installment.loan_id != loan.id:
        raise SettlementError(f"Installment {installment.id} does not belong to loan {loan.id}")

    settled_at = _as_datetime(as_of, config.business_timezone)
    if not isinstance(amount_tendered, Money):
        amount_tendered = Money(amount_tendered, installment.installment_amount.currency)

    late_fee = compute_late_fee(installment.installment_amount, installment.due_date, config, settled_at)
    allocation = allocate_payment(amount_tendered, late_fee, installment.interest_portion)

    if allocation.principal.is_negative():
        logger.warning(
            "Payment of %s on installment %d of loan %s does not cover fee %s and interest %s; "
            "principal allocation is %s",
            amount_tendered.to_string(), installment.installment_number, loan.id,
            late_fee.to_string(), installment.interest_portion.to_string(),
            allocation.principal.to_string(),
        )

    payment = Payment(
        id=payment_id or str(uuid.uuid4()),
        created_at=settled_at,
        updated_at=settled_at,
        loan_id=loan.id,
        installment_id=installment.id,
        amount_tendered=amount_tendered,
        late_fee_applied=allocation.late_fee,
        interest_applied=allocation.interest,
        principal_applied=allocation.principal,
        paid_at=settled_at,
        payment_method=payment_method,
    )

    paid_installment = replace(
        installment,
        status=InstallmentStatus.PAID,
        paid_at=settled_at,
        late_fee_applied=late_fee,
        updated_at=settled_at,
    )

    if loan.is_paid:
        # Paid is terminal: late installments of a paid-off loan never reopen it
        remaining = loan.outstanding_balance
        status = LoanStatus.PAID
    else:
        remaining = loan.outstanding_balance - allocation.principal
        if closes_schedule and remaining.is_positive() and remaining.amount <= rounding_residual_limit(loan):
            logger.info("Retiring rounding residual %s on loan %s", remaining.to_string(), loan.id)
            remaining = Money.zero(remaining.currency)
        if not remaining.is_positive():
            remaining = Money.zero(remaining.currency)
        status = LoanStatus.PAID if remaining.is_zero() else LoanStatus.ACTIVE
    updated_loan = replace(
        loan,
        outstanding_balance=remaining,
        status=status,
        updated_at=settled_at,
    )

    logger.debug(
        "Settled installment %d of loan %s: fee %s, interest %s, principal %s, balance %s",
        installment.installment_number, loan.id, allocation.late_fee.to_string(),
        allocation.interest.to_string(), allocation.principal.to_string(), remaining.to_string(),
    )

    return SettlementResult(payment=payment, installment=paid_installment, loan=updated_loan)
