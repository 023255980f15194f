"""
Loan Module

Handles loan origination (schedule generated once and stored with the loan),
payment quotes, atomic settlement of payments, and portfolio queries.
"""

from decimal import Decimal
from datetime import date, datetime, timezone, tzinfo
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple, Union
import logging
import uuid

from .amortization import AmortizationSystem, InstallmentRow, LoanTerms, compute_schedule
from .currency import Money, Number
from .exceptions import InstallmentAlreadyPaidError, NotFoundError
from .logging_config import log_action
from .models import Installment, InstallmentStatus, Loan, LoanStatus, Payment
from .parameters import (
    AMORTIZATION_SYSTEM, LateFeeConfig, ParameterStore, load_late_fee_config, parse_amortization_system
)
from .settlement import AsOf, PaymentQuote, SettlementResult, quote, settle
from .storage import StorageInterface


logger = logging.getLogger(__name__)

DELINQUENT = "delinquent"
DISPLAY_STATUSES = (LoanStatus.ACTIVE.value, DELINQUENT, LoanStatus.PAID.value)


@dataclass(frozen=True)
class PortfolioSummary:
    """Headline figures for the portfolio on a given day"""
    as_of: date
    active_loans: int
    portfolio_value: Money          # Sum of outstanding balances
    expected_today: Money           # Installment amounts falling due on as_of
    payments_today: int             # Installments settled on as_of
    delinquent_loans: int


def _as_date(as_of: AsOf, tz: tzinfo = timezone.utc) -> date:
    if as_of is None:
        return datetime.now(tz).date()
    if isinstance(as_of, datetime):
        return as_of.astimezone(tz).date() if as_of.tzinfo else as_of.date()
    return as_of


class LoanManager:
    """
    Manages loans from origination through payoff
    """

    def __init__(self, storage: StorageInterface, parameters: ParameterStore,
                 business_timezone: tzinfo = timezone.utc):
        self.storage = storage
        self.parameters = parameters
        self.business_timezone = business_timezone

        self.loans_table = "loans"
        self.installments_table = "installments"
        self.payments_table = "payments"

    def default_amortization_system(self) -> AmortizationSystem:
        """Amortization system configured for loans that do not name one"""
        return parse_amortization_system(self.parameters.get_or_default(AMORTIZATION_SYSTEM))

    def preview_schedule(self, terms: LoanTerms) -> List[InstallmentRow]:
        """Compute a schedule without storing anything"""
        return compute_schedule(terms)

    def originate_loan(
        self,
        client_id: str,
        terms: LoanTerms,
        plan_id: Optional[str] = None
    ) -> Loan:
        """
        Create a loan and its full installment schedule

        The loan and every installment are written in one atomic scope, so a
        storage failure leaves neither behind.

        Args:
            client_id: Borrower
            terms: Validated loan terms
            plan_id: Loan plan the terms were taken from, if any

        Returns:
            Created Loan object
        """
        schedule = compute_schedule(terms)
        now = datetime.now(timezone.utc)

        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            client_id=client_id,
            principal=Money(terms.principal),
            annual_rate_percent=terms.annual_rate_percent,
            number_of_installments=terms.number_of_installments,
            frequency=terms.frequency,
            amortization_system=terms.amortization_system,
            start_date=terms.start_date,
            end_date=schedule[-1].due_date,
            outstanding_balance=Money(terms.principal),
            status=LoanStatus.ACTIVE,
            plan_id=plan_id,
        )
        installments = [
            Installment.from_row(row, loan.id, f"{loan.id}_{row.installment_number}", now)
            for row in schedule
        ]

        with self.storage.atomic():
            self._save_loan(loan)
            for installment in installments:
                self._save_installment(installment)

        log_action(
            logger, "info", "Loan originated",
            action="loan_originated", resource=loan.id,
            extra={
                "client_id": client_id,
                "principal": str(loan.principal.amount),
                "annual_rate_percent": str(loan.annual_rate_percent),
                "installments": loan.number_of_installments,
                "frequency": loan.frequency.value,
                "amortization_system": loan.amortization_system.value,
            }
        )
        return loan

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        loan_dict = self.storage.load(self.loans_table, loan_id)
        if loan_dict:
            return Loan.from_dict(loan_dict)
        return None

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        """All loans, optionally filtered by stored status"""
        if status is None:
            loans_data = self.storage.load_all(self.loans_table)
        else:
            loans_data = self.storage.find(self.loans_table, {"status": status.value})
        return [Loan.from_dict(data) for data in loans_data]

    def get_installment(self, installment_id: str) -> Optional[Installment]:
        """Get installment by ID"""
        data = self.storage.load(self.installments_table, installment_id)
        if data:
            return Installment.from_dict(data)
        return None

    def get_installments(self, loan_id: str) -> List[Installment]:
        """Installments of a loan ordered by number"""
        installments = [
            Installment.from_dict(data)
            for data in self.storage.find(self.installments_table, {"loan_id": loan_id})
        ]
        installments.sort(key=lambda x: x.installment_number)
        return installments

    def get_payments(self, loan_id: str) -> List[Payment]:
        """Payment history for a loan, oldest first"""
        payments = [
            Payment.from_dict(data)
            for data in self.storage.find(self.payments_table, {"loan_id": loan_id})
        ]
        payments.sort(key=lambda x: x.paid_at)
        return payments

    def late_fee_config(self) -> LateFeeConfig:
        """Current late fee parameters as a snapshot"""
        return load_late_fee_config(self.parameters, self.business_timezone)

    def quote_payment(self, installment_id: str, as_of: AsOf = None) -> PaymentQuote:
        """Late fee and suggested amount for a pending installment"""
        installment = self._require_installment(installment_id)
        return quote(installment, self.late_fee_config(), as_of)

    def record_payment(
        self,
        installment_id: str,
        amount_tendered: Union[Money, Number],
        as_of: AsOf = None,
        payment_method: str = "cash"
    ) -> SettlementResult:
        """
        Settle a payment against an installment and persist the outcome

        The payment, the paid installment and the loan balance are written in
        one atomic scope. Storage errors roll all three back and propagate to
        the caller; nothing is retried here.

        Args:
            installment_id: Installment being paid
            amount_tendered: Cash received
            as_of: Settlement moment (defaults to now)
            payment_method: Label stored on the payment record

        Returns:
            SettlementResult with the stored payment, installment and loan
        """
        installment = self._require_installment(installment_id)
        loan = self._require_loan(installment.loan_id)
        config = self.late_fee_config()
        closes_schedule = all(
            other.is_paid for other in self.get_installments(loan.id) if other.id != installment.id
        )

        result = settle(installment, loan, config, amount_tendered, as_of,
                        payment_method=payment_method, closes_schedule=closes_schedule)

        with self.storage.atomic():
            # Re-read inside the scope so two settlements cannot both succeed
            current = self.storage.load(self.installments_table, installment_id)
            if current and current.get("status") == InstallmentStatus.PAID.value:
                raise InstallmentAlreadyPaidError(
                    f"Installment {installment.installment_number} of loan {loan.id} is already paid"
                )
            self._save_payment(result.payment)
            self._save_installment(result.installment)
            self._save_loan(result.loan)

        log_action(
            logger, "info", "Payment settled",
            action="payment_settled", resource=loan.id,
            extra={
                "payment_id": result.payment.id,
                "installment_number": installment.installment_number,
                "amount_tendered": str(result.payment.amount_tendered.amount),
                "late_fee": str(result.payment.late_fee_applied.amount),
                "interest": str(result.payment.interest_applied.amount),
                "principal": str(result.payment.principal_applied.amount),
                "outstanding_balance": str(result.loan.outstanding_balance.amount),
                "loan_status": result.loan.status.value,
            }
        )
        return result

    def delinquent_loan_ids(self, as_of: AsOf = None) -> Set[str]:
        """Unpaid loans with at least one pending installment past its due date"""
        today = _as_date(as_of, self.business_timezone)
        overdue_loans = {
            data["loan_id"]
            for data in self.storage.find(self.installments_table,
                                          {"status": InstallmentStatus.PENDING.value})
            if date.fromisoformat(data["due_date"]) < today
        }
        return {loan.id for loan in self.list_loans(LoanStatus.ACTIVE) if loan.id in overdue_loans}

    def display_status(self, loan: Loan, as_of: AsOf = None,
                       delinquent_ids: Optional[Set[str]] = None) -> str:
        """``paid``, ``delinquent`` or ``active`` for listings"""
        if loan.is_paid:
            return LoanStatus.PAID.value
        if delinquent_ids is None:
            delinquent_ids = self.delinquent_loan_ids(as_of)
        if loan.id in delinquent_ids:
            return DELINQUENT
        return LoanStatus.ACTIVE.value

    def loans_with_display_status(self, display_status: Optional[str] = None,
                                  as_of: AsOf = None) -> List[Tuple[Loan, str]]:
        """
        Loans paired with their display status, optionally keeping one status

        ``active`` excludes delinquent loans, so the three statuses partition
        the portfolio.

        Raises:
            ValueError: If ``display_status`` is not active, delinquent or paid
        """
        if display_status is not None and display_status not in DISPLAY_STATUSES:
            raise ValueError(
                f"Unknown loan status '{display_status}' (expected one of: {', '.join(DISPLAY_STATUSES)})"
            )
        delinquent_ids = self.delinquent_loan_ids(as_of)
        pairs = [
            (loan, self.display_status(loan, delinquent_ids=delinquent_ids))
            for loan in self.list_loans()
        ]
        if display_status is None:
            return pairs
        return [(loan, status) for loan, status in pairs if status == display_status]

    def status_counts(self, as_of: AsOf = None) -> Dict[str, int]:
        """Number of loans per display status, plus ``all``"""
        counts = {"all": 0, **{status: 0 for status in DISPLAY_STATUSES}}
        for _, status in self.loans_with_display_status(as_of=as_of):
            counts["all"] += 1
            counts[status] += 1
        return counts

    def portfolio_summary(self, as_of: AsOf = None) -> PortfolioSummary:
        """Dashboard figures for ``as_of`` (defaults to today)"""
        today = _as_date(as_of, self.business_timezone)
        loans = self.list_loans()

        portfolio_value = Money.zero()
        for loan in loans:
            portfolio_value = portfolio_value + loan.outstanding_balance

        expected_today = Money.zero()
        payments_today = 0
        for data in self.storage.load_all(self.installments_table):
            if date.fromisoformat(data["due_date"]) == today:
                expected_today = expected_today + Money(Decimal(data["installment_amount"]))
            paid_at = data.get("paid_at")
            if paid_at and _as_date(datetime.fromisoformat(paid_at), self.business_timezone) == today:
                payments_today += 1

        return PortfolioSummary(
            as_of=today,
            active_loans=sum(1 for loan in loans if loan.status == LoanStatus.ACTIVE),
            portfolio_value=portfolio_value,
            expected_today=expected_today,
            payments_today=payments_today,
            delinquent_loans=len(self.delinquent_loan_ids(today)),
        )

    def _require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise NotFoundError(f"Loan {loan_id} not found")
        return loan

    def _require_installment(self, installment_id: str) -> Installment:
        installment = self.get_installment(installment_id)
        if not installment:
            raise NotFoundError(f"Installment {installment_id} not found")
        return installment

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def _save_installment(self, installment: Installment) -> None:
        self.storage.save(self.installments_table, installment.id, installment.to_dict())

    def _save_payment(self, payment: Payment) -> None:
        self.storage.save(self.payments_table, payment.id, payment.to_dict())
