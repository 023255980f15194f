"""
Portfolio summary endpoint
"""

from typing import Optional
from fastapi import APIRouter, Depends

from .deps import LoanSystem, get_loan_system, parse_as_of
from ..currency import format_currency


router = APIRouter()


@router.get("/summary")
async def portfolio_summary(
    as_of: Optional[str] = None,
    system: LoanSystem = Depends(get_loan_system)
):
    """Dashboard figures for a day (defaults to today)"""
    summary = system.loan_manager.portfolio_summary(parse_as_of(as_of))
    return {
        "as_of": summary.as_of.isoformat(),
        "active_loans": summary.active_loans,
        "portfolio_value": str(summary.portfolio_value.amount),
        "portfolio_value_display": format_currency(summary.portfolio_value),
        "expected_today": str(summary.expected_today.amount),
        "payments_today": summary.payments_today,
        "delinquent_loans": summary.delinquent_loans,
    }
