"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .deps import LoanSystem, get_loan_system, parse_as_of, to_http_error
from .schemas import (
    CreateLoanRequest, LoanTermsModel, installment_to_dict, loan_to_dict,
    payment_to_dict, schedule_to_list, totals_to_dict
)
from ..amortization import schedule_totals
from ..exceptions import MicrocreditError
from ..settlement import current_late_fee


router = APIRouter()


@router.post("/schedule")
async def preview_schedule(
    terms: LoanTermsModel,
    system: LoanSystem = Depends(get_loan_system)
):
    """Compute a schedule without creating a loan"""
    try:
        loan_terms = terms.to_loan_terms(system.loan_manager.default_amortization_system())
        schedule = system.loan_manager.preview_schedule(loan_terms)
    except (MicrocreditError, ValueError) as e:
        raise to_http_error(e)

    return {
        "amortization_system": loan_terms.amortization_system.value,
        "schedule": schedule_to_list(schedule),
        "totals": totals_to_dict(schedule_totals(schedule)),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: LoanSystem = Depends(get_loan_system)
):
    """Originate a new loan with its installment schedule"""
    try:
        loan_terms = request.terms.to_loan_terms(system.loan_manager.default_amortization_system())
        loan = system.loan_manager.originate_loan(
            client_id=request.client_id,
            terms=loan_terms,
            plan_id=request.plan_id
        )
    except (MicrocreditError, ValueError) as e:
        raise to_http_error(e)

    return loan_to_dict(loan)


@router.get("")
async def list_loans(
    status: Optional[str] = None,
    as_of: Optional[str] = None,
    system: LoanSystem = Depends(get_loan_system)
):
    """
    List loans with their display status (active, delinquent, paid)

    ``status`` keeps only loans with that display status; ``counts`` always
    covers the whole portfolio.
    """
    manager = system.loan_manager
    when = parse_as_of(as_of)
    try:
        pairs = manager.loans_with_display_status(status, when)
    except (MicrocreditError, ValueError) as e:
        raise to_http_error(e)

    return {
        "loans": [loan_to_dict(loan, display) for loan, display in pairs],
        "counts": manager.status_counts(when),
    }


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: LoanSystem = Depends(get_loan_system)
):
    """Get loan details"""
    loan = system.loan_manager.get_loan(loan_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found")
    return loan_to_dict(loan, system.loan_manager.display_status(loan))


@router.get("/{loan_id}/installments")
async def get_loan_installments(
    loan_id: str,
    as_of: Optional[str] = None,
    system: LoanSystem = Depends(get_loan_system)
):
    """Installments with the late fee due now (pending) or charged (paid)"""
    manager = system.loan_manager
    if not manager.get_loan(loan_id):
        raise HTTPException(status_code=404, detail="Loan not found")

    try:
        config = manager.late_fee_config()
    except MicrocreditError as e:
        raise to_http_error(e)
    when = parse_as_of(as_of)

    return {
        "installments": [
            installment_to_dict(installment, current_late_fee(installment, config, when))
            for installment in manager.get_installments(loan_id)
        ]
    }


@router.get("/{loan_id}/payments")
async def get_loan_payments(
    loan_id: str,
    system: LoanSystem = Depends(get_loan_system)
):
    """Payment history for a loan"""
    if not system.loan_manager.get_loan(loan_id):
        raise HTTPException(status_code=404, detail="Loan not found")
    return {"payments": [payment_to_dict(p) for p in system.loan_manager.get_payments(loan_id)]}
