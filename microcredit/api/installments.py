"""
Installment endpoints: payment quotes and settlement
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .deps import LoanSystem, get_loan_system, parse_as_of, to_http_error
from .schemas import PaymentRequest, installment_to_dict, loan_to_dict, payment_to_dict, quote_to_dict
from ..currency import decimal_from_string
from ..exceptions import MicrocreditError


router = APIRouter()


@router.get("/{installment_id}/quote")
async def quote_payment(
    installment_id: str,
    as_of: Optional[str] = None,
    system: LoanSystem = Depends(get_loan_system)
):
    """Late fee and suggested amount for a pending installment"""
    try:
        payment_quote = system.loan_manager.quote_payment(installment_id, parse_as_of(as_of))
    except MicrocreditError as e:
        raise to_http_error(e)
    return quote_to_dict(payment_quote)


@router.post("/{installment_id}/payments", status_code=status.HTTP_201_CREATED)
async def record_payment(
    installment_id: str,
    request: PaymentRequest,
    system: LoanSystem = Depends(get_loan_system)
):
    """Settle a payment against an installment"""
    try:
        result = system.loan_manager.record_payment(
            installment_id=installment_id,
            amount_tendered=decimal_from_string(request.amount),
            as_of=parse_as_of(request.as_of),
            payment_method=request.payment_method
        )
    except (MicrocreditError, ValueError) as e:
        raise to_http_error(e)

    return {
        "payment": payment_to_dict(result.payment),
        "installment": installment_to_dict(result.installment, result.installment.late_fee_applied),
        "loan": loan_to_dict(result.loan),
    }
