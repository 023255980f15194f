"""
Business parameter endpoints
"""

from fastapi import APIRouter, Depends

from .deps import LoanSystem, get_loan_system, to_http_error
from .schemas import UpdateParameterRequest
from ..exceptions import MicrocreditError


router = APIRouter()


@router.get("")
async def list_parameters(system: LoanSystem = Depends(get_loan_system)):
    """List all parameters"""
    return {"parameters": system.parameters.list()}


@router.put("/{key}")
async def update_parameter(
    key: str,
    request: UpdateParameterRequest,
    system: LoanSystem = Depends(get_loan_system)
):
    """Create or update a parameter; invalid values for documented keys are rejected"""
    try:
        return system.parameters.set(key, request.value, request.description)
    except MicrocreditError as e:
        raise to_http_error(e)
