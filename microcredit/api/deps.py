"""
Dependencies shared by the API routers
"""

from datetime import date, datetime
from typing import Optional, Union

from fastapi import HTTPException

from ..config import MicrocreditConfig, get_config
from ..exceptions import InstallmentAlreadyPaidError, NotFoundError
from ..loans import LoanManager
from ..parameters import ParameterStore
from ..storage import StorageInterface, create_storage


class LoanSystem:
    """Storage, parameters and loan manager wired together"""

    def __init__(self, storage: Optional[StorageInterface] = None,
                 config: Optional[MicrocreditConfig] = None):
        config = config or get_config()
        self.storage = storage or create_storage(config.database_url)
        self.parameters = ParameterStore(self.storage)
        self.parameters.seed_defaults(config)
        self.loan_manager = LoanManager(self.storage, self.parameters, config.business_tzinfo())


_loan_system: Optional[LoanSystem] = None


def get_loan_system() -> LoanSystem:
    """Process-wide loan system, created on first use"""
    global _loan_system
    if _loan_system is None:
        _loan_system = LoanSystem()
    return _loan_system


def parse_as_of(value: Optional[str]) -> Union[date, datetime, None]:
    """Read an ``as_of`` query value: ISO date, ISO datetime or nothing"""
    if not value:
        return None
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        return datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid as_of value: {value}")


def to_http_error(error: Exception) -> HTTPException:
    """Map engine errors to HTTP status codes"""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InstallmentAlreadyPaidError):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
