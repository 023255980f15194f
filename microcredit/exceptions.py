"""
Error hierarchy for the microcredit engine.

Errors that signal bad input also subclass the matching builtin so callers
catching ``ValueError`` or ``LookupError`` keep working.
"""


class MicrocreditError(Exception):
    """Base exception for all microcredit errors"""


class InvalidTermsError(MicrocreditError, ValueError):
    """Loan terms rejected before any schedule is computed"""


class ConfigMissingError(MicrocreditError, KeyError):
    """A configuration key is absent from the parameter store"""

    def __init__(self, key: str):
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"Configuration key '{self.key}' is not set"


class ConfigurationError(MicrocreditError, ValueError):
    """A configuration value is present but cannot be parsed"""


class SettlementError(MicrocreditError, ValueError):
    """A payment cannot be settled against the given installment"""


class InstallmentAlreadyPaidError(SettlementError):
    """The installment was already settled; paid is terminal"""


class NotFoundError(MicrocreditError, LookupError):
    """A loan, installment or payment record does not exist"""
