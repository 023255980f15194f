"""
Business Parameters Module

Keyed configuration values edited by operators at runtime (grace period,
daily late rate, default amortization system). Values are stored as text
under a string key and parsed into typed snapshots when read.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone, tzinfo
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

from .amortization import AmortizationSystem
from .config import MicrocreditConfig
from .exceptions import ConfigMissingError, ConfigurationError
from .storage import StorageInterface


logger = logging.getLogger(__name__)

GRACE_DAYS = "grace_days"
DAILY_LATE_RATE_PERCENT = "daily_late_rate_percent"
AMORTIZATION_SYSTEM = "amortization_system"

DESCRIPTIONS = {
    GRACE_DAYS: "Days after the due date before late fees start accruing",
    DAILY_LATE_RATE_PERCENT: "Late fee per day late, as a percent of the installment amount",
    AMORTIZATION_SYSTEM: "Amortization system used when a loan does not name one",
}


@dataclass(frozen=True)
class LateFeeConfig:
    """Snapshot of the late fee parameters used by one settlement"""
    grace_days: int = 0
    daily_late_rate_percent: Decimal = Decimal('0')
    business_timezone: tzinfo = timezone.utc   # Calendar days late are counted here

    def __post_init__(self):
        if self.grace_days < 0:
            raise ConfigurationError(f"Grace days cannot be negative, got {self.grace_days}")
        rate = Decimal(str(self.daily_late_rate_percent))
        if rate < 0:
            raise ConfigurationError(f"Daily late rate cannot be negative, got {rate}")
        object.__setattr__(self, 'daily_late_rate_percent', rate)


class ParameterStore:
    """
    Key/value parameters backed by a storage table
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table = "parameters"

    def get(self, key: str) -> str:
        """
        Get a raw parameter value

        Raises:
            ConfigMissingError: If the key has never been set
        """
        record = self.storage.load(self.table, key)
        if record is None:
            raise ConfigMissingError(key)
        return record["value"]

    def get_or_default(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get a raw parameter value, falling back to ``default`` when absent"""
        try:
            return self.get(key)
        except ConfigMissingError:
            return default

    def set(self, key: str, value: Any, description: Optional[str] = None) -> Dict[str, Any]:
        """
        Create or update a parameter

        Values of the documented keys are checked before they are written;
        other keys are stored as given.

        Raises:
            ConfigurationError: If a documented key gets a value it cannot hold
        """
        validate_parameter(key, value)
        existing = self.storage.load(self.table, key) or {}
        record = {
            "id": key,
            "key": key,
            "value": str(value),
            "description": description or existing.get("description") or DESCRIPTIONS.get(key, ""),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        self.storage.save(self.table, key, record)
        logger.info("Parameter %s set to %r", key, record["value"])
        return record

    def list(self) -> List[Dict[str, Any]]:
        """All parameters ordered by key"""
        return sorted(self.storage.load_all(self.table), key=lambda record: record["key"])

    def seed_defaults(self, config: MicrocreditConfig) -> None:
        """Write the documented keys that are not set yet"""
        defaults = {
            GRACE_DAYS: config.default_grace_days,
            DAILY_LATE_RATE_PERCENT: config.default_daily_late_rate_percent,
            AMORTIZATION_SYSTEM: config.default_amortization_system,
        }
        with self.storage.atomic():
            for key, value in defaults.items():
                if not self.storage.exists(self.table, key):
                    self.set(key, value)


def _parse_decimal(key: str, raw: Optional[str]) -> Decimal:
    if raw is None or not str(raw).strip():
        # Unset and blank values count as zero
        logger.debug("Parameter %s not set, using 0", key)
        return Decimal('0')
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        raise ConfigurationError(f"Parameter '{key}' is not a number: {raw!r}")
    if not value.is_finite():
        raise ConfigurationError(f"Parameter '{key}' is not a number: {raw!r}")
    return value


def _parse_grace_days(raw: Optional[str]) -> int:
    grace_days = _parse_decimal(GRACE_DAYS, raw)
    if grace_days != grace_days.to_integral_value():
        raise ConfigurationError(f"Parameter '{GRACE_DAYS}' must be a whole number of days")
    return int(grace_days)


def parse_amortization_system(raw: Optional[str]) -> AmortizationSystem:
    """Amortization system named by a parameter value; unset means declining balance"""
    if raw is None or not str(raw).strip():
        return AmortizationSystem.DECLINING_BALANCE
    try:
        return AmortizationSystem(str(raw).strip())
    except ValueError:
        allowed = ", ".join(member.value for member in AmortizationSystem)
        raise ConfigurationError(
            f"Parameter '{AMORTIZATION_SYSTEM}' has unknown value {raw!r} (expected one of: {allowed})"
        )


def validate_parameter(key: str, value: Any) -> None:
    """Reject a value that a documented key could not be read back as"""
    raw = None if value is None else str(value)
    if key == GRACE_DAYS:
        number = _parse_grace_days(raw)
    elif key == DAILY_LATE_RATE_PERCENT:
        number = _parse_decimal(key, raw)
    elif key == AMORTIZATION_SYSTEM:
        parse_amortization_system(raw)
        return
    else:
        return
    if number < 0:
        raise ConfigurationError(f"Parameter '{key}' cannot be negative, got {raw!r}")


def load_late_fee_config(store: ParameterStore,
                         business_timezone: tzinfo = timezone.utc) -> LateFeeConfig:
    """
    Read the late fee parameters once, as a snapshot

    Missing keys are read as zero. Later edits to the store do not affect the
    returned object.

    Raises:
        ConfigurationError: If a value is present but malformed
    """
    grace_days = _parse_grace_days(store.get_or_default(GRACE_DAYS))
    daily_rate = _parse_decimal(DAILY_LATE_RATE_PERCENT, store.get_or_default(DAILY_LATE_RATE_PERCENT))

    return LateFeeConfig(grace_days=grace_days, daily_late_rate_percent=daily_rate,
                         business_timezone=business_timezone)
