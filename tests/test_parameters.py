"""
Tests for the keyed parameter store and late fee snapshots
"""

import pytest
from decimal import Decimal
from datetime import timezone
from zoneinfo import ZoneInfo

from microcredit.config import MicrocreditConfig
from microcredit.exceptions import ConfigMissingError, ConfigurationError
from microcredit.parameters import (
    ParameterStore, LateFeeConfig, load_late_fee_config, parse_amortization_system,
    GRACE_DAYS, DAILY_LATE_RATE_PERCENT, AMORTIZATION_SYSTEM
)
from microcredit.amortization import AmortizationSystem
from microcredit.storage import InMemoryStorage


@pytest.fixture
def store():
    return ParameterStore(InMemoryStorage())


def write_raw(store, key, value):
    store.storage.save(store.table, key, {"id": key, "key": key, "value": value, "description": ""})


class TestParameterStore:
    """Test get, set and list"""

    def test_missing_key(self, store):
        """Strict lookups raise ConfigMissingError, which is also a KeyError"""
        with pytest.raises(ConfigMissingError) as exc_info:
            store.get(GRACE_DAYS)
        assert exc_info.value.key == GRACE_DAYS
        assert "grace_days" in str(exc_info.value)

        with pytest.raises(KeyError):
            store.get("unknown")

    def test_get_or_default(self, store):
        assert store.get_or_default(GRACE_DAYS) is None
        assert store.get_or_default(GRACE_DAYS, "5") == "5"

    def test_set_and_get(self, store):
        record = store.set(GRACE_DAYS, 3)
        assert record["value"] == "3"
        assert record["description"]
        assert store.get(GRACE_DAYS) == "3"

    def test_set_keeps_description(self, store):
        store.set("branch_name", "Centro", description="Branch shown on receipts")
        record = store.set("branch_name", "Norte")
        assert record["description"] == "Branch shown on receipts"
        assert store.get("branch_name") == "Norte"

    def test_list_sorted_by_key(self, store):
        store.set("zeta", "1")
        store.set("alpha", "2")
        assert [record["key"] for record in store.list()] == ["alpha", "zeta"]

    def test_seed_defaults(self, store):
        config = MicrocreditConfig(default_grace_days=3, default_daily_late_rate_percent="1.5")
        store.seed_defaults(config)

        assert store.get(GRACE_DAYS) == "3"
        assert store.get(DAILY_LATE_RATE_PERCENT) == "1.5"
        assert store.get(AMORTIZATION_SYSTEM) == "declining_balance"

    def test_seed_does_not_overwrite(self, store):
        store.set(GRACE_DAYS, "7")
        store.seed_defaults(MicrocreditConfig(default_grace_days=3))
        assert store.get(GRACE_DAYS) == "7"


class TestLateFeeConfig:
    """Test the typed late fee snapshot"""

    def test_defaults(self):
        config = LateFeeConfig()
        assert config.grace_days == 0
        assert config.daily_late_rate_percent == Decimal('0')

    def test_negative_values_rejected(self):
        with pytest.raises(ConfigurationError):
            LateFeeConfig(grace_days=-1)
        with pytest.raises(ConfigurationError):
            LateFeeConfig(daily_late_rate_percent=Decimal('-0.5'))

    def test_missing_keys_read_as_zero(self, store):
        config = load_late_fee_config(store)
        assert config == LateFeeConfig(grace_days=0, daily_late_rate_percent=Decimal('0'))

    def test_blank_values_read_as_zero(self, store):
        store.set(GRACE_DAYS, "")
        store.set(DAILY_LATE_RATE_PERCENT, "   ")
        config = load_late_fee_config(store)
        assert config.grace_days == 0
        assert config.daily_late_rate_percent == Decimal('0')

    def test_values_parsed(self, store):
        store.set(GRACE_DAYS, "3")
        store.set(DAILY_LATE_RATE_PERCENT, "0.75")
        config = load_late_fee_config(store)
        assert config.grace_days == 3
        assert config.daily_late_rate_percent == Decimal('0.75')

    def test_malformed_values_rejected(self, store):
        # Written past the store, as a hand-edited database would be
        write_raw(store, DAILY_LATE_RATE_PERCENT, "one percent")
        with pytest.raises(ConfigurationError, match=DAILY_LATE_RATE_PERCENT):
            load_late_fee_config(store)

    def test_fractional_grace_days_rejected(self, store):
        write_raw(store, GRACE_DAYS, "2.5")
        with pytest.raises(ConfigurationError, match="whole number"):
            load_late_fee_config(store)

    def test_snapshot_not_affected_by_later_edits(self, store):
        store.set(GRACE_DAYS, "3")
        config = load_late_fee_config(store)
        store.set(GRACE_DAYS, "10")
        assert config.grace_days == 3

    def test_business_timezone_carried(self, store):
        bogota = ZoneInfo("America/Bogota")
        assert load_late_fee_config(store).business_timezone == timezone.utc
        assert load_late_fee_config(store, bogota).business_timezone == bogota


class TestParameterValidation:
    """Documented keys only accept values they can be read back as"""

    @pytest.mark.parametrize("key,value", [
        (GRACE_DAYS, "-1"),
        (GRACE_DAYS, "2.5"),
        (GRACE_DAYS, "three"),
        (DAILY_LATE_RATE_PERCENT, "lots"),
        (DAILY_LATE_RATE_PERCENT, "-0.5"),
        (DAILY_LATE_RATE_PERCENT, "NaN"),
        (AMORTIZATION_SYSTEM, "balloon"),
    ])
    def test_invalid_values_not_written(self, store, key, value):
        with pytest.raises(ConfigurationError, match=key):
            store.set(key, value)
        assert store.get_or_default(key) is None

    def test_rejected_update_keeps_previous_value(self, store):
        store.set(DAILY_LATE_RATE_PERCENT, "1")
        with pytest.raises(ConfigurationError):
            store.set(DAILY_LATE_RATE_PERCENT, "one percent")
        assert store.get(DAILY_LATE_RATE_PERCENT) == "1"

    def test_valid_values_accepted(self, store):
        store.set(GRACE_DAYS, "10")
        store.set(DAILY_LATE_RATE_PERCENT, "0.25")
        store.set(AMORTIZATION_SYSTEM, "flat")
        assert load_late_fee_config(store) == LateFeeConfig(grace_days=10,
                                                            daily_late_rate_percent=Decimal('0.25'))

    def test_blank_values_accepted(self, store):
        """Blank reads as zero (or the declining-balance default), so it may be stored"""
        store.set(GRACE_DAYS, "")
        store.set(AMORTIZATION_SYSTEM, " ")
        assert store.get(GRACE_DAYS) == ""

    def test_unknown_keys_stored_as_given(self, store):
        store.set("branch_name", "-1.5")
        assert store.get("branch_name") == "-1.5"

    def test_parse_amortization_system(self):
        assert parse_amortization_system(None) == AmortizationSystem.DECLINING_BALANCE
        assert parse_amortization_system("flat") == AmortizationSystem.FLAT
        with pytest.raises(ConfigurationError, match="expected one of"):
            parse_amortization_system("balloon")
