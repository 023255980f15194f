"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from datetime import tzinfo
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


class MicrocreditConfig(BaseSettings):
    """Microcredit engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="MICROCREDIT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///microcredit.db"  # sqlite:///:memory: for throwaway runs

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Seed values for the keyed parameter store
    default_grace_days: int = 0
    default_daily_late_rate_percent: str = "0"
    default_amortization_system: str = "declining_balance"

    # IANA zone whose calendar decides due and late days
    business_timezone: str = "America/Bogota"

    def business_tzinfo(self) -> tzinfo:
        """Zone object for ``business_timezone``"""
        return ZoneInfo(self.business_timezone)


# Global configuration instance
config = MicrocreditConfig()


def get_config() -> MicrocreditConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> MicrocreditConfig:
    """Reload configuration from environment"""
    global config
    config = MicrocreditConfig()
    return config
