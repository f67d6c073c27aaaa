"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Customer ledger reconciliation configuration"""

    # Storage configuration
    storage_type: str = "memory"  # memory or sqlite
    sqlite_path: str = "customer_ledger.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Classification rules
    loan_marker: str = "سلفة"  # Note prefix that marks a payment as a loan

    # Reconciliation rules
    money_precision: int = 2
    reconciliation_tolerance: str = "0.01"

    # Source adapter configuration
    adapter_timeout_seconds: float = 10.0

    # Source cache configuration
    cache_enabled: bool = True
    cache_ttl_seconds: int = 300  # 5 minutes default

    # Statement pagination
    default_page_size: int = 200
    max_page_size: int = 1000

    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
