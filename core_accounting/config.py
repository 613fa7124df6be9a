"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class LedgerlineConfig(BaseSettings):
    """Ledgerline accounting engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LEDGERLINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    sqlite_path: str = "ledgerline.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_workers: int = 1

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Company defaults (used until company settings are stored)
    company_name: str = "Ledgerline Company"
    base_currency: str = "USD"
    default_sales_tax_rate: str = "0.0625"
    default_payment_terms_days: int = 30
    inventory_method: str = "weighted_average"
    default_location_id: str = "MAIN"
    settings_cache_ttl_seconds: int = 300  # 5 minutes default

    # Ledger rules
    balance_tolerance: str = "0.01"

    # Default chart of accounts codes
    cash_account_code: str = "1000"
    receivable_account_code: str = "1200"
    inventory_account_code: str = "1300"
    accumulated_depreciation_account_code: str = "1510"
    fixed_asset_account_code: str = "1500"
    payable_account_code: str = "2000"
    sales_tax_account_code: str = "2200"
    retained_earnings_account_code: str = "3100"
    revenue_account_code: str = "4100"
    disposal_gain_account_code: str = "4800"
    sales_discount_account_code: str = "4900"
    cogs_account_code: str = "5100"
    inventory_adjustment_account_code: str = "5900"
    purchase_discount_account_code: str = "5950"
    expense_account_code: str = "6100"
    depreciation_expense_account_code: str = "6500"
    disposal_loss_account_code: str = "8920"

    # Feature flags
    enable_audit_logging: bool = True
    seed_default_chart: bool = True


# Global configuration instance
config = LedgerlineConfig()


def get_config() -> LedgerlineConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerlineConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerlineConfig()
    return config
