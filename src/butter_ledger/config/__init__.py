"""Configuration module for the ledger core."""

from butter_ledger.config.logging import configure_logging, get_logger
from butter_ledger.config.settings import LedgerSettings, get_settings

__all__ = ["LedgerSettings", "get_settings", "configure_logging", "get_logger"]
