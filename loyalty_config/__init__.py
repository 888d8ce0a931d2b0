"""
Enrollment engine configuration.

Public API:
    get_settings(path=None) -> EngineSettings

The kernel never imports this package; loyalty_services reads settings and
passes plain values into kernel constructors.
"""

from loyalty_config.loader import DATABASE_URL_ENV, get_settings, parse_settings
from loyalty_config.schema import (
    ApprovalSettings,
    CardSettings,
    DatabaseSettings,
    EngineSettings,
    LoggingSettings,
    NotificationSettings,
    ReconciliationSettings,
    TransactionSettings,
)

__all__ = [
    "ApprovalSettings",
    "CardSettings",
    "DATABASE_URL_ENV",
    "DatabaseSettings",
    "EngineSettings",
    "LoggingSettings",
    "NotificationSettings",
    "ReconciliationSettings",
    "TransactionSettings",
    "get_settings",
    "parse_settings",
]
