"""Configuration package."""

from budgetblocks.config.settings import (
    ATTRIBUTION_RULES,
    AppSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "ATTRIBUTION_RULES",
    "AppSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
