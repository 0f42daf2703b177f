"""Configuration package."""

from bookkeeper.config.settings import (
    AppSettings,
    GeminiSettings,
    GoogleOAuthSettings,
    GoogleSheetsSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GeminiSettings",
    "GoogleOAuthSettings",
    "GoogleSheetsSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
