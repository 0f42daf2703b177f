"""
Bookkeeper Settings

Every external dependency (the sheet identity, the OAuth client, the
Gemini model) is configured from the environment through pydantic-settings.
Each group has its own prefix and is only loaded when first used, so a
session that never syncs doesn't need Google credentials.

    GOOGLE_SHEETS_CREDENTIALS_PATH   service account JSON
    GOOGLE_SHEETS_WORKSHEET_NAME     worksheet holding the canonical table
    GOOGLE_OAUTH_CLIENT_ID / _SECRET per-user OAuth client
    GEMINI_API_KEY                   extraction agent
    TWO_WAY_SYNC, LOG_JSON           application behaviour
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Where and as whom the ledger is mirrored."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: Optional[str] = Field(
        default=None,
        description="Service account JSON used when the user hasn't connected an account"
    )
    worksheet_name: str = Field(
        default="Transactions",
        description="Worksheet that is cleared and rewritten on every sync"
    )

    @field_validator('credentials_path')
    @classmethod
    def warn_if_missing(cls, v: Optional[str]) -> Optional[str]:
        """The file may be mounted after startup, so only warn."""
        if v and not Path(v).exists():
            import warnings
            warnings.warn(
                f"Service account file {v} does not exist yet; "
                "syncs using the service account will fail until it does."
            )
        return v


class GoogleOAuthSettings(BaseSettings):
    """
    OAuth client used for per-user sheet access.

    Only needed when users connect their own Google account instead
    of sharing the sheet with the service account.
    """

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_OAUTH_",
        extra="ignore"
    )

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    token_uri: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="Endpoint used to refresh access tokens"
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


class GeminiSettings(BaseSettings):
    """Model behind the chat extraction agent."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(..., description="Google AI Studio key")
    model_name: str = Field(default="gemini-1.5-flash")
    max_tokens: int = Field(
        default=512,
        ge=100,
        le=8192,
        description="Output token cap; one JSON object needs little"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Kept low so extraction is repeatable"
    )


class AppSettings(BaseSettings):
    """Unprefixed application settings (also read from .env)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    two_way_sync: bool = Field(
        default=True,
        description="Read sheet edits back into the ledger before rewriting the sheet"
    )
    log_json: bool = Field(
        default=True,
        description="Render structured logs as JSON (console renderer otherwise)"
    )


class Settings(BaseSettings):
    """
    Entry point for all settings groups.

    Groups are built on access, so a missing GEMINI_API_KEY only fails
    the code that actually needs the agent.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def google_oauth(self) -> GoogleOAuthSettings:
        return GoogleOAuthSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """Shared Settings instance. Tests call get_settings.cache_clear()."""
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Check which settings groups can be loaded.

    Returns {group: ok}, plus "<group>_error" messages for the failures.
    Sheets access is ok with either a service account or an OAuth client.
    """
    settings = get_settings()
    results: dict = {}

    checks = {
        "google_sheets": lambda: (
            bool(settings.google_sheets.credentials_path)
            or settings.google_oauth.is_configured
        ),
        "gemini": lambda: bool(settings.gemini),
        "app": lambda: bool(settings.app),
    }
    for name, check in checks.items():
        try:
            results[name] = check()
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)
            continue
        if not results[name]:
            results[f"{name}_error"] = (
                "Set GOOGLE_SHEETS_CREDENTIALS_PATH or the GOOGLE_OAUTH_ client settings"
            )

    return results
