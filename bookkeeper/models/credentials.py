"""Credential models for Google Sheets access."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, Field


class OAuthToken(BaseModel):
    """
    Per-user OAuth token pair.

    Stored by the credential store; refreshed by the sheets client
    when expired and written back.
    """

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = Field(
        default=None,
        description="When the access token expires (UTC)"
    )

    def expiry_utc_naive(self) -> Optional[datetime]:
        """Expiry as naive UTC, the form google-auth expects."""
        if self.expiry is None:
            return None
        if self.expiry.tzinfo is not None:
            return self.expiry.astimezone(timezone.utc).replace(tzinfo=None)
        return self.expiry

    def is_expired(self, now: Optional[datetime] = None, skew_seconds: int = 60) -> bool:
        expiry = self.expiry_utc_naive()
        if expiry is None:
            return False
        now = now or datetime.utcnow()
        return now >= expiry - timedelta(seconds=skew_seconds)
