"""
Google Sheets Mirror

DESIGN DECISION: The sheet is a projection of the ledger, not a store.
Every sync clears the worksheet and rewrites the full canonical table
from A1 in one call. Users may edit rows in between; the sync reads
those edits back before rewriting.

Two identities can reach a sheet:
1. The shared service account (the user shares the sheet with it)
2. The user's own Google account (OAuth token pair per user)

OAuth tokens are checked before every call. An expired token is
refreshed through google-auth and the new token written back to the
credential store, so callers never see an expiry.

TRADEOFFS:
- gspread is synchronous; calls block inside the async methods
- No per-sheet lock: concurrent syncs of one sheet race (last write wins)
"""

from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

import gspread
import requests
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials as OAuthCredentials
from google.oauth2.service_account import Credentials
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from bookkeeper.audit.logger import AuditLogger
from bookkeeper.config import GoogleOAuthSettings, GoogleSheetsSettings, get_settings
from bookkeeper.models.audit import AuditEventBuilder
from bookkeeper.models.credentials import OAuthToken
from bookkeeper.models.sync import SHEET_HEADERS
from bookkeeper.services.storage.interface import (
    ConnectionError,
    CredentialsMissingError,
    CredentialStore,
    PermissionDeniedError,
    SheetMirror,
    SheetNotFoundError,
    StorageError,
)


SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

# Rows added when a worksheet has to be created
NEW_WORKSHEET_ROWS = 1000


def _status_code(error: gspread.exceptions.APIError) -> Optional[int]:
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None)


@contextmanager
def translate_errors(sheet_id: str) -> Iterator[None]:
    """
    Map gspread, google-auth and transport failures onto the storage
    error family. Anything unrecognised becomes a ConnectionError.
    """
    try:
        yield
    except StorageError:
        raise
    except gspread.exceptions.SpreadsheetNotFound:
        raise SheetNotFoundError(f"Spreadsheet not found: {sheet_id}")
    except gspread.exceptions.APIError as e:
        status = _status_code(e)
        if status == 403:
            raise PermissionDeniedError(f"Permission denied on spreadsheet {sheet_id}: {e}")
        if status == 404:
            raise SheetNotFoundError(f"Spreadsheet not found: {sheet_id}")
        raise ConnectionError(f"Google Sheets API error: {e}")
    except PermissionError as e:
        raise PermissionDeniedError(f"Permission denied on spreadsheet {sheet_id}: {e}")
    except (requests.RequestException, TransportError) as e:
        raise ConnectionError(f"Network error reaching spreadsheet {sheet_id}: {e}")
    except Exception as e:
        raise ConnectionError(f"Google Sheets operation failed on {sheet_id}: {e}")


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication (service account or per-user OAuth) and
    provides retry logic for connecting.
    """

    def __init__(
        self,
        user_id: Optional[str] = None,
        credential_store: Optional[CredentialStore] = None,
        settings: Optional[GoogleSheetsSettings] = None,
        oauth_settings: Optional[GoogleOAuthSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        authorize: Callable[[Any], gspread.Client] = gspread.authorize,
    ):
        self.user_id = user_id
        self._credential_store = credential_store
        self._settings = settings or get_settings().google_sheets
        self._oauth_settings = oauth_settings or get_settings().google_oauth
        self._audit = audit_logger or AuditLogger()
        self._authorize = authorize
        self._client: Optional[gspread.Client] = None
        self._token: Optional[OAuthToken] = None

    @retry(
        retry=retry_if_exception_type(ConnectionError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Return an authorized gspread client.

        Per-user OAuth wins over the service account when the user has
        a stored token. Called before every sheet operation so expired
        tokens are refreshed in time.

        Raises:
            CredentialsMissingError: If no identity is available (not retried)
            ConnectionError: If authorization fails
        """
        token = self._stored_token()
        if token is not None:
            if self._client is None or token.is_expired() or token != self._token:
                self._client = self._authorize_oauth(token)
            return self._client

        if self._client is None:
            if not self._settings.credentials_path:
                raise CredentialsMissingError(
                    "No Google credentials: connect a Google account or set "
                    "GOOGLE_SHEETS_CREDENTIALS_PATH"
                )
            try:
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=SCOPES,
                )
            except FileNotFoundError:
                raise CredentialsMissingError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except (ValueError, KeyError) as e:
                raise CredentialsMissingError(
                    f"Google credentials file is not a valid service account key: {e}"
                )
            try:
                self._client = self._authorize(credentials)
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def open(self, sheet_id: str) -> gspread.Spreadsheet:
        """Open a spreadsheet by key."""
        client = self.connect()
        with translate_errors(sheet_id):
            return client.open_by_key(sheet_id)

    def _stored_token(self) -> Optional[OAuthToken]:
        if self.user_id is None or self._credential_store is None:
            return None
        return self._credential_store.get_oauth_token(self.user_id)

    def _authorize_oauth(self, token: OAuthToken) -> gspread.Client:
        credentials = OAuthCredentials(
            token=token.access_token,
            refresh_token=token.refresh_token,
            token_uri=self._oauth_settings.token_uri,
            client_id=self._oauth_settings.client_id,
            client_secret=self._oauth_settings.client_secret,
            scopes=SCOPES,
        )
        credentials.expiry = token.expiry_utc_naive()

        if token.is_expired():
            token = self._refresh(credentials, token)

        self._token = token
        try:
            return self._authorize(credentials)
        except Exception as e:
            raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

    def _refresh(self, credentials: OAuthCredentials, token: OAuthToken) -> OAuthToken:
        """Refresh an expired access token and persist the new one."""
        if not token.refresh_token:
            raise CredentialsMissingError(
                "Google access token expired and no refresh token is stored; "
                "reconnect the Google account"
            )
        try:
            credentials.refresh(Request())
        except RefreshError as e:
            raise CredentialsMissingError(
                f"Google authorization was revoked or expired; reconnect the account: {e}"
            )
        except TransportError as e:
            raise ConnectionError(f"Could not reach Google to refresh the token: {e}")

        refreshed = OAuthToken(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token or token.refresh_token,
            expiry=credentials.expiry,
        )
        self._credential_store.save_oauth_token(self.user_id, refreshed)
        self._audit.log(AuditEventBuilder.credentials_refreshed(self.user_id))
        return refreshed


class GoogleSheetsMirror(SheetMirror):
    """
    Google Sheets implementation of the sheet mirror.

    Values are read as displayed and written as user-entered input,
    so Sheets parses numbers and dates itself.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _worksheet(self, sheet_id: str, worksheet_name: str) -> Optional[gspread.Worksheet]:
        spreadsheet = self._client.open(sheet_id)
        with translate_errors(sheet_id):
            try:
                return spreadsheet.worksheet(worksheet_name)
            except gspread.exceptions.WorksheetNotFound:
                return None

    async def read_rows(self, sheet_id: str, worksheet_name: str) -> list[list[str]]:
        worksheet = self._worksheet(sheet_id, worksheet_name)
        if worksheet is None:
            return []
        with translate_errors(sheet_id):
            return worksheet.get_all_values()

    async def clear(self, sheet_id: str, worksheet_name: str) -> None:
        worksheet = self._worksheet(sheet_id, worksheet_name)
        if worksheet is None:
            raise SheetNotFoundError(f"Worksheet not found: {worksheet_name}")
        with translate_errors(sheet_id):
            worksheet.clear()

    async def write(
        self,
        sheet_id: str,
        worksheet_name: str,
        values: list[list[str]],
    ) -> int:
        spreadsheet = self._client.open(sheet_id)
        with translate_errors(sheet_id):
            try:
                worksheet = spreadsheet.worksheet(worksheet_name)
            except gspread.exceptions.WorksheetNotFound:
                worksheet = spreadsheet.add_worksheet(
                    title=worksheet_name,
                    rows=max(NEW_WORKSHEET_ROWS, len(values)),
                    cols=len(SHEET_HEADERS),
                )

            # The values API won't write past the grid
            if worksheet.row_count < len(values):
                worksheet.add_rows(len(values) - worksheet.row_count)

            worksheet.update(
                range_name="A1",
                values=values,
                value_input_option="USER_ENTERED",
            )
        return len(values)
