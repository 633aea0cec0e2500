"""Google Sheets append client.

Appends one row per call through the Sheets v4 REST API with
``valueInputOption=USER_ENTERED`` so the target sheet types dates and
numbers itself. String cells that a spreadsheet would evaluate as a
formula are neutralized with a leading quote before sending.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

import httpx
from google.auth.credentials import Credentials
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

logger = logging.getLogger(__name__)

SHEETS_API_BASE = "https://sheets.googleapis.com/v4"
SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
DEFAULT_RANGE = "Sheet1!A:C"

_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r", "\n")


class SheetsError(Exception):
    """Raised when a row cannot be appended. Carries the attempted payload."""

    def __init__(
        self,
        message: str,
        payload: Sequence[Any],
        status_code: int | None = None,
    ) -> None:
        self.payload = list(payload)
        self.status_code = status_code
        context = json.dumps(self.payload, ensure_ascii=False, default=str)
        super().__init__(f"{message}. Payload: {context}")


def sanitize_cell(value: Any) -> Any:
    """Prefix formula-like strings with a quote; leave everything else alone."""
    if isinstance(value, str) and value.startswith(_FORMULA_PREFIXES):
        return "'" + value
    return value


class SheetsClient:
    """Appends rows to a single spreadsheet."""

    def __init__(
        self,
        spreadsheet_id: str,
        credentials: Credentials,
        api_base: str = SHEETS_API_BASE,
        timeout: float = 10.0,
    ) -> None:
        self._spreadsheet_id = spreadsheet_id
        self._credentials = credentials
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout

    @classmethod
    def from_service_account_file(cls, path: str, spreadsheet_id: str) -> SheetsClient:
        """Build a client from a service-account JSON key.

        Raises on a missing or malformed key file; callers treat that as a
        startup failure.
        """
        try:
            credentials = service_account.Credentials.from_service_account_file(
                path, scopes=[SHEETS_SCOPE],
            )
        except (OSError, ValueError) as exc:
            logger.critical("Sheets client init failed: %s", exc)
            raise
        return cls(spreadsheet_id, credentials)

    async def append_row(
        self,
        values: Sequence[Any],
        range_: str = DEFAULT_RANGE,
    ) -> dict[str, Any]:
        """Append one row and return the API's append response."""
        if not values:
            logger.warning("Attempted to append empty row")
            raise ValueError("Row data cannot be empty")

        row = [sanitize_cell(v) for v in values]
        url = (
            f"{self._api_base}/spreadsheets/{self._spreadsheet_id}"
            f"/values/{quote(range_, safe='!:')}:append"
        )

        try:
            token = await self._access_token()
            async with httpx.AsyncClient(verify=True, timeout=self._timeout) as client:
                resp = await client.post(
                    url,
                    params={"valueInputOption": "USER_ENTERED"},
                    headers={"Authorization": f"Bearer {token}"},
                    json={"values": [row]},
                )
        except (httpx.HTTPError, GoogleAuthError) as exc:
            error = SheetsError(f"Failed to append row: {type(exc).__name__}: {exc}", values)
            logger.error("%s", error)
            raise error from exc

        if resp.status_code >= 400:
            error = SheetsError(
                f"Failed to append row: HTTP {resp.status_code}: {_api_error_message(resp)}",
                values,
                status_code=resp.status_code,
            )
            logger.error("%s", error)
            raise error

        try:
            return resp.json()
        except ValueError:
            return {}

    async def _access_token(self) -> str:
        if not self._credentials.valid:
            # google-auth refresh is blocking I/O.
            await asyncio.to_thread(self._credentials.refresh, GoogleAuthRequest())
        return str(self._credentials.token)


def _api_error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message", body["error"]))
    return resp.text[:200]
