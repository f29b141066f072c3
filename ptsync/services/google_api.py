"""
Shared plumbing for Google REST clients

Every call opens its own httpx.AsyncClient with an explicit timeout and a
bearer token from the auth provider. Transport failures and non-2xx
responses are translated into the sync error taxonomy here.
"""

import logging
from typing import Any, Iterable, Optional

import httpx

from ..config import REMOTE_TIMEOUT_SECONDS
from ..exceptions import (
    AuthUnavailableError,
    RemoteRequestError,
    RemoteSchemaError,
    TransientRemoteError,
)

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"


def build_timeout(seconds: Optional[float] = None) -> httpx.Timeout:
    return httpx.Timeout(seconds or REMOTE_TIMEOUT_SECONDS)


def google_error_message(response: httpx.Response, fallback: str) -> str:
    """Append error.message from a Google error payload to the fallback text"""
    try:
        payload = response.json()
    except ValueError:
        return fallback

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return f"{fallback}: {error['message']}"
    return fallback


def is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def raise_for_google_error(response: httpx.Response, fallback: str) -> None:
    if response.is_success:
        return

    message = google_error_message(response, fallback)
    if is_transient_status(response.status_code):
        raise TransientRemoteError(message, status_code=response.status_code)
    raise RemoteRequestError(message, status_code=response.status_code)


def parse_json_object(response: httpx.Response, what: str) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        raise RemoteSchemaError(f"{what}: response is not JSON", status_code=response.status_code) from None

    if not isinstance(payload, dict):
        raise RemoteSchemaError(f"{what}: expected a JSON object", status_code=response.status_code)
    return payload


class GoogleApiClient:
    """Base class for the Sheets and Calendar clients"""

    def __init__(
        self,
        auth,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.auth = auth
        self.transport = transport
        self.timeout = build_timeout(timeout_seconds)

    async def _headers(self) -> dict[str, str]:
        token = await self.auth.get_access_token()
        if not token:
            raise AuthUnavailableError("Not authenticated")
        return {"Authorization": f"Bearer {token}"}

    async def request(
        self,
        method: str,
        url: str,
        fallback: str,
        allowed_statuses: Iterable[int] = (),
        **kwargs,
    ) -> httpx.Response:
        """Send one authenticated request and raise on failure"""
        headers = await self._headers()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientRemoteError(f"{fallback}: request timed out") from e
        except httpx.TransportError as e:
            raise TransientRemoteError(f"{fallback}: {e}") from e

        if response.status_code in allowed_statuses:
            return response

        raise_for_google_error(response, f"{fallback} ({response.status_code})")
        return response
