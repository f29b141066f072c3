"""
Google OAuth token providers

The sync engine only needs an access token and a signed-in flag. A missing
token means "skip remote work this cycle", never an error.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx

from ..config import GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_REFRESH_TOKEN
from ..shared.time_utils import utcnow
from .google_api import GOOGLE_TOKEN_URL, build_timeout

logger = logging.getLogger(__name__)

# Refresh this long before the cached token actually expires
TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)


class StaticTokenProvider:
    """Fixed token, for tests and one-off tools"""

    def __init__(self, token: Optional[str] = None):
        self.token = token

    async def get_access_token(self) -> Optional[str]:
        return self.token

    def is_signed_in(self) -> bool:
        return bool(self.token)


class GoogleAuthProvider:
    """Exchanges the configured refresh token for short-lived access tokens"""

    def __init__(
        self,
        client_id: Optional[str] = GOOGLE_CLIENT_ID,
        client_secret: Optional[str] = GOOGLE_CLIENT_SECRET,
        refresh_token: Optional[str] = GOOGLE_REFRESH_TOKEN,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.transport = transport
        self._access_token: Optional[str] = None
        self._expires_at: Optional[datetime] = None

    def _cached_token_valid(self) -> bool:
        if not self._access_token or self._expires_at is None:
            return False
        return self._expires_at - TOKEN_EXPIRY_MARGIN > utcnow()

    def is_signed_in(self) -> bool:
        if self.refresh_token:
            return True
        return self._cached_token_valid()

    async def get_access_token(self) -> Optional[str]:
        """Return a valid access token, refreshing if necessary. None if refresh fails."""
        if self._cached_token_valid():
            return self._access_token

        if not (self.refresh_token and self.client_id and self.client_secret):
            logger.info("ℹ️ Google credentials not configured, remote sync disabled")
            return None

        logger.info("🔄 Google access token expired, refreshing...")
        try:
            async with httpx.AsyncClient(timeout=build_timeout(), transport=self.transport) as client:
                response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "refresh_token": self.refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Token refresh request failed: {e}")
            return None

        if response.status_code != 200:
            logger.error(f"❌ Token refresh failed: {response.text}")
            return None

        try:
            tokens = response.json()
        except ValueError:
            logger.error("❌ Token refresh returned a non-JSON body")
            return None

        access_token = tokens.get("access_token")
        if not access_token:
            logger.error("❌ No access token in refresh response")
            return None

        self._access_token = access_token
        self._expires_at = utcnow() + timedelta(seconds=int(tokens.get("expires_in", 3600)))
        logger.info("✅ Google access token refreshed successfully")
        return access_token
