"""
Telephony Auth — Session-scoped OAuth client-credentials state.

One TelephonySession holds the credentials, the cached access token and the
user-name cache for a dashboard session. Nothing here is process-global:
callers create a session and pass it into the pipeline. Changing credentials
invalidates the token and the name cache.
"""

from __future__ import annotations

import base64
import logging
import re
import time
from typing import Any

import httpx

from app.config import settings
from app.services.telephony.errors import TelephonyAuthError

logger = logging.getLogger(__name__)

# Refresh the token this long before the platform says it expires
_EXPIRY_MARGIN_SECONDS = 60

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def _sanitize(value: str) -> str:
    """Drop control characters and surrounding whitespace from a credential."""
    return _CONTROL_CHARS.sub("", value).strip()


def _basic_auth_header(client_id: str, client_secret: str) -> str:
    raw = f"{_sanitize(client_id)}:{_sanitize(client_secret)}".encode("utf-8")
    return f"Basic {base64.b64encode(raw).decode('ascii')}"


class TelephonySession:
    """Credentials, token cache and user-name cache for one session."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        region: str | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.region = region or settings.telephony_region
        self.user_names: dict[str, str] = {}
        self._token: str | None = None
        self._token_expires_at: float = 0

    @property
    def api_base(self) -> str:
        return f"https://api.{self.region}"

    @property
    def login_url(self) -> str:
        return f"https://login.{self.region}/oauth/token"

    def invalidate(self) -> None:
        """Forget the cached token and every resolved user name."""
        self._token = None
        self._token_expires_at = 0
        self.user_names.clear()

    def update_credentials(
        self,
        client_id: str,
        client_secret: str,
        region: str | None = None,
    ) -> None:
        """Swap credentials; any change invalidates cached state."""
        new_region = region or self.region
        if (client_id, client_secret, new_region) != (
            self.client_id,
            self.client_secret,
            self.region,
        ):
            self.invalidate()
            logger.info("Telephony credentials changed (region=%s)", new_region)
        self.client_id = client_id
        self.client_secret = client_secret
        self.region = new_region

    def has_valid_token(self) -> bool:
        return self._token is not None and time.monotonic() < self._token_expires_at

    async def get_token(self) -> str:
        """Return a cached access token, requesting a new one when expired."""
        if self.has_valid_token():
            return self._token  # type: ignore[return-value]

        async with httpx.AsyncClient() as client:
            try:
                resp = await client.post(
                    self.login_url,
                    data={"grant_type": "client_credentials"},
                    headers={
                        "Authorization": _basic_auth_header(
                            self.client_id, self.client_secret
                        ),
                        "Accept": "application/json",
                    },
                    timeout=settings.http_timeout_seconds,
                )
            except httpx.HTTPError as e:
                logger.error("Token request failed (%s): %s", self.region, e)
                raise TelephonyAuthError(f"Authentication failed: {e}") from e

        if resp.status_code != 200:
            detail = _error_detail(resp)
            logger.error("Token request rejected: %s %s", resp.status_code, detail)
            raise TelephonyAuthError(
                f"Authentication failed: {resp.status_code} {detail}".strip()
            )

        data: dict[str, Any] = resp.json()
        self._token = data["access_token"]
        expires_in = float(data.get("expires_in", 0))
        self._token_expires_at = time.monotonic() + expires_in - _EXPIRY_MARGIN_SECONDS
        logger.info("Telephony token acquired (region=%s)", self.region)
        return self._token  # type: ignore[return-value]

    async def auth_headers(self) -> dict[str, str]:
        token = await self.get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }


def _error_detail(resp: httpx.Response) -> str:
    """Best-effort error description from a platform error body."""
    try:
        body = resp.json()
    except ValueError:
        return ""
    if not isinstance(body, dict):
        return ""
    return str(body.get("error_description") or body.get("message") or "")
