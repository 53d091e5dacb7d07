"""
Telephony Errors — Failures raised by the telephony platform client.
"""

from __future__ import annotations


class TelephonyError(Exception):
    """Base class for telephony platform failures."""


class TelephonyAuthError(TelephonyError):
    """OAuth token request was rejected or failed."""


class TelephonyAPIError(TelephonyError):
    """A platform API call returned a non-success status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class QueueNotFoundError(TelephonyError):
    """No queue matched the requested name."""
