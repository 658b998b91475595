"""
Typed failures raised by the APNs delivery pipeline.

Every error carries a one-line summary and an optional detail line for
the caller to render. None of them ever contains key material.
"""

from typing import Optional


class APNsError(Exception):
    """Base class for APNs delivery failures."""

    summary = "APNs error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.detail:
            return f"{self.summary}: {self.detail}"
        return self.summary


class InvalidKeyError(APNsError):
    """The key container is unreadable, undecodable or not a P-256 key."""

    summary = "Invalid authentication key"


class InvalidPayloadError(APNsError):
    """The payload is not well-formed JSON."""

    summary = "Invalid JSON payload"


class InvalidDeviceTokenError(APNsError):
    """The device token is empty or cannot be used in a request."""

    summary = "Invalid device token"


class InvalidTopicError(APNsError):
    """The topic is empty or cannot be carried in the apns-topic header."""

    summary = "Invalid topic"


class SigningFailedError(APNsError):
    """The signing primitive rejected a key that passed validation."""

    summary = "Failed to sign provider token"


class NetworkError(APNsError):
    """No response was obtained from APNs (DNS, TLS, reset, timeout)."""

    summary = "Network error"


class ServerError(APNsError):
    """
    APNs answered with a non-200 status.

    Only raised by DeliveryOutcome.raise_for_status(); send() itself
    returns failed deliveries as outcomes.
    """

    summary = "Server error"

    def __init__(
        self,
        status_code: int,
        reason: str = "",
        explanation: Optional[str] = None,
        is_retryable: bool = False,
        body: str = "",
    ):
        self.status_code = status_code
        self.reason = reason
        self.explanation = explanation
        self.is_retryable = is_retryable
        self.body = body
        super().__init__(f"({status_code}) {reason or 'no reason given'}")
