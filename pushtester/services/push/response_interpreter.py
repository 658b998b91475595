"""
Classification of APNs responses.

Success is status 200 and nothing else. For any other status the body is
parsed as JSON and its "reason" field becomes the failure reason; the
reason is then looked up in REASON_EXPLANATIONS for remediation advice.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional, Union

from pushtester.services.push.constants import (
    APNS_PERMANENT_REASONS,
    APNS_RETRYABLE_REASONS,
    APNS_SUCCESS_STATUS,
)
from pushtester.services.push.models import DeliveryOutcome, RawResponse

logger = logging.getLogger(__name__)

RETRYABLE_REASONS = APNS_RETRYABLE_REASONS
PERMANENT_REASONS = APNS_PERMANENT_REASONS

_AUTHENTICATION_PROBLEM = (
    "There's a problem with your authentication:\n"
    "• The .p8 key may not have APNs permissions enabled\n"
    "• You might be using a sandbox token with production endpoint (or vice versa)\n"
    "• The key may have been revoked in the Apple Developer Portal"
)

_SERVICE_PROBLEM = (
    "APNs is experiencing issues:\n"
    "• This is a temporary server-side problem\n"
    "• Wait a few moments and try again\n"
    "• Check Apple's System Status page if the problem persists"
)

# Reason code -> remediation text shown to the user
REASON_EXPLANATIONS = {
    "BadDeviceToken": (
        "The device token is invalid. This usually means:\n"
        "• The token was generated for a different environment (sandbox vs production)\n"
        "• The token has been invalidated (app uninstalled or re-registered)\n"
        "• The token format is incorrect or corrupted"
    ),
    "Unregistered": (
        "The device token is no longer active. This means:\n"
        "• The app has been uninstalled from the device\n"
        "• The user disabled push notifications for this app\n"
        "• The token has expired and needs to be refreshed"
    ),
    "BadCertificate": _AUTHENTICATION_PROBLEM,
    "BadCertificateEnvironment": _AUTHENTICATION_PROBLEM,
    "ExpiredProviderToken": (
        "The JWT token has expired. This is usually a clock sync issue:\n"
        "• Check that your system clock is accurate\n"
        "• JWTs are only valid for 1 hour after generation"
    ),
    "InvalidProviderToken": (
        "The JWT token is invalid. Check:\n"
        "• Team ID is correct and matches your Apple Developer account\n"
        "• Key ID matches the .p8 file you're using\n"
        "• The .p8 file is complete and not corrupted"
    ),
    "MissingProviderToken": (
        "No authentication token was provided. This is an internal error.\n"
        "Please report this issue."
    ),
    "TopicDisallowed": (
        "The bundle ID (topic) is not allowed. This means:\n"
        "• The bundle ID doesn't match any app in your team\n"
        "• The .p8 key doesn't have permission for this app\n"
        "• Check that the bundle ID is spelled correctly"
    ),
    "BadMessageId": (
        "The apns-id header value is invalid.\n"
        "This shouldn't happen with this tool - please report the issue."
    ),
    "PayloadEmpty": (
        "The push notification payload is empty.\n"
        "Provide a valid JSON payload with at least an 'aps' key."
    ),
    "PayloadTooLarge": (
        "The payload exceeds the maximum allowed size:\n"
        "• Regular notifications: 4KB max\n"
        "• VoIP notifications: 5KB max\n"
        "Reduce the size of your payload content."
    ),
    "BadTopic": (
        "The bundle ID (topic) is invalid:\n"
        "• Check that the bundle ID format is correct (e.g., com.example.app)\n"
        "• Ensure there are no typos or extra characters"
    ),
    "DeviceTokenNotForTopic": (
        "The device token doesn't match this bundle ID:\n"
        "• The token was generated for a different app\n"
        "• Verify you're using the correct token for this app"
    ),
    "TooManyRequests": (
        "Too many requests to APNs. You're being rate-limited:\n"
        "• Wait a moment before sending more notifications\n"
        "• Reduce the frequency of push notifications"
    ),
    "InternalServerError": _SERVICE_PROBLEM,
    "ServiceUnavailable": _SERVICE_PROBLEM,
    "Shutdown": _SERVICE_PROBLEM,
}


@dataclass(frozen=True)
class Interpretation:
    """Success flag, reason code and remediation for one response."""

    success: bool
    reason: str = ""
    explanation: Optional[str] = None


def explain(reason: Optional[str]) -> Optional[str]:
    """Return the remediation text for a reason code, or None if unknown."""
    if not reason:
        return None
    return REASON_EXPLANATIONS.get(reason)


def extract_reason(body: Union[bytes, str, None]) -> str:
    """
    Pull the "reason" field out of an APNs error body.

    Returns an empty string when the body is empty, not JSON, not an
    object, or has no string reason.
    """
    if not body:
        return ""
    try:
        parsed = json.loads(body)
    except (ValueError, TypeError):
        logger.debug("APNs error body is not JSON", extra={"body_length": len(body)})
        return ""
    if not isinstance(parsed, dict):
        logger.debug(
            "APNs error body is not a JSON object",
            extra={"body_type": type(parsed).__name__},
        )
        return ""
    reason = parsed.get("reason")
    return reason if isinstance(reason, str) else ""


def interpret(status_code: int, body: Union[bytes, str, None] = b"") -> Interpretation:
    """
    Classify a response.

    Args:
        status_code: HTTP status returned by APNs
        body: Raw response body

    Returns:
        Interpretation; success only for status 200, whatever the body says
    """
    if status_code == APNS_SUCCESS_STATUS:
        return Interpretation(success=True)

    reason = extract_reason(body)
    return Interpretation(success=False, reason=reason, explanation=explain(reason))


def to_outcome(raw: RawResponse) -> DeliveryOutcome:
    """Turn a captured response into the DeliveryOutcome returned to callers."""
    result = interpret(raw.status_code, raw.body)
    return DeliveryOutcome(
        status_code=raw.status_code,
        success=result.success,
        apns_id=raw.apns_id,
        reason=result.reason,
        body=raw.body.decode("utf-8", errors="replace"),
        explanation=result.explanation,
    )
