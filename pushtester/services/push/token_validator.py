"""
Device token normalization for callers.

Tokens are often copied from Xcode logs as "<abcd 1234 ...>" or with
dashes; APNs wants 64 lowercase hex characters.
"""

import re
import string
from typing import Optional

from pushtester.services.push.constants import DEVICE_TOKEN_LENGTH
from pushtester.services.push.exceptions import InvalidDeviceTokenError

_SEPARATORS_RE = re.compile(r"[\s<>\-]")
_HEX_DIGITS = frozenset(string.hexdigits.lower())


def clean(token: str) -> str:
    """Return the token lowercased with spaces, angle brackets and dashes removed."""
    return _SEPARATORS_RE.sub("", token).lower()


def validate(token: str) -> Optional[str]:
    """
    Check a device token.

    Args:
        token: Device token as entered by the user

    Returns:
        A message describing the first problem found, or None if valid
    """
    cleaned = clean(token)

    if not cleaned:
        return "Device token cannot be empty"

    if len(cleaned) != DEVICE_TOKEN_LENGTH:
        return f"Device token must be exactly {DEVICE_TOKEN_LENGTH} characters (got {len(cleaned)})"

    if not set(cleaned) <= _HEX_DIGITS:
        return "Device token must contain only hexadecimal characters (0-9, a-f)"

    return None


def normalize(token: str) -> str:
    """
    Validate and clean a device token.

    Raises:
        InvalidDeviceTokenError: With the validation message
    """
    problem = validate(token)
    if problem:
        raise InvalidDeviceTokenError(problem)
    return clean(token)
