"""
Key loader for APNs .p8 auth keys.

A .p8 file is a PEM-armoured PKCS#8 envelope around a P-256 private key.
The loader recovers the raw 32-byte private scalar:

1. Strip the PEM armour and whitespace, base64-decode the DER envelope.
2. Accept an X9.63 blob (0x04 || X || Y || d) whose point matches d.
3. Decode the envelope strictly (PKCS#8 or SEC1 DER). If that fails, scan
   for the OCTET STRING marker 0x04 0x20 and take the 32 bytes after it.
4. Fall back to a bare 32-byte scalar.

Nothing in this module ever logs or reports the key bytes.
"""

import base64
import binascii
import logging
import re
from typing import Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from pushtester.services.push.constants import (
    P256_ORDER,
    P256_SCALAR_LENGTH,
    PKCS8_SCALAR_MARKER,
    X963_PRIVATE_KEY_LENGTH,
)
from pushtester.services.push.exceptions import InvalidKeyError

logger = logging.getLogger(__name__)

KeyContainer = Union[bytes, str]

_PEM_BOUNDARY_RE = re.compile(r"-----(?:BEGIN|END) ([A-Z0-9 ]+)-----")


def _to_text(container: KeyContainer) -> str:
    if isinstance(container, str):
        return container
    try:
        return container.decode("ascii")
    except UnicodeDecodeError:
        raise InvalidKeyError("Key file is not PEM text") from None


def decode_container(container: KeyContainer) -> bytes:
    """
    Strip PEM armour and whitespace and base64-decode the remainder.

    Args:
        container: PEM text of the key, as bytes or str

    Returns:
        The DER bytes inside the armour

    Raises:
        InvalidKeyError: If the container is empty, encrypted or not base64
    """
    text = _to_text(container)

    for label in _PEM_BOUNDARY_RE.findall(text):
        if "ENCRYPTED" in label:
            raise InvalidKeyError("Encrypted private keys are not supported")

    body = "".join(_PEM_BOUNDARY_RE.sub("", text).split())
    if not body:
        raise InvalidKeyError("Key file is empty")

    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidKeyError("Invalid base64 encoding") from None


def _is_valid_scalar(candidate: bytes) -> bool:
    value = int.from_bytes(candidate, "big")
    return 0 < value < P256_ORDER


def _scalar_from_der(data: bytes) -> Optional[bytes]:
    """Strict DER decode; None when the blob is not a DER private key."""
    try:
        key = serialization.load_der_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm):
        return None

    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise InvalidKeyError("APNs key must be an EC private key (ES256)")
    if not isinstance(key.curve, ec.SECP256R1):
        raise InvalidKeyError(f"APNs key must use the P-256 curve, not {key.curve.name}")

    return key.private_numbers().private_value.to_bytes(P256_SCALAR_LENGTH, "big")


def extract_scalar_from_pkcs8(data: bytes) -> Optional[bytes]:
    """
    Find the private scalar by scanning for the 0x04 0x20 marker.

    The marker may sit at any offset. A match only counts when all 32
    following bytes are inside the buffer and form a valid P-256 scalar;
    the first such run is returned.

    Args:
        data: Decoded DER bytes

    Returns:
        The 32-byte scalar, or None if no run qualifies
    """
    start = data.find(PKCS8_SCALAR_MARKER)
    while start != -1:
        key_start = start + len(PKCS8_SCALAR_MARKER)
        candidate = data[key_start:key_start + P256_SCALAR_LENGTH]
        if len(candidate) == P256_SCALAR_LENGTH and _is_valid_scalar(candidate):
            return candidate
        start = data.find(PKCS8_SCALAR_MARKER, start + 1)
    return None


def _scalar_from_x963(data: bytes) -> Optional[bytes]:
    """Accept 0x04 || X || Y || d only when d really produces (X, Y)."""
    if len(data) != X963_PRIVATE_KEY_LENGTH or data[0] != 0x04:
        return None

    size = P256_SCALAR_LENGTH
    x = int.from_bytes(data[1:1 + size], "big")
    y = int.from_bytes(data[1 + size:1 + 2 * size], "big")
    scalar = data[1 + 2 * size:]
    if not _is_valid_scalar(scalar):
        return None

    public = ec.derive_private_key(
        int.from_bytes(scalar, "big"), ec.SECP256R1()
    ).public_key().public_numbers()
    if public.x != x or public.y != y:
        return None
    return scalar


def load_raw_private_key(container: KeyContainer) -> bytes:
    """
    Recover the raw P-256 private scalar from a .p8 key container.

    Args:
        container: PEM text of the key, as bytes or str

    Returns:
        32-byte big-endian private scalar

    Raises:
        InvalidKeyError: If the container cannot be decoded or holds no
            usable P-256 key
    """
    data = decode_container(container)

    if len(data) < P256_SCALAR_LENGTH:
        raise InvalidKeyError(f"Key data too short ({len(data)} bytes)")

    # X9.63 blobs start with 0x04 and cannot be DER; check before scanning
    # so a marker inside X or Y is never mistaken for the scalar
    scalar = _scalar_from_x963(data)
    if scalar is not None:
        logger.debug("Loaded APNs private key", extra={"key_format": "x963"})
        return scalar

    if len(data) > P256_SCALAR_LENGTH:
        scalar = _scalar_from_der(data)
        if scalar is not None:
            logger.debug("Loaded APNs private key", extra={"key_format": "der"})
            return scalar

        scalar = extract_scalar_from_pkcs8(data)
        if scalar is not None:
            logger.debug("Loaded APNs private key", extra={"key_format": "pkcs8_scan"})
            return scalar

        raise InvalidKeyError("Unrecognized key structure (no P-256 private key found)")

    if not _is_valid_scalar(data):
        raise InvalidKeyError("Scalar is not a valid P-256 private key")

    logger.debug("Loaded APNs private key", extra={"key_format": "raw"})
    return data


def signing_key_from_scalar(scalar: bytes) -> ec.EllipticCurvePrivateKey:
    """
    Build a cryptography EC key from a raw scalar.

    Raises:
        InvalidKeyError: If the scalar is not a valid P-256 private key
    """
    if len(scalar) != P256_SCALAR_LENGTH or not _is_valid_scalar(scalar):
        raise InvalidKeyError("Scalar is not a valid P-256 private key")
    try:
        return ec.derive_private_key(int.from_bytes(scalar, "big"), ec.SECP256R1())
    except ValueError:
        raise InvalidKeyError("Scalar is not a valid P-256 private key") from None


def load_signing_key(container: KeyContainer) -> ec.EllipticCurvePrivateKey:
    """Load a .p8 key container straight into a signing key."""
    return signing_key_from_scalar(load_raw_private_key(container))
