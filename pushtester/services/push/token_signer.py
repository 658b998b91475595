"""
Provider authentication token (JWT) generation.

Produces the compact three-segment token APNs expects:

    base64url({"alg":"ES256","kid":<key id>}) .
    base64url({"iss":<team id>,"iat":<unix seconds>}) .
    base64url(r || s)

Encoding and ES256 signing are delegated to PyJWT, which serializes
with compact separators, strips base64 padding and converts the DER
ECDSA signature to the raw 64-byte form.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, Union

import jwt
from cryptography.hazmat.primitives.asymmetric import ec
from jwt.utils import base64url_decode as _b64url_decode
from jwt.utils import base64url_encode as _b64url_encode

from pushtester.services.push.constants import JWT_ALGORITHM
from pushtester.services.push.exceptions import InvalidKeyError, SigningFailedError
from pushtester.services.push.key_loader import signing_key_from_scalar

logger = logging.getLogger(__name__)

SigningKey = Union[bytes, ec.EllipticCurvePrivateKey]


def base64url_encode(data: Union[bytes, str]) -> str:
    """RFC 4648 section 5 encoding without padding."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return _b64url_encode(data).decode("ascii")


def base64url_decode(segment: Union[bytes, str]) -> bytes:
    """Decode an unpadded base64url segment."""
    if isinstance(segment, str):
        segment = segment.encode("ascii")
    return _b64url_decode(segment)


def decode_segment(segment: str) -> Dict[str, Any]:
    """Decode a header or claims segment back into a dictionary."""
    return json.loads(base64url_decode(segment))


class TokenSigner:
    """
    Signs provider authentication tokens.

    A fresh token is produced on every call; APNs rejects tokens older
    than an hour, so the only obligation here is stamping the current time.

    Attributes:
        clock: Callable returning the current Unix time in seconds
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def build_header(self, key_id: str) -> Dict[str, str]:
        return {"alg": JWT_ALGORITHM, "kid": key_id}

    def build_claims(self, team_id: str) -> Dict[str, Any]:
        return {"iss": team_id, "iat": int(self.clock())}

    def sign(self, team_id: str, key_id: str, private_key: SigningKey) -> str:
        """
        Build and sign a provider authentication token.

        Args:
            team_id: Apple Developer team ID (iss claim)
            key_id: Auth key ID (kid header)
            private_key: Raw 32-byte scalar or a loaded P-256 key

        Returns:
            The token string "header.claims.signature"

        Raises:
            SigningFailedError: If the signing primitive rejects the key or input
        """
        if isinstance(private_key, (bytes, bytearray)):
            try:
                private_key = signing_key_from_scalar(bytes(private_key))
            except InvalidKeyError as e:
                raise SigningFailedError(e.detail) from None

        claims = self.build_claims(team_id)
        header = self.build_header(key_id)

        try:
            token = jwt.encode(
                claims,
                private_key,
                algorithm=JWT_ALGORITHM,
                # PyJWT adds "typ": "JWT" unless told otherwise
                headers={"kid": header["kid"], "typ": None},
            )
        except (jwt.exceptions.PyJWTError, ValueError, TypeError) as e:
            logger.error(
                "Failed to sign APNs provider token",
                extra={"key_id": key_id, "error_type": type(e).__name__},
            )
            raise SigningFailedError(str(e) or type(e).__name__) from e

        logger.debug(
            "Generated APNs provider token",
            extra={"team_id": team_id, "key_id": key_id, "iat": claims["iat"]},
        )
        return token


def generate_provider_token(
    team_id: str,
    key_id: str,
    private_key: SigningKey,
    clock: Callable[[], float] = time.time,
) -> str:
    """Sign a provider token with a one-off TokenSigner."""
    return TokenSigner(clock=clock).sign(team_id, key_id, private_key)
