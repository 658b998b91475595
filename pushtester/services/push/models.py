"""
Models for the APNs delivery pipeline.

PushCredentials is a pydantic model so callers get field validation when
they build it; the per-send request and response records are plain
dataclasses.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pushtester.services.push.constants import (
    APNS_PERMANENT_REASONS,
    APNS_RETRYABLE_REASONS,
    APNS_SUCCESS_STATUS,
)
from pushtester.services.push.exceptions import InvalidKeyError, ServerError


class Environment(str, Enum):
    """APNs environment. Device tokens are only valid in the one they were issued for."""

    PRODUCTION = "production"
    SANDBOX = "sandbox"

    @classmethod
    def from_flag(cls, production: bool) -> "Environment":
        return cls.PRODUCTION if production else cls.SANDBOX


class PushCredentials(BaseModel):
    """Provider credentials for token-based authentication.

    Attributes:
        team_id: Apple Developer team identifier (JWT issuer)
        key_id: Identifier of the .p8 auth key (JWT kid)
        key_path: Path to the .p8 key container
        key_pem: The key container itself, as PEM bytes

    Exactly one of key_path or key_pem must be given.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    team_id: str = Field(..., min_length=1, description="Apple Developer team ID")
    key_id: str = Field(..., min_length=1, description="APNs auth key ID")
    key_path: Optional[Path] = Field(None, description="Path to the .p8 key file")
    key_pem: Optional[bytes] = Field(None, repr=False, description="PEM key container")

    @model_validator(mode="after")
    def check_single_key_source(self) -> "PushCredentials":
        """Require exactly one key source."""
        if (self.key_path is None) == (self.key_pem is None):
            raise ValueError("Provide exactly one of key_path or key_pem")
        return self

    def read_key_bytes(self) -> bytes:
        """Return the raw key container bytes.

        Raises:
            InvalidKeyError: If the key file cannot be read
        """
        if self.key_pem is not None:
            return self.key_pem
        path = self.key_path.expanduser()
        try:
            return path.read_bytes()
        except OSError as e:
            raise InvalidKeyError(f"Cannot read key file {path} ({e.strerror or type(e).__name__})") from None

    def cache_key(self, container: Optional[bytes] = None) -> str:
        """Digest identifying this credential set, safe to keep in memory and logs.

        Args:
            container: Key bytes the caller already read, to avoid reading twice
        """
        if container is None:
            container = self.read_key_bytes()
        digest = hashlib.sha256()
        digest.update(self.team_id.encode("utf-8"))
        digest.update(b"\x00")
        digest.update(self.key_id.encode("utf-8"))
        digest.update(b"\x00")
        digest.update(container)
        return digest.hexdigest()


@dataclass
class NotificationRequest:
    """A single notification to deliver."""

    device_token: str
    topic: str
    payload: Union[str, bytes]
    environment: Environment = Environment.SANDBOX

    @property
    def payload_bytes(self) -> bytes:
        """Exact request body bytes."""
        if isinstance(self.payload, bytes):
            return self.payload
        return self.payload.encode("utf-8")


@dataclass
class RawResponse:
    """What APNs sent back, captured verbatim."""

    status_code: int
    body: bytes = b""
    apns_id: Optional[str] = None


@dataclass
class DeliveryOutcome:
    """Result of one delivery attempt."""

    status_code: int
    success: bool
    apns_id: Optional[str] = None
    reason: str = ""  # APNs reason code, empty when absent
    body: str = ""
    explanation: Optional[str] = None  # Remediation text for known reasons
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_retryable(self) -> bool:
        """Whether a caller may retry this delivery with backoff."""
        return not self.success and self.reason in APNS_RETRYABLE_REASONS

    @property
    def is_permanent(self) -> bool:
        """Whether the failure is an input problem that retrying cannot fix."""
        return not self.success and self.reason in APNS_PERMANENT_REASONS

    def raise_for_status(self) -> "DeliveryOutcome":
        """Raise ServerError unless the status was 200.

        Returns:
            self, so the call can be chained
        """
        if self.status_code != APNS_SUCCESS_STATUS:
            raise ServerError(
                status_code=self.status_code,
                reason=self.reason,
                explanation=self.explanation,
                is_retryable=self.is_retryable,
                body=self.body,
            )
        return self
