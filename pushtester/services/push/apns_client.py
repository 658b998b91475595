"""
APNs (Apple Push Notification service) delivery client.

Sends one notification per call through the HTTP/2 provider API with
token-based authentication:

- Local validation (key, payload, device token, topic) before any network I/O
- A freshly signed ES256 provider token per send
- A new HTTP/2 connection per send; nothing is pooled or retained
- Transport failures raised as NetworkError, never retried here
- Non-200 responses returned as DeliveryOutcome, not raised
"""

import json
import logging
import time
import uuid
from pathlib import Path
from typing import Callable, Optional, Union

import httpx
from cryptography.hazmat.primitives.asymmetric import ec

from pushtester.core.config import Settings, settings as default_settings
from pushtester.core.logging_config import clear_send_id, mask_device_token, set_send_id
from pushtester.services.push.constants import (
    APNS_DEVICE_PATH,
    CONTENT_TYPE_JSON,
    HEADER_APNS_ID,
    HEADER_APNS_TOPIC,
    HEADER_AUTHORIZATION,
    HEADER_CONTENT_TYPE,
)
from pushtester.services.push.exceptions import (
    APNsError,
    InvalidDeviceTokenError,
    InvalidPayloadError,
    InvalidTopicError,
    NetworkError,
)
from pushtester.services.push.key_cache import SigningKeyCache
from pushtester.services.push.key_loader import load_signing_key
from pushtester.services.push.models import (
    DeliveryOutcome,
    Environment,
    NotificationRequest,
    PushCredentials,
    RawResponse,
)
from pushtester.services.push.response_interpreter import to_outcome
from pushtester.services.push.token_signer import TokenSigner

logger = logging.getLogger(__name__)


class APNsClient:
    """
    Client for delivering single notifications to APNs.

    All collaborators are passed in, so tests can substitute the HTTP
    transport and the clock.

    Usage:
        credentials = PushCredentials(
            team_id="TEAMID1234",
            key_id="KEYID12345",
            key_path=Path("AuthKey_KEYID12345.p8"),
        )
        client = APNsClient(timeout=15.0)
        outcome = await client.send(
            NotificationRequest(
                device_token=token,
                topic="com.example.app",
                payload='{"aps":{"alert":"hi"}}',
            ),
            credentials,
        )

    Attributes:
        settings: Endpoint, timeout and HTTP/2 configuration
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
        timeout: Union[httpx.Timeout, float, None] = None,
        settings: Optional[Settings] = None,
        key_cache: Optional[SigningKeyCache] = None,
    ):
        """
        Initialize the client.

        Args:
            transport: httpx transport to send through (default: real network)
            clock: Unix time source for the token's iat claim
            timeout: Bound on one send; defaults to the configured timeouts
            settings: Configuration (default: the global settings)
            key_cache: Optional cache of loaded signing keys
        """
        self.settings = settings or default_settings
        self._transport = transport
        self._signer = TokenSigner(clock=clock)
        self._key_cache = key_cache

        if timeout is None:
            self._timeout = self.settings.timeout()
        elif isinstance(timeout, httpx.Timeout):
            self._timeout = timeout
        else:
            self._timeout = httpx.Timeout(timeout)

    def endpoint(self, environment: Environment) -> str:
        """APNs origin for the given environment."""
        return self.settings.endpoint_for(environment)

    def _load_key(self, credentials: PushCredentials) -> ec.EllipticCurvePrivateKey:
        if self._key_cache is not None:
            return self._key_cache.get(credentials)
        return load_signing_key(credentials.read_key_bytes())

    @staticmethod
    def validate_payload(payload: bytes) -> None:
        """
        Raises:
            InvalidPayloadError: If the payload is not well-formed JSON
        """
        try:
            json.loads(payload)
        except ValueError:
            raise InvalidPayloadError("The payload is not valid JSON") from None

    @staticmethod
    def validate_device_token(device_token: str) -> str:
        """
        Guard against tokens that cannot be put in a request path.

        Full 64-character hex validation belongs to the caller (see
        token_validator); this only rejects empty or unusable tokens.

        Returns:
            The token in lowercase

        Raises:
            InvalidDeviceTokenError: If the token is empty or unusable
        """
        if not device_token:
            raise InvalidDeviceTokenError("Device token cannot be empty")
        if not (device_token.isascii() and device_token.isalnum()):
            raise InvalidDeviceTokenError("Device token may only contain letters and digits")
        return device_token.lower()

    @staticmethod
    def validate_topic(topic: str) -> None:
        """
        Raises:
            InvalidTopicError: If the topic is empty or not printable ASCII
        """
        if not topic:
            raise InvalidTopicError("Topic cannot be empty")
        # HTTP header values are ASCII; httpx would fail while encoding
        if not (topic.isascii() and topic.isprintable()):
            raise InvalidTopicError("Topic may only contain printable ASCII characters")

    def build_request(
        self,
        request: NotificationRequest,
        provider_token: str,
        device_token: Optional[str] = None,
    ) -> httpx.Request:
        """
        Assemble the HTTP request for one notification.

        Args:
            request: The notification to send
            provider_token: Signed provider authentication token
            device_token: Validated device token (default: request.device_token)

        Returns:
            Unsent httpx.Request carrying the configured timeout
        """
        path = APNS_DEVICE_PATH.format(device_token=device_token or request.device_token)
        url = f"{self.endpoint(request.environment)}{path}"
        headers = {
            HEADER_CONTENT_TYPE: CONTENT_TYPE_JSON,
            HEADER_AUTHORIZATION: f"bearer {provider_token}",
            HEADER_APNS_TOPIC: request.topic,
        }
        return httpx.Request(
            "POST",
            url,
            headers=headers,
            content=request.payload_bytes,
            extensions={"timeout": self._timeout.as_dict()},
        )

    async def post(self, http_request: httpx.Request) -> RawResponse:
        """
        Perform the request on a fresh connection and capture the response.

        Raises:
            NetworkError: If no response was obtained
        """
        try:
            async with httpx.AsyncClient(
                http2=self.settings.APNS_HTTP2,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.send(http_request)
        except httpx.RequestError as e:
            raise NetworkError(str(e) or type(e).__name__) from e

        return RawResponse(
            status_code=response.status_code,
            body=response.content,
            apns_id=response.headers.get(HEADER_APNS_ID),
        )

    async def send(
        self,
        request: NotificationRequest,
        credentials: PushCredentials,
    ) -> DeliveryOutcome:
        """
        Send one push notification.

        Args:
            request: Device token, topic, payload and environment
            credentials: Team ID, key ID and key container

        Returns:
            DeliveryOutcome with the status, apns-id and any failure reason

        Raises:
            InvalidKeyError: Key unreadable or not a P-256 key
            InvalidPayloadError: Payload is not JSON
            InvalidDeviceTokenError: Device token empty or unusable
            InvalidTopicError: Topic empty or not printable ASCII
            SigningFailedError: Token signing failed
            NetworkError: No response obtained
        """
        context_token = set_send_id(str(uuid.uuid4()))
        start_time = time.monotonic()
        try:
            signing_key = self._load_key(credentials)
            self.validate_payload(request.payload_bytes)
            device_token = self.validate_device_token(request.device_token)
            self.validate_topic(request.topic)

            provider_token = self._signer.sign(credentials.team_id, credentials.key_id, signing_key)
            http_request = self.build_request(request, provider_token, device_token)

            logger.debug(
                "Sending APNs notification",
                extra={
                    "endpoint": self.endpoint(request.environment),
                    "device_token": mask_device_token(device_token),
                    "topic": request.topic,
                    "environment": request.environment.value,
                },
            )

            outcome = to_outcome(await self.post(http_request))

        except APNsError as e:
            logger.warning(
                f"APNs send aborted: {e.summary}",
                extra={
                    "error_type": type(e).__name__,
                    "detail": e.detail,
                    "duration_ms": int((time.monotonic() - start_time) * 1000),
                },
            )
            raise
        finally:
            clear_send_id(context_token)

        duration_ms = int((time.monotonic() - start_time) * 1000)
        if outcome.success:
            logger.info(
                "APNs notification sent successfully",
                extra={
                    "device_token": mask_device_token(device_token),
                    "apns_id": outcome.apns_id,
                    "duration_ms": duration_ms,
                },
            )
        else:
            logger.warning(
                "APNs notification rejected",
                extra={
                    "device_token": mask_device_token(device_token),
                    "status_code": outcome.status_code,
                    "reason": outcome.reason,
                    "apns_id": outcome.apns_id,
                    "duration_ms": duration_ms,
                },
            )
        return outcome


async def send_notification(
    device_token: str,
    topic: str,
    team_id: str,
    key_id: str,
    key: Union[str, Path, bytes],
    payload: Union[str, bytes],
    production: bool = False,
    **client_kwargs,
) -> DeliveryOutcome:
    """
    Send a single notification with a one-off APNsClient.

    Args:
        device_token: Normalized device token
        topic: App bundle identifier
        team_id: Apple Developer team ID
        key_id: Auth key ID
        key: Path to the .p8 file, or its PEM bytes
        payload: JSON payload text
        production: Use the production environment instead of sandbox
        **client_kwargs: Passed to APNsClient (transport, clock, timeout, ...)

    Returns:
        DeliveryOutcome
    """
    if isinstance(key, bytes):
        credentials = PushCredentials(team_id=team_id, key_id=key_id, key_pem=key)
    else:
        credentials = PushCredentials(team_id=team_id, key_id=key_id, key_path=Path(key))

    request = NotificationRequest(
        device_token=device_token,
        topic=topic,
        payload=payload,
        environment=Environment.from_flag(production),
    )
    return await APNsClient(**client_kwargs).send(request, credentials)
