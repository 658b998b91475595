"""
Tests for the APNs delivery client.

All tests run against httpx.MockTransport; nothing touches the network.
"""

import json
import logging
from unittest.mock import MagicMock

import httpx
import jwt
import pytest

from pushtester.core.config import Settings
from pushtester.services.push.apns_client import APNsClient, send_notification
from pushtester.services.push.exceptions import (
    InvalidDeviceTokenError,
    InvalidKeyError,
    InvalidPayloadError,
    InvalidTopicError,
    NetworkError,
    ServerError,
)
from pushtester.services.push.key_cache import SigningKeyCache
from pushtester.services.push.key_loader import load_signing_key
from pushtester.services.push.models import (
    Environment,
    NotificationRequest,
    PushCredentials,
)
from pushtester.services.push.response_interpreter import REASON_EXPLANATIONS
from pushtester.services.push.token_signer import decode_segment
from tests.mocks import (
    APNsTransport,
    create_apns_error_response,
    create_apns_success_response,
    failing_transport,
)
from tests.mocks.key_mocks import (
    DEVICE_TOKEN,
    KEY_ID,
    KNOWN_SCALAR,
    PAYLOAD,
    TEAM_ID,
    TOPIC,
)


def bearer_token(http_request: httpx.Request) -> str:
    scheme, _, token = http_request.headers["authorization"].partition(" ")
    assert scheme == "bearer"
    return token


# =============================================================================
# Request construction
# =============================================================================

class TestRequestShape:
    """Tests for what goes on the wire."""

    @pytest.mark.asyncio
    async def test_sandbox_request(self, notification, credentials, fixed_clock, private_key):
        transport = APNsTransport()
        client = APNsClient(transport=transport, clock=fixed_clock)

        await client.send(notification, credentials)

        assert len(transport.requests) == 1
        sent = transport.last_request
        assert sent.method == "POST"
        assert str(sent.url) == f"https://api.development.push.apple.com/3/device/{DEVICE_TOKEN}"
        assert sent.headers["content-type"] == "application/json"
        assert sent.headers["apns-topic"] == TOPIC
        assert sent.content == PAYLOAD.encode()

        token = bearer_token(sent)
        assert decode_segment(token.split(".")[0]) == {"alg": "ES256", "kid": KEY_ID}
        assert decode_segment(token.split(".")[1]) == {"iss": TEAM_ID, "iat": 1735689600}
        jwt.decode(token, private_key.public_key(), algorithms=["ES256"])

    @pytest.mark.asyncio
    async def test_production_endpoint(self, credentials, fixed_clock):
        transport = APNsTransport()
        request = NotificationRequest(
            device_token=DEVICE_TOKEN,
            topic=TOPIC,
            payload=PAYLOAD,
            environment=Environment.PRODUCTION,
        )

        await APNsClient(transport=transport, clock=fixed_clock).send(request, credentials)

        assert transport.last_request.url.host == "api.push.apple.com"
        assert transport.last_request.url.path == f"/3/device/{DEVICE_TOKEN}"

    @pytest.mark.asyncio
    async def test_device_token_lowercased_in_path(self, credentials):
        transport = APNsTransport()
        request = NotificationRequest(device_token="AB" * 32, topic=TOPIC, payload=PAYLOAD)

        await APNsClient(transport=transport).send(request, credentials)

        assert transport.last_request.url.path == "/3/device/" + "ab" * 32

    @pytest.mark.asyncio
    async def test_payload_sent_byte_for_byte(self, credentials):
        """The client never re-serializes the payload."""
        payload = '{ "aps" : { "alert" : "héllo" },\n  "custom": [1, 2.50] }'
        transport = APNsTransport()
        request = NotificationRequest(device_token=DEVICE_TOKEN, topic=TOPIC, payload=payload)

        await APNsClient(transport=transport).send(request, credentials)

        assert transport.last_request.content == payload.encode("utf-8")

    @pytest.mark.asyncio
    async def test_fresh_token_per_send(self, notification, credentials):
        ticks = iter([1000.0, 2000.0])
        transport = APNsTransport()
        client = APNsClient(transport=transport, clock=lambda: next(ticks))

        await client.send(notification, credentials)
        await client.send(notification, credentials)

        first, second = (bearer_token(r) for r in transport.requests)
        assert decode_segment(first.split(".")[1])["iat"] == 1000
        assert decode_segment(second.split(".")[1])["iat"] == 2000

    @pytest.mark.asyncio
    async def test_endpoint_override_from_settings(self, notification, credentials):
        transport = APNsTransport()
        custom = Settings(APNS_SANDBOX_URL="https://apns.test.invalid:2197/")

        await APNsClient(transport=transport, settings=custom).send(notification, credentials)

        assert str(transport.last_request.url) == f"https://apns.test.invalid:2197/3/device/{DEVICE_TOKEN}"

    def test_timeout_carried_on_request(self, notification):
        client = APNsClient(timeout=5.0)
        http_request = client.build_request(notification, "a.b.c")

        assert http_request.extensions["timeout"] == httpx.Timeout(5.0).as_dict()

    def test_default_timeout_from_settings(self):
        custom = Settings(APNS_REQUEST_TIMEOUT=12.0, APNS_CONNECT_TIMEOUT=3.0)
        client = APNsClient(settings=custom)

        assert client._timeout == httpx.Timeout(12.0, connect=3.0)

    def test_build_request_headers(self, notification):
        http_request = APNsClient().build_request(notification, "h.c.s")

        assert http_request.headers["authorization"] == "bearer h.c.s"
        assert http_request.headers["apns-topic"] == TOPIC
        assert http_request.url.path == f"/3/device/{DEVICE_TOKEN}"


# =============================================================================
# Responses
# =============================================================================

class TestResponses:
    """Tests for DeliveryOutcome construction."""

    @pytest.mark.asyncio
    async def test_success(self, notification, credentials):
        transport = APNsTransport(create_apns_success_response(apns_id="11111111-2222-3333-4444-555555555555"))

        outcome = await APNsClient(transport=transport).send(notification, credentials)

        assert outcome.success is True
        assert outcome.status_code == 200
        assert outcome.apns_id == "11111111-2222-3333-4444-555555555555"
        assert outcome.reason == ""
        assert outcome.explanation is None
        assert outcome.raise_for_status() is outcome

    @pytest.mark.asyncio
    async def test_bad_device_token_returned_not_raised(self, notification, credentials):
        transport = APNsTransport(create_apns_error_response(400, "BadDeviceToken"))

        outcome = await APNsClient(transport=transport).send(notification, credentials)

        assert outcome.success is False
        assert outcome.status_code == 400
        assert outcome.reason == "BadDeviceToken"
        assert outcome.explanation == REASON_EXPLANATIONS["BadDeviceToken"]
        assert outcome.apns_id == "EC1BF194-B3B2-424A-91B6-7D0AA3B0A6E7"
        assert outcome.is_permanent is True

    @pytest.mark.asyncio
    async def test_raise_for_status(self, notification, credentials):
        transport = APNsTransport(create_apns_error_response(503, "ServiceUnavailable"))

        outcome = await APNsClient(transport=transport).send(notification, credentials)

        with pytest.raises(ServerError) as exc_info:
            outcome.raise_for_status()
        assert exc_info.value.status_code == 503
        assert exc_info.value.reason == "ServiceUnavailable"
        assert exc_info.value.is_retryable is True

    @pytest.mark.asyncio
    async def test_error_without_json_body(self, notification, credentials):
        transport = APNsTransport(
            create_apns_error_response(502, apns_id=None, content=b"<html>Bad Gateway</html>")
        )

        outcome = await APNsClient(transport=transport).send(notification, credentials)

        assert outcome.success is False
        assert outcome.status_code == 502
        assert outcome.reason == ""
        assert outcome.apns_id is None
        assert "Bad Gateway" in outcome.body

    @pytest.mark.asyncio
    async def test_no_automatic_retry(self, notification, credentials):
        transport = APNsTransport(create_apns_error_response(429, "TooManyRequests"))

        outcome = await APNsClient(transport=transport).send(notification, credentials)

        assert outcome.is_retryable is True
        assert len(transport.requests) == 1


# =============================================================================
# Local validation and transport failures
# =============================================================================

class TestFailures:
    """Tests for errors raised by send()."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", ["not json", "{", "", "{'aps': {}}"])
    async def test_invalid_payload_sends_nothing(self, credentials, payload):
        transport = APNsTransport()
        request = NotificationRequest(device_token=DEVICE_TOKEN, topic=TOPIC, payload=payload)

        with pytest.raises(InvalidPayloadError):
            await APNsClient(transport=transport).send(request, credentials)

        assert transport.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("device_token", ["", "abc/def", "ab cd", "ab%2F"])
    async def test_invalid_device_token_sends_nothing(self, credentials, device_token):
        transport = APNsTransport()
        request = NotificationRequest(device_token=device_token, topic=TOPIC, payload=PAYLOAD)

        with pytest.raises(InvalidDeviceTokenError):
            await APNsClient(transport=transport).send(request, credentials)

        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_invalid_key_sends_nothing(self, notification):
        transport = APNsTransport()
        credentials = PushCredentials(team_id=TEAM_ID, key_id=KEY_ID, key_pem=b"garbage")

        with pytest.raises(InvalidKeyError):
            await APNsClient(transport=transport).send(notification, credentials)

        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_missing_key_file(self, notification, tmp_path):
        credentials = PushCredentials(team_id=TEAM_ID, key_id=KEY_ID, key_path=tmp_path / "missing.p8")

        with pytest.raises(InvalidKeyError, match="Cannot read key file"):
            await APNsClient(transport=APNsTransport()).send(notification, credentials)

    @pytest.mark.asyncio
    async def test_key_checked_before_payload(self):
        """With everything wrong, the key error wins."""
        credentials = PushCredentials(team_id=TEAM_ID, key_id=KEY_ID, key_pem=b"garbage")
        request = NotificationRequest(device_token="", topic=TOPIC, payload="not json")

        with pytest.raises(InvalidKeyError):
            await APNsClient(transport=APNsTransport()).send(request, credentials)

    @pytest.mark.asyncio
    async def test_payload_checked_before_device_token(self, credentials):
        request = NotificationRequest(device_token="", topic=TOPIC, payload="not json")

        with pytest.raises(InvalidPayloadError):
            await APNsClient(transport=APNsTransport()).send(request, credentials)

    @pytest.mark.asyncio
    async def test_connection_failure(self, notification, credentials):
        client = APNsClient(transport=failing_transport())

        with pytest.raises(NetworkError) as exc_info:
            await client.send(notification, credentials)

        assert "Name or service not known" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_timeout_is_network_error(self, notification, credentials):
        transport = failing_transport(lambda request: httpx.ReadTimeout("timed out", request=request))

        with pytest.raises(NetworkError):
            await APNsClient(transport=transport).send(notification, credentials)

    @pytest.mark.asyncio
    async def test_undecodable_response_is_network_error(self, notification, credentials):
        """A body that fails content decoding is reported as NetworkError."""
        transport = httpx.MockTransport(
            lambda request: httpx.Response(
                400,
                headers={"content-encoding": "gzip"},
                stream=httpx.ByteStream(b"not gzip data"),
            )
        )

        with pytest.raises(NetworkError) as exc_info:
            await APNsClient(transport=transport).send(notification, credentials)

        assert isinstance(exc_info.value.__cause__, httpx.DecodingError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("topic", ["", "com.exämple.app", "com.example.app\r\nx-injected: 1"])
    async def test_invalid_topic_sends_nothing(self, credentials, topic):
        transport = APNsTransport()
        request = NotificationRequest(device_token=DEVICE_TOKEN, topic=topic, payload=PAYLOAD)

        with pytest.raises(InvalidTopicError):
            await APNsClient(transport=transport).send(request, credentials)

        assert transport.requests == []

    def test_validate_topic_accepts_bundle_id(self):
        APNsClient.validate_topic("com.example.app.voip")


# =============================================================================
# Keys, caching and logging
# =============================================================================

class TestKeysAndLogging:
    """Tests for key sources, the key cache and log hygiene."""

    @pytest.mark.asyncio
    async def test_key_pem_source(self, notification, key_pem, private_key):
        transport = APNsTransport()
        credentials = PushCredentials(team_id=TEAM_ID, key_id=KEY_ID, key_pem=key_pem)

        await APNsClient(transport=transport).send(notification, credentials)

        jwt.decode(bearer_token(transport.last_request), private_key.public_key(), algorithms=["ES256"])

    @pytest.mark.asyncio
    async def test_key_cache_loads_once(self, notification, credentials):
        loader = MagicMock(side_effect=load_signing_key)
        cache = SigningKeyCache(loader=loader)
        client = APNsClient(transport=APNsTransport(), key_cache=cache)

        await client.send(notification, credentials)
        await client.send(notification, credentials)

        assert loader.call_count == 1
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_logs_never_contain_key_material(self, notification, key_pem, caplog):
        caplog.set_level(logging.DEBUG, logger="pushtester")
        credentials = PushCredentials(team_id=TEAM_ID, key_id=KEY_ID, key_pem=key_pem)
        transport = APNsTransport(create_apns_error_response(403, "InvalidProviderToken"))

        await APNsClient(transport=transport).send(notification, credentials)

        token = bearer_token(transport.last_request)
        key_body = key_pem.decode().splitlines()[1]
        for record in caplog.records:
            rendered = record.getMessage() + json.dumps(record.__dict__, default=str)
            assert KNOWN_SCALAR.hex() not in rendered
            assert key_body not in rendered
            assert token not in rendered

    @pytest.mark.asyncio
    async def test_rejection_logged_as_warning(self, notification, credentials, caplog):
        caplog.set_level(logging.INFO, logger="pushtester")
        transport = APNsTransport(create_apns_error_response(410, "Unregistered"))

        await APNsClient(transport=transport).send(notification, credentials)

        rejected = [r for r in caplog.records if r.getMessage() == "APNs notification rejected"]
        assert len(rejected) == 1
        assert rejected[0].levelno == logging.WARNING
        assert rejected[0].reason == "Unregistered"


class TestSendNotification:
    """Tests for the send_notification convenience function."""

    @pytest.mark.asyncio
    async def test_with_key_path(self, key_file, fixed_clock):
        transport = APNsTransport()

        outcome = await send_notification(
            DEVICE_TOKEN, TOPIC, TEAM_ID, KEY_ID, str(key_file), PAYLOAD,
            transport=transport, clock=fixed_clock,
        )

        assert outcome.success is True
        assert transport.last_request.url.host == "api.development.push.apple.com"

    @pytest.mark.asyncio
    async def test_with_pem_bytes_in_production(self, key_pem):
        transport = APNsTransport()

        outcome = await send_notification(
            DEVICE_TOKEN, TOPIC, TEAM_ID, KEY_ID, key_pem, PAYLOAD,
            production=True, transport=transport,
        )

        assert outcome.success is True
        assert transport.last_request.url.host == "api.push.apple.com"
