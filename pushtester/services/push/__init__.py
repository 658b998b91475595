"""
APNs delivery pipeline.

- key_loader: recover the P-256 scalar from a .p8 key container
- token_signer: sign ES256 provider authentication tokens
- apns_client: deliver one notification over HTTP/2
- response_interpreter: classify responses and explain failure reasons
"""

from pushtester.services.push.apns_client import APNsClient, send_notification
from pushtester.services.push.exceptions import (
    APNsError,
    InvalidDeviceTokenError,
    InvalidKeyError,
    InvalidPayloadError,
    InvalidTopicError,
    NetworkError,
    ServerError,
    SigningFailedError,
)
from pushtester.services.push.key_cache import SigningKeyCache
from pushtester.services.push.key_loader import (
    extract_scalar_from_pkcs8,
    load_raw_private_key,
    load_signing_key,
)
from pushtester.services.push.models import (
    DeliveryOutcome,
    Environment,
    NotificationRequest,
    PushCredentials,
    RawResponse,
)
from pushtester.services.push.response_interpreter import (
    REASON_EXPLANATIONS,
    Interpretation,
    explain,
    interpret,
)
from pushtester.services.push.token_signer import TokenSigner, generate_provider_token

__all__ = [
    # Delivery
    "APNsClient",
    "send_notification",
    "SigningKeyCache",
    # Keys and tokens
    "load_raw_private_key",
    "load_signing_key",
    "extract_scalar_from_pkcs8",
    "TokenSigner",
    "generate_provider_token",
    # Responses
    "REASON_EXPLANATIONS",
    "Interpretation",
    "explain",
    "interpret",
    # Models
    "DeliveryOutcome",
    "Environment",
    "NotificationRequest",
    "PushCredentials",
    "RawResponse",
    # Errors
    "APNsError",
    "InvalidKeyError",
    "InvalidPayloadError",
    "InvalidTopicError",
    "InvalidDeviceTokenError",
    "SigningFailedError",
    "NetworkError",
    "ServerError",
]
