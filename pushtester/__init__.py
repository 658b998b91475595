"""Send test push notifications through the APNs HTTP/2 provider API."""

__version__ = "1.0.0"

from pushtester.services.push import (  # noqa: E402
    APNsClient,
    APNsError,
    DeliveryOutcome,
    Environment,
    NotificationRequest,
    PushCredentials,
    send_notification,
)

__all__ = [
    "__version__",
    "APNsClient",
    "APNsError",
    "DeliveryOutcome",
    "Environment",
    "NotificationRequest",
    "PushCredentials",
    "send_notification",
]
