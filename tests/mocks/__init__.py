"""
Mock factories for APNs HTTP traffic.
"""
from tests.mocks.http_mocks import (
    APNsTransport,
    create_apns_error_response,
    create_apns_success_response,
    failing_transport,
)

__all__ = [
    "APNsTransport",
    "create_apns_error_response",
    "create_apns_success_response",
    "failing_transport",
]
