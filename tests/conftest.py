"""Pytest fixtures shared by the test suite

Provides a P-256 key with a known scalar, its .p8 file, credentials for
it, a sandbox notification and a frozen clock.
"""
import logging

import pytest

from pushtester.services.push.models import (
    Environment,
    NotificationRequest,
    PushCredentials,
)
from tests.mocks.key_mocks import (
    DEVICE_TOKEN,
    KEY_ID,
    KNOWN_SCALAR,
    PAYLOAD,
    TEAM_ID,
    TOPIC,
    make_private_key,
    to_pkcs8_pem,
)


@pytest.fixture
def private_key():
    """A P-256 private key with a known scalar."""
    return make_private_key(KNOWN_SCALAR)


@pytest.fixture
def key_pem(private_key):
    """PKCS#8 PEM bytes for the known key."""
    return to_pkcs8_pem(private_key)


@pytest.fixture
def key_file(tmp_path, key_pem):
    """A temporary .p8 key file."""
    path = tmp_path / f"AuthKey_{KEY_ID}.p8"
    path.write_bytes(key_pem)
    return path


@pytest.fixture
def credentials(key_file):
    """Credentials pointing at the temporary key file."""
    return PushCredentials(team_id=TEAM_ID, key_id=KEY_ID, key_path=key_file)


@pytest.fixture
def notification():
    """A sandbox notification for an all-zero device token."""
    return NotificationRequest(
        device_token=DEVICE_TOKEN,
        topic=TOPIC,
        payload=PAYLOAD,
        environment=Environment.SANDBOX,
    )


@pytest.fixture
def fixed_clock():
    """Clock frozen at 2025-01-01T00:00:00Z."""
    return lambda: 1735689600.0


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging so caplog keeps working across tests."""
    package_logger = logging.getLogger("pushtester")
    handlers = list(package_logger.handlers)
    level = package_logger.level
    propagate = package_logger.propagate
    yield
    package_logger.handlers[:] = handlers
    package_logger.setLevel(level)
    package_logger.propagate = propagate
