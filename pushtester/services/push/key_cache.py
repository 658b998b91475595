"""
Thread-safe cache of loaded signing keys.

Loading a key on every send is cheap, so the cache is optional. When an
APNsClient is given one, keys are cached under PushCredentials.cache_key(),
which changes whenever the team ID, key ID or key container changes.
"""

import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from cryptography.hazmat.primitives.asymmetric import ec

from pushtester.services.push.key_loader import load_signing_key
from pushtester.services.push.models import PushCredentials

logger = logging.getLogger(__name__)


class SigningKeyCache:
    """Caches loaded P-256 keys per credential set."""

    def __init__(self, loader: Callable[[bytes], ec.EllipticCurvePrivateKey] = load_signing_key):
        self._loader = loader
        self._lock = threading.Lock()
        # key_id -> (credential digest, key)
        self._entries: Dict[str, Tuple[str, ec.EllipticCurvePrivateKey]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, credentials: PushCredentials) -> ec.EllipticCurvePrivateKey:
        """
        Return the signing key for a credential set, loading it on a miss.

        A key cached for the same key ID but a different credential set is
        replaced.

        Raises:
            InvalidKeyError: If the key cannot be read or decoded
        """
        container = credentials.read_key_bytes()
        digest = credentials.cache_key(container)

        with self._lock:
            entry = self._entries.get(credentials.key_id)
            if entry is not None and entry[0] == digest:
                return entry[1]

        # Load outside the lock; two racing loads of the same key are harmless
        key = self._loader(container)

        with self._lock:
            previous = self._entries.get(credentials.key_id)
            if previous is not None and previous[0] != digest:
                logger.debug(
                    "Replacing cached signing key after credential change",
                    extra={"key_id": credentials.key_id},
                )
            self._entries[credentials.key_id] = (digest, key)
        return key

    def invalidate(self, key_id: Optional[str] = None) -> None:
        """Drop the entry for one key ID, or every entry."""
        with self._lock:
            if key_id is None:
                self._entries.clear()
            else:
                self._entries.pop(key_id, None)
