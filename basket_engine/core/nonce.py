"""
Nonce Manager

Process-wide source of strictly increasing L1 action nonces. Nonces are
millisecond timestamps bumped past the last issued value, so two actions
signed within the same millisecond still get distinct nonces.
"""

import threading
import time
from typing import Callable, Optional


class NonceManager:
    """Thread-safe monotonic nonce generator shared by every signer in the process."""

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._lock = threading.Lock()
        self._last = 0

    def next_nonce(self) -> int:
        with self._lock:
            nonce = max(self._clock(), self._last + 1)
            self._last = nonce
            return nonce

    @property
    def last_nonce(self) -> int:
        return self._last


_default_manager: Optional[NonceManager] = None
_default_lock = threading.Lock()


def get_nonce_manager() -> NonceManager:
    """Return the process-wide nonce manager, creating it on first use."""
    global _default_manager
    with _default_lock:
        if _default_manager is None:
            _default_manager = NonceManager()
        return _default_manager


def reset_nonce_manager() -> None:
    global _default_manager
    with _default_lock:
        _default_manager = None
