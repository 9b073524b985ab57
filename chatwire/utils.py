"""
Utility functions for the chatwire library.
"""

import os
import time
import uuid
import socket
import hashlib
import logging
import platform
import threading
from typing import Any, Optional

from chatwire.exceptions import ChatwireException, ConnectionClosedError, TimeoutError

logger = logging.getLogger(__name__)

def generate_message_id() -> str:
    """
    Generate a unique message ID.

    Returns:
        A message ID of the form ``msg_<millis>_<random>``.
    """
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:12]}"


def generate_device_id() -> str:
    """
    Generate a device ID from a fingerprint of the host.

    Returns:
        A device ID string.
    """
    fingerprint = "|".join([
        platform.system(),
        platform.machine(),
        socket.gethostname(),
        str(os.cpu_count() or 0),
    ])
    digest = hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()[:16]
    return f"device_{digest}_{int(time.time() * 1000):x}"


def generate_client_id() -> str:
    """
    Generate a client ID, unique per process.

    Returns:
        A client ID string.
    """
    return f"client_{uuid.uuid4().hex[:24]}_{os.getpid():x}"


def generate_timestamp() -> int:
    """
    Generate a timestamp for channel frames.

    Returns:
        Current Unix timestamp in milliseconds.
    """
    return int(time.time() * 1000)


class Waiter:
    """
    One-shot wait with a deadline and explicit cancellation.

    The first of ``set``, ``fail`` or ``cancel`` wins; later calls are
    ignored. ``wait`` returns the value, or raises ``TimeoutError`` when the
    deadline passes, ``ConnectionClosedError`` when cancelled, or the error
    given to ``fail``.
    """

    def __init__(self, operation: str):
        self.operation = operation
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._value: Any = None
        self._error: Optional[ChatwireException] = None
        self._cancelled = False

    @property
    def done(self) -> bool:
        return self._event.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _settle(self, value: Any = None, error: Optional[ChatwireException] = None,
                cancelled: bool = False) -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self._value = value
            self._error = error
            self._cancelled = cancelled
            self._event.set()
            return True

    def set(self, value: Any = None) -> bool:
        return self._settle(value=value)

    def fail(self, error: ChatwireException) -> bool:
        return self._settle(error=error)

    def cancel(self, reason: str = "cancelled") -> bool:
        error = ConnectionClosedError(f"{self.operation} {reason}", operation=self.operation)
        return self._settle(error=error, cancelled=True)

    def wait(self, timeout: float) -> Any:
        """
        Block until the wait is settled or the deadline passes.

        Args:
            timeout: Deadline in seconds.

        Returns:
            The value passed to ``set``.

        Raises:
            TimeoutError: If nothing settled the wait in time.
            ConnectionClosedError: If the wait was cancelled.
        """
        if not self._event.wait(timeout):
            # Settle as timed out so a late ``set`` is dropped
            self._settle(error=TimeoutError(
                f"{self.operation} timed out after {timeout}s",
                operation=self.operation,
                timeout=timeout
            ))

        if self._error is not None:
            raise self._error

        return self._value
