"""
Delivery tracking for the chatwire library.

Correlates outbound message frames with their acknowledgments. Each record
is settled exactly once: by its acknowledgment, by its deadline, or by a
connection-closed rejection.
"""

import time
import logging
import threading
from concurrent.futures import Future
from typing import Dict, Any, Optional, List, Callable

from chatwire.exceptions import ChatwireException, TimeoutError, ValidationError

logger = logging.getLogger(__name__)

class PendingDelivery:
    """
    An outbound message awaiting acknowledgment.
    """

    def __init__(self, message_id: str, payload: Dict[str, Any], future: Future):
        self.message_id = message_id
        self.payload = payload
        self.created_at = time.time()
        self.future = future
        self.timer = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "payload": self.payload,
            "created_at": self.created_at
        }

    def __repr__(self) -> str:
        return f"PendingDelivery(message_id={self.message_id!r})"


class DeliveryTracker:
    """
    In-memory bookkeeping of unacknowledged sends, keyed by message ID.
    """

    def __init__(self, timeout: float, timer_factory: Callable[..., Any] = threading.Timer):
        """
        Initialize the tracker.

        Args:
            timeout: Seconds a record may stay pending before it is rejected.
            timer_factory: Factory with the ``threading.Timer`` signature.
        """
        self.timeout = timeout
        self._timer_factory = timer_factory
        self._pending: Dict[str, PendingDelivery] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._pending

    def register(self, message_id: str, payload: Dict[str, Any]) -> Future:
        """
        Start tracking a send.

        Args:
            message_id: Identifier the acknowledgment will carry.
            payload: The frame that was sent.

        Returns:
            A future resolved with the acknowledgment frame, or failed with
            ``TimeoutError`` when the deadline passes first.

        Raises:
            ValidationError: If the identifier is already pending.
        """
        future: Future = Future()
        # Running futures cannot be cancelled by callers
        future.set_running_or_notify_cancel()
        record = PendingDelivery(message_id, payload, future)

        with self._lock:
            if message_id in self._pending:
                raise ValidationError(f"Message {message_id} is already awaiting acknowledgment")
            self._pending[message_id] = record

            record.timer = self._timer_factory(self.timeout, self._expire, args=(message_id,))
            record.timer.daemon = True
            record.timer.name = f"chatwire-ack-{message_id}"
            record.timer.start()

        logger.debug(f"Tracking delivery of {message_id} ({len(self._pending)} pending)")
        return future

    def resolve(self, message_id: str, ack: Dict[str, Any]) -> Optional[PendingDelivery]:
        """
        Settle a record with its acknowledgment.

        An unknown identifier is ignored: the record may already have timed
        out, or the acknowledgment belongs to another connection.

        Args:
            message_id: Identifier from the acknowledgment frame.
            ack: The acknowledgment frame.

        Returns:
            The settled record, or None.
        """
        record = self._pop(message_id)

        if record is None:
            logger.debug(f"Ignoring acknowledgment for unknown message {message_id}")
            return None

        record.future.set_result(ack)
        logger.debug(f"Message {message_id} acknowledged")
        return record

    def reject(self, message_id: str, error: ChatwireException) -> Optional[PendingDelivery]:
        record = self._pop(message_id)

        if record is not None:
            record.future.set_exception(error)

        return record

    def reject_all(self, error: ChatwireException) -> List[PendingDelivery]:
        """
        Fail every pending record with the same error.

        Args:
            error: Error to fail the futures with.

        Returns:
            The rejected records.
        """
        with self._lock:
            records = list(self._pending.values())
            self._pending.clear()

        for record in records:
            if record.timer is not None:
                record.timer.cancel()
            record.future.set_exception(error)

        if records:
            logger.debug(f"Rejected {len(records)} pending deliveries: {error}")

        return records

    def _expire(self, message_id: str) -> None:
        record = self._pop(message_id)

        if record is None:
            return

        logger.warning(f"Acknowledgment timeout for message {message_id}")
        record.future.set_exception(TimeoutError(
            f"Message acknowledgment timeout for {message_id}",
            operation="acknowledgment",
            timeout=self.timeout,
            message_id=message_id
        ))

    def _pop(self, message_id: str) -> Optional[PendingDelivery]:
        with self._lock:
            record = self._pending.pop(message_id, None)

        if record is not None and record.timer is not None:
            record.timer.cancel()

        return record
