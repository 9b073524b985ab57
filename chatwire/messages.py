"""
Message classes for the chatwire library.
"""

import time
import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future
from typing import Dict, Any, Optional

from chatwire.constants import MESSAGE_TYPE_TEXT, MAX_TEXT_LENGTH, MAX_RECEIVED_MESSAGES
from chatwire.exceptions import ValidationError

logger = logging.getLogger(__name__)

class Message:
    """
    A chat message received over the channel.
    """

    def __init__(self, message_id: Optional[str] = None,
                 text: Optional[str] = None,
                 message_type: str = MESSAGE_TYPE_TEXT,
                 timestamp: Optional[int] = None,
                 thread_id: Optional[str] = None,
                 sender: Any = None):
        """
        Initialize a message.

        Args:
            message_id: Unique message ID.
            text: Message text.
            message_type: Message type (text, image, ...).
            timestamp: Message timestamp in milliseconds.
            thread_id: Thread the message belongs to.
            sender: Sender as sent by the server (ID or profile dict).
        """
        self.message_id = message_id
        self.text = text
        self.message_type = message_type
        self.timestamp = timestamp if timestamp is not None else int(time.time() * 1000)
        self.thread_id = thread_id
        self.sender = sender

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the message to a dictionary.

        Returns:
            Dictionary representation of the message.
        """
        return {
            "id": self.message_id,
            "text": self.text,
            "type": self.message_type,
            "timestamp": self.timestamp,
            "thread_id": self.thread_id,
            "sender": self.sender
        }

    @classmethod
    def from_frame(cls, frame: Dict[str, Any]) -> 'Message':
        """
        Create a message from an inbound ``message`` frame.

        Args:
            frame: Decoded frame; the message itself is under ``data``.

        Returns:
            A Message instance.
        """
        data = frame["data"]

        if not isinstance(data, dict):
            raise ValueError("Message frame data must be an object")

        return cls(
            message_id=data.get("id"),
            text=data.get("text"),
            message_type=data.get("type") or MESSAGE_TYPE_TEXT,
            timestamp=data.get("timestamp"),
            thread_id=data.get("thread_id"),
            sender=data.get("sender")
        )

    def __repr__(self) -> str:
        return f"Message(id={self.message_id!r}, thread_id={self.thread_id!r})"


class MessageManager:
    """
    Sends messages over the channel and keeps track of traffic.
    """

    def __init__(self, connection: Any, max_received: int = MAX_RECEIVED_MESSAGES):
        """
        Initialize the message manager.

        Args:
            connection: Connection used to send frames.
            max_received: Number of sent and received messages kept in memory.
        """
        self.connection = connection
        self.max_received = max_received
        self.sent_messages: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self.sent_count = 0
        self.received_count = 0
        self.received_messages: "OrderedDict[str, Message]" = OrderedDict()
        self._lock = threading.Lock()

    def send_text(self, thread_id: str, text: str, **options: Any) -> Future:
        """
        Send a text message.

        Args:
            thread_id: Destination thread.
            text: Message text.
            **options: Extra fields merged into the message payload.

        Returns:
            Future resolved with the acknowledgment frame.

        Raises:
            ValidationError: If the thread or text is invalid.
        """
        if not thread_id:
            raise ValidationError("A thread ID is required")

        if not text or len(text) > MAX_TEXT_LENGTH:
            raise ValidationError(f"Text message must be between 1 and {MAX_TEXT_LENGTH} characters")

        payload = {
            "thread_id": thread_id,
            "message": text,
            "type": MESSAGE_TYPE_TEXT
        }
        payload.update(options)

        future = self.connection.send_message(payload)
        future.add_done_callback(lambda f: self._record_sent(payload, f))

        logger.info(f"Sent text message to {thread_id}: {text[:30]}")
        return future

    def send_typing(self, thread_id: str, typing: bool = True) -> None:
        if not thread_id:
            raise ValidationError("A thread ID is required")

        self.connection.send_typing(thread_id, typing)

    def mark_as_read(self, thread_id: str, message_id: str) -> None:
        """
        Send a read receipt for a message.

        Args:
            thread_id: Thread the message belongs to.
            message_id: The message that was read.
        """
        if not thread_id or not message_id:
            raise ValidationError("A thread ID and a message ID are required")

        self.connection.send_read_receipt(thread_id, message_id)

    def handle_incoming_message(self, message: Message) -> None:
        """
        Record a message received over the channel.

        Args:
            message: The decoded message.
        """
        key = message.message_id or f"anonymous_{message.timestamp}"

        with self._lock:
            self.received_count += 1
            self.received_messages[key] = message
            self.received_messages.move_to_end(key)

            self._trim(self.received_messages)

        logger.debug(f"Received message {key} in thread {message.thread_id}")

    def _record_sent(self, payload: Dict[str, Any], future: Future) -> None:
        if future.exception() is not None:
            return

        ack = future.result()
        message_id = ack.get("message_id")
        if message_id:
            with self._lock:
                self.sent_count += 1
                self.sent_messages[message_id] = payload
                self._trim(self.sent_messages)

    def _trim(self, records: "OrderedDict[str, Any]") -> None:
        while len(records) > self.max_received:
            records.popitem(last=False)

    def get_stats(self) -> Dict[str, int]:
        """
        Get message statistics.

        Returns:
            Totals since start and the number of records currently kept.
        """
        return {
            "sent_count": self.sent_count,
            "received_count": self.received_count,
            "sent_kept": len(self.sent_messages),
            "received_kept": len(self.received_messages)
        }
