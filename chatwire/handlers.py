"""
Event handling for the chatwire library.

Decodes inbound channel frames into typed events and delivers them to
registered callbacks.
"""

import logging
import threading
from typing import Dict, Any, Optional, List, Callable, Union

from chatwire.constants import (
    EVENT_ALL,
    EVENT_MESSAGE,
    EVENT_TYPING,
    EVENT_READ,
    EVENT_ONLINE,
    EVENT_OFFLINE,
    EVENT_MESSAGE_ACKNOWLEDGED,
    FRAME_MESSAGE,
    FRAME_TYPING,
    FRAME_READ_RECEIPT,
    FRAME_ONLINE_STATUS,
    FRAME_ACKNOWLEDGMENT,
    FRAME_HEARTBEAT,
    FRAME_AUTHENTICATION_RESPONSE
)
from chatwire.exceptions import ProtocolError
from chatwire.messages import Message
from chatwire.protocol import Protocol

logger = logging.getLogger(__name__)

class EventDispatcher:
    """
    Publish/subscribe hub between the channel and its collaborators.

    Callbacks are registered by event name and run in registration order on
    the thread that dispatched the event. A callback that raises is logged
    and skipped; it never affects other callbacks or the dispatch loop.

    Control frames reach the connection through hooks rather than events:
    ``tracker`` settles acknowledgments, ``heartbeat_hook`` and
    ``authentication_hook`` receive heartbeat and authentication frames, and
    ``message_sink`` receives every decoded incoming message first.
    """

    def __init__(self):
        """Initialize the dispatcher."""
        self.event_callbacks: Dict[str, List[Callable]] = {}
        self._lock = threading.Lock()

        self.tracker = None
        self.heartbeat_hook: Optional[Callable[[Dict[str, Any]], None]] = None
        self.authentication_hook: Optional[Callable[[Dict[str, Any]], None]] = None
        self.message_sink: Optional[Callable[[Message], None]] = None

        self._frame_handlers = {
            FRAME_MESSAGE: self._handle_incoming_message,
            FRAME_TYPING: self._handle_typing,
            FRAME_READ_RECEIPT: self._handle_read_receipt,
            FRAME_ONLINE_STATUS: self._handle_online_status,
            FRAME_ACKNOWLEDGMENT: self._handle_acknowledgment,
            FRAME_HEARTBEAT: self._handle_heartbeat,
            FRAME_AUTHENTICATION_RESPONSE: self._handle_authentication_response,
        }

    def on(self, event_type: str, callback: Callable) -> Callable:
        """
        Register a callback for an event.

        Args:
            event_type: The event name, or ``"all"`` for every event. Callbacks
                registered for ``"all"`` receive the event name first.
            callback: The callback function.

        Returns:
            The callback.
        """
        with self._lock:
            self.event_callbacks.setdefault(event_type, []).append(callback)

        logger.debug(f"Registered callback for event type: {event_type}")
        return callback

    def off(self, event_type: str, callback: Optional[Callable] = None) -> None:
        """
        Remove a callback, or every callback for an event when none is given.

        Args:
            event_type: The event name.
            callback: The callback to remove.
        """
        with self._lock:
            if callback is None:
                self.event_callbacks.pop(event_type, None)
                return

            callbacks = self.event_callbacks.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def clear(self) -> None:
        with self._lock:
            self.event_callbacks.clear()

    def listener_count(self, event_type: str) -> int:
        return len(self.event_callbacks.get(event_type, []))

    def emit(self, event_type: str, *args: Any) -> int:
        """
        Deliver an event to its callbacks.

        Args:
            event_type: The event name.
            *args: Event payload.

        Returns:
            Number of callbacks that ran without raising.
        """
        with self._lock:
            callbacks = list(self.event_callbacks.get(event_type, []))
            catch_all = list(self.event_callbacks.get(EVENT_ALL, []))

        delivered = 0
        for callback in callbacks:
            delivered += self._safe_callback(event_type, callback, *args)
        for callback in catch_all:
            delivered += self._safe_callback(event_type, callback, event_type, *args)

        return delivered

    def _safe_callback(self, event_type: str, callback: Callable, *args: Any) -> int:
        try:
            callback(*args)
            return 1
        except Exception:
            logger.exception(f"Error in {event_type} callback {getattr(callback, '__name__', callback)!r}")
            return 0

    def dispatch_frame(self, raw_data: Union[bytes, str]) -> Optional[str]:
        """
        Decode a raw frame and route it.

        Args:
            raw_data: Raw frame as received from the transport.

        Returns:
            The frame type that was handled, or None if it was dropped.
        """
        try:
            frame = Protocol.decode_frame(raw_data)
        except ProtocolError as e:
            logger.error(f"Discarding malformed frame: {str(e)}")
            return None

        frame_type = Protocol.frame_type(frame)
        handler = self._frame_handlers.get(frame_type)

        if handler is None:
            logger.info(f"Unknown frame type: {frame_type!r}")
            return None

        try:
            handler(frame)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"Discarding malformed {frame_type} frame: {str(e)}")
            return None

        return frame_type

    def _handle_incoming_message(self, frame: Dict[str, Any]) -> None:
        message = Message.from_frame(frame)

        if self.message_sink is not None:
            self._safe_callback("message sink", self.message_sink, message)

        self.emit(EVENT_MESSAGE, message)

    def _handle_typing(self, frame: Dict[str, Any]) -> None:
        self.emit(EVENT_TYPING, {
            "thread_id": frame.get("thread_id"),
            "user_id": frame.get("user_id"),
            "typing": bool(frame.get("typing")),
            "timestamp": frame.get("timestamp")
        })

    def _handle_read_receipt(self, frame: Dict[str, Any]) -> None:
        self.emit(EVENT_READ, {
            "thread_id": frame.get("thread_id"),
            "message_id": frame.get("message_id"),
            "user_id": frame.get("user_id"),
            "timestamp": frame.get("timestamp")
        })

    def _handle_online_status(self, frame: Dict[str, Any]) -> None:
        online = bool(frame.get("online"))
        self.emit(EVENT_ONLINE if online else EVENT_OFFLINE, {
            "user_id": frame.get("user_id"),
            "online": online,
            "timestamp": frame.get("timestamp")
        })

    def _handle_acknowledgment(self, frame: Dict[str, Any]) -> None:
        if self.tracker is None:
            return

        record = self.tracker.resolve(frame["message_id"], frame)
        if record is not None:
            self.emit(EVENT_MESSAGE_ACKNOWLEDGED, record)

    def _handle_heartbeat(self, frame: Dict[str, Any]) -> None:
        if self.heartbeat_hook is not None:
            self.heartbeat_hook(frame)

    def _handle_authentication_response(self, frame: Dict[str, Any]) -> None:
        if self.authentication_hook is not None:
            self.authentication_hook(frame)
