"""
Main client module for the chatwire library.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Dict, Any, Optional, Callable

import requests

from chatwire.config import Config
from chatwire.auth import Auth
from chatwire.connection import Connection, WebSocketTransport
from chatwire.handlers import EventDispatcher
from chatwire.messages import MessageManager
from chatwire.network import RequestExecutor

logger = logging.getLogger(__name__)

class MessengerClient:
    """
    Main client class for the chatwire library.

    Each client owns its own configuration, credential, request executor,
    event dispatcher and connection; nothing is shared between clients.

    Event callbacks run on the transport or timer thread that produced the
    event. Blocking on a send future from inside a callback stalls inbound
    dispatch for that client, so callbacks should only schedule work.
    """

    def __init__(self, config_path: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 transport_factory: Callable[..., Any] = WebSocketTransport,
                 timer_factory: Callable[..., Any] = threading.Timer,
                 **overrides: Any):
        """
        Initialize the chatwire client.

        Args:
            config_path: Path to the configuration file. If None, uses default config.
            session: HTTP session for the request executor.
            transport_factory: Factory for the channel transport.
            timer_factory: Factory for heartbeat, acknowledgment and reconnect timers.
            **overrides: Configuration values taking precedence over the file.
        """
        self.config = Config(config_path, **overrides)
        self.auth = Auth(self.config)
        self.network = RequestExecutor(self.config, self.auth, session=session)
        self.dispatcher = EventDispatcher()
        self.connection = Connection(
            self.config,
            self.auth,
            self.network,
            self.dispatcher,
            transport_factory=transport_factory,
            timer_factory=timer_factory
        )
        self.messages = MessageManager(self.connection)
        self.dispatcher.message_sink = self.messages.handle_incoming_message

        logger.debug("MessengerClient initialized")

    def __enter__(self) -> "MessengerClient":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.destroy()

    def login(self, access_token: str, user_id: Optional[str] = None,
              persist: bool = False) -> None:
        """
        Install the access credential the client uses.

        Args:
            access_token: Bearer token for the platform.
            user_id: ID of the account the token belongs to.
            persist: Whether to save the credential to the credentials file.

        Raises:
            ValidationError: If the token is empty.
        """
        self.auth.set_access_token(access_token, user_id=user_id, persist=persist)

    def connect(self) -> bool:
        """
        Connect to the chat servers.

        Returns:
            True once the channel is open.

        Raises:
            AuthenticationError: If no credential is held or it is rejected.
            ConnectionError: If the channel cannot be opened.
            TimeoutError: If opening or authenticating the channel times out.
        """
        self.auth.require_authenticated()
        self.connection.connect()
        return self.connection.connected

    def disconnect(self) -> None:
        self.connection.disconnect()

    def logout(self) -> bool:
        """
        Disconnect and forget the credential.

        Returns:
            True if a credential was held.
        """
        self.connection.disconnect()
        return self.auth.logout()

    def send_message(self, thread_id: str, text: str, **options: Any) -> Future:
        """
        Send a text message.

        Connects first when the channel is not open.

        Args:
            thread_id: Destination thread.
            text: Message text.
            **options: Extra payload fields.

        Returns:
            Future resolved with the acknowledgment frame, or failed with the
            classified error.

        Raises:
            AuthenticationError: If no credential is held.
            ValidationError: If the thread or text is invalid.
        """
        self._ensure_connected()
        return self.messages.send_text(thread_id, text, **options)

    def send_typing(self, thread_id: str, typing: bool = True) -> None:
        self._ensure_connected()
        self.messages.send_typing(thread_id, typing)

    def mark_as_read(self, thread_id: str, message_id: str) -> None:
        self._ensure_connected()
        self.messages.mark_as_read(thread_id, message_id)

    def on(self, event_type: str, callback: Callable) -> Callable:
        """
        Register a callback for an event.

        Args:
            event_type: Event name, or ``"all"``.
            callback: Function to call when the event occurs.

        Returns:
            The callback.
        """
        return self.dispatcher.on(event_type, callback)

    def off(self, event_type: str, callback: Optional[Callable] = None) -> None:
        self.dispatcher.off(event_type, callback)

    def get_status(self) -> Dict[str, Any]:
        """
        Get client status.

        Returns:
            Connection status, identity and request statistics.
        """
        status = self.connection.get_status()
        status.update({
            "authenticated": self.auth.is_authenticated(),
            "identity": self.auth.get_identity(),
            "network": self.network.get_stats(),
            "messages": self.messages.get_stats()
        })
        return status

    def destroy(self) -> None:
        """Disconnect and release every resource the client holds."""
        self.connection.destroy()
        self.dispatcher.clear()
        self.network.close()
        logger.debug("MessengerClient destroyed")

    def _ensure_connected(self) -> None:
        self.auth.require_authenticated()

        if not self.connection.connected:
            self.connect()
