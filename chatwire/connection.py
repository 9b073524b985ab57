"""
Connection module for the chatwire library.

Owns the persistent channel: connect, authenticate over the channel,
heartbeat, disconnect and reconnect with backoff.
"""

import time
import logging
import threading
from enum import Enum
from functools import partial
from typing import Dict, Any, Optional, Callable, Union

import websocket

from chatwire.auth import Auth
from chatwire.config import Config
from chatwire.constants import (
    ACCEPT_LANGUAGE,
    CHANNEL_TOKEN_TTL,
    CLOSE_NORMAL,
    EVENT_CLOSE,
    EVENT_CONNECT,
    EVENT_CONNECTING,
    EVENT_DISCONNECT,
    EVENT_ERROR,
    EVENT_RECONNECT_FAILED,
    EVENT_RECONNECTING,
    WEBSOCKET_ENDPOINT,
    WEBSOCKET_ORIGIN,
    WEBSOCKET_SUBPROTOCOL
)
from chatwire.exceptions import (
    AuthenticationError,
    ChatwireException,
    ConnectionClosedError,
    ConnectionError,
    TimeoutError
)
from chatwire.handlers import EventDispatcher
from chatwire.protocol import Protocol
from chatwire.tracker import DeliveryTracker
from chatwire.utils import Waiter, generate_message_id

logger = logging.getLogger(__name__)

WEBSOCKET_INFO_QUERY = """
query GetWebSocketInfo {
  websocketInfo {
    url
    token
    expires_at
  }
}
"""


class ConnectionState(str, Enum):
    """Lifecycle states of the channel."""

    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    OPEN = "open"
    CLOSING = "closing"
    RECONNECTING = "reconnecting"


class WebSocketTransport:
    """
    WebSocket transport running on its own daemon thread.
    """

    def __init__(self, url: str, headers: Dict[str, str],
                 on_open: Callable[[], None],
                 on_message: Callable[[Union[str, bytes]], None],
                 on_close: Callable[[Optional[int], Optional[str]], None],
                 on_error: Callable[[Exception], None],
                 subprotocols: tuple = (WEBSOCKET_SUBPROTOCOL,)):
        """
        Initialize the transport. Nothing is opened until ``start``.

        Args:
            url: WebSocket URL.
            headers: Handshake headers.
            on_open: Called once the handshake completes.
            on_message: Called with every received frame.
            on_close: Called with the close code and reason.
            on_error: Called with transport errors.
            subprotocols: Requested WebSocket subprotocols.
        """
        self.url = url
        self.thread = None
        self.ws = websocket.WebSocketApp(
            url,
            header=headers,
            subprotocols=list(subprotocols),
            on_open=lambda ws: on_open(),
            on_message=lambda ws, message: on_message(message),
            on_error=lambda ws, error: on_error(error),
            on_close=lambda ws, code, reason: on_close(code, reason)
        )

    def start(self) -> None:
        self.thread = threading.Thread(target=self.ws.run_forever, name="chatwire-transport")
        self.thread.daemon = True
        self.thread.start()

    def send(self, frame: Union[str, bytes]) -> None:
        if isinstance(frame, (bytes, bytearray)):
            self.ws.send(frame, opcode=websocket.ABNF.OPCODE_BINARY)
        else:
            self.ws.send(frame)

    def close(self, code: int = CLOSE_NORMAL, reason: str = "Client disconnect") -> None:
        self.ws.close(status=code, reason=reason.encode("utf-8"))


class Connection:
    """
    Manages the real-time channel to the chat servers.

    All state transitions and inbound frame handling run under one
    re-entrant lock, so transitions never interleave even though the
    transport and the timers run on their own threads. Every connect
    attempt and every teardown bumps a generation counter; callbacks from
    stale transports and timers compare their generation and drop out.
    """

    def __init__(self, config: Config, auth: Auth, network: Any,
                 dispatcher: EventDispatcher,
                 transport_factory: Callable[..., Any] = WebSocketTransport,
                 timer_factory: Callable[..., Any] = threading.Timer,
                 id_generator: Callable[[], str] = generate_message_id):
        """
        Initialize the connection manager.

        Args:
            config: Configuration instance.
            auth: Authentication handler holding the access token and device identity.
            network: Request executor used to fetch channel parameters.
            dispatcher: Event dispatcher for inbound frames and lifecycle events.
            transport_factory: Factory with the ``WebSocketTransport`` signature.
            timer_factory: Factory with the ``threading.Timer`` signature.
            id_generator: Source of outbound message identifiers.
        """
        self.config = config
        self.auth = auth
        self.network = network
        self.dispatcher = dispatcher
        self.tracker = DeliveryTracker(config.get("ack_timeout"), timer_factory)

        self._transport_factory = transport_factory
        self._timer_factory = timer_factory
        self._id_generator = id_generator

        self.state = ConnectionState.IDLE
        self.reconnect_attempts = 0
        self.channel_token: Optional[str] = None
        self.channel_url: Optional[str] = None
        self.connected_at: Optional[float] = None

        self._lock = threading.RLock()
        self._generation = 0
        self._transport = None
        self._open_waiter: Optional[Waiter] = None
        self._auth_waiter: Optional[Waiter] = None
        self._heartbeat_timer = None
        self._heartbeat_timeout_timer = None
        self._reconnect_timer = None

        dispatcher.tracker = self.tracker
        dispatcher.heartbeat_hook = self._on_heartbeat
        dispatcher.authentication_hook = self._on_authentication_response

    @property
    def device_id(self) -> str:
        return self.auth.device_id

    @property
    def client_id(self) -> str:
        return self.auth.client_id

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.OPEN

    def connect(self) -> ConnectionState:
        """
        Open and authenticate the channel.

        A call while a connection is being set up or is already open does
        nothing and returns the current state.

        Returns:
            The resulting state.

        Raises:
            AuthenticationError: If no credential is held or the channel rejects it.
            TimeoutError: If the transport or the authentication ack is too slow.
            ConnectionError: If the transport fails.
            ConnectionClosedError: If ``disconnect`` cancels the attempt.
        """
        if not self.auth.access_token:
            raise AuthenticationError("Not authenticated")

        with self._lock:
            if self.state in (ConnectionState.CONNECTING,
                              ConnectionState.AUTHENTICATING,
                              ConnectionState.OPEN):
                logger.debug(f"Connect ignored, channel is {self.state.value}")
                return self.state

            self._cancel_reconnect()
            self._generation += 1
            generation = self._generation
            open_waiter = self._open_waiter = Waiter("transport open")
            auth_waiter = self._auth_waiter = Waiter("channel authentication")
            self._set_state(ConnectionState.CONNECTING)
            self.dispatcher.emit(EVENT_CONNECTING)

        try:
            info = self._get_connection_info()

            with self._lock:
                self._ensure_current(generation)
                self.channel_url = info["url"]
                self.channel_token = info["token"]
                transport = self._transport = self._transport_factory(
                    info["url"],
                    self._get_channel_headers(info["token"]),
                    on_open=partial(self._on_transport_open, generation),
                    on_message=partial(self._on_transport_message, generation),
                    on_close=partial(self._on_transport_close, generation),
                    on_error=partial(self._on_transport_error, generation)
                )

            try:
                transport.start()
            except (websocket.WebSocketException, OSError) as e:
                raise ConnectionError(f"Failed to start transport: {str(e)}", url=info["url"], cause=e)

            open_waiter.wait(self.config.get("connect_timeout"))

            with self._lock:
                self._ensure_current(generation)
                self._set_state(ConnectionState.AUTHENTICATING)
                self._send_frame(Protocol.authentication_frame(
                    self.channel_token or "",
                    self.device_id,
                    self.client_id
                ))

            response = auth_waiter.wait(self.config.get("auth_timeout"))

            if not response.get("success"):
                raise AuthenticationError(
                    f"Channel authentication failed: {response.get('error') or 'rejected'}",
                    response_data=response
                )

            with self._lock:
                self._ensure_current(generation)
                self._open_waiter = self._auth_waiter = None
                self._set_state(ConnectionState.OPEN)
                self.reconnect_attempts = 0
                self.connected_at = time.time()
                self._start_heartbeat()
                logger.info(f"Connected to {self.channel_url}")
                self.dispatcher.emit(EVENT_CONNECT)
                return self.state

        except ChatwireException as e:
            self._handle_connect_failure(generation, e)
            raise
        except Exception as e:
            failure = ConnectionError(f"Unexpected error while connecting: {str(e)}", cause=e)
            self._handle_connect_failure(generation, failure)
            raise failure from e

    def disconnect(self) -> None:
        """
        Close the channel.

        Cancels every timer and pending wait and rejects unacknowledged
        sends. Never raises: transport errors during close are logged.
        """
        with self._lock:
            if self.state == ConnectionState.IDLE:
                logger.debug("Disconnect ignored, channel is idle")
                return

            self._set_state(ConnectionState.CLOSING)
            self._cancel_reconnect()
            self._stop_heartbeat()

            for waiter in (self._open_waiter, self._auth_waiter):
                if waiter is not None:
                    waiter.cancel("cancelled by disconnect")
            self._open_waiter = self._auth_waiter = None

            self._teardown_transport()
            self.tracker.reject_all(ConnectionClosedError("Connection closed by client"))
            self._set_state(ConnectionState.IDLE)
            self.connected_at = None

            logger.info("Disconnected from chat server")
            self.dispatcher.emit(EVENT_DISCONNECT)

    def send_message(self, data: Dict[str, Any]):
        """
        Send a message frame and track its acknowledgment.

        Args:
            data: Message payload.

        Returns:
            A ``concurrent.futures.Future`` resolved with the acknowledgment
            frame. Send failures and timeouts fail the future with the
            classified error.

        Raises:
            ConnectionClosedError: If the channel is not open.
        """
        with self._lock:
            if self.state != ConnectionState.OPEN:
                raise ConnectionClosedError(f"Channel is not open ({self.state.value})")

            message_id = self._id_generator()
            while message_id in self.tracker:
                message_id = self._id_generator()

            frame = Protocol.message_frame(message_id, data)
            future = self.tracker.register(message_id, frame)

            try:
                self._send_frame(frame)
            except ChatwireException as e:
                logger.error(f"Failed to send message {message_id}: {str(e)}")
                self.tracker.reject(message_id, e)

            return future

    def send_typing(self, thread_id: str, typing: bool = True) -> None:
        """
        Send a typing indicator.

        Raises:
            ConnectionClosedError: If the channel is not open.
        """
        self._send_control(Protocol.typing_frame(thread_id, typing))

    def send_read_receipt(self, thread_id: str, message_id: str) -> None:
        self._send_control(Protocol.read_receipt_frame(thread_id, message_id))

    def get_status(self) -> Dict[str, Any]:
        """
        Get connection status.

        Returns:
            State, reconnect counter and pending acknowledgments.
        """
        return {
            "state": self.state.value,
            "is_connected": self.connected,
            "reconnect_attempts": self.reconnect_attempts,
            "pending_messages": len(self.tracker),
            "channel_url": self.channel_url,
            "connected_at": self.connected_at
        }

    def destroy(self) -> None:
        """Tear the connection down for good."""
        self.disconnect()
        self.dispatcher.tracker = None
        self.dispatcher.heartbeat_hook = None
        self.dispatcher.authentication_hook = None

    def _send_control(self, frame: Dict[str, Any]) -> None:
        with self._lock:
            if self.state != ConnectionState.OPEN:
                raise ConnectionClosedError(f"Channel is not open ({self.state.value})")
            self._send_frame(frame)

    def _send_frame(self, frame: Dict[str, Any]) -> None:
        encoded = Protocol.encode_frame(frame)
        transport = self._transport

        if transport is None:
            raise ConnectionClosedError("No transport")

        try:
            transport.send(encoded)
        except (websocket.WebSocketException, OSError) as e:
            raise ConnectionError(f"Failed to send {frame['type']} frame: {str(e)}", cause=e)

    def _get_connection_info(self) -> Dict[str, Any]:
        """
        Fetch the channel URL and token.

        Falls back to the default endpoint and the access token when the
        lookup fails or returns nothing usable.

        Returns:
            Dictionary with ``url``, ``token`` and ``expires_at``.
        """
        fallback = {
            "url": WEBSOCKET_ENDPOINT,
            "token": self.auth.access_token,
            "expires_at": int((time.time() + CHANNEL_TOKEN_TTL) * 1000)
        }

        if self.network is None:
            return fallback

        try:
            response = self.network.graphql(WEBSOCKET_INFO_QUERY)
        except ChatwireException as e:
            logger.warning(f"Channel lookup failed, using default endpoint: {str(e)}")
            return fallback

        body = response.body if isinstance(response.body, dict) else {}
        data = body.get("data")
        info = data.get("websocketInfo") if isinstance(data, dict) else None

        if not isinstance(info, dict) or not isinstance(info.get("url"), str) or not info["url"]:
            logger.debug("Channel lookup returned no URL, using default endpoint")
            return fallback

        return {
            "url": info["url"],
            "token": info.get("token") or self.auth.access_token,
            "expires_at": info.get("expires_at") or fallback["expires_at"]
        }

    def _get_channel_headers(self, token: Optional[str]) -> Dict[str, str]:
        return {
            "User-Agent": self.config.get("user_agent"),
            "Accept-Language": ACCEPT_LANGUAGE,
            "Authorization": f"Bearer {token}",
            "Origin": WEBSOCKET_ORIGIN,
            "X-Device-ID": self.device_id,
            "X-Client-ID": self.client_id
        }

    def _handle_connect_failure(self, generation: int, error: ChatwireException) -> None:
        with self._lock:
            if generation != self._generation:
                # Cancelled by disconnect or superseded by a newer attempt
                return

            self._open_waiter = self._auth_waiter = None
            self._teardown_transport()

            logger.error(f"Connection attempt failed: {str(error)}")
            self.dispatcher.emit(EVENT_ERROR, error)

            if error.retryable:
                self._schedule_reconnect(error)
            else:
                self._set_state(ConnectionState.IDLE)

    def _handle_connection_lost(self, error: ChatwireException) -> None:
        """Tear down an open channel after a failure. Caller holds the lock."""
        self._stop_heartbeat()
        self._teardown_transport()
        self.connected_at = None
        self.tracker.reject_all(ConnectionClosedError("Connection lost before acknowledgment", cause=error))
        self.dispatcher.emit(EVENT_DISCONNECT)
        self._schedule_reconnect(error)

    def _schedule_reconnect(self, error: ChatwireException) -> None:
        """
        Schedule the next reconnect attempt. Caller holds the lock.

        At most one reconnect timer is pending per connection.
        """
        if not self.config.get("auto_reconnect"):
            self._set_state(ConnectionState.IDLE)
            return

        if self._reconnect_timer is not None:
            logger.debug("Reconnect already scheduled")
            return

        max_attempts = self.config.get("max_reconnect_attempts")

        if self.reconnect_attempts >= max_attempts:
            self._set_state(ConnectionState.IDLE)
            failure = ConnectionError(
                f"Giving up after {self.reconnect_attempts} reconnect attempts: {str(error)}",
                attempts=self.reconnect_attempts,
                cause=error
            )
            failure.retryable = False
            logger.error(failure.message)
            self.dispatcher.emit(EVENT_ERROR, failure)
            self.dispatcher.emit(EVENT_RECONNECT_FAILED, failure)
            return

        self.reconnect_attempts += 1
        delay = self.config.get("reconnect_delay") * (2 ** (self.reconnect_attempts - 1))

        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_timer = self._start_timer("chatwire-reconnect", delay, self._reconnect, self._generation)

        logger.info(f"Reconnecting in {delay:.2f} seconds (attempt {self.reconnect_attempts}/{max_attempts})")
        self.dispatcher.emit(EVENT_RECONNECTING, {"attempt": self.reconnect_attempts, "delay": delay})

    def _reconnect(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self.state != ConnectionState.RECONNECTING:
                return
            self._reconnect_timer = None

        try:
            self.connect()
        except ChatwireException as e:
            logger.warning(f"Reconnect attempt {self.reconnect_attempts} failed: {str(e)}")

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat_timer = self._start_timer(
            "chatwire-heartbeat",
            self.config.get("heartbeat_interval"),
            self._heartbeat_tick,
            self._generation
        )

    def _stop_heartbeat(self) -> None:
        for name in ("_heartbeat_timer", "_heartbeat_timeout_timer"):
            timer = getattr(self, name)
            if timer is not None:
                timer.cancel()
                setattr(self, name, None)

    def _heartbeat_tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self.state != ConnectionState.OPEN:
                return

            try:
                self._send_frame(Protocol.heartbeat_frame())
            except ChatwireException as e:
                logger.warning(f"Failed to send heartbeat: {str(e)}")
                self.dispatcher.emit(EVENT_ERROR, e)
                self._handle_connection_lost(e)
                return
            else:
                logger.debug("Sent heartbeat")
                if self._heartbeat_timeout_timer is not None:
                    self._heartbeat_timeout_timer.cancel()
                self._heartbeat_timeout_timer = self._start_timer(
                    "chatwire-heartbeat-timeout",
                    self.config.get("heartbeat_timeout"),
                    self._heartbeat_expired,
                    generation
                )

            self._heartbeat_timer = self._start_timer(
                "chatwire-heartbeat",
                self.config.get("heartbeat_interval"),
                self._heartbeat_tick,
                generation
            )

    def _heartbeat_expired(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self.state != ConnectionState.OPEN:
                return

            self._heartbeat_timeout_timer = None
            timeout = self.config.get("heartbeat_timeout")
            logger.warning("Heartbeat timeout, reconnecting")

            error = TimeoutError(f"No heartbeat acknowledgment within {timeout}s",
                                 operation="heartbeat", timeout=timeout)
            self.dispatcher.emit(EVENT_ERROR, error)
            self._handle_connection_lost(error)

    def _on_heartbeat(self, frame: Dict[str, Any]) -> None:
        with self._lock:
            if self._heartbeat_timeout_timer is not None:
                self._heartbeat_timeout_timer.cancel()
                self._heartbeat_timeout_timer = None
                logger.debug("Heartbeat acknowledged")

    def _on_authentication_response(self, frame: Dict[str, Any]) -> None:
        with self._lock:
            if self.state == ConnectionState.AUTHENTICATING and self._auth_waiter is not None:
                self._auth_waiter.set(frame)
            else:
                logger.debug(f"Ignoring authentication response while {self.state.value}")

    def _on_transport_open(self, generation: int) -> None:
        with self._lock:
            if generation == self._generation and self._open_waiter is not None:
                logger.debug("Transport opened")
                self._open_waiter.set(True)

    def _on_transport_message(self, generation: int, raw: Union[str, bytes]) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self.dispatcher.dispatch_frame(raw)

    def _on_transport_close(self, generation: int, code: Optional[int], reason: Optional[str]) -> None:
        with self._lock:
            if generation != self._generation:
                return

            logger.info(f"Channel closed: {code} - {reason}")

            if self.state in (ConnectionState.CONNECTING, ConnectionState.AUTHENTICATING):
                self._fail_waiters(ConnectionError(f"Channel closed during {self.state.value}: {code} - {reason}"))
                return

            if self.state != ConnectionState.OPEN:
                return

            self.dispatcher.emit(EVENT_CLOSE, code, reason)
            self._handle_connection_lost(ConnectionError(f"Channel closed: {code} - {reason}", code=code, reason=reason))

    def _on_transport_error(self, generation: int, error: Exception) -> None:
        with self._lock:
            if generation != self._generation:
                return

            cause = error if isinstance(error, BaseException) else None
            failure = ConnectionError(f"Channel error: {str(error)}", cause=cause)

            if self.state in (ConnectionState.CONNECTING, ConnectionState.AUTHENTICATING):
                self._fail_waiters(failure)
                return

            logger.error(f"Channel error: {str(error)}")
            self.dispatcher.emit(EVENT_ERROR, failure)

            if self.state == ConnectionState.OPEN:
                self._handle_connection_lost(failure)

    def _fail_waiters(self, error: ChatwireException) -> None:
        for waiter in (self._open_waiter, self._auth_waiter):
            if waiter is not None:
                waiter.fail(error)

    def _teardown_transport(self) -> None:
        """Close the transport best-effort and invalidate its callbacks."""
        self._generation += 1
        transport, self._transport = self._transport, None

        if transport is None:
            return

        try:
            transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport: {str(e)}")

    def _ensure_current(self, generation: int) -> None:
        if generation != self._generation:
            raise ConnectionClosedError("Connection attempt was cancelled")

    def _start_timer(self, name: str, interval: float, function: Callable, *args: Any):
        timer = self._timer_factory(interval, function, args=args)
        timer.daemon = True
        timer.name = name
        timer.start()
        return timer

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.debug(f"Connection state {self.state.value} -> {state.value}")
            self.state = state
