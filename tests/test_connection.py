"""
Tests for the connection state machine.
"""

import pytest

from chatwire.connection import ConnectionState
from chatwire.constants import WEBSOCKET_ENDPOINT
from chatwire.exceptions import (
    AuthenticationError,
    ConnectionClosedError,
    ConnectionError,
    ErrorKind,
    ServerError,
    TimeoutError
)
from chatwire.network import HttpResponse
from chatwire.tracker import PendingDelivery

from conftest import event_names


PAYLOAD = {"thread_id": "t_1", "message": "hello", "type": "text"}


class FakeNetwork:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.queries = []

    def graphql(self, query, variables=None, **options):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.response


def test_connect_opens_and_authenticates(make_connection, transports, timers, events):
    connection = make_connection()

    assert connection.connect() == ConnectionState.OPEN
    assert connection.connected
    assert event_names(events) == ["connecting", "connect"]

    transport = transports.last
    assert transport.started
    assert transport.url == WEBSOCKET_ENDPOINT
    assert transport.headers["Authorization"] == "Bearer token-123"
    assert transport.headers["X-Device-ID"] == connection.device_id

    auth_frame = transport.frames("authentication")[0]
    assert auth_frame["token"] == "token-123"
    assert auth_frame["device_id"] == connection.device_id
    assert auth_frame["client_id"] == connection.client_id

    heartbeat = timers.active("chatwire-heartbeat")
    assert len(heartbeat) == 1
    assert heartbeat[0].interval == 30
    assert heartbeat[0].daemon


def test_connect_is_a_noop_when_open(make_connection, transports):
    connection = make_connection()
    connection.connect()

    assert connection.connect() == ConnectionState.OPEN
    assert len(transports.transports) == 1


def test_connect_requires_a_token(make_connection, transports):
    connection = make_connection(token=None)

    with pytest.raises(AuthenticationError):
        connection.connect()

    assert connection.state == ConnectionState.IDLE
    assert transports.transports == []


def test_connect_uses_channel_parameters_from_lookup(make_connection, transports):
    network = FakeNetwork(response=HttpResponse(200, {
        "data": {"websocketInfo": {"url": "wss://edge.test/chat", "token": "channel-token"}}
    }, {}, ""))
    connection = make_connection(network=network)

    connection.connect()

    assert len(network.queries) == 1
    assert transports.last.url == "wss://edge.test/chat"
    assert transports.last.frames("authentication")[0]["token"] == "channel-token"


def test_connect_falls_back_when_lookup_fails(make_connection, transports):
    network = FakeNetwork(error=ServerError("Request failed: POST /graphql - Status: 503", status_code=503))
    connection = make_connection(network=network)

    connection.connect()

    assert connection.connected
    assert transports.last.url == WEBSOCKET_ENDPOINT
    assert transports.last.frames("authentication")[0]["token"] == "token-123"


@pytest.mark.parametrize("body", [
    {"data": {"websocketInfo": "unexpected"}},
    {"data": []},
    {"data": {"websocketInfo": {"url": 42}}},
    ["not", "an", "object"],
])
def test_connect_falls_back_on_malformed_lookup(make_connection, transports, body):
    connection = make_connection(network=FakeNetwork(response=HttpResponse(200, body, {}, "")))

    assert connection.connect() == ConnectionState.OPEN
    assert transports.last.url == WEBSOCKET_ENDPOINT


def test_unexpected_connect_error_does_not_wedge(make_connection, transports, timers, events):
    network = FakeNetwork(error=KeyError("websocketInfo"))
    connection = make_connection(network=network)

    with pytest.raises(ConnectionError) as excinfo:
        connection.connect()

    assert isinstance(excinfo.value.cause, KeyError)
    assert connection.state == ConnectionState.RECONNECTING
    assert event_names(events) == ["connecting", "error", "reconnecting"]

    network.error = None
    network.response = HttpResponse(200, {}, {}, "")
    timers.fire("chatwire-reconnect")

    assert connection.connected


def test_rejected_authentication_is_not_retried(make_connection, transports, timers, events):
    transports.auth_response = {"success": False, "error": "invalid token"}
    connection = make_connection()

    with pytest.raises(AuthenticationError) as excinfo:
        connection.connect()

    assert excinfo.value.kind == ErrorKind.AUTH
    assert "invalid token" in str(excinfo.value)
    assert connection.state == ConnectionState.IDLE
    assert transports.last.closed
    assert timers.active("chatwire-reconnect") == []
    assert event_names(events) == ["connecting", "error"]


def test_authentication_timeout_schedules_reconnect(make_connection, transports, timers, events):
    transports.auth_response = None
    connection = make_connection(auth_timeout=0)

    with pytest.raises(TimeoutError):
        connection.connect()

    assert connection.state == ConnectionState.RECONNECTING
    assert transports.last.closed

    reconnect = timers.active("chatwire-reconnect")
    assert len(reconnect) == 1
    assert reconnect[0].interval == 1.0
    assert event_names(events) == ["connecting", "error", "reconnecting"]
    assert events[-1][1][0] == {"attempt": 1, "delay": 1.0}


def test_transport_open_timeout(make_connection, transports):
    transports.auto_open = False
    connection = make_connection(connect_timeout=0)

    with pytest.raises(TimeoutError) as excinfo:
        connection.connect()

    assert excinfo.value.operation == "transport open"
    assert connection.state == ConnectionState.RECONNECTING


def test_transport_failure_during_connect(make_connection, transports):
    transports.auto_open = False
    transports.on_start = lambda transport: transport.fail(OSError("connection refused"))
    connection = make_connection()

    with pytest.raises(ConnectionError) as excinfo:
        connection.connect()

    assert excinfo.value.kind == ErrorKind.NETWORK
    assert "connection refused" in str(excinfo.value)
    assert connection.state == ConnectionState.RECONNECTING


def test_disconnect_cancels_connect_in_progress(make_connection, transports, timers):
    connection = make_connection()
    transports.auto_open = False
    transports.on_start = lambda transport: connection.disconnect()

    with pytest.raises(ConnectionClosedError):
        connection.connect()

    assert connection.state == ConnectionState.IDLE
    assert transports.last.closed
    assert timers.active("chatwire-reconnect") == []


def test_acknowledged_send(make_connection, transports, timers, events):
    connection = make_connection()
    connection.connect()

    future = connection.send_message(PAYLOAD)
    frame = transports.last.frames("message")[0]
    assert frame["data"] == PAYLOAD
    assert connection.get_status()["pending_messages"] == 1

    ack = {"type": "acknowledgment", "message_id": frame["id"]}
    transports.last.receive(ack)

    assert future.result(timeout=0) == ack
    assert len(connection.tracker) == 0
    assert timers.active("chatwire-ack") == []

    name, args = events[-1]
    assert name == "messageAcknowledged"
    assert isinstance(args[0], PendingDelivery)
    assert args[0].message_id == frame["id"]


def test_ack_timeout_then_late_ack_is_ignored(make_connection, transports, timers, events):
    connection = make_connection()
    connection.connect()

    future = connection.send_message(PAYLOAD)
    frame = transports.last.frames("message")[0]

    ack_timer = timers.fire("chatwire-ack")
    assert ack_timer.interval == 10

    error = future.exception(timeout=0)
    assert isinstance(error, TimeoutError)
    assert error.kind == ErrorKind.TIMEOUT
    assert error.operation == "acknowledgment"

    events.clear()
    transports.last.receive({"type": "acknowledgment", "message_id": frame["id"]})

    assert events == []
    assert future.exception(timeout=0) is error
    assert connection.connected


def test_send_requires_open_channel(make_connection):
    connection = make_connection()

    with pytest.raises(ConnectionClosedError):
        connection.send_message(PAYLOAD)

    with pytest.raises(ConnectionClosedError):
        connection.send_typing("t_1")


def test_send_failure_rejects_the_future(make_connection, transports):
    connection = make_connection()
    connection.connect()
    transports.last.fail_send = True

    future = connection.send_message(PAYLOAD)

    error = future.exception(timeout=0)
    assert isinstance(error, ConnectionError)
    assert "broken pipe" in str(error)
    assert len(connection.tracker) == 0


def test_typing_and_read_receipt_frames(make_connection, transports):
    connection = make_connection()
    connection.connect()

    connection.send_typing("t_1", True)
    connection.send_read_receipt("t_1", "m_9")

    typing = transports.last.frames("typing")[0]
    assert typing["thread_id"] == "t_1"
    assert typing["typing"] is True

    receipt = transports.last.frames("read_receipt")[0]
    assert receipt["message_id"] == "m_9"


def test_disconnect_rejects_pending_and_stops_timers(make_connection, transports, timers, events):
    connection = make_connection()
    connection.connect()
    future = connection.send_message(PAYLOAD)
    transport = transports.last

    events.clear()
    connection.disconnect()

    assert connection.state == ConnectionState.IDLE
    assert transport.closed
    assert isinstance(future.exception(timeout=0), ConnectionClosedError)
    assert timers.active("chatwire-heartbeat") == []
    assert timers.active("chatwire-ack") == []
    assert timers.active("chatwire-reconnect") == []
    assert event_names(events) == ["disconnect"]

    # Callbacks from the closed transport are ignored
    transport.drop(1000, "bye")
    assert event_names(events) == ["disconnect"]
    assert connection.state == ConnectionState.IDLE


def test_disconnect_when_idle_is_a_noop(make_connection, events):
    connection = make_connection()
    connection.disconnect()

    assert events == []


def test_dropped_connection_rejects_pending_and_reconnects(make_connection, transports, timers, events):
    connection = make_connection()
    connection.connect()
    future = connection.send_message(PAYLOAD)
    first = transports.last

    events.clear()
    first.drop(1006, "abnormal closure")

    assert event_names(events) == ["close", "disconnect", "reconnecting"]
    assert events[0][1] == (1006, "abnormal closure")
    assert isinstance(future.exception(timeout=0), ConnectionClosedError)
    assert connection.state == ConnectionState.RECONNECTING
    assert first.closed

    timers.fire("chatwire-reconnect")

    assert connection.state == ConnectionState.OPEN
    assert transports.last is not first
    assert connection.reconnect_attempts == 0
    assert event_names(events)[-2:] == ["connecting", "connect"]


def test_transport_error_while_open_reconnects(make_connection, transports, timers, events):
    connection = make_connection()
    connection.connect()

    events.clear()
    transports.last.fail(OSError("connection reset"))

    assert event_names(events) == ["error", "disconnect", "reconnecting"]
    assert events[0][1][0].kind == ErrorKind.NETWORK
    assert len(timers.active("chatwire-reconnect")) == 1


def test_only_one_reconnect_is_scheduled(make_connection, transports, timers):
    connection = make_connection()
    connection.connect()
    transport = transports.last

    transport.drop()
    transport.fail(OSError("late error"))
    transport.drop()

    assert len(timers.active("chatwire-reconnect")) == 1
    assert connection.reconnect_attempts == 1


def test_reconnect_backoff_is_exponential_and_capped(make_connection, transports, timers, events):
    connection = make_connection(max_reconnect_attempts=3, connect_timeout=0)
    connection.connect()

    transports.auto_open = False
    transports.last.drop()

    delays = []
    for _ in range(3):
        delays.append(timers.fire("chatwire-reconnect").interval)

    assert delays == [1.0, 2.0, 4.0]
    assert connection.state == ConnectionState.IDLE
    assert timers.active("chatwire-reconnect") == []

    name, args = events[-1]
    assert name == "reconnect_failed"
    assert args[0].kind == ErrorKind.NETWORK
    assert not args[0].retryable
    assert args[0].attempts == 3


def test_no_reconnect_when_disabled(make_connection, transports, timers, events):
    connection = make_connection(auto_reconnect=False)
    connection.connect()

    transports.last.drop()

    assert connection.state == ConnectionState.IDLE
    assert timers.active("chatwire-reconnect") == []
    assert "reconnecting" not in event_names(events)


def test_disconnect_cancels_scheduled_reconnect(make_connection, transports, timers):
    connection = make_connection()
    connection.connect()
    transports.last.drop()
    reconnect = timers.active("chatwire-reconnect")[0]

    connection.disconnect()

    assert reconnect.cancelled
    assert connection.state == ConnectionState.IDLE


def test_heartbeat_is_sent_and_acknowledged(make_connection, transports, timers):
    connection = make_connection()
    connection.connect()

    timers.fire("chatwire-heartbeat")

    assert len(transports.last.frames("heartbeat")) == 1
    timeout = timers.active("chatwire-heartbeat-timeout")
    assert len(timeout) == 1
    assert timeout[0].interval == 10

    transports.last.receive({"type": "heartbeat"})

    assert timeout[0].cancelled
    assert connection.connected
    # Next tick is scheduled
    assert len([t for t in timers.active("chatwire-heartbeat") if t.name == "chatwire-heartbeat"]) == 1


def test_heartbeat_timeout_tears_down_and_reconnects(make_connection, transports, timers, events):
    connection = make_connection()
    connection.connect()
    first = transports.last

    timers.fire("chatwire-heartbeat")
    events.clear()
    timers.fire("chatwire-heartbeat-timeout")

    assert event_names(events) == ["error", "disconnect", "reconnecting"]
    error = events[0][1][0]
    assert isinstance(error, TimeoutError)
    assert error.operation == "heartbeat"
    assert first.closed
    assert connection.state == ConnectionState.RECONNECTING
    assert timers.active("chatwire-heartbeat") == []

    timers.fire("chatwire-reconnect")
    assert connection.connected


def test_heartbeat_send_failure_reconnects(make_connection, transports, timers, events):
    connection = make_connection()
    connection.connect()
    first = transports.last
    first.fail_send = True

    events.clear()
    timers.fire("chatwire-heartbeat")

    assert event_names(events) == ["error", "disconnect", "reconnecting"]
    assert events[0][1][0].kind == ErrorKind.NETWORK
    assert first.closed
    assert connection.state == ConnectionState.RECONNECTING
    assert timers.active("chatwire-heartbeat") == []

    timers.fire("chatwire-reconnect")
    assert connection.connected


def test_incoming_frames_are_dispatched(make_connection, transports, events):
    connection = make_connection()
    connection.connect()
    events.clear()

    transports.last.receive({"type": "message", "data": {"id": "m_1", "text": "hi", "thread_id": "t_1"}})
    transports.last.receive({"type": "typing", "thread_id": "t_1", "user_id": "u_2", "typing": True})

    assert event_names(events) == ["message", "typing"]
    assert events[0][1][0].text == "hi"


def test_get_status_and_destroy(make_connection, transports):
    connection = make_connection()
    connection.connect()

    status = connection.get_status()
    assert status["state"] == "open"
    assert status["is_connected"] is True
    assert status["reconnect_attempts"] == 0

    connection.destroy()

    assert connection.state == ConnectionState.IDLE
    assert connection.dispatcher.tracker is None
    assert transports.last.closed
