"""
Shared fixtures: fake timers, transports, HTTP sessions and a fake clock.
"""

import json

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from chatwire.auth import Auth
from chatwire.config import Config
from chatwire.connection import Connection
from chatwire.handlers import EventDispatcher


class FakeTimer:
    """Stands in for ``threading.Timer``; fires only when the test says so."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = tuple(args or ())
        self.kwargs = dict(kwargs or {})
        self.daemon = False
        self.name = None
        self.started = False
        self.cancelled = False
        self.fired = False

    @property
    def active(self):
        return self.started and not self.cancelled and not self.fired

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        assert self.active, f"timer {self.name} is not active"
        self.fired = True
        self.function(*self.args, **self.kwargs)


class FakeTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    def named(self, prefix):
        return [t for t in self.timers if t.name and t.name.startswith(prefix)]

    def active(self, prefix):
        return [t for t in self.named(prefix) if t.active]

    def fire(self, prefix):
        """Fire the single active timer whose name starts with ``prefix``."""
        timers = self.active(prefix)
        assert len(timers) == 1, f"expected one active {prefix} timer, found {len(timers)}"
        timers[0].fire()
        return timers[0]


class FakeTransport:
    """
    In-memory transport. Opening and the authentication reply happen
    synchronously, as configured on the factory that built it.
    """

    def __init__(self, factory, url, headers, on_open, on_message, on_close, on_error):
        self.factory = factory
        self.url = url
        self.headers = headers
        self.on_open = on_open
        self.on_message = on_message
        self.on_close = on_close
        self.on_error = on_error
        self.sent = []
        self.started = False
        self.closed = False
        self.fail_send = False

    def start(self):
        self.started = True
        if self.factory.on_start is not None:
            self.factory.on_start(self)
        if self.factory.auto_open:
            self.on_open()

    def send(self, frame):
        if self.fail_send:
            raise OSError("broken pipe")

        self.sent.append(frame)
        decoded = json.loads(frame)

        if decoded["type"] == "authentication" and self.factory.auth_response is not None:
            self.receive(dict({"type": "authentication_response"}, **self.factory.auth_response))

    def close(self):
        self.closed = True

    def frames(self, frame_type=None):
        decoded = [json.loads(frame) for frame in self.sent]
        return [f for f in decoded if frame_type is None or f["type"] == frame_type]

    def receive(self, frame):
        self.on_message(json.dumps(frame))

    def drop(self, code=1006, reason="abnormal closure"):
        self.on_close(code, reason)

    def fail(self, error):
        self.on_error(error)


class FakeTransportFactory:
    def __init__(self):
        self.transports = []
        self.auto_open = True
        self.auth_response = {"success": True}
        self.on_start = None

    def __call__(self, url, headers, on_open, on_message, on_close, on_error):
        transport = FakeTransport(self, url, headers, on_open, on_message, on_close, on_error)
        self.transports.append(transport)
        return transport

    @property
    def last(self):
        return self.transports[-1]


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self, start=100.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_response(status=200, body=None, headers=None, url="https://api.test/"):
    response = requests.Response()
    response.status_code = status
    response.url = url
    response.headers = CaseInsensitiveDict(headers or {})
    if body is None:
        response._content = b""
    elif isinstance(body, (bytes, str)):
        response._content = body if isinstance(body, bytes) else body.encode("utf-8")
    else:
        response._content = json.dumps(body).encode("utf-8")
        response.headers.setdefault("Content-Type", "application/json")
    return response


class FakeSession:
    """
    Replays queued responses or exceptions. When the queue is empty every
    request answers 200 with an empty JSON object.
    """

    def __init__(self, outcomes=None, clock=None):
        self.outcomes = list(outcomes or [])
        self.clock = clock
        self.calls = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append({
            "method": method,
            "url": url,
            "time": self.clock() if self.clock else None,
            **kwargs
        })

        outcome = self.outcomes.pop(0) if self.outcomes else make_response(200, {}, url=url)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        self.closed = True


@pytest.fixture
def timers():
    return FakeTimerFactory()


@pytest.fixture
def transports():
    return FakeTransportFactory()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_config(tmp_path):
    def factory(**overrides):
        overrides.setdefault("credentials_path", str(tmp_path / "credentials.json"))
        return Config(**overrides)
    return factory


@pytest.fixture
def events():
    return []


@pytest.fixture
def make_connection(make_config, timers, transports, events):
    """Build a connection holding a token; every emitted event lands in ``events``."""

    def factory(network=None, token="token-123", **overrides):
        config = make_config(**overrides)
        auth = Auth(config)
        if token:
            auth.set_access_token(token, user_id="100001")

        dispatcher = EventDispatcher()
        dispatcher.on("all", lambda name, *args: events.append((name, args)))

        return Connection(config, auth, network, dispatcher,
                          transport_factory=transports, timer_factory=timers)

    return factory


def event_names(events):
    return [name for name, _ in events]
