"""
Chatwire - A Python client core for a Messenger-style chat platform.

Provides resilient HTTP requests with rate limiting and retries, a
persistent real-time channel with heartbeat and reconnection, delivery
acknowledgments and an event interface for incoming activity.
"""

from chatwire.version import __version__
from chatwire.client import MessengerClient
from chatwire.config import Config
from chatwire.connection import Connection, ConnectionState, WebSocketTransport
from chatwire.exceptions import (
    ErrorKind,
    ChatwireException,
    AuthenticationError,
    ConnectionError,
    ConnectionClosedError,
    ServerError,
    TimeoutError,
    RateLimitError,
    ValidationError,
    ProtocolError,
    TerminalError
)
from chatwire.handlers import EventDispatcher
from chatwire.messages import Message
from chatwire.network import HttpResponse, RequestExecutor
from chatwire.tracker import DeliveryTracker, PendingDelivery

__all__ = [
    '__version__',
    'MessengerClient',
    'Config',
    'Connection',
    'ConnectionState',
    'WebSocketTransport',
    'ErrorKind',
    'ChatwireException',
    'AuthenticationError',
    'ConnectionError',
    'ConnectionClosedError',
    'ServerError',
    'TimeoutError',
    'RateLimitError',
    'ValidationError',
    'ProtocolError',
    'TerminalError',
    'EventDispatcher',
    'Message',
    'HttpResponse',
    'RequestExecutor',
    'DeliveryTracker',
    'PendingDelivery'
]
