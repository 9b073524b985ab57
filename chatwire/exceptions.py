"""
Exceptions for the chatwire library.

Every error raised by the request layer or the real-time channel is a
classified error: it carries a ``kind`` from the taxonomy below and a
``retryable`` flag used by the retry and reconnect policies.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional

import requests


class ErrorKind(str, Enum):
    """Error taxonomy."""

    AUTH = "auth"
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    TERMINAL = "terminal"


class ChatwireException(Exception):
    """Base exception for all chatwire errors."""

    kind: Optional[ErrorKind] = None
    retryable = False

    def __init__(self, message: str,
                 status_code: Optional[int] = None,
                 response_data: Any = None,
                 method: Optional[str] = None,
                 url: Optional[str] = None,
                 cause: Optional[BaseException] = None,
                 **details: Any):
        """
        Initialize a classified error.

        Args:
            message: Human readable error message.
            status_code: HTTP status code, when the error came from a response.
            response_data: Decoded response body, if any.
            method: HTTP method of the failed request.
            url: Target of the failed request.
            cause: The underlying exception.
            **details: Extra context (attempts, timeout, operation, ...).
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_data = response_data
        self.method = method
        self.url = url
        self.cause = cause
        self.details = details
        self.timestamp = time.time()

    @property
    def attempts(self) -> Optional[int]:
        return self.details.get("attempts")

    def summary(self) -> Dict[str, Any]:
        """
        Summarize the error for logging or event payloads.

        Returns:
            Dictionary with name, kind, message and request context.
        """
        return {
            "name": type(self).__name__,
            "kind": self.kind.value if self.kind else None,
            "message": self.message,
            "retryable": self.retryable,
            "status_code": self.status_code,
            "method": self.method,
            "url": self.url,
            "timestamp": self.timestamp,
            "details": self.details,
        }


class AuthenticationError(ChatwireException):
    """Raised when a credential is rejected or channel authentication fails."""
    kind = ErrorKind.AUTH


class ConnectionError(ChatwireException):
    """Raised when the transport fails (refused, reset, host not found)."""
    kind = ErrorKind.NETWORK
    retryable = True


class ServerError(ConnectionError):
    """Raised when the server answers with a 5xx status."""
    pass


class ConnectionClosedError(ConnectionError):
    """
    Raised when the channel is closed underneath a pending operation.

    Pending waits and unacknowledged sends are rejected with this error on
    disconnect, so a cancelled wait is distinguishable from a timed-out one.
    """
    retryable = False


class TimeoutError(ChatwireException):
    """Raised when a bounded wait expires."""
    kind = ErrorKind.TIMEOUT
    retryable = True

    @property
    def operation(self) -> Optional[str]:
        return self.details.get("operation")


class RateLimitError(ChatwireException):
    """Raised when the server signals throttling (429)."""
    kind = ErrorKind.RATE_LIMIT
    retryable = True

    @property
    def retry_after(self) -> Optional[float]:
        return self.details.get("retry_after")


class ValidationError(ChatwireException):
    """Raised when caller input is malformed. Never retried."""
    kind = ErrorKind.VALIDATION


class ProtocolError(ValidationError):
    """Raised when a channel frame cannot be encoded or decoded."""
    pass


class TerminalError(ChatwireException):
    """Raised for 4xx responses other than 429. Never retried."""
    kind = ErrorKind.TERMINAL


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def error_from_response(status: int, body: Any = None,
                        headers: Optional[Dict[str, str]] = None,
                        method: Optional[str] = None,
                        url: Optional[str] = None) -> ChatwireException:
    """
    Classify a failed HTTP response.

    Args:
        status: HTTP status code (>= 400).
        body: Decoded response body.
        headers: Response headers.
        method: Request method.
        url: Request target.

    Returns:
        The classified error for the status.
    """
    headers = headers or {}
    message = f"Request failed: {method} {url} - Status: {status}"

    if isinstance(body, dict) and body.get("error"):
        message += f" - {body['error']}"

    context = dict(status_code=status, response_data=body, method=method, url=url)

    if status == 429:
        return RateLimitError(message, retry_after=_parse_retry_after(headers.get("Retry-After")), **context)
    if status >= 500:
        return ServerError(message, **context)
    if status in (401, 403):
        return AuthenticationError(message, **context)
    return TerminalError(message, **context)


def error_from_transport(error: Exception,
                         method: Optional[str] = None,
                         url: Optional[str] = None) -> ChatwireException:
    """
    Classify an exception raised by the HTTP transport.

    Args:
        error: Exception raised by ``requests``.
        method: Request method.
        url: Request target.

    Returns:
        The classified error.
    """
    context = dict(method=method, url=url, cause=error)

    if isinstance(error, requests.Timeout):
        return TimeoutError(f"Request timed out: {method} {url}", operation="request", **context)
    if isinstance(error, requests.ConnectionError):
        return ConnectionError(f"Request failed: {method} {url} - {error}", **context)
    if isinstance(error, (requests.exceptions.InvalidURL,
                          requests.exceptions.MissingSchema,
                          requests.exceptions.InvalidSchema)):
        return ValidationError(f"Invalid request target: {url}", **context)

    # Anything else requests raises (too many redirects, chunked encoding, ...)
    failure = ConnectionError(f"Request failed: {method} {url} - {error}", **context)
    failure.retryable = False
    return failure
