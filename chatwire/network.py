"""
Network module for the chatwire library.

Issues HTTP requests with a per-client rate limit, bounded retries with
linear backoff, and error classification.
"""

import json
import time
import logging
import threading
from typing import Dict, Any, Optional, Callable

import requests

from chatwire.config import Config
from chatwire.constants import ACCEPT_LANGUAGE, GRAPHQL_ENDPOINT
from chatwire.exceptions import (
    ChatwireException,
    ValidationError,
    error_from_response,
    error_from_transport
)

logger = logging.getLogger(__name__)

class HttpResponse:
    """
    Result of a successful request.
    """

    def __init__(self, status: int, body: Any, headers: Dict[str, str], url: str):
        self.status = status
        self.body = body
        self.headers = headers
        self.url = url

    def __repr__(self) -> str:
        return f"HttpResponse(status={self.status}, url={self.url!r})"


class RequestExecutor:
    """
    Performs logical requests reliably over an unreliable transport.

    One executor belongs to one client context; the rate-limit timestamp it
    keeps is shared by every request that client makes.
    """

    RESPONSE_TYPES = ("json", "text", "bytes")

    def __init__(self, config: Config,
                 auth: Optional[Any] = None,
                 session: Optional[requests.Session] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the request executor.

        Args:
            config: Configuration instance.
            auth: Authentication handler providing ``get_auth_headers()``.
            session: HTTP session to send requests through.
            clock: Monotonic clock used for rate limiting.
            sleep: Function used for rate-limit and backoff waits.
        """
        self.config = config
        self.auth = auth
        self.session = session or requests.Session()
        self.session.max_redirects = int(config.get("max_redirects"))
        self._clock = clock
        self._sleep = sleep
        self._dispatch_lock = threading.Lock()

        self.rate_limit_delay = float(config.get("rate_limit_delay"))
        self.max_retries = int(config.get("max_retries"))
        self.retry_delay = float(config.get("retry_delay"))
        self.request_count = 0
        self.attempt_count = 0
        self.last_dispatch_time: Optional[float] = None

    def get(self, url: str, **options: Any) -> HttpResponse:
        return self.request("GET", url, **options)

    def post(self, url: str, data: Any = None, **options: Any) -> HttpResponse:
        return self.request("POST", url, data, **options)

    def put(self, url: str, data: Any = None, **options: Any) -> HttpResponse:
        return self.request("PUT", url, data, **options)

    def delete(self, url: str, **options: Any) -> HttpResponse:
        return self.request("DELETE", url, **options)

    def patch(self, url: str, data: Any = None, **options: Any) -> HttpResponse:
        return self.request("PATCH", url, data, **options)

    def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None,
                url: str = GRAPHQL_ENDPOINT, **options: Any) -> HttpResponse:
        """
        Send a GraphQL query.

        Args:
            query: Query document.
            variables: Query variables.
            url: GraphQL endpoint.
            **options: Request options passed to ``request``.

        Returns:
            The response.
        """
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        return self.post(url, payload, **options)

    def request(self, method: str, url: str, data: Any = None,
                headers: Optional[Dict[str, str]] = None,
                timeout: Optional[float] = None,
                follow_redirects: bool = True,
                params: Optional[Dict[str, Any]] = None,
                response_type: str = "json") -> HttpResponse:
        """
        Perform one logical request with rate limiting and retries.

        Args:
            method: HTTP method.
            url: Request target.
            data: Body; dicts and lists are sent as JSON.
            headers: Extra headers, merged over the defaults.
            timeout: Socket timeout in seconds.
            follow_redirects: Whether to follow redirects.
            params: Query string parameters.
            response_type: ``json``, ``text`` or ``bytes``.

        Returns:
            The response, once a status below 400 is received.

        Raises:
            ChatwireException: The classified error of the last attempt.
        """
        if response_type not in self.RESPONSE_TYPES:
            raise ValidationError(f"Unsupported response type: {response_type}")

        method = method.upper()
        request_headers, body = self._prepare(data, headers)
        timeout = timeout if timeout is not None else self.config.get("request_timeout")

        self.request_count += 1
        request_id = self.request_count
        last_error: Optional[ChatwireException] = None

        for attempt in range(1, self.max_retries + 1):
            backoff = 0.0 if attempt == 1 else self.retry_delay * attempt
            if backoff:
                logger.debug(f"Request {request_id} backing off {backoff:.2f}s before attempt {attempt}")
            self._throttle(backoff)

            try:
                response = self.session.request(
                    method,
                    url,
                    data=body,
                    headers=request_headers,
                    params=params,
                    timeout=timeout,
                    allow_redirects=follow_redirects
                )
            except requests.RequestException as e:
                last_error = error_from_transport(e, method, url)
            else:
                result = self._handle_response(response, response_type)
                logger.debug(f"{method} {url} - {result.status} (attempt {attempt})")

                if result.status < 400:
                    return result

                last_error = error_from_response(result.status, result.body, result.headers, method, url)

            last_error.details["attempts"] = attempt

            if not last_error.retryable:
                logger.error(f"Request {request_id} failed: {last_error.message}")
                raise last_error

            if attempt < self.max_retries:
                logger.warning(f"Request {request_id} failed (attempt {attempt}/{self.max_retries}): {last_error.message}")

        logger.error(f"Request {request_id} failed after {self.max_retries} attempts: {last_error.message}")
        raise last_error

    def _throttle(self, minimum_wait: float = 0.0) -> None:
        """
        Wait out the rate-limit spacing, then record the dispatch time.

        Args:
            minimum_wait: Backoff that must elapse regardless of spacing.
        """
        with self._dispatch_lock:
            wait = minimum_wait

            if self.last_dispatch_time is not None:
                elapsed = self._clock() - self.last_dispatch_time
                wait = max(wait, self.rate_limit_delay - elapsed)

            if wait > 0:
                self._sleep(wait)

            self.last_dispatch_time = self._clock()
            self.attempt_count += 1

    def _prepare(self, data: Any, headers: Optional[Dict[str, str]]) -> tuple:
        request_headers = self._default_headers()
        body = data

        if isinstance(data, (dict, list)):
            body = json.dumps(data)
            request_headers["Content-Type"] = "application/json"

        if headers:
            request_headers.update(headers)

        return request_headers, body

    def _handle_response(self, response: requests.Response, response_type: str) -> HttpResponse:
        if response_type == "bytes":
            body: Any = response.content
        elif response_type == "text":
            body = response.text
        else:
            try:
                body = response.json() if response.content else None
            except ValueError:
                body = response.text

        return HttpResponse(response.status_code, body, dict(response.headers), response.url or "")

    def _default_headers(self) -> Dict[str, str]:
        headers = {
            "User-Agent": self.config.get("user_agent"),
            "Accept-Language": ACCEPT_LANGUAGE,
            "Accept": "application/json, text/plain, */*"
        }

        if self.auth is not None:
            headers.update(self.auth.get_auth_headers())

        return headers

    def get_stats(self) -> Dict[str, Any]:
        """
        Get request statistics.

        Returns:
            Counters and the active rate-limit settings.
        """
        return {
            "request_count": self.request_count,
            "attempt_count": self.attempt_count,
            "last_dispatch_time": self.last_dispatch_time,
            "rate_limit_delay": self.rate_limit_delay,
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay
        }

    def update_rate_limit(self, delay: Optional[float] = None,
                          max_retries: Optional[int] = None,
                          retry_delay: Optional[float] = None) -> None:
        """
        Update rate limiting settings. ``None`` keeps the current value.
        """
        if delay is not None:
            if delay < 0:
                raise ValidationError("Rate limit delay must be non-negative")
            self.rate_limit_delay = float(delay)
        if max_retries is not None:
            if max_retries < 1:
                raise ValidationError("Max retries must be at least 1")
            self.max_retries = int(max_retries)
        if retry_delay is not None:
            if retry_delay < 0:
                raise ValidationError("Retry delay must be non-negative")
            self.retry_delay = float(retry_delay)

    def clear_stats(self) -> None:
        self.request_count = 0
        self.attempt_count = 0
        self.last_dispatch_time = None

    def close(self) -> None:
        self.session.close()
