"""
HTTP transport shared by the source adapters.

Wraps a requests.Session with a per-request timeout and exponential
backoff, and maps transport failures onto the typed source errors:

    401, 403                          -> Unauthorized (no retry)
    429                               -> retried, then RateLimited
    5xx, connection errors            -> retried, then Unavailable
    request timeout                   -> SourceTimeout (no retry)
    other 4xx                         -> Unavailable (no retry)
    2xx with a non-JSON-object body   -> Malformed
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, Optional

import requests

from outreach_sync.api.errors import (
    Malformed,
    RateLimited,
    SourceTimeout,
    Unauthorized,
    Unavailable,
)

logger = logging.getLogger(__name__)

# Retry configuration
DEFAULT_TIMEOUT = 30.0  # seconds
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 60.0  # seconds

USER_AGENT = "outreach-sync"


class HttpTransport:
    """
    JSON-over-HTTP client for one upstream API.

    Attributes:
        base_url: API root, without trailing slash
        source: Source name used in errors and log lines
        timeout: Per-request timeout in seconds

    Usage:
        transport = HttpTransport("https://api.example.com/v1", api_key="...")
        body = transport.get_json("/chats", {"limit": 50})
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        source: str = "api",
        auth_header: str = "X-API-KEY",
        auth_scheme: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the transport.

        Args:
            base_url: API root URL
            api_key: Credential sent on every request
            source: Source name for errors and logs
            auth_header: Header carrying the credential
            auth_scheme: Optional prefix such as "Bearer"
            timeout: Per-request timeout in seconds
            max_retries: Attempts for retryable failures (at least 1)
            initial_retry_delay: First backoff delay in seconds
            max_retry_delay: Upper bound on any single backoff delay
            session: Session to use (tests inject a mock)
            sleep: Sleep function (tests inject a no-op)
        """
        self.base_url = base_url.rstrip("/")
        self.source = source
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self._sleep = sleep

        self.session = session or requests.Session()
        self.session.headers.update(
            {"Accept": "application/json", "User-Agent": USER_AGENT}
        )
        if api_key:
            value = f"{auth_scheme} {api_key}" if auth_scheme else api_key
            self.session.headers[auth_header] = value

    def get_json(
        self, path: str, params: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """
        GET a path and return the decoded JSON object.

        Parameters with a None value are not sent.

        Raises:
            Unauthorized, RateLimited, Unavailable, SourceTimeout, Malformed
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        response = self._retry_with_backoff(
            lambda: self.session.get(url, params=clean_params, timeout=self.timeout),
            f"GET {path}",
        )
        return self._decode(response, path)

    def _retry_with_backoff(
        self, operation: Callable[[], requests.Response], operation_name: str
    ) -> requests.Response:
        """
        Execute a request with exponential backoff retry.

        Returns:
            The first 2xx response

        Raises:
            RateLimited: If retries are exhausted due to rate limits
            Unavailable: On server or connection errors after retries, and on
                        non-retryable client errors
            SourceTimeout: If the request times out
            Unauthorized: On 401/403
        """
        delay = self.initial_retry_delay

        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1

            try:
                response = operation()
            except requests.Timeout as e:
                raise SourceTimeout(
                    f"{operation_name} timed out after {self.timeout}s",
                    source=self.source,
                ) from e
            except requests.ConnectionError as e:
                if last_attempt:
                    raise Unavailable(
                        f"{operation_name} connection failed after "
                        f"{self.max_retries} attempts: {e}",
                        source=self.source,
                    ) from e
                logger.warning(
                    f"{self.source}: {operation_name} connection error, "
                    f"retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                self._sleep(delay)
                delay = min(delay * 2, self.max_retry_delay)
                continue
            except requests.RequestException as e:
                raise Unavailable(
                    f"{operation_name} failed: {e}", source=self.source
                ) from e

            status_code = response.status_code

            if 200 <= status_code < 300:
                return response

            if status_code in (401, 403):
                raise Unauthorized(
                    f"{operation_name} rejected credentials ({status_code})",
                    source=self.source,
                )

            # Rate limit - retry with backoff, honoring Retry-After
            if status_code == 429:
                retry_after = _parse_retry_after(response)
                if last_attempt:
                    raise RateLimited(
                        f"Rate limit exceeded for {operation_name} "
                        f"after {self.max_retries} attempts",
                        source=self.source,
                        retry_after=retry_after,
                    )
                wait = min(retry_after or delay, self.max_retry_delay)
                logger.warning(
                    f"{self.source}: {operation_name} rate limited, retrying in "
                    f"{wait:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                )
                self._sleep(wait)
                delay = min(delay * 2, self.max_retry_delay)
                continue

            # Server error - retry with backoff
            if status_code >= 500:
                if last_attempt:
                    raise Unavailable(
                        f"{operation_name} server error ({status_code}) "
                        f"after {self.max_retries} attempts",
                        source=self.source,
                    )
                logger.warning(
                    f"{self.source}: {operation_name} server error "
                    f"({status_code}), retrying in {delay:.1f}s"
                )
                self._sleep(delay)
                delay = min(delay * 2, self.max_retry_delay)
                continue

            # Other errors - don't retry
            logger.error(
                f"{self.source}: {operation_name} failed with status {status_code}"
            )
            raise Unavailable(
                f"{operation_name} failed with status {status_code}",
                source=self.source,
            )

        # max_retries is at least 1, so the loop always returns or raises
        raise Unavailable(
            f"{operation_name} failed after all retries", source=self.source
        )

    def _decode(self, response: requests.Response, path: str) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise Malformed.from_payload(
                f"GET {path} returned invalid JSON", response.text, source=self.source
            ) from e

        if not isinstance(body, dict):
            raise Malformed.from_payload(
                f"GET {path} returned {type(body).__name__}, expected an object",
                body,
                source=self.source,
            )
        return body


def _parse_retry_after(response: requests.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        # HTTP-date form is not used by the supported upstreams
        return None
    return max(seconds, 0.0)
