"""
HTTP client with connection pooling, retries, and rate limiting.

Provides:
- A token bucket that caps calls per one-second window
- A requests session wrapper that:
  - Pools connections sized to the worker count
  - Retries idempotent requests with exponential backoff
  - Optionally gates every request through a token bucket
  - Applies a default timeout
"""

import time
import threading
import logging
from typing import Callable, Dict, Iterable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from constants import (
    MAX_RETRIES,
    RETRY_BACKOFF_BASE,
    RATE_LIMIT_POLL_INTERVAL,
)

logger = logging.getLogger(__name__)

# Methods that are safe to replay. POST is excluded so a create is never sent twice.
IDEMPOTENT_METHODS = ("GET", "HEAD", "PUT", "DELETE", "OPTIONS")


class TokenBucketRateLimiter:
    """
    Thread-safe token bucket refilled to capacity once per second.

    The bucket starts full. When at least one second has passed since the
    last refill, the next caller refills it and restarts the window. Callers
    that find it empty poll at a short fixed interval. No FIFO ordering is
    guaranteed among waiters.
    """

    def __init__(
        self,
        requests_per_second: int,
        poll_interval: float = RATE_LIMIT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            requests_per_second: Tokens granted per window (minimum 1)
            poll_interval: Seconds to wait before re-checking an empty bucket
            clock: Monotonic time source
        """
        self.capacity = max(1, int(requests_per_second))
        self.tokens = self.capacity
        self.poll_interval = poll_interval
        self._clock = clock
        self._last_refill = clock()
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        """Take a token if one is available, without waiting."""
        with self._lock:
            now = self._clock()
            if now - self._last_refill >= 1.0:
                self.tokens = self.capacity
                self._last_refill = now

            if self.tokens > 0:
                self.tokens -= 1
                return True
            return False

    def acquire(self, cancel_event: Optional[threading.Event] = None) -> bool:
        """
        Block until a token is available.

        Args:
            cancel_event: Optional run cancellation signal

        Returns:
            True once a token was taken, False only if cancel_event was set
        """
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return False

            if self.try_acquire():
                return True

            if cancel_event is not None:
                cancel_event.wait(self.poll_interval)
            else:
                time.sleep(self.poll_interval)


class RateLimitedSession:
    """
    Requests session wrapper with optional rate limiting, retries, and pooling.

    Usage:
        with RateLimitedSession(limiter=TokenBucketRateLimiter(2)) as session:
            response = session.get("https://api.tvmaze.com/shows?page=0")
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = MAX_RETRIES,
        backoff_factor: float = RETRY_BACKOFF_BASE,
        pool_size: int = 20,
        limiter: Optional[TokenBucketRateLimiter] = None,
        headers: Optional[Dict[str, str]] = None,
        retry_methods: Iterable[str] = IDEMPOTENT_METHODS,
        user_agent: str = None,
    ):
        """
        Initialize session.

        Args:
            timeout: Default request timeout in seconds
            max_retries: Maximum number of retry attempts
            backoff_factor: Base for exponential backoff
            pool_size: Connections kept per host
            limiter: Optional token bucket gating every request
            headers: Extra default headers
            retry_methods: HTTP methods that may be retried
            user_agent: Custom user agent string
        """
        self.timeout = timeout
        self.limiter = limiter
        self.session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=list(retry_methods),
            raise_on_status=False,
        )

        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=10,
            pool_maxsize=pool_size,
        )
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self.session.headers.update({
            "User-Agent": user_agent or "tvmaze-heartcore-migrator/1.0",
            "Accept": "application/json, */*",
        })
        if headers:
            self.session.headers.update(headers)

    def request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Make a request, waiting for a token first if a limiter is attached.

        Args:
            method: HTTP method
            url: URL to request
            **kwargs: Additional arguments passed to requests.Session.request

        Returns:
            Response object
        """
        if self.limiter:
            self.limiter.acquire()
        kwargs.setdefault("timeout", self.timeout)
        return self.session.request(method, url, **kwargs)

    def get(self, url: str, **kwargs) -> requests.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> requests.Response:
        return self.request("POST", url, **kwargs)

    def close(self) -> None:
        """Close the session and release resources."""
        self.session.close()

    def __enter__(self) -> "RateLimitedSession":
        return self

    def __exit__(self, *args) -> None:
        self.close()


def create_session(
    timeout: float = 30.0,
    pool_size: int = 20,
    limiter: Optional[TokenBucketRateLimiter] = None,
    headers: Optional[Dict[str, str]] = None,
    max_retries: int = MAX_RETRIES,
) -> RateLimitedSession:
    """
    Create a configured session.

    Convenience function for creating sessions with default settings.

    Args:
        timeout: Request timeout in seconds
        pool_size: Connection pool size per host
        limiter: Optional token bucket for every request
        headers: Extra default headers
        max_retries: Transport-level retries (0 disables them)

    Returns:
        Configured RateLimitedSession
    """
    return RateLimitedSession(
        timeout=timeout,
        max_retries=max_retries,
        pool_size=pool_size,
        limiter=limiter,
        headers=headers,
    )


class SessionAwareComponent:
    """
    Mixin for components that optionally manage HTTP sessions.

    Provides standardized session ownership tracking and cleanup.

    Usage:
        class MyClient(SessionAwareComponent):
            def __init__(self, session=None):
                self.init_session(session, timeout=15.0)

            def do_something(self):
                response = self.session.get(...)
    """

    session: RateLimitedSession
    _owns_session: bool

    def init_session(
        self,
        session: RateLimitedSession = None,
        timeout: float = 30.0,
        **session_kwargs,
    ) -> None:
        """
        Initialize session with ownership tracking.

        Args:
            session: Optional existing session to use
            timeout: Timeout for new session if created
            **session_kwargs: Passed to create_session for a new session
        """
        self.session = session or create_session(timeout=timeout, **session_kwargs)
        self._owns_session = session is None

    def close(self) -> None:
        """Close session if we own it."""
        if self._owns_session:
            self.session.close()
