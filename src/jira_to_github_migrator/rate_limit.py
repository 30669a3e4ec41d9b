"""Rate-limited transport for calls to the GitHub API.

Every call waits for a permit: calls are spaced at least ``min_interval``
seconds apart, measured from the moment the previous permit was handed out
rather than by sleeping a fixed amount before each call.

When GitHub answers with a rate limit response the same request is retried:

- ``Retry-After`` present: sleep exactly that many seconds.
- ``X-RateLimit-Remaining: 0``: sleep until ``X-RateLimit-Reset`` (epoch seconds).
- otherwise (secondary/abuse limit without a duration): sleep a guessed
  delay, starting at ``abuse_base_delay`` and doubling on every consecutive
  occurrence for the same request.

Other errors propagate to the caller unchanged.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Final, Protocol, TypeVar

from github import GithubException, RateLimitExceededException

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_STATUSES: Final = frozenset({403, 429})
DEFAULT_MIN_INTERVAL: Final = 1.0
DEFAULT_ABUSE_BASE_DELAY: Final = 45.0


class Clock(Protocol):
    """Time source and sleeper, injectable so tests can simulate elapsed time."""

    def time(self) -> float:
        """Return the current time in epoch seconds."""
        ...

    def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Clock backed by the ``time`` module."""

    def time(self) -> float:
        return time.time()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


def _lower_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    return {k.lower(): v for k, v in (headers or {}).items()}


def _is_secondary_limit(exc: GithubException) -> bool:
    if exc.status == 429 or isinstance(exc, RateLimitExceededException):
        return True
    text = str(exc.data if exc.data is not None else "").lower()
    return "rate limit" in text or "abuse" in text


class RateLimitedTransport:
    """Throttles and retries calls to a rate-limited API."""

    def __init__(
        self,
        *,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        abuse_base_delay: float = DEFAULT_ABUSE_BASE_DELAY,
        clock: Clock | None = None,
    ) -> None:
        self.min_interval = min_interval
        self.abuse_base_delay = abuse_base_delay
        self.clock: Clock = clock or SystemClock()
        self._next_permit: float = 0.0

    def call(self, request: Callable[[], T]) -> T:
        """Execute ``request`` once a permit is available, retrying on rate limits.

        Args:
            request: Zero-argument callable performing one API request

        Returns:
            Whatever ``request`` returns

        Raises:
            GithubException: For any error that is not a rate limit response
        """
        abuse_delay = self.abuse_base_delay
        while True:
            self._acquire_permit()
            try:
                return request()
            except GithubException as e:
                backoff = self._backoff(e, abuse_delay)
                if backoff is None:
                    raise
                delay, guessed = backoff
                if guessed:
                    abuse_delay *= 2
                self.clock.sleep(delay)

    def _acquire_permit(self) -> None:
        now = self.clock.time()
        if now < self._next_permit:
            self.clock.sleep(self._next_permit - now)
            now = self._next_permit
        self._next_permit = now + self.min_interval

    def _backoff(self, exc: GithubException, abuse_delay: float) -> tuple[float, bool] | None:
        """Return ``(delay, guessed)`` for a rate limit response, or None for any other error."""
        if exc.status not in RATE_LIMIT_STATUSES:
            return None

        headers = _lower_headers(exc.headers)

        retry_after = headers.get("retry-after")
        if retry_after is not None:
            try:
                delay = max(float(retry_after), 0.0)
            except ValueError:
                logger.warning(f"Ignoring unparsable Retry-After header: {retry_after!r}")
            else:
                logger.info(f"Rate limited, retrying after {delay:.0f} seconds as requested")
                return delay, False

        if headers.get("x-ratelimit-remaining") == "0":
            reset = headers.get("x-ratelimit-reset")
            if reset is not None:
                try:
                    delay = max(float(reset) - self.clock.time(), 0.0)
                except ValueError:
                    logger.warning(f"Ignoring unparsable X-RateLimit-Reset header: {reset!r}")
                else:
                    logger.info(f"Rate limit quota exhausted, waiting {delay:.0f} seconds until reset")
                    return delay, False

        if _is_secondary_limit(exc):
            logger.info(f"Secondary rate limit hit with no indication of how long to wait, guessing {abuse_delay:.0f} seconds")
            return abuse_delay, True

        return None
