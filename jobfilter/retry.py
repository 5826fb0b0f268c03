"""
Retry logic with exponential backoff for handling transient failures.

Two flavours live here:

- ``exponential_backoff``: a decorator for synchronous calls (scraper HTTP
  requests), raising ``RetryError`` once attempts are exhausted.
- ``RetryExecutor``: retries an async unit of work under a ``RetryPolicy``.
  Server-suggested delays (``Retry-After`` header or "try again in ..."
  messages) win over exponential backoff, symmetric jitter is applied, and
  the last real failure is re-raised when retries are exhausted.
"""

import asyncio
import functools
import random
import re
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

from .errors import ClassifierError, ErrorKind
from .logger import StructuredLogger, get_logger


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function(attempt, exception, delay)

    Example:
        @exponential_backoff(max_retries=3, base_delay=1.0)
        def fetch_items(url):
            return requests.get(url)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        raise RetryError(
                            f"Failed after {max_retries + 1} attempts: {str(e)}"
                        ) from e

                    current_delay = min(delay, max_delay)
                    if on_retry:
                        on_retry(attempt + 1, e, current_delay)
                    time.sleep(current_delay)
                    delay *= exponential_base

        return wrapper
    return decorator


def should_retry_http_status(status_code: Optional[int]) -> bool:
    """
    Default retry predicate on a classified status.

    Rate limits, unclassifiable (network-level) failures and any 5xx are
    retryable. Every other status is terminal.
    """
    if status_code is None:
        return True
    return status_code == 429 or 500 <= status_code < 600


def default_retry_on(status: Optional[int], error: ClassifierError, attempt: int) -> bool:
    return should_retry_http_status(status)


_TRY_AGAIN_PATTERN = re.compile(
    r"try again in (?:(\d{1,4})ms|(\d+(?:\.\d+)?)s)", re.IGNORECASE
)
_TOO_LARGE_PATTERN = re.compile(r"request too large", re.IGNORECASE)


def is_payload_too_large(error: ClassifierError) -> bool:
    return error.kind == ErrorKind.PAYLOAD_TOO_LARGE or bool(
        _TOO_LARGE_PATTERN.search(error.message)
    )


def suggested_delay(
    headers: Dict[str, Any], message: str, now: Optional[datetime] = None
) -> Optional[float]:
    """
    Extract a server-suggested delay in seconds.

    ``Retry-After`` is read as seconds, or as an HTTP date (only a future
    date counts). Otherwise a "try again in 250ms" / "try again in 1.5s"
    hint in the message is used.
    """
    lowered = {str(k).lower(): v for k, v in (headers or {}).items()}
    retry_after = lowered.get("retry-after")
    if retry_after is not None:
        try:
            return max(0.0, float(retry_after))
        except (TypeError, ValueError):
            pass
        try:
            when = parsedate_to_datetime(str(retry_after))
        except (TypeError, ValueError):
            when = None
        if when is not None:
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            delta = (when - (now or datetime.now(timezone.utc))).total_seconds()
            if delta > 0:
                return delta

    match = _TRY_AGAIN_PATTERN.search(message or "")
    if match:
        ms, seconds = match.groups()
        if ms:
            return int(ms) / 1000
        return float(seconds)
    return None


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff ``min(cap, base * 2**attempt)``."""
    return min(max_delay, base_delay * (2 ** attempt))


def apply_jitter(delay: float, jitter_ratio: float, rng: random.Random) -> float:
    """Add a uniform offset in ``[-delay*ratio, +delay*ratio]``, clamped at zero."""
    jitter = delay * jitter_ratio
    return max(0.0, delay + rng.uniform(-jitter, jitter))


@dataclass(frozen=True)
class RetryPolicy:
    """
    Knobs for ``RetryExecutor.execute``.

    Args:
        retries: Retries after the first attempt (retries + 1 attempts total)
        base_delay: Backoff base in seconds
        max_delay: Backoff cap in seconds
        jitter_ratio: Fraction of the delay randomized symmetrically
        retry_on: Predicate(status, error, attempt) deciding retryability
        on_payload_too_large: Async fallback used instead of retrying when
            the failure is classified as "payload too large"
    """
    retries: int = 5
    base_delay: float = 0.6
    max_delay: float = 8.0
    jitter_ratio: float = 0.4
    retry_on: Callable[[Optional[int], ClassifierError, int], bool] = default_retry_on
    on_payload_too_large: Optional[Callable[[], Awaitable[Any]]] = None

    def __post_init__(self):
        if self.retries < 0:
            raise ValueError(f"retries must be >= 0, got {self.retries}")

    def with_fallback(self, fallback: Optional[Callable[[], Awaitable[Any]]]) -> "RetryPolicy":
        return replace(self, on_payload_too_large=fallback)


class RetryExecutor:
    """Runs async units of work with backoff; sleeps never block other tasks."""

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.logger = logger or get_logger()

    def compute_delay(self, error: ClassifierError, attempt: int, policy: RetryPolicy) -> Tuple[float, str]:
        """Return the delay before the next attempt and why it was chosen."""
        delay = suggested_delay(error.headers, error.message)
        reason = "server-suggested"
        if delay is None:
            if error.status == 429:
                reason = "rate-limit"
            elif error.status is not None and error.status >= 500:
                reason = "server-error"
            else:
                reason = "network/unknown"
            delay = backoff_delay(attempt, policy.base_delay, policy.max_delay)
        return apply_jitter(delay, policy.jitter_ratio, self.rng), reason

    async def execute(
        self,
        label: str,
        unit_of_work: Callable[[], Awaitable[Any]],
        policy: Optional[RetryPolicy] = None,
    ) -> Any:
        """
        Run ``unit_of_work`` until it succeeds or the policy gives up.

        Raises:
            ClassifierError: The last failure, once it is terminal or
                retries are exhausted
        """
        policy = policy or RetryPolicy()

        for attempt in range(policy.retries + 1):
            try:
                return await unit_of_work()
            except Exception as exc:
                error = ClassifierError.from_exception(exc)

            context = {
                "label": label,
                "attempt": attempt + 1,
                "status": error.status,
                "kind": error.kind.value,
                "error": error.message,
            }

            if is_payload_too_large(error):
                if policy.on_payload_too_large is not None:
                    self.logger.warning(f"{label} request too large; invoking fallback", **context)
                    return await policy.on_payload_too_large()
                self.logger.error(f"{label} request too large; no fallback", **context)
                raise error

            if attempt >= policy.retries or not policy.retry_on(error.status, error, attempt):
                self.logger.error(f"{label} failed (final)", **context)
                raise error

            delay, reason = self.compute_delay(error, attempt, policy)
            self.logger.warning(
                f"{label} failed (attempt {attempt + 1} of {policy.retries + 1}, {reason}), "
                f"retrying in {delay:.3f}s",
                **context,
            )
            self.logger.record_retry(error.kind.value)
            await self.sleep(delay)
