"""Retry and concurrency control for Plane API requests."""

import logging
import threading
import time
from collections import deque
from typing import Callable, Optional

from services.plane_errors import PlaneApiError, RateLimitedError

logger = logging.getLogger(__name__)


class RequestExecutor:
    """Runs one upstream call, retrying only when it is rate limited."""

    MAX_RETRIES = 3
    INITIAL_RETRY_DELAY = 1.0

    def __init__(self, max_retries: Optional[int] = None,
                 initial_delay: Optional[float] = None,
                 sleep: Optional[Callable[[float], None]] = None):
        # Counts attempts, so anything below 1 still makes the one request.
        self.max_retries = max(
            max_retries if max_retries is not None else self.MAX_RETRIES, 1
        )
        self.initial_delay = (
            initial_delay if initial_delay is not None else self.INITIAL_RETRY_DELAY
        )
        self._sleep = sleep

    def _retry_delay(self, error: RateLimitedError, attempt: int) -> float:
        if error.retry_after is not None:
            return error.retry_after
        return self.initial_delay * (2 ** attempt)

    def execute(self, request_fn: Callable, context: str = ""):
        """Call ``request_fn`` and return its result.

        A ``RateLimitedError`` is retried up to ``max_retries`` attempts in
        total, waiting Retry-After seconds when the response gave one and
        an exponential backoff otherwise. Every other error propagates on
        the first failure.
        """
        last_error = None

        for attempt in range(self.max_retries):
            try:
                result = request_fn()
                logger.debug(f"{context} succeeded")
                return result
            except RateLimitedError as e:
                last_error = e
                if attempt + 1 >= self.max_retries:
                    break
                delay = self._retry_delay(e, attempt)
                logger.warning(
                    f"[429 Rate Limited] {context}, retry {attempt + 1}/"
                    f"{self.max_retries - 1} in {delay}s"
                )
                (self._sleep or time.sleep)(delay)
            except PlaneApiError as e:
                logger.error(f"[{e.status_code or 'Network'}] {context}: {e}")
                raise

        logger.error(f"{context} still rate limited after {self.max_retries} attempts")
        raise last_error


class ConcurrencyLimiter:
    """Bounded semaphore that admits waiters in arrival order.

    Usable as a context manager or through ``run(fn, ...)``.
    """

    def __init__(self, max_concurrent: int):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._running = 0
        self._waiters = deque()
        self._condition = threading.Condition()

    @property
    def running(self) -> int:
        with self._condition:
            return self._running

    def acquire(self):
        ticket = object()
        with self._condition:
            self._waiters.append(ticket)
            while (self._waiters[0] is not ticket
                   or self._running >= self.max_concurrent):
                self._condition.wait()
            self._waiters.popleft()
            self._running += 1
            # The next ticket may also fit if more than one slot is free.
            self._condition.notify_all()

    def release(self):
        with self._condition:
            self._running -= 1
            self._condition.notify_all()

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    def run(self, fn: Callable, *args, **kwargs):
        with self:
            return fn(*args, **kwargs)
