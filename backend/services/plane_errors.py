"""Error types raised by the Plane API layer."""

from typing import Optional


class PlaneApiError(Exception):
    """Base class for failures talking to the Plane API."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 context: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.context = context


class RateLimitedError(PlaneApiError):
    """Upstream answered 429. Retryable.

    ``retry_after`` holds the Retry-After header in seconds when the
    response carried one.
    """

    def __init__(self, message: str, retry_after: Optional[float] = None,
                 context: str = ""):
        super().__init__(message, status_code=429, context=context)
        self.retry_after = retry_after


class UpstreamError(PlaneApiError):
    """Any non-429 HTTP or network failure. Never retried."""


class AccessDeniedError(UpstreamError):
    """403 on a project or resource; callers skip that resource."""

    def __init__(self, message: str, context: str = ""):
        super().__init__(message, status_code=403, context=context)


class NotInitializedError(RuntimeError):
    """Client used before base URL, API key and workspace were configured.

    A configuration mistake rather than an upstream failure, so it is not a
    PlaneApiError and nothing that degrades on upstream errors swallows it.
    """


class ParseError(PlaneApiError):
    """Response body is not one of the recognised list envelopes."""


class PaginationExhausted(PlaneApiError):
    """Safety cap on cursor iterations was hit.

    Carries whatever was gathered so far in ``items``.
    """

    def __init__(self, message: str, items: list, context: str = ""):
        super().__init__(message, context=context)
        self.items = items
