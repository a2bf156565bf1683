"""
Linksy Search Errors

Exceptions raised by the search pipeline. Each carries the HTTP status the
router answers with; the message is safe to show to the caller.
"""

from typing import Optional


class SearchError(Exception):
    """Base class for search pipeline errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidQueryError(SearchError):
    """The request is missing a usable query."""

    status_code = 400


class HostAccessError(SearchError):
    """The host context is unknown, inactive or not allowed to embed."""

    status_code = 403


class QuotaExceededError(SearchError):
    """The host has used its monthly token budget."""

    status_code = 429


class RateLimitedError(SearchError):
    """Too many searches from one caller on one host within the window."""

    status_code = 429

    def __init__(self, message: str, limit: int, remaining: int, reset: int):
        super().__init__(message)
        self.limit = limit
        self.remaining = remaining
        self.reset = reset

    def headers(self, now: Optional[int] = None) -> dict[str, str]:
        """Rate-limit response headers. ``reset`` is a unix timestamp in seconds."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }
        if now is not None:
            headers["Retry-After"] = str(max(1, self.reset - now))
        return headers


class UpstreamSearchError(SearchError):
    """Embedding, need matching or provider retrieval failed."""

    status_code = 500
