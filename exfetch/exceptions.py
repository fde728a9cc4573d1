# exfetch/exceptions.py
"""
Shared exception classes used across the package.

HTTP-level failures (4xx/5xx) are never raised: they are ordinary responses. Only malformed
configuration, malformed headers and cancellation end up here. Transport failures are whatever
httpx raises and are not wrapped.
"""

from __future__ import annotations


class ExFetchError(Exception):
    """Base class for every error raised by exfetch itself."""

    pass


class ConfigurationError(ExFetchError, ValueError):
    """
    Raised when a policy value is out of range or has the wrong shape.

    Examples:
        - negative delay bounds
        - DelayRange.minimum larger than DelayRange.maximum
        - maximum_pages of 0
    """

    pass


class HeaderFormatError(ExFetchError, ValueError):
    """
    Raised when a `Link` or `Retry-After` header value violates its grammar.

    `position` is the cursor offset of the offending character for `Link` parse errors.
    """

    def __init__(self, message: str, *, position: int | None = None) -> None:
        super().__init__(message)
        self.position = position


class RequestAborted(ExFetchError):
    """Default reason of an AbortSignal that was aborted without an explicit reason."""

    pass


class RequestTimeout(RequestAborted, TimeoutError):
    """Reason of an AbortSignal derived from the configured request timeout."""

    pass


__all__ = [
    "ExFetchError",
    "ConfigurationError",
    "HeaderFormatError",
    "RequestAborted",
    "RequestTimeout",
]
