# exfetch/__init__.py
"""
exfetch: httpx with retry on status codes, bounded manual redirects and RFC 8288 pagination.

    from exfetch import ExFetch, ExFetchOptions, RetryPolicy

    async with ExFetch(ExFetchOptions(retry=RetryPolicy(maximum_attempts=3))) as fetcher:
        response = await fetcher.fetch("https://api.example.com/items")
        pages = await fetcher.fetch_paginate(
            "https://api.example.com/items", paginate={"maximum_pages": 5}
        )
"""

from ._version import __version__
from .config import (
    DEFAULT_RETRYABLE_STATUS_CODES,
    DEFAULT_USER_AGENT,
    REDIRECT_STATUS_CODES,
    DelayRange,
    ExFetchOptions,
    PaginatePolicy,
    RedirectPolicy,
    RetryPolicy,
)
from .exceptions import (
    ConfigurationError,
    ExFetchError,
    HeaderFormatError,
    RequestAborted,
    RequestTimeout,
)
from .fetch import (
    AbortSignal,
    ExFetch,
    ExFetchObserver,
    PaginateEvent,
    RedirectEvent,
    RetryEvent,
    exfetch,
    exfetch_paginate,
)
from .header import (
    LinkEntry,
    LinkHeader,
    RetryAfter,
    parse_link_header,
    stringify_link_header,
)

__all__ = [
    "__version__",
    # config
    "DEFAULT_RETRYABLE_STATUS_CODES",
    "DEFAULT_USER_AGENT",
    "REDIRECT_STATUS_CODES",
    "DelayRange",
    "ExFetchOptions",
    "PaginatePolicy",
    "RedirectPolicy",
    "RetryPolicy",
    # errors
    "ConfigurationError",
    "ExFetchError",
    "HeaderFormatError",
    "RequestAborted",
    "RequestTimeout",
    # fetch
    "AbortSignal",
    "ExFetch",
    "ExFetchObserver",
    "PaginateEvent",
    "RedirectEvent",
    "RetryEvent",
    "exfetch",
    "exfetch_paginate",
    # headers
    "LinkEntry",
    "LinkHeader",
    "RetryAfter",
    "parse_link_header",
    "stringify_link_header",
]
