# exfetch/header/__init__.py
"""
Header codecs used by the fetch layer:
  - LinkHeader: RFC 8288 `Link` parse/stringify with rel lookups
  - RetryAfter: `Retry-After` (delta-seconds or HTTP-date) to an absolute instant
"""

from .link import (
    LinkEntry,
    LinkHeader,
    parse_link_header,
    stringify_link_header,
)
from .retry_after import RetryAfter

__all__ = [
    "LinkEntry",
    "LinkHeader",
    "parse_link_header",
    "stringify_link_header",
    "RetryAfter",
]
