# exfetch/fetch/__init__.py
"""
Fetch layer: retry, manual redirect following and Link-header pagination over httpx.

Entry points:
  - ExFetch.fetch(url) -> httpx.Response
  - ExFetch.fetch_paginate(url) -> list[httpx.Response]
  - exfetch(url), exfetch_paginate(url): one-shot facades

Building blocks (advanced/internal use):
  - delay helpers: resolve_delay_time, delay
  - cancellation: AbortSignal, race
  - observer: ExFetchObserver, RedirectEvent, RetryEvent, PaginateEvent
"""

from .client import (
    ExFetch,
    exfetch,
    exfetch_paginate,
)
from .delay import (
    delay,
    resolve_delay_time,
)
from .events import (
    ExFetchObserver,
    PaginateEvent,
    RedirectEvent,
    RetryEvent,
)
from .paginate import fetch_paginate
from .signal import (
    AbortSignal,
    race,
)

__all__ = [
    # client
    "ExFetch",
    "exfetch",
    "exfetch_paginate",
    "fetch_paginate",
    # delay
    "delay",
    "resolve_delay_time",
    # cancellation
    "AbortSignal",
    "race",
    # observer
    "ExFetchObserver",
    "PaginateEvent",
    "RedirectEvent",
    "RetryEvent",
]
