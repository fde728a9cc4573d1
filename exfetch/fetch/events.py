# exfetch/fetch/events.py
"""
Observer hooks for redirect, retry and pagination decisions.

Hooks run synchronously before the corresponding wait. Exceptions raised by a hook are not
caught; wrap your own observer if you need isolation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx


@dataclass(frozen=True)
class RedirectEvent:
    count_current: int  # 1-based
    count_maximum: int | None  # None: unbounded
    wait_ms: int
    target_url: httpx.URL
    status_code: int
    status_text: str


@dataclass(frozen=True)
class RetryEvent:
    count_current: int  # 1-based
    count_maximum: int
    wait_ms: int
    target_url: httpx.URL
    status_code: int
    status_text: str


@dataclass(frozen=True)
class PaginateEvent:
    count_current: int  # page about to be fetched, so starts at 2
    count_maximum: int | None
    wait_ms: int
    target_url: httpx.URL


class ExFetchObserver(Protocol):
    # every method is optional; missing ones are skipped

    def on_redirect(self, event: RedirectEvent) -> None: ...

    def on_retry(self, event: RetryEvent) -> None: ...

    def on_paginate(self, event: PaginateEvent) -> None: ...


def notify(observer: object | None, hook: str, event: object) -> None:
    if observer is None:
        return
    callback = getattr(observer, hook, None)
    if callback is not None:
        callback(event)


__all__ = [
    "ExFetchObserver",
    "PaginateEvent",
    "RedirectEvent",
    "RetryEvent",
    "notify",
]
