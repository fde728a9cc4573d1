# exfetch/header/retry_after.py
from __future__ import annotations

import math
import re
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Union

import httpx

from ..exceptions import HeaderFormatError

RetryAfterSource = Union[int, float, str, datetime, Mapping[str, str], "RetryAfter", httpx.Response]

_DELTA_SECONDS = re.compile(r"\d+", re.ASCII)


def _now() -> float:
    # Wall clock; tests may monkeypatch time.time()
    return time.time()


def _parse_http_date(value: str) -> float:
    """Parse an HTTP-date (RFC 9110, IMF-fixdate or obsolete forms) into epoch seconds."""
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError) as err:
        raise HeaderFormatError(f"{value!r} is not a valid Retry-After value") from err
    if dt is None:
        raise HeaderFormatError(f"{value!r} is not a valid Retry-After value")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _header_from_mapping(headers: Mapping[str, str]) -> str:
    if isinstance(headers, httpx.Headers):
        return headers.get("Retry-After", "")
    for key, value in headers.items():
        if key.lower() == "retry-after":
            return value
    return ""


class RetryAfter:
    """
    Resolve a `Retry-After` header into an absolute instant.

    Delta-seconds are anchored to "now" at construction time. Remaining time is recomputed on
    every call, so the same object can be polled while waiting.
    """

    def __init__(self, value: RetryAfterSource) -> None:
        self._target = self._resolve(value)

    @staticmethod
    def _resolve(value: RetryAfterSource) -> float:
        if isinstance(value, RetryAfter):
            return value._target
        if isinstance(value, bool):
            raise HeaderFormatError(f"{value!r} is not a valid Retry-After value")
        if isinstance(value, (int, float)):
            if not math.isfinite(value):
                raise HeaderFormatError(f"{value!r} is not a valid Retry-After value")
            return _now() + float(value)
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.timestamp()
        if isinstance(value, httpx.Response):
            return RetryAfter._from_string(value.headers.get("Retry-After", ""))
        if isinstance(value, Mapping):
            return RetryAfter._from_string(_header_from_mapping(value))
        if isinstance(value, str):
            return RetryAfter._from_string(value)
        raise HeaderFormatError(f"Cannot read Retry-After from {type(value).__name__}")

    @staticmethod
    def _from_string(value: str) -> float:
        v = value.strip()
        if not v:
            raise HeaderFormatError("Retry-After value is empty")
        if _DELTA_SECONDS.fullmatch(v):
            return _now() + int(v)
        return _parse_http_date(v)

    def get_date(self) -> datetime:
        return datetime.fromtimestamp(self._target, tz=timezone.utc)

    def get_remain_time_milliseconds(self) -> int:
        return max(0, int((self._target - _now()) * 1000))

    def get_remain_time_seconds(self) -> int:
        return math.ceil(self.get_remain_time_milliseconds() / 1000)

    def __repr__(self) -> str:
        return f"RetryAfter({self.get_date().isoformat()})"


__all__ = ["RetryAfter"]
