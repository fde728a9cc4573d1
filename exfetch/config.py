# exfetch/config.py
from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv

from ._version import __version__
from .exceptions import ConfigurationError

if TYPE_CHECKING:
    import httpx

    from .fetch.events import ExFetchObserver
    from .header.link import LinkHeader

    LinkUpNextPage = Callable[[httpx.URL, LinkHeader], httpx.URL | str | None]

# --------------------------------------------------------------------------------------------------
# Env helpers
# --------------------------------------------------------------------------------------------------


def _getenv_int(name: str, default: int | None, *, unbounded: bool = False) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    v = raw.strip()
    if unbounded and v.lower() in {"none", "inf", "infinity", "unbounded"}:
        return None
    try:
        return int(v)
    except ValueError as err:
        raise ConfigurationError(
            f"Environment variable {name} must be an integer; got {v!r}"
        ) from err


def _getenv_list_int(name: str, default: Iterable[int]) -> tuple[int, ...]:
    raw = os.getenv(name)
    if raw is None:
        return tuple(default)
    out: list[int] = []
    for tok in (t.strip() for t in raw.split(",")):
        if not tok:
            continue
        try:
            out.append(int(tok))
        except ValueError as err:
            raise ConfigurationError(
                f"Environment variable {name} must be a CSV of integers; got {raw!r}"
            ) from err
    return tuple(out)


def _is_int(value: Any) -> bool:
    # bool is an int subclass; True/False are never valid counts or delays
    return isinstance(value, int) and not isinstance(value, bool)


# --------------------------------------------------------------------------------------------------
# Defaults
# --------------------------------------------------------------------------------------------------

REDIRECT_STATUS_CODES: frozenset[int] = frozenset({301, 302, 303, 307, 308})


def _env_settings() -> dict[str, Any]:
    """Read the EXFETCH_* variables; unset ones fall back to the built-in defaults."""
    return {
        "user_agent": os.getenv("EXFETCH_USER_AGENT", f"exFetch/{__version__}").strip(),
        "timeout_ms": _getenv_int("EXFETCH_TIMEOUT_MS", None, unbounded=True),
        "retry_maximum_attempts": _getenv_int("EXFETCH_RETRY_MAXIMUM_ATTEMPTS", 4),
        "retry_delay_minimum_ms": _getenv_int("EXFETCH_RETRY_DELAY_MINIMUM_MS", 1000),
        "retry_delay_maximum_ms": _getenv_int("EXFETCH_RETRY_DELAY_MAXIMUM_MS", 60000),
        "redirect_maximum": _getenv_int("EXFETCH_REDIRECT_MAXIMUM", 20, unbounded=True),
        "paginate_maximum_pages": _getenv_int(
            "EXFETCH_PAGINATE_MAXIMUM_PAGES", None, unbounded=True
        ),
        "retryable_status_codes": frozenset(
            _getenv_list_int(
                "EXFETCH_RETRYABLE_STATUS_CODES", (408, 429, 500, 502, 503, 504, 506, 507, 508)
            )
        ),
    }


# Read once at import; ExFetchOptions.from_env() re-reads after loading a .env file
_SETTINGS = _env_settings()

DEFAULT_USER_AGENT: str = _SETTINGS["user_agent"]
DEFAULT_TIMEOUT_MS: int | None = _SETTINGS["timeout_ms"]
DEFAULT_RETRY_MAXIMUM_ATTEMPTS: int = _SETTINGS["retry_maximum_attempts"]
DEFAULT_RETRY_DELAY_MS: tuple[int, int] = (
    _SETTINGS["retry_delay_minimum_ms"],
    _SETTINGS["retry_delay_maximum_ms"],
)
DEFAULT_MAXIMUM_REDIRECTS: int | None = _SETTINGS["redirect_maximum"]
DEFAULT_MAXIMUM_PAGES: int | None = _SETTINGS["paginate_maximum_pages"]
DEFAULT_RETRYABLE_STATUS_CODES: frozenset[int] = _SETTINGS["retryable_status_codes"]

# --------------------------------------------------------------------------------------------------
# Policies
# --------------------------------------------------------------------------------------------------


@dataclass(frozen=True)
class DelayRange:
    """Wait window in milliseconds; a random value in [minimum, maximum) is drawn per wait."""

    minimum: int = 0
    maximum: int = 0

    def __post_init__(self) -> None:
        for name in ("minimum", "maximum"):
            value = getattr(self, name)
            if not _is_int(value) or value < 0:
                raise ConfigurationError(
                    f"DelayRange.{name} must be a non-negative integer; got {value!r}"
                )
        if self.minimum > self.maximum:
            raise ConfigurationError(
                f"DelayRange.minimum ({self.minimum}) is larger than "
                f"DelayRange.maximum ({self.maximum})"
            )


@dataclass(frozen=True)
class RetryPolicy:
    # counts every send, the first one included
    maximum_attempts: int = DEFAULT_RETRY_MAXIMUM_ATTEMPTS
    delay: DelayRange = field(default_factory=lambda: DelayRange(*DEFAULT_RETRY_DELAY_MS))

    def __post_init__(self) -> None:
        if not _is_int(self.maximum_attempts) or self.maximum_attempts < 0:
            raise ConfigurationError(
                "RetryPolicy.maximum_attempts must be a non-negative integer; "
                f"got {self.maximum_attempts!r}"
            )
        if not isinstance(self.delay, DelayRange):
            raise ConfigurationError(f"RetryPolicy.delay must be a DelayRange; got {self.delay!r}")


@dataclass(frozen=True)
class RedirectPolicy:
    maximum_redirects: int | None = DEFAULT_MAXIMUM_REDIRECTS  # None: unbounded
    delay: DelayRange = field(default_factory=DelayRange)

    def __post_init__(self) -> None:
        if self.maximum_redirects is not None and (
            not _is_int(self.maximum_redirects) or self.maximum_redirects < 0
        ):
            raise ConfigurationError(
                "RedirectPolicy.maximum_redirects must be None or a non-negative integer; "
                f"got {self.maximum_redirects!r}"
            )
        if not isinstance(self.delay, DelayRange):
            raise ConfigurationError(
                f"RedirectPolicy.delay must be a DelayRange; got {self.delay!r}"
            )


@dataclass(frozen=True)
class PaginatePolicy:
    maximum_pages: int | None = DEFAULT_MAXIMUM_PAGES  # None: unbounded
    delay: DelayRange = field(default_factory=DelayRange)
    link_up_next_page: LinkUpNextPage | None = None
    throw_on_invalid_header_link: bool = True

    def __post_init__(self) -> None:
        if self.maximum_pages is not None and (
            not _is_int(self.maximum_pages) or self.maximum_pages < 1
        ):
            raise ConfigurationError(
                "PaginatePolicy.maximum_pages must be None or a positive integer; "
                f"got {self.maximum_pages!r}"
            )
        if not isinstance(self.delay, DelayRange):
            raise ConfigurationError(
                f"PaginatePolicy.delay must be a DelayRange; got {self.delay!r}"
            )
        if self.link_up_next_page is not None and not callable(self.link_up_next_page):
            raise ConfigurationError("PaginatePolicy.link_up_next_page must be callable")


@dataclass(frozen=True)
class ExFetchOptions:
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    redirect: RedirectPolicy = field(default_factory=RedirectPolicy)
    paginate: PaginatePolicy = field(default_factory=PaginatePolicy)
    retryable_status_codes: Iterable[int] = DEFAULT_RETRYABLE_STATUS_CODES
    # None: disabled; covers all redirects and retries of one fetch
    timeout_ms: int | None = DEFAULT_TIMEOUT_MS
    user_agent: str = DEFAULT_USER_AGENT  # "" disables the default header
    observer: ExFetchObserver | None = None

    def __post_init__(self) -> None:
        if self.timeout_ms is not None and (not _is_int(self.timeout_ms) or self.timeout_ms < 1):
            raise ConfigurationError(
                f"ExFetchOptions.timeout_ms must be None or a positive integer; "
                f"got {self.timeout_ms!r}"
            )
        if not isinstance(self.user_agent, str):
            raise ConfigurationError(
                f"ExFetchOptions.user_agent must be a string; got {self.user_agent!r}"
            )
        codes = frozenset(self.retryable_status_codes)
        for code in codes:
            if not _is_int(code):
                raise ConfigurationError(f"HTTP status code must be an integer; got {code!r}")
        object.__setattr__(self, "retryable_status_codes", codes)

    @classmethod
    def from_env(cls, dotenv_path: str | Path | None = None, **overrides: Any) -> ExFetchOptions:
        """
        Build options from EXFETCH_* environment variables.

        A .env file is loaded first (existing variables win). Keyword overrides are applied last.
        """
        load_dotenv(dotenv_path, override=False)
        settings = _env_settings()
        kwargs: dict[str, Any] = {
            "retry": RetryPolicy(
                maximum_attempts=settings["retry_maximum_attempts"],
                delay=DelayRange(
                    settings["retry_delay_minimum_ms"], settings["retry_delay_maximum_ms"]
                ),
            ),
            "redirect": RedirectPolicy(maximum_redirects=settings["redirect_maximum"]),
            "paginate": PaginatePolicy(maximum_pages=settings["paginate_maximum_pages"]),
            "retryable_status_codes": settings["retryable_status_codes"],
            "timeout_ms": settings["timeout_ms"],
            "user_agent": settings["user_agent"],
        }
        kwargs.update(overrides)
        return cls(**kwargs)


# --------------------------------------------------------------------------------------------------
# Resolution (alias handling stays here, policies only ever see canonical fields)
# --------------------------------------------------------------------------------------------------


def resolve_delay_range(value: Any, name: str, base: DelayRange) -> DelayRange:
    """
    Merge a delay override into `base`.

    Accepts None (keep), an int shorthand (both bounds), a DelayRange, or a mapping with
    optional "minimum"/"maximum" keys.
    """
    if value is None:
        return base
    if isinstance(value, DelayRange):
        return value
    try:
        if _is_int(value):
            return DelayRange(value, value)
        if isinstance(value, Mapping):
            unknown = set(value) - {"minimum", "maximum"}
            if unknown:
                raise ConfigurationError(f"Unknown keys for {name}: {sorted(unknown)}")
            return DelayRange(
                value.get("minimum", base.minimum),
                value.get("maximum", base.maximum),
            )
    except ConfigurationError as err:
        raise ConfigurationError(f"Invalid {name}: {err}") from err
    raise ConfigurationError(f"{name} must be an int, a DelayRange or a mapping; got {value!r}")


def resolve_paginate_policy(override: Any, base: PaginatePolicy) -> PaginatePolicy:
    """Merge a per-call paginate override (PaginatePolicy, mapping or None) into `base`."""
    if override is None:
        return base
    if isinstance(override, PaginatePolicy):
        return override
    if not isinstance(override, Mapping):
        raise ConfigurationError(
            f"paginate override must be a PaginatePolicy or a mapping; got {override!r}"
        )
    known = {f.name for f in dataclasses.fields(PaginatePolicy)}
    unknown = set(override) - known
    if unknown:
        raise ConfigurationError(f"Unknown paginate options: {sorted(unknown)}")
    changes = dict(override)
    if "delay" in changes:
        changes["delay"] = resolve_delay_range(changes["delay"], "paginate.delay", base.delay)
    return dataclasses.replace(base, **changes)


__all__ = [
    "DEFAULT_MAXIMUM_PAGES",
    "DEFAULT_MAXIMUM_REDIRECTS",
    "DEFAULT_RETRYABLE_STATUS_CODES",
    "DEFAULT_RETRY_DELAY_MS",
    "DEFAULT_RETRY_MAXIMUM_ATTEMPTS",
    "DEFAULT_TIMEOUT_MS",
    "DEFAULT_USER_AGENT",
    "REDIRECT_STATUS_CODES",
    "DelayRange",
    "RetryPolicy",
    "RedirectPolicy",
    "PaginatePolicy",
    "ExFetchOptions",
    "resolve_delay_range",
    "resolve_paginate_policy",
]
