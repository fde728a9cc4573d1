# exfetch/fetch/client.py
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from contextvars import ContextVar
from typing import Any

import httpx

from ..config import (
    REDIRECT_STATUS_CODES,
    ExFetchOptions,
    PaginatePolicy,
    RedirectPolicy,
    RetryPolicy,
    _is_int,
)
from ..exceptions import ConfigurationError, HeaderFormatError
from ..header.retry_after import RetryAfter
from .delay import delay, resolve_delay_time
from .events import RedirectEvent, RetryEvent, notify
from .paginate import fetch_paginate as _fetch_paginate
from .signal import AbortSignal, race

log = logging.getLogger(__name__)

# Request kwargs that carry a body; dropped when a redirect turns the request into a GET
_BODY_KWARGS = ("content", "data", "files", "json")
_REDIRECT_MODES = ("follow", "manual")
# Credentials never follow a redirect to another origin
_CROSS_ORIGIN_STRIPPED = ("Authorization", "Cookie")
_DEFAULT_PORTS = {"http": 80, "https": 443}

# Redirect responses seen by the response hook during the current send
_redirect_responses: ContextVar[list[httpx.Response] | None] = ContextVar(
    "_redirect_responses", default=None
)

# --------------------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------------------


def _redirect_target(response: httpx.Response, current: httpx.URL) -> httpx.URL | None:
    location = response.headers.get("Location")
    if not location:
        return None
    try:
        target = current.join(location.strip())
    except (httpx.InvalidURL, ValueError):
        return None
    if target.scheme not in ("http", "https") or not target.host:
        return None
    return target


def _same_origin(a: httpx.URL, b: httpx.URL) -> bool:
    return (
        a.scheme == b.scheme
        and a.host == b.host
        and (a.port or _DEFAULT_PORTS.get(a.scheme)) == (b.port or _DEFAULT_PORTS.get(b.scheme))
    )


def _redirect_method(method: str, status: int) -> str:
    # Same rewrite browsers' fetch applies when following redirects
    if status == 303 and method not in ("GET", "HEAD"):
        return "GET"
    if status in (301, 302) and method == "POST":
        return "GET"
    return method


def _retry_after_ms(response: httpx.Response) -> int | None:
    # Absent and malformed headers both fall back to the computed backoff
    try:
        return RetryAfter(response).get_remain_time_milliseconds()
    except HeaderFormatError:
        return None


async def _keep_redirect_response(response: httpx.Response) -> None:
    # Response hooks run before httpx builds next_request, which raises on a Location it
    # cannot parse; the body is read here so the response survives that failure.
    kept = _redirect_responses.get()
    if kept is not None and response.has_redirect_location:
        await response.aread()
        kept.append(response)


def _install_redirect_hook(client: httpx.AsyncClient) -> None:
    hooks = client.event_hooks
    if _keep_redirect_response not in hooks["response"]:
        client.event_hooks = {**hooks, "response": [*hooks["response"], _keep_redirect_response]}


def _status_codes(values: Iterable[Any]) -> list[int]:
    out: list[int] = []
    for value in values:
        if isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
            out.extend(_status_codes(value))
            continue
        if not _is_int(value):
            raise ConfigurationError(f"HTTP status code must be an integer; got {value!r}")
        out.append(value)
    return out


# --------------------------------------------------------------------------------------------------
# Client
# --------------------------------------------------------------------------------------------------


class ExFetch:
    """
    Retry, redirect and pagination on top of an httpx.AsyncClient.

    Flow of one fetch():
      1) merge the default User-Agent, derive a timeout signal covering the whole sequence
      2) send with follow_redirects=False
      3) 304                                   → return as-is
         3xx + Location + redirect budget left → wait (redirect delay), resend to the new URL
           (Authorization and Cookie are dropped when the origin changes)
         2xx / retry budget spent / not retryable status → return as-is
         otherwise                             → wait (Retry-After, else backoff), resend
    Transport errors and cancellation propagate; there is no retry on exceptions.

    A caller-supplied client gets one extra response hook, which keeps 3xx responses whose
    Location httpx cannot parse.
    """

    def __init__(
        self,
        options: ExFetchOptions | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.options = options if options is not None else ExFetchOptions()
        self._retryable_status_codes: set[int] = set(self.options.retryable_status_codes)
        self._client = client
        self._owns_client = client is None
        if client is not None:
            _install_redirect_hook(client)

    # ---- configuration -------------------------------------------------------------------

    @property
    def retry(self) -> RetryPolicy:
        return self.options.retry

    @property
    def redirect(self) -> RedirectPolicy:
        return self.options.redirect

    @property
    def paginate(self) -> PaginatePolicy:
        return self.options.paginate

    @property
    def retryable_status_codes(self) -> frozenset[int]:
        return frozenset(self._retryable_status_codes)

    def add_retryable_status_codes(self, *codes: int | Iterable[int]) -> ExFetch:
        """Add status codes to this instance's retryable set. Not safe to race with fetch()."""
        self._retryable_status_codes.update(_status_codes(codes))
        return self

    def delete_retryable_status_codes(self, *codes: int | Iterable[int]) -> ExFetch:
        """Remove status codes from this instance's retryable set. Not safe to race with fetch()."""
        self._retryable_status_codes.difference_update(_status_codes(codes))
        return self

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=False,
                timeout=None,
                event_hooks={"response": [_keep_redirect_response]},
            )
        return self._client

    # ---- core fetch ----------------------------------------------------------------------

    async def fetch(
        self,
        url: httpx.URL | str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | httpx.Headers | None = None,
        redirect: str = "follow",
        signal: AbortSignal | None = None,
        **request_kwargs: Any,
    ) -> httpx.Response:
        if redirect not in _REDIRECT_MODES:
            raise ConfigurationError(
                f"redirect must be one of {', '.join(_REDIRECT_MODES)}; got {redirect!r}"
            )

        request_headers = httpx.Headers(headers)
        if "User-Agent" not in request_headers and self.options.user_agent:
            request_headers["User-Agent"] = self.options.user_agent

        derived_signal: AbortSignal | None = None
        if signal is None and self.options.timeout_ms is not None:
            derived_signal = signal = AbortSignal.timeout(self.options.timeout_ms)

        try:
            return await self._run(
                httpx.URL(url),
                method.upper(),
                request_headers,
                redirect == "follow",
                signal,
                dict(request_kwargs),
            )
        finally:
            if derived_signal is not None:
                derived_signal.close()

    async def _run(
        self,
        url: httpx.URL,
        method: str,
        headers: httpx.Headers,
        intercept_redirects: bool,
        signal: AbortSignal | None,
        request_kwargs: dict[str, Any],
    ) -> httpx.Response:
        redirects = 0
        attempt = 1
        while True:
            response = await race(self._send(method, url, headers, request_kwargs), signal)
            status = response.status_code

            if status == 304:
                return response

            if intercept_redirects and status in REDIRECT_STATUS_CODES:
                target = self._next_redirect(response, url, redirects)
                if target is not None:
                    redirects += 1
                    wait_ms = resolve_delay_time(
                        minimum=self.redirect.delay.minimum,
                        maximum=self.redirect.delay.maximum,
                    )
                    log.debug(
                        "redirect %s/%s %s -> %s (status=%s, wait=%sms)",
                        redirects,
                        self.redirect.maximum_redirects,
                        url,
                        target,
                        status,
                        wait_ms,
                    )
                    notify(
                        self.options.observer,
                        "on_redirect",
                        RedirectEvent(
                            count_current=redirects,
                            count_maximum=self.redirect.maximum_redirects,
                            wait_ms=wait_ms,
                            target_url=target,
                            status_code=status,
                            status_text=response.reason_phrase,
                        ),
                    )
                    await response.aclose()
                    await delay(wait_ms, signal=signal)
                    new_method = _redirect_method(method, status)
                    if new_method != method:
                        for key in _BODY_KWARGS:
                            request_kwargs.pop(key, None)
                        headers.pop("Content-Type", None)
                        headers.pop("Content-Length", None)
                    if not _same_origin(url, target):
                        for name in _CROSS_ORIGIN_STRIPPED:
                            headers.pop(name, None)
                    method = new_method
                    url = target
                    continue

            if (
                response.is_success
                or attempt >= self.retry.maximum_attempts
                or status not in self._retryable_status_codes
            ):
                return response

            wait_ms = _retry_after_ms(response)
            if wait_ms is None:
                wait_ms = resolve_delay_time(
                    minimum=self.retry.delay.minimum,
                    maximum=self.retry.delay.maximum,
                    increment=True,
                    attempt_current=attempt,
                    attempts=self.retry.maximum_attempts,
                )
            log.debug(
                "retry %s/%s %s %s (status=%s, wait=%sms)",
                attempt,
                self.retry.maximum_attempts,
                method,
                url,
                status,
                wait_ms,
            )
            notify(
                self.options.observer,
                "on_retry",
                RetryEvent(
                    count_current=attempt,
                    count_maximum=self.retry.maximum_attempts,
                    wait_ms=wait_ms,
                    target_url=url,
                    status_code=status,
                    status_text=response.reason_phrase,
                ),
            )
            await response.aclose()
            await delay(wait_ms, signal=signal)
            attempt += 1

    async def _send(
        self,
        method: str,
        url: httpx.URL,
        headers: httpx.Headers,
        request_kwargs: dict[str, Any],
    ) -> httpx.Response:
        kept: list[httpx.Response] = []
        token = _redirect_responses.set(kept)
        try:
            return await self.client.request(
                method, url, headers=headers, follow_redirects=False, **request_kwargs
            )
        except (httpx.InvalidURL, httpx.RemoteProtocolError):
            if not kept:
                raise
            # httpx could not build a request for this Location; hand back the 3xx itself
            log.debug(
                "unparsable Location %r from %s", kept[-1].headers.get("Location"), url
            )
            return kept[-1]
        finally:
            _redirect_responses.reset(token)

    def _next_redirect(
        self, response: httpx.Response, url: httpx.URL, redirects: int
    ) -> httpx.URL | None:
        maximum = self.redirect.maximum_redirects
        if maximum is not None and redirects >= maximum:
            log.debug("redirect budget spent (%s) at %s", maximum, url)
            return None
        target = _redirect_target(response, url)
        if target is None:
            log.debug("redirect %s from %s has no usable Location", response.status_code, url)
        return target

    # ---- pagination ----------------------------------------------------------------------

    async def fetch_paginate(
        self,
        url: httpx.URL | str,
        *,
        paginate: PaginatePolicy | Mapping[str, Any] | None = None,
        signal: AbortSignal | None = None,
        **fetch_kwargs: Any,
    ) -> list[httpx.Response]:
        return await _fetch_paginate(self, url, paginate=paginate, signal=signal, **fetch_kwargs)

    # ---- lifecycle -----------------------------------------------------------------------

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> ExFetch:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


# --- one-shot facades ------------------------------------------------------------


async def exfetch(
    url: httpx.URL | str,
    *,
    options: ExFetchOptions | None = None,
    **fetch_kwargs: Any,
) -> httpx.Response:
    """
    Fetch one resource with a throwaway ExFetch.

    Usage:
        from exfetch import exfetch
        res = await exfetch("https://example.com/")
    """
    async with ExFetch(options) as fetcher:
        return await fetcher.fetch(url, **fetch_kwargs)


async def exfetch_paginate(
    url: httpx.URL | str,
    *,
    options: ExFetchOptions | None = None,
    paginate: PaginatePolicy | Mapping[str, Any] | None = None,
    **fetch_kwargs: Any,
) -> list[httpx.Response]:
    """Fetch every page linked by rel="next" with a throwaway ExFetch."""
    async with ExFetch(options) as fetcher:
        return await fetcher.fetch_paginate(url, paginate=paginate, **fetch_kwargs)


__all__ = [
    "ExFetch",
    "exfetch",
    "exfetch_paginate",
]
