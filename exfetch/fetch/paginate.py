# exfetch/fetch/paginate.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx

from ..config import PaginatePolicy, resolve_paginate_policy
from ..exceptions import HeaderFormatError
from ..header.link import LinkHeader
from .delay import delay, resolve_delay_time
from .events import PaginateEvent, notify
from .signal import AbortSignal

if TYPE_CHECKING:
    from .client import ExFetch

log = logging.getLogger(__name__)


def _next_page(
    policy: PaginatePolicy, current: httpx.URL, response: httpx.Response
) -> httpx.URL | None:
    """
    Resolve the URL of the page after `current`.

    Raises HeaderFormatError when the Link header (or the URL it points at) is malformed, or
    when link_up_next_page itself fails.
    """
    links = LinkHeader.parse(response)
    if policy.link_up_next_page is not None:
        try:
            target = policy.link_up_next_page(current, links)
        except HeaderFormatError:
            raise
        except Exception as err:
            # throw_on_invalid_header_link applies here too
            raise HeaderFormatError(f"link_up_next_page failed: {err!r}") from err
        if target is None:
            return None
        try:
            return current.join(target)
        except httpx.InvalidURL as err:
            raise HeaderFormatError(f"{target!r} is not a valid next page URL") from err
    entries = links.get_by_rel("next")
    if not entries:
        return None
    try:
        return current.join(entries[0][0])
    except httpx.InvalidURL as err:
        raise HeaderFormatError(f"{entries[0][0]!r} is not a valid next page URL") from err


async def fetch_paginate(
    fetcher: ExFetch,
    url: httpx.URL | str,
    *,
    paginate: PaginatePolicy | Mapping[str, Any] | None = None,
    signal: AbortSignal | None = None,
    **fetch_kwargs: Any,
) -> list[httpx.Response]:
    """
    Follow rel="next" links page by page, strictly one request in flight.

    Every response is collected, failed ones included; a failed response ends the walk.
    Each page is an independent fetch() so the timeout applies per page.
    """
    policy = resolve_paginate_policy(paginate, fetcher.paginate)
    responses: list[httpx.Response] = []
    page = 1
    next_url: httpx.URL | None = httpx.URL(url)

    maximum = policy.maximum_pages
    while next_url is not None and (maximum is None or page <= maximum):
        current = next_url
        next_url = None

        if page > 1:
            wait_ms = resolve_delay_time(
                minimum=policy.delay.minimum, maximum=policy.delay.maximum
            )
            log.debug(
                "paginate page %s/%s -> %s (wait=%sms)", page, maximum, current, wait_ms
            )
            notify(
                fetcher.options.observer,
                "on_paginate",
                PaginateEvent(
                    count_current=page,
                    count_maximum=maximum,
                    wait_ms=wait_ms,
                    target_url=current,
                ),
            )
            if wait_ms > 0:
                await delay(wait_ms, signal=signal)

        response = await fetcher.fetch(current, signal=signal, **fetch_kwargs)
        responses.append(response)

        if response.is_success:
            try:
                next_url = _next_page(policy, current, response)
            except HeaderFormatError as err:
                if policy.throw_on_invalid_header_link:
                    raise HeaderFormatError(f"[{current}] {err}", position=err.position) from err
                log.warning("stop paginating at %s: invalid Link header (%s)", current, err)
        page += 1

    return responses


__all__ = ["fetch_paginate"]
