# tests/test_paginate.py
from __future__ import annotations

import logging

import pytest
import respx
from httpx import Response

from exfetch.config import DelayRange, ExFetchOptions, PaginatePolicy
from exfetch.exceptions import HeaderFormatError

client_mod = pytest.importorskip("exfetch.fetch.client")
ExFetch = client_mod.ExFetch

BASE = "https://api.test"


def _page(n: int, next_link: str | None = None, status: int = 200) -> Response:
    headers = {"Link": next_link} if next_link is not None else {}
    return Response(status, headers=headers, json={"page": n})


def _mock_pages():
    return [
        respx.get(f"{BASE}/p1").mock(return_value=_page(1, f'<{BASE}/p2>; rel="next"')),
        respx.get(f"{BASE}/p2").mock(return_value=_page(2, '</p3>; rel="next"')),
        respx.get(f"{BASE}/p3").mock(return_value=_page(3)),
    ]


@pytest.mark.asyncio
@respx.mock
async def test_follows_next_links_until_the_last_page(waits):
    routes = _mock_pages()

    async with ExFetch() as fetcher:
        pages = await fetcher.fetch_paginate(f"{BASE}/p1")

    assert [p.json()["page"] for p in pages] == [1, 2, 3]
    assert [r.call_count for r in routes] == [1, 1, 1]
    # zero delay range means no sleeping between pages
    assert waits == []


@pytest.mark.asyncio
@respx.mock
async def test_page_budget_limits_requests(waits):
    routes = _mock_pages()
    opts = ExFetchOptions(paginate=PaginatePolicy(maximum_pages=2))

    async with ExFetch(opts) as fetcher:
        pages = await fetcher.fetch_paginate(f"{BASE}/p1")

    assert len(pages) == 2
    assert routes[2].call_count == 0


@pytest.mark.asyncio
@respx.mock
async def test_per_call_override_merges_with_instance_policy(waits):
    routes = _mock_pages()
    opts = ExFetchOptions(paginate=PaginatePolicy(maximum_pages=1))

    async with ExFetch(opts) as fetcher:
        pages = await fetcher.fetch_paginate(
            f"{BASE}/p1", paginate={"maximum_pages": 3, "delay": 15}
        )

    assert len(pages) == 3
    assert routes[2].call_count == 1
    assert waits == [15, 15]


@pytest.mark.asyncio
@respx.mock
async def test_failed_page_is_kept_and_ends_the_walk(waits):
    respx.get(f"{BASE}/p1").mock(return_value=_page(1, '</p2>; rel="next"'))
    respx.get(f"{BASE}/p2").mock(return_value=_page(2, '</p3>; rel="next"', status=404))
    p3 = respx.get(f"{BASE}/p3").mock(return_value=_page(3))

    async with ExFetch() as fetcher:
        pages = await fetcher.fetch_paginate(f"{BASE}/p1")

    assert [p.status_code for p in pages] == [200, 404]
    assert p3.call_count == 0


@pytest.mark.asyncio
@respx.mock
async def test_invalid_link_header_raises_with_page_url(waits):
    respx.get(f"{BASE}/p1").mock(return_value=_page(1, '</p2>; rel="next"'))
    respx.get(f"{BASE}/p2").mock(return_value=_page(2, "/p3; rel=next"))

    async with ExFetch() as fetcher:
        with pytest.raises(HeaderFormatError) as exc:
            await fetcher.fetch_paginate(f"{BASE}/p1")

    assert f"[{BASE}/p2]" in str(exc.value)
    assert exc.value.position == 0


@pytest.mark.asyncio
@respx.mock
async def test_invalid_link_header_can_end_the_walk_quietly(waits, caplog):
    respx.get(f"{BASE}/p1").mock(return_value=_page(1, '</p2>; rel="next"'))
    respx.get(f"{BASE}/p2").mock(return_value=_page(2, "</p3>; rel=next; =broken"))
    opts = ExFetchOptions(paginate=PaginatePolicy(throw_on_invalid_header_link=False))

    with caplog.at_level(logging.WARNING, logger="exfetch.fetch.paginate"):
        async with ExFetch(opts) as fetcher:
            pages = await fetcher.fetch_paginate(f"{BASE}/p1")

    assert len(pages) == 2
    assert "invalid Link header" in caplog.text


@pytest.mark.asyncio
@respx.mock
async def test_custom_next_page_resolver(waits):
    respx.get(f"{BASE}/list", params={"page": "1"}).mock(return_value=_page(1))
    respx.get(f"{BASE}/list", params={"page": "2"}).mock(return_value=_page(2))
    seen = []

    def next_page(current, links):
        seen.append((str(current), len(links)))
        page = int(current.params["page"])
        return f"?page={page + 1}" if page < 2 else None

    async with ExFetch() as fetcher:
        pages = await fetcher.fetch_paginate(
            f"{BASE}/list?page=1", paginate={"link_up_next_page": next_page}
        )

    assert [p.json()["page"] for p in pages] == [1, 2]
    assert seen == [(f"{BASE}/list?page=1", 0), (f"{BASE}/list?page=2", 0)]


@pytest.mark.asyncio
@respx.mock
async def test_paginate_events_and_waits(waits):
    _mock_pages()
    events = []

    class Observer:
        def on_paginate(self, event):
            events.append(event)

    opts = ExFetchOptions(
        paginate=PaginatePolicy(maximum_pages=5, delay=DelayRange(40, 40)),
        observer=Observer(),
    )

    async with ExFetch(opts) as fetcher:
        await fetcher.fetch_paginate(f"{BASE}/p1")

    assert waits == [40, 40]
    assert [e.count_current for e in events] == [2, 3]
    assert events[0].count_maximum == 5
    assert str(events[1].target_url) == f"{BASE}/p3"


@pytest.mark.asyncio
@respx.mock
async def test_request_options_apply_to_every_page(waits):
    routes = _mock_pages()

    async with ExFetch() as fetcher:
        await fetcher.fetch_paginate(f"{BASE}/p1", headers={"Authorization": "Bearer t"})

    for route in routes:
        assert route.calls.last.request.headers["Authorization"] == "Bearer t"


@pytest.mark.asyncio
@respx.mock
async def test_exfetch_paginate_facade(waits):
    _mock_pages()

    pages = await client_mod.exfetch_paginate(f"{BASE}/p1", paginate={"maximum_pages": 2})

    assert [p.json()["page"] for p in pages] == [1, 2]


@pytest.mark.asyncio
@respx.mock
async def test_escaped_cursor_in_next_link_is_requested_verbatim(waits):
    respx.get(f"{BASE}/p1").mock(
        return_value=_page(1, '</items?cursor=a%26b%3D%3D>; rel="next"')
    )
    page2 = respx.get(f"{BASE}/items").mock(return_value=_page(2))

    async with ExFetch() as fetcher:
        pages = await fetcher.fetch_paginate(f"{BASE}/p1")

    assert len(pages) == 2
    request = page2.calls.last.request
    assert dict(request.url.params) == {"cursor": "a&b=="}
    assert request.url.raw_path == b"/items?cursor=a%26b%3D%3D"


def _broken_next_page(current, links):
    raise KeyError("next")


@pytest.mark.asyncio
@respx.mock
async def test_failing_next_page_resolver_raises_by_default(waits):
    routes = _mock_pages()

    async with ExFetch() as fetcher:
        with pytest.raises(HeaderFormatError) as exc:
            await fetcher.fetch_paginate(
                f"{BASE}/p1", paginate={"link_up_next_page": _broken_next_page}
            )

    assert f"[{BASE}/p1]" in str(exc.value)
    assert isinstance(exc.value.__cause__.__cause__, KeyError)
    assert routes[1].call_count == 0


@pytest.mark.asyncio
@respx.mock
async def test_failing_next_page_resolver_can_end_the_walk_quietly(waits, caplog):
    _mock_pages()
    paginate = {"link_up_next_page": _broken_next_page, "throw_on_invalid_header_link": False}

    with caplog.at_level(logging.WARNING, logger="exfetch.fetch.paginate"):
        async with ExFetch() as fetcher:
            pages = await fetcher.fetch_paginate(f"{BASE}/p1", paginate=paginate)

    assert [p.json()["page"] for p in pages] == [1]
    assert "link_up_next_page failed" in caplog.text
