# tests/conftest.py
from __future__ import annotations

import sys
import types
from pathlib import Path

import pytest

# Ensure project root importable
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import exfetch.fetch.client as client_mod  # noqa: E402
import exfetch.fetch.paginate as paginate_mod  # noqa: E402


@pytest.fixture
def fake_clock(monkeypatch: pytest.MonkeyPatch) -> types.SimpleNamespace:
    """
    Freeze the wall clock used by Retry-After resolution.

    Only time.time() is replaced; the event loop keeps its own monotonic clock.

    Exposes:
      now() -> float            current epoch seconds
      advance(dt)               move the clock forward by dt seconds
    """
    t = {"now": 1_700_000_000.0}

    monkeypatch.setattr("time.time", lambda: t["now"])

    return types.SimpleNamespace(
        now=lambda: t["now"],
        advance=lambda dt: t.__setitem__("now", t["now"] + float(dt)),
    )


@pytest.fixture
def waits(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    """
    Capture every redirect/retry/page wait instead of sleeping.

    Returns the list the waits (milliseconds) are appended to, in order.
    """
    recorded: list[int] = []

    async def fake_delay(milliseconds, *, signal=None):
        if signal is not None:
            signal.throw_if_aborted()
        recorded.append(milliseconds)

    monkeypatch.setattr(client_mod, "delay", fake_delay)
    monkeypatch.setattr(paginate_mod, "delay", fake_delay)
    return recorded
