# exfetch/fetch/signal.py
from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable
from typing import TypeVar

from ..exceptions import RequestAborted, RequestTimeout

T = TypeVar("T")


class AbortSignal:
    """
    One-shot cancellation signal shared by every wait and transport call of a single fetch.

    Once aborted it stays aborted; `reason` is the exception raised to whoever is waiting.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: BaseException | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> BaseException | None:
        return self._reason

    def abort(self, reason: BaseException | None = None) -> None:
        if self.aborted:
            return
        self._reason = reason if reason is not None else RequestAborted("The operation was aborted")
        self._event.set()
        self.close()

    def throw_if_aborted(self) -> None:
        if self.aborted:
            assert self._reason is not None
            raise self._reason

    async def wait(self) -> None:
        await self._event.wait()

    def close(self) -> None:
        """Cancel the pending timeout, if any. The signal keeps its current state."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @classmethod
    def timeout(cls, milliseconds: int) -> AbortSignal:
        """Signal that aborts itself with RequestTimeout after `milliseconds`.

        Needs a running event loop.
        """
        signal = cls()
        loop = asyncio.get_running_loop()
        signal._timer = loop.call_later(
            milliseconds / 1000,
            signal.abort,
            RequestTimeout(f"The operation timed out after {milliseconds} ms"),
        )
        return signal


async def race(awaitable: Awaitable[T], signal: AbortSignal | None) -> T:
    """
    Await `awaitable` unless `signal` fires first.

    On abort the awaitable is cancelled and the signal's reason is raised.
    """
    if signal is None:
        return await awaitable
    if signal.aborted:
        # never started; close coroutines so they are not reported as never awaited
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        signal.throw_if_aborted()

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    if task.cancelled() and signal.aborted:
        signal.throw_if_aborted()
    return task.result()


__all__ = ["AbortSignal", "race"]
