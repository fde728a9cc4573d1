# exfetch/fetch/delay.py
from __future__ import annotations

import asyncio
import random

from .signal import AbortSignal, race


def resolve_delay_time(
    *,
    minimum: int,
    maximum: int,
    increment: bool = False,
    attempt_current: int = 1,
    attempts: int = 1,
) -> int:
    """
    Pick a wait in milliseconds from [minimum, maximum).

    - minimum == maximum: that constant, no randomness
    - increment: the lower bound is raised to
        minimum + (maximum - minimum) * attempt_current / attempts
      so later attempts wait longer on average without exponential growth
    """
    if minimum == maximum:
        return maximum
    if increment and attempts > 0:
        lo = int(minimum + (maximum - minimum) * attempt_current / attempts)
        if lo >= maximum:
            return maximum
        return random.randrange(max(lo, minimum), maximum)
    return random.randrange(minimum, maximum)


async def delay(milliseconds: int, *, signal: AbortSignal | None = None) -> None:
    """Sleep for `milliseconds`, raising the signal's reason as soon as it is aborted."""
    await race(asyncio.sleep(milliseconds / 1000), signal)


__all__ = ["resolve_delay_time", "delay"]
