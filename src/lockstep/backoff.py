"""Exponential backoff helpers.

Waiting is always done through an injected `sleep` coroutine function so the
retry loops can be tested without real timers.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class ExponentialBackoff:
    """Capped exponential backoff.

    Attributes:
        initial: First delay in seconds.
        maximum: Upper bound for the delay.
        factor: Multiplier applied after every delay.
        reset_to: Delay to continue with after `reset()`. Defaults to `initial`.
    """

    initial: float
    maximum: float
    factor: float = 2.0
    reset_to: float | None = None
    current: float = field(init=False)

    def __post_init__(self) -> None:
        self.current = self.initial

    def next(self) -> float:
        """Return the delay to wait now and advance to the next one."""
        delay = self.current
        self.current = min(self.current * self.factor, self.maximum)
        return delay

    def reset(self) -> None:
        self.current = self.reset_to if self.reset_to is not None else self.initial


async def retry_until(
    attempt: Callable[[], Awaitable[bool]],
    backoff: ExponentialBackoff,
    sleep: SleepFunc = asyncio.sleep,
    max_attempts: int | None = None,
) -> bool:
    """Call `attempt` until it returns True, sleeping with `backoff` in between.

    Returns:
        True once an attempt succeeded, False if `max_attempts` was exhausted.
    """
    attempts = 0
    while True:
        if await attempt():
            return True
        attempts += 1
        if max_attempts is not None and attempts >= max_attempts:
            return False
        await sleep(backoff.next())
