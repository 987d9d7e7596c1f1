from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from helpdesk.errors import UploadConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded geometric backoff for write-conflict responses.

    ``initial_delay`` is waited once before the first attempt. Each conflict
    multiplies the wait by ``backoff``; once the next wait would pass
    ``max_delay`` the last conflict is raised to the caller.
    """

    initial_delay: float = 1.0
    backoff: float = 2.0
    max_delay: float = 8.0
    retry_on: tuple[type[BaseException], ...] = field(default=(UploadConflict,))

    def __post_init__(self) -> None:
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be positive")
        if self.backoff <= 1:
            raise ValueError("backoff must be greater than 1")
        if self.max_delay < self.initial_delay * self.backoff:
            raise ValueError("max_delay leaves no room for a single retry")

    def schedule(self) -> list[float]:
        """Waits between consecutive attempts."""

        delays: list[float] = []
        delay = self.initial_delay * self.backoff
        while delay <= self.max_delay:
            delays.append(delay)
            delay *= self.backoff
        return delays

    @property
    def max_attempts(self) -> int:
        return len(self.schedule()) + 1

    def retrying(self, sleep: Sleep | None = None) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.initial_delay * self.backoff,
                exp_base=self.backoff,
                max=self.max_delay,
            ),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=sleep or asyncio.sleep,
            reraise=True,
        )

    async def run(self, operation: Callable[[], Awaitable[T]], *, sleep: Sleep | None = None) -> T:
        pause = sleep or asyncio.sleep
        await pause(self.initial_delay)
        async for attempt in self.retrying(sleep=pause):
            with attempt:
                return await operation()
        raise AssertionError("unreachable: tenacity reraises on exhaustion")
