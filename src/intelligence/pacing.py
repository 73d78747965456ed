"""
Bounded-concurrency pacing for outbound calls.

All fan-out against origins, the language model and the embedding
provider goes through a BatchPacer so the ceiling and spacing are
configuration rather than sleeps scattered through loops.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class BatchPacer:
    """
    Runs an async callable over items in fixed-size windows.

    At most `window` calls are in flight at once. Between windows the
    pacer waits `pause` seconds (never after the last window).

    Usage:
        pacer = BatchPacer(window=2, pause=1.0)
        results = await pacer.map(distiller.distill, articles)
    """

    def __init__(self, window: int = 1, pause: float = 0.0, name: str = "pacer"):
        if window < 1:
            raise ValueError("window must be >= 1")
        if pause < 0:
            raise ValueError("pause cannot be negative")
        self.window = window
        self.pause = pause
        self.name = name

    async def map(
        self,
        func: Callable[[T], Awaitable[R]],
        items: Iterable[T],
    ) -> list[R]:
        """
        Apply `func` to every item, preserving input order.

        `func` is expected to report its own failures in its return value.
        An exception raised by `func` cancels the rest of its window and
        propagates to the caller; later windows are not started.
        """
        pending = list(items)
        results: list[R] = []

        for start in range(0, len(pending), self.window):
            batch = pending[start:start + self.window]
            logger.debug(
                f"[PACER] {self.name}: window {start // self.window + 1} "
                f"({len(batch)} items)"
            )
            tasks = [asyncio.ensure_future(func(item)) for item in batch]
            try:
                results.extend(await asyncio.gather(*tasks))
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            if start + self.window < len(pending) and self.pause > 0:
                await asyncio.sleep(self.pause)

        return results
