"""First-settled-wins combinator for competing awaitables."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import NoReturn, TypeVar

T = TypeVar("T")


async def race(*aws: Awaitable[T]) -> T:
    """Await all of ``aws`` concurrently and settle with the first to finish.

    The winner's result is returned or its exception raised. Every other
    branch is cancelled and awaited, so cancellation-aware branches (such as
    a supervised process) get to clean up before ``race`` returns. When two
    branches finish in the same loop iteration the one listed first wins.
    """
    if not aws:
        raise ValueError("race() needs at least one awaitable")

    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        winner = next(task for task in tasks if task in done)
        for task in done:
            if task is not winner and not task.cancelled():
                task.exception()
        return winner.result()
    finally:
        losers = [task for task in tasks if not task.done()]
        for task in losers:
            task.cancel()
        if losers:
            await asyncio.gather(*losers, return_exceptions=True)


async def fail_after(seconds: float, error: Callable[[], Exception]) -> NoReturn:
    """Sleep for ``seconds`` then raise ``error()``."""
    await asyncio.sleep(seconds)
    raise error()
