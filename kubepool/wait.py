"""Fire-then-poll helper.

Contabo actions (reinstall, start, restart, private network assignment)
return before the instance reaches the requested state, and etcd needs a
while to settle after a restore. Callers issue the action and then hand a
probe to :func:`wait_for_ready`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from kubepool.core.exceptions import TerminalStateError, WaitTimeoutError

log = logger.bind(component="wait")


async def wait_for_ready[T](
    probe: Callable[[], Awaitable[T | None]],
    is_ready: Callable[[T], bool],
    *,
    is_terminal: Callable[[T], bool] | None = None,
    timeout: float = 300.0,
    interval: float = 5.0,
    description: str = "resource",
) -> T:
    """Probe every ``interval`` seconds until ``is_ready`` holds.

    A probe returning None means "not observable yet" and simply polls
    again. The probe always runs at least once, even with a zero timeout.

    Raises:
        TerminalStateError: ``is_terminal`` matched a probed state.
        WaitTimeoutError: ``timeout`` elapsed without a ready state.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    polls = 0

    while True:
        state = await probe()
        polls += 1

        match state:
            case None:
                pass
            case _ if is_ready(state):
                log.debug("{what} ready after {n} poll(s)", what=description, n=polls)
                return state
            case _ if is_terminal is not None and is_terminal(state):
                raise TerminalStateError(description, state)

        if loop.time() >= deadline:
            raise WaitTimeoutError(description, timeout)

        await asyncio.sleep(interval)
