"""Wrapper for coroutines handed to FastAPI BackgroundTasks.

The response has already been sent when these run, so an exception has
nowhere to go but the log.
"""

import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


async def safe_background_task(
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    **kwargs: Any,
) -> None:
    """Run func(*args, **kwargs), logging instead of raising on failure.

    Pass it to ``BackgroundTasks.add_task`` with the target coroutine
    function as the first positional argument.
    """
    name = getattr(func, "__name__", repr(func))
    try:
        await func(*args, **kwargs)
    except Exception:
        logger.exception("Background task '%s' failed", name)
