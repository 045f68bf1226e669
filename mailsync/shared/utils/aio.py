"""asyncio helpers for long-running loops."""

import asyncio


async def wait_stop(stop: asyncio.Event, timeout: float) -> bool:
    """Sleep up to timeout seconds; return True as soon as stop is set."""
    try:
        async with asyncio.timeout(timeout):
            await stop.wait()
    except TimeoutError:
        return False
    return True
