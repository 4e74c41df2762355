"""Server availability probes and polling."""

import asyncio
import logging
import time
from collections.abc import Iterable

import httpx

from .client import HTTPClient

logger = logging.getLogger(__name__)


async def is_server_up(url: str, timeout: float = 5.0) -> bool:
    """Return True when ``url`` answers with a non-5xx status."""
    try:
        async with HTTPClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(url)
    except httpx.HTTPError:
        return False
    return response.status_code < 500


async def wait_for_server(
    urls: Iterable[str],
    timeout: float = 120.0,
    initial_delay: float = 2.0,
    step: float = 0.5,
    max_delay: float = 5.0,
) -> str | None:
    """Poll ``urls`` until one responds, returning it, or None on timeout.

    The delay between rounds starts at ``initial_delay`` and grows by
    ``step`` per attempt, capped at ``max_delay``.
    """
    candidates = list(urls)
    deadline = time.monotonic() + timeout
    delay = initial_delay
    attempt = 0
    while True:
        attempt += 1
        for url in candidates:
            if await is_server_up(url):
                logger.info("Server ready at %s after %d attempt(s)", url, attempt)
                return url
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.warning("Server did not become ready within %.0fs", timeout)
            return None
        logger.debug("Waiting for server (attempt %d, next check in %.1fs)", attempt, delay)
        await asyncio.sleep(min(delay, remaining))
        delay = min(delay + step, max_delay)
