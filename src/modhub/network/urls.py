"""URL validation and reachability probes."""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlparse

import aiohttp

from ..core.defaults import FETCH_TIMEOUT

logger = logging.getLogger(__name__)


def is_valid_url(url: object) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not isinstance(url, str) or not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def normalize_server_url(url: str) -> str:
    """Strip whitespace and trailing slashes so paths can be appended."""
    return url.strip().rstrip("/")


async def is_reachable(url: str, timeout: float = FETCH_TIMEOUT) -> bool:
    """HEAD ``url`` and report whether it answered with a 2xx status."""
    try:
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.head(url) as resp:
                return 200 <= resp.status < 300
    except aiohttp.ClientError as e:
        logger.debug(f"{url} not reachable: {e}")
        return False
    except asyncio.TimeoutError:
        logger.debug(f"{url} not reachable: timeout")
        return False
