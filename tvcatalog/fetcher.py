from __future__ import annotations
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, Optional

import httpx

from .m3u_core import has_playlist_marker, is_valid_url

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0"
HTTP_TIMEOUT = 30.0
PROBE_TIMEOUT = 5.0

INVALID_FORMAT = "invalid_format"
UNREACHABLE = "unreachable"
NOT_PLAYLIST = "not_playlist"
DUPLICATE = "duplicate"

FETCH_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


class SourceValidationError(ValueError):
    """A candidate source URL was rejected. `reason` is one of the constants above."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


@asynccontextmanager
async def http_client(client: Optional[httpx.AsyncClient] = None, timeout: float = HTTP_TIMEOUT) -> AsyncIterator[httpx.AsyncClient]:
    # a caller-owned client is reused and left open
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
    ) as c:
        yield c


async def fetch_text(client: httpx.AsyncClient, url: str, timeout: Optional[float] = None) -> str:
    if timeout is None:
        r = await client.get(url)
    else:
        r = await client.get(url, timeout=timeout)
    r.raise_for_status()
    return r.text


async def _fetch_one(client: httpx.AsyncClient, url: str, timeout: Optional[float]) -> Optional[str]:
    try:
        body = await fetch_text(client, url, timeout)
    except FETCH_ERRORS as e:
        logger.warning("Feed %s failed: %s", url, e)
        return None
    logger.info("Fetched %s (%d bytes)", url, len(body))
    return body


async def fetch_feeds(
    urls: Iterable[str],
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = HTTP_TIMEOUT,
) -> Dict[str, str]:
    """
    GET every url at once and return `{url: body}` in the order given.
    Failed urls are logged and left out; this never raises for a single feed.
    """
    ordered = list(dict.fromkeys(u for u in urls if u))
    if not ordered:
        return {}
    async with http_client(client, timeout) as c:
        bodies = await asyncio.gather(*(_fetch_one(c, u, timeout) for u in ordered))
    return {u: body for u, body in zip(ordered, bodies) if body is not None}


async def validate_playlist_url(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = HTTP_TIMEOUT,
) -> str:
    """
    Accept `url` as a playlist source only if it looks like an http(s) URL,
    can be downloaded and the body carries the `#EXTM3U` marker.
    Returns the trimmed url, raises SourceValidationError otherwise.
    """
    url = (url or "").strip()
    if not is_valid_url(url):
        raise SourceValidationError(INVALID_FORMAT, "Invalid URL format")

    async with http_client(client, timeout) as c:
        try:
            body = await fetch_text(c, url, timeout)
        except FETCH_ERRORS as e:
            logger.warning("Candidate playlist %s unreachable: %s", url, e)
            raise SourceValidationError(UNREACHABLE, "The URL cannot be reached") from e

    if not has_playlist_marker(body):
        raise SourceValidationError(NOT_PLAYLIST, "The URL does not serve an M3U playlist")
    return url


async def check_reachable(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = PROBE_TIMEOUT,
) -> bool:
    async with http_client(client, timeout) as c:
        try:
            r = await c.head(url, timeout=timeout)
        except FETCH_ERRORS as e:
            logger.warning("Probe of %s failed: %s", url, e)
            return False
    return r.status_code == 200
