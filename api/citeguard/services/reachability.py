from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
import logging

import httpx

from citeguard.core.urls import is_http_url

USER_AGENT = "citeguard-link-validator/1.0"
DEFAULT_TIMEOUT_SECONDS = 5.0
# Many publishers reject HEAD from bots with 403 while serving the page normally.
ACCESSIBLE_ERROR_CODES = {403}

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ReachabilityResult:
    url: str
    reachable: bool
    status_code: int | None
    reason: str


async def check_url_reachable(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> ReachabilityResult:
    if not is_http_url(url):
        return ReachabilityResult(url=url, reachable=False, status_code=None, reason="unsupported_scheme")

    if client is not None:
        return await _head(client=client, url=url, timeout_seconds=timeout_seconds)
    async with httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True) as temp_client:
        return await _head(client=temp_client, url=url, timeout_seconds=timeout_seconds)


async def check_urls_reachable(
    urls: Sequence[str],
    *,
    client: httpx.AsyncClient | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> dict[str, ReachabilityResult]:
    unique_urls = list(dict.fromkeys(urls))
    if not unique_urls:
        return {}

    if client is not None:
        results = await asyncio.gather(
            *(check_url_reachable(url, client=client, timeout_seconds=timeout_seconds) for url in unique_urls)
        )
    else:
        async with httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True) as temp_client:
            results = await asyncio.gather(
                *(check_url_reachable(url, client=temp_client, timeout_seconds=timeout_seconds) for url in unique_urls)
            )
    return {result.url: result for result in results}


async def _head(*, client: httpx.AsyncClient, url: str, timeout_seconds: float) -> ReachabilityResult:
    try:
        response = await client.head(
            url,
            headers={"User-Agent": USER_AGENT},
            timeout=timeout_seconds,
            follow_redirects=True,
        )
    except httpx.TimeoutException:
        return ReachabilityResult(url=url, reachable=False, status_code=None, reason="timeout")
    except (httpx.InvalidURL, ValueError) as exc:
        logger.debug("reachability check rejected url=%s error=%s", url, exc)
        return ReachabilityResult(url=url, reachable=False, status_code=None, reason="invalid_url")
    except httpx.HTTPError as exc:
        logger.debug("reachability check failed url=%s error=%s", url, exc)
        return ReachabilityResult(url=url, reachable=False, status_code=None, reason="transport_error")

    status_code = int(response.status_code)
    if status_code < 400:
        return ReachabilityResult(url=url, reachable=True, status_code=status_code, reason="ok")
    if status_code in ACCESSIBLE_ERROR_CODES:
        return ReachabilityResult(url=url, reachable=True, status_code=status_code, reason="forbidden_head")
    return ReachabilityResult(url=url, reachable=False, status_code=status_code, reason="http_error")
