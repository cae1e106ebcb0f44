"""Shared async HTTP helpers used by registry sources.

Encapsulates session creation, timeout and transport error handling so
registry modules avoid duplicating try/except blocks. Transport failures
surface as RegistryUnavailable; no retries are attempted here.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

from constants import Constants
from errors import MalformedManifest, RegistryUnavailable
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)


def create_session(timeout: float = Constants.REQUEST_TIMEOUT, limit: int = Constants.MAX_CONCURRENCY) -> aiohttp.ClientSession:
    """Create a client session bounded by a total per-request timeout."""
    connector = aiohttp.TCPConnector(limit=limit)
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=timeout),
        connector=connector,
        headers={"User-Agent": Constants.USER_AGENT},
    )


async def get_json(
    session: aiohttp.ClientSession,
    url: str,
    *,
    context: str,
    headers: Optional[Dict[str, str]] = None,
) -> Tuple[int, Dict[str, str], Optional[Any]]:
    """Perform a GET request and parse the JSON body with DEBUG traces.

    Args:
        session: Open client session.
        url: Target URL.
        context: Human-readable source tag for logs (e.g., "npm").
        headers: Optional request headers.

    Returns:
        Tuple of (status_code, headers_dict, parsed_json_or_none). The body is
        only parsed for 2xx responses.

    Raises:
        RegistryUnavailable: On timeout or connection failure.
        MalformedManifest: If a 2xx body is not valid JSON.
    """
    safe_target = safe_url(url)
    with Timer() as t:
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP request",
                extra=extra_context(
                    event="http_request",
                    component="http_client",
                    action="GET",
                    target=safe_target,
                    context=context,
                ),
            )
        try:
            async with session.get(url, headers=headers) as response:
                status = response.status
                response_headers = dict(response.headers)
                body = await response.text() if 200 <= status < 300 else None
        except asyncio.TimeoutError as exc:
            logger.error("%s request timed out: %s", context, safe_target)
            raise RegistryUnavailable(f"{context} request timed out: {safe_target}") from exc
        except aiohttp.ClientError as exc:
            logger.error("%s connection error: %s", context, exc)
            raise RegistryUnavailable(f"{context} connection error: {exc}") from exc

    if is_debug_enabled(logger):
        logger.debug(
            "HTTP response",
            extra=extra_context(
                event="http_response",
                component="http_client",
                action="GET",
                outcome="success" if body is not None else "non_2xx",
                status_code=status,
                duration_ms=t.duration_ms(),
                target=safe_target,
                context=context,
            ),
        )

    if body is None:
        return status, response_headers, None
    try:
        return status, response_headers, json.loads(body)
    except json.JSONDecodeError as exc:
        raise MalformedManifest(f"{context} returned invalid JSON for {safe_target}") from exc
