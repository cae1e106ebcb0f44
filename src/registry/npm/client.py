"""NPM registry client: packument retrieval over HTTP."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp

from constants import Constants
from errors import RegistryUnavailable, UnresolvableVersion
from common.http_client import create_session, get_json
from common.logging_utils import extra_context, is_debug_enabled, safe_url
from registry.source import RegistrySource, validate_packument

logger = logging.getLogger(__name__)


def packument_url(registry_url: str, name: str) -> str:
    """Build the packument URL; scoped names keep ``@`` but escape the slash."""
    return f"{registry_url.rstrip('/')}/{quote(name, safe='@')}"


class NpmRegistrySource(RegistrySource):
    """Remote npm-compatible registry."""

    def __init__(
        self,
        registry_url: str = Constants.REGISTRY_URL_NPM,
        timeout: float = Constants.REQUEST_TIMEOUT,
        concurrency: int = Constants.MAX_CONCURRENCY,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.registry_url = registry_url.rstrip("/")
        self.identity = f"npm:{self.registry_url}"
        self._timeout = timeout
        self._concurrency = concurrency
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = create_session(self._timeout, self._concurrency)
        return self._session

    async def fetch_packument(self, name: str) -> Dict[str, Any]:
        """Get the packument of a package from the registry.

        Args:
            name: Package name, possibly scoped.

        Returns:
            dict: The validated packument.
        """
        url = packument_url(self.registry_url, name)
        session = await self._get_session()
        status, _, data = await get_json(
            session,
            url,
            context="npm",
            headers={"Accept": Constants.PACKUMENT_ACCEPT},
        )

        if status == 404:
            logger.warning(
                "Package not found in registry",
                extra=extra_context(
                    event="http_response",
                    outcome="not_found",
                    status_code=404,
                    target=safe_url(url),
                    package_manager="npm",
                ),
            )
            raise UnresolvableVersion(f"Package {name} not found in {safe_url(self.registry_url)}")
        if status < 200 or status >= 300:
            logger.warning(
                "HTTP non-2xx received",
                extra=extra_context(
                    event="http_response",
                    outcome="non_2xx",
                    status_code=status,
                    target=safe_url(url),
                    package_manager="npm",
                ),
            )
            raise RegistryUnavailable(f"Registry returned HTTP {status} for {name}")

        packument = validate_packument(name, data)
        if is_debug_enabled(logger):
            logger.debug(
                "Packument retrieved",
                extra=extra_context(
                    event="parse",
                    component="client",
                    action="fetch_packument",
                    outcome="success",
                    target=name,
                    count=len(packument["versions"]),
                ),
            )
        return packument

    async def close(self) -> None:
        """Close the HTTP session when this source created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "NpmRegistrySource":
        await self._get_session()
        return self
