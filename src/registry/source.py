"""Registry source capability injected into the resolver.

A source has one operation: fetch the packument (all version manifests plus
dist-tags) for a package name. The concrete transport lives behind it.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from typing import Any, Dict, Optional

from errors import MalformedManifest, UnresolvableVersion

logger = logging.getLogger(__name__)


class RegistrySource:
    """Interface for packument lookups."""

    #: Distinguishes sources in resolution cache keys.
    identity: str = "source"

    async def fetch_packument(self, name: str) -> Dict[str, Any]:
        """Return the packument for name.

        Raises:
            UnresolvableVersion: If the package does not exist.
            RegistryUnavailable: If the source cannot be reached.
            MalformedManifest: If the document is not a packument.
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release transport resources."""
        return None

    async def __aenter__(self) -> "RegistrySource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def validate_packument(name: str, data: Any) -> Dict[str, Any]:
    """Check the packument shape shared by all sources."""
    if not isinstance(data, dict):
        raise MalformedManifest(f"Registry metadata for {name} is not an object")
    versions = data.get("versions")
    if not isinstance(versions, dict):
        raise MalformedManifest(f"Registry metadata for {name} lacks a 'versions' object")
    tags = data.get("dist-tags", {})
    if not isinstance(tags, dict):
        raise MalformedManifest(f"Registry metadata for {name} has invalid 'dist-tags'")
    return data


class FixtureRegistrySource(RegistrySource):
    """In-memory packuments, used for offline generation and tests.

    Accepts either full packuments (``{"versions": {...}, "dist-tags": {...}}``)
    or a plain ``{version: manifest}`` mapping per package name.
    """

    def __init__(self, packuments: Dict[str, Any], identity: str = "fixtures", delays: Optional[Dict[str, float]] = None):
        self.identity = identity
        self._packuments = {name: self._normalize(name, doc) for name, doc in packuments.items()}
        self._delays = dict(delays or {})
        self.fetch_counts: Dict[str, int] = {}

    @staticmethod
    def _normalize(name: str, doc: Any) -> Dict[str, Any]:
        if isinstance(doc, dict) and "versions" not in doc:
            doc = {"name": name, "versions": doc}
        return validate_packument(name, doc)

    @classmethod
    def from_file(cls, path: str) -> "FixtureRegistrySource":
        """Load packuments from a JSON file mapping names to packuments."""
        try:
            with open(path, "r", encoding="utf-8") as file:
                data = json.load(file)
        except json.JSONDecodeError as exc:
            raise MalformedManifest(f"Registry fixture file {path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedManifest(f"Registry fixture file {path} must contain an object")
        logger.info("Loaded %d packuments from %s", len(data), path)
        return cls(data, identity=f"fixtures:{path}")

    async def fetch_packument(self, name: str) -> Dict[str, Any]:
        self.fetch_counts[name] = self.fetch_counts.get(name, 0) + 1
        delay = self._delays.get(name)
        if delay:
            await asyncio.sleep(delay)
        if name not in self._packuments:
            raise UnresolvableVersion(f"Package {name} not found in {self.identity}")
        return copy.deepcopy(self._packuments[name])
