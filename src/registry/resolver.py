"""Registry resolver: (name, range) -> ResolvedPackage.

Looks up all known versions of a package through the injected source, picks
the highest one satisfying the range and caches the outcome for the run.
Identical (name, range, source) requests share one resolution; requests for
different ranges of one name share one packument fetch.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Dict, Mapping, Optional, Tuple

from constants import Constants
from errors import (
    MalformedManifest,
    PeerConstraintUnsatisfied,
    RegistryUnavailable,
    UnresolvableVersion,
)
from common.logging_utils import extra_context, is_debug_enabled, Timer
from registry.models import (
    ResolvedPackage,
    SourceDescriptor,
    SourceKind,
    registry_source_from_dist,
    resolved_from_manifest,
)
from registry.source import RegistrySource
from versioning.models import ResolutionMode
from versioning.parser import parse_version_spec
from versioning.resolvers import NpmVersionResolver

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, str]


def nix_relative_path(target: str, start: str) -> str:
    """Relative path usable as a Nix path literal (always contains a slash)."""
    rel = os.path.relpath(target, start).replace(os.sep, "/")
    if rel == ".":
        return "./."
    if rel.startswith("../"):
        return rel
    return f"./{rel}"


class RegistryResolver:
    """Resolves version ranges against a registry source with a per-run cache."""

    def __init__(
        self,
        source: RegistrySource,
        base_dir: str = ".",
        output_dir: str = ".",
        timeout: float = Constants.REQUEST_TIMEOUT,
        concurrency: int = Constants.MAX_CONCURRENCY,
    ):
        self._source = source
        self._base_dir = os.path.abspath(base_dir)
        self._output_dir = os.path.abspath(output_dir)
        self._timeout = timeout
        self._concurrency = max(1, int(concurrency))
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._picker = NpmVersionResolver()
        self._resolutions: Dict[CacheKey, asyncio.Future] = {}
        self._packuments: Dict[str, asyncio.Future] = {}
        self._local_dirs: Dict[Tuple[str, str, str], str] = {}

    @property
    def cached_count(self) -> int:
        """Number of distinct (name, range, source) keys resolved or in flight."""
        return len(self._resolutions)

    def base_dir_for(self, pkg: Optional[ResolvedPackage]) -> str:
        """Directory that local specifiers declared by pkg are relative to."""
        if pkg is not None and pkg.source.kind == SourceKind.LOCAL:
            return self._local_dirs.get(pkg.identity, self._base_dir)
        return self._base_dir

    def satisfies(self, version: str, range_: str) -> bool:
        """Return True when version satisfies an npm range."""
        spec = parse_version_spec(range_)
        if spec.mode in (ResolutionMode.LATEST, ResolutionMode.TAG, ResolutionMode.LOCAL,
                         ResolutionMode.UNSUPPORTED):
            # Tags and paths can only be reused by identity, never by range.
            return False
        if spec.mode == ResolutionMode.EXACT:
            wanted = spec.raw[1:] if spec.raw[:1] in ("v", "=") else spec.raw
            return version == wanted
        return self._picker.satisfies(version, spec.raw)

    async def resolve(
        self,
        name: str,
        range_: str,
        peer_context: Optional[Mapping[str, str]] = None,
        base_dir: Optional[str] = None,
    ) -> ResolvedPackage:
        """Resolve name@range to a concrete package.

        Args:
            name: Package name.
            range_: npm version range, dist-tag or local path.
            peer_context: Names -> versions already present in the requesting scope.
            base_dir: Directory local paths are relative to (defaults to the manifest's).

        Raises:
            UnresolvableVersion, RegistryUnavailable, MalformedManifest,
            PeerConstraintUnsatisfied
        """
        spec = parse_version_spec(range_)
        if spec.mode == ResolutionMode.LOCAL:
            origin = os.path.abspath(base_dir) if base_dir else self._base_dir
            key: CacheKey = (name, spec.raw, f"local:{origin}")
        else:
            key = (name, spec.raw, self._source.identity)

        future = self._resolutions.get(key)
        if future is None:
            if is_debug_enabled(logger):
                logger.debug(
                    "Resolution cache miss",
                    extra=extra_context(event="cache_miss", component="resolver", target=f"{name}@{spec.raw}"),
                )
            if spec.mode == ResolutionMode.LOCAL:
                coro = self._resolve_local(name, spec.raw, key[2][len("local:"):])
            else:
                coro = self._resolve_registry(name, spec)
            future = asyncio.ensure_future(coro)
            self._resolutions[key] = future
        pkg = await asyncio.shield(future)

        if peer_context:
            self.check_peers(pkg, peer_context)
        return pkg

    def check_peers(self, pkg: ResolvedPackage, peer_context: Mapping[str, str]) -> None:
        """Verify pkg's peer requirements against versions already in scope.

        Raises:
            PeerConstraintUnsatisfied: If a present version does not satisfy a peer range.
        """
        for peer in pkg.peer_dependencies:
            present = peer_context.get(peer.name)
            if present is not None and not self._picker.satisfies(present, peer.range):
                raise PeerConstraintUnsatisfied(
                    f"{pkg.name}@{pkg.version} requires peer {peer.name}@{peer.range}, "
                    f"but {peer.name}@{present} is present"
                )

    async def _resolve_registry(self, name: str, spec) -> ResolvedPackage:
        if spec.mode == ResolutionMode.UNSUPPORTED:
            raise UnresolvableVersion(f"Unsupported specifier for {name}: '{spec.raw}'")

        packument = await self._get_packument(name)
        versions = packument["versions"]
        candidates = list(versions.keys())
        version, count, error = self._picker.pick(spec, candidates, packument.get("dist-tags", {}))
        if version is None:
            raise UnresolvableVersion(f"No version of {name} satisfies '{spec.raw}': {error}")

        manifest = versions[version]
        if not isinstance(manifest, dict):
            raise MalformedManifest(f"Manifest of {name}@{version} is not an object")
        try:
            source = registry_source_from_dist(manifest.get("dist"))
            pkg = resolved_from_manifest(manifest, source)
        except MalformedManifest as exc:
            raise MalformedManifest(f"Invalid manifest for {name}@{version}: {exc.message}") from exc

        logger.info("Resolved %s@%s to %s (%d candidates)", name, spec.raw, version, count)
        return pkg

    async def _get_packument(self, name: str) -> dict:
        future = self._packuments.get(name)
        if future is None:
            future = asyncio.ensure_future(self._fetch_packument(name))
            self._packuments[name] = future
        return await asyncio.shield(future)

    async def _fetch_packument(self, name: str) -> dict:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._concurrency)
        async with self._semaphore:
            with Timer() as timer:
                try:
                    packument = await asyncio.wait_for(
                        self._source.fetch_packument(name), timeout=self._timeout
                    )
                except asyncio.TimeoutError as exc:
                    raise RegistryUnavailable(
                        f"Lookup of {name} timed out after {self._timeout} seconds"
                    ) from exc
        if is_debug_enabled(logger):
            logger.debug(
                "Packument fetched",
                extra=extra_context(
                    event="fetch",
                    component="resolver",
                    target=name,
                    duration_ms=timer.duration_ms(),
                ),
            )
        return packument

    async def _resolve_local(self, name: str, raw: str, origin: str) -> ResolvedPackage:
        rel = raw[len("file:"):] if raw.startswith("file:") else raw
        directory = os.path.normpath(os.path.join(origin, os.path.expanduser(rel)))
        manifest_path = os.path.join(directory, Constants.PACKAGE_JSON_FILE)
        try:
            with open(manifest_path, "r", encoding="utf-8") as file:
                manifest = json.load(file)
        except FileNotFoundError as exc:
            raise UnresolvableVersion(f"Local package {name} not found at {directory}") from exc
        except json.JSONDecodeError as exc:
            raise MalformedManifest(f"Invalid {manifest_path}: {exc}") from exc
        except OSError as exc:
            raise UnresolvableVersion(f"Cannot read local package {name}: {exc}") from exc

        source = SourceDescriptor(kind=SourceKind.LOCAL, path=nix_relative_path(directory, self._output_dir))
        pkg = resolved_from_manifest(manifest, source)
        self._local_dirs[pkg.identity] = directory
        logger.info("Resolved %s to local directory %s", name, directory)
        return pkg

    async def close(self) -> None:
        """Cancel outstanding lookups and drop partial state."""
        futures = list(self._resolutions.values()) + list(self._packuments.values())
        for future in futures:
            if not future.done():
                future.cancel()
        if futures:
            # Also retrieves exceptions of futures nobody awaited after an abort
            await asyncio.gather(*futures, return_exceptions=True)
        self._resolutions.clear()
        self._packuments.clear()
        self._local_dirs.clear()
