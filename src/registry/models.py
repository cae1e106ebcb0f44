"""Resolved package records produced by the registry resolver."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from constants import Constants
from errors import MalformedManifest
from versioning.models import DependencyKind, PackageSpec
from versioning.parser import parse_manifest_entries


class SourceKind(Enum):
    """Where a package's contents come from."""
    REGISTRY = "registry"
    LOCAL = "local"


@dataclass(frozen=True)
class SourceDescriptor:
    """Distribution source: a registry tarball with integrity, or a local path."""
    kind: SourceKind
    url: Optional[str] = None
    hash_algo: Optional[str] = None
    hash_value: Optional[str] = None
    path: Optional[str] = None

    @property
    def identity(self) -> str:
        if self.kind == SourceKind.LOCAL:
            return f"local:{self.path}"
        return f"registry:{self.url}"


@dataclass(frozen=True)
class PackageMeta:
    """Descriptive fields carried into the generated ``meta`` attribute."""
    description: Optional[str] = None
    homepage: Optional[str] = None
    license: Optional[str] = None


@dataclass(frozen=True)
class ResolvedPackage:
    """A concrete package version; immutable once resolved."""
    name: str
    version: str
    source: SourceDescriptor
    dependencies: Tuple[PackageSpec, ...] = ()
    optional_dependencies: Tuple[PackageSpec, ...] = ()
    peer_dependencies: Tuple[PackageSpec, ...] = ()
    dev_dependencies: Tuple[PackageSpec, ...] = ()
    meta: PackageMeta = field(default_factory=PackageMeta)

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (self.name, self.version, self.source.identity)

    @property
    def key(self) -> str:
        """Stable attribute name used for the shared sources table."""
        if self.source.kind == SourceKind.LOCAL:
            return f"{self.name}-{self.source.path}"
        return f"{self.name}-{self.version}"

    def specs(self, kind: DependencyKind) -> Tuple[PackageSpec, ...]:
        return {
            DependencyKind.NORMAL: self.dependencies,
            DependencyKind.OPTIONAL: self.optional_dependencies,
            DependencyKind.PEER: self.peer_dependencies,
            DependencyKind.DEV: self.dev_dependencies,
        }[kind]


def _meta_from_manifest(manifest: dict) -> PackageMeta:
    description = manifest.get("description")
    homepage = manifest.get("homepage")
    license_field = manifest.get("license")
    if isinstance(license_field, dict):
        # Legacy { "type": "MIT", "url": ... } form
        license_field = license_field.get("type")
    return PackageMeta(
        description=description if isinstance(description, str) else None,
        homepage=homepage if isinstance(homepage, str) else None,
        license=license_field if isinstance(license_field, str) else None,
    )


def integrity_to_hash(dist: dict) -> Tuple[str, str]:
    """Pick the strongest usable hash from a packument ``dist`` entry.

    Returns:
        Tuple of (algorithm, value) where SRI values stay base64 and the legacy
        ``shasum`` stays hex, the two encodings fetchurl accepts.

    Raises:
        MalformedManifest: If no usable hash is present.
    """
    integrity = dist.get("integrity")
    if isinstance(integrity, str):
        found = {}
        for token in integrity.split():
            algo, _, value = token.partition("-")
            if algo in Constants.HASH_ALGORITHMS and value:
                try:
                    base64.b64decode(value, validate=True)
                except (binascii.Error, ValueError):
                    continue
                found.setdefault(algo, value)
        for algo in Constants.HASH_ALGORITHMS:
            if algo in found:
                return algo, found[algo]
    shasum = dist.get("shasum")
    if isinstance(shasum, str) and shasum:
        return "sha1", shasum
    raise MalformedManifest("Distribution entry has neither integrity nor shasum")


def resolved_from_manifest(manifest: dict, source: SourceDescriptor) -> ResolvedPackage:
    """Build a ResolvedPackage from one version's manifest.

    Raises:
        MalformedManifest: If the manifest has an invalid shape.
    """
    if not isinstance(manifest, dict):
        raise MalformedManifest("Package manifest must be a JSON object")
    name = manifest.get("name")
    version = manifest.get("version")
    if not isinstance(name, str) or not name:
        raise MalformedManifest("Package manifest lacks a 'name'")
    if not isinstance(version, str) or not version:
        raise MalformedManifest(f"Package manifest of {name} lacks a 'version'")
    return ResolvedPackage(
        name=name,
        version=version,
        source=source,
        dependencies=tuple(parse_manifest_entries(manifest, DependencyKind.NORMAL)),
        optional_dependencies=tuple(parse_manifest_entries(manifest, DependencyKind.OPTIONAL)),
        peer_dependencies=tuple(parse_manifest_entries(manifest, DependencyKind.PEER)),
        dev_dependencies=tuple(parse_manifest_entries(manifest, DependencyKind.DEV)),
        meta=_meta_from_manifest(manifest),
    )


def registry_source_from_dist(dist) -> SourceDescriptor:
    """Build the registry source descriptor for a version's ``dist`` entry."""
    if not isinstance(dist, dict) or not isinstance(dist.get("tarball"), str):
        raise MalformedManifest("Version manifest lacks 'dist.tarball'")
    algo, value = integrity_to_hash(dist)
    return SourceDescriptor(
        kind=SourceKind.REGISTRY,
        url=dist["tarball"],
        hash_algo=algo,
        hash_value=value,
    )
