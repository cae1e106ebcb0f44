"""Specifier and range parsing utilities for package resolution."""

import re
from typing import List, Optional, Tuple

import semantic_version

from errors import MalformedManifest
from .models import DependencyKind, PackageSpec, ResolutionMode, VersionSpec

_LOCAL_PREFIXES = ("file:", "./", "../", "/", "~/")
_UNSUPPORTED_PREFIXES = ("git+", "git:", "github:", "gitlab:", "bitbucket:", "gist:", "npm:", "link:", "workspace:")
_TAG_RE = re.compile(r"^[A-Za-z][A-Za-z0-9._-]*$")
_PRERELEASE_RE = re.compile(r"\d+\.\d+\.\d+-[0-9A-Za-z]")


def tokenize_rightmost_at(s: str) -> Tuple[str, Optional[str]]:
    """Return (name, range or None) using the rightmost-``@`` rule.

    A leading ``@`` belongs to a scoped package name and is never a separator.
    """
    s = s.strip()
    at = s.rfind("@")
    if at <= 0:
        return s, None
    name = s[:at].strip()
    range_part = s[at + 1:].strip()
    return name, (range_part if range_part else None)


def _is_exact(spec: str) -> bool:
    candidate = spec[1:] if spec[:1] in ("v", "=") else spec
    try:
        semantic_version.Version(candidate)
    except ValueError:
        return False
    return True


def _is_npm_range(spec: str) -> bool:
    try:
        semantic_version.NpmSpec(spec)
    except ValueError:
        return False
    return True


def determine_resolution_mode(spec: str) -> ResolutionMode:
    """Determine resolution mode from a range string."""
    s = spec.strip()
    if s == "" or s == "latest":
        return ResolutionMode.LATEST
    if s.startswith(_LOCAL_PREFIXES):
        return ResolutionMode.LOCAL
    if s.startswith(_UNSUPPORTED_PREFIXES) or "://" in s:
        return ResolutionMode.UNSUPPORTED
    if _is_exact(s):
        return ResolutionMode.EXACT
    if _is_npm_range(s):
        return ResolutionMode.RANGE
    if _TAG_RE.match(s):
        return ResolutionMode.TAG
    if "/" in s:
        # user/repo GitHub shorthand
        return ResolutionMode.UNSUPPORTED
    return ResolutionMode.RANGE


def parse_version_spec(raw: str) -> VersionSpec:
    """Classify a raw range string."""
    mode = determine_resolution_mode(raw)
    include_prerelease = bool(_PRERELEASE_RE.search(raw)) if mode in (
        ResolutionMode.EXACT, ResolutionMode.RANGE) else False
    return VersionSpec(raw=raw.strip(), mode=mode, include_prerelease=include_prerelease)


def parse_specifier(token: str, kind: DependencyKind = DependencyKind.NORMAL) -> PackageSpec:
    """Parse a ``name@range`` list entry into a PackageSpec.

    A bare name requests the ``latest`` dist-tag.
    """
    if not isinstance(token, str) or not token.strip():
        raise MalformedManifest(f"Invalid dependency specifier: {token!r}")
    name, range_part = tokenize_rightmost_at(token)
    if not name:
        raise MalformedManifest(f"Invalid dependency specifier: {token!r}")
    return PackageSpec(name=name, range=range_part or "latest", kind=kind)


def parse_manifest_entries(manifest: dict, kind: DependencyKind) -> List[PackageSpec]:
    """Extract the PackageSpecs declared under one manifest section.

    Raises:
        MalformedManifest: If the section is not a name -> range mapping.
    """
    section = manifest.get(kind.manifest_field)
    if section is None:
        return []
    if not isinstance(section, dict):
        raise MalformedManifest(
            f"'{kind.manifest_field}' of {manifest.get('name', '<unnamed>')} must be an object"
        )
    specs = []
    for name, raw in section.items():
        if not isinstance(name, str) or not isinstance(raw, str):
            raise MalformedManifest(
                f"Invalid entry {name!r}: {raw!r} in '{kind.manifest_field}'"
            )
        specs.append(PackageSpec(name=name, range=raw.strip(), kind=kind))
    return specs
