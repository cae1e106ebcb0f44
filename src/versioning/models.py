"""Data models for versioning and package resolution."""

from dataclasses import dataclass
from enum import Enum

from constants import DependencyKinds


class DependencyKind(Enum):
    """Kind of edge a requirement was declared under."""
    NORMAL = "normal"
    DEV = "dev"
    PEER = "peer"
    OPTIONAL = "optional"

    @property
    def manifest_field(self) -> str:
        """Name of the package.json section declaring this kind."""
        return _MANIFEST_FIELDS[self]


_MANIFEST_FIELDS = {
    DependencyKind.NORMAL: DependencyKinds.NORMAL.value,
    DependencyKind.OPTIONAL: DependencyKinds.OPTIONAL.value,
    DependencyKind.PEER: DependencyKinds.PEER.value,
    DependencyKind.DEV: DependencyKinds.DEV.value,
}


class ResolutionMode(Enum):
    """Resolution strategy derived from the range string."""
    EXACT = "exact"
    RANGE = "range"
    LATEST = "latest"
    TAG = "tag"
    LOCAL = "local"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class VersionSpec:
    """Normalized representation of a version range and derived behavior flags."""
    raw: str
    mode: ResolutionMode
    include_prerelease: bool


@dataclass(frozen=True)
class PackageSpec:
    """A dependency requirement before resolution."""
    name: str
    range: str
    kind: DependencyKind = DependencyKind.NORMAL

    @property
    def specifier(self) -> str:
        """Render as a ``name@range`` specifier."""
        return f"{self.name}@{self.range}" if self.range else self.name
