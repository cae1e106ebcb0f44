"""Error hierarchy for a generation run.

Every failure aborts the whole run; callers receive a single exception
carrying the dependency path (package names from the root) that led to it.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple


class Npm2NixError(Exception):
    """Base class for all generation errors."""

    def __init__(self, message: str, path: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.message = message
        self.path: Tuple[str, ...] = tuple(path or ())

    def with_path(self, path: Sequence[str]) -> "Npm2NixError":
        """Attach the dependency path unless a more specific one is already set."""
        if not self.path:
            self.path = tuple(path)
        return self

    def __str__(self) -> str:
        if self.path:
            return f"{self.message} (required by {' > '.join(self.path)})"
        return self.message


class MalformedManifest(Npm2NixError):
    """Input or fetched package manifest has an invalid shape."""


class UnresolvableVersion(Npm2NixError):
    """No known version satisfies the requested range."""


class PeerConstraintUnsatisfied(Npm2NixError):
    """A peer requirement conflicts with a version already present in scope."""


class RegistryUnavailable(Npm2NixError):
    """The registry source could not be reached or timed out."""


class PlacementConflict(Npm2NixError):
    """Two distinct packages with the same name ended up in one scope."""
