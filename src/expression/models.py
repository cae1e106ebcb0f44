"""Abstract build-expression records handed to the Nix renderer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from constants import Constants
from registry.models import ResolvedPackage

TOP_SCOPE_KEY = "*"


@dataclass(frozen=True)
class ExpressionNode:
    """One package installed at one placement.

    ``dependencies`` lists the keys of the ExpressionNodes this node bundles
    (its own ``node_modules``) plus, for roots of a flattened collection, the
    shared top-level nodes its dependency tree needs.
    """
    key: str
    package: ResolvedPackage
    scope: Optional[str]
    dependencies: Tuple[str, ...] = ()
    root: bool = False
    attribute: Optional[str] = None

    @property
    def source_key(self) -> str:
        return self.package.key


@dataclass(frozen=True)
class PackageSetExpr:
    """Generated package (single manifest) or collection (specifier list) expression."""
    collection: bool
    nodes: Tuple[ExpressionNode, ...]
    roots: Tuple[str, ...]
    sources: Tuple[ResolvedPackage, ...]
    production: bool = True
    bypass_cache: bool = True
    reconstruct_lock: bool = True
    _index: Dict[str, ExpressionNode] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        self._index.update({node.key: node for node in self.nodes})

    def node(self, key: str) -> ExpressionNode:
        return self._index[key]

    def root_nodes(self) -> Tuple[ExpressionNode, ...]:
        return tuple(self._index[key] for key in self.roots)

    def nodes_named(self, name: str) -> Tuple[ExpressionNode, ...]:
        return tuple(node for node in self.nodes if node.package.name == name)


@dataclass(frozen=True)
class CompositionExpr:
    """Top-level expression wiring the static build recipe to the generated packages."""
    node_env_path: str
    packages_path: str
    packages: PackageSetExpr
    nodejs_attribute: str = Constants.NODEJS_ATTRIBUTE

    @property
    def references(self) -> Tuple[str, ...]:
        """Keys of the package expressions reachable from the composition."""
        return tuple(node.key for node in self.packages.nodes)
