"""Arena-backed dependency graph.

Nodes live in a list and are addressed by index; edges are index pairs. The
physical nodes form a forest (one tree per root); edges pointing back to an
ancestor close logical cycles without creating physical ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from registry.models import ResolvedPackage
from versioning.models import PackageSpec


@dataclass(frozen=True)
class GraphNode:
    """One occurrence of a resolved package in the dependency forest."""
    id: int
    package: ResolvedPackage
    parent: Optional[int]
    depth: int
    root: int
    path: Tuple[str, ...]
    request: Optional[PackageSpec] = None

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def is_root(self) -> bool:
        return self.parent is None


@dataclass(frozen=True)
class Edge:
    """Directed "depends on" edge tagged with the requirement it satisfies."""
    parent: int
    child: int
    spec: PackageSpec
    back: bool = False


class DependencyGraph:
    """Immutable view over the nodes and edges of one generation run."""

    def __init__(self, nodes: Sequence[GraphNode], edges: Sequence[Edge], roots: Sequence[int], collection: bool):
        self._nodes: Tuple[GraphNode, ...] = tuple(nodes)
        self._edges: Tuple[Edge, ...] = tuple(edges)
        self._roots: Tuple[int, ...] = tuple(roots)
        self._collection = collection
        out: Dict[int, List[Edge]] = {node.id: [] for node in self._nodes}
        for edge in self._edges:
            out[edge.parent].append(edge)
        self._out: Dict[int, Tuple[Edge, ...]] = {k: tuple(v) for k, v in out.items()}

    @property
    def nodes(self) -> Tuple[GraphNode, ...]:
        return self._nodes

    @property
    def edges(self) -> Tuple[Edge, ...]:
        return self._edges

    @property
    def roots(self) -> Tuple[int, ...]:
        return self._roots

    @property
    def is_collection(self) -> bool:
        """True when built from a list of specifiers rather than one manifest."""
        return self._collection

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[GraphNode]:
        return iter(self._nodes)

    def node(self, node_id: int) -> GraphNode:
        return self._nodes[node_id]

    def out_edges(self, node_id: int) -> Tuple[Edge, ...]:
        return self._out.get(node_id, ())

    def identities(self) -> List[Tuple[str, str, str]]:
        """Distinct package identities in first-seen order."""
        seen = {}
        for node in self._nodes:
            seen.setdefault(node.package.identity, None)
        return list(seen)
