"""Topology planner: decides in which scope every graph node is installed.

A scope is one ``node_modules`` level: the private scope of a placed node, or
the top-level scope shared by all roots of a flattened collection.

Nested mode puts every node in its parent's scope. Flat mode walks each node
up its consumer's scope chain in breadth-first order and installs it in the
shallowest scope it can reach without crossing another package of the same
name; first-seen wins, later conflicting versions nest under their parent.
A node is never moved above the scope from which a back edge in its subtree
still finds the intended ancestor, and in a flattened collection a root
scope never holds a name at another version than the top-level owners that
root bundles.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Set

from errors import PlacementConflict
from graph.models import DependencyGraph, Edge

logger = logging.getLogger(__name__)

TOP_SCOPE = -1


class PlacementKind(Enum):
    """Tag of a placement decision."""
    SHARED = "shared"
    NESTED = "nested"


@dataclass(frozen=True)
class Placement:
    """Where a node is installed and which node's expression represents it.

    ``owner`` differs from the node itself when the node was deduplicated
    onto an identical package already installed in a visible scope.
    """
    kind: PlacementKind
    scope: int
    owner: int


class PlacementPlan:
    """Placement decisions for one graph."""

    def __init__(
        self,
        graph: DependencyGraph,
        flatten: bool,
        decisions: Dict[int, Placement],
        scopes: Dict[int, Dict[str, int]],
    ):
        self.graph = graph
        self.flatten = flatten
        self._decisions = decisions
        self._scopes = scopes

    @property
    def has_top_scope(self) -> bool:
        return TOP_SCOPE in self._scopes

    def decision(self, node_id: int) -> Optional[Placement]:
        """Placement of a node, or None for roots and for nodes whose ancestor was deduplicated."""
        return self._decisions.get(node_id)

    def is_planned(self, node_id: int) -> bool:
        return self.graph.node(node_id).is_root or node_id in self._decisions

    def owner(self, node_id: int) -> int:
        """Node whose expression stands for node_id."""
        placement = self._decisions.get(node_id)
        return placement.owner if placement is not None else node_id

    def is_owner(self, node_id: int) -> bool:
        return self.is_planned(node_id) and self.owner(node_id) == node_id

    def scope_members(self, scope: int) -> List[int]:
        """Owner nodes installed directly in scope, in placement order."""
        return list(self._scopes.get(scope, {}).values())

    def scopes(self) -> List[int]:
        return list(self._scopes)

    def edge_target(self, edge: Edge) -> Optional[Placement]:
        """Placement an edge resolves to; a back edge to a root resolves to the root itself."""
        child = edge.child
        placement = self._decisions.get(child)
        if placement is None and self.graph.node(child).is_root:
            return Placement(PlacementKind.SHARED, TOP_SCOPE if self.has_top_scope else child, child)
        return placement


class TopologyPlanner:
    """Computes a PlacementPlan; pure and deterministic."""

    def __init__(self, graph: DependencyGraph):
        self._graph = graph
        self._scopes: Dict[int, Dict[str, int]] = {}
        self._passthrough: Dict[int, Dict[str, tuple]] = {}
        self._scope_parents: Dict[int, Optional[int]] = {}
        self._decisions: Dict[int, Placement] = {}
        self._shared_top = False
        # Ancestors looked up through back edges from within each node's subtree
        self._ancestor_lookups: Dict[int, List[int]] = {}
        # Roots whose bundle contains each owner, and the top-level owners each root bundles
        self._reached_by: Dict[int, Set[int]] = {}
        self._top_view: Dict[int, Dict[str, int]] = {}

    def _open_scope(self, scope: int, parent: Optional[int]) -> None:
        self._scopes[scope] = {}
        self._passthrough[scope] = {}
        self._scope_parents[scope] = parent

    def _occupy(self, scope: int, node_id: int) -> None:
        node = self._graph.node(node_id)
        occupant = self._scopes[scope].get(node.name)
        if occupant is not None and self._graph.node(occupant).package.identity != node.package.identity:
            other = self._graph.node(occupant).package
            raise PlacementConflict(
                f"{node.name}@{node.package.version} and {other.name}@{other.version} "
                f"placed in the same scope",
                path=node.path,
            )
        self._scopes[scope][node.name] = node_id

    def _chain(self, scope: Optional[int]):
        while scope is not None:
            yield scope
            scope = self._scope_parents[scope]

    def plan(self, flatten: bool) -> PlacementPlan:
        graph = self._graph
        self._shared_top = flatten and graph.is_collection
        if self._shared_top:
            self._open_scope(TOP_SCOPE, None)
        for root in graph.roots:
            self._open_scope(root, TOP_SCOPE if self._shared_top else None)
            self._reached_by[root] = {root}
            self._top_view[root] = {}
        if flatten:
            self._ancestor_lookups = self._collect_ancestor_lookups()

        skipped: Set[int] = set()
        for node in graph.nodes:
            if node.is_root:
                continue
            consumer = node.parent
            consumer_placement = self._decisions.get(consumer)
            if consumer in skipped or (consumer_placement is not None and consumer_placement.owner != consumer):
                # Deduplicated onto another placement whose subtree is planned already
                skipped.add(node.id)
                continue
            if flatten:
                self._place_flat(node.id, consumer)
            else:
                self._place(node.id, consumer, PlacementKind.NESTED)

        logger.info(
            "Placement plan: %d placements in %d scopes (%s)",
            len({p.owner for p in self._decisions.values()}),
            len(self._scopes),
            "flat" if flatten else "nested",
        )
        return PlacementPlan(graph, flatten, self._decisions, self._scopes)

    def _collect_ancestor_lookups(self) -> Dict[int, List[int]]:
        """Map every node between a back edge's source and its ancestor to that ancestor."""
        lookups: Dict[int, List[int]] = {}
        for edge in self._graph.edges:
            if not edge.back or edge.child == edge.parent or self._graph.node(edge.child).is_root:
                continue
            current = edge.parent
            while current is not None and current != edge.child:
                lookups.setdefault(current, []).append(edge.child)
                current = self._graph.node(current).parent
        return lookups

    def _place(self, node_id: int, scope: int, kind: PlacementKind) -> None:
        self._occupy(scope, node_id)
        self._decisions[node_id] = Placement(kind, scope, node_id)
        self._open_scope(node_id, scope)

    def _place_flat(self, node_id: int, consumer: int) -> None:
        node = self._graph.node(node_id)
        name, identity = node.name, node.package.identity
        visited: List[int] = []
        reuse: Optional[int] = None
        conflict = False
        for scope in self._chain(consumer):
            occupant = self._scopes[scope].get(name)
            if occupant is not None:
                if (
                    self._graph.node(occupant).package.identity == identity
                    and not self._clashes(consumer, self._top_closure(occupant))
                ):
                    reuse = occupant
                else:
                    conflict = True
                break
            through = self._passthrough[scope].get(name)
            if through is not None and through != identity:
                # An earlier lookup crossed this scope to a different version
                conflict = True
                break
            visited.append(scope)

        if reuse is not None:
            for scope in visited:
                self._passthrough[scope][name] = identity
            target = self._decisions.get(reuse)
            reuse_scope = target.scope if target is not None else consumer
            self._decisions[node_id] = Placement(PlacementKind.SHARED, reuse_scope, reuse)
            self._link(consumer, reuse)
            return

        if conflict or not visited or not self._can_place(node_id, consumer, visited[-1]):
            self._place(node_id, consumer, PlacementKind.NESTED)
        else:
            chosen = visited[-1]
            for scope in visited[:-1]:
                self._passthrough[scope][name] = identity
            kind = PlacementKind.NESTED if chosen == consumer else PlacementKind.SHARED
            self._place(node_id, chosen, kind)
        self._record_ancestor_lookups(node_id)
        self._link(consumer, node_id)

    def _can_place(self, node_id: int, consumer: int, scope: int) -> bool:
        """Whether node_id may be installed in scope without changing what any lookup finds."""
        node = self._graph.node(node_id)
        if self._shared_top:
            if scope == TOP_SCOPE and self._clashes(consumer, {node.name: node.package.identity}):
                return False
            held = self._top_view.get(scope, {}).get(node.name)
            if held is not None and self._graph.node(held).package.identity != node.package.identity:
                return False
        return all(self._sees(scope, consumer, ancestor) for ancestor in self._ancestor_lookups.get(node_id, ()))

    def _sees(self, scope: int, consumer: int, ancestor: int) -> bool:
        """Whether a lookup from scope finds the ancestor's package before any other version."""
        target = self._graph.node(ancestor)
        name, identity = target.name, target.package.identity
        for current in self._chain(scope):
            occupant = self._scopes[current].get(name)
            if occupant is not None:
                if self._graph.node(occupant).package.identity != identity:
                    return False
                return current != TOP_SCOPE or not self._clashes(consumer, self._top_closure(occupant))
            through = self._passthrough[current].get(name)
            if through is not None and through != identity:
                return False
        return False

    def _record_ancestor_lookups(self, node_id: int) -> None:
        """Reserve the ancestor's name on every scope between node_id and that ancestor."""
        for ancestor in self._ancestor_lookups.get(node_id, ()):
            target = self._graph.node(ancestor)
            for scope in self._chain(node_id):
                if target.name in self._scopes[scope]:
                    break
                self._passthrough[scope].setdefault(target.name, target.package.identity)

    # Collection bundles. Each root of a flattened collection installs its own
    # scope together with every top-level owner it reaches, so a root scope and
    # the top-level owners bundled with it must agree on every name.

    def _successors(self, owner: int) -> Iterator[int]:
        for edge in self._graph.out_edges(owner):
            placement = self._decisions.get(edge.child)
            if placement is not None:
                yield placement.owner

    def _top_closure(self, owner: int) -> Dict[str, tuple]:
        """Top-level packages reachable from owner, by name."""
        found: Dict[str, tuple] = {}
        if not self._shared_top:
            return found
        seen = {owner}
        stack = [owner]
        while stack:
            current = stack.pop()
            placement = self._decisions.get(current)
            if placement is not None and placement.scope == TOP_SCOPE:
                package = self._graph.node(current).package
                found[package.name] = package.identity
            for successor in self._successors(current):
                if successor not in seen:
                    seen.add(successor)
                    stack.append(successor)
        return found

    def _clashes(self, consumer: int, packages: Dict[str, tuple]) -> bool:
        """Whether a root bundling consumer holds one of these names at another version."""
        if not self._shared_top:
            return False
        for root in sorted(self._reached_by.get(consumer, ())):
            scope = self._scopes[root]
            for name, identity in packages.items():
                occupant = scope.get(name)
                if occupant is not None and self._graph.node(occupant).package.identity != identity:
                    return True
        return False

    def _link(self, source: int, target: int) -> None:
        """Roots bundling source now also bundle target and everything it reaches."""
        if not self._shared_top:
            return
        roots = self._reached_by.get(source, set())
        stack = [target]
        while stack:
            current = stack.pop()
            reached = self._reached_by.setdefault(current, set())
            added = roots - reached
            if not added:
                continue
            reached |= added
            placement = self._decisions.get(current)
            if placement is not None and placement.scope == TOP_SCOPE:
                for root in added:
                    self._top_view[root][self._graph.node(current).name] = current
            stack.extend(self._successors(current))


def plan_topology(graph: DependencyGraph, flatten: bool) -> PlacementPlan:
    """Compute the placement plan for graph under the given policy."""
    return TopologyPlanner(graph).plan(flatten)
