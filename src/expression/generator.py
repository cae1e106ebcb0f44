"""Expression generator: graph + placement plan -> abstract expressions.

Emits one ExpressionNode per (package, placement). Nodes reference the nodes
installed in their own scope; roots of a flattened collection additionally
reference the shared top-level nodes their dependency tree reaches. The
reference graph is a containment tree plus root -> top-level references, so
it stays acyclic even when the dependency graph has cycles.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set, Tuple

from constants import Constants
from errors import PlacementConflict
from expression.models import TOP_SCOPE_KEY, CompositionExpr, ExpressionNode, PackageSetExpr
from graph.models import DependencyGraph, GraphNode
from graph.planner import TOP_SCOPE, PlacementPlan
from registry.models import ResolvedPackage
from versioning.models import DependencyKind, ResolutionMode
from versioning.parser import parse_version_spec

logger = logging.getLogger(__name__)


def collection_attribute(node: GraphNode) -> str:
    """Attribute name of a collection entry: ``name-range``, or ``name`` for latest."""
    spec = node.request
    if spec is None:
        return node.package.name
    if parse_version_spec(spec.range).mode == ResolutionMode.LATEST:
        return spec.name
    return f"{spec.name}-{spec.range}"


class ExpressionGenerator:
    """Pure transformation of a planned graph into expression records."""

    def __init__(
        self,
        graph: DependencyGraph,
        plan: PlacementPlan,
        production: bool = True,
        include_peer_dependencies: bool = False,
    ):
        self._graph = graph
        self._plan = plan
        self._production = production
        self._include_peers = include_peer_dependencies
        self._keys: Dict[int, str] = {}

    def _sort_key(self, node_id: int) -> Tuple[str, str, str]:
        return self._graph.node(node_id).package.identity

    def _scope_key(self, scope: int) -> str:
        return TOP_SCOPE_KEY if scope == TOP_SCOPE else self._keys[scope]

    def _assign_keys(self) -> None:
        """Keys are scope paths, so they are unique and independent of node ids."""
        for root in self._graph.roots:
            node = self._graph.node(root)
            self._keys[root] = collection_attribute(node) if self._graph.is_collection else node.package.name
        for node in self._graph.nodes:
            if node.is_root or not self._plan.is_owner(node.id):
                continue
            placement = self._plan.decision(node.id)
            self._keys[node.id] = f"{self._scope_key(placement.scope)}/{node.package.name}"

    def _members(self, scope: int) -> List[int]:
        return sorted(self._plan.scope_members(scope), key=self._sort_key)

    def _reachable_top_members(self, root: int) -> List[int]:
        """Shared top-level owners reached from root through dependency edges."""
        found: Set[int] = set()
        visited = {root}
        stack = [root]
        while stack:
            current = stack.pop()
            for edge in self._graph.out_edges(current):
                if edge.spec.kind == DependencyKind.PEER and not self._include_peers:
                    continue
                target = self._plan.edge_target(edge)
                if target is None:
                    continue
                owner = target.owner
                if self._graph.node(owner).is_root:
                    continue
                if target.scope == TOP_SCOPE:
                    found.add(owner)
                if owner not in visited:
                    visited.add(owner)
                    stack.append(owner)
        return sorted(found, key=self._sort_key)

    def _dependency_ids(self, node_id: int) -> List[int]:
        members = self._members(node_id)
        if self._graph.node(node_id).is_root and self._plan.has_top_scope:
            held = {self._graph.node(m).package.identity for m in members}
            members = members + [
                m for m in self._reachable_top_members(node_id) if self._graph.node(m).package.identity not in held
            ]
        return members

    def _check_scopes(self, nodes: List[ExpressionNode]) -> None:
        by_scope: Dict[Optional[str], Dict[str, ResolvedPackage]] = {}
        for node in nodes:
            if node.root:
                continue
            seen = by_scope.setdefault(node.scope, {})
            other = seen.get(node.package.name)
            if other is not None and other.identity != node.package.identity:
                raise PlacementConflict(
                    f"Scope {node.scope} holds {other.name}@{other.version} and "
                    f"{node.package.name}@{node.package.version}"
                )
            seen[node.package.name] = node.package

    def _check_bundles(self, nodes: List[ExpressionNode]) -> None:
        """Every dependency list installs into one node_modules directory."""
        packages = {node.key: node.package for node in nodes}
        for node in nodes:
            seen: Dict[str, ResolvedPackage] = {}
            for key in node.dependencies:
                package = packages[key]
                other = seen.setdefault(package.name, package)
                if other.identity != package.identity:
                    raise PlacementConflict(
                        f"{node.key} bundles {other.name}@{other.version} and "
                        f"{package.name}@{package.version}"
                    )

    def generate_package_set(self) -> PackageSetExpr:
        self._assign_keys()
        records: Dict[int, ExpressionNode] = {}
        order: List[int] = []
        queue = list(self._graph.roots)
        while queue:
            node_id = queue.pop(0)
            if node_id in records:
                continue
            node = self._graph.node(node_id)
            placement = self._plan.decision(node_id)
            dependency_ids = self._dependency_ids(node_id)
            records[node_id] = ExpressionNode(
                key=self._keys[node_id],
                package=node.package,
                scope=None if node.is_root else self._scope_key(placement.scope),
                dependencies=tuple(self._keys[m] for m in dependency_ids),
                root=node.is_root,
                attribute=self._keys[node_id] if node.is_root else None,
            )
            order.append(node_id)
            queue.extend(dependency_ids)

        nodes = [records[i] for i in order]
        self._check_scopes(nodes)
        self._check_bundles(nodes)

        sources: Dict[str, ResolvedPackage] = {}
        for node in nodes:
            if not node.root:
                sources.setdefault(node.package.key, node.package)

        expr = PackageSetExpr(
            collection=self._graph.is_collection,
            nodes=tuple(nodes),
            roots=tuple(self._keys[r] for r in self._graph.roots),
            sources=tuple(sources[k] for k in sorted(sources)),
            production=self._production,
        )
        logger.info(
            "Generated %d expression nodes (%d roots, %d sources)",
            len(expr.nodes), len(expr.roots), len(expr.sources),
        )
        return expr


def generate(
    graph: DependencyGraph,
    plan: PlacementPlan,
    production: bool = True,
    include_peer_dependencies: bool = False,
    node_env_path: str = "./" + Constants.NODE_ENV_NIX_FILE,
    packages_path: str = "./" + Constants.OUTPUT_NIX_FILE,
    nodejs_attribute: str = Constants.NODEJS_ATTRIBUTE,
) -> Tuple[PackageSetExpr, CompositionExpr]:
    """Produce the package/collection expression and the composition expression.

    Args:
        node_env_path: Path of the static build recipe, relative to the composition file.
        packages_path: Path of the generated package expression, relative to the composition file.
    """
    package_set = ExpressionGenerator(graph, plan, production, include_peer_dependencies).generate_package_set()
    composition = CompositionExpr(
        node_env_path=node_env_path,
        packages_path=packages_path,
        packages=package_set,
        nodejs_attribute=nodejs_attribute,
    )
    return package_set, composition
