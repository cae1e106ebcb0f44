"""Dependency graph builder.

Expands root manifests breadth-first. Each frontier is handled in three
steps: a requirement satisfied by the nearest visible package of its name
becomes a back edge when that package is an ancestor; the rest are resolved
concurrently through the registry resolver; results are then applied in
lexicographic order so node ids, edges and downstream output do not depend
on lookup completion order. This coroutine is the only writer of graph state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from errors import MalformedManifest, Npm2NixError, UnresolvableVersion
from common.logging_utils import extra_context, is_debug_enabled, Timer
from graph.models import DependencyGraph, Edge, GraphNode
from registry.models import ResolvedPackage, SourceDescriptor, SourceKind, resolved_from_manifest
from registry.resolver import RegistryResolver, nix_relative_path
from versioning.models import DependencyKind, PackageSpec
from versioning.parser import parse_specifier

logger = logging.getLogger(__name__)

# Later kinds override earlier ones when a name is declared twice.
_KIND_PRECEDENCE = (
    DependencyKind.DEV,
    DependencyKind.PEER,
    DependencyKind.NORMAL,
    DependencyKind.OPTIONAL,
)

# A package may reappear below itself once when a different version of its
# name shadows the original occurrence.
_MAX_CHAIN_COPIES = 2


@dataclass(frozen=True)
class _Request:
    parent: Optional[int]
    spec: PackageSpec
    path: Tuple[str, ...]
    peer_context: Optional[Mapping[str, str]]
    base_dir: Optional[str]


class DependencyGraphBuilder:
    """Builds a DependencyGraph for one manifest or specifier list."""

    def __init__(
        self,
        resolver: RegistryResolver,
        production: bool = True,
        include_peer_dependencies: bool = False,
        base_dir: str = ".",
        output_dir: str = ".",
    ):
        self._resolver = resolver
        self._production = production
        self._include_peers = include_peer_dependencies
        self._base_dir = base_dir
        self._output_dir = output_dir
        self._nodes: List[GraphNode] = []
        self._edges: List[Edge] = []
        self._children: Dict[int, Dict[str, int]] = {}

    async def build(self, roots: Union[dict, list]) -> DependencyGraph:
        """Build the complete graph, or raise the first failure encountered.

        Args:
            roots: A package manifest object, or a list of ``name@range``
                specifiers / PackageSpec instances.

        Raises:
            MalformedManifest: If roots is neither an object nor an array.
            Npm2NixError: Any resolution failure, annotated with its dependency path.
        """
        self._nodes, self._edges, self._children = [], [], {}
        with Timer() as timer:
            if isinstance(roots, dict):
                collection = False
                frontier = [self._add_manifest_root(roots)]
            elif isinstance(roots, list):
                collection = True
                frontier = await self._add_spec_roots(roots)
            else:
                raise MalformedManifest("The provided JSON must be an object or an array")
            root_ids = list(frontier)

            level = 0
            while frontier:
                if is_debug_enabled(logger):
                    logger.debug(
                        "Expanding frontier",
                        extra=extra_context(
                            event="expand", component="graph_builder", depth=level, count=len(frontier)
                        ),
                    )
                frontier = await self._expand(frontier)
                level += 1

        logger.info(
            "Dependency graph built: %d nodes, %d edges in %.0f ms",
            len(self._nodes), len(self._edges), timer.duration_ms(),
        )
        return DependencyGraph(self._nodes, self._edges, root_ids, collection)

    def _add_node(self, package: ResolvedPackage, parent: Optional[int], request: Optional[PackageSpec]) -> int:
        node_id = len(self._nodes)
        if parent is None:
            depth, root, path = 0, node_id, (package.name,)
        else:
            p = self._nodes[parent]
            depth, root, path = p.depth + 1, p.root, p.path + (package.name,)
        self._nodes.append(
            GraphNode(id=node_id, package=package, parent=parent, depth=depth, root=root, path=path, request=request)
        )
        self._children[node_id] = {}
        if parent is not None:
            self._children[parent][package.name] = node_id
        return node_id

    def _add_manifest_root(self, manifest: dict) -> int:
        manifest = dict(manifest)
        manifest.setdefault("version", "0.0.0")
        source = SourceDescriptor(
            kind=SourceKind.LOCAL,
            path=nix_relative_path(self._base_dir, self._output_dir),
        )
        package = resolved_from_manifest(manifest, source)
        return self._add_node(package, None, None)

    async def _add_spec_roots(self, tokens: Sequence) -> List[int]:
        specs: List[PackageSpec] = []
        seen = set()
        for token in tokens:
            spec = token if isinstance(token, PackageSpec) else parse_specifier(token)
            if spec.specifier in seen:
                logger.warning("Ignoring duplicate specifier %s", spec.specifier)
                continue
            seen.add(spec.specifier)
            specs.append(spec)

        requests = [_Request(None, spec, (), None, None) for spec in specs]
        resolved = await self._resolve_all(requests)
        return [
            self._add_node(package, None, spec)
            for spec, package in zip(specs, resolved)
            if package is not None
        ]

    def dependency_specs(self, node: GraphNode) -> List[PackageSpec]:
        """Requirements of a node to expand, merged by name and sorted."""
        enabled = {
            DependencyKind.NORMAL: True,
            DependencyKind.OPTIONAL: True,
            DependencyKind.PEER: self._include_peers,
            # npm never installs the development dependencies of dependencies
            DependencyKind.DEV: (
                not self._production and node.parent is None and node.request is None
            ),
        }
        merged: Dict[str, PackageSpec] = {}
        for kind in _KIND_PRECEDENCE:
            if enabled[kind]:
                for spec in node.package.specs(kind):
                    merged[spec.name] = spec
        return [merged[name] for name in sorted(merged)]

    def _chain(self, node_id: int) -> List[int]:
        chain = [node_id]
        parent = self._nodes[node_id].parent
        while parent is not None:
            chain.append(parent)
            parent = self._nodes[parent].parent
        return chain

    def _nearest_visible(self, node_id: int, name: str) -> Optional[int]:
        """Node a lookup of name from the dependencies of node_id finds first."""
        for candidate in self._chain(node_id):
            child = self._children[candidate].get(name)
            if child is not None:
                return child
            if self._nodes[candidate].name == name:
                return candidate
        return None

    def _visible_ancestor(self, node_id: int, name: str) -> Optional[int]:
        """Nearest visible package of that name, if it is node_id or one of its ancestors."""
        visible = self._nearest_visible(node_id, name)
        if visible is not None and visible in self._chain(node_id):
            return visible
        return None

    def _find_compatible_ancestor(self, node_id: int, spec: PackageSpec) -> Optional[int]:
        ancestor = self._visible_ancestor(node_id, spec.name)
        if ancestor is not None and self._resolver.satisfies(self._nodes[ancestor].package.version, spec.range):
            return ancestor
        return None

    def _find_identical_ancestor(self, node_id: int, package: ResolvedPackage) -> Optional[int]:
        ancestor = self._visible_ancestor(node_id, package.name)
        if ancestor is not None and self._nodes[ancestor].package.identity == package.identity:
            return ancestor
        copies = sum(1 for c in self._chain(node_id) if self._nodes[c].package.identity == package.identity)
        if copies >= _MAX_CHAIN_COPIES:
            # Shadowed on every level; nesting another copy would never end
            raise UnresolvableVersion(
                f"{package.name}@{package.version} is shadowed by another version on its own dependency chain",
                path=self._nodes[node_id].path + (package.name,),
            )
        return None

    def _scope_context(self, node_id: int) -> Dict[str, str]:
        """Names -> versions visible to the dependencies of node_id, nearest first."""
        context: Dict[str, str] = {}
        for candidate in self._chain(node_id):
            for name, child in self._children[candidate].items():
                context.setdefault(name, self._nodes[child].package.version)
            pkg = self._nodes[candidate].package
            context.setdefault(pkg.name, pkg.version)
        return context

    async def _expand(self, frontier: List[int]) -> List[int]:
        plans: Dict[int, List[Tuple[PackageSpec, Optional[int], Optional[int]]]] = {}
        requests: List[_Request] = []
        for node_id in frontier:
            node = self._nodes[node_id]
            context = self._scope_context(node_id) if self._include_peers else None
            base_dir = self._resolver.base_dir_for(node.package) if node.package.source.kind == SourceKind.LOCAL else None
            entries = []
            for spec in self.dependency_specs(node):
                ancestor = self._find_compatible_ancestor(node_id, spec)
                if ancestor is not None:
                    entries.append((spec, ancestor, None))
                    continue
                entries.append((spec, None, len(requests)))
                requests.append(_Request(node_id, spec, node.path, context, base_dir))
            plans[node_id] = entries

        resolved = await self._resolve_all(requests)

        next_frontier: List[int] = []
        for node_id in frontier:
            new_children = []
            for spec, ancestor, index in plans[node_id]:
                if ancestor is None:
                    package = resolved[index]
                    if package is None:
                        continue  # optional dependency that could not be resolved
                    ancestor = self._find_identical_ancestor(node_id, package)
                if ancestor is not None:
                    self._edges.append(Edge(node_id, ancestor, spec, back=True))
                    continue
                child = self._add_node(package, node_id, spec)
                self._edges.append(Edge(node_id, child, spec))
                new_children.append(child)
            if self._include_peers:
                self._check_sibling_peers(node_id, new_children)
            next_frontier.extend(new_children)
        return next_frontier

    def _check_sibling_peers(self, node_id: int, children: List[int]) -> None:
        """Peers of new children must also agree with their new siblings."""
        if not children:
            return
        context = self._scope_context(node_id)
        for child in children:
            node = self._nodes[child]
            try:
                self._resolver.check_peers(node.package, context)
            except Npm2NixError as exc:
                raise exc.with_path(node.path)

    async def _resolve_one(self, request: _Request) -> Optional[ResolvedPackage]:
        spec = request.spec
        try:
            return await self._resolver.resolve(
                spec.name, spec.range, request.peer_context, base_dir=request.base_dir
            )
        except UnresolvableVersion as exc:
            if spec.kind == DependencyKind.OPTIONAL:
                logger.warning("Skipping optional dependency %s: %s", spec.specifier, exc.message)
                return None
            raise exc.with_path(request.path + (spec.name,))
        except Npm2NixError as exc:
            raise exc.with_path(request.path + (spec.name,))

    async def _resolve_all(self, requests: List[_Request]) -> List[Optional[ResolvedPackage]]:
        """Resolve requests concurrently; the first failure cancels the rest."""
        if not requests:
            return []
        tasks = [asyncio.ensure_future(self._resolve_one(r)) for r in requests]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            failed = [t for t in tasks if t in done and not t.cancelled() and t.exception() is not None]
            if failed:
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                raise failed[0].exception()
            return [t.result() for t in tasks]
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()


async def build_graph(
    resolver: RegistryResolver,
    roots: Union[dict, list],
    production: bool = True,
    include_peer_dependencies: bool = False,
    base_dir: str = ".",
    output_dir: str = ".",
) -> DependencyGraph:
    """Convenience wrapper around DependencyGraphBuilder.build."""
    builder = DependencyGraphBuilder(
        resolver,
        production=production,
        include_peer_dependencies=include_peer_dependencies,
        base_dir=base_dir,
        output_dir=output_dir,
    )
    return await builder.build(roots)
