"""Rendering of the abstract expressions into Nix syntax."""

from __future__ import annotations

from typing import Any, Dict

from constants import Constants
from expression.models import CompositionExpr, ExpressionNode, PackageSetExpr
from expression.nix import (
    NO_DEFAULT,
    NixAttrReference,
    NixAttrSet,
    NixExpr,
    NixFile,
    NixFunction,
    NixFunInvocation,
    NixHeader,
    NixImport,
    NixInherit,
    NixLet,
    NixMergeAttrs,
    to_nix,
)
from registry.models import ResolvedPackage, SourceKind

HEADER = f"This file has been generated by npm2nix {Constants.VERSION}. Do not edit!"

_SOURCES = NixExpr("sources")
_NODE_ENV = NixExpr("nodeEnv")


def derivation_name(name: str) -> str:
    """Scoped names are not valid derivation names; spell the separators out."""
    return name.replace("@", "_at_").replace("/", "_slash_")


def _src(package: ResolvedPackage) -> Any:
    source = package.source
    if source.kind == SourceKind.LOCAL:
        return NixFile(source.path)
    return NixFunInvocation(
        NixExpr("fetchurl"),
        NixAttrSet.of({"url": source.url, source.hash_algo: source.hash_value}),
    )


def _meta(package: ResolvedPackage) -> Dict[str, str]:
    meta = {}
    if package.meta.description:
        meta["description"] = package.meta.description
    if package.meta.homepage:
        meta["homepage"] = package.meta.homepage
    if package.meta.license:
        meta["license"] = package.meta.license
    return meta


def _source_entry(package: ResolvedPackage) -> NixAttrSet:
    return NixAttrSet.of({
        "name": derivation_name(package.name),
        "packageName": package.name,
        "version": package.version,
        "src": _src(package),
    })


def _reference(expr: PackageSetExpr, node: ExpressionNode) -> Any:
    """``sources."key"``, extended with the node's bundled dependencies if any."""
    ref = NixAttrReference(_SOURCES, node.source_key)
    if not node.dependencies:
        return ref
    return NixMergeAttrs(ref, NixAttrSet.of({"dependencies": _dependency_list(expr, node)}))


def _dependency_list(expr: PackageSetExpr, node: ExpressionNode) -> list:
    return [_reference(expr, expr.node(key)) for key in node.dependencies]


def _build_args(expr: PackageSetExpr, root: ExpressionNode) -> NixAttrSet:
    package = root.package
    return NixAttrSet.of({
        "name": derivation_name(package.name),
        "packageName": package.name,
        "version": package.version,
        "src": _src(package),
        "dependencies": _dependency_list(expr, root),
        "buildInputs": NixExpr("globalBuildInputs"),
        "meta": _meta(package),
        "production": expr.production,
        "bypassCache": expr.bypass_cache,
        "reconstructLock": expr.reconstruct_lock,
    })


def package_set_to_nix(expr: PackageSetExpr) -> NixHeader:
    """Build the Nix AST of the package (or collection) expression."""
    params = (
        ("nodeEnv", NO_DEFAULT),
        ("fetchurl", NO_DEFAULT),
        ("fetchgit", NO_DEFAULT),
        ("nix-gitignore", NO_DEFAULT),
        ("stdenv", NO_DEFAULT),
        ("lib", NO_DEFAULT),
        ("globalBuildInputs", []),
    )
    sources = NixAttrSet.of({pkg.key: _source_entry(pkg) for pkg in expr.sources})

    if expr.collection:
        body = NixAttrSet.of({
            root.attribute: NixFunInvocation(
                NixAttrReference(_NODE_ENV, "buildNodePackage"), _build_args(expr, root)
            )
            for root in expr.root_nodes()
        })
        let = NixLet(NixAttrSet.of({"sources": sources}), body)
    else:
        root = expr.root_nodes()[0]
        args = NixExpr("args")
        body = NixAttrSet.of({
            "args": args,
            "sources": _SOURCES,
            "tarball": NixFunInvocation(NixAttrReference(_NODE_ENV, "buildNodeSourceDist"), args),
            "package": NixFunInvocation(NixAttrReference(_NODE_ENV, "buildNodePackage"), args),
            "shell": NixFunInvocation(NixAttrReference(_NODE_ENV, "buildNodeShell"), args),
        })
        let = NixLet(NixAttrSet.of({"sources": sources, "args": _build_args(expr, root)}), body)

    return NixHeader((HEADER,), NixFunction(params, let))


def composition_to_nix(expr: CompositionExpr) -> NixHeader:
    """Build the Nix AST of the composition expression."""
    params = (
        ("pkgs", NixFunInvocation(NixImport(NixExpr("<nixpkgs>")), NixAttrSet.of(NixInherit(("system",))))),
        ("system", NixExpr("builtins.currentSystem")),
        ("nodejs", NixAttrReference(NixExpr("pkgs"), expr.nodejs_attribute)),
    )
    node_env = NixFunInvocation(
        NixImport(NixFile(expr.node_env_path)),
        NixAttrSet.of(
            NixInherit(("stdenv", "lib", "python3", "runCommand", "writeTextFile", "writeShellScript"), "pkgs"),
            NixInherit(("pkgs", "nodejs")),
            {"libtool": NixExpr("if pkgs.stdenv.isDarwin then pkgs.darwin.cctools else null")},
        ),
    )
    body = NixFunInvocation(
        NixImport(NixFile(expr.packages_path)),
        NixAttrSet.of(
            NixInherit(("fetchurl", "nix-gitignore", "stdenv", "lib", "fetchgit"), "pkgs"),
            NixInherit(("nodeEnv",)),
        ),
    )
    return NixHeader((HEADER,), NixFunction(params, NixLet(NixAttrSet.of({"nodeEnv": node_env}), body)))


def render_package_set(expr: PackageSetExpr) -> str:
    return to_nix(package_set_to_nix(expr))


def render_composition(expr: CompositionExpr) -> str:
    return to_nix(composition_to_nix(expr))
