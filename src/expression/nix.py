"""Minimal Nix expression AST and pretty-printer.

Python scalars map to Nix scalars (str, bool, int, None -> null); lists and
dicts map to lists and attribute sets. The classes below cover the remaining
constructs the generated files use.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

_INDENT = "  "
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_'-]*$")
_KEYWORDS = {"if", "then", "else", "assert", "with", "let", "in", "rec", "inherit", "or"}


@dataclass(frozen=True)
class NixFile:
    """Path literal, e.g. ``./.`` or ``../lib``."""
    path: str


@dataclass(frozen=True)
class NixExpr:
    """Verbatim Nix text."""
    text: str


@dataclass(frozen=True)
class NixAttrReference:
    """``base.attr`` with the attribute quoted when needed."""
    base: Any
    attr: str


@dataclass(frozen=True)
class NixFunInvocation:
    """``fn arg``."""
    fn: Any
    arg: Any


@dataclass(frozen=True)
class NixImport:
    """``import path``."""
    path: Any


@dataclass(frozen=True)
class NixMergeAttrs:
    """``left // right``."""
    left: Any
    right: Any


@dataclass(frozen=True)
class NixInherit:
    """``inherit (source) names;`` inside an attribute set or let block."""
    names: Tuple[str, ...]
    source: Optional[str] = None


@dataclass(frozen=True)
class NixAttrSet:
    """Attribute set preserving insertion order; entries may include NixInherit."""
    entries: Tuple[Tuple[Optional[str], Any], ...] = ()

    @classmethod
    def of(cls, *items: Any, **kwargs: Any) -> "NixAttrSet":
        entries: List[Tuple[Optional[str], Any]] = []
        for item in items:
            if isinstance(item, NixInherit):
                entries.append((None, item))
            else:
                entries.extend(item.items() if isinstance(item, dict) else item)
        entries.extend(kwargs.items())
        return cls(tuple(entries))


@dataclass(frozen=True)
class NixFunction:
    """``{a, b ? default}: body``; parameters are (name, default or NO_DEFAULT)."""
    params: Tuple[Tuple[str, Any], ...]
    body: Any


@dataclass(frozen=True)
class NixLet:
    """``let bindings in body``."""
    bindings: NixAttrSet
    body: Any


@dataclass(frozen=True)
class NixHeader:
    """Comment lines followed by a blank line and an expression."""
    comment: Sequence[str]
    body: Any


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT = _NoDefault()


def escape_string(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("${", "\\${")
    )
    return f'"{escaped}"'


def attr_name(name: str) -> str:
    if _IDENTIFIER_RE.match(name) and name not in _KEYWORDS:
        return name
    return escape_string(name)


def _is_simple(value: Any) -> bool:
    """Values that never need parentheses as a function argument or list element."""
    return isinstance(value, (str, bool, int, float, NixExpr, NixFile, NixAttrReference, NixAttrSet, list, tuple, dict)) or value is None


def render(value: Any, level: int = 0) -> str:
    """Render value as Nix text; nested lines are indented relative to level."""
    pad = _INDENT * level
    inner = _INDENT * (level + 1)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return escape_string(value)
    if isinstance(value, NixExpr):
        return value.text
    if isinstance(value, NixFile):
        return value.path
    if isinstance(value, dict):
        return render(NixAttrSet.of(value), level)
    if isinstance(value, (list, tuple)):
        if not value:
            return "[]"
        items = []
        for item in value:
            text = render(item, level + 1)
            if not _is_simple(item):
                text = f"({text})"
            items.append(f"{inner}{text}")
        return "[\n" + "\n".join(items) + f"\n{pad}]"
    if isinstance(value, NixAttrSet):
        if not value.entries:
            return "{}"
        lines = []
        for key, item in value.entries:
            if isinstance(item, NixInherit):
                lines.append(f"{inner}{_render_inherit(item)}")
            else:
                lines.append(f"{inner}{attr_name(key)} = {render(item, level + 1)};")
        return "{\n" + "\n".join(lines) + f"\n{pad}}}"
    if isinstance(value, NixAttrReference):
        base = render(value.base, level)
        if not _is_simple(value.base):
            base = f"({base})"
        return f"{base}.{attr_name(value.attr)}"
    if isinstance(value, NixFunInvocation):
        fn = render(value.fn, level)
        if not isinstance(value.fn, (NixExpr, NixAttrReference, NixImport, NixFunInvocation)):
            fn = f"({fn})"
        arg = render(value.arg, level)
        if not _is_simple(value.arg):
            arg = f"({arg})"
        return f"{fn} {arg}"
    if isinstance(value, NixImport):
        path = render(value.path, level)
        return f"import {path}"
    if isinstance(value, NixMergeAttrs):
        return f"{render(value.left, level)} // {render(value.right, level)}"
    if isinstance(value, NixFunction):
        params = []
        for name, default in value.params:
            if default is NO_DEFAULT:
                params.append(name)
            else:
                params.append(f"{name} ? {render(default, level + 1)}")
        return "{" + ", ".join(params) + "}:\n\n" + pad + render(value.body, level)
    if isinstance(value, NixLet):
        lines = []
        for key, item in value.bindings.entries:
            if isinstance(item, NixInherit):
                lines.append(f"{inner}{_render_inherit(item)}")
            else:
                lines.append(f"{inner}{attr_name(key)} = {render(item, level + 1)};")
        return "let\n" + "\n".join(lines) + f"\n{pad}in\n{pad}" + render(value.body, level)
    if isinstance(value, NixHeader):
        comment = "\n".join(f"# {line}" for line in value.comment)
        return f"{comment}\n\n{render(value.body, level)}"
    raise TypeError(f"Cannot render {type(value).__name__} as Nix")


def _render_inherit(item: NixInherit) -> str:
    source = f"({item.source}) " if item.source else ""
    return f"inherit {source}{' '.join(item.names)};"


def to_nix(value: Any) -> str:
    """Render a complete file: expression text plus a trailing newline."""
    return render(value, 0) + "\n"
