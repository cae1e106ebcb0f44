"""Tests for the Nix AST pretty-printer."""

import pytest

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
    attr_name,
    escape_string,
    render,
    to_nix,
)
from expression.render import derivation_name


class TestScalars:
    """Primitive values."""

    @pytest.mark.parametrize("value,text", [
        (None, "null"),
        (True, "true"),
        (False, "false"),
        (3, "3"),
        ("plain", '"plain"'),
        (NixFile("./."), "./."),
        (NixExpr("builtins.currentSystem"), "builtins.currentSystem"),
    ])
    def test_render(self, value, text):
        """Scalars render as Nix literals."""
        assert render(value) == text

    def test_escape_string(self):
        """Quotes, backslashes, interpolation and newlines are escaped."""
        assert escape_string('a "b" \\ ${c}\n') == '"a \\"b\\" \\\\ \\${c}\\n"'

    @pytest.mark.parametrize("name,text", [
        ("lodash", "lodash"),
        ("nix-gitignore", "nix-gitignore"),
        ("lodash-4.17.21", '"lodash-4.17.21"'),
        ("@types/node", '"@types/node"'),
        ("in", '"in"'),
    ])
    def test_attr_name(self, name, text):
        """Attribute names are quoted only when needed."""
        assert attr_name(name) == text

    def test_derivation_name(self):
        """Scoped names are rewritten into derivation-safe names."""
        assert derivation_name("@babel/core") == "_at_babel_slash_core"
        assert derivation_name("lodash") == "lodash"


class TestCompound:
    """Lists, attribute sets and expressions."""

    def test_empty_collections(self):
        """Empty lists and sets render on one line."""
        assert render([]) == "[]"
        assert render({}) == "{}"

    def test_attribute_set(self):
        """Attribute sets render one binding per line."""
        attrs = NixAttrSet.of(NixInherit(("fetchurl",), "pkgs"), {"name": "a", "deps": [1, 2]})
        assert render(attrs) == (
            "{\n"
            "  inherit (pkgs) fetchurl;\n"
            '  name = "a";\n'
            "  deps = [\n"
            "    1\n"
            "    2\n"
            "  ];\n"
            "}"
        )

    def test_list_parenthesizes_complex_items(self):
        """List items that are not atoms are wrapped in parentheses."""
        sources = NixExpr("sources")
        merged = NixMergeAttrs(NixAttrReference(sources, "a-1.0.0"), NixAttrSet.of({"dependencies": []}))
        assert render([NixAttrReference(sources, "b-1.0.0"), merged]) == (
            "[\n"
            '  sources."b-1.0.0"\n'
            '  (sources."a-1.0.0" // {\n'
            "    dependencies = [];\n"
            "  })\n"
            "]"
        )

    def test_function_invocation(self):
        """Nested invocations are parenthesized."""
        call = NixFunInvocation(NixImport(NixFile("./node-env.nix")), NixAttrSet.of(NixInherit(("pkgs",))))
        assert render(call) == "import ./node-env.nix {\n  inherit pkgs;\n}"
        nested = NixFunInvocation(NixExpr("f"), NixFunInvocation(NixExpr("g"), 1))
        assert render(nested) == "f (g 1)"

    def test_function_and_let(self):
        """Function headers render defaults and the let body."""
        fn = NixFunction(
            (("a", NO_DEFAULT), ("b", [])),
            NixLet(NixAttrSet.of({"x": 1}), NixExpr("x")),
        )
        assert render(fn) == "{a, b ? []}:\n\nlet\n  x = 1;\nin\nx"

    def test_header_and_trailing_newline(self):
        """File output carries its header comment and ends with a newline."""
        assert to_nix(NixHeader(("generated",), NixExpr("null"))) == "# generated\n\nnull\n"

    def test_unknown_value(self):
        """Values without a Nix form raise TypeError."""
        with pytest.raises(TypeError):
            render(object())
