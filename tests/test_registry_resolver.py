"""Tests for the registry resolver."""

import asyncio
import json

import pytest

from errors import MalformedManifest, PeerConstraintUnsatisfied, RegistryUnavailable, UnresolvableVersion
from registry.models import SourceKind, integrity_to_hash
from registry.resolver import RegistryResolver, nix_relative_path
from registry.source import FixtureRegistrySource

from npm_fixtures import fixture_source, manifest


def _run(resolver, coro):
    async def go():
        try:
            return await coro
        finally:
            await resolver.close()
    return asyncio.run(go())


class TestResolve:
    """Range resolution against a fixture registry."""

    def test_picks_highest_satisfying_version(self):
        """The highest version in range is picked with its tarball source."""
        source = fixture_source(manifest("a", "1.0.0"), manifest("a", "1.4.2"), manifest("a", "2.0.0"))
        resolver = RegistryResolver(source)
        pkg = _run(resolver, resolver.resolve("a", "^1.0.0"))
        assert pkg.name == "a"
        assert pkg.version == "1.4.2"
        assert pkg.source.kind == SourceKind.REGISTRY
        assert pkg.source.url == "https://registry.npmjs.org/a/-/a-1.4.2.tgz"
        assert pkg.source.hash_algo == "sha512"

    def test_manifest_dependencies_are_carried(self):
        """Dependencies and metadata of the picked manifest are kept."""
        source = fixture_source(
            manifest("a", "1.0.0", dependencies={"b": "^2.0.0"}, peer={"react": "^18"},
                     description="A package", license="MIT"),
        )
        resolver = RegistryResolver(source)
        pkg = _run(resolver, resolver.resolve("a", "1.0.0"))
        assert [s.specifier for s in pkg.dependencies] == ["b@^2.0.0"]
        assert [s.specifier for s in pkg.peer_dependencies] == ["react@^18"]
        assert pkg.meta.description == "A package"
        assert pkg.meta.license == "MIT"

    def test_concurrent_lookups_share_one_fetch(self):
        """Simultaneous lookups of one name fetch its packument once."""
        source = fixture_source(manifest("a", "1.0.0"), manifest("a", "1.1.0"), delays={"a": 0.01})
        resolver = RegistryResolver(source)

        async def go():
            return await asyncio.gather(
                resolver.resolve("a", "^1.0.0"),
                resolver.resolve("a", "^1.0.0"),
                resolver.resolve("a", "~1.0.0"),
            )

        first, second, third = _run(resolver, go())
        assert first is second
        assert third.version == "1.0.0"
        assert source.fetch_counts == {"a": 1}

    def test_cache_keyed_by_name_and_range(self):
        """Results are cached per name and range."""
        source = fixture_source(manifest("a", "1.0.0"))
        resolver = RegistryResolver(source)

        async def go():
            await resolver.resolve("a", "^1.0.0")
            await resolver.resolve("a", "^1.0.0")
            await resolver.resolve("a", "1.0.0")
            return resolver.cached_count

        assert _run(resolver, go()) == 2

    def test_unknown_package(self):
        """A name missing from the registry cannot be resolved."""
        resolver = RegistryResolver(fixture_source(manifest("a", "1.0.0")))
        with pytest.raises(UnresolvableVersion):
            _run(resolver, resolver.resolve("ghost", "^1.0.0"))

    def test_unsatisfiable_range(self):
        """The error names the range that matched nothing."""
        resolver = RegistryResolver(fixture_source(manifest("a", "1.0.0")))
        with pytest.raises(UnresolvableVersion) as exc:
            _run(resolver, resolver.resolve("a", "^2.0.0"))
        assert "^2.0.0" in str(exc.value)

    def test_git_specifiers_are_unsupported(self):
        """Git specifiers are reported as unresolvable."""
        resolver = RegistryResolver(fixture_source(manifest("a", "1.0.0")))
        with pytest.raises(UnresolvableVersion):
            _run(resolver, resolver.resolve("a", "git+https://example.com/a.git"))

    def test_timeout_is_registry_unavailable(self):
        """A lookup slower than the timeout fails as unavailable."""
        source = fixture_source(manifest("slow", "1.0.0"), delays={"slow": 0.5})
        resolver = RegistryResolver(source, timeout=0.01)
        with pytest.raises(RegistryUnavailable):
            _run(resolver, resolver.resolve("slow", "^1.0.0"))

    def test_manifest_without_dist_is_malformed(self):
        """A version without tarball details is malformed."""
        broken = manifest("a", "1.0.0")
        del broken["dist"]
        resolver = RegistryResolver(FixtureRegistrySource({"a": {"1.0.0": broken}}))
        with pytest.raises(MalformedManifest):
            _run(resolver, resolver.resolve("a", "1.0.0"))


class TestPeers:
    """Peer constraint checks."""

    def test_conflicting_peer_in_context(self):
        """A visible version outside the peer range is rejected."""
        source = fixture_source(manifest("plugin", "1.0.0", peer={"react": "^18.0.0"}))
        resolver = RegistryResolver(source)
        with pytest.raises(PeerConstraintUnsatisfied):
            _run(resolver, resolver.resolve("plugin", "^1.0.0", peer_context={"react": "17.0.2"}))

    def test_satisfied_or_absent_peer(self):
        """Satisfied or missing peers are accepted."""
        source = fixture_source(manifest("plugin", "1.0.0", peer={"react": "^18.0.0"}))
        resolver = RegistryResolver(source)

        async def go():
            await resolver.resolve("plugin", "^1.0.0", peer_context={"react": "18.2.0"})
            return await resolver.resolve("plugin", "^1.0.0", peer_context={"vue": "3.0.0"})

        assert _run(resolver, go()).version == "1.0.0"


class TestLocal:
    """Local directory specifiers."""

    def test_resolves_relative_directory(self, tmp_path):
        """A file specifier resolves to a path relative to the output."""
        lib = tmp_path / "lib"
        lib.mkdir()
        (lib / "package.json").write_text(json.dumps({"name": "lib", "version": "0.1.0"}), encoding="utf-8")
        out = tmp_path / "out"
        out.mkdir()
        resolver = RegistryResolver(fixture_source(), base_dir=str(tmp_path), output_dir=str(out))
        pkg = _run(resolver, resolver.resolve("lib", "file:./lib"))
        assert pkg.version == "0.1.0"
        assert pkg.source.kind == SourceKind.LOCAL
        assert pkg.source.path == "../lib"

    def test_missing_directory(self, tmp_path):
        """A directory without a manifest cannot be resolved."""
        resolver = RegistryResolver(fixture_source(), base_dir=str(tmp_path))
        with pytest.raises(UnresolvableVersion):
            _run(resolver, resolver.resolve("lib", "./missing"))


class TestHelpers:
    """Small helpers of the registry layer."""

    def test_nix_relative_path(self, tmp_path):
        """Relative paths always carry a leading ./ for Nix."""
        assert nix_relative_path(str(tmp_path), str(tmp_path)) == "./."
        assert nix_relative_path(str(tmp_path / "a"), str(tmp_path)) == "./a"
        assert nix_relative_path(str(tmp_path), str(tmp_path / "a")) == "./.."

    def test_integrity_prefers_strongest_hash(self):
        """The strongest hash of an integrity string wins."""
        dist = {"integrity": "sha1-AAAA sha512-QUJD", "shasum": "abc"}
        assert integrity_to_hash(dist) == ("sha512", "QUJD")

    def test_integrity_falls_back_to_shasum(self):
        """The legacy shasum is used when no integrity is present."""
        assert integrity_to_hash({"shasum": "deadbeef"}) == ("sha1", "deadbeef")

    def test_integrity_missing(self):
        """A dist entry without any hash is malformed."""
        with pytest.raises(MalformedManifest):
            integrity_to_hash({})
