"""Tests for npm version picking."""

import pytest

from versioning.parser import parse_version_spec
from versioning.resolvers.npm import NpmVersionResolver


@pytest.fixture
def resolver():
    return NpmVersionResolver()


CANDIDATES = ["1.0.0", "1.5.0", "1.6.0-beta.1", "2.0.0", "2.1.0"]


class TestPick:
    """Version selection under npm rules."""

    def test_caret_range_picks_highest_match(self, resolver):
        """A caret range picks its highest stable match."""
        version, count, error = resolver.pick(parse_version_spec("^1.0.0"), CANDIDATES)
        assert version == "1.5.0"
        assert count == len(CANDIDATES)
        assert error is None

    def test_prereleases_skipped_unless_requested(self, resolver):
        """Prereleases match only ranges that name one."""
        version, _, _ = resolver.pick(parse_version_spec("^1.6.0-beta.0"), CANDIDATES)
        assert version == "1.6.0-beta.1"

    def test_hyphen_range(self, resolver):
        """Hyphen ranges include both ends."""
        version, _, _ = resolver.pick(parse_version_spec("1.0.0 - 1.5.0"), CANDIDATES)
        assert version == "1.5.0"

    def test_or_range(self, resolver):
        """Alternatives pick the highest match of any branch."""
        version, _, _ = resolver.pick(parse_version_spec("^1.0.0 || ^2.0.0"), CANDIDATES)
        assert version == "2.1.0"

    def test_exact(self, resolver):
        """An exact version is picked when published."""
        version, _, error = resolver.pick(parse_version_spec("2.0.0"), CANDIDATES)
        assert version == "2.0.0"
        assert error is None

    def test_exact_ignores_build_metadata(self, resolver):
        """Build metadata does not prevent an exact match."""
        version, _, _ = resolver.pick(parse_version_spec("1.2.3"), ["1.2.3+build.7"])
        assert version == "1.2.3+build.7"

    def test_exact_missing(self, resolver):
        """An unpublished exact version reports an error."""
        version, _, error = resolver.pick(parse_version_spec("3.0.0"), CANDIDATES)
        assert version is None
        assert "3.0.0" in error

    def test_latest_follows_dist_tag(self, resolver):
        """latest follows the dist-tag of that name."""
        version, _, _ = resolver.pick(parse_version_spec("latest"), CANDIDATES, {"latest": "1.5.0"})
        assert version == "1.5.0"

    def test_latest_without_tag_uses_highest_stable(self, resolver):
        """Without a latest tag the highest stable version is used."""
        version, _, _ = resolver.pick(parse_version_spec("latest"), CANDIDATES, {})
        assert version == "2.1.0"

    def test_named_tag(self, resolver):
        """Other tags resolve through dist-tags."""
        version, _, _ = resolver.pick(parse_version_spec("beta"), CANDIDATES, {"beta": "1.6.0-beta.1"})
        assert version == "1.6.0-beta.1"

    def test_unknown_tag(self, resolver):
        """A missing tag reports an error."""
        version, _, error = resolver.pick(parse_version_spec("beta"), CANDIDATES, {})
        assert version is None
        assert "beta" in error

    def test_no_match(self, resolver):
        """A range matching nothing reports an error."""
        version, _, error = resolver.pick(parse_version_spec("^5.0.0"), CANDIDATES)
        assert version is None
        assert error


class TestSatisfies:
    """Range membership checks used for ancestor reuse and peers."""

    @pytest.mark.parametrize("version,spec,expected", [
        ("1.2.3", "~1.2.0", True),
        ("1.3.0", "~1.2.0", False),
        ("18.2.0", "^18.0.0", True),
        ("17.0.2", "^18.0.0", False),
        ("1.0.0", "*", True),
        ("1.0.0-rc.1", "*", False),
        ("1.0.0", "not a range", False),
    ])
    def test_satisfies(self, resolver, version, spec, expected):
        """Versions are checked against ranges with npm semantics."""
        assert resolver.satisfies(version, spec) is expected
