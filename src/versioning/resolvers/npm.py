"""NPM version resolver using semantic versioning."""

import re
from typing import Dict, List, Optional, Tuple

import semantic_version

from ..models import ResolutionMode, VersionSpec


class NpmVersionResolver:
    """Selects a concrete version from a packument's version list under npm rules."""

    def pick(
        self,
        spec: VersionSpec,
        candidates: List[str],
        dist_tags: Optional[Dict[str, str]] = None,
    ) -> Tuple[Optional[str], int, Optional[str]]:
        """Apply npm semver rules to select a version.

        Args:
            spec: Classified version range
            candidates: Available version strings
            dist_tags: The packument's ``dist-tags`` mapping

        Returns:
            Tuple of (resolved_version, candidate_count, error_message)
        """
        tags = dist_tags or {}
        if spec.mode == ResolutionMode.LATEST:
            latest = tags.get("latest")
            if latest and latest in candidates:
                return latest, len(candidates), None
            return self._pick_latest(candidates)
        if spec.mode == ResolutionMode.TAG:
            tagged = tags.get(spec.raw)
            if tagged and tagged in candidates:
                return tagged, len(candidates), None
            return None, len(candidates), f"No dist-tag '{spec.raw}'"
        if spec.mode == ResolutionMode.EXACT:
            return self._pick_exact(spec.raw, candidates)
        if spec.mode == ResolutionMode.RANGE:
            return self._pick_range(spec.raw, candidates, spec.include_prerelease)
        return None, len(candidates), "Unsupported resolution mode"

    def _pick_latest(self, candidates: List[str]) -> Tuple[Optional[str], int, Optional[str]]:
        """Pick the highest stable version from candidates."""
        if not candidates:
            return None, 0, "No versions available"

        parsed_versions = []
        for v in candidates:
            try:
                parsed_versions.append(semantic_version.Version(v))
            except ValueError:
                continue  # Skip invalid versions

        if not parsed_versions:
            return None, len(candidates), "No valid semantic versions found"

        stable = [v for v in parsed_versions if not v.prerelease]
        pool = stable or parsed_versions
        pool.sort(reverse=True)
        return str(pool[0]), len(candidates), None

    def _pick_exact(self, version: str, candidates: List[str]) -> Tuple[Optional[str], int, Optional[str]]:
        """Check if exact version exists in candidates."""
        wanted = version[1:] if version[:1] in ("v", "=") else version
        if wanted in candidates:
            return wanted, len(candidates), None
        # Build metadata never takes part in npm version equality
        try:
            target = semantic_version.Version(wanted)
        except ValueError:
            return None, len(candidates), f"Version {version} not found"
        for v in candidates:
            try:
                parsed = semantic_version.Version(v)
            except ValueError:
                continue
            if parsed.truncate("prerelease") == target.truncate("prerelease"):
                return v, len(candidates), None
        return None, len(candidates), f"Version {version} not found"

    def _normalize_spec(self, spec_str: str) -> str:
        """Normalize npm range syntax (hyphen, x-ranges) into SimpleSpec-compatible form."""
        s = spec_str.strip()

        # Hyphen ranges: "1.2.3 - 1.4.5" => ">=1.2.3, <=1.4.5"
        m = re.match(r'^\s*([0-9A-Za-z\.\-\+]+)\s+-\s+([0-9A-Za-z\.\-\+]+)\s*$', s)
        if m:
            left, right = m.group(1), m.group(2)
            return f">={left},<={right}"

        # Comparators separated by whitespace after the operator: ">= 1.2.3 < 2"
        s2 = re.sub(r'(>=|<=|>|<|=)\s+', r'\1', s)
        if s2 != s:
            return ",".join(s2.split())

        return spec_str

    def _parse_range(self, spec_str: str):
        """Prefer NpmSpec, which understands ^, ~, hyphen ranges, x-ranges and ``||``."""
        try:
            return semantic_version.NpmSpec(spec_str)
        except ValueError:
            norm = self._normalize_spec(spec_str)
            try:
                return semantic_version.NpmSpec(norm)
            except ValueError:
                return semantic_version.SimpleSpec(norm)

    def satisfies(self, version: str, spec_str: str) -> bool:
        """Return True when version matches an npm range; unknown syntax never matches."""
        spec = spec_str.strip()
        if spec in ("", "*", "latest", "x", "X"):
            try:
                return not semantic_version.Version(version).prerelease
            except ValueError:
                return False
        try:
            matcher = self._parse_range(spec)
            return matcher.match(semantic_version.Version(version))
        except ValueError:
            return False

    def _pick_range(
        self, spec_str: str, candidates: List[str], include_prerelease: bool
    ) -> Tuple[Optional[str], int, Optional[str]]:
        """Apply semver range and pick highest matching version."""
        try:
            npm_spec = self._parse_range(spec_str)
        except ValueError as e:
            return None, len(candidates), f"Invalid semver spec: {str(e)}"

        matching_versions = []
        for v in candidates:
            try:
                ver = semantic_version.Version(v)
            except ValueError:
                continue  # Skip invalid versions
            # Skip pre-releases unless the range itself names one
            if ver.prerelease and not include_prerelease:
                continue
            if npm_spec.match(ver):
                matching_versions.append(ver)

        if not matching_versions:
            return None, len(candidates), f"No versions match spec '{spec_str}'"

        # Sort and pick highest
        matching_versions.sort(reverse=True)
        return str(matching_versions[0]), len(candidates), None
