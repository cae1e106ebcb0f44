"""npm registry package.

This package provides access to npm-compatible registries:
- client.py: packument retrieval over HTTP with aiohttp
"""

from .client import NpmRegistrySource, packument_url  # noqa: F401

__all__ = [
    "NpmRegistrySource",
    "packument_url",
]
