"""Runtime configuration for the CLI.

Settings are merged from four layers, highest precedence first: command line
flags, the YAML configuration file, environment variables and the defaults on
``Constants``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

import yaml

from constants import Constants

logger = logging.getLogger(__name__)


@dataclass
class GenerationConfig:
    """Options consumed by the generation pipeline."""

    production: bool = True
    include_peer_dependencies: bool = False
    flatten: bool = False
    registry_url: str = Constants.REGISTRY_URL_NPM
    registry_fixtures: Optional[str] = None
    concurrency: int = Constants.MAX_CONCURRENCY
    timeout: float = Constants.REQUEST_TIMEOUT
    input: str = Constants.PACKAGE_JSON_FILE
    output: str = Constants.OUTPUT_NIX_FILE
    composition: str = Constants.COMPOSITION_NIX_FILE
    node_env: str = Constants.NODE_ENV_NIX_FILE
    nodejs_attribute: str = Constants.NODEJS_ATTRIBUTE

    @classmethod
    def keys(cls):
        return [f.name for f in fields(cls)]


# Accepted spellings in the config file, mapped to GenerationConfig fields
_FILE_ALIASES = {
    "development": None,
    "include-peer-dependencies": "include_peer_dependencies",
    "registry": "registry_url",
    "registry-fixtures": "registry_fixtures",
    "node-env": "node_env",
    "nodejs": "nodejs_attribute",
}


def load_config_file(config_path: Optional[str]) -> Dict[str, Any]:
    """Load the ``npm2nix`` settings from a YAML (or JSON) file.

    Args:
        config_path: Path to the configuration file.

    Returns:
        dict: Recognised settings keyed by GenerationConfig field name.

    Raises:
        yaml.YAMLError: If the file is not valid YAML.
    """
    if not config_path:
        return {}
    if not os.path.isfile(config_path):
        logger.warning("Config file not found: %s", config_path)
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        return {}
    section = data.get(Constants.CONFIG_SECTION, data)
    if not isinstance(section, dict):
        return {}

    settings: Dict[str, Any] = {}
    for key, value in section.items():
        if key in _FILE_ALIASES:
            target = _FILE_ALIASES[key]
            if target is None:
                settings["production"] = not bool(value)
                continue
            key = target
        if key in GenerationConfig.keys():
            settings[key] = value
        else:
            logger.warning("Ignoring unknown config key: %s", key)
    return settings


def _environment_settings() -> Dict[str, Any]:
    settings: Dict[str, Any] = {}
    registry = os.environ.get(Constants.ENV_REGISTRY)
    if registry and registry.strip():
        settings["registry_url"] = registry.strip()
    return settings


def _cli_settings(args) -> Dict[str, Any]:
    settings: Dict[str, Any] = {}
    if getattr(args, "DEVELOPMENT", False):
        settings["production"] = False
    if getattr(args, "INCLUDE_PEER_DEPENDENCIES", False):
        settings["include_peer_dependencies"] = True
    if getattr(args, "FLATTEN", False):
        settings["flatten"] = True
    mapping = {
        "REGISTRY": "registry_url",
        "REGISTRY_FIXTURES": "registry_fixtures",
        "CONCURRENCY": "concurrency",
        "TIMEOUT": "timeout",
        "INPUT": "input",
        "OUTPUT": "output",
        "COMPOSITION": "composition",
        "NODE_ENV": "node_env",
        "NODEJS": "nodejs_attribute",
    }
    for attr, key in mapping.items():
        value = getattr(args, attr, None)
        if value is not None:
            settings[key] = value
    return settings


def build_config(args) -> GenerationConfig:
    """Merge every configuration layer into a GenerationConfig.

    Raises:
        ValueError: If a numeric setting cannot be converted.
    """
    merged: Dict[str, Any] = {}
    merged.update(_environment_settings())
    merged.update(load_config_file(getattr(args, "CONFIG", None)))
    merged.update(_cli_settings(args))

    config = GenerationConfig(**merged)
    config.concurrency = max(1, int(config.concurrency))
    config.timeout = float(config.timeout)
    if config.timeout <= 0:
        raise ValueError("timeout must be positive")
    config.production = bool(config.production)
    config.include_peer_dependencies = bool(config.include_peer_dependencies)
    config.flatten = bool(config.flatten)
    return config
