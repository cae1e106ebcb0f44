"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    RESOLUTION_ERROR = 3
    INTERNAL_ERROR = 4


class DependencyKinds(Enum):
    """Manifest sections that declare dependencies.

    Args:
        Enum (string): Manifest field name for each dependency kind.
    """

    NORMAL = "dependencies"
    OPTIONAL = "optionalDependencies"
    PEER = "peerDependencies"
    DEV = "devDependencies"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    REGISTRY_URL_NPM = "https://registry.npmjs.org"
    PACKAGE_JSON_FILE = "package.json"
    OUTPUT_NIX_FILE = "node-packages.nix"
    COMPOSITION_NIX_FILE = "default.nix"
    NODE_ENV_NIX_FILE = "node-env.nix"
    NODEJS_ATTRIBUTE = "nodejs_18"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for a single registry lookup
    MAX_CONCURRENCY = 8  # Parallel registry lookups per frontier
    VERSION = "1.0.0"
    USER_AGENT = f"npm2nix/{VERSION}"
    PACKUMENT_ACCEPT = "application/json"
    CONFIG_SECTION = "npm2nix"
    ENV_REGISTRY = "NPM2NIX_REGISTRY"
    ENV_LOG_LEVEL = "NPM2NIX_LOG_LEVEL"
    # Integrity algorithms understood by fetchurl, strongest first
    HASH_ALGORITHMS = ["sha512", "sha384", "sha256", "sha1"]
