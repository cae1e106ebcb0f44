"""Argument parsing functionality for npm2nix."""

import argparse
from constants import Constants

def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog="npm2nix",
        description=(
            "npm2nix - Generate Nix expressions from npm package manifests"
        ),
        add_help=True,
    )

    parser.add_argument("-i", "--input",
                        dest="INPUT",
                        help=f"package.json manifest or JSON array of specifiers (default: {Constants.PACKAGE_JSON_FILE})",
                        action="store",
                        type=str)
    parser.add_argument("-o", "--output",
                        dest="OUTPUT",
                        help=f"Path to the generated package expression (default: {Constants.OUTPUT_NIX_FILE})",
                        action="store",
                        type=str)
    parser.add_argument("-c", "--composition",
                        dest="COMPOSITION",
                        help=f"Path to the generated composition expression (default: {Constants.COMPOSITION_NIX_FILE})",
                        action="store",
                        type=str)
    parser.add_argument("-e", "--node-env",
                        dest="NODE_ENV",
                        help=f"Path to write the build recipe to (default: {Constants.NODE_ENV_NIX_FILE})",
                        action="store",
                        type=str)
    parser.add_argument("--nodejs",
                        dest="NODEJS",
                        help=f"Nixpkgs attribute of the Node.js interpreter (default: {Constants.NODEJS_ATTRIBUTE})",
                        action="store",
                        type=str)

    parser.add_argument("-d", "--development",
                        dest="DEVELOPMENT",
                        help="Also install the root package's devDependencies.",
                        action="store_true")
    parser.add_argument("--include-peer-dependencies",
                        dest="INCLUDE_PEER_DEPENDENCIES",
                        help="Treat peerDependencies as dependencies to install.",
                        action="store_true")
    parser.add_argument("--flatten",
                        dest="FLATTEN",
                        help="Hoist dependencies to the shallowest scope without conflicts.",
                        action="store_true")

    registry_group = parser.add_mutually_exclusive_group()
    registry_group.add_argument("--registry",
                        dest="REGISTRY",
                        help=f"npm registry URL (default: {Constants.REGISTRY_URL_NPM})",
                        action="store",
                        type=str)
    registry_group.add_argument("--registry-fixtures",
                        dest="REGISTRY_FIXTURES",
                        help="Resolve against packuments stored in a JSON file instead of a registry.",
                        action="store",
                        type=str)
    parser.add_argument("--concurrency",
                        dest="CONCURRENCY",
                        help=f"Maximum parallel registry lookups (default: {Constants.MAX_CONCURRENCY})",
                        action="store",
                        type=int)
    parser.add_argument("--timeout",
                        dest="TIMEOUT",
                        help=f"Timeout in seconds for a single registry lookup (default: {Constants.REQUEST_TIMEOUT})",
                        action="store",
                        type=float)

    parser.add_argument("--config",
                        dest="CONFIG",
                        help="Path to configuration file (YAML, YML, or JSON)",
                        action="store",
                        type=str)
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'])
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)
    parser.add_argument("-q", "--quiet",
                        dest="QUIET",
                        help="Do not output to console.",
                        action="store_true")

    return parser.parse_args(argv)
