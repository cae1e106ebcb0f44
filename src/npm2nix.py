"""npm2nix - Generate Nix expressions from npm package manifests.

    Raises:
        SystemExit: With one of the ExitCodes values.

    Returns:
        int: Exit code
"""
import asyncio
import json
import logging
import os
import shutil
import sys
from typing import Optional, Tuple, Union

import yaml

from constants import ExitCodes, Constants
from errors import (
    MalformedManifest,
    Npm2NixError,
    PeerConstraintUnsatisfied,
    PlacementConflict,
    RegistryUnavailable,
    UnresolvableVersion,
)
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from args import parse_args
from cli_config import GenerationConfig, build_config
from expression.generator import generate
from expression.models import CompositionExpr, PackageSetExpr
from expression.render import render_composition, render_package_set
from graph.builder import build_graph
from graph.planner import plan_topology
from registry.npm.client import NpmRegistrySource
from registry.resolver import RegistryResolver, nix_relative_path
from registry.source import FixtureRegistrySource, RegistrySource

logger = logging.getLogger(__name__)

NODE_ENV_TEMPLATE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "expression", Constants.NODE_ENV_NIX_FILE)


def load_input(file_name: str) -> Union[dict, list]:
    """Load the input JSON document.

    Args:
        file_name (str): Path of a package.json or a JSON array of specifiers.

    Raises:
        OSError: If the file cannot be read.
        MalformedManifest: If the document is not JSON, or neither an object nor an array.

    Returns:
        dict | list: The parsed document.
    """
    with open(file_name, encoding="utf-8") as file:
        try:
            data = json.load(file)
        except json.JSONDecodeError as e:
            raise MalformedManifest(f"{file_name} is not valid JSON: {e}") from e
    if not isinstance(data, (dict, list)):
        raise MalformedManifest("The provided JSON file must be an object or an array")
    return data


def create_source(config: GenerationConfig) -> RegistrySource:
    """Registry source selected by the configuration."""
    if config.registry_fixtures:
        return FixtureRegistrySource.from_file(config.registry_fixtures)
    return NpmRegistrySource(config.registry_url, timeout=config.timeout, concurrency=config.concurrency)


def composition_paths(config: GenerationConfig) -> Tuple[str, str]:
    """Paths of node-env.nix and the package expression, relative to the composition file."""
    start = os.path.dirname(os.path.abspath(config.composition))
    return (
        nix_relative_path(os.path.abspath(config.node_env), start),
        nix_relative_path(os.path.abspath(config.output), start),
    )


async def generate_expressions(
    roots: Union[dict, list],
    config: GenerationConfig,
    source: RegistrySource,
    base_dir: str = ".",
    output_dir: str = ".",
) -> Tuple[PackageSetExpr, CompositionExpr]:
    """Run resolution, planning and generation for one input document.

    Args:
        roots: A package manifest, or a list of specifiers.
        config: Generation options.
        source: Registry capability used for every lookup.
        base_dir: Directory local specifiers of the root are relative to.
        output_dir: Directory the package expression is written to.

    Raises:
        Npm2NixError: The first failure; outstanding lookups are cancelled.
    """
    resolver = RegistryResolver(
        source,
        base_dir=base_dir,
        output_dir=output_dir,
        timeout=config.timeout,
        concurrency=config.concurrency,
    )
    try:
        graph = await build_graph(
            resolver,
            roots,
            production=config.production,
            include_peer_dependencies=config.include_peer_dependencies,
            base_dir=base_dir,
            output_dir=output_dir,
        )
    finally:
        await resolver.close()

    plan = plan_topology(graph, config.flatten)
    node_env_path, packages_path = composition_paths(config)
    return generate(
        graph,
        plan,
        production=config.production,
        include_peer_dependencies=config.include_peer_dependencies,
        node_env_path=node_env_path,
        packages_path=packages_path,
        nodejs_attribute=config.nodejs_attribute,
    )


async def _run(roots: Union[dict, list], config: GenerationConfig) -> Tuple[PackageSetExpr, CompositionExpr]:
    async with create_source(config) as source:
        return await generate_expressions(
            roots,
            config,
            source,
            base_dir=os.path.dirname(os.path.abspath(config.input)),
            output_dir=os.path.dirname(os.path.abspath(config.output)),
        )


def write_text(path: str, text: str) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as file:
        file.write(text)
    logging.info("Written %s", path)


def write_outputs(package_set: PackageSetExpr, composition: CompositionExpr, config: GenerationConfig) -> None:
    """Write the package expression, copy node-env.nix and write the composition expression."""
    write_text(config.output, render_package_set(package_set))
    os.makedirs(os.path.dirname(os.path.abspath(config.node_env)), exist_ok=True)
    shutil.copyfile(NODE_ENV_TEMPLATE, config.node_env)
    logging.info("Copied build recipe to %s", config.node_env)
    write_text(config.composition, render_composition(composition))


def exit_code_for(error: Exception) -> ExitCodes:
    """Map a failure to the process exit code."""
    if isinstance(error, RegistryUnavailable):
        return ExitCodes.CONNECTION_ERROR
    if isinstance(error, (MalformedManifest, UnresolvableVersion, PeerConstraintUnsatisfied)):
        return ExitCodes.RESOLUTION_ERROR
    if isinstance(error, PlacementConflict):
        return ExitCodes.INTERNAL_ERROR
    if isinstance(error, (OSError, yaml.YAMLError, ValueError)):
        return ExitCodes.FILE_ERROR
    return ExitCodes.INTERNAL_ERROR


def main(argv: Optional[list] = None):
    """Main function of the program."""
    args = parse_args(argv)
    # Honor CLI --loglevel by passing it to centralized logger via env
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.ENV_LOG_LEVEL] = str(args.LOG_LEVEL).upper()
    configure_logging(log_file=getattr(args, "LOG_FILE", None), quiet=getattr(args, "QUIET", False))

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action="main")
        )

    try:
        config = build_config(args)
        roots = load_input(config.input)
        logging.info(
            "Generating %s expression from %s",
            "collection" if isinstance(roots, list) else "package",
            config.input,
        )
        package_set, composition = asyncio.run(_run(roots, config))
        write_outputs(package_set, composition, config)
    except (Npm2NixError, OSError, yaml.YAMLError, ValueError) as e:
        code = exit_code_for(e)
        logging.error("%s", e)
        if is_debug_enabled(logger):
            logger.debug(
                "CLI finished",
                extra=extra_context(
                    event="function_exit", component="cli", action="main", outcome="error",
                    exit_code=code.value,
                )
            )
        sys.exit(code.value)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI finished",
            extra=extra_context(event="function_exit", component="cli", action="main", outcome="success")
        )
    sys.exit(ExitCodes.SUCCESS.value)


if __name__ == "__main__":
    main()
