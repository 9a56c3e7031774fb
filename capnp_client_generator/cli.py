"""Command-line entry point of the client generator.

For every matched `*.capnp` file that declares at least one interface, a module
`<schema>_client.py` is written that holds one `DispatchClient` subclass and one
singleton per interface. Interface methods have to take and return named structs.
"""

from __future__ import annotations

import argparse
import logging
import os.path
from collections.abc import Sequence

from capnp_client_generator.run import run

logger = logging.getLogger(__name__)


def _add_input_arguments(parser: argparse.ArgumentParser):
    """Options that select the schema files to generate clients for."""
    group = parser.add_argument_group("schema selection")

    group.add_argument(
        "-p",
        "--paths",
        type=str,
        nargs="+",
        default=["**/*.capnp"],
        help="schema files, directories or glob patterns to generate clients for (default: %(default)s).",
    )
    group.add_argument(
        "-e",
        "--excludes",
        type=str,
        nargs="+",
        default=[],
        help="schema files or glob patterns to leave out.",
    )
    group.add_argument(
        "-r",
        "--recursive",
        dest="recursive",
        default=False,
        action="store_true",
        help="descend into subdirectories of directory paths and let '**' match nested directories.",
    )
    group.add_argument(
        "-I",
        "--import-path",
        dest="import_paths",
        type=str,
        nargs="+",
        default=[],
        help="directories searched for absolute capnp imports such as '/capnp/c++.capnp'.",
    )


def _add_output_arguments(parser: argparse.ArgumentParser):
    """Options that control where clients go and how they are checked."""
    group = parser.add_argument_group("output")

    group.add_argument(
        "-o",
        "--output-dir",
        type=str,
        default="",
        help="write clients here, mirroring the schema directory layout; without it, clients are written next "
        "to their schemas.",
    )
    group.add_argument(
        "-c",
        "--clean",
        type=str,
        nargs="+",
        default=[],
        help="files or glob patterns to delete before generating, e.g. stale '*_client.py' modules.",
    )
    group.add_argument(
        "--no-pyright",
        dest="skip_pyright",
        default=False,
        action="store_true",
        help="do not type check the generated clients with pyright.",
    )
    group.add_argument(
        "-v",
        "--verbose",
        default=False,
        action="store_true",
        help="log every generated client and dispatched command.",
    )


def setup_parser() -> argparse.ArgumentParser:
    """Build the argument parser of `capnp-client-generator`.

    Returns:
        argparse.ArgumentParser: The parser.
    """
    parser = argparse.ArgumentParser(
        prog="capnp-client-generator",
        description="Generate asyncio clients that send every method of a capnp interface as a named command.",
    )
    _add_input_arguments(parser)
    _add_output_arguments(parser)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Parse the arguments and generate the clients.

    Schema errors are not caught; they abort the run with a traceback that names the
    offending interface or method.

    Args:
        argv (Sequence[str] | None, optional): Arguments without the program name. Defaults to `sys.argv[1:]`.

    Returns:
        int: Exit code.
    """
    args = setup_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    root_directory = os.getcwd()
    logger.debug("Resolving paths relative to %s", root_directory)

    generated_files = run(args, root_directory)
    logger.info("Generated %d client module(s).", len(generated_files))

    return 0
