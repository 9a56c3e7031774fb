"""Top-level module for client generation."""

from __future__ import annotations

import argparse
import glob
import logging
import os.path
import subprocess
import tempfile
from pathlib import Path
from types import ModuleType

import capnp

from capnp_client_generator.capnp_types import CAPNP_SUFFIX, ModuleRegistryType
from capnp_client_generator.helper import client_module_name
from capnp_client_generator.schema import load_services
from capnp_client_generator.writer import Writer

if hasattr(capnp, "remove_import_hook"):
    capnp.remove_import_hook()


logger = logging.getLogger(__name__)

PY_SUFFIX = ".py"


class PyrightValidationError(Exception):
    """Raised when pyright validation finds type errors in generated clients."""

    pass


def validate_with_pyright(generated_files: list[str]) -> None:
    """Validate generated client modules using pyright.

    Args:
        generated_files: Paths of the generated modules.

    Raises:
        PyrightValidationError: If pyright finds any type errors.
    """
    if not generated_files:
        logger.warning("No generated clients found to validate")
        return

    logger.info(f"Validating {len(generated_files)} generated client(s) with pyright...")

    try:
        result = subprocess.run(
            ["pyright"] + sorted(generated_files),
            capture_output=True,
            text=True,
            check=False,
        )

    except FileNotFoundError:
        logger.error("pyright not found. Please install pyright: pip install pyright")
        raise PyrightValidationError("pyright command not found. Please install pyright.")
    except subprocess.SubprocessError as e:
        error_msg = f"Error running pyright: {e}"
        logger.error(error_msg)
        raise PyrightValidationError(error_msg)

    error_count = result.stdout.count(" error:")

    if error_count > 0 or result.returncode != 0:
        error_msg = f"Pyright validation failed with {error_count} error(s):\n\n{result.stdout}"
        logger.error(error_msg)
        raise PyrightValidationError(error_msg)

    logger.info("Pyright validation passed - no type errors found")


def format_outputs(raw_input: str) -> str:
    """Formats raw input using ruff.

    Formatting is best effort: if ruff is missing or fails, the unformatted
    (but valid) input is returned.

    Args:
        raw_input (str): The unformatted input.

    Returns:
        str: The formatted outputs.
    """
    with tempfile.NamedTemporaryFile(mode="w", suffix=PY_SUFFIX, delete=False, encoding="utf-8") as f:
        temp_path = Path(f.name)
        f.write(raw_input)

    try:
        # Fix import ordering first, then format.
        subprocess.run(
            ["ruff", "check", "--fix", "--select", "I", str(temp_path)],
            capture_output=True,
            check=False,
        )
        subprocess.run(
            ["ruff", "format", str(temp_path)],
            capture_output=True,
            check=True,
        )
        return temp_path.read_text(encoding="utf-8")

    except subprocess.CalledProcessError as e:
        logger.warning(f"Ruff formatting failed: {e}")
        logger.warning(f"Stderr: {e.stderr.decode('utf-8', errors='replace')}")
        return raw_input
    except FileNotFoundError:
        logger.warning("ruff not found, skipping formatting of generated client")
        return raw_input

    finally:
        temp_path.unlink(missing_ok=True)


def generate_clients(
    module: ModuleType,
    output_file_path: str,
    output_directory: str | None = None,
    import_paths: list[str] | None = None,
) -> list[str]:
    """Entry-point for generating a client module from a loaded capnp module.

    Nothing is written for schemas without interfaces.

    Args:
        module (ModuleType): The capnp module to generate clients for.
        output_file_path (str): The name of the output module, without file extension.
        output_directory (str | None): The directory where output files are written, if different from schema location.
        import_paths (list[str] | None): Additional import paths for resolving absolute imports.

    Returns:
        list[str]: The names of the services that clients were generated for.
    """
    services = load_services(module)

    if not services:
        logger.info(f"No interfaces in '{module.schema.node.displayName}', skipping.")
        return []

    writer = Writer(services, output_directory=output_directory, import_paths=import_paths)
    writer.generate_all()
    formatted_output = format_outputs(writer.dumps())

    with open(output_file_path + PY_SUFFIX, "w", encoding="utf8") as output_file:
        output_file.write(formatted_output)

    logger.info("Wrote client to '%s%s'.", output_file_path, PY_SUFFIX)
    return [service.name for service in services]


def extract_base_from_pattern(pattern: str) -> str:
    """Extract the base directory from a glob pattern.

    The base is the longest leading directory path without wildcards. For a specific
    schema file, this is its parent directory.

    Args:
        pattern: A file path or glob pattern.

    Returns:
        The base directory path, or empty string if pattern starts with wildcard.
    """
    base_parts = []
    found_wildcard = False

    for part in Path(pattern).parts:
        if any(c in part for c in "*?["):
            found_wildcard = True
            break
        base_parts.append(part)

    if not base_parts:
        return ""

    base = os.path.join(*base_parts)

    if not found_wildcard and pattern.endswith(CAPNP_SUFFIX):
        base = os.path.dirname(base)

    return base


def _find_schema_paths(paths: list[str], root_directory: str, recursive: bool) -> set[str]:
    search_paths: set[str] = set()

    for path in paths:
        search_path = os.path.join(root_directory, path)

        if recursive and os.path.isdir(search_path):
            for root, _, files in os.walk(search_path):
                for file in files:
                    if file.endswith(CAPNP_SUFFIX):
                        search_paths.add(os.path.join(root, file))
        elif os.path.isdir(search_path):
            for file in os.listdir(search_path):
                file_path = os.path.join(search_path, file)
                if os.path.isfile(file_path) and file.endswith(CAPNP_SUFFIX):
                    search_paths.add(file_path)
        else:
            search_paths = search_paths.union(glob.glob(search_path, recursive=recursive))

    return search_paths


def _find_common_base(paths: list[str], root_directory: str, valid_paths: set[str]) -> str | None:
    """The directory that output paths are made relative to, so subdirectories are preserved."""
    pattern_bases = []
    for path in paths:
        base = extract_base_from_pattern(os.path.join(root_directory, path))
        if base:
            pattern_bases.append(os.path.abspath(base))

    if pattern_bases:
        return os.path.commonpath(pattern_bases)

    abs_paths = [os.path.abspath(p) for p in valid_paths]
    if not abs_paths:
        return None
    if len(abs_paths) == 1:
        return os.path.dirname(abs_paths[0])
    return os.path.commonpath([os.path.dirname(p) for p in abs_paths])


def run(args: argparse.Namespace, root_directory: str) -> list[str]:
    """Run the client generator on a set of paths that point to *.capnp schemas.

    Uses `generate_clients` on each input file.

    Args:
        args (argparse.Namespace): The arguments that were passed when calling the client generator.
        root_directory (str): The directory, from which the generator is executed.

    Returns:
        list[str]: Paths of all generated client modules.
    """
    paths: list[str] = args.paths
    excludes: list[str] = args.excludes
    clean: list[str] = args.clean
    output_dir: str = getattr(args, "output_dir", "")
    import_paths: list[str] = getattr(args, "import_paths", [])
    skip_pyright: bool = getattr(args, "skip_pyright", False)

    cleanup_paths: set[str] = set()
    for c in clean:
        cleanup_directory = os.path.join(root_directory, c)
        cleanup_paths = cleanup_paths.union(glob.glob(cleanup_directory, recursive=args.recursive))

    for cleanup_path in sorted(cleanup_paths):
        logger.info(f"Removing '{cleanup_path}'.")
        os.remove(cleanup_path)

    excluded_paths: set[str] = set()
    for exclude in excludes:
        exclude_path = os.path.join(root_directory, exclude)
        if os.path.isfile(exclude_path):
            excluded_paths.add(exclude_path)
        else:
            excluded_paths = excluded_paths.union(glob.glob(exclude_path, recursive=args.recursive))

    # The `valid_paths` contain the automatically detected search paths, except for specifically excluded paths.
    valid_paths = _find_schema_paths(paths, root_directory, args.recursive) - excluded_paths
    logger.info(f"Found {len(valid_paths)} schema file(s).")

    absolute_import_paths = [os.path.join(root_directory, p) for p in import_paths]

    parser = capnp.SchemaParser()
    module_registry: ModuleRegistryType = {}

    for path in sorted(valid_paths):
        module = parser.load(path, imports=absolute_import_paths)
        module_registry[module.schema.node.id] = (path, module)

    common_base = _find_common_base(paths, root_directory, valid_paths) if output_dir else None

    output_directories_used: set[str] = set()
    generated_files: list[str] = []

    for path, module in module_registry.values():
        if output_dir:
            if common_base:
                rel_dir = os.path.dirname(os.path.relpath(os.path.abspath(path), common_base))
                output_directory = os.path.join(output_dir, rel_dir)
            else:
                output_directory = output_dir

            os.makedirs(output_directory, exist_ok=True)
        else:
            # No output_dir specified: place clients next to their schemas
            output_directory = os.path.dirname(path)

        output_file_path = os.path.join(output_directory, client_module_name(os.path.basename(path)))

        # Only pass the output directory if it differs from the schema's directory
        schema_directory = os.path.dirname(path)
        output_dir_to_pass = None
        if os.path.abspath(output_directory) != os.path.abspath(schema_directory):
            output_dir_to_pass = output_directory

        services = generate_clients(module, output_file_path, output_dir_to_pass, absolute_import_paths)
        if services:
            output_directories_used.add(output_directory)
            generated_files.append(output_file_path + PY_SUFFIX)

    # Create py.typed marker in each output directory to mark the package as typed (PEP 561)
    for output_directory in output_directories_used:
        py_typed_path = os.path.join(output_directory, "py.typed")
        if not os.path.exists(py_typed_path):
            with open(py_typed_path, "w", encoding="utf8") as f:
                f.write("")

    if not skip_pyright:
        validate_with_pyright(generated_files)

    return generated_files
