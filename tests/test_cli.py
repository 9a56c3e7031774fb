"""CLI tests for capnp-client-generator.

Tests cover:
- Argument parsing and defaults
- Discovery of schema files, excludes and cleanup
- Output directory layout and the py.typed marker
- Error handling for invalid schemas
"""

from __future__ import annotations

import logging
import os

import pytest

from capnp_client_generator import run as run_module
from capnp_client_generator.cli import main, setup_parser
from capnp_client_generator.run import extract_base_from_pattern
from capnp_client_generator.schema import SchemaError
from tests.conftest import INVALID_SCHEMAS_DIR, SCHEMAS_DIR

ECHO_SCHEMA = """
@0xd2a1f6c4b8e39a01;

struct PingRequest {
  value @0 :Text;
}

struct PingResponse {
  value @0 :Text;
}

interface Echo {
  ping @0 PingRequest -> PingResponse;
}
"""

STRUCTS_SCHEMA = """
@0xd2a1f6c4b8e39a02;

struct Lonely {
  value @0 :Text;
}
"""


@pytest.fixture
def temp_output_dir(tmp_path):
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir()
    return output_dir


@pytest.fixture
def temp_schema_dir(tmp_path):
    """Create a temporary directory with test schemas."""
    schema_dir = tmp_path / "schemas"
    schema_dir.mkdir()

    (schema_dir / "echo-service.capnp").write_text(ECHO_SCHEMA)
    (schema_dir / "lonely.capnp").write_text(STRUCTS_SCHEMA)

    subdir = schema_dir / "subdir"
    subdir.mkdir()
    (subdir / "nested.capnp").write_text(ECHO_SCHEMA.replace("a01", "a03"))

    return schema_dir


class TestArgumentParsing:
    """Test command line argument parsing."""

    def test_defaults(self):
        args = setup_parser().parse_args([])

        assert args.paths == ["**/*.capnp"]
        assert args.excludes == []
        assert args.clean == []
        assert args.output_dir == ""
        assert args.import_paths == []
        assert args.recursive is False
        assert args.skip_pyright is False
        assert args.verbose is False

    def test_all_options(self):
        args = setup_parser().parse_args(
            ["-p", "a.capnp", "b.capnp", "-e", "b.capnp", "-c", "*_client.py"]
            + ["-o", "out", "-I", "inc", "-r", "--no-pyright", "-v"]
        )

        assert args.paths == ["a.capnp", "b.capnp"]
        assert args.excludes == ["b.capnp"]
        assert args.clean == ["*_client.py"]
        assert args.output_dir == "out"
        assert args.import_paths == ["inc"]
        assert args.recursive is True
        assert args.skip_pyright is True
        assert args.verbose is True

    def test_help_exits(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--help"])

        assert exc_info.value.code == 0
        assert "--no-pyright" in capsys.readouterr().out

    def test_verbose_logs_debug(self, temp_schema_dir, temp_output_dir, caplog):
        caplog.set_level(logging.DEBUG, logger="capnp_client_generator")

        main(["-p", str(temp_schema_dir / "echo-service.capnp"), "-o", str(temp_output_dir), "--no-pyright", "-v"])

        assert "Generated 1 client module(s)." in caplog.text


class TestGeneration:
    """Generating client modules from schema files."""

    def test_schema_directory(self, temp_output_dir):
        assert main(["-p", str(SCHEMAS_DIR), "-o", str(temp_output_dir), "--no-pyright"]) == 0

        generated = sorted(os.listdir(temp_output_dir))
        assert generated == [
            "calculator_client.py",
            "echo_client.py",
            "handles_client.py",
            "nothing_client.py",
            "py.typed",
            "syncspace_client.py",
        ]

    def test_single_file_hyphen_in_name(self, temp_schema_dir, temp_output_dir):
        main(["-p", str(temp_schema_dir / "echo-service.capnp"), "-o", str(temp_output_dir), "--no-pyright"])

        assert (temp_output_dir / "echo_service_client.py").exists()

    def test_schema_without_interfaces_is_skipped(self, temp_schema_dir, temp_output_dir):
        main(["-p", str(temp_schema_dir / "lonely.capnp"), "-o", str(temp_output_dir), "--no-pyright"])

        assert os.listdir(temp_output_dir) == []

    def test_clients_next_to_schemas(self, temp_schema_dir):
        main(["-p", str(temp_schema_dir / "echo-service.capnp"), "--no-pyright"])

        assert (temp_schema_dir / "echo_service_client.py").exists()
        assert (temp_schema_dir / "py.typed").exists()

    def test_recursive_keeps_subdirectories(self, temp_schema_dir, temp_output_dir):
        main(["-p", str(temp_schema_dir), "-r", "-o", str(temp_output_dir), "--no-pyright"])

        assert (temp_output_dir / "echo_service_client.py").exists()
        assert (temp_output_dir / "subdir" / "nested_client.py").exists()
        assert (temp_output_dir / "subdir" / "py.typed").exists()

    def test_non_recursive_ignores_subdirectories(self, temp_schema_dir, temp_output_dir):
        main(["-p", str(temp_schema_dir), "-o", str(temp_output_dir), "--no-pyright"])

        assert not (temp_output_dir / "subdir").exists()

    def test_excludes(self, temp_schema_dir, temp_output_dir):
        main(
            [
                "-p",
                str(temp_schema_dir),
                "-e",
                str(temp_schema_dir / "echo-service.capnp"),
                "-o",
                str(temp_output_dir),
                "--no-pyright",
            ]
        )

        assert not (temp_output_dir / "echo_service_client.py").exists()

    def test_clean(self, temp_schema_dir, temp_output_dir):
        stale = temp_output_dir / "stale_client.py"
        stale.write_text("# stale\n")

        main(
            [
                "-p",
                str(temp_schema_dir / "echo-service.capnp"),
                "-c",
                str(temp_output_dir / "*_client.py"),
                "-o",
                str(temp_output_dir),
                "--no-pyright",
            ]
        )

        assert not stale.exists()
        assert (temp_output_dir / "echo_service_client.py").exists()

    def test_output_is_deterministic(self, tmp_path):
        first, second = tmp_path / "first", tmp_path / "second"

        for output_dir in (first, second):
            main(["-p", str(SCHEMAS_DIR / "syncspace.capnp"), "-o", str(output_dir), "--no-pyright"])

        assert (first / "syncspace_client.py").read_text() == (second / "syncspace_client.py").read_text()

    def test_pyright_runs_unless_disabled(self, temp_schema_dir, temp_output_dir, monkeypatch):
        validated = []
        monkeypatch.setattr(run_module, "validate_with_pyright", validated.append)

        main(["-p", str(temp_schema_dir / "echo-service.capnp"), "-o", str(temp_output_dir)])

        assert validated == [[str(temp_output_dir / "echo_service_client.py")]]


class TestErrors:
    """Invalid input aborts generation."""

    def test_anonymous_parameter_list(self, temp_output_dir):
        with pytest.raises(SchemaError, match="anonymous parameter list"):
            main(["-p", str(INVALID_SCHEMAS_DIR / "inline.capnp"), "-o", str(temp_output_dir), "--no-pyright"])

    def test_service_named_service(self, temp_output_dir):
        with pytest.raises(SchemaError, match="no name for its singleton"):
            main(["-p", str(INVALID_SCHEMAS_DIR / "service.capnp"), "-o", str(temp_output_dir), "--no-pyright"])

    def test_no_matching_files(self, temp_output_dir):
        assert main(["-p", str(temp_output_dir / "*.capnp"), "-o", str(temp_output_dir), "--no-pyright"]) == 0
        assert os.listdir(temp_output_dir) == []


class TestExtractBaseFromPattern:
    """Base directories of path patterns."""

    @pytest.mark.parametrize(
        "pattern, expected",
        [
            ("schemas/**/*.capnp", "schemas"),
            ("schemas/echo.capnp", "schemas"),
            ("**/*.capnp", ""),
            ("a/b/c", os.path.join("a", "b", "c")),
        ],
    )
    def test_bases(self, pattern, expected):
        assert extract_base_from_pattern(pattern) == expected
