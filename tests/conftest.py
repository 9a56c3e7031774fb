"""Pytest configuration and fixtures for capnp client generator tests."""

from __future__ import annotations

import asyncio
import importlib.util
import json
from pathlib import Path
from types import ModuleType
from typing import Any

import capnp
import pytest

from capnp_client_generator.descriptors import MethodDescriptor, ServiceDescription, TypeDescriptor

capnp.remove_import_hook()

# Test directory structure
TESTS_DIR = Path(__file__).parent
SCHEMAS_DIR = TESTS_DIR / "schemas"
INVALID_SCHEMAS_DIR = SCHEMAS_DIR / "invalid"


def json_descriptor(identity: str, hint: str = "dict[str, Any]", reference: str | None = None) -> TypeDescriptor[Any]:
    """A descriptor that encodes plain dictionaries as JSON."""
    return TypeDescriptor(
        identity=identity,
        encode=lambda value: json.dumps(value, sort_keys=True).encode("utf-8"),
        decode=lambda data: json.loads(data.decode("utf-8")),
        hint=hint,
        reference=reference,
    )


def new_service(name: str, *methods: tuple[str, TypeDescriptor[Any], TypeDescriptor[Any]]) -> ServiceDescription:
    """Build an in-memory service from (name, request, response) triples."""
    return ServiceDescription(
        name=name,
        methods=tuple(MethodDescriptor(name=m, request=req, response=res) for m, req, res in methods),
    )


def load_module_from_file(path: Path, module_name: str) -> ModuleType:
    """Import a generated module from its file, without registering it in `sys.modules`."""
    spec = importlib.util.spec_from_file_location(module_name, path)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def load_schema(name: str, directory: Path = SCHEMAS_DIR) -> Any:
    """Load one of the test schemas with pycapnp."""
    return capnp.load(str(directory / name))


class EchoExecutor:
    """Returns every payload unchanged and records the calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, bytes]] = []

    async def execute(self, command: str, payload: bytes) -> bytes:
        self.calls.append((command, payload))
        return payload


class FailingExecutor:
    """Fails every command with the configured error."""

    def __init__(self, error: Exception) -> None:
        self.error = error

    async def execute(self, command: str, payload: bytes) -> bytes:
        raise self.error


class DelayedExecutor:
    """Answers after a per-command delay with a payload derived from the command name."""

    def __init__(self, delays: dict[str, float]) -> None:
        self.delays = delays

    async def execute(self, command: str, payload: bytes) -> bytes:
        await asyncio.sleep(self.delays[command])
        request = json.loads(payload.decode("utf-8"))
        return json.dumps({"command": command, "request": request}, sort_keys=True).encode("utf-8")


@pytest.fixture
def echo_executor():
    """Provide a fresh echoing executor."""
    return EchoExecutor()


@pytest.fixture
def ping_service():
    """An in-memory `Echo` service with a single `Ping` method."""
    return new_service("Echo", ("Ping", json_descriptor("PingRequest"), json_descriptor("PingResponse")))


@pytest.fixture
def default_executor_reset():
    """Clear the process-wide executor before and after a test."""
    from capnp_client_generator.runtime import set_default_executor

    set_default_executor(None)
    yield
    set_default_executor(None)
