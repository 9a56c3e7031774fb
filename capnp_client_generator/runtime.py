"""Runtime support for generated clients: one generic dispatch over a named-command channel.

Every generated client inherits from `DispatchClient`. A typed method turns into a call
of `DispatchClient._dispatch`, which encodes the request, hands `(command, payload)` to a
command executor, decodes the response and wraps any failure into a `DispatchError`.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from capnp_client_generator.descriptors import TypeDescriptor, struct_descriptor

__all__ = [
    "CommandExecutor",
    "CommandRouter",
    "DispatchClient",
    "DispatchError",
    "ExecutorNotConfiguredError",
    "FunctionExecutor",
    "TypeDescriptor",
    "UnknownCommandError",
    "get_default_executor",
    "set_default_executor",
    "struct_descriptor",
]

logger = logging.getLogger(__name__)

Req = TypeVar("Req")
Res = TypeVar("Res")

Handler = Callable[[Any], Awaitable[Any]]


class CommandExecutor(Protocol):
    """The opaque boundary that routes a named command and its payload to a backend."""

    async def execute(self, command: str, payload: bytes) -> bytes: ...


class DispatchError(Exception):
    """Raised when a dispatched command fails to encode, execute or decode."""

    def __init__(self, command: str, cause: str):
        super().__init__(f"Failed to execute command '{command}': {cause}")
        self.command = command
        self.cause = cause


class ExecutorNotConfiguredError(RuntimeError):
    """Raised when a client needs the default executor, but none was set."""

    pass


class UnknownCommandError(KeyError):
    """Raised by `CommandRouter` for commands without a registered handler."""

    def __str__(self) -> str:
        return f"unknown command: {self.args[0]}"


def describe_error(error: BaseException) -> str:
    """Describe an error for humans: its message, or its type if the message is empty."""
    return str(error) or type(error).__name__


_default_executor: CommandExecutor | None = None


def set_default_executor(executor: CommandExecutor | None) -> None:
    """Set (or clear, with None) the process-wide executor used by clients without their own."""
    global _default_executor
    _default_executor = executor


def get_default_executor() -> CommandExecutor:
    """Get the process-wide executor.

    Raises:
        ExecutorNotConfiguredError: If no default executor was set.
    """
    if _default_executor is None:
        raise ExecutorNotConfiguredError("No command executor configured. Call set_default_executor() first.")
    return _default_executor


class FunctionExecutor:
    """Adapts a plain `async (command, payload) -> bytes` callable to the executor protocol."""

    def __init__(self, function: Callable[[str, bytes], Awaitable[bytes]]):
        self._function = function

    async def execute(self, command: str, payload: bytes) -> bytes:
        return await self._function(command, payload)


class CommandRouter:
    """An in-process executor that routes commands to registered handlers.

    Each handler receives the decoded request and returns the response value,
    which the router encodes again before handing the bytes back.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, tuple[Handler, TypeDescriptor[Any], TypeDescriptor[Any]]] = {}

    def register(
        self,
        command: str,
        handler: Handler,
        request_type: TypeDescriptor[Any],
        response_type: TypeDescriptor[Any],
    ) -> None:
        """Register a handler for a command, replacing any previous one.

        Args:
            command (str): The command name to route.
            handler (Handler): Async function receiving the decoded request.
            request_type (TypeDescriptor): Descriptor used to decode the incoming payload.
            response_type (TypeDescriptor): Descriptor used to encode the handler's result.
        """
        if command in self._handlers:
            logger.debug(f"Replacing handler for command '{command}'.")
        self._handlers[command] = (handler, request_type, response_type)

    def commands(self) -> list[str]:
        """The registered command names, sorted."""
        return sorted(self._handlers)

    async def execute(self, command: str, payload: bytes) -> bytes:
        try:
            handler, request_type, response_type = self._handlers[command]
        except KeyError:
            raise UnknownCommandError(command) from None

        request = request_type.decode(payload)
        response = await handler(request)
        return response_type.encode(response)


def _as_bytes(response: Any) -> bytes:
    """Normalize an executor result to bytes.

    Byte buffers and lists of byte values (as produced by JSON bridges) are accepted,
    anything else is rejected. An int in particular is not a buffer size here.
    """
    if isinstance(response, bytes):
        return response

    if isinstance(response, (bytearray, memoryview)):
        return bytes(response)

    if isinstance(response, (list, tuple)) and all(type(item) is int for item in response):
        # Raises ValueError for values outside 0..255.
        return bytes(response)

    raise TypeError(f"executor returned {type(response).__name__}, expected bytes")


class DispatchClient:
    """Base class of all generated clients.

    A client holds nothing but its executor. Without an explicit executor, the
    process-wide default executor is looked up on every call, so module level
    singletons can be created before the executor is known.
    """

    def __init__(self, executor: CommandExecutor | None = None):
        self._executor = executor

    @property
    def executor(self) -> CommandExecutor:
        """The executor this client sends commands to."""
        if self._executor is not None:
            return self._executor
        return get_default_executor()

    async def dispatch_command(self, command: str, payload: bytes) -> bytes:
        """Send raw bytes for a command, bypassing any per-method typing.

        Args:
            command (str): The command name, passed verbatim to the executor.
            payload (bytes): The already encoded request.

        Returns:
            bytes: The raw response.

        Raises:
            DispatchError: If the executor fails or returns something that is not bytes.
        """
        try:
            return await self._execute(command, payload)
        except Exception as e:
            raise self._wrap(command, e) from e

    async def _dispatch(
        self,
        command: str,
        request_type: TypeDescriptor[Req],
        response_type: TypeDescriptor[Res],
        request: Req,
    ) -> Res:
        try:
            payload = request_type.encode(request)
            response = await self._execute(command, payload)
            return response_type.decode(response)
        except Exception as e:
            raise self._wrap(command, e) from e

    async def _execute(self, command: str, payload: bytes) -> bytes:
        logger.debug(f"Dispatching command '{command}' ({len(payload)} bytes).")
        response = _as_bytes(await self.executor.execute(command, payload))
        logger.debug(f"Command '{command}' returned {len(response)} bytes.")
        return response

    @staticmethod
    def _wrap(command: str, error: Exception) -> DispatchError:
        cause = describe_error(error)
        logger.warning(f"Command '{command}' failed: {cause}")
        return DispatchError(command, cause)
