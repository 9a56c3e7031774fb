"""Helper functionality that is used in other modules of this package."""

from __future__ import annotations

import keyword
import re
from dataclasses import dataclass
from typing import Any

from capnp_client_generator.capnp_types import CAPNP_SUFFIX

CLIENT_SUFFIX = "_client"
SERVICE_SUFFIX = "Service"

_INVALID_IDENTIFIER_CHARACTERS = re.compile(r"\W")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def sanitize_name(name: str) -> str:
    """Sanitize a name to avoid Python keywords.

    If the name is a Python keyword, append an underscore.
    E.g. 'lambda' becomes 'lambda_', 'class' becomes 'class_'.

    Args:
        name (str): The original name.

    Returns:
        str: The sanitized name.
    """
    if keyword.iskeyword(name):
        return f"{name}_"
    return name


def to_identifier(name: str) -> str:
    """Replace characters that are not allowed in Python identifiers by underscores.

    A leading digit is prefixed with an underscore, e.g. `2fa-check` becomes `_2fa_check`.
    """
    identifier = _INVALID_IDENTIFIER_CHARACTERS.sub("_", name)
    if identifier[:1].isdigit():
        identifier = f"_{identifier}"
    return identifier


def method_local_name(name: str) -> str:
    """Converts a schema method name to the name of the generated Python method.

    The first character is lower-cased, e.g. `CreateSpace` becomes `createSpace`,
    while capnp style names such as `ping` stay as they are.

    Args:
        name (str): The method name from the schema.

    Returns:
        str: The Python method name.
    """
    return sanitize_name(to_identifier(name[:1].lower() + name[1:]))


def service_class_name(service_name: str) -> str:
    """Name of the generated client class. Scoped names are flattened, `A.Handle` becomes `AHandle`."""
    return flat_alias_name(service_name)


def singleton_name(service_name: str) -> str:
    """Derive the name of the module level client instance from the service name.

    Scoped names are flattened, a trailing `Service` is stripped and the first character
    is lower-cased, so `SyncSpaceService` becomes `syncSpace` and `A.Handle` becomes
    `aHandle`. The result is empty for a service that is called just `Service`; callers
    have to reject that.

    Args:
        service_name (str): The service name.

    Returns:
        str: The singleton name, or an empty string.
    """
    name = to_identifier(service_name.replace(".", "")).removesuffix(SERVICE_SUFFIX)
    if not name:
        return ""
    return sanitize_name(to_identifier(name[:1].lower() + name[1:]))


def flat_alias_name(identity: str) -> str:
    """Converts a scoped type identity to the flat name of its alias.

    E.g. `Echo.PingRequest` becomes `EchoPingRequest`.

    Args:
        identity (str): The type identity.

    Returns:
        str: The alias name.
    """
    return sanitize_name(to_identifier(identity.replace(".", "")))


def constant_name(alias_name: str) -> str:
    """The private module constant holding the descriptor for an alias.

    E.g. `PingRequest` becomes `_PING_REQUEST`.
    """
    return "_" + _CAMEL_BOUNDARY.sub("_", alias_name).upper()


def client_module_name(schema_file_name: str) -> str:
    """Name of the generated module for a schema file.

    The `.capnp` suffix is replaced by `_client` and hyphens are converted to underscores,
    so `some-module.capnp` becomes `some_module_client`.

    Args:
        schema_file_name (str): The base name of the schema file.

    Returns:
        str: The module name, without file extension.
    """
    result = schema_file_name.removesuffix(CAPNP_SUFFIX)
    return f"{result.replace('-', '_')}{CLIENT_SUFFIX}"


def split_reference(reference: str) -> tuple[str, str]:
    """Split an import reference like `package.module:ATTRIBUTE` into module and attribute.

    Raises:
        ValueError: If the reference does not name both a module and an attribute.
    """
    module, _, attribute = reference.partition(":")
    if not module or not attribute:
        raise ValueError(f"'{reference}' is not of the form 'package.module:attribute'.")
    return module, attribute


@dataclass
class TypeHintedVariable:
    """A class that represents a type hinted variable."""

    name: str
    type_hint: str
    default: str = ""

    def __str__(self) -> str:
        """The variable as it appears in a parameter list, e.g. `request: PingRequest`."""
        typed_variable = f"{self.name}: {self.type_hint}"

        if self.default:
            typed_variable = f"{typed_variable} = {self.default}"

        return typed_variable


def join_parameters(parameters: list[TypeHintedVariable] | list[str] | None) -> str:
    """Joins parameters by means of ', '.

    Args:
        parameters (list[TypeHintedVariable] | list[str] | None): The parameters to join.

    Returns:
        str: The joined parameters.
    """
    if parameters:
        return ", ".join(str(p) for p in parameters if p)

    else:
        return ""


def new_function(
    name: str,
    parameters: list[TypeHintedVariable] | list[str] | None = None,
    return_type: str | None = None,
    is_async: bool = False,
) -> str:
    """Create the header line of a function definition.

    Args:
        name (str): The function name.
        parameters (list[TypeHintedVariable] | list[str] | None, optional): The function parameters, if any.
            Defaults to None.
        return_type (str | None, optional): The function's return type. Defaults to None.
        is_async (bool, optional): Whether to define a coroutine function. Defaults to False.

    Returns:
        str: The function header, ending with a colon.
    """
    if return_type is None:
        return_type = "None"

    arguments = join_parameters(parameters)
    prefix = "async def" if is_async else "def"
    return f"{prefix} {name}({arguments}) -> {return_type}:"


def new_class_declaration(name: str, parameters: list[str] | None = None) -> str:
    """Creates a string for declaring a class.

    For example, for a name of 'Echo' and the parameter 'DispatchClient', the output
    will be 'class Echo(DispatchClient):'.

    If no parameters are provided, the output is just 'class Echo:'.

    Args:
        name (str): The class name.
        parameters (list[str] | None, optional):
            A list of parameters that are part of the class declaration. Defaults to None.

    Returns:
        str: The class declaration.
    """
    if parameters:
        return f"class {name}({join_parameters(parameters)}):"

    else:
        return f"class {name}:"


def new_docstring(text: str) -> str:
    """Wrap text into a docstring literal, escaping what would end it early."""
    escaped = text.replace("\\", "\\\\").replace('"""', '\\"\\"\\"')
    if escaped.endswith('"'):
        escaped = escaped[:-1] + '\\"'
    return f'"""{escaped}"""'


def get_scoped_name(schema: Any) -> str:
    """Extract the name of a node within its file from a schema.

    E.g. a display name of `calculator.capnp:Calculator.Meter` gives `Calculator.Meter`.

    Args:
        schema (Any): The schema to get the scoped name from.

    Returns:
        str: The scoped name of the schema node.
    """
    display_name: str = schema.node.displayName
    _, _, scoped_name = display_name.partition(":")
    return scoped_name or display_name
