"""Walk service descriptions and build them from loaded capnp schema modules."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from functools import reduce
from types import ModuleType
from typing import Any

from capnp_client_generator import capnp_types, helper
from capnp_client_generator.descriptors import MethodDescriptor, ServiceDescription, TypeDescriptor, struct_descriptor

logger = logging.getLogger(__name__)


class SchemaError(Exception):
    """Raised when a service description cannot be turned into a client."""

    pass


def _check_codec(service: ServiceDescription, method: MethodDescriptor, role: str, type_: Any) -> None:
    encode = getattr(type_, "encode", None)
    decode = getattr(type_, "decode", None)

    if not (callable(encode) and callable(decode)):
        raise SchemaError(
            f"{service.name}.{method.name}: the {role} type '{getattr(type_, 'identity', type_)}' "
            "has no encode/decode pair."
        )


def walk(service: ServiceDescription) -> tuple[MethodDescriptor, ...]:
    """Enumerate the methods of a service in declaration order.

    Args:
        service (ServiceDescription): The service to walk.

    Returns:
        tuple[MethodDescriptor, ...]: The methods, in the order they were declared.

    Raises:
        SchemaError: If a method name is empty or declared twice, or if a request or
            response type has no encode/decode pair.
    """
    seen: set[str] = set()

    for method in service.methods:
        if not method.name:
            raise SchemaError(f"Service '{service.name}' declares a method without a name.")

        if method.name in seen:
            raise SchemaError(f"Service '{service.name}' declares method '{method.name}' more than once.")
        seen.add(method.name)

        _check_codec(service, method, "request", method.request)
        _check_codec(service, method, "response", method.response)

    return tuple(service.methods)


def _resolve_struct(module: ModuleType, struct_schema: Any, location: str) -> TypeDescriptor[Any]:
    """Find the struct type behind a method's parameter or result schema.

    Args:
        module (ModuleType): The loaded capnp module the interface belongs to.
        struct_schema (Any): The `_StructSchema` of the parameter or result list.
        location (str): Human readable location, for error messages.

    Returns:
        TypeDescriptor: A descriptor for the named struct.
    """
    display_name: str = struct_schema.node.displayName
    file_name, _, scoped_name = display_name.rpartition(":")

    if "$" in scoped_name:
        raise SchemaError(
            f"{location} uses an anonymous parameter list; declare a named struct so it can be encoded."
        )

    if file_name != module.schema.node.displayName:
        raise SchemaError(f"{location} references '{display_name}', which is declared in another schema file.")

    try:
        struct = reduce(getattr, scoped_name.split("."), module)
    except AttributeError as e:
        raise SchemaError(f"{location} references '{scoped_name}', which cannot be resolved: {e}") from e

    return struct_descriptor(struct, identity=scoped_name)


def _service_from_interface(
    module: ModuleType, runtime_iface: Any, schema_file: str | None
) -> ServiceDescription:
    schema = runtime_iface.schema
    name = helper.get_scoped_name(schema)
    descriptors: dict[str, TypeDescriptor[Any]] = {}
    methods: list[MethodDescriptor] = []

    for method in sorted(schema.node.interface.methods, key=lambda m: m.codeOrder):
        runtime_method = schema.methods[method.name]
        location = f"{name}.{method.name}"

        types = []
        for struct_schema in (runtime_method.param_type, runtime_method.result_type):
            type_ = _resolve_struct(module, struct_schema, location)
            types.append(descriptors.setdefault(type_.identity, type_))

        methods.append(MethodDescriptor(name=method.name, request=types[0], response=types[1]))

    logger.debug(f"Found interface '{name}' with {len(methods)} method(s).")
    return ServiceDescription(name=name, methods=tuple(methods), schema_file=schema_file)


def _iter_interfaces(runtime_parent: Any) -> Iterator[Any]:
    """Yield the runtime objects of all interfaces nested in a module, struct or interface."""
    for nested_node in runtime_parent.schema.node.nestedNodes:
        runtime_nested = getattr(runtime_parent, nested_node.name, None)
        if runtime_nested is None or not hasattr(runtime_nested, "schema"):
            continue

        node_type = runtime_nested.schema.node.which()

        if node_type == capnp_types.CapnpElementType.INTERFACE:
            yield runtime_nested

        if node_type in (capnp_types.CapnpElementType.INTERFACE, capnp_types.CapnpElementType.STRUCT):
            yield from _iter_interfaces(runtime_nested)


def load_services(module: ModuleType) -> list[ServiceDescription]:
    """Build one service description per interface declared in a loaded capnp module.

    Nested interfaces are included, parents before their children. Services are named
    by their scoped name, e.g. `Calculator.Meter`.

    Args:
        module (ModuleType): A module returned by `capnp.load` or `capnp.SchemaParser.load`.

    Returns:
        list[ServiceDescription]: The services, in declaration order.
    """
    schema_file = getattr(module, "__file__", None)
    services = [
        _service_from_interface(module, runtime_iface, schema_file) for runtime_iface in _iter_interfaces(module)
    ]

    for service in services:
        walk(service)

    return services
