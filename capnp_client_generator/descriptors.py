"""Normalized service descriptions shared by the generator and the generated clients."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from capnp_client_generator import capnp_types, helper

T = TypeVar("T")


@dataclass(frozen=True)
class TypeDescriptor(Generic[T]):
    """A request or response shape: a stable identity plus its binary codec.

    Attributes:
        identity: Stable name used to deduplicate aliases (e.g. "Echo.PingRequest").
        encode: Turns a value of the described shape into raw bytes.
        decode: Turns raw bytes back into a value of the described shape.
        hint: The annotation that the generated alias resolves to.
        reference: Import reference ("package.module:attribute") of this descriptor,
            used by generated code when no capnp schema file backs the service.
        fields: Field names and their value hints. If set, the generated alias is a
            `TypedDict` with these keys instead of an alias of `hint`.
    """

    identity: str
    encode: Callable[[T], bytes] = field(compare=False, repr=False)
    decode: Callable[[bytes], T] = field(compare=False, repr=False)
    hint: str = "Any"
    reference: str | None = None
    fields: tuple[tuple[str, str], ...] | None = None


@dataclass(frozen=True)
class MethodDescriptor:
    """A single remote method. The name doubles as the wire command string."""

    name: str
    request: TypeDescriptor[Any]
    response: TypeDescriptor[Any]
    doc: str = ""


@dataclass(frozen=True)
class ServiceDescription:
    """An ordered, immutable set of remote methods belonging to one service.

    The name may be scoped (e.g. "Calculator.Meter" for a nested interface).
    """

    name: str
    methods: tuple[MethodDescriptor, ...] = ()
    schema_file: str | None = None
    doc: str = ""


def type_hint(type_: Any) -> str:
    """The Python value hint for a capnp `Type`, as used in dictionaries of field values.

    Args:
        type_ (Any): A `schema.capnp` `Type` reader, e.g. `field.slot.type`.

    Returns:
        str: The hint, e.g. `str` for `Text` or `list[int]` for `List(UInt8)`.
    """
    which = type_.which()

    if which in capnp_types.CAPNP_TYPE_TO_PYTHON:
        return capnp_types.CAPNP_TYPE_TO_PYTHON[which]

    if which == capnp_types.CapnpElementType.LIST:
        return f"list[{type_hint(type_.list.elementType)}]"

    if which == capnp_types.CapnpElementType.ENUM:
        # Enumerants are exchanged by name.
        return "str"

    if which == capnp_types.CapnpElementType.STRUCT:
        return capnp_types.STRUCT_VALUE_HINT

    return "Any"


def struct_fields(struct: Any) -> tuple[tuple[str, str], ...]:
    """Field names and value hints of a pycapnp struct type, in schema order."""
    fields = []

    for struct_field in struct.schema.node.struct.fields:
        if struct_field.which() == capnp_types.CapnpFieldType.GROUP:
            hint = capnp_types.STRUCT_VALUE_HINT
        else:
            hint = type_hint(struct_field.slot.type)
        fields.append((struct_field.name, hint))

    return tuple(fields)


def struct_descriptor(struct: Any, identity: str | None = None) -> TypeDescriptor[Any]:
    """Build a descriptor for a pycapnp struct type.

    Values are encoded with the packed capnp encoding. Mappings of field values, builders
    and readers are accepted for encoding; decoding yields a dictionary of field values
    (`to_dict()`), so both directions match the generated `TypedDict`.

    Args:
        struct: A struct type from a loaded capnp module (e.g. `echo_capnp.PingRequest`).
        identity: Overrides the identity derived from the schema's display name.

    Returns:
        TypeDescriptor: The descriptor wrapping the struct type.
    """
    scoped_name = helper.get_scoped_name(struct.schema)

    def encode(value: Any) -> bytes:
        if isinstance(value, Mapping):
            return struct.new_message(**value).to_bytes_packed()

        if hasattr(value, "to_bytes_packed"):
            return value.to_bytes_packed()

        if hasattr(value, "as_builder"):
            return value.as_builder().to_bytes_packed()

        raise TypeError(f"Cannot encode {type(value).__name__} as {scoped_name}.")

    def decode(data: bytes) -> dict[str, Any]:
        return struct.from_bytes_packed(data).to_dict()

    return TypeDescriptor(
        identity=identity or scoped_name,
        encode=encode,
        decode=decode,
        hint=capnp_types.STRUCT_VALUE_HINT,
        fields=struct_fields(struct),
    )
