"""Types definitions that are common in capnproto schemas."""

from __future__ import annotations

from types import ModuleType

CAPNP_SUFFIX = ".capnp"

# Python value types of capnp primitives, as they appear in `to_dict()` output and `new_message(**fields)` input.
CAPNP_TYPE_TO_PYTHON = {
    "void": "None",
    "bool": "bool",
    "int8": "int",
    "int16": "int",
    "int32": "int",
    "int64": "int",
    "uint8": "int",
    "uint16": "int",
    "uint32": "int",
    "uint64": "int",
    "float32": "float",
    "float64": "float",
    "text": "str",
    "data": "bytes",
}

# Nested structs and groups are plain dictionaries on both sides of the wire.
STRUCT_VALUE_HINT = "dict[str, Any]"


class CapnpFieldType:
    """Types of capnproto fields."""

    GROUP = "group"
    SLOT = "slot"


class CapnpElementType:
    """Types of capnproto schema nodes that the client generator cares about."""

    ENUM = "enum"
    STRUCT = "struct"
    LIST = "list"
    INTERFACE = "interface"


ModuleRegistryType = dict[int, tuple[str, ModuleType]]
