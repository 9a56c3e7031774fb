"""Data Transfer Objects for writer.py.

This module contains cohesive data objects that group the names derived for one
type or one method, so that the Writer only deals with already validated names.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from capnp_client_generator import helper
from capnp_client_generator.descriptors import MethodDescriptor, TypeDescriptor
from capnp_client_generator.schema import SchemaError


@dataclass(frozen=True)
class AliasInfo:
    """Names generated for one distinct request or response type.

    Attributes:
        type_: The type descriptor.
        alias_name: Name of the exported type alias (e.g. "PingRequest").
        constant_name: Name of the private module constant holding the descriptor (e.g. "_PING_REQUEST").
    """

    type_: TypeDescriptor[Any]
    alias_name: str
    constant_name: str

    @classmethod
    def create(cls, type_: TypeDescriptor[Any]) -> AliasInfo:
        """Factory method deriving all names from the type identity."""
        alias_name = helper.flat_alias_name(type_.identity)
        return cls(type_=type_, alias_name=alias_name, constant_name=helper.constant_name(alias_name))


def _shape(type_: TypeDescriptor[Any]) -> tuple[Any, ...]:
    return type_.hint, type_.reference, type_.fields


class AliasCollection:
    """The distinct types of a generated module, in first-seen order.

    Types are deduplicated by identity. Registering two different types under one
    identity, or two identities that map onto the same alias name, is a schema error.
    """

    def __init__(self) -> None:
        """Initialize an empty collection."""
        self._by_identity: dict[str, AliasInfo] = {}
        self._by_alias_name: dict[str, str] = {}

    def add(self, type_: TypeDescriptor[Any]) -> AliasInfo:
        """Register a type, unless a type with the same identity was registered before.

        Args:
            type_: The type descriptor.

        Returns:
            The alias information for the type's identity.

        Raises:
            SchemaError: If the identity or the alias name is already taken by a different type.
        """
        known = self._by_identity.get(type_.identity)

        if known is not None:
            if _shape(known.type_) != _shape(type_):
                raise SchemaError(f"Type identity '{type_.identity}' is used for two different types.")
            return known

        info = AliasInfo.create(type_)
        clashing_identity = self._by_alias_name.get(info.alias_name)
        if clashing_identity is not None:
            raise SchemaError(
                f"Types '{clashing_identity}' and '{type_.identity}' would both be exported as '{info.alias_name}'."
            )

        self._by_identity[type_.identity] = info
        self._by_alias_name[info.alias_name] = type_.identity
        return info

    def __iter__(self) -> Iterator[AliasInfo]:
        """Iterate over the registered types in first-seen order."""
        return iter(self._by_identity.values())

    def __len__(self) -> int:
        return len(self._by_identity)

    def __contains__(self, identity: object) -> bool:
        return identity in self._by_identity


@dataclass(frozen=True)
class MethodGenerationContext:
    """Everything needed to emit one client method.

    Attributes:
        method: The method descriptor.
        python_name: Name of the generated coroutine method.
        request: Alias information of the request type.
        response: Alias information of the response type.
    """

    method: MethodDescriptor
    python_name: str
    request: AliasInfo
    response: AliasInfo

    @classmethod
    def create(cls, method: MethodDescriptor, aliases: AliasCollection) -> MethodGenerationContext:
        """Factory method registering the method's types with the module's aliases."""
        return cls(
            method=method,
            python_name=helper.method_local_name(method.name),
            request=aliases.add(method.request),
            response=aliases.add(method.response),
        )
