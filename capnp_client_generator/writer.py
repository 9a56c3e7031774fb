"""Generate typed client modules for service descriptions.

A generated module contains one type alias per distinct request/response type, one
private descriptor constant per alias, and for every service a client class with one
coroutine method per remote method, followed by a module level singleton instance.
All methods delegate to `DispatchClient._dispatch`, so none of them carries its own
encoding, decoding or error handling.
"""

from __future__ import annotations

import logging
import os.path
import pathlib
import re
from collections.abc import Sequence
from typing import Literal

from capnp_client_generator import helper, schema
from capnp_client_generator.descriptors import ServiceDescription, TypeDescriptor
from capnp_client_generator.runtime import DispatchClient
from capnp_client_generator.schema import SchemaError
from capnp_client_generator.writer_dto import AliasCollection, AliasInfo, MethodGenerationContext

logger = logging.getLogger(__name__)

RUNTIME_MODULE = "capnp_client_generator.runtime"
SCHEMA_VARIABLE = "_schema"
INDENT = "    "

IMPORTED_NAMES = (
    "annotations",
    "Any",
    "TypeAlias",
    "TypedDict",
    "DispatchClient",
    "TypeDescriptor",
    "struct_descriptor",
)
SCHEMA_LOADER_NAMES = ("os", "capnp", "here", "module_file", "import_path", SCHEMA_VARIABLE)

# Names that a generated method must not shadow.
RESERVED_METHOD_NAMES = frozenset(name for name in dir(DispatchClient)) | {"_executor"}

_ANY_PATTERN = re.compile(r"\bAny\b")


class Writer:
    """A class that handles writing the client module, based on one or more service descriptions."""

    VALID_TYPING_IMPORTS = Literal["Any", "TypeAlias", "TypedDict"]

    def __init__(
        self,
        services: Sequence[ServiceDescription],
        output_directory: str | None = None,
        import_paths: list[str] | None = None,
        source_name: str | None = None,
    ):
        """Initialize the client writer with the services to emit.

        Args:
            services (Sequence[ServiceDescription]): The services to write clients for.
            output_directory (str | None): Directory of the generated module. Schema and import paths
                are written relative to it; defaults to the schema's own directory.
            import_paths (list[str] | None): Additional import paths for resolving absolute capnp imports.
            source_name (str | None): Name of the source the services came from, used in the module docstring.
        """
        schema_files = {service.schema_file for service in services if service.schema_file}
        if len(schema_files) > 1:
            raise SchemaError(f"All services of one module must come from one schema file, got {sorted(schema_files)}.")

        self._services = list(services)
        self._schema_file = pathlib.Path(schema_files.pop()) if schema_files else None
        self._output_directory = pathlib.Path(output_directory) if output_directory else None
        self._import_paths = [pathlib.Path(p) for p in import_paths] if import_paths else []

        self._imports: list[str] = []
        self._add_import("from __future__ import annotations")
        self._typing_imports: set[Writer.VALID_TYPING_IMPORTS] = set()
        self._runtime_imports: set[str] = {"DispatchClient", "TypeDescriptor"}
        self._reference_imports: set[str] = set()

        self._aliases = AliasCollection()
        self._module_names: dict[str, str] = {}
        self._exports: list[str] = []
        self._classes: list[str] = []
        self._descriptor_expressions: dict[str, str] = {}

        if source_name is None:
            source_name = self._schema_file.name if self._schema_file else ", ".join(s.name for s in self._services)
        self.docstring = f'"""This is an automatically generated client for `{source_name}`."""'

    def _add_typing_import(self, name: Writer.VALID_TYPING_IMPORTS):
        """Add an import for a name from the 'typing' package."""
        self._typing_imports.add(name)

    def _add_import(self, import_line: str):
        """Add a full import line, e.g. 'import os'.

        Args:
            import_line (str): The import line to add.
        """
        if import_line not in self._imports:
            self._imports.append(import_line)

    def _claim_module_name(self, name: str, owner: str):
        """Reserve a module level name, failing if something else already uses it."""
        previous_owner = self._module_names.get(name)
        if previous_owner is not None and previous_owner != owner:
            raise SchemaError(f"The generated name '{name}' is used by both {previous_owner} and {owner}.")
        self._module_names[name] = owner

    @property
    def imports(self) -> list[str]:
        """Get the full list of import lines, grouped like isort would group them.

        Returns:
            list[str]: The import lines, with blank lines between groups.
        """
        stdlib_lines: list[str] = []
        if self._schema_file:
            stdlib_lines.append("import os")
        if self._typing_imports:
            stdlib_lines.append("from typing import " + ", ".join(sorted(self._typing_imports)))

        third_party_lines = ["import capnp"] if self._schema_file else []
        third_party_lines.extend(f"import {module}" for module in sorted(self._reference_imports))

        first_party_lines = [f"from {RUNTIME_MODULE} import {', '.join(sorted(self._runtime_imports))}"]

        import_lines: list[str] = list(self._imports)
        for group in (stdlib_lines, third_party_lines, first_party_lines):
            if group:
                import_lines.append("")
                import_lines.extend(group)

        return import_lines

    def _relative_to_output(self, path: pathlib.Path) -> str | None:
        reference_dir = self._output_directory if self._output_directory else self._schema_file.parent
        try:
            return pathlib.Path(os.path.relpath(path, reference_dir)).as_posix()
        except (ValueError, OSError):
            # Different drives on Windows
            return None

    def _schema_loader_lines(self) -> list[str]:
        """Lines that load the capnp schema next to the generated module at import time."""
        assert self._schema_file is not None

        out = ["capnp.remove_import_hook()", "here = os.path.dirname(os.path.abspath(__file__))"]

        rel_to_schema = self._relative_to_output(self._schema_file) if self._output_directory else None
        if self._output_directory and rel_to_schema is None:
            out.append(f'module_file = "{self._schema_file.as_posix()}"')
        else:
            relative_path = rel_to_schema or self._schema_file.name
            out.append(f'module_file = os.path.abspath(os.path.join(here, "{relative_path}"))')

        import_paths = ["here"]
        for import_path_dir in sorted(self._import_paths):
            rel_path = self._relative_to_output(import_path_dir)
            if rel_path is not None and rel_path != ".":
                import_paths.append(f'os.path.join(here, "{rel_path}")')

        out.append(f"import_path = [{', '.join(import_paths)}]")
        out.append(f"{SCHEMA_VARIABLE} = capnp.load(module_file, imports=import_path)")
        return out

    def _descriptor_expression(self, type_: TypeDescriptor) -> str:
        """The expression that recreates a type descriptor when the generated module is imported.

        Raises:
            SchemaError: If the descriptor can neither be imported nor loaded from a schema file.
        """
        if type_.reference:
            try:
                module, attribute = helper.split_reference(type_.reference)
            except ValueError as e:
                raise SchemaError(f"Type '{type_.identity}' has an invalid reference: {e}") from e

            self._claim_module_name(module.split(".", 1)[0], "an import")
            self._reference_imports.add(module)
            return f"{module}.{attribute}"

        if self._schema_file:
            self._runtime_imports.add("struct_descriptor")
            return f"struct_descriptor({SCHEMA_VARIABLE}.{type_.identity})"

        raise SchemaError(
            f"Type '{type_.identity}' has no import reference and no schema file it could be loaded from."
        )

    def _gen_alias(self, info: AliasInfo) -> str:
        """Generate the declaration of one alias.

        Types with known fields become a `TypedDict` in functional syntax, so field names
        that are Python keywords stay valid. Other types alias their hint.

        Args:
            info (AliasInfo): The alias to declare.

        Returns:
            str: The declaration line.
        """
        type_ = info.type_

        if type_.fields is None:
            self._add_typing_import("TypeAlias")
            hints = [type_.hint]
            declaration = f"{info.alias_name}: TypeAlias = {type_.hint}"
        else:
            self._add_typing_import("TypedDict")
            hints = [hint for _, hint in type_.fields]
            items = ", ".join(f'"{name}": {hint}' for name, hint in type_.fields)
            declaration = f'{info.alias_name} = TypedDict("{info.alias_name}", {{{items}}}, total=False)'

        if any(_ANY_PATTERN.search(hint) for hint in hints):
            self._add_typing_import("Any")

        return declaration

    def _gen_aliases(self) -> list[str]:
        """Generate the alias and descriptor declarations, once per distinct type."""
        if not len(self._aliases):
            return []

        alias_lines: list[str] = []
        descriptor_lines: list[str] = []

        for info in self._aliases:
            alias_lines.append(self._gen_alias(info))
            expression = self._descriptor_expressions[info.type_.identity]
            descriptor_lines.append(f"{info.constant_name}: TypeDescriptor[{info.alias_name}] = {expression}")

        return [*alias_lines, "", *descriptor_lines]

    def _gen_client_method(self, context: MethodGenerationContext) -> list[str]:
        """Generate one coroutine method that narrows `_dispatch` to the method's types.

        Args:
            context (MethodGenerationContext): The method to generate.

        Returns:
            list[str]: The indented method lines.
        """
        header = helper.new_function(
            context.python_name,
            parameters=["self", helper.TypeHintedVariable("request", context.request.alias_name)],
            return_type=context.response.alias_name,
            is_async=True,
        )
        body = (
            f'return await self._dispatch("{context.method.name}", '
            f"{context.request.constant_name}, {context.response.constant_name}, request)"
        )

        lines = [f"{INDENT}{header}"]
        if context.method.doc:
            lines.append(f"{INDENT * 2}{helper.new_docstring(context.method.doc)}")
        lines.append(f"{INDENT * 2}{body}")
        return lines

    def _gen_client_class(self, service: ServiceDescription, position: int) -> list[str]:
        """Generate the client class for a service, followed by its singleton.

        Args:
            service (ServiceDescription): The service.
            position (int): Position of the service in the module, tells apart services that share a name.

        Returns:
            list[str]: The lines of the class and the singleton assignment.
        """
        methods = schema.walk(service)

        class_name = helper.service_class_name(service.name)
        instance_name = helper.singleton_name(service.name)
        if not instance_name:
            raise SchemaError(f"Service '{service.name}' leaves no name for its singleton once 'Service' is stripped.")

        label = f"service #{position} '{service.name}'"
        self._claim_module_name(class_name, f"the client class of {label}")
        self._claim_module_name(instance_name, f"the singleton of {label}")

        python_names: dict[str, str] = {}
        contexts: list[MethodGenerationContext] = []
        for method in methods:
            context = MethodGenerationContext.create(method, self._aliases)

            if context.python_name in RESERVED_METHOD_NAMES:
                raise SchemaError(
                    f"{service.name}.{method.name}: '{context.python_name}' is reserved by {DispatchClient.__name__}."
                )
            if context.python_name in python_names:
                raise SchemaError(
                    f"{service.name}: methods '{python_names[context.python_name]}' and '{method.name}' "
                    f"would both be generated as '{context.python_name}'."
                )
            python_names[context.python_name] = method.name
            contexts.append(context)

        doc = service.doc or f"Client for the `{service.name}` service."
        lines = [helper.new_class_declaration(class_name, ["DispatchClient"])]
        lines.append(f"{INDENT}{helper.new_docstring(doc)}")

        for context in contexts:
            lines.append("")
            lines.extend(self._gen_client_method(context))

        lines.extend(["", "", "# Convenience export for singleton", f"{instance_name} = {class_name}()"])

        self._exports.extend([class_name, instance_name])
        logger.debug(f"Generated client '{class_name}' with {len(contexts)} method(s).")
        return lines

    def generate_all(self):
        """Generate the classes of all services. Must be called before `dumps`."""
        self._aliases = AliasCollection()
        self._module_names = {}
        self._exports = []
        self._classes = []
        self._descriptor_expressions = {}
        self._reference_imports = set()
        self._runtime_imports = {"DispatchClient", "TypeDescriptor"}
        self._typing_imports = set()

        for name in IMPORTED_NAMES:
            self._claim_module_name(name, "an import")
        if self._schema_file:
            for name in SCHEMA_LOADER_NAMES:
                self._claim_module_name(name, "the schema loader")

        for position, service in enumerate(self._services, start=1):
            self._classes.append("\n".join(self._gen_client_class(service, position)))

        for info in self._aliases:
            self._claim_module_name(info.alias_name, f"the alias for '{info.type_.identity}'")
            self._claim_module_name(info.constant_name, f"the descriptor for '{info.type_.identity}'")
            self._descriptor_expressions[info.type_.identity] = self._descriptor_expression(info.type_)

    def dumps(self) -> str:
        """Generates the source of the client module.

        Returns:
            str: The output string.
        """
        # Aliases are collected while generating the classes, but have to be emitted first.
        alias_lines = self._gen_aliases()

        out = [self.docstring, ""]
        out.extend(self.imports)

        if self._schema_file:
            out.extend(["", *self._schema_loader_lines()])

        exported_names = [info.alias_name for info in self._aliases] + self._exports
        quoted_names = ", ".join(f'"{name}"' for name in exported_names)
        out.extend(["", f"__all__ = [{quoted_names}]"])

        if alias_lines:
            out.extend(["", *alias_lines])

        for class_source in self._classes:
            out.extend(["", "", class_source])

        return "\n".join(out) + "\n"


def emit_client(
    service: ServiceDescription | Sequence[ServiceDescription],
    output_directory: str | None = None,
    import_paths: list[str] | None = None,
) -> str:
    """Generate the source of a client module, as a pure function of its input.

    Args:
        service (ServiceDescription | Sequence[ServiceDescription]): The service(s) to emit.
        output_directory (str | None): Directory of the generated module, see `Writer`.
        import_paths (list[str] | None): Additional capnp import paths, see `Writer`.

    Returns:
        str: The generated module source.

    Raises:
        SchemaError: If the services cannot be turned into a client module.
    """
    services = [service] if isinstance(service, ServiceDescription) else list(service)
    writer = Writer(services, output_directory=output_directory, import_paths=import_paths)
    writer.generate_all()
    return writer.dumps()
