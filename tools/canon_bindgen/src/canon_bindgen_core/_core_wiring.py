from __future__ import annotations

import logging
from dataclasses import dataclass

from canon_codegen_core import to_pascal_case, to_snake_case

from ._core_base import (
    MEMORY_EXPORT,
    POST_RETURN_PREFIX,
    REALLOC_EXPORT,
    ROOT_INTERFACE,
    TOOL_NAME,
    TOOL_VERSION,
    BindgenError,
    LayoutError,
)
from ._core_classify import Classification, classify
from ._core_codegen import INDENT, BindgenContext, render_export_wrapper, render_import_adapter
from ._core_layout import SizeAlign
from ._core_runtime import expand_helpers, helper_imports, render_helpers
from ._core_types import Enum, Flags, Function, Record, Resolve, Result, Variant

logger = logging.getLogger(__name__)

# Attributes the generated world class defines itself.
WORLD_MEMBERS = frozenset({"exports", "bind", "build_imports", "instantiate"})


@dataclass(frozen=True)
class FunctionBinding:
    """Where one function lives on both sides of the boundary."""

    interface: str | None
    function: Function
    core_module: str
    core_name: str
    host_name: str
    classification: Classification

    @property
    def group_key(self) -> str:
        return self.interface if self.interface is not None else ROOT_INTERFACE


def export_core_name(interface: str | None, func: Function) -> str:
    if interface is None:
        return func.name
    return f"{interface}#{func.name}"


def host_name(name: str) -> str:
    ident = to_snake_case(name)
    if ident in WORLD_MEMBERS:
        ident = f"{ident}_"
    return ident


def _check_unique_hosts(bindings: list[FunctionBinding], direction: str) -> None:
    seen: dict[tuple[str, str], str] = {}
    for binding in bindings:
        key = (binding.group_key, binding.host_name)
        if key in seen:
            raise LayoutError(
                f"{direction} functions '{seen[key]}' and '{binding.function.name}' both map to "
                f"Python name '{binding.host_name}'"
            )
        seen[key] = binding.function.name


def plan_imports(resolve: Resolve) -> list[FunctionBinding]:
    out: list[FunctionBinding] = []
    for interface, functions in resolve.imports.groups():
        for func in functions:
            out.append(
                FunctionBinding(
                    interface=interface,
                    function=func,
                    core_module=interface if interface is not None else ROOT_INTERFACE,
                    core_name=func.name,
                    host_name=host_name(func.name),
                    classification=classify(func),
                )
            )
    _check_unique_hosts(out, "import")
    return out


def plan_exports(resolve: Resolve) -> list[FunctionBinding]:
    out: list[FunctionBinding] = []
    for interface, functions in resolve.exports.groups():
        for func in functions:
            out.append(
                FunctionBinding(
                    interface=interface,
                    function=func,
                    core_module="",
                    core_name=export_core_name(interface, func),
                    host_name=host_name(func.name),
                    classification=classify(func),
                )
            )
    _check_unique_hosts(out, "export")
    root_names = {binding.host_name for binding in out if binding.interface is None}
    interface_attrs: dict[str, str] = {}
    for interface, _ in resolve.exports.groups():
        if interface is None:
            continue
        attr = host_name(interface)
        if attr in root_names:
            raise LayoutError(f"export interface '{interface}' collides with a root function named '{attr}'")
        if attr in interface_attrs:
            raise LayoutError(
                f"export interfaces '{interface_attrs[attr]}' and '{interface}' both map to Python name '{attr}'"
            )
        interface_attrs[attr] = interface
    return out


def _generate(binding: FunctionBinding, render, ctx: BindgenContext, index: int) -> tuple[list[str], bool]:
    try:
        return render(ctx, binding.function, index)
    except BindgenError as exc:
        raise type(exc)(f"function '{binding.function.name}': {exc}") from exc


def _indent(lines: list[str], depth: int) -> list[str]:
    prefix = INDENT * depth
    return [prefix + line if line else line for line in lines]


def _dict_literal(groups: dict[str, list[tuple[str, str]]], depth: int) -> list[str]:
    if not groups:
        return ["{}"]
    prefix = INDENT * depth
    lines = ["{"]
    for group, entries in groups.items():
        lines.append(f'{prefix}{INDENT}"{group}": {{')
        for name, expr in entries:
            lines.append(f'{prefix}{INDENT * 2}"{name}": {expr},')
        lines.append(f"{prefix}{INDENT}}},")
    lines.append(f"{prefix}}}")
    return lines


def render_build_imports(ctx: BindgenContext, bindings: list[FunctionBinding]) -> tuple[list[str], bool]:
    body: list[str] = []
    uses_memory = False
    namespaces: dict[str, str] = {}
    groups: dict[str, list[tuple[str, str]]] = {}
    for index, binding in enumerate(bindings):
        module = binding.core_module
        if module not in namespaces:
            namespaces[module] = f"_ns_{len(namespaces)}"
            body.append(f'{namespaces[module]} = host["{module}"]')
        host_expr = f"_host_{index}"
        body.append(f'{host_expr} = getattr({namespaces[module]}, "{binding.host_name}", None)')
        body.append(f"if {host_expr} is None:")
        body.append(f'{INDENT}raise LookupError("no host function for import {module}::{binding.core_name}")')
        if binding.classification is Classification.SCALAR:
            groups.setdefault(module, []).append((binding.core_name, host_expr))
            logger.debug("import '%s::%s' passes the host function through", module, binding.core_name)
            continue
        lines, memory = _generate(binding, render_import_adapter, ctx, index)
        uses_memory = uses_memory or memory
        body.append("")
        body.extend(lines)
        body.append("")
        groups.setdefault(module, []).append((binding.core_name, f"_adapt_{index}"))
        logger.debug("import '%s::%s' goes through an adapter", module, binding.core_name)

    literal = _dict_literal(groups, 0)
    body.append(f"return {literal[0]}")
    body.extend(literal[1:])

    lines = [
        "def build_imports(self, host):",
        f'{INDENT}"""Import object for the linker; ``host`` maps interface names (or "{ROOT_INTERFACE}") to providers."""',
    ]
    lines.extend(_indent(body, 1))
    return lines, uses_memory


def render_bind(
    ctx: BindgenContext, bindings: list[FunctionBinding], needs_runtime: bool
) -> tuple[list[str], bool]:
    body = ["_store = self._store"]
    uses_memory = False
    groups: dict[str, list[tuple[str, str]]] = {}
    members: list[str] = []
    for index, binding in enumerate(bindings):
        if binding.classification is Classification.SCALAR:
            body.append(f'_fast_{index} = functools.partial(exports["{binding.core_name}"], _store)')
            bound = f"_fast_{index}"
            logger.debug("export '%s' bound directly", binding.core_name)
        else:
            lines, memory = _generate(binding, render_export_wrapper, ctx, index)
            uses_memory = uses_memory or memory
            body.append(f'_export_{index} = exports["{binding.core_name}"]')
            body.append(f'_post_{index} = exports.get("{POST_RETURN_PREFIX}{binding.core_name}")')
            body.append("")
            body.extend(lines)
            body.append("")
            bound = f"_wrap_{index}"
            logger.debug("export '%s' bound through a marshaling wrapper", binding.core_name)
        groups.setdefault(binding.group_key, []).append((binding.function.name, bound))
        if binding.interface is None:
            members.append(f"self.{binding.host_name} = {bound}")

    literal = _dict_literal(groups, 0)
    body.append(f"self.exports = {literal[0]}")
    body.extend(literal[1:])
    body.extend(members)
    for group, entries in groups.items():
        if group == ROOT_INTERFACE:
            continue
        names = {binding.function.name: binding.host_name for binding in bindings if binding.group_key == group}
        kwargs = ", ".join(f"{names[name]}={bound}" for name, bound in entries)
        body.append(f"self.{host_name(group)} = types.SimpleNamespace({kwargs})")

    runtime_lines: list[str] = []
    if needs_runtime or uses_memory:
        runtime_lines = [
            f'_rt = _Runtime(self._store, exports["{MEMORY_EXPORT}"], exports.get("{REALLOC_EXPORT}"))',
            "self._rt = _rt",
        ]
    lines = [
        "def bind(self, exports):",
        f'{INDENT}"""Wrap the instance exports and expose them under their host-visible names."""',
    ]
    lines.extend(_indent(runtime_lines + body, 1))
    return lines, uses_memory


INSTANTIATE_SOURCE = '''\
@classmethod
def instantiate(cls, store, module, host):
    import wasmtime

    world = cls(store)
    imports = world.build_imports(host)
    linker = wasmtime.Linker(store.engine)
    for item in module.imports:
        try:
            func = imports[item.module][item.name]
        except KeyError:
            raise LookupError(f"no host function for import {item.module}::{item.name}") from None
        linker.define(store, item.module, item.name, wasmtime.Func(store, item.type, func))
    instance = linker.instantiate(store, module)
    world.bind(instance.exports(store))
    return world
'''

LOAD_MODULE_SOURCE = '''\
def load_module(engine, path=None):
    import wasmtime

    if path is None:
        path = Path(__file__).with_name(WASM_PATH)
    return wasmtime.Module.from_file(engine, str(path))
'''


def _render_header(resolve: Resolve, imports: set[str]) -> list[str]:
    plain = sorted(item for item in imports if item.startswith("import "))
    from_imports: dict[str, set[str]] = {}
    for item in imports:
        if item.startswith("from "):
            module, _, names = item[len("from ") :].partition(" import ")
            from_imports.setdefault(module, set()).update(name.strip() for name in names.split(","))
    lines = [
        f"# Auto-generated by {TOOL_NAME} {TOOL_VERSION} from world '{resolve.world}'. Do not edit manually.",
        "from __future__ import annotations",
        "",
    ]
    lines.extend(plain)
    for module in sorted(from_imports):
        lines.append(f"from {module} import {', '.join(sorted(from_imports[module]))}")
    return lines


def generate_bindings(resolve: Resolve, *, class_name: str | None = None, wasm_path: str | None = None) -> str:
    """Render the host glue module for ``resolve`` as Python source text."""
    sizes = SizeAlign()
    sizes.fill(resolve)
    world_class = class_name or to_pascal_case(resolve.world)
    ctx = BindgenContext(resolve, sizes, world_class)

    import_bindings = plan_imports(resolve)
    export_bindings = plan_exports(resolve)

    import_lines, imports_memory = render_build_imports(ctx, import_bindings)
    bind_lines, exports_memory = render_bind(ctx, export_bindings, imports_memory)
    needs_runtime = imports_memory or exports_memory
    if needs_runtime:
        ctx.require("runtime")
    if any(isinstance(typedef.kind, Result) for typedef in resolve.types):
        ctx.require("result")

    helpers = expand_helpers(ctx.helpers)
    imports = {"from pathlib import Path"} | helper_imports(helpers)
    kinds = [typedef.kind for typedef in resolve.types if typedef.name]
    if any(isinstance(kind, (Record, Variant)) for kind in kinds):
        imports.add("from dataclasses import dataclass")
    if any(isinstance(kind, Variant) for kind in kinds):
        imports.add("from typing import Union")
    if any(isinstance(kind, (Enum, Flags)) for kind in kinds):
        imports.add("import enum")
    if any(binding.classification is Classification.SCALAR for binding in export_bindings):
        imports.add("import functools")
    if any(binding.interface is not None for binding in export_bindings):
        imports.add("import types")

    blocks: list[str] = ["\n".join(_render_header(resolve, imports)) + "\n"]
    blocks.append(f'WASM_PATH = "{wasm_path or resolve.world + ".wasm"}"\n')
    blocks.extend(render_helpers(helpers))
    blocks.extend(ctx.render_type_definitions())
    blocks.append(LOAD_MODULE_SOURCE)

    class_lines = [
        f"class {world_class}:",
        f'{INDENT}"""Host bindings for the \'{resolve.world}\' world."""',
        "",
        f"{INDENT}def __init__(self, store):",
        f"{INDENT * 2}self._store = store",
        f"{INDENT * 2}self._rt = None",
        f"{INDENT * 2}self.exports = {{}}",
        "",
    ]
    class_lines.extend(_indent(INSTANTIATE_SOURCE.rstrip("\n").split("\n"), 1))
    class_lines.append("")
    class_lines.extend(_indent(import_lines, 1))
    class_lines.append("")
    class_lines.extend(_indent(bind_lines, 1))
    blocks.append("\n".join(class_lines) + "\n")

    exported = sorted(set(ctx.class_names.values()) | set(ctx.case_class_names.values()))
    if "result" in helpers:
        exported = ["Err", "Ok"] + exported
    names = [world_class, "load_module"] + exported
    blocks.append("__all__ = [\n" + "".join(f'{INDENT}"{name}",\n' for name in names) + "]\n")

    logger.debug(
        "generated bindings for world '%s': %d imports, %d exports, helpers=%s",
        resolve.world,
        len(import_bindings),
        len(export_bindings),
        ",".join(helpers) or "<none>",
    )
    return "\n\n".join(blocks)
