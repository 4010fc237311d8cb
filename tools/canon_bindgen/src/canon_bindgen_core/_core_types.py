from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from ._core_base import (
    IDL_SCHEMA_VERSION,
    IdlError,
    LayoutError,
    load_json,
    validate_with_jsonschema,
)

logger = logging.getLogger(__name__)

SCALAR_KINDS = (
    "bool",
    "char",
    "s8",
    "u8",
    "s16",
    "u16",
    "s32",
    "u32",
    "s64",
    "u64",
    "float32",
    "float64",
)
PRIMITIVE_KINDS = SCALAR_KINDS + ("string",)

# A type reference is a primitive kind name or an index into Resolve.types.
TypeRef = Union[str, int]


@dataclass(frozen=True)
class Field:
    name: str
    type: TypeRef


@dataclass(frozen=True)
class Case:
    name: str
    type: TypeRef | None = None


@dataclass(frozen=True)
class List:
    element: TypeRef


@dataclass(frozen=True)
class Tuple:
    types: tuple[TypeRef, ...]


@dataclass(frozen=True)
class Record:
    fields: tuple[Field, ...]


@dataclass(frozen=True)
class Variant:
    cases: tuple[Case, ...]


@dataclass(frozen=True)
class Enum:
    cases: tuple[str, ...]


@dataclass(frozen=True)
class Flags:
    flags: tuple[str, ...]


@dataclass(frozen=True)
class Option:
    inner: TypeRef


@dataclass(frozen=True)
class Result:
    ok: TypeRef | None = None
    err: TypeRef | None = None


@dataclass(frozen=True)
class Handle:
    resource: TypeRef
    borrow: bool = False


@dataclass(frozen=True)
class Resource:
    pass


@dataclass(frozen=True)
class Alias:
    target: TypeRef


TypeKind = Union[List, Tuple, Record, Variant, Enum, Flags, Option, Result, Handle, Resource, Alias]
NOMINAL_KINDS = (Record, Variant, Enum, Flags, Resource)


@dataclass(frozen=True)
class TypeDef:
    kind: TypeKind
    name: str | None = None
    interface: str | None = None

    def describe(self, type_id: int) -> str:
        label = type(self.kind).__name__.lower()
        if self.name:
            return f"{label} '{self.name}' (type #{type_id})"
        return f"anonymous {label} (type #{type_id})"


@dataclass(frozen=True)
class Param:
    name: str
    type: TypeRef


@dataclass(frozen=True)
class AnonResults:
    type: TypeRef | None = None


@dataclass(frozen=True)
class NamedResults:
    results: tuple[Param, ...] = ()


@dataclass(frozen=True)
class Function:
    name: str
    params: tuple[Param, ...] = ()
    results: AnonResults | NamedResults = AnonResults()

    def param_types(self) -> list[TypeRef]:
        return [param.type for param in self.params]

    def result_types(self) -> list[TypeRef]:
        if isinstance(self.results, NamedResults):
            return [item.type for item in self.results.results]
        if self.results.type is None:
            return []
        return [self.results.type]


@dataclass(frozen=True)
class Interface:
    name: str
    functions: tuple[Function, ...] = ()


@dataclass(frozen=True)
class WorldItems:
    interfaces: tuple[Interface, ...] = ()
    functions: tuple[Function, ...] = ()

    def groups(self) -> list[tuple[str | None, tuple[Function, ...]]]:
        """Function groups in emission order; the root group has interface ``None``."""
        out: list[tuple[str | None, tuple[Function, ...]]] = [(iface.name, iface.functions) for iface in self.interfaces]
        if self.functions:
            out.append((None, self.functions))
        return out


@dataclass(frozen=True)
class Resolve:
    world: str
    types: tuple[TypeDef, ...] = ()
    imports: WorldItems = field(default_factory=WorldItems)
    exports: WorldItems = field(default_factory=WorldItems)

    def typedef(self, type_id: int) -> TypeDef:
        if not isinstance(type_id, int) or type_id < 0 or type_id >= len(self.types):
            raise LayoutError(f"type reference #{type_id} does not exist")
        return self.types[type_id]

    def unalias(self, ref: TypeRef) -> TypeRef:
        seen: set[int] = set()
        while isinstance(ref, int):
            kind = self.typedef(ref).kind
            if not isinstance(kind, Alias):
                break
            if ref in seen:
                raise LayoutError(f"alias cycle through type #{ref}")
            seen.add(ref)
            ref = kind.target
        return ref

    def describe(self, ref: TypeRef | None) -> str:
        if ref is None:
            return "<none>"
        if isinstance(ref, str):
            return ref
        return self.typedef(ref).describe(ref)

    def all_functions(self) -> list[Function]:
        out: list[Function] = []
        for items in (self.imports, self.exports):
            for _, functions in items.groups():
                out.extend(functions)
        return out


def type_children(kind: TypeKind) -> list[TypeRef]:
    if isinstance(kind, List):
        return [kind.element]
    if isinstance(kind, Tuple):
        return list(kind.types)
    if isinstance(kind, Record):
        return [item.type for item in kind.fields]
    if isinstance(kind, Variant):
        return [case.type for case in kind.cases if case.type is not None]
    if isinstance(kind, Option):
        return [kind.inner]
    if isinstance(kind, Result):
        return [ref for ref in (kind.ok, kind.err) if ref is not None]
    if isinstance(kind, Handle):
        return [kind.resource]
    if isinstance(kind, Alias):
        return [kind.target]
    return []


def _check_ref(resolve: Resolve, ref: Any, label: str) -> None:
    if isinstance(ref, str):
        if ref not in PRIMITIVE_KINDS:
            raise LayoutError(f"{label} refers to unknown primitive type '{ref}'")
        return
    if not isinstance(ref, int) or isinstance(ref, bool) or ref < 0 or ref >= len(resolve.types):
        raise LayoutError(f"{label} refers to missing type #{ref}")


def _check_unique(names: list[str], label: str) -> None:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise LayoutError(f"{label} declares '{name}' more than once")
        seen.add(name)


def validate_resolve(resolve: Resolve) -> None:
    """Check that the type graph is a well-formed DAG and that every signature is resolvable."""
    for type_id, typedef in enumerate(resolve.types):
        label = typedef.describe(type_id)
        kind = typedef.kind
        for child in type_children(kind):
            _check_ref(resolve, child, label)
        if isinstance(kind, NOMINAL_KINDS) and not typedef.name:
            raise LayoutError(f"{label} must be named")
        if isinstance(kind, Record):
            _check_unique([item.name for item in kind.fields], label)
        elif isinstance(kind, Variant):
            if not kind.cases:
                raise LayoutError(f"{label} must declare at least one case")
            _check_unique([case.name for case in kind.cases], label)
        elif isinstance(kind, Enum):
            if not kind.cases:
                raise LayoutError(f"{label} must declare at least one case")
            _check_unique(list(kind.cases), label)
        elif isinstance(kind, Flags):
            _check_unique(list(kind.flags), label)

    # Iterative DFS with three colours; a grey node reached again closes a cycle.
    state = [0] * len(resolve.types)
    for root in range(len(resolve.types)):
        if state[root]:
            continue
        stack: list[tuple[int, list[TypeRef]]] = [(root, type_children(resolve.types[root].kind))]
        state[root] = 1
        while stack:
            node, pending = stack[-1]
            if not pending:
                state[node] = 2
                stack.pop()
                continue
            child = pending.pop()
            if not isinstance(child, int):
                continue
            if state[child] == 1:
                raise LayoutError(f"type graph contains a cycle through {resolve.describe(child)}")
            if state[child] == 0:
                state[child] = 1
                stack.append((child, type_children(resolve.types[child].kind)))

    for direction, items in (("import", resolve.imports), ("export", resolve.exports)):
        _check_unique([iface.name for iface in items.interfaces], f"{direction} interfaces")
        for iface_name, functions in items.groups():
            scope = f"{direction} interface '{iface_name}'" if iface_name else f"{direction} functions"
            _check_unique([func.name for func in functions], scope)
            for func in functions:
                label = f"function '{func.name}'"
                _check_unique([param.name for param in func.params], f"{label} parameters")
                if isinstance(func.results, NamedResults):
                    _check_unique([item.name for item in func.results.results], f"{label} results")
                for ref in func.param_types() + func.result_types():
                    _check_ref(resolve, ref, label)


def _parse_kind(raw: dict[str, Any]) -> TypeKind:
    tag, body = next(iter(raw.items()))
    if tag == "list":
        return List(element=body)
    if tag == "tuple":
        return Tuple(types=tuple(item for item in body))
    if tag == "record":
        return Record(fields=tuple(Field(item["name"], item["type"]) for item in body["fields"]))
    if tag == "variant":
        return Variant(cases=tuple(Case(item["name"], item.get("type")) for item in body["cases"]))
    if tag == "enum":
        return Enum(cases=tuple(body["cases"]))
    if tag == "flags":
        return Flags(flags=tuple(body["flags"]))
    if tag == "option":
        return Option(inner=body)
    if tag == "result":
        return Result(ok=body.get("ok"), err=body.get("err"))
    if tag == "handle":
        return Handle(resource=body["resource"], borrow=bool(body.get("borrow", False)))
    if tag == "resource":
        return Resource()
    if tag == "alias":
        return Alias(target=body)
    raise IdlError(f"unknown type kind '{tag}'")


def _parse_function(raw: dict[str, Any]) -> Function:
    params = tuple(Param(item["name"], item["type"]) for item in raw.get("params", []))
    raw_results = raw.get("results")
    if isinstance(raw_results, list):
        results: AnonResults | NamedResults = NamedResults(
            tuple(Param(item["name"], item["type"]) for item in raw_results)
        )
    else:
        results = AnonResults(raw_results)
    return Function(name=raw["name"], params=params, results=results)


def _parse_items(raw: dict[str, Any] | None) -> WorldItems:
    raw = raw or {}
    interfaces = tuple(
        Interface(name=name, functions=tuple(_parse_function(item) for item in body.get("functions", [])))
        for name, body in (raw.get("interfaces") or {}).items()
    )
    functions = tuple(_parse_function(item) for item in raw.get("functions", []))
    return WorldItems(interfaces=interfaces, functions=functions)


def resolve_from_payload(payload: dict[str, Any], label: str = "IDL") -> Resolve:
    if not isinstance(payload, dict):
        raise IdlError(f"{label} root must be an object")
    schema_version = payload.get("idl_schema_version", IDL_SCHEMA_VERSION)
    if schema_version != IDL_SCHEMA_VERSION:
        raise IdlError(
            f"{label} uses unsupported idl_schema_version={schema_version}; only {IDL_SCHEMA_VERSION} is supported"
        )
    validate_with_jsonschema("idl_v1", payload, label)

    types = tuple(
        TypeDef(kind=_parse_kind(item["kind"]), name=item.get("name"), interface=item.get("interface"))
        for item in payload.get("types", [])
    )
    resolve = Resolve(
        world=payload["world"],
        types=types,
        imports=_parse_items(payload.get("imports")),
        exports=_parse_items(payload.get("exports")),
    )
    validate_resolve(resolve)
    logger.debug(
        "resolved world '%s': %d types, %d functions",
        resolve.world,
        len(resolve.types),
        len(resolve.all_functions()),
    )
    return resolve


def load_idl(path: Path) -> Resolve:
    return resolve_from_payload(load_json(path), f"IDL '{path}'")
