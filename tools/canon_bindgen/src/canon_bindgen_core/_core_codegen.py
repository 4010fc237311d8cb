from __future__ import annotations

import builtins
import contextlib
import logging
from typing import Iterator

from canon_codegen_core import escape_identifier, join_pascal_words, to_snake_case, to_upper_snake_case

from ._core_base import LayoutError, UnsupportedTypeError
from ._core_layout import (
    MAX_FLAT_PARAMS,
    MAX_FLAT_RESULTS,
    STRUCT_CODES,
    SizeAlign,
    case_payloads,
    flags_word_count,
    flatten_type,
    flatten_types,
    list_element_kind,
)
from ._core_types import (
    Enum,
    Flags,
    Function,
    List,
    NamedResults,
    Option,
    Record,
    Resolve,
    Result,
    Tuple,
    TypeRef,
    Variant,
)

logger = logging.getLogger(__name__)

INDENT = "    "
U32_MASK = "0xFFFFFFFF"

PRIMITIVE_HINTS: dict[str, str] = {
    "bool": "bool",
    "char": "str",
    "string": "str",
    "float32": "float",
    "float64": "float",
}

UNSIGNED_MASKS: dict[str, str] = {
    "u8": "0xFF",
    "u16": "0xFFFF",
    "u32": "0xFFFFFFFF",
    "u64": "0xFFFFFFFFFFFFFFFF",
}

SIGNED_BITS: dict[str, int] = {"s8": 8, "s16": 16, "s32": 32, "s64": 64}

ZERO_FLAT: dict[str, str] = {"i32": "0", "i64": "0", "f32": "0.0", "f64": "0.0"}

# Names the generated module defines or imports at top level.
RESERVED_CLASS_NAMES = frozenset({"Ok", "Err", "Any", "Path", "Union"})


def param_identifier(name: str) -> str:
    ident = to_snake_case(name)
    if ident in vars(builtins):
        ident = f"{ident}_"
    return ident


def address(ptr: str, offset: int) -> str:
    if offset == 0:
        return ptr
    return f"{ptr} + {offset}"


class BindgenContext:
    """Module-wide state shared by every generated wrapper: class names, helpers and layouts."""

    def __init__(self, resolve: Resolve, sizes: SizeAlign, world_class: str) -> None:
        self.resolve = resolve
        self.sizes = sizes
        self.world_class = world_class
        self.helpers: set[str] = set()
        self.class_names: dict[int, str] = {}
        self.case_class_names: dict[tuple[int, int], str] = {}
        self.member_names: dict[int, list[str]] = {}
        self.field_names: dict[int, list[str]] = {}
        self._taken: set[str] = set(RESERVED_CLASS_NAMES) | {world_class}
        self._assign_names()

    def _claim(self, words: str, interface: str | None, label: str) -> tuple[str, str]:
        """Reserve a class name built from raw PascalCase ``words``; returns (identifier, words used)."""
        name = escape_identifier(words)
        if name in self._taken and interface:
            words = join_pascal_words(interface) + words
        candidate = escape_identifier(words)
        if candidate in self._taken:
            raise LayoutError(f"{label} maps to Python name '{name}', which is already in use")
        self._taken.add(candidate)
        return candidate, words

    def _assign_names(self) -> None:
        for type_id, typedef in enumerate(self.resolve.types):
            kind = typedef.kind
            if not isinstance(kind, (Record, Variant, Enum, Flags)):
                continue
            label = typedef.describe(type_id)
            cls, words = self._claim(join_pascal_words(typedef.name or ""), typedef.interface, label)
            self.class_names[type_id] = cls
            if isinstance(kind, Record):
                self.field_names[type_id] = self._unique(
                    [to_snake_case(item.name) for item in kind.fields], label
                )
            elif isinstance(kind, Variant):
                for index, case in enumerate(kind.cases):
                    self.case_class_names[(type_id, index)], _ = self._claim(
                        words + join_pascal_words(case.name), typedef.interface, f"{label} case '{case.name}'"
                    )
            elif isinstance(kind, Enum):
                self.member_names[type_id] = self._unique([to_upper_snake_case(case) for case in kind.cases], label)
            else:
                self.member_names[type_id] = self._unique([to_upper_snake_case(flag) for flag in kind.flags], label)

    @staticmethod
    def _unique(names: list[str], label: str) -> list[str]:
        if len(set(names)) != len(names):
            raise LayoutError(f"{label} has members that collide after conversion to Python names: {names}")
        return names

    def require(self, helper: str) -> None:
        self.helpers.add(helper)

    def class_name(self, type_id: int) -> str:
        try:
            return self.class_names[type_id]
        except KeyError:
            raise LayoutError(f"{self.resolve.describe(type_id)} has no generated class") from None

    def option_inner(self, type_id: int, kind: Option) -> TypeRef:
        inner = self.resolve.unalias(kind.inner)
        if isinstance(inner, int) and isinstance(self.resolve.typedef(inner).kind, Option):
            raise UnsupportedTypeError(
                f"{self.resolve.describe(type_id)} is not supported: an option directly inside an option "
                "cannot be told apart from None"
            )
        return kind.inner

    def hint(self, ref: TypeRef | None) -> str:
        if ref is None:
            return "None"
        target = self.resolve.unalias(ref)
        if isinstance(target, str):
            return PRIMITIVE_HINTS.get(target, "int")
        kind = self.resolve.typedef(target).kind
        if isinstance(kind, List):
            return f"list[{self.hint(kind.element)}]"
        if isinstance(kind, Tuple):
            if not kind.types:
                return "tuple[()]"
            return f"tuple[{', '.join(self.hint(item) for item in kind.types)}]"
        if isinstance(kind, (Record, Variant, Enum, Flags)):
            return self.class_name(target)
        if isinstance(kind, Option):
            return f"{self.hint(kind.inner)} | None"
        if isinstance(kind, Result):
            return "Ok | Err"
        return "Any"

    def results_hint(self, func: Function) -> str:
        if isinstance(func.results, NamedResults):
            return f"tuple[{', '.join(self.hint(item.type) for item in func.results.results)}]"
        return self.hint(func.results.type)

    def render_type_definitions(self) -> list[str]:
        blocks: list[str] = []
        for type_id, typedef in enumerate(self.resolve.types):
            kind = typedef.kind
            if type_id not in self.class_names:
                continue
            cls = self.class_names[type_id]
            if isinstance(kind, Record):
                lines = ["@dataclass", f"class {cls}:"]
                for name, item in zip(self.field_names[type_id], kind.fields):
                    lines.append(f"{INDENT}{name}: {self.hint(item.type)}")
                if not kind.fields:
                    lines.append(f"{INDENT}pass")
                blocks.append("\n".join(lines) + "\n")
            elif isinstance(kind, Variant):
                case_classes: list[str] = []
                for index, case in enumerate(kind.cases):
                    case_cls = self.case_class_names[(type_id, index)]
                    case_classes.append(case_cls)
                    body = f"{INDENT}value: {self.hint(case.type)}" if case.type is not None else f"{INDENT}pass"
                    blocks.append(f"@dataclass\nclass {case_cls}:\n{body}\n")
                blocks.append(f"{cls} = Union[{', '.join(case_classes)}]\n")
            elif isinstance(kind, Enum):
                lines = [f"class {cls}(enum.Enum):"]
                for index, name in enumerate(self.member_names[type_id]):
                    lines.append(f"{INDENT}{name} = {index}")
                blocks.append("\n".join(lines) + "\n")
            elif isinstance(kind, Flags):
                lines = [f"class {cls}(enum.Flag):"]
                for index, name in enumerate(self.member_names[type_id]):
                    lines.append(f"{INDENT}{name} = 1 << {index}")
                if not kind.flags:
                    lines.append(f"{INDENT}NONE = 0")
                blocks.append("\n".join(lines) + "\n")
        return blocks


class FunctionBindgen:
    """Emits the body of one marshaling wrapper or import adapter.

    ``lower``/``lift`` move values between Python objects and flat core
    values, ``store``/``load`` between Python objects and linear memory.
    Every intermediate value gets a fresh ``_t<n>`` temporary.
    """

    def __init__(self, ctx: BindgenContext) -> None:
        self.ctx = ctx
        self.resolve = ctx.resolve
        self.sizes = ctx.sizes
        self.lines: list[str] = []
        self.uses_memory = False
        self._depth = 0
        self._counter = 0

    def emit(self, line: str) -> None:
        self.lines.append(INDENT * self._depth + line)

    @contextlib.contextmanager
    def block(self) -> Iterator[None]:
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1

    def tmp(self) -> str:
        name = f"_t{self._counter}"
        self._counter += 1
        return name

    def bind(self, expr: str) -> str:
        if expr.isidentifier():
            return expr
        name = self.tmp()
        self.emit(f"{name} = {expr}")
        return name

    def rt(self) -> str:
        self.uses_memory = True
        return "_rt"

    def _unsupported(self, type_id: int) -> UnsupportedTypeError:
        return UnsupportedTypeError(
            f"{self.resolve.describe(type_id)} is not supported: handles have no ownership model yet"
        )

    # -- flat values -------------------------------------------------------

    def lower(self, ref: TypeRef, value: str) -> list[str]:
        target = self.resolve.unalias(ref)
        if isinstance(target, str):
            return self._lower_primitive(target, value)
        kind = self.resolve.typedef(target).kind
        if isinstance(kind, List):
            return self._lower_list(kind, value)
        if isinstance(kind, Record):
            value = self.bind(value)
            flats: list[str] = []
            for name, item in zip(self.ctx.field_names[target], kind.fields):
                flats.extend(self.lower(item.type, f"{value}.{name}"))
            return flats
        if isinstance(kind, Tuple):
            flats = []
            for name, item in zip(self.unpack(value, len(kind.types)), kind.types):
                flats.extend(self.lower(item, name))
            return flats
        if isinstance(kind, Flags):
            return self._lower_flags(target, kind, value)
        if isinstance(kind, Enum):
            return [f"{self.ctx.class_name(target)}({value}).value"]
        if isinstance(kind, (Variant, Option, Result)):
            return self._lower_variant(target, kind, value)
        raise self._unsupported(target)

    def _lower_primitive(self, kind: str, value: str) -> list[str]:
        if kind == "bool":
            return [f"(1 if {value} else 0)"]
        if kind == "char":
            self.ctx.require("char")
            return [f"_char_to_int({value})"]
        if kind == "string":
            ptr, length = self.tmp(), self.tmp()
            self.emit(f"{ptr}, {length} = {self.rt()}.encode_text({value})")
            return [ptr, length]
        return [value]

    def _lower_list(self, kind: List, value: str) -> list[str]:
        ptr, length = self.tmp(), self.tmp()
        element_kind = list_element_kind(self.resolve, kind.element)
        if element_kind is not None:
            self.emit(f'{ptr}, {length} = {self.rt()}.store_list({value}, "{element_kind}")')
            return [ptr, length]
        size, align = self.sizes.size_align(kind.element)
        items = self.tmp()
        self.emit(f"{items} = list({value})")
        self.emit(f"{length} = len({items})")
        self.emit(f"{ptr} = {self.rt()}.alloc_array({length}, {size}, {align})")
        index, item, base = self.tmp(), self.tmp(), self.tmp()
        self.emit(f"for {index}, {item} in enumerate({items}):")
        with self.block():
            self.emit(f"{base} = {ptr} + {index} * {size}")
            self.store(kind.element, item, base, 0)
        return [ptr, length]

    def _lower_flags(self, type_id: int, kind: Flags, value: str) -> list[str]:
        words = flags_word_count(len(kind.flags))
        if words == 0:
            return []
        bits = self.tmp()
        self.emit(f"{bits} = {self.ctx.class_name(type_id)}({value}).value")
        if words == 1:
            return [bits]
        return [f"({bits} >> {32 * index}) & {U32_MASK}" for index in range(words)]

    def _lower_variant(self, type_id: int, kind: Variant | Option | Result, value: str) -> list[str]:
        joined = flatten_type(self.resolve, type_id)
        value = self.bind(value)
        outs = [self.tmp() for _ in joined]
        branches = self._case_tests(type_id, kind, value)
        for index, (test, payload_ref, payload_value) in enumerate(branches):
            self.emit(f"{'if' if index == 0 else 'elif'} {test}:" if test else "else:")
            with self.block():
                flats: list[str] = []
                flat_types: list[str] = []
                if payload_ref is not None:
                    flats = self.lower(payload_ref, payload_value)
                    flat_types = flatten_type(self.resolve, payload_ref)
                self.emit(f"{outs[0]} = {index}")
                for slot in range(1, len(outs)):
                    if slot - 1 < len(flats):
                        expr = self._coerce_lower(flats[slot - 1], flat_types[slot - 1], joined[slot])
                    else:
                        expr = ZERO_FLAT[joined[slot]]
                    self.emit(f"{outs[slot]} = {expr}")
        if branches[-1][0]:
            self.emit("else:")
            with self.block():
                self.emit(
                    f'raise TypeError(f"expected {self.ctx.hint(type_id)}, got {{type({value}).__name__}}")'
                )
        return outs

    def _case_tests(
        self, type_id: int, kind: Variant | Option | Result, value: str
    ) -> list[tuple[str | None, TypeRef | None, str]]:
        """(condition, payload type, payload expression) per case; a ``None`` condition is the final else."""
        if isinstance(kind, Option):
            return [(f"{value} is None", None, value), (None, self.ctx.option_inner(type_id, kind), value)]
        if isinstance(kind, Result):
            self.ctx.require("result")
            return [
                (f"isinstance({value}, Ok)", kind.ok, f"{value}.value"),
                (f"isinstance({value}, Err)", kind.err, f"{value}.value"),
            ]
        return [
            (f"isinstance({value}, {self.ctx.case_class_names[(type_id, index)]})", case.type, f"{value}.value")
            for index, case in enumerate(kind.cases)
        ]

    def _coerce_lower(self, expr: str, have: str, want: str) -> str:
        if have == want:
            return expr
        if have == "f32":
            self.ctx.require("float_bits")
            return f"_f32_to_i32({expr})"
        if have == "f64":
            self.ctx.require("float_bits")
            return f"_f64_to_i64({expr})"
        # i32 widened into an i64 slot keeps its unsigned 32-bit pattern.
        return f"(({expr}) & {U32_MASK})"

    def _coerce_lift(self, expr: str, have: str, want: str) -> str:
        if have == want:
            return expr
        if want == "f32":
            self.ctx.require("float_bits")
            if have == "i64":
                return f"_i32_to_f32({expr} & {U32_MASK})"
            return f"_i32_to_f32({expr})"
        if want == "f64":
            self.ctx.require("float_bits")
            return f"_i64_to_f64({expr})"
        return f"({expr} & {U32_MASK})"

    def lift(self, ref: TypeRef, flats: Iterator[str]) -> str:
        target = self.resolve.unalias(ref)
        if isinstance(target, str):
            return self._lift_primitive(target, flats)
        kind = self.resolve.typedef(target).kind
        if isinstance(kind, List):
            ptr = self.bind(f"{next(flats)} & {U32_MASK}")
            length = self.bind(f"{next(flats)} & {U32_MASK}")
            return self._read_list(kind, ptr, length)
        if isinstance(kind, Record):
            args = [
                f"{name}={self.lift(item.type, flats)}"
                for name, item in zip(self.ctx.field_names[target], kind.fields)
            ]
            return f"{self.ctx.class_name(target)}({', '.join(args)})"
        if isinstance(kind, Tuple):
            return self.tuple_expr([self.lift(item, flats) for item in kind.types])
        if isinstance(kind, Flags):
            words = [next(flats) for _ in range(flags_word_count(len(kind.flags)))]
            return self._flags_expr(target, kind, words)
        if isinstance(kind, Enum):
            return f"{self.ctx.class_name(target)}({next(flats)})"
        if isinstance(kind, (Variant, Option, Result)):
            joined = flatten_type(self.resolve, target)
            disc = self.bind(next(flats))
            payload = [next(flats) for _ in joined[1:]]

            def lift_payload(payload_ref: TypeRef) -> str:
                flat_types = flatten_type(self.resolve, payload_ref)
                coerced = [
                    self._coerce_lift(payload[slot], joined[slot + 1], flat_types[slot])
                    for slot in range(len(flat_types))
                ]
                return self.lift(payload_ref, iter(coerced))

            return self._select_case(target, kind, disc, lift_payload)
        raise self._unsupported(target)

    def _lift_primitive(self, kind: str, flats: Iterator[str]) -> str:
        if kind == "string":
            ptr, length = next(flats), next(flats)
            return f"{self.rt()}.decode_text({ptr} & {U32_MASK}, {length} & {U32_MASK})"
        value = next(flats)
        if kind == "bool":
            return f"bool({value})"
        if kind == "char":
            self.ctx.require("char")
            return f"_int_to_char({value})"
        if kind in SIGNED_BITS:
            self.ctx.require("signed")
            return f"_lift_signed({value}, {SIGNED_BITS[kind]})"
        if kind in UNSIGNED_MASKS:
            return f"({value} & {UNSIGNED_MASKS[kind]})"
        return value

    def _select_case(self, type_id: int, kind: Variant | Option | Result, disc: str, payload_expr) -> str:
        out = self.tmp()
        payloads = case_payloads(kind)
        for index, payload_ref in enumerate(payloads):
            self.emit(f"{'if' if index == 0 else 'elif'} {disc} == {index}:")
            with self.block():
                if isinstance(kind, Option) and payload_ref is not None:
                    payload_ref = self.ctx.option_inner(type_id, kind)
                inner = payload_expr(payload_ref) if payload_ref is not None else None
                self.emit(f"{out} = {self._case_value(type_id, kind, index, inner)}")
        self.emit("else:")
        with self.block():
            self.emit(
                f'raise ValueError(f"invalid discriminant {{{disc}}} for {self.ctx.hint(type_id)}")'
            )
        return out

    def _case_value(self, type_id: int, kind: Variant | Option | Result, index: int, inner: str | None) -> str:
        if isinstance(kind, Option):
            return "None" if index == 0 else str(inner)
        if isinstance(kind, Result):
            self.ctx.require("result")
            ctor = "Ok" if index == 0 else "Err"
        else:
            ctor = self.ctx.case_class_names[(type_id, index)]
        return f"{ctor}({inner})" if inner is not None else f"{ctor}()"

    def _flags_expr(self, type_id: int, kind: Flags, words: list[str]) -> str:
        cls = self.ctx.class_name(type_id)
        if not words:
            return f"{cls}(0)"
        mask = (1 << len(kind.flags)) - 1
        parts = [f"(({word} & {U32_MASK}) << {32 * index})" if index else f"({word} & {U32_MASK})"
                 for index, word in enumerate(words)]
        return f"{cls}(({' | '.join(parts)}) & {mask:#x})"

    @staticmethod
    def tuple_expr(items: list[str]) -> str:
        if len(items) == 1:
            return f"({items[0]},)"
        return f"({', '.join(items)})"

    def unpack(self, value: str, count: int) -> list[str]:
        names = [self.tmp() for _ in range(count)]
        if count == 1:
            self.emit(f"{names[0]}, = {value}")
        elif count:
            self.emit(f"{', '.join(names)} = {value}")
        return names

    def _read_list(self, kind: List, ptr: str, length: str) -> str:
        element_kind = list_element_kind(self.resolve, kind.element)
        if element_kind is not None:
            return f'{self.rt()}.load_list({ptr}, {length}, "{element_kind}")'
        size = self.sizes.size(kind.element)
        out, index, base = self.tmp(), self.tmp(), self.tmp()
        self.emit(f"{out} = []")
        self.emit(f"for {index} in range({length}):")
        with self.block():
            self.emit(f"{base} = {ptr} + {index} * {size}")
            self.emit(f"{out}.append({self.load(kind.element, base, 0)})")
        return out

    # -- linear memory -----------------------------------------------------

    def store(self, ref: TypeRef, value: str, ptr: str, offset: int) -> None:
        target = self.resolve.unalias(ref)
        rt = self.rt()
        if isinstance(target, str):
            if target == "string":
                data, length = self._lower_primitive(target, value)
                self.emit(f'{rt}.store("I", {address(ptr, offset)}, {data})')
                self.emit(f'{rt}.store("I", {address(ptr, offset + 4)}, {length})')
            else:
                (flat,) = self._lower_primitive(target, value)
                self.emit(f'{rt}.store("{STRUCT_CODES[target]}", {address(ptr, offset)}, {flat})')
            return
        kind = self.resolve.typedef(target).kind
        if isinstance(kind, List):
            data, length = self._lower_list(kind, value)
            self.emit(f'{rt}.store("I", {address(ptr, offset)}, {data})')
            self.emit(f'{rt}.store("I", {address(ptr, offset + 4)}, {length})')
        elif isinstance(kind, Record):
            value = self.bind(value)
            types = [item.type for item in kind.fields]
            for name, item_ref, field_offset in zip(
                self.ctx.field_names[target], types, self.sizes.field_offsets(types)
            ):
                self.store(item_ref, f"{value}.{name}", ptr, offset + field_offset)
        elif isinstance(kind, Tuple):
            names = self.unpack(value, len(kind.types))
            for name, item_ref, field_offset in zip(names, kind.types, self.sizes.field_offsets(list(kind.types))):
                self.store(item_ref, name, ptr, offset + field_offset)
        elif isinstance(kind, Flags):
            self._store_flags(target, kind, value, ptr, offset)
        elif isinstance(kind, Enum):
            code = STRUCT_CODES[self.sizes.variant_layout(case_payloads(kind))[0]]
            self.emit(f'{rt}.store("{code}", {address(ptr, offset)}, {self.ctx.class_name(target)}({value}).value)')
        elif isinstance(kind, (Variant, Option, Result)):
            disc_kind, payload_offset, _, _ = self.sizes.variant_layout(case_payloads(kind))
            value = self.bind(value)
            branches = self._case_tests(target, kind, value)
            for index, (test, payload_ref, payload_value) in enumerate(branches):
                self.emit(f"{'if' if index == 0 else 'elif'} {test}:" if test else "else:")
                with self.block():
                    self.emit(f'{rt}.store("{STRUCT_CODES[disc_kind]}", {address(ptr, offset)}, {index})')
                    if payload_ref is not None:
                        self.store(payload_ref, payload_value, ptr, offset + payload_offset)
            if branches[-1][0]:
                self.emit("else:")
                with self.block():
                    self.emit(
                        f'raise TypeError(f"expected {self.ctx.hint(target)}, got {{type({value}).__name__}}")'
                    )
        else:
            raise self._unsupported(target)

    def _store_flags(self, type_id: int, kind: Flags, value: str, ptr: str, offset: int) -> None:
        count = len(kind.flags)
        if count == 0:
            return
        bits = self.tmp()
        self.emit(f"{bits} = {self.ctx.class_name(type_id)}({value}).value")
        if count <= 8:
            self.emit(f'_rt.store("B", {address(ptr, offset)}, {bits})')
        elif count <= 16:
            self.emit(f'_rt.store("H", {address(ptr, offset)}, {bits})')
        else:
            for index in range(flags_word_count(count)):
                word = f"({bits} >> {32 * index}) & {U32_MASK}" if index else f"{bits} & {U32_MASK}"
                self.emit(f'_rt.store("I", {address(ptr, offset + 4 * index)}, {word})')

    def load(self, ref: TypeRef, ptr: str, offset: int) -> str:
        target = self.resolve.unalias(ref)
        rt = self.rt()
        if isinstance(target, str):
            if target == "string":
                data = self.bind(f'{rt}.load("I", {address(ptr, offset)})')
                length = self.bind(f'{rt}.load("I", {address(ptr, offset + 4)})')
                return f"{rt}.decode_text({data}, {length})"
            raw = f'{rt}.load("{STRUCT_CODES[target]}", {address(ptr, offset)})'
            if target == "bool":
                return f"bool({raw})"
            if target == "char":
                self.ctx.require("char")
                return f"_int_to_char({raw})"
            return raw
        kind = self.resolve.typedef(target).kind
        if isinstance(kind, List):
            data = self.bind(f'{rt}.load("I", {address(ptr, offset)})')
            length = self.bind(f'{rt}.load("I", {address(ptr, offset + 4)})')
            return self._read_list(kind, data, length)
        if isinstance(kind, Record):
            types = [item.type for item in kind.fields]
            args = [
                f"{name}={self.load(item_ref, ptr, offset + field_offset)}"
                for name, item_ref, field_offset in zip(
                    self.ctx.field_names[target], types, self.sizes.field_offsets(types)
                )
            ]
            return f"{self.ctx.class_name(target)}({', '.join(args)})"
        if isinstance(kind, Tuple):
            offsets = self.sizes.field_offsets(list(kind.types))
            return self.tuple_expr(
                [self.load(item_ref, ptr, offset + field_offset) for item_ref, field_offset in zip(kind.types, offsets)]
            )
        if isinstance(kind, Flags):
            count = len(kind.flags)
            if count == 0:
                words: list[str] = []
            elif count <= 8:
                words = [f'{rt}.load("B", {address(ptr, offset)})']
            elif count <= 16:
                words = [f'{rt}.load("H", {address(ptr, offset)})']
            else:
                words = [
                    f'{rt}.load("I", {address(ptr, offset + 4 * index)})' for index in range(flags_word_count(count))
                ]
            return self._flags_expr(target, kind, words)
        if isinstance(kind, Enum):
            code = STRUCT_CODES[self.sizes.variant_layout(case_payloads(kind))[0]]
            return f'{self.ctx.class_name(target)}({rt}.load("{code}", {address(ptr, offset)}))'
        if isinstance(kind, (Variant, Option, Result)):
            disc_kind, payload_offset, _, _ = self.sizes.variant_layout(case_payloads(kind))
            disc = self.bind(f'{rt}.load("{STRUCT_CODES[disc_kind]}", {address(ptr, offset)})')
            return self._select_case(
                target, kind, disc, lambda payload_ref: self.load(payload_ref, ptr, offset + payload_offset)
            )
        raise self._unsupported(target)


def render_export_wrapper(ctx: BindgenContext, func: Function, index: int) -> tuple[list[str], bool]:
    """Lines of the ``_wrap_<index>`` closure and whether it touches linear memory."""
    fb = FunctionBindgen(ctx)
    params = [(param_identifier(param.name), param.type) for param in func.params]
    _check_names([name for name, _ in params], func)
    param_types = [ref for _, ref in params]
    flat_params = flatten_types(ctx.resolve, param_types)

    with fb.block():
        if len(flat_params) > MAX_FLAT_PARAMS:
            offsets, size, align = ctx.sizes.record_layout(param_types)
            fb.emit(f"_args = {fb.rt()}.alloc({size}, {align})")
            for (name, ref), field_offset in zip(params, offsets):
                fb.store(ref, name, "_args", field_offset)
            args = ["_args"]
        else:
            args = []
            for name, ref in params:
                args.extend(fb.lower(ref, name))

        call = f"_export_{index}({', '.join(['_store'] + args)})"
        result_types = func.result_types()
        flat_results = flatten_types(ctx.resolve, result_types)
        named = isinstance(func.results, NamedResults)
        if not flat_results:
            fb.emit(call)
            fb.emit(f"if _post_{index} is not None:")
            with fb.block():
                fb.emit(f"_post_{index}(_store)")
            if result_types:
                result = fb.tuple_expr([fb.lift(ref, iter(())) for ref in result_types]) if named else fb.lift(
                    result_types[0], iter(())
                )
                fb.emit(f"return {result}")
        else:
            fb.emit(f"_ret = {call}")
            fb.emit("try:")
            with fb.block():
                if len(flat_results) <= MAX_FLAT_RESULTS:
                    flats = iter(["_ret"])
                    if named:
                        result = fb.tuple_expr([fb.lift(ref, flats) for ref in result_types])
                    else:
                        result = fb.lift(result_types[0], flats)
                else:
                    fb.emit(f"_base = _ret & {U32_MASK}")
                    if named:
                        offsets = ctx.sizes.field_offsets(result_types)
                        result = fb.tuple_expr(
                            [fb.load(ref, "_base", field_offset) for ref, field_offset in zip(result_types, offsets)]
                        )
                    else:
                        result = fb.load(result_types[0], "_base", 0)
                fb.emit(f"return {result}")
            fb.emit("finally:")
            with fb.block():
                fb.emit(f"if _post_{index} is not None:")
                with fb.block():
                    fb.emit(f"_post_{index}(_store, _ret)")

    signature = ", ".join(f"{name}: {ctx.hint(ref)}" for name, ref in params)
    lines = [f"def _wrap_{index}({signature}) -> {ctx.results_hint(func)}:"] + fb.lines
    return lines, fb.uses_memory


def render_import_adapter(ctx: BindgenContext, func: Function, index: int) -> tuple[list[str], bool]:
    """Lines of the ``_adapt_<index>`` closure handed to the linker for a marshaled import."""
    fb = FunctionBindgen(ctx)
    param_types = func.param_types()
    flat_params = flatten_types(ctx.resolve, param_types)
    result_types = func.result_types()
    flat_results = flatten_types(ctx.resolve, result_types)
    named = isinstance(func.results, NamedResults)

    with fb.block():
        if len(flat_params) > MAX_FLAT_PARAMS:
            adapter_params = ["_args"]
            fb.emit(f"_base = _args & {U32_MASK}")
            offsets = ctx.sizes.field_offsets(param_types)
            args = [fb.load(ref, "_base", field_offset) for ref, field_offset in zip(param_types, offsets)]
        else:
            adapter_params = [f"_p{slot}" for slot in range(len(flat_params))]
            flats = iter(adapter_params)
            args = [fb.lift(ref, flats) for ref in param_types]
        if len(flat_results) > MAX_FLAT_RESULTS:
            adapter_params.append("_retptr")

        call = f"_host_{index}({', '.join(args)})"
        if not result_types:
            fb.emit(call)
        elif len(flat_results) <= MAX_FLAT_RESULTS:
            fb.emit(f"_result = {call}")
            if named:
                flats_out: list[str] = []
                for name, ref in zip(fb.unpack("_result", len(result_types)), result_types):
                    flats_out.extend(fb.lower(ref, name))
            else:
                flats_out = fb.lower(result_types[0], "_result")
            if flats_out:
                fb.emit(f"return {flats_out[0]}")
        else:
            fb.emit(f"_result = {call}")
            fb.emit(f"_out = _retptr & {U32_MASK}")
            if named:
                offsets = ctx.sizes.field_offsets(result_types)
                for name, ref, field_offset in zip(fb.unpack("_result", len(result_types)), result_types, offsets):
                    fb.store(ref, name, "_out", field_offset)
            else:
                fb.store(result_types[0], "_result", "_out", 0)

    body = fb.lines
    if fb.uses_memory:
        body = [f"{INDENT}_rt = self._rt"] + body
    if not body:
        body = [f"{INDENT}pass"]
    lines = [f"def _adapt_{index}({', '.join(adapter_params)}):"] + body
    return lines, fb.uses_memory


def _check_names(names: list[str], func: Function) -> None:
    if len(set(names)) != len(names):
        raise LayoutError(f"parameters of function '{func.name}' collide after conversion to Python names: {names}")
