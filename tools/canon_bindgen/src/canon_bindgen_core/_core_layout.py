from __future__ import annotations

import logging

from ._core_base import LayoutError, UnsupportedTypeError
from ._core_types import (
    Alias,
    Enum,
    Flags,
    Handle,
    List,
    Option,
    Record,
    Resolve,
    Resource,
    Result,
    Tuple,
    TypeKind,
    TypeRef,
    Variant,
)

logger = logging.getLogger(__name__)

MAX_FLAT_PARAMS = 16
MAX_FLAT_RESULTS = 1

PRIMITIVE_SIZE_ALIGN: dict[str, tuple[int, int]] = {
    "bool": (1, 1),
    "s8": (1, 1),
    "u8": (1, 1),
    "s16": (2, 2),
    "u16": (2, 2),
    "s32": (4, 4),
    "u32": (4, 4),
    "s64": (8, 8),
    "u64": (8, 8),
    "float32": (4, 4),
    "float64": (8, 8),
    "char": (4, 4),
    "string": (8, 4),
}

PRIMITIVE_FLAT: dict[str, tuple[str, ...]] = {
    "bool": ("i32",),
    "s8": ("i32",),
    "u8": ("i32",),
    "s16": ("i32",),
    "u16": ("i32",),
    "s32": ("i32",),
    "u32": ("i32",),
    "s64": ("i64",),
    "u64": ("i64",),
    "float32": ("f32",),
    "float64": ("f64",),
    "char": ("i32",),
    "string": ("i32", "i32"),
}

# Element kind -> (struct code, size, align). One entry per kind; the bulk list
# helpers dispatch on this table and nothing else.
LIST_ELEMENT_KINDS: dict[str, tuple[str, int, int]] = {
    "bool": ("B", 1, 1),
    "s8": ("b", 1, 1),
    "u8": ("B", 1, 1),
    "s16": ("h", 2, 2),
    "u16": ("H", 2, 2),
    "s32": ("i", 4, 4),
    "u32": ("I", 4, 4),
    "s64": ("q", 8, 8),
    "u64": ("Q", 8, 8),
    "float32": ("f", 4, 4),
    "float64": ("d", 8, 8),
    "char": ("I", 4, 4),
}

STRUCT_CODES: dict[str, str] = {kind: code for kind, (code, _, _) in LIST_ELEMENT_KINDS.items()}


def align_to(offset: int, alignment: int) -> int:
    return -(-offset // alignment) * alignment


def discriminant_kind(case_count: int) -> str:
    if case_count <= 0:
        raise LayoutError("variant-like types need at least one case")
    if case_count <= 1 << 8:
        return "u8"
    if case_count <= 1 << 16:
        return "u16"
    return "u32"


def flags_word_count(flag_count: int) -> int:
    return -(-flag_count // 32)


def case_payloads(kind: TypeKind) -> list[TypeRef | None]:
    """Payload type per case for every variant-like kind, in discriminant order."""
    if isinstance(kind, Variant):
        return [case.type for case in kind.cases]
    if isinstance(kind, Enum):
        return [None] * len(kind.cases)
    if isinstance(kind, Option):
        return [None, kind.inner]
    if isinstance(kind, Result):
        return [kind.ok, kind.err]
    raise LayoutError(f"{type(kind).__name__} is not a variant-like type")


def join_flat(a: str, b: str) -> str:
    if a == b:
        return a
    if {a, b} == {"i32", "f32"}:
        return "i32"
    return "i64"


class SizeAlign:
    """Byte size and alignment for every type of a resolved graph, memoized by type id."""

    def __init__(self) -> None:
        self._resolve: Resolve | None = None
        self._entries: dict[int, tuple[int, int]] = {}
        self._in_progress: set[int] = set()

    @property
    def resolve(self) -> Resolve:
        if self._resolve is None:
            raise LayoutError("size/align table has not been filled")
        return self._resolve

    def fill(self, resolve: Resolve) -> None:
        if self._resolve is not resolve:
            self._resolve = resolve
            self._entries = {}
        for type_id in range(len(resolve.types)):
            try:
                self._entry(type_id)
            except UnsupportedTypeError as exc:
                # Left out of the table; querying the type raises again.
                logger.debug("no layout for type #%d: %s", type_id, exc)
        logger.debug("size/align table filled for %d types", len(self._entries))

    def entries(self) -> dict[int, tuple[int, int]]:
        return dict(self._entries)

    def size(self, ref: TypeRef) -> int:
        return self.size_align(ref)[0]

    def align(self, ref: TypeRef) -> int:
        return self.size_align(ref)[1]

    def size_align(self, ref: TypeRef) -> tuple[int, int]:
        if isinstance(ref, str):
            try:
                return PRIMITIVE_SIZE_ALIGN[ref]
            except KeyError:
                raise LayoutError(f"unknown primitive type '{ref}'") from None
        return self._entry(ref)

    def record_layout(self, types: list[TypeRef]) -> tuple[list[int], int, int]:
        """Field offsets, total size and alignment of a record/tuple with the given member types."""
        offsets: list[int] = []
        offset = 0
        alignment = 1
        for ref in types:
            size, align = self.size_align(ref)
            offset = align_to(offset, align)
            offsets.append(offset)
            offset += size
            alignment = max(alignment, align)
        return offsets, align_to(offset, alignment), alignment

    def field_offsets(self, types: list[TypeRef]) -> list[int]:
        return self.record_layout(types)[0]

    def payload_offset(self, ref: TypeRef) -> int:
        target = self.resolve.unalias(ref)
        if isinstance(target, str):
            raise LayoutError(f"{target} is not a variant-like type")
        return self.variant_layout(case_payloads(self.resolve.typedef(target).kind))[1]

    def variant_layout(self, payloads: list[TypeRef | None]) -> tuple[str, int, int, int]:
        """Discriminant kind, payload offset, total size and alignment of a variant-like type."""
        disc = discriminant_kind(len(payloads))
        disc_size, disc_align = PRIMITIVE_SIZE_ALIGN[disc]
        payload_size = 0
        payload_align = 1
        for ref in payloads:
            if ref is None:
                continue
            size, align = self.size_align(ref)
            payload_size = max(payload_size, size)
            payload_align = max(payload_align, align)
        alignment = max(disc_align, payload_align)
        payload_offset = align_to(disc_size, payload_align)
        return disc, payload_offset, align_to(payload_offset + payload_size, alignment), alignment

    def _entry(self, type_id: int) -> tuple[int, int]:
        entry = self._entries.get(type_id)
        if entry is not None:
            return entry
        if type_id in self._in_progress:
            raise LayoutError(f"type graph contains a cycle through {self.resolve.describe(type_id)}")
        self._in_progress.add(type_id)
        try:
            entry = self._compute(type_id)
        finally:
            self._in_progress.discard(type_id)
        self._entries[type_id] = entry
        return entry

    def _compute(self, type_id: int) -> tuple[int, int]:
        typedef = self.resolve.typedef(type_id)
        kind = typedef.kind
        if isinstance(kind, Alias):
            return self.size_align(kind.target)
        if isinstance(kind, List):
            return PRIMITIVE_SIZE_ALIGN["string"]
        if isinstance(kind, Record):
            _, size, align = self.record_layout([item.type for item in kind.fields])
            return size, align
        if isinstance(kind, Tuple):
            _, size, align = self.record_layout(list(kind.types))
            return size, align
        if isinstance(kind, Flags):
            count = len(kind.flags)
            if count == 0:
                return 0, 1
            if count <= 8:
                return 1, 1
            if count <= 16:
                return 2, 2
            return 4 * flags_word_count(count), 4
        if isinstance(kind, (Variant, Enum, Option, Result)):
            _, _, size, align = self.variant_layout(case_payloads(kind))
            return size, align
        if isinstance(kind, (Handle, Resource)):
            raise UnsupportedTypeError(f"{typedef.describe(type_id)} is not supported: handles have no ownership model yet")
        raise LayoutError(f"{typedef.describe(type_id)} has no defined layout")


def flatten_type(resolve: Resolve, ref: TypeRef) -> list[str]:
    if isinstance(ref, str):
        try:
            return list(PRIMITIVE_FLAT[ref])
        except KeyError:
            raise LayoutError(f"unknown primitive type '{ref}'") from None
    typedef = resolve.typedef(ref)
    kind = typedef.kind
    if isinstance(kind, Alias):
        return flatten_type(resolve, kind.target)
    if isinstance(kind, List):
        return ["i32", "i32"]
    if isinstance(kind, Record):
        return flatten_types(resolve, [item.type for item in kind.fields])
    if isinstance(kind, Tuple):
        return flatten_types(resolve, list(kind.types))
    if isinstance(kind, Flags):
        return ["i32"] * flags_word_count(len(kind.flags))
    if isinstance(kind, (Variant, Enum, Option, Result)):
        joined: list[str] = []
        for payload in case_payloads(kind):
            if payload is None:
                continue
            for index, flat in enumerate(flatten_type(resolve, payload)):
                if index < len(joined):
                    joined[index] = join_flat(joined[index], flat)
                else:
                    joined.append(flat)
        return ["i32"] + joined
    if isinstance(kind, (Handle, Resource)):
        raise UnsupportedTypeError(f"{typedef.describe(ref)} is not supported: handles have no ownership model yet")
    raise LayoutError(f"{typedef.describe(ref)} cannot be flattened")


def flatten_types(resolve: Resolve, refs: list[TypeRef]) -> list[str]:
    out: list[str] = []
    for ref in refs:
        out.extend(flatten_type(resolve, ref))
    return out


def list_element_kind(resolve: Resolve, element: TypeRef) -> str | None:
    """Bulk-copy kind for a list element, or None when elements need per-element encoding."""
    target = resolve.unalias(element)
    if isinstance(target, str) and target in LIST_ELEMENT_KINDS:
        return target
    return None
