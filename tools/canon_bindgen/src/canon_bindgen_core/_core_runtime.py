from __future__ import annotations

from ._core_layout import LIST_ELEMENT_KINDS

# Runtime helper templates emitted into generated modules.
HELPER_ORDER = (
    "char",
    "signed",
    "float_bits",
    "result",
    "runtime",
)

CHAR_HELPERS = '''\
def _char_to_int(value):
    if not isinstance(value, str) or len(value) != 1:
        raise TypeError(f"expected a single character, got {value!r}")
    code = ord(value)
    if 0xD800 <= code <= 0xDFFF:
        raise ValueError(f"surrogate code point U+{code:04X} is not a valid char")
    return code


def _int_to_char(value):
    value &= 0xFFFFFFFF
    if value >= 0x110000 or 0xD800 <= value <= 0xDFFF:
        raise ValueError(f"invalid char code point {value:#x}")
    return chr(value)
'''

SIGNED_HELPERS = '''\
def _lift_signed(value, bits):
    value &= (1 << bits) - 1
    if value >= 1 << (bits - 1):
        value -= 1 << bits
    return value
'''

FLOAT_BITS_HELPERS = '''\
def _f32_to_i32(value):
    return struct.unpack("<I", struct.pack("<f", value))[0]


def _i32_to_f32(value):
    return struct.unpack("<f", struct.pack("<I", value & 0xFFFFFFFF))[0]


def _f64_to_i64(value):
    return struct.unpack("<Q", struct.pack("<d", value))[0]


def _i64_to_f64(value):
    return struct.unpack("<d", struct.pack("<Q", value & 0xFFFFFFFFFFFFFFFF))[0]
'''

RESULT_HELPERS = '''\
@dataclass
class Ok:
    value: Any = None


@dataclass
class Err:
    value: Any = None
'''

RUNTIME_CLASS = '''\
class _Runtime:
    """Linear memory access and allocation for one module instance."""

    def __init__(self, store, memory, realloc):
        self._store = store
        self._memory = memory
        self._realloc = realloc

    def _check(self, ptr, size):
        if ptr < 0 or ptr + size > self._memory.data_len(self._store):
            raise IndexError(f"memory access out of bounds: {size} bytes at {ptr:#x}")

    def read(self, ptr, size):
        self._check(ptr, size)
        return bytes(self._memory.read(self._store, ptr, ptr + size))

    def write(self, ptr, data):
        self._check(ptr, len(data))
        self._memory.write(self._store, data, ptr)

    def alloc(self, size, align):
        if self._realloc is None:
            raise MemoryError("module does not export cabi_realloc")
        ptr = self._realloc(self._store, 0, 0, align, size) & 0xFFFFFFFF
        if ptr == 0:
            raise MemoryError(f"cabi_realloc failed to allocate {size} bytes")
        if ptr % align:
            raise MemoryError(f"cabi_realloc returned {ptr:#x}, which is not {align}-byte aligned")
        if ptr + size > self._memory.data_len(self._store):
            raise MemoryError(f"cabi_realloc returned {ptr:#x}, outside of linear memory")
        return ptr

    def alloc_array(self, count, size, align):
        if count == 0 or size == 0:
            return align
        return self.alloc(count * size, align)

    def load(self, code, ptr):
        fmt = "<" + code
        return struct.unpack(fmt, self.read(ptr, struct.calcsize(fmt)))[0]

    def store(self, code, ptr, value):
        self.write(ptr, struct.pack("<" + code, value))

    def encode_text(self, value):
        if not isinstance(value, str):
            raise TypeError(f"expected str, got {type(value).__name__}")
        data = value.encode("utf-8")
        if not data:
            return 1, 0
        ptr = self.alloc(len(data), 1)
        self.write(ptr, data)
        return ptr, len(data)

    def decode_text(self, ptr, length):
        if length == 0:
            return ""
        return self.read(ptr, length).decode("utf-8")

    def store_list(self, values, kind):
        code, size, align = _LIST_ELEMENT_KINDS[kind]
        items = list(values)
        if kind == "bool":
            items = [1 if item else 0 for item in items]
        elif kind == "char":
            items = [_char_to_int(item) for item in items]
        ptr = self.alloc_array(len(items), size, align)
        if items:
            self.write(ptr, struct.pack(f"<{len(items)}{code}", *items))
        return ptr, len(items)

    def load_list(self, ptr, length, kind):
        code, size, align = _LIST_ELEMENT_KINDS[kind]
        if length == 0:
            return []
        if ptr % align:
            raise ValueError(f"list pointer {ptr:#x} is not {align}-byte aligned")
        values = list(struct.unpack(f"<{length}{code}", self.read(ptr, length * size)))
        if kind == "bool":
            return [bool(item) for item in values]
        if kind == "char":
            return [_int_to_char(item) for item in values]
        return values
'''

# Each entry is (module imports, helpers it depends on, source text).
HELPERS: dict[str, tuple[tuple[str, ...], tuple[str, ...], str]] = {
    "char": ((), (), CHAR_HELPERS),
    "signed": ((), (), SIGNED_HELPERS),
    "float_bits": (("import struct",), (), FLOAT_BITS_HELPERS),
    "result": (("from dataclasses import dataclass", "from typing import Any"), (), RESULT_HELPERS),
    "runtime": (("import struct",), ("char",), RUNTIME_CLASS),
}


def render_list_element_kinds() -> str:
    lines = ["_LIST_ELEMENT_KINDS = {"]
    for kind, (code, size, align) in LIST_ELEMENT_KINDS.items():
        lines.append(f'    "{kind}": ("{code}", {size}, {align}),')
    lines.append("}")
    return "\n".join(lines) + "\n"


def expand_helpers(names: set[str]) -> list[str]:
    """Close ``names`` over helper dependencies and return them in emission order."""
    pending = list(names)
    needed: set[str] = set()
    while pending:
        name = pending.pop()
        if name in needed:
            continue
        if name not in HELPERS:
            raise KeyError(f"unknown runtime helper '{name}'")
        needed.add(name)
        pending.extend(HELPERS[name][1])
    return [name for name in HELPER_ORDER if name in needed]


def helper_imports(names: list[str]) -> set[str]:
    out: set[str] = set()
    for name in names:
        out.update(HELPERS[name][0])
    return out


def render_helpers(names: list[str]) -> list[str]:
    """Source blocks for the given (already expanded) helpers."""
    blocks: list[str] = []
    for name in names:
        if name == "runtime":
            blocks.append(render_list_element_kinds())
        blocks.append(HELPERS[name][2])
    return blocks
