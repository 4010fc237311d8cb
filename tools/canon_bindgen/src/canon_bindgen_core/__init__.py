from ._core_base import (
    TOOL_NAME,
    TOOL_VERSION,
    BindgenError,
    IdlError,
    LayoutError,
    TargetOptions,
    UnsupportedTypeError,
)
from ._core_classify import Classification, classify, classify_all, is_scalar
from ._core_layout import LIST_ELEMENT_KINDS, MAX_FLAT_PARAMS, MAX_FLAT_RESULTS, SizeAlign, flatten_type, flatten_types
from ._core_types import Resolve, load_idl, resolve_from_payload
from ._core_wiring import generate_bindings

__all__ = [
    "BindgenError",
    "Classification",
    "IdlError",
    "LIST_ELEMENT_KINDS",
    "LayoutError",
    "MAX_FLAT_PARAMS",
    "MAX_FLAT_RESULTS",
    "Resolve",
    "SizeAlign",
    "TOOL_NAME",
    "TOOL_VERSION",
    "TargetOptions",
    "UnsupportedTypeError",
    "classify",
    "classify_all",
    "flatten_type",
    "flatten_types",
    "generate_bindings",
    "is_scalar",
    "load_idl",
    "resolve_from_payload",
]
