from __future__ import annotations

import enum
import logging

from ._core_types import SCALAR_KINDS, Function, TypeRef

logger = logging.getLogger(__name__)


class Classification(enum.Enum):
    SCALAR = "scalar"
    MARSHALED = "marshaled"


def is_scalar(ref: TypeRef) -> bool:
    # Any type id, aliases of scalars included, goes through the marshaling path.
    return isinstance(ref, str) and ref in SCALAR_KINDS


def classify(func: Function) -> Classification:
    """Decide whether a function can be bound directly or needs a marshaling wrapper.

    Parameters are scanned before results, in declaration order, and the scan
    stops at the first type that is not a scalar primitive.
    """
    for ref in func.param_types() + func.result_types():
        if not is_scalar(ref):
            logger.debug("function '%s' is marshaled (first non-scalar type: %r)", func.name, ref)
            return Classification.MARSHALED
    logger.debug("function '%s' is scalar", func.name)
    return Classification.SCALAR


def classify_all(functions: list[Function]) -> dict[str, Classification]:
    return {func.name: classify(func) for func in functions}
