from __future__ import annotations

from ._core_base import *  # noqa: F401,F403
from ._core_types import *  # noqa: F401,F403
from ._core_layout import *  # noqa: F401,F403
from ._core_classify import *  # noqa: F401,F403
from ._core_runtime import *  # noqa: F401,F403
from ._core_codegen import *  # noqa: F401,F403
from ._core_wiring import *  # noqa: F401,F403
