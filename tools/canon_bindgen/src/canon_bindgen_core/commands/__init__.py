from .generation import command_generate
from .inspection import command_classify, command_layout, command_validate_idl

__all__ = [
    "command_classify",
    "command_generate",
    "command_layout",
    "command_validate_idl",
]
