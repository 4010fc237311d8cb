from .common import compute_unified_diff, read_text_if_exists, write_artifact_if_changed
from .naming import escape_identifier, join_pascal_words, split_words, to_pascal_case, to_snake_case, to_upper_snake_case

__all__ = [
    "compute_unified_diff",
    "escape_identifier",
    "join_pascal_words",
    "read_text_if_exists",
    "split_words",
    "to_pascal_case",
    "to_snake_case",
    "to_upper_snake_case",
    "write_artifact_if_changed",
]
