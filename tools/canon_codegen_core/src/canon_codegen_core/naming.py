from __future__ import annotations

import keyword
import re

_WORD_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z0-9]|$)|[A-Z]?[a-z0-9]+|[A-Z]+")


def split_words(name: str) -> list[str]:
    """Split kebab-case, snake_case and camelCase identifiers into lowercase words."""
    words: list[str] = []
    for chunk in re.split(r"[-_\s.:/#]+", name):
        if not chunk:
            continue
        words.extend(match.group(0).lower() for match in _WORD_RE.finditer(chunk))
    return words


def escape_identifier(value: str) -> str:
    if not value:
        return "_"
    if value[0].isdigit():
        value = f"_{value}"
    if keyword.iskeyword(value):
        value = f"{value}_"
    return value


def to_snake_case(name: str) -> str:
    return escape_identifier("_".join(split_words(name)))


def join_pascal_words(name: str) -> str:
    """PascalCase without keyword escaping, for composing larger identifiers."""
    return "".join(word[:1].upper() + word[1:] for word in split_words(name))


def to_pascal_case(name: str) -> str:
    return escape_identifier(join_pascal_words(name))


def to_upper_snake_case(name: str) -> str:
    return escape_identifier("_".join(word.upper() for word in split_words(name)))
