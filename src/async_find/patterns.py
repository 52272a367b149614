"""Turning raw input text into independent search terms.

A transform decides the matching semantics; the worker always treats the terms it
receives as regular expressions that must all match.
"""

import re
from collections.abc import Callable, Sequence

PatternTransform = Callable[[str], Sequence[str]]


def is_valid_regex(term: str) -> bool:
    try:
        re.compile(term)
    except re.error:
        return False
    return True


def split_regex_terms(text: str) -> list[str]:
    """
    Split on whitespace and keep the terms that compile as regular expressions.

    A half-typed term such as ``foo(`` is dropped instead of failing the query.
    """
    return [term for term in text.split() if is_valid_regex(term)]


def split_literal_terms(text: str) -> list[str]:
    return [re.escape(term) for term in text.split()]


def fuzzy_regex(term: str) -> str:
    """``abc`` -> ``a[^b]*b[^c]*c``: the characters of ``term`` in order."""
    if not term:
        return ""
    parts = [re.escape(term[0])]
    for char in term[1:]:
        escaped = re.escape(char)
        parts.append(f"[^{escaped}]*{escaped}")
    return "".join(parts)


def split_fuzzy_terms(text: str) -> list[str]:
    return [fuzzy_regex(term) for term in text.split()]


TRANSFORMS: dict[str, PatternTransform] = {
    "regex": split_regex_terms,
    "literal": split_literal_terms,
    "fuzzy": split_fuzzy_terms,
}

DEFAULT_TRANSFORM = "regex"


def get_transform(name: str | None = None) -> PatternTransform:
    if name is None:
        name = DEFAULT_TRANSFORM
    if name not in TRANSFORMS:
        supported = ", ".join(TRANSFORMS.keys())
        raise ValueError(f"Unsupported matcher: {name}. Supported matchers: {supported}")
    return TRANSFORMS[name]
