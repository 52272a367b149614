import re
from collections.abc import Callable, Sequence

import click

Highlighter = Callable[[str, Sequence[str]], str]


def _match_spans(candidate: str, terms: Sequence[str]) -> list[tuple[int, int]]:
    spans = []
    for term in terms:
        flags = 0 if any(char.isupper() for char in term) else re.IGNORECASE
        try:
            pattern = re.compile(term, flags)
        except re.error:
            continue
        spans.extend(m.span() for m in pattern.finditer(candidate) if m.end() > m.start())

    merged: list[tuple[int, int]] = []
    for start, end in sorted(spans):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(end, merged[-1][1]))
        else:
            merged.append((start, end))
    return merged


def highlight_terms(candidate: str, terms: Sequence[str]) -> str:
    """
    Render ``candidate`` with every match of ``terms`` in bold.
    """
    pieces = []
    position = 0
    for start, end in _match_spans(candidate, terms):
        pieces.append(candidate[position:start])
        pieces.append(click.style(candidate[start:end], bold=True, fg="yellow"))
        position = end
    pieces.append(candidate[position:])
    return "".join(pieces)


def no_highlight(candidate: str, terms: Sequence[str]) -> str:
    return candidate
