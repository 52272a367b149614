import re
from collections.abc import Iterable, Sequence

from async_find.logger import logging

logger = logging.getLogger(__name__)


def compile_term(term: str) -> re.Pattern | None:
    """Compile a term with smart case: case-insensitive unless it has an uppercase letter."""
    flags = 0 if any(char.isupper() for char in term) else re.IGNORECASE
    try:
        return re.compile(term, flags)
    except re.error as e:
        logger.debug("Skipping invalid term %r: %s", term, e)
        return None


class Matcher:
    patterns: list[re.Pattern]

    def __init__(self, terms: Sequence[str]):
        self.patterns = [p for p in (compile_term(term) for term in terms if term) if p is not None]

    def matches(self, candidate: str) -> bool:
        return all(pattern.search(candidate) for pattern in self.patterns)

    def filter(self, candidates: Iterable[str], limit: int | None = None) -> list[str]:
        """
        Keep the candidates that match every term, in source order.

        With no usable terms every candidate matches.
        """
        results = []
        for candidate in candidates:
            if limit is not None and len(results) >= limit:
                break
            if self.matches(candidate):
                results.append(candidate)
        return results
