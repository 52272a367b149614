import json
from collections.abc import Sequence

from async_find.logger import logging
from async_find.protocol.messages import PRINT_KEYWORD, PRINT_NONL_KEYWORD
from async_find.protocol.quoting import unquote

logger = logging.getLogger(__name__)


class ResponseAccumulator:
    """
    Reassembles the response lines a worker streams over one connection.

    ``-print`` replaces whatever was accumulated so far, ``-print-nonl`` appends to
    it. Anything else is ignored.
    """

    payload: str | None

    def __init__(self):
        self.payload = None

    def feed(self, line: bytes | str):
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="surrogateescape")
        line = line.rstrip("\n")
        keyword, _, argument = line.partition(" ")

        if keyword == PRINT_KEYWORD:
            self.payload = unquote(argument)
        elif keyword == PRINT_NONL_KEYWORD:
            self.payload = (self.payload or "") + unquote(argument)
        elif line:
            logger.debug("Ignoring unrecognized response line: %.80r", line)

    def reset(self):
        self.payload = None


def decode_candidates(payload: str | None) -> Sequence[str]:
    """
    Interpret an accumulated payload as a list of candidate strings.

    An absent or empty payload is an empty result. So is a malformed one: a single
    corrupted response must not take the session down with it.
    """
    if not payload:
        return []

    try:
        value = json.loads(payload)
    except (ValueError, RecursionError) as e:
        logger.warning("Discarding malformed response payload: %s", e)
        return []

    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        logger.warning("Discarding response payload that is not a list of strings")
        return []

    return value
