"""Reversible quoting for single-token protocol arguments.

Quoting rules:

    ``&`` -> ``&&``, space -> ``&_``, newline -> ``&n``, leading ``-`` -> ``&-``

A quoted value never contains a space or a newline, so it always fits in one
whitespace-delimited token of one line, and a leading ``-`` can never be mistaken
for a command keyword.
"""

import re
from typing import AnyStr

_QUOTE_STR = {"&": "&&", " ": "&_", "\n": "&n"}
_UNQUOTE_STR = {"_": " ", "n": "\n"}
_QUOTE_BYTES = {b"&": b"&&", b" ": b"&_", b"\n": b"&n"}
_UNQUOTE_BYTES = {b"_": b" ", b"n": b"\n"}

_SPECIAL_STR = re.compile(r"[& \n]")
_SPECIAL_BYTES = re.compile(rb"[& \n]")
_ESCAPE_STR = re.compile(r"&(.?)", re.DOTALL)
_ESCAPE_BYTES = re.compile(rb"&(.?)", re.DOTALL)


def quote(value: AnyStr) -> AnyStr:
    if isinstance(value, bytes):
        quoted = _SPECIAL_BYTES.sub(lambda m: _QUOTE_BYTES[m.group(0)], value)
        if quoted.startswith(b"-"):
            quoted = b"&" + quoted
        return quoted

    quoted_str = _SPECIAL_STR.sub(lambda m: _QUOTE_STR[m.group(0)], value)
    if quoted_str.startswith("-"):
        quoted_str = "&" + quoted_str
    return quoted_str


def unquote(value: AnyStr) -> AnyStr:
    """
    Reverse :func:`quote`.

    ``&x`` for any other ``x`` yields ``x`` (so ``&&`` -> ``&`` and ``&-`` -> ``-``);
    a dangling ``&`` at the end is dropped.
    """
    if isinstance(value, bytes):
        return _ESCAPE_BYTES.sub(lambda m: _UNQUOTE_BYTES.get(m.group(1), m.group(1)), value)
    return _ESCAPE_STR.sub(lambda m: _UNQUOTE_STR.get(m.group(1), m.group(1)), value)
