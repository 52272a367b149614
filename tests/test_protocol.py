"""Tests for quoting, instruction encoding and response reassembly."""

import json

import pytest

from async_find.errors import ProtocolError
from async_find.protocol.decoder import ResponseAccumulator, decode_candidates
from async_find.protocol.messages import (
    FilterRequest,
    ShutdownRequest,
    StartSearchRequest,
    decode_message,
    encode_message,
    format_request_line,
    format_response_lines,
    parse_request_line,
)
from async_find.protocol.quoting import quote, unquote


# ── Quoting ─────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "value",
    [
        "",
        "plain",
        "two words",
        'say "hi"\nand leave',
        "-leading dash",
        "&&& & &_ &n &-",
        "trailing newline\n",
        "tab\there\r\n",
    ],
)
def test_quote_round_trip(value):
    assert unquote(quote(value)) == value


def test_quote_round_trip_bytes():
    value = b"-a b\n\"c\" &\xff\x00"
    quoted = quote(value)
    assert isinstance(quoted, bytes)
    assert unquote(quoted) == value


def test_quoted_value_is_a_single_token():
    quoted = quote("-x y\nz&")
    assert " " not in quoted
    assert "\n" not in quoted
    assert not quoted.startswith("-")
    assert quoted == "&-x&_y&nz&&"


def test_unquote_unknown_escape_and_dangling_ampersand():
    assert unquote("a&bc&") == "abc"


# ── Instructions ────────────────────────────────────────────────────────


def test_encode_decode_messages():
    for message in (
        FilterRequest(terms=["foo", "b.r"], limit=10),
        FilterRequest(),
        StartSearchRequest(command="find . -type f", directory="/tmp"),
        ShutdownRequest(),
    ):
        assert decode_message(encode_message(message)) == message


def test_encode_message_tags_op():
    assert json.loads(encode_message(ShutdownRequest())) == {"op": "shutdown"}


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        "[1, 2]",
        '{"op": "explode"}',
        '{"op": "filter", "terms": "foo"}',
        '{"op": "filter", "terms": [1]}',
        '{"op": "filter", "terms": [], "limit": "ten"}',
        '{"op": "start-search"}',
        '{"op": "start-search", "command": "ls", "colour": "red"}',
    ],
)
def test_decode_message_rejects_malformed(text):
    with pytest.raises(ProtocolError):
        decode_message(text)


def test_request_line_is_one_eval_line():
    line = format_request_line(FilterRequest(terms=["a b", "-c\n"]))
    assert line.startswith(b"-eval ")
    assert line.endswith(b"\n")
    assert line.count(b"\n") == 1
    assert line.count(b" ") == 1
    assert parse_request_line(line) == FilterRequest(terms=["a b", "-c\n"])


def test_parse_request_line_requires_eval():
    with pytest.raises(ProtocolError):
        parse_request_line(b"-print foo\n")
    with pytest.raises(ProtocolError):
        parse_request_line(b"-eval\n")


# ── Response reassembly ─────────────────────────────────────────────────


def test_print_then_print_nonl_accumulates():
    accumulator = ResponseAccumulator()
    accumulator.feed(b"-print a\n")
    accumulator.feed(b"-print-nonl b\n")
    assert accumulator.payload == "ab"


def test_print_replaces_accumulated_payload():
    accumulator = ResponseAccumulator()
    accumulator.feed("-print old")
    accumulator.feed("-print-nonl er")
    accumulator.feed("-print new")
    assert accumulator.payload == "new"


def test_unrecognized_lines_are_ignored():
    accumulator = ResponseAccumulator()
    accumulator.feed(b"-pid 1234\n")
    assert accumulator.payload is None
    accumulator.feed(b"-print x&_y\n")
    accumulator.feed(b"garbage\n")
    assert accumulator.payload == "x y"


def test_print_nonl_without_print_starts_payload():
    accumulator = ResponseAccumulator()
    accumulator.feed("-print-nonl tail")
    assert accumulator.payload == "tail"


def test_response_lines_reassemble_payload():
    payload = json.dumps([f"file {i}\nwith newline" for i in range(50)])
    lines = format_response_lines(payload, chunk_size=7)
    assert lines[0].startswith(b"-print ")
    assert all(line.startswith(b"-print-nonl ") for line in lines[1:])

    accumulator = ResponseAccumulator()
    for line in lines:
        accumulator.feed(line)
    assert decode_candidates(accumulator.payload) == json.loads(payload)


def test_empty_payload_still_produces_a_print_line():
    assert format_response_lines("") == [b"-print \n"]


# ── Decoding ────────────────────────────────────────────────────────────


@pytest.mark.parametrize("payload", [None, "", "{not json", '{"a": 1}', "[1, 2]", '["a", null]'])
def test_decode_candidates_degrades_to_empty(payload):
    assert decode_candidates(payload) == []


def test_decode_candidates():
    assert decode_candidates('["foo", "b\\u00e4r"]') == ["foo", "bär"]


def test_deeply_nested_payload_degrades_to_empty():
    assert decode_candidates("[" * 200_000 + "]" * 200_000) == []
