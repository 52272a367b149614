import json
from dataclasses import asdict, dataclass, field

from async_find.errors import ProtocolError
from async_find.protocol.quoting import quote, unquote

EVAL_KEYWORD = "-eval"
PRINT_KEYWORD = "-print"
PRINT_NONL_KEYWORD = "-print-nonl"

# Raw payload characters per response line; quoting may grow a line a little.
DEFAULT_CHUNK_SIZE = 4096


@dataclass
class FilterRequest:
    terms: list[str] = field(default_factory=list)
    limit: int | None = None


@dataclass
class StartSearchRequest:
    command: str
    directory: str | None = None


@dataclass
class ShutdownRequest:
    pass


WorkerMessage = FilterRequest | StartSearchRequest | ShutdownRequest

_OPS: dict[str, type] = {
    "filter": FilterRequest,
    "start-search": StartSearchRequest,
    "shutdown": ShutdownRequest,
}
_OP_NAMES = {message_type: op for op, message_type in _OPS.items()}


def encode_message(message: WorkerMessage) -> str:
    """
    Serialize an instruction for the worker as a JSON object tagged with ``op``.
    """
    op = _OP_NAMES.get(type(message))
    if op is None:
        raise TypeError(f"Not a worker message: {message!r}")
    return json.dumps({"op": op, **asdict(message)})


def decode_message(text: str) -> WorkerMessage:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Malformed instruction: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"Instruction is not an object: {text!r}")

    op = data.pop("op", None)
    message_type = _OPS.get(op)
    if message_type is None:
        raise ProtocolError(f"Unknown instruction: {op!r}")

    try:
        message = message_type(**data)
    except TypeError as e:
        raise ProtocolError(f"Bad arguments for {op}: {e}") from e

    _validate(message)
    return message


def _validate(message: WorkerMessage):
    if isinstance(message, FilterRequest):
        if not isinstance(message.terms, list) or not all(
            isinstance(term, str) for term in message.terms
        ):
            raise ProtocolError("filter terms must be a list of strings")
        if message.limit is not None and (
            not isinstance(message.limit, int) or isinstance(message.limit, bool)
        ):
            raise ProtocolError("filter limit must be an integer")
    elif isinstance(message, StartSearchRequest):
        if not isinstance(message.command, str):
            raise ProtocolError("search command must be a string")
        if message.directory is not None and not isinstance(message.directory, str):
            raise ProtocolError("search directory must be a string")


def format_request_line(message: WorkerMessage) -> bytes:
    return f"{EVAL_KEYWORD} {quote(encode_message(message))}\n".encode("ascii")


def parse_request_line(line: bytes) -> WorkerMessage:
    text = line.decode("utf-8", errors="replace").rstrip("\n")
    keyword, _, argument = text.partition(" ")
    if keyword != EVAL_KEYWORD or not argument:
        raise ProtocolError(f"Expected '{EVAL_KEYWORD} <expression>', got {text[:80]!r}")
    return decode_message(unquote(argument))


def format_response_lines(payload: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[bytes]:
    """
    Split a payload into one ``-print`` line followed by ``-print-nonl`` lines.
    """
    chunks = [payload[i : i + chunk_size] for i in range(0, len(payload), chunk_size)] or [""]
    lines = [f"{PRINT_KEYWORD} {quote(chunks[0])}\n".encode()]
    lines.extend(f"{PRINT_NONL_KEYWORD} {quote(chunk)}\n".encode() for chunk in chunks[1:])
    return lines
