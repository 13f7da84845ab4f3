"""Message framing and the standard protocol messages.

Format on the wire:
  [4 bytes length (uint32 network order)] [payload bytes]
payload is a UTF-8 JSON object.

Functions:
- encode(message, sink)
- decode(source) -> dict
- read_exact(source, n) -> bytes

`source` is any binary reader with `read(n)`, `sink` any binary writer with
`write()` and `flush()` (a socket's `makefile()` objects, `io.BytesIO`, ...).
"""
import json
import struct
from typing import Any, BinaryIO, Dict

HEADER = struct.Struct("!I")
MIN_FRAME_LENGTH = 2  # "{}"

OP_SHUTDOWN = 0
OP_HYPOTENUSE = 1

ERR_INTERNAL = -1
ERR_MALFORMED_JSON = 0
ERR_UNSUPPORTED_OPERATION = 1
ERR_ILLEGAL_ARGUMENT_TYPE = 2
ERR_MISSING_REQUIRED_ARGUMENT = 3


class FramingError(Exception):
    """The bytes on the wire do not form a valid frame."""


class MalformedJsonError(FramingError):
    """The frame payload is not a UTF-8 JSON object."""


def read_exact(source: BinaryIO, n: int) -> bytes:
    buf = bytearray()
    while len(buf) < n:
        chunk = source.read(n - len(buf))
        if not chunk:
            raise ConnectionError("stream closed while reading")
        buf.extend(chunk)
    return bytes(buf)


def _reject_constant(name: str):
    # NaN/Infinity are not JSON
    raise ValueError(f"invalid JSON constant: {name}")


def decode(source: BinaryIO) -> Dict[str, Any]:
    (length,) = HEADER.unpack(read_exact(source, HEADER.size))
    if length < MIN_FRAME_LENGTH:
        raise FramingError(f"invalid frame length: {length}")
    payload = read_exact(source, length)
    try:
        message = json.loads(payload.decode("utf-8"), parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedJsonError(str(e)) from e
    if not isinstance(message, dict):
        raise MalformedJsonError(f"expected a JSON object, got {type(message).__name__}")
    return message


def encode(message: Dict[str, Any], sink: BinaryIO) -> None:
    payload = json.dumps(message, separators=(",", ":"), allow_nan=False).encode("utf-8")
    sink.write(HEADER.pack(len(payload)))
    sink.write(payload)
    sink.flush()


def _error(code: int, text: str) -> Dict[str, Any]:
    return {"error": code, "message": text}


def internal_error() -> Dict[str, Any]:
    return _error(ERR_INTERNAL, "Internal Server Error")


def malformed_json_error() -> Dict[str, Any]:
    return _error(ERR_MALFORMED_JSON, "Malformed Json")


def unsupported_operation_error() -> Dict[str, Any]:
    return _error(ERR_UNSUPPORTED_OPERATION, "Unsupported Operation")


def illegal_argument_type_error() -> Dict[str, Any]:
    return _error(ERR_ILLEGAL_ARGUMENT_TYPE, "Illegal Argument Type")


def missing_required_argument_error() -> Dict[str, Any]:
    return _error(ERR_MISSING_REQUIRED_ARGUMENT, "Missing Required Argument")


def shutdown_message() -> Dict[str, Any]:
    """The terminal message: identical to an explicit Shutdown request."""
    return {"operation": OP_SHUTDOWN}


def is_error(message: Dict[str, Any]) -> bool:
    return "error" in message


def is_terminal(message: Dict[str, Any]) -> bool:
    op = message.get("operation")
    return isinstance(op, int) and not isinstance(op, bool) and op == OP_SHUTDOWN and not is_error(message)
