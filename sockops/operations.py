"""Operation registry and the built-in operations.

An operation is a description plus two entry points:
- handle_server(request, conn): answer a request received by the server
- handle_client(conn, ask): build a request interactively and show the reply

`ask` is a prompt function with the signature of `input()`.
"""
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional, Tuple, Union

from sockops import protocol as proto

log = logging.getLogger(__name__)

Number = Union[int, float]


class OperationError(KeyError):
    pass


@dataclass(frozen=True)
class Operation:
    description: str
    handle_server: Callable[[Dict[str, Any], Any], None]
    handle_client: Callable[..., None]


class OperationRegistry:
    """Maps integer operation codes to operations, kept in code order."""

    def __init__(self, operations: Optional[Dict[int, Operation]] = None):
        self._operations: Dict[int, Operation] = dict(operations or {})

    def register(self, code: int, operation: Operation) -> None:
        self._operations[code] = operation

    def unregister(self, code_or_operation: Union[int, Operation]) -> None:
        if isinstance(code_or_operation, Operation):
            for code, op in list(self._operations.items()):
                if op is code_or_operation:
                    del self._operations[code]
        else:
            self._operations.pop(code_or_operation, None)

    def get(self, code: int) -> Operation:
        try:
            return self._operations[code]
        except KeyError:
            raise OperationError(code) from None

    def __contains__(self, code: object) -> bool:
        return code in self._operations

    def __len__(self) -> int:
        return len(self._operations)

    def __iter__(self) -> Iterator[Tuple[int, Operation]]:
        return iter(sorted(self._operations.items()))

    def list_operations(self) -> str:
        return "".join(f"{code}: {op.description}\n" for code, op in self)


def is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not isinstance(value, float) or math.isfinite(value)


# ----------------------------
# Shutdown
# ----------------------------
def shutdown_server(request: Dict[str, Any], conn) -> None:
    conn.close()


def shutdown_client(conn, ask: Callable[[str], str] = input) -> None:
    conn.close()


SHUTDOWN = Operation(
    description="This operation shuts down the connection between the client and the server.",
    handle_server=shutdown_server,
    handle_client=shutdown_client,
)


# ----------------------------
# Hypotenuse
# ----------------------------
def hypotenuse_request(a: Number, b: Number) -> Dict[str, Any]:
    return {"operation": proto.OP_HYPOTENUSE, "a": a, "b": b}


def hypotenuse_response(a: Number, b: Number) -> Dict[str, Any]:
    """Raises OverflowError when an operand or the result does not fit a double."""
    response = hypotenuse_request(a, b)
    result = math.hypot(float(a), float(b))
    if not math.isfinite(result):
        raise OverflowError(f"hypotenuse of {a} and {b} is out of range")
    response["result"] = result
    return response


def hypotenuse_server(request: Dict[str, Any], conn) -> None:
    if "a" not in request or "b" not in request:
        conn.send(proto.missing_required_argument_error())
        return
    a, b = request["a"], request["b"]
    if not is_number(a) or not is_number(b):
        conn.send(proto.illegal_argument_type_error())
        return
    log.debug("Hypotenuse of %s and %s", a, b)
    try:
        response = hypotenuse_response(a, b)
    except OverflowError:
        log.info("Hypotenuse of %s and %s is out of range", a, b)
        conn.send(proto.illegal_argument_type_error())
        return
    conn.send(response)


def parse_number(text: str) -> Optional[Number]:
    text = text.strip()
    for kind in (int, float):
        try:
            value = kind(text)
        except ValueError:
            continue
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return value
    return None


def ask_number(ask: Callable[[str], str], prompt: str) -> Number:
    while True:
        value = parse_number(ask(prompt))
        if value is not None:
            return value
        print("Please enter a valid number.")


def hypotenuse_client(conn, ask: Callable[[str], str] = input) -> None:
    a = ask_number(ask, "Please enter the side of one of the triangles: ")
    b = ask_number(ask, "Please enter the side of the other triangle: ")

    conn.send(hypotenuse_request(a, b))
    response = conn.receive()

    if proto.is_error(response):
        print(f"Error: {response.get('message')}")
        return
    if proto.is_terminal(response):
        print("Error: the server closed the connection.")
        return
    if not is_number(response.get("result")):
        print("Error: Malformed response received from server.")
        return
    print(f"The hypotenuse is: {float(response['result'])}")


HYPOTENUSE = Operation(
    description="This operation calculates the hypotenuse of a right triangle.",
    handle_server=hypotenuse_server,
    handle_client=hypotenuse_client,
)


def default_registry() -> OperationRegistry:
    registry = OperationRegistry()
    registry.register(proto.OP_SHUTDOWN, SHUTDOWN)
    registry.register(proto.OP_HYPOTENUSE, HYPOTENUSE)
    return registry
