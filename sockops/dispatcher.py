"""Server-side request loop for one connection."""
import logging
from typing import Any, Dict, Optional

from sockops import protocol as proto
from sockops.operations import OperationRegistry, default_registry

log = logging.getLogger(__name__)


def handle_request(request: Dict[str, Any], conn, registry: OperationRegistry) -> bool:
    """Route one request to its operation.

    Returns False when the request is unusable and the connection should be
    closed after the error reply, True otherwise.
    """
    if "operation" not in request:
        conn.send(proto.missing_required_argument_error())
        return False

    code = request["operation"]
    if not isinstance(code, int) or isinstance(code, bool):
        conn.send(proto.illegal_argument_type_error())
        return False

    if code not in registry:
        log.info("Unsupported operation %s", code)
        conn.send(proto.unsupported_operation_error())
        return True

    registry.get(code).handle_server(request, conn)
    return True


def serve_connection(conn, registry: Optional[OperationRegistry] = None) -> None:
    """Answer requests until the connection stops, then close it."""
    if registry is None:
        registry = default_registry()
    try:
        log.info("Server connected to client")
        while conn.is_running():
            request = conn.receive()
            if not handle_request(request, conn, registry):
                return
    except Exception:
        log.exception("Client handler encountered an internal error")
        conn.send(proto.internal_error())
    finally:
        conn.close()
