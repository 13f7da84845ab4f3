"""Interactive client: pick an operation, send it, show the answer."""
import argparse
import logging
import socket
from typing import Callable, Optional

from sockops import config
from sockops.engine import Connection
from sockops.operations import OperationRegistry, default_registry

log = logging.getLogger(__name__)


def prompt_for_operation(registry: OperationRegistry, ask: Callable[[str], str] = input) -> int:
    print("Please enter the corresponding number for the operation you would like to perform: ")
    while True:
        print("=============\n" + registry.list_operations(), end="")
        answer = ask("> ").strip()
        try:
            code = int(answer)
        except ValueError:
            print("Please enter a valid number: ")
            continue
        if code in registry:
            return code
        print("Invalid operation number. Please try again.")


def run(conn: Connection, registry: Optional[OperationRegistry] = None,
        ask: Callable[[str], str] = input) -> None:
    """Prompt/run operations until the connection stops or stdin ends."""
    if registry is None:
        registry = default_registry()
    while conn.is_running():
        try:
            code = prompt_for_operation(registry, ask)
            registry.get(code).handle_client(conn, ask)
        except EOFError:
            break


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sock-client", description="Talk to a sock-server.")
    parser.add_argument("port", type=config.parse_port, help="server port (0-65535)")
    parser.add_argument("host", type=config.verify_host, help="server host name or address")
    parser.add_argument("-v", "--verbose", action="store_true", help="log every message")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    config.configure_logging(args.verbose)
    try:
        sock = socket.create_connection((args.host, args.port))
    except OSError as e:
        log.error("Could not connect to %s:%s: %s", args.host, args.port, e)
        raise SystemExit(1)

    with Connection(sock) as conn:
        conn.start()
        try:
            run(conn)
        except KeyboardInterrupt:
            print()


if __name__ == "__main__":
    main()
