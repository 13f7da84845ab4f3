"""Defaults shared by the server and the client, plus CLI argument checks."""
import argparse
import logging
import socket

POLL_INTERVAL = 0.1  # seconds between idle polls of a connection

DEFAULT_BIND_HOST = "0.0.0.0"
ACCEPT_TIMEOUT = 1.0
LISTEN_BACKLOG = 10

LOG_FORMAT = "[%(threadName)s]: %(message)s"


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


def parse_port(text: str) -> int:
    """argparse `type=` for a TCP port number."""
    try:
        port = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"port is not a number: {text!r}")
    if port < 0 or port > 65535:
        raise argparse.ArgumentTypeError("port is out of range, must be between 0 and 65535")
    return port


def verify_host(host: str) -> str:
    """argparse `type=` that only accepts resolvable host names/addresses."""
    try:
        socket.getaddrinfo(host, None)
    except (socket.gaierror, UnicodeError) as e:
        raise argparse.ArgumentTypeError(f"host address is invalid: {host!r} ({e})")
    return host
