"""
Operation server.
Accepts TCP connections and serves each one on its own thread.
"""

import argparse
import logging
import socket
import threading
from typing import List, Optional, Tuple

from sockops import config
from sockops.dispatcher import serve_connection
from sockops.engine import Connection
from sockops.operations import OperationRegistry, default_registry

log = logging.getLogger(__name__)


class SockServer:
    """TCP server handing every client to the request dispatcher"""

    def __init__(self, host: str = config.DEFAULT_BIND_HOST, port: int = 0,
                 registry: Optional[OperationRegistry] = None,
                 poll_interval: float = config.POLL_INTERVAL):
        self.host = host
        self.port = port
        self.registry = registry if registry is not None else default_registry()
        self.poll_interval = poll_interval
        self.server_socket: Optional[socket.socket] = None
        self.connections: List[Connection] = []
        self.running = threading.Event()
        self.lock = threading.Lock()
        self._accept_thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Tuple[str, int]:
        """Bound address; the real port when constructed with port 0"""
        return self.server_socket.getsockname()[:2]

    def start(self):
        """Binds and starts accepting in the background"""
        if self.running.is_set():
            return

        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.server_socket.bind((self.host, self.port))
        self.server_socket.listen(config.LISTEN_BACKLOG)
        self.server_socket.settimeout(config.ACCEPT_TIMEOUT)
        self.running.set()

        self._accept_thread = threading.Thread(
            target=self._accept_connections, name="SockServer", daemon=True
        )
        self._accept_thread.start()
        log.info("Server ready for connections on %s:%s", *self.address)

    def serve_forever(self):
        self.start()
        try:
            while self.running.is_set():
                self._accept_thread.join(config.ACCEPT_TIMEOUT)
                if not self._accept_thread.is_alive():
                    break
        except KeyboardInterrupt:
            log.info("Interrupted")
        finally:
            self.stop()

    def stop(self):
        """Stops accepting and closes every client connection"""
        self.running.clear()
        if self._accept_thread and self._accept_thread is not threading.current_thread():
            self._accept_thread.join()
        if self.server_socket:
            self.server_socket.close()

        with self.lock:
            connections = list(self.connections)
        for conn in connections:
            conn.close()
        log.info("Server closed")

    def _accept_connections(self):
        while self.running.is_set():
            log.debug("Server waiting for a new connection")
            try:
                client_socket, address = self.server_socket.accept()
            except socket.timeout:
                continue
            except OSError:
                if self.running.is_set():
                    log.exception("Error accepting connection")
                break

            client_socket.settimeout(None)
            threading.Thread(
                target=self._handle_client,
                args=(client_socket, address),
                name=f"ClientHandler#{address[0]}:{address[1]}",
                daemon=True,
            ).start()

    def _handle_client(self, client_socket: socket.socket, address: tuple):
        conn = Connection(client_socket, poll_interval=self.poll_interval)
        with self.lock:
            self.connections.append(conn)
        log.info("Client connected: %s", address)
        try:
            conn.start()
            serve_connection(conn, self.registry)
        finally:
            with self.lock:
                self.connections.remove(conn)
            log.info("Client disconnected: %s", address)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sock-server", description="Serve socket operations.")
    parser.add_argument("port", type=config.parse_port, help="TCP port to listen on (0-65535)")
    parser.add_argument("--host", default=config.DEFAULT_BIND_HOST, help="address to bind")
    parser.add_argument("-v", "--verbose", action="store_true", help="log every message")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    config.configure_logging(args.verbose)
    server = SockServer(args.host, args.port)
    try:
        server.serve_forever()
    except OSError as e:
        log.error("Failed to create server socket: %s", e)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
