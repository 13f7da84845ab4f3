"""Per-socket I/O engine.

One `Connection` owns one connected socket. A single background thread moves
messages between two queues and the wire:

  send() -> outbound queue -> [thread] -> encode -> socket
  socket -> [thread] -> decode -> inbound queue -> receive()

Callers on any thread may use send/receive/has_received/is_running/close.
Only the engine thread reads, writes or closes the socket once started.

Usage:
  with Connection(sock) as conn:
      conn.start()
      conn.send({"operation": 1, "a": 3, "b": 4})
      reply = conn.receive()
"""
import logging
import queue
import selectors
import socket
import threading
import time
from typing import Any, Dict, List, Optional

from sockops import protocol as proto
from sockops.config import POLL_INTERVAL

log = logging.getLogger(__name__)


class Connection:
    def __init__(self, sock: socket.socket, poll_interval: float = POLL_INTERVAL):
        self.sock = sock
        self.poll_interval = poll_interval
        self._rfile = sock.makefile("rb", buffering=0)
        self._wfile = sock.makefile("wb")
        self._outbound: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self._inbound: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self._running = threading.Event()
        self._running.set()
        self._connected = True
        self._stopped = False
        self._terminal_sent = False
        self._close_lock = threading.Lock()
        self._closing = False
        self._socket_lock = threading.Lock()
        self._socket_closed = False
        self._socket_done = threading.Event()
        self._selector = selectors.DefaultSelector()
        self._selector.register(sock, selectors.EVENT_READ)
        self._thread = threading.Thread(
            target=self._run,
            name=f"Connection#{_peer_name(sock)}",
            daemon=True,
        )

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ----------------------------
    # Public surface
    # ----------------------------
    def start(self) -> None:
        self._thread.start()

    def send(self, message: Dict[str, Any]) -> None:
        if self._stopped:
            log.debug("Dropped after shutdown: %s", message)
            return
        self._outbound.put(message)

    def receive(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Block until a message has arrived and return the oldest one.

        Once the connection stops a terminal message is queued, so a blocked
        caller always wakes up. With a timeout, raises `queue.Empty` when it
        expires.
        """
        return self._inbound.get(timeout=timeout)

    def has_received(self) -> bool:
        return not self._inbound.empty()

    def is_running(self) -> bool:
        return self._running.is_set()

    @property
    def closed(self) -> bool:
        return self._socket_done.is_set()

    def close(self) -> None:
        """Shut down gracefully and wait until the socket is closed.

        Further calls do not repeat the shutdown; they only wait for the
        first one to finish.
        """
        with self._close_lock:
            already_closing = self._closing
            self._closing = True
        if already_closing:
            if self._thread is not threading.current_thread():
                self._socket_done.wait()
            return
        log.info("Closing connection...")
        self.send(proto.shutdown_message())
        self._running.clear()
        if self._thread.ident is None:
            # never started, nothing will drain the queue
            self._stopped = True
            self._close_socket()
            return
        if self._thread is not threading.current_thread():
            self._thread.join()

    # ----------------------------
    # Engine thread
    # ----------------------------
    def _run(self) -> None:
        try:
            while self.is_running() and self._is_connected():
                while self.is_running() and self._is_connected() and not self._has_work():
                    time.sleep(self.poll_interval)
                if self._is_connected():
                    self._pump()
            self._drain()
        except Exception:
            log.exception("Unexpected error in connection thread")
        finally:
            self._running.clear()
            self._stopped = True
            self._close_socket()
            self._inbound.put(proto.shutdown_message())

    def _pump(self) -> None:
        """Send at most one queued message and read at most one frame."""
        try:
            if not self._outbound.empty():
                self._write(self._outbound.get_nowait())
            if self._readable():
                message = proto.decode(self._rfile)
                log.debug("Received: %s", message)
                self._inbound.put(message)
        except ConnectionError as e:
            log.info("Peer disconnected: %s", e)
            self._connected = False
        except proto.MalformedJsonError as e:
            log.warning("Malformed message from peer: %s", e)
            self._reply_error(proto.malformed_json_error())
        except (proto.FramingError, OSError, TypeError, ValueError):
            log.exception("Error sending/receiving data on socket")
            self._reply_error(proto.internal_error())

    def _drain(self) -> None:
        pending: List[Dict[str, Any]] = []
        while True:
            try:
                pending.append(self._outbound.get_nowait())
            except queue.Empty:
                break

        if not self._is_connected():
            if pending:
                log.warning("Socket is not connected, but there are still %d requests to send", len(pending))
                for message in pending:
                    log.warning("Queued request: %s", message)
            return

        try:
            for message in pending:
                self._write(message)
            if not self._terminal_sent:
                self._write(proto.shutdown_message())
        except OSError as e:
            log.info("Peer went away during shutdown: %s", e)
            self._connected = False

    def _write(self, message: Dict[str, Any]) -> None:
        proto.encode(message, self._wfile)
        self._terminal_sent = proto.is_terminal(message)
        log.debug("Sent: %s", message)

    def _reply_error(self, message: Dict[str, Any]) -> None:
        try:
            self._write(message)
        except OSError as e:
            log.info("Could not report error to peer: %s", e)
            self._connected = False

    def _has_work(self) -> bool:
        return not self._outbound.empty() or self._readable()

    def _readable(self) -> bool:
        try:
            return bool(self._selector.select(timeout=0))
        except OSError:
            self._connected = False
            return False

    def _is_connected(self) -> bool:
        return self._connected and self.sock.fileno() != -1

    def _close_socket(self) -> None:
        with self._socket_lock:
            if self._socket_closed:
                return
            self._socket_closed = True
        self._selector.close()
        for f in (self._rfile, self._wfile):
            try:
                f.close()
            except OSError as e:
                # unflushed bytes on a dead peer
                log.debug("Error closing socket stream: %s", e)
        self.sock.close()
        self._socket_done.set()
        log.info("Socket closed!")


def _peer_name(sock: socket.socket) -> str:
    try:
        peer = sock.getpeername()
    except OSError:
        return "unconnected"
    if isinstance(peer, tuple):
        return f"{peer[0]}:{peer[1]}"
    return peer or "local"
