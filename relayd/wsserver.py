"""WebSocket transport for the relay.

Each client connection is served on its own thread by the ``websockets``
synchronous server. Frames carry JSON envelopes (text frames; binary frames
holding UTF-8 JSON are accepted too).

Outbound frames go through a bounded per-connection queue drained by a
writer thread, so a client that stops reading never blocks the thread that
is routing to it. When the queue is full the frame is dropped.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import TYPE_CHECKING

from websockets.exceptions import ConnectionClosed
from websockets.sync.server import Server, ServerConnection, serve

from .codec import JSON
from .connection import Connection

if TYPE_CHECKING:
    from .service import RelayService

_STOP = object()


class WebSocketConnection(Connection):
    """A WebSocket client carrying JSON envelopes."""

    def __init__(self, websocket: ServerConnection, *, queue_size: int = 64) -> None:
        super().__init__(f"ws:{websocket.id.hex[:12]}", JSON)
        self.websocket = websocket
        self._outbox: queue.Queue = queue.Queue(maxsize=max(1, int(queue_size)))
        self._writer: threading.Thread | None = None

    def start_writer(self) -> None:
        self._writer = threading.Thread(
            target=self._drain, name=f"relayd-{self.conn_id}", daemon=True
        )
        self._writer.start()

    def stop_writer(self) -> None:
        """Let the writer thread exit once the frames ahead of it are sent."""
        try:
            self._outbox.put_nowait(_STOP)
        except queue.Full:
            # The writer also exits on its own once the connection is closed.
            pass

    def pending(self) -> int:
        return self._outbox.qsize()

    def _write(self, payload: bytes | str) -> None:
        try:
            self._outbox.put_nowait(payload)
        except queue.Full:
            raise OSError(f"outbound queue full ({self._outbox.maxsize} frames)") from None

    def _drain(self) -> None:
        while True:
            try:
                payload = self._outbox.get(timeout=0.5)
            except queue.Empty:
                if not self._open:
                    return
                continue
            if payload is _STOP or not self._open:
                return
            try:
                self.websocket.send(payload)
            except ConnectionClosed:
                return
            except Exception:
                self.log.debug("Write failed conn=%s", self.conn_id, exc_info=True)
                return

    def _teardown(self) -> None:
        self.stop_writer()
        self.websocket.close()


class WebSocketTransport:
    def __init__(self, relay: RelayService) -> None:
        self.relay = relay
        self.log = logging.getLogger("relayd.ws")
        self.server: Server | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        cfg = self.relay.config
        self.server = serve(
            self._handle_connection,
            cfg.ws_host,
            int(cfg.ws_port),
            max_size=int(cfg.ws_max_message_bytes),
        )
        self._thread = threading.Thread(
            target=self.server.serve_forever, name="relayd-ws", daemon=True
        )
        self._thread.start()
        self.log.info(
            "WebSocket listening on ws://%s:%s max_message_bytes=%s send_queue_size=%s",
            cfg.ws_host,
            self.port,
            cfg.ws_max_message_bytes,
            cfg.ws_send_queue_size,
        )

    @property
    def port(self) -> int | None:
        """The bound port (useful when configured with port 0)."""
        if self.server is None:
            return None
        return self.server.socket.getsockname()[1]

    def stop(self) -> None:
        if self.server is not None:
            self.server.shutdown()
            self.server = None
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None

    def _handle_connection(self, websocket: ServerConnection) -> None:
        conn = WebSocketConnection(
            websocket, queue_size=self.relay.config.ws_send_queue_size
        )
        self.log.debug(
            "WebSocket connected conn=%s remote=%s", conn.conn_id, websocket.remote_address
        )
        conn.start_writer()
        self.relay.session_manager.on_open(conn)
        try:
            for message in websocket:
                try:
                    self.relay.router.route_packet(conn, message)
                except Exception:
                    self.log.exception("Routing failed conn=%s", conn.conn_id)
        except ConnectionClosed as e:
            self.log.debug("WebSocket closed conn=%s err=%s", conn.conn_id, e)
        finally:
            self.relay.session_manager.on_close(conn)
            conn.stop_writer()
