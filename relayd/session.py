from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from .connection import Connection
from .util import short_id

if TYPE_CHECKING:
    from .service import RelayService


class SessionManager:
    """
    Tracks live connections and tears down their relay state on close.

    This class is responsible for:
    - Recording connections as transports open them
    - On close: marking the connection closed, releasing its identity
      (only if the registry still maps it to this connection) and purging it
      from every file room and group room, deleting rooms left empty
    - Handing back all live connections on shutdown
    """

    def __init__(self, relay: RelayService) -> None:
        self.relay = relay
        self.log = logging.getLogger("relayd.session")
        self._lock = threading.Lock()
        self.connections: set[Connection] = set()

    def on_open(self, conn: Connection) -> None:
        with self._lock:
            self.connections.add(conn)
        self.relay.stats_manager.inc("connections_opened")
        self.log.info("Connection opened conn=%s", conn.conn_id)

    def on_close(self, conn: Connection) -> tuple[str | None, int]:
        """
        Run lifecycle cleanup for ``conn``.

        The connection is flagged closed before any shared state is touched,
        so a concurrent join or register for it is refused rather than
        re-adding it after cleanup. Safe to call more than once.

        Returns (identity, rooms_left) for logging.
        """
        conn.mark_closed()

        with self._lock:
            tracked = conn in self.connections
            self.connections.discard(conn)

        identity = conn.identity
        released = False
        if identity is not None:
            released = self.relay.registry.unregister(identity, conn)

        rooms_left = self.relay.file_rooms.remove_from_all(conn)
        rooms_left += self.relay.group_rooms.remove_from_all(conn)

        if not tracked and not released and not rooms_left:
            return identity, 0

        self.relay.stats_manager.inc("connections_closed")
        self.log.info(
            "Connection closed conn=%s identity=%s released=%s rooms=%s",
            conn.conn_id,
            short_id(identity),
            released,
            rooms_left,
        )
        return identity, rooms_left

    def clear_all(self) -> list[Connection]:
        """Forget all connections and return them for teardown."""
        with self._lock:
            conns = list(self.connections)
            self.connections.clear()
        return conns

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total = len(self.connections)
            identified = sum(1 for c in self.connections if c.identity is not None)
        return {"total": total, "identified": identified}
