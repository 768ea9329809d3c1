"""Room membership for the relay.

A ``RoomManager`` holds one namespace of rooms. The relay keeps two
independent instances: file rooms keyed by file id (peer chunk announcements)
and group rooms keyed by group id (group chat and shared-file events).

Rooms exist only while they have members. They are created on first join and
deleted the moment their last member leaves or disconnects.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from .connection import Connection
from .envelope import Frame


class RoomManager:
    """Lock-guarded membership sets for one room namespace."""

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace
        self.log = logging.getLogger("relayd.rooms")
        self._lock = threading.Lock()
        self._rooms: dict[str, set[Connection]] = {}

    def join(self, room: str, conn: Connection) -> bool:
        """
        Add ``conn`` to ``room``, creating the room if needed.

        Re-joining is a no-op. Returns True if membership changed. A closed
        connection is never added, so a join racing a disconnect cannot leave
        a dangling member behind.
        """
        with self._lock:
            if not conn.is_open:
                return False
            members = self._rooms.setdefault(room, set())
            if conn in members:
                return False
            members.add(conn)
            count = len(members)

        self.log.debug(
            "Joined ns=%s room=%s conn=%s members=%s",
            self.namespace,
            room,
            conn.conn_id,
            count,
        )
        return True

    def leave(self, room: str, conn: Connection) -> bool:
        """Remove ``conn`` from ``room``, deleting the room if it empties."""
        with self._lock:
            removed = self._discard_locked(room, conn)

        if removed:
            self.log.debug(
                "Left ns=%s room=%s conn=%s", self.namespace, room, conn.conn_id
            )
        return removed

    def _discard_locked(self, room: str, conn: Connection) -> bool:
        members = self._rooms.get(room)
        if members is None or conn not in members:
            return False
        members.discard(conn)
        if not members:
            self._rooms.pop(room, None)
        return True

    def broadcast(
        self, room: str, sender: Connection | None, frame: Frame
    ) -> tuple[int, int]:
        """
        Send ``frame`` to every open member of ``room`` except ``sender``.

        Closed members are skipped but not pruned; pruning happens on
        disconnect. Members are snapshotted under the lock and written to
        outside it, and a failed write to one member does not affect the
        others. Returns ``(delivered, failed)`` member counts.
        """
        with self._lock:
            members = self._rooms.get(room)
            targets = [m for m in members if m is not sender] if members else []

        delivered = failed = 0
        for member in targets:
            if not member.is_open:
                continue
            if member.send_frame(frame):
                delivered += 1
            else:
                failed += 1
        return delivered, failed

    def remove_from_all(self, conn: Connection) -> int:
        """Remove ``conn`` from every room it is in. Returns rooms left."""
        with self._lock:
            rooms = [r for r, members in self._rooms.items() if conn in members]
            for room in rooms:
                self._discard_locked(room, conn)
        return len(rooms)

    def members(self, room: str) -> set[Connection]:
        """Snapshot of the members of ``room`` (empty if it does not exist)."""
        with self._lock:
            return set(self._rooms.get(room, ()))

    def has_room(self, room: str) -> bool:
        with self._lock:
            return room in self._rooms

    def rooms_of(self, conn: Connection) -> list[str]:
        with self._lock:
            return sorted(r for r, members in self._rooms.items() if conn in members)

    def clear_all(self) -> None:
        with self._lock:
            self._rooms.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            rooms_total = len(self._rooms)
            memberships = sum(len(v) for v in self._rooms.values())
            top_rooms = sorted(
                ((room, len(members)) for room, members in self._rooms.items()),
                key=lambda x: (-x[1], x[0]),
            )[:5]
        return {
            "rooms_total": rooms_total,
            "memberships": memberships,
            "top_rooms": top_rooms,
        }
