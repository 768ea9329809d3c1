from __future__ import annotations

import logging
import threading
from typing import Any

from .connection import Connection
from .util import identity_key, short_id


class IdentityRegistry:
    """
    Maps identities to the single connection currently bound to each.

    Keys are case-insensitive. Registering an identity that is already bound
    replaces the binding ("replace" policy, last registration wins); the
    displaced connection is left open. Removal is ownership-checked so that a
    late close of an old connection cannot evict a newer registration.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("relayd.registry")
        self._lock = threading.Lock()
        self._by_identity: dict[str, Connection] = {}

    def register(
        self, identity: str, conn: Connection
    ) -> tuple[bool, Connection | None]:
        """
        Bind ``identity`` to ``conn``.

        Returns ``(bound, displaced)``. A connection that has already closed
        is not registered and ``bound`` is False.
        """
        key = identity_key(identity)
        with self._lock:
            if not conn.is_open:
                return False, None
            previous = self._by_identity.get(key)
            self._by_identity[key] = conn

        if previous is not None and previous is not conn:
            self.log.info(
                "Identity replaced identity=%s old_conn=%s new_conn=%s",
                short_id(identity),
                previous.conn_id,
                conn.conn_id,
            )
            return True, previous
        return True, None

    def lookup(self, identity: str) -> Connection | None:
        """Return the open connection bound to ``identity``, if any."""
        if not isinstance(identity, str):
            return None
        with self._lock:
            conn = self._by_identity.get(identity_key(identity))
        if conn is None or not conn.is_open:
            return None
        return conn

    def unregister(self, identity: str, conn: Connection) -> bool:
        """Remove the binding only if it still points at ``conn``."""
        key = identity_key(identity)
        with self._lock:
            if self._by_identity.get(key) is not conn:
                return False
            del self._by_identity[key]
            return True

    def identities(self) -> list[str]:
        with self._lock:
            return sorted(self._by_identity)

    def clear_all(self) -> None:
        with self._lock:
            self._by_identity.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_identity)

    def __contains__(self, identity: object) -> bool:
        if not isinstance(identity, str):
            return False
        with self._lock:
            return identity_key(identity) in self._by_identity

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total = len(self._by_identity)
            stale = sum(1 for c in self._by_identity.values() if not c.is_open)
        return {"registered": total, "stale": stale}
