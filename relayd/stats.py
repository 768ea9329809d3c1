"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import RelayService


class StatsManager:
    """
    Routing counters for the relay.

    Every routing decision the router makes (control reply, broadcast with
    its delivery count, unicast delivered, drop for no recipient, drop for an
    unclassified or malformed envelope) is counted here. Counters are a side
    channel only and never reach clients.
    """

    def __init__(self, relay: RelayService) -> None:
        self.relay = relay
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "bytes_in": 0,
            "pkts_in": 0,
            "pkts_bad": 0,
            "connections_opened": 0,
            "connections_closed": 0,
            "registrations": 0,
            "registrations_replaced": 0,
            "joins": 0,
            "parts": 0,
            "pings_in": 0,
            "broadcasts": 0,
            "broadcast_deliveries": 0,
            "unicasts_delivered": 0,
            "dropped_no_recipient": 0,
            "dropped_unclassified": 0,
            "send_failures": 0,
            "resources_sent": 0,
            "resources_received": 0,
            "resources_rejected": 0,
        }

    def set_start_time(self) -> None:
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self) -> str:
        """Format current statistics as a single log line."""
        from . import __version__

        started_mono = self.started_monotonic
        uptime_s = (time.monotonic() - started_mono) if started_mono is not None else 0.0

        session_stats = self.relay.session_manager.get_stats()
        registry_stats = self.relay.registry.get_stats()
        file_stats = self.relay.file_rooms.get_stats()
        group_stats = self.relay.group_rooms.get_stats()
        c = self.snapshot()

        parts: list[str] = [
            f"relayd {__version__} stats",
            f"uptime_s={uptime_s:.1f}",
            f"mode={self.relay.router.mode}",
            f"connections={session_stats['total']}",
            f"identities={registry_stats['registered']}",
            f"file_rooms={file_stats['rooms_total']}/{file_stats['memberships']}",
            f"group_rooms={group_stats['rooms_total']}/{group_stats['memberships']}",
            "io: pkts_in={} pkts_bad={} bytes_in={} send_failures={}".format(
                c.get("pkts_in", 0),
                c.get("pkts_bad", 0),
                c.get("bytes_in", 0),
                c.get("send_failures", 0),
            ),
            "routing: broadcasts={} deliveries={} unicasts={} no_recipient={} unclassified={}".format(
                c.get("broadcasts", 0),
                c.get("broadcast_deliveries", 0),
                c.get("unicasts_delivered", 0),
                c.get("dropped_no_recipient", 0),
                c.get("dropped_unclassified", 0),
            ),
        ]
        return " ".join(parts)
