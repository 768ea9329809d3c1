from __future__ import annotations

import logging
import os
import signal
import threading
import time

import RNS

from . import __version__
from .codec import encode
from .config import RelayRuntimeConfig, validate_config
from .connection import LinkConnection, fmt_link_id
from .constants import NS_FILE, NS_GROUP
from .registry import IdentityRegistry
from .resources import ResourceManager
from .rooms import RoomManager
from .router import MessageRouter
from .session import SessionManager
from .stats import StatsManager
from .util import expand_path
from .wsserver import WebSocketTransport


class RelayService:
    """
    The relay process: owns the registry, both room namespaces, the router
    and the lifecycle manager, and feeds them from the enabled transports.

    Shared collections each carry their own lock, so link callbacks,
    WebSocket connection threads and the background workers never contend
    on a single global lock.
    """

    def __init__(self, config: RelayRuntimeConfig) -> None:
        validate_config(config)
        self.config = config
        self.log = logging.getLogger("relayd.relay")

        self._shutdown = threading.Event()

        self.stats_manager = StatsManager(self)
        self.registry = IdentityRegistry()
        self.file_rooms = RoomManager(NS_FILE)
        self.group_rooms = RoomManager(NS_GROUP)
        self.session_manager = SessionManager(self)
        self.router = MessageRouter(self, config.router_mode)
        self.resource_manager = ResourceManager(self)
        self.ws_transport = WebSocketTransport(self)

        self.identity: RNS.Identity | None = None
        self.destination: RNS.Destination | None = None

        self._links_lock = threading.Lock()
        self._links: dict[RNS.Link, LinkConnection] = {}

        self._announce_thread: threading.Thread | None = None
        self._stats_thread: threading.Thread | None = None

    def rooms_for(self, namespace: str) -> RoomManager:
        if namespace == NS_FILE:
            return self.file_rooms
        if namespace == NS_GROUP:
            return self.group_rooms
        raise ValueError(f"unknown room namespace {namespace!r}")

    def connection_for_link(self, link: RNS.Link) -> LinkConnection | None:
        with self._links_lock:
            return self._links.get(link)

    def start(self) -> None:
        if not self.config.enable_rns and not self.config.enable_websocket:
            raise RuntimeError("no transport enabled (enable_rns / enable_websocket)")

        self.stats_manager.set_start_time()

        if self.config.enable_rns:
            self._start_rns()

        if self.config.enable_websocket:
            self.ws_transport.start()

        self.log.info(
            "Relay %s running mode=%s rns=%s websocket=%s",
            __version__,
            self.router.mode,
            self.config.enable_rns,
            self.config.enable_websocket,
        )

        if self.config.stats_interval_s and self.config.stats_interval_s > 0:
            self._stats_thread = threading.Thread(
                target=self._stats_loop, name="relayd-stats", daemon=True
            )
            self._stats_thread.start()

    def _start_rns(self) -> None:
        self.log.info("Starting Reticulum")
        RNS.Reticulum(configdir=self.config.configdir, require_shared_instance=False)

        if not self.config.identity_path:
            raise RuntimeError("identity_path is not set")
        self.identity = self._load_identity(self.config.identity_path)

        parts = [p for p in str(self.config.dest_name).split(".") if p]
        if not parts:
            raise ValueError("dest_name must not be empty")
        app_name, aspects = parts[0], parts[1:]

        self.destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            app_name,
            *aspects,
        )
        self.destination.set_link_established_callback(self._on_link)

        if self.config.announce_on_start:
            self._announce_once()

        if self.config.announce_period_s and self.config.announce_period_s > 0:
            self._announce_thread = threading.Thread(
                target=self._announce_loop,
                name="relayd-announce",
                daemon=True,
            )
            self._announce_thread.start()

        self.log.info(
            "Reticulum destination dest_name=%s dest_hash=%s",
            self.config.dest_name,
            self.destination.hash.hex(),
        )

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if not os.path.exists(p):
            raise RuntimeError(f"Identity not found at {p}")
        ident = RNS.Identity.from_file(p)
        if ident is None:
            raise RuntimeError(f"Failed to load identity from {p}")
        return ident

    def _announce_once(self) -> None:
        if self.destination is None:
            return
        try:
            self.destination.announce(
                app_data=encode({"proto": "relayd", "v": 1, "mode": self.router.mode})
            )
        except Exception:
            self.log.exception("Announce failed")

    def _announce_loop(self) -> None:
        period = float(self.config.announce_period_s)
        while not self._shutdown.wait(period):
            self._announce_once()

    def _stats_loop(self) -> None:
        period = float(self.config.stats_interval_s)
        while not self._shutdown.wait(period):
            self.log.info(self.stats_manager.format_stats())

    def run_forever(self) -> None:
        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()

        self.ws_transport.stop()

        for conn in self.session_manager.clear_all():
            conn.close()

        with self._links_lock:
            self._links.clear()
        self.resource_manager.clear_all()
        self.registry.clear_all()
        self.file_rooms.clear_all()
        self.group_rooms.clear_all()

        self.log.info(self.stats_manager.format_stats())
        self.log.info("Relay stopped")

    # Reticulum link callbacks

    def _on_link(self, link: RNS.Link) -> None:
        conn = LinkConnection(link, resources=self.resource_manager)
        with self._links_lock:
            self._links[link] = conn
        self.resource_manager.on_link_established(link)
        self.session_manager.on_open(conn)

        link.set_packet_callback(lambda data, pkt: self.on_link_data(link, data))
        link.set_link_closed_callback(lambda closed_link: self._on_close(closed_link))
        self.resource_manager.configure_link_callbacks(link)

        self.log.debug("Link established link_id=%s", fmt_link_id(link))

    def on_link_data(self, link: RNS.Link, data: bytes) -> None:
        conn = self.connection_for_link(link)
        if conn is None:
            return
        try:
            self.router.route_packet(conn, data)
        except Exception:
            self.log.exception("Routing failed conn=%s", conn.conn_id)

    def _on_close(self, link: RNS.Link) -> None:
        with self._links_lock:
            conn = self._links.pop(link, None)
        self.resource_manager.on_link_closed(link)
        if conn is not None:
            self.session_manager.on_close(conn)
