from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from .connection import Connection
from .constants import (
    A_BROADCAST,
    A_CONTROL,
    A_DROP_MALFORMED,
    A_DROP_NO_RECIPIENT,
    A_DROP_UNCLASSIFIED,
    A_JOIN,
    A_LEAVE,
    A_UNICAST,
    F_FILE_ID,
    F_GROUP_ID,
    F_PAYLOAD,
    F_PEER_ID,
    F_SENDER_PEER_ID,
    F_TARGET_PEER_ID,
    F_TO,
    F_TYPE,
    F_USERNAME,
    MODE_APP,
    MODE_SIGNALING,
    NS_FILE,
    NS_GROUP,
    T_ANNOUNCE_CHUNK,
    T_AUTH,
    T_DOWNLOAD_REQUEST,
    T_FILE_CHUNK,
    T_FILE_COMMENT,
    T_FILE_METADATA,
    T_FILE_TAG,
    T_FRIEND_ACCEPT,
    T_FRIEND_REJECT,
    T_FRIEND_REQUEST,
    T_GROUP_INVITE,
    T_GROUP_MESSAGE,
    T_JOIN_FILE_ROOM,
    T_JOIN_GROUP_ROOM,
    T_LEAVE_FILE_ROOM,
    T_LEAVE_GROUP_ROOM,
    T_MESSAGE,
    T_PING,
    T_PONG,
    T_REGISTER,
    T_RELAY,
    T_TYPING,
)
from .envelope import Frame, field_str, make_envelope, validate_envelope
from .util import identity_key, normalize_identity, short_id

if TYPE_CHECKING:
    from .service import RelayService


# Strategies a rule can dispatch to.
S_BIND = "bind"
S_PING = "ping"
S_MEMBERSHIP = "membership"
S_PEER_BROADCAST = "peer_broadcast"
S_GROUP_BROADCAST = "group_broadcast"
S_UNICAST = "unicast"
S_RELAY = "relay"


@dataclass(frozen=True)
class RouteRule:
    """
    One row of a dispatch table.

    A rule matches an envelope when its type is in ``types`` and, if
    ``field`` is set, the envelope carries a non-empty value for it. Rules
    are tried in order and the first match wins; an envelope whose type
    matches a rule but lacks the field keeps falling through.
    """

    strategy: str
    types: frozenset[str]
    field: str | None = None


@dataclass(frozen=True)
class RouteResult:
    action: str
    msg_type: str | None = None
    delivered: int = 0


APP_ROUTES: tuple[RouteRule, ...] = (
    RouteRule(S_BIND, frozenset({T_AUTH}), F_USERNAME),
    RouteRule(S_PING, frozenset({T_PING})),
    RouteRule(S_MEMBERSHIP, frozenset({T_JOIN_FILE_ROOM, T_LEAVE_FILE_ROOM}), F_FILE_ID),
    RouteRule(S_MEMBERSHIP, frozenset({T_JOIN_GROUP_ROOM, T_LEAVE_GROUP_ROOM}), F_GROUP_ID),
    RouteRule(S_PEER_BROADCAST, frozenset({T_ANNOUNCE_CHUNK}), F_FILE_ID),
    RouteRule(
        S_GROUP_BROADCAST,
        frozenset({T_GROUP_MESSAGE, T_FILE_METADATA, T_FILE_CHUNK, T_FILE_COMMENT, T_FILE_TAG}),
        F_GROUP_ID,
    ),
    RouteRule(
        S_UNICAST,
        frozenset(
            {
                T_MESSAGE,
                T_TYPING,
                T_FILE_METADATA,
                T_FILE_CHUNK,
                T_DOWNLOAD_REQUEST,
                T_GROUP_INVITE,
                T_FRIEND_REQUEST,
                T_FRIEND_ACCEPT,
                T_FRIEND_REJECT,
            }
        ),
        F_TO,
    ),
)

SIGNALING_ROUTES: tuple[RouteRule, ...] = (
    RouteRule(S_BIND, frozenset({T_REGISTER}), F_PEER_ID),
    RouteRule(S_RELAY, frozenset({T_RELAY}), F_TARGET_PEER_ID),
)

ROUTE_TABLES: dict[str, tuple[RouteRule, ...]] = {
    MODE_APP: APP_ROUTES,
    MODE_SIGNALING: SIGNALING_ROUTES,
}

# type -> (namespace, joining)
MEMBERSHIP_OPS: dict[str, tuple[str, bool]] = {
    T_JOIN_FILE_ROOM: (NS_FILE, True),
    T_LEAVE_FILE_ROOM: (NS_FILE, False),
    T_JOIN_GROUP_ROOM: (NS_GROUP, True),
    T_LEAVE_GROUP_ROOM: (NS_GROUP, False),
}


class MessageRouter:
    """
    Classifies inbound envelopes by type and delivers them.

    This class is responsible for:
    - Decoding and structurally validating inbound frames
    - Walking the configured dispatch table (first matching rule wins)
    - Control replies, identity binding, room joins and leaves
    - Broadcast to file/group rooms and directed unicast via the registry
    - Reporting every decision to the log and the stats counters

    Nothing here ever answers a client with an error. Bad input and
    unreachable destinations degrade to a logged drop.
    """

    def __init__(self, relay: RelayService, mode: str = MODE_APP) -> None:
        if mode not in ROUTE_TABLES:
            raise ValueError(f"unknown router mode {mode!r}")
        self.relay = relay
        self.mode = mode
        self.routes = ROUTE_TABLES[mode]
        self.log = logging.getLogger("relayd.router")

        self._strategies: dict[str, Callable[[Connection, Frame, str], RouteResult]] = {
            S_BIND: self._handle_bind,
            S_PING: self._handle_ping,
            S_MEMBERSHIP: self._handle_membership,
            S_PEER_BROADCAST: self._handle_peer_broadcast,
            S_GROUP_BROADCAST: self._handle_group_broadcast,
            S_UNICAST: self._handle_unicast,
            S_RELAY: self._handle_relay,
        }

    def route_packet(self, conn: Connection, data: bytes | str) -> RouteResult:
        """
        Main entry point for one inbound unit from ``conn``.

        Inbound units of a single connection are processed one at a time, in
        arrival order.
        """
        with conn.inbound_lock:
            return self._route_locked(conn, data)

    def _route_locked(self, conn: Connection, data: bytes | str) -> RouteResult:
        stats = self.relay.stats_manager
        stats.inc("pkts_in")
        stats.inc("bytes_in", len(data))

        try:
            env = conn.codec.decode(data)
            validate_envelope(env)
        except Exception as e:
            stats.inc("pkts_bad")
            self.log.debug(
                "Bad frame conn=%s identity=%s bytes=%s err=%s",
                conn.conn_id,
                short_id(conn.identity),
                len(data),
                e,
            )
            return RouteResult(A_DROP_MALFORMED)

        return self.dispatch(conn, Frame(env, raw=data, codec=conn.codec))

    def dispatch(self, conn: Connection, frame: Frame) -> RouteResult:
        t = frame.env[F_TYPE]
        rule = self.classify(frame.env)

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX conn=%s identity=%s t=%s rule=%s",
                conn.conn_id,
                short_id(conn.identity),
                t,
                rule.strategy if rule else None,
            )

        if rule is None:
            self.relay.stats_manager.inc("dropped_unclassified")
            self.log.info(
                "Dropped unclassified t=%r conn=%s identity=%s",
                t,
                conn.conn_id,
                short_id(conn.identity),
            )
            return RouteResult(A_DROP_UNCLASSIFIED, t)

        return self._strategies[rule.strategy](conn, frame, t)

    def classify(self, env: dict) -> RouteRule | None:
        t = env.get(F_TYPE)
        for rule in self.routes:
            if t not in rule.types:
                continue
            if rule.field is not None and field_str(env, rule.field) is None:
                continue
            return rule
        return None

    # Control

    def _handle_bind(self, conn: Connection, frame: Frame, t: str) -> RouteResult:
        """Bind the declared identity (``auth`` or ``register``) to ``conn``."""
        field = F_USERNAME if t == T_AUTH else F_PEER_ID
        ident = normalize_identity(
            frame.env.get(field), max_chars=self.relay.config.identity_max_chars
        )
        if ident is None:
            self.log.info(
                "Ignored %s with unusable identity conn=%s", t, conn.conn_id
            )
            return RouteResult(A_CONTROL, t)

        registry = self.relay.registry
        old = conn.identity
        if old is not None and identity_key(old) != identity_key(ident):
            registry.unregister(old, conn)

        bound, displaced = registry.register(ident, conn)
        if not bound:
            self.log.debug(
                "Ignored %s on closed connection identity=%s conn=%s",
                t,
                short_id(ident),
                conn.conn_id,
            )
            return RouteResult(A_CONTROL, t)

        conn.identity = ident
        self.relay.stats_manager.inc("registrations")
        if displaced is not None:
            self.relay.stats_manager.inc("registrations_replaced")

        self.log.info(
            "Registered identity=%s conn=%s replaced=%s",
            short_id(ident),
            conn.conn_id,
            displaced.conn_id if displaced is not None else "-",
        )
        return RouteResult(A_CONTROL, t)

    def _handle_ping(self, conn: Connection, frame: Frame, t: str) -> RouteResult:
        self.relay.stats_manager.inc("pings_in")
        delivered = conn.send_env(make_envelope(T_PONG))
        if not delivered:
            self.relay.stats_manager.inc("send_failures")
        return RouteResult(A_CONTROL, t, int(delivered))

    # Rooms

    def _handle_membership(self, conn: Connection, frame: Frame, t: str) -> RouteResult:
        namespace, joining = MEMBERSHIP_OPS[t]
        room_field = F_FILE_ID if namespace == NS_FILE else F_GROUP_ID
        room = field_str(frame.env, room_field)
        rooms = self.relay.rooms_for(namespace)

        if joining:
            changed = rooms.join(room, conn)
            self.relay.stats_manager.inc("joins")
        else:
            changed = rooms.leave(room, conn)
            self.relay.stats_manager.inc("parts")

        self.log.info(
            "%s ns=%s room=%s identity=%s conn=%s changed=%s",
            "JOIN" if joining else "LEAVE",
            namespace,
            room,
            short_id(conn.identity),
            conn.conn_id,
            changed,
        )
        return RouteResult(A_JOIN if joining else A_LEAVE, t)

    def _handle_peer_broadcast(self, conn: Connection, frame: Frame, t: str) -> RouteResult:
        return self._broadcast(NS_FILE, field_str(frame.env, F_FILE_ID), conn, frame, t)

    def _handle_group_broadcast(self, conn: Connection, frame: Frame, t: str) -> RouteResult:
        return self._broadcast(NS_GROUP, field_str(frame.env, F_GROUP_ID), conn, frame, t)

    def _broadcast(
        self, namespace: str, room: str, conn: Connection, frame: Frame, t: str
    ) -> RouteResult:
        delivered, failed = self.relay.rooms_for(namespace).broadcast(room, conn, frame)
        stats = self.relay.stats_manager
        stats.inc("broadcasts")
        stats.inc("broadcast_deliveries", delivered)
        if failed:
            stats.inc("send_failures", failed)

        self.log.debug(
            "Broadcast t=%s ns=%s room=%s identity=%s recipients=%s failed=%s",
            t,
            namespace,
            room,
            short_id(conn.identity),
            delivered,
            failed,
        )
        return RouteResult(A_BROADCAST, t, delivered)

    # Unicast

    def _handle_unicast(self, conn: Connection, frame: Frame, t: str) -> RouteResult:
        return self._deliver(conn, field_str(frame.env, F_TO), frame, t)

    def _handle_relay(self, conn: Connection, frame: Frame, t: str) -> RouteResult:
        """Signaling relay: forward the payload and name the sender."""
        target = field_str(frame.env, F_TARGET_PEER_ID)
        # senderPeerId is always present; it is null for an unregistered sender.
        out = {
            F_TYPE: T_RELAY,
            F_SENDER_PEER_ID: conn.identity,
            F_PAYLOAD: frame.env.get(F_PAYLOAD),
        }
        return self._deliver(conn, target, Frame(out), t)

    def _deliver(
        self, conn: Connection, target: str, frame: Frame, t: str
    ) -> RouteResult:
        stats = self.relay.stats_manager
        dest = self.relay.registry.lookup(target)
        if dest is None:
            stats.inc("dropped_no_recipient")
            self.log.info(
                "Dropped t=%s to=%s: recipient not online identity=%s",
                t,
                short_id(target),
                short_id(conn.identity),
            )
            return RouteResult(A_DROP_NO_RECIPIENT, t)

        if not dest.send_frame(frame):
            stats.inc("send_failures")
            stats.inc("dropped_no_recipient")
            self.log.info(
                "Dropped t=%s to=%s: send failed conn=%s",
                t,
                short_id(target),
                dest.conn_id,
            )
            return RouteResult(A_DROP_NO_RECIPIENT, t)

        stats.inc("unicasts_delivered")
        self.log.debug(
            "Delivered t=%s from=%s to=%s conn=%s",
            t,
            short_id(conn.identity),
            short_id(target),
            dest.conn_id,
        )
        return RouteResult(A_UNICAST, t, 1)
