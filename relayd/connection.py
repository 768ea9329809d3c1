from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import RNS

from .codec import CBOR, Codec
from .envelope import Frame

if TYPE_CHECKING:
    from .resources import ResourceManager


class Connection:
    """
    Handle for one client transport connection.

    The relay only ever holds references to connections; the transport owns
    them. Writes to a connection are serialized by its own lock, and openness
    is checked under that lock, so nothing is written after ``mark_closed``.

    Subclasses implement ``_write`` and ``_teardown``.
    """

    def __init__(self, conn_id: str, codec: Codec) -> None:
        self.conn_id = conn_id
        self.codec = codec
        self.identity: str | None = None
        self.log = logging.getLogger("relayd.connection")
        self._lock = threading.Lock()
        # Held while one inbound unit from this connection is being routed.
        self.inbound_lock = threading.Lock()
        self._open = True

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.conn_id} identity={self.identity!r}>"

    @property
    def is_open(self) -> bool:
        return self._open and self._transport_open()

    def _transport_open(self) -> bool:
        return True

    def send_frame(self, frame: Frame) -> bool:
        """Encode ``frame`` for this connection and send it. Returns delivered."""
        try:
            payload = frame.encoded_for(self.codec)
        except Exception as e:
            self.log.warning(
                "Encode failed conn=%s codec=%s err=%s", self.conn_id, self.codec.name, e
            )
            return False
        return self.send_raw(payload)

    def send_env(self, env: dict) -> bool:
        return self.send_frame(Frame(env))

    def send_raw(self, payload: bytes | str) -> bool:
        """
        One-way write. Never raises for transport failures.

        Returns True if the payload was handed to the transport, False if the
        connection was closed or the write failed.
        """
        with self._lock:
            if not self.is_open:
                return False
            try:
                self._write(payload)
                return True
            except OSError as e:
                self.log.warning(
                    "Send failed conn=%s bytes=%s err=%s",
                    self.conn_id,
                    len(payload),
                    e,
                )
            except Exception:
                self.log.debug(
                    "Send failed conn=%s bytes=%s",
                    self.conn_id,
                    len(payload),
                    exc_info=True,
                )
            return False

    def mark_closed(self) -> bool:
        """Flag the connection closed. Returns False if it already was."""
        with self._lock:
            was_open = self._open
            self._open = False
            return was_open

    def close(self) -> None:
        self.mark_closed()
        try:
            self._teardown()
        except Exception:
            self.log.debug("Teardown failed conn=%s", self.conn_id, exc_info=True)

    def _write(self, payload: bytes | str) -> None:
        raise NotImplementedError

    def _teardown(self) -> None:
        pass


def fmt_link_id(link: RNS.Link) -> str:
    lid = getattr(link, "link_id", None)
    if isinstance(lid, (bytes, bytearray)):
        return bytes(lid).hex()
    h = getattr(link, "hash", None)
    if isinstance(h, (bytes, bytearray)):
        return bytes(h).hex()
    return "-"


class LinkConnection(Connection):
    """A Reticulum link carrying CBOR envelopes."""

    def __init__(
        self, link: RNS.Link, *, resources: ResourceManager | None = None
    ) -> None:
        super().__init__("rns:" + fmt_link_id(link), CBOR)
        self.link = link
        self.resources = resources

    def _transport_open(self) -> bool:
        status = getattr(self.link, "status", None)
        return status is None or status == RNS.Link.ACTIVE

    def _packet_would_fit(self, payload: bytes) -> bool:
        mdu = getattr(self.link, "MDU", None)
        if mdu is not None:
            return len(payload) <= mdu
        try:
            RNS.Packet(self.link, payload).pack()
            return True
        except Exception:
            return False

    def _write(self, payload: bytes | str) -> None:
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        if self.resources is not None and not self._packet_would_fit(payload):
            if not self.resources.send_via_resource(self.link, payload):
                raise OSError(f"payload of {len(payload)} bytes exceeds link MDU")
            return
        RNS.Packet(self.link, payload).send()

    def _teardown(self) -> None:
        self.link.teardown()
