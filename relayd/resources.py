"""Oversized envelope transfer over Reticulum links.

Envelopes that do not fit a single link packet (file chunks, large metadata)
travel as an ``RNS.Resource`` whose data is the encoded envelope itself. The
receiving side routes the concluded resource exactly like a packet.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import RNS

from .connection import fmt_link_id

if TYPE_CHECKING:
    from .service import RelayService


class ResourceManager:
    """Manages RNS Resource transfers for the relay."""

    def __init__(self, relay: RelayService) -> None:
        self.relay = relay
        self.log = logging.getLogger("relayd.resources")
        self._lock = threading.Lock()
        self._active_resources: dict[RNS.Link, set[RNS.Resource]] = {}

    def on_link_established(self, link: RNS.Link) -> None:
        with self._lock:
            self._active_resources[link] = set()

    def on_link_closed(self, link: RNS.Link) -> None:
        with self._lock:
            self._active_resources.pop(link, None)

    def clear_all(self) -> None:
        with self._lock:
            self._active_resources.clear()

    def active_count(self, link: RNS.Link) -> int:
        with self._lock:
            return len(self._active_resources.get(link, ()))

    def configure_link_callbacks(self, link: RNS.Link) -> None:
        """Set up resource callbacks for a link if resource transfer is enabled."""
        if not self.relay.config.enable_resource_transfer:
            return

        try:
            link.set_resource_strategy(RNS.Link.ACCEPT_APP)
            link.set_resource_callback(self._resource_advertised)
            link.set_resource_concluded_callback(self._resource_concluded)
        except Exception as e:
            self.log.warning(
                "Failed to set resource callbacks link_id=%s: %s",
                fmt_link_id(link),
                e,
            )

    def _resource_advertised(self, resource: RNS.Resource) -> bool:
        """
        Callback when a Resource is advertised by the remote peer.
        Returns True to accept, False to reject.
        """
        link = resource.link

        size = resource.total_size if hasattr(resource, "total_size") else resource.size
        if size > self.relay.config.max_resource_bytes:
            self.log.warning(
                "Rejecting resource (too large: %s > %s) link_id=%s",
                size,
                self.relay.config.max_resource_bytes,
                fmt_link_id(link),
            )
            self.relay.stats_manager.inc("resources_rejected")
            return False

        if self.relay.connection_for_link(link) is None:
            self.log.debug(
                "Rejecting resource (no connection) link_id=%s", fmt_link_id(link)
            )
            self.relay.stats_manager.inc("resources_rejected")
            return False

        with self._lock:
            active_set = self._active_resources.get(link)
            if active_set is None:
                accepted = False
            else:
                active_set.add(resource)
                accepted = True
        if not accepted:
            self.log.debug(
                "Rejecting resource (link closed) link_id=%s", fmt_link_id(link)
            )
            self.relay.stats_manager.inc("resources_rejected")
        return accepted

    def _resource_concluded(self, resource: RNS.Resource) -> None:
        """Callback when a Resource transfer completes; routes its envelope."""
        link = resource.link

        with self._lock:
            active_set = self._active_resources.get(link)
            if active_set is not None:
                active_set.discard(resource)

        if resource.status != RNS.Resource.COMPLETE:
            self.log.warning(
                "Resource transfer failed link_id=%s status=%s",
                fmt_link_id(link),
                resource.status,
            )
            return

        try:
            payload = resource.data.read() if hasattr(resource.data, "read") else resource.data
            if isinstance(payload, bytearray):
                payload = bytes(payload)
        except Exception as e:
            self.log.error(
                "Failed to read resource data link_id=%s: %s", fmt_link_id(link), e
            )
            return

        self.relay.stats_manager.inc("resources_received")
        self.log.debug(
            "Resource received link_id=%s size=%s", fmt_link_id(link), len(payload)
        )
        self.relay.on_link_data(link, payload)

    def _outbound_concluded(self, resource: RNS.Resource) -> None:
        with self._lock:
            active_set = self._active_resources.get(resource.link)
            if active_set is not None:
                active_set.discard(resource)

        if resource.status != RNS.Resource.COMPLETE:
            self.log.info(
                "Outbound resource failed link_id=%s status=%s",
                fmt_link_id(resource.link),
                resource.status,
            )

    def send_via_resource(self, link: RNS.Link, payload: bytes) -> bool:
        """
        Send an encoded envelope that does not fit a packet.
        Returns True if the transfer was initiated.
        """
        if not self.relay.config.enable_resource_transfer:
            return False

        size = len(payload)
        if size > self.relay.config.max_resource_bytes:
            self.log.warning(
                "Envelope too large for resource transfer: %s > %s link_id=%s",
                size,
                self.relay.config.max_resource_bytes,
                fmt_link_id(link),
            )
            return False

        try:
            resource = RNS.Resource(
                payload,
                link,
                advertise=True,
                auto_compress=False,
                callback=self._outbound_concluded,
            )
        except Exception as e:
            self.log.error(
                "Failed to create resource link_id=%s: %s", fmt_link_id(link), e
            )
            return False

        with self._lock:
            # A link closed mid-send has no entry; nothing to track then.
            active_set = self._active_resources.get(link)
            if active_set is not None:
                active_set.add(resource)
        self.relay.stats_manager.inc("resources_sent")
        self.log.debug("Sent resource link_id=%s size=%s", fmt_link_id(link), size)
        return True
