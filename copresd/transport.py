"""Reticulum link transmission for the copresd hub."""

from __future__ import annotations

import hashlib
import logging
import os
from typing import TYPE_CHECKING

import RNS

from .codec import encode
from .constants import (
    B_RES_ID,
    B_RES_KIND,
    B_RES_SHA256,
    B_RES_SIZE,
    RES_KIND_ENVELOPE,
    T_RESOURCE_ENVELOPE,
)
from .envelope import make_envelope

if TYPE_CHECKING:
    from .service import HubService


def fmt_link_id(link: RNS.Link) -> str:
    lid = getattr(link, "link_id", None)
    if isinstance(lid, (bytes, bytearray)):
        return bytes(lid).hex()
    h = getattr(link, "hash", None)
    if isinstance(h, (bytes, bytearray)):
        return bytes(h).hex()
    return "-"


class LinkTransport:
    """
    Sends encoded envelopes over RNS links.

    Payloads that fit the link MDU go out as a single packet. Larger ones
    (introductions and note lists grow with the hub) are announced with a
    RESOURCE_ENVELOPE and then sent as an RNS.Resource whose content is the
    encoded envelope itself.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("copresd.transport")

    def packet_would_fit(self, link: RNS.Link, payload: bytes) -> bool:
        """Check if payload fits within link MDU without creating/packing packets."""
        try:
            if hasattr(link, "MDU") and link.MDU is not None:
                return len(payload) <= link.MDU
            pkt = RNS.Packet(link, payload)
            pkt.pack()
            return True
        except Exception:
            return False

    def send(self, link: RNS.Link, payload: bytes) -> None:
        if self.packet_would_fit(link, payload):
            self._send_packet(link, payload)
            return
        if not self.send_via_resource(link, payload):
            self.hub.stats_manager.inc("send_failures")

    def _send_packet(self, link: RNS.Link, payload: bytes) -> bool:
        try:
            RNS.Packet(link, payload).send()
        except OSError as e:
            self.hub.stats_manager.inc("send_failures")
            self.log.warning(
                "Send failed link_id=%s bytes=%s err=%s",
                fmt_link_id(link),
                len(payload),
                e,
            )
            return False
        except Exception:
            # Typically the link closed underneath us; close handling follows.
            self.hub.stats_manager.inc("send_failures")
            self.log.debug(
                "Send failed link_id=%s bytes=%s",
                fmt_link_id(link),
                len(payload),
                exc_info=True,
            )
            return False
        self.hub.stats_manager.inc("bytes_out", len(payload))
        return True

    def send_via_resource(self, link: RNS.Link, payload: bytes) -> bool:
        """
        Send an oversized envelope as a Resource.
        Returns True if the transfer was initiated, False otherwise.
        """
        cfg = self.hub.config
        size = len(payload)
        if not cfg.enable_resource_transfer:
            self.log.error(
                "Payload exceeds link MDU and resource transfer is disabled link_id=%s bytes=%s",
                fmt_link_id(link),
                size,
            )
            return False
        if size > cfg.max_resource_bytes:
            self.log.error(
                "Payload too large for resource transfer: %s > %s",
                size,
                cfg.max_resource_bytes,
            )
            return False

        rid = os.urandom(8)
        notice = make_envelope(
            T_RESOURCE_ENVELOPE,
            body={
                B_RES_ID: rid,
                B_RES_KIND: RES_KIND_ENVELOPE,
                B_RES_SIZE: size,
                B_RES_SHA256: hashlib.sha256(payload).digest(),
            },
        )
        if not self._send_packet(link, encode(notice)):
            return False

        try:
            RNS.Resource(payload, link, advertise=True, auto_compress=False)
        except Exception as e:
            self.log.error(
                "Failed to create resource link_id=%s: %s",
                fmt_link_id(link),
                e,
            )
            return False

        self.hub.stats_manager.inc("resources_sent")
        self.hub.stats_manager.inc("bytes_out", size)
        self.log.debug(
            "Sent resource link_id=%s rid=%s size=%s",
            fmt_link_id(link),
            rid.hex(),
            size,
        )
        return True
