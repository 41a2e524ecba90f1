from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import RNS

from .codec import decode_envelope
from .constants import (
    B_COLOR,
    B_NOTE_ID,
    B_NOTE_IDS,
    B_ORIENTATION,
    B_POSITION,
    K_BODY,
    K_T,
    T_ADD_NOTE,
    T_DELETE_NOTES,
    T_INTRODUCTION,
    T_NOTES_CHANGED,
    T_PEER_JOINED,
    T_PEER_LEFT,
    T_PEER_MOVED,
    T_PING,
    T_PONG,
    T_STATE_ECHO,
    T_UPDATE_NOTE,
    T_UPDATE_STATE,
)
from .messages import (
    Outgoing,
    introduction_body,
    notes_changed_body,
    peer_joined_body,
    peer_left_body,
    peer_moved_body,
    state_echo_body,
)
from .session import Session
from .transport import fmt_link_id
from .util import normalize_color, normalize_id, normalize_quat, normalize_vec3

if TYPE_CHECKING:
    from .service import HubService


class MalformedEvent(ValueError):
    """An inbound event body failed validation."""


def parse_update_state(body: Any) -> tuple[tuple, tuple, int | float | None]:
    if not isinstance(body, dict):
        raise MalformedEvent("state update body must be a map")
    position = normalize_vec3(body.get(B_POSITION))
    if position is None:
        raise MalformedEvent("invalid position")
    orientation = normalize_quat(body.get(B_ORIENTATION))
    if orientation is None:
        raise MalformedEvent("invalid orientation")
    color = None
    if B_COLOR in body:
        color = normalize_color(body.get(B_COLOR))
        if color is None:
            raise MalformedEvent("invalid color")
    return position, orientation, color


def parse_add_note(body: Any) -> tuple[int | float, tuple]:
    if not isinstance(body, dict):
        raise MalformedEvent("add note body must be a map")
    color = normalize_color(body.get(B_COLOR))
    if color is None:
        raise MalformedEvent("invalid color")
    position = normalize_vec3(body.get(B_POSITION))
    if position is None:
        raise MalformedEvent("invalid position")
    return color, position


def parse_update_note(body: Any) -> tuple[str, int | float, tuple]:
    if not isinstance(body, dict):
        raise MalformedEvent("update note body must be a map")
    note_id = normalize_id(body.get(B_NOTE_ID))
    if note_id is None:
        raise MalformedEvent("invalid note id")
    color, position = parse_add_note(body)
    return note_id, color, position


def parse_delete_notes(body: Any, max_ids: int) -> set[str]:
    if not isinstance(body, dict):
        raise MalformedEvent("delete notes body must be a map")
    raw = body.get(B_NOTE_IDS)
    if not isinstance(raw, list):
        raise MalformedEvent("note ids must be an array")
    if max_ids > 0 and len(raw) > max_ids:
        raise MalformedEvent(f"too many note ids ({len(raw)} > {max_ids})")
    ids: set[str] = set()
    for item in raw:
        note_id = normalize_id(item)
        if note_id is None:
            raise MalformedEvent("invalid note id")
        ids.add(note_id)
    return ids


class MessageRouter:
    """
    Handles event routing and fan-out for the copresd hub.

    This class is responsible for:
    - Decoding and validating incoming packets
    - Dispatching events by type (state update, note CRUD, ping/pong)
    - Choosing recipients for every resulting outbound message
    - Join and leave announcements

    All entry points expect the hub state lock to be held and only append
    to `outgoing`; nothing is transmitted from here.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("copresd.router")

    def handle_join(self, link: RNS.Link, outgoing: Outgoing) -> None:
        result = self.hub.session_manager.join(link)
        if result is None:
            return
        self.hub.stats_manager.inc("joins")

        helper = self.hub.message_helper
        helper.fan_out(
            outgoing,
            T_INTRODUCTION,
            link,
            introduction_body(result.peer_id, result.others, result.notes),
        )
        helper.fan_out(
            outgoing,
            T_PEER_JOINED,
            link,
            peer_joined_body(result.peer_id, result.state, result.active_count),
        )

    def handle_leave(self, link: RNS.Link, outgoing: Outgoing) -> Session | None:
        sess = self.hub.session_manager.leave(link)
        if sess is None:
            return None
        self.hub.stats_manager.inc("parts")
        self.hub.message_helper.fan_out(
            outgoing, T_PEER_LEFT, link, peer_left_body(sess.peer_id)
        )
        return sess

    def route_packet(self, link: RNS.Link, data: bytes, outgoing: Outgoing) -> None:
        """
        Main entry point for an incoming packet.

        Bad input is dropped without a reply and without touching shared state.
        """
        sess = self.hub.session_manager.get_active(link)
        if sess is None:
            # Packet raced with the close of its own link.
            return

        stats = self.hub.stats_manager
        stats.inc("pkts_in")
        stats.inc("bytes_in", len(data))

        if not self.hub.session_manager.refill_and_take(link, 1.0):
            stats.inc("rate_limited")
            if self.log.isEnabledFor(logging.DEBUG):
                self.log.debug(
                    "Rate limited peer=%s link_id=%s", sess.peer_id, fmt_link_id(link)
                )
            return

        try:
            env = decode_envelope(data)
        except Exception as e:
            self._drop(sess, link, data, e)
            return

        t = env.get(K_T)
        body = env.get(K_BODY)

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX peer=%s link_id=%s t=%s bytes=%s body_type=%s",
                sess.peer_id,
                fmt_link_id(link),
                t,
                len(data),
                type(body).__name__,
            )

        try:
            if t == T_UPDATE_STATE:
                self._handle_update_state(link, body, outgoing)
            elif t == T_ADD_NOTE:
                self._handle_add_note(link, body, outgoing)
            elif t == T_UPDATE_NOTE:
                self._handle_update_note(link, body, outgoing)
            elif t == T_DELETE_NOTES:
                self._handle_delete_notes(link, body, outgoing)
            elif t == T_PING:
                self._handle_ping(link, env, outgoing)
            elif t == T_PONG:
                self._handle_pong(sess)
            else:
                raise MalformedEvent(f"unsupported message type {t!r}")
        except MalformedEvent as e:
            self._drop(sess, link, data, e)

    def _drop(self, sess: Session, link: RNS.Link, data: bytes, err: Exception) -> None:
        self.hub.stats_manager.inc("pkts_bad")
        self.log.debug(
            "Dropped event peer=%s link_id=%s bytes=%s err=%s",
            sess.peer_id,
            fmt_link_id(link),
            len(data),
            err,
        )

    def _handle_update_state(self, link: RNS.Link, body: Any, outgoing: Outgoing) -> None:
        position, orientation, color = parse_update_state(body)
        result = self.hub.session_manager.update_state(
            link, position=position, orientation=orientation, color=color
        )
        if result is None:
            return
        peer_id, state = result
        self.hub.stats_manager.inc("state_updates")

        helper = self.hub.message_helper
        helper.fan_out(
            outgoing, T_STATE_ECHO, link, state_echo_body(self.hub.registry.snapshot())
        )
        if self.hub.config.relay_peer_moves:
            helper.fan_out(outgoing, T_PEER_MOVED, link, peer_moved_body(peer_id, state))

    def _broadcast_notes(self, link: RNS.Link, outgoing: Outgoing) -> None:
        self.hub.message_helper.fan_out(
            outgoing, T_NOTES_CHANGED, link, notes_changed_body(self.hub.notes.list())
        )

    def _handle_add_note(self, link: RNS.Link, body: Any, outgoing: Outgoing) -> None:
        color, position = parse_add_note(body)
        cap = int(self.hub.config.max_notes)
        if cap > 0 and len(self.hub.notes) >= cap:
            self.hub.stats_manager.inc("notes_rejected")
            self.log.debug(
                "Note add rejected, store full link_id=%s notes=%s",
                fmt_link_id(link),
                len(self.hub.notes),
            )
            return
        note = self.hub.session_manager.add_note(link, color, position)
        if note is None:
            return
        self.hub.stats_manager.inc("notes_added")
        self._broadcast_notes(link, outgoing)

    def _handle_update_note(self, link: RNS.Link, body: Any, outgoing: Outgoing) -> None:
        note_id, color, position = parse_update_note(body)
        if not self.hub.session_manager.update_note(link, note_id, color, position):
            self.hub.stats_manager.inc("notes_not_found")
            return
        self.hub.stats_manager.inc("notes_updated")
        self._broadcast_notes(link, outgoing)

    def _handle_delete_notes(self, link: RNS.Link, body: Any, outgoing: Outgoing) -> None:
        ids = parse_delete_notes(body, int(self.hub.config.max_delete_batch))
        removed = self.hub.session_manager.delete_notes(link, ids)
        if not removed:
            return
        self.hub.stats_manager.inc("notes_deleted", len(removed))
        self._broadcast_notes(link, outgoing)

    def _handle_ping(self, link: RNS.Link, env: dict, outgoing: Outgoing) -> None:
        self.hub.stats_manager.inc("pings_in")
        self.hub.message_helper.fan_out(outgoing, T_PONG, link, env.get(K_BODY))
        self.hub.stats_manager.inc("pongs_out")

    def _handle_pong(self, sess: Session) -> None:
        self.hub.stats_manager.inc("pongs_in")
        sess.awaiting_pong = None
