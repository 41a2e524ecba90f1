"""Outbound message construction and fan-out for the copresd hub."""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any

from .codec import encode
from .constants import (
    B_COUNT,
    B_NOTES,
    B_PEER,
    B_PEER_ID,
    B_PEERS,
    B_SELF_ID,
    T_INTRODUCTION,
    T_NOTES_CHANGED,
    T_PEER_JOINED,
    T_PEER_LEFT,
    T_PEER_MOVED,
    T_PING,
    T_PONG,
    T_STATE_ECHO,
)
from .envelope import make_envelope
from .notes import Note
from .registry import PeerState, snapshot_to_wire

if TYPE_CHECKING:
    from .service import HubService

Outgoing = list[tuple[Any, bytes]]


class Delivery(enum.Enum):
    SENDER = "sender"
    OTHERS = "others"
    ALL = "all"


# Which connections receive each outbound message type.
POLICIES: dict[int, Delivery] = {
    T_INTRODUCTION: Delivery.SENDER,
    T_PEER_JOINED: Delivery.OTHERS,
    T_PEER_LEFT: Delivery.OTHERS,
    T_STATE_ECHO: Delivery.SENDER,
    T_PEER_MOVED: Delivery.OTHERS,
    T_NOTES_CHANGED: Delivery.ALL,
    T_PING: Delivery.SENDER,
    T_PONG: Delivery.SENDER,
}


def introduction_body(
    self_id: str, peers: dict[str, PeerState], notes: list[Note]
) -> dict[int, Any]:
    return {
        B_SELF_ID: self_id,
        B_PEERS: snapshot_to_wire(peers),
        B_NOTES: [n.to_wire() for n in notes],
    }


def peer_joined_body(peer_id: str, state: PeerState, count: int) -> dict[int, Any]:
    return {B_PEER_ID: peer_id, B_PEER: state.to_wire(), B_COUNT: int(count)}


def peer_left_body(peer_id: str) -> dict[int, Any]:
    return {B_PEER_ID: peer_id}


def state_echo_body(peers: dict[str, PeerState]) -> dict[int, Any]:
    return {B_PEERS: snapshot_to_wire(peers)}


def peer_moved_body(peer_id: str, state: PeerState) -> dict[int, Any]:
    return {B_PEER_ID: peer_id, B_PEER: state.to_wire()}


def notes_changed_body(notes: list[Note]) -> dict[int, Any]:
    return {B_NOTES: [n.to_wire() for n in notes]}


class MessageHelper:
    """
    Turns one logical event into concrete (link, payload) pairs.

    Recipients are resolved from the session table at call time, so this
    must run with the hub state lock held. Nothing here touches the network.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub

    def recipients(self, delivery: Delivery, sender: Any) -> list[Any]:
        if delivery is Delivery.SENDER:
            return [sender] if sender is not None else []
        active = self.hub.session_manager.active_links()
        if delivery is Delivery.OTHERS:
            return [link for link in active if link is not sender]
        return active

    def fan_out(
        self,
        outgoing: Outgoing,
        msg_type: int,
        sender: Any,
        body: Any = None,
        *,
        delivery: Delivery | None = None,
    ) -> int:
        """Queue msg_type for its policy's recipients. Returns the count queued."""
        policy = delivery or POLICIES[msg_type]
        targets = self.recipients(policy, sender)
        if not targets:
            return 0

        # Encode once; every recipient gets the same bytes.
        payload = encode(make_envelope(msg_type, body=body))
        for link in targets:
            outgoing.append((link, payload))
        return len(targets)
