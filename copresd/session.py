from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import RNS

from .notes import Note
from .registry import PeerState
from .transport import fmt_link_id

if TYPE_CHECKING:
    from .service import HubService


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class _RateState:
    """Token bucket state for rate limiting."""

    tokens: float
    last_refill: float


@dataclass
class Session:
    peer_id: str
    state: SessionState = SessionState.CONNECTING
    awaiting_pong: float | None = None
    joined_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class JoinResult:
    peer_id: str
    state: PeerState
    others: dict[str, PeerState]
    notes: list[Note]
    active_count: int


class SessionManager:
    """
    Manages the lifecycle of hub connections.

    This class is responsible for:
    - Session creation and the CONNECTING -> ACTIVE -> CLOSED transitions
    - Registering and removing peers in the connection registry
    - Applying peer state updates and note store changes
    - Rate limiting with token bucket algorithm
    - Session cleanup and teardown

    Every method expects the hub state lock to be held. Methods return what
    changed; deciding who hears about it is the router's job.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("copresd.session")
        self.sessions: dict[RNS.Link, Session] = {}
        self._rate: dict[RNS.Link, _RateState] = {}
        self._index_by_peer: dict[str, RNS.Link] = {}

    def join(self, link: RNS.Link) -> JoinResult | None:
        """
        Register a newly established link.

        Returns None if the link already has a session.
        """
        if link in self.sessions:
            self.log.warning("Duplicate link establishment ignored link_id=%s", fmt_link_id(link))
            return None

        registry = self.hub.registry
        sess = Session(peer_id=registry.new_peer_id())
        self.sessions[link] = sess
        self._index_by_peer[sess.peer_id] = link
        self._rate[link] = _RateState(
            tokens=float(self.hub.config.rate_limit_msgs_per_minute),
            last_refill=time.monotonic(),
        )

        state = registry.register(sess.peer_id)
        sess.state = SessionState.ACTIVE

        snapshot = registry.snapshot()
        snapshot.pop(sess.peer_id, None)

        self.log.info(
            "Session active peer=%s link_id=%s clients=%s",
            sess.peer_id,
            fmt_link_id(link),
            len(self.active_links()),
        )
        return JoinResult(
            peer_id=sess.peer_id,
            state=state,
            others=snapshot,
            notes=self.hub.notes.list(),
            active_count=len(self.active_links()),
        )

    def leave(self, link: RNS.Link) -> Session | None:
        """
        Close a session. Graceful and abrupt closes land here alike.

        Returns the closed session, or None when there was nothing to close.
        """
        sess = self.sessions.pop(link, None)
        self._rate.pop(link, None)
        if sess is None:
            return None

        self._index_by_peer.pop(sess.peer_id, None)
        self.hub.registry.remove(sess.peer_id)
        sess.state = SessionState.CLOSED
        return sess

    def update_state(
        self,
        link: RNS.Link,
        *,
        position: tuple[float, float, float],
        orientation: tuple[float, float, float, float],
        color: int | float | None = None,
    ) -> tuple[str, PeerState] | None:
        sess = self.get_active(link)
        if sess is None:
            return None
        state = self.hub.registry.update(
            sess.peer_id, position=position, orientation=orientation, color=color
        )
        if state is None:
            return None
        return sess.peer_id, state

    def add_note(
        self, link: RNS.Link, color: int | float, position: tuple[float, float, float]
    ) -> Note | None:
        sess = self.get_active(link)
        if sess is None:
            return None
        note = self.hub.notes.add(color, position)
        self.log.info("Note added id=%s by peer=%s", note.id, sess.peer_id)
        return note

    def update_note(
        self,
        link: RNS.Link,
        note_id: str,
        color: int | float,
        position: tuple[float, float, float],
    ) -> bool:
        """Returns False when the note does not exist (or the link is gone)."""
        sess = self.get_active(link)
        if sess is None:
            return False
        found = self.hub.notes.update(note_id, color, position)
        if not found:
            self.log.debug("Note update for unknown id=%s by peer=%s", note_id, sess.peer_id)
        return found

    def delete_notes(self, link: RNS.Link, note_ids: set[str]) -> list[Note]:
        sess = self.get_active(link)
        if sess is None:
            return []
        removed = self.hub.notes.remove_many(note_ids)
        if removed:
            self.log.info(
                "Notes deleted count=%s by peer=%s", len(removed), sess.peer_id
            )
        return removed

    def refill_and_take(self, link: RNS.Link, cost: float = 1.0) -> bool:
        """
        Token bucket rate limiting.

        Refills tokens based on elapsed time and attempts to take `cost` tokens.
        Returns True if tokens were available and taken, False if rate limited.
        """
        state = self._rate.get(link)
        if state is None:
            return True

        now = time.monotonic()
        per_min = float(max(1, int(self.hub.config.rate_limit_msgs_per_minute)))
        rate_per_s = per_min / 60.0
        elapsed = max(0.0, now - state.last_refill)
        state.tokens = min(per_min, state.tokens + elapsed * rate_per_s)
        state.last_refill = now

        if state.tokens < cost:
            return False

        state.tokens -= cost
        return True

    def get_session(self, link: RNS.Link) -> Session | None:
        return self.sessions.get(link)

    def get_active(self, link: RNS.Link) -> Session | None:
        sess = self.sessions.get(link)
        if sess is None or sess.state is not SessionState.ACTIVE:
            return None
        return sess

    def get_link_by_peer(self, peer_id: str) -> RNS.Link | None:
        return self._index_by_peer.get(peer_id)

    def active_links(self) -> list[RNS.Link]:
        return [
            link for link, sess in self.sessions.items() if sess.state is SessionState.ACTIVE
        ]

    def clear_all(self) -> list[RNS.Link]:
        """
        Clear all sessions and return list of links for teardown.
        """
        links = list(self.sessions.keys())
        for sess in self.sessions.values():
            self.hub.registry.remove(sess.peer_id)
            sess.state = SessionState.CLOSED
        self.sessions.clear()
        self._rate.clear()
        self._index_by_peer.clear()
        return links

    def get_stats(self) -> dict[str, Any]:
        """Get session statistics for monitoring."""
        return {
            "total": len(self.sessions),
            "active": len(self.active_links()),
            "registry": len(self.hub.registry),
        }
