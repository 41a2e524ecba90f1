"""Connection registry: live per-peer presence state.

Each active connection owns exactly one PeerState entry, created with
defaults when the connection joins and dropped when it leaves. Entries are
immutable; an update swaps in a new PeerState so readers never see a
partially written entry.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace

from .constants import (
    DEFAULT_COLOR,
    DEFAULT_ORIENTATION,
    DEFAULT_POSITION,
    S_COLOR,
    S_ORIENTATION,
    S_POSITION,
)
from .util import new_id


class DuplicatePeerError(ValueError):
    """A peer id was registered twice."""


@dataclass(frozen=True)
class PeerState:
    position: tuple[float, float, float] = DEFAULT_POSITION
    orientation: tuple[float, float, float, float] = DEFAULT_ORIENTATION
    color: int | float = DEFAULT_COLOR

    def to_wire(self) -> dict[int, object]:
        return {
            S_POSITION: list(self.position),
            S_ORIENTATION: list(self.orientation),
            S_COLOR: self.color,
        }


class ConnectionRegistry:
    def __init__(self) -> None:
        self.log = logging.getLogger("copresd.registry")
        self._lock = threading.RLock()
        # dict preserves insertion order, which is join order.
        self._peers: dict[str, PeerState] = {}

    def new_peer_id(self) -> str:
        """Return a fresh random id not held by any live peer.

        Ids carry 128 random bits, so an id handed out earlier in the process
        does not come back in practice; only live peers are checked.
        """
        with self._lock:
            while True:
                pid = new_id()
                if pid not in self._peers:
                    return pid

    def register(self, peer_id: str) -> PeerState:
        with self._lock:
            if peer_id in self._peers:
                raise DuplicatePeerError(f"peer id already registered: {peer_id}")
            state = PeerState()
            self._peers[peer_id] = state
            return state

    def update(
        self,
        peer_id: str,
        *,
        position: tuple[float, float, float] | None = None,
        orientation: tuple[float, float, float, float] | None = None,
        color: int | float | None = None,
    ) -> PeerState | None:
        changes: dict[str, object] = {}
        if position is not None:
            changes["position"] = tuple(position)
        if orientation is not None:
            changes["orientation"] = tuple(orientation)
        if color is not None:
            changes["color"] = color

        with self._lock:
            current = self._peers.get(peer_id)
            if current is None:
                # Connection raced with its own disconnect.
                return None
            state = replace(current, **changes) if changes else current
            self._peers[peer_id] = state
            return state

    def remove(self, peer_id: str) -> PeerState | None:
        with self._lock:
            return self._peers.pop(peer_id, None)

    def get(self, peer_id: str) -> PeerState | None:
        with self._lock:
            return self._peers.get(peer_id)

    def snapshot(self) -> dict[str, PeerState]:
        with self._lock:
            return dict(self._peers)

    def clear(self) -> None:
        with self._lock:
            self._peers.clear()

    def __contains__(self, peer_id: object) -> bool:
        with self._lock:
            return peer_id in self._peers

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)


def snapshot_to_wire(snapshot: dict[str, PeerState]) -> dict[str, dict[int, object]]:
    return {pid: st.to_wire() for pid, st in snapshot.items()}
