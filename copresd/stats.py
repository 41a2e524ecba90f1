"""Statistics tracking and reporting for the copresd hub."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import HubService


class StatsManager:
    """
    Manages hub statistics collection and reporting.

    Tracks counters for:
    - Bytes and packets in/out
    - Dropped (malformed or rate limited) events
    - Joins/parts and state updates
    - Note store changes
    - Ping/pong activity
    - Announces, resources and checkpoints
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "bytes_in": 0,
            "bytes_out": 0,
            "pkts_in": 0,
            "pkts_bad": 0,
            "rate_limited": 0,
            "send_failures": 0,
            "joins": 0,
            "parts": 0,
            "state_updates": 0,
            "notes_added": 0,
            "notes_updated": 0,
            "notes_deleted": 0,
            "notes_not_found": 0,
            "notes_rejected": 0,
            "pings_in": 0,
            "pongs_in": 0,
            "pings_out": 0,
            "pongs_out": 0,
            "announces": 0,
            "resources_sent": 0,
            "checkpoints": 0,
            "checkpoint_failures": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
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
        """Format current statistics as a human-readable string."""
        from . import __version__

        now_mono = time.monotonic()
        started_mono = self.started_monotonic
        uptime_s = (now_mono - started_mono) if started_mono is not None else 0.0

        with self.hub._state_lock:
            session_stats = self.hub.session_manager.get_stats()
            notes_count = len(self.hub.notes)
        c = self.snapshot()

        lines: list[str] = []
        lines.append(f"copresd {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(
            f"clients_total={session_stats['total']} "
            f"clients_active={session_stats['active']} "
            f"notes={notes_count}"
        )
        lines.append(
            f"limits: rate_limit_msgs_per_minute={self.hub.config.rate_limit_msgs_per_minute} "
            f"max_delete_batch={self.hub.config.max_delete_batch} "
            f"max_notes={self.hub.config.max_notes}"
        )
        lines.append(
            f"features: ping_interval_s={self.hub.config.ping_interval_s} "
            f"ping_timeout_s={self.hub.config.ping_timeout_s} "
            f"relay_peer_moves={self.hub.config.relay_peer_moves} "
            f"checkpoint_interval_s={self.hub.config.checkpoint_interval_s}"
        )
        lines.append(
            "io: pkts_in={} pkts_bad={} bytes_in={} bytes_out={} send_failures={}".format(
                c.get("pkts_in", 0),
                c.get("pkts_bad", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
                c.get("send_failures", 0),
            )
        )
        lines.append(
            "events: joins={} parts={} state_updates={} rate_limited={}".format(
                c.get("joins", 0),
                c.get("parts", 0),
                c.get("state_updates", 0),
                c.get("rate_limited", 0),
            )
        )
        lines.append(
            "notes: added={} updated={} deleted={} not_found={} rejected={}".format(
                c.get("notes_added", 0),
                c.get("notes_updated", 0),
                c.get("notes_deleted", 0),
                c.get("notes_not_found", 0),
                c.get("notes_rejected", 0),
            )
        )
        lines.append(
            "pings: in={} out={} pongs: in={} out={}".format(
                c.get("pings_in", 0),
                c.get("pings_out", 0),
                c.get("pongs_in", 0),
                c.get("pongs_out", 0),
            )
        )
        lines.append(
            "persistence: checkpoints={} failures={} resources_sent={}".format(
                c.get("checkpoints", 0),
                c.get("checkpoint_failures", 0),
                c.get("resources_sent", 0),
            )
        )

        return "\n".join(lines)
