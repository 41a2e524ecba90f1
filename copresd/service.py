from __future__ import annotations

import logging
import os
import signal
import threading
import time
from collections.abc import Callable
from typing import Any

import RNS

from . import __version__
from .codec import encode
from .config import HubRuntimeConfig
from .constants import T_PING
from .dispatch import OrderedDispatcher
from .messages import MessageHelper, Outgoing
from .notes import NoteStore
from .persistence import CheckpointTrigger, load_notes
from .registry import ConnectionRegistry
from .router import MessageRouter
from .session import SessionManager
from .stats import StatsManager
from .transport import LinkTransport, fmt_link_id
from .util import expand_path


class HubService:
    def __init__(self, config: HubRuntimeConfig, *, transport: Any = None) -> None:
        self.config = config
        self.log = logging.getLogger("copresd.hub")

        # Link callbacks arrive on Reticulum's threads and worker threads run
        # alongside them. Every change to sessions, the registry or the note
        # store happens under this one lock; sending happens after release.
        self._state_lock = threading.RLock()

        self._shutdown = threading.Event()
        self._stopped = False

        self.registry = ConnectionRegistry()
        self.notes = NoteStore()

        self.stats_manager = StatsManager(self)
        self.session_manager = SessionManager(self)
        self.message_helper = MessageHelper(self)
        self.router = MessageRouter(self)

        self.transport = transport if transport is not None else LinkTransport(self)
        self.dispatcher = OrderedDispatcher(self.transport.send)

        notes_path = expand_path(config.notes_path) if config.notes_path else None
        self.checkpoint = CheckpointTrigger(self.notes, notes_path, stats=self.stats_manager)

        self.identity: RNS.Identity | None = None
        self.destination: RNS.Destination | None = None

        self._ping_thread: threading.Thread | None = None
        self._announce_thread: threading.Thread | None = None
        self._checkpoint_thread: threading.Thread | None = None

    def load_notes(self) -> None:
        """Populate the note store from the last checkpoint, if any."""
        notes = load_notes(self.checkpoint.path or "")
        cap = int(self.config.max_notes)
        if cap > 0 and len(notes) > cap:
            self.log.warning(
                "Checkpoint holds %d notes, over max_notes=%d; keeping the first %d",
                len(notes),
                cap,
                cap,
            )
            notes = notes[:cap]
        self.notes.replace_all(notes)
        self.checkpoint.mark_clean()

    def start(self) -> None:
        self.stats_manager.set_start_time()
        self.load_notes()

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

        # From here on the note store must reach disk on the way out.
        self.checkpoint.install()

        if self.config.announce_on_start:
            self._announce_once()

        self._start_worker_threads()

        self.log.info(
            "Hub running version=%s dest_name=%s dest_hash=%s notes=%s",
            __version__,
            self.config.dest_name,
            self.destination.hash.hex() if self.destination else "-",
            len(self.notes),
        )
        self.log.info(
            "Policy rate_limit_msgs_per_minute=%s relay_peer_moves=%s max_delete_batch=%s",
            self.config.rate_limit_msgs_per_minute,
            self.config.relay_peer_moves,
            self.config.max_delete_batch,
        )

    def _start_worker_threads(self) -> None:
        if self.config.announce_period_s and self.config.announce_period_s > 0:
            self._announce_thread = threading.Thread(
                target=self._announce_loop, name="copresd-announce", daemon=True
            )
            self._announce_thread.start()

        if self.config.ping_interval_s and self.config.ping_interval_s > 0:
            self._ping_thread = threading.Thread(
                target=self._ping_loop, name="copresd-ping", daemon=True
            )
            self._ping_thread.start()

        if self.config.checkpoint_interval_s and self.config.checkpoint_interval_s > 0:
            self._checkpoint_thread = threading.Thread(
                target=self._checkpoint_loop, name="copresd-checkpoint", daemon=True
            )
            self._checkpoint_thread.start()

    def _announce_once(self) -> None:
        if self.destination is None:
            return
        try:
            self.destination.announce(
                app_data=encode({"proto": "copresd", "v": 1, "hub": self.config.hub_name})
            )
            self.stats_manager.inc("announces")
        except Exception:
            self.log.exception("Announce failed")

    def _announce_loop(self) -> None:
        while not self._shutdown.wait(float(self.config.announce_period_s)):
            self._announce_once()

    def _checkpoint_loop(self) -> None:
        while not self._shutdown.wait(float(self.config.checkpoint_interval_s)):
            self.checkpoint.checkpoint_now("periodic")

    def run_forever(self) -> None:
        if self.destination is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop("interrupt"))
        signal.signal(signal.SIGTERM, lambda *_: self.stop("terminate"))

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self, reason: str = "shutdown") -> None:
        with self._state_lock:
            if self._stopped:
                return
            self._stopped = True
            self._shutdown.set()
            links = self.session_manager.clear_all()

        self.checkpoint.fire(reason)
        self.log.info("Hub stopping (%s)\n%s", reason, self.stats_manager.format_stats())

        for link in links:
            try:
                link.teardown()
            except Exception:
                pass

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if not os.path.exists(p):
            raise RuntimeError(f"Identity not found at {p}")
        ident = RNS.Identity.from_file(p)
        if ident is None:
            raise RuntimeError(f"Failed to load identity from {p}")
        return ident

    def _process(
        self,
        handler: Callable[..., Any],
        link: RNS.Link,
        *args: Any,
    ) -> None:
        """Run handler under the state lock, then transmit what it queued.

        The dispatcher ticket is taken inside the lock so batches leave in
        the same order their events were applied.
        """
        outgoing: Outgoing = []
        with self._state_lock:
            ticket = self.dispatcher.take_ticket()
            try:
                handler(link, *args, outgoing)
            except Exception:
                # Isolate the failure to this event; other links carry on.
                self.log.exception(
                    "Event handler %s failed link_id=%s",
                    getattr(handler, "__name__", handler),
                    fmt_link_id(link),
                )

        if self.log.isEnabledFor(logging.DEBUG) and outgoing:
            self.log.debug(
                "Sending %d message(s) for link_id=%s", len(outgoing), fmt_link_id(link)
            )
        self.dispatcher.submit(ticket, outgoing)

    def _on_link(self, link: RNS.Link) -> None:
        if self._shutdown.is_set():
            try:
                link.teardown()
            except Exception:
                pass
            return

        self._process(self.router.handle_join, link)

        link.set_packet_callback(lambda data, pkt: self._on_packet(link, data))
        link.set_link_closed_callback(lambda closed_link: self._on_close(closed_link))

        self.log.info("Link established link_id=%s", fmt_link_id(link))

        # The link may have dropped before the close callback was in place.
        if getattr(link, "status", None) == getattr(RNS.Link, "CLOSED", object()):
            self._on_close(link)

    def _on_close(self, link: RNS.Link) -> None:
        self._process(self._leave_and_log, link)

    def _leave_and_log(self, link: RNS.Link, outgoing: Outgoing) -> None:
        sess = self.router.handle_leave(link, outgoing)
        if sess is None:
            return
        self.log.info(
            "Link closed peer=%s link_id=%s clients=%s",
            sess.peer_id,
            fmt_link_id(link),
            len(self.session_manager.sessions),
        )

    def _on_packet(self, link: RNS.Link, data: bytes) -> None:
        self._process(self.router.route_packet, link, data)

    def _ping_loop(self) -> None:
        while not self._shutdown.wait(float(self.config.ping_interval_s)):
            self.ping_once()

    def ping_once(self) -> None:
        """Ping every active link; tear down links that missed the last ping."""
        timeout = float(self.config.ping_timeout_s)
        now = time.monotonic()
        to_teardown: list[RNS.Link] = []
        outgoing: Outgoing = []

        with self._state_lock:
            ticket = self.dispatcher.take_ticket()
            for link, sess in list(self.session_manager.sessions.items()):
                if self.session_manager.get_active(link) is None:
                    continue

                awaiting = sess.awaiting_pong
                if timeout > 0 and awaiting is not None and (now - awaiting) > timeout:
                    to_teardown.append(link)
                    continue

                if awaiting is None:
                    sess.awaiting_pong = now
                    self.message_helper.fan_out(outgoing, T_PING, link, now)
                    self.stats_manager.inc("pings_out")

        self.dispatcher.submit(ticket, outgoing)

        for link in to_teardown:
            self.log.info("Ping timeout link_id=%s", fmt_link_id(link))
            try:
                link.teardown()
            except Exception:
                pass
