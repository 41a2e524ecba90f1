"""Ordered hand-off of outbound batches from event handlers to the transport.

Handlers run under the hub state lock and only build a batch of
(link, payload) pairs. Each handler takes a ticket while it still holds
the lock, then submits its batch after releasing it. Batches go out
strictly in ticket order, which is the order the events were applied to
shared state, so every link sees its messages in processing order.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any

Batch = list[tuple[Any, bytes]]


class OrderedDispatcher:
    def __init__(self, transmit: Callable[[Any, bytes], None]) -> None:
        self.log = logging.getLogger("copresd.dispatch")
        self._transmit = transmit
        self._ticket_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._next_ticket = 0
        self._next_to_send = 0
        self._pending: dict[int, Batch] = {}

    def take_ticket(self) -> int:
        with self._ticket_lock:
            ticket = self._next_ticket
            self._next_ticket += 1
            return ticket

    def submit(self, ticket: int, batch: Iterable[tuple[Any, bytes]]) -> None:
        """Hand over the batch for ticket. Every ticket must be submitted once,
        even with an empty batch, or later batches stall behind it."""
        with self._send_lock:
            if ticket < self._next_to_send or ticket in self._pending:
                self.log.error("Ticket %s submitted twice; dropping batch", ticket)
                return
            self._pending[ticket] = list(batch)

            while self._next_to_send in self._pending:
                ready = self._pending.pop(self._next_to_send)
                self._next_to_send += 1
                for link, payload in ready:
                    self._deliver(link, payload)

    def _deliver(self, link: Any, payload: bytes) -> None:
        try:
            self._transmit(link, payload)
        except Exception:
            # One bad link must not hold up the rest of the batch.
            self.log.warning("Transmit raised; continuing with next recipient", exc_info=True)

    @property
    def backlog(self) -> int:
        with self._send_lock:
            return len(self._pending)
