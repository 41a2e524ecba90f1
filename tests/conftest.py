from __future__ import annotations

import pytest

from copresd.codec import decode, encode
from copresd.config import HubRuntimeConfig
from copresd.constants import K_BODY, K_T
from copresd.envelope import make_envelope
from copresd.service import HubService


class FakeLink:
    """Stands in for RNS.Link: hashable, records callbacks, can be torn down."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.link_id = name.encode()
        self.status = None
        self.packet_callback = None
        self.closed_callback = None
        self.teardowns = 0

    def set_packet_callback(self, cb) -> None:
        self.packet_callback = cb

    def set_link_closed_callback(self, cb) -> None:
        self.closed_callback = cb

    def teardown(self) -> None:
        self.teardowns += 1
        self.status = "closed"

    def deliver(self, payload: bytes) -> None:
        self.packet_callback(payload, None)

    def drop(self) -> None:
        """Simulate the transport noticing the link is gone."""
        self.status = "closed"
        self.closed_callback(self)

    def __repr__(self) -> str:
        return f"FakeLink({self.name})"


class FakeTransport:
    def __init__(self) -> None:
        self.sent: list[tuple[FakeLink, bytes]] = []

    def send(self, link, payload: bytes) -> None:
        self.sent.append((link, payload))

    def received(self, link) -> list[tuple[int, object]]:
        out = []
        for to, payload in self.sent:
            if to is link:
                env = decode(payload)
                out.append((env[K_T], env.get(K_BODY)))
        return out

    def types_for(self, link) -> list[int]:
        return [t for t, _ in self.received(link)]

    def clear(self) -> None:
        self.sent.clear()


def client_packet(msg_type: int, body=None) -> bytes:
    return encode(make_envelope(msg_type, body=body))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def hub_config(tmp_path) -> HubRuntimeConfig:
    return HubRuntimeConfig(notes_path=str(tmp_path / "notes.toml"))


@pytest.fixture
def hub(hub_config, transport) -> HubService:
    return HubService(hub_config, transport=transport)


@pytest.fixture
def connect(hub):
    def _connect(name: str) -> FakeLink:
        link = FakeLink(name)
        hub._on_link(link)
        return link

    return _connect
