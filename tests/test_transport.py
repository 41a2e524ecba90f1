import hashlib
from types import SimpleNamespace

import pytest
import RNS

from copresd.codec import decode
from copresd.config import HubRuntimeConfig
from copresd.constants import (
    B_RES_KIND,
    B_RES_SHA256,
    B_RES_SIZE,
    K_BODY,
    K_T,
    RES_KIND_ENVELOPE,
    T_RESOURCE_ENVELOPE,
)
from copresd.stats import StatsManager
from copresd.transport import LinkTransport, fmt_link_id


class _Link:
    MDU = 64
    link_id = b"\x01\x02"


@pytest.fixture
def rns_calls(monkeypatch):
    calls = {"packets": [], "resources": []}

    class FakePacket:
        def __init__(self, link, payload):
            self.link = link
            self.payload = payload

        def send(self):
            calls["packets"].append(self.payload)

    class FakeResource:
        def __init__(self, data, link, advertise=True, auto_compress=True):
            calls["resources"].append((data, advertise, auto_compress))

    monkeypatch.setattr(RNS, "Packet", FakePacket)
    monkeypatch.setattr(RNS, "Resource", FakeResource)
    return calls


def _transport(**cfg) -> LinkTransport:
    hub = SimpleNamespace(config=HubRuntimeConfig(**cfg), stats_manager=StatsManager(None))
    return LinkTransport(hub)


def test_small_payload_goes_as_packet(rns_calls) -> None:
    t = _transport()
    t.send(_Link(), b"x" * 10)

    assert rns_calls["packets"] == [b"x" * 10]
    assert rns_calls["resources"] == []
    assert t.hub.stats_manager.get("bytes_out") == 10


def test_large_payload_goes_as_resource(rns_calls) -> None:
    t = _transport()
    payload = b"y" * 500
    t.send(_Link(), payload)

    assert len(rns_calls["packets"]) == 1
    notice = decode(rns_calls["packets"][0])
    assert notice[K_T] == T_RESOURCE_ENVELOPE
    assert notice[K_BODY][B_RES_KIND] == RES_KIND_ENVELOPE
    assert notice[K_BODY][B_RES_SIZE] == 500
    assert notice[K_BODY][B_RES_SHA256] == hashlib.sha256(payload).digest()

    assert rns_calls["resources"] == [(payload, True, False)]
    assert t.hub.stats_manager.get("resources_sent") == 1


def test_oversize_payload_is_dropped(rns_calls) -> None:
    t = _transport(max_resource_bytes=100)
    t.send(_Link(), b"z" * 500)

    assert rns_calls["packets"] == []
    assert rns_calls["resources"] == []
    assert t.hub.stats_manager.get("send_failures") == 1


def test_resource_disabled_drops_large_payload(rns_calls) -> None:
    t = _transport(enable_resource_transfer=False)
    t.send(_Link(), b"z" * 500)

    assert rns_calls["resources"] == []
    assert t.hub.stats_manager.get("send_failures") == 1


def test_packet_send_error_is_counted(monkeypatch) -> None:
    class BrokenPacket:
        def __init__(self, link, payload):
            pass

        def send(self):
            raise OSError("interface down")

    monkeypatch.setattr(RNS, "Packet", BrokenPacket)
    t = _transport()
    t.send(_Link(), b"x")

    assert t.hub.stats_manager.get("send_failures") == 1
    assert t.hub.stats_manager.get("bytes_out") == 0


def test_fmt_link_id() -> None:
    assert fmt_link_id(_Link()) == "0102"
    assert fmt_link_id(object()) == "-"
