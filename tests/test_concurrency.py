import logging
import threading

from conftest import FakeLink, client_packet

from copresd.constants import (
    B_NOTE_IDS,
    B_ORIENTATION,
    B_PEER,
    B_PEER_ID,
    B_PEERS,
    B_POSITION,
    S_POSITION,
    T_DELETE_NOTES,
    T_NOTES_CHANGED,
    T_PEER_MOVED,
    T_STATE_ECHO,
    T_UPDATE_STATE,
)

UPDATES = 100


def _pose(k: float) -> bytes:
    return client_packet(
        T_UPDATE_STATE, {B_POSITION: [k, k, k], B_ORIENTATION: [k, k, k, k]}
    )


def _run_all(targets) -> None:
    start = threading.Barrier(len(targets))

    def wrap(fn):
        def run():
            start.wait()
            fn()

        return run

    threads = [threading.Thread(target=wrap(fn)) for fn in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
        assert not t.is_alive()


def _sender(link, payloads):
    def run():
        for payload in payloads:
            link.deliver(payload)

    return run


def test_parallel_updates_keep_per_link_order(hub, transport, caplog) -> None:
    links = [FakeLink(f"p{i}") for i in range(4)]
    for link in links:
        hub._on_link(link)
    ids = {link: hub.session_manager.get_session(link).peer_id for link in links}
    transport.clear()

    done = threading.Event()
    torn: list[object] = []

    def watch_registry():
        while not done.is_set():
            for state in hub.registry.snapshot().values():
                if state.position != state.orientation[:3] or len(set(state.position)) != 1:
                    torn.append(state)

    watcher = threading.Thread(target=watch_registry)
    watcher.start()
    try:
        with caplog.at_level(logging.WARNING):
            _run_all(
                [
                    _sender(link, [_pose(float(k)) for k in range(1, UPDATES + 1)])
                    for link in links
                ]
            )
    finally:
        done.set()
        watcher.join(timeout=30)

    assert torn == []
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

    expected = [float(k) for k in range(1, UPDATES + 1)]
    for link in links:
        received = transport.received(link)

        echoes = [
            body[B_PEERS][ids[link]][S_POSITION][0]
            for t, body in received
            if t == T_STATE_ECHO
        ]
        assert echoes == expected

        for mover in links:
            if mover is link:
                continue
            moves = [
                body[B_PEER][S_POSITION][0]
                for t, body in received
                if t == T_PEER_MOVED and body[B_PEER_ID] == ids[mover]
            ]
            assert moves == expected


def test_parallel_deletes_remove_each_note_once(hub, transport, caplog) -> None:
    keep = [hub.notes.add(1, (0.0, 0.0, 0.0)) for _ in range(10)]
    doomed = [hub.notes.add(2, (1.0, 1.0, 1.0)) for _ in range(60)]
    doomed_ids = [n.id for n in doomed]

    links = [FakeLink(f"d{i}") for i in range(4)]
    movers = [FakeLink(f"m{i}") for i in range(2)]
    for link in links + movers:
        hub._on_link(link)
    transport.clear()

    targets = []
    for i, link in enumerate(links):
        # Every deleter covers all doomed ids, in different orders and batch sizes.
        order = doomed_ids[i * 7 :] + doomed_ids[: i * 7]
        size = 5 + i * 3
        batches = [order[j : j + size] for j in range(0, len(order), size)]
        targets.append(
            _sender(link, [client_packet(T_DELETE_NOTES, {B_NOTE_IDS: b}) for b in batches])
        )
    for mover in movers:
        targets.append(_sender(mover, [_pose(float(k)) for k in range(1, 50)]))

    with caplog.at_level(logging.WARNING):
        _run_all(targets)

    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]
    assert hub.notes.list() == keep
    assert hub.stats_manager.get("notes_deleted") == len(doomed)
    assert hub.stats_manager.get("pkts_bad") == 0

    # One broadcast per delete that removed something, seen by every link.
    broadcasts = transport.types_for(movers[0]).count(T_NOTES_CHANGED)
    assert 1 <= broadcasts <= len(doomed)
    for link in links + movers:
        assert transport.types_for(link).count(T_NOTES_CHANGED) == broadcasts
