import cbor2
import pytest

from copresd.codec import decode, decode_envelope, encode
from copresd.constants import B_NOTE_IDS, K_BODY, K_V, T_DELETE_NOTES
from copresd.envelope import make_envelope


def test_decode_envelope_accepts_encoded_envelope() -> None:
    env = make_envelope(T_DELETE_NOTES, body={B_NOTE_IDS: ["a" * 32]})
    decoded = decode_envelope(encode(env))
    assert decoded == env
    assert decoded[K_BODY][B_NOTE_IDS] == ["a" * 32]


def test_decode_envelope_rejects_garbage() -> None:
    with pytest.raises(cbor2.CBORDecodeError):
        decode_envelope(b"\xa5\x00\x01")


def test_decode_envelope_rejects_non_map() -> None:
    with pytest.raises(TypeError):
        decode_envelope(encode([1, 2, 3]))


def test_decode_envelope_rejects_wrong_version() -> None:
    env = make_envelope(T_DELETE_NOTES)
    env[K_V] = 99
    with pytest.raises(ValueError):
        decode_envelope(encode(env))


def test_tuples_are_sent_as_arrays() -> None:
    assert decode(encode({0: (1.0, 2.0, 3.0)})) == {0: [1.0, 2.0, 3.0]}
