from __future__ import annotations

import cbor2

from .envelope import validate_envelope


def encode(obj) -> bytes:
    return cbor2.dumps(obj)


def decode(b: bytes):
    return cbor2.loads(b)


def decode_envelope(data: bytes) -> dict:
    """Decode a wire payload and validate it as an envelope.

    Raises cbor2.CBORDecodeError, TypeError or ValueError on bad input.
    """
    env = decode(bytes(data))
    validate_envelope(env)
    return env
