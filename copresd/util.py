from __future__ import annotations

import math
import os

from .constants import COLOR_MAX, ID_HEX_CHARS


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def _normalize_floats(value, n: int) -> tuple[float, ...] | None:
    if not isinstance(value, (list, tuple)) or len(value) != n:
        return None

    out: list[float] = []
    for item in value:
        # bool is an int subclass; a True coordinate is a client bug.
        if isinstance(item, bool) or not isinstance(item, (int, float)):
            return None
        f = float(item)
        if not math.isfinite(f):
            return None
        out.append(f)
    return tuple(out)


def normalize_vec3(value) -> tuple[float, float, float] | None:
    return _normalize_floats(value, 3)  # type: ignore[return-value]


def normalize_quat(value) -> tuple[float, float, float, float] | None:
    return _normalize_floats(value, 4)  # type: ignore[return-value]


def normalize_color(value) -> int | float | None:
    """Accept a 24-bit RGB integer or a hue in [0.0, 1.0]."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        if 0 <= value <= COLOR_MAX:
            return value
        return None
    if isinstance(value, float):
        if math.isfinite(value) and 0.0 <= value <= 1.0:
            return value
        return None
    return None


def normalize_id(value) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip().lower()
    if len(s) != ID_HEX_CHARS:
        return None
    if any(ch not in "0123456789abcdef" for ch in s):
        return None
    return s


def new_id() -> str:
    return os.urandom(ID_HEX_CHARS // 2).hex()
