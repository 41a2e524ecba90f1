from __future__ import annotations

import os
from pathlib import Path

HOME_ENV = "COPRESD_HOME"

CONFIG_FILE = "copresd.toml"
IDENTITY_FILE = "hub_identity"
NOTES_FILE = "notes.toml"


def home_dir() -> Path:
    """The copresd state directory: $COPRESD_HOME, else ~/.copresd."""
    return Path(os.environ.get(HOME_ENV) or Path.home() / ".copresd")


def home_file(name: str) -> Path:
    return home_dir() / name


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(path, 0o700)
    except OSError:
        # Not every filesystem honours the mode.
        pass
