from __future__ import annotations

from dataclasses import asdict, dataclass, replace


@dataclass(frozen=True)
class HubRuntimeConfig:
    config_path: str | None = None
    notes_path: str | None = None
    configdir: str | None = None
    identity_path: str | None = None
    dest_name: str = "copresd.hub"
    announce_on_start: bool = True
    announce_period_s: float = 0.0
    hub_name: str = "copresd"
    relay_peer_moves: bool = True
    rate_limit_msgs_per_minute: int = 3600
    max_delete_batch: int = 256
    max_notes: int = 4096
    ping_interval_s: float = 0.0
    ping_timeout_s: float = 0.0
    checkpoint_interval_s: float = 0.0
    max_resource_bytes: int = 1024 * 1024  # 1 MiB default
    enable_resource_transfer: bool = True
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: HubRuntimeConfig, data: dict) -> HubRuntimeConfig:
    """Overlay values from a parsed TOML document onto base.

    Accepts a [hub] table (merged into the top level) and a [logging] table
    whose short keys map onto the log_* fields. Unknown keys are ignored.
    """
    hub = data.get("hub") if isinstance(data, dict) else None
    if isinstance(hub, dict):
        data = {**data, **hub}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for short in ("level", "rns_level", "console", "file", "format", "datefmt"):
            if short in log_table:
                mapped[f"log_{short}"] = log_table.get(short)
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")

    updates = {k: v for k, v in data.items() if k in allowed}

    if "announce" in data and "announce_on_start" not in updates:
        updates["announce_on_start"] = bool(data["announce"])
    for optional_key in ("configdir", "notes_path", "log_file", "log_datefmt"):
        if optional_key in updates and updates[optional_key] == "":
            updates[optional_key] = None

    return replace(base, **updates) if updates else base
