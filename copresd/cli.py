from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

import RNS

from .config import HubRuntimeConfig, apply_config_data, load_toml
from .logging_config import configure_logging
from .paths import CONFIG_FILE, IDENTITY_FILE, NOTES_FILE, ensure_private_dir, home_file
from .service import HubService


def _write_default_config(config_path: str, identity_path: str, notes_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    content = f"""# copresd configuration (TOML)
#
# This file was created on first run.
# Edit it, then start copresd again.

[hub]

# Optional: Reticulum configuration directory.
# If left unset, Reticulum will choose its default (usually ~/.reticulum).
configdir = ""

# Where copresd stores its persistent identity (Reticulum Identity file).
# Links to the hub are encrypted to this identity.
identity_path = {identity_path!r}

# Note store checkpoint. Loaded at startup, rewritten at shutdown.
# A missing or unreadable file starts an empty store.
notes_path = {notes_path!r}

# Destination name to host the hub on.
dest_name = "copresd.hub"

# Announcing (Reticulum destination announces)
#
# announce_on_start: send a single announce right after startup.
# announce_period_s: if >0, periodically re-announce.
announce_on_start = true
announce_period_s = 0.0

hub_name = "copresd"

# Send every state update to the other peers as it arrives. When false,
# peers only learn about movement through their own state echo.
relay_peer_moves = true

# Limits.
# Clients typically send a state update per rendered frame; keep the
# per-link budget generous.
rate_limit_msgs_per_minute = 3600
max_delete_batch = 256

# Adds beyond this many notes are rejected. The whole note list travels in
# every introduction, so it has to stay under max_resource_bytes.
max_notes = 4096

# Hub-initiated liveness checks (0 disables).
ping_interval_s = 0.0
ping_timeout_s = 0.0

# Intermediate note checkpoints in seconds (0 disables). The store is always
# written on shutdown.
checkpoint_interval_s = 0.0

# Introductions and note lists larger than the link MTU are sent as
# RNS.Resource transfers, up to this size.
enable_resource_transfer = true
max_resource_bytes = 1048576

[logging]

# Log level for copresd itself.
level = "INFO"

# Log level for Reticulum/RNS Python logging (if used by your install).
rns_level = "WARNING"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _ensure_first_run_files(config_path: str, identity_path: str, notes_path: str) -> bool:
    created_any = False

    if not os.path.exists(config_path):
        _write_default_config(config_path, identity_path, notes_path)
        created_any = True

    if not os.path.exists(identity_path):
        storage_dir = os.path.dirname(identity_path)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        ident = RNS.Identity()
        ident.to_file(identity_path)
        try:
            os.chmod(identity_path, 0o600)
        except Exception:
            pass
        created_any = True

    return created_any


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="copresd", description="Run a copresd presence and shared note hub"
    )

    p.add_argument(
        "--config",
        default=str(home_file(CONFIG_FILE)),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")
    p.add_argument(
        "--identity",
        default=str(home_file(IDENTITY_FILE)),
        help="Path to hub identity file (created on first run)",
    )
    p.add_argument(
        "--notes",
        default=None,
        help="Path to the note store checkpoint (default comes from config)",
    )
    p.add_argument(
        "--dest-name", default=None, help="Destination app name (default: copresd.hub)"
    )

    p.add_argument(
        "--no-announce",
        action="store_true",
        help="Disable announce on start (does not affect periodic announce)",
    )
    p.add_argument(
        "--announce-period",
        type=float,
        default=None,
        help="Periodic announce interval seconds (0 disables)",
    )

    p.add_argument(
        "--no-relay-moves",
        action="store_true",
        help="Do not forward state updates to other peers as they arrive",
    )
    p.add_argument(
        "--rate-limit-msgs-per-minute",
        type=int,
        default=None,
        help="Per-link message rate limit",
    )

    p.add_argument(
        "--max-notes",
        type=int,
        default=None,
        help="Maximum number of notes in the shared store",
    )

    p.add_argument(
        "--ping-interval",
        type=float,
        default=None,
        help="Hub-initiated PING interval seconds (0 disables)",
    )
    p.add_argument(
        "--ping-timeout",
        type=float,
        default=None,
        help="Close link if PONG not received within this many seconds (0 disables)",
    )
    p.add_argument(
        "--checkpoint-interval",
        type=float,
        default=None,
        help="Periodic note checkpoint interval seconds (0 disables)",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> HubRuntimeConfig:
    cfg = HubRuntimeConfig(
        config_path=str(args.config),
        configdir=args.configdir,
        identity_path=str(args.identity),
        notes_path=str(home_file(NOTES_FILE)),
    )

    if args.config and os.path.exists(args.config):
        cfg = apply_config_data(cfg, load_toml(str(args.config)))

    if args.configdir is not None:
        cfg = replace(cfg, configdir=args.configdir)
    if args.notes is not None:
        cfg = replace(cfg, notes_path=str(args.notes) or None)
    if args.dest_name is not None:
        cfg = replace(cfg, dest_name=args.dest_name)

    if args.no_announce:
        cfg = replace(cfg, announce_on_start=False)
    if args.announce_period is not None:
        cfg = replace(cfg, announce_period_s=float(args.announce_period))

    if args.no_relay_moves:
        cfg = replace(cfg, relay_peer_moves=False)
    if args.rate_limit_msgs_per_minute is not None:
        cfg = replace(
            cfg, rate_limit_msgs_per_minute=int(args.rate_limit_msgs_per_minute)
        )

    if args.max_notes is not None:
        cfg = replace(cfg, max_notes=int(args.max_notes))

    if args.ping_interval is not None:
        cfg = replace(cfg, ping_interval_s=float(args.ping_interval))
    if args.ping_timeout is not None:
        cfg = replace(cfg, ping_timeout_s=float(args.ping_timeout))
    if args.checkpoint_interval is not None:
        cfg = replace(cfg, checkpoint_interval_s=float(args.checkpoint_interval))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    identity_path = str(args.identity)
    notes_path = str(args.notes) if args.notes else str(home_file(NOTES_FILE))

    if _ensure_first_run_files(config_path, identity_path, notes_path):
        print(
            "Created default copresd files. Edit the configuration before starting:\n"
            f"- Config:   {config_path}\n"
            f"- Identity: {identity_path}\n"
            "\nThen re-run copresd.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = build_config(args)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = HubService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
