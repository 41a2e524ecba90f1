from copresd.cli import _build_arg_parser, _write_default_config, build_config
from copresd.config import HubRuntimeConfig, apply_config_data, load_toml
from copresd.logging_config import parse_level
from copresd.paths import NOTES_FILE, home_dir, home_file


def test_apply_config_merges_hub_and_logging_tables() -> None:
    data = {
        "hub": {
            "dest_name": "copresd.test",
            "relay_peer_moves": False,
            "notes_path": "",
            "config_path": "/ignored",
            "unknown_key": 1,
        },
        "logging": {"level": "DEBUG", "file": ""},
    }
    cfg = apply_config_data(HubRuntimeConfig(config_path="/real", notes_path="/n"), data)

    assert cfg.dest_name == "copresd.test"
    assert cfg.relay_peer_moves is False
    assert cfg.notes_path is None
    assert cfg.config_path == "/real"
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file is None


def test_announce_alias() -> None:
    cfg = apply_config_data(HubRuntimeConfig(), {"announce": False})
    assert cfg.announce_on_start is False
    assert cfg.max_notes == 10


def test_default_config_file_loads(tmp_path) -> None:
    path = tmp_path / "copresd.toml"
    _write_default_config(str(path), str(tmp_path / "id"), str(tmp_path / "notes.toml"))

    cfg = apply_config_data(HubRuntimeConfig(), load_toml(str(path)))
    assert cfg.identity_path == str(tmp_path / "id")
    assert cfg.notes_path == str(tmp_path / "notes.toml")
    assert cfg.configdir is None
    assert cfg.rate_limit_msgs_per_minute == 3600
    assert cfg.log_datefmt is None


def test_cli_flags_override_file(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("COPRESD_HOME", str(tmp_path))
    path = tmp_path / "copresd.toml"
    path.write_text('[hub]\nping_interval_s = 5.0\nhub_name = "lab"\n', encoding="utf-8")

    args = _build_arg_parser().parse_args(
        [
            "--config",
            str(path),
            "--ping-interval",
            "2",
            "--no-relay-moves",
            "--no-announce",
            "--max-notes",
            "10",
        ]
    )
    cfg = build_config(args)

    assert cfg.hub_name == "lab"
    assert cfg.ping_interval_s == 2.0
    assert cfg.relay_peer_moves is False
    assert cfg.announce_on_start is False
    assert cfg.notes_path == str(tmp_path / "notes.toml")
    assert cfg.identity_path == str(tmp_path / "hub_identity")


def test_parse_level() -> None:
    assert parse_level("debug", 20) == 10
    assert parse_level(None, 20) == 20
    assert parse_level("", 30) == 30


def test_home_dir_follows_environment(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("COPRESD_HOME", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    assert home_dir() == tmp_path / ".copresd"

    monkeypatch.setenv("COPRESD_HOME", str(tmp_path / "state"))
    assert home_file(NOTES_FILE) == tmp_path / "state" / "notes.toml"


def test_max_notes_from_file() -> None:
    cfg = apply_config_data(HubRuntimeConfig(), {"hub": {"max_notes": 12}})
    assert cfg.max_notes == 12
    assert HubRuntimeConfig().max_notes == 4096
