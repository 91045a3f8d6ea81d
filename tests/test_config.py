import dataclasses
from pathlib import Path

import pytest

import wp_perms_hardener as wph


def test_defaults_seed_base_paths_and_owner(monkeypatch) -> None:
    monkeypatch.setattr(wph, "DEFAULT_BASE_PATHS", ("/var/www", "/var/www/html", "/srv/www"))
    config = wph.resolve_config(["example.com"])
    assert config.target == "example.com"
    assert (config.owner, config.group, config.ws_group) == ("www-data", "www-data", "www-data")
    assert config.base_paths == (Path("/var/www"), Path("/var/www/html"), Path("/srv/www"))
    assert config.backup is True
    assert config.dry_run is False
    assert config.log_file == Path(wph.DEFAULT_LOG_FILE)


def test_base_paths_are_appended_in_order(monkeypatch) -> None:
    monkeypatch.setattr(wph, "DEFAULT_BASE_PATHS", ("/var/www",))
    config = wph.resolve_config(["--all-sites", "--base-path=/srv/sites", "--base-path", "/opt/wp/"])
    assert config.base_paths == (Path("/var/www"), Path("/srv/sites"), Path("/opt/wp"))
    assert config.all_sites is True


def test_flag_overrides() -> None:
    config = wph.resolve_config([
        "--dry-run", "--no-backup", "--verbose",
        "--owner=webadmin", "--group=webgroup", "--ws-group=nginx",
        "/srv/example",
    ])
    assert config.dry_run and config.verbose
    assert config.backup is False
    assert (config.owner, config.group, config.ws_group) == ("webadmin", "webgroup", "nginx")


def test_config_is_immutable() -> None:
    config = wph.resolve_config(["example.com"])
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.owner = "root"  # type: ignore[misc]


@pytest.mark.parametrize("argv", [
    [],
    ["--dry-run"],
    ["--bogus", "example.com"],
    ["example.com", "--all-sites"],
    ["--all-sites", "--restore=example.com-latest"],
])
def test_usage_errors_exit_with_one(argv, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        wph.resolve_config(argv)
    assert excinfo.value.code == 1
    assert "usage:" in capsys.readouterr().err


def test_missing_target_explains_what_to_do(capsys) -> None:
    with pytest.raises(SystemExit):
        wph.resolve_config([])
    assert "Either specify a site or use --all-sites" in capsys.readouterr().err


def test_help_exits_cleanly(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        wph.resolve_config(["--help"])
    assert excinfo.value.code == 0
    out = capsys.readouterr().out
    assert "--ws-group" in out
    assert "--restore" in out


def test_restore_alone_is_accepted() -> None:
    config = wph.resolve_config(["--restore=example.com-latest"])
    assert config.restore == "example.com-latest"
    assert config.target is None
