import grp
import os
import pwd
import stat
import sys
from pathlib import Path

import pytest

# Make the top-level module importable when the project is not installed.
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import wp_perms_hardener as wph  # noqa: E402


def _current_user() -> str:
    try:
        return pwd.getpwuid(os.getuid()).pw_name
    except KeyError:
        return str(os.getuid())


def _current_group() -> str:
    try:
        return grp.getgrgid(os.getgid()).gr_name
    except KeyError:
        return str(os.getgid())


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _make_site(root: Path, *, content: bool = True, extras: bool = True) -> Path:
    _write(root / "wp-config.php", "<?php\ndefine('DB_NAME', 'wordpress');\n")
    _write(root / "index.php", "<?php\nrequire __DIR__ . '/wp-blog-header.php';\n")
    _write(root / "wp-includes" / "version.php", "<?php\n$wp_version = '6.5';\n")
    if content:
        _write(root / "wp-content" / "themes" / "twenty" / "style.css", "body {}\n")
        _write(root / "wp-content" / "uploads" / "2024" / "photo.jpg", "jpg")
        _write(root / "wp-content" / "debug.log", "PHP Notice: undefined index\n")
    if extras:
        _write(root / "xmlrpc.php", "<?php\n")
        _write(root / "readme.html", "<html></html>\n")
        _write(root / "license.txt", "GPL\n")
        _write(root / "wp-config-sample.php", "<?php\n")
        _write(root / ".htaccess", "# BEGIN WordPress\n# END WordPress\n")
    return root


def _snapshot(root: Path) -> dict:
    return {
        str(path): (stat.S_IMODE(st.st_mode), st.st_uid, st.st_gid)
        for path, st in wph.iter_tree(root)
    }


@pytest.fixture
def make_site():
    return _make_site


@pytest.fixture
def snapshot():
    return _snapshot


@pytest.fixture
def owner():
    return _current_user(), _current_group()


@pytest.fixture
def www(tmp_path: Path) -> Path:
    base = tmp_path / "www"
    base.mkdir()
    return base


@pytest.fixture
def config(tmp_path: Path, www: Path, owner) -> wph.Config:
    user, group = owner
    return wph.Config(
        owner=user,
        group=group,
        ws_group=group,
        base_paths=(www,),
        verbose=True,
        log_file=tmp_path / "log" / "wp.log",
        backup_dir=tmp_path / "backups",
    )


@pytest.fixture
def cli_args(tmp_path: Path, owner):
    """Common flags that keep a main() run inside tmp_path and owned by the current user."""
    user, group = owner
    return [
        f"--owner={user}",
        f"--group={group}",
        f"--ws-group={group}",
        f"--log-file={tmp_path / 'log' / 'wp.log'}",
        f"--backup-dir={tmp_path / 'backups'}",
        "--verbose",
    ]


@pytest.fixture(autouse=True)
def isolated(monkeypatch):
    monkeypatch.setattr(wph, "DEFAULT_BASE_PATHS", ())
    monkeypatch.setattr(wph, "command_exists", lambda cmd: False)
    yield
    for handler in list(wph.LOGGER.handlers):
        wph.LOGGER.removeHandler(handler)
        handler.close()
