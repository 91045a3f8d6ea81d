#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
wp_perms_hardener.py (v2.0.0)

Apply a fixed ownership/permission policy to WordPress installations, remove
files that should never ship to production, and keep a snapshot of the prior
permission state so it can be put back with --restore.

Python: 3.10+
Dependencies: Standard library only
"""
from __future__ import annotations

import argparse
import dataclasses
import grp
import itertools
import json
import logging
import os
import pwd
import re
import shlex
import shutil
import stat
import subprocess
import sys
import threading
import time
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

__version__ = "2.0.0"

LOGGER = logging.getLogger("wp_perms_hardener")

# ------------------------------- Policy constants ----------------------------
DEFAULT_OWNER = "www-data"
DEFAULT_BASE_PATHS = ("/var/www", "/var/www/html", "/srv/www")
DEFAULT_LOG_FILE = "/var/log/wordpress-permissions.log"
DEFAULT_BACKUP_DIR = "/tmp/wp-perms-backup"

DIR_PERMS = 0o755
FILE_PERMS = 0o644
WP_CONFIG_PERMS = 0o600
WP_CONTENT_DIR_PERMS = 0o755
WP_CONTENT_FILE_PERMS = 0o664
WP_INCLUDES_PERMS = 0o750
LOCKED_PERMS = 0o000
HTACCESS_PERMS = 0o644

WP_CONFIG = "wp-config.php"
WP_CONTENT = "wp-content"
EXAMPLE_FILES = ("wp-config-sample.php", "readme.html", "license.txt")
NO_INDEXES_DIRECTIVE = "Options -Indexes\n"

SYSTEM_DIRS = (
    "/", "/bin", "/boot", "/dev", "/etc", "/home", "/lib", "/lib64", "/proc",
    "/root", "/run", "/sbin", "/sys", "/tmp", "/usr", "/var",
)
UNSAFE_BASE_DIRS = ("/var/www", "/var/www/html", "/srv", "/srv/www")

DISCOVERY_MAX_DEPTH = 3
LATEST_SUFFIX = "-latest"
PROG = "wp-perms-hardener"
SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"


# ------------------------------ Data structures ------------------------------
@dataclasses.dataclass(frozen=True)
class Config:
    owner: str = DEFAULT_OWNER
    group: str = DEFAULT_OWNER
    ws_group: str = DEFAULT_OWNER
    base_paths: Tuple[Path, ...] = tuple(Path(p) for p in DEFAULT_BASE_PATHS)
    dry_run: bool = False
    backup: bool = True
    verbose: bool = False
    restore: Optional[str] = None
    target: Optional[str] = None
    all_sites: bool = False
    log_file: Path = Path(DEFAULT_LOG_FILE)
    backup_dir: Path = Path(DEFAULT_BACKUP_DIR)


@dataclasses.dataclass(frozen=True)
class PermEntry:
    path: Path
    user: str
    group: str
    mode: int

    def to_dict(self) -> Dict[str, object]:
        return {"path": str(self.path), "user": self.user, "group": self.group, "mode": f"{self.mode:o}"}

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "PermEntry":
        return cls(
            path=Path(str(data["path"])),
            user=str(data["user"]),
            group=str(data["group"]),
            mode=int(str(data["mode"]), 8),
        )


@dataclasses.dataclass
class RunSummary:
    succeeded: List[Path] = dataclasses.field(default_factory=list)
    failed: List[Path] = dataclasses.field(default_factory=list)

    def record(self, site: Path, ok: bool) -> None:
        (self.succeeded if ok else self.failed).append(site)


# ------------------------------ Utility helpers -----------------------------

def run_cmd(cmd: Sequence[str], timeout: int = 30) -> Tuple[int, str, str]:
    try:
        LOGGER.debug("Running command: %s", " ".join(map(shlex.quote, cmd)))
        cp = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout, check=False)
        return cp.returncode, cp.stdout, cp.stderr
    except FileNotFoundError:
        return 127, "", f"Command not found: {cmd[0]}"
    except subprocess.TimeoutExpired:
        return 124, "", f"Timeout after {timeout}s running: {' '.join(cmd)}"


def is_root() -> bool:
    try:
        return os.geteuid() == 0
    except AttributeError:
        return False


def command_exists(cmd: str) -> bool:
    return shutil.which(cmd) is not None


def lookup_uid(name: str) -> int:
    try:
        return pwd.getpwnam(name).pw_uid
    except KeyError:
        if name.isdigit():
            return int(name)
        raise LookupError(f"Unknown user: {name}") from None


def lookup_gid(name: str) -> int:
    try:
        return grp.getgrnam(name).gr_gid
    except KeyError:
        if name.isdigit():
            return int(name)
        raise LookupError(f"Unknown group: {name}") from None


@lru_cache(maxsize=None)
def user_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


@lru_cache(maxsize=None)
def group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


def current_ownership(path: Path) -> str:
    try:
        st = path.lstat()
    except OSError:
        return "Unknown"
    return f"{user_name(st.st_uid)}:{group_name(st.st_gid)} {path}"


def is_within(path: Path, root: Path) -> bool:
    try:
        return os.path.commonpath([os.path.abspath(path), os.path.abspath(root)]) == os.path.abspath(root)
    except ValueError:
        return False


def iter_tree(root: Path) -> Iterator[Tuple[Path, os.stat_result]]:
    """Yield ``(path, lstat)`` for *root* and everything below it.

    Symlinks are reported but never followed. Entries that vanish or cannot
    be read are skipped, as are directories that cannot be listed.
    """
    stack = [root]
    while stack:
        current = stack.pop()
        try:
            st = current.lstat()
        except OSError:
            continue
        yield current, st
        if not stat.S_ISDIR(st.st_mode):
            continue
        try:
            with os.scandir(current) as it:
                children = sorted((Path(entry.path) for entry in it), reverse=True)
        except OSError:
            continue
        stack.extend(children)


# --------------------------------- Discovery ---------------------------------

def find_wp_configs(base: Path, *, max_depth: int = DISCOVERY_MAX_DEPTH) -> Iterator[Path]:
    base_parts = len(base.parts)
    stack = [base]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError:
            continue
        subdirs: List[Path] = []
        for entry in entries:
            try:
                if entry.is_symlink():
                    continue
                p = Path(entry.path)
                if entry.is_dir(follow_symlinks=False):
                    if len(p.parts) - base_parts < max_depth:
                        subdirs.append(p)
                elif entry.name == WP_CONFIG and entry.is_file(follow_symlinks=False):
                    yield p
            except OSError:
                continue
        stack.extend(reversed(subdirs))


def discover_sites(config: Config) -> List[Path]:
    sites: List[Path] = []
    seen: set[str] = set()
    for base in config.base_paths:
        if not base.is_dir():
            continue
        LOGGER.info("Scanning for WordPress sites in: %s", base)
        for wp_config in find_wp_configs(base):
            site = wp_config.parent
            key = str(site.resolve())
            if key in seen:
                continue
            seen.add(key)
            sites.append(site)
    return sites


def resolve_target(target: str, config: Config) -> Optional[Path]:
    if os.path.isabs(target):
        return Path(os.path.abspath(target))
    for base in config.base_paths:
        candidate = base / target
        if candidate.is_dir():
            return Path(os.path.abspath(candidate))
    return None


# ------------------------------ WP verification ------------------------------

def validate_site(site: Path, config: Config) -> Optional[str]:
    """Return why *site* must not be touched, or ``None`` when it is safe."""
    normalized = os.path.abspath(site)
    if normalized in SYSTEM_DIRS:
        return f"Refusing to process system directory: {site}"
    unsafe = set(UNSAFE_BASE_DIRS) | {os.path.abspath(b) for b in config.base_paths}
    if normalized in unsafe:
        return f"Refusing unsafe base directory: {site}"
    if not (site / WP_CONFIG).is_file():
        return f"Not a WordPress site (missing {WP_CONFIG}): {site}"
    if not (site / WP_CONTENT).is_dir():
        return f"Invalid WordPress installation (missing {WP_CONTENT}): {site}"
    return None


def is_multisite(site: Path) -> bool:
    try:
        text = (site / WP_CONFIG).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return False
    return re.search(r"MULTISITE.*true", text) is not None


# ---------------------------------- Actions ----------------------------------
@dataclasses.dataclass(frozen=True)
class Action:
    kind: str
    path: Path
    params: Dict[str, object] = dataclasses.field(default_factory=dict)

    def describe(self) -> str:
        p = self.params
        if self.kind == "chown_tree":
            return f"chown -R {p['owner']}:{p['group']} {self.path}"
        if self.kind == "chmod_tree":
            return f"chmod -R {p['dir_mode']:03o} (dirs) {p['file_mode']:03o} (files) {self.path}"
        if self.kind == "chgrp":
            return f"chgrp {p['group']} {self.path}"
        if self.kind == "chgrp_tree":
            return f"chgrp -R {p['group']} {self.path}"
        if self.kind == "chmod":
            return f"chmod {p['mode']:03o} {self.path}"
        if self.kind == "setgid_dirs":
            return f"chmod -R g+s (dirs) {self.path}"
        if self.kind == "write_file":
            return f"write {p['content'].strip()!r} to {self.path}"
        if self.kind == "remove":
            return f"rm -f {self.path}"
        if self.kind == "snapshot_perms":
            return f"record owner, group and mode under {self.path} to {p['dest']}"
        if self.kind == "snapshot_acl":
            return f"getfacl -R -p {self.path} > {p['dest']}"
        if self.kind == "restore_perms":
            return f"restore owner, group and mode of {len(p['entries'])} entries under {self.path} from {p['source']}"
        if self.kind == "restore_acl":
            return f"setfacl --restore={self.path}"
        return f"{self.kind} {self.path}"

    def execute(self) -> None:
        try:
            handler = ACTION_HANDLERS[self.kind]
        except KeyError:
            raise ValueError(f"Unknown action kind: {self.kind}") from None
        handler(self)


def _chown_tree(action: Action) -> None:
    uid = lookup_uid(str(action.params["owner"]))
    gid = lookup_gid(str(action.params["group"]))
    for path, _ in iter_tree(action.path):
        os.chown(path, uid, gid, follow_symlinks=False)


def _chmod_tree(action: Action) -> None:
    for path, st in iter_tree(action.path):
        if stat.S_ISDIR(st.st_mode):
            os.chmod(path, action.params["dir_mode"])
        elif stat.S_ISREG(st.st_mode):
            os.chmod(path, action.params["file_mode"])


def _chgrp(action: Action) -> None:
    os.chown(action.path, -1, lookup_gid(str(action.params["group"])), follow_symlinks=False)


def _chgrp_tree(action: Action) -> None:
    gid = lookup_gid(str(action.params["group"]))
    for path, _ in iter_tree(action.path):
        os.chown(path, -1, gid, follow_symlinks=False)


def _chmod(action: Action) -> None:
    os.chmod(action.path, action.params["mode"])


def _setgid_dirs(action: Action) -> None:
    for path, st in iter_tree(action.path):
        if stat.S_ISDIR(st.st_mode):
            os.chmod(path, stat.S_IMODE(st.st_mode) | stat.S_ISGID)


def _write_file(action: Action) -> None:
    action.path.write_text(str(action.params["content"]), encoding="utf-8")


def _remove(action: Action) -> None:
    action.path.unlink(missing_ok=True)


def ensure_backup_dir(root: Path) -> None:
    root.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(root, 0o700)
    except OSError:
        pass


def _snapshot_perms(action: Action) -> None:
    dest = Path(action.params["dest"])
    ensure_backup_dir(dest.parent)
    header = {"site": str(action.path), "created": action.params["created"], "version": __version__}
    count = 0
    with dest.open("x", encoding="utf-8") as f:
        f.write(json.dumps(header) + "\n")
        for path, st in iter_tree(action.path):
            entry = PermEntry(path, user_name(st.st_uid), group_name(st.st_gid), stat.S_IMODE(st.st_mode))
            f.write(json.dumps(entry.to_dict()) + "\n")
            count += 1
    LOGGER.debug("Recorded %d entries in %s", count, dest)


def _snapshot_acl(action: Action) -> None:
    dest = Path(action.params["dest"])
    rc, out, err = run_cmd(["getfacl", "-R", "-p", str(action.path)], timeout=600)
    if not out:
        raise OSError(err.strip() or f"getfacl exited with {rc}")
    if rc != 0:
        LOGGER.debug("getfacl reported errors for %s: %s", action.path, err.strip())
    ensure_backup_dir(dest.parent)
    with dest.open("x", encoding="utf-8") as f:
        f.write(out)


def _restore_perms(action: Action) -> None:
    site = action.path
    applied = skipped = failed = 0
    # children before parents, so a restored restrictive directory mode
    # cannot block access to what is below it
    for entry in reversed(action.params["entries"]):
        if not is_within(entry.path, site):
            LOGGER.warning("Skipping %s: outside of %s", entry.path, site)
            skipped += 1
            continue
        if not os.path.lexists(entry.path):
            skipped += 1
            continue
        try:
            os.chown(entry.path, lookup_uid(entry.user), lookup_gid(entry.group), follow_symlinks=False)
            if not entry.path.is_symlink():
                os.chmod(entry.path, entry.mode)
            applied += 1
        except (OSError, LookupError) as e:
            LOGGER.debug("Could not restore %s: %s", entry.path, e)
            failed += 1
    LOGGER.debug("Restore of %s: applied=%d skipped=%d failed=%d", site, applied, skipped, failed)


def _restore_acl(action: Action) -> None:
    rc, _, err = run_cmd(["setfacl", f"--restore={action.path}"], timeout=600)
    if rc != 0:
        raise OSError(err.strip() or f"setfacl exited with {rc}")


ACTION_HANDLERS = {
    "chown_tree": _chown_tree,
    "chmod_tree": _chmod_tree,
    "chgrp": _chgrp,
    "chgrp_tree": _chgrp_tree,
    "chmod": _chmod,
    "setgid_dirs": _setgid_dirs,
    "write_file": _write_file,
    "remove": _remove,
    "snapshot_perms": _snapshot_perms,
    "snapshot_acl": _snapshot_acl,
    "restore_perms": _restore_perms,
    "restore_acl": _restore_acl,
}


# ------------------------------ Step execution -------------------------------
@dataclasses.dataclass
class Step:
    label: str
    actions: List[Action]
    best_effort: bool = False


class Spinner:
    """Animate ``label`` on a single terminal line until :meth:`stop` is called.

    The work itself runs in the caller's thread; the spinner thread only
    draws frames and is joined before :meth:`stop` returns.
    """

    def __init__(self, label: str, stream=None, interval: float = 0.1):
        self.label = label
        self.stream = stream if stream is not None else sys.stdout
        self.interval = interval
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _spin(self) -> None:
        for frame in itertools.cycle(SPINNER_FRAMES):
            self.stream.write(f"\r  {self.label} {frame}")
            self.stream.flush()
            if self._done.wait(self.interval):
                break

    def start(self) -> "Spinner":
        self._thread = threading.Thread(target=self._spin, name="spinner", daemon=True)
        self._thread.start()
        return self

    def stop(self, ok: bool, error: Optional[str] = None) -> None:
        self._done.set()
        if self._thread is not None:
            self._thread.join()
        self.stream.write(f"\r  {self.label} {'✔' if ok else '❌'}\n")
        if not ok and error:
            self.stream.write(f"    Error: {error}\n")
        self.stream.flush()


def spinner_enabled(config: Config) -> bool:
    return not config.verbose and sys.stdout.isatty()


def run_step(step: Step, config: Config) -> bool:
    if config.dry_run:
        for action in step.actions:
            print(f"  [dry-run] {step.label}: {action.describe()}")
        return True

    spinner = Spinner(step.label).start() if spinner_enabled(config) else None
    if spinner is None:
        print(f"  {step.label}...")

    error: Optional[str] = None
    finished = False
    try:
        for action in step.actions:
            LOGGER.debug("%s: %s", step.label, action.describe())
            action.execute()
        finished = True
    except (OSError, LookupError) as e:
        error = str(e)
        finished = True
    finally:
        if spinner is not None:
            spinner.stop(finished and error is None, error)

    ok = error is None
    if spinner is None:
        print(f"  {step.label} {'✔' if ok else '❌'}")
        if error:
            print(f"    Error: {error}")

    if not ok:
        if step.best_effort:
            LOGGER.warning("%s failed (continuing): %s", step.label, error)
        else:
            LOGGER.error("%s failed: %s", step.label, error)
    return ok


# ------------------------------ Hardening policy -----------------------------

def plan_hardening(site: Path, config: Config) -> List[Step]:
    wp_config = site / WP_CONFIG
    wp_content = site / WP_CONTENT
    ws = config.ws_group

    steps = [
        Step("Setting ownership", [
            Action("chown_tree", site, {"owner": config.owner, "group": config.group}),
        ]),
        Step("Setting base permissions", [
            Action("chmod_tree", site, {"dir_mode": DIR_PERMS, "file_mode": FILE_PERMS}),
        ]),
        Step(f"Securing {WP_CONFIG}", [
            Action("chgrp", wp_config, {"group": ws}),
            Action("chmod", wp_config, {"mode": WP_CONFIG_PERMS}),
        ]),
        Step(f"Setting {WP_CONTENT} permissions", [
            Action("chgrp_tree", wp_content, {"group": ws}),
            Action("chmod_tree", wp_content, {"dir_mode": WP_CONTENT_DIR_PERMS, "file_mode": WP_CONTENT_FILE_PERMS}),
            Action("setgid_dirs", wp_content),
        ]),
    ]

    xmlrpc = site / "xmlrpc.php"
    if xmlrpc.is_file():
        steps.append(Step("Disabling XML-RPC", [Action("chmod", xmlrpc, {"mode": LOCKED_PERMS})]))

    wp_includes = site / "wp-includes"
    if wp_includes.is_dir():
        steps.append(Step("Securing wp-includes", [Action("chmod", wp_includes, {"mode": WP_INCLUDES_PERMS})]))

    debug_log = wp_content / "debug.log"
    if debug_log.is_file():
        steps.append(Step("Securing debug.log", [Action("chmod", debug_log, {"mode": LOCKED_PERMS})]))

    uploads = wp_content / "uploads"
    if uploads.is_dir():
        marker = uploads / ".htaccess"
        actions = []
        if not marker.exists():
            actions.append(Action("write_file", marker, {"content": NO_INDEXES_DIRECTIVE}))
        # mode and group are reasserted on every run; the wp-content pass above resets them
        actions.append(Action("chmod", marker, {"mode": HTACCESS_PERMS}))
        actions.append(Action("chgrp", marker, {"group": ws}))
        steps.append(Step("Disabling directory listings", actions))

    present = [site / name for name in EXAMPLE_FILES if (site / name).exists()]
    if present:
        steps.append(Step("Removing example config files", [Action("remove", p) for p in present]))

    htaccess = site / ".htaccess"
    if htaccess.is_file():
        steps.append(Step("Securing .htaccess", [
            Action("chmod", htaccess, {"mode": HTACCESS_PERMS}),
            Action("chgrp", htaccess, {"group": ws}),
        ]))
    return steps


# ------------------------------ Backup & restore -----------------------------

def perms_file(base: Path) -> Path:
    return Path(f"{base}.perms")


def acl_file(base: Path) -> Path:
    return Path(f"{base}.acl")


def backup_permissions(site: Path, config: Config) -> Optional[Path]:
    created = int(time.time())
    base = config.backup_dir / f"{site.name}-{created}"
    # sites sharing a directory name (public_html) may be backed up within the same second
    while perms_file(base).exists() or acl_file(base).exists():
        created += 1
        base = config.backup_dir / f"{site.name}-{created}"
    ok = run_step(Step("Backing up permissions", [
        Action("snapshot_perms", site, {"dest": perms_file(base), "created": created}),
    ], best_effort=True), config)
    if command_exists("getfacl"):
        run_step(Step("Backing up ACLs", [
            Action("snapshot_acl", site, {"dest": acl_file(base)}),
        ], best_effort=True), config)
    if not config.dry_run and ok:
        print(f"    Backup saved to: {base}.{{perms,acl}}")
    return base if ok else None


def find_backup(name: str, config: Config) -> Optional[Path]:
    """Resolve a backup base name to an existing snapshot.

    ``<site>-latest`` picks the newest ``<site>-<timestamp>.perms`` in the
    same directory; no alias file is ever written. Relative names are looked
    up in the backup directory.
    """
    base = Path(name)
    if not base.is_absolute():
        base = config.backup_dir / base
    if base.name.endswith(".perms"):
        base = base.with_name(base.name[: -len(".perms")])

    if base.name.endswith(LATEST_SUFFIX):
        stem = base.name[: -len(LATEST_SUFFIX)]
        pattern = re.compile(re.escape(stem) + r"-(\d+)\.perms$")
        candidates: List[Tuple[int, Path]] = []
        try:
            for p in base.parent.iterdir():
                m = pattern.match(p.name)
                if m and p.is_file():
                    candidates.append((int(m.group(1)), p))
        except OSError:
            return None
        if not candidates:
            return None
        newest = max(candidates)[1]
        sites = {backup_site(p) for _, p in candidates} - {None}
        if len(sites) > 1:
            LOGGER.warning(
                "%s matches backups of %d different sites; using %s (site %s)",
                name, len(sites), newest, backup_site(newest),
            )
        return newest.with_name(newest.name[: -len(".perms")])

    return base if perms_file(base).is_file() else None


def backup_site(path: Path) -> Optional[str]:
    try:
        with path.open("r", encoding="utf-8") as f:
            header = json.loads(f.readline() or "null")
    except (OSError, ValueError):
        return None
    if isinstance(header, dict) and "site" in header:
        return str(header["site"])
    return None


def read_backup(path: Path) -> Tuple[Dict[str, object], List[PermEntry]]:
    entries: List[PermEntry] = []
    bad = 0
    with path.open("r", encoding="utf-8") as f:
        header = json.loads(f.readline() or "null")
        if not isinstance(header, dict) or "site" not in header:
            raise ValueError(f"missing site header in {path}")
        for line in f:
            if not line.strip():
                continue
            try:
                entries.append(PermEntry.from_dict(json.loads(line)))
            except (ValueError, KeyError, TypeError):
                bad += 1
    if bad:
        LOGGER.warning("Ignored %d malformed line(s) in %s", bad, path)
    return header, entries


def restore_permissions(base: Path, config: Config) -> int:
    try:
        header, entries = read_backup(perms_file(base))
    except (OSError, ValueError) as e:
        LOGGER.error("Could not read backup %s: %s", perms_file(base), e)
        return 1

    site = Path(str(header["site"]))
    if not site.is_dir():
        LOGGER.error("Could not find site to restore for backup: %s", base)
        return 1

    LOGGER.info("Restoring permissions for %s", site)
    run_step(Step("Restoring permissions", [
        Action("restore_perms", site, {"entries": entries, "source": perms_file(base)}),
    ], best_effort=True), config)

    acl = acl_file(base)
    if acl.is_file() and command_exists("setfacl"):
        run_step(Step("Restoring ACLs", [Action("restore_acl", acl)], best_effort=True), config)

    LOGGER.info("Permissions restored for %s", site)
    return 0


def run_restore(config: Config) -> int:
    base = find_backup(str(config.restore), config)
    if base is None:
        LOGGER.error("No backup found for %s", config.restore)
        return 1
    return restore_permissions(base, config)


# ------------------------------- Site pipeline -------------------------------

def process_site(site: Path, config: Config) -> bool:
    LOGGER.info("Processing site: %s", site)
    print(f"    Current ownership: {current_ownership(site)}")

    reason = validate_site(site, config)
    if reason:
        LOGGER.error(reason)
        return False

    if is_multisite(site):
        LOGGER.info("Multisite detected")

    if config.backup:
        backup_permissions(site, config)

    print("  Applying security hardening...")
    failed: List[str] = []
    for step in plan_hardening(site, config):
        if not run_step(step, config):
            failed.append(step.label)

    print(f"    New ownership: {current_ownership(site)}")
    if not config.dry_run:
        try:
            mode = stat.S_IMODE((site / WP_CONFIG).stat().st_mode)
        except OSError:
            mode = None
        if mode != WP_CONFIG_PERMS:
            LOGGER.warning("%s permissions may not be set correctly", WP_CONFIG)

    if failed:
        LOGGER.error("Hardening incomplete for %s: %s", site, ", ".join(failed))
        return False
    LOGGER.info("Completed: %s", site)
    print()
    return True


def collect_targets(config: Config) -> List[Path]:
    if config.all_sites:
        LOGGER.info("Discovering all WordPress sites...")
        sites = discover_sites(config)
        if not sites:
            LOGGER.error("No WordPress sites found in base paths")
            return []
        LOGGER.info("Found %d site(s)", len(sites))
        return sites
    target = resolve_target(str(config.target), config)
    if target is None:
        LOGGER.error("No valid targets found")
        return []
    return [target]


def report_summary(summary: RunSummary, config: Config) -> None:
    print()
    print("=" * 65)
    LOGGER.info("Processing complete")
    print(f"  Successful: {len(summary.succeeded)}")
    print(f"  Failed:     {len(summary.failed)}")
    print(f"  Log file:   {config.log_file}")
    if config.backup and not config.dry_run:
        print(f"  Backups:    {config.backup_dir}")
        print(f"  To restore: {PROG} --restore={config.backup_dir}/<site>{LATEST_SUFFIX}")


# --------------------------------- CLI engine --------------------------------
class UsageArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


class HelpFormatter(argparse.ArgumentDefaultsHelpFormatter, argparse.RawDescriptionHelpFormatter):
    pass


def build_arg_parser() -> argparse.ArgumentParser:
    p = UsageArgumentParser(
        prog=PROG,
        description="Apply safe ownership and permissions to WordPress installations.",
        formatter_class=HelpFormatter,
        epilog=(
            "examples:\n"
            "  %(prog)s example.com\n"
            "  %(prog)s --dry-run /var/www/example.com\n"
            "  %(prog)s --all-sites --verbose\n"
            "  %(prog)s --owner=webadmin --group=webgroup example.com\n"
            f"  %(prog)s --restore={DEFAULT_BACKUP_DIR}/example.com-latest\n\n"
            f"base paths searched: {' '.join(DEFAULT_BASE_PATHS)}"
        ),
    )
    p.add_argument("target", nargs="?", default=None, help="Site domain (looked up in base paths) or absolute path")

    scope = p.add_argument_group("Scope & discovery")
    scope.add_argument("--all-sites", action="store_true", help="Run on all WordPress sites found in base paths")
    scope.add_argument("--base-path", action="append", default=[], help="Add a base path for site lookup (repeatable)")

    act = p.add_argument_group("Actions & safety")
    act.add_argument("--dry-run", action="store_true", help="Show what would be done without making changes")
    act.add_argument("--no-backup", dest="backup", action="store_false", help="Skip permission backup (not recommended)")
    act.add_argument("--owner", default=DEFAULT_OWNER, help="File owner")
    act.add_argument("--group", default=DEFAULT_OWNER, help="File group")
    act.add_argument("--ws-group", default=DEFAULT_OWNER, help="Web server group")

    rest = p.add_argument_group("Backup & restore")
    rest.add_argument("--restore", default=None, help="Restore permissions from a backup base name (e.g. <site>-latest)")
    rest.add_argument("--backup-dir", default=DEFAULT_BACKUP_DIR, help="Directory holding .perms/.acl snapshots")

    out = p.add_argument_group("Output & logging")
    out.add_argument("--verbose", action="store_true", help="Show detailed output (disables the spinner)")
    out.add_argument("--log-file", default=DEFAULT_LOG_FILE, help="Log file (JSON lines, appended)")

    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def resolve_config(argv: Optional[Sequence[str]] = None) -> Config:
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    modes = [args.target is not None, args.all_sites, args.restore is not None]
    if sum(modes) > 1:
        parser.error("specify only one of SITE, --all-sites or --restore")
    if not any(modes):
        parser.error("Either specify a site or use --all-sites")

    base_paths = [Path(os.path.abspath(b)) for b in (*DEFAULT_BASE_PATHS, *args.base_path)]
    return Config(
        owner=args.owner,
        group=args.group,
        ws_group=args.ws_group,
        base_paths=tuple(base_paths),
        dry_run=args.dry_run,
        backup=args.backup,
        verbose=args.verbose,
        restore=args.restore,
        target=args.target,
        all_sites=args.all_sites,
        log_file=Path(args.log_file),
        backup_dir=Path(args.backup_dir),
    )


class JsonLineFileHandler(logging.FileHandler):
    def emit(self, record: logging.LogRecord) -> None:
        log_entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        self.stream.write(json.dumps(log_entry) + "\n")
        self.flush()


def prepare_logging(config: Config) -> None:
    LOGGER.setLevel(logging.DEBUG)
    for handler in list(LOGGER.handlers):
        LOGGER.removeHandler(handler)
        handler.close()

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(logging.DEBUG if config.verbose else logging.INFO)
    ch.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
    LOGGER.addHandler(ch)
    try:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = JsonLineFileHandler(config.log_file)
        fh.setLevel(logging.DEBUG)
        LOGGER.addHandler(fh)
    except OSError as e:
        LOGGER.warning("Could not open log file %s: %s", config.log_file, e)


# ----------------------------------- Main ------------------------------------

def main(argv: Optional[Sequence[str]] = None) -> int:
    config = resolve_config(argv)
    prepare_logging(config)

    if not config.dry_run and not is_root():
        LOGGER.error("This script must be run as root for permission changes")
        return 1

    LOGGER.info("Starting WordPress permissions tool")
    LOGGER.info("Options: dry_run=%s, all_sites=%s, backup=%s", config.dry_run, config.all_sites, config.backup)

    if config.restore is not None:
        return run_restore(config)

    targets = collect_targets(config)
    if not targets:
        return 1

    summary = RunSummary()
    for site in targets:
        print()
        print("=" * 65)
        summary.record(site, process_site(site, config))

    report_summary(summary, config)
    if summary.failed:
        return 1
    LOGGER.info("All tasks completed successfully")
    return 0


def main_entry() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        sys.exit(130)


if __name__ == "__main__":
    main_entry()
