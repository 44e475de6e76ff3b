"""Fact collectors: typed views of system state.

Each collector answers one question about the host and keeps "absent"
apart from "unreadable". File facts are read directly from the session
root; runtime facts (modules, units, sysctl, audit status) come from the
host's tools through ``LocalSession.run``.
"""

from __future__ import annotations

import grp
import logging
import os
import pwd
import stat
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from twgcb import parsing, shell_util
from twgcb.errors import PermissionDenied

if TYPE_CHECKING:
    from twgcb.local import LocalSession

logger = logging.getLogger(__name__)


class FileStatus(str, Enum):
    PRESENT = "present"
    MISSING = "missing"
    PERMISSION_DENIED = "permission_denied"


@dataclass
class ConfigLines:
    """Lines of a config file plus how the read went."""

    path: str
    lines: list[str] = field(default_factory=list)
    status: FileStatus = FileStatus.PRESENT

    @property
    def present(self) -> bool:
        return self.status is FileStatus.PRESENT


@dataclass
class MountEntry:
    """One row of /proc/self/mounts or /etc/fstab."""

    target: str
    source: str
    fstype: str
    options: list[str]
    line_no: int | None = None


@dataclass
class UnitState:
    """systemd unit state as reported by ``systemctl is-enabled/is-active``."""

    exists: bool
    enabled: bool
    active: bool
    raw_enabled: str = ""
    raw_active: str = ""

    @property
    def masked(self) -> bool:
        return self.raw_enabled.startswith("masked")


@dataclass
class FileStat:
    path: str
    status: FileStatus
    owner: str = ""
    group: str = ""
    mode: int = 0
    is_dir: bool = False


# ── Files ──────────────────────────────────────────────────────────────────


def read_config_lines(session: LocalSession, path: str) -> ConfigLines:
    """Read a config file as lines without trailing newlines.

    Args:
        session: Session whose root the path is resolved under.
        path: Absolute path as written in the rule.

    Returns:
        ConfigLines with status PRESENT, MISSING or PERMISSION_DENIED.

    """
    real = session.path(path)
    try:
        text = real.read_text(errors="replace")
    except FileNotFoundError:
        return ConfigLines(path, status=FileStatus.MISSING)
    except PermissionError:
        logger.debug("permission denied reading %s", real)
        return ConfigLines(path, status=FileStatus.PERMISSION_DENIED)
    except NotADirectoryError:
        return ConfigLines(path, status=FileStatus.MISSING)
    return ConfigLines(path, text.splitlines())


def expand_paths(session: LocalSession, path: str) -> list[str]:
    """Expand a glob under the session root into rule-style absolute paths.

    A path without glob characters is returned as-is, whether or not it
    exists, so callers still see it as MISSING.
    """
    if not shell_util.is_glob_path(path):
        return [path]
    root = session.path("/")
    matches = sorted(root.glob(path.lstrip("/")))
    return ["/" + str(m.relative_to(root)) for m in matches]


def file_stat(session: LocalSession, path: str) -> FileStat:
    """Owner, group and permission bits of a path.

    Owner and group are resolved to names; unknown ids are reported as
    the numeric id.
    """
    real = session.path(path)
    try:
        st = real.stat()
    except FileNotFoundError:
        return FileStat(path, FileStatus.MISSING)
    except PermissionError:
        return FileStat(path, FileStatus.PERMISSION_DENIED)
    return FileStat(
        path,
        FileStatus.PRESENT,
        owner=_user_name(st.st_uid),
        group=_group_name(st.st_gid),
        mode=stat.S_IMODE(st.st_mode),
        is_dir=stat.S_ISDIR(st.st_mode),
    )


def _user_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


# ── Kernel modules ─────────────────────────────────────────────────────────


def module_loaded(session: LocalSession, name: str) -> bool:
    """Return True if the kernel module is currently loaded.

    Reads /proc/modules; falls back to ``lsmod`` when that is unavailable
    (e.g. evaluating under an alternate root).
    """
    wanted = name.replace("-", "_")
    proc = read_config_lines(session, "/proc/modules")
    if proc.present:
        return any(line.split(" ", 1)[0] == wanted for line in proc.lines)
    result = session.run("lsmod")
    if not result.ok:
        return False
    return any(line.split()[0] == wanted for line in result.stdout.splitlines()[1:] if line.strip())


def modprobe_disabled(session: LocalSession, name: str) -> tuple[bool, str]:
    """Return ``(disabled, modprobe_output)`` for a module.

    A module counts as disabled when ``modprobe -n -v`` resolves it to
    ``install /bin/true`` or ``/bin/false``, or the output reports it as
    blacklisted.
    """
    result = session.run(f"modprobe -n -v {shell_util.quote(name)} 2>&1")
    out = result.stdout.strip()
    disabled = any(marker in out for marker in ("install /bin/true", "install /bin/false", "blacklist"))
    return disabled, out


# ── Mounts ─────────────────────────────────────────────────────────────────


def _parse_mount_lines(lines: list[str], numbered: bool = False) -> list[MountEntry]:
    entries = []
    for i, line in enumerate(lines, 1):
        if not parsing.active(line):
            continue
        cols = line.split()
        if len(cols) < 4:
            continue
        entries.append(
            MountEntry(
                target=cols[1],
                source=cols[0],
                fstype=cols[2],
                options=parsing.split_tokens(cols[3]),
                line_no=i if numbered else None,
            )
        )
    return entries


def current_mounts(session: LocalSession) -> list[MountEntry]:
    proc = read_config_lines(session, "/proc/self/mounts")
    if proc.present:
        return _parse_mount_lines(proc.lines)
    result = session.run("findmnt -rn -o SOURCE,TARGET,FSTYPE,OPTIONS")
    if not result.ok:
        return []
    return _parse_mount_lines(result.stdout.splitlines())


def mounts_of_type(session: LocalSession, fstype: str) -> list[MountEntry]:
    return [m for m in current_mounts(session) if m.fstype == fstype]


def mount_for_target(session: LocalSession, target: str) -> MountEntry | None:
    """Return the last mount stacked on ``target``, or None if not mounted."""
    found = [m for m in current_mounts(session) if m.target == target]
    return found[-1] if found else None


def fstab_entries(session: LocalSession) -> list[MountEntry]:
    """Active /etc/fstab entries with their line numbers."""
    fstab = read_config_lines(session, "/etc/fstab")
    return _parse_mount_lines(fstab.lines, numbered=True)


# ── Services and packages ──────────────────────────────────────────────────


def unit_state(session: LocalSession, name: str) -> UnitState:
    """Query a systemd unit.

    ``is-enabled`` prints "not-found" (or fails with "No such file") for
    units that do not exist; any other output is taken as the unit's state.
    """
    unit = shell_util.quote(name)
    enabled = session.run(f"systemctl is-enabled {unit} 2>&1")
    active = session.run(f"systemctl is-active {unit} 2>&1")
    raw_enabled = enabled.stdout.strip().splitlines()[-1] if enabled.stdout.strip() else ""
    raw_active = active.stdout.strip().splitlines()[-1] if active.stdout.strip() else ""
    exists = raw_enabled not in ("", "not-found") and "No such file" not in enabled.stdout
    return UnitState(
        exists=exists,
        enabled=raw_enabled in ("enabled", "enabled-runtime", "static", "alias", "indirect", "generated"),
        active=raw_active == "active",
        raw_enabled=raw_enabled,
        raw_active=raw_active,
    )


def package_installed(session: LocalSession, name: str) -> bool:
    return session.run(f"rpm -q {shell_util.quote(name)} >/dev/null 2>&1").ok


def sysctl_value(session: LocalSession, key: str) -> str | None:
    """Runtime value of a sysctl key with whitespace normalized, or None."""
    result = session.run(f"sysctl -n {shell_util.quote(key)} 2>/dev/null")
    if not result.ok:
        return None
    return parsing.normalize_ws(result.stdout)


# ── Audit ──────────────────────────────────────────────────────────────────


@dataclass
class MatchedLine:
    path: str
    line_no: int
    content: str


def audit_rule_matches(session: LocalSession, path: str, rule: str) -> list[MatchedLine]:
    """Lines in an audit rules file (or directory of *.rules) equivalent to ``rule``.

    Matching is by flag set, so reordered flags, ``-S a -S b`` vs
    ``-S a,b``, ``-k k`` vs ``-F key=k``, ``always,exit`` vs
    ``exit,always`` and ``-p`` letter order all compare equal.
    """
    matcher = parsing.contains_flags(rule)
    real = session.path(path)
    if real.is_dir():
        if not os.access(real, os.R_OK | os.X_OK):
            raise PermissionDenied(path)
        files = sorted(real.glob("*.rules"))
        paths = [path.rstrip("/") + "/" + f.name for f in files]
    else:
        paths = [path]
    matches = []
    for p in paths:
        config = read_config_lines(session, p)
        if config.status is FileStatus.PERMISSION_DENIED:
            raise PermissionDenied(p)
        for n, line in parsing.scan(config.lines, matcher):
            matches.append(MatchedLine(p, n, line))
    return matches


def audit_enabled_state(session: LocalSession) -> int | None:
    """The ``enabled`` flag from ``auditctl -s`` (2 means immutable), or None."""
    result = session.run("auditctl -s 2>/dev/null")
    if not result.ok:
        return None
    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "enabled":
            try:
                return int(parts[1])
            except ValueError:
                return None
    return None


# ── Authentication ─────────────────────────────────────────────────────────


def authselect_current(session: LocalSession) -> tuple[str, list[str]] | None:
    """Selected authselect profile id and enabled features, or None without authselect."""
    result = session.run("authselect current --raw 2>/dev/null")
    if not result.ok or not result.stdout.strip():
        return None
    profile, *features = result.stdout.split()
    return profile, features


def authselect_profile(session: LocalSession) -> str | None:
    """Current authselect profile id (e.g. ``sssd``, ``custom/twgcb``) or None."""
    current = authselect_current(session)
    return current[0] if current else None
