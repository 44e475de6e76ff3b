"""Idempotent file patchers with timestamped backups.

Every patcher follows the same cycle:

1. Read the file (absent is fine; unreadable raises ``PermissionDenied``).
2. Compute the desired content. If it equals the current content, return
   ``changed=False`` without touching the disk or taking a backup.
3. Copy the original to ``<path>.bak.<UTC YYYYmmddTHHMMSSZ>``.
4. Write the new content to a temp file in the same directory and
   ``os.replace`` it over the original, preserving mode and ownership.
5. Re-read and verify; ``PredicateUnmet`` if the result still fails.

Lines the patcher does not own are carried over byte-for-byte, including
comments, blank lines, and trailing whitespace.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from twgcb import parsing
from twgcb.errors import PatchError, PermissionDenied, PredicateUnmet

if TYPE_CHECKING:
    from twgcb.local import LocalSession
    from twgcb.targets import ConfigTarget

logger = logging.getLogger(__name__)

HEADER = "# Managed by twgcb-hardening"
BACKUP_TIMESTAMP = "%Y%m%dT%H%M%SZ"


# ── Value objects ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Backup:
    """A pre-write copy of a file."""

    original: str
    backup_path: str
    created_at: datetime


@dataclass
class PatchResult:
    """Outcome of one patcher call."""

    path: str
    changed: bool
    detail: str = ""
    backup: Backup | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Backups ────────────────────────────────────────────────────────────────


def backup_file(session: LocalSession, path: str) -> Backup | None:
    """Copy ``path`` to a timestamped sibling. Returns None if it does not exist.

    Two backups within the same second get ``.1``, ``.2``... suffixes so an
    earlier copy is never overwritten.
    """
    real = session.path(path)
    src = _resolve(session, path)
    if not src.exists():
        return None
    now = _utcnow()
    base = f"{real}.bak.{now.strftime(BACKUP_TIMESTAMP)}"
    dest = base
    n = 0
    while os.path.exists(dest):
        n += 1
        dest = f"{base}.{n}"
    try:
        shutil.copy2(src, dest)
    except PermissionError as e:
        raise PermissionDenied(path, "backing up") from e
    except OSError as e:
        raise PatchError(f"cannot back up {path}: {e.strerror}") from e
    logger.debug("backup %s -> %s", real, dest)
    return Backup(original=path, backup_path=dest, created_at=now)


def list_backups(session: LocalSession, path: str) -> list[Path]:
    """Existing backups of ``path``, oldest first."""
    real = session.path(path)
    if not real.parent.is_dir():
        return []
    return sorted(real.parent.glob(f"{real.name}.bak.*"))


def prune_backups(session: LocalSession, path: str, keep: int) -> list[Path]:
    """Delete all but the newest ``keep`` backups of ``path``.

    Args:
        session: Session whose root the path is resolved under.
        path: The original file path (not a backup path).
        keep: Number of most recent backups to retain. Negative is invalid.

    Returns:
        The backup paths that were removed.

    """
    if keep < 0:
        raise ValueError("keep must be >= 0")
    backups = list_backups(session, path)
    doomed = backups[: max(len(backups) - keep, 0)]
    for p in doomed:
        try:
            p.unlink()
        except PermissionError as e:
            raise PermissionDenied(str(p), "removing") from e
        except OSError as e:
            raise PatchError(f"cannot prune backup {p}: {e.strerror}") from e
        logger.debug("pruned backup %s", p)
    return doomed


# ── Low-level read/write ───────────────────────────────────────────────────


def _resolve(session: LocalSession, path: str) -> Path:
    """Follow symlinks (e.g. /etc/pam.d/system-auth) staying under the session root."""
    real = session.path(path)
    for _ in range(8):
        if not real.is_symlink():
            break
        link = os.readlink(real)
        real = session.path(link) if os.path.isabs(link) else real.parent / link
    return real


def _read_raw(session: LocalSession, path: str) -> list[str] | None:
    """Lines with their line endings, or None if the file does not exist."""
    real = _resolve(session, path)
    try:
        with open(real, encoding="utf-8", errors="surrogateescape", newline="") as f:
            return f.readlines()
    except FileNotFoundError:
        return None
    except PermissionError as e:
        raise PermissionDenied(path, "reading") from e
    except OSError as e:
        raise PatchError(f"cannot read {path}: {e.strerror}") from e


def _atomic_write(session: LocalSession, path: str, text: str, mode: int | None = None) -> None:
    real = _resolve(session, path)
    try:
        real.parent.mkdir(parents=True, exist_ok=True)
        existing = real.stat() if real.exists() else None
        fd, tmp = tempfile.mkstemp(dir=real.parent, prefix=f".{real.name}.")
    except PermissionError as e:
        raise PermissionDenied(path, "writing") from e
    except OSError as e:
        raise PatchError(f"cannot write {path}: {e.strerror}") from e
    try:
        with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
            f.write(text)
        if mode is not None:
            os.chmod(tmp, mode)
        elif existing is not None:
            os.chmod(tmp, existing.st_mode & 0o7777)
        else:
            os.chmod(tmp, 0o644)
        if existing is not None and os.geteuid() == 0:
            os.chown(tmp, existing.st_uid, existing.st_gid)
        os.replace(tmp, real)
    except PermissionError as e:
        _discard(tmp)
        raise PermissionDenied(path, "writing") from e
    except OSError as e:
        _discard(tmp)
        raise PatchError(f"cannot write {path}: {e.strerror}") from e
    logger.debug("wrote %s", real)


def _discard(tmp: str) -> None:
    if os.path.exists(tmp):
        os.unlink(tmp)


def _strip(lines: list[str]) -> list[str]:
    return [line.rstrip("\r\n") for line in lines]


def _ensure_newline(lines: list[str]) -> list[str]:
    if lines and not lines[-1].endswith("\n"):
        return [*lines[:-1], lines[-1] + "\n"]
    return lines


def _commit(
    session: LocalSession,
    path: str,
    old: list[str] | None,
    new: list[str],
    *,
    mode: int | None = None,
    verify: Callable[[list[str]], bool] | None = None,
    detail: str = "",
) -> PatchResult:
    if old is not None and old == new:
        return PatchResult(path, changed=False, detail="no change needed")
    backup = backup_file(session, path) if old is not None else None
    _atomic_write(session, path, "".join(new), mode=mode)
    if verify is not None:
        after = _read_raw(session, path) or []
        if not verify(_strip(after)):
            raise PredicateUnmet(f"{path}: still non-compliant after write")
    return PatchResult(path, changed=True, detail=detail or f"updated {path}", backup=backup)


# ── Patchers ───────────────────────────────────────────────────────────────


def ensure_lines(
    session: LocalSession,
    path: str,
    lines: list[str],
    *,
    flags: bool = False,
    mode: int | None = None,
) -> PatchResult:
    """Append each required line that has no active equivalent.

    Args:
        session: Local session.
        path: Target file; created with a header if absent.
        lines: Required lines.
        flags: Compare as flag sets (audit rules) instead of whitespace-
            normalized text.
        mode: Permission bits for a newly created file.

    """
    old = _read_raw(session, path)
    current = _strip(old or [])

    def matcher(want: str) -> parsing.Matcher:
        return parsing.contains_flags(want) if flags else parsing.exact_line(want)

    missing = [want for want in lines if not parsing.scan(current, matcher(want))]
    if not missing:
        return PatchResult(path, changed=False, detail="all lines present")
    new = [f"{HEADER}\n"] if old is None else _ensure_newline(list(old))
    new += [f"{want}\n" for want in missing]

    def verify(after: list[str]) -> bool:
        return all(parsing.scan(after, matcher(want)) for want in lines)

    return _commit(session, path, old, new, mode=mode, verify=verify, detail=f"added {len(missing)} line(s) to {path}")


def remove_matching_lines(session: LocalSession, path: str, patterns: list[str]) -> PatchResult:
    """Delete active lines matching any regex in ``patterns``. Comments are kept."""
    old = _read_raw(session, path)
    if old is None:
        return PatchResult(path, changed=False, detail=f"{path} absent")
    doomed = parsing.all_of(parsing.active, parsing.any_of(*(parsing.regex(p) for p in patterns)))
    new = [line for line in old if not doomed(line.rstrip("\r\n"))]
    removed = len(old) - len(new)

    def verify(after: list[str]) -> bool:
        return not parsing.scan(after, doomed)

    return _commit(session, path, old, new, verify=verify, detail=f"removed {removed} line(s) from {path}")


def _assignment_like(line: str, key: str, value: str, separator: str | None) -> str:
    """Rewrite an assignment keeping the original indentation and separator style."""
    m = re.match(rf"^(\s*){re.escape(key)}(\s*=\s*|\s+)", line)
    indent = m.group(1) if m else ""
    sep = separator if separator is not None else (m.group(2) if m else " ")
    return f"{indent}{key}{sep}{value}"


def set_key_value(session: LocalSession, target: ConfigTarget, *, mode: int | None = None) -> PatchResult:
    """Converge a ``key value`` assignment to satisfy ``target``.

    Active lines for the key whose value fails the comparator are rewritten
    in place; compliant ones (including stricter values) are left alone. If
    the key has no active line, it is appended. Commented lines are never
    modified.
    """
    old = _read_raw(session, target.path)
    value = target.write_value()
    if old is None:
        line = _assignment_like("", target.key, value, target.separator)
        new = [f"{HEADER}\n", f"{line}\n"]
    else:
        new = []
        seen = False
        for raw in old:
            text = raw.rstrip("\r\n")
            current = parsing.parse_value(text, target.key, target.separator)
            if current is None:
                new.append(raw)
                continue
            seen = True
            if target.accepts(current):
                new.append(raw)
            else:
                ending = raw[len(text) :] or "\n"
                new.append(_assignment_like(text, target.key, value, target.separator) + ending)
        if not seen:
            new = _ensure_newline(new)
            new.append(_assignment_like("", target.key, value, target.separator) + "\n")

    def verify(after: list[str]) -> bool:
        return target.evaluate(after)[0]

    return _commit(
        session, target.path, old, new, mode=mode, verify=verify, detail=f"set {target.key} {value} in {target.path}"
    )


def _edit_column(line: str, column: int, fn: Callable[[str], str]) -> str:
    """Apply ``fn`` to whitespace column ``column`` keeping the other bytes."""
    parts = re.split(r"(\s+)", line)
    # even indexes are fields, odd are separators; a leading separator yields ""
    fields = [i for i in range(0, len(parts), 2) if parts[i] != ""]
    if column >= len(fields):
        raise PatchError(f"line has no column {column}: {line.strip()}")
    idx = fields[column]
    parts[idx] = fn(parts[idx])
    return "".join(parts)


def _edit_assignment(line: str, key: str, fn: Callable[[str], str]) -> str:
    m = re.match(rf"^(\s*{re.escape(key)}\s*=\s*)(\"?)(.*?)(\2)(\s*)$", line)
    if m is None:
        raise PatchError(f"cannot parse assignment of {key}: {line.strip()}")
    return f"{m.group(1)}{m.group(2)}{fn(m.group(3))}{m.group(4)}{m.group(5)}"


def ensure_tokens(
    session: LocalSession,
    path: str,
    select: parsing.Matcher,
    tokens: list[str],
    *,
    column: int | None = None,
    key: str | None = None,
    sep: str = ",",
    keyed: bool = False,
    fallback_line: str | None = None,
) -> PatchResult:
    """Merge ``tokens`` into a multi-value field of every selected line.

    The field is either whitespace column ``column`` (fstab options), the
    value of ``key=...`` (``GRUB_CMDLINE_LINUX="..."``, ``Options=``), or, when
    neither is given, the tail of the line (PAM module arguments). Existing
    tokens are kept in order and never duplicated.

    Args:
        session: Local session.
        path: Target file.
        select: Matcher choosing which active lines to edit.
        tokens: Tokens that must be present.
        column: Whitespace column holding the list.
        key: Assignment key holding the list.
        sep: Token separator ("," or " ").
        keyed: Replace ``name=value`` tokens of the same name in place.
        fallback_line: Appended when no line is selected; without it a
            missing line raises PatchError.

    """
    old = _read_raw(session, path)
    chosen = parsing.all_of(parsing.active, select)

    def merge(value: str) -> str:
        return parsing.merge_tokens(value, tokens, sep, keyed=keyed)

    new = []
    hits = 0
    for raw in old or []:
        text = raw.rstrip("\r\n")
        if not chosen(text):
            new.append(raw)
            continue
        hits += 1
        ending = raw[len(text) :]
        if column is not None:
            edited = _edit_column(text, column, merge)
        elif key is not None:
            edited = _edit_assignment(text, key, merge)
        else:
            edited = text.rstrip()
            for tok in tokens:
                if tok in edited.split():
                    continue
                if keyed and "=" in tok:
                    name = parsing.token_key(tok)
                    replaced = re.sub(rf"(?<=\s){re.escape(name)}=\S*", tok, edited, count=1)
                    if replaced != edited:
                        edited = replaced
                        continue
                edited = f"{edited} {tok}"
        new.append(edited + ending)

    if hits == 0:
        if fallback_line is None:
            raise PatchError(f"no matching line to update in {path}")
        new = [f"{HEADER}\n"] if old is None else _ensure_newline(new)
        new.append(fallback_line + "\n")

    return _commit(session, path, old, new, detail=f"ensured {', '.join(tokens)} in {path}")


def write_block(
    session: LocalSession,
    path: str,
    lines: list[str],
    *,
    marker: str = "twgcb",
    mode: int | None = None,
) -> PatchResult:
    """Own a ``# BEGIN marker`` / ``# END marker`` block inside a shared file.

    Replaces the block body if the markers exist, appends the block
    otherwise. Text outside the markers is not touched.
    """
    begin, end = f"# BEGIN {marker}", f"# END {marker}"
    old = _read_raw(session, path)
    body = [f"{begin}\n", *(f"{line}\n" for line in lines), f"{end}\n"]
    current = list(old or [])
    stripped = _strip(current)
    if begin in stripped and end in stripped[stripped.index(begin) :]:
        start = stripped.index(begin)
        stop = stripped.index(end, start)
        new = current[:start] + body + current[stop + 1 :]
    else:
        new = _ensure_newline(current) + body

    def verify(after: list[str]) -> bool:
        return begin in after and all(line in after for line in lines)

    return _commit(session, path, old, new, mode=mode, verify=verify, detail=f"wrote {marker} block in {path}")


def write_file(session: LocalSession, path: str, content: str, *, mode: int | None = None) -> PatchResult:
    """Replace a whole file (drop-ins the engine owns outright)."""
    if content and not content.endswith("\n"):
        content += "\n"
    old = _read_raw(session, path)
    new = content.splitlines(keepends=True)
    result = _commit(session, path, old, new, mode=mode, detail=f"wrote {path}")
    if not result.changed and mode is not None and (session.path(path).stat().st_mode & 0o7777) != mode:
        try:
            os.chmod(session.path(path), mode)
        except PermissionError as e:
            raise PermissionDenied(path, "changing permissions of") from e
        except OSError as e:
            raise PatchError(f"cannot chmod {path}: {e.strerror}") from e
        result = PatchResult(path, changed=True, detail=f"set mode {mode:04o} on {path}")
    return result


def set_permissions(
    session: LocalSession,
    path: str,
    *,
    mode: int | None = None,
    owner: str | None = None,
    group: str | None = None,
    stricter_ok: bool = True,
) -> PatchResult:
    """Converge owner, group and mode. Metadata changes take no backup.

    With ``stricter_ok`` a mode is only reduced, never widened: existing
    bits outside ``mode`` are cleared, bits inside it are left as they are.
    """
    real = session.path(path)
    try:
        st = real.stat()
    except FileNotFoundError as e:
        raise PatchError(f"{path} does not exist") from e
    except PermissionError as e:
        raise PermissionDenied(path, "reading") from e
    changes = []
    try:
        if mode is not None:
            current = st.st_mode & 0o7777
            wanted = current & mode if stricter_ok else mode
            if current != wanted:
                os.chmod(real, wanted)
                changes.append(f"mode {current:04o} -> {wanted:04o}")
        if owner or group:
            shutil.chown(real, user=owner or None, group=group or None)
            after = real.stat()
            if (after.st_uid, after.st_gid) != (st.st_uid, st.st_gid):
                changes.append(f"owner {owner or ''}:{group or ''}")
    except PermissionError as e:
        raise PermissionDenied(path, "changing permissions of") from e
    except LookupError as e:
        raise PatchError(f"{path}: {e}") from e
    except OSError as e:
        raise PatchError(f"cannot change permissions of {path}: {e.strerror}") from e
    if not changes:
        return PatchResult(path, changed=False, detail="no change needed")
    return PatchResult(path, changed=True, detail=f"{path}: {', '.join(changes)}")


def remove_file(session: LocalSession, path: str) -> PatchResult:
    """Delete a file after backing it up. A missing file is already converged."""
    real = session.path(path)
    if not real.exists() and not real.is_symlink():
        return PatchResult(path, changed=False, detail=f"{path} already absent")
    backup = backup_file(session, path)
    try:
        real.unlink()
    except PermissionError as e:
        raise PermissionDenied(path, "removing") from e
    except OSError as e:
        raise PatchError(f"cannot remove {path}: {e.strerror}") from e
    return PatchResult(path, changed=True, detail=f"removed {path}", backup=backup)
