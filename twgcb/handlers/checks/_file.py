"""File-related check handlers.

Handlers for verifying file properties: permissions, ownership,
existence, and line content.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from twgcb import facts
from twgcb._types import CheckResult, Evidence
from twgcb.facts import FileStatus
from twgcb.targets import ConfigTarget

if TYPE_CHECKING:
    from twgcb.local import LocalSession


def _paths(c: dict) -> list[str]:
    if "paths" in c:
        return list(c["paths"])
    return [c["path"]]


def _check_line_present(session: LocalSession, c: dict) -> CheckResult:
    """Check that every required line is present (active) in a file.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - path (str): File path.
            - lines (list[str]) or line (str): Required lines, compared
              with whitespace normalized.

    """
    target = ConfigTarget.from_check(c)
    return target.check(facts.read_config_lines(session, target.path))


def _check_line_absent(session: LocalSession, c: dict) -> CheckResult:
    """Check that no active line matches any of the given regexes.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - path (str): File path.
            - patterns (list[str]) or pattern (str): Forbidden regexes.

    """
    target = ConfigTarget.from_check(c)
    return target.check(facts.read_config_lines(session, target.path))


def _mode_ok(actual: int, limit: int) -> bool:
    """True when ``actual`` grants no bit outside ``limit`` (equal or stricter)."""
    return actual & ~limit == 0


def _check_file_permission(session: LocalSession, c: dict) -> CheckResult:
    """Check file ownership and permissions.

    ``mode`` is an upper bound: 0600 also accepts 0400 and 0000. Globs are
    expanded under the session root; a glob matching nothing fails unless
    ``missing_ok`` is set.

    Args:
        session: Local session.
        c: Check definition with fields:
            - path (str) or paths (list[str]): Files or glob patterns.
            - owner (str, optional): Expected owner.
            - group (str, optional): Expected group.
            - mode (str, optional): Maximum octal mode (e.g. "0640").
            - missing_ok (bool, optional): Missing files are compliant.

    Returns:
        CheckResult listing every offending file as evidence.

    """
    owner = c.get("owner")
    group = c.get("group")
    mode = int(str(c["mode"]), 8) if c.get("mode") is not None else None
    missing_ok = c.get("missing_ok", False)

    evidence: list[Evidence] = []
    failures = []
    denied = []
    checked = 0
    for pattern in _paths(c):
        paths = facts.expand_paths(session, pattern)
        if not paths and not missing_ok:
            failures.append(f"{pattern}: no match")
            evidence.append(Evidence.missing(pattern))
        for path in paths:
            st = facts.file_stat(session, path)
            if st.status is FileStatus.MISSING:
                if not missing_ok:
                    failures.append(f"{path}: not found")
                    evidence.append(Evidence.missing(path))
                continue
            if st.status is FileStatus.PERMISSION_DENIED:
                denied.append(path)
                evidence.append(Evidence.denied(path))
                continue
            checked += 1
            problems = []
            if owner and st.owner != owner:
                problems.append(f"owner={st.owner} (expected {owner})")
            if group and st.group != group:
                problems.append(f"group={st.group} (expected {group})")
            if mode is not None and not _mode_ok(st.mode, mode):
                problems.append(f"mode={st.mode:04o} (expected {mode:04o} or stricter)")
            summary = f"{st.owner}:{st.group} {st.mode:04o}"
            evidence.append(Evidence.info(summary, path))
            if problems:
                failures.append(f"{path}: {', '.join(problems)}")

    if denied:
        return CheckResult.indeterminate(f"permission denied: {', '.join(denied)}", evidence)
    if failures:
        return CheckResult.fail("; ".join(failures), evidence)
    return CheckResult.ok(f"{checked} path(s) have required ownership/permissions", evidence)


def _check_file_exists(session: LocalSession, c: dict) -> CheckResult:
    """Check that a file exists.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - path (str): File path to check.

    """
    path = c["path"]
    st = facts.file_stat(session, path)
    if st.status is FileStatus.PRESENT:
        return CheckResult.ok(f"{path} exists", [Evidence.info("exists", path)])
    if st.status is FileStatus.PERMISSION_DENIED:
        return CheckResult.indeterminate(f"permission denied: {path}", [Evidence.denied(path)])
    return CheckResult.fail(f"{path} does not exist", [Evidence.missing(path)])


def _check_file_not_exists(session: LocalSession, c: dict) -> CheckResult:
    """Check that a file does NOT exist.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - path (str): File path that should not exist.

    """
    path = c["path"]
    st = facts.file_stat(session, path)
    if st.status is FileStatus.MISSING:
        return CheckResult.ok(f"{path} does not exist (as required)", [Evidence.missing(path)])
    if st.status is FileStatus.PERMISSION_DENIED:
        return CheckResult.indeterminate(f"permission denied: {path}", [Evidence.denied(path)])
    return CheckResult.fail(f"{path} exists (should be absent)", [Evidence.info("exists", path)])
