"""Config-related remediation handlers.

Handlers for modifying configuration files: setting values, removing keys,
ensuring or removing lines, and managing marker-delimited blocks. When the
rule's check describes the same file, the handler writes through the
check's ``ConfigTarget`` so the value written is the value verified.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from twgcb import patch, shell_util
from twgcb.targets import ConfigTarget, TargetKind

if TYPE_CHECKING:
    from twgcb.handlers._context import StepContext
    from twgcb.local import LocalSession


def _mode(r: dict) -> int | None:
    return int(str(r["mode"]), 8) if r.get("mode") is not None else None


def key_target(r: dict, ctx: StepContext) -> ConfigTarget:
    """The key/value target for a config_set step.

    Uses the matching ``config_value`` check when there is one; otherwise
    the step must carry ``path``, ``key`` and ``value`` itself. An explicit
    ``value`` is only what gets written: existing assignments are kept when
    they satisfy every ``config_value`` sub-check on the same key.
    """
    c = ctx.find_check("config_value", path=r.get("path"), key=r.get("key"))
    if c is not None and "value" not in r:
        return ConfigTarget.from_check(c)
    path = r.get("path") or (c or {})["path"]
    key = r.get("key") or (c or {})["key"]
    bounds = tuple(
        (sub.get("comparator", "=="), sub["expected"])
        for sub in ctx.find_checks("config_value", path=path, key=key)
    )
    return ConfigTarget(
        path=path,
        kind=TargetKind.KEY_VALUE,
        key=key,
        expected=str(r["value"]),
        separator=r.get("separator", (c or {}).get("separator")),
        bounds=bounds,
    )


def _remediate_config_set(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Set a configuration key to a compliant value in a file.

    Violating active assignments are rewritten in place, compliant ones are
    kept, and the key is appended if it has no active line. The file is
    created when absent.

    Args:
        session: Local session.
        r: Remediation definition with optional fields (taken from the
           rule's config_value check when omitted):
            - path (str): Config file path.
            - key (str): Configuration key to set.
            - value (str): Value to write.
            - separator (str, optional): Separator style.
            - mode (str, optional): Mode for a newly created file.
            - reload/restart (str, optional): Service to reload.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    target = key_target(r, ctx)
    result = ctx.record(session, patch.set_key_value(session, target, mode=_mode(r)))
    if result.changed:
        shell_util.service_action(session, r)
    return True, result.detail


def _remediate_config_remove(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Remove every active assignment of a configuration key.

    Args:
        session: Local session.
        r: Remediation definition with required fields:
            - path (str): Config file path.
            - key (str): Configuration key to remove.
            - reload/restart (str, optional): Service to reload.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    c = ctx.find_check("config_absent", path=r.get("path"), key=r.get("key")) or {}
    path = r.get("path") or c["path"]
    key = r.get("key") or c["key"]
    pattern = rf"^\s*{re.escape(key)}(\s|=|$)"
    result = ctx.record(session, patch.remove_matching_lines(session, path, [pattern]))
    if result.changed:
        shell_util.service_action(session, r)
    return True, result.detail


def _remediate_lines_present(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Append required lines that have no active equivalent.

    Args:
        session: Local session.
        r: Remediation definition with optional fields (taken from the
           rule's line_present check when omitted):
            - path (str): File path.
            - lines (list[str]): Required lines.
            - mode (str, optional): Mode for a newly created file.
            - reload/restart (str, optional): Service to reload.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    c = ctx.find_check("line_present", path=r.get("path")) or {}
    target = ConfigTarget.from_check({**c, **r, "method": "line_present"})
    result = ctx.record(session, patch.ensure_lines(session, target.path, list(target.lines), mode=_mode(r)))
    if result.changed:
        shell_util.service_action(session, r)
    return True, result.detail


def _remediate_lines_absent(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Delete active lines matching any of the given regexes.

    Args:
        session: Local session.
        r: Remediation definition with optional fields (taken from the
           rule's line_absent check when omitted):
            - path (str): File path.
            - patterns (list[str]): Regexes of lines to delete.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    c = ctx.find_check("line_absent", path=r.get("path")) or {}
    target = ConfigTarget.from_check({**c, **r, "method": "line_absent"})
    result = ctx.record(session, patch.remove_matching_lines(session, target.path, list(target.lines)))
    if result.changed:
        shell_util.service_action(session, r)
    return True, result.detail


def _remediate_config_block(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Write a marker-delimited block of lines into a shared file.

    Args:
        session: Local session.
        r: Remediation definition with required fields:
            - path (str): File path.
            - lines (list[str]) or block (str): Block content.
            - marker (str, optional): Marker text. Defaults to "twgcb".
            - mode (str, optional): Mode for a newly created file.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    lines = list(r["lines"]) if "lines" in r else str(r["block"]).splitlines()
    result = patch.write_block(session, r["path"], lines, marker=r.get("marker", "twgcb"), mode=_mode(r))
    ctx.record(session, result)
    if result.changed:
        shell_util.service_action(session, r)
    return True, result.detail
