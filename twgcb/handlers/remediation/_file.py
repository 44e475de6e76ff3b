"""File-related remediation handlers.

Handlers for managing file permissions, ownership, existence, and whole-file content.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from twgcb import facts, patch, shell_util

if TYPE_CHECKING:
    from twgcb.handlers._context import StepContext
    from twgcb.local import LocalSession


def _remediate_file_permissions(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Set file ownership and permissions.

    Modes only ever tighten: a file at 0600 stays 0600 when the limit is
    0640. Glob patterns are expanded under the session root.

    Args:
        session: Local session.
        r: Remediation definition with optional fields (taken from the
           rule's file_permission check when omitted):
            - path (str) or paths (list[str]): Files or glob patterns.
            - owner (str, optional): Owner to set.
            - group (str, optional): Group to set.
            - mode (str, optional): Maximum octal mode.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    c = ctx.find_check("file_permission") or {}
    merged = {**c, **r}
    patterns = list(merged["paths"]) if "paths" in merged else [merged["path"]]
    mode = int(str(merged["mode"]), 8) if merged.get("mode") is not None else None

    details = []
    for pattern in patterns:
        for path in facts.expand_paths(session, pattern):
            if not session.path(path).exists():
                if merged.get("missing_ok", False):
                    continue
                return False, f"{path} does not exist"
            result = patch.set_permissions(session, path, mode=mode, owner=merged.get("owner"), group=merged.get("group"))
            ctx.record(session, result)
            if result.changed:
                details.append(result.detail)
    if not details:
        return True, "permissions already correct"
    return True, "; ".join(details)


def _remediate_file_absent(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Remove a file, keeping a timestamped backup.

    Args:
        session: Local session.
        r: Remediation definition with required fields:
            - path (str): File to remove.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    c = ctx.find_check("file_not_exists") or {}
    path = r.get("path") or c["path"]
    result = ctx.record(session, patch.remove_file(session, path))
    return True, result.detail


def _remediate_file_content(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Write a whole file owned by the baseline (drop-ins, mount units).

    Args:
        session: Local session.
        r: Remediation definition with required fields:
            - path (str): File to write.
            - content (str) or lines (list[str]): Full file content.
            - mode (str, optional): Octal mode for the file.
            - reload/restart (str, optional): Service to reload.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    content = "\n".join(r["lines"]) if "lines" in r else str(r["content"])
    mode = int(str(r["mode"]), 8) if r.get("mode") is not None else None
    result = ctx.record(session, patch.write_file(session, r["path"], content, mode=mode))
    if result.changed:
        shell_util.service_action(session, r)
        return True, result.detail
    return True, f"{r['path']} already up to date"
