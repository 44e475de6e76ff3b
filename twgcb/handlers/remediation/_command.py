"""Command-related remediation handlers.

Handlers for arbitrary command execution and manual remediation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from twgcb import shell_util

if TYPE_CHECKING:
    from twgcb.handlers._context import StepContext
    from twgcb.local import LocalSession


def _remediate_command_exec(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Execute an arbitrary shell command.

    Supports conditional execution with unless/onlyif guards.

    Args:
        session: Local session.
        r: Remediation definition with required fields:
            - run (str): Shell command to execute.
            - unless (str, optional): Skip if this command succeeds.
            - onlyif (str, optional): Skip if this command fails.
            - timeout (int, optional): Seconds. Defaults to 120.
            - reload/restart (str, optional): Service to reload.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    cmd = r["run"]

    if "unless" in r:
        guard = session.run(r["unless"])
        if guard.ok:
            return True, f"Skipped (unless guard passed): {r['unless']}"

    if "onlyif" in r:
        guard = session.run(r["onlyif"])
        if not guard.ok:
            return True, f"Skipped (onlyif guard failed): {r['onlyif']}"

    result = session.run(cmd, timeout=r.get("timeout", 120))
    ctx.changed = True
    if not result.ok:
        return (
            False,
            f"Command failed (exit {result.exit_code}): {result.stderr or result.stdout}",
        )

    shell_util.service_action(session, r)
    return True, f"Executed: {cmd}"


def _remediate_manual(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Indicate that manual remediation is required.

    Always returns failure with the specified note.

    Args:
        session: Local session (unused).
        r: Remediation definition with optional fields:
            - note (str): Explanation of manual steps needed.
        ctx: Step bookkeeping (unused).

    Returns:
        Tuple of (False, "MANUAL: <note>").

    """
    note = r.get("note", "Manual remediation required")
    return False, f"MANUAL: {note}"
