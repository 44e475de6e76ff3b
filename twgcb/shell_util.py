"""Shell command utilities for local execution.

Provides safe, consistent helpers for the system tools the baseline
drives (systemctl, sysctl, rpm/dnf, grubby, auditctl, authselect). All
functions use proper quoting to prevent shell injection. File reads and
writes do not go through the shell; see ``twgcb.facts`` and
``twgcb.patch``.

Example:
-------
    >>> from twgcb import shell_util
    >>> from twgcb.local import LocalSession
    >>>
    >>> session = LocalSession()
    >>> result = session.run(f"sysctl -n {shell_util.quote('net.ipv4.ip_forward')}")
    >>> shell_util.require_ok(result, "sysctl")

"""

from __future__ import annotations

import shlex
from typing import TYPE_CHECKING

from twgcb.errors import ExternalCommandFailed

if TYPE_CHECKING:
    from twgcb.local import LocalSession, Result


# ── Quoting utilities ─────────────────────────────────────────────────────


def quote(value: str) -> str:
    r"""Quote a value for safe shell interpolation.

    Args:
        value: String to quote.

    Returns:
        Shell-safe quoted string.

    Example:
    -------
        >>> quote("hello world")
        "'hello world'"
        >>> quote("it's")
        "'it'\"'\"'s'"

    """
    return shlex.quote(str(value))


def is_glob_path(path: str) -> bool:
    """Check if a path contains glob characters.

    Example:
    -------
        >>> is_glob_path("/etc/audit/rules.d/*.rules")
        True

    """
    return any(ch in path for ch in "*?[")


# ── Result helpers ────────────────────────────────────────────────────────


def require_ok(result: Result, tool: str) -> Result:
    """Raise ExternalCommandFailed unless the command succeeded.

    Args:
        result: Result from ``LocalSession.run``.
        tool: Tool name used in the error message.

    Returns:
        The same result, for chaining.

    Raises:
        ExternalCommandFailed: Exit code was non-zero (127 means not installed).

    """
    if not result.ok:
        raise ExternalCommandFailed(tool, result.exit_code, result.stderr)
    return result


def tool_available(session: LocalSession, tool: str) -> bool:
    """Return True if ``tool`` resolves on PATH."""
    return session.run(f"command -v {quote(tool)} >/dev/null 2>&1").ok


# ── Service operations ────────────────────────────────────────────────────


def systemctl(session: LocalSession, action: str, unit: str) -> Result:
    """Run ``systemctl <action> <unit>`` and return the result."""
    return session.run(f"systemctl {action} {quote(unit)}")


def reload_service(session: LocalSession, service: str) -> Result:
    """Reload a systemd service, falling back to restart.

    Returns:
        The result of the last ``systemctl`` call.

    Raises:
        ExternalCommandFailed: Neither reload nor restart succeeded.

    """
    result = systemctl(session, "reload", service)
    if not result.ok:
        result = systemctl(session, "restart", service)
    return require_ok(result, "systemctl")


def restart_service(session: LocalSession, service: str) -> Result:
    return require_ok(systemctl(session, "restart", service), "systemctl")


def service_action(session: LocalSession, remediation: dict) -> None:
    """Perform reload or restart based on remediation dict.

    Checks for 'reload' or 'restart' keys in the remediation dict
    and performs the appropriate action.

    Args:
        session: Local session.
        remediation: Remediation dict that may contain reload/restart keys.

    Raises:
        ExternalCommandFailed: The service could not be reloaded or restarted.

    """
    if "reload" in remediation:
        reload_service(session, remediation["reload"])
    elif "restart" in remediation:
        restart_service(session, remediation["restart"])


def run_post_commands(session: LocalSession, remediation: dict) -> list[str]:
    """Run a remediation's ``post`` commands (``augenrules --load``, ``sysctl --system``).

    Returns:
        Short descriptions of each command's outcome.

    Raises:
        ExternalCommandFailed: A post command failed.

    """
    notes = []
    for cmd in remediation.get("post", []) or []:
        result = session.run(cmd)
        require_ok(result, cmd.split()[0])
        notes.append(f"ran {cmd}")
    return notes
