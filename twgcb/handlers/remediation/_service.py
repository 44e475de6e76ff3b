"""Service-related remediation handlers.

Handlers for managing systemd services.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from twgcb import facts, shell_util

if TYPE_CHECKING:
    from twgcb.handlers._context import StepContext
    from twgcb.local import LocalSession


def _service_name(r: dict, ctx: StepContext) -> str:
    c = ctx.find_check("service_state", name=r.get("name")) or {}
    return r.get("name") or c["name"]


def _remediate_service_enabled(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Unmask, enable and optionally start a systemd service.

    Args:
        session: Local session.
        r: Remediation definition with required fields:
            - name (str): Service name.
            - start (bool, optional): Also start the service. Defaults to True.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    name = _service_name(r, ctx)
    start = r.get("start", True)

    session.run(f"systemctl unmask {shell_util.quote(name)}")
    action = "enable --now" if start else "enable"
    result = session.run(f"systemctl {action} {shell_util.quote(name)}")
    ctx.changed = True
    if not result.ok:
        return False, f"Failed to enable {name}: {result.stderr}"
    if start:
        return True, f"Enabled and started {name}"
    return True, f"Enabled {name}"


def _remediate_service_disabled(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Disable and optionally stop a systemd service.

    Args:
        session: Local session.
        r: Remediation definition with required fields:
            - name (str): Service name.
            - stop (bool, optional): Also stop the service. Defaults to True.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    name = _service_name(r, ctx)
    stop = r.get("stop", True)
    if not facts.unit_state(session, name).exists:
        return True, f"{name}: not installed"

    if stop:
        session.run(f"systemctl stop {shell_util.quote(name)}")

    result = session.run(f"systemctl disable {shell_util.quote(name)}")
    ctx.changed = True
    if not result.ok:
        return False, f"Failed to disable {name}: {result.stderr}"

    if stop:
        return True, f"Stopped and disabled {name}"
    return True, f"Disabled {name}"


def _remediate_service_masked(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Mask a systemd service to prevent it from starting.

    Args:
        session: Local session.
        r: Remediation definition with required fields:
            - name (str): Service name.
            - stop (bool, optional): Also stop the service. Defaults to True.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    name = _service_name(r, ctx)
    stop = r.get("stop", True)

    if stop:
        session.run(f"systemctl stop {shell_util.quote(name)}")

    result = session.run(f"systemctl mask {shell_util.quote(name)}")
    ctx.changed = True
    if not result.ok:
        return False, f"Failed to mask {name}: {result.stderr}"

    if stop:
        return True, f"Stopped and masked {name}"
    return True, f"Masked {name}"
