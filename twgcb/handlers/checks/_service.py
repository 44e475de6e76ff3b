"""Service-related check handlers.

Handlers for verifying systemd service state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from twgcb import facts
from twgcb._types import CheckResult, Evidence

if TYPE_CHECKING:
    from twgcb.local import LocalSession


def _check_service_state(session: LocalSession, c: dict) -> CheckResult:
    """Check systemd service enabled, active and masked state.

    A unit that does not exist satisfies ``enabled: false``,
    ``active: false`` and ``masked: true`` requests (nothing can start it),
    and fails ``enabled: true`` / ``active: true``.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - name (str): Systemd unit name.
            - enabled (bool, optional): Expected enabled state.
            - active (bool, optional): Expected active state.
            - masked (bool, optional): Expected masked state.

    Returns:
        CheckResult with passed=True if service matches all specified states.

    """
    name = c["name"]
    state = facts.unit_state(session, name)
    evidence = [Evidence.info(f"is-enabled: {state.raw_enabled or '-'}, is-active: {state.raw_active or '-'}", name)]
    failures = []
    details = []

    if not state.exists:
        if c.get("enabled") or c.get("active"):
            return CheckResult.fail(f"{name}: unit not found", evidence)
        return CheckResult.ok(f"{name}: not installed", evidence)

    if "enabled" in c:
        if c["enabled"] and not state.enabled:
            failures.append(f"enabled={state.raw_enabled} (expected enabled)")
        elif not c["enabled"] and state.enabled:
            failures.append(f"enabled={state.raw_enabled} (expected disabled)")
        else:
            details.append(state.raw_enabled)

    if "active" in c:
        if c["active"] and not state.active:
            failures.append(f"active={state.raw_active} (expected active)")
        elif not c["active"] and state.active:
            failures.append(f"active={state.raw_active} (expected inactive)")
        else:
            details.append(state.raw_active)

    if "masked" in c and c["masked"] != state.masked:
        failures.append(f"enabled={state.raw_enabled} (expected {'masked' if c['masked'] else 'not masked'})")

    if failures:
        return CheckResult.fail(f"{name}: {'; '.join(failures)}", evidence)
    return CheckResult.ok(f"{name}: {', '.join(details) or state.raw_enabled}", evidence)
