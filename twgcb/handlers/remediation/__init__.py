"""Remediation handlers package.

This package provides all remediation handlers that modify host state to
achieve compliance. Each handler implements a specific remediation
mechanism (e.g., config_set, package_present) defined in the rule schema.

Remediation Handler Pattern:
    All remediation handlers follow a consistent signature and behavior:
    - Accept a LocalSession, a remediation dict, and a StepContext
    - Return (success: bool, detail: str)
    - Report file writes through ``ctx.record`` and reboot-only effects
      through ``ctx.pending``
    - Use shell_util.quote() for all values from rule YAML
    - Call shell_util.service_action() for mechanisms that modify service configs

Example:
    >>> from twgcb.local import LocalSession
    >>> from twgcb.handlers.remediation import run_remediation
    >>>
    >>> remediation = {
    ...     "mechanism": "config_set",
    ...     "path": "/etc/login.defs",
    ...     "key": "PASS_MIN_DAYS",
    ...     "value": "1",
    ... }
    >>> result = run_remediation(LocalSession(), remediation)
    >>> result.status
    <ApplyStatus.APPLIED: 'applied'>

"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from twgcb import shell_util
from twgcb._types import ApplyResult, ApplyStatus, StepResult
from twgcb.errors import HardeningError
from twgcb.handlers._context import StepContext
from twgcb.handlers.remediation._command import _remediate_command_exec, _remediate_manual
from twgcb.handlers.remediation._config import (
    _remediate_config_block,
    _remediate_config_remove,
    _remediate_config_set,
    _remediate_lines_absent,
    _remediate_lines_present,
)
from twgcb.handlers.remediation._file import (
    _remediate_file_absent,
    _remediate_file_content,
    _remediate_file_permissions,
)
from twgcb.handlers.remediation._package import _remediate_package_absent, _remediate_package_present
from twgcb.handlers.remediation._security import (
    _remediate_audit_immutable_set,
    _remediate_audit_rules_set,
    _remediate_pam_module_args,
)
from twgcb.handlers.remediation._service import (
    _remediate_service_disabled,
    _remediate_service_enabled,
    _remediate_service_masked,
)
from twgcb.handlers.remediation._system import (
    _remediate_grub_parameter_set,
    _remediate_kernel_module_disable,
    _remediate_mount_option_set,
    _remediate_sysctl_set,
)

if TYPE_CHECKING:
    from twgcb.local import LocalSession

logger = logging.getLogger(__name__)


# Registry mapping mechanism names to handler functions
REMEDIATION_HANDLERS = {
    # Config handlers
    "config_set": _remediate_config_set,
    "config_remove": _remediate_config_remove,
    "lines_present": _remediate_lines_present,
    "lines_absent": _remediate_lines_absent,
    "config_block": _remediate_config_block,
    # File handlers
    "file_permissions": _remediate_file_permissions,
    "file_absent": _remediate_file_absent,
    "file_content": _remediate_file_content,
    # Package handlers
    "package_present": _remediate_package_present,
    "package_absent": _remediate_package_absent,
    # Service handlers
    "service_enabled": _remediate_service_enabled,
    "service_disabled": _remediate_service_disabled,
    "service_masked": _remediate_service_masked,
    # System handlers
    "sysctl_set": _remediate_sysctl_set,
    "kernel_module_disable": _remediate_kernel_module_disable,
    "mount_option_set": _remediate_mount_option_set,
    "grub_parameter_set": _remediate_grub_parameter_set,
    # Security handlers
    "audit_rules_set": _remediate_audit_rules_set,
    "audit_immutable_set": _remediate_audit_immutable_set,
    "pam_module_args": _remediate_pam_module_args,
    # Command handlers
    "command_exec": _remediate_command_exec,
    "manual": _remediate_manual,
}


def _dispatch_remediation(session: LocalSession, rem: dict, ctx: StepContext) -> tuple[bool, str]:
    """Dispatch to the appropriate remediation handler.

    Engine errors raised by patchers and external tools become a failed
    step carrying the error text (``augenrules failed (exit 1)``).

    Args:
        session: Local session.
        rem: Remediation definition dict with 'mechanism' key.
        ctx: Step bookkeeping passed to the handler.

    Returns:
        Tuple of (success, detail).

    """
    mechanism = rem.get("mechanism", "")
    handler = REMEDIATION_HANDLERS.get(mechanism)
    if handler is None:
        return False, f"Unknown remediation mechanism: {mechanism}"
    try:
        ok, detail = handler(session, rem, ctx)
        if ok:
            notes = shell_util.run_post_commands(session, rem)
            if notes:
                detail = "; ".join([detail, *notes])
        return ok, detail
    except HardeningError as e:
        logger.debug("%s failed: %s", mechanism, e)
        return False, str(e)


def _run_step(
    session: LocalSession,
    index: int,
    step: dict,
    check: dict | None,
    backup_keep: int | None,
) -> StepResult:
    ctx = StepContext(check=check, backup_keep=backup_keep)
    ok, detail = _dispatch_remediation(session, step, ctx)
    return StepResult(
        index,
        step.get("mechanism", ""),
        ok,
        detail,
        changed=ctx.changed,
        pending=ctx.pending,
        backups=ctx.backups,
    )


def run_remediation(
    session: LocalSession,
    remediation: dict,
    *,
    check: dict | None = None,
    backup_keep: int | None = None,
) -> ApplyResult:
    """Execute a remediation.

    Supports both single-step and multi-step remediations. For multi-step,
    executes sequentially and stops on first failure; steps already run
    keep their effects and backups.

    Args:
        session: Local session.
        remediation: Remediation definition dict from rule YAML. Must contain:
            - "mechanism": str for single-step, or
            - "steps": list[dict] for multi-step remediation
        check: The rule's check, used by handlers to default fields such
            as path, key, and expected value.
        backup_keep: Keep only this many backups per written file.

    Returns:
        ApplyResult: APPLIED, PENDING when a step only takes effect after
        reboot, or FAILED with the failing step's detail as reason.

    Example:
        Multi-step remediation::

            remediation = {
                "steps": [
                    {"mechanism": "package_present", "name": "audit"},
                    {"mechanism": "service_enabled", "name": "auditd"}
                ]
            }
            result = run_remediation(session, remediation)

    """
    steps = remediation["steps"] if "steps" in remediation else [remediation]
    step_results: list[StepResult] = []
    for i, step in enumerate(steps):
        sr = _run_step(session, i, step, check, backup_keep)
        step_results.append(sr)
        logger.debug("step %d %s: ok=%s changed=%s %s", i, sr.mechanism, sr.success, sr.changed, sr.detail)
        if not sr.success:
            return ApplyResult(ApplyStatus.FAILED, sr.detail, step_results)

    detail = "; ".join(sr.detail for sr in step_results if sr.detail)
    if any(sr.pending for sr in step_results):
        return ApplyResult(ApplyStatus.PENDING, detail, step_results)
    return ApplyResult(ApplyStatus.APPLIED, detail, step_results)


__all__ = ["REMEDIATION_HANDLERS", "run_remediation"]
