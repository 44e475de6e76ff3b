"""Check handlers dispatch.

This module aggregates all check handlers and provides the dispatch
function for evaluating a rule's compliance predicate.

Handler Modules:
    - _config: config_value, config_absent
    - _file: line_present, line_absent, file_permission, file_exists,
             file_not_exists
    - _system: sysctl_value, kernel_module_state, mount_option,
               fstab_option, grub_parameter
    - _service: service_state
    - _package: package_state
    - _security: selinux_state, audit_rules, audit_immutable, pam_module
    - _command: command

Example:
-------
    >>> from twgcb.handlers.checks import run_check
    >>> check = {"method": "config_value", "path": "/etc/login.defs",
    ...          "key": "PASS_MIN_DAYS", "expected": "1", "comparator": ">="}
    >>> result = run_check(session, check)

"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from twgcb._types import CheckResult, Evidence, Status
from twgcb.errors import ExternalCommandFailed, HardeningError, PermissionDenied, ResourceMissing
from twgcb.handlers.checks._command import _check_command
from twgcb.handlers.checks._config import _check_config_absent, _check_config_value
from twgcb.handlers.checks._file import (
    _check_file_exists,
    _check_file_not_exists,
    _check_file_permission,
    _check_line_absent,
    _check_line_present,
)
from twgcb.handlers.checks._package import _check_package_state
from twgcb.handlers.checks._security import (
    _check_audit_immutable,
    _check_audit_rules,
    _check_pam_module,
    _check_selinux_state,
)
from twgcb.handlers.checks._service import _check_service_state
from twgcb.handlers.checks._system import (
    _check_fstab_option,
    _check_grub_parameter,
    _check_kernel_module_state,
    _check_mount_option,
    _check_sysctl_value,
)

if TYPE_CHECKING:
    from twgcb.local import LocalSession

logger = logging.getLogger(__name__)


# ── Handler registry ──────────────────────────────────────────────────────

CHECK_HANDLERS = {
    # Config handlers
    "config_value": _check_config_value,
    "config_absent": _check_config_absent,
    # File handlers
    "line_present": _check_line_present,
    "line_absent": _check_line_absent,
    "file_permission": _check_file_permission,
    "file_exists": _check_file_exists,
    "file_not_exists": _check_file_not_exists,
    # System handlers
    "sysctl_value": _check_sysctl_value,
    "kernel_module_state": _check_kernel_module_state,
    "mount_option": _check_mount_option,
    "fstab_option": _check_fstab_option,
    "grub_parameter": _check_grub_parameter,
    # Service handlers
    "service_state": _check_service_state,
    # Package handlers
    "package_state": _check_package_state,
    # Security handlers
    "selinux_state": _check_selinux_state,
    "audit_rules": _check_audit_rules,
    "audit_immutable": _check_audit_immutable,
    "pam_module": _check_pam_module,
    # Command handler
    "command": _check_command,
}


# ── Dispatch functions ────────────────────────────────────────────────────


def run_check(session: LocalSession, check: dict) -> CheckResult:
    """Dispatch a check definition to the appropriate handler.

    Supports both single checks and multi-condition checks (AND semantics).
    Unlike a short-circuit AND, every sub-check is evaluated so the
    operator sees all evidence. Any INDETERMINATE sub-check makes the whole
    result INDETERMINATE; otherwise any failure makes it NON_COMPLIANT.

    Args:
        session: Local session.
        check: Check definition dict from rule YAML. Must contain either:
            - "method": str - single check method name
            - "checks": list[dict] - multiple checks with AND semantics

    Returns:
        CheckResult with the combined status and evidence.

    """
    if "checks" not in check:
        return _dispatch_check(session, check)

    results = [_dispatch_check(session, sub) for sub in check["checks"]]
    evidence = [e for r in results for e in r.evidence]
    undecided = [r for r in results if r.status is Status.INDETERMINATE]
    if undecided:
        return CheckResult.indeterminate("; ".join(r.reason for r in undecided), evidence)
    failed = [r for r in results if r.status is Status.NON_COMPLIANT]
    if failed:
        return CheckResult.fail("; ".join(r.detail for r in failed if r.detail), evidence)
    return CheckResult.ok("; ".join(r.detail for r in results if r.detail), evidence)


def _dispatch_check(session: LocalSession, check: dict) -> CheckResult:
    """Dispatch a single check to its handler.

    Fact-collection errors become results here: an unreadable target is
    INDETERMINATE, a missing one NON_COMPLIANT, a missing tool INDETERMINATE.

    Args:
        session: Local session.
        check: Check definition with "method" key.

    Returns:
        CheckResult from the handler.

    """
    method = check.get("method", "")
    handler = CHECK_HANDLERS.get(method)
    if handler is None:
        return CheckResult.indeterminate(f"Unknown check method: {method}")
    try:
        return handler(session, check)
    except PermissionDenied as e:
        return CheckResult.indeterminate(f"permission denied: {e.path}", [Evidence.denied(e.path)])
    except ResourceMissing as e:
        return CheckResult.fail(str(e), [Evidence.missing(e.path)])
    except ExternalCommandFailed as e:
        return CheckResult.indeterminate(str(e))
    except HardeningError as e:
        logger.debug("check %s raised %s", method, e)
        return CheckResult.indeterminate(str(e))


__all__ = ["CHECK_HANDLERS", "run_check"]
