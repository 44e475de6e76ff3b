"""Security-related remediation handlers.

Handlers for audit rules, audit immutability, and PAM module arguments.
"""

from __future__ import annotations

import logging
import posixpath
from typing import TYPE_CHECKING

from twgcb import facts, parsing, patch, shell_util
from twgcb.facts import FileStatus
from twgcb.handlers.checks._security import AUDIT_RULES_DIR, PAM_STACKS, missing_audit_rules
from twgcb.targets import ArgSpec, pam_line_matcher

if TYPE_CHECKING:
    from twgcb.handlers._context import StepContext
    from twgcb.local import LocalSession

logger = logging.getLogger(__name__)

AUTHSELECT_PROFILE = "twgcb"
IMMUTABLE_RULES = "/etc/audit/rules.d/99-finalize.rules"


# ── Audit ──────────────────────────────────────────────────────────────────


def _load_audit_rules(session: LocalSession, ctx: StepContext) -> str:
    """Load persisted rules into the kernel unless auditing is locked."""
    if facts.audit_enabled_state(session) == 2:
        ctx.pending = True
        return "rules load after reboot (audit configuration is immutable)"
    shell_util.require_ok(session.run("augenrules --load"), "augenrules")
    return "loaded with augenrules"


def _remediate_audit_rules_set(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Persist audit rules and load them.

    Only rules with no equivalent anywhere in the rules directory are
    written, so rules kept in other files are never duplicated.

    Args:
        session: Local session.
        r: Remediation definition with fields (taken from the rule's
           audit_rules check when omitted):
            - path (str): Rules file to append to.
            - lines (list[str]): Required audit rules.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    c = ctx.find_check("audit_rules", path=r.get("path")) or {}
    merged = {**c, **r}
    missing, _ = missing_audit_rules(session, merged)
    if not missing:
        return True, "all audit rules present"

    result = ctx.record(session, patch.ensure_lines(session, merged["path"], missing, flags=True, mode=0o640))
    return True, f"{result.detail}; {_load_audit_rules(session, ctx)}"


def _remediate_audit_immutable_set(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Lock the audit configuration with ``-e 2`` in the last rules file.

    Args:
        session: Local session.
        r: Remediation definition with optional fields:
            - path (str): Rules file. Defaults to 99-finalize.rules.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    c = ctx.find_check("audit_immutable") or {}
    search = c.get("search", AUDIT_RULES_DIR)
    path = r.get("path", IMMUTABLE_RULES)

    details = []
    for m in facts.audit_rule_matches(session, search, "-e 2"):
        if m.path != path:
            result = ctx.record(session, patch.remove_matching_lines(session, m.path, [r"^\s*-e\s+2\s*$"]))
            details.append(result.detail)
    result = ctx.record(session, patch.ensure_lines(session, path, ["-e 2"], flags=True, mode=0o640))
    details.append(result.detail)
    if ctx.changed:
        details.append(_load_audit_rules(session, ctx))
    return True, "; ".join(details)


# ── PAM ────────────────────────────────────────────────────────────────────


def _authselect_dir(session: LocalSession, r: dict) -> str | None:
    """Directory of the custom authselect profile to edit, creating one if needed.

    Returns None when authselect does not manage the PAM stacks.
    """
    current = facts.authselect_current(session)
    if current is None:
        return None
    profile, features = current
    if not profile.startswith("custom/"):
        name = r.get("authselect_profile", AUTHSELECT_PROFILE)
        if not session.path(f"/etc/authselect/custom/{name}").is_dir():
            cmd = f"authselect create-profile {shell_util.quote(name)} -b {shell_util.quote(profile)} --symlink-meta"
            shell_util.require_ok(session.run(cmd), "authselect")
        flags = " ".join(shell_util.quote(f) for f in features)
        shell_util.require_ok(session.run(f"authselect select custom/{name} {flags} --force"), "authselect")
        logger.info("selected authselect profile custom/%s (based on %s)", name, profile)
        profile = f"custom/{name}"
    return f"/etc/authselect/{profile}"


def _unsatisfied(session: LocalSession, path: str, module: str, pam_type: str | None, specs: list[ArgSpec]) -> list[ArgSpec]:
    config = facts.read_config_lines(session, path)
    if config.status is not FileStatus.PRESENT:
        return specs
    hits = parsing.scan(config.lines, pam_line_matcher(module, pam_type))
    if not hits:
        return specs
    return [s for s in specs if not all(s.satisfied_by(parsing.tokenize(line)) for _, line in hits)]


def _remediate_pam_module_args(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Add module arguments to the PAM stacks.

    When authselect manages PAM, the custom profile's templates are edited
    (a custom profile is created from the current one first) and
    ``authselect apply-changes`` regenerates /etc/pam.d. Otherwise the
    stack files are edited directly. Arguments already satisfying their
    bound (``remember=5`` for ``remember>=3``) are left alone.

    Args:
        session: Local session.
        r: Remediation definition with fields (taken from the rule's
           pam_module check when omitted):
            - module (str): Module file, e.g. "pam_pwhistory.so".
            - type (str, optional): PAM type column.
            - args (list[str]): Required arguments.
            - paths (list[str], optional): Stack files.
            - line (str, optional): Line appended when the module is not
              configured at all.
            - authselect_profile (str, optional): Custom profile name.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    c = ctx.find_check("pam_module", module=r.get("module")) or {}
    merged = {**c, **r}
    module = merged["module"]
    pam_type = merged.get("type")
    specs = [ArgSpec.parse(a) for a in merged.get("args", [])]
    profile_dir = _authselect_dir(session, merged)

    details = []
    for path in merged.get("paths", PAM_STACKS):
        target = posixpath.join(profile_dir, posixpath.basename(path)) if profile_dir else path
        todo = _unsatisfied(session, target, module, pam_type, specs)
        if not todo:
            continue
        tokens = [s.token() for s in todo]
        fallback = merged.get("line")
        if fallback:
            fallback = " ".join([fallback, *(t for t in tokens if t not in fallback.split())])
        result = patch.ensure_tokens(
            session,
            target,
            pam_line_matcher(module, pam_type),
            tokens,
            sep=" ",
            keyed=True,
            fallback_line=fallback,
        )
        details.append(ctx.record(session, result).detail)

    if profile_dir and ctx.changed:
        shell_util.require_ok(session.run("authselect apply-changes"), "authselect")
        details.append("applied authselect changes")
    if not details:
        return True, f"{module} already configured"
    return True, "; ".join(details)
