"""Security-related check handlers.

Handlers for verifying security subsystem state: SELinux, audit rules,
and PAM configuration.
"""

from __future__ import annotations

import posixpath
from typing import TYPE_CHECKING

from twgcb import facts, parsing
from twgcb._types import CheckResult, Evidence
from twgcb.facts import FileStatus
from twgcb.targets import ArgSpec, pam_line_matcher

if TYPE_CHECKING:
    from twgcb.local import LocalSession

AUDIT_RULES_DIR = "/etc/audit/rules.d"
PAM_STACKS = ["/etc/pam.d/system-auth", "/etc/pam.d/password-auth"]


def _check_selinux_state(session: LocalSession, c: dict) -> CheckResult:
    """Check SELinux enforcement mode.

    Uses getenforce to check the current SELinux mode.

    Args:
        session: Local session.
        c: Check definition with optional fields:
            - state (str): Expected mode. Defaults to "Enforcing".

    Returns:
        CheckResult with passed=True if SELinux is in expected mode.

    """
    expected = c.get("state", "Enforcing")

    result = session.run("getenforce 2>/dev/null")
    if not result.ok:
        return CheckResult.indeterminate("getenforce failed - SELinux may not be installed")

    actual = result.stdout.strip()
    evidence = [Evidence.info(actual, "getenforce")]
    if actual.lower() == expected.lower():
        return CheckResult.ok(f"SELinux: {actual}", evidence)
    return CheckResult.fail(f"SELinux: {actual} (expected {expected})", evidence)


def missing_audit_rules(session: LocalSession, c: dict) -> tuple[list[str], list[Evidence]]:
    """Required audit rules with no equivalent anywhere in the search directory.

    Returns:
        ``(missing_lines, evidence)``.

    """
    search = c.get("search", posixpath.dirname(c["path"]))
    missing = []
    evidence: list[Evidence] = []
    for line in c["lines"]:
        matches = facts.audit_rule_matches(session, search, line)
        if matches:
            m = matches[0]
            evidence.append(Evidence(m.path, m.content, m.line_no))
        else:
            missing.append(line)
            evidence.append(Evidence.no_match(c["path"], line))
    return missing, evidence


def _check_audit_rules(session: LocalSession, c: dict) -> CheckResult:
    """Check that required audit rules are persisted.

    Every rule must have an equivalent line in some ``*.rules`` file of the
    search directory. Equivalence ignores flag order and spelling
    variants (see ``parsing.flag_set``).

    Args:
        session: Local session.
        c: Check definition with required fields:
            - path (str): Rules file the remediation writes to.
            - lines (list[str]): Required audit rules.
            - search (str, optional): Directory searched; defaults to the
              directory of ``path``.

    """
    missing, evidence = missing_audit_rules(session, c)
    total = len(c["lines"])
    if missing:
        return CheckResult.fail(f"{len(missing)} of {total} audit rules missing", evidence)
    return CheckResult.ok(f"all {total} audit rules present", evidence)


def _check_audit_immutable(session: LocalSession, c: dict) -> CheckResult:
    """Check that audit configuration is locked with ``-e 2``.

    ``augenrules`` concatenates rules files in lexical order and ``-e 2``
    only protects rules loaded before it, so it must live in the last file.

    Args:
        session: Local session.
        c: Check definition with optional fields:
            - search (str): Rules directory. Defaults to /etc/audit/rules.d.

    """
    search = c.get("search", AUDIT_RULES_DIR)
    matches = facts.audit_rule_matches(session, search, "-e 2")
    evidence: list[Evidence] = [Evidence(m.path, m.content, m.line_no) for m in matches]
    state = facts.audit_enabled_state(session)
    if state is not None:
        evidence.append(Evidence.info(f"enabled {state}", "auditctl -s"))

    if not matches:
        evidence.insert(0, Evidence.no_match(search, "-e 2"))
        return CheckResult.fail("-e 2 not found in audit rules", evidence)

    root = session.path(search)
    files = sorted(p.name for p in root.glob("*.rules")) if root.is_dir() else []
    last = files[-1] if files else ""
    if posixpath.basename(matches[-1].path) != last:
        return CheckResult.fail(f"-e 2 is not in the last rules file ({last})", evidence)
    return CheckResult.ok("audit configuration is immutable (-e 2)", evidence)


def pam_violations(session: LocalSession, c: dict, path: str) -> tuple[CheckResult | None, list[Evidence], list[str]]:
    """Evaluate one PAM stack file.

    Returns:
        ``(early_result, evidence, problems)``; ``early_result`` is set when
        the file cannot be evaluated at all.

    """
    module = c["module"]
    specs = [ArgSpec.parse(a) for a in c.get("args", [])]
    config = facts.read_config_lines(session, path)
    if config.status is FileStatus.PERMISSION_DENIED:
        return CheckResult.indeterminate(f"permission denied: {path}", [Evidence.denied(path)]), [], []
    if config.status is FileStatus.MISSING:
        return None, [Evidence.missing(path)], [f"{path}: not found"]

    hits = parsing.scan(config.lines, pam_line_matcher(module, c.get("type")))
    if not hits:
        return None, [Evidence.no_match(path, module)], [f"{path}: {module} not configured"]

    evidence = [Evidence(path, line, n) for n, line in hits]
    problems = []
    for n, line in hits:
        bad = [str(s) for s in specs if not s.satisfied_by(parsing.tokenize(line))]
        if bad:
            problems.append(f"{path}:{n}: missing {', '.join(bad)}")
    return None, evidence, problems


def _check_pam_module(session: LocalSession, c: dict) -> CheckResult:
    """Check PAM module arguments across the authentication stacks.

    Every active line calling the module must carry every argument;
    ``args`` entries may state a bound, e.g. ``remember>=3``.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - module (str): Module file, e.g. "pam_pwquality.so".
            - type (str, optional): PAM type column (auth, password...).
            - args (list[str], optional): Required arguments.
            - paths (list[str], optional): Stack files. Defaults to
              system-auth and password-auth.

    """
    evidence: list[Evidence] = []
    problems: list[str] = []
    for path in c.get("paths", PAM_STACKS):
        early, ev, prob = pam_violations(session, c, path)
        if early is not None:
            return early
        evidence.extend(ev)
        problems.extend(prob)
    if problems:
        return CheckResult.fail("; ".join(problems), evidence)
    return CheckResult.ok(f"{c['module']} configured as required", evidence)
