"""Package-related check handlers.

Handler for verifying RPM package installation state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from twgcb import facts
from twgcb._types import CheckResult, Evidence

if TYPE_CHECKING:
    from twgcb.local import LocalSession


def _check_package_state(session: LocalSession, c: dict) -> CheckResult:
    """Check if packages are installed or absent.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - name (str) or names (list[str]): Package name(s).
            - state (str, optional): "present" or "absent". Defaults to "present".

    Returns:
        CheckResult with passed=True if every package is in the expected state.

    """
    names = list(c["names"]) if "names" in c else [c["name"]]
    state = c.get("state", "present")
    evidence = []
    wrong = []
    for name in names:
        installed = facts.package_installed(session, name)
        evidence.append(Evidence.info("installed" if installed else "not installed", name))
        if installed != (state == "present"):
            wrong.append(name)

    if state == "present":
        if wrong:
            return CheckResult.fail(f"not installed: {', '.join(wrong)}", evidence)
        return CheckResult.ok(f"installed: {', '.join(names)}", evidence)
    if wrong:
        return CheckResult.fail(f"installed (should be absent): {', '.join(wrong)}", evidence)
    return CheckResult.ok(f"not installed: {', '.join(names)}", evidence)
