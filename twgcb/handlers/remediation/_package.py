"""Package-related remediation handlers.

Handlers for managing RPM packages.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from twgcb import facts, shell_util

if TYPE_CHECKING:
    from twgcb.handlers._context import StepContext
    from twgcb.local import LocalSession


def _package_names(r: dict, ctx: StepContext) -> list[str]:
    c = ctx.find_check("package_state") or {}
    merged = {**c, **r}
    return list(merged["names"]) if "names" in merged else [merged["name"]]


def _remediate_package_present(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Install packages using dnf.

    Args:
        session: Local session.
        r: Remediation definition with required fields:
            - name (str) or names (list[str]): Package(s) to install.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    missing = [n for n in _package_names(r, ctx) if not facts.package_installed(session, n)]
    if not missing:
        return True, "already installed"

    quoted = " ".join(shell_util.quote(n) for n in missing)
    result = session.run(f"dnf -y install {quoted}", timeout=600)
    ctx.changed = True
    if not result.ok:
        return False, f"dnf install failed: {result.stderr}"
    return True, f"Installed {', '.join(missing)}"


def _remediate_package_absent(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Remove packages using dnf.

    Idempotent: succeeds if the packages are already absent.

    Args:
        session: Local session.
        r: Remediation definition with required fields:
            - name (str) or names (list[str]): Package(s) to remove.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    present = [n for n in _package_names(r, ctx) if facts.package_installed(session, n)]
    if not present:
        return True, "already not installed"

    quoted = " ".join(shell_util.quote(n) for n in present)
    result = session.run(f"dnf -y remove {quoted}", timeout=600)
    ctx.changed = True
    if not result.ok:
        return False, f"dnf remove failed: {result.stderr}"
    return True, f"Removed {', '.join(present)}"
