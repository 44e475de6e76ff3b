"""Exception taxonomy.

Missing resources and permission failures are separate types because the
operator fixes them differently (create the file vs. escalate privileges).
"""

from __future__ import annotations


class HardeningError(Exception):
    """Base class for all errors raised by the engine."""


class ResourceMissing(HardeningError):
    """A file or directory the rule depends on does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"file not found: {path}")


class PermissionDenied(HardeningError):
    """A file exists but could not be read or written."""

    def __init__(self, path: str, action: str = "reading"):
        self.path = path
        self.action = action
        super().__init__(f"permission denied {action} {path}")


class ExternalCommandFailed(HardeningError):
    """A required system tool exited non-zero or is not installed."""

    def __init__(self, tool: str, exit_code: int, stderr: str = ""):
        self.tool = tool
        self.exit_code = exit_code
        self.stderr = stderr
        if exit_code == 127:
            msg = f"{tool} not found"
        else:
            msg = f"{tool} failed (exit {exit_code})"
        if stderr:
            msg += f": {stderr.strip()}"
        super().__init__(msg)


class PredicateUnmet(HardeningError):
    """A write completed but the target still fails its predicate."""


class PatchError(HardeningError):
    """A patcher could not converge a file (read-only filesystem, bad input)."""


class UserCanceled(HardeningError):
    """The operator chose Cancel; the run must stop."""


class UserDeclined(HardeningError):
    """The operator chose No for one rule."""


class InvalidInput(HardeningError):
    """Bad CLI arguments, unknown rule ids, or an invalid rule catalog."""
