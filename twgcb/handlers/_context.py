"""Per-step bookkeeping shared by remediation handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from twgcb.patch import prune_backups

if TYPE_CHECKING:
    from twgcb.local import LocalSession
    from twgcb.patch import Backup, PatchResult


@dataclass
class StepContext:
    """What a remediation step did besides succeeding or failing.

    Handlers keep the ``(ok, detail)`` return shape and report file writes,
    side effects, and reboot-pending state through this object.
    """

    check: dict | None = None
    backup_keep: int | None = None
    patches: list[PatchResult] = field(default_factory=list)
    changed: bool = False
    pending: bool = False

    def record(self, session: LocalSession, result: PatchResult) -> PatchResult:
        self.patches.append(result)
        if result.changed:
            self.changed = True
            if self.backup_keep is not None and result.backup is not None:
                prune_backups(session, result.path, self.backup_keep)
        return result

    @property
    def backups(self) -> list[Backup]:
        return [p.backup for p in self.patches if p.backup is not None]

    def find_check(self, method: str, **match) -> dict | None:
        """Locate the (sub-)check with ``method`` whose fields equal ``match``."""
        return next(iter(self.find_checks(method, **match)), None)

    def find_checks(self, method: str, **match) -> list[dict]:
        """Every (sub-)check with ``method`` whose fields equal ``match``; None values match anything."""
        if self.check is None:
            return []
        candidates = self.check.get("checks", [self.check])
        return [
            c
            for c in candidates
            if c.get("method") == method and all(c.get(k) == v for k, v in match.items() if v is not None)
        ]
