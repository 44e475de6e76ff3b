"""Terminal rendering of rule results.

Each rule prints as a header, its evidence lines, and a verdict::

    TWGCB-01-008-0225: Minimum password age
      Line: 27: PASS_MIN_DAYS 0
      Non-compliant: PASS_MIN_DAYS=0 (expected >= 1)
      Successfully applied.

Evidence lines are prefixed with the file path when a rule looks at more
than one file.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.text import Text

from twgcb._config import Theme
from twgcb._types import ApplyStatus, EvidenceKind, RuleState, Status

if TYPE_CHECKING:
    from twgcb._types import CheckResult, Evidence, RuleResult
    from twgcb.engine import RunSummary


def format_evidence(e: Evidence, with_path: bool = False) -> str:
    """One evidence line in its stable textual form."""
    if e.kind is EvidenceKind.FILE_MISSING:
        return f"(File not found: {e.path})"
    if e.kind is EvidenceKind.PERMISSION_DENIED:
        return f"(Permission denied: {e.path})"
    prefix = f"{e.path}: " if with_path and e.path else ""
    if e.kind is EvidenceKind.NO_MATCH:
        return f"{prefix}(No matching line found)"
    if e.kind is EvidenceKind.INFO:
        return f"{e.path}: {e.content}" if e.path else e.content
    if e.line_no is None:
        return f"{prefix}{e.content}"
    return f"{prefix}Line: {e.line_no}: {e.content}"


def evidence_lines(cr: CheckResult) -> list[tuple[str, EvidenceKind]]:
    paths = {e.path for e in cr.evidence if e.kind in (EvidenceKind.MATCH, EvidenceKind.NO_MATCH) and e.path}
    with_path = len(paths) > 1
    return [(format_evidence(e, with_path), e.kind) for e in cr.evidence]


class Reporter:
    """Prints rule results as the engine reaches them.

    Args:
        console: Rich console to print on.
        theme: Styles for verdicts; ``Theme.plain()`` disables color.
        quiet: Print only the final summary.

    """

    def __init__(self, console: Console | None = None, theme: Theme | None = None, *, quiet: bool = False):
        self.console = console or Console()
        self.theme = theme or Theme()
        self.quiet = quiet

    # ── Engine callbacks ───────────────────────────────────────────────────

    def checked(self, result: RuleResult) -> None:
        if self.quiet or result.check is None:
            return
        self.console.print(
            Text.assemble((result.rule_id, self.theme.rule_id), ": ", (result.title, self.theme.title))
        )
        self._print_evidence(result.check)
        self._verdict(*self._check_verdict(result.check))

    def finished(self, result: RuleResult) -> None:
        if self.quiet:
            return
        status = result.apply.status if result.apply is not None else None
        if status is None:
            if result.state is RuleState.CHECKED_NON_COMPLIANT and result.detail.startswith("no automated"):
                self._verdict("Manual remediation required.", self.theme.skipped)
        elif status is ApplyStatus.SKIPPED:
            self._verdict("Skipped by user.", self.theme.skipped)
        elif status is ApplyStatus.CANCELED:
            self._verdict("Canceled by user.", self.theme.canceled)
        elif result.state is RuleState.REVERIFIED_COMPLIANT:
            self._verdict("Successfully applied.", self.theme.applied)
            self._backups(result)
        elif result.state is RuleState.REVERIFIED_PENDING:
            self._verdict("Pending (reboot required).", self.theme.pending)
            self._backups(result)
        else:
            self._verdict(f"Failed to apply: {result.detail}", self.theme.failed)
            if result.recheck is not None and not result.recheck.passed:
                self._print_evidence(result.recheck)
        self.console.print()

    # ── Summary ────────────────────────────────────────────────────────────

    def summary(self, summary: RunSummary) -> None:
        counts = summary.counts
        parts = [
            ("compliant", counts[RuleState.CHECKED_COMPLIANT], self.theme.compliant),
            ("fixed", counts[RuleState.REVERIFIED_COMPLIANT], self.theme.applied),
            ("pending reboot", counts[RuleState.REVERIFIED_PENDING], self.theme.pending),
            ("non-compliant", counts[RuleState.CHECKED_NON_COMPLIANT], self.theme.non_compliant),
            ("indeterminate", counts[RuleState.CHECKED_INDETERMINATE], self.theme.indeterminate),
            ("failed", counts[RuleState.REVERIFIED_FAILED], self.theme.failed),
            ("skipped", counts[RuleState.SKIPPED], self.theme.skipped),
            ("canceled", counts[RuleState.CANCELED], self.theme.canceled),
        ]
        text = Text(f"{len(summary.results)} rule(s): ")
        shown = [(label, n, style) for label, n, style in parts if n]
        for i, (label, n, style) in enumerate(shown):
            if i:
                text.append(", ")
            text.append(f"{n} {label}", style=style)
        self.console.rule("Summary")
        self.console.print(text)

    # ── Helpers ────────────────────────────────────────────────────────────

    def _check_verdict(self, cr: CheckResult) -> tuple[str, str]:
        if cr.status is Status.COMPLIANT:
            return f"Compliant: {cr.detail}" if cr.detail else "Compliant", self.theme.compliant
        if cr.status is Status.NON_COMPLIANT:
            return f"Non-compliant: {cr.detail}" if cr.detail else "Non-compliant", self.theme.non_compliant
        return f"Indeterminate: {cr.reason}", self.theme.indeterminate

    def _print_evidence(self, cr: CheckResult) -> None:
        for line, kind in evidence_lines(cr):
            style = self.theme.evidence if kind is EvidenceKind.MATCH else self.theme.missing
            self.console.print(Text("  " + line, style=style))

    def _verdict(self, text: str, style: str) -> None:
        self.console.print(Text("  " + text, style=style))

    def _backups(self, result: RuleResult) -> None:
        for b in result.apply.backups:
            self.console.print(Text(f"  backup: {b.backup_path}", style=self.theme.skipped))
