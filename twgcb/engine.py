"""Rule engine: drives each rule through check, prompt, apply, and re-verify.

Every rule moves through a small state machine::

    UNCHECKED -> CHECKED_{COMPLIANT|NON_COMPLIANT|INDETERMINATE}
              -> [PROMPTED] -> APPLIED | SKIPPED | CANCELED
              -> REVERIFIED_{COMPLIANT|FAILED|PENDING}

Rules run strictly one after another; Cancel stops the run before the
next rule is checked.

Example:
-------
    Check only::

        from twgcb.engine import Engine
        from twgcb.local import LocalSession

        engine = Engine(LocalSession())
        summary = engine.run(rules)
        print(summary.exit_code)

    Apply without prompting::

        engine = Engine(LocalSession(), mode=Mode.ASSUME_YES)
        summary = engine.run(rules, apply=True)

"""

from __future__ import annotations

import logging
import sys
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from twgcb._types import ApplyResult, ApplyStatus, RuleResult, RuleState, Status
from twgcb.errors import UserCanceled, UserDeclined
from twgcb.handlers import run_check, run_remediation
from twgcb.prompt import UserDecision

if TYPE_CHECKING:
    from twgcb._types import Rule
    from twgcb.local import LocalSession

logger = logging.getLogger(__name__)

# ── Exit codes ─────────────────────────────────────────────────────────────

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELED = 2
EXIT_INVALID = 3


class Mode(str, Enum):
    INTERACTIVE = "interactive"
    ASSUME_YES = "assume_yes"
    NO_PROMPT = "no_prompt"


class Prompter(Protocol):
    def ask(self, rule_id: str, title: str) -> UserDecision: ...


class Observer(Protocol):
    """Receives results as the run progresses (the reporter)."""

    def checked(self, result: RuleResult) -> None: ...

    def finished(self, result: RuleResult) -> None: ...


_CHECKED = {
    Status.COMPLIANT: RuleState.CHECKED_COMPLIANT,
    Status.NON_COMPLIANT: RuleState.CHECKED_NON_COMPLIANT,
    Status.INDETERMINATE: RuleState.CHECKED_INDETERMINATE,
}


@dataclass
class RunSummary:
    """Results of one run and the process exit code they imply."""

    results: list[RuleResult] = field(default_factory=list)
    canceled: bool = False

    @property
    def exit_code(self) -> int:
        if self.canceled:
            return EXIT_CANCELED
        if all(r.passed for r in self.results):
            return EXIT_OK
        return EXIT_FAILED

    @property
    def counts(self) -> Counter:
        return Counter(r.state for r in self.results)


class Engine:
    """Runs rules against one session.

    Args:
        session: Local session.
        mode: How non-compliant rules are handled in an apply run.
        prompter: Source of Yes/No/Cancel decisions in interactive mode.
        observer: Notified after each check and at each terminal state.
        backup_keep: Keep at most this many backups per written file.
        is_tty: Whether a terminal is attached; detected from stdin when
            omitted. Interactive mode without one falls back to no-prompt.

    """

    def __init__(
        self,
        session: LocalSession,
        *,
        mode: Mode = Mode.NO_PROMPT,
        prompter: Prompter | None = None,
        observer: Observer | None = None,
        backup_keep: int | None = None,
        is_tty: bool | None = None,
    ):
        self.session = session
        self.prompter = prompter
        self.observer = observer
        self.backup_keep = backup_keep
        if is_tty is None:
            is_tty = sys.stdin.isatty()
        if mode is Mode.INTERACTIVE and prompter is None:
            raise ValueError("interactive mode needs a prompter")
        if mode is Mode.INTERACTIVE and not is_tty:
            logger.warning("no terminal attached; continuing without prompting (no changes will be made)")
            mode = Mode.NO_PROMPT
        self.mode = mode

    # ── State transitions ──────────────────────────────────────────────────

    @staticmethod
    def _transition(result: RuleResult, state: RuleState, detail: str = "") -> None:
        logger.debug("%s: %s -> %s", result.rule_id, result.state.value, state.value)
        result.state = state
        if detail:
            result.detail = detail

    # ── Per-rule cycle ─────────────────────────────────────────────────────

    def check_rule(self, rule: Rule) -> RuleResult:
        """Evaluate a rule without changing anything."""
        result = RuleResult(rule.id, rule.title, rule.severity, category=rule.category)
        result.check = run_check(self.session, rule.check)
        cr = result.check
        self._transition(result, _CHECKED[cr.status], cr.detail or cr.reason)
        if self.observer is not None:
            self.observer.checked(result)
        return result

    def _confirm(self, rule: Rule) -> None:
        """Ask the operator about one fix.

        Raises:
            UserDeclined: The operator answered No.
            UserCanceled: The operator answered Cancel.

        """
        decision = self.prompter.ask(rule.id, rule.title)
        if decision is UserDecision.NO:
            raise UserDeclined(f"{rule.id}: declined by operator")
        if decision is UserDecision.CANCEL:
            raise UserCanceled(f"{rule.id}: canceled by operator")

    def apply_rule(self, rule: Rule) -> RuleResult:
        """Check a rule and, when non-compliant, remediate and re-check it."""
        result = self.check_rule(rule)
        if result.state is not RuleState.CHECKED_NON_COMPLIANT:
            return result
        if rule.remediation is None:
            result.detail = "no automated remediation available"
            return result
        if self.mode is Mode.NO_PROMPT:
            return result

        if self.mode is Mode.INTERACTIVE:
            self._transition(result, RuleState.PROMPTED)
            try:
                self._confirm(rule)
            except UserDeclined as exc:
                result.apply = ApplyResult(ApplyStatus.SKIPPED, str(exc))
                self._transition(result, RuleState.SKIPPED, "Skipped by user.")
                return result
            except UserCanceled as exc:
                result.apply = ApplyResult(ApplyStatus.CANCELED, str(exc))
                self._transition(result, RuleState.CANCELED, "Canceled by user.")
                return result

        apply = run_remediation(self.session, rule.remediation, check=rule.check, backup_keep=self.backup_keep)
        if rule.reboot_required and apply.status is ApplyStatus.APPLIED and apply.changed:
            apply.status = ApplyStatus.PENDING
        result.apply = apply
        self._transition(result, RuleState.APPLIED, apply.reason)

        result.recheck = run_check(self.session, rule.check)
        if apply.status is ApplyStatus.FAILED:
            self._transition(result, RuleState.REVERIFIED_FAILED, apply.reason)
        elif not result.recheck.passed:
            unmet = result.recheck.detail or result.recheck.reason
            apply.status = ApplyStatus.FAILED
            apply.reason = f"PredicateUnmet: {unmet}"
            self._transition(result, RuleState.REVERIFIED_FAILED, unmet)
        elif apply.status is ApplyStatus.PENDING:
            self._transition(result, RuleState.REVERIFIED_PENDING)
        else:
            self._transition(result, RuleState.REVERIFIED_COMPLIANT)
        return result

    # ── Runs ───────────────────────────────────────────────────────────────

    def run(self, rules: list[Rule], *, apply: bool = False) -> RunSummary:
        """Drive every rule to a terminal state, stopping on Cancel.

        Args:
            rules: Rules in execution order.
            apply: Remediate non-compliant rules according to ``mode``.

        Returns:
            RunSummary; its ``exit_code`` is 0 when every rule ended
            compliant (or pending reboot), 2 when canceled, else 1.

        """
        summary = RunSummary()
        for rule in rules:
            result = self.apply_rule(rule) if apply else self.check_rule(rule)
            summary.results.append(result)
            if self.observer is not None:
                self.observer.finished(result)
            if result.state is RuleState.CANCELED:
                logger.info("run canceled at %s; %d rule(s) not evaluated", rule.id, len(rules) - len(summary.results))
                summary.canceled = True
                break
        return summary
