"""Result data types for the rule engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from twgcb.patch import Backup


class Status(str, Enum):
    """Outcome of evaluating a compliance predicate."""

    COMPLIANT = "compliant"
    NON_COMPLIANT = "non_compliant"
    INDETERMINATE = "indeterminate"


class EvidenceKind(str, Enum):
    """What a single evidence line says about a target."""

    MATCH = "match"
    NO_MATCH = "no_match"
    FILE_MISSING = "file_missing"
    PERMISSION_DENIED = "permission_denied"
    INFO = "info"


class ApplyStatus(str, Enum):
    """Outcome of one remediation attempt."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    CANCELED = "canceled"
    FAILED = "failed"
    PENDING = "pending"


class RuleState(str, Enum):
    """Position of a rule in the check/prompt/apply/re-verify cycle."""

    UNCHECKED = "unchecked"
    CHECKED_COMPLIANT = "checked_compliant"
    CHECKED_NON_COMPLIANT = "checked_non_compliant"
    CHECKED_INDETERMINATE = "checked_indeterminate"
    PROMPTED = "prompted"
    APPLIED = "applied"
    SKIPPED = "skipped"
    CANCELED = "canceled"
    REVERIFIED_COMPLIANT = "reverified_compliant"
    REVERIFIED_FAILED = "reverified_failed"
    REVERIFIED_PENDING = "reverified_pending"

    @property
    def is_success(self) -> bool:
        return self in SUCCESS_STATES


SUCCESS_STATES = frozenset(
    {
        RuleState.CHECKED_COMPLIANT,
        RuleState.REVERIFIED_COMPLIANT,
        RuleState.REVERIFIED_PENDING,
    }
)


@dataclass(frozen=True)
class Evidence:
    """One line of diagnostic output backing a check verdict."""

    path: str
    content: str = ""
    line_no: int | None = None
    kind: EvidenceKind = EvidenceKind.MATCH

    @classmethod
    def missing(cls, path: str) -> Evidence:
        return cls(path=path, kind=EvidenceKind.FILE_MISSING)

    @classmethod
    def denied(cls, path: str) -> Evidence:
        return cls(path=path, kind=EvidenceKind.PERMISSION_DENIED)

    @classmethod
    def no_match(cls, path: str, content: str = "") -> Evidence:
        return cls(path=path, content=content, kind=EvidenceKind.NO_MATCH)

    @classmethod
    def info(cls, content: str, path: str = "") -> Evidence:
        return cls(path=path, content=content, kind=EvidenceKind.INFO)


@dataclass
class CheckResult:
    """Outcome of a single check."""

    status: Status
    detail: str = ""
    reason: str = ""  # set when status is INDETERMINATE
    evidence: list[Evidence] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status is Status.COMPLIANT

    @classmethod
    def ok(cls, detail: str = "", evidence: list[Evidence] | None = None) -> CheckResult:
        return cls(Status.COMPLIANT, detail, evidence=evidence or [])

    @classmethod
    def fail(cls, detail: str = "", evidence: list[Evidence] | None = None) -> CheckResult:
        return cls(Status.NON_COMPLIANT, detail, evidence=evidence or [])

    @classmethod
    def indeterminate(cls, reason: str, evidence: list[Evidence] | None = None) -> CheckResult:
        return cls(Status.INDETERMINATE, reason, reason=reason, evidence=evidence or [])


@dataclass
class StepResult:
    """Outcome of a single remediation step."""

    step_index: int
    mechanism: str
    success: bool
    detail: str
    changed: bool = False
    pending: bool = False  # written, but only effective after reboot
    backups: list[Backup] = field(default_factory=list)


@dataclass
class ApplyResult:
    """Outcome of running a rule's remediation."""

    status: ApplyStatus
    reason: str = ""
    step_results: list[StepResult] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return any(sr.changed for sr in self.step_results)

    @property
    def backups(self) -> list[Backup]:
        return [b for sr in self.step_results for b in sr.backups]


@dataclass(frozen=True)
class Rule:
    """One baseline control item, immutable once loaded."""

    id: str
    title: str
    check: dict
    remediation: dict | None = None
    severity: str = "medium"
    category: str = ""
    targets: tuple[str, ...] = ()
    description: str = ""
    reboot_required: bool = False


@dataclass
class RuleResult:
    """Outcome of driving one rule to a terminal state."""

    rule_id: str
    title: str
    severity: str
    state: RuleState = RuleState.UNCHECKED
    check: CheckResult | None = None
    recheck: CheckResult | None = None
    apply: ApplyResult | None = None
    detail: str = ""
    category: str = ""

    @property
    def passed(self) -> bool:
        return self.state.is_success

    @property
    def remediated(self) -> bool:
        return self.apply is not None and self.apply.status in (ApplyStatus.APPLIED, ApplyStatus.PENDING)
