"""Config targets: one predicate object shared by check and remediation.

A ``ConfigTarget`` is built from a rule's ``check`` mapping. The check
handler evaluates it against the current file; the patcher writes the
value it describes and then evaluates the very same object against the
result. There is no second copy of the predicate to drift.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from twgcb import parsing
from twgcb._types import CheckResult, Evidence
from twgcb.facts import FileStatus

if TYPE_CHECKING:
    from twgcb.facts import ConfigLines


# ── Comparator support ─────────────────────────────────────────────────────

VALID_COMPARATORS = frozenset({">=", "<=", ">", "<", "==", "in"})


def compare_values(actual: str, expected, comparator: str) -> bool:
    """Compare actual value against expected using the specified comparator.

    For "==" comparator, performs case-insensitive string comparison.
    For "in", ``expected`` is a list (or comma-separated string) of
    acceptable values. For numeric comparators (>=, <=, >, <), attempts
    numeric comparison and fails closed on non-numeric input.

    Args:
        actual: The value found in the config file.
        expected: The expected value from the rule.
        comparator: One of ">=", "<=", ">", "<", "==", "in".

    Returns:
        True if the comparison succeeds.

    """
    if comparator == "in":
        choices = expected if isinstance(expected, (list, tuple)) else str(expected).split(",")
        return actual.lower() in {str(c).strip().lower() for c in choices}

    expected = str(expected)
    if comparator == "==":
        return actual.lower() == expected.lower()

    try:
        actual_num = float(actual)
        expected_num = float(expected)
    except ValueError:
        return False

    comparisons = {
        ">=": actual_num >= expected_num,
        "<=": actual_num <= expected_num,
        ">": actual_num > expected_num,
        "<": actual_num < expected_num,
    }
    return comparisons.get(comparator, False)


def format_comparison_detail(key: str, actual: str, expected, comparator: str, passed: bool) -> str:
    """Format the detail message for a comparison result.

    Args:
        key: Config key name.
        actual: Actual value found.
        expected: Expected value.
        comparator: Comparator used.
        passed: Whether the check passed.

    Returns:
        Formatted detail string.

    """
    if isinstance(expected, (list, tuple)):
        expected = ",".join(str(e) for e in expected)
    if passed:
        if comparator == "==":
            return f"{key}={actual}"
        return f"{key}={actual} ({comparator} {expected})"
    if comparator == "==":
        return f"{key}={actual} (expected {expected})"
    return f"{key}={actual} (expected {comparator} {expected})"


# ── Target ─────────────────────────────────────────────────────────────────


class TargetKind(str, Enum):
    KEY_VALUE = "key_value"
    KEY_ABSENT = "key_absent"
    LINE_PRESENT = "line_present"
    LINE_ABSENT = "line_absent"


@dataclass(frozen=True)
class ConfigTarget:
    """A file-level compliance predicate.

    Attributes:
        path: Absolute file path (mapped under the session root on use).
        kind: What the predicate asserts about the file.
        key: Config key for KEY_VALUE / KEY_ABSENT.
        expected: Expected value, or list of values for ``in``.
        comparator: Comparison applied to every active assignment.
        separator: None accepts ``key value`` and ``key=value``; "=" or
            " " pins one style. Also the style used when writing.
        lines: Required lines (LINE_PRESENT) or regexes (LINE_ABSENT).
        flags: Compare LINE_PRESENT lines as flag sets (audit rules).
        bounds: ``(comparator, expected)`` pairs a KEY_VALUE assignment
            must all satisfy. When set, they replace ``expected`` and
            ``comparator`` for acceptance; ``expected`` is still the value
            written.

    """

    path: str
    kind: TargetKind
    key: str = ""
    expected: object = None
    comparator: str = "=="
    separator: str | None = None
    lines: tuple[str, ...] = field(default_factory=tuple)
    flags: bool = False
    bounds: tuple[tuple[str, object], ...] = ()

    # -- construction --------------------------------------------------

    @classmethod
    def from_check(cls, c: dict) -> ConfigTarget:
        """Build a target from a check definition.

        Args:
            c: Check definition. ``method`` selects the kind:
                config_value, config_absent, line_present, line_absent,
                audit_rules.

        Raises:
            ValueError: Unknown method or comparator.

        """
        method = c.get("method", "")
        comparator = c.get("comparator", "==")
        if comparator not in VALID_COMPARATORS:
            raise ValueError(
                f"Invalid comparator '{comparator}' (must be one of: {', '.join(sorted(VALID_COMPARATORS))})"
            )
        if method == "config_value":
            return cls(
                path=c["path"],
                kind=TargetKind.KEY_VALUE,
                key=c["key"],
                expected=c["expected"],
                comparator=comparator,
                separator=c.get("separator"),
            )
        if method == "config_absent":
            return cls(path=c["path"], kind=TargetKind.KEY_ABSENT, key=c["key"], separator=c.get("separator"))
        if method in ("line_present", "audit_rules"):
            return cls(
                path=c["path"],
                kind=TargetKind.LINE_PRESENT,
                lines=tuple(_as_list(c.get("lines", c.get("line")))),
                flags=method == "audit_rules" or bool(c.get("flags", False)),
            )
        if method == "line_absent":
            return cls(path=c["path"], kind=TargetKind.LINE_ABSENT, lines=tuple(_as_list(c.get("patterns", c.get("pattern")))))
        raise ValueError(f"No config target for check method: {method}")

    # -- predicate -----------------------------------------------------

    def accepts(self, value: str) -> bool:
        """True if ``value`` satisfies the comparator (or every bound) for this key."""
        if self.bounds:
            return all(compare_values(value, expected, comparator) for comparator, expected in self.bounds)
        return compare_values(value, self.expected, self.comparator)

    def key_matcher(self) -> parsing.Matcher:
        return parsing.key_matcher(self.key, self.separator)

    def line_matcher(self, line: str) -> parsing.Matcher:
        if self.flags:
            return parsing.contains_flags(line)
        return parsing.exact_line(line)

    def write_value(self) -> str:
        """Value written by patchers; the boundary value for range comparators."""
        if isinstance(self.expected, (list, tuple)):
            return str(self.expected[0])
        return str(self.expected)

    def evaluate(self, lines: list[str]) -> tuple[bool, list[Evidence], str]:
        """Evaluate the predicate over file lines.

        Returns:
            ``(passed, evidence, detail)``.

        """
        if self.kind is TargetKind.KEY_VALUE:
            return self._eval_key_value(lines)
        if self.kind is TargetKind.KEY_ABSENT:
            found = parsing.scan(lines, self.key_matcher())
            if found:
                return False, self._hits(found), f"{self.key} found in {self.path} (should be absent)"
            return True, [Evidence.no_match(self.path)], f"{self.key} not found in {self.path} (as required)"
        if self.kind is TargetKind.LINE_PRESENT:
            return self._eval_lines_present(lines)
        return self._eval_lines_absent(lines)

    def check(self, config: ConfigLines) -> CheckResult:
        """Turn a file read into a CheckResult.

        A missing file fails every presence predicate and satisfies every
        absence predicate. An unreadable file is always indeterminate.
        """
        if config.status is FileStatus.PERMISSION_DENIED:
            return CheckResult.indeterminate(f"permission denied: {self.path}", [Evidence.denied(self.path)])
        if config.status is FileStatus.MISSING:
            if self.kind in (TargetKind.KEY_ABSENT, TargetKind.LINE_ABSENT):
                return CheckResult.ok(f"{self.path} absent", [Evidence.missing(self.path)])
            return CheckResult.fail(f"{self.path} not found", [Evidence.missing(self.path)])
        passed, evidence, detail = self.evaluate(config.lines)
        return CheckResult.ok(detail, evidence) if passed else CheckResult.fail(detail, evidence)

    # -- internals -----------------------------------------------------

    def _hits(self, found: list[tuple[int, str]]) -> list[Evidence]:
        return [Evidence(self.path, line.rstrip("\n"), n) for n, line in found]

    def _eval_key_value(self, lines: list[str]) -> tuple[bool, list[Evidence], str]:
        values = parsing.key_values(lines, self.key, self.separator)
        if not values:
            return False, [Evidence.no_match(self.path)], f"{self.key} not found in {self.path}"
        evidence = [Evidence(self.path, line.rstrip("\n"), n) for n, line, _ in values]
        bad = [v for _, _, v in values if not self.accepts(v)]
        actual = bad[0] if bad else values[-1][2]
        passed = not bad
        comparator, expected = self.comparator, self.expected
        if bad and self.bounds:
            comparator, expected = next((c, e) for c, e in self.bounds if not compare_values(actual, e, c))
        return passed, evidence, format_comparison_detail(self.key, actual, expected, comparator, passed)

    def _eval_lines_present(self, lines: list[str]) -> tuple[bool, list[Evidence], str]:
        evidence: list[Evidence] = []
        missing = []
        for want in self.lines:
            found = parsing.scan(lines, self.line_matcher(want))
            if found:
                evidence.extend(self._hits(found[:1]))
            else:
                missing.append(want)
                evidence.append(Evidence.no_match(self.path, want))
        if missing:
            return False, evidence, f"{len(missing)} of {len(self.lines)} required lines missing in {self.path}"
        return True, evidence, f"all {len(self.lines)} required lines present in {self.path}"

    def _eval_lines_absent(self, lines: list[str]) -> tuple[bool, list[Evidence], str]:
        matcher = parsing.all_of(parsing.active, parsing.any_of(*(parsing.regex(p) for p in self.lines)))
        found = parsing.scan(lines, matcher)
        if found:
            return False, self._hits(found), f"{len(found)} forbidden lines in {self.path}"
        return True, [Evidence.no_match(self.path)], f"no forbidden lines in {self.path}"


def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


# ── Module arguments ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ArgSpec:
    """A required module argument: ``enforce_for_root``, ``deny=5``, ``remember>=3``."""

    name: str
    comparator: str | None = None
    value: str | None = None

    @classmethod
    def parse(cls, spec: str) -> ArgSpec:
        m = re.match(r"^([\w.-]+)\s*(>=|<=|==|=|>|<)?\s*(\S*)$", spec.strip())
        if m is None:
            raise ValueError(f"Invalid module argument: {spec!r}")
        name, op, value = m.groups()
        if op is None:
            return cls(name)
        return cls(name, "==" if op == "=" else op, value)

    def current(self, tokens: list[str]) -> str | None:
        """Value of this argument among ``tokens``; "" for a bare flag, None if absent."""
        found = None
        for tok in tokens:
            if tok == self.name:
                found = ""
            elif tok.startswith(self.name + "="):
                found = tok.split("=", 1)[1]
        return found

    def satisfied_by(self, tokens: list[str]) -> bool:
        actual = self.current(tokens)
        if actual is None:
            return False
        if self.comparator is None:
            return True
        return compare_values(actual, self.value, self.comparator)

    def token(self) -> str:
        """Token written to make the argument compliant."""
        return self.name if self.value is None else f"{self.name}={self.value}"

    def __str__(self) -> str:
        if self.comparator is None:
            return self.name
        op = "=" if self.comparator == "==" else self.comparator
        return f"{self.name}{op}{self.value}"


def pam_line_matcher(module: str, pam_type: str | None = None) -> parsing.Matcher:
    """Matcher for active PAM stack lines calling ``module`` (``-type`` prefixes allowed)."""

    def match(line: str) -> bool:
        if not parsing.active(line):
            return False
        tokens = parsing.tokenize(line)
        if pam_type is not None and tokens[0].lstrip("-") != pam_type:
            return False
        called = next((t for t in tokens[1:] if t.endswith(".so")), "")
        return called == module or called.endswith("/" + module)

    return match
