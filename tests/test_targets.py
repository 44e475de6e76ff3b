"""
Unit tests for config targets and value comparison.
"""

import pytest

from twgcb._types import EvidenceKind, Status
from twgcb.facts import ConfigLines, FileStatus
from twgcb.targets import (
    ArgSpec,
    ConfigTarget,
    TargetKind,
    compare_values,
    format_comparison_detail,
    pam_line_matcher,
)


# ---------------------------------------------------------------------------
# compare_values
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestCompareValues:
    """Test comparator semantics."""

    @pytest.mark.parametrize(
        "actual, expected, comparator, result",
        [
            ("7", "1", ">=", True),
            ("0", "1", ">=", False),
            ("90", "90", "<=", True),
            ("-1", "30", "<=", True),
            ("yes", "YES", "==", True),
            ("sha512", "SHA512", "==", True),
            ("abc", "1", ">=", False),
            ("1", "abc", "<=", False),
            ("2", "1", ">", True),
            ("1", "1", "<", False),
        ],
    )
    def test_scalar_comparators(self, actual, expected, comparator, result) -> None:
        assert compare_values(actual, expected, comparator) is result

    def test_in_with_list(self) -> None:
        assert compare_values("yes", ["True", "1", "yes"], "in")
        assert not compare_values("no", ["True", "1", "yes"], "in")

    def test_in_with_comma_string(self) -> None:
        assert compare_values("Persistent", "auto,persistent", "in")


@pytest.mark.unit
class TestFormatComparisonDetail:
    """Test the detail strings shown after each verdict."""

    def test_failed_range(self) -> None:
        assert format_comparison_detail("PASS_MIN_DAYS", "0", "1", ">=", False) == "PASS_MIN_DAYS=0 (expected >= 1)"

    def test_failed_equality(self) -> None:
        assert format_comparison_detail("Storage", "auto", "persistent", "==", False) == (
            "Storage=auto (expected persistent)"
        )

    def test_passed(self) -> None:
        assert format_comparison_detail("minlen", "14", "12", ">=", True) == "minlen=14 (>= 12)"
        assert format_comparison_detail("Compress", "yes", "yes", "==", True) == "Compress=yes"


# ---------------------------------------------------------------------------
# ConfigTarget
# ---------------------------------------------------------------------------
def _login_defs_target(**overrides) -> ConfigTarget:
    check = {
        "method": "config_value",
        "path": "/etc/login.defs",
        "key": "PASS_MIN_DAYS",
        "expected": "1",
        "comparator": ">=",
        "separator": " ",
        **overrides,
    }
    return ConfigTarget.from_check(check)


@pytest.mark.unit
class TestConfigTargetConstruction:
    """Test ConfigTarget.from_check."""

    def test_config_value(self) -> None:
        target = _login_defs_target()
        assert target.kind is TargetKind.KEY_VALUE
        assert target.separator == " "

    def test_audit_rules_compare_as_flags(self) -> None:
        target = ConfigTarget.from_check(
            {"method": "audit_rules", "path": "/etc/audit/rules.d/50-identity.rules", "lines": ["-w /etc/group -p wa"]}
        )
        assert target.kind is TargetKind.LINE_PRESENT
        assert target.flags

    def test_line_absent_single_pattern(self) -> None:
        target = ConfigTarget.from_check({"method": "line_absent", "path": "/etc/default/grub", "pattern": "selinux=0"})
        assert target.lines == ("selinux=0",)

    def test_invalid_comparator(self) -> None:
        with pytest.raises(ValueError, match="Invalid comparator"):
            _login_defs_target(comparator="~=")

    def test_unknown_method(self) -> None:
        with pytest.raises(ValueError):
            ConfigTarget.from_check({"method": "sysctl_value", "path": "/x"})

    def test_write_value_takes_first_choice(self) -> None:
        target = ConfigTarget.from_check(
            {"method": "config_value", "path": "/etc/dnf/dnf.conf", "key": "gpgcheck", "expected": ["1", "True"], "comparator": "in"}
        )
        assert target.write_value() == "1"


@pytest.mark.unit
class TestConfigTargetCheck:
    """Test ConfigTarget.check over file reads."""

    def test_missing_file_fails_presence(self) -> None:
        result = _login_defs_target().check(ConfigLines("/etc/login.defs", status=FileStatus.MISSING))
        assert result.status is Status.NON_COMPLIANT
        assert result.evidence[0].kind is EvidenceKind.FILE_MISSING

    def test_missing_file_passes_absence(self) -> None:
        target = ConfigTarget.from_check({"method": "config_absent", "path": "/etc/pam.d/su", "key": "nullok"})
        result = target.check(ConfigLines("/etc/pam.d/su", status=FileStatus.MISSING))
        assert result.status is Status.COMPLIANT

    def test_denied_is_indeterminate(self) -> None:
        result = _login_defs_target().check(ConfigLines("/etc/login.defs", status=FileStatus.PERMISSION_DENIED))
        assert result.status is Status.INDETERMINATE
        assert result.evidence[0].kind is EvidenceKind.PERMISSION_DENIED

    def test_violating_value_with_line_evidence(self) -> None:
        lines = ["# comment", "PASS_MIN_DAYS 0"]
        result = _login_defs_target().check(ConfigLines("/etc/login.defs", lines))
        assert result.status is Status.NON_COMPLIANT
        assert result.detail == "PASS_MIN_DAYS=0 (expected >= 1)"
        assert result.evidence[0].line_no == 2
        assert result.evidence[0].content == "PASS_MIN_DAYS 0"

    def test_later_duplicate_cannot_hide_violation(self) -> None:
        lines = ["PASS_MIN_DAYS 7", "PASS_MIN_DAYS 0"]
        result = _login_defs_target().check(ConfigLines("/etc/login.defs", lines))
        assert result.status is Status.NON_COMPLIANT
        assert len(result.evidence) == 2

    def test_stricter_value_passes(self) -> None:
        result = _login_defs_target().check(ConfigLines("/etc/login.defs", ["PASS_MIN_DAYS 7"]))
        assert result.status is Status.COMPLIANT

    def test_missing_key(self) -> None:
        result = _login_defs_target().check(ConfigLines("/etc/login.defs", ["PASS_MAX_DAYS 90"]))
        assert result.status is Status.NON_COMPLIANT
        assert result.evidence[0].kind is EvidenceKind.NO_MATCH

    def test_lines_present_reports_each_missing_line(self) -> None:
        target = ConfigTarget.from_check(
            {"method": "line_present", "path": "/etc/rsyslog.conf", "lines": ["a b", "c d"]}
        )
        result = target.check(ConfigLines("/etc/rsyslog.conf", ["a    b"]))
        assert result.status is Status.NON_COMPLIANT
        assert [e.kind for e in result.evidence] == [EvidenceKind.MATCH, EvidenceKind.NO_MATCH]
        assert result.evidence[1].content == "c d"

    def test_lines_absent_ignores_comments(self) -> None:
        target = ConfigTarget.from_check(
            {"method": "line_absent", "path": "/etc/default/grub", "patterns": [r"selinux=0"]}
        )
        ok = target.check(ConfigLines("/etc/default/grub", ['# GRUB_CMDLINE_LINUX="selinux=0"']))
        bad = target.check(ConfigLines("/etc/default/grub", ['GRUB_CMDLINE_LINUX="quiet selinux=0"']))
        assert ok.status is Status.COMPLIANT
        assert bad.status is Status.NON_COMPLIANT


# ---------------------------------------------------------------------------
# PAM arguments
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestArgSpec:
    """Test module argument specs."""

    def test_bare_flag(self) -> None:
        arg = ArgSpec.parse("enforce_for_root")
        assert arg.satisfied_by(["password", "requisite", "pam_pwquality.so", "enforce_for_root"])
        assert not arg.satisfied_by(["password", "requisite", "pam_pwquality.so"])
        assert arg.token() == "enforce_for_root"

    def test_bound(self) -> None:
        arg = ArgSpec.parse("remember>=3")
        assert arg.satisfied_by(["remember=5"])
        assert not arg.satisfied_by(["remember=2"])
        assert arg.token() == "remember=3"
        assert str(arg) == "remember>=3"

    def test_equals_means_equality(self) -> None:
        arg = ArgSpec.parse("deny=5")
        assert arg.comparator == "=="
        assert str(arg) == "deny=5"

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            ArgSpec.parse("=5")


@pytest.mark.unit
class TestPamLineMatcher:
    """Test PAM stack line selection."""

    def test_matches_type_and_module(self) -> None:
        match = pam_line_matcher("pam_faillock.so", "auth")
        assert match("auth        required      pam_faillock.so preauth silent")
        assert not match("account     required      pam_faillock.so")
        assert not match("#auth       required      pam_faillock.so")

    def test_dash_prefixed_type(self) -> None:
        assert pam_line_matcher("pam_systemd.so", "session")("-session optional pam_systemd.so")

    def test_module_by_path(self) -> None:
        assert pam_line_matcher("pam_unix.so")("password sufficient /usr/lib64/security/pam_unix.so sha512")
