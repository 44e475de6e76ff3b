"""
Unit tests for fact collectors.

File facts are read from a temporary root; runtime facts come from
scripted command output.
"""

import os

import pytest

from twgcb import facts
from twgcb.errors import PermissionDenied
from twgcb.facts import FileStatus

skip_if_root = pytest.mark.skipif(os.geteuid() == 0, reason="root bypasses file permissions")


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestReadConfigLines:
    """Test file reads keep absent apart from unreadable."""

    def test_present(self, session, write) -> None:
        write("/etc/login.defs", "PASS_MIN_DAYS 1\nPASS_MAX_DAYS 90\n")
        config = facts.read_config_lines(session, "/etc/login.defs")
        assert config.present
        assert config.lines == ["PASS_MIN_DAYS 1", "PASS_MAX_DAYS 90"]

    def test_missing(self, session) -> None:
        config = facts.read_config_lines(session, "/etc/login.defs")
        assert config.status is FileStatus.MISSING
        assert config.lines == []

    def test_parent_is_a_file(self, session, write) -> None:
        write("/etc/audit", "not a directory\n")
        assert facts.read_config_lines(session, "/etc/audit/auditd.conf").status is FileStatus.MISSING

    @skip_if_root
    def test_permission_denied(self, session, write) -> None:
        write("/etc/shadow", "root:*:19000::::::\n", mode=0o000)
        assert facts.read_config_lines(session, "/etc/shadow").status is FileStatus.PERMISSION_DENIED


@pytest.mark.unit
class TestFileStat:
    """Test file_stat and expand_paths."""

    def test_mode_and_owner(self, session, write) -> None:
        write("/etc/crontab", "", mode=0o600)
        st = facts.file_stat(session, "/etc/crontab")
        assert st.status is FileStatus.PRESENT
        assert st.mode == 0o600
        assert st.owner
        assert not st.is_dir

    def test_directory(self, session, write) -> None:
        write("/var/log/audit/audit.log", "")
        assert facts.file_stat(session, "/var/log/audit").is_dir

    def test_missing(self, session) -> None:
        assert facts.file_stat(session, "/etc/cron.allow").status is FileStatus.MISSING

    def test_expand_glob(self, session, write) -> None:
        write("/etc/audit/rules.d/50-identity.rules", "")
        write("/etc/audit/rules.d/10-base.rules", "")
        write("/etc/audit/rules.d/notes.txt", "")
        assert facts.expand_paths(session, "/etc/audit/rules.d/*.rules") == [
            "/etc/audit/rules.d/10-base.rules",
            "/etc/audit/rules.d/50-identity.rules",
        ]

    def test_plain_path_returned_even_if_missing(self, session) -> None:
        assert facts.expand_paths(session, "/etc/at.allow") == ["/etc/at.allow"]


# ---------------------------------------------------------------------------
# Kernel modules and mounts
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestModules:
    """Test module load state and modprobe configuration."""

    def test_loaded_from_proc(self, session, write) -> None:
        write("/proc/modules", "squashfs 61440 0 - Live 0x0\nxfs 1589248 2 - Live 0x0\n")
        assert facts.module_loaded(session, "squashfs")
        assert not facts.module_loaded(session, "cramfs")
        assert not session.commands

    def test_lsmod_fallback(self, session) -> None:
        session.on("lsmod", "Module                  Size  Used by\nusb_storage 81920 0\n")
        assert facts.module_loaded(session, "usb-storage")
        assert session.ran("lsmod")

    def test_modprobe_install_true(self, session) -> None:
        session.on("modprobe -n -v cramfs", "install /bin/true")
        disabled, out = facts.modprobe_disabled(session, "cramfs")
        assert disabled
        assert out == "install /bin/true"

    def test_modprobe_would_load(self, session) -> None:
        session.on("modprobe -n -v udf", "insmod /lib/modules/4.18.0/kernel/fs/udf/udf.ko.xz")
        assert facts.modprobe_disabled(session, "udf")[0] is False


@pytest.mark.unit
class TestMounts:
    """Test current mounts and fstab entries."""

    def test_proc_mounts(self, session, write) -> None:
        write("/proc/self/mounts", "tmpfs /tmp tmpfs rw,nosuid,nodev 0 0\n/dev/sda1 / xfs rw 0 0\n")
        entry = facts.mount_for_target(session, "/tmp")
        assert entry.fstype == "tmpfs"
        assert entry.options == ["rw", "nosuid", "nodev"]

    def test_findmnt_fallback(self, session) -> None:
        session.on("findmnt", "tmpfs /dev/shm tmpfs rw,nosuid,nodev,noexec\n/dev/sda1 / xfs rw")
        assert facts.mount_for_target(session, "/dev/shm").options[-1] == "noexec"
        assert facts.mount_for_target(session, "/tmp") is None

    def test_last_stacked_mount_wins(self, session, write) -> None:
        write("/proc/self/mounts", "/dev/sda2 /tmp xfs rw 0 0\ntmpfs /tmp tmpfs rw,nodev 0 0\n")
        assert facts.mount_for_target(session, "/tmp").fstype == "tmpfs"

    def test_mounts_of_type(self, session, write) -> None:
        write("/proc/self/mounts", "/dev/loop0 /mnt/img squashfs ro 0 0\n/dev/sda1 / xfs rw 0 0\n")
        assert [m.target for m in facts.mounts_of_type(session, "squashfs")] == ["/mnt/img"]

    def test_fstab_line_numbers(self, session, write) -> None:
        write(
            "/etc/fstab",
            "# /etc/fstab\n\n/dev/mapper/rhel-root / xfs defaults 0 0\n/dev/mapper/rhel-home /home xfs defaults,nodev 0 0\n",
        )
        entries = facts.fstab_entries(session)
        assert [(e.target, e.line_no) for e in entries] == [("/", 3), ("/home", 4)]


# ---------------------------------------------------------------------------
# Services, packages, sysctl
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestUnitState:
    """Test systemctl output interpretation."""

    def test_enabled_active(self, session) -> None:
        session.on("is-enabled auditd", "enabled").on("is-active auditd", "active")
        state = facts.unit_state(session, "auditd")
        assert state.exists and state.enabled and state.active
        assert not state.masked

    def test_masked(self, session) -> None:
        session.on("is-enabled nftables", "masked", exit_code=1).on("is-active nftables", "inactive", exit_code=3)
        state = facts.unit_state(session, "nftables")
        assert state.exists
        assert state.masked
        assert not state.enabled

    def test_not_found(self, session) -> None:
        session.on(
            "is-enabled tftp.socket",
            "Failed to get unit file state for tftp.socket: No such file or directory",
            exit_code=1,
        )
        assert not facts.unit_state(session, "tftp.socket").exists

    def test_static_counts_as_enabled(self, session) -> None:
        session.on("is-enabled systemd-journald", "static")
        assert facts.unit_state(session, "systemd-journald").enabled


@pytest.mark.unit
class TestRuntimeFacts:
    """Test package, sysctl, audit and authselect queries."""

    def test_package_installed(self, session) -> None:
        session.on("rpm -q aide", "")
        assert facts.package_installed(session, "aide")
        assert not facts.package_installed(session, "telnet-server")

    def test_sysctl_normalizes_whitespace(self, session) -> None:
        session.on("sysctl -n net.ipv4.ip_local_port_range", "32768\t60999")
        assert facts.sysctl_value(session, "net.ipv4.ip_local_port_range") == "32768 60999"

    def test_sysctl_unknown_key(self, session) -> None:
        assert facts.sysctl_value(session, "net.ipv4.nope") is None

    def test_audit_enabled_state(self, session) -> None:
        session.on("auditctl -s", "enabled 2\nfailure 1\npid 812")
        assert facts.audit_enabled_state(session) == 2

    def test_audit_state_unavailable(self, session) -> None:
        assert facts.audit_enabled_state(session) is None

    def test_authselect_current(self, session) -> None:
        session.on("authselect current --raw", "sssd with-faillock with-mkhomedir")
        assert facts.authselect_current(session) == ("sssd", ["with-faillock", "with-mkhomedir"])
        assert facts.authselect_profile(session) == "sssd"


@pytest.mark.unit
class TestAuditRuleMatches:
    """Test audit rule lookups across a rules directory."""

    def test_finds_equivalent_line_in_any_file(self, session, write) -> None:
        write("/etc/audit/rules.d/10-base.rules", "-D\n-b 8192\n")
        write("/etc/audit/rules.d/50-identity.rules", "# identity\n-w /etc/passwd -p aw -F key=identity\n")
        matches = facts.audit_rule_matches(session, "/etc/audit/rules.d", "-w /etc/passwd -p wa -k identity")
        assert len(matches) == 1
        assert matches[0].path == "/etc/audit/rules.d/50-identity.rules"
        assert matches[0].line_no == 2

    def test_single_file(self, session, write) -> None:
        write("/etc/audit/audit.rules", "-e 2\n")
        assert facts.audit_rule_matches(session, "/etc/audit/audit.rules", "-e 2")

    @skip_if_root
    def test_unreadable_file_raises(self, session, write) -> None:
        write("/etc/audit/rules.d/50-identity.rules", "-w /etc/passwd -p wa\n", mode=0o000)
        with pytest.raises(PermissionDenied):
            facts.audit_rule_matches(session, "/etc/audit/rules.d", "-w /etc/passwd -p wa")

    @skip_if_root
    def test_unreadable_directory_raises(self, session, write) -> None:
        rules_d = write("/etc/audit/rules.d/50-identity.rules", "-w /etc/passwd -p wa\n").parent
        os.chmod(rules_d, 0o000)
        try:
            with pytest.raises(PermissionDenied, match="/etc/audit/rules.d"):
                facts.audit_rule_matches(session, "/etc/audit/rules.d", "-w /etc/passwd -p wa")
        finally:
            os.chmod(rules_d, 0o755)
