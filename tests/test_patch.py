"""
Unit tests for file patchers.

Patchers must converge in one call, leave bytes they do not own alone,
and back up every file they change.
"""

import errno
import os
from datetime import datetime, timezone

import pytest

from twgcb import parsing, patch
from twgcb.errors import PatchError, PermissionDenied
from twgcb.targets import ConfigTarget

skip_if_root = pytest.mark.skipif(os.geteuid() == 0, reason="root bypasses file permissions")

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def frozen_clock(monkeypatch):
    monkeypatch.setattr(patch, "_utcnow", lambda: FIXED_NOW)
    return FIXED_NOW


def _pass_min_days() -> ConfigTarget:
    return ConfigTarget.from_check(
        {
            "method": "config_value",
            "path": "/etc/login.defs",
            "key": "PASS_MIN_DAYS",
            "expected": "1",
            "comparator": ">=",
            "separator": " ",
        }
    )


# ---------------------------------------------------------------------------
# set_key_value
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestSetKeyValue:
    """Test key/value convergence."""

    def test_creates_absent_file(self, session, read) -> None:
        result = patch.set_key_value(session, _pass_min_days())
        assert result.changed
        assert result.backup is None
        assert read("/etc/login.defs") == f"{patch.HEADER}\nPASS_MIN_DAYS 1\n"

    def test_rewrites_violating_line_only(self, session, write, read) -> None:
        original = "# PASS_MIN_DAYS 0\nPASS_MIN_DAYS\t0\nPASS_MAX_DAYS 90\n"
        write("/etc/login.defs", original)
        result = patch.set_key_value(session, _pass_min_days())
        assert result.changed
        assert read("/etc/login.defs") == "# PASS_MIN_DAYS 0\nPASS_MIN_DAYS 1\nPASS_MAX_DAYS 90\n"
        with open(result.backup.backup_path) as f:
            assert f.read() == original

    def test_stricter_value_is_kept(self, session, write, read) -> None:
        write("/etc/login.defs", "PASS_MIN_DAYS 7\n")
        result = patch.set_key_value(session, _pass_min_days())
        assert not result.changed
        assert result.detail == "no change needed"
        assert read("/etc/login.defs") == "PASS_MIN_DAYS 7\n"
        assert patch.list_backups(session, "/etc/login.defs") == []

    def test_appends_missing_key_after_unterminated_line(self, session, write, read) -> None:
        write("/etc/login.defs", "UMASK 077")
        patch.set_key_value(session, _pass_min_days())
        assert read("/etc/login.defs") == "UMASK 077\nPASS_MIN_DAYS 1\n"

    def test_preserves_crlf_endings(self, session, write) -> None:
        write("/etc/login.defs", "")
        session.path("/etc/login.defs").write_bytes(b"UMASK 077\r\nPASS_MIN_DAYS 0\r\n")
        patch.set_key_value(session, _pass_min_days())
        assert session.path("/etc/login.defs").read_bytes() == b"UMASK 077\r\nPASS_MIN_DAYS 1\r\n"

    def test_idempotent(self, session, write, read) -> None:
        write("/etc/login.defs", "PASS_MIN_DAYS 0\n")
        assert patch.set_key_value(session, _pass_min_days()).changed
        assert not patch.set_key_value(session, _pass_min_days()).changed

    def test_keeps_equals_style(self, session, write, read) -> None:
        target = ConfigTarget.from_check(
            {"method": "config_value", "path": "/etc/security/faillock.conf", "key": "deny", "expected": "5", "comparator": "<="}
        )
        write("/etc/security/faillock.conf", "  deny = 10\n")
        patch.set_key_value(session, target)
        assert read("/etc/security/faillock.conf") == "  deny = 5\n"

    def test_keeps_file_mode(self, session, write) -> None:
        write("/etc/login.defs", "PASS_MIN_DAYS 0\n", mode=0o600)
        patch.set_key_value(session, _pass_min_days())
        assert session.path("/etc/login.defs").stat().st_mode & 0o7777 == 0o600

    @skip_if_root
    def test_unwritable_directory(self, session, write) -> None:
        write("/etc/login.defs", "PASS_MIN_DAYS 0\n")
        os.chmod(session.path("/etc"), 0o500)
        try:
            with pytest.raises(PermissionDenied):
                patch.set_key_value(session, _pass_min_days())
        finally:
            os.chmod(session.path("/etc"), 0o755)


# ---------------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestLines:
    """Test ensure_lines and remove_matching_lines."""

    def test_ensure_lines_appends_only_missing(self, session, write, read) -> None:
        write("/etc/rsyslog.conf", "module(load=\"imuxsock\")\nauthpriv.*   /var/log/secure\n")
        result = patch.ensure_lines(session, "/etc/rsyslog.conf", ["authpriv.* /var/log/secure", "cron.* /var/log/cron"])
        assert result.detail == "added 1 line(s) to /etc/rsyslog.conf"
        assert read("/etc/rsyslog.conf").endswith("authpriv.*   /var/log/secure\ncron.* /var/log/cron\n")

    def test_ensure_lines_noop(self, session, write) -> None:
        write("/etc/aide.conf", "/boot CONTENT_EX\n")
        result = patch.ensure_lines(session, "/etc/aide.conf", ["/boot   CONTENT_EX"])
        assert not result.changed
        assert result.detail == "all lines present"

    def test_ensure_lines_new_file_mode(self, session, read) -> None:
        patch.ensure_lines(session, "/etc/profile.d/tmout.sh", ["readonly TMOUT=900 ; export TMOUT"], mode=0o644)
        assert read("/etc/profile.d/tmout.sh") == f"{patch.HEADER}\nreadonly TMOUT=900 ; export TMOUT\n"
        assert session.path("/etc/profile.d/tmout.sh").stat().st_mode & 0o7777 == 0o644

    def test_ensure_audit_lines_by_flags(self, session, write) -> None:
        write("/etc/audit/rules.d/50-identity.rules", "-w /etc/group -p aw -F key=identity\n")
        result = patch.ensure_lines(
            session, "/etc/audit/rules.d/50-identity.rules", ["-w /etc/group -p wa -k identity"], flags=True
        )
        assert not result.changed

    def test_remove_matching_lines_keeps_comments(self, session, write, read) -> None:
        write("/etc/audit/rules.d/10-base.rules", "# -e 2\n-D\n-e 2\n")
        result = patch.remove_matching_lines(session, "/etc/audit/rules.d/10-base.rules", [r"^\s*-e\s+2\s*$"])
        assert result.detail == "removed 1 line(s) from /etc/audit/rules.d/10-base.rules"
        assert read("/etc/audit/rules.d/10-base.rules") == "# -e 2\n-D\n"

    def test_remove_from_absent_file(self, session) -> None:
        assert not patch.remove_matching_lines(session, "/etc/nope.conf", ["x"]).changed


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------
def _fstab_select(mount_point: str):
    return lambda line: len(line.split()) >= 4 and line.split()[1] == mount_point


@pytest.mark.unit
class TestEnsureTokens:
    """Test token merges in fstab columns, assignments and PAM lines."""

    def test_fstab_column(self, session, write, read) -> None:
        write("/etc/fstab", "/dev/mapper/rhel-root /     xfs defaults 0 0\n/dev/mapper/rhel-home /home xfs nodev,nosuid 0 0\n")
        patch.ensure_tokens(session, "/etc/fstab", _fstab_select("/home"), ["noexec", "nodev"], column=3)
        assert read("/etc/fstab") == (
            "/dev/mapper/rhel-root /     xfs defaults 0 0\n/dev/mapper/rhel-home /home xfs nodev,nosuid,noexec 0 0\n"
        )

    def test_grub_assignment(self, session, write, read) -> None:
        write("/etc/default/grub", 'GRUB_TIMEOUT=5\nGRUB_CMDLINE_LINUX="crashkernel=auto rhgb quiet audit=0"\n')
        patch.ensure_tokens(
            session,
            "/etc/default/grub",
            parsing.key_matcher("GRUB_CMDLINE_LINUX", "="),
            ["audit=1"],
            key="GRUB_CMDLINE_LINUX",
            sep=" ",
            keyed=True,
        )
        assert 'GRUB_CMDLINE_LINUX="crashkernel=auto rhgb quiet audit=1"\n' in read("/etc/default/grub")

    def test_pam_line_tail(self, session, write, read) -> None:
        write("/etc/pam.d/system-auth", "password requisite pam_pwquality.so try_first_pass local_users_only\n")
        patch.ensure_tokens(
            session,
            "/etc/pam.d/system-auth",
            lambda line: "pam_pwquality.so" in line,
            ["enforce_for_root"],
            sep=" ",
        )
        assert read("/etc/pam.d/system-auth") == (
            "password requisite pam_pwquality.so try_first_pass local_users_only enforce_for_root\n"
        )

    def test_no_line_without_fallback(self, session, write) -> None:
        write("/etc/fstab", "/dev/sda1 / xfs defaults 0 0\n")
        with pytest.raises(PatchError):
            patch.ensure_tokens(session, "/etc/fstab", _fstab_select("/home"), ["nodev"], column=3)

    def test_fallback_line(self, session, write, read) -> None:
        write("/etc/pam.d/system-auth", "auth required pam_env.so\n")
        patch.ensure_tokens(
            session,
            "/etc/pam.d/system-auth",
            lambda line: "pam_pwhistory.so" in line,
            ["remember=3"],
            sep=" ",
            fallback_line="password requisite pam_pwhistory.so use_authtok remember=3",
        )
        assert read("/etc/pam.d/system-auth").splitlines()[-1] == (
            "password requisite pam_pwhistory.so use_authtok remember=3"
        )


# ---------------------------------------------------------------------------
# Whole files and metadata
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestFilesAndPermissions:
    """Test write_file, write_block, set_permissions and remove_file."""

    def test_write_file(self, session, read) -> None:
        result = patch.write_file(session, "/etc/systemd/system/tmp.mount", "[Mount]\nWhat=tmpfs", mode=0o644)
        assert result.changed
        assert read("/etc/systemd/system/tmp.mount") == "[Mount]\nWhat=tmpfs\n"
        again = patch.write_file(session, "/etc/systemd/system/tmp.mount", "[Mount]\nWhat=tmpfs\n", mode=0o644)
        assert not again.changed

    def test_write_file_fixes_mode_only(self, session, write) -> None:
        write("/etc/modprobe.d/cramfs.conf", "install cramfs /bin/true\n", mode=0o600)
        result = patch.write_file(session, "/etc/modprobe.d/cramfs.conf", "install cramfs /bin/true\n", mode=0o644)
        assert result.changed
        assert result.detail == "set mode 0644 on /etc/modprobe.d/cramfs.conf"

    def test_write_block_replaces_body(self, session, write, read) -> None:
        write("/etc/sudoers.d/x", "keep\n# BEGIN twgcb\nold\n# END twgcb\ntail\n")
        patch.write_block(session, "/etc/sudoers.d/x", ["new"])
        assert read("/etc/sudoers.d/x") == "keep\n# BEGIN twgcb\nnew\n# END twgcb\ntail\n"

    def test_set_permissions_only_tightens(self, session, write) -> None:
        write("/etc/crontab", "", mode=0o644)
        result = patch.set_permissions(session, "/etc/crontab", mode=0o600)
        assert result.detail == "/etc/crontab: mode 0644 -> 0600"
        write("/etc/cron.d/job", "", mode=0o400)
        assert not patch.set_permissions(session, "/etc/cron.d/job", mode=0o600).changed

    def test_set_permissions_missing(self, session) -> None:
        with pytest.raises(PatchError):
            patch.set_permissions(session, "/etc/crontab", mode=0o600)

    def test_remove_file(self, session, write) -> None:
        write("/etc/cron.deny", "")
        result = patch.remove_file(session, "/etc/cron.deny")
        assert result.changed
        assert not session.path("/etc/cron.deny").exists()
        assert os.path.exists(result.backup.backup_path)
        assert patch.remove_file(session, "/etc/cron.deny").detail == "/etc/cron.deny already absent"


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestBackups:
    """Test backup naming and pruning."""

    def test_timestamped_name(self, session, write, frozen_clock) -> None:
        write("/etc/login.defs", "x\n")
        backup = patch.backup_file(session, "/etc/login.defs")
        assert backup.backup_path == f"{session.path('/etc/login.defs')}.bak.20240501T120000Z"
        assert backup.created_at == FIXED_NOW

    def test_same_second_gets_suffix(self, session, write, frozen_clock) -> None:
        write("/etc/login.defs", "x\n")
        first = patch.backup_file(session, "/etc/login.defs")
        second = patch.backup_file(session, "/etc/login.defs")
        assert second.backup_path == first.backup_path + ".1"

    def test_missing_file_has_no_backup(self, session) -> None:
        assert patch.backup_file(session, "/etc/login.defs") is None

    def test_prune_keeps_newest(self, session, write, frozen_clock) -> None:
        write("/etc/login.defs", "x\n")
        for _ in range(3):
            patch.backup_file(session, "/etc/login.defs")
        removed = patch.prune_backups(session, "/etc/login.defs", 1)
        assert len(removed) == 2
        assert len(patch.list_backups(session, "/etc/login.defs")) == 1

    def test_prune_rejects_negative(self, session) -> None:
        with pytest.raises(ValueError):
            patch.prune_backups(session, "/etc/login.defs", -1)


# ---------------------------------------------------------------------------
# Filesystem errors
# ---------------------------------------------------------------------------
def _read_only(*args, **kwargs):
    raise OSError(errno.EROFS, "Read-only file system")


@pytest.mark.unit
class TestReadOnlyFilesystem:
    """Test that OS errors other than EACCES surface as PatchError."""

    def test_backup(self, session, write, monkeypatch) -> None:
        write("/etc/login.defs", "PASS_MIN_DAYS 0\n")
        monkeypatch.setattr(patch.shutil, "copy2", _read_only)
        with pytest.raises(PatchError, match="cannot back up /etc/login.defs: Read-only file system"):
            patch.set_key_value(session, _pass_min_days())

    def test_write_file_mode(self, session, write, monkeypatch) -> None:
        write("/etc/modprobe.d/cramfs.conf", "install cramfs /bin/true\n", mode=0o600)
        monkeypatch.setattr(patch.os, "chmod", _read_only)
        with pytest.raises(PatchError, match="cannot chmod /etc/modprobe.d/cramfs.conf"):
            patch.write_file(session, "/etc/modprobe.d/cramfs.conf", "install cramfs /bin/true\n", mode=0o644)

    def test_set_permissions(self, session, write, monkeypatch) -> None:
        write("/etc/crontab", "", mode=0o644)
        monkeypatch.setattr(patch.os, "chmod", _read_only)
        with pytest.raises(PatchError, match="cannot change permissions of /etc/crontab"):
            patch.set_permissions(session, "/etc/crontab", mode=0o600)

    def test_prune(self, session, write, frozen_clock, monkeypatch) -> None:
        write("/etc/login.defs", "x\n")
        patch.backup_file(session, "/etc/login.defs")
        monkeypatch.setattr(patch.Path, "unlink", _read_only)
        with pytest.raises(PatchError, match="cannot prune backup"):
            patch.prune_backups(session, "/etc/login.defs", 0)
