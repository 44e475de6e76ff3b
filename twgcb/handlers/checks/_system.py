"""System-related check handlers.

Handlers for verifying system state: sysctl parameters, kernel modules,
mount options, and GRUB boot parameters.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from twgcb import facts, parsing
from twgcb._types import CheckResult, Evidence
from twgcb.targets import compare_values

if TYPE_CHECKING:
    from twgcb.local import LocalSession

GRUB_DEFAULTS = "/etc/default/grub"
GRUB_CMDLINE = "GRUB_CMDLINE_LINUX"


def _check_sysctl_value(session: LocalSession, c: dict) -> CheckResult:
    """Check a kernel sysctl parameter value.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - key (str): Sysctl parameter name.
            - expected (str): Expected value.
            - comparator (str, optional): Defaults to "==".

    Returns:
        CheckResult; INDETERMINATE if the key cannot be read.

    """
    key = c["key"]
    expected = str(c["expected"])
    comparator = c.get("comparator", "==")
    actual = facts.sysctl_value(session, key)
    if actual is None:
        return CheckResult.indeterminate(f"sysctl {key}: not available")

    evidence = [Evidence.info(f"{key} = {actual}", "sysctl")]
    if compare_values(actual, expected, comparator):
        return CheckResult.ok(f"{key}={actual}", evidence)
    return CheckResult.fail(f"{key}={actual} (expected {expected})", evidence)


def _check_kernel_module_state(session: LocalSession, c: dict) -> CheckResult:
    """Check kernel module load state.

    For disabled modules, checks that it is not loaded, that modprobe is
    configured to refuse it, and (for filesystem modules) that nothing of
    that type is mounted.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - name (str): Kernel module name.
            - state (str, optional): "disabled" (or its synonym
              "blacklisted") or "loaded". Defaults to "disabled".
            - fstype (bool, optional): Also require no mounts of this type.

    """
    name = c["name"]
    state = c.get("state", "disabled")

    loaded = facts.module_loaded(session, name)
    if state == "loaded":
        if loaded:
            return CheckResult.ok(f"{name}: loaded")
        return CheckResult.fail(f"{name}: not loaded")

    if state not in ("disabled", "blacklisted"):
        return CheckResult.indeterminate(f"Unknown module state: {state}")

    failures = []
    disabled, output = facts.modprobe_disabled(session, name)
    evidence = [Evidence.info(line, "modprobe") for line in output.splitlines()] or [
        Evidence.info("(no modprobe output)", "modprobe")
    ]
    if loaded:
        failures.append("still loaded")
    if not disabled:
        failures.append("not disabled in modprobe")
    if c.get("fstype", False):
        mounts = facts.mounts_of_type(session, name)
        for m in mounts:
            evidence.append(Evidence.info(f"{m.source} {m.target} {m.fstype}", m.target))
        if mounts:
            failures.append(f"mounted at {', '.join(m.target for m in mounts)}")

    if failures:
        return CheckResult.fail(f"{name}: {'; '.join(failures)}", evidence)
    return CheckResult.ok(f"{name}: disabled", evidence)


def _check_mount_option(session: LocalSession, c: dict) -> CheckResult:
    """Check that a mounted filesystem currently has required options.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - mount_point (str): Mount point path.
            - options (list[str]): Required mount options.
            - fstype (str, optional): Required filesystem type.

    """
    mount_point = c["mount_point"]
    required = list(c.get("options", []))
    entry = facts.mount_for_target(session, mount_point)
    if entry is None:
        return CheckResult.fail(f"{mount_point}: not mounted", [Evidence.no_match("/proc/self/mounts", mount_point)])

    evidence = [Evidence.info(f"{entry.source} {entry.target} {entry.fstype} {','.join(entry.options)}", "mount")]
    problems = []
    if c.get("fstype") and entry.fstype != c["fstype"]:
        problems.append(f"fstype {entry.fstype} (expected {c['fstype']})")
    missing = [opt for opt in required if opt not in entry.options]
    if missing:
        problems.append(f"missing options: {', '.join(missing)}")
    if problems:
        return CheckResult.fail(f"{mount_point}: {'; '.join(problems)}", evidence)
    return CheckResult.ok(f"{mount_point}: has required options", evidence)


def _unit_options(session: LocalSession, unit: str) -> tuple[list[str], list[Evidence]] | None:
    config = facts.read_config_lines(session, unit)
    if not config.present:
        return None
    found = parsing.key_values(config.lines, "Options", "=")
    if not found:
        return [], [Evidence.no_match(unit, "Options=")]
    n, line, value = found[-1]
    return parsing.split_tokens(value), [Evidence(unit, line, n)]


def _check_fstab_option(session: LocalSession, c: dict) -> CheckResult:
    """Check that the persistent mount definition carries required options.

    The definition is the /etc/fstab entry for the mount point, or the
    systemd mount unit named by ``unit`` when fstab has no entry.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - mount_point (str): Mount point path.
            - options (list[str]): Required mount options.
            - unit (str, optional): systemd mount unit path
              (e.g. /etc/systemd/system/tmp.mount).
            - fstype (str, optional): Required filesystem type.

    """
    mount_point = c["mount_point"]
    required = list(c.get("options", []))
    fstab = facts.read_config_lines(session, "/etc/fstab")
    if fstab.status is facts.FileStatus.PERMISSION_DENIED:
        return CheckResult.indeterminate("permission denied: /etc/fstab", [Evidence.denied("/etc/fstab")])

    entries = [e for e in facts.fstab_entries(session) if e.target == mount_point]
    if entries:
        evidence = [Evidence("/etc/fstab", fstab.lines[e.line_no - 1], e.line_no) for e in entries]
        problems = []
        for e in entries:
            if c.get("fstype") and e.fstype != c["fstype"]:
                problems.append(f"fstype {e.fstype} (expected {c['fstype']})")
            missing = [opt for opt in required if opt not in e.options]
            if missing:
                problems.append(f"missing options: {', '.join(missing)}")
        if problems:
            return CheckResult.fail(f"{mount_point} in /etc/fstab: {'; '.join(problems)}", evidence)
        return CheckResult.ok(f"{mount_point} in /etc/fstab has required options", evidence)

    evidence = [Evidence.no_match("/etc/fstab", mount_point)]
    unit = c.get("unit")
    if unit:
        found = _unit_options(session, unit)
        if found is None:
            evidence.append(Evidence.missing(unit))
            return CheckResult.fail(f"{mount_point}: no fstab entry and {unit} not found", evidence)
        options, unit_evidence = found
        evidence.extend(unit_evidence)
        missing = [opt for opt in required if opt not in options]
        if missing:
            return CheckResult.fail(f"{unit}: missing options: {', '.join(missing)}", evidence)
        return CheckResult.ok(f"{unit} has required options", evidence)
    return CheckResult.fail(f"{mount_point}: no entry in /etc/fstab", evidence)


def _check_grub_parameter(session: LocalSession, c: dict) -> CheckResult:
    """Check that a kernel boot parameter is set in the GRUB defaults.

    Reads ``GRUB_CMDLINE_LINUX`` from /etc/default/grub; the parameter is
    matched as a whole token (``audit=1`` does not match ``audit=10``).

    Args:
        session: Local session.
        c: Check definition with required fields:
            - key (str): Kernel parameter name.
            - expected (str, optional): Expected value; omitted means the
              bare parameter must be present.
            - comparator (str, optional): Defaults to "==".
            - path (str, optional): Defaults to /etc/default/grub.

    """
    key = c["key"]
    expected = c.get("expected")
    comparator = c.get("comparator", "==")
    path = c.get("path", GRUB_DEFAULTS)

    config = facts.read_config_lines(session, path)
    if config.status is facts.FileStatus.PERMISSION_DENIED:
        return CheckResult.indeterminate(f"permission denied: {path}", [Evidence.denied(path)])
    if config.status is facts.FileStatus.MISSING:
        return CheckResult.fail(f"{path} not found", [Evidence.missing(path)])

    found = parsing.key_values(config.lines, GRUB_CMDLINE, "=")
    if not found:
        return CheckResult.fail(f"{GRUB_CMDLINE} is not set", [Evidence.no_match(path, GRUB_CMDLINE)])

    n, line, value = found[-1]
    evidence = [Evidence(path, line, n)]
    actual = parsing.token_value(value, key)
    if actual is None:
        return CheckResult.fail(f"{key} not found in {GRUB_CMDLINE}", evidence)
    if expected is None:
        return CheckResult.ok(f"{key} present", evidence)
    if compare_values(actual, str(expected), comparator):
        return CheckResult.ok(f"{key}={actual}", evidence)
    return CheckResult.fail(f"{key}={actual} (expected {comparator} {expected})", evidence)
