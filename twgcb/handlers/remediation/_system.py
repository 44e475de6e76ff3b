"""System-related remediation handlers.

Handlers for modifying system configuration: sysctl parameters, kernel
modules, mount options, and GRUB boot parameters.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from twgcb import facts, parsing, patch, shell_util
from twgcb.errors import PatchError
from twgcb.handlers.checks._system import GRUB_CMDLINE, GRUB_DEFAULTS
from twgcb.targets import ConfigTarget, TargetKind

if TYPE_CHECKING:
    from twgcb.handlers._context import StepContext
    from twgcb.local import LocalSession

logger = logging.getLogger(__name__)

SYSCTL_PERSIST = "/etc/sysctl.d/99-twgcb.conf"
FSTAB = "/etc/fstab"


def _remediate_sysctl_set(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Set a sysctl parameter at runtime and persist it.

    Args:
        session: Local session.
        r: Remediation definition with fields:
            - key (str): Sysctl parameter name.
            - value (str): Value to set.
            - persist_file (str, optional): Drop-in for persistence.
              Defaults to /etc/sysctl.d/99-twgcb.conf.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    c = ctx.find_check("sysctl_value", key=r.get("key")) or {}
    key = r.get("key") or c["key"]
    value = str(r.get("value", c.get("expected")))
    persist_file = r.get("persist_file", SYSCTL_PERSIST)

    target = ConfigTarget(path=persist_file, kind=TargetKind.KEY_VALUE, key=key, expected=value, separator=" = ")
    persisted = ctx.record(session, patch.set_key_value(session, target, mode=0o644))

    if facts.sysctl_value(session, key) == parsing.normalize_ws(value):
        if not persisted.changed:
            return True, f"{key}={value} already set"
        return True, f"Persisted {key}={value} in {persist_file}"

    result = session.run(f"sysctl -w {shell_util.quote(f'{key}={value}')}")
    if not result.ok:
        return False, f"sysctl -w {key}={value} failed: {result.stderr}"
    ctx.changed = True
    return True, f"Set {key}={value} (persisted in {persist_file})"


def _remediate_kernel_module_disable(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Disable a kernel module via modprobe.d and unload it.

    Writes ``install <name> /bin/true`` and ``blacklist <name>`` to
    /etc/modprobe.d/<name>.conf, removes the module if loaded and, for
    filesystem modules, unmounts filesystems of that type.

    Args:
        session: Local session.
        r: Remediation definition with required fields:
            - name (str): Kernel module name.
            - unmount (bool, optional): Unmount filesystems of this type.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    c = ctx.find_check("kernel_module_state") or {}
    name = r.get("name") or c["name"]
    conf = r.get("path", f"/etc/modprobe.d/{name}.conf")
    lines = [f"install {name} /bin/true", f"blacklist {name}"]
    result = ctx.record(session, patch.ensure_lines(session, conf, lines, mode=0o644))
    details = [result.detail]

    if r.get("unmount", c.get("fstype", False)):
        for m in facts.mounts_of_type(session, name):
            um = session.run(f"umount {shell_util.quote(m.target)}")
            if not um.ok:
                return False, f"Failed to unmount {m.target}: {um.stderr}"
            ctx.changed = True
            details.append(f"unmounted {m.target}")

    if facts.module_loaded(session, name):
        rm = session.run(f"modprobe -r {shell_util.quote(name)}")
        if not rm.ok:
            logger.warning("could not unload %s: %s", name, rm.stderr)
            return False, f"Disabled {name} but could not unload it (in use?): {rm.stderr}"
        ctx.changed = True
        details.append(f"unloaded {name}")

    return True, "; ".join(details)


def _mount_spec(r: dict, ctx: StepContext) -> tuple[str, list[str], str | None]:
    c = ctx.find_check("fstab_option", mount_point=r.get("mount_point")) or ctx.find_check("mount_option") or {}
    mount_point = r.get("mount_point") or c["mount_point"]
    options = list(r.get("options", c.get("options", [])))
    unit = r.get("unit", c.get("unit"))
    return mount_point, options, unit


def _remediate_mount_option_set(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Add mount options persistently and remount.

    Updates the /etc/fstab entry for the mount point; when there is none,
    updates ``Options=`` of the systemd mount unit instead. Existing
    options are kept and never duplicated.

    Args:
        session: Local session.
        r: Remediation definition with fields:
            - mount_point (str): Mount point path.
            - options (list[str]): Required mount options.
            - unit (str, optional): systemd mount unit used when fstab has
              no entry.
            - remount (bool, optional): Remount now. Defaults to True.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    mount_point, options, unit = _mount_spec(r, ctx)
    details = []

    if any(e.target == mount_point for e in facts.fstab_entries(session)):

        def select(line: str) -> bool:
            cols = line.split()
            return len(cols) >= 4 and cols[1] == mount_point

        result = patch.ensure_tokens(session, FSTAB, select, options, column=3, sep=",")
        details.append(ctx.record(session, result).detail)
    elif unit and session.path(unit).exists():
        result = patch.ensure_tokens(session, unit, parsing.key_matcher("Options", "="), options, key="Options", sep=",")
        details.append(ctx.record(session, result).detail)
        if result.changed:
            shell_util.require_ok(session.run("systemctl daemon-reload"), "systemctl")
    else:
        raise PatchError(f"{mount_point}: no /etc/fstab entry or mount unit to update")

    if r.get("remount", True) and facts.mount_for_target(session, mount_point) is not None:
        current = facts.mount_for_target(session, mount_point)
        missing = [o for o in options if o not in current.options]
        if missing:
            opts = ",".join(["remount", *missing])
            shell_util.require_ok(session.run(f"mount -o {opts} {shell_util.quote(mount_point)}"), "mount")
            ctx.changed = True
            details.append(f"remounted {mount_point} with {','.join(missing)}")

    return True, "; ".join(details)


def _remediate_grub_parameter_set(session: LocalSession, r: dict, ctx: StepContext) -> tuple[bool, str]:
    """Set a kernel boot parameter in the GRUB defaults and boot entries.

    Edits ``GRUB_CMDLINE_LINUX`` in /etc/default/grub (replacing an existing
    value of the same parameter), then updates existing boot entries with
    ``grubby`` or, without it, regenerates grub.cfg. Takes effect after
    reboot, so the step reports pending.

    Args:
        session: Local session.
        r: Remediation definition with fields:
            - key (str): Kernel parameter name.
            - value (str, optional): Parameter value.
            - path (str, optional): Defaults to /etc/default/grub.
            - grub_cfg (str, optional): Output of grub2-mkconfig.
        ctx: Step bookkeeping.

    Returns:
        Tuple of (success, detail).

    """
    c = ctx.find_check("grub_parameter", key=r.get("key")) or {}
    key = r.get("key") or c["key"]
    value = r.get("value", c.get("expected"))
    path = r.get("path", c.get("path", GRUB_DEFAULTS))
    token = key if value is None or value == "" else f"{key}={value}"

    result = patch.ensure_tokens(
        session,
        path,
        parsing.key_matcher(GRUB_CMDLINE, "="),
        [token],
        key=GRUB_CMDLINE,
        sep=" ",
        keyed=True,
        fallback_line=f'{GRUB_CMDLINE}="{token}"',
    )
    ctx.record(session, result)

    if shell_util.tool_available(session, "grubby"):
        cmd = f"grubby --update-kernel=ALL --args={shell_util.quote(token)}"
        shell_util.require_ok(session.run(cmd), "grubby")
    else:
        grub_cfg = r.get("grub_cfg", "/boot/grub2/grub.cfg")
        shell_util.require_ok(session.run(f"grub2-mkconfig -o {shell_util.quote(grub_cfg)}"), "grub2-mkconfig")
    ctx.changed = True
    ctx.pending = True
    return True, f"Set {token} in {GRUB_CMDLINE} (effective after reboot)"
