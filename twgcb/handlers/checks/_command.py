"""Command check handler.

Handler for arbitrary shell command verification.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from twgcb._types import CheckResult, Evidence

if TYPE_CHECKING:
    from twgcb.local import LocalSession


def _check_command(session: LocalSession, c: dict) -> CheckResult:
    """Run an arbitrary command and verify its output.

    Executes a shell command and checks the exit code and optionally
    stdout content. Use for checks not covered by other handlers.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - run (str): Shell command to execute.
            - expected_exit (int, optional): Expected exit code. Defaults to 0.
            - expected_stdout (str, optional): String that must appear in stdout.
            - empty_stdout (bool, optional): Stdout must be empty (each line
              of output is offending evidence).

    Returns:
        CheckResult; INDETERMINATE if the command is not installed.

    """
    cmd = c["run"]
    result = session.run(cmd)
    if result.not_found:
        return CheckResult.indeterminate(f"command not found: {cmd.split()[0]}")

    evidence = [Evidence.info(line, "command") for line in result.stdout.splitlines()[:50]]

    expected_exit = c.get("expected_exit", 0)
    if result.exit_code != expected_exit:
        return CheckResult.fail(
            f"exit {result.exit_code} (expected {expected_exit}): {result.stderr or result.stdout}",
            evidence,
        )

    if "expected_stdout" in c and c["expected_stdout"] not in result.stdout:
        return CheckResult.fail(f"stdout mismatch: got {result.stdout!r}", evidence)

    if c.get("empty_stdout") and result.stdout.strip():
        return CheckResult.fail(f"{len(result.stdout.splitlines())} offending line(s)", evidence)

    return CheckResult.ok(result.stdout[:200] if result.stdout else "ok", evidence)
