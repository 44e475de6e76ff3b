"""Config-related check handlers.

Handlers for verifying configuration file state: key presence,
absence, and values. The predicate itself lives on ``ConfigTarget`` so
the matching remediation verifies with the same code.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from twgcb import facts
from twgcb._types import CheckResult
from twgcb.targets import ConfigTarget

if TYPE_CHECKING:
    from twgcb.local import LocalSession


def _check_config_value(session: LocalSession, c: dict) -> CheckResult:
    """Check that a configuration key has an expected value.

    Every active assignment of the key must satisfy the comparator, so a
    later duplicate cannot silently override a compliant first line.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - path (str): Config file path.
            - key (str): Configuration key name to find.
            - expected (str | list): Expected value(s).
            - comparator (str, optional): One of ">=", "<=", ">", "<",
              "==", "in". Defaults to "==".
            - separator (str, optional): Pin ``key=value`` or ``key value``.

    Returns:
        CheckResult; NON_COMPLIANT if the file or key is missing,
        INDETERMINATE if the file cannot be read.

    """
    target = ConfigTarget.from_check(c)
    return target.check(facts.read_config_lines(session, target.path))


def _check_config_absent(session: LocalSession, c: dict) -> CheckResult:
    """Check that a configuration key does NOT exist in a file.

    Args:
        session: Local session.
        c: Check definition with required fields:
            - path (str): Config file path.
            - key (str): Configuration key that should not exist.

    Returns:
        CheckResult; a missing file counts as compliant.

    """
    target = ConfigTarget.from_check(c)
    return target.check(facts.read_config_lines(session, target.path))
