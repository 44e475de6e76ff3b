"""Handler packages for check and remediation operations.

This package contains modular handler implementations organized by domain:

Subpackages:
    checks/: Check handlers for verifying compliance state
    remediation/: Remediation handlers for enforcing compliance

"""

from twgcb.handlers.checks import CHECK_HANDLERS, run_check
from twgcb.handlers.remediation import REMEDIATION_HANDLERS, run_remediation

__all__ = [
    "CHECK_HANDLERS",
    "REMEDIATION_HANDLERS",
    "run_check",
    "run_remediation",
]
