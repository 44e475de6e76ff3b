"""CSV output formatter for compliance results.

One row per rule. Columns vary by command type:

    Check command columns:
        host, rule_id, title, severity, category, state, passed, detail

    Apply command columns:
        host, rule_id, title, severity, category, state, passed,
        remediated, backups, detail

Example:
-------
    >>> from twgcb.output import RunResult, format_csv
    >>> print(format_csv(RunResult(command="check", hostname="web01", results=results)))
    host,rule_id,title,severity,category,state,passed,detail
    web01,TWGCB-01-008-0225,Minimum password age,medium,accounts,checked_compliant,true,PASS_MIN_DAYS=1

"""

from __future__ import annotations

import csv
import io
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from twgcb._types import RuleResult
    from twgcb.output import RunResult


# ── Column definitions ─────────────────────────────────────────────────────

CHECK_COLUMNS = [
    "host",
    "rule_id",
    "title",
    "severity",
    "category",
    "state",
    "passed",
    "detail",
]

APPLY_COLUMNS = [
    "host",
    "rule_id",
    "title",
    "severity",
    "category",
    "state",
    "passed",
    "remediated",
    "backups",
    "detail",
]


def format_csv(run_result: RunResult) -> str:
    """Format compliance results as CSV.

    Boolean values are lowercased ("true"/"false"); backups are joined
    with ";".

    Args:
        run_result: Results from a compliance run.

    Returns:
        CSV string with header row and data rows.

    """
    output = io.StringIO()
    fieldnames = APPLY_COLUMNS if run_result.command == "apply" else CHECK_COLUMNS

    writer = csv.DictWriter(output, fieldnames=fieldnames)
    writer.writeheader()
    for result in run_result.results:
        writer.writerow(_build_result_row(run_result.hostname, result, run_result.command))

    return output.getvalue()


def _build_result_row(hostname: str, result: RuleResult, command: str) -> dict:
    row = {
        "host": hostname,
        "rule_id": result.rule_id,
        "title": result.title,
        "severity": result.severity,
        "category": result.category,
        "state": result.state.value,
        "passed": str(result.passed).lower(),
        "detail": result.detail or "",
    }

    if command == "apply":
        row["remediated"] = str(result.remediated).lower()
        backups = result.apply.backups if result.apply is not None else []
        row["backups"] = ";".join(b.backup_path for b in backups)

    return row
