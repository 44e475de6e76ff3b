"""JSON output formatter for compliance results.

Output Structure:
    {
        "timestamp": "ISO-8601 datetime",
        "command": "check" or "apply",
        "host": {"hostname": ..., "root": ...},
        "results": [...],
        "summary": {totals},
        "exit_code": int
    }

Each result carries its terminal state, check evidence and, for apply
runs, the remediation outcome with the backups taken.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from twgcb._types import CheckResult, RuleResult
    from twgcb.output import RunResult


def _check_data(cr: CheckResult) -> dict[str, Any]:
    return {
        "status": cr.status.value,
        "detail": cr.detail,
        "evidence": [
            {"path": e.path, "line": e.line_no, "content": e.content, "kind": e.kind.value} for e in cr.evidence
        ],
    }


def _result_data(result: RuleResult, command: str) -> dict[str, Any]:
    data: dict[str, Any] = {
        "rule_id": result.rule_id,
        "title": result.title,
        "severity": result.severity,
        "category": result.category,
        "state": result.state.value,
        "passed": result.passed,
        "detail": result.detail,
    }
    if result.check is not None:
        data["check"] = _check_data(result.check)

    if command == "apply":
        data["remediated"] = result.remediated
        if result.apply is not None:
            data["apply"] = {
                "status": result.apply.status.value,
                "reason": result.apply.reason,
                "changed": result.apply.changed,
                "backups": [b.backup_path for b in result.apply.backups],
            }
        if result.recheck is not None:
            data["recheck"] = _check_data(result.recheck)
    return data


def format_json(run_result: RunResult) -> str:
    """Format compliance results as JSON.

    Args:
        run_result: Results from a compliance run.

    Returns:
        Pretty-printed JSON string (2-space indent).

    Note:
        For the apply command, includes additional fields:
        - summary.fixed: Count of successfully remediated rules
        - results[].apply: Remediation status, reason and backups
        - results[].recheck: The check after remediation

    """
    data: dict[str, Any] = {
        "timestamp": run_result.timestamp.isoformat(),
        "command": run_result.command,
        "host": {"hostname": run_result.hostname, "root": run_result.root},
        "results": [_result_data(r, run_result.command) for r in run_result.results],
        "summary": {
            "total": len(run_result.results),
            "pass": run_result.pass_count,
            "fail": run_result.fail_count,
        },
        "exit_code": run_result.exit_code,
    }

    if run_result.command == "apply":
        data["summary"]["fixed"] = run_result.fixed_count

    return json.dumps(data, indent=2)
