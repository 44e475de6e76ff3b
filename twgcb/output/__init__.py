"""Output formatters for check and apply results.

Formatters convert engine results into JSON or CSV for archival and CI
integration. The terminal rendering lives in ``twgcb.report``.

Output Formats:
    - JSON: Structured data with evidence and backups, for programmatic parsing
    - CSV: Flat tabular format, one row per rule, for spreadsheets

Example:
-------
    >>> from twgcb.output import RunResult, write_output
    >>>
    >>> run = RunResult(command="check", hostname="web01", results=summary.results)
    >>> print(write_output(run, "json"))
    >>> write_output(run, "csv", "results.csv")

"""

from __future__ import annotations

import socket
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from twgcb.errors import InvalidInput
from twgcb.output.csv_fmt import format_csv
from twgcb.output.json_fmt import format_json

if TYPE_CHECKING:
    from twgcb._types import RuleResult

__all__ = [
    "RunResult",
    "format_json",
    "format_csv",
    "write_output",
    "parse_output_spec",
]


# ── Result container ───────────────────────────────────────────────────────


@dataclass
class RunResult:
    """Results from one run on this host.

    Attributes:
        timestamp: When the run started (UTC).
        command: "check" or "apply".
        hostname: Host the rules were evaluated on.
        root: Root directory file paths were evaluated under.
        results: RuleResult per selected rule, in execution order.
        exit_code: Process exit code of the run.

    """

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    command: str = "check"
    hostname: str = field(default_factory=socket.gethostname)
    root: str = "/"
    results: list[RuleResult] = field(default_factory=list)
    exit_code: int = 0

    @property
    def pass_count(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def fail_count(self) -> int:
        return sum(1 for r in self.results if not r.passed)

    @property
    def fixed_count(self) -> int:
        """Rules that were remediated and ended compliant or pending reboot."""
        return sum(1 for r in self.results if r.remediated and r.passed)


# ── Output utilities ───────────────────────────────────────────────────────


def parse_output_spec(spec: str) -> tuple[str, str | None]:
    """Parse an output specification into format and filepath.

    Example:
    -------
        >>> parse_output_spec("json")
        ('json', None)
        >>> parse_output_spec("CSV:results.csv")
        ('csv', 'results.csv')

    """
    if ":" in spec:
        fmt, path = spec.split(":", 1)
        return fmt.lower(), path
    return spec.lower(), None


def write_output(run_result: RunResult, fmt: str, filepath: str | None = None) -> str:
    """Format results and optionally write to a file.

    Args:
        run_result: The run results to format.
        fmt: Output format name ("json" or "csv").
        filepath: Optional file path to write output to.

    Returns:
        The formatted output string.

    Raises:
        InvalidInput: If format is unknown.

    """
    formatters = {
        "json": format_json,
        "csv": format_csv,
    }

    if fmt not in formatters:
        raise InvalidInput(f"Unknown output format: {fmt} (valid: {', '.join(formatters)})")

    output = formatters[fmt](run_result)

    if filepath:
        with open(filepath, "w") as f:
            f.write(output)

    return output
