"""Rule variables and run settings.

Rule thresholds are variables so a site can tighten or relax them without
editing the catalog. Variables are loaded from:

1. rules/defaults.yml - Base variable definitions
2. rules/rules.d/*.yml - Site overrides (loaded alphabetically)

and resolved at rule-load time with this priority (highest first):

1. CLI --var KEY=VALUE overrides
2. rules/rules.d/*.yml (later files override earlier)
3. variables section in rules/defaults.yml

Example:
-------
    >>> from twgcb._config import load_config, resolve_variables
    >>>
    >>> config = load_config("twgcb/rules")
    >>> rule = {"check": {"expected": "{{ pass_min_days }}"}}
    >>> resolve_variables(rule, config)["check"]["expected"]
    '1'

"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from twgcb.errors import InvalidInput

logger = logging.getLogger(__name__)

# ── Variable pattern ───────────────────────────────────────────────────────

# Matches {{ variable_name }} with optional whitespace
VARIABLE_PATTERN = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")


# ── Safe fields for substitution ───────────────────────────────────────────
#
# Only value fields are substituted; paths and commands are never touched.
#

SAFE_SUBSTITUTION_FIELDS = frozenset(
    {
        "expected",
        "value",
        "mode",
        "owner",
        "group",
        "tokens",
        "lines",
        "args",
        "options",
    }
)


# ── Data structures ────────────────────────────────────────────────────────


@dataclass
class RuleConfig:
    """Configuration for rule variables.

    Attributes:
        variables: Effective variable values after defaults and overrides.
        sources: Files the values were read from, in load order.

    """

    variables: dict[str, Any] = field(default_factory=dict)
    sources: list[Path] = field(default_factory=list)


@dataclass(frozen=True)
class Theme:
    """Rich style names used by the reporter."""

    rule_id: str = "bold cyan"
    title: str = "bold"
    evidence: str = ""
    missing: str = "yellow"
    compliant: str = "bold green"
    non_compliant: str = "bold red"
    indeterminate: str = "bold yellow"
    applied: str = "bold green"
    pending: str = "bold yellow"
    failed: str = "bold red"
    skipped: str = "dim"
    canceled: str = "bold magenta"

    @classmethod
    def plain(cls) -> Theme:
        """A theme without any styling (``--no-color``)."""
        return cls(**{name: "" for name in cls.__dataclass_fields__})


@dataclass
class Settings:
    """Options for one run, built by the CLI and passed to engine and reporter.

    Attributes:
        root: Directory file paths are evaluated under ("/" on a live host).
        theme: Reporter styling.
        assume_yes: Apply without prompting (``--yes``).
        no_prompt: Never modify anything (``--no-prompt``).
        backup_keep: Keep at most this many backups per file, or all if None.
        quiet: Only print the summary.

    """

    root: str = "/"
    theme: Theme = field(default_factory=Theme)
    assume_yes: bool = False
    no_prompt: bool = False
    backup_keep: int | None = None
    quiet: bool = False

    def __post_init__(self) -> None:
        if not Path(self.root).is_dir():
            raise InvalidInput(f"--root {self.root} is not a directory")
        if self.assume_yes and self.no_prompt:
            raise InvalidInput("--yes and --no-prompt are mutually exclusive")
        if self.backup_keep is not None and self.backup_keep < 1:
            raise InvalidInput("--backup-keep must be at least 1")


# ── Configuration loading ──────────────────────────────────────────────────


def _read_variables(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise InvalidInput(f"{path}: malformed YAML: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict) or not isinstance(data.get("variables", {}), dict):
        raise InvalidInput(f"{path}: expected a mapping with a 'variables' mapping")
    return data.get("variables") or {}


def load_config(rules_path: str | Path) -> RuleConfig:
    """Load rule configuration from defaults.yml and rules.d overrides.

    Args:
        rules_path: Catalog directory, or a single catalog file whose
            directory is used.

    Returns:
        RuleConfig with merged variables.

    Raises:
        InvalidInput: A variables file is malformed.

    """
    rules_dir = Path(rules_path)
    if not rules_dir.is_dir():
        rules_dir = rules_dir.parent

    config = RuleConfig()

    defaults_path = rules_dir / "defaults.yml"
    if defaults_path.exists():
        config.variables.update(_read_variables(defaults_path))
        config.sources.append(defaults_path)

    rules_d = rules_dir / "rules.d"
    if rules_d.is_dir():
        for override_file in sorted(rules_d.glob("*.yml")):
            config.variables.update(_read_variables(override_file))
            config.sources.append(override_file)

    logger.debug("loaded %d variable(s) from %s", len(config.variables), [str(s) for s in config.sources])
    return config


# ── Variable resolution ────────────────────────────────────────────────────


def _substitute_string(value: str, variables: dict[str, Any]) -> str:
    """Substitute {{ variable }} patterns in a string.

    Raises:
        InvalidInput: A referenced variable is undefined.

    """

    def replace_var(match: re.Match) -> str:
        var_name = match.group(1)
        if var_name not in variables:
            raise InvalidInput(f"Undefined variable: {var_name}")
        return str(variables[var_name])

    return VARIABLE_PATTERN.sub(replace_var, value)


def _substitute(value: Any, variables: dict[str, Any], safe: bool) -> Any:
    if isinstance(value, str):
        return _substitute_string(value, variables) if safe else value
    if isinstance(value, dict):
        return {k: _substitute(v, variables, k in SAFE_SUBSTITUTION_FIELDS) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute(item, variables, safe) for item in value]
    return value


def resolve_variables(
    rule: dict,
    config: RuleConfig,
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> dict:
    """Resolve {{ variable }} placeholders in a rule.

    Only substitutes in safe fields (expected, value, mode, owner, group,
    and the list fields tokens, lines, args, options). Never substitutes
    in path, run, or other execution-related fields.

    Args:
        rule: Rule dict to process.
        config: Loaded rule configuration.
        cli_overrides: CLI --var KEY=VALUE overrides.

    Returns:
        New rule dict with variables resolved.

    Raises:
        InvalidInput: A referenced variable is undefined.

    """
    variables = dict(config.variables)
    if cli_overrides:
        variables.update(cli_overrides)
    return _substitute(rule, variables, False)


def parse_var_overrides(var_flags: tuple[str, ...]) -> dict[str, str]:
    """Parse --var KEY=VALUE flags into a dict.

    Args:
        var_flags: Tuple of "KEY=VALUE" strings from CLI.

    Returns:
        Dict mapping variable names to values.

    Raises:
        InvalidInput: If a flag is malformed.

    """
    result = {}
    for flag in var_flags:
        if "=" not in flag:
            raise InvalidInput(f"Invalid --var format: {flag} (expected KEY=VALUE)")
        key, value = flag.split("=", 1)
        key = key.strip()
        if not key:
            raise InvalidInput(f"Invalid --var format: {flag} (empty key)")
        result[key] = value
    return result
