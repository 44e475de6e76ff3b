"""Rule catalog loading, validation, and filtering."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from twgcb._config import RuleConfig, load_config, resolve_variables
from twgcb._types import Rule
from twgcb.errors import InvalidInput

logger = logging.getLogger(__name__)

# -- Paths -------------------------------------------------------------------
PACKAGE_DIR = Path(__file__).resolve().parent
RULES_DIR = PACKAGE_DIR / "rules"
RULE_SCHEMA_PATH = PACKAGE_DIR / "schema" / "rule.schema.json"

CONFIG_FILES = frozenset({"defaults.yml"})


def load_schema(path: Path = RULE_SCHEMA_PATH) -> dict:
    """Load and return the rule JSON Schema."""
    with open(path) as f:
        return json.load(f)


def validate_rule_data(data: Any, schema: dict, source: Path | str) -> list[str]:
    """Validate one rule mapping against the JSON Schema.

    Returns:
        Error messages, prefixed with the source and the failing field path.

    """
    validator = jsonschema.Draft202012Validator(schema)
    errors = []
    for error in sorted(validator.iter_errors(data), key=lambda e: list(e.path)):
        where = " -> ".join(str(p) for p in error.absolute_path) if error.absolute_path else "(root)"
        rule_id = data.get("id", "?") if isinstance(data, dict) else "?"
        errors.append(f"{source}: {rule_id}: {where}: {error.message}")
    return errors


def _catalog_files(path: Path) -> list[Path]:
    if path.is_file():
        return [path]
    if path.is_dir():
        files = sorted(path.glob("*.yml")) + sorted(path.glob("*.yaml"))
        return [f for f in files if f.name not in CONFIG_FILES]
    raise InvalidInput(f"Rules path not found: {path}")


def _read_documents(path: Path) -> list[Any]:
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise InvalidInput(f"{path}: malformed YAML: {e}") from e
    if data is None:
        return []
    return data if isinstance(data, list) else [data]


def _to_rule(data: dict, category: str) -> Rule:
    return Rule(
        id=data["id"],
        title=data["title"],
        check=data["check"],
        remediation=data.get("remediation"),
        severity=data.get("severity", "medium"),
        category=data.get("category", category),
        targets=tuple(data.get("targets", ())),
        description=data.get("description", "").strip(),
        reboot_required=data.get("reboot_required", False),
    )


@dataclass
class RuleRegistry:
    """The loaded catalog, in definition order."""

    rules: list[Rule] = field(default_factory=list)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for rule in self.rules:
            if rule.id in seen:
                raise InvalidInput(f"Duplicate rule id: {rule.id}")
            seen.add(rule.id)

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def get(self, rule_id: str) -> Rule | None:
        return next((r for r in self.rules if r.id == rule_id), None)

    @property
    def categories(self) -> list[str]:
        return sorted({r.category for r in self.rules})

    def select(
        self,
        ids: list[str] | tuple[str, ...] | None = None,
        *,
        category: list[str] | tuple[str, ...] | None = None,
        severity: list[str] | tuple[str, ...] | None = None,
    ) -> list[Rule]:
        """Rules matching every given filter.

        Explicit ids keep the order they were requested in.

        Raises:
            InvalidInput: An id is not in the catalog.

        """
        if ids:
            unknown = [i for i in ids if self.get(i) is None]
            if unknown:
                raise InvalidInput(f"Unknown rule id(s): {', '.join(unknown)}")
            rules = [self.get(i) for i in dict.fromkeys(ids)]
        else:
            rules = list(self.rules)
        if category:
            cat_set = {c.lower() for c in category}
            rules = [r for r in rules if r.category.lower() in cat_set]
        if severity:
            sev_set = {s.lower() for s in severity}
            rules = [r for r in rules if r.severity.lower() in sev_set]
        return rules


def load_rules(
    path: str | Path | None = None,
    *,
    config: RuleConfig | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> RuleRegistry:
    """Load, resolve, and validate the rule catalog.

    Each catalog file holds a list of rule mappings (or a single mapping);
    a rule without ``category`` takes the file's stem. Variables are
    resolved before validation so substituted values are checked too.

    Args:
        path: Catalog directory or file. Defaults to the shipped catalog.
        config: Variables; loaded from the catalog directory when omitted.
        cli_overrides: ``--var`` overrides.

    Returns:
        RuleRegistry of the whole catalog.

    Raises:
        InvalidInput: Missing path, malformed YAML, schema errors, undefined
            variables, or duplicate ids.

    """
    p = Path(path) if path is not None else RULES_DIR
    files = _catalog_files(p)
    if config is None:
        config = load_config(p)
    schema = load_schema()

    rules = []
    errors: list[str] = []
    for f in files:
        for data in _read_documents(f):
            if isinstance(data, dict):
                data = resolve_variables(data, config, cli_overrides=cli_overrides)
            problems = validate_rule_data(data, schema, f.name)
            if problems:
                errors.extend(problems)
                continue
            rules.append(_to_rule(data, f.stem))
    if errors:
        raise InvalidInput("Invalid rule catalog:\n  " + "\n  ".join(errors))

    logger.debug("loaded %d rule(s) from %s", len(rules), p)
    return RuleRegistry(rules)
