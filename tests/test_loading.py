"""
Unit tests for rule catalog loading, variables, and run settings.
"""

import textwrap

import pytest

from twgcb._config import RuleConfig, Settings, Theme, load_config, parse_var_overrides, resolve_variables
from twgcb._loading import RULES_DIR, load_rules
from twgcb.errors import InvalidInput

MIN_DAYS = """\
- id: TWGCB-01-008-0225
  title: Set the minimum password age
  check:
    method: config_value
    path: /etc/login.defs
    key: PASS_MIN_DAYS
    expected: "{{ pass_min_days }}"
    comparator: ">="
  remediation:
    mechanism: config_set
"""

CRON = """\
- id: TWGCB-01-008-0205
  title: Restrict cron to authorized users
  severity: high
  check:
    method: file_exists
    path: /etc/cron.allow
"""


@pytest.fixture
def catalog(tmp_path):
    """Write catalog files into a fresh directory."""

    def _catalog(files: dict):
        for name, text in files.items():
            path = tmp_path / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(textwrap.dedent(text))
        return tmp_path

    return _catalog


# ---------------------------------------------------------------------------
# Shipped catalog
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestShippedCatalog:
    """Test the catalog packaged with twgcb."""

    def test_loads_and_validates(self) -> None:
        registry = load_rules()
        assert len(registry) == 89
        assert len({r.id for r in registry}) == 89

    def test_categories_follow_file_names(self) -> None:
        stems = sorted(p.stem for p in RULES_DIR.glob("*.yml") if p.name != "defaults.yml")
        assert load_rules().categories == stems

    def test_variables_resolved(self) -> None:
        rule = load_rules().get("TWGCB-01-008-0225")
        assert rule.check["expected"] == "1"

    def test_every_rule_has_a_check_method(self) -> None:
        for rule in load_rules():
            check = rule.check
            assert "method" in check or "checks" in check, rule.id


# ---------------------------------------------------------------------------
# Custom catalogs
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestLoadRules:
    """Test loading and validation errors."""

    def test_directory(self, catalog) -> None:
        path = catalog({"defaults.yml": "variables:\n  pass_min_days: 2\n", "accounts.yml": MIN_DAYS, "cron.yml": CRON})
        registry = load_rules(path)
        assert [r.id for r in registry] == ["TWGCB-01-008-0225", "TWGCB-01-008-0205"]
        assert registry.get("TWGCB-01-008-0205").category == "cron"
        assert registry.get("TWGCB-01-008-0205").severity == "high"
        assert registry.get("TWGCB-01-008-0225").check["expected"] == "2"

    def test_single_file(self, catalog) -> None:
        path = catalog({"cron.yml": CRON})
        assert len(load_rules(path / "cron.yml")) == 1

    def test_missing_path(self, tmp_path) -> None:
        with pytest.raises(InvalidInput, match="Rules path not found"):
            load_rules(tmp_path / "nope")

    def test_malformed_yaml(self, catalog) -> None:
        path = catalog({"cron.yml": "- id: [unclosed\n"})
        with pytest.raises(InvalidInput, match="malformed YAML"):
            load_rules(path)

    def test_schema_error(self, catalog) -> None:
        path = catalog({"cron.yml": CRON.replace("method: file_exists", "method: file_exist")})
        with pytest.raises(InvalidInput, match="Invalid rule catalog"):
            load_rules(path)

    def test_bad_id(self, catalog) -> None:
        path = catalog({"cron.yml": CRON.replace("TWGCB-01-008-0205", "CIS-1.1")})
        with pytest.raises(InvalidInput, match="CIS-1.1"):
            load_rules(path)

    def test_unknown_field(self, catalog) -> None:
        path = catalog({"cron.yml": CRON + "  owner_team: infra\n"})
        with pytest.raises(InvalidInput, match="Invalid rule catalog"):
            load_rules(path)

    def test_duplicate_id(self, catalog) -> None:
        path = catalog({"a.yml": CRON, "b.yml": CRON})
        with pytest.raises(InvalidInput, match="Duplicate rule id: TWGCB-01-008-0205"):
            load_rules(path)

    def test_undefined_variable(self, catalog) -> None:
        path = catalog({"accounts.yml": MIN_DAYS})
        with pytest.raises(InvalidInput, match="Undefined variable: pass_min_days"):
            load_rules(path)

    def test_cli_override_wins(self, catalog) -> None:
        path = catalog(
            {
                "defaults.yml": "variables:\n  pass_min_days: 1\n",
                "rules.d/site.yml": "variables:\n  pass_min_days: 3\n",
                "accounts.yml": MIN_DAYS,
            }
        )
        assert load_rules(path).get("TWGCB-01-008-0225").check["expected"] == "3"
        registry = load_rules(path, cli_overrides={"pass_min_days": "7"})
        assert registry.get("TWGCB-01-008-0225").check["expected"] == "7"

    def test_empty_file_is_ignored(self, catalog) -> None:
        path = catalog({"cron.yml": CRON, "empty.yml": ""})
        assert len(load_rules(path)) == 1


@pytest.mark.unit
class TestSelect:
    """Test rule selection."""

    @pytest.fixture
    def registry(self, catalog):
        return load_rules(catalog({"defaults.yml": "variables:\n  pass_min_days: 1\n", "accounts.yml": MIN_DAYS, "cron.yml": CRON}))

    def test_all(self, registry) -> None:
        assert len(registry.select()) == 2

    def test_ids_keep_requested_order(self, registry) -> None:
        rules = registry.select(["TWGCB-01-008-0205", "TWGCB-01-008-0225", "TWGCB-01-008-0205"])
        assert [r.id for r in rules] == ["TWGCB-01-008-0205", "TWGCB-01-008-0225"]

    def test_unknown_id(self, registry) -> None:
        with pytest.raises(InvalidInput, match="Unknown rule id\\(s\\): TWGCB-01-008-9999"):
            registry.select(["TWGCB-01-008-9999"])

    def test_category_and_severity(self, registry) -> None:
        assert [r.id for r in registry.select(category=["CRON"])] == ["TWGCB-01-008-0205"]
        assert [r.id for r in registry.select(severity=["medium"])] == ["TWGCB-01-008-0225"]
        assert registry.select(category=["cron"], severity=["low"]) == []


# ---------------------------------------------------------------------------
# Variables
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestVariables:
    """Test variable loading and substitution."""

    def test_rules_d_order(self, catalog) -> None:
        path = catalog(
            {
                "defaults.yml": "variables:\n  tmout: 900\n  pass_max_days: 90\n",
                "rules.d/10-site.yml": "variables:\n  tmout: 600\n",
                "rules.d/20-host.yml": "variables:\n  tmout: 300\n",
            }
        )
        config = load_config(path)
        assert config.variables == {"tmout": 300, "pass_max_days": 90}
        assert [s.name for s in config.sources] == ["defaults.yml", "10-site.yml", "20-host.yml"]

    def test_bad_variables_file(self, catalog) -> None:
        path = catalog({"defaults.yml": "variables: [1, 2]\n"})
        with pytest.raises(InvalidInput):
            load_config(path)

    def test_only_value_fields_substituted(self) -> None:
        rule = {
            "check": {"path": "/etc/{{ name }}", "expected": "{{ name }}", "lines": ["-a {{ name }}"]},
            "remediation": {"run": "echo {{ name }}"},
        }
        resolved = resolve_variables(rule, RuleConfig({"name": "x"}))
        assert resolved["check"] == {"path": "/etc/{{ name }}", "expected": "x", "lines": ["-a x"]}
        assert resolved["remediation"]["run"] == "echo {{ name }}"

    def test_non_string_values_kept(self) -> None:
        rule = {"check": {"expected": 5, "comparator": ">="}}
        assert resolve_variables(rule, RuleConfig()) == rule

    def test_parse_var_overrides(self) -> None:
        assert parse_var_overrides(("pass_min_days=2", "banner=a=b")) == {"pass_min_days": "2", "banner": "a=b"}

    @pytest.mark.parametrize("flag", ["pass_min_days", "=2"])
    def test_parse_var_overrides_invalid(self, flag) -> None:
        with pytest.raises(InvalidInput, match="Invalid --var format"):
            parse_var_overrides((flag,))


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@pytest.mark.unit
class TestSettings:
    """Test run settings validation."""

    def test_defaults(self, tmp_path) -> None:
        settings = Settings(root=str(tmp_path))
        assert settings.backup_keep is None
        assert not settings.assume_yes

    def test_root_must_be_directory(self, tmp_path) -> None:
        with pytest.raises(InvalidInput, match="not a directory"):
            Settings(root=str(tmp_path / "missing"))

    def test_yes_and_no_prompt_conflict(self, tmp_path) -> None:
        with pytest.raises(InvalidInput, match="mutually exclusive"):
            Settings(root=str(tmp_path), assume_yes=True, no_prompt=True)

    def test_backup_keep_minimum(self, tmp_path) -> None:
        with pytest.raises(InvalidInput, match="at least 1"):
            Settings(root=str(tmp_path), backup_keep=0)

    def test_plain_theme(self) -> None:
        theme = Theme.plain()
        assert theme.compliant == ""
        assert theme.rule_id == ""
