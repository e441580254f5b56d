import json
import logging
from decimal import Decimal

from rules import CONFIG_ENV_VAR, STRICT_KEYS, Rules, load_rules, parse_rules


def test_missing_file_falls_back_to_defaults(tmp_path, caplog):
    with caplog.at_level(logging.WARNING):
        rules = load_rules(str(tmp_path / "missing.json"))
    assert rules == Rules()
    assert rules.validation.numeric_tolerance == Decimal("0.01")
    assert rules.reconciliation.high_priority_threshold == Decimal("20")
    assert "not found" in caplog.text


def test_mixed_key_styles():
    rules = parse_rules({
        "validation": {"numericTolerance": 0.05, "date_tolerance_days": 2, "TextDistance": "1"},
        "Reconciliation": {"ExcludedTenants": ["t1", " "], "StrictKeys": True,
                           "HighPriorityThreshold": "50", "hide-missing": "yes"},
    })
    assert rules.validation.numeric_tolerance == Decimal("0.05")
    assert rules.validation.date_tolerance_days == 2
    assert rules.validation.text_distance == 1
    assert rules.reconciliation.excluded_tenants == ("t1",)
    assert rules.reconciliation.key_columns == STRICT_KEYS
    assert rules.reconciliation.high_priority_threshold == Decimal("50")
    assert rules.reconciliation.hide_missing is True


def test_env_var_and_broken_json(tmp_path, monkeypatch):
    good = tmp_path / "good.json"
    good.write_text(json.dumps({"Validation": {"MaxDetailedRows": 5}}), encoding="utf-8")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(good))
    assert load_rules().validation.max_detailed_rows == 5

    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    assert load_rules(str(broken)) == Rules()
