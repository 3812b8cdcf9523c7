"""Functional tests for policy loading, merging and application settings.

Tests exercise real YAML documents on disk. No mocks.
"""

import json

import pytest
import yaml
from pydantic import ValidationError

from clash.config import (
    ArbiterConfig,
    Policy,
    PolicyOptions,
    Settings,
    Thresholds,
    default_policy,
    default_policy_yaml,
    find_policy_file,
    load_policy,
    load_settings,
    merge_policy,
    parse_policy,
    policy_to_yaml,
)
from clash.errors import PolicyError


def test_default_policy_values():
    p = default_policy()
    assert p.thresholds == Thresholds(delete_count=25, modify_count=50, preview_sample=10)
    assert "~/.ssh" in p.protected_paths
    assert "git status" in p.allow_commands
    assert "ls" not in p.allow_commands
    assert "mkfs" in p.block_commands
    assert "curl" in p.network_egress
    assert "npm" in p.package_managers
    assert p.arbiter.enabled is False
    assert p.options.allow_outside_repo is False
    assert p.options.require_clean_tree_for_break_glass is True


def test_missing_file_uses_defaults(tmp_path):
    assert load_policy(tmp_path / "clash.yaml") == default_policy()
    assert load_policy(None) == default_policy()


def test_override_lists_replace_wholesale(tmp_path):
    doc = tmp_path / "clash.yaml"
    doc.write_text("allow_commands:\n  - make test\nblock_commands: [dd]\n")

    p = load_policy(doc)
    assert p.allow_commands == ["make test"]
    assert p.block_commands == ["dd"]
    # untouched lists keep their defaults
    assert p.network_egress == default_policy().network_egress


def test_empty_list_keeps_default(tmp_path):
    doc = tmp_path / "clash.yaml"
    doc.write_text("allow_commands: []\nprotected_paths:\n")
    p = load_policy(doc)
    assert p.allow_commands == default_policy().allow_commands
    assert p.protected_paths == default_policy().protected_paths


def test_zero_thresholds_keep_default(tmp_path):
    doc = tmp_path / "clash.yaml"
    doc.write_text("thresholds:\n  delete_count: 5\n  preview_sample: 0\n")
    p = load_policy(doc)
    assert p.thresholds.delete_count == 5
    assert p.thresholds.modify_count == 50
    assert p.thresholds.preview_sample == 10


def test_arbiter_section_replaced_when_set():
    base = default_policy()
    merged = merge_policy(base, Policy(arbiter=ArbiterConfig(provider="stub")))
    assert merged.arbiter.provider == "stub"
    assert merged.arbiter.enabled is False

    merged = merge_policy(base, Policy())
    assert merged.arbiter == base.arbiter


def test_allow_outside_repo_is_ored():
    base = default_policy()
    assert merge_policy(base, Policy(options=PolicyOptions(allow_outside_repo=True))).options.allow_outside_repo
    on = base.model_copy(update={"options": PolicyOptions(allow_outside_repo=True)})
    assert merge_policy(on, Policy()).options.allow_outside_repo


def test_clean_tree_requirement_cannot_be_switched_off(tmp_path):
    doc = tmp_path / "clash.yaml"
    doc.write_text("options:\n  require_clean_tree_for_break_glass: false\n")
    assert load_policy(doc).options.require_clean_tree_for_break_glass is True

    relaxed = Policy(options=PolicyOptions(require_clean_tree_for_break_glass=False))
    tightened = merge_policy(relaxed, Policy(options=PolicyOptions(require_clean_tree_for_break_glass=True)))
    assert tightened.options.require_clean_tree_for_break_glass is True


def test_comma_separated_list_accepted():
    p = parse_policy("network_egress: curl, wget ,ftp\n")
    assert p.network_egress == ["curl", "wget", "ftp"]


def test_empty_document_is_zero_policy():
    assert parse_policy("") == Policy()
    assert parse_policy("thresholds:\narbiter:\n") == Policy()


@pytest.mark.parametrize("text", [
    "allow_commands: [unclosed\n",
    "- just\n- a list\n",
    "thresholds:\n  delete_count: -1\n",
    "thresholds:\n  delete_count: lots\n",
])
def test_malformed_policy_raises(tmp_path, text):
    doc = tmp_path / "clash.yaml"
    doc.write_text(text)
    with pytest.raises(PolicyError) as exc_info:
        load_policy(doc)
    assert str(doc) in str(exc_info.value)
    assert exc_info.value.hint


def test_unreadable_policy_raises(tmp_path):
    # A directory where the file should be
    doc = tmp_path / "clash.yaml"
    doc.mkdir()
    with pytest.raises(PolicyError):
        load_policy(doc)


def test_policy_yaml_round_trip():
    p = default_policy()
    assert parse_policy(policy_to_yaml(p)) == p
    assert parse_policy(default_policy_yaml()) == p


def test_policy_yaml_is_plain_mapping():
    data = yaml.safe_load(policy_to_yaml(default_policy()))
    assert data["thresholds"]["delete_count"] == 25
    assert data["options"]["require_clean_tree_for_break_glass"] is True


def test_policy_models_are_frozen():
    p = default_policy()
    with pytest.raises(ValidationError):
        p.thresholds.delete_count = 1


# ---------------------------------------------------------------------------
# Policy file lookup
# ---------------------------------------------------------------------------


def test_find_policy_file_precedence(tmp_path, monkeypatch):
    monkeypatch.delenv("CLASH_POLICY", raising=False)
    assert find_policy_file(None, str(tmp_path)) is None

    local = tmp_path / "clash.yaml"
    local.write_text("")
    assert find_policy_file(None, str(tmp_path)) == local

    env_doc = tmp_path / "env.yaml"
    monkeypatch.setenv("CLASH_POLICY", str(env_doc))
    assert find_policy_file(None, str(tmp_path)) == env_doc

    flag_doc = tmp_path / "flag.yaml"
    assert find_policy_file(str(flag_doc), str(tmp_path)) == flag_doc


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def test_settings_defaults(tmp_path, monkeypatch):
    monkeypatch.setattr("clash.config.SETTINGS_FILE", tmp_path / "nonexistent.json")
    for var in ("CLASH_THEME", "CLASH_LOG_LEVEL", "CLASH_TRACE"):
        monkeypatch.delenv(var, raising=False)
    s = load_settings()
    assert s.theme == "light"
    assert s.log_level == "WARNING"
    assert s.trace is False


def test_env_overrides_settings_file(tmp_path, monkeypatch):
    settings_file = tmp_path / "settings.json"
    settings_file.write_text(json.dumps({"theme": "dark", "log_level": "info"}))
    monkeypatch.setattr("clash.config.SETTINGS_FILE", settings_file)
    monkeypatch.delenv("CLASH_LOG_LEVEL", raising=False)
    monkeypatch.setenv("CLASH_THEME", "light")
    monkeypatch.setenv("CLASH_TRACE", "true")

    s = load_settings()
    assert s.theme == "light"
    assert s.log_level == "INFO"
    assert s.trace is True


def test_invalid_log_level_rejected(monkeypatch):
    monkeypatch.delenv("CLASH_LOG_LEVEL", raising=False)
    with pytest.raises(ValidationError):
        Settings(log_level="chatty")


def test_broken_settings_file_logs_warning(tmp_path, monkeypatch, caplog, capsys):
    settings_file = tmp_path / "settings.json"
    settings_file.write_text("{not json")
    monkeypatch.setattr("clash.config.SETTINGS_FILE", settings_file)
    for var in ("CLASH_THEME", "CLASH_LOG_LEVEL", "CLASH_TRACE"):
        monkeypatch.delenv(var, raising=False)

    with caplog.at_level("WARNING", logger="clash.config"):
        s = load_settings()
    assert s.theme == "light"
    assert any("Using defaults" in r.getMessage() for r in caplog.records)
    assert capsys.readouterr().out == ""
