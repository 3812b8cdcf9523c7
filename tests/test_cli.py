"""Functional tests for the `clash` command-line surface.

Commands run through typer's CliRunner inside a throwaway repository
(a bare .git marker under tmp_path) with HOME pointed at tmp_path.
"""

import logging
import shutil

import pytest
import yaml
from typer.testing import CliRunner

from clash.audit import AuditLedger
from clash.main import app

runner = CliRunner()


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    repo = tmp_path / "repo"
    (repo / ".git").mkdir(parents=True)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("CLASH_POLICY", raising=False)
    monkeypatch.chdir(repo)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield repo
    # the CLI callback reconfigures root logging against the runner's captured stderr
    root.handlers[:] = handlers
    root.setLevel(level)


def _ledger(repo) -> AuditLedger:
    return AuditLedger(repo / ".clash" / "audit.log")


def test_policy_explain_prints_effective_policy(workspace):
    result = runner.invoke(app, ["policy", "explain"])
    assert result.exit_code == 0, result.output
    assert "# source: embedded default" in result.stdout
    data = yaml.safe_load(result.stdout)
    assert data["thresholds"]["delete_count"] == 25
    assert "git status" in data["allow_commands"]


def test_policy_explain_merges_repo_override(workspace):
    (workspace / "clash.yaml").write_text("thresholds:\n  delete_count: 3\nallow_commands: [ls]\n")
    result = runner.invoke(app, ["policy", "explain"])
    assert result.exit_code == 0, result.output
    data = yaml.safe_load(result.stdout)
    assert data["thresholds"]["delete_count"] == 3
    assert data["thresholds"]["preview_sample"] == 10
    assert data["allow_commands"] == ["ls"]


def test_malformed_policy_is_reported(workspace):
    bad = workspace / "bad.yaml"
    bad.write_text("thresholds: [1, 2\n")
    result = runner.invoke(app, ["--policy", str(bad), "policy", "explain"])
    assert result.exit_code == 1

    result = runner.invoke(app, ["--policy", str(bad), "run", "--", "ls"])
    assert result.exit_code == 1
    assert list(_ledger(workspace).entries()) == []


def test_init_writes_default_policy_once(workspace):
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0, result.output
    created = workspace / "clash.yaml"
    assert yaml.safe_load(created.read_text())["options"]["require_clean_tree_for_break_glass"] is True

    result = runner.invoke(app, ["init"])
    assert result.exit_code == 1


def test_run_allowed_command(workspace):
    result = runner.invoke(app, ["run", "--", "ls"])
    assert result.exit_code == 0, result.output
    assert "ALLOW" in result.output
    (entry,) = _ledger(workspace).entries()
    assert entry.command == "ls"
    assert entry.outcome.value == "executed"


def test_run_confirmed_with_yes_flag(workspace):
    junk = workspace / "junk.txt"
    junk.write_text("x")
    result = runner.invoke(app, ["--yes", "run", "--", "rm", "junk.txt"])
    assert result.exit_code == 0, result.output
    assert "CONFIRM" in result.output
    assert not junk.exists()
    (entry,) = _ledger(workspace).entries()
    assert entry.approved_by == "--yes"
    assert entry.preview.count == 1


def test_run_confirm_declined_on_stdin(workspace):
    junk = workspace / "junk.txt"
    junk.write_text("x")
    result = runner.invoke(app, ["run", "--", "rm", "junk.txt"], input="n\n")
    assert result.exit_code == 1
    assert junk.exists()
    (entry,) = _ledger(workspace).entries()
    assert entry.outcome.value == "cancelled"


def test_run_catastrophic_rm_is_blocked(workspace):
    result = runner.invoke(app, ["--yes", "run", "--", "rm", "-rf", "/"])
    assert result.exit_code == 1
    assert "BLOCKED (hard)" in result.output
    (entry,) = _ledger(workspace).entries()
    assert entry.decision == "BLOCK"
    assert entry.hard is True


def test_decision_explain_round_trip(workspace):
    runner.invoke(app, ["run", "--", "rm", "-rf", "/"])
    (entry,) = _ledger(workspace).entries()

    result = runner.invoke(app, ["decision", "explain", entry.id])
    assert result.exit_code == 0, result.output
    assert "Decision: BLOCK (hard=true)" in result.stdout
    assert "Command: rm -rf /" in result.stdout
    assert "Outcome: blocked exit=1" in result.stdout


def test_decision_explain_unknown_id(workspace):
    result = runner.invoke(app, ["decision", "explain", "no-such-id"])
    assert result.exit_code == 1


def test_run_without_command(workspace):
    result = runner.invoke(app, ["run"])
    assert result.exit_code == 1
    assert list(_ledger(workspace).entries()) == []


def test_doctor_reports_environment(workspace):
    result = runner.invoke(app, ["doctor"])
    assert result.exit_code == 0, result.output
    assert "doctor" in result.stdout
    assert "audit log" in result.stdout


@pytest.mark.skipif(shutil.which("codex") is not None, reason="codex is installed")
def test_agent_wrapper_gates_the_agent_cli(workspace):
    result = runner.invoke(app, ["codex", "--", "--version"])
    assert result.exit_code == 127
    (entry,) = _ledger(workspace).entries()
    assert entry.command == "codex --version"
    assert entry.outcome.value == "failed"
