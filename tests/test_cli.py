import json

import pytest
from typer.testing import CliRunner

from warden import __version__
from warden.cli import app

runner = CliRunner()


@pytest.fixture
def root(tmp_path, monkeypatch):
    monkeypatch.delenv("WARDEN_DATA_DIR", raising=False)
    monkeypatch.delenv("WARDEN_CONFIG_DIR", raising=False)
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "repos.json").write_text(json.dumps([
        {"slug": "alpha", "path": str(tmp_path / "alpha")},
        {"slug": "beta", "path": str(tmp_path / "beta")},
    ]))
    return tmp_path


def invoke(root, *args, **kwargs):
    return runner.invoke(app, ["--root", str(root), *args], **kwargs)


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"WARDEN v{__version__}" in result.stdout


def test_grant_list_revoke(root):
    result = invoke(root, "autonomy", "grant", "lint-fix-agent", "--repo", "alpha", "--codes", "WD-M6-003", "--yes")
    assert result.exit_code == 0
    assert "Granted auto-merge" in result.stdout

    autonomy = json.loads((root / "data" / "alpha" / "autonomy.json").read_text())
    assert autonomy["rules"][0]["agentName"] == "lint-fix-agent"
    assert autonomy["rules"][0]["allowedCodes"] == ["WD-M6-003"]

    result = invoke(root, "autonomy", "list", "--repo", "alpha")
    assert result.exit_code == 0
    assert "lint-fix-agent" in result.stdout

    result = invoke(root, "autonomy", "revoke", "lint-fix-agent", "--repo", "alpha", "--reason", "Paused")
    assert result.exit_code == 0
    autonomy = json.loads((root / "data" / "alpha" / "autonomy.json").read_text())
    assert autonomy["rules"][0]["enabled"] is False
    assert autonomy["rules"][0]["revocationReason"] == "Paused"


def test_grant_can_be_cancelled(root):
    result = invoke(root, "autonomy", "grant", "lint-fix-agent", "--repo", "alpha", input="n\n")
    assert result.exit_code == 0
    assert "Grant cancelled" in result.stdout
    assert not (root / "data" / "alpha" / "autonomy.json").exists()


def test_grant_rejects_bad_severity(root):
    result = invoke(root, "autonomy", "grant", "lint-fix-agent", "--repo", "alpha", "--max-severity", "S9", "--yes")
    assert result.exit_code == 1
    assert "Invalid severity" in result.stdout


def test_global_grant(root):
    result = invoke(root, "autonomy", "grant", "--global", "--agent", "lint-fix-agent", "--min-score", "0.8")
    assert result.exit_code == 0

    stored = json.loads((root / "config" / "autonomy-global.json").read_text())
    assert stored["policies"][0]["minAggregateScore"] == 0.8

    result = invoke(root, "autonomy", "list", "--global")
    assert "lint-fix-agent" in result.stdout


def test_revoke_unknown_agent_fails(root):
    result = invoke(root, "autonomy", "revoke", "ghost", "--repo", "alpha")
    assert result.exit_code == 1
    assert "No autonomy rule found" in result.stdout


def test_unknown_repo_fails(root):
    result = invoke(root, "autonomy", "list", "--repo", "gamma")
    assert result.exit_code == 1
    assert "Unknown repo slug" in result.stdout


def test_check_reports_reason(root):
    result = invoke(root, "autonomy", "check", "lint-fix-agent", "--code", "WD-M6-003", "--severity", "S4")
    assert result.exit_code == 2
    assert "No autonomy rule found." in result.stdout


def test_trust_record_and_show(root):
    for outcome in ("pass", "pass", "fail"):
        result = invoke(root, "trust", "record", "lint-fix-agent", "--repo", "alpha", "--validation", outcome)
        assert result.exit_code == 0

    metrics = json.loads((root / "data" / "alpha" / "trust" / "lint-fix-agent.json").read_text())
    assert metrics["totalRuns"] == 3
    assert metrics["consecutiveCleanMerges"] == 0

    result = invoke(root, "trust", "show")
    assert result.exit_code == 0
    assert "lint-fix-agent" in result.stdout


def test_trust_record_rejects_bad_outcome(root):
    result = invoke(root, "trust", "record", "lint-fix-agent", "--repo", "alpha", "--validation", "maybe")
    assert result.exit_code == 1


def test_cycle_and_state(root):
    findings = root / "findings.json"
    findings.write_text(json.dumps({
        "alpha": [{"code": "WD-M6-003", "metric": "lint", "summary": "3 errors", "path": "src/a.ts"}],
        "beta": [],
    }))

    result = invoke(root, "cycle", "--findings", str(findings))
    assert result.exit_code == 0

    result = invoke(root, "state", "--repo", "alpha")
    assert result.exit_code == 0
    state = json.loads(result.stdout)
    assert state["workDocuments"][0]["findingId"] == "WD-M6-003--src-a-ts"
    assert state["workDocuments"][0]["severity"] == "S3"

    audit = (root / "data" / "alpha" / "audit.jsonl").read_text().splitlines()
    assert [json.loads(line)["event_type"] for line in audit] == ["cycle_started", "cycle_completed"]


def test_cycle_with_missing_findings_file(root):
    result = invoke(root, "cycle", "--findings", str(root / "nope.json"))
    assert result.exit_code == 1


def test_impact_without_records(root):
    result = invoke(root, "autonomy", "impact", "--repo", "alpha")
    assert result.exit_code == 0
    assert "No auto-merge impact records" in result.stdout


def test_merge_unknown_work_document(root):
    result = invoke(root, "autonomy", "merge", "lint-fix-agent", "--finding", "WD-M6-003--nope", "--source", "agent/x")
    assert result.exit_code == 1
    assert "Work document not found" in result.stdout


def test_status(root):
    result = invoke(root, "status")
    assert result.exit_code == 0
    assert "alpha" in result.stdout


def test_cycle_with_malformed_findings_file(root):
    findings = root / "findings.json"
    findings.write_text("{not json")

    result = invoke(root, "cycle", "--findings", str(findings))
    assert result.exit_code == 1
    assert "Invalid findings file" in result.stdout


def test_trust_record_validates_all_flags_first(root):
    result = invoke(root, "trust", "record", "lint-fix-agent", "--repo", "alpha", "--validation", "pass", "--merge", "bogus")
    assert result.exit_code == 1
    assert "Invalid merge result" in result.stdout
    assert not (root / "data" / "alpha" / "trust" / "lint-fix-agent.json").exists()
