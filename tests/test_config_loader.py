import json

import pytest

from warden.config_loader import UnknownRepoError, get_repo_config, load_config, load_repo_configs


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("WARDEN_DATA_DIR", raising=False)
    monkeypatch.delenv("WARDEN_CONFIG_DIR", raising=False)


def test_defaults_resolve_against_root(tmp_path):
    config = load_config(tmp_path)

    assert config.storage.data_path == tmp_path.resolve() / "data"
    assert config.storage.config_path == tmp_path.resolve() / "config"
    assert config.autonomy.min_consecutive_clean_merges == 10
    assert config.autonomy.severity_cap_direction == "no-worse-than"
    assert config.trust.min_aggregate_score == 0.7


def test_installation_overrides_merge(tmp_path):
    override = tmp_path / ".warden" / "config.yaml"
    override.parent.mkdir()
    override.write_text(
        "autonomy:\n"
        "  min_total_runs: 25\n"
        "  severity_cap_direction: no-milder-than\n"
        "severity:\n"
        "  overrides:\n"
        "    WD-M6-003: S2\n"
    )

    config = load_config(tmp_path)

    assert config.autonomy.min_total_runs == 25
    assert config.autonomy.min_validation_pass_rate == 0.95
    assert config.autonomy.severity_cap_direction == "no-milder-than"
    assert config.severity.overrides == {"WD-M6-003": "S2"}


def test_env_overrides_storage(tmp_path, monkeypatch):
    monkeypatch.setenv("WARDEN_DATA_DIR", str(tmp_path / "elsewhere"))
    config = load_config(tmp_path)
    assert config.storage.data_path == tmp_path / "elsewhere"


def test_load_repo_configs(tmp_path):
    config = load_config(tmp_path)
    config.storage.config_path.mkdir(parents=True)
    (config.storage.config_path / "repos.json").write_text(json.dumps([
        {"slug": "alpha", "path": "/src/alpha", "type": "node", "collectors": {"git": True}},
        {"path": "/src/missing-slug"},
        {"slug": "beta", "path": "/src/beta"},
    ]))

    repos = load_repo_configs(config)

    assert [r.slug for r in repos] == ["alpha", "beta"]
    assert repos[1].type == "unknown"
    assert get_repo_config(repos, "beta").path == "/src/beta"
    with pytest.raises(UnknownRepoError):
        get_repo_config(repos, "gamma")


def test_missing_repos_file_means_no_repos(tmp_path):
    assert load_repo_configs(load_config(tmp_path)) == []


def test_repos_file_must_be_a_list(tmp_path):
    config = load_config(tmp_path)
    config.storage.config_path.mkdir(parents=True)
    (config.storage.config_path / "repos.json").write_text(json.dumps({"slug": "alpha"}))

    with pytest.raises(ValueError):
        load_repo_configs(config)
