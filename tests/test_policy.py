import pytest

from warden.autonomy.policy import AutonomyError, AutonomyPolicyStore, effective_thresholds
from warden.config_loader import AutonomyDefaultsConfig
from warden.models import AutonomyConditions, AutonomyGlobalDefaults, AutonomyRule, GlobalAutonomyPolicy
from warden.store import MemoryStore

AGENT = "lint-fix-agent"


@pytest.fixture
def policy_store():
    return AutonomyPolicyStore(MemoryStore())


def test_missing_config_normalizes_to_defaults(policy_store):
    config = policy_store.load_config("alpha")

    assert config.rules == []
    assert config.global_defaults.min_consecutive_clean_merges == 10
    assert config.global_defaults.min_validation_pass_rate == 0.95
    assert config.global_defaults.min_total_runs == 5
    assert config.global_defaults.max_severity == "S3"


def test_defaults_follow_configuration():
    store = AutonomyPolicyStore(MemoryStore(), AutonomyDefaultsConfig(min_total_runs=50, max_severity="S4"))
    defaults = store.load_config("alpha").global_defaults

    assert defaults.min_total_runs == 50
    assert defaults.max_severity == "S4"


def test_normalize_drops_malformed_rules_and_merges_defaults(policy_store):
    policy_store.store.put("alpha", "autonomy", "", {
        "rules": [{"enabled": True}, {"agentName": AGENT}],
        "globalDefaults": {"minTotalRuns": 2},
    })
    config = policy_store.load_config("alpha")

    assert [r.agent_name for r in config.rules] == [AGENT]
    assert config.global_defaults.min_total_runs == 2
    assert config.global_defaults.min_consecutive_clean_merges == 10


def test_non_object_config_is_treated_as_missing(policy_store):
    policy_store.store.put("alpha", "autonomy", "", ["not", "a", "config"])
    assert policy_store.load_config("alpha").rules == []


def test_grant_rule_persists_enabled_rule(policy_store):
    rule = policy_store.grant_rule("alpha", AGENT, allowed_codes=["WD-M6-003", " "], max_severity="s4")

    stored = policy_store.load_config("alpha").rule_for(AGENT)
    assert stored is not None
    assert stored.enabled is True
    assert stored.granted_by == "manual"
    assert stored.allowed_codes == ["WD-M6-003"]
    assert stored.max_severity == "S4"
    assert rule.agent_name == AGENT


def test_grant_replaces_and_reenables(policy_store):
    policy_store.grant_rule("alpha", AGENT)
    policy_store.grant_rule("alpha", "docs-agent")
    policy_store.revoke_rule("alpha", AGENT, "Manual revoke")
    policy_store.grant_rule("alpha", AGENT, min_total_runs=3)

    rules = policy_store.list_rules("alpha")
    assert [r.agent_name for r in rules] == [AGENT, "docs-agent"]
    assert rules[0].enabled is True
    assert rules[0].revocation_reason is None
    assert rules[0].conditions.min_total_runs == 3


@pytest.mark.parametrize("kwargs", [
    {"max_severity": "S9"},
    {"min_validation_pass_rate": 1.5},
    {"min_consecutive_clean_merges": -1},
    {"min_total_runs": -3},
])
def test_grant_rejects_invalid_input(policy_store, kwargs):
    with pytest.raises(AutonomyError):
        policy_store.grant_rule("alpha", AGENT, **kwargs)
    assert policy_store.list_rules("alpha") == []


def test_grant_requires_agent(policy_store):
    with pytest.raises(AutonomyError):
        policy_store.grant_rule("alpha", "  ")


def test_revoke_keeps_rule_disabled(policy_store):
    policy_store.grant_rule("alpha", AGENT)
    policy_store.revoke_rule("alpha", AGENT, "Manual revoke")

    rule = policy_store.load_config("alpha").rule_for(AGENT)
    assert rule.enabled is False
    assert rule.revoked_at is not None
    assert rule.revocation_reason == "Manual revoke"


def test_revoke_unknown_agent(policy_store):
    with pytest.raises(AutonomyError):
        policy_store.revoke_rule("alpha", "ghost", "nope")


def test_global_policy_upserts_by_scope(policy_store):
    policy_store.grant_global_policy(AGENT, 0.8, allowed_codes=["WD-M6-003"])
    policy_store.grant_global_policy(AGENT, 0.9, allowed_codes=["WD-M6-003"])
    policy_store.grant_global_policy(AGENT, 0.75, allowed_codes=["WD-M6-003"], applies_to=["alpha"])

    policies = policy_store.list_global_policies()
    assert [(p.min_aggregate_score, p.applies_to) for p in policies] == [(0.9, []), (0.75, ["alpha"])]


def test_global_policy_defaults_to_all_severities(policy_store):
    policy = policy_store.grant_global_policy(AGENT, 0.7)
    assert policy.allowed_severities == ["S0", "S1", "S2", "S3", "S4", "S5"]


@pytest.mark.parametrize("score", [-0.1, 1.1])
def test_global_policy_rejects_out_of_range_score(policy_store, score):
    with pytest.raises(AutonomyError):
        policy_store.grant_global_policy(AGENT, score)


def test_malformed_global_policies_are_dropped(policy_store):
    policy_store.store.put(None, "autonomy-global", "", {
        "policies": [{"agentName": AGENT}, {"agentName": AGENT, "minAggregateScore": 0.8}],
    })
    assert len(policy_store.list_global_policies()) == 1


def test_effective_thresholds_layer_conditions_over_defaults():
    rule = AutonomyRule(
        agent_name=AGENT,
        max_severity="S4",
        conditions=AutonomyConditions(min_total_runs=2),
    )
    thresholds = effective_thresholds(rule, AutonomyGlobalDefaults())

    assert thresholds.min_total_runs == 2
    assert thresholds.min_consecutive_clean_merges == 10
    assert thresholds.max_severity == "S4"


def test_global_policy_matching():
    policy = GlobalAutonomyPolicy(
        agent_name=AGENT,
        min_aggregate_score=0.8,
        allowed_severities=["S3", "S4"],
        allowed_codes=["WD-M6-003"],
        applies_to=["alpha"],
    )

    assert policy.matches("alpha", AGENT, "WD-M6-003", "S4")
    assert not policy.matches("beta", AGENT, "WD-M6-003", "S4")
    assert not policy.matches("alpha", "other", "WD-M6-003", "S4")
    assert not policy.matches("alpha", AGENT, "WD-M1-001", "S4")
    assert not policy.matches("alpha", AGENT, "WD-M6-003", "S1")


def test_stored_policy_with_empty_severities_covers_all(policy_store):
    policy_store.store.put(None, "autonomy-global", "", {
        "policies": [{"agentName": AGENT, "minAggregateScore": 0.9, "allowedSeverities": []}],
    })

    policy = policy_store.list_global_policies()[0]
    assert policy.allowed_severities == ["S0", "S1", "S2", "S3", "S4", "S5"]
    assert policy.matches("alpha", AGENT, "WD-M6-003", "S4")
