from pathlib import Path

from warden.autonomy.eligibility import REASON_DISABLED, REASON_ELIGIBLE
from warden.models import FindingInstance
from warden.parallel import run_parallel
from warden.views import global_state, repo_state

AGENT = "lint-fix-agent"


def test_trusted_agent_merges_then_loses_autonomy_after_regression(controller, seed_trust, open_doc, fake_git):
    seed_trust("alpha", AGENT, validation_pass_rate=0.97, consecutive_clean_merges=12, total_runs=20)
    controller.policy_store.grant_rule("alpha", AGENT)
    doc = open_doc(code="WD-M6-003", path="src/app.ts", severity="S4")

    decision = controller.eligibility.check("alpha", AGENT, "WD-M6-003", "S4")
    assert decision.eligible is True
    assert decision.reason == REASON_ELIGIBLE

    outcome = controller.merger.try_auto_merge("alpha", Path("/tmp/alpha"), doc, AGENT, "agent/lint-fix", "main")
    assert outcome.merged is True

    # Next cycle: the merged file now carries an S1 finding.
    regression = FindingInstance(code="WD-M4-003", metric="security", summary="1 secret", path="src/app.ts")
    result = controller.run_cycle(controller.repo("alpha"), [regression])

    assert result.status == "completed"
    assert result.assessed[0].impact.new_findings_introduced == ["WD-M4-003:S1"]
    assert [r.agent_name for r in result.revoked] == [AGENT]
    assert "severe regression" in result.revoked[0].revocation_reason.lower()

    rule = controller.policy_store.load_config("alpha").rule_for(AGENT)
    assert rule.enabled is False
    assert controller.eligibility.check("alpha", AGENT, "WD-M6-003", "S4").reason == REASON_DISABLED


def test_cycle_is_repeatable(controller):
    findings = [FindingInstance(code="WD-M6-003", metric="lint", summary="4 errors", path="src/a.ts")]
    first = controller.run_cycle(controller.repo("alpha"), findings)
    second = controller.run_cycle(controller.repo("alpha"), findings)

    assert len(first.summary.created) == 1
    assert second.summary.created == []
    assert second.summary.by_status == {"unassigned": 1}
    assert second.to_dict()["workDocuments"]["updated"] == 1


def test_cycle_emits_lifecycle_events(controller, events):
    controller.run_cycle(controller.repo("alpha"), [])
    assert [e.event_type for e in events] == ["cycle_started", "cycle_completed"]


def test_parallel_cycles_isolate_failures(controller, monkeypatch):
    original = controller.assessor.assess

    def flaky_assess(repo, repo_path, findings):
        if repo == "beta":
            raise RuntimeError("disk on fire")
        return original(repo, repo_path, findings)

    monkeypatch.setattr(controller.assessor, "assess", flaky_assess)
    finding = FindingInstance(code="WD-M1-001", metric="churn", summary="5 commits", path="src/x.ts")
    jobs = [(controller.repo("beta"), [finding]), (controller.repo("alpha"), [finding])]

    results = run_parallel(controller, jobs, quiet=True)

    assert [(r.repo_slug, r.status) for r in results] == [("alpha", "completed"), ("beta", "error")]
    assert "disk on fire" in results[1].error
    assert len(controller.work_store.load_all("alpha")) == 1


def test_state_views(controller, seed_trust):
    seed_trust("alpha", AGENT)
    controller.policy_store.grant_rule("alpha", AGENT)
    controller.policy_store.grant_global_policy(AGENT, 0.7)
    controller.run_cycle(
        controller.repo("alpha"),
        [FindingInstance(code="WD-M6-003", metric="lint", summary="2 errors", path="src/a.ts")],
    )

    state = repo_state(controller, "alpha")
    assert state["repoSlug"] == "alpha"
    assert state["workDocuments"][0]["findingId"] == "WD-M6-003--src-a-ts"
    assert state["trustMetrics"][0]["agentName"] == AGENT
    assert state["autonomy"]["rules"][0]["agentName"] == AGENT
    assert state["impactRecords"] == []

    overview = global_state(controller)
    assert overview["repos"] == ["alpha", "beta"]
    assert overview["policies"][0]["minAggregateScore"] == 0.7
    assert overview["trustAggregation"][0]["agentName"] == AGENT
