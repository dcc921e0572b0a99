"""
WARDEN Eligibility Decision Engine

Decides whether an agent may merge its own fix for a finding, without a human.
Gates, in order:

  1. an enabled AutonomyRule exists for (repo, agent)
  2. the finding's code and severity are inside the rule's scope
  3. the repo's Trust Metrics meet the effective thresholds
  4. every matching GlobalAutonomyPolicy is backed by aggregate trust
     (globalEligible and at least one policy's minAggregateScore)

Every verdict carries a human-readable reason plus the rule and policies it
was judged against.

Severity cap direction is configuration (autonomy.severity_cap_direction):
  no-worse-than   finding rank >= cap rank   (cap S3 admits S3, S4, S5)
  no-milder-than  finding rank <= cap rank   (cap S3 admits S0..S3)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from warden.config_loader import SeverityCapDirection, TrustConfig
from warden.event_bus import EventBus, bus
from warden.models import (
    AutonomyConfig,
    AutonomyGlobalDefaults,
    AutonomyRule,
    GlobalAutonomyPolicy,
    TrustMetrics,
    severity_rank,
)
from warden.autonomy.policy import AutonomyPolicyStore, effective_thresholds
from warden.trust.aggregate import AgentTrustSummary, compute_aggregate_trust
from warden.trust.ledger import TrustLedger

REASON_NO_RULE = "No autonomy rule found."
REASON_DISABLED = "Autonomy rule is disabled."
REASON_OUT_OF_SCOPE = "Finding code or severity is outside allowed scope."
REASON_BELOW_THRESHOLD = "Trust metrics below threshold (consecutive clean merges, pass rate, or total runs)."
REASON_GLOBAL_POLICY = "Aggregate trust below global autonomy policy requirements."
REASON_ELIGIBLE = "Eligible for auto-merge."


@dataclass
class AutonomyDecision:
    eligible: bool
    reason: str
    rule: AutonomyRule | None = None
    policies: list[GlobalAutonomyPolicy] = field(default_factory=list)
    aggregate: AgentTrustSummary | None = None
    thresholds: AutonomyGlobalDefaults | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "eligible": self.eligible,
            "reason": self.reason,
            "rule": self.rule.to_record() if self.rule else None,
            "policies": [p.to_record() for p in self.policies],
            "aggregate": self.aggregate.to_dict() if self.aggregate else None,
            "thresholds": self.thresholds.to_record() if self.thresholds else None,
        }


def severity_within_cap(severity: str, cap: str, direction: SeverityCapDirection = "no-worse-than") -> bool:
    if direction == "no-worse-than":
        return severity_rank(severity) >= severity_rank(cap)
    if direction == "no-milder-than":
        return severity_rank(severity) <= severity_rank(cap)
    raise ValueError(f"Unknown severity cap direction: {direction}")


def rule_matches_scope(
    rule: AutonomyRule,
    finding_code: str,
    severity: str,
    defaults: AutonomyGlobalDefaults,
    direction: SeverityCapDirection = "no-worse-than",
) -> bool:
    if not rule.enabled:
        return False
    if rule.allowed_codes and finding_code not in rule.allowed_codes:
        return False
    return severity_within_cap(severity, rule.max_severity or defaults.max_severity, direction)


def metrics_meet_thresholds(metrics: TrustMetrics, thresholds: AutonomyGlobalDefaults) -> bool:
    return (
        metrics.consecutive_clean_merges >= thresholds.min_consecutive_clean_merges
        and metrics.validation_pass_rate >= thresholds.min_validation_pass_rate
        and metrics.total_runs >= thresholds.min_total_runs
    )


def decide_eligibility(
    repo: str,
    agent_name: str,
    finding_code: str,
    severity: str,
    config: AutonomyConfig,
    metrics: TrustMetrics,
    global_policies: list[GlobalAutonomyPolicy],
    aggregate: Callable[[], AgentTrustSummary],
    direction: SeverityCapDirection = "no-worse-than",
) -> AutonomyDecision:
    """
    Pure decision over already-loaded state. aggregate is only called when
    a global policy applies.
    """
    rule = config.rule_for(agent_name)
    if rule is None:
        return AutonomyDecision(False, REASON_NO_RULE)
    if not rule.enabled:
        return AutonomyDecision(False, REASON_DISABLED, rule)

    thresholds = effective_thresholds(rule, config.global_defaults)
    if not rule_matches_scope(rule, finding_code, severity, config.global_defaults, direction):
        return AutonomyDecision(False, REASON_OUT_OF_SCOPE, rule, thresholds=thresholds)

    if not metrics_meet_thresholds(metrics, thresholds):
        return AutonomyDecision(False, REASON_BELOW_THRESHOLD, rule, thresholds=thresholds)

    matching = [p for p in global_policies if p.matches(repo, agent_name, finding_code, severity)]
    if not matching:
        return AutonomyDecision(True, REASON_ELIGIBLE, rule, thresholds=thresholds)

    summary = aggregate()
    satisfied = summary.global_eligible and any(
        summary.aggregate_score >= p.min_aggregate_score for p in matching
    )
    if not satisfied:
        return AutonomyDecision(False, REASON_GLOBAL_POLICY, rule, matching, summary, thresholds)
    return AutonomyDecision(True, REASON_ELIGIBLE, rule, matching, summary, thresholds)


class EligibilityEngine:
    """Loads the inputs for decide_eligibility and publishes each verdict."""

    def __init__(
        self,
        policy_store: AutonomyPolicyStore,
        ledger: TrustLedger,
        monitored_repos: list[str] | None = None,
        direction: SeverityCapDirection | None = None,
        trust_config: TrustConfig | None = None,
        event_bus: EventBus | None = None,
    ):
        self.policy_store = policy_store
        self.ledger = ledger
        self.monitored_repos = list(monitored_repos or [])
        self.direction: SeverityCapDirection = direction or policy_store.defaults.severity_cap_direction
        self.trust_config = trust_config or ledger.config
        self.event_bus = event_bus or bus

    def aggregate_repos(self, repo: str, repo_slugs: list[str] | None = None) -> list[str]:
        slugs = list(repo_slugs) if repo_slugs else list(self.monitored_repos)
        if repo not in slugs:
            slugs.append(repo)
        return slugs

    def check(
        self,
        repo: str,
        agent_name: str,
        finding_code: str,
        severity: str,
        repo_slugs: list[str] | None = None,
    ) -> AutonomyDecision:
        decision = decide_eligibility(
            repo=repo,
            agent_name=agent_name,
            finding_code=finding_code,
            severity=severity,
            config=self.policy_store.load_config(repo),
            metrics=self.ledger.load(repo, agent_name),
            global_policies=self.policy_store.list_global_policies(),
            aggregate=lambda: compute_aggregate_trust(
                self.ledger, agent_name, self.aggregate_repos(repo, repo_slugs), self.trust_config
            ),
            direction=self.direction,
        )

        logger.info(
            f"[AUTONOMY] {repo}/{agent_name} {finding_code}@{severity}: "
            f"{'eligible' if decision.eligible else 'not eligible'} - {decision.reason}"
        )
        self.event_bus.emit(
            "eligibility_decision",
            agent_name,
            {"findingCode": finding_code, "severity": severity, **decision.to_dict()},
            repo=repo,
        )
        return decision
