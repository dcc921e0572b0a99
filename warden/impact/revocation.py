"""
WARDEN Revocation Engine

Closes the feedback loop: an enabled autonomy rule is disabled when its
agent's auto-merges did harm or its trust metrics slid. Checks run in
priority order and the first hit is the recorded reason:

  a. an auto-merge introduced an S0/S1/S2 finding
  b. an auto-merge was reverted
  c. validation pass rate below the effective threshold
  d. clean-merge streak below the effective threshold

Revocation only disables; rules and impact history are kept.
"""

from __future__ import annotations

from loguru import logger

from warden.autonomy.policy import AutonomyPolicyStore, effective_thresholds
from warden.event_bus import EventBus, bus
from warden.impact.assessor import ImpactAssessor, has_revert, has_severe_regression
from warden.models import AutonomyRule, MergeImpactRecord, utc_now
from warden.trust.ledger import TrustLedger

REASON_SEVERE_REGRESSION = "Severe regression: auto-merged change introduced a new S0/S1/S2 finding."
REASON_REVERTED = "Reverted: auto-merged change was reverted."
REASON_PASS_RATE = "Pass rate dropped below threshold."
REASON_CLEAN_STREAK = "Clean-merge streak dropped below threshold."


class RevocationEngine:

    def __init__(
        self,
        policy_store: AutonomyPolicyStore,
        ledger: TrustLedger,
        assessor: ImpactAssessor,
        event_bus: EventBus | None = None,
    ):
        self.policy_store = policy_store
        self.ledger = ledger
        self.assessor = assessor
        self.event_bus = event_bus or bus

    def evaluate_revocations(
        self, repo: str, impacts: list[MergeImpactRecord] | None = None
    ) -> list[AutonomyRule]:
        """Disable every enabled rule whose agent tripped a revocation check."""
        if impacts is None:
            impacts = self.assessor.load_all(repo)

        revoked: list[AutonomyRule] = []
        with self.policy_store.lock(repo):
            config = self.policy_store.load_config(repo)

            for rule in config.rules:
                if not rule.enabled:
                    continue

                agent_impacts = [i for i in impacts if i.agent_name == rule.agent_name and i.auto_merged]
                thresholds = effective_thresholds(rule, config.global_defaults)
                metrics = self.ledger.load(repo, rule.agent_name)

                reason = None
                if has_severe_regression(agent_impacts):
                    reason = REASON_SEVERE_REGRESSION
                elif has_revert(agent_impacts):
                    reason = REASON_REVERTED
                elif metrics.validation_pass_rate < thresholds.min_validation_pass_rate:
                    reason = REASON_PASS_RATE
                elif metrics.consecutive_clean_merges < thresholds.min_consecutive_clean_merges:
                    reason = REASON_CLEAN_STREAK

                if reason:
                    rule.enabled = False
                    rule.revoked_at = utc_now()
                    rule.revocation_reason = reason
                    revoked.append(rule)

            if revoked:
                self.policy_store.save_config(repo, config)

        for rule in revoked:
            logger.warning(f"[AUTONOMY] Revoked {rule.agent_name} on {repo}: {rule.revocation_reason}")
            self.event_bus.emit("autonomy_revoked", rule.agent_name, rule.to_record(), repo=repo)
        return revoked
