"""
WARDEN Autonomy

Who may merge unattended, under which trust thresholds, and the
orchestration that acts on those decisions.
"""

from warden.autonomy.policy import AutonomyError, AutonomyPolicyStore, effective_thresholds
from warden.autonomy.eligibility import AutonomyDecision, EligibilityEngine, decide_eligibility
from warden.autonomy.merge import AutoMergeOrchestrator, MergeOutcome

__all__ = [
    "AutoMergeOrchestrator",
    "AutonomyDecision",
    "AutonomyError",
    "AutonomyPolicyStore",
    "EligibilityEngine",
    "MergeOutcome",
    "decide_eligibility",
    "effective_thresholds",
]
