"""
WARDEN Trust

Per-(repo, agent) rolling metrics and the cross-repository aggregate
that global autonomy policies are checked against.
"""

from warden.trust.aggregate import (
    AgentTrustSummary,
    RepoTrustEntry,
    compute_aggregate_trust,
    compute_trust_aggregation,
    score_trust,
    summarize_trust,
    trust_weight,
)
from warden.trust.ledger import TrustLedger

__all__ = [
    "AgentTrustSummary",
    "RepoTrustEntry",
    "TrustLedger",
    "compute_aggregate_trust",
    "compute_trust_aggregation",
    "score_trust",
    "summarize_trust",
    "trust_weight",
]
