"""
WARDEN Aggregate Trust

Combines an agent's per-repository Trust Metrics into one score.
Each repository contributes in proportion to how much evidence it holds
(merges + validation runs), and a single poorly performing repository
vetoes global eligibility no matter how the others look.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from warden.config_loader import TrustConfig
from warden.models import TrustMetrics
from warden.trust.ledger import TrustLedger

ACCEPTANCE_WEIGHT = 0.35
VALIDATION_WEIGHT = 0.35
REVIEW_WEIGHT = 0.20
STREAK_WEIGHT = 0.10
STREAK_SATURATION = 10
NO_HISTORY_ACCEPTANCE = 0.5


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def score_trust(metrics: TrustMetrics) -> float:
    """Per-repository trust score in [0, 1]."""
    merges = metrics.total_merges
    acceptance = metrics.merges_accepted / merges if merges > 0 else NO_HISTORY_ACCEPTANCE
    streak = min(1.0, max(0, metrics.consecutive_clean_merges) / STREAK_SATURATION)
    score = (
        ACCEPTANCE_WEIGHT * _clamp(acceptance)
        + VALIDATION_WEIGHT * _clamp(metrics.validation_pass_rate)
        + REVIEW_WEIGHT * _clamp(metrics.pr_review_score)
        + STREAK_WEIGHT * streak
    )
    return _clamp(score)


def trust_weight(metrics: TrustMetrics) -> int:
    return max(1, metrics.total_merges + metrics.total_runs)


@dataclass
class RepoTrustEntry:
    repo_slug: str
    score: float
    weight: int
    metrics: TrustMetrics

    def to_dict(self) -> dict[str, Any]:
        return {
            "repoSlug": self.repo_slug,
            "score": round(self.score, 4),
            "weight": self.weight,
            "metrics": self.metrics.to_record(),
        }


@dataclass
class AgentTrustSummary:
    agent_name: str
    aggregate_score: float = 0.0
    min_repo_score: float = 0.0
    global_eligible: bool = False
    repos: list[RepoTrustEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentName": self.agent_name,
            "aggregateScore": self.aggregate_score,
            "minRepoScore": round(self.min_repo_score, 4),
            "globalEligible": self.global_eligible,
            "repos": [r.to_dict() for r in self.repos],
        }


def summarize_trust(
    agent_name: str,
    per_repo: list[tuple[str, TrustMetrics]],
    config: TrustConfig | None = None,
) -> AgentTrustSummary:
    """Pure aggregation over already-loaded metrics."""
    config = config or TrustConfig()
    summary = AgentTrustSummary(agent_name=agent_name)
    if not per_repo:
        return summary

    for slug, metrics in per_repo:
        summary.repos.append(RepoTrustEntry(slug, score_trust(metrics), trust_weight(metrics), metrics))

    total_weight = sum(entry.weight for entry in summary.repos)
    weighted = sum(entry.score * entry.weight for entry in summary.repos)
    summary.aggregate_score = round(weighted / total_weight, 4)
    summary.min_repo_score = min(entry.score for entry in summary.repos)
    summary.global_eligible = (
        summary.min_repo_score >= config.min_repo_score
        and summary.aggregate_score >= config.min_aggregate_score
    )
    return summary


def compute_aggregate_trust(
    ledger: TrustLedger,
    agent_name: str,
    repo_slugs: list[str],
    config: TrustConfig | None = None,
) -> AgentTrustSummary:
    """Aggregate one agent's trust across the distinct repositories in repo_slugs."""
    distinct = list(dict.fromkeys(repo_slugs))
    per_repo = [(slug, ledger.load(slug, agent_name)) for slug in distinct]
    return summarize_trust(agent_name, per_repo, config or ledger.config)


def compute_trust_aggregation(
    ledger: TrustLedger,
    repo_slugs: list[str],
    config: TrustConfig | None = None,
) -> list[AgentTrustSummary]:
    """Summaries for every agent with a ledger entry in any of repo_slugs, best first."""
    agents: set[str] = set()
    for slug in repo_slugs:
        agents.update(ledger.agents(slug))

    summaries = [compute_aggregate_trust(ledger, agent, repo_slugs, config) for agent in sorted(agents)]
    return sorted(summaries, key=lambda s: -s.aggregate_score)
