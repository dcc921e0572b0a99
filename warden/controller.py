"""
WARDEN Controller: the analysis cycle

It is NOT smart. It is deterministic. It wires the stores and engines
together and runs one repository's cycle:

  findings -> Work Document reconciliation
           -> impact assessment of every auto-merge
           -> revocation pass over the autonomy rules

Agents act out-of-band between cycles; when they finish a branch they go
through `controller.merger.try_auto_merge(...)`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

from loguru import logger

from warden.autonomy.eligibility import EligibilityEngine
from warden.autonomy.merge import AutoMergeOrchestrator
from warden.autonomy.policy import AutonomyPolicyStore
from warden.config_loader import RepoConfig, WardenConfig, get_repo_config, load_config, load_repo_configs
from warden.event_bus import EventBus, bus
from warden.git import GitRunner
from warden.impact.assessor import ImpactAssessor
from warden.impact.revocation import RevocationEngine
from warden.models import AutonomyRule, FindingInstance, MergeImpactRecord
from warden.store import FileStore, RecordStore
from warden.trust.ledger import TrustLedger
from warden.work.manager import ReconcileSummary, WorkDocumentStore, reconcile
from warden.work.severity import DefaultSeverityPolicy, SeverityPolicy


@dataclass
class CycleResult:
    repo_slug: str
    status: str = "pending"
    summary: ReconcileSummary | None = None
    assessed: list[MergeImpactRecord] = field(default_factory=list)
    revoked: list[AutonomyRule] = field(default_factory=list)
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "repoSlug": self.repo_slug,
            "status": self.status,
            "workDocuments": self.summary.to_dict() if self.summary else None,
            "impactRecordsAssessed": len(self.assessed),
            "revoked": [
                {"agentName": r.agent_name, "reason": r.revocation_reason} for r in self.revoked
            ],
            "error": self.error or None,
        }


class Controller:
    """Owns one installation's stores and engines."""

    def __init__(
        self,
        config: WardenConfig | None = None,
        store: RecordStore | None = None,
        repos: list[RepoConfig] | None = None,
        severity_policy: SeverityPolicy | None = None,
        git_factory: Callable[[Path], GitRunner] | None = None,
        event_bus: EventBus | None = None,
        root: Path | None = None,
    ):
        self.config = config or load_config(root)
        self.store = store or FileStore(self.config.storage.data_path, self.config.storage.config_path)
        self.repos = repos if repos is not None else load_repo_configs(self.config)
        self.event_bus = event_bus or bus
        self.severity_policy = severity_policy or DefaultSeverityPolicy(self.config.severity)
        self.git_factory = git_factory or self._default_git_factory

        # Stores
        self.work_store = WorkDocumentStore(self.store)
        self.ledger = TrustLedger(self.store, self.config.trust)
        self.policy_store = AutonomyPolicyStore(self.store, self.config.autonomy)

        # Engines
        self.eligibility = EligibilityEngine(
            self.policy_store,
            self.ledger,
            monitored_repos=self.repo_slugs,
            trust_config=self.config.trust,
            event_bus=self.event_bus,
        )
        self.assessor = ImpactAssessor(
            self.store, self.work_store, self.severity_policy, self.git_factory, self.event_bus
        )
        self.merger = AutoMergeOrchestrator(
            self.eligibility, self.ledger, self.assessor, self.work_store, self.git_factory, self.event_bus
        )
        self.revocations = RevocationEngine(self.policy_store, self.ledger, self.assessor, self.event_bus)

    @property
    def repo_slugs(self) -> list[str]:
        return [repo.slug for repo in self.repos]

    def repo(self, slug: str | None = None) -> RepoConfig:
        """Look up a configured repository; no slug means the first one."""
        if slug is None:
            if not self.repos:
                raise LookupError("No repos configured. Add entries to config/repos.json first.")
            return self.repos[0]
        return get_repo_config(self.repos, slug)

    def _default_git_factory(self, repo_path: Path) -> GitRunner:
        return GitRunner(repo_path, timeout=self.config.impact.git_timeout)

    def run_cycle(self, repo: RepoConfig, findings: Iterable[FindingInstance]) -> CycleResult:
        """Reconcile, assess, revoke. Persistence failures propagate."""
        findings = list(findings)
        result = CycleResult(repo_slug=repo.slug)
        self.event_bus.emit("cycle_started", "warden", {"findings": len(findings)}, repo=repo.slug)

        result.summary = reconcile(self.work_store, repo.slug, findings, self.severity_policy)
        result.assessed = self.assessor.assess(repo.slug, Path(repo.path), findings)
        result.revoked = self.revocations.evaluate_revocations(repo.slug, result.assessed)
        result.status = "completed"

        logger.info(
            f"[CYCLE] {repo.slug}: {len(result.assessed)} impact records, {len(result.revoked)} revocations"
        )
        self.event_bus.emit("cycle_completed", "warden", result.to_dict(), repo=repo.slug)
        return result
