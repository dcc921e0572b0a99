"""
WARDEN Auto-Merge Orchestrator

Given a finished agent branch for a Work Document, merge it without a human
only if the Eligibility Decision Engine says so.

  ineligible -> note on the Work Document, nothing merged
  merge fails -> note with the git error, trust untouched, rule stays enabled
  merged     -> accepted merge in the Trust Ledger, new Impact Record, note
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from loguru import logger

from warden.autonomy.eligibility import AutonomyDecision, EligibilityEngine
from warden.event_bus import EventBus, bus
from warden.git import GitError, GitRunner
from warden.impact.assessor import ImpactAssessor, make_merge_id
from warden.models import MergeImpactRecord, WorkDocument, utc_now
from warden.store import StoreError
from warden.trust.ledger import TrustLedger
from warden.work.manager import WorkDocumentStore

NOTE_AUTHOR = "autonomy"


@dataclass
class MergeOutcome:
    merged: bool
    reason: str
    decision: AutonomyDecision
    record: MergeImpactRecord | None = None


class AutoMergeOrchestrator:

    def __init__(
        self,
        eligibility: EligibilityEngine,
        ledger: TrustLedger,
        assessor: ImpactAssessor,
        work_store: WorkDocumentStore,
        git_factory: Callable[[Path], GitRunner] = GitRunner,
        event_bus: EventBus | None = None,
    ):
        self.eligibility = eligibility
        self.ledger = ledger
        self.assessor = assessor
        self.work_store = work_store
        self.git_factory = git_factory
        self.event_bus = event_bus or bus

    def try_auto_merge(
        self,
        repo: str,
        repo_path: Path,
        doc: WorkDocument,
        agent_name: str,
        source_branch: str,
        target_branch: str,
    ) -> MergeOutcome:
        decision = self.eligibility.check(repo, agent_name, doc.code, doc.severity)

        if not decision.eligible:
            self.work_store.append_note(repo, doc, NOTE_AUTHOR, f"Auto-merge skipped: {decision.reason}")
            return MergeOutcome(False, decision.reason, decision)

        merged_at = utc_now()
        try:
            merge_id = make_merge_id(merged_at, agent_name, doc.code)
        except StoreError as e:
            logger.error(f"[AUTONOMY] Refusing to merge {source_branch}: {e}")
            self.work_store.append_note(repo, doc, NOTE_AUTHOR, f"Auto-merge skipped: {e}")
            return MergeOutcome(False, str(e), decision)

        try:
            self.git_factory(Path(repo_path)).merge_into(source_branch, target_branch)
        except GitError as e:
            logger.error(f"[AUTONOMY] Auto-merge of {source_branch} failed: {e}")
            self.work_store.append_note(repo, doc, NOTE_AUTHOR, f"Auto-merge failed: {e}")
            self.event_bus.emit(
                "auto_merge_failed",
                agent_name,
                {"findingId": doc.finding_id, "branch": source_branch, "error": str(e)},
                repo=repo,
            )
            return MergeOutcome(False, str(e), decision)

        self.ledger.record_merge_result(repo, agent_name, "accepted")
        record = self.assessor.record_auto_merge(
            repo,
            agent_name=agent_name,
            finding_code=doc.code,
            branch=source_branch,
            files=[doc.path] if doc.path else [],
            merged_at=merged_at,
            merge_id=merge_id,
        )
        self.work_store.append_note(
            repo, doc, NOTE_AUTHOR, f"Auto-merged {source_branch} into {target_branch} at {merged_at}."
        )

        self.event_bus.emit(
            "auto_merged",
            agent_name,
            {"findingId": doc.finding_id, "mergeId": record.merge_id, "branch": source_branch, "target": target_branch},
            repo=repo,
        )
        return MergeOutcome(True, "Merged", decision, record)
