"""
WARDEN Impact Assessor

Every auto-merge leaves a Merge Impact Record. Each cycle the assessor
recomputes the whole impact of every record from the current state:

  - introduced: current findings in the merged files with a different code
  - resolved:   the merged finding's code no longer appears in those files
  - reverted:   a "Revert ... <branch>" commit exists since the merge
  - churn:      commits touching the merged files since the merge

Assessment is idempotent: the impact object is replaced, never patched.
Git failures degrade to "no revert" / "zero churn" for that query.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Callable, Iterable

from loguru import logger

from warden.event_bus import EventBus, bus
from warden.git import GitError, GitRunner, bre_escape
from warden.models import FindingInstance, MergeImpact, MergeImpactRecord, utc_now
from warden.store import RecordStore, StoreError
from warden.work.finding_id import finding_id_for
from warden.work.manager import WorkDocumentStore
from warden.work.severity import SeverityPolicy

SEVERE = ("S0", "S1", "S2")

_MERGE_ID_UNSAFE = re.compile(r"[:.]")


def _check_merge_id(merge_id: str) -> None:
    if not merge_id or ".." in merge_id or "/" in merge_id or "\\" in merge_id:
        raise StoreError(f"Invalid mergeId: {merge_id}")


def make_merge_id(merged_at: str, agent_name: str, finding_code: str) -> str:
    merge_id = f"{_MERGE_ID_UNSAFE.sub('-', merged_at)}-{agent_name}-{finding_code}"
    _check_merge_id(merge_id)
    return merge_id


def create_impact_record(
    merge_id: str,
    agent_name: str,
    finding_code: str,
    branch: str,
    files: list[str],
    merged_at: str | None = None,
    auto_merged: bool = True,
) -> MergeImpactRecord:
    merged_at = merged_at or utc_now()
    return MergeImpactRecord(
        merge_id=merge_id,
        agent_name=agent_name,
        finding_code=finding_code,
        branch=branch,
        files=list(files),
        merged_at=merged_at,
        auto_merged=auto_merged,
        impact=MergeImpact(),
        assessed_at=merged_at,
    )


def has_severe_regression(records: Iterable[MergeImpactRecord]) -> bool:
    for record in records:
        for item in record.impact.new_findings_introduced:
            _, _, severity = item.rpartition(":")
            if severity in SEVERE:
                return True
    return False


def has_revert(records: Iterable[MergeImpactRecord]) -> bool:
    return any(record.impact.revert_detected for record in records)


def has_high_churn(records: Iterable[MergeImpactRecord], threshold: int = 10) -> bool:
    return any(record.impact.subsequent_churn >= threshold for record in records)


class ImpactAssessor:

    def __init__(
        self,
        store: RecordStore,
        work_store: WorkDocumentStore,
        severity_policy: SeverityPolicy,
        git_factory: Callable[[Path], GitRunner] = GitRunner,
        event_bus: EventBus | None = None,
    ):
        self.store = store
        self.work_store = work_store
        self.severity_policy = severity_policy
        self.git_factory = git_factory
        self.event_bus = event_bus or bus

    # -----------------------------------------------------------------------
    # Records
    # -----------------------------------------------------------------------

    def load_all(self, repo: str) -> list[MergeImpactRecord]:
        """Every readable record, newest merge first."""
        records = self.store.list_models(repo, "impact", MergeImpactRecord)
        return sorted(records, key=lambda r: r.merged_at, reverse=True)

    def save(self, repo: str, record: MergeImpactRecord) -> None:
        _check_merge_id(record.merge_id)
        with self.store.lock(repo, "impact", record.merge_id):
            self.store.put(repo, "impact", record.merge_id, record.to_record())

    def record_auto_merge(
        self,
        repo: str,
        agent_name: str,
        finding_code: str,
        branch: str,
        files: list[str],
        merged_at: str | None = None,
        merge_id: str | None = None,
    ) -> MergeImpactRecord:
        merged_at = merged_at or utc_now()
        record = create_impact_record(
            merge_id=merge_id or make_merge_id(merged_at, agent_name, finding_code),
            agent_name=agent_name,
            finding_code=finding_code,
            branch=branch,
            files=files,
            merged_at=merged_at,
            auto_merged=True,
        )
        self.save(repo, record)
        logger.info(f"[IMPACT] Opened impact record {record.merge_id}")
        return record

    # -----------------------------------------------------------------------
    # Assessment
    # -----------------------------------------------------------------------

    def assess(self, repo: str, repo_path: Path, findings: Iterable[FindingInstance]) -> list[MergeImpactRecord]:
        records = self.load_all(repo)
        if not records:
            return []

        findings = list(findings)
        docs = {doc.finding_id: doc for doc in self.work_store.load_all(repo)}
        git = self.git_factory(Path(repo_path))

        def severity_of(finding: FindingInstance) -> str:
            doc = docs.get(finding_id_for(finding))
            return doc.severity if doc else self.severity_policy.assign_initial_severity(finding)

        for record in records:
            files = set(record.files)
            touching = [f for f in findings if f.path and f.path in files]

            introduced = [
                f"{f.code}:{severity_of(f)}"
                for f in sorted(touching, key=lambda f: (f.code, f.path or "", f.symbol or ""))
                if f.code != record.finding_code
            ]
            original_resolved = not any(f.code == record.finding_code for f in touching)

            record.impact = MergeImpact(
                new_findings_introduced=introduced,
                findings_resolved=[record.finding_code] if original_resolved else [],
                revert_detected=self.detect_revert(git, record.merged_at, record.branch),
                subsequent_churn=self.count_churn(git, record.merged_at, record.files),
            )
            record.assessed_at = utc_now()
            self.save(repo, record)

            if introduced or record.impact.revert_detected:
                self.event_bus.emit("impact_regression", record.agent_name, record.to_record(), repo=repo)

        logger.info(f"[IMPACT] {repo}: assessed {len(records)} impact records")
        return records

    @staticmethod
    def detect_revert(git: GitRunner, merged_at: str, branch: str) -> bool:
        try:
            return bool(git.log_since(merged_at, grep=f"Revert.*{bre_escape(branch)}"))
        except GitError as e:
            logger.warning(f"[IMPACT] Revert detection failed for {branch}: {e}")
            return False

    @staticmethod
    def count_churn(git: GitRunner, merged_at: str, files: list[str]) -> int:
        churn = 0
        for path in files:
            try:
                churn += len(git.log_since(merged_at, paths=[path]))
            except GitError as e:
                logger.warning(f"[IMPACT] Churn count failed for {path}: {e}")
        return churn

