"""
WARDEN Work Document Lifecycle

Reconciles the current finding stream against the stored Work Documents:
  - new identity           -> create (unassigned, trend=new)
  - identity recurs        -> update lastSeen / consecutiveReports / trend / severity
  - resolved identity back -> reopen
  - identity disappears    -> resolve (unless already resolved or wont-fix)

All other status changes belong to agents and humans via update_work_document.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Iterable

from loguru import logger

from warden.models import FindingInstance, Severity, WorkDocument, WorkDocumentNote, severity_rank, utc_now
from warden.store import RecordStore
from warden.work.finding_id import finding_id_for
from warden.work.severity import REPORT_UPDATE_PREFIX, SeverityPolicy

SYSTEM_AUTHOR = "warden"
CLOSED_STATUSES = ("resolved", "wont-fix")

_UPDATABLE_FIELDS = {
    "severity",
    "status",
    "assigned_to",
    "related_branch",
    "plan_document",
    "validation_result",
    "trend",
}


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class WorkDocumentStore:
    """Work Documents for one installation, keyed by (repo, findingId)."""

    def __init__(self, store: RecordStore):
        self.store = store

    def load_all(self, repo: str) -> list[WorkDocument]:
        return self.store.list_models(repo, "work", WorkDocument)

    def load(self, repo: str, finding_id: str) -> WorkDocument | None:
        return self.store.get_model(repo, "work", finding_id, WorkDocument)

    def lock(self, repo: str, finding_id: str) -> threading.RLock:
        return self.store.lock(repo, "work", finding_id)

    def save(self, repo: str, doc: WorkDocument) -> None:
        with self.lock(repo, doc.finding_id):
            self.store.put(repo, "work", doc.finding_id, doc.to_record())

    def append_note(self, repo: str, doc: WorkDocument, author: str, text: str) -> WorkDocument:
        """Note on the stored copy of doc, keeping updates made since doc was loaded."""
        with self.lock(repo, doc.finding_id):
            current = self.load(repo, doc.finding_id) or doc
            add_note(current, author, text)
            self.save(repo, current)
        return current


# ---------------------------------------------------------------------------
# Document operations
# ---------------------------------------------------------------------------

def create_work_document(finding: FindingInstance, severity: Severity, now: str | None = None) -> WorkDocument:
    now = now or utc_now()
    return WorkDocument(
        finding_id=finding_id_for(finding),
        code=finding.code,
        metric=finding.metric,
        severity=severity,
        path=finding.path,
        symbol=finding.symbol,
        first_seen=now,
        last_seen=now,
        consecutive_reports=1,
        trend="new",
        status="unassigned",
        notes=[WorkDocumentNote(timestamp=now, author=SYSTEM_AUTHOR, text=f"First detected. Severity: {severity}.")],
    )


def add_note(doc: WorkDocument, author: str, text: str, now: str | None = None) -> None:
    doc.notes.append(WorkDocumentNote(timestamp=now or utc_now(), author=author, text=text))


def resolve_work_document(doc: WorkDocument, now: str | None = None) -> None:
    now = now or utc_now()
    doc.status = "resolved"
    doc.resolved_at = now
    add_note(doc, SYSTEM_AUTHOR, "Finding no longer active. Resolved.", now)


def update_work_document(doc: WorkDocument, updates: dict[str, Any], note: WorkDocumentNote | None = None) -> None:
    """Apply agent/human edits. Identity and history fields are not writable here."""
    unknown = set(updates) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    for key, value in updates.items():
        setattr(doc, key, value)
    if doc.status == "resolved" and not doc.resolved_at:
        doc.resolved_at = utc_now()
    if note:
        doc.notes.append(note)


def record_recurrence(doc: WorkDocument, finding: FindingInstance, policy: SeverityPolicy, now: str | None = None) -> bool:
    """Fold one more sighting into doc. Returns True when the document was reopened."""
    now = now or utc_now()
    reopened = doc.status == "resolved"
    if reopened:
        doc.status = "unassigned"
        doc.resolved_at = None
        doc.consecutive_reports = 0
        add_note(doc, SYSTEM_AUTHOR, "Finding reappeared. Reopened.", now)

    doc.trend = policy.compute_trend(doc, finding)
    doc.consecutive_reports += 1
    doc.last_seen = now

    new_severity = policy.evaluate_promotion(doc) or policy.evaluate_demotion(doc)
    if new_severity and new_severity != doc.severity:
        direction = "promoted" if severity_rank(new_severity) < severity_rank(doc.severity) else "demoted"
        add_note(doc, SYSTEM_AUTHOR, f"Severity {direction} from {doc.severity} to {new_severity} ({doc.trend}).", now)
        doc.severity = new_severity

    add_note(doc, SYSTEM_AUTHOR, f"{REPORT_UPDATE_PREFIX} {finding.summary}", now)
    return reopened


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

@dataclass
class ReconcileSummary:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    reopened: list[str] = field(default_factory=list)
    resolved: list[str] = field(default_factory=list)
    by_status: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "reopened": len(self.reopened),
            "resolvedThisRun": len(self.resolved),
            "byStatus": dict(self.by_status),
        }


def _index_findings(findings: Iterable[FindingInstance]) -> dict[str, FindingInstance]:
    """One finding per identity; duplicates collapse to the lowest (summary, metric)."""
    indexed: dict[str, FindingInstance] = {}
    for finding in findings:
        fid = finding_id_for(finding)
        current = indexed.get(fid)
        if current is None or (finding.summary, finding.metric) < (current.summary, current.metric):
            indexed[fid] = finding
    return indexed


def reconcile(
    store: WorkDocumentStore,
    repo: str,
    findings: Iterable[FindingInstance],
    policy: SeverityPolicy,
    now: str | None = None,
) -> ReconcileSummary:
    """
    Bring the stored Work Documents for repo in line with this cycle's findings.

    The outcome depends only on the stored documents and the set of findings,
    never on the order the findings arrive in.
    """
    now = now or utc_now()
    active = _index_findings(findings)
    stored_ids = {doc.finding_id for doc in store.load_all(repo)}
    docs: dict[str, WorkDocument] = {}
    summary = ReconcileSummary()

    # Each document is reloaded under its lock so concurrent writers are not overwritten.
    for fid in sorted(active):
        finding = active[fid]
        with store.lock(repo, fid):
            doc = store.load(repo, fid)
            if doc is None:
                doc = create_work_document(finding, policy.assign_initial_severity(finding), now)
                summary.created.append(fid)
            else:
                if record_recurrence(doc, finding, policy, now):
                    summary.reopened.append(fid)
                summary.updated.append(fid)
            store.save(repo, doc)
        docs[fid] = doc

    for fid in sorted(stored_ids - set(active)):
        with store.lock(repo, fid):
            doc = store.load(repo, fid)
            if doc is None:
                continue
            if doc.status not in CLOSED_STATUSES:
                resolve_work_document(doc, now)
                store.save(repo, doc)
                summary.resolved.append(fid)
        docs[fid] = doc

    for doc in docs.values():
        summary.by_status[doc.status] = summary.by_status.get(doc.status, 0) + 1

    logger.info(
        f"[WORK] {repo}: {len(summary.created)} created, {len(summary.updated)} updated, "
        f"{len(summary.reopened)} reopened, {len(summary.resolved)} resolved"
    )
    return summary
