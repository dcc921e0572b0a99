"""
WARDEN Work Documents

One persistent Work Document per recurring finding identity, per
repository. Reconciliation keeps the stored set in step with the
latest finding stream.
"""

from warden.work.finding_id import finding_id, finding_id_for
from warden.work.manager import ReconcileSummary, WorkDocumentStore, reconcile
from warden.work.severity import DefaultSeverityPolicy, SeverityPolicy

__all__ = [
    "DefaultSeverityPolicy",
    "ReconcileSummary",
    "SeverityPolicy",
    "WorkDocumentStore",
    "finding_id",
    "finding_id_for",
    "reconcile",
]
