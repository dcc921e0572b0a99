"""
WARDEN Severity Policy

Severity and trend classification is a pluggable strategy. Reconciliation
and impact assessment only call the four methods on SeverityPolicy;
DefaultSeverityPolicy is the stock behaviour, tuned by the `severity:`
config section.
"""

from __future__ import annotations

import re
from typing import Protocol

from warden.config_loader import SeverityConfig
from warden.models import FindingInstance, Severity, Trend, WorkDocument, severity_rank

REPORT_UPDATE_PREFIX = "Report update:"

# Initial severity per finding code.
DEFAULT_SEVERITY: dict[str, Severity] = {
    "WD-M1-001": "S3",
    "WD-M1-002": "S3",
    "WD-M1-003": "S3",
    "WD-M2-001": "S4",
    "WD-M2-002": "S3",
    "WD-M2-003": "S4",
    "WD-M3-001": "S3",
    "WD-M3-002": "S3",
    "WD-M4-001": "S2",
    "WD-M4-002": "S2",
    "WD-M4-003": "S1",
    "WD-M5-001": "S1",
    "WD-M5-002": "S2",
    "WD-M5-003": "S1",
    "WD-M6-001": "S4",
    "WD-M6-002": "S3",
    "WD-M6-003": "S3",
    "WD-M6-004": "S3",
    "WD-M7-001": "S3",
    "WD-M7-002": "S2",
    "WD-M7-003": "S2",
    "WD-M8-001": "S4",
    "WD-M8-002": "S3",
    "WD-M8-003": "S4",
    "WD-M9-001": "S5",
    "WD-M9-002": "S5",
    "WD-M9-003": "S4",
}

_NUMBER = re.compile(r"\d+(?:\.\d+)?")


class SeverityPolicy(Protocol):
    def assign_initial_severity(self, finding: FindingInstance) -> Severity: ...

    def compute_trend(self, doc: WorkDocument, finding: FindingInstance) -> Trend: ...

    def evaluate_promotion(self, doc: WorkDocument) -> Severity | None: ...

    def evaluate_demotion(self, doc: WorkDocument) -> Severity | None: ...


def _from_rank(rank: int) -> Severity:
    return f"S{min(5, max(0, rank))}"  # type: ignore[return-value]


def _first_number(text: str) -> float | None:
    match = _NUMBER.search(text)
    return float(match.group(0)) if match else None


class DefaultSeverityPolicy:
    """
    Stock classification:
      - initial severity from DEFAULT_SEVERITY (plus config overrides), else config default
      - trend compares the first number of the last "Report update:" note
        with the first number in the current summary
      - promotion: worsening for promotion_min_reports reports, one level up,
        never past promotion_ceiling (S0 is reserved for humans)
      - demotion: improving for promotion_min_reports reports, one level down,
        not applied at or beyond demotion_floor
    """

    def __init__(self, config: SeverityConfig | None = None):
        self.config = config or SeverityConfig()
        self.table: dict[str, str] = {**DEFAULT_SEVERITY, **self.config.overrides}

    def assign_initial_severity(self, finding: FindingInstance) -> Severity:
        return self.table.get(finding.code, self.config.default)  # type: ignore[return-value]

    def compute_trend(self, doc: WorkDocument, finding: FindingInstance) -> Trend:
        if doc.consecutive_reports == 0:
            return "new"

        report_notes = [n for n in doc.notes if n.text.startswith(REPORT_UPDATE_PREFIX)]
        previous = _first_number(report_notes[-1].text) if report_notes else None
        current = _first_number(finding.summary)
        if previous is None or current is None:
            return "stable"

        if current > previous:
            return "worsening"
        if current < previous:
            return "improving"
        return "stable"

    def evaluate_promotion(self, doc: WorkDocument) -> Severity | None:
        if doc.trend != "worsening" or doc.consecutive_reports < self.config.promotion_min_reports:
            return None
        current = severity_rank(doc.severity)
        if current <= severity_rank(self.config.promotion_ceiling):
            return None
        return _from_rank(current - 1)

    def evaluate_demotion(self, doc: WorkDocument) -> Severity | None:
        if doc.trend != "improving" or doc.consecutive_reports < self.config.promotion_min_reports:
            return None
        current = severity_rank(doc.severity)
        if current >= severity_rank(self.config.demotion_floor):
            return None
        return _from_rank(current + 1)
