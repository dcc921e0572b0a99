"""
WARDEN record schemas.

Every persisted record is a pydantic model whose JSON form uses
camelCase field names (findingId, mergesAccepted, ...). Unset optional
fields are omitted from the JSON.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Severity = Literal["S0", "S1", "S2", "S3", "S4", "S5"]
SEVERITIES: tuple[str, ...] = ("S0", "S1", "S2", "S3", "S4", "S5")

WorkDocumentStatus = Literal[
    "unassigned",
    "auto-assigned",
    "agent-in-progress",
    "agent-complete",
    "pm-review",
    "blocked",
    "resolved",
    "wont-fix",
]
Trend = Literal["new", "worsening", "stable", "improving"]
MergeResult = Literal["accepted", "modified", "rejected"]
MERGE_RESULTS: tuple[str, ...] = ("accepted", "modified", "rejected")


def severity_rank(severity: str) -> int:
    """S0 -> 0 (most severe) ... S5 -> 5."""
    return int(severity[1:])


def parse_severity(value: str) -> Severity:
    normalized = value.strip().upper()
    if normalized not in SEVERITIES:
        raise ValueError(f"Invalid severity: {value}")
    return normalized  # type: ignore[return-value]


def utc_now() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class WardenRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Findings (consumed, never persisted)
# ---------------------------------------------------------------------------

class FindingInstance(WardenRecord):
    code: str
    metric: str
    summary: str = ""
    path: str | None = None
    symbol: str | None = None


# ---------------------------------------------------------------------------
# Work Documents
# ---------------------------------------------------------------------------

class WorkDocumentNote(WardenRecord):
    timestamp: str
    author: str
    text: str


class ValidationResult(WardenRecord):
    passed: bool
    attempts: int
    last_error: str | None = None


class WorkDocument(WardenRecord):
    finding_id: str
    code: str
    metric: str
    severity: Severity
    path: str | None = None
    symbol: str | None = None
    first_seen: str
    last_seen: str
    consecutive_reports: int = 1
    trend: Trend = "new"
    status: WorkDocumentStatus = "unassigned"
    assigned_to: str | None = None
    related_branch: str | None = None
    plan_document: str | None = None
    validation_result: ValidationResult | None = None
    notes: list[WorkDocumentNote] = Field(default_factory=list)
    resolved_at: str | None = None


# ---------------------------------------------------------------------------
# Trust
# ---------------------------------------------------------------------------

class TrustMetrics(WardenRecord):
    agent_name: str
    merges_accepted: int = 0
    merges_modified: int = 0
    merges_rejected: int = 0
    pr_review_score: float = 1.0
    validation_pass_rate: float = 0.0
    # Reserved: nothing records self-repair outcomes yet.
    self_repair_rate: float = 0.0
    consecutive_clean_merges: int = 0
    total_runs: int = 0
    last_run_at: str = Field(default_factory=utc_now)

    @property
    def total_merges(self) -> int:
        return self.merges_accepted + self.merges_modified + self.merges_rejected


class PrReviewEntry(WardenRecord):
    timestamp: str
    passed: bool
    comments: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Autonomy
# ---------------------------------------------------------------------------

class AutonomyConditions(WardenRecord):
    min_consecutive_clean_merges: int | None = None
    min_validation_pass_rate: float | None = None
    min_total_runs: int | None = None


class AutonomyGlobalDefaults(WardenRecord):
    min_consecutive_clean_merges: int = 10
    min_validation_pass_rate: float = 0.95
    min_total_runs: int = 5
    max_severity: Severity = "S3"


class AutonomyRule(WardenRecord):
    agent_name: str
    enabled: bool = True
    granted_at: str = Field(default_factory=utc_now)
    granted_by: str = "manual"
    allowed_codes: list[str] | None = None
    max_severity: Severity | None = None
    conditions: AutonomyConditions = Field(default_factory=AutonomyConditions)
    revoked_at: str | None = None
    revocation_reason: str | None = None


class AutonomyConfig(WardenRecord):
    rules: list[AutonomyRule] = Field(default_factory=list)
    global_defaults: AutonomyGlobalDefaults = Field(default_factory=AutonomyGlobalDefaults)

    def rule_for(self, agent_name: str) -> AutonomyRule | None:
        for rule in self.rules:
            if rule.agent_name == agent_name:
                return rule
        return None


class GlobalAutonomyPolicy(WardenRecord):
    agent_name: str
    min_aggregate_score: float
    allowed_severities: list[Severity] = Field(default_factory=lambda: list(SEVERITIES))
    allowed_codes: list[str] = Field(default_factory=list)
    applies_to: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now)

    @field_validator("allowed_severities")
    @classmethod
    def _empty_means_all(cls, value: list[str]) -> list[str]:
        return value or list(SEVERITIES)

    def scope_key(self) -> tuple[str, tuple[str, ...], tuple[str, ...]]:
        return (self.agent_name, tuple(sorted(self.allowed_codes)), tuple(sorted(self.applies_to)))

    def matches(self, repo_slug: str, agent_name: str, finding_code: str, severity: str) -> bool:
        return (
            self.agent_name == agent_name
            and (not self.applies_to or repo_slug in self.applies_to)
            and (not self.allowed_codes or finding_code in self.allowed_codes)
            and severity in self.allowed_severities
        )


class GlobalAutonomyConfig(WardenRecord):
    policies: list[GlobalAutonomyPolicy] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Impact
# ---------------------------------------------------------------------------

class MergeImpact(WardenRecord):
    new_findings_introduced: list[str] = Field(default_factory=list)
    findings_resolved: list[str] = Field(default_factory=list)
    revert_detected: bool = False
    subsequent_churn: int = 0


class MergeImpactRecord(WardenRecord):
    merge_id: str
    agent_name: str
    finding_code: str
    branch: str
    files: list[str] = Field(default_factory=list)
    merged_at: str
    auto_merged: bool = True
    impact: MergeImpact = Field(default_factory=MergeImpact)
    assessed_at: str
