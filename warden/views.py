"""Read-only JSON views of WARDEN state for dashboards and editor integrations."""

from __future__ import annotations

from typing import Any

from warden.controller import Controller
from warden.trust.aggregate import compute_trust_aggregation


def repo_state(controller: Controller, repo: str) -> dict[str, Any]:
    autonomy = controller.policy_store.load_config(repo)
    return {
        "repoSlug": repo,
        "workDocuments": [doc.to_record() for doc in controller.work_store.load_all(repo)],
        "trustMetrics": [m.to_record() for m in controller.ledger.load_all(repo)],
        "autonomy": autonomy.to_record(),
        "impactRecords": [r.to_record() for r in controller.assessor.load_all(repo)],
    }


def global_state(controller: Controller) -> dict[str, Any]:
    return {
        "repos": controller.repo_slugs,
        "policies": [p.to_record() for p in controller.policy_store.list_global_policies()],
        "trustAggregation": [
            s.to_dict() for s in compute_trust_aggregation(controller.ledger, controller.repo_slugs, controller.config.trust)
        ],
    }
