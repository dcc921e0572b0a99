from pathlib import Path

import pytest

from warden.config_loader import RepoConfig, WardenConfig
from warden.controller import Controller
from warden.event_bus import EventBus, WardenEvent
from warden.git import GitError, GitRunner
from warden.models import FindingInstance, TrustMetrics, WorkDocument
from warden.store import MemoryStore
from warden.work.finding_id import finding_id_for
from warden.work.manager import reconcile


class FakeGit(GitRunner):
    """Records merges and answers log queries from canned results."""

    def __init__(self, repo_path: Path):
        super().__init__(repo_path)
        self.merges: list[tuple[str, str]] = []
        self.greps: list[str] = []
        self.merge_error: str | None = None
        self.log_error: str | None = None
        self.reverts: list[str] = []
        self.churn: dict[str, list[str]] = {}

    def merge_into(self, source_branch: str, target_branch: str) -> None:
        if self.merge_error:
            raise GitError(self.merge_error)
        self.merges.append((source_branch, target_branch))

    def log_since(self, since, grep=None, paths=None):
        if self.log_error:
            raise GitError(self.log_error)
        if grep:
            self.greps.append(grep)
            return list(self.reverts)
        if paths:
            return list(self.churn.get(paths[0], []))
        return []


@pytest.fixture
def fake_git(tmp_path):
    return FakeGit(tmp_path)


@pytest.fixture
def events() -> list[WardenEvent]:
    return []


@pytest.fixture
def event_bus(events):
    test_bus = EventBus()
    test_bus.subscribe(events.append)
    return test_bus


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def controller(tmp_path, store, fake_git, event_bus):
    repos = [
        RepoConfig(slug="alpha", path=str(tmp_path / "alpha")),
        RepoConfig(slug="beta", path=str(tmp_path / "beta")),
    ]
    return Controller(
        config=WardenConfig(),
        store=store,
        repos=repos,
        git_factory=lambda path: fake_git,
        event_bus=event_bus,
    )


@pytest.fixture
def seed_trust(store):
    """Write Trust Metrics straight into the store."""

    def _seed(repo: str, agent: str, **fields) -> TrustMetrics:
        values = {
            "validation_pass_rate": 0.97,
            "consecutive_clean_merges": 12,
            "total_runs": 20,
        }
        values.update(fields)
        metrics = TrustMetrics(agent_name=agent, **values)
        store.put(repo, "trust", agent, metrics.to_record())
        return metrics

    return _seed


@pytest.fixture
def open_doc(controller):
    """Reconcile a single finding into alpha and return its Work Document."""

    def _open(code="WD-M6-003", path="src/app.ts", severity=None) -> WorkDocument:
        finding = FindingInstance(code=code, metric="lint", summary="3 lint errors", path=path)
        reconcile(controller.work_store, "alpha", [finding], controller.severity_policy)
        doc = controller.work_store.load("alpha", finding_id_for(finding))
        if severity:
            doc.severity = severity
            controller.work_store.save("alpha", doc)
        return doc

    return _open
