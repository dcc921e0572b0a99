import pytest

from warden.config_loader import TrustConfig
from warden.store import MemoryStore
from warden.trust.ledger import TrustLedger

AGENT = "lint-fix-agent"


@pytest.fixture
def ledger():
    return TrustLedger(MemoryStore())


def test_fresh_metrics(ledger):
    metrics = ledger.load("alpha", AGENT)
    assert metrics.total_runs == 0
    assert metrics.validation_pass_rate == 0.0
    assert metrics.pr_review_score == 1.0
    assert metrics.self_repair_rate == 0.0


def test_all_passes_gives_exact_rate_of_one(ledger):
    for _ in range(50):
        metrics = ledger.record_validation_result("alpha", AGENT, True)

    assert metrics.total_runs == 50
    assert metrics.validation_pass_rate == 1.0
    assert metrics.consecutive_clean_merges == 50


def test_failure_resets_streak(ledger):
    for passed in (True, True, True, False):
        metrics = ledger.record_validation_result("alpha", AGENT, passed)

    assert metrics.validation_pass_rate == pytest.approx(0.75)
    assert metrics.consecutive_clean_merges == 0

    metrics = ledger.record_validation_result("alpha", AGENT, True)
    assert metrics.validation_pass_rate == pytest.approx(0.8)
    assert metrics.consecutive_clean_merges == 1


def test_pass_rate_stays_in_bounds(ledger):
    for i in range(200):
        metrics = ledger.record_validation_result("alpha", AGENT, i % 3 != 0)
        assert 0.0 <= metrics.validation_pass_rate <= 1.0

    assert metrics.validation_pass_rate == pytest.approx(133 / 200)


def test_merge_results(ledger):
    ledger.record_merge_result("alpha", AGENT, "accepted")
    metrics = ledger.record_merge_result("alpha", AGENT, "accepted")
    assert metrics.consecutive_clean_merges == 2

    metrics = ledger.record_merge_result("alpha", AGENT, "modified")
    assert metrics.consecutive_clean_merges == 0

    metrics = ledger.record_merge_result("alpha", AGENT, "rejected")
    assert (metrics.merges_accepted, metrics.merges_modified, metrics.merges_rejected) == (2, 1, 1)
    assert metrics.total_merges == 4


def test_invalid_merge_result(ledger):
    with pytest.raises(ValueError):
        ledger.record_merge_result("alpha", AGENT, "squashed")


def test_pr_review_score_moves_and_clamps(ledger):
    metrics = ledger.record_pr_review_result("alpha", AGENT, True)
    assert metrics.pr_review_score == 1.0

    metrics = ledger.record_pr_review_result("alpha", AGENT, False, ["missing test"])
    assert metrics.pr_review_score == 0.85

    metrics = ledger.record_pr_review_result("alpha", AGENT, True)
    assert metrics.pr_review_score == 0.9

    for _ in range(10):
        metrics = ledger.record_pr_review_result("alpha", AGENT, False)
    assert metrics.pr_review_score == 0.0


def test_review_log_is_capped():
    ledger = TrustLedger(MemoryStore(), TrustConfig(review_log_cap=3))
    for i in range(5):
        ledger.record_pr_review_result("alpha", AGENT, i % 2 == 0, [f"review {i}"])

    reviews = ledger.load_reviews("alpha", AGENT)
    assert [r.comments for r in reviews] == [["review 2"], ["review 3"], ["review 4"]]


def test_repos_are_independent(ledger):
    ledger.record_validation_result("alpha", AGENT, True)

    assert ledger.load("beta", AGENT).total_runs == 0
    assert ledger.agents("alpha") == [AGENT]
    assert ledger.agents("beta") == []
