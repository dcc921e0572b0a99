"""
WARDEN Trust Ledger

Rolling performance record per (repo, agent). Three things move it:
validation attempts, merge outcomes and PR reviews. Reads never fail:
a missing or unreadable record is a fresh, zero-valued one.
"""

from __future__ import annotations

from loguru import logger

from warden.config_loader import TrustConfig
from warden.models import MERGE_RESULTS, MergeResult, PrReviewEntry, TrustMetrics, utc_now
from warden.store import RecordStore


class TrustLedger:

    def __init__(self, store: RecordStore, config: TrustConfig | None = None):
        self.store = store
        self.config = config or TrustConfig()

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def load(self, repo: str, agent_name: str) -> TrustMetrics:
        metrics = self.store.get_model(repo, "trust", agent_name, TrustMetrics)
        return metrics or TrustMetrics(agent_name=agent_name)

    def load_all(self, repo: str) -> list[TrustMetrics]:
        return self.store.list_models(repo, "trust", TrustMetrics)

    def agents(self, repo: str) -> list[str]:
        return [m.agent_name for m in self.load_all(repo)]

    def load_reviews(self, repo: str, agent_name: str) -> list[PrReviewEntry]:
        raw = self.store.get(repo, "trust-reviews", agent_name)
        if not isinstance(raw, list):
            return []
        entries = []
        for item in raw:
            try:
                entries.append(PrReviewEntry.model_validate(item))
            except ValueError:
                logger.warning(f"[TRUST] Skipping malformed review entry for {agent_name} in {repo}")
        return entries

    # -----------------------------------------------------------------------
    # Recording
    # -----------------------------------------------------------------------

    def record_validation_result(self, repo: str, agent_name: str, passed: bool) -> TrustMetrics:
        with self.store.lock(repo, "trust", agent_name):
            metrics = self.load(repo, agent_name)
            metrics.total_runs += 1
            metrics.last_run_at = utc_now()

            # Rebuild the pass count as an integer before averaging so that
            # float error cannot accumulate across many updates.
            prev_passes = round(metrics.validation_pass_rate * (metrics.total_runs - 1))
            prev_passes = min(max(prev_passes, 0), metrics.total_runs - 1)
            metrics.validation_pass_rate = (prev_passes + (1 if passed else 0)) / metrics.total_runs

            if passed:
                metrics.consecutive_clean_merges += 1
            else:
                metrics.consecutive_clean_merges = 0

            self._save(repo, metrics)

        logger.debug(
            f"[TRUST] {repo}/{agent_name} validation {'passed' if passed else 'failed'} "
            f"(rate={metrics.validation_pass_rate:.3f}, runs={metrics.total_runs})"
        )
        return metrics

    def record_merge_result(self, repo: str, agent_name: str, result: MergeResult) -> TrustMetrics:
        if result not in MERGE_RESULTS:
            raise ValueError(f"Invalid merge result: {result}")

        with self.store.lock(repo, "trust", agent_name):
            metrics = self.load(repo, agent_name)
            if result == "accepted":
                metrics.merges_accepted += 1
                metrics.consecutive_clean_merges += 1
            elif result == "modified":
                metrics.merges_modified += 1
                metrics.consecutive_clean_merges = 0
            else:
                metrics.merges_rejected += 1
                metrics.consecutive_clean_merges = 0

            metrics.last_run_at = utc_now()
            self._save(repo, metrics)

        logger.debug(f"[TRUST] {repo}/{agent_name} merge {result}")
        return metrics

    def record_pr_review_result(
        self, repo: str, agent_name: str, passed: bool, comments: list[str] | None = None
    ) -> TrustMetrics:
        with self.store.lock(repo, "trust", agent_name):
            metrics = self.load(repo, agent_name)
            if passed:
                metrics.pr_review_score = min(1.0, metrics.pr_review_score + self.config.review_pass_bonus)
            else:
                metrics.pr_review_score = max(0.0, metrics.pr_review_score - self.config.review_fail_penalty)
            metrics.pr_review_score = round(metrics.pr_review_score, 4)
            metrics.last_run_at = utc_now()

            reviews = self.load_reviews(repo, agent_name)
            reviews.append(PrReviewEntry(timestamp=metrics.last_run_at, passed=passed, comments=list(comments or [])))
            reviews = reviews[-self.config.review_log_cap:]

            self._save(repo, metrics)
            self.store.put(repo, "trust-reviews", agent_name, [r.to_record() for r in reviews])

        logger.debug(f"[TRUST] {repo}/{agent_name} PR review {'passed' if passed else 'failed'} "
                     f"(score={metrics.pr_review_score:.2f})")
        return metrics

    def _save(self, repo: str, metrics: TrustMetrics) -> None:
        self.store.put(repo, "trust", metrics.agent_name, metrics.to_record())
