"""
WARDEN Autonomy Policy Store

Two configuration aggregates, each with a load -> normalize -> save contract:

  - per-repository AutonomyConfig   (data/<repo>/autonomy.json)
      rules: one AutonomyRule per agent, granted manually, disabled on revocation
      globalDefaults: thresholds used where a rule sets no condition
  - GlobalAutonomyConfig            (config/autonomy-global.json)
      policies: cross-repository overlays requiring a minimum aggregate trust score

Missing files normalize to an empty config; malformed files are treated as
missing. Rules are never deleted.
"""

from __future__ import annotations

import threading
from typing import Any, Callable

from loguru import logger
from pydantic import ValidationError

from warden.config_loader import AutonomyDefaultsConfig
from warden.models import (
    SEVERITIES,
    AutonomyConditions,
    AutonomyConfig,
    AutonomyGlobalDefaults,
    AutonomyRule,
    GlobalAutonomyConfig,
    GlobalAutonomyPolicy,
    Severity,
    parse_severity,
    utc_now,
)
from warden.store import RecordStore


class AutonomyError(ValueError):
    """Misuse of grant/revoke: unknown agent, invalid severity, out-of-range threshold."""


def _validate_thresholds(
    min_consecutive_clean_merges: int | None,
    min_validation_pass_rate: float | None,
    min_total_runs: int | None,
) -> None:
    if min_consecutive_clean_merges is not None and min_consecutive_clean_merges < 0:
        raise AutonomyError(f"Invalid min consecutive clean merges: {min_consecutive_clean_merges}")
    if min_validation_pass_rate is not None and not 0.0 <= min_validation_pass_rate <= 1.0:
        raise AutonomyError(f"Invalid min validation pass rate: {min_validation_pass_rate}")
    if min_total_runs is not None and min_total_runs < 0:
        raise AutonomyError(f"Invalid min total runs: {min_total_runs}")


def _severity_or_error(value: str | None) -> Severity | None:
    if value is None:
        return None
    try:
        return parse_severity(value)
    except ValueError as e:
        raise AutonomyError(str(e)) from e


def _clean_list(values: list[str] | None) -> list[str]:
    return [v.strip() for v in (values or []) if v and v.strip()]


def _replace_or_append(items: list, new_item: Any, same: Callable[[Any], bool]) -> list:
    """Replace the first matching item in place, otherwise append."""
    for index, item in enumerate(items):
        if same(item):
            return items[:index] + [new_item] + [i for i in items[index + 1:] if not same(i)]
    return items + [new_item]


def effective_thresholds(rule: AutonomyRule, defaults: AutonomyGlobalDefaults) -> AutonomyGlobalDefaults:
    """Rule conditions layered over the repository defaults."""
    conditions = rule.conditions
    return AutonomyGlobalDefaults(
        min_consecutive_clean_merges=(
            conditions.min_consecutive_clean_merges
            if conditions.min_consecutive_clean_merges is not None
            else defaults.min_consecutive_clean_merges
        ),
        min_validation_pass_rate=(
            conditions.min_validation_pass_rate
            if conditions.min_validation_pass_rate is not None
            else defaults.min_validation_pass_rate
        ),
        min_total_runs=conditions.min_total_runs if conditions.min_total_runs is not None else defaults.min_total_runs,
        max_severity=rule.max_severity or defaults.max_severity,
    )


class AutonomyPolicyStore:

    def __init__(self, store: RecordStore, defaults: AutonomyDefaultsConfig | None = None):
        self.store = store
        self.defaults = defaults or AutonomyDefaultsConfig()

    def lock(self, repo: str) -> threading.RLock:
        return self.store.lock(repo, "autonomy")

    def global_lock(self) -> threading.RLock:
        return self.store.lock(None, "autonomy-global")

    # -----------------------------------------------------------------------
    # Per-repository config
    # -----------------------------------------------------------------------

    def default_global_defaults(self) -> AutonomyGlobalDefaults:
        return AutonomyGlobalDefaults(
            min_consecutive_clean_merges=self.defaults.min_consecutive_clean_merges,
            min_validation_pass_rate=self.defaults.min_validation_pass_rate,
            min_total_runs=self.defaults.min_total_runs,
            max_severity=parse_severity(self.defaults.max_severity),
        )

    def normalize(self, raw: Any, where: str = "autonomy.json") -> AutonomyConfig:
        if not isinstance(raw, dict):
            if raw is not None:
                logger.warning(f"[AUTONOMY] {where} is not an object; using defaults")
            return AutonomyConfig(global_defaults=self.default_global_defaults())

        rules = []
        for item in raw.get("rules") or []:
            try:
                rules.append(AutonomyRule.model_validate(item))
            except ValidationError as e:
                logger.warning(f"[AUTONOMY] Dropping malformed rule in {where}: {e.error_count()} errors")

        merged_defaults = self.default_global_defaults().to_record()
        overrides = raw.get("globalDefaults")
        if isinstance(overrides, dict):
            merged_defaults.update({k: v for k, v in overrides.items() if v is not None})
        try:
            global_defaults = AutonomyGlobalDefaults.model_validate(merged_defaults)
        except ValidationError:
            logger.warning(f"[AUTONOMY] Invalid globalDefaults in {where}; using defaults")
            global_defaults = self.default_global_defaults()

        return AutonomyConfig(rules=rules, global_defaults=global_defaults)

    def load_config(self, repo: str) -> AutonomyConfig:
        return self.normalize(self.store.get(repo, "autonomy"), f"{repo}/autonomy.json")

    def save_config(self, repo: str, config: AutonomyConfig) -> None:
        self.store.put(repo, "autonomy", "", config.to_record())

    def list_rules(self, repo: str) -> list[AutonomyRule]:
        return self.load_config(repo).rules

    def grant_rule(
        self,
        repo: str,
        agent_name: str,
        allowed_codes: list[str] | None = None,
        max_severity: str | None = None,
        min_consecutive_clean_merges: int | None = None,
        min_validation_pass_rate: float | None = None,
        min_total_runs: int | None = None,
    ) -> AutonomyRule:
        """Create or replace the agent's rule. The new rule starts enabled."""
        if not agent_name or not agent_name.strip():
            raise AutonomyError("Missing agent name.")
        severity = _severity_or_error(max_severity)
        _validate_thresholds(min_consecutive_clean_merges, min_validation_pass_rate, min_total_runs)

        rule = AutonomyRule(
            agent_name=agent_name.strip(),
            enabled=True,
            granted_at=utc_now(),
            granted_by="manual",
            allowed_codes=_clean_list(allowed_codes) or None,
            max_severity=severity,
            conditions=AutonomyConditions(
                min_consecutive_clean_merges=min_consecutive_clean_merges,
                min_validation_pass_rate=min_validation_pass_rate,
                min_total_runs=min_total_runs,
            ),
        )

        with self.lock(repo):
            config = self.load_config(repo)
            config.rules = _replace_or_append(config.rules, rule, lambda r: r.agent_name == rule.agent_name)
            self.save_config(repo, config)

        logger.info(f"[AUTONOMY] Granted auto-merge to {rule.agent_name} on {repo}")
        return rule

    def revoke_rule(self, repo: str, agent_name: str, reason: str) -> AutonomyRule:
        with self.lock(repo):
            config = self.load_config(repo)
            rule = config.rule_for(agent_name)
            if rule is None:
                raise AutonomyError(f"No autonomy rule found for {agent_name} on {repo}.")

            rule.enabled = False
            rule.revoked_at = utc_now()
            rule.revocation_reason = reason
            self.save_config(repo, config)

        logger.warning(f"[AUTONOMY] Revoked auto-merge for {agent_name} on {repo}: {reason}")
        return rule

    # -----------------------------------------------------------------------
    # Global policies
    # -----------------------------------------------------------------------

    def load_global(self) -> GlobalAutonomyConfig:
        raw = self.store.get(None, "autonomy-global")
        if not isinstance(raw, dict):
            return GlobalAutonomyConfig()

        policies = []
        for item in raw.get("policies") or []:
            try:
                policies.append(GlobalAutonomyPolicy.model_validate(item))
            except ValidationError as e:
                logger.warning(f"[AUTONOMY] Dropping malformed global policy: {e.error_count()} errors")
        return GlobalAutonomyConfig(policies=policies)

    def save_global(self, config: GlobalAutonomyConfig) -> None:
        self.store.put(None, "autonomy-global", "", config.to_record())

    def list_global_policies(self) -> list[GlobalAutonomyPolicy]:
        return self.load_global().policies

    def grant_global_policy(
        self,
        agent_name: str,
        min_aggregate_score: float,
        allowed_codes: list[str] | None = None,
        allowed_severities: list[str] | None = None,
        applies_to: list[str] | None = None,
    ) -> GlobalAutonomyPolicy:
        """Upsert the policy with the same agent and scope (codes + repositories)."""
        if not agent_name or not agent_name.strip():
            raise AutonomyError("Missing agent name.")
        if not 0.0 <= min_aggregate_score <= 1.0:
            raise AutonomyError(f"Invalid min aggregate score: {min_aggregate_score}")
        severities = [_severity_or_error(s) for s in _clean_list(allowed_severities)] or list(SEVERITIES)

        policy = GlobalAutonomyPolicy(
            agent_name=agent_name.strip(),
            min_aggregate_score=min_aggregate_score,
            allowed_severities=severities,
            allowed_codes=_clean_list(allowed_codes),
            applies_to=_clean_list(applies_to),
            created_at=utc_now(),
        )

        with self.global_lock():
            config = self.load_global()
            key = policy.scope_key()
            config.policies = _replace_or_append(config.policies, policy, lambda p: p.scope_key() == key)
            self.save_global(config)

        logger.info(
            f"[AUTONOMY] Global policy for {policy.agent_name}: "
            f"min aggregate score {policy.min_aggregate_score}"
        )
        return policy
