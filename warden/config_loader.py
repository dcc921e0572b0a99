"""
Configuration loader for WARDEN.
Merges built-in defaults with <root>/.warden/config.yaml overrides
and the monitored repository list in <config_dir>/repos.json.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SeverityCapDirection = Literal["no-worse-than", "no-milder-than"]


class StorageConfig(BaseModel):
    data_dir: str = "data"
    config_dir: str = "config"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def config_path(self) -> Path:
        return Path(self.config_dir)


class AutonomyDefaultsConfig(BaseModel):
    min_consecutive_clean_merges: int = 10
    min_validation_pass_rate: float = 0.95
    min_total_runs: int = 5
    max_severity: str = "S3"
    severity_cap_direction: SeverityCapDirection = "no-worse-than"


class TrustConfig(BaseModel):
    review_log_cap: int = 100
    review_pass_bonus: float = 0.05
    review_fail_penalty: float = 0.15
    min_repo_score: float = 0.5
    min_aggregate_score: float = 0.7


class ImpactConfig(BaseModel):
    git_timeout: int = 60
    high_churn_threshold: int = 10


class SeverityConfig(BaseModel):
    default: str = "S3"
    promotion_min_reports: int = 2
    promotion_ceiling: str = "S1"
    demotion_floor: str = "S4"
    overrides: dict[str, str] = Field(default_factory=dict)


class ParallelConfig(BaseModel):
    max_workers: int = 3


class WardenConfig(BaseModel):
    storage: StorageConfig = Field(default_factory=StorageConfig)
    autonomy: AutonomyDefaultsConfig = Field(default_factory=AutonomyDefaultsConfig)
    trust: TrustConfig = Field(default_factory=TrustConfig)
    impact: ImpactConfig = Field(default_factory=ImpactConfig)
    severity: SeverityConfig = Field(default_factory=SeverityConfig)
    parallel: ParallelConfig = Field(default_factory=ParallelConfig)


class RepoConfig(BaseModel):
    """One monitored repository from repos.json. Collector settings are ignored here."""
    model_config = ConfigDict(extra="ignore")

    slug: str
    path: str
    type: str = "unknown"


class UnknownRepoError(LookupError):
    pass


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(root: Path | None = None) -> WardenConfig:
    """
    Load config by merging:
      1. Built-in defaults (warden/config.yaml)
      2. Installation overrides (<root>/.warden/config.yaml)
      3. WARDEN_DATA_DIR / WARDEN_CONFIG_DIR environment overrides

    Relative storage directories are resolved against root (default: cwd).
    """
    root = (root or Path.cwd()).resolve()

    # 1. Built-in defaults
    with open(_DEFAULT_CONFIG_PATH, "r") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    # 2. Installation overrides
    override_path = root / ".warden" / "config.yaml"
    if override_path.exists():
        with open(override_path, "r") as f:
            overrides: dict[str, Any] = yaml.safe_load(f) or {}
        base = _deep_merge(base, overrides)

    # 3. Env overrides
    storage = dict(base.get("storage") or {})
    if os.environ.get("WARDEN_DATA_DIR"):
        storage["data_dir"] = os.environ["WARDEN_DATA_DIR"]
    if os.environ.get("WARDEN_CONFIG_DIR"):
        storage["config_dir"] = os.environ["WARDEN_CONFIG_DIR"]
    for key in ("data_dir", "config_dir"):
        value = Path(storage.get(key) or key.split("_")[0])
        storage[key] = str(value if value.is_absolute() else root / value)
    base["storage"] = storage

    return WardenConfig(**base)


def load_repo_configs(config: WardenConfig) -> list[RepoConfig]:
    """Read repos.json. A missing file means no repositories are configured."""
    repos_path = config.storage.config_path / "repos.json"
    if not repos_path.exists():
        return []

    with open(repos_path, "r", encoding="utf-8") as f:
        parsed = json.load(f)
    if not isinstance(parsed, list):
        raise ValueError(f"Expected {repos_path} to contain a list")

    repos = []
    for entry in parsed:
        try:
            repos.append(RepoConfig.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"[CONFIG] Skipping invalid repo entry in {repos_path}: {e}")
    return repos


def get_repo_config(repos: list[RepoConfig], slug: str) -> RepoConfig:
    for repo in repos:
        if repo.slug == slug:
            return repo
    raise UnknownRepoError(f"Unknown repo slug: {slug}")
