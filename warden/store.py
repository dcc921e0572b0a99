"""
WARDEN Record Store

Key-value persistence for every WARDEN entity, addressed by
(repo, kind, key). Decision logic only ever talks to a RecordStore,
so the filesystem layout below can be swapped for another backend.

    work           data/<repo>/work/<key>.json
    trust          data/<repo>/trust/<key>.json
    trust-reviews  data/<repo>/trust/<key>.reviews.json
    impact         data/<repo>/impact/<key>.json
    autonomy       data/<repo>/autonomy.json
    autonomy-global config/autonomy-global.json   (repo is None)

Single-writer discipline: lock(repo, kind, key) hands out one re-entrant
lock per entity for the life of the process. Callers doing a
read-modify-write hold it across the whole cycle. Nothing here guards
against a second process writing the same files.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
from typing import Any, Iterator, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

KINDS = ("work", "trust", "trust-reviews", "impact", "autonomy", "autonomy-global")

ModelT = TypeVar("ModelT", bound=BaseModel)


class StoreError(Exception):
    pass


def _check_key(value: str, what: str) -> None:
    if not value or ".." in value or "/" in value or "\\" in value:
        raise StoreError(f"Invalid {what}: {value!r}")


class RecordStore(ABC):
    """get/put/list over JSON-compatible records."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str | None, str, str], threading.RLock] = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()

    def lock(self, repo: str | None, kind: str, key: str = "") -> threading.RLock:
        with self._locks_guard:
            return self._locks[(repo, kind, key)]

    @abstractmethod
    def get(self, repo: str | None, kind: str, key: str = "") -> Any | None:
        """Return the stored record, or None when absent or unreadable."""

    @abstractmethod
    def put(self, repo: str | None, kind: str, key: str, data: Any) -> None:
        """Durably store a record. Failures propagate."""

    @abstractmethod
    def keys(self, repo: str | None, kind: str) -> list[str]:
        """Sorted keys of every stored record of this kind."""

    def list(self, repo: str | None, kind: str) -> list[Any]:
        records = []
        for key in self.keys(repo, kind):
            data = self.get(repo, kind, key)
            if data is not None:
                records.append(data)
        return records

    def get_model(self, repo: str | None, kind: str, key: str, model: type[ModelT]) -> ModelT | None:
        data = self.get(repo, kind, key)
        return parse_record(model, data, f"{repo}/{kind}/{key}")

    def list_models(self, repo: str | None, kind: str, model: type[ModelT]) -> list[ModelT]:
        parsed = []
        for key in self.keys(repo, kind):
            item = self.get_model(repo, kind, key, model)
            if item is not None:
                parsed.append(item)
        return parsed


def parse_record(model: type[ModelT], data: Any, where: str) -> ModelT | None:
    """Validate a raw record; malformed records are treated as absent."""
    if data is None:
        return None
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.warning(f"[STORE] Ignoring malformed record {where}: {e.error_count()} validation errors")
        return None


class FileStore(RecordStore):
    """One pretty-printed JSON document per entity, written atomically."""

    def __init__(self, data_dir: Path, config_dir: Path):
        super().__init__()
        self.data_dir = Path(data_dir)
        self.config_dir = Path(config_dir)

    def path_for(self, repo: str | None, kind: str, key: str = "") -> Path:
        if kind == "autonomy-global":
            return self.config_dir / "autonomy-global.json"
        if repo is None:
            raise StoreError(f"Record kind '{kind}' requires a repository")
        _check_key(repo, "repository slug")
        base = self.data_dir / repo
        if kind == "autonomy":
            return base / "autonomy.json"
        _check_key(key, f"{kind} key")
        if kind == "work":
            return base / "work" / f"{key}.json"
        if kind == "trust":
            return base / "trust" / f"{key}.json"
        if kind == "trust-reviews":
            return base / "trust" / f"{key}.reviews.json"
        if kind == "impact":
            return base / "impact" / f"{key}.json"
        raise StoreError(f"Unknown record kind: {kind}")

    def get(self, repo: str | None, kind: str, key: str = "") -> Any | None:
        path = self.path_for(repo, kind, key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[STORE] Treating unreadable record as absent: {path} ({e})")
            return None

    def put(self, repo: str | None, kind: str, key: str, data: Any) -> None:
        path = self.path_for(repo, kind, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json.dumps(data, indent=2) + "\n")
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def keys(self, repo: str | None, kind: str) -> list[str]:
        if kind in ("autonomy", "autonomy-global"):
            return [""] if self.path_for(repo, kind).exists() else []
        directory = self.path_for(repo, kind, "_").parent
        if not directory.is_dir():
            return []
        return sorted(self._iter_keys(directory, kind))

    @staticmethod
    def _iter_keys(directory: Path, kind: str) -> Iterator[str]:
        for entry in directory.iterdir():
            name = entry.name
            if not entry.is_file() or name.startswith(".") or not name.endswith(".json"):
                continue
            is_review_log = name.endswith(".reviews.json")
            if kind == "trust-reviews" and is_review_log:
                yield name[: -len(".reviews.json")]
            elif kind != "trust-reviews" and not is_review_log:
                yield name[: -len(".json")]


class MemoryStore(RecordStore):
    """In-process store with the same semantics; records are deep-copied through JSON."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[tuple[str | None, str, str], str] = {}

    def get(self, repo: str | None, kind: str, key: str = "") -> Any | None:
        raw = self._records.get((repo, kind, key))
        return json.loads(raw) if raw is not None else None

    def put(self, repo: str | None, kind: str, key: str, data: Any) -> None:
        if kind not in KINDS:
            raise StoreError(f"Unknown record kind: {kind}")
        self._records[(repo, kind, key)] = json.dumps(data)

    def keys(self, repo: str | None, kind: str) -> list[str]:
        return sorted(k for (r, kd, k) in self._records if r == repo and kd == kind)
