"""Stable, content-addressed identifiers for findings."""

from __future__ import annotations

import re

from warden.models import FindingInstance

NO_PATH = "_global"
DELIMITER = "--"

_UNSAFE = re.compile(r"[/\\.]")


def slugify_path(path: str) -> str:
    return _UNSAFE.sub("-", path)


def finding_id(code: str, path: str | None = None, symbol: str | None = None) -> str:
    parts = [code, slugify_path(path) if path else NO_PATH]
    if symbol:
        parts.append(symbol)
    return DELIMITER.join(parts)


def finding_id_for(finding: FindingInstance) -> str:
    return finding_id(finding.code, finding.path, finding.symbol)
