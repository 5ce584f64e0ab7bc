"""
Error registry: the MKT-* catalogue in registry.yaml.

Each code carries its HTTP status, retryability and the client-safe
message the error handlers render. The file is checked strictly on load
so a typo fails startup instead of a request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from modelmarket.core.errors import CODE_PATTERN

logger = logging.getLogger(__name__)

REGISTRY_PATH = Path(__file__).with_name("registry.yaml")
SCHEMA_VERSION = 1

DOMAINS = frozenset({"API", "AUTH", "CFG", "DB", "PAY", "SUB", "SYS", "USE"})
SEVERITIES = frozenset({"DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"})
_FIELDS = (
    "code", "domain", "title", "severity", "retryable",
    "user_action_required", "http_status", "safe_message", "remediation",
)


@dataclass(frozen=True)
class ErrorEntry:
    code: str
    domain: str
    title: str
    severity: str
    retryable: bool
    user_action_required: bool
    http_status: int
    safe_message: str
    remediation: List[str] = field(default_factory=list)


class RegistryValidationError(Exception):
    """registry.yaml is malformed."""


def _parse_entry(idx: int, raw: Dict[str, Any]) -> ErrorEntry:
    missing = [name for name in _FIELDS if name not in raw]
    if missing:
        raise RegistryValidationError(f"entry {idx} ({raw.get('code', '?')}): missing {', '.join(missing)}")

    code = raw["code"]
    if not CODE_PATTERN.match(code):
        raise RegistryValidationError(f"entry {idx}: bad code {code!r}")
    if raw["domain"] != code.split("-")[1]:
        raise RegistryValidationError(f"{code}: domain {raw['domain']!r} does not match the code")
    if raw["domain"] not in DOMAINS:
        raise RegistryValidationError(f"{code}: unknown domain {raw['domain']!r}")
    if raw["severity"] not in SEVERITIES:
        raise RegistryValidationError(f"{code}: unknown severity {raw['severity']!r}")

    return ErrorEntry(
        code=code,
        domain=raw["domain"],
        title=raw["title"],
        severity=raw["severity"],
        retryable=bool(raw["retryable"]),
        user_action_required=bool(raw["user_action_required"]),
        http_status=int(raw["http_status"]),
        safe_message=raw["safe_message"],
        remediation=list(raw["remediation"] or []),
    )


class ErrorRegistry:
    """Code → ErrorEntry lookup, filled by :meth:`load`."""

    def __init__(self) -> None:
        self._entries: Dict[str, ErrorEntry] = {}

    def load(self, path: Optional[str] = None) -> None:
        with open(path or REGISTRY_PATH, "r") as f:
            data = yaml.safe_load(f) or {}

        version = data.get("schema_version")
        if version != SCHEMA_VERSION:
            raise RegistryValidationError(f"unsupported schema_version {version!r}")
        raw_entries = data.get("errors")
        if not isinstance(raw_entries, list):
            raise RegistryValidationError("'errors' must be a list")

        entries: Dict[str, ErrorEntry] = {}
        for idx, raw in enumerate(raw_entries):
            entry = _parse_entry(idx, raw)
            if entry.code in entries:
                raise RegistryValidationError(f"duplicate code {entry.code}")
            entries[entry.code] = entry

        self._entries = entries
        logger.info("Loaded %d error codes", len(entries))

    def get(self, code: str) -> Optional[ErrorEntry]:
        return self._entries.get(code)

    def lookup(self, code: str) -> ErrorEntry:
        try:
            return self._entries[code]
        except KeyError:
            raise KeyError(f"Unknown error code: {code!r}") from None

    def all_codes(self) -> List[str]:
        return list(self._entries)


error_registry = ErrorRegistry()
