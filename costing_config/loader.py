"""
Configuration Loader (``costing_config.loader``).

Responsibility
--------------
Loads a YAML file and parses it into a frozen ``CostingConfig``.  Runtime
callers go through ``costing_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Out-of-range values raise ``InvalidConfigError``; unknown permissions
  are rejected against ``PERMISSION_TAXONOMY``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``InvalidConfigError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from costing_config.schema import PERMISSION_TAXONOMY, BatchSettings, CostingConfig
from costing_kernel.domain.dtos import parse_cost_method
from costing_kernel.exceptions import InvalidConfigError, UnsupportedCostMethodError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _positive_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidConfigError(f"batch.{key}", f"must be a positive integer, got {value!r}")
    return value


def parse_batch_settings(data: dict[str, Any] | None) -> BatchSettings:
    """Parse the ``batch`` section."""
    data = data or {}
    defaults = BatchSettings()
    return BatchSettings(
        page_size=_positive_int(data, "page_size", defaults.page_size),
        max_pages=_positive_int(data, "max_pages", defaults.max_pages),
        max_report_entries=_positive_int(
            data, "max_report_entries", defaults.max_report_entries,
        ),
    )


def parse_roles(data: dict[str, Any] | None) -> tuple[tuple[str, frozenset[str]], ...]:
    """Parse ``roles: {role: [permission, ...]}`` into sorted pairs."""
    if not data:
        return ()
    if not isinstance(data, dict):
        raise InvalidConfigError("roles", "must be a mapping of role to permission list")
    pairs: list[tuple[str, frozenset[str]]] = []
    for role, perms in sorted(data.items()):
        perms = perms or []
        unknown = sorted(set(perms) - PERMISSION_TAXONOMY)
        if unknown:
            raise InvalidConfigError(f"roles.{role}", f"unknown permissions {unknown}")
        pairs.append((str(role), frozenset(perms)))
    return tuple(pairs)


def parse_costing_config(data: dict[str, Any], source: str = "") -> CostingConfig:
    """
    Parse a ``CostingConfig`` from a dict.

    Raises:
        InvalidConfigError: on an unknown timezone, unsupported default
            method, empty cancelled list, bad batch limits or unknown
            permissions.
    """
    defaults = CostingConfig()

    tz_name = data.get("business_timezone", defaults.business_timezone)
    try:
        ZoneInfo(str(tz_name))
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidConfigError("business_timezone", f"unknown timezone {tz_name!r}") from None

    method = data.get("default_method", defaults.default_method)
    try:
        method = parse_cost_method(method).value
    except UnsupportedCostMethodError:
        raise InvalidConfigError("default_method", f"unsupported method {method!r}") from None

    cancelled = data.get("cancelled_status_groups", list(defaults.cancelled_status_groups))
    if not cancelled or not all(isinstance(c, str) and c for c in cancelled):
        raise InvalidConfigError(
            "cancelled_status_groups", "must be a non-empty list of strings",
        )

    return CostingConfig(
        business_timezone=str(tz_name),
        default_method=method,
        cancelled_status_groups=tuple(cancelled),
        batch=parse_batch_settings(data.get("batch")),
        role_permissions=parse_roles(data.get("roles")),
        checksum=compute_checksum(data),
        source=source,
    )


def load_config(path: Path) -> CostingConfig:
    """Load and parse a configuration file."""
    return parse_costing_config(load_yaml_file(path), source=str(path))
