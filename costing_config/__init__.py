"""
costing_config -- single public entrypoint for costing configuration.

Responsibility:
    ``get_active_config()`` is the way runtime code obtains configuration.
    It reads the packaged ``defaults.yaml`` unless an explicit path or the
    ``COSTING_CONFIG_PATH`` environment variable points elsewhere.

Architecture position:
    Configuration.  Sits above ``costing_kernel`` and below
    ``costing_services`` / ``costing_batch``.  The kernel never imports it.

Audit relevance:
    Every load emits a ``COSTING_CONFIG_TRACE`` log entry with the source
    path and checksum, tying each batch run to the configuration that
    governed it.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path

from costing_config.loader import load_config
from costing_config.schema import (
    PERMISSION_APPLY_COGS,
    PERMISSION_MANAGE_LAYERS,
    PERMISSION_REVERSE_COGS,
    BatchSettings,
    CostingConfig,
)
from costing_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_PATH_ENV = "COSTING_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

_cache: dict[Path, CostingConfig] = {}
_cache_lock = threading.Lock()


def resolve_config_path(path: Path | str | None = None) -> Path:
    """``path`` argument, then ``COSTING_CONFIG_PATH``, then packaged defaults."""
    return Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)


def get_active_config(path: Path | str | None = None) -> CostingConfig:
    """
    Load the active configuration.

    Parsed configs are cached per resolved path; ``reset_config_cache()``
    forces a reload.
    """
    resolved = resolve_config_path(path)
    with _cache_lock:
        cached = _cache.get(resolved)
        if cached is not None:
            return cached
        config = load_config(resolved)
        _cache[resolved] = config

    _logger.info(
        "COSTING_CONFIG_TRACE",
        extra={
            "trace_type": "COSTING_CONFIG_TRACE",
            "source": config.source,
            "checksum": config.checksum,
            "business_timezone": config.business_timezone,
            "page_size": config.batch.page_size,
            "max_pages": config.batch.max_pages,
        },
    )
    return config


def reset_config_cache() -> None:
    with _cache_lock:
        _cache.clear()


__all__ = [
    "BatchSettings",
    "CostingConfig",
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_PATH",
    "PERMISSION_APPLY_COGS",
    "PERMISSION_MANAGE_LAYERS",
    "PERMISSION_REVERSE_COGS",
    "get_active_config",
    "reset_config_cache",
    "resolve_config_path",
]
