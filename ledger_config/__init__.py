"""
ledger_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads the YAML file or
    the ``LEDGER_CONFIG_PATH`` environment variable directly.

Architecture position:
    Configuration -- sits above ``ledger_kernel`` and below
    ``ledger_services``.  The kernel MUST NEVER import from
    ``ledger_config``; ``bridges`` translates the config into kernel inputs.

Failure modes:
    - ``FileNotFoundError`` -- the configured path does not exist.
    - ``ValueError`` -- schema validation failures.

Audit relevance:
    Every successful load emits a ``ledger_config_loaded`` log entry with
    the source path and checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ledger_config.loader import compute_checksum, load_config, parse_config
from ledger_config.schema import (
    EngineConfig,
    NumberingConfig,
    ReconciliationConfig,
)

_logger = logging.getLogger("ledger_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_PATH_ENV = "LEDGER_CONFIG_PATH"


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``path``, then ``$LEDGER_CONFIG_PATH``, then
    the bundled ``defaults.yaml``.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError: If configuration validation fails.
    """
    if path is None:
        path = os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH
    config = load_config(Path(path))

    _logger.info(
        "ledger_config_loaded",
        extra={
            "config_source": config.source,
            "checksum": config.checksum,
            "approval_roles": sorted(config.approval_authority),
            "approval_chains": sorted(config.approval_chains),
        },
    )
    return config


__all__ = [
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_PATH",
    "EngineConfig",
    "NumberingConfig",
    "ReconciliationConfig",
    "compute_checksum",
    "get_active_config",
    "parse_config",
]
