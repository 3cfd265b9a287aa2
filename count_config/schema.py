"""
Settings schema (``count_config.schema``).

Frozen dataclasses for the runtime settings of a count kernel deployment.
Each validates itself in ``__post_init__`` and raises ``ValueError`` on a
bad value; the loader turns that into ``ConfigurationError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from count_kernel.domain.rule_validator import ValidationThresholds

STORE_BACKENDS = ("memory", "json", "sql")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class AuditSettings:
    log_dir: Path = Path("logs/audit")
    retention_days: int = 365
    fsync: bool = False
    default_query_limit: int = 100
    trail_query_limit: int = 1000

    def __post_init__(self):
        if self.retention_days < 0:
            raise ValueError("retention_days cannot be negative")
        if self.default_query_limit < 1:
            raise ValueError("default_query_limit must be positive")
        if self.trail_query_limit < 1:
            raise ValueError("trail_query_limit must be positive")


@dataclass(frozen=True)
class StoreSettings:
    """Where the facility and history documents live."""
    backend: str = "json"
    config_path: Path = Path("data/facility_config.json")
    history_path: Path = Path("data/count_history.json")
    database_url: str = "sqlite:///data/count_kernel.db"
    facility_id: str = "default"

    def __post_init__(self):
        if self.backend not in STORE_BACKENDS:
            raise ValueError(
                f"backend must be one of {', '.join(STORE_BACKENDS)}, got {self.backend!r}"
            )
        if not self.facility_id:
            raise ValueError("facility_id cannot be empty")


@dataclass(frozen=True)
class KernelSettings:
    """Everything a deployment needs to build a lifecycle manager."""
    log_level: str = "INFO"
    validation: ValidationThresholds = field(default_factory=ValidationThresholds)
    audit: AuditSettings = field(default_factory=AuditSettings)
    store: StoreSettings = field(default_factory=StoreSettings)

    def __post_init__(self):
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level.upper())
