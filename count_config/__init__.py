"""
count_config -- runtime settings for a count kernel deployment.

Responsibility:
    The single way to obtain settings (``load_settings``) and to turn them
    into wired kernel objects (``build_store``, ``build_audit_trail``,
    ``build_manager``).

Architecture position:
    Configuration -- sits above ``count_kernel``.  The kernel never imports
    from this package; it receives plain values and objects built here.

Audit relevance:
    Every ``load_settings`` call logs ``settings_loaded`` with the settings
    checksum, tying each run to the exact configuration that governed it.
"""

from __future__ import annotations

import os
from pathlib import Path

from count_config.loader import compute_checksum, load_yaml_file, parse_settings
from count_config.schema import AuditSettings, KernelSettings, StoreSettings
from count_kernel.db.engine import create_tables, init_engine_from_url
from count_kernel.domain.clock import Clock
from count_kernel.domain.rule_validator import RuleValidator
from count_kernel.logging_config import get_logger
from count_kernel.services.audit_trail import AuditTrail
from count_kernel.services.count_lifecycle import CountLifecycleManager
from count_kernel.store import (
    CountStore,
    InMemoryCountStore,
    JsonFileCountStore,
    SqlCountStore,
)

__all__ = [
    "AuditSettings",
    "KernelSettings",
    "StoreSettings",
    "SETTINGS_ENV_VAR",
    "build_audit_trail",
    "build_manager",
    "build_store",
    "load_settings",
    "settings_checksum",
    "settings_path_from_env",
]

logger = get_logger("config")

SETTINGS_ENV_VAR = "COUNT_KERNEL_SETTINGS"


def settings_checksum(settings: KernelSettings) -> str:
    return compute_checksum(settings)


def settings_path_from_env() -> Path | None:
    value = os.environ.get(SETTINGS_ENV_VAR)
    return Path(value) if value else None


def load_settings(path: Path | str | None = None) -> KernelSettings:
    """
    Load settings from ``path``, or the defaults when ``path`` is None.

    Raises:
        ConfigurationError: missing file, bad YAML, unknown key, bad value.
    """
    if path is None:
        settings = KernelSettings()
        source = "defaults"
    else:
        path = Path(path)
        settings = parse_settings(load_yaml_file(path), base_dir=path.parent)
        source = str(path)

    logger.info(
        "settings_loaded",
        extra={
            "source": source,
            "checksum": settings_checksum(settings),
            "store_backend": settings.store.backend,
        },
    )
    return settings


def build_store(settings: KernelSettings) -> CountStore:
    """Instantiate the configured store backend (the SQL engine is initialized here)."""
    store_settings = settings.store
    if store_settings.backend == "memory":
        return InMemoryCountStore(facility_id=store_settings.facility_id)
    if store_settings.backend == "sql":
        init_engine_from_url(store_settings.database_url)
        create_tables()
        return SqlCountStore(facility_id=store_settings.facility_id)
    return JsonFileCountStore(
        store_settings.config_path,
        store_settings.history_path,
        facility_id=store_settings.facility_id,
        fsync=settings.audit.fsync,
    )


def build_audit_trail(settings: KernelSettings, clock: Clock | None = None) -> AuditTrail:
    audit = settings.audit
    return AuditTrail(
        audit.log_dir,
        clock=clock,
        retention_days=audit.retention_days,
        fsync=audit.fsync,
        default_query_limit=audit.default_query_limit,
        trail_query_limit=audit.trail_query_limit,
    )


def build_manager(
    settings: KernelSettings,
    store: CountStore | None = None,
    clock: Clock | None = None,
) -> CountLifecycleManager:
    return CountLifecycleManager(
        store if store is not None else build_store(settings),
        build_audit_trail(settings, clock),
        validator=RuleValidator(settings.validation, clock=clock),
        clock=clock,
    )
