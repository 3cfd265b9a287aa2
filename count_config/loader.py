"""
Settings loader (``count_config.loader``).

Responsibility
--------------
Reads a YAML settings file with ``yaml.safe_load`` and parses it into the
frozen dataclasses of ``count_config.schema``.  Every section is merged
over its defaults; keys the schema does not know are rejected.

Failure modes
-------------
* Missing file, malformed YAML, unknown key or invalid value  ->
  ``ConfigurationError`` naming the offending key where there is one.
"""

from __future__ import annotations

from dataclasses import asdict, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from count_config.schema import AuditSettings, KernelSettings, StoreSettings
from count_kernel.domain.rule_validator import ValidationThresholds
from count_kernel.exceptions import ConfigurationError
from count_kernel.utils.hashing import hash_payload, to_json_native

_TOP_LEVEL_KEYS = {"log_level", "validation", "audit", "store"}

_DECIMAL_FIELDS = {"max_quantity", "max_unit_price", "max_line_value", "low_item_ratio"}
_PATH_FIELDS = {"log_dir", "config_path", "history_path"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Raises:
        ConfigurationError: if the file is missing, unreadable or not a mapping.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Settings file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping")
    return data


def _check_keys(section: str, data: Any, allowed: set[str]) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section '{section}' must be a mapping", key=section)
    unknown = sorted(set(data) - allowed)
    if unknown:
        key = f"{section}.{unknown[0]}" if section else unknown[0]
        raise ConfigurationError(f"Unknown settings key: {key}", key=key)
    return data


def _field_names(cls) -> set[str]:
    return {f.name for f in fields(cls)}


def _coerce(section: str, name: str, value: Any, base_dir: Path | None) -> Any:
    if name in _DECIMAL_FIELDS:
        try:
            return Decimal(str(value))
        except InvalidOperation as exc:
            raise ConfigurationError(
                f"{section}.{name} must be a number, got {value!r}", key=f"{section}.{name}"
            ) from exc
    if name in _PATH_FIELDS:
        path = Path(value)
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        return path
    if name == "whole_number_units":
        if isinstance(value, str) or not isinstance(value, (list, tuple, set)):
            raise ConfigurationError(
                f"{section}.{name} must be a list", key=f"{section}.{name}"
            )
        return frozenset(str(unit).upper() for unit in value)
    return value


def _build(section: str, cls, data: Any, base_dir: Path | None):
    data = _check_keys(section, data or {}, _field_names(cls))
    kwargs = {name: _coerce(section, name, value, base_dir) for name, value in data.items()}
    try:
        return cls(**kwargs)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid '{section}' settings: {exc}", key=section) from exc


def parse_settings(data: dict[str, Any], base_dir: Path | None = None) -> KernelSettings:
    """
    Parse a settings mapping.  Relative paths resolve against ``base_dir``.

    Raises:
        ConfigurationError: on an unknown key or an invalid value.
    """
    data = _check_keys("", data, _TOP_LEVEL_KEYS)
    try:
        return KernelSettings(
            log_level=str(data.get("log_level", "INFO")),
            validation=_build("validation", ValidationThresholds, data.get("validation"), base_dir),
            audit=_build("audit", AuditSettings, data.get("audit"), base_dir),
            store=_build("store", StoreSettings, data.get("store"), base_dir),
        )
    except ValueError as exc:
        raise ConfigurationError(str(exc), key="log_level") from exc


def compute_checksum(settings: KernelSettings) -> str:
    """
    Deterministic SHA-256 of the settings' canonical JSON form.

    Identical settings always produce identical checksums.
    """
    return hash_payload(to_json_native(asdict(settings)))
