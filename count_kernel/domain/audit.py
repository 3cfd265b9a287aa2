"""
Audit log entry types (``count_kernel.domain.audit``).

Responsibility:
    The immutable ``AuditLogEntry`` and the rules for sealing and verifying
    it.  An entry's ``checksum`` is the SHA-256 of the canonical (sorted-key)
    serialization of every other field, so any post-write change to the
    stored line is detectable.

Architecture position:
    Kernel > Domain -- pure.  File handling lives in
    ``count_kernel.services.audit_trail``.

On-disk record shape (one JSON object per line)::

    {"id": ..., "timestamp": ..., "operation": ..., "category": ...,
     "data": {...}, "metadata": {"severity": ..., "sessionId": ...,
     "ipAddress": ..., "userAgent": ...}, "checksum": ...}
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from count_kernel.domain.dates import try_parse_instant
from count_kernel.domain.validation import Severity
from count_kernel.utils.hashing import hash_payload, to_json_native


class AuditOperation(str, Enum):
    """Auditable operations.  Serialized by name."""

    COUNT_START = "COUNT_START"
    ITEM_ADD = "ITEM_ADD"
    ITEM_DELETE = "ITEM_DELETE"
    COUNT_COMPLETE = "COUNT_COMPLETE"
    VALIDATION_FAILURE = "VALIDATION_FAILURE"
    VALIDATION_WARNING = "VALIDATION_WARNING"
    INTEGRITY_CHECK = "INTEGRITY_CHECK"


class AuditCategory(str, Enum):
    PHYSICAL_COUNT = "PHYSICAL_COUNT"
    COUNT_LIFECYCLE = "COUNT_LIFECYCLE"
    ITEM_MANAGEMENT = "ITEM_MANAGEMENT"
    VALIDATION = "VALIDATION"
    INTEGRITY = "INTEGRITY"


DEFAULT_METADATA: dict[str, str] = {
    "sessionId": "SYSTEM",
    "ipAddress": "unknown",
    "userAgent": "unknown",
}

_CREDENTIAL_KEY = re.compile(
    r"(password|passwd|passphrase|secret|token|api[_-]?key|authorization|credential)",
    re.IGNORECASE,
)


def sanitize_data(data: Any) -> Any:
    """
    Strip credential-shaped keys (password, token, apiKey, ...) at any depth.

    Returns a new structure; ``data`` is not modified.
    """
    if isinstance(data, dict):
        return {
            key: sanitize_data(value)
            for key, value in data.items()
            if not (isinstance(key, str) and _CREDENTIAL_KEY.search(key))
        }
    if isinstance(data, (list, tuple)):
        return [sanitize_data(value) for value in data]
    return data


def compute_checksum(record: dict[str, Any]) -> str:
    """Checksum over ``record`` with its ``checksum`` field removed."""
    unsealed = {key: value for key, value in record.items() if key != "checksum"}
    return hash_payload(unsealed)


@dataclass(frozen=True)
class AuditLogEntry:
    """
    One audit record.  Created once, never mutated.

    ``data`` and ``metadata`` hold JSON-native values only, so the record read
    back from disk hashes exactly as it did when written.  ``stored`` keeps the
    record as parsed, before defaults are applied, and is what verification
    hashes.
    """
    id: str
    timestamp: str
    operation: str
    category: str
    data: dict[str, Any]
    metadata: dict[str, Any]
    checksum: str
    stored: dict[str, Any] | None = field(default=None, compare=False, repr=False)

    @classmethod
    def seal(
        cls,
        *,
        entry_id: str,
        timestamp: datetime,
        operation: AuditOperation | str,
        category: AuditCategory | str,
        data: dict[str, Any],
        metadata: dict[str, Any],
    ) -> AuditLogEntry:
        """Build an entry from raw parts and attach its checksum."""
        record = {
            "id": entry_id,
            "timestamp": timestamp.isoformat(),
            "operation": operation.value if isinstance(operation, Enum) else str(operation),
            "category": category.value if isinstance(category, Enum) else str(category),
            "data": to_json_native(data),
            "metadata": to_json_native(metadata),
        }
        record["checksum"] = compute_checksum(record)
        return cls.from_record(record)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> AuditLogEntry:
        """
        Decode one stored line.

        Raises:
            KeyError / TypeError: if a required field is missing or malformed.
        """
        if not isinstance(record, dict):
            raise TypeError(f"audit record must be an object, got {type(record).__name__}")
        return cls(
            id=str(record["id"]),
            timestamp=str(record["timestamp"]),
            operation=str(record["operation"]),
            category=str(record.get("category", AuditCategory.PHYSICAL_COUNT.value)),
            data=dict(record.get("data") or {}),
            metadata=dict(record.get("metadata") or {}),
            checksum=str(record.get("checksum") or ""),
            stored=record,
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "operation": self.operation,
            "category": self.category,
            "data": self.data,
            "metadata": self.metadata,
            "checksum": self.checksum,
        }

    def recompute_checksum(self) -> str:
        return compute_checksum(self.stored if self.stored is not None else self.to_record())

    @property
    def occurred_at(self) -> datetime | None:
        return try_parse_instant(self.timestamp)

    @property
    def severity(self) -> str:
        return str(self.metadata.get("severity") or "UNKNOWN")

    @property
    def user_id(self) -> str:
        return str(self.data.get("userId") or "SYSTEM")

    @property
    def count_id(self) -> str | None:
        value = self.data.get("countId")
        return str(value) if value is not None else None


def build_metadata(
    metadata: dict[str, Any] | None,
    severity: Severity | str | None = None,
) -> dict[str, Any]:
    """Default missing session fields and stamp the severity."""
    merged: dict[str, Any] = dict(metadata or {})
    for key, default in DEFAULT_METADATA.items():
        if not merged.get(key):
            merged[key] = default
    if severity is not None:
        merged["severity"] = severity.value if isinstance(severity, Enum) else str(severity)
    merged.setdefault("severity", Severity.LOW.value)
    return merged
