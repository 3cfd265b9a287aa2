"""Utility modules for the count kernel."""

from count_kernel.utils.hashing import (
    canonicalize_json,
    decimal_text,
    hash_payload,
    to_json_native,
)
from count_kernel.utils.ids import generate_audit_id, next_count_id

__all__ = [
    "canonicalize_json",
    "decimal_text",
    "hash_payload",
    "to_json_native",
    "generate_audit_id",
    "next_count_id",
]
