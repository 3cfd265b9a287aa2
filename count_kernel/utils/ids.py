"""
Identifier generation.

Audit ids must stay unique even with several writer processes appending to
the same day segment, so they carry a uuid4 instead of a timestamp suffix.
"""

from uuid import uuid4

AUDIT_ID_PREFIX = "AUDIT"
COUNT_ID_PREFIX = "COUNT"


def generate_audit_id() -> str:
    """
    Generate a collision-resistant audit entry id.

    Example:
        >>> generate_audit_id()
        'AUDIT-3f2b8c0e9d4a4f1e8c7b6a5d4c3b2a19'
    """
    return f"{AUDIT_ID_PREFIX}-{uuid4().hex}"


def next_count_id(total_counts_performed: int) -> str:
    """
    Sequential id for the count after ``total_counts_performed`` completed ones.

    Example:
        >>> next_count_id(1)
        'COUNT-002'
    """
    if total_counts_performed < 0:
        raise ValueError("total_counts_performed cannot be negative")
    return f"{COUNT_ID_PREFIX}-{total_counts_performed + 1:03d}"
