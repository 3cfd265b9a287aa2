"""Services for the count kernel (write side)."""

from count_kernel.services.audit_trail import (
    AuditReport,
    AuditStatistics,
    AuditTrail,
    CleanupResult,
    CountAuditTrail,
    IntegrityCheckResult,
    IntegritySweepResult,
    TrailSummary,
)
from count_kernel.services.count_lifecycle import (
    CountLifecycleManager,
    LifecycleResult,
    LifecycleStatus,
)

__all__ = [
    "AuditReport",
    "AuditStatistics",
    "AuditTrail",
    "CleanupResult",
    "CountAuditTrail",
    "CountLifecycleManager",
    "IntegrityCheckResult",
    "IntegritySweepResult",
    "LifecycleResult",
    "LifecycleStatus",
    "TrailSummary",
]
