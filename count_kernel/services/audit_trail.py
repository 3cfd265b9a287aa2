"""
AuditTrail -- append-only, checksummed, day-segmented audit log.

Responsibility:
    Records every lifecycle and validation event of the physical count as
    one JSON line in the segment file for the current UTC day
    (``audit-YYYY-MM-DD.jsonl``), and answers queries, per-count timelines,
    period reports and integrity checks over those segments.

Architecture position:
    Kernel > Services -- imperative shell, file I/O only.  Called by
    ``CountLifecycleManager`` after every persisted mutation and every
    rejection.

Invariants enforced:
    - Append-only: entries are never rewritten.  Only
      ``cleanup_old_logs()`` removes data, and only whole expired segments.
    - Tamper evidence: ``checksum = SHA-256(canonical(entry - checksum))``.
    - Appends to one segment are serialized by a per-segment lock, so lines
      never interleave; different segments are written independently.

Failure modes:
    - AuditWriteError: the segment could not be appended.  Fatal for the
      triggering lifecycle operation.
    - A malformed line is skipped on read (logged as ``audit_line_skipped``);
      the rest of the segment is still returned.

Audit relevance:
    This IS the audit service.
"""

from __future__ import annotations

import json
import os
import re
import threading
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Any

from count_kernel.domain.audit import (
    AuditCategory,
    AuditLogEntry,
    AuditOperation,
    build_metadata,
    sanitize_data,
)
from count_kernel.domain.clock import Clock, SystemClock
from count_kernel.domain.dates import parse_instant
from count_kernel.domain.validation import Severity, ValidationIssue
from count_kernel.domain.values import Count, CountedItem
from count_kernel.exceptions import AuditError, AuditWriteError, LogIntegrityError
from count_kernel.logging_config import get_logger
from count_kernel.store.documents import encode_item
from count_kernel.utils.hashing import decimal_text
from count_kernel.utils.ids import generate_audit_id

logger = get_logger("services.audit_trail")

SEGMENT_PREFIX = "audit-"
SEGMENT_SUFFIX = ".jsonl"
_SEGMENT_RE = re.compile(r"^audit-(\d{4}-\d{2}-\d{2})\.jsonl$")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# Result types
# =============================================================================


@dataclass(frozen=True)
class TrailSummary:
    count_starts: int
    items_added: int
    items_deleted: int
    count_completed: bool
    validation_failures: int
    validation_warnings: int


@dataclass(frozen=True)
class CountAuditTrail:
    """Full chronological timeline for one count."""

    count_id: str
    total_operations: int
    timeline: tuple[AuditLogEntry, ...]
    summary: TrailSummary


@dataclass(frozen=True)
class AuditReport:
    period_start: str | None
    period_end: str | None
    total_operations: int
    operation_breakdown: dict[str, int]
    severity_breakdown: dict[str, int]
    user_activity: dict[str, int]
    validation_issues: int
    integrity_checks: int
    generated_at: str


@dataclass(frozen=True)
class AuditStatistics:
    total_operations: int
    operation_breakdown: dict[str, int]
    severity_breakdown: dict[str, int]
    user_activity: dict[str, int]
    recent_activity: tuple[dict[str, Any], ...]


@dataclass(frozen=True)
class IntegrityCheckResult:
    """
    Outcome of re-hashing one stored entry.

    A mismatch is reported, never corrected.
    """

    log_id: str
    valid: bool
    stored_checksum: str | None
    calculated_checksum: str | None
    checked_at: str
    error: str | None = None


@dataclass(frozen=True)
class IntegritySweepResult:
    checked: int
    failed_ids: tuple[str, ...]
    audit_entry_id: str | None = None

    @property
    def passed(self) -> bool:
        return not self.failed_ids

    def require_intact(self) -> None:
        """
        Raises:
            LogIntegrityError: if any entry failed verification.
        """
        if self.failed_ids:
            raise LogIntegrityError(list(self.failed_ids))


@dataclass(frozen=True)
class CleanupResult:
    deleted_files: int
    cutoff_date: str
    retention_days: int
    deleted_segments: tuple[str, ...] = field(default_factory=tuple)


# =============================================================================
# Date range helpers
# =============================================================================


def _is_date_only(value: Any) -> bool:
    if isinstance(value, datetime):
        return False
    if isinstance(value, date):
        return True
    return isinstance(value, str) and len(value.strip()) == 10


def _lower_bound(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return parse_instant(value)


def _upper_bound(value: Any) -> tuple[datetime | None, bool]:
    """Return (bound, inclusive).  A date-only bound covers that whole day."""
    if value is None or value == "":
        return None, True
    instant = parse_instant(value)
    if _is_date_only(value):
        return instant + timedelta(days=1), False
    return instant, True


def _segment_day(path: Path) -> date | None:
    match = _SEGMENT_RE.match(path.name)
    if not match:
        return None
    try:
        return date.fromisoformat(match.group(1))
    except ValueError:
        return None


# =============================================================================
# AuditTrail
# =============================================================================


class AuditTrail:
    """
    Append-only audit log over day-segmented JSON-lines files.

    Contract:
        ``log_operation`` returns only after the entry's line is appended
        and flushed (and fsynced when ``fsync=True``).  Any failure raises
        ``AuditWriteError``.

    Non-goals:
        - No encryption or log shipping.
        - No cross-process locking: one writer process per log directory.
    """

    def __init__(
        self,
        log_dir: Path | str,
        clock: Clock | None = None,
        retention_days: int = 365,
        fsync: bool = False,
        default_query_limit: int = 100,
        trail_query_limit: int = 1000,
    ):
        if retention_days < 0:
            raise ValueError("retention_days cannot be negative")
        self._log_dir = Path(log_dir)
        self._clock = clock or SystemClock()
        self._retention_days = retention_days
        self._fsync = fsync
        self._default_query_limit = default_query_limit
        self._trail_query_limit = trail_query_limit

        self._segment_locks: dict[date, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        self._log_dir.mkdir(parents=True, exist_ok=True)

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    @property
    def retention_days(self) -> int:
        return self._retention_days

    def segment_path(self, day: date) -> Path:
        return self._log_dir / f"{SEGMENT_PREFIX}{day.isoformat()}{SEGMENT_SUFFIX}"

    def list_segments(self) -> list[tuple[date, Path]]:
        """All segment files, oldest first."""
        segments = []
        for path in self._log_dir.glob(f"{SEGMENT_PREFIX}*{SEGMENT_SUFFIX}"):
            day = _segment_day(path)
            if day is not None:
                segments.append((day, path))
        segments.sort()
        return segments

    # =========================================================================
    # Writing
    # =========================================================================

    def log_operation(
        self,
        operation: AuditOperation | str,
        data: dict[str, Any],
        metadata: dict[str, Any] | None = None,
        *,
        category: AuditCategory | str = AuditCategory.PHYSICAL_COUNT,
        severity: Severity | str | None = None,
    ) -> str:
        """
        Seal and append one entry; return its id.

        Postconditions:
            - The entry's line is in today's (UTC) segment.
            - ``verify_log_integrity(returned_id).valid`` is True.

        Raises:
            AuditWriteError: if the segment cannot be appended.
        """
        occurred_at = self._clock.now_utc()
        try:
            entry = AuditLogEntry.seal(
                entry_id=generate_audit_id(),
                timestamp=occurred_at,
                operation=operation,
                category=category,
                data=sanitize_data(data or {}),
                metadata=build_metadata(metadata, severity),
            )
        except (TypeError, ValueError) as exc:
            name = operation.value if isinstance(operation, AuditOperation) else str(operation)
            segment = self.segment_path(occurred_at.date()).name
            logger.error(
                "audit_entry_unserializable",
                extra={"operation": name, "segment": segment},
                exc_info=True,
            )
            raise AuditWriteError(name, segment, str(exc)) from exc
        self._append(entry, occurred_at.date())
        return entry.id

    def _segment_lock(self, day: date) -> threading.Lock:
        with self._locks_guard:
            lock = self._segment_locks.get(day)
            if lock is None:
                lock = threading.Lock()
                self._segment_locks[day] = lock
            return lock

    def _append(self, entry: AuditLogEntry, day: date) -> None:
        path = self.segment_path(day)
        with self._segment_lock(day):
            try:
                line = (json.dumps(entry.to_record(), ensure_ascii=False) + "\n").encode("utf-8")
                with open(path, "ab") as fh:
                    fh.write(line)
                    fh.flush()
                    if self._fsync:
                        os.fsync(fh.fileno())
            except (OSError, ValueError, TypeError) as exc:
                logger.error(
                    "audit_write_failed",
                    extra={"operation": entry.operation, "segment": path.name},
                    exc_info=True,
                )
                raise AuditWriteError(entry.operation, path.name, str(exc)) from exc

        logger.info(
            "audit_entry_written",
            extra={
                "audit_id": entry.id,
                "audit_operation": entry.operation,
                "severity": entry.severity,
                "segment": path.name,
            },
        )

    # Domain-specific recording methods

    def log_count_start(
        self,
        user_id: str,
        count: Count,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        return self.log_operation(
            AuditOperation.COUNT_START,
            {
                "userId": user_id,
                "countId": count.count_id,
                "startDate": count.start_date,
                "endDate": count.end_date,
                "lastOrderDate": count.last_order_date,
                "peopleOnSite": count.people_on_site,
            },
            metadata,
            category=AuditCategory.COUNT_LIFECYCLE,
            severity=Severity.HIGH,
        )

    def log_item_add(
        self,
        user_id: str,
        item: CountedItem,
        count_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        return self.log_operation(
            AuditOperation.ITEM_ADD,
            {"userId": user_id, "countId": count_id, "item": encode_item(item)},
            metadata,
            category=AuditCategory.ITEM_MANAGEMENT,
            severity=Severity.MEDIUM,
        )

    def log_item_delete(
        self,
        user_id: str,
        item: CountedItem,
        count_id: str,
        metadata: dict[str, Any] | None = None,
        index: int | None = None,
    ) -> str:
        return self.log_operation(
            AuditOperation.ITEM_DELETE,
            {
                "userId": user_id,
                "countId": count_id,
                "index": index,
                "deletedItem": encode_item(item),
            },
            metadata,
            category=AuditCategory.ITEM_MANAGEMENT,
            severity=Severity.HIGH,
        )

    def log_count_complete(
        self,
        user_id: str,
        count: Count,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        return self.log_operation(
            AuditOperation.COUNT_COMPLETE,
            {
                "userId": user_id,
                "countId": count.count_id,
                "itemsCounted": count.items_counted,
                "totalValue": decimal_text(count.total_value),
                "locationsCounted": list(count.locations_counted),
                "completedAt": count.completed_at,
            },
            metadata,
            category=AuditCategory.COUNT_LIFECYCLE,
            severity=Severity.CRITICAL,
        )

    def log_validation_failure(
        self,
        operation: str,
        errors: Sequence[ValidationIssue],
        data: dict[str, Any],
        metadata: dict[str, Any] | None = None,
        *,
        user_id: str | None = None,
        count_id: str | None = None,
    ) -> str:
        return self.log_operation(
            AuditOperation.VALIDATION_FAILURE,
            {
                "userId": user_id,
                "countId": count_id,
                "operation": operation,
                "errorCount": len(errors),
                "errors": [e.to_dict() for e in errors],
                "attemptedData": sanitize_data(data),
            },
            metadata,
            category=AuditCategory.VALIDATION,
            severity=Severity.MEDIUM,
        )

    def log_validation_warning(
        self,
        operation: str,
        warnings: Sequence[ValidationIssue],
        data: dict[str, Any],
        metadata: dict[str, Any] | None = None,
        *,
        user_id: str | None = None,
        count_id: str | None = None,
    ) -> str:
        return self.log_operation(
            AuditOperation.VALIDATION_WARNING,
            {
                "userId": user_id,
                "countId": count_id,
                "operation": operation,
                "warningCount": len(warnings),
                "warnings": [w.to_dict() for w in warnings],
                "data": sanitize_data(data),
            },
            metadata,
            category=AuditCategory.VALIDATION,
            severity=Severity.LOW,
        )

    def log_integrity_check(
        self,
        passed: bool,
        checks_performed: int,
        issues: Iterable[str] = (),
        metadata: dict[str, Any] | None = None,
    ) -> str:
        return self.log_operation(
            AuditOperation.INTEGRITY_CHECK,
            {
                "passed": passed,
                "checksPerformed": checks_performed,
                "issues": list(issues),
            },
            metadata,
            category=AuditCategory.INTEGRITY,
            severity=Severity.LOW if passed else Severity.CRITICAL,
        )

    # =========================================================================
    # Reading
    # =========================================================================

    def _read_entries(
        self,
        start_date: Any = None,
        end_date: Any = None,
    ) -> list[AuditLogEntry]:
        """Entries from every segment intersecting the range, file order."""
        lower = _lower_bound(start_date)
        upper, upper_inclusive = _upper_bound(end_date)

        entries: list[AuditLogEntry] = []
        for day, path in self.list_segments():
            if lower is not None and day < lower.date():
                continue
            if upper is not None and day > upper.date():
                continue
            for entry in self._read_segment(path):
                occurred = entry.occurred_at
                if lower is not None and (occurred is None or occurred < lower):
                    continue
                if upper is not None:
                    if occurred is None:
                        continue
                    if occurred > upper or (occurred == upper and not upper_inclusive):
                        continue
                entries.append(entry)
        return entries

    def _read_segment(self, path: Path) -> Iterable[AuditLogEntry]:
        try:
            with open(path, encoding="utf-8") as fh:
                lines = fh.readlines()
        except FileNotFoundError:
            # Removed by a concurrent cleanup
            return []
        except OSError as exc:
            raise AuditError(f"Failed to read audit segment {path.name}: {exc}") from exc

        entries = []
        for line_no, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                entries.append(AuditLogEntry.from_record(json.loads(line)))
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning(
                    "audit_line_skipped",
                    extra={"segment": path.name, "line": line_no, "reason": str(exc)},
                )
        return entries

    @staticmethod
    def _newest_first(entries: list[AuditLogEntry]) -> list[AuditLogEntry]:
        # Equal timestamps keep reverse file order
        ordered = sorted(entries, key=lambda e: e.occurred_at or _EPOCH)
        ordered.reverse()
        return ordered

    def query_logs(
        self,
        *,
        start_date: Any = None,
        end_date: Any = None,
        operation: AuditOperation | str | None = None,
        user_id: str | None = None,
        count_id: str | None = None,
        severity: Severity | str | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        """
        Filtered entries, newest first, truncated to ``limit`` (default 100).

        Raises:
            ValueError: if a date bound cannot be parsed.
        """
        entries = self._read_entries(start_date, end_date)

        if operation:
            op = operation.value if isinstance(operation, AuditOperation) else str(operation)
            entries = [e for e in entries if e.operation == op]
        if user_id:
            entries = [e for e in entries if e.data.get("userId") == user_id]
        if count_id:
            entries = [e for e in entries if e.count_id == count_id]
        if severity:
            sev = severity.value if isinstance(severity, Severity) else str(severity)
            entries = [e for e in entries if e.metadata.get("severity") == sev]

        if limit is None:
            limit = self._default_query_limit
        return self._newest_first(entries)[:limit]

    def get_count_audit_trail(self, count_id: str) -> CountAuditTrail:
        """Oldest-first timeline of one count plus a derived summary."""
        entries = self.query_logs(count_id=count_id, limit=self._trail_query_limit)
        timeline = tuple(reversed(entries))
        ops = Counter(e.operation for e in timeline)
        return CountAuditTrail(
            count_id=count_id,
            total_operations=len(timeline),
            timeline=timeline,
            summary=TrailSummary(
                count_starts=ops[AuditOperation.COUNT_START.value],
                items_added=ops[AuditOperation.ITEM_ADD.value],
                items_deleted=ops[AuditOperation.ITEM_DELETE.value],
                count_completed=ops[AuditOperation.COUNT_COMPLETE.value] > 0,
                validation_failures=ops[AuditOperation.VALIDATION_FAILURE.value],
                validation_warnings=ops[AuditOperation.VALIDATION_WARNING.value],
            ),
        )

    @staticmethod
    def _breakdowns(
        entries: list[AuditLogEntry],
    ) -> tuple[dict[str, int], dict[str, int], dict[str, int]]:
        by_operation = Counter(e.operation for e in entries)
        by_severity = Counter(e.severity for e in entries)
        by_user = Counter(e.user_id for e in entries)
        return dict(by_operation), dict(by_severity), dict(by_user)

    def generate_audit_report(self, start_date: Any, end_date: Any) -> AuditReport:
        """Aggregate breakdowns over a period."""
        entries = self._read_entries(start_date, end_date)
        by_operation, by_severity, by_user = self._breakdowns(entries)
        return AuditReport(
            period_start=str(start_date) if start_date is not None else None,
            period_end=str(end_date) if end_date is not None else None,
            total_operations=len(entries),
            operation_breakdown=by_operation,
            severity_breakdown=by_severity,
            user_activity=by_user,
            validation_issues=by_operation.get(AuditOperation.VALIDATION_FAILURE.value, 0),
            integrity_checks=by_operation.get(AuditOperation.INTEGRITY_CHECK.value, 0),
            generated_at=self._clock.now_utc().isoformat(),
        )

    def statistics(
        self,
        start_date: Any = None,
        end_date: Any = None,
        recent: int = 10,
    ) -> AuditStatistics:
        """
        Breakdowns plus the most recent activity.  Defaults to the last 30 days.
        """
        if start_date is None:
            start_date = self._clock.today_utc() - timedelta(days=30)
        if end_date is None:
            end_date = self._clock.today_utc()
        entries = self._newest_first(self._read_entries(start_date, end_date))
        by_operation, by_severity, by_user = self._breakdowns(entries)
        return AuditStatistics(
            total_operations=len(entries),
            operation_breakdown=by_operation,
            severity_breakdown=by_severity,
            user_activity=by_user,
            recent_activity=tuple(
                {
                    "timestamp": e.timestamp,
                    "operation": e.operation,
                    "userId": e.user_id,
                    "severity": e.metadata.get("severity"),
                }
                for e in entries[:recent]
            ),
        )

    # =========================================================================
    # Integrity
    # =========================================================================

    def verify_log_integrity(self, log_id: str) -> IntegrityCheckResult:
        """
        Recompute one entry's checksum and compare with the stored one.

        Never raises for a mismatch or a missing entry; both are reported in
        the result.
        """
        checked_at = self._clock.now_utc().isoformat()
        entry = next((e for e in self._read_entries() if e.id == log_id), None)
        if entry is None:
            return IntegrityCheckResult(
                log_id=log_id,
                valid=False,
                stored_checksum=None,
                calculated_checksum=None,
                checked_at=checked_at,
                error="Log entry not found",
            )

        calculated = entry.recompute_checksum()
        valid = calculated == entry.checksum
        if not valid:
            logger.critical(
                "audit_checksum_mismatch",
                extra={"audit_id": log_id, "stored": entry.checksum, "calculated": calculated},
            )
        return IntegrityCheckResult(
            log_id=log_id,
            valid=valid,
            stored_checksum=entry.checksum,
            calculated_checksum=calculated,
            checked_at=checked_at,
        )

    def run_integrity_sweep(
        self,
        start_date: Any = None,
        end_date: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> IntegritySweepResult:
        """
        Verify every entry in range and record an INTEGRITY_CHECK entry.

        The INTEGRITY_CHECK entry is CRITICAL when any entry failed.
        """
        entries = self._read_entries(start_date, end_date)
        failed = tuple(e.id for e in entries if e.recompute_checksum() != e.checksum)
        if failed:
            logger.critical(
                "audit_integrity_sweep_failed",
                extra={"checked": len(entries), "failed_ids": list(failed)},
            )
        audit_id = self.log_integrity_check(
            passed=not failed,
            checks_performed=len(entries),
            issues=[f"checksum mismatch: {log_id}" for log_id in failed],
            metadata=metadata,
        )
        return IntegritySweepResult(
            checked=len(entries),
            failed_ids=failed,
            audit_entry_id=audit_id,
        )

    # =========================================================================
    # Retention
    # =========================================================================

    def cleanup_old_logs(self, retention_days: int | None = None) -> CleanupResult:
        """
        Delete whole segments dated before ``today - retention_days``.

        Raises:
            ValueError: if ``retention_days`` is negative.
            AuditError: if an expired segment cannot be removed.
        """
        days = self._retention_days if retention_days is None else retention_days
        if days < 0:
            raise ValueError("retention_days cannot be negative")
        cutoff = self._clock.today_utc() - timedelta(days=days)

        deleted: list[str] = []
        for day, path in self.list_segments():
            if day >= cutoff:
                continue
            with self._segment_lock(day):
                try:
                    path.unlink()
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    raise AuditError(f"Failed to delete audit segment {path.name}: {exc}") from exc
            deleted.append(path.name)

        with self._locks_guard:
            for day in [d for d in self._segment_locks if d < cutoff]:
                del self._segment_locks[day]

        logger.info(
            "audit_segments_cleaned",
            extra={
                "deleted": len(deleted),
                "cutoff_date": cutoff.isoformat(),
                "retention_days": days,
            },
        )
        return CleanupResult(
            deleted_files=len(deleted),
            cutoff_date=datetime.combine(cutoff, time.min, tzinfo=timezone.utc).isoformat(),
            retention_days=days,
            deleted_segments=tuple(deleted),
        )
