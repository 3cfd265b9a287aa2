"""
CountLifecycleManager -- the physical count state machine.

Responsibility:
    Owns ``READY -> IN_PROGRESS -> COMPLETED -> (new) READY``.  Every mutation
    is checked by the ``RuleValidator``, persisted through the injected
    ``CountStore`` and recorded by the ``AuditTrail``.

Architecture position:
    Kernel > Services -- orchestrator.  Composes the pure validator with the
    store and the audit trail; contains no business rule of its own beyond
    the state transitions.

Invariants enforced:
    - At most one count per facility is IN_PROGRESS.  ``start`` refuses
      while one is active, without consulting the validator.
    - Rejected operations persist nothing.  Every rejection is audited as
      VALIDATION_FAILURE (plus VALIDATION_WARNING when warnings exist).
    - Mutations are read-modify-persist sequences run under the store's
      single-writer lock.
    - Order is persist, then audit.  An audit write failure restores the
      previous snapshot; a failed restore marks the store inconsistent.

Failure modes:
    - CountInProgressError / NoCountInProgressError / ItemIndexOutOfRangeError:
      state violations, raised after a VALIDATION_FAILURE entry is written.
    - PersistenceError: the store could not be written.  Nothing changed.
    - AuditWriteError: persisted, then rolled back because the audit entry
      could not be written.
    - StoreInconsistentError: the rollback failed, or the store was already
      marked inconsistent.

Audit relevance:
    COUNT_START, ITEM_ADD, ITEM_DELETE and COUNT_COMPLETE are written for
    every successful mutation; the audit record is part of the operation.

Usage::

    manager = CountLifecycleManager(store, AuditTrail(log_dir))
    result = manager.start({"start_date": "2025-01-01", "end_date": "2025-01-01",
                            "last_order_date": "2025-01-01", "people_on_site": 3})
    if not result.success:
        print(result.errors)
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any

from count_kernel.domain.clock import Clock, SystemClock
from count_kernel.domain.dates import parse_instant
from count_kernel.domain.rule_validator import RuleValidator
from count_kernel.domain.validation import (
    ValidationIssue,
    ValidationReport,
    ValidationResult,
)
from count_kernel.domain.values import (
    SYSTEM_ACTOR,
    ZERO,
    ActorContext,
    Count,
    CountAggregates,
    CountedItem,
    CountHistory,
    CountHistoryRecord,
    FacilityConfig,
    Location,
    NextCountTemplate,
)
from count_kernel.domain.workflow import (
    COUNT_WORKFLOW,
    CountAction,
    CountStatus,
    Workflow,
)
from count_kernel.exceptions import (
    CountInProgressError,
    CountStateError,
    ItemIndexOutOfRangeError,
    NoCountInProgressError,
    PersistenceError,
    StoreInconsistentError,
)
from count_kernel.logging_config import LogContext, get_logger
from count_kernel.selectors.count_selector import (
    CountComparison,
    CountSelector,
    LocationItems,
)
from count_kernel.services.audit_trail import AuditTrail
from count_kernel.store.base import CountStore, StoreSnapshot
from count_kernel.utils.ids import next_count_id

logger = get_logger("services.count_lifecycle")


class LifecycleStatus(str, Enum):
    SUCCESS = "SUCCESS"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class LifecycleResult:
    """
    Outcome of one lifecycle mutation.

    A REJECTED result carries the validator's errors and warnings and
    nothing was persisted.  A SUCCESS result carries the new count state;
    warnings may still be present.
    """

    status: LifecycleStatus
    validation: ValidationResult
    count: Count | None = None
    item: CountedItem | None = None
    aggregates: CountAggregates | None = None
    history_record: CountHistoryRecord | None = None
    next_count_id: str | None = None
    audit_entry_id: str | None = None

    @property
    def success(self) -> bool:
        return self.status == LifecycleStatus.SUCCESS

    @property
    def errors(self) -> tuple[ValidationIssue, ...]:
        return self.validation.errors

    @property
    def warnings(self) -> tuple[ValidationIssue, ...]:
        return self.validation.warnings


def _as_decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value).strip())


def _as_int(value: Any) -> int:
    return int(_as_decimal(value))


def _performers(value: str | Sequence[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,) if value else ()
    return tuple(str(v) for v in value if v)


class CountLifecycleManager:
    """
    Orchestrates the physical count lifecycle for one facility store.

    Contract:
        ``start``, ``add_item`` and ``complete`` return a ``LifecycleResult``
        for both acceptance and validation rejection.  ``delete_item`` runs
        no business rules and returns SUCCESS or raises.  State violations
        raise ``CountStateError`` subclasses.

    Guarantees:
        - No partial mutation is ever visible through the store.
        - Every outcome, accepted or rejected, leaves an audit entry.

    Non-goals:
        - Authentication.  The caller supplies the ``ActorContext``.
        - Cross-process coordination.  One writer process per store.
    """

    def __init__(
        self,
        store: CountStore,
        audit_trail: AuditTrail,
        validator: RuleValidator | None = None,
        clock: Clock | None = None,
        workflow: Workflow = COUNT_WORKFLOW,
    ):
        self._store = store
        self._audit = audit_trail
        self._clock = clock or SystemClock()
        self._validator = validator or RuleValidator(clock=self._clock)
        self._workflow = workflow
        self._selector = CountSelector(store)

    @property
    def store(self) -> CountStore:
        return self._store

    @property
    def audit_trail(self) -> AuditTrail:
        return self._audit

    @property
    def validator(self) -> RuleValidator:
        return self._validator

    # =========================================================================
    # Start
    # =========================================================================

    def start(
        self,
        params: Mapping[str, Any],
        actor: ActorContext | None = None,
    ) -> LifecycleResult:
        """
        Promote the READY template to an IN_PROGRESS count.

        ``params`` keys: ``start_date``, ``end_date``, ``last_order_date``,
        ``people_on_site`` and optionally ``notes``.

        Raises:
            CountInProgressError: a count is already active.
        """
        actor = actor or ActorContext.system()
        params = dict(params or {})
        with self._mutation(CountAction.START, actor) as snapshot:
            facility = snapshot.facility
            current = facility.current_count

            if current.status == CountStatus.IN_PROGRESS:
                self._reject_state(
                    CountAction.START, CountInProgressError(current.count_id),
                    params, actor, current.count_id,
                )

            result = self._validator.validate_count_start(params, facility)
            if not result.valid:
                return self._reject(CountAction.START, result, params, actor, current.count_id)

            now = self._clock.now_utc()
            count = Count(
                count_id=self._startable_id(current, snapshot.history),
                status=CountStatus.IN_PROGRESS,
                start_date=parse_instant(params["start_date"]),
                end_date=parse_instant(params["end_date"]),
                last_order_date=parse_instant(params["last_order_date"]),
                people_on_site=_as_int(params["people_on_site"]),
                notes=str(params.get("notes") or ""),
                started_by=actor.user_id,
                started_at=now,
            )
            new_facility = replace(
                facility.with_all_locations_cleared(),
                current_count=count,
                updated_at=now,
            )
            audit_id = self._commit(
                snapshot,
                StoreSnapshot(new_facility, snapshot.history),
                lambda: self._audit.log_count_start(actor.user_id, count, actor.audit_metadata()),
                CountAction.START, result, params, actor, count.count_id,
            )

        logger.info(
            "count_started",
            extra={
                "count_id": count.count_id,
                "people_on_site": count.people_on_site,
                "warning_codes": list(result.warning_codes),
            },
        )
        return LifecycleResult(
            status=LifecycleStatus.SUCCESS,
            validation=result,
            count=count,
            aggregates=count.aggregates(),
            audit_entry_id=audit_id,
        )

    def _startable_id(self, current: Count, history: CountHistory) -> str:
        """Id for the count about to start.  A legacy COMPLETED slot gets the next id."""
        if current.status == CountStatus.READY:
            return current.count_id
        if history.next_count is not None and history.next_count.count_id != current.count_id:
            return history.next_count.count_id
        return next_count_id(history.total_counts_performed)

    # =========================================================================
    # Items
    # =========================================================================

    def add_item(
        self,
        item: Mapping[str, Any],
        actor: ActorContext | None = None,
    ) -> LifecycleResult:
        """
        Append one counted line to the active count.

        ``item`` keys: ``location``, ``item_code``, ``item_name``,
        ``quantity``, ``unit`` and optionally ``unit_price`` and ``notes``.

        Raises:
            NoCountInProgressError: no count is active.
        """
        actor = actor or ActorContext.system()
        item = dict(item or {})
        with self._mutation(CountAction.ADD_ITEM, actor) as snapshot:
            facility = snapshot.facility
            current = facility.current_count
            self._require_active(CountAction.ADD_ITEM, current, item, actor)

            result = self._validator.validate_item_add(item, current, facility)
            if not result.valid:
                return self._reject(CountAction.ADD_ITEM, result, item, actor, current.count_id)

            now = self._clock.now_utc()
            counted = CountedItem(
                location=str(item["location"]).strip(),
                item_code=str(item["item_code"]).strip(),
                item_name=str(item["item_name"]).strip(),
                quantity=_as_decimal(item["quantity"]),
                unit=str(item["unit"]).strip(),
                unit_price=_as_decimal(item.get("unit_price")),
                notes=str(item.get("notes") or ""),
                added_at=now,
                added_by=actor.user_id,
            )
            count = current.with_item(counted)
            new_facility = replace(
                facility.with_location_counted(counted.location, True),
                current_count=count,
                updated_at=now,
            )
            audit_id = self._commit(
                snapshot,
                StoreSnapshot(new_facility, snapshot.history),
                lambda: self._audit.log_item_add(
                    actor.user_id, counted, count.count_id, actor.audit_metadata()
                ),
                CountAction.ADD_ITEM, result, item, actor, count.count_id,
            )

        logger.info(
            "item_added",
            extra={
                "location": counted.location,
                "item_code": counted.item_code,
                "items_counted": count.items_counted,
                "total_value": count.total_value,
                "warning_codes": list(result.warning_codes),
            },
        )
        return LifecycleResult(
            status=LifecycleStatus.SUCCESS,
            validation=result,
            count=count,
            item=counted,
            aggregates=count.aggregates(),
            audit_entry_id=audit_id,
        )

    def delete_item(
        self,
        index: int,
        actor: ActorContext | None = None,
    ) -> LifecycleResult:
        """
        Remove the item at ``index`` (zero-based) from the active count.

        The location's ``counted`` flag is cleared when no remaining item
        references it.

        Raises:
            NoCountInProgressError: no count is active.
            ItemIndexOutOfRangeError: ``index`` addresses no item.
        """
        actor = actor or ActorContext.system()
        attempted = {"index": index}
        with self._mutation(CountAction.DELETE_ITEM, actor) as snapshot:
            facility = snapshot.facility
            current = facility.current_count
            self._require_active(CountAction.DELETE_ITEM, current, attempted, actor)

            if (
                isinstance(index, bool)
                or not isinstance(index, int)
                or not 0 <= index < current.items_counted
            ):
                self._reject_state(
                    CountAction.DELETE_ITEM,
                    ItemIndexOutOfRangeError(index, current.items_counted),
                    attempted, actor, current.count_id,
                )

            now = self._clock.now_utc()
            count, removed = current.without_item(index)
            new_facility = replace(facility, current_count=count, updated_at=now)
            if not count.items_at(removed.location):
                new_facility = new_facility.with_location_counted(removed.location, False)

            result = ValidationResult(timestamp=now)
            audit_id = self._commit(
                snapshot,
                StoreSnapshot(new_facility, snapshot.history),
                lambda: self._audit.log_item_delete(
                    actor.user_id, removed, count.count_id, actor.audit_metadata(), index=index
                ),
                CountAction.DELETE_ITEM, result, attempted, actor, count.count_id,
            )

        logger.info(
            "item_deleted",
            extra={
                "index": index,
                "location": removed.location,
                "item_code": removed.item_code,
                "items_counted": count.items_counted,
            },
        )
        return LifecycleResult(
            status=LifecycleStatus.SUCCESS,
            validation=result,
            count=count,
            item=removed,
            aggregates=count.aggregates(),
            audit_entry_id=audit_id,
        )

    # =========================================================================
    # Complete
    # =========================================================================

    def complete(
        self,
        notes: str | None = None,
        performed_by: str | Sequence[str] | None = None,
        actor: ActorContext | None = None,
    ) -> LifecycleResult:
        """
        Complete the active count, archive it and open the next READY slot.

        The facility and history documents are persisted together.

        Raises:
            NoCountInProgressError: no count is active.
        """
        actor = actor or ActorContext.system()
        attempted = {"notes": notes, "performedBy": list(_performers(performed_by))}
        with self._mutation(CountAction.COMPLETE, actor) as snapshot:
            facility = snapshot.facility
            current = facility.current_count
            self._require_active(CountAction.COMPLETE, current, attempted, actor)

            result = self._validator.validate_count_complete(current, facility, snapshot.history)
            if not result.valid:
                return self._reject(CountAction.COMPLETE, result, attempted, actor, current.count_id)

            now = self._clock.now_utc()
            performers = _performers(performed_by) or current.performed_by
            if not performers and actor.user_id != SYSTEM_ACTOR:
                performers = (actor.user_id,)
            completed = replace(
                current,
                status=CountStatus.COMPLETED,
                end_date=current.end_date or now,
                notes=notes if notes is not None else current.notes,
                performed_by=performers,
                completed_at=now,
            )
            record = CountHistoryRecord.from_count(completed)
            history = snapshot.history.appended(record)
            following = next_count_id(history.total_counts_performed)
            history = replace(history, next_count=NextCountTemplate(count_id=following))
            new_facility = replace(
                facility.with_all_locations_cleared(),
                current_count=Count(count_id=following, status=CountStatus.READY),
                updated_at=now,
            )
            audit_id = self._commit(
                snapshot,
                StoreSnapshot(new_facility, history),
                lambda: self._audit.log_count_complete(
                    actor.user_id, completed, actor.audit_metadata()
                ),
                CountAction.COMPLETE, result, attempted, actor, completed.count_id,
            )

        logger.info(
            "count_completed",
            extra={
                "items_counted": completed.items_counted,
                "total_value": completed.total_value,
                "next_count_id": following,
                "total_counts_performed": history.total_counts_performed,
            },
        )
        return LifecycleResult(
            status=LifecycleStatus.SUCCESS,
            validation=result,
            count=completed,
            aggregates=completed.aggregates(),
            history_record=record,
            next_count_id=following,
            audit_entry_id=audit_id,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def current(self) -> Count:
        return self._selector.current()

    def items(self) -> tuple[CountedItem, ...]:
        return self._selector.items()

    def items_by_location(self, location_id: str) -> LocationItems:
        return self._selector.items_by_location(location_id)

    def locations(self) -> tuple[Location, ...]:
        return self._selector.locations()

    def history(self) -> CountHistory:
        return self._selector.history()

    def facility(self) -> FacilityConfig:
        return self._selector.facility()

    def comparison(self) -> CountComparison:
        """
        Raises:
            InsufficientHistoryError: fewer than two completed counts.
        """
        return self._selector.comparison()

    def validation_report(self, result: ValidationResult) -> ValidationReport:
        return self._validator.generate_report(result)

    # =========================================================================
    # Internals
    # =========================================================================

    @contextmanager
    def _mutation(self, action: CountAction, actor: ActorContext) -> Iterator[StoreSnapshot]:
        """Writer lock, log context and a fresh snapshot for one mutation."""
        with self._store.writer(), LogContext.bind(
            actor_id=actor.user_id,
            session_id=actor.session_id,
            operation=action.value,
        ):
            self._store.require_consistent()
            snapshot = self._store.load()
            with LogContext.bind(count_id=snapshot.facility.current_count.count_id):
                yield snapshot

    def _require_active(
        self,
        action: CountAction,
        current: Count,
        attempted: dict[str, Any],
        actor: ActorContext,
    ) -> None:
        if not self._workflow.allows(current.status, action):
            self._reject_state(
                action,
                NoCountInProgressError(action.value, current.status.value),
                attempted, actor, current.count_id,
            )

    def _reject_state(
        self,
        action: CountAction,
        error: CountStateError,
        attempted: dict[str, Any],
        actor: ActorContext,
        count_id: str | None,
    ) -> None:
        """Audit a state violation as VALIDATION_FAILURE, then raise it."""
        self._audit.log_validation_failure(
            action.value,
            [ValidationIssue("status", str(error), error.code)],
            attempted,
            actor.audit_metadata(),
            user_id=actor.user_id,
            count_id=count_id,
        )
        logger.warning(
            "lifecycle_state_error",
            extra={"action": action.value, "error_code": error.code},
        )
        raise error

    def _reject(
        self,
        action: CountAction,
        result: ValidationResult,
        attempted: dict[str, Any],
        actor: ActorContext,
        count_id: str | None,
    ) -> LifecycleResult:
        audit_id = self._audit.log_validation_failure(
            action.value,
            result.errors,
            attempted,
            actor.audit_metadata(),
            user_id=actor.user_id,
            count_id=count_id,
        )
        self._audit_warnings(action, result, attempted, actor, count_id)
        logger.info(
            "lifecycle_rejected",
            extra={
                "action": action.value,
                "error_codes": list(result.error_codes),
                "warning_codes": list(result.warning_codes),
                "severity": result.severity.value,
            },
        )
        return LifecycleResult(
            status=LifecycleStatus.REJECTED,
            validation=result,
            audit_entry_id=audit_id,
        )

    def _audit_warnings(
        self,
        action: CountAction,
        result: ValidationResult,
        attempted: dict[str, Any],
        actor: ActorContext,
        count_id: str | None,
    ) -> None:
        if result.warnings:
            self._audit.log_validation_warning(
                action.value,
                result.warnings,
                attempted,
                actor.audit_metadata(),
                user_id=actor.user_id,
                count_id=count_id,
            )

    def _commit(
        self,
        previous: StoreSnapshot,
        new: StoreSnapshot,
        write_audit: Callable[[], str],
        action: CountAction,
        result: ValidationResult,
        attempted: dict[str, Any],
        actor: ActorContext,
        count_id: str,
    ) -> str:
        """
        Persist ``new`` and record the operation; return the audit entry id.

        Any exception raised while recording the audit entries undoes the
        save before it propagates.

        Raises:
            PersistenceError: the save failed; nothing changed.
            AuditWriteError: the audit write failed; ``previous`` restored.
            StoreInconsistentError: the audit write failed and so did the restore.
        """
        try:
            self._store.save(new)
        except PersistenceError:
            logger.error("store_persist_failed", extra={"action": action.value}, exc_info=True)
            raise

        try:
            audit_id = write_audit()
            self._audit_warnings(action, result, attempted, actor, count_id)
        except Exception as audit_error:
            logger.error(
                "audit_write_failed_rolling_back",
                extra={"action": action.value, "error_type": type(audit_error).__name__},
            )
            try:
                self._store.save(previous)
            except PersistenceError as restore_error:
                reason = (
                    f"{action.value} persisted but its audit entry failed "
                    f"({audit_error}) and the rollback failed ({restore_error})"
                )
                self._store.mark_inconsistent(reason)
                raise StoreInconsistentError(reason) from audit_error
            raise
        return audit_id
