"""
Typed Exception Hierarchy for the Count Kernel.

Every error has a typed class, a machine-readable ``code`` class attribute,
and structured attributes so callers never parse messages.

    CountKernelError (base)
    |
    +-- CountStateError
    |   +-- CountInProgressError
    |   +-- NoCountInProgressError
    |   +-- ItemIndexOutOfRangeError
    |   +-- InsufficientHistoryError
    |
    +-- PersistenceError
    |   +-- DocumentLoadError
    |   +-- DocumentSchemaError
    |   +-- StoreInconsistentError
    |
    +-- AuditError
    |   +-- AuditWriteError
    |   +-- LogIntegrityError
    |
    +-- ConfigurationError

Category        | Code                   | When Raised
----------------|------------------------|------------------------------------------
State           | COUNT_IN_PROGRESS      | start() while another count is active
                | NO_COUNT_IN_PROGRESS   | item add / complete without an active count
                | ITEM_NOT_FOUND         | delete_item() index outside the item list
                | INSUFFICIENT_HISTORY   | comparison() with fewer than two records
----------------|------------------------|------------------------------------------
Persistence     | DOCUMENT_LOAD_FAILED   | store document unreadable
                | DOCUMENT_SCHEMA_INVALID| store document has the wrong shape
                | STORE_INCONSISTENT     | a rollback failed; operator must intervene
----------------|------------------------|------------------------------------------
Audit           | AUDIT_WRITE_FAILED     | audit entry could not be appended
                | LOG_INTEGRITY_FAILED   | integrity sweep found altered entries
----------------|------------------------|------------------------------------------
Configuration   | CONFIGURATION_ERROR    | settings file invalid

Validation errors and warnings are NOT exceptions.  The rule validator
returns them inside a ``ValidationResult`` so that every problem can be
presented at once.
"""


class CountKernelError(Exception):
    """
    Base exception for all count kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "COUNT_KERNEL_ERROR"


# State exceptions


class CountStateError(CountKernelError):
    """Base exception for lifecycle state violations."""

    code: str = "STATE_ERROR"


class CountInProgressError(CountStateError):
    """A count is already IN_PROGRESS for this facility."""

    code: str = "COUNT_IN_PROGRESS"

    def __init__(self, count_id: str):
        self.count_id = count_id
        super().__init__(
            f"Count {count_id} is already in progress. Complete it before starting another."
        )


class NoCountInProgressError(CountStateError):
    """The operation requires an IN_PROGRESS count and there is none."""

    code: str = "NO_COUNT_IN_PROGRESS"

    def __init__(self, operation: str, current_status: str | None = None):
        self.operation = operation
        self.current_status = current_status
        super().__init__(
            f"No count in progress for {operation} (current status: {current_status})"
        )


class ItemIndexOutOfRangeError(CountStateError):
    """Item index does not address an item of the active count."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, index: int, item_count: int):
        self.index = index
        self.item_count = item_count
        super().__init__(
            f"Item index {index} out of range for count with {item_count} item(s)"
        )


class InsufficientHistoryError(CountStateError):
    """Comparison needs at least two completed counts."""

    code: str = "INSUFFICIENT_HISTORY"

    def __init__(self, available: int, required: int = 2):
        self.available = available
        self.required = required
        super().__init__(
            f"Need at least {required} completed counts to compare, have {available}"
        )


# Persistence exceptions


class PersistenceError(CountKernelError):
    """Store I/O failed.  Always fatal for the triggering operation."""

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, message: str, document: str | None = None):
        self.document = document
        super().__init__(message)


class DocumentLoadError(PersistenceError):
    """A store document could not be read or decoded."""

    code: str = "DOCUMENT_LOAD_FAILED"


class DocumentSchemaError(PersistenceError):
    """A store document was read but does not have the expected shape."""

    code: str = "DOCUMENT_SCHEMA_INVALID"

    def __init__(self, document: str, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {document} document at '{field}': {reason}", document)


class StoreInconsistentError(PersistenceError):
    """
    The store could not be rolled back after a failed operation.

    Mutations are refused until an operator calls ``mark_consistent()``.
    """

    code: str = "STORE_INCONSISTENT"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Store marked inconsistent: {reason}")


# Audit exceptions


class AuditError(CountKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditWriteError(AuditError):
    """
    An audit entry could not be appended.

    The audit record is part of every lifecycle operation's contract, so this
    error is fatal for the operation that triggered it.
    """

    code: str = "AUDIT_WRITE_FAILED"

    def __init__(self, operation: str, segment: str, reason: str):
        self.operation = operation
        self.segment = segment
        self.reason = reason
        super().__init__(f"Failed to write {operation} audit entry to {segment}: {reason}")


class LogIntegrityError(AuditError):
    """One or more audit entries failed checksum verification."""

    code: str = "LOG_INTEGRITY_FAILED"

    def __init__(self, failed_ids: list[str]):
        self.failed_ids = failed_ids
        super().__init__(
            f"Audit integrity check failed for {len(failed_ids)} entr"
            f"{'y' if len(failed_ids) == 1 else 'ies'}"
        )


# Configuration exceptions


class ConfigurationError(CountKernelError):
    """Kernel settings are invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message)
