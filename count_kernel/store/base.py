"""
CountStore -- the injected home of the facility and history documents.

Responsibility:
    Defines the load / save contract every backend honours and owns the two
    pieces of state that are not backend specific: the single-writer lock and
    the consistency flag.

Architecture position:
    Kernel > Store.  The lifecycle manager receives a ``CountStore`` by
    injection; nothing in the kernel reaches for a global document.

Invariants enforced:
    - ``save(snapshot)`` persists BOTH documents or raises.  A backend never
      returns from ``save`` with only one of them written.
    - One logical writer at a time: mutating callers hold ``writer()`` for
      the whole read-modify-persist sequence.
    - Once marked inconsistent, a store refuses mutations until an operator
      calls ``mark_consistent()``.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from count_kernel.domain.values import CountHistory, FacilityConfig
from count_kernel.exceptions import DocumentLoadError, StoreInconsistentError
from count_kernel.logging_config import get_logger

logger = get_logger("store.base")


@dataclass(frozen=True)
class StoreSnapshot:
    """The facility configuration and count history as of one load."""

    facility: FacilityConfig
    history: CountHistory


class CountStore(ABC):
    """
    Abstract document store for one facility.

    Contract:
        ``load()`` returns a snapshot that callers may keep; later saves do
        not change it.  ``save()`` replaces both documents.

    Non-goals:
        - No cross-process locking.  Deploy one writer process per store.
    """

    def __init__(self) -> None:
        self._write_lock = threading.RLock()
        self._inconsistent_reason: str | None = None

    @abstractmethod
    def load(self) -> StoreSnapshot:
        """
        Raises:
            DocumentLoadError: if a document cannot be read.
            DocumentSchemaError: if a document has the wrong shape.
        """

    @abstractmethod
    def save(self, snapshot: StoreSnapshot) -> None:
        """
        Raises:
            PersistenceError: if either document cannot be written.
        """

    def exists(self) -> bool:
        """True once the facility document has been initialized."""
        try:
            self.load()
        except DocumentLoadError:
            return False
        return True

    @contextmanager
    def writer(self) -> Iterator[CountStore]:
        """Hold the store's single-writer lock for a read-modify-persist."""
        with self._write_lock:
            yield self

    @property
    def is_consistent(self) -> bool:
        return self._inconsistent_reason is None

    @property
    def inconsistent_reason(self) -> str | None:
        return self._inconsistent_reason

    def mark_inconsistent(self, reason: str) -> None:
        self._inconsistent_reason = reason
        logger.critical("store_marked_inconsistent", extra={"reason": reason})

    def mark_consistent(self) -> None:
        """Operator acknowledgement that the documents have been repaired."""
        if self._inconsistent_reason is not None:
            logger.warning(
                "store_marked_consistent",
                extra={"previous_reason": self._inconsistent_reason},
            )
        self._inconsistent_reason = None

    def require_consistent(self) -> None:
        """
        Raises:
            StoreInconsistentError: if the store has been marked inconsistent.
        """
        if self._inconsistent_reason is not None:
            raise StoreInconsistentError(self._inconsistent_reason)
