"""In-memory CountStore used by tests and the ``memory`` backend."""

from __future__ import annotations

from copy import deepcopy
from typing import Any

from count_kernel.exceptions import DocumentLoadError, PersistenceError
from count_kernel.logging_config import get_logger
from count_kernel.store.base import CountStore, StoreSnapshot
from count_kernel.store.documents import (
    decode_facility,
    decode_history,
    encode_facility,
    encode_history,
)

logger = get_logger("store.memory")


class InMemoryCountStore(CountStore):
    """
    Holds both documents in their encoded form.

    Every load decodes a fresh copy, so the documents are validated exactly
    as the file and SQL backends validate them.  ``fail_next_saves`` makes
    the next N saves raise ``PersistenceError`` without writing anything.
    """

    def __init__(self, snapshot: StoreSnapshot | None = None, facility_id: str = "default"):
        super().__init__()
        self._facility_id = facility_id
        self._facility_doc: dict[str, Any] | None = None
        self._history_doc: dict[str, Any] | None = None
        self.fail_next_saves = 0
        self.save_count = 0
        if snapshot is not None:
            self._write(snapshot)

    def load(self) -> StoreSnapshot:
        if self._facility_doc is None:
            raise DocumentLoadError("Facility document has not been initialized", "facility")
        return StoreSnapshot(
            facility=decode_facility(deepcopy(self._facility_doc), self._facility_id),
            history=decode_history(deepcopy(self._history_doc or {})),
        )

    def save(self, snapshot: StoreSnapshot) -> None:
        if self.fail_next_saves > 0:
            self.fail_next_saves -= 1
            logger.error("store_persist_failed", extra={"backend": "memory", "injected": True})
            raise PersistenceError("Injected save failure")
        self._write(snapshot)

    def _write(self, snapshot: StoreSnapshot) -> None:
        self._facility_doc = deepcopy(encode_facility(snapshot.facility))
        self._history_doc = deepcopy(encode_history(snapshot.history))
        self.save_count += 1

    def documents(self) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
        """Raw (facility, history) documents as last saved."""
        return deepcopy(self._facility_doc), deepcopy(self._history_doc)
