"""
SqlCountStore -- both documents as JSON rows of ``stored_documents``.

Both rows are written in one transaction through ``session_scope()``, so a
failed save leaves neither document changed.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from count_kernel.db.engine import session_scope
from count_kernel.domain.values import CountHistory
from count_kernel.exceptions import DocumentLoadError, PersistenceError
from count_kernel.logging_config import get_logger
from count_kernel.models.document import StoredDocument
from count_kernel.store.base import CountStore, StoreSnapshot
from count_kernel.store.documents import (
    FACILITY_DOCUMENT,
    HISTORY_DOCUMENT,
    decode_facility,
    decode_history,
    encode_facility,
    encode_history,
)

logger = get_logger("store.sql")


class SqlCountStore(CountStore):
    """
    SQLAlchemy-backed store for one facility.

    Preconditions: the engine is initialized (``init_engine_from_url``) and
    the tables exist (``create_tables``).
    """

    def __init__(self, facility_id: str = "default"):
        super().__init__()
        self._facility_id = facility_id

    @property
    def facility_id(self) -> str:
        return self._facility_id

    def exists(self) -> bool:
        try:
            with session_scope() as session:
                return self._row(session, FACILITY_DOCUMENT) is not None
        except SQLAlchemyError as exc:
            raise DocumentLoadError(f"Failed to query stored documents: {exc}") from exc

    def _row(self, session, kind: str) -> StoredDocument | None:
        return session.scalars(
            select(StoredDocument).where(
                StoredDocument.facility_id == self._facility_id,
                StoredDocument.kind == kind,
            )
        ).one_or_none()

    def load(self) -> StoreSnapshot:
        try:
            with session_scope() as session:
                facility_row = self._row(session, FACILITY_DOCUMENT)
                history_row = self._row(session, HISTORY_DOCUMENT)
                facility_body = dict(facility_row.body) if facility_row else None
                history_body = dict(history_row.body) if history_row else None
        except SQLAlchemyError as exc:
            raise DocumentLoadError(f"Failed to load stored documents: {exc}") from exc

        if facility_body is None:
            raise DocumentLoadError(
                f"Facility document not found for {self._facility_id}", FACILITY_DOCUMENT
            )
        return StoreSnapshot(
            facility=decode_facility(facility_body, self._facility_id),
            history=decode_history(history_body) if history_body is not None else CountHistory(),
        )

    def save(self, snapshot: StoreSnapshot) -> None:
        bodies = {
            FACILITY_DOCUMENT: encode_facility(snapshot.facility),
            HISTORY_DOCUMENT: encode_history(snapshot.history),
        }
        try:
            with session_scope() as session:
                for kind, body in bodies.items():
                    row = self._row(session, kind)
                    if row is None:
                        session.add(
                            StoredDocument(facility_id=self._facility_id, kind=kind, body=body)
                        )
                    else:
                        row.body = body
        except SQLAlchemyError as exc:
            logger.error("store_persist_failed", extra={"backend": "sql"}, exc_info=True)
            raise PersistenceError(f"Failed to save stored documents: {exc}") from exc

        logger.debug("store_persisted", extra={"backend": "sql", "facility_id": self._facility_id})
