"""
JsonFileCountStore -- the facility and history documents as two JSON files.

Writes are atomic per file (temp file in the same directory, then
``os.replace``).  Both temp files are staged before either is replaced; if
the second replace fails the first file is restored from the bytes read
before the save, and if that restore fails too the store is marked
inconsistent.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from count_kernel.domain.values import CountHistory
from count_kernel.exceptions import DocumentLoadError, PersistenceError
from count_kernel.logging_config import get_logger
from count_kernel.store.base import CountStore, StoreSnapshot
from count_kernel.store.documents import (
    FACILITY_DOCUMENT,
    HISTORY_DOCUMENT,
    decode_facility,
    decode_history,
    encode_facility,
    encode_history,
)

logger = get_logger("store.json_file")


class JsonFileCountStore(CountStore):
    """
    File-backed store.

    A missing history file loads as an empty history; a missing facility
    file is an error (run ``count-kernel init`` first).
    """

    def __init__(
        self,
        config_path: Path | str,
        history_path: Path | str,
        facility_id: str = "default",
        fsync: bool = False,
    ):
        super().__init__()
        self._config_path = Path(config_path)
        self._history_path = Path(history_path)
        self._facility_id = facility_id
        self._fsync = fsync

    @property
    def config_path(self) -> Path:
        return self._config_path

    @property
    def history_path(self) -> Path:
        return self._history_path

    def exists(self) -> bool:
        return self._config_path.exists()

    # =========================================================================
    # Load
    # =========================================================================

    def load(self) -> StoreSnapshot:
        facility_doc = self._read(self._config_path, FACILITY_DOCUMENT)
        if facility_doc is None:
            raise DocumentLoadError(
                f"Facility document not found: {self._config_path}", FACILITY_DOCUMENT
            )
        history_doc = self._read(self._history_path, HISTORY_DOCUMENT)
        return StoreSnapshot(
            facility=decode_facility(facility_doc, self._facility_id),
            history=decode_history(history_doc) if history_doc is not None else CountHistory(),
        )

    @staticmethod
    def _read(path: Path, document: str) -> Any:
        try:
            with open(path, encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as exc:
            raise DocumentLoadError(f"{path} is not valid JSON: {exc}", document) from exc
        except OSError as exc:
            raise DocumentLoadError(f"Failed to read {path}: {exc}", document) from exc

    # =========================================================================
    # Save
    # =========================================================================

    def save(self, snapshot: StoreSnapshot) -> None:
        staged: list[Path] = []
        try:
            config_tmp = self._stage(self._config_path, encode_facility(snapshot.facility))
            staged.append(config_tmp)
            history_tmp = self._stage(self._history_path, encode_history(snapshot.history))
            staged.append(history_tmp)
        except (OSError, ValueError, TypeError) as exc:
            self._discard(staged)
            logger.error("store_persist_failed", extra={"backend": "json", "stage": "write"})
            raise PersistenceError(f"Failed to stage documents: {exc}") from exc

        previous_config = self._previous_bytes(self._config_path)

        try:
            os.replace(config_tmp, self._config_path)
        except OSError as exc:
            self._discard(staged)
            logger.error("store_persist_failed", extra={"backend": "json", "stage": "replace_facility"})
            raise PersistenceError(
                f"Failed to replace {self._config_path}: {exc}", FACILITY_DOCUMENT
            ) from exc

        try:
            os.replace(history_tmp, self._history_path)
        except OSError as exc:
            self._discard([history_tmp])
            logger.error("store_persist_failed", extra={"backend": "json", "stage": "replace_history"})
            self._restore_config(previous_config)
            raise PersistenceError(
                f"Failed to replace {self._history_path}: {exc}", HISTORY_DOCUMENT
            ) from exc

        logger.debug(
            "store_persisted",
            extra={"backend": "json", "config_path": str(self._config_path)},
        )

    def _stage(self, target: Path, document: dict[str, Any]) -> Path:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write((json.dumps(document, indent=2, ensure_ascii=False) + "\n").encode("utf-8"))
                fh.flush()
                if self._fsync:
                    os.fsync(fh.fileno())
        except Exception:
            Path(name).unlink(missing_ok=True)
            raise
        return Path(name)

    @staticmethod
    def _previous_bytes(path: Path) -> bytes | None:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def _restore_config(self, previous: bytes | None) -> None:
        try:
            if previous is None:
                self._config_path.unlink(missing_ok=True)
                return
            fd, name = tempfile.mkstemp(
                prefix=f".{self._config_path.name}.", suffix=".restore",
                dir=self._config_path.parent,
            )
            with os.fdopen(fd, "wb") as fh:
                fh.write(previous)
            os.replace(name, self._config_path)
        except OSError as exc:
            self.mark_inconsistent(
                f"facility document written but history document was not, "
                f"and restoring {self._config_path} failed: {exc}"
            )

    @staticmethod
    def _discard(paths: list[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.warning("store_temp_file_left", extra={"path": str(path)})
