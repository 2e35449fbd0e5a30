"""Persisted source -> target incident id map used for deduplication."""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from threading import Lock

from pydantic import ValidationError

from retro_importer.core.exceptions import StateFileError
from retro_importer.core.files import read_json, write_json
from retro_importer.importer.schemas import StateFile

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class DedupState:
    """Thread-safe mapping that only ever grows.

    Presence of a source id is authoritative: that incident has already been
    migrated and must be updated, never created again.
    """

    def __init__(self, mapping: dict[str, str] | None = None, last_imported_at: dt.datetime | None = None) -> None:
        self._mapping: dict[str, str] = dict(mapping or {})
        self.last_imported_at = last_imported_at or _utcnow()
        self._lock = Lock()

    @classmethod
    def load(cls, path: str | Path) -> "DedupState":
        target = Path(path)
        if not target.exists():
            return cls()
        try:
            state = StateFile.model_validate(read_json(target))
        except (ValueError, ValidationError) as exc:
            raise StateFileError(str(target), str(exc)) from exc
        if state.mapping:
            logger.info("Found %s previously imported incident(s) in state", len(state.mapping))
        return cls(state.mapping, state.last_imported_at)

    def get(self, source_id: str) -> str | None:
        with self._lock:
            return self._mapping.get(source_id)

    def record(self, source_id: str, target_id: str) -> None:
        with self._lock:
            previous = self._mapping.get(source_id)
            if previous and previous != target_id:
                logger.warning("State for %s moved from %s to %s", source_id, previous, target_id)
            self._mapping[source_id] = target_id

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._mapping)

    def __len__(self) -> int:
        with self._lock:
            return len(self._mapping)

    def __contains__(self, source_id: object) -> bool:
        with self._lock:
            return source_id in self._mapping

    def to_file(self) -> StateFile:
        return StateFile(mapping=self.snapshot(), last_imported_at=self.last_imported_at)

    def save(self, path: str | Path) -> None:
        self.last_imported_at = _utcnow()
        write_json(path, self.to_file().model_dump(mode="json", by_alias=True))
