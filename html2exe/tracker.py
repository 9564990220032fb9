"""Build status tracking.

The tracker owns the phase state machine; records live in a pluggable
:class:`StatusStore`. Records are immutable snapshots, so a reader always
sees one consistent version. Writes for one build id are serialized by that
id's lock; different builds never contend.
"""

from __future__ import annotations

import threading
from typing import Protocol

from html2exe.errors import InvalidTransition
from html2exe.logging import get_logger
from html2exe.types import PHASE_DESCRIPTIONS, BuildRecord, Phase, can_transition, utcnow

log = get_logger(__name__)


class StatusStore(Protocol):
    def get(self, build_id: str) -> BuildRecord | None: ...

    def put(self, record: BuildRecord) -> None: ...

    def ids(self) -> list[str]: ...


class InMemoryStatusStore:
    """Process-local store; contents vanish on restart."""

    def __init__(self) -> None:
        self._records: dict[str, BuildRecord] = {}

    def get(self, build_id: str) -> BuildRecord | None:
        return self._records.get(build_id)

    def put(self, record: BuildRecord) -> None:
        self._records[record.build_id] = record

    def ids(self) -> list[str]:
        return list(self._records)


class StatusTracker:
    def __init__(self, store: StatusStore | None = None) -> None:
        self._store = store if store is not None else InMemoryStatusStore()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock(self, build_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(build_id, threading.Lock())

    # --- reads -------------------------------------------------------------

    def get(self, build_id: str) -> BuildRecord:
        """Current snapshot, or a synthetic ``not_found`` record. Never blocks."""
        record = self._store.get(build_id)
        return record if record is not None else BuildRecord.not_found(build_id)

    def __contains__(self, build_id: str) -> bool:
        return self._store.get(build_id) is not None

    def ids(self) -> list[str]:
        return self._store.ids()

    # --- writes ------------------------------------------------------------

    def create(self, build_id: str) -> BuildRecord:
        with self._lock(build_id):
            if self._store.get(build_id) is not None:
                raise InvalidTransition(f"Build {build_id} already exists")
            now = utcnow()
            record = BuildRecord(
                build_id=build_id,
                phase=Phase.UPLOADING,
                description=PHASE_DESCRIPTIONS[Phase.UPLOADING],
                created_at=now,
                updated_at=now,
            )
            self._store.put(record)
        log.info("build accepted", extra={"build_id": build_id, "phase": record.phase.value})
        return record

    def transition(
        self,
        build_id: str,
        phase: Phase,
        *,
        description: str | None = None,
        note: str | None = None,
        estimated_time: str | None = None,
        error: str | None = None,
        download_url: str | None = None,
        warnings: list[str] | tuple[str, ...] | None = None,
    ) -> BuildRecord:
        with self._lock(build_id):
            current = self._store.get(build_id)
            if current is None:
                raise InvalidTransition(f"Unknown build {build_id}")
            if not can_transition(current.phase, phase):
                raise InvalidTransition(
                    f"Build {build_id} cannot move from {current.phase.value} to {phase.value}"
                )
            record = current.model_copy(
                update={
                    "phase": phase,
                    "description": description or PHASE_DESCRIPTIONS[phase],
                    "updated_at": utcnow(),
                    "note": note,
                    "estimated_time": estimated_time,
                    "error": error,
                    "download_url": download_url,
                    "warnings": tuple(warnings) if warnings is not None else current.warnings,
                }
            )
            self._store.put(record)
        log.info(record.description, extra={"build_id": build_id, "phase": phase.value})
        return record

    def fail(self, build_id: str, message: str) -> BuildRecord:
        return self.transition(build_id, Phase.FAILED, error=message)

    def complete(self, build_id: str, download_url: str) -> BuildRecord:
        return self.transition(build_id, Phase.COMPLETED, download_url=download_url)
