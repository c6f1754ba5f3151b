"""
Recall Record Store

The single owner of mutable record state:
- One optional Active Record
- History, most recent first
- An append-only Tombstone log of merged-away ids

Every write checks the tombstone log first; writes to a tombstoned id are
dropped without raising. Reads return copies, so callers only ever hold
snapshots. Store methods are synchronous, which makes each of them atomic on
the asyncio event loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Iterator, Optional

import structlog

from recall.identity.events import RecordEvents
from recall.identity.types import Record, StoreSnapshot

logger = structlog.get_logger(__name__)

RecordUpdater = Callable[[Record], Record]


@dataclass(frozen=True)
class TombstoneEntry:
    """One retired record id."""
    record_id: str
    reason: str = ""
    merged_into: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


class TombstoneLog:
    """Append-only log of retired record ids. Entries are never removed."""

    def __init__(self):
        self._entries: list[TombstoneEntry] = []
        self._ids: set[str] = set()

    def add(self, record_id: str, reason: str = "", merged_into: Optional[str] = None) -> bool:
        """Record a tombstone. Returns False if the id was already retired."""
        if record_id in self._ids:
            return False
        self._ids.add(record_id)
        self._entries.append(TombstoneEntry(record_id, reason, merged_into))
        return True

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._ids

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TombstoneEntry]:
        return iter(list(self._entries))

    def ids(self) -> frozenset[str]:
        return frozenset(self._ids)

    def get(self, record_id: str) -> Optional[TombstoneEntry]:
        if record_id not in self._ids:
            return None
        return next(e for e in self._entries if e.record_id == record_id)


class RecordStore:
    """Authoritative in-memory record state for one user."""

    def __init__(self, events: Optional[RecordEvents] = None):
        self.events = events or RecordEvents()
        self._active: Optional[Record] = None
        self._history: list[Record] = []
        self._tombstones = TombstoneLog()

    # ==================== Reads ====================

    def get_active(self) -> Optional[Record]:
        return self._active.copy() if self._active else None

    def get(self, record_id: str) -> Optional[Record]:
        """Copy of a live record by id, active or history."""
        record = self._find(record_id)
        return record.copy() if record else None

    def exists(self, record_id: str) -> bool:
        return self._find(record_id) is not None

    def is_tombstoned(self, record_id: str) -> bool:
        return record_id in self._tombstones

    @property
    def tombstones(self) -> TombstoneLog:
        return self._tombstones

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            active=self.get_active(),
            history=tuple(r.copy() for r in self._history),
        )

    def __len__(self) -> int:
        return len(self._history) + (1 if self._active else 0)

    # ==================== Writes ====================

    def set_active(self, record: Optional[Record]) -> bool:
        """
        Install a record as the Active Record, or clear it with None.

        Whatever is currently active (and is not being re-installed) moves to
        history, so clearing or replacing never loses a record.
        """
        if record is None:
            if self._active:
                self._move_active_to_history()
            return True

        if self.is_tombstoned(record.id):
            logger.debug("Dropped write to tombstoned record", record_id=record.id, op="set_active")
            return False

        if self._index_in_history(record.id) is not None:
            logger.warning("Record already in history, use promote_from_history", record_id=record.id)
            return False

        if self._active and self._active.id != record.id:
            self._move_active_to_history()

        stored = record.copy()
        stored.active = True
        self._active = stored
        self.events.emit_changed(stored)
        return True

    def release_active(self) -> Optional[Record]:
        """Move the Active Record to the front of history."""
        if not self._active:
            return None
        released = self._move_active_to_history()
        return released.copy()

    def append_to_history(self, record: Record) -> bool:
        if self.is_tombstoned(record.id):
            logger.debug("Dropped write to tombstoned record", record_id=record.id, op="append_to_history")
            return False

        if self._index_in_history(record.id) is not None:
            return False

        if self._active and self._active.id == record.id:
            self._active = None

        stored = record.copy()
        stored.active = False
        self._history.insert(0, stored)
        self.events.emit_changed(stored)
        return True

    def load_history(self, records: Iterable[Record]) -> int:
        """
        Bulk-load previously persisted records, keeping their order.

        No change events are emitted; these records are already persisted.
        """
        loaded = 0
        for record in records:
            if self.is_tombstoned(record.id) or self.exists(record.id):
                continue
            stored = record.copy()
            stored.active = False
            self._history.append(stored)
            loaded += 1
        return loaded

    def update_active(self, fn: RecordUpdater) -> Optional[Record]:
        if not self._active:
            return None
        return self._apply_update(self._active.id, fn)

    def update_history_record(self, record_id: str, fn: RecordUpdater) -> Optional[Record]:
        if self._index_in_history(record_id) is None:
            return None
        return self._apply_update(record_id, fn)

    def update(self, record_id: str, fn: RecordUpdater) -> Optional[Record]:
        """Update a live record wherever it lives."""
        return self._apply_update(record_id, fn)

    def promote_from_history(self, record_id: str) -> Optional[Record]:
        """Make a history record active again, releasing the current one."""
        if self.is_tombstoned(record_id):
            return None
        index = self._index_in_history(record_id)
        if index is None:
            return None

        if self._active:
            self._move_active_to_history()
            index = self._index_in_history(record_id)

        record = self._history.pop(index)
        record.active = True
        self._active = record
        self.events.emit_changed(record)
        return record.copy()

    def tombstone(self, record_id: str, reason: str = "", merged_into: Optional[str] = None) -> bool:
        """Retire an id permanently and drop it from the live set."""
        added = self._tombstones.add(record_id, reason, merged_into)
        self._remove_live(record_id)
        if added:
            logger.info("Record tombstoned", record_id=record_id, reason=reason)
            self.events.emit_tombstoned(record_id)
        return added

    def commit_merge(self, merged: Record, source_id: str, reason: str = "") -> bool:
        """
        Replace the merge target with merged and tombstone source_id in one step.

        Nothing is written unless both ids are live and distinct. When the
        source is the Active Record the merged target takes its place as
        active, so the person currently talking always keeps a record.
        """
        if merged.id == source_id:
            return False
        if self.is_tombstoned(merged.id) or self.is_tombstoned(source_id):
            return False
        target = self._find(merged.id)
        source = self._find(source_id)
        if target is None or source is None:
            return False

        stored = merged.copy()
        if source.active:
            self._remove_live(source_id)
            self._history = [r for r in self._history if r.id != stored.id]
            stored.active = True
            self._active = stored
            logger.info("Merge target promoted to active", record_id=stored.id, replaced_id=source_id)
        else:
            stored.active = target.active
            self._replace(stored)
            self._remove_live(source_id)
        self._tombstones.add(source_id, reason or "merged", merged_into=merged.id)

        self.events.emit_changed(stored)
        self.events.emit_tombstoned(source_id)
        logger.info("Merge committed", source_id=source_id, target_id=merged.id)
        return True

    # ==================== Internals ====================

    def _apply_update(self, record_id: str, fn: RecordUpdater) -> Optional[Record]:
        if self.is_tombstoned(record_id):
            logger.debug("Dropped write to tombstoned record", record_id=record_id, op="update")
            return None
        current = self._find(record_id)
        if current is None:
            return None

        updated = fn(current.copy())
        updated.id = current.id
        updated.active = current.active
        self._replace(updated)
        self.events.emit_changed(updated)
        return updated.copy()

    def _move_active_to_history(self) -> Record:
        record = self._active
        self._active = None
        record.active = False
        self._history.insert(0, record)
        self.events.emit_changed(record)
        return record

    def _find(self, record_id: str) -> Optional[Record]:
        if self._active and self._active.id == record_id:
            return self._active
        for record in self._history:
            if record.id == record_id:
                return record
        return None

    def _index_in_history(self, record_id: str) -> Optional[int]:
        for i, record in enumerate(self._history):
            if record.id == record_id:
                return i
        return None

    def _replace(self, record: Record) -> None:
        if self._active and self._active.id == record.id:
            self._active = record
            return
        index = self._index_in_history(record.id)
        if index is not None:
            self._history[index] = record

    def _remove_live(self, record_id: str) -> None:
        if self._active and self._active.id == record_id:
            self._active = None
        self._history = [r for r in self._history if r.id != record_id]
