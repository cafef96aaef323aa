"""
Event recorder for IOWatcher.

Each firing is stored as an EventRecord under a name derived from the watched
directory's leaf name::

    FileIOWatcherFor<leaf>               first record
    FileIOWatcherFor<leaf>_<firing id>   every later record

Names are chosen and written under one lock (or one SQLite transaction), so a
record is never overwritten. Stores are unbounded unless a retention count is
passed to ``record`` or ``prune`` is called.

Two stores share the same interface:

  - MemoryRecordStore: in-process, keeps the raw watchdog event.
  - SqliteRecordStore: durable, keeps the event as a plain dict.
"""

import fnmatch
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional

from iowatcher import db
from iowatcher.binding import event_path
from iowatcher.config import TriggerKind

BASE_PREFIX = "FileIOWatcherFor"


@dataclass
class EventRecord:
    name: str
    base_name: str
    firing_id: int
    subscription: str
    trigger: TriggerKind
    timestamp: datetime
    matched_files: List[str] = field(default_factory=list)
    matched_files_full_path: List[str] = field(default_factory=list)
    event: Any = None


def base_identity(directory_leaf: str) -> str:
    return f"{BASE_PREFIX}{directory_leaf}"


def record_identity(base: str, firing_id, exists: Callable[[str], bool]) -> str:
    """
    Pick the name for a new record.

    The base name is used while it is free; otherwise the firing id is
    appended, plus a counter if that name is taken too.
    """
    if not exists(base):
        return base
    name = f"{base}_{firing_id}"
    counter = 1
    while exists(name):
        counter += 1
        name = f"{base}_{firing_id}_{counter}"
    return name


def serialize_event(event) -> Optional[dict]:
    """Plain-dict form of a watchdog event for durable storage."""
    if event is None:
        return None
    return {
        "event_type": event.event_type,
        "src_path": event_path(event.src_path),
        "dest_path": event_path(getattr(event, "dest_path", "")),
        "is_directory": bool(event.is_directory),
    }


class MemoryRecordStore:
    """
    Thread-safe in-memory record store.
    """

    def __init__(self):
        self._records = OrderedDict()
        self._lock = threading.Lock()

    def record(self, directory_leaf, firing_id, retain=None, **fields) -> str:
        """
        Store a record and return its name.

        Args:
            directory_leaf: Leaf name of the watched directory.
            firing_id: Firing id used to disambiguate repeated firings.
            retain: If set, keep only this many records for the base name.
            **fields: EventRecord fields (subscription, trigger, timestamp,
                matched_files, matched_files_full_path, event).
        """
        base = base_identity(directory_leaf)
        with self._lock:
            name = record_identity(base, firing_id, self._records.__contains__)
            self._records[name] = EventRecord(
                name=name, base_name=base, firing_id=firing_id, **fields
            )
            if retain is not None:
                self._prune_locked(base, retain)
        return name

    def get(self, name) -> Optional[EventRecord]:
        with self._lock:
            return self._records.get(name)

    def find(self, pattern) -> List[EventRecord]:
        with self._lock:
            return [
                record
                for name, record in self._records.items()
                if fnmatch.fnmatchcase(name, pattern)
            ]

    def by_base(self, base_name) -> List[EventRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.base_name == base_name]

    def names(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def _prune_locked(self, base_name, retain):
        names = [n for n, r in self._records.items() if r.base_name == base_name]
        stale = names[: max(len(names) - retain, 0)]
        for name in stale:
            del self._records[name]
        return len(stale)

    def prune(self, base_name, retain) -> int:
        """Drop the oldest records of a base name beyond ``retain``."""
        with self._lock:
            return self._prune_locked(base_name, retain)

    def clear(self, base_name=None) -> int:
        with self._lock:
            if base_name is None:
                removed = len(self._records)
                self._records.clear()
                return removed
            return self._prune_locked(base_name, 0)

    def __len__(self):
        with self._lock:
            return len(self._records)

    def __contains__(self, name):
        with self._lock:
            return name in self._records


class SqliteRecordStore:
    """
    Record store backed by a SQLite database.

    The database is initialized on construction. A process-local lock keeps
    writers from this process serialized; SQLite's IMMEDIATE transactions do
    the same across processes.
    """

    def __init__(self, db_path):
        self.db_path = db_path
        self._lock = threading.Lock()
        db.init_db(db_path)

    @staticmethod
    def _to_record(row) -> EventRecord:
        return EventRecord(
            name=row["name"],
            base_name=row["base_name"],
            firing_id=row["firing_id"],
            subscription=row["subscription"],
            trigger=TriggerKind(row["trigger"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            matched_files=row["matched_files"] or [],
            matched_files_full_path=row["matched_files_full_path"] or [],
            event=row["event"],
        )

    def record(self, directory_leaf, firing_id, retain=None, **fields) -> str:
        base = base_identity(directory_leaf)
        row = {
            "base_name": base,
            "firing_id": firing_id,
            "subscription": fields.get("subscription"),
            "trigger": fields["trigger"].value,
            "timestamp": fields["timestamp"].isoformat(),
            "matched_files": list(fields.get("matched_files") or []),
            "matched_files_full_path": list(fields.get("matched_files_full_path") or []),
            "event": serialize_event(fields.get("event")),
        }
        with self._lock:
            name = db.insert_record(
                self.db_path,
                lambda exists: record_identity(base, firing_id, exists),
                row,
            )
            if retain is not None:
                db.remove_old_records(self.db_path, base, retain)
        return name

    def get(self, name) -> Optional[EventRecord]:
        row = db.get_record(self.db_path, name)
        return self._to_record(row) if row else None

    def find(self, pattern) -> List[EventRecord]:
        return [self._to_record(row) for row in db.find_records(self.db_path, pattern)]

    def by_base(self, base_name) -> List[EventRecord]:
        return [
            self._to_record(row)
            for row in db.list_records(self.db_path, base_name=base_name)
        ]

    def names(self) -> List[str]:
        return [row["name"] for row in db.list_records(self.db_path)]

    def prune(self, base_name, retain) -> int:
        with self._lock:
            return db.remove_old_records(self.db_path, base_name, retain)

    def clear(self, base_name=None) -> int:
        with self._lock:
            return db.clear_records(self.db_path, base_name)

    def __len__(self):
        return db.count_records(self.db_path)

    def __contains__(self, name):
        return db.get_record(self.db_path, name) is not None
