"""
Event normalizer for IOWatcher.

Turns a raw watchdog event into a Notification: file name, full path,
trigger kind, timestamp and the list of matched files. Notifications whose
file name does not match the rule are dropped silently. For a rename the
file name is the new one.

For the Changed trigger a ChangeTracker compares the file against the last
signature it saw. Native watchers often report several modifications for a
single write; the tracker only lets one through per real change. In the
default ``size`` mode a modification that keeps the size identical goes
unnoticed. ``mtime`` and ``content`` trade that for more or costlier checks,
``none`` passes every native notification.
"""

import hashlib
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from watchdog.events import EVENT_TYPE_MOVED

from iowatcher.binding import event_path
from iowatcher.config import TriggerKind
from iowatcher.matching import matches

# Triggers that describe the watcher, not a file.
WATCHER_TRIGGERS = (TriggerKind.DISPOSED, TriggerKind.ERROR)


@dataclass
class Notification:
    """A normalized notification for one firing."""

    change_type: TriggerKind
    timestamp: datetime
    firing_id: int
    file_name: Optional[str] = None
    full_path: Optional[str] = None
    old_full_path: Optional[str] = None
    event: Any = None
    matched_files: List[str] = field(default_factory=list)
    matched_files_full_path: List[str] = field(default_factory=list)


def compute_file_hash(path: str) -> Optional[str]:
    """SHA-256 of a file's contents, or None if it cannot be read."""
    try:
        sha256 = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                sha256.update(chunk)
        return sha256.hexdigest()
    except OSError as e:
        logging.debug(f"Cannot hash {path}: {e}")
        return None


class ChangeTracker:
    """
    Remembers a signature per file to collapse duplicate Changed notifications.

    Attributes:
        mode: One of "size", "mtime", "content", "none".
        signatures: Last signature seen per full path.
    """

    def __init__(self, mode: str = "size"):
        self.mode = mode
        self.signatures: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def signature(self, path: str):
        if self.mode == "content":
            return compute_file_hash(path)
        try:
            stat = os.stat(path)
        except OSError:
            return None
        if self.mode == "mtime":
            return stat.st_mtime_ns
        return stat.st_size

    def prime(self, directory: str, recursive: bool = False):
        """Record the current signature of every file below ``directory``."""
        if self.mode == "none":
            return
        pending = [directory]
        while pending:
            current = pending.pop()
            try:
                with os.scandir(current) as entries:
                    for entry in entries:
                        try:
                            if entry.is_file(follow_symlinks=False):
                                self.signatures[entry.path] = self.signature(entry.path)
                            elif recursive and entry.is_dir(follow_symlinks=False):
                                pending.append(entry.path)
                        except OSError as e:
                            logging.warning(f"Error accessing {entry.path}: {e}")
            except OSError as e:
                logging.warning(f"Error scanning {current}: {e}")
        logging.debug(f"Primed {len(self.signatures)} signatures under {directory}")

    def has_changed(self, path: str) -> bool:
        """True if the file differs from its last known signature."""
        if self.mode == "none":
            return True
        current = self.signature(path)
        with self._lock:
            known = path in self.signatures
            previous = self.signatures.get(path)
            if current is None:
                self.signatures.pop(path, None)
            else:
                self.signatures[path] = current
        if not known or current is None:
            return True
        return current != previous

    def forget(self, path: str) -> int:
        """Drop the signature of ``path`` and of anything below it."""
        prefix = path.rstrip(os.sep) + os.sep
        with self._lock:
            gone = [
                known for known in self.signatures
                if known == path or known.startswith(prefix)
            ]
            for known in gone:
                del self.signatures[known]
        return len(gone)


class EventNormalizer:
    """
    Filters and enriches raw notifications for one watch.

    Args:
        rule: The watch's MatchRule.
        trigger: The watch's TriggerKind.
        change_tracker: Optional ChangeTracker for the Changed trigger.
        logger: Logger for suppressed notifications.
    """

    def __init__(self, rule, trigger, change_tracker=None, logger=None):
        self.rule = rule
        self.trigger = trigger
        self.change_tracker = change_tracker
        self.logger = logger or logging.getLogger(__name__)

    def normalize(self, event, firing_id: int) -> Optional[Notification]:
        """
        Normalize one native notification.

        Returns:
            The Notification, or None when it does not qualify.
        """
        timestamp = datetime.now(timezone.utc)

        if self.trigger in WATCHER_TRIGGERS:
            full_path = event_path(event.src_path) if event is not None else None
            return Notification(
                change_type=self.trigger,
                timestamp=timestamp,
                firing_id=firing_id,
                file_name=os.path.basename(full_path) if full_path else None,
                full_path=full_path,
                event=event,
            )

        old_full_path = None
        full_path = event_path(event.src_path)
        if event.event_type == EVENT_TYPE_MOVED:
            old_full_path = full_path
            full_path = event_path(event.dest_path)
        file_name = os.path.basename(full_path)

        # The native glob handler also passes moves whose old name matches.
        if not matches(file_name, self.rule):
            self.logger.debug(f"Ignoring {full_path}: no match for {self.rule.source}")
            return None

        if (
            self.trigger is TriggerKind.CHANGED
            and self.change_tracker is not None
            and not self.change_tracker.has_changed(full_path)
        ):
            self.logger.debug(f"Ignoring {full_path}: unchanged {self.change_tracker.mode}")
            return None

        return Notification(
            change_type=self.trigger,
            timestamp=timestamp,
            firing_id=firing_id,
            file_name=file_name,
            full_path=full_path,
            old_full_path=old_full_path,
            event=event,
            matched_files=[file_name],
            matched_files_full_path=[full_path],
        )
