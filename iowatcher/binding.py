"""
Native watcher binding for IOWatcher.

Wraps a watchdog observer around one directory. The handler only lets through
notifications of the configured trigger kind. Glob rules are applied here by
watchdog's PatternMatchingEventHandler and checked again on the new name by
the normalizer; regex rules only by the normalizer. Deleted and moved paths
are reported to an optional ``forget`` callback whatever the trigger.

Two trigger kinds have no watchdog counterpart and are produced here:

  - Error: the watched directory itself was deleted or moved away.
  - Disposed: the watcher was stopped.

Every delivered notification gets a firing id from a process-wide counter.
"""

import itertools
import logging
import os
import threading

from watchdog.events import (EVENT_TYPE_CREATED, EVENT_TYPE_DELETED,
                             EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED,
                             PatternMatchingEventHandler)
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from iowatcher.config import TriggerKind
from iowatcher.matching import native_patterns

NATIVE_EVENT_TYPES = {
    TriggerKind.CREATED: EVENT_TYPE_CREATED,
    TriggerKind.CHANGED: EVENT_TYPE_MODIFIED,
    TriggerKind.DELETED: EVENT_TYPE_DELETED,
    TriggerKind.RENAMED: EVENT_TYPE_MOVED,
}

_firing_ids = itertools.count(1)
_firing_lock = threading.Lock()


def next_firing_id() -> int:
    """Return the next process-wide firing id."""
    with _firing_lock:
        return next(_firing_ids)


def event_path(path) -> str:
    return os.fsdecode(path) if path else ""


class NotificationHandler(PatternMatchingEventHandler):
    """Forwards watchdog events of one trigger kind to a delivery callback."""

    def __init__(self, root, trigger, deliver, patterns, forget=None):
        super().__init__(
            patterns=patterns,
            ignore_directories=False,
            case_sensitive=False,
        )
        self.root = os.path.normpath(root)
        self.trigger = trigger
        self._deliver = deliver
        self._forget = forget
        self._native_type = NATIVE_EVENT_TYPES.get(trigger)

    def _is_root_lost(self, event) -> bool:
        if event.event_type not in (EVENT_TYPE_DELETED, EVENT_TYPE_MOVED):
            return False
        return os.path.normpath(event_path(event.src_path)) == self.root

    def dispatch(self, event):
        if self._forget is not None and event.event_type in (
            EVENT_TYPE_DELETED,
            EVENT_TYPE_MOVED,
        ):
            self._forget(event_path(event.src_path))
        if self._is_root_lost(event):
            if self.trigger is TriggerKind.ERROR:
                self._deliver(event)
            return
        if self._native_type is None or event.event_type != self._native_type:
            return
        # Parent directories report a modification for every child change.
        if event.is_directory and event.event_type == EVENT_TYPE_MODIFIED:
            return
        super().dispatch(event)

    def on_any_event(self, event):
        self._deliver(event)


class NativeWatcher:
    """
    One watchdog observer scheduled on one directory.

    Attributes:
        directory: Watched directory.
        trigger: TriggerKind delivered to the callback.
        handler: The NotificationHandler scheduled on the observer.
        observer: Running observer, or None when stopped.
        notifications: Number of notifications delivered so far.
    """

    def __init__(
        self,
        directory,
        trigger,
        callback,
        rule,
        recursive=False,
        use_polling=False,
        poll_interval=1.0,
        logger=None,
        forget=None,
    ):
        self.directory = directory
        self.trigger = trigger
        self.recursive = recursive
        self.use_polling = use_polling
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(__name__)
        self.observer = None
        self.notifications = 0
        self._callback = callback
        self._count_lock = threading.Lock()
        self.handler = NotificationHandler(
            directory, trigger, self._deliver, native_patterns(rule), forget=forget
        )

    def _deliver(self, event):
        firing_id = next_firing_id()
        with self._count_lock:
            self.notifications += 1
        self._callback(event, firing_id)

    @property
    def is_alive(self) -> bool:
        return self.observer is not None and self.observer.is_alive()

    def start(self):
        """Schedule the handler and start the observer thread."""
        if self.observer is not None:
            self.logger.warning(f"Already watching directory: {self.directory}")
            return
        if self.use_polling:
            observer = PollingObserver(timeout=self.poll_interval)
            self.logger.debug(f"Using polling observer (interval: {self.poll_interval}s)")
        else:
            observer = Observer()
            self.logger.debug("Using OS event observer")
        observer.schedule(self.handler, self.directory, recursive=self.recursive)
        observer.start()
        self.observer = observer
        self.logger.info(
            f"Watching {self.directory} for {self.trigger.value} "
            f"(recursive={self.recursive})"
        )

    def stop(self, timeout=10.0):
        """
        Stop the observer; a Disposed watcher delivers its notification last.
        """
        if self.observer is None:
            return
        observer, self.observer = self.observer, None
        observer.stop()
        if observer is not threading.current_thread():
            observer.join(timeout)
        self.logger.info(f"Stopped watching directory: {self.directory}")
        if self.trigger is TriggerKind.DISPOSED:
            self._deliver(None)
