"""
Watch registration for IOWatcher.

``register_watch`` validates a WatchConfiguration, arms a native watcher and
returns at once. Every notification then flows through::

    NotificationHandler -> EventNormalizer -> record store -> action

on the watcher's dispatch thread. A registration is either ARMED or
UNREGISTERED; there is no paused state.
"""

import enum
import logging
import threading
import uuid

from iowatcher.actions import (build_action_context, invoke_action,
                               normalize_action)
from iowatcher.binding import NativeWatcher
from iowatcher.config import TriggerKind
from iowatcher.matching import build_match_rule
from iowatcher.normalizer import ChangeTracker, EventNormalizer
from iowatcher.records import EventRecord, MemoryRecordStore, base_identity


class RegistrationState(enum.Enum):
    UNREGISTERED = "unregistered"
    ARMED = "armed"


class WatchRegistration:
    """
    One armed watch: configuration, native watcher, store and action.

    Attributes:
        config: The validated WatchConfiguration.
        store: Record store receiving one record per firing.
        subscription: Unique id of this registration.
        state: RegistrationState.
        firings: Number of notifications that produced a record.
        logger: Logger for this watch.
    """

    def __init__(self, config, store=None, logger=None):
        config.validate()
        self.config = config
        self.store = store if store is not None else MemoryRecordStore()
        self.logger = logger or logging.getLogger(
            f"iowatcher.watch.{config.display_name}"
        )
        self.subscription = uuid.uuid4().hex
        self.state = RegistrationState.UNREGISTERED
        self.firings = 0
        self._firings_lock = threading.Lock()

        self.rule = build_match_rule(config.regex, config.glob)
        self.action = normalize_action(config.action)

        self.change_tracker = None
        if config.trigger is TriggerKind.CHANGED:
            self.change_tracker = ChangeTracker(config.change_detection)
        self.normalizer = EventNormalizer(
            self.rule, config.trigger, self.change_tracker, logger=self.logger
        )
        self.watcher = NativeWatcher(
            config.target_directory,
            config.trigger,
            self.handle_notification,
            self.rule,
            recursive=config.include_subdirectories,
            use_polling=config.use_polling,
            poll_interval=config.poll_interval,
            logger=self.logger,
            forget=self.change_tracker.forget if self.change_tracker else None,
        )

    @property
    def is_armed(self) -> bool:
        return self.state is RegistrationState.ARMED

    def arm(self):
        """Prime change tracking and start the native watcher."""
        if self.is_armed:
            return self
        if self.change_tracker is not None:
            self.change_tracker.prime(
                self.config.target_directory, self.config.include_subdirectories
            )
        self.watcher.start()
        self.state = RegistrationState.ARMED
        self.logger.info(
            f"Armed watch '{self.config.display_name}' "
            f"(subscription {self.subscription})"
        )
        return self

    def dispose(self):
        """
        Stop the native watcher. A Disposed watch fires its action here.
        """
        if not self.is_armed:
            return
        self.state = RegistrationState.UNREGISTERED
        self.watcher.stop()
        self.logger.info(f"Disposed watch '{self.config.display_name}'")

    def handle_notification(self, event, firing_id):
        """
        Normalize, record and act on one native notification.

        Returns:
            The record name, or None when the notification was filtered out.
        """
        notification = self.normalizer.normalize(event, firing_id)
        if notification is None:
            return None

        fields = dict(
            subscription=self.subscription,
            trigger=notification.change_type,
            timestamp=notification.timestamp,
            matched_files=notification.matched_files,
            matched_files_full_path=notification.matched_files_full_path,
            event=notification.event,
        )
        leaf = self.config.directory_leaf
        name = self.store.record(
            leaf, firing_id, retain=self.config.max_records, **fields
        )
        with self._firings_lock:
            self.firings += 1
        target = notification.full_path or self.config.target_directory
        self.logger.info(f"{notification.change_type.value}: {target} -> {name}")

        record = EventRecord(
            name=name, base_name=base_identity(leaf), firing_id=firing_id, **fields
        )
        invoke_action(self.action, build_action_context(self.config, record), self.logger)
        return name

    def get_status(self):
        return {
            "name": self.config.display_name,
            "directory": self.config.target_directory,
            "trigger": self.config.trigger.value,
            "rule": self.rule.source,
            "recursive": self.config.include_subdirectories,
            "state": self.state.value,
            "watching": self.watcher.is_alive,
            "firings": self.firings,
            "subscription": self.subscription,
        }


def register_watch(config, store=None, logger=None) -> WatchRegistration:
    """
    Validate ``config``, arm a watcher for it and return the registration.

    Raises:
        ConfigurationError: If the configuration is invalid. Nothing is armed
            and the store is left untouched.
    """
    return WatchRegistration(config, store=store, logger=logger).arm()
