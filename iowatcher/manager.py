"""
WatchManager keeps track of several watch registrations.

Features:
- Register watches from configurations, sharing one record store.
- Unregister (dispose) a single watch by name.
- Query the status of one or all watches.
- Dispose every watch at once.
"""

import logging

from iowatcher.records import MemoryRecordStore
from iowatcher.watcher import register_watch


class WatchManager:
    """
    A class to manage watch registrations.

    Attributes:
        store: Record store shared by every registration.
        registrations (dict): Registrations keyed by watch name.
    """

    def __init__(self, store=None, logger=None):
        self.store = store if store is not None else MemoryRecordStore()
        self.logger = logger or logging.getLogger(__name__)
        self.registrations = {}

    def register(self, config):
        """
        Arm a watch for ``config``.

        Raises:
            ValueError: If a watch with the same name is already registered.
            ConfigurationError: If the configuration is invalid.
        """
        name = config.display_name
        if name in self.registrations:
            raise ValueError(f"A watch named '{name}' is already registered.")
        registration = register_watch(
            config, store=self.store, logger=self.logger.getChild(name)
        )
        self.registrations[name] = registration
        self.logger.debug("Registered watch: %s", name)
        return registration

    def unregister(self, name):
        """
        Dispose and forget the watch called ``name``.
        """
        registration = self.registrations.pop(name, None)
        if registration is not None:
            registration.dispose()
            self.logger.debug("Unregistered watch: %s", name)
        return registration

    def get(self, name):
        return self.registrations.get(name)

    def get_status(self, registration):
        return registration.get_status()

    def get_all_statuses(self):
        """
        Get statuses for all registered watches, keyed by watch name.
        """
        return {
            name: self.get_status(registration)
            for name, registration in self.registrations.items()
        }

    def dispose_all(self):
        """
        Dispose every watch. Errors from Disposed actions are logged so the
        remaining watches still get disposed, then the first one is re-raised.
        """
        first_error = None
        for name in list(self.registrations):
            try:
                self.unregister(name)
            except Exception as e:
                self.logger.error("Error disposing watch %s: %s", name, e)
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def clear_unarmed(self):
        """
        Forget registrations whose watcher is no longer running.
        """
        initial_count = len(self.registrations)
        self.registrations = {
            name: registration
            for name, registration in self.registrations.items()
            if registration.is_armed and registration.watcher.is_alive
        }
        self.logger.debug(
            "Cleared stopped watches. %d removed, %d remaining.",
            initial_count - len(self.registrations),
            len(self.registrations),
        )

    def __len__(self):
        return len(self.registrations)
