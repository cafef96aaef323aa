"""
Retention workers for IOWatcher record stores.

Record stores grow without bound by default. A PruneWorker trims one watch's
records back to a fixed count every ``interval`` seconds until it is stopped.
"""

import logging
import threading


class PruneWorker(threading.Thread):
    """
    A thread that prunes a record store's base name periodically.
    """

    def __init__(self, store, base_name, retain, interval):
        """
        Args:
            store: A record store with a ``prune(base_name, retain)`` method.
            base_name (str): Record base name, e.g. "FileIOWatcherFordata".
            retain (int): Records to keep.
            interval (float): Seconds between prunes.
        """
        super().__init__(name=f"Prune-{base_name}")
        self.store = store
        self.base_name = base_name
        self.retain = retain
        self.interval = interval
        self.pruned = 0
        self.stop_event = threading.Event()
        self.daemon = True

    def run(self):
        logging.debug("PruneWorker for %s started (every %ss)", self.base_name, self.interval)
        while not self.stop_event.is_set():
            try:
                removed = self.store.prune(self.base_name, self.retain)
                self.pruned += removed
                if removed:
                    logging.debug("Pruned %d records of %s", removed, self.base_name)
            except Exception as e:
                logging.exception("Error pruning records of %s: %s", self.base_name, e)
            if self.stop_event.wait(self.interval):
                break
        logging.debug("PruneWorker for %s stopped.", self.base_name)

    def stop(self):
        """
        Signal the thread to stop.
        """
        self.stop_event.set()


def spawn_prune_worker(store, base_name, retain, interval):
    """
    Start and return a PruneWorker.
    """
    worker = PruneWorker(store, base_name, retain, interval)
    worker.start()
    return worker
