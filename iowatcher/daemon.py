import json
import logging
import os
import threading
import time

import daemon
import psutil
from daemon.pidfile import PIDLockFile

import iowatcher.config as config_module
from iowatcher import logger
from iowatcher.exceptions import ConfigurationError
from iowatcher.manager import WatchManager
from iowatcher.records import SqliteRecordStore, base_identity
from iowatcher.retention import spawn_prune_worker

DEFAULT_CHECK_INTERVAL = 10
DEFAULT_PRUNE_INTERVAL = 120


def setup_daemon_logger(config, config_path, console=True):
    """
    Set up logging for the daemon with proper path resolution.

    Args:
        config (dict): The loaded configuration dictionary
        config_path (str): Path to the config file
        console (bool): Whether to log to the console as well

    Returns:
        logging.Logger: Configured logger instance
    """
    if not config_path:
        raise ValueError("Config path must be provided")

    config_dir = os.path.dirname(os.path.abspath(config_path))
    log_dir = os.path.join(config_dir, config.get("logging", {}).get("log_dir", "logs"))
    level = logger.parse_level(config.get("logging", {}).get("level", "INFO"))

    daemon_logger = logger.setup_logger(
        "IOWatcherDaemon", log_dir, "daemon.log", level=level, console=console
    )
    daemon_logger.info(f"Using config from: {config_path}")
    daemon_logger.info(f"Log directory: {log_dir}")
    return daemon_logger


def log_daemon_status(root_logger, manager):
    """
    Log process information and the status of every watch.
    """
    try:
        proc = psutil.Process(os.getpid())
        status_info = {
            "PID": proc.pid,
            "CPU %": proc.cpu_percent(interval=0.1),
            "Memory %": round(proc.memory_percent(), 2),
            "Memory RSS": proc.memory_info().rss,
            "Threads": proc.num_threads(),
            "Started At": time.strftime(
                "%Y-%m-%d %H:%M:%S", time.localtime(proc.create_time())
            ),
            "Watches": len(manager),
        }
        root_logger.info(
            "Daemon Status:\n" + "\n".join(f"{k}: {v}" for k, v in status_info.items())
        )
        for name, status in manager.get_all_statuses().items():
            root_logger.info(f"Watch '{name}': {json.dumps(status, default=str)}")
    except psutil.Error as e:
        root_logger.error(f"Error logging daemon status: {e}")


def collect_mtimes(paths):
    """
    Modification times of config files; YAML files inside directories count too.
    """
    mtimes = {}
    for path in paths:
        if os.path.isdir(path):
            for filename in sorted(os.listdir(path)):
                if filename.endswith((".yaml", ".yml")):
                    full_path = os.path.join(path, filename)
                    mtimes[full_path] = os.path.getmtime(full_path)
        elif os.path.exists(path):
            mtimes[path] = os.path.getmtime(path)
    return mtimes


def register_all(manager, configs, root_logger):
    """
    Register every configuration, logging the ones that fail.
    """
    for watch_config in configs:
        try:
            manager.register(watch_config)
        except (ConfigurationError, ValueError, OSError) as e:
            root_logger.error(
                f"Could not register watch '{watch_config.display_name}': {e}"
            )


def start_prune_workers(store, configs, config):
    """
    Start prune workers for watches without their own max_records.
    """
    retention = config.get("retention", {})
    retain = retention.get("max_records")
    if not retain:
        return []
    interval = retention.get("interval", DEFAULT_PRUNE_INTERVAL)
    workers = []
    for watch_config in configs:
        if watch_config.max_records is None:
            base_name = base_identity(watch_config.directory_leaf)
            workers.append(spawn_prune_worker(store, base_name, int(retain), interval))
    return workers


def run_watches(store, config, config_path, root_logger, stop_event,
                check_interval=DEFAULT_CHECK_INTERVAL):
    """
    Register all watches and block until a config file changes or
    ``stop_event`` is set.

    Returns:
        bool: True if the configuration changed and should be reloaded.
    """
    definitions_path = config_module.watch_definitions_path(config, config_path)
    configs = []
    try:
        configs = config_module.load_watch_configurations(definitions_path)
    except (ConfigurationError, FileNotFoundError) as e:
        root_logger.error(f"Error loading watch definitions: {e}")

    manager = WatchManager(store, logger=root_logger)
    register_all(manager, configs, root_logger)
    workers = start_prune_workers(store, configs, config)
    log_daemon_status(root_logger, manager)

    watched_paths = [config_path, definitions_path]
    mtimes = collect_mtimes(watched_paths)
    reload_needed = False
    try:
        while not stop_event.wait(check_interval):
            try:
                if collect_mtimes(watched_paths) != mtimes:
                    root_logger.info("Configuration change detected. Restarting watches.")
                    reload_needed = True
                    break
            except OSError as e:
                root_logger.error(f"Error checking configuration files: {e}")

            for name, status in manager.get_all_statuses().items():
                if status["state"] == "armed" and not status["watching"]:
                    root_logger.error(f"Watcher for '{name}' has stopped unexpectedly")
    finally:
        for worker in workers:
            worker.stop()
            worker.join(timeout=5.0)
        try:
            manager.dispose_all()
        except Exception as e:
            root_logger.error(f"Error disposing watches: {e}", exc_info=True)
    return reload_needed


def run_service(db_path, config, config_path, root_logger, stop_event=None):
    """
    Run watches until stopped, reloading whenever the configuration changes.
    """
    stop_event = stop_event or threading.Event()
    store = SqliteRecordStore(db_path)
    root_logger.info(f"Recording firings in {db_path}")

    while not stop_event.is_set():
        if not run_watches(store, config, config_path, root_logger, stop_event):
            break
        try:
            root_logger.info("Reloading configuration...")
            config = config_module.load_config(config_path)
        except Exception as e:
            root_logger.error(f"Error reloading configuration: {e}", exc_info=True)
            stop_event.wait(DEFAULT_CHECK_INTERVAL)


def run_daemon(db_path, pid_file, config, config_path):
    """Run the watch service as a daemon with auto-reload."""
    config_path = os.path.abspath(config_path)
    root_logger = setup_daemon_logger(config, config_path, console=False)

    context = daemon.DaemonContext(
        pidfile=PIDLockFile(pid_file),
        files_preserve=[
            handler.stream.fileno()
            for handler in root_logger.handlers
            if hasattr(handler, "stream") and hasattr(handler.stream, "fileno")
        ],
    )

    with context:
        try:
            root_logger.info(f"Daemon started. Config path: {config_path}")
            run_service(db_path, config, config_path, root_logger)
        except Exception as e:
            root_logger.error(f"Fatal error in daemon: {e}", exc_info=True)
            raise
