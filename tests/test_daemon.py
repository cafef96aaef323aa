import logging
import threading
import time

import pytest
import toml
import yaml

from iowatcher import daemon as daemon_module
from iowatcher.actions import SourceAction
from iowatcher.config import TriggerKind, WatchConfiguration
from iowatcher.records import MemoryRecordStore, SqliteRecordStore


@pytest.fixture
def service_config(tmp_path):
    (tmp_path / "data").mkdir()
    cfg = {
        "database": {"db_name": "records.db"},
        "logging": {"level": "DEBUG", "log_dir": "logs"},
        "watches": {"configs_dir": "watches.yaml"},
        "retention": {"max_records": 10, "interval": 60},
    }
    config_path = tmp_path / "config.toml"
    with open(config_path, "w") as f:
        toml.dump(cfg, f)
    with open(tmp_path / "watches.yaml", "w") as f:
        yaml.dump({"watches": [{
            "directory": "data",
            "glob": "*.txt",
            "trigger": "Disposed",
            "action": "pass",
            "use_polling": True,
            "poll_interval": 0.1,
        }]}, f)
    return cfg, str(config_path)


def test_setup_daemon_logger(tmp_path, service_config):
    cfg, config_path = service_config
    daemon_logger = daemon_module.setup_daemon_logger(cfg, config_path, console=False)
    assert daemon_logger.level == logging.DEBUG
    assert (tmp_path / "logs" / "daemon.log").exists()


def test_setup_daemon_logger_requires_path():
    with pytest.raises(ValueError):
        daemon_module.setup_daemon_logger({}, None)


def test_collect_mtimes(tmp_path):
    defs = tmp_path / "defs"
    defs.mkdir()
    (defs / "a.yaml").write_text("watches: []")
    (defs / "skip.txt").write_text("")
    mtimes = daemon_module.collect_mtimes([str(defs), str(tmp_path / "missing.toml")])
    assert list(mtimes) == [str(defs / "a.yaml")]


def test_start_prune_workers_only_for_uncapped_watches(tmp_path):
    def make(max_records):
        return WatchConfiguration(
            target_directory=str(tmp_path), trigger=TriggerKind.CREATED,
            action=SourceAction("pass"), glob="*", max_records=max_records,
        )

    store = MemoryRecordStore()
    assert daemon_module.start_prune_workers(store, [make(None)], {}) == []

    workers = daemon_module.start_prune_workers(
        store, [make(None), make(3)], {"retention": {"max_records": 5, "interval": 60}}
    )
    try:
        assert len(workers) == 1
        assert workers[0].retain == 5
        assert workers[0].base_name == f"FileIOWatcherFor{tmp_path.name}"
    finally:
        for worker in workers:
            worker.stop()
            worker.join(timeout=1)


def test_run_watches_registers_and_disposes(service_config):
    cfg, config_path = service_config
    store = MemoryRecordStore()
    stop_event = threading.Event()
    stop_event.set()

    reload_needed = daemon_module.run_watches(
        store, cfg, config_path, logging.getLogger("test-daemon"), stop_event
    )

    assert reload_needed is False
    # The Disposed watch fired while the service shut down.
    assert store.names() == ["FileIOWatcherFordata"]


def test_run_service_records_to_sqlite(tmp_path, service_config):
    cfg, config_path = service_config
    db_path = str(tmp_path / "records.db")
    stop_event = threading.Event()
    service = threading.Thread(
        target=daemon_module.run_service,
        args=(db_path, cfg, config_path, logging.getLogger("test-daemon"), stop_event),
    )
    service.start()
    time.sleep(0.5)
    stop_event.set()
    service.join(timeout=15)

    assert not service.is_alive()
    assert SqliteRecordStore(db_path).names() == ["FileIOWatcherFordata"]
