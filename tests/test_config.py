import os

import pytest
import toml
import yaml

from iowatcher import config
from iowatcher.actions import CallableAction, SourceAction
from iowatcher.config import TriggerKind, WatchConfiguration
from iowatcher.exceptions import ConfigurationError


@pytest.fixture
def data_dir(tmp_path):
    directory = tmp_path / "data"
    directory.mkdir()
    return directory


def test_load_config(tmp_path):
    config_data = {
        "database": {"db_name": "test.db"},
        "watches": {"configs_dir": "watches.yaml"},
    }
    config_file = tmp_path / "config.toml"
    with open(config_file, "w") as f:
        toml.dump(config_data, f)

    loaded_config = config.load_config(str(config_file))
    assert loaded_config["database"]["db_name"] == "test.db"
    assert loaded_config["watches"]["configs_dir"] == "watches.yaml"


def test_load_config_from_env_dir(tmp_path, monkeypatch):
    (tmp_path / "config.toml").write_text('[logging]\nlevel = "DEBUG"\n')
    monkeypatch.setenv(config.ENV_CONFIG_DIR_VAR, str(tmp_path))
    assert config.load_config()["logging"]["level"] == "DEBUG"


def test_load_config_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        config.load_config(str(tmp_path / "missing.toml"))


def test_load_watch_definitions_file_and_dir(tmp_path):
    defs_dir = tmp_path / "watches"
    defs_dir.mkdir()
    for name in ("a", "b"):
        with open(defs_dir / f"{name}.yaml", "w") as f:
            yaml.dump({"watches": [{"name": name, "directory": "/tmp"}]}, f)
    (defs_dir / "notes.txt").write_text("ignored")

    loaded = config.load_watch_definitions(str(defs_dir))
    assert [w["name"] for w in loaded["watches"]] == ["a", "b"]

    loaded = config.load_watch_definitions(str(defs_dir / "a.yaml"))
    assert loaded["watches"][0]["name"] == "a"


def test_build_watch_configuration(data_dir):
    watch_config = config.build_watch_configuration({
        "name": "notes",
        "directory": str(data_dir),
        "glob": "*.txt",
        "trigger": "created",
        "action": "print(matched_files)",
        "max_records": 5,
    })
    assert watch_config.target_directory == str(data_dir)
    assert watch_config.trigger is TriggerKind.CREATED
    assert watch_config.glob == "*.txt"
    assert watch_config.regex is None
    assert isinstance(watch_config.action, SourceAction)
    assert watch_config.include_subdirectories is False
    assert watch_config.change_detection == "size"
    assert watch_config.max_records == 5
    assert watch_config.display_name == "notes"
    assert watch_config.directory_leaf == "data"


def test_build_watch_configuration_relative_dir_and_ref(tmp_path, data_dir):
    watch_config = config.build_watch_configuration(
        {
            "directory": "data",
            "regex": r"^report_\d+\.csv$",
            "trigger": "Changed",
            "include_subdirectories": True,
            "action_ref": "os.path:basename",
        },
        base_dir=str(tmp_path),
    )
    assert watch_config.target_directory == str(data_dir)
    assert watch_config.regex.pattern == r"^report_\d+\.csv$"
    assert isinstance(watch_config.action, CallableAction)
    assert watch_config.display_name == "data"


@pytest.mark.parametrize("overrides", [
    {"regex": ".*"},
    {"glob": None},
    {"action_ref": "os.path:basename"},
    {"action": None},
    {"trigger": "Touched"},
    {"directory": "does-not-exist"},
    {"change_detection": "checksum"},
    {"max_records": 0},
])
def test_invalid_watch_definitions(data_dir, overrides):
    definition = {
        "directory": str(data_dir),
        "glob": "*.txt",
        "trigger": "Created",
        "action": "pass",
    }
    definition.update(overrides)
    definition = {k: v for k, v in definition.items() if v is not None}
    with pytest.raises(ConfigurationError):
        config.build_watch_configuration(definition)


def test_validate_requires_absolute_directory(data_dir):
    watch_config = WatchConfiguration(
        target_directory=os.path.relpath(str(data_dir)),
        trigger=TriggerKind.CREATED,
        action=SourceAction("pass"),
        glob="*",
    )
    with pytest.raises(ConfigurationError):
        watch_config.validate()


def test_trigger_parse():
    assert TriggerKind.parse("renamed") is TriggerKind.RENAMED
    assert TriggerKind.parse(TriggerKind.ERROR) is TriggerKind.ERROR
    with pytest.raises(ConfigurationError):
        TriggerKind.parse(None)


def test_load_watch_configurations(tmp_path, data_dir):
    with open(tmp_path / "watches.yaml", "w") as f:
        yaml.dump({"watches": [
            {"directory": "data", "glob": "*.txt", "trigger": "Deleted", "action": "pass"},
        ]}, f)
    configs = config.load_watch_configurations(str(tmp_path / "watches.yaml"))
    assert len(configs) == 1
    assert configs[0].target_directory == str(data_dir)
    assert configs[0].trigger is TriggerKind.DELETED


def test_watch_definitions_path(tmp_path):
    config_path = str(tmp_path / "config.toml")
    assert config.watch_definitions_path({}, config_path) == str(tmp_path / "watches.yaml")
    cfg = {"watches": {"configs_dir": "/etc/iowatcher"}}
    assert config.watch_definitions_path(cfg, config_path) == "/etc/iowatcher"
