import enum
import os
from dataclasses import dataclass
from typing import Optional, Pattern

import toml
import yaml

from iowatcher.actions import (Action, CallableAction, SourceAction,
                               resolve_action_ref)
from iowatcher.exceptions import ConfigurationError
from iowatcher.matching import build_match_rule, check_glob, compile_regex

DEFAULT_CONFIG_PATH = "./config.toml"
ENV_CONFIG_DIR_VAR = "IOWATCHER_CONFIG_DIR"

CHANGE_DETECTION_MODES = ("size", "mtime", "content", "none")


class TriggerKind(enum.Enum):
    CREATED = "Created"
    CHANGED = "Changed"
    DELETED = "Deleted"
    DISPOSED = "Disposed"
    ERROR = "Error"
    RENAMED = "Renamed"

    @classmethod
    def parse(cls, value):
        """Parse a trigger name case-insensitively ("created", "Created", ...)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for kind in cls:
                if kind.value.lower() == value.strip().lower():
                    return kind
        choices = ", ".join(kind.value for kind in cls)
        raise ConfigurationError(f"Unknown trigger '{value}'. Choose one of: {choices}")


@dataclass
class WatchConfiguration:
    """
    Everything needed to register one watch.

    Attributes:
        target_directory: Absolute path of an existing directory.
        trigger: The single event kind that fires the action.
        action: SourceAction or CallableAction.
        regex: Regex rule, compiled by validate() if given as a string
            (mutually exclusive with glob).
        glob: Single glob rule (mutually exclusive with regex).
        include_subdirectories: Watch the whole tree below target_directory.
        name: Display name; defaults to the directory leaf name.
        change_detection: Differencing mode for the Changed trigger.
        max_records: Records retained per watch; None keeps everything.
        use_polling: Use watchdog's PollingObserver instead of OS events.
        poll_interval: Polling interval in seconds.
    """

    target_directory: str
    trigger: TriggerKind
    action: Action
    regex: Optional[Pattern] = None
    glob: Optional[str] = None
    include_subdirectories: bool = False
    name: Optional[str] = None
    change_detection: str = "size"
    max_records: Optional[int] = None
    use_polling: bool = False
    poll_interval: float = 1.0

    @property
    def directory_leaf(self) -> str:
        return os.path.basename(os.path.normpath(self.target_directory))

    @property
    def display_name(self) -> str:
        return self.name or self.directory_leaf

    def validate(self):
        """
        Check the configuration before anything is armed.

        Raises:
            ConfigurationError: On the first problem found.
        """
        build_match_rule(self.regex, self.glob)
        if isinstance(self.regex, str):
            self.regex = compile_regex(self.regex)
        if not self.target_directory or not os.path.isabs(self.target_directory):
            raise ConfigurationError(
                f"Target directory must be an absolute path: {self.target_directory!r}"
            )
        if not os.path.isdir(self.target_directory):
            raise ConfigurationError(
                f"Target directory does not exist or is not a directory: "
                f"{self.target_directory}"
            )
        if not isinstance(self.trigger, TriggerKind):
            raise ConfigurationError(f"Invalid trigger: {self.trigger!r}")
        if not isinstance(self.action, (SourceAction, CallableAction)):
            raise ConfigurationError(
                "Action must be a SourceAction or a CallableAction."
            )
        if self.change_detection not in CHANGE_DETECTION_MODES:
            raise ConfigurationError(
                f"Unknown change_detection '{self.change_detection}'. "
                f"Choose one of: {', '.join(CHANGE_DETECTION_MODES)}"
            )
        if self.max_records is not None and (
            not isinstance(self.max_records, int) or self.max_records < 1
        ):
            raise ConfigurationError("max_records must be a positive integer.")
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be greater than zero.")
        return self


def build_watch_configuration(definition: dict, base_dir: Optional[str] = None):
    """
    Build a WatchConfiguration from a watch definition mapping.

    Relative directories are resolved against ``base_dir`` (or the current
    working directory). The result is validated before it is returned.

    Args:
        definition (dict): One entry of the ``watches`` list.
        base_dir (str): Directory used to resolve relative paths.

    Returns:
        WatchConfiguration: A validated configuration.
    """
    if not isinstance(definition, dict):
        raise ConfigurationError(f"Watch definition must be a mapping: {definition!r}")

    directory = definition.get("directory")
    if not directory:
        raise ConfigurationError("Watch definition is missing 'directory'.")
    directory = os.path.expanduser(str(directory))
    if not os.path.isabs(directory):
        directory = os.path.join(base_dir or os.getcwd(), directory)
    directory = os.path.abspath(directory)

    regex = definition.get("regex")
    glob = definition.get("glob")
    if regex is not None and glob is not None:
        raise ConfigurationError(
            f"Watch for {directory} sets both 'regex' and 'glob'."
        )
    if regex is not None:
        regex = compile_regex(regex)
    if glob is not None:
        glob = check_glob(str(glob))

    source = definition.get("action")
    ref = definition.get("action_ref")
    if (source is None) == (ref is None):
        raise ConfigurationError(
            f"Watch for {directory} needs exactly one of 'action' or 'action_ref'."
        )
    action = SourceAction(str(source)) if source is not None else resolve_action_ref(ref)

    max_records = definition.get("max_records")
    config = WatchConfiguration(
        target_directory=directory,
        trigger=TriggerKind.parse(definition.get("trigger")),
        action=action,
        regex=regex,
        glob=glob,
        include_subdirectories=bool(definition.get("include_subdirectories", False)),
        name=definition.get("name"),
        change_detection=str(definition.get("change_detection", "size")).lower(),
        max_records=int(max_records) if max_records is not None else None,
        use_polling=bool(definition.get("use_polling", False)),
        poll_interval=float(definition.get("poll_interval", 1.0)),
    )
    return config.validate()


def load_config(cli_config_path=None):
    """
    Load configuration from a TOML file.

    Precedence:
      1. cli_config_path if provided.
      2. Environment variable IOWATCHER_CONFIG_DIR (looking for config.toml).
      3. Default to ./config.toml.

    Returns:
        dict: The configuration settings.
    """
    if cli_config_path:
        config_path = cli_config_path
    elif os.environ.get(ENV_CONFIG_DIR_VAR):
        config_path = os.path.join(os.environ[ENV_CONFIG_DIR_VAR], "config.toml")
    else:
        config_path = DEFAULT_CONFIG_PATH

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        return toml.load(f)


def load_watch_definitions(path):
    """
    Load watch definitions from a YAML file or a directory of YAML files.

    Args:
        path (str): Path to a YAML file or directory.

    Returns:
        dict: Aggregated definitions with key 'watches'.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Watch definitions not found: {path}")

    if os.path.isdir(path):
        files = [
            os.path.join(path, name)
            for name in sorted(os.listdir(path))
            if name.endswith((".yaml", ".yml"))
        ]
    else:
        files = [path]

    aggregated = {"watches": []}
    for file_path in files:
        with open(file_path, "r") as f:
            data = yaml.safe_load(f) or {}
        aggregated["watches"].extend(data.get("watches") or [])
    return aggregated


def watch_definitions_path(cfg, config_path=None):
    """Resolve the watch definitions location relative to the config file."""
    configured = cfg.get("watches", {}).get("configs_dir", "watches.yaml")
    if os.path.isabs(configured):
        return configured
    config_dir = os.path.dirname(os.path.abspath(config_path or DEFAULT_CONFIG_PATH))
    return os.path.join(config_dir, configured)


def load_watch_configurations(path):
    """
    Load and validate every watch definition under ``path``.

    Relative directories inside a definition file resolve against that
    file's directory.
    """
    base_dir = path if os.path.isdir(path) else os.path.dirname(os.path.abspath(path))
    definitions = load_watch_definitions(path)
    return [
        build_watch_configuration(definition, base_dir=base_dir)
        for definition in definitions["watches"]
    ]
