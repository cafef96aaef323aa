"""
Action invoker for IOWatcher.

An action is the user code that runs once per firing. It comes in two forms:

  - SourceAction: Python source text. It is compiled once, then executed with
    every context value bound as a global name, e.g.::

        print(f"{trigger_type}: {matched_files_full_path[0]}")

  - CallableAction: a prebuilt callable. It receives the context mapping as
    its single argument.

Both forms are normalized at registration time into a plain callable taking
the context mapping. Errors raised by the action are never swallowed.
"""

import builtins
import importlib
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Union

from iowatcher.exceptions import ConfigurationError

ActionCallable = Callable[[Mapping[str, Any]], Any]

CONTEXT_NAMES = (
    "target_directory",
    "regex",
    "glob",
    "include_subdirectories",
    "trigger",
    "record_name",
    "event",
    "subscription",
    "trigger_type",
    "timestamp",
    "firing_id",
    "matched_files",
    "matched_files_full_path",
)


@dataclass(frozen=True)
class SourceAction:
    source: str
    filename: str = "<iowatcher-action>"


@dataclass(frozen=True)
class CallableAction:
    function: Callable


Action = Union[SourceAction, CallableAction]


def resolve_action_ref(ref: str) -> CallableAction:
    """
    Resolve a ``"package.module:function"`` reference to a CallableAction.

    Raises:
        ConfigurationError: If the reference is malformed or cannot be imported.
    """
    module_name, sep, attr_path = ref.partition(":")
    if not sep or not module_name or not attr_path:
        raise ConfigurationError(
            f"Action reference '{ref}' must look like 'package.module:function'."
        )
    try:
        target = importlib.import_module(module_name)
        for attr in attr_path.split("."):
            target = getattr(target, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot resolve action reference '{ref}': {e}")
    if not callable(target):
        raise ConfigurationError(f"Action reference '{ref}' is not callable.")
    return CallableAction(target)


def _source_runner(action: SourceAction) -> ActionCallable:
    try:
        code = compile(action.source, action.filename, "exec")
    except SyntaxError as e:
        raise ConfigurationError(f"Action source does not compile: {e}")

    def run(context):
        namespace = {"__builtins__": builtins, "__name__": "__iowatcher_action__"}
        namespace.update(context)
        exec(code, namespace)

    return run


def normalize_action(action: Action) -> ActionCallable:
    """
    Turn an action into the single callable form used by the invoker.

    Raises:
        ConfigurationError: If the action is neither form, or its source does
            not compile.
    """
    if isinstance(action, SourceAction):
        if not action.source or not action.source.strip():
            raise ConfigurationError("Action source must not be empty.")
        return _source_runner(action)
    if isinstance(action, CallableAction):
        if not callable(action.function):
            raise ConfigurationError("CallableAction needs a callable.")
        return action.function
    raise ConfigurationError(
        f"Unsupported action type {type(action).__name__}; "
        "use SourceAction or CallableAction."
    )


def build_action_context(config, record) -> Dict[str, Any]:
    """
    Build the named values visible to an action for one firing.

    Args:
        config: The WatchConfiguration of the registration.
        record: The EventRecord written for this firing.
    """
    return {
        "target_directory": config.target_directory,
        "regex": config.regex.pattern if config.regex is not None else None,
        "glob": config.glob,
        "include_subdirectories": config.include_subdirectories,
        "trigger": config.trigger.value,
        "record_name": record.name,
        "event": record.event,
        "subscription": record.subscription,
        "trigger_type": record.trigger.value,
        "timestamp": record.timestamp,
        "firing_id": record.firing_id,
        "matched_files": list(record.matched_files),
        "matched_files_full_path": list(record.matched_files_full_path),
    }


def invoke_action(action: ActionCallable, context: Mapping[str, Any], logger=None):
    """
    Run an action synchronously with the given context.

    Any exception is logged and re-raised to whoever delivered the
    notification. The return value is discarded.
    """
    log = logger or logging.getLogger(__name__)
    try:
        action(context)
    except Exception:
        log.error(
            f"Action failed for {context.get('record_name')}", exc_info=True
        )
        raise
