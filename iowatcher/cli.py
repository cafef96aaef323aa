import csv
import io
import json
import os
import signal
import threading
import time

import click
import psutil
from rich.console import Console
from rich.table import Table

from iowatcher import config
from iowatcher import daemon as daemon_module
from iowatcher import logger as logger_module
from iowatcher.exceptions import ConfigurationError
from iowatcher.records import MemoryRecordStore, SqliteRecordStore, base_identity
from iowatcher.watcher import register_watch

DEFAULT_PID_FILENAME = "iowatcher.pid"
RECORD_FIELDS = (
    "name",
    "trigger",
    "timestamp",
    "matched_files",
    "matched_files_full_path",
    "firing_id",
    "subscription",
)


@click.group()
@click.option("--config", "-c", "config_path", default=None, help="Path to configuration TOML file.")
@click.option("--debug", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx, config_path, debug):
    """
    IOWatcher CLI: run actions when files in a directory change.
    """
    try:
        cfg = config.load_config(config_path)
    except FileNotFoundError as e:
        if config_path:
            click.echo(f"Error loading configuration: {e}")
            ctx.exit(1)
        cfg = {}
    except Exception as e:
        click.echo(f"Error loading configuration: {e}")
        ctx.exit(1)
    if debug:
        cfg.setdefault("logging", {})["level"] = "DEBUG"
    ctx.obj = {"config": cfg, "config_path": config_path or config.DEFAULT_CONFIG_PATH}


def get_config_dir(ctx):
    return os.path.dirname(os.path.abspath(ctx.obj["config_path"]))


def get_db_path(ctx):
    cfg = ctx.obj["config"]
    db_name = cfg.get("database", {}).get("db_name", "iowatcher.db")
    return os.path.join(get_config_dir(ctx), db_name)


def get_log_dir(ctx):
    cfg = ctx.obj["config"]
    return os.path.join(get_config_dir(ctx), cfg.get("logging", {}).get("log_dir", "logs"))


def get_pid_file(log_dir):
    return os.path.join(log_dir, DEFAULT_PID_FILENAME)


def record_to_row(record):
    return {
        "name": record.name,
        "trigger": record.trigger.value,
        "timestamp": record.timestamp.isoformat(),
        "matched_files": record.matched_files,
        "matched_files_full_path": record.matched_files_full_path,
        "firing_id": record.firing_id,
        "subscription": record.subscription,
    }


@main.command()
@click.pass_context
def show_config(ctx):
    """
    Show the loaded configuration.
    """
    click.echo(ctx.obj["config"])


@main.command()
@click.pass_context
def init_db(ctx):
    """
    Initialize the SQLite record database.
    """
    db_path = get_db_path(ctx)
    SqliteRecordStore(db_path)
    click.echo(f"Database initialized at {db_path}")


@main.command()
@click.pass_context
def check(ctx):
    """
    Validate every watch definition.
    """
    definitions_path = config.watch_definitions_path(ctx.obj["config"], ctx.obj["config_path"])
    try:
        configs = config.load_watch_configurations(definitions_path)
    except (ConfigurationError, FileNotFoundError) as e:
        click.echo(f"Invalid watch definitions: {e}")
        ctx.exit(1)

    table = Table(title="IOWatcher Watches")
    for column in ("Name", "Directory", "Trigger", "Rule", "Recursive"):
        table.add_column(column)
    for watch_config in configs:
        rule = f"regex {watch_config.regex.pattern}" if watch_config.regex else f"glob {watch_config.glob}"
        table.add_row(
            watch_config.display_name,
            watch_config.target_directory,
            watch_config.trigger.value,
            rule,
            str(watch_config.include_subdirectories),
        )
    Console().print(table)
    click.echo(f"{len(configs)} watch definition(s) OK.")


@main.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False, resolve_path=True))
@click.option("--glob", "-g", default=None, help="Single glob pattern, e.g. '*.txt'.")
@click.option("--regex", "-r", default=None, help="Regular expression for file names.")
@click.option("--trigger", "-t", required=True,
              type=click.Choice([kind.value for kind in config.TriggerKind], case_sensitive=False),
              help="Event kind that fires the action.")
@click.option("--recursive", is_flag=True, help="Include subdirectories.")
@click.option("--action", "-a", "action_source", default=None, help="Python source to run per firing.")
@click.option("--action-ref", default=None, help="Callable to run, as 'package.module:function'.")
@click.option("--change-detection", default="size",
              type=click.Choice(config.CHANGE_DETECTION_MODES, case_sensitive=False),
              help="Duplicate suppression for the Changed trigger.")
@click.option("--polling", is_flag=True, help="Poll instead of using OS notifications.")
@click.option("--persist", is_flag=True, help="Store records in the configured database.")
@click.pass_context
def watch(ctx, directory, glob, regex, trigger, recursive, action_source, action_ref,
          change_detection, polling, persist):
    """
    Watch one DIRECTORY in the foreground until interrupted.
    """
    definition = {
        "directory": directory,
        "trigger": trigger,
        "include_subdirectories": recursive,
        "change_detection": change_detection,
        "use_polling": polling,
    }
    for key, value in (("glob", glob), ("regex", regex), ("action", action_source),
                       ("action_ref", action_ref)):
        if value is not None:
            definition[key] = value

    try:
        watch_config = config.build_watch_configuration(definition)
    except ConfigurationError as e:
        click.echo(f"Invalid watch: {e}")
        ctx.exit(1)

    cfg = ctx.obj["config"]
    level = logger_module.parse_level(cfg.get("logging", {}).get("level", "INFO"))
    watch_logger = logger_module.setup_logger(
        f"iowatcher.watch.{watch_config.display_name}", level=level
    )
    store = SqliteRecordStore(get_db_path(ctx)) if persist else MemoryRecordStore()
    registration = register_watch(watch_config, store=store, logger=watch_logger)
    click.echo(
        f"Watching {directory} for {watch_config.trigger.value}; "
        f"records named {base_identity(watch_config.directory_leaf)}*. Ctrl-C to stop."
    )
    stopped = False
    try:
        while registration.is_armed:
            if not registration.watcher.is_alive:
                stopped = True
                break
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        registration.dispose()
    click.echo(f"{registration.firings} firing(s) recorded.")
    if stopped:
        click.echo("Watcher stopped unexpectedly; see the log for details.")
        ctx.exit(1)


@main.command()
@click.option("--foreground", is_flag=True, help="Run in foreground (not as daemon).")
@click.pass_context
def start(ctx, foreground):
    """
    Start the IOWatcher service for every watch definition.
    """
    cfg = ctx.obj["config"]
    config_path = os.path.abspath(ctx.obj["config_path"])
    db_path = get_db_path(ctx)

    if foreground:
        click.echo("Running in foreground...")
        root_logger = daemon_module.setup_daemon_logger(cfg, config_path)
        stop_event = threading.Event()
        try:
            daemon_module.run_service(db_path, cfg, config_path, root_logger, stop_event)
        except KeyboardInterrupt:
            stop_event.set()
    else:
        log_dir = get_log_dir(ctx)
        os.makedirs(log_dir, exist_ok=True)
        click.echo("Starting daemon...")
        daemon_module.run_daemon(db_path, get_pid_file(log_dir), cfg, config_path)


@main.command()
@click.pass_context
def stop(ctx):
    """
    Stop the IOWatcher daemon.
    """
    pid_file = get_pid_file(get_log_dir(ctx))
    if not os.path.exists(pid_file):
        click.echo("Daemon is not running (pid file not found).")
        return
    with open(pid_file, "r") as f:
        pid = int(f.read().strip())
    try:
        os.kill(pid, signal.SIGTERM)
        click.echo(f"Sent SIGTERM to daemon (pid {pid}).")
        time.sleep(2)
        if os.path.exists(pid_file):
            os.remove(pid_file)
    except OSError as e:
        click.echo(f"Error stopping daemon: {e}")


@main.command()
@click.pass_context
def status(ctx):
    """
    Check the status of the IOWatcher daemon.
    """
    pid_file = get_pid_file(get_log_dir(ctx))
    if not os.path.exists(pid_file):
        click.echo("Daemon is not running (pid file not found).")
        return

    with open(pid_file, "r") as f:
        pid = int(f.read().strip())
    try:
        proc = psutil.Process(pid)
    except psutil.NoSuchProcess:
        click.echo("Daemon process not found.")
        return

    status_table = Table(title="IOWatcher Daemon Status")
    status_table.add_column("Property", style="cyan")
    status_table.add_column("Value", style="magenta")
    status_table.add_row("PID", str(proc.pid))
    status_table.add_row("CPU %", f"{proc.cpu_percent(interval=0.1)}")
    status_table.add_row("Memory %", f"{proc.memory_percent():.2f}")
    status_table.add_row("Memory RSS", str(proc.memory_info().rss))
    status_table.add_row("Threads", str(proc.num_threads()))
    status_table.add_row("Start Time", time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(proc.create_time())))

    db_path = get_db_path(ctx)
    if os.path.exists(db_path):
        status_table.add_row("Records", str(len(SqliteRecordStore(db_path))))

    Console().print(status_table)


@main.command(name="show-records")
@click.option("--watch", "-w", "leaf", default=None, help="Only records for this directory leaf name.")
@click.option("--format", "-f", "out_format", default="table",
              type=click.Choice(["table", "json", "csv", "raw"], case_sensitive=False),
              help="Output format.")
@click.pass_context
def show_records(ctx, leaf, out_format):
    """
    Show records stored in the database.
    """
    store = SqliteRecordStore(get_db_path(ctx))
    records = store.by_base(base_identity(leaf)) if leaf else store.find("*")
    rows = [record_to_row(record) for record in records]
    out_format = out_format.lower()

    if out_format == "json":
        click.echo(json.dumps(rows, indent=2))
    elif not rows:
        click.echo("No records found.")
    elif out_format == "csv":
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=RECORD_FIELDS)
        writer.writeheader()
        for row in rows:
            writer.writerow(dict(row, matched_files=";".join(row["matched_files"]),
                                 matched_files_full_path=";".join(row["matched_files_full_path"])))
        click.echo(output.getvalue())
    elif out_format == "raw":
        click.echo(rows)
    else:
        table = Table(title="IOWatcher Records")
        for column in RECORD_FIELDS:
            table.add_column(column)
        for row in rows:
            table.add_row(*[str(row[column]) for column in RECORD_FIELDS])
        Console().print(table)


@main.command(name="clear-records")
@click.option("--watch", "-w", "leaf", default=None, help="Only records for this directory leaf name.")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def clear_records(ctx, leaf, yes):
    """
    Delete stored records.
    """
    target = f"records of {base_identity(leaf)}" if leaf else "all records"
    if not yes:
        click.confirm(f"Delete {target}?", abort=True)
    store = SqliteRecordStore(get_db_path(ctx))
    removed = store.clear(base_identity(leaf) if leaf else None)
    click.echo(f"Removed {removed} record(s).")


if __name__ == "__main__":
    main()
