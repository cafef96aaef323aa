import os
import tempfile
import time

from iowatcher.actions import SourceAction
from iowatcher.config import TriggerKind, WatchConfiguration
from iowatcher.manager import WatchManager
from iowatcher.retention import spawn_prune_worker

base = tempfile.mkdtemp(prefix="iowatcher-demo-")
reports = os.path.join(base, "reports")
os.makedirs(os.path.join(reports, "daily"))

manager = WatchManager()

# Changed reports anywhere below reports/, matched by regex.
manager.register(WatchConfiguration(
    target_directory=reports,
    trigger=TriggerKind.CHANGED,
    action=SourceAction("print('changed', matched_files_full_path[0])"),
    regex=r"^report_\d+\.csv$",
    include_subdirectories=True,
    change_detection="content",
))

# Deleted reports.
manager.register(WatchConfiguration(
    target_directory=reports,
    trigger=TriggerKind.DELETED,
    action=SourceAction("print('deleted', matched_files[0])"),
    glob="*.csv",
    name="reports-deleted",
))

# Keep at most 3 records per watched directory.
pruner = spawn_prune_worker(manager.store, "FileIOWatcherForreports", 3, interval=1)

path = os.path.join(reports, "daily", "report_1.csv")
for i in range(5):
    with open(path, "a") as f:
        f.write(f"{i},value\n")
    time.sleep(1)
os.remove(path)
time.sleep(2)

print("Watch statuses:", manager.get_all_statuses())
print("Records:", manager.store.names())

pruner.stop()
pruner.join(timeout=2)
manager.dispose_all()
