import os
import tempfile
import time

from iowatcher.actions import CallableAction
from iowatcher.config import TriggerKind, WatchConfiguration
from iowatcher.records import MemoryRecordStore
from iowatcher.watcher import register_watch


# Print each firing as it happens.
def announce(context):
    print(f"{context['trigger_type']}: {context['matched_files_full_path']} -> {context['record_name']}")


watched = tempfile.mkdtemp(prefix="iowatcher-demo-")
store = MemoryRecordStore()

# Watch for new .txt files only.
config = WatchConfiguration(
    target_directory=watched,
    trigger=TriggerKind.CREATED,
    action=CallableAction(announce),
    glob="*.txt",
)
registration = register_watch(config, store=store)

# Create a few files; only the .txt ones fire.
for name in ("notes.txt", "image.png", "todo.txt"):
    with open(os.path.join(watched, name), "w") as f:
        f.write(name)
    time.sleep(1)

registration.dispose()
print("Records:", store.names())
