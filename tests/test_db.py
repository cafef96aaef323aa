import sqlite3

import pytest

from iowatcher import db


@pytest.fixture
def temp_db(tmp_path):
    db_path = tmp_path / "nested" / "test.db"
    db.init_db(str(db_path))
    return str(db_path)


def insert(db_path, name, base_name="FileIOWatcherFordata"):
    return db.insert_record(
        db_path,
        lambda exists: name,
        {
            "base_name": base_name,
            "firing_id": 1,
            "subscription": "sub",
            "trigger": "Created",
            "timestamp": "2024-05-01T12:00:00+00:00",
            "matched_files": ["notes.txt"],
            "matched_files_full_path": ["/data/notes.txt"],
            "event": None,
        },
    )


def test_db_init_and_insert(temp_db):
    assert insert(temp_db, "FileIOWatcherFordata") == "FileIOWatcherFordata"

    conn = sqlite3.connect(temp_db)
    cur = conn.cursor()
    cur.execute("SELECT name, matched_files FROM records")
    rows = cur.fetchall()
    conn.close()
    assert rows == [("FileIOWatcherFordata", '["notes.txt"]')]

    record = db.get_record(temp_db, "FileIOWatcherFordata")
    assert record["matched_files"] == ["notes.txt"]
    assert record["event"] is None


def test_insert_sees_existing_names(temp_db):
    insert(temp_db, "FileIOWatcherFordata")
    seen = []

    def choose(exists):
        seen.append(exists("FileIOWatcherFordata"))
        seen.append(exists("FileIOWatcherFordata_9"))
        return "FileIOWatcherFordata_9"

    db.insert_record(temp_db, choose, {"base_name": "FileIOWatcherFordata", "trigger": "Created",
                                       "timestamp": "2024-05-01T12:00:00+00:00"})
    assert seen == [True, False]
    assert db.count_records(temp_db) == 2


def test_duplicate_name_rolls_back(temp_db):
    insert(temp_db, "FileIOWatcherFordata")
    with pytest.raises(sqlite3.IntegrityError):
        insert(temp_db, "FileIOWatcherFordata")
    assert db.count_records(temp_db) == 1


def test_find_remove_and_clear(temp_db):
    for suffix in ("", "_2", "_3"):
        insert(temp_db, f"FileIOWatcherFordata{suffix}")
    insert(temp_db, "FileIOWatcherForlogs", base_name="FileIOWatcherForlogs")

    assert len(db.find_records(temp_db, "FileIOWatcherFordata*")) == 3
    assert db.list_base_names(temp_db) == ["FileIOWatcherFordata", "FileIOWatcherForlogs"]

    assert db.remove_old_records(temp_db, "FileIOWatcherFordata", 1) == 2
    assert [r["name"] for r in db.list_records(temp_db, "FileIOWatcherFordata")] == ["FileIOWatcherFordata_3"]

    assert db.clear_records(temp_db) == 2
    assert db.count_records(temp_db) == 0
