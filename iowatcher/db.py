import json
import os
import sqlite3

RECORD_COLUMNS = (
    "name",
    "base_name",
    "firing_id",
    "subscription",
    "trigger",
    "timestamp",
    "matched_files",
    "matched_files_full_path",
    "event",
)
JSON_COLUMNS = ("matched_files", "matched_files_full_path", "event")


def get_db_connection(db_path):
    """
    Get a SQLite3 connection.
    """
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str):
    """
    Initialize the SQLite database with the records table.
    """
    db_dir = os.path.dirname(db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    conn = sqlite3.connect(db_path)
    cur = conn.cursor()

    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            base_name TEXT NOT NULL,
            firing_id INTEGER,
            subscription TEXT,
            trigger TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            matched_files TEXT,
            matched_files_full_path TEXT,
            event TEXT,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(name)
        )
    """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_records_base_name ON records (base_name)"
    )

    conn.commit()
    conn.close()


def _row_to_dict(row):
    data = dict(row)
    for column in JSON_COLUMNS:
        if data.get(column) is not None:
            data[column] = json.loads(data[column])
    return data


def insert_record(db_path, choose_name, row):
    """
    Insert a record under a name chosen inside the same transaction.

    Args:
        db_path: Path to the SQLite database.
        choose_name: Callable receiving an ``exists(name)`` predicate and
            returning the name to insert under.
        row: Column values, without ``name``.

    Returns:
        str: The name the record was stored under.
    """
    conn = get_db_connection(db_path)
    cur = conn.cursor()

    try:
        cur.execute("BEGIN IMMEDIATE")

        def exists(name):
            cur.execute("SELECT 1 FROM records WHERE name = ? LIMIT 1", (name,))
            return cur.fetchone() is not None

        name = choose_name(exists)
        values = dict(row, name=name)
        for column in JSON_COLUMNS:
            values[column] = json.dumps(values.get(column))
        cur.execute(
            f"""
            INSERT INTO records ({", ".join(RECORD_COLUMNS)})
            VALUES ({", ".join("?" for _ in RECORD_COLUMNS)})
        """,
            tuple(values.get(column) for column in RECORD_COLUMNS),
        )
        conn.commit()
        return name

    except Exception as e:
        conn.rollback()
        raise e

    finally:
        conn.close()


def get_record(db_path, name):
    """
    Retrieve a record by name. Returns a dict or None if not found.
    """
    conn = get_db_connection(db_path)
    cur = conn.cursor()
    cur.execute("SELECT * FROM records WHERE name = ? LIMIT 1", (name,))
    row = cur.fetchone()
    conn.close()
    if row:
        return _row_to_dict(row)
    return None


def list_records(db_path, base_name=None):
    """
    List records in insertion order, optionally for one base name.
    """
    conn = get_db_connection(db_path)
    cur = conn.cursor()
    if base_name is None:
        cur.execute("SELECT * FROM records ORDER BY id")
    else:
        cur.execute(
            "SELECT * FROM records WHERE base_name = ? ORDER BY id", (base_name,)
        )
    rows = cur.fetchall()
    conn.close()
    return [_row_to_dict(row) for row in rows]


def find_records(db_path, pattern):
    """
    List records whose name matches a glob pattern (SQLite GLOB, case-sensitive).
    """
    conn = get_db_connection(db_path)
    cur = conn.cursor()
    cur.execute("SELECT * FROM records WHERE name GLOB ? ORDER BY id", (pattern,))
    rows = cur.fetchall()
    conn.close()
    return [_row_to_dict(row) for row in rows]


def list_base_names(db_path):
    """
    Return the distinct base names that have records.
    """
    conn = get_db_connection(db_path)
    cur = conn.cursor()
    cur.execute("SELECT DISTINCT base_name FROM records ORDER BY base_name")
    names = [row["base_name"] for row in cur.fetchall()]
    conn.close()
    return names


def remove_old_records(db_path, base_name, retain_records=1):
    """
    Keep only the newest ``retain_records`` records for a base name.

    Returns:
        int: Number of records removed.
    """
    conn = get_db_connection(db_path)
    cur = conn.cursor()
    cur.execute(
        """
        DELETE FROM records
        WHERE base_name = ? AND id NOT IN (
            SELECT id FROM records WHERE base_name = ?
            ORDER BY id DESC LIMIT ?
        )
    """,
        (base_name, base_name, retain_records),
    )
    removed = cur.rowcount
    conn.commit()
    conn.close()
    return removed


def clear_records(db_path, base_name=None):
    """
    Delete all records, or all records for one base name.

    Returns:
        int: Number of records removed.
    """
    conn = get_db_connection(db_path)
    cur = conn.cursor()
    if base_name is None:
        cur.execute("DELETE FROM records")
    else:
        cur.execute("DELETE FROM records WHERE base_name = ?", (base_name,))
    removed = cur.rowcount
    conn.commit()
    conn.close()
    return removed


def count_records(db_path, base_name=None):
    """
    Count records, optionally for one base name.
    """
    conn = get_db_connection(db_path)
    cur = conn.cursor()
    if base_name is None:
        cur.execute("SELECT COUNT(*) FROM records")
    else:
        cur.execute("SELECT COUNT(*) FROM records WHERE base_name = ?", (base_name,))
    count = cur.fetchone()[0]
    conn.close()
    return count
