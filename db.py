import os
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from werkzeug.security import generate_password_hash

ROOT = Path(__file__).resolve().parent
DEFAULT_DB_PATH = str(ROOT / "data" / "db" / "app.db")
DB_PATH = Path(os.environ.get("APP_DB_PATH", DEFAULT_DB_PATH))
DB_PATH.parent.mkdir(parents=True, exist_ok=True)

ORDERS_COLUMNS = [
    "id",
    "status",
    "service_date",
    "total_amount",
    "pending_payment",
    "zip_code",
    "city",
    "province",
    "address",
    "notes",
    "phone1",
    "phone2",
    "truck_id",
    "store",
    "updated_at",
    "updated_by",
    "created_at",
]

TABLE_COLUMNS = {
    "orders": ORDERS_COLUMNS,
    "trucks": ["id", "number", "name", "phone", "created_at"],
    "stores": ["id", "code", "name", "created_at"],
    "app_users": ["id", "username", "password", "role", "name", "created_at"],
    "chat_messages": ["id", "sender_id", "receiver_id", "content", "is_read", "created_at"],
    "group_messages": ["id", "sender_id", "content", "created_at"],
    "import_history": [
        "id",
        "filename",
        "total_rows",
        "new_orders",
        "changed_orders",
        "unchanged_orders",
        "protected_orders",
        "imported_by",
        "imported_at",
    ],
}

TABLE_ORDER_BY = {
    "orders": "id ASC",
    "trucks": "number ASC",
    "stores": "code ASC",
    "app_users": "username ASC",
    "chat_messages": "created_at ASC",
    "group_messages": "created_at ASC",
    "import_history": "imported_at DESC",
}

# Text columns that are stored as NULL when empty and read back as "".
ORDER_TEXT_COLUMNS = {
    "service_date",
    "zip_code",
    "city",
    "province",
    "address",
    "notes",
    "phone1",
    "phone2",
}
ORDER_OPTIONAL_COLUMNS = {"truck_id", "store", "updated_at", "updated_by"}

# Columns never rewritten by an upsert once the row exists.
INSERT_ONLY_COLUMNS = {"id", "created_at"}


def get_connection():
    timeout_sec_raw = os.environ.get("SQLITE_BUSY_TIMEOUT_SEC", "30")
    try:
        timeout_sec = max(float(timeout_sec_raw), 1.0)
    except (TypeError, ValueError):
        timeout_sec = 30.0
    timeout_ms = int(timeout_sec * 1000)

    connection = sqlite3.connect(DB_PATH, timeout=timeout_sec)
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA journal_mode=WAL")
    connection.execute("PRAGMA synchronous=NORMAL")
    connection.execute(f"PRAGMA busy_timeout={timeout_ms}")
    return connection


def _now_iso():
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _chunked(values, size=900):
    if not values:
        return []
    return [values[i : i + size] for i in range(0, len(values), size)]


def _get_columns(connection, table_name):
    rows = connection.execute(f"PRAGMA table_info({table_name})").fetchall()
    return {row["name"] for row in rows}


def _ensure_column(connection, table_name, column_name, ddl):
    columns = _get_columns(connection, table_name)
    if column_name not in columns:
        connection.execute(f"ALTER TABLE {table_name} ADD COLUMN {ddl}")


def _require_table(table_name):
    if table_name not in TABLE_COLUMNS:
        raise ValueError(f"Unknown table: {table_name}")
    return TABLE_COLUMNS[table_name]


def _to_db_value(table_name, column, value):
    if table_name != "orders":
        return value
    if column in ORDER_TEXT_COLUMNS or column in ORDER_OPTIONAL_COLUMNS:
        if value is None:
            return None
        text = str(value).strip()
        return text or None
    return value


def _from_db_row(table_name, row):
    record = dict(row)
    if table_name != "orders":
        return record
    for column in ORDER_TEXT_COLUMNS:
        if record.get(column) is None:
            record[column] = ""
    for column in ("total_amount", "pending_payment"):
        try:
            record[column] = float(record.get(column) or 0)
        except (TypeError, ValueError):
            record[column] = 0.0
    for column in ORDER_OPTIONAL_COLUMNS:
        if not record.get(column):
            record[column] = None
    return record


def init_db():
    with get_connection() as connection:
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS orders (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL DEFAULT 'UNREVIEWED',
                service_date TEXT,
                total_amount REAL NOT NULL DEFAULT 0,
                pending_payment REAL NOT NULL DEFAULT 0,
                zip_code TEXT,
                city TEXT,
                province TEXT,
                address TEXT,
                notes TEXT,
                phone1 TEXT,
                phone2 TEXT,
                truck_id TEXT,
                store TEXT,
                updated_at TEXT,
                updated_by TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        _ensure_column(connection, "orders", "store", "store TEXT")
        _ensure_column(connection, "orders", "updated_by", "updated_by TEXT")
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_orders_truck_date ON orders (truck_id, service_date)"
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS trucks (
                id TEXT PRIMARY KEY,
                number TEXT NOT NULL,
                name TEXT NOT NULL,
                phone TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS stores (
                id TEXT PRIMARY KEY,
                code TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS app_users (
                id TEXT PRIMARY KEY,
                username TEXT NOT NULL UNIQUE,
                password TEXT NOT NULL,
                role TEXT NOT NULL,
                name TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS chat_messages (
                id TEXT PRIMARY KEY,
                sender_id TEXT NOT NULL,
                receiver_id TEXT NOT NULL,
                content TEXT NOT NULL,
                is_read INTEGER DEFAULT 0,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS group_messages (
                id TEXT PRIMARY KEY,
                sender_id TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        connection.execute(
            """
            CREATE TABLE IF NOT EXISTS import_history (
                id TEXT PRIMARY KEY,
                filename TEXT,
                total_rows INTEGER,
                new_orders INTEGER,
                changed_orders INTEGER,
                unchanged_orders INTEGER,
                protected_orders INTEGER,
                imported_by TEXT,
                imported_at TEXT NOT NULL
            )
            """
        )
        connection.commit()


def list_rows(table_name, where=None, params=None, order_by=None):
    _require_table(table_name)
    where_clause = f"WHERE {where}" if where else ""
    order_clause = order_by or TABLE_ORDER_BY.get(table_name, "id ASC")
    with get_connection() as connection:
        rows = connection.execute(
            f"SELECT * FROM {table_name} {where_clause} ORDER BY {order_clause}",
            params or [],
        ).fetchall()
        return [_from_db_row(table_name, row) for row in rows]


def get_row(table_name, row_id):
    _require_table(table_name)
    with get_connection() as connection:
        row = connection.execute(
            f"SELECT * FROM {table_name} WHERE id = ?",
            (row_id,),
        ).fetchone()
        return _from_db_row(table_name, row) if row else None


def upsert_rows(table_name, rows, conflict_key="id"):
    """Insert or overwrite rows keyed by ``conflict_key`` in one transaction.

    Last write wins: there is no version check against concurrent editors.
    """
    columns = _require_table(table_name)
    if not rows:
        return 0
    present = [column for column in columns if any(column in row for row in rows)]
    if conflict_key not in present:
        raise ValueError(f"Rows must carry the conflict key '{conflict_key}'.")
    if "created_at" in columns and "created_at" not in present:
        present.append("created_at")

    created_at = _now_iso()
    values = []
    for row in rows:
        record = []
        for column in present:
            if column == "created_at":
                record.append(row.get("created_at") or created_at)
            else:
                record.append(_to_db_value(table_name, column, row.get(column)))
        values.append(tuple(record))

    column_list = ", ".join(present)
    placeholders = ", ".join("?" for _ in present)
    update_columns = [
        column for column in present if column not in INSERT_ONLY_COLUMNS and column != conflict_key
    ]
    if update_columns:
        assignments = ", ".join(f"{column} = excluded.{column}" for column in update_columns)
        conflict_clause = f"ON CONFLICT({conflict_key}) DO UPDATE SET {assignments}"
    else:
        conflict_clause = f"ON CONFLICT({conflict_key}) DO NOTHING"

    with get_connection() as connection:
        connection.executemany(
            f"INSERT INTO {table_name} ({column_list}) VALUES ({placeholders}) {conflict_clause}",
            values,
        )
        connection.commit()
    return len(values)


def update_rows(table_name, ids, patch, expected_count=None):
    """Apply ``patch`` to every row whose id is in ``ids`` as one transaction.

    When ``expected_count`` is given and the number of touched rows differs,
    the whole update is rolled back and ``sqlite3.IntegrityError`` is raised.
    """
    columns = _require_table(table_name)
    cleaned_ids = [str(value).strip() for value in ids or [] if str(value or "").strip()]
    if not cleaned_ids or not patch:
        return 0
    unknown = [column for column in patch if column not in columns or column in INSERT_ONLY_COLUMNS]
    if unknown:
        raise ValueError(f"Cannot update columns {unknown} on {table_name}.")

    set_columns = list(patch.keys())
    assignments = ", ".join(f"{column} = ?" for column in set_columns)
    set_values = [_to_db_value(table_name, column, patch[column]) for column in set_columns]

    connection = get_connection()
    try:
        affected = 0
        for chunk in _chunked(cleaned_ids):
            placeholders = ", ".join("?" for _ in chunk)
            cursor = connection.execute(
                f"UPDATE {table_name} SET {assignments} WHERE id IN ({placeholders})",
                set_values + chunk,
            )
            affected += cursor.rowcount
        if expected_count is not None and affected != expected_count:
            connection.rollback()
            raise sqlite3.IntegrityError(
                f"Expected to update {expected_count} rows in {table_name}, matched {affected}."
            )
        connection.commit()
        return affected
    except sqlite3.Error:
        connection.rollback()
        raise
    finally:
        connection.close()


def insert_row(table_name, row):
    columns = _require_table(table_name)
    record = {column: row.get(column) for column in columns if column in row}
    if not record.get("id"):
        record["id"] = uuid.uuid4().hex
    if "created_at" in columns and not record.get("created_at"):
        record["created_at"] = _now_iso()
    column_list = ", ".join(record.keys())
    placeholders = ", ".join("?" for _ in record)
    values = [_to_db_value(table_name, column, value) for column, value in record.items()]
    with get_connection() as connection:
        connection.execute(
            f"INSERT INTO {table_name} ({column_list}) VALUES ({placeholders})",
            values,
        )
        connection.commit()
    return get_row(table_name, record["id"])


def delete_row(table_name, row_id):
    if table_name == "orders":
        raise ValueError("Orders are not deleted.")
    _require_table(table_name)
    with get_connection() as connection:
        connection.execute(f"DELETE FROM {table_name} WHERE id = ?", (row_id,))
        connection.commit()


def count_users():
    with get_connection() as connection:
        row = connection.execute("SELECT COUNT(*) AS total FROM app_users").fetchone()
        return row["total"] if row else 0


def ensure_default_admin(username, password, name="Administrador"):
    if count_users():
        return None
    return insert_row(
        "app_users",
        {
            "username": username,
            "password": generate_password_hash(password),
            "role": "admin",
            "name": name,
        },
    )
