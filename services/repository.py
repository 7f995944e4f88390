"""Backing store access for the order engine.

``OrderRepository`` is the seam between the engines and persistence. The
SQLite implementation delegates to :mod:`db`; ``InMemoryRepository`` keeps
rows in dictionaries and can be told to fail writes, which is how the
reconciliation and transfer paths are tested without a database.
"""

import copy
import logging
import sqlite3
import uuid
from datetime import datetime, timezone

import db

logger = logging.getLogger(__name__)


class StoreWriteError(Exception):
    def __init__(self, message, table=None):
        super().__init__(message)
        self.table = table


class OrderRepository:
    def list_all(self, table):
        raise NotImplementedError

    def get(self, table, row_id):
        raise NotImplementedError

    def upsert(self, table, rows, conflict_key="id"):
        raise NotImplementedError

    def update_where(self, table, ids, patch, expected_count=None):
        """Patch every row whose id is in ``ids``; all or nothing."""
        raise NotImplementedError

    def insert_one(self, table, row):
        raise NotImplementedError

    def delete(self, table, row_id):
        raise NotImplementedError

    def subscribe_insert(self, table):
        raise NotImplementedError


class SqliteRepository(OrderRepository):
    def __init__(self, relay=None):
        self.relay = relay

    def list_all(self, table):
        return db.list_rows(table)

    def get(self, table, row_id):
        return db.get_row(table, row_id)

    def upsert(self, table, rows, conflict_key="id"):
        try:
            return db.upsert_rows(table, rows, conflict_key=conflict_key)
        except sqlite3.Error as exc:
            logger.exception("Batch upsert into %s failed (%s rows).", table, len(rows or []))
            raise StoreWriteError(f"Could not save {table}: {exc}", table=table) from exc

    def update_where(self, table, ids, patch, expected_count=None):
        try:
            return db.update_rows(table, ids, patch, expected_count=expected_count)
        except sqlite3.Error as exc:
            logger.exception("Batch update on %s failed for %s ids.", table, len(ids or []))
            raise StoreWriteError(f"Could not update {table}: {exc}", table=table) from exc

    def insert_one(self, table, row):
        try:
            created = db.insert_row(table, row)
        except sqlite3.Error as exc:
            logger.exception("Insert into %s failed.", table)
            raise StoreWriteError(f"Could not insert into {table}: {exc}", table=table) from exc
        if self.relay is not None and created:
            self.relay.publish(table, created)
        return created

    def delete(self, table, row_id):
        try:
            db.delete_row(table, row_id)
        except sqlite3.Error as exc:
            logger.exception("Delete from %s failed for id=%s.", table, row_id)
            raise StoreWriteError(f"Could not delete from {table}: {exc}", table=table) from exc

    def subscribe_insert(self, table):
        if self.relay is None:
            raise RuntimeError("No notification relay configured.")
        return self.relay.subscribe(table)


class InMemoryRepository(OrderRepository):
    def __init__(self, tables=None, relay=None):
        self.tables = {}
        for table, rows in (tables or {}).items():
            self.tables[table] = {row["id"]: copy.deepcopy(row) for row in rows}
        self.relay = relay
        self.fail_writes = False
        self.write_calls = []

    def _table(self, table):
        return self.tables.setdefault(table, {})

    def _record_write(self, operation, table):
        self.write_calls.append((operation, table))
        if self.fail_writes:
            raise StoreWriteError(f"Simulated {operation} failure on {table}.", table=table)

    def list_all(self, table):
        return [copy.deepcopy(row) for row in self._table(table).values()]

    def get(self, table, row_id):
        row = self._table(table).get(row_id)
        return copy.deepcopy(row) if row else None

    def upsert(self, table, rows, conflict_key="id"):
        self._record_write("upsert", table)
        staged = dict(self._table(table))
        for row in rows or []:
            key = row[conflict_key]
            merged = dict(staged.get(key) or {})
            merged.update(copy.deepcopy(row))
            staged[key] = merged
        self.tables[table] = staged
        return len(rows or [])

    def update_where(self, table, ids, patch, expected_count=None):
        self._record_write("update", table)
        rows = self._table(table)
        matched = [row_id for row_id in ids or [] if row_id in rows]
        if expected_count is not None and len(matched) != expected_count:
            raise StoreWriteError(
                f"Expected to update {expected_count} rows in {table}, matched {len(matched)}.",
                table=table,
            )
        for row_id in matched:
            rows[row_id].update(copy.deepcopy(patch))
        return len(matched)

    def insert_one(self, table, row):
        self._record_write("insert", table)
        record = copy.deepcopy(row)
        record.setdefault("id", uuid.uuid4().hex)
        if not record.get("id"):
            record["id"] = uuid.uuid4().hex
        record.setdefault(
            "created_at", datetime.now(timezone.utc).isoformat(timespec="seconds")
        )
        rows = self._table(table)
        if record["id"] in rows:
            raise StoreWriteError(f"Duplicate id {record['id']} in {table}.", table=table)
        rows[record["id"]] = record
        if self.relay is not None:
            self.relay.publish(table, copy.deepcopy(record))
        return copy.deepcopy(record)

    def delete(self, table, row_id):
        self._record_write("delete", table)
        self._table(table).pop(row_id, None)

    def subscribe_insert(self, table):
        if self.relay is None:
            raise RuntimeError("No notification relay configured.")
        return self.relay.subscribe(table)
