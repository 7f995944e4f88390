import sqlite3
import unittest
import uuid

import db
from services.repository import SqliteRepository, StoreWriteError


def _seed_orders(*order_ids):
    db.upsert_rows(
        "orders",
        [
            {"id": order_id, "status": "SCHEDULED", "service_date": "2025-06-01", "truck_id": "T1"}
            for order_id in order_ids
        ],
    )


class UpdateRowsTests(unittest.TestCase):
    def setUp(self):
        db.init_db()
        suffix = uuid.uuid4().hex[:8]
        self.first_id = f"DB1-{suffix}"
        self.second_id = f"DB2-{suffix}"
        _seed_orders(self.first_id, self.second_id)
        self.patch = {"truck_id": "T2", "service_date": "2025-06-03"}

    def _assert_untouched(self):
        for order_id in (self.first_id, self.second_id):
            row = db.get_row("orders", order_id)
            self.assertEqual(row["truck_id"], "T1")
            self.assertEqual(row["service_date"], "2025-06-01")

    def test_count_mismatch_rolls_back_every_row(self):
        with self.assertRaises(sqlite3.IntegrityError):
            db.update_rows(
                "orders", [self.first_id, self.second_id, "ghost"], self.patch, expected_count=3
            )

        self._assert_untouched()

    def test_repository_reports_mismatch_as_store_write_error(self):
        repository = SqliteRepository()

        with self.assertRaises(StoreWriteError) as caught:
            repository.update_where(
                "orders", [self.first_id, self.second_id, "ghost"], self.patch, expected_count=3
            )

        self.assertEqual(caught.exception.table, "orders")
        self._assert_untouched()

    def test_matching_count_commits(self):
        updated = db.update_rows(
            "orders", [self.first_id, self.second_id], self.patch, expected_count=2
        )

        self.assertEqual(updated, 2)
        self.assertEqual(db.get_row("orders", self.first_id)["truck_id"], "T2")
        self.assertEqual(db.get_row("orders", self.second_id)["service_date"], "2025-06-03")
