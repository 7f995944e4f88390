import unittest

from services.orders import (
    STATUS_RTC,
    STATUS_SCHEDULED,
    OrderNotFoundError,
    OrderStore,
    is_committed,
    validate_order_edit,
)
from services.repository import InMemoryRepository, StoreWriteError


def _order(order_id, **overrides):
    order = {
        "id": order_id,
        "status": STATUS_RTC,
        "service_date": "2025-06-01",
        "total_amount": 100.0,
        "pending_payment": 0.0,
        "zip_code": "28001",
        "city": "Madrid",
        "province": "Madrid",
        "address": "",
        "notes": "",
        "phone1": "",
        "phone2": "",
        "truck_id": None,
        "store": None,
        "updated_at": None,
        "updated_by": None,
    }
    order.update(overrides)
    return order


class OrderStoreEditTests(unittest.TestCase):
    def setUp(self):
        self.repository = InMemoryRepository({"orders": [_order("P1")]})
        self.store = OrderStore(self.repository)

    def test_zip_change_rederives_province_and_stamps_editor(self):
        result = self.store.save_order("P1", {"zip_code": "46001", "city": "Valencia"}, "Marta")

        order = result["order"]
        self.assertEqual(result["errors"], {})
        self.assertEqual(order["province"], "Valencia")
        self.assertEqual(order["updated_by"], "Marta")
        self.assertTrue(order["updated_at"])

    def test_typed_province_is_kept_while_zip_is_unchanged(self):
        result = self.store.save_order(
            "P1", {"zip_code": "28001", "province": "Comunidad de Madrid"}, "Marta"
        )

        self.assertEqual(result["order"]["province"], "Comunidad de Madrid")

    def test_amounts_accept_decimal_comma(self):
        result = self.store.save_order("P1", {"total_amount": "1.234,56"}, "Marta")

        self.assertAlmostEqual(result["order"]["total_amount"], 1234.56)

    def test_invalid_edit_is_not_written(self):
        result = self.store.save_order(
            "P1", {"pending_payment": "-5", "status": "LOST", "zip_code": "123"}, "Marta"
        )

        self.assertIn("pending_payment", result["errors"])
        self.assertIn("status", result["errors"])
        self.assertIn("zip_code", result["errors"])
        self.assertEqual(self.repository.write_calls, [])

    def test_service_date_must_be_dashed_iso(self):
        result = self.store.save_order("P1", {"service_date": "20250603"}, "Marta")

        self.assertIn("service_date", result["errors"])
        self.assertEqual(self.repository.write_calls, [])
        saved = self.store.save_order("P1", {"service_date": "2025-06-03"}, "Marta")
        self.assertEqual(saved["order"]["service_date"], "2025-06-03")

    def test_non_finite_amounts_are_rejected(self):
        for value in ("nan", "inf", "-inf", float("nan")):
            result = self.store.save_order("P1", {"total_amount": value}, "Marta")
            self.assertIn("total_amount", result["errors"])

        self.assertEqual(self.repository.write_calls, [])

    def test_blank_truck_clears_assignment(self):
        self.store.save_order("P1", {"truck_id": "T1"}, "Marta")
        self.store.save_order("P1", {"truck_id": "  "}, "Marta")

        self.assertIsNone(self.store.get("P1")["truck_id"])

    def test_unknown_order_raises(self):
        with self.assertRaises(OrderNotFoundError):
            self.store.save_order("nope", {"city": "x"}, "Marta")

    def test_status_update(self):
        result = self.store.update_status("P1", STATUS_SCHEDULED, "Marta")

        self.assertEqual(result["order"]["status"], STATUS_SCHEDULED)
        bad = self.store.update_status("P1", "DONE", "Marta")
        self.assertIn("status", bad["errors"])
        self.assertEqual(self.store.get("P1")["status"], STATUS_SCHEDULED)

    def test_failed_write_refreshes_and_raises(self):
        before = self.store.refresh()
        self.repository.fail_writes = True

        with self.assertRaises(StoreWriteError):
            self.store.save_order("P1", {"city": "Toledo"}, "Marta")

        self.assertEqual(self.store.all(), before)


def test_committed_requires_schedule_and_truck():
    assert is_committed(_order("A", status=STATUS_SCHEDULED, truck_id="T1"))
    assert not is_committed(_order("B", status=STATUS_SCHEDULED))
    assert not is_committed(_order("C", truck_id="T1"))


def test_validate_only_touches_fields_present():
    cleaned, errors = validate_order_edit({"notes": "  Llamar  "})

    assert errors == {}
    assert cleaned == {"notes": "Llamar"}


def test_store_refresh_sees_outside_writes():
    repository = InMemoryRepository({"orders": [_order("Q1")]})
    store = OrderStore(repository)
    assert len(store.all()) == 1

    repository.upsert("orders", [_order("Q2")])
    assert len(store.all()) == 1
    assert len(store.refresh()) == 2
