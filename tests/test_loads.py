import unittest

from services import loads
from services.orders import INCIDENT_MARKER, STATUS_PREPARING, STATUS_SCHEDULED, OrderStore
from services.repository import InMemoryRepository, StoreWriteError


def _order(order_id, **overrides):
    order = {
        "id": order_id,
        "status": STATUS_SCHEDULED,
        "service_date": "2025-06-01",
        "total_amount": 50.0,
        "pending_payment": 10.0,
        "zip_code": "28001",
        "city": "Madrid",
        "province": "Madrid",
        "address": "",
        "notes": "",
        "phone1": "",
        "phone2": "",
        "truck_id": "T1",
        "store": None,
        "updated_at": None,
        "updated_by": None,
    }
    order.update(overrides)
    return order


def _fleet():
    return [
        {"id": "T10", "number": "C-10", "name": "Grande", "phone": None},
        {"id": "T1", "number": "C-1", "name": "Pequeño", "phone": "600"},
        {"id": "T2", "number": "C-2", "name": "Mediano", "phone": None},
    ]


class TransferLoadsTests(unittest.TestCase):
    def setUp(self):
        self.repository = InMemoryRepository(
            {
                "orders": [
                    _order("O1"),
                    _order("O2"),
                    _order("O3", service_date="2025-06-02"),
                    _order("O4", status=STATUS_PREPARING),
                    _order("O5", truck_id="T2"),
                ]
            }
        )
        self.store = OrderStore(self.repository)

    def test_transfer_moves_whole_load(self):
        result = loads.transfer_loads(
            self.store, "T1", "T2", "2025-06-01", "2025-06-03", actor="Ana"
        )

        self.assertEqual(result["moved"], 2)
        self.assertEqual(sorted(result["order_ids"]), ["O1", "O2"])
        self.assertEqual(self.repository.write_calls, [("update", "orders")])
        for order_id in ("O1", "O2"):
            moved = self.store.get(order_id)
            self.assertEqual(moved["truck_id"], "T2")
            self.assertEqual(moved["service_date"], "2025-06-03")
            self.assertEqual(moved["updated_by"], "Ana")
        self.assertEqual(loads.truck_load(self.store.all(), "T1", "2025-06-01"), [])
        self.assertEqual(self.store.get("O3")["truck_id"], "T1")
        self.assertEqual(self.store.get("O4")["truck_id"], "T1")

    def test_failed_transfer_leaves_every_order_in_place(self):
        before = self.store.refresh()
        self.repository.fail_writes = True

        with self.assertRaises(StoreWriteError):
            loads.transfer_loads(self.store, "T1", "T2", "2025-06-01", "2025-06-03")

        self.assertEqual(self.store.all(), before)

    def test_partial_match_is_rejected_by_expected_count(self):
        self.store.refresh()
        original_update = self.repository.update_where

        def drop_one(table, ids, patch, expected_count=None):
            return original_update(table, list(ids)[1:] + ["ghost"], patch, expected_count)

        self.repository.update_where = drop_one
        with self.assertRaises(StoreWriteError):
            loads.transfer_loads(self.store, "T1", "T2", "2025-06-01", "2025-06-03")

        self.assertEqual(self.store.get("O1")["truck_id"], "T1")
        self.assertEqual(self.store.get("O2")["truck_id"], "T1")

    def test_empty_selection_does_not_write(self):
        result = loads.transfer_loads(self.store, "T10", "T2", "2025-06-01", "2025-06-03")

        self.assertEqual(result["moved"], 0)
        self.assertEqual(self.repository.write_calls, [])

    def test_same_truck_and_date_is_a_no_op(self):
        result = loads.transfer_loads(self.store, "T1", "T1", "2025-06-01", "2025-06-01")

        self.assertEqual(result["moved"], 0)
        self.assertEqual(self.repository.write_calls, [])

    def test_same_truck_new_date_reschedules(self):
        result = loads.transfer_loads(self.store, "T1", "T1", "2025-06-01", "2025-06-05")

        self.assertEqual(result["moved"], 2)
        self.assertEqual(self.store.get("O1")["service_date"], "2025-06-05")

    def test_incomplete_request_raises(self):
        with self.assertRaises(loads.LoadTransferError) as caught:
            loads.transfer_loads(self.store, "", "T2", "2025-06-01", "01/06/2025")

        self.assertIn("source_truck_id", caught.exception.errors)
        self.assertIn("target_date", caught.exception.errors)

    def test_target_date_must_be_dashed_iso(self):
        for target_date in ("20250603", "2025-W23-2", "2025-06-31"):
            with self.assertRaises(loads.LoadTransferError) as caught:
                loads.transfer_loads(self.store, "T1", "T2", "2025-06-01", target_date)
            self.assertIn("target_date", caught.exception.errors)

        self.assertEqual(self.repository.write_calls, [])
        self.assertEqual(self.store.get("O1")["service_date"], "2025-06-01")


class IncidentTests(unittest.TestCase):
    def test_incident_joins_the_truck_load(self):
        repository = InMemoryRepository({"orders": [_order("O1")]})
        store = OrderStore(repository)

        result = loads.register_incident(
            store, "T1", "2025-06-01", "Cliente ausente", actor="Luis", zip_code="8001"
        )

        incident = result["order"]
        self.assertEqual(result["errors"], {})
        self.assertTrue(incident["id"].startswith("INC-"))
        self.assertEqual(incident["status"], STATUS_SCHEDULED)
        self.assertEqual(incident["total_amount"], 0.0)
        self.assertEqual(incident["notes"], f"{INCIDENT_MARKER} Cliente ausente")
        self.assertEqual(incident["province"], "Barcelona")
        load = loads.truck_load(store.all(), "T1", "2025-06-01")
        self.assertEqual(len(load), 2)
        self.assertEqual(loads.summarize_load(load)["incident_count"], 1)

    def test_incident_requires_description(self):
        repository = InMemoryRepository()
        result = loads.register_incident(OrderStore(repository), "T1", "2025-06-01", "  ")

        self.assertIn("description", result["errors"])
        self.assertEqual(repository.write_calls, [])


def test_incident_ids_are_unique():
    assert loads.build_incident_id() != loads.build_incident_id()


def test_load_board_sorts_naturally_and_shows_dangling_trucks():
    orders = [
        _order("O1", truck_id="T2"),
        _order("O2", truck_id="GONE"),
        _order("O3", truck_id=None),
        _order("O4", truck_id="T10", service_date="2025-06-09"),
    ]
    board = loads.load_board(orders, _fleet(), "2025-06-01")

    numbers = [entry["truck"]["number"] for entry in board["trucks"]]
    assert numbers == ["C-1", "C-2", "C-10", "GONE"]
    assert board["trucks"][1]["order_count"] == 1
    assert board["trucks"][2]["order_count"] == 0
    assert board["trucks"][3]["missing_truck"] is True
    assert [order["id"] for order in board["unassigned"]] == ["O3"]


def test_truck_calendar_counts_scheduled_days():
    orders = [
        _order("O1", service_date="2024-02-29"),
        _order("O2", service_date="2024-02-29"),
        _order("O3", service_date="2024-02-10", status=STATUS_PREPARING),
        _order("O4", service_date="2024-03-01"),
    ]
    calendar_view = loads.truck_calendar(orders, "T1", 2024, 2)

    assert len(calendar_view["days"]) == 29
    by_date = {day["date"]: day["order_count"] for day in calendar_view["days"]}
    assert by_date["2024-02-29"] == 2
    assert by_date["2024-02-10"] == 0
    assert calendar_view["first_weekday"] == 3
