import io
import unittest

from services.order_importer import (
    COLUMN_INDEX,
    OrderImporter,
    generate_sample_csv,
    map_status,
    parse_amount,
    parse_service_date,
)
from services.orders import (
    STATUS_CLIENT_NOTICE,
    STATUS_PREPARING,
    STATUS_RTC,
    STATUS_SCHEDULED,
    STATUS_UNREVIEWED,
)

HEADER = ";".join(f"H{index}" for index in range(40))


def _line(delimiter=";", **values):
    row = [""] * 40
    for field, value in values.items():
        row[COLUMN_INDEX[field]] = value
    return delimiter.join(row)


class OrderImporterDecodeTests(unittest.TestCase):
    def test_one_order_per_data_line_in_input_order(self):
        text = "\n".join(
            [
                HEADER,
                _line(id="100", status="RTC", zip_code="28001", city="Madrid"),
                "",
                _line(id="101", status="Agendado", zip_code="8001", city="Barcelona"),
                _line(id="102", status="Pendiente"),
            ]
        )
        orders = OrderImporter().decode(text)

        self.assertEqual([order["id"] for order in orders], ["100", "101", "102"])
        self.assertEqual(orders[0]["province"], "Madrid")
        self.assertEqual(orders[1]["zip_code"], "08001")
        self.assertEqual(orders[1]["province"], "Barcelona")
        self.assertEqual(orders[1]["status"], STATUS_SCHEDULED)
        self.assertEqual(orders[2]["status"], STATUS_UNREVIEWED)
        for order in orders:
            self.assertIsNone(order["truck_id"])
            self.assertIsNone(order["store"])
            self.assertIsNone(order["updated_at"])

    def test_amounts_with_decimal_comma_and_thousands_dot(self):
        text = "\n".join(
            [HEADER, _line(id="7", total_amount="1.234,56", pending_payment="200,00")]
        )
        order = OrderImporter().decode(text)[0]

        self.assertAlmostEqual(order["total_amount"], 1234.56)
        self.assertAlmostEqual(order["pending_payment"], 200.0)

    def test_quoted_comma_amount_in_comma_delimited_file(self):
        header = ",".join(f"H{index}" for index in range(40))
        text = "\n".join(
            [header, _line(delimiter=",", id="8", total_amount='"1.500,25"', city='"Sevilla"')]
        )
        order = OrderImporter().decode(text)[0]

        self.assertAlmostEqual(order["total_amount"], 1500.25)
        self.assertEqual(order["city"], "Sevilla")

    def test_missing_id_falls_back_to_line_number(self):
        text = "\n".join([HEADER, "", _line(city="Toledo")])
        orders = OrderImporter().decode(text)

        self.assertEqual(len(orders), 1)
        self.assertEqual(orders[0]["id"], "ID-2")

    def test_bad_dates_become_empty(self):
        text = "\n".join(
            [
                HEADER,
                _line(id="1", service_date="05/03/2025"),
                _line(id="2", service_date="31/02/2025"),
                _line(id="3", service_date="mañana"),
            ]
        )
        orders = OrderImporter().decode(text)

        self.assertEqual(orders[0]["service_date"], "2025-03-05")
        self.assertEqual(orders[1]["service_date"], "")
        self.assertEqual(orders[2]["service_date"], "")

    def test_short_rows_do_not_raise(self):
        text = "\n".join([HEADER, "a;b;c;42;RTC"])
        orders = OrderImporter().decode(text)

        self.assertEqual(orders[0]["id"], "42")
        self.assertEqual(orders[0]["status"], STATUS_RTC)
        self.assertEqual(orders[0]["city"], "")
        self.assertEqual(orders[0]["total_amount"], 0.0)

    def test_header_only_and_empty_input(self):
        self.assertEqual(OrderImporter().decode(HEADER), [])
        self.assertEqual(OrderImporter().decode(""), [])

    def test_parse_csv_reads_latin1_bytes(self):
        text = "\n".join([HEADER, _line(id="9", city="Logroño", zip_code="26001")])
        summary = OrderImporter().parse_csv(io.BytesIO(text.encode("latin-1")))

        self.assertEqual(summary["total_rows"], 1)
        self.assertEqual(summary["orders"][0]["city"], "Logroño")
        self.assertEqual(summary["orders_by_province"], {"La Rioja": 1})

    def test_sample_csv_round_trips_through_decoder(self):
        orders = OrderImporter().decode(generate_sample_csv())

        self.assertEqual(len(orders), 2)
        self.assertEqual(orders[0]["status"], STATUS_CLIENT_NOTICE)
        self.assertAlmostEqual(orders[0]["total_amount"], 200.0)
        self.assertEqual(orders[1]["province"], "Barcelona")


def test_map_status_labels():
    assert map_status("RTC") == STATUS_RTC
    assert map_status("cliente avisa") == STATUS_CLIENT_NOTICE
    assert map_status("En preparación") == STATUS_PREPARING
    assert map_status("AGENDADO") == STATUS_SCHEDULED
    assert map_status("") == STATUS_UNREVIEWED
    assert map_status("Pendiente revisar") == STATUS_UNREVIEWED


def test_parse_amount_edge_cases():
    assert parse_amount("200.5") == 200.5
    assert parse_amount("") == 0.0
    assert parse_amount("n/a") == 0.0
    assert parse_amount(None) == 0.0


def test_parse_service_date_rejects_iso_input():
    assert parse_service_date("2025-03-05") == ""
