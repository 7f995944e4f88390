import csv
import logging
import re
from collections import Counter

import pandas as pd

from services import provinces
from services.orders import (
    STATUS_CLIENT_NOTICE,
    STATUS_PREPARING,
    STATUS_RTC,
    STATUS_SCHEDULED,
    STATUS_UNREVIEWED,
)

logger = logging.getLogger(__name__)

# Fixed column offsets of the dispatch export (0-indexed). The export tool
# owns this layout; every other column is ignored.
COLUMN_INDEX = {
    "id": 3,
    "status": 4,
    "service_date": 7,
    "total_amount": 17,
    "pending_payment": 19,
    "zip_code": 25,
    "city": 26,
    "notes": 33,
    "address": 34,
    "phone1": 36,
    "phone2": 37,
}

SAMPLE_COLUMN_COUNT = 40

_EDGE_QUOTES_RE = re.compile(r'^"|"$')


def map_status(value):
    label = (value or "").strip().lower()
    if label == "rtc":
        return STATUS_RTC
    if "cliente avisa" in label:
        return STATUS_CLIENT_NOTICE
    if "prep" in label:
        return STATUS_PREPARING
    if "agen" in label:
        return STATUS_SCHEDULED
    return STATUS_UNREVIEWED


def parse_amount(value):
    """Parse a currency amount written with a decimal comma.

    ``"1.234,56"`` and ``"200,00"`` use the export's locale; values without a
    comma are read as plain floats. Anything unparseable is ``0.0``.
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return 0.0 if pd.isna(value) else float(value)
    text = str(value).strip().replace("€", "").replace(" ", "")
    if not text:
        return 0.0
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    try:
        parsed = float(text)
    except ValueError:
        return 0.0
    if pd.isna(parsed):
        return 0.0
    return parsed


def parse_service_date(value):
    text = (value or "").strip()
    if not text:
        return ""
    parsed = pd.to_datetime(text, format="%d/%m/%Y", errors="coerce")
    if pd.isna(parsed):
        return ""
    return parsed.strftime("%Y-%m-%d")


def detect_delimiter(text):
    return ";" if ";" in text else ","


def decode_bytes(raw):
    """Exports arrive as UTF-8 (often with a BOM) or as latin-1 from older tools."""
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


class OrderImporter:
    def parse_csv(self, file_stream):
        raw = file_stream.read() if hasattr(file_stream, "read") else file_stream
        text = decode_bytes(raw)
        orders = self.decode(text)
        return {
            "orders": orders,
            "total_rows": len(orders),
            "orders_by_status": self._count_by_field(orders, "status"),
            "orders_by_province": self._count_by_field(orders, "province"),
        }

    def decode(self, text):
        if not text:
            return []
        delimiter = detect_delimiter(text)
        lines = text.split("\n")
        data_lines = [
            (line_number, line.strip())
            for line_number, line in enumerate(lines)
            if line_number > 0 and line.strip()
        ]
        if not data_lines:
            return []

        rows = [self._split_line(line, delimiter) for _, line in data_lines]
        width = max(max(COLUMN_INDEX.values()) + 1, max(len(row) for row in rows))
        frame = pd.DataFrame(rows).reindex(columns=range(width)).fillna("")
        frame = frame.apply(lambda column: column.map(self._clean_value))

        decoded = pd.DataFrame(
            {field: frame[index] for field, index in COLUMN_INDEX.items()}
        )
        decoded["status"] = decoded["status"].map(map_status)
        decoded["service_date"] = decoded["service_date"].map(parse_service_date)
        decoded["total_amount"] = decoded["total_amount"].map(parse_amount)
        decoded["pending_payment"] = decoded["pending_payment"].map(parse_amount)
        decoded["zip_code"] = decoded["zip_code"].map(provinces.normalize_zip)
        decoded["province"] = decoded["zip_code"].map(provinces.resolve_province)

        orders = []
        for (line_number, _), record in zip(data_lines, decoded.to_dict(orient="records")):
            orders.append(
                {
                    "id": record["id"] or f"ID-{line_number}",
                    "status": record["status"],
                    "service_date": record["service_date"],
                    "total_amount": float(record["total_amount"]),
                    "pending_payment": float(record["pending_payment"]),
                    "zip_code": record["zip_code"],
                    "province": record["province"],
                    "city": record["city"],
                    "address": record["address"],
                    "notes": record["notes"],
                    "phone1": record["phone1"],
                    "phone2": record["phone2"],
                    "truck_id": None,
                    "store": None,
                    "updated_at": None,
                    "updated_by": None,
                }
            )
        logger.info("Decoded %s orders from CSV batch (delimiter=%r).", len(orders), delimiter)
        return orders

    def _split_line(self, line, delimiter):
        try:
            return next(csv.reader([line], delimiter=delimiter, quotechar='"'))
        except (csv.Error, StopIteration):
            logger.warning("Falling back to plain split for malformed CSV line.")
            return line.split(delimiter)

    def _clean_value(self, value):
        if value is None:
            return ""
        if isinstance(value, float) and pd.isna(value):
            return ""
        return _EDGE_QUOTES_RE.sub("", str(value).strip()).strip()

    def _count_by_field(self, orders, field):
        counts = Counter(order.get(field, "") for order in orders)
        return {key: count for key, count in counts.items() if key}


def generate_sample_csv():
    headers = ",".join(f"COL{index + 1}" for index in range(SAMPLE_COLUMN_COUNT))
    first = [""] * SAMPLE_COLUMN_COUNT
    first[COLUMN_INDEX["id"]] = "25092535"
    first[COLUMN_INDEX["status"]] = "Cliente Avisa"
    first[COLUMN_INDEX["service_date"]] = "01/12/2025"
    first[COLUMN_INDEX["total_amount"]] = '"200,00"'
    first[COLUMN_INDEX["pending_payment"]] = '"150,00"'
    first[COLUMN_INDEX["zip_code"]] = "28001"
    first[COLUMN_INDEX["city"]] = "Madrid"
    first[COLUMN_INDEX["notes"]] = "N"
    first[COLUMN_INDEX["address"]] = "Calle Ejemplo 1"
    first[COLUMN_INDEX["phone1"]] = "600000001"

    second = list(first)
    second[COLUMN_INDEX["id"]] = "26000223"
    second[COLUMN_INDEX["status"]] = "RTC"
    second[COLUMN_INDEX["service_date"]] = "15/12/2025"
    second[COLUMN_INDEX["total_amount"]] = '"500,00"'
    second[COLUMN_INDEX["pending_payment"]] = '"500,00"'
    second[COLUMN_INDEX["zip_code"]] = "08001"
    second[COLUMN_INDEX["city"]] = "Barcelona"

    return "\n".join([headers, ",".join(first), ",".join(second)])
