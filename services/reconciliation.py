import logging

from services.order_importer import OrderImporter
from services.orders import STATUS_SCHEDULED, now_iso
from services.repository import StoreWriteError

logger = logging.getLogger(__name__)

# Fields an already scheduled order keeps when the same id is re-imported.
DISPATCH_PROTECTED_FIELDS = ("truck_id", "status", "updated_at", "updated_by")

DIFF_FIELDS = [
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
]


class ImportValidationError(Exception):
    def __init__(self, message, summary=None):
        super().__init__(message)
        self.summary = summary or {}


def _normalize_value(field, value):
    if field in {"total_amount", "pending_payment"}:
        try:
            return round(float(value or 0), 2)
        except (TypeError, ValueError):
            return 0.0
    if value is None:
        return ""
    return str(value).strip()


def diff_order(existing, incoming):
    changes = {}
    for field in DIFF_FIELDS:
        old = _normalize_value(field, existing.get(field))
        new = _normalize_value(field, incoming.get(field))
        if old != new:
            changes[field] = {"from": old, "to": new}
    return changes


def reconcile(existing, incoming, reconciled_at=None):
    """Merge an imported batch into the current orders.

    Returns the records to upsert, one per distinct incoming id. An order
    that is already SCHEDULED keeps its truck, status and edit stamp; every
    other field is refreshed from the import. Orders that are not scheduled
    are replaced outright and stamped with ``reconciled_at``.
    """
    reconciled_at = reconciled_at or now_iso()
    existing_map = {order.get("id"): order for order in existing or [] if order.get("id")}

    merged = {}
    for order in incoming or []:
        order_id = order.get("id")
        if not order_id:
            continue
        if order_id in merged:
            logger.warning("Order %s appears more than once in the batch; keeping the last row.", order_id)
        record = dict(order)
        prior = existing_map.get(order_id)
        if prior and prior.get("status") == STATUS_SCHEDULED:
            for field in DISPATCH_PROTECTED_FIELDS:
                record[field] = prior.get(field)
        else:
            record["updated_at"] = reconciled_at
            record["updated_by"] = None
        # The export has no store column; keep whatever store was assigned here.
        if prior and not record.get("store"):
            record["store"] = prior.get("store")
        merged[order_id] = record
    return list(merged.values())


def summarize_reconciliation(existing, merged):
    existing_map = {order.get("id"): order for order in existing or [] if order.get("id")}
    new_orders = 0
    changed_orders = 0
    unchanged_orders = 0
    protected_orders = 0
    changes = []
    for record in merged:
        prior = existing_map.get(record["id"])
        if not prior:
            new_orders += 1
            continue
        if prior.get("status") == STATUS_SCHEDULED:
            protected_orders += 1
        diff = diff_order(prior, record)
        if diff:
            changed_orders += 1
            changes.append({"id": record["id"], "changes": diff})
        else:
            unchanged_orders += 1
    return {
        "total_orders": len(merged),
        "new_orders": new_orders,
        "changed_orders": changed_orders,
        "unchanged_orders": unchanged_orders,
        "protected_orders": protected_orders,
        "changes": changes,
    }


def import_orders(order_store, text, filename="", actor=None):
    """Decode ``text``, reconcile it and write the batch as one upsert.

    Raises ``ImportValidationError`` when the file holds no data rows and
    ``StoreWriteError`` when the backing store rejects the batch. The store
    is re-read from the backing store in both the success and failure path.
    """
    incoming = OrderImporter().decode(text)
    if not incoming:
        raise ImportValidationError(
            "No valid data was found in the file.",
            summary={"filename": filename, "total_rows": 0},
        )

    existing = order_store.refresh()
    merged = reconcile(existing, incoming)
    summary = summarize_reconciliation(existing, merged)
    summary["filename"] = filename
    summary["total_rows"] = len(incoming)

    try:
        order_store.repository.upsert("orders", merged)
    except StoreWriteError:
        logger.exception("Import of %s failed; reloading orders from the store.", filename or "CSV batch")
        order_store.refresh()
        raise
    order_store.refresh()

    imported_at = now_iso()
    try:
        order_store.repository.insert_one(
            "import_history",
            {
                "filename": filename,
                "total_rows": summary["total_rows"],
                "new_orders": summary["new_orders"],
                "changed_orders": summary["changed_orders"],
                "unchanged_orders": summary["unchanged_orders"],
                "protected_orders": summary["protected_orders"],
                "imported_by": actor,
                "imported_at": imported_at,
            },
        )
    except StoreWriteError:
        logger.warning("Import of %s saved but its history entry could not be recorded.", filename)
    summary["imported_at"] = imported_at
    logger.info(
        "Imported %s orders (%s new, %s changed, %s protected).",
        summary["total_orders"],
        summary["new_orders"],
        summary["changed_orders"],
        summary["protected_orders"],
    )
    return summary
