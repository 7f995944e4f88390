import logging
import math
from datetime import datetime, timezone

from services import provinces, validation
from services.repository import StoreWriteError

logger = logging.getLogger(__name__)

STATUS_UNREVIEWED = "UNREVIEWED"
STATUS_RTC = "RTC"
STATUS_CLIENT_NOTICE = "CLIENT_NOTICE"
STATUS_PREPARING = "PREPARING"
STATUS_SCHEDULED = "SCHEDULED"
ORDER_STATUSES = [
    STATUS_UNREVIEWED,
    STATUS_RTC,
    STATUS_CLIENT_NOTICE,
    STATUS_PREPARING,
    STATUS_SCHEDULED,
]
STATUS_LABELS = {
    STATUS_UNREVIEWED: "Sin revisar",
    STATUS_RTC: "RTC",
    STATUS_CLIENT_NOTICE: "Cliente Avisa",
    STATUS_PREPARING: "En preparacion",
    STATUS_SCHEDULED: "Agendado",
}

INCIDENT_MARKER = "[INCIDENCIA]"

EDITABLE_FIELDS = [
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
AMOUNT_FIELDS = {"total_amount", "pending_payment"}
OPTIONAL_REFERENCE_FIELDS = {"truck_id", "store"}


class OrderNotFoundError(LookupError):
    pass


def now_iso():
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def is_committed(order):
    """True when the order already belongs to a driver's dispatch plan."""
    return order.get("status") == STATUS_SCHEDULED and bool(order.get("truck_id"))


def is_incident(order):
    return (order.get("notes") or "").startswith(INCIDENT_MARKER)


def _coerce_amount(value):
    if isinstance(value, (int, float)):
        amount = float(value)
    else:
        text = str(value or "").strip()
        if not text:
            return 0.0
        if "," in text:
            text = text.replace(".", "").replace(",", ".")
        amount = float(text)
    if not math.isfinite(amount):
        raise ValueError(f"Amount must be finite: {value!r}")
    return amount


def validate_order_edit(form):
    """Return ``(cleaned, errors)`` for the fields present in ``form``."""
    cleaned = {}
    errors = {}
    for field in EDITABLE_FIELDS:
        if field not in form:
            continue
        value = form.get(field)
        if field in AMOUNT_FIELDS:
            try:
                amount = _coerce_amount(value)
            except ValueError:
                errors[field] = f"{field.replace('_', ' ').title()} must be a number."
                continue
            validation.validate_non_negative_amount(amount, field, errors)
            if field not in errors:
                cleaned[field] = amount
            continue
        text = "" if value is None else str(value).strip()
        if field in OPTIONAL_REFERENCE_FIELDS:
            cleaned[field] = text or None
        else:
            cleaned[field] = text

    if "status" in cleaned:
        validation.validate_choice(cleaned["status"], ORDER_STATUSES, "status", errors)
    if "service_date" in cleaned:
        validation.validate_iso_date(cleaned["service_date"], "service_date", errors)
    if "zip_code" in cleaned:
        cleaned["zip_code"] = provinces.normalize_zip(cleaned["zip_code"])
        validation.validate_zip_code(cleaned["zip_code"], "zip_code", errors)
    return cleaned, errors


class OrderStore:
    """Session view of the order table, always re-read after writes."""

    def __init__(self, repository):
        self.repository = repository
        self._orders = []
        self._loaded = False

    def refresh(self):
        self._orders = self.repository.list_all("orders")
        self._loaded = True
        return list(self._orders)

    def all(self):
        if not self._loaded:
            self.refresh()
        return list(self._orders)

    def get(self, order_id):
        for order in self.all():
            if order.get("id") == order_id:
                return dict(order)
        return None

    def save_order(self, order_id, form, actor):
        existing = self.get(order_id)
        if not existing:
            raise OrderNotFoundError(order_id)
        cleaned, errors = validate_order_edit(form)
        if errors:
            return {"errors": errors, "order": existing}

        patch = dict(cleaned)
        # A typed province is an override until the zip code changes again.
        if "zip_code" in patch and patch["zip_code"] != existing.get("zip_code"):
            patch["province"] = provinces.resolve_province(patch["zip_code"])
        patch["updated_at"] = now_iso()
        patch["updated_by"] = actor
        self._write_patch(order_id, patch)
        return {"errors": {}, "order": self.get(order_id)}

    def update_status(self, order_id, status, actor):
        if not self.get(order_id):
            raise OrderNotFoundError(order_id)
        errors = {}
        validation.validate_choice(status, ORDER_STATUSES, "status", errors)
        if errors:
            return {"errors": errors, "order": self.get(order_id)}
        self._write_patch(
            order_id,
            {"status": status, "updated_at": now_iso(), "updated_by": actor},
        )
        return {"errors": {}, "order": self.get(order_id)}

    def _write_patch(self, order_id, patch):
        try:
            self.repository.update_where("orders", [order_id], patch, expected_count=1)
        except StoreWriteError:
            self.refresh()
            raise
        self.refresh()
