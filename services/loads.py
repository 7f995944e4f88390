import calendar
import logging
import uuid
from datetime import datetime, timezone

from services import provinces, validation
from services.orders import INCIDENT_MARKER, STATUS_SCHEDULED, is_incident, now_iso
from services.repository import StoreWriteError
from services.trucks import sort_trucks

logger = logging.getLogger(__name__)

INCIDENT_ID_PREFIX = "INC"


class LoadTransferError(Exception):
    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = errors or {}


def is_scheduled(order):
    return order.get("status") == STATUS_SCHEDULED


def truck_load(orders, truck_id, service_date):
    """SCHEDULED orders that ``truck_id`` carries on ``service_date``."""
    if not truck_id:
        return []
    return [
        order
        for order in orders
        if is_scheduled(order)
        and order.get("truck_id") == truck_id
        and (order.get("service_date") or "") == service_date
    ]


def truck_loads(orders, service_date):
    grouped = {}
    for order in orders:
        if not is_scheduled(order) or (order.get("service_date") or "") != service_date:
            continue
        truck_id = order.get("truck_id")
        if truck_id:
            grouped.setdefault(truck_id, []).append(order)
    return grouped


def unassigned_scheduled(orders, service_date=None):
    """Scheduled orders with no truck; these need a dispatcher's attention."""
    return [
        order
        for order in orders
        if is_scheduled(order)
        and not order.get("truck_id")
        and (service_date is None or (order.get("service_date") or "") == service_date)
    ]


def summarize_load(load):
    return {
        "order_count": len(load),
        "incident_count": sum(1 for order in load if is_incident(order)),
        "total_amount": sum(float(order.get("total_amount") or 0) for order in load),
        "pending_payment": sum(float(order.get("pending_payment") or 0) for order in load),
    }


def load_board(orders, trucks, service_date):
    loads_by_truck = truck_loads(orders, service_date)
    board = []
    known_ids = set()
    for truck in sort_trucks(trucks):
        known_ids.add(truck.get("id"))
        load = loads_by_truck.get(truck.get("id"), [])
        board.append({"truck": truck, "orders": load, **summarize_load(load)})

    # Orders pointing at a truck that no longer exists still show, under the raw id.
    for truck_id in sorted(set(loads_by_truck) - known_ids):
        load = loads_by_truck[truck_id]
        board.append(
            {
                "truck": {"id": truck_id, "number": truck_id, "name": "", "phone": None},
                "orders": load,
                "missing_truck": True,
                **summarize_load(load),
            }
        )

    unassigned = unassigned_scheduled(orders, service_date)
    return {
        "service_date": service_date,
        "trucks": board,
        "unassigned": unassigned,
        "unassigned_count": len(unassigned),
    }


def truck_calendar(orders, truck_id, year, month):
    busy_days = {}
    for order in orders:
        if is_scheduled(order) and order.get("truck_id") == truck_id and order.get("service_date"):
            busy_days[order["service_date"]] = busy_days.get(order["service_date"], 0) + 1

    days_in_month = calendar.monthrange(year, month)[1]
    days = []
    for day in range(1, days_in_month + 1):
        date_key = f"{year:04d}-{month:02d}-{day:02d}"
        days.append({"date": date_key, "order_count": busy_days.get(date_key, 0)})
    return {
        "truck_id": truck_id,
        "year": year,
        "month": month,
        "first_weekday": calendar.monthrange(year, month)[0],
        "days": days,
    }


def transfer_loads(order_store, source_truck_id, dest_truck_id, source_date, target_date, actor=None):
    """Move a truck's whole load for one date to another truck and/or date.

    All matched orders are written in a single batch. An empty load is not an
    error and touches nothing.
    """
    errors = {}
    validation.validate_required(source_truck_id, "source_truck_id", errors)
    validation.validate_required(dest_truck_id, "dest_truck_id", errors)
    validation.validate_iso_date(source_date, "source_date", errors, required=True)
    validation.validate_iso_date(target_date, "target_date", errors, required=True)
    if errors:
        raise LoadTransferError("Transfer request is incomplete.", errors)

    result = {
        "moved": 0,
        "order_ids": [],
        "dest_truck_id": dest_truck_id,
        "target_date": target_date,
    }
    if source_truck_id == dest_truck_id and source_date == target_date:
        return result

    selected = truck_load(order_store.refresh(), source_truck_id, source_date)
    if not selected:
        return result

    order_ids = [order["id"] for order in selected]
    patch = {
        "truck_id": dest_truck_id,
        "service_date": target_date,
        "updated_at": now_iso(),
        "updated_by": actor,
    }
    try:
        order_store.repository.update_where(
            "orders", order_ids, patch, expected_count=len(order_ids)
        )
    except StoreWriteError:
        logger.exception(
            "Transfer of %s orders from truck %s (%s) to %s (%s) failed.",
            len(order_ids),
            source_truck_id,
            source_date,
            dest_truck_id,
            target_date,
        )
        order_store.refresh()
        raise
    order_store.refresh()
    logger.info(
        "Moved %s orders from truck %s (%s) to %s (%s).",
        len(order_ids),
        source_truck_id,
        source_date,
        dest_truck_id,
        target_date,
    )
    result["moved"] = len(order_ids)
    result["order_ids"] = order_ids
    return result


def build_incident_id():
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{INCIDENT_ID_PREFIX}-{stamp}-{uuid.uuid4().hex[:6].upper()}"


def register_incident(
    order_store,
    truck_id,
    service_date,
    description,
    actor=None,
    zip_code="",
    city="",
    address="",
):
    """Add an incident record to a truck's load; it never merges with an order."""
    description = (description or "").strip()
    zip_code = provinces.normalize_zip(zip_code)
    errors = {}
    validation.validate_required(truck_id, "truck_id", errors)
    validation.validate_iso_date(service_date, "service_date", errors, required=True)
    validation.validate_required(description, "description", errors)
    validation.validate_zip_code(zip_code, "zip_code", errors)
    if errors:
        return {"errors": errors, "order": None}

    incident = {
        "id": build_incident_id(),
        "status": STATUS_SCHEDULED,
        "service_date": service_date,
        "total_amount": 0.0,
        "pending_payment": 0.0,
        "zip_code": zip_code,
        "province": provinces.resolve_province(zip_code),
        "city": (city or "").strip(),
        "address": (address or "").strip(),
        "notes": f"{INCIDENT_MARKER} {description}",
        "phone1": "",
        "phone2": "",
        "truck_id": truck_id,
        "store": None,
        "updated_at": now_iso(),
        "updated_by": actor,
    }
    try:
        created = order_store.repository.insert_one("orders", incident)
    except StoreWriteError:
        order_store.refresh()
        raise
    order_store.refresh()
    return {"errors": {}, "order": created}
