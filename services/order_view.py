from services.orders import STATUS_UNREVIEWED

SORT_FIELDS = ("service_date", "total_amount", "pending_payment", "id")
NUMERIC_SORT_FIELDS = {"total_amount", "pending_payment"}
SORT_DIRECTIONS = ("asc", "desc")
DEFAULT_SORT_KEY = "service_date"
DEFAULT_SORT_DIRECTION = "desc"

PAYMENT_FILTERS = ("all", "zero", "debt")
DATE_CONDITIONS = ("equal", "greater-than", "less-than")

DEFAULT_FILTERS = {
    "search": "",
    "status": "all",
    "province": "all",
    "city": "all",
    "store": "all",
    "payment": "all",
    "service_date": "",
    "date_condition": "equal",
}

SEARCH_FIELDS = ("id", "city", "address", "notes", "phone1", "zip_code")


def _is_active(value):
    return bool(value) and value != "all"


def _text(value):
    return "" if value is None else str(value)


def _amount(value):
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def available_provinces(orders):
    return sorted({order.get("province") for order in orders if order.get("province")})


def available_cities(orders, province="all"):
    scoped = orders
    if _is_active(province):
        scoped = [order for order in orders if order.get("province") == province]
    return sorted({order.get("city") for order in scoped if order.get("city")})


def normalize_filters(orders, filters=None):
    """Fill defaults and drop a city filter the active province cannot offer."""
    normalized = dict(DEFAULT_FILTERS)
    for key, value in (filters or {}).items():
        if key in normalized and value is not None:
            normalized[key] = str(value).strip()
    if normalized["payment"] not in PAYMENT_FILTERS:
        normalized["payment"] = "all"
    if normalized["date_condition"] not in DATE_CONDITIONS:
        normalized["date_condition"] = "equal"
    if _is_active(normalized["city"]):
        if normalized["city"] not in available_cities(orders, normalized["province"]):
            normalized["city"] = "all"
    return normalized


def _matches_date(order, service_date, condition):
    value = order.get("service_date") or ""
    if not value:
        return False
    # ISO dates compare correctly as strings.
    if condition == "greater-than":
        return value > service_date
    if condition == "less-than":
        return value < service_date
    return value == service_date


def matches_filters(order, filters):
    term = filters["search"].lower()
    if term and not any(term in _text(order.get(field)).lower() for field in SEARCH_FIELDS):
        return False
    if _is_active(filters["status"]) and order.get("status") != filters["status"]:
        return False
    if _is_active(filters["province"]) and order.get("province") != filters["province"]:
        return False
    if _is_active(filters["city"]) and order.get("city") != filters["city"]:
        return False
    if _is_active(filters["store"]) and (order.get("store") or "") != filters["store"]:
        return False
    pending = _amount(order.get("pending_payment"))
    if filters["payment"] == "zero" and pending != 0:
        return False
    if filters["payment"] == "debt" and not pending > 0:
        return False
    if filters["service_date"] and not _matches_date(
        order, filters["service_date"], filters["date_condition"]
    ):
        return False
    return True


def filter_orders(orders, filters=None):
    normalized = normalize_filters(orders, filters)
    return [order for order in orders if matches_filters(order, normalized)]


def sort_orders(orders, sort_key=DEFAULT_SORT_KEY, sort_direction=DEFAULT_SORT_DIRECTION):
    if sort_key not in SORT_FIELDS:
        sort_key = DEFAULT_SORT_KEY
    numeric = sort_key in NUMERIC_SORT_FIELDS

    def sort_value(order):
        value = order.get(sort_key)
        return _amount(value) if numeric else _text(value)

    # sorted() is stable in both directions, so ties keep their input order.
    return sorted(orders, key=sort_value, reverse=sort_direction == "desc")


def calculate_stats(orders):
    total_orders = len(orders)
    total_portfolio_value = sum(_amount(order.get("total_amount")) for order in orders)
    total_pending_amount = sum(_amount(order.get("pending_payment")) for order in orders)
    return {
        "total_orders": total_orders,
        "total_portfolio_value": total_portfolio_value,
        "total_pending_amount": total_pending_amount,
        "average_amount": total_portfolio_value / total_orders if total_orders else 0,
        "pending_count": sum(1 for order in orders if order.get("status") == STATUS_UNREVIEWED),
    }


def has_active_filters(filters, sort_key=DEFAULT_SORT_KEY, sort_direction=DEFAULT_SORT_DIRECTION):
    normalized = dict(DEFAULT_FILTERS)
    normalized.update({key: value for key, value in (filters or {}).items() if key in normalized})
    for key in ("status", "province", "city", "store", "payment"):
        if _is_active(normalized[key]):
            return True
    if normalized["search"] or normalized["service_date"]:
        return True
    return sort_key != DEFAULT_SORT_KEY or sort_direction != DEFAULT_SORT_DIRECTION


def build_view(orders, filters=None, sort_key=DEFAULT_SORT_KEY, sort_direction=DEFAULT_SORT_DIRECTION):
    normalized = normalize_filters(orders, filters)
    if sort_direction not in SORT_DIRECTIONS:
        sort_direction = DEFAULT_SORT_DIRECTION
    filtered = [order for order in orders if matches_filters(order, normalized)]
    ordered = sort_orders(filtered, sort_key, sort_direction)
    return {
        "orders": ordered,
        "stats": calculate_stats(ordered),
        "available_provinces": available_provinces(orders),
        "available_cities": available_cities(orders, normalized["province"]),
        "filters": normalized,
        "sort_key": sort_key if sort_key in SORT_FIELDS else DEFAULT_SORT_KEY,
        "sort_direction": sort_direction,
        "has_active_filters": has_active_filters(normalized, sort_key, sort_direction),
    }


def recent_edits(orders, limit=20):
    """Orders last touched by a person, newest first. Imports leave no editor."""
    edited = [order for order in orders if order.get("updated_at") and order.get("updated_by")]
    edited.sort(key=lambda order: order.get("updated_at"), reverse=True)
    return edited[:limit]
