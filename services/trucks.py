import re

from services import validation

_DIGITS_RE = re.compile(r"(\d+)")


def natural_sort_key(value):
    """Sort key that orders embedded numbers by value ("C-2" before "C-10")."""
    parts = _DIGITS_RE.split(str(value or "").strip().lower())
    return [(0, int(part), "") if part.isdigit() else (1, 0, part) for part in parts]


def sort_trucks(trucks):
    return sorted(trucks, key=lambda truck: natural_sort_key(truck.get("number")))


def list_trucks(repository):
    return sort_trucks(repository.list_all("trucks"))


def get_truck(repository, truck_id):
    return repository.get("trucks", truck_id) if truck_id else None


def truck_label(truck_id, trucks):
    for truck in trucks:
        if truck.get("id") == truck_id:
            return f"{truck.get('number')} - {truck.get('name')}".strip(" -")
    return truck_id or ""


def create_truck(repository, form):
    number = (form.get("number") or "").strip()
    name = (form.get("name") or "").strip()
    phone = (form.get("phone") or "").strip()

    errors = {}
    validation.validate_required(number, "number", errors)
    validation.validate_required(name, "name", errors)
    if number and any(
        (truck.get("number") or "").strip().lower() == number.lower()
        for truck in repository.list_all("trucks")
    ):
        errors["number"] = "A truck with this number already exists."

    if errors:
        return {
            "errors": errors,
            "form_data": {"number": number, "name": name, "phone": phone},
            "truck": None,
        }

    truck = repository.insert_one(
        "trucks", {"number": number, "name": name, "phone": phone or None}
    )
    return {"errors": {}, "form_data": {}, "truck": truck}


def delete_truck(repository, truck_id):
    # Orders keep their truck_id; a missing truck later shows as the raw id.
    repository.delete("trucks", truck_id)
