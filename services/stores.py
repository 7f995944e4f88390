from services import validation


def list_stores(repository):
    return sorted(repository.list_all("stores"), key=lambda store: (store.get("code") or "").upper())


def store_display_name(code, stores):
    if not code:
        return ""
    for store in stores:
        if store.get("code") == code:
            return store.get("name") or code
    return code


def create_store(repository, form):
    code = (form.get("code") or "").strip().upper()
    name = (form.get("name") or "").strip()

    errors = {}
    validation.validate_required(code, "code", errors)
    validation.validate_required(name, "name", errors)
    if code and any((store.get("code") or "").upper() == code for store in repository.list_all("stores")):
        errors["code"] = "A store with this code already exists."

    if errors:
        return {"errors": errors, "form_data": {"code": code, "name": name}, "store": None}

    store = repository.insert_one("stores", {"code": code, "name": name})
    return {"errors": {}, "form_data": {}, "store": store}


def delete_store(repository, store_id):
    repository.delete("stores", store_id)
