from werkzeug.security import check_password_hash, generate_password_hash

from services import validation

ROLE_ADMIN = "admin"
ROLE_SUPERVISOR = "supervisor"
ROLE_OPERATOR = "operador"
ROLES = [ROLE_ADMIN, ROLE_SUPERVISOR, ROLE_OPERATOR]


def public_user(user):
    if not user:
        return None
    return {key: value for key, value in user.items() if key != "password"}


def list_users(repository):
    users = repository.list_all("app_users")
    return [public_user(user) for user in sorted(users, key=lambda user: user.get("username") or "")]


def authenticate(repository, username, password):
    """Credential table lookup against the stored hash; returns the user row or ``None``."""
    username = (username or "").strip()
    if not username:
        return None
    for user in repository.list_all("app_users"):
        if user.get("username") != username:
            continue
        stored = user.get("password") or ""
        if stored and check_password_hash(stored, password or ""):
            return user
        return None
    return None


def can_import(user):
    return bool(user) and user.get("role") in {ROLE_ADMIN, ROLE_SUPERVISOR}


def can_manage_users(user):
    return bool(user) and user.get("role") == ROLE_ADMIN


def create_user(repository, form):
    username = (form.get("username") or "").strip()
    password = form.get("password") or ""
    name = (form.get("name") or "").strip()
    role = (form.get("role") or ROLE_OPERATOR).strip().lower()

    errors = {}
    validation.validate_required(username, "username", errors)
    validation.validate_required(password, "password", errors)
    validation.validate_required(name, "name", errors)
    validation.validate_choice(role, ROLES, "role", errors)
    if username and any(user.get("username") == username for user in repository.list_all("app_users")):
        errors["username"] = "That username is already taken."

    if errors:
        return {
            "errors": errors,
            "form_data": {"username": username, "name": name, "role": role},
            "user": None,
        }

    user = repository.insert_one(
        "app_users",
        {
            "username": username,
            "password": generate_password_hash(password),
            "name": name,
            "role": role,
        },
    )
    return {"errors": {}, "form_data": {}, "user": public_user(user)}


def delete_user(repository, user_id, acting_user):
    if acting_user and acting_user.get("id") == user_id:
        return {"errors": {"user": "You cannot delete your own account."}}
    repository.delete("app_users", user_id)
    return {"errors": {}}
