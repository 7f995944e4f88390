import io
import logging
import os
import re
import threading
from datetime import date, datetime, timedelta

from flask import (
    Flask,
    Response,
    abort,
    g,
    jsonify,
    request,
    session,
    url_for,
)
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

import db
from services import (
    chat,
    loads as load_service,
    order_view,
    stores as store_service,
    trucks as truck_service,
    users as user_service,
)
from services.notifications import NotificationContext, NotificationInbox, NotificationRelay
from services.order_importer import decode_bytes, generate_sample_csv
from services.orders import STATUS_LABELS, OrderNotFoundError, is_committed
from services.reconciliation import ImportValidationError, import_orders
from services.repository import SqliteRepository, StoreWriteError
from services.session import AppSession

logger = logging.getLogger(__name__)


def _is_local_dev_mode():
    env_hint = (os.environ.get("APP_ENV") or os.environ.get("FLASK_ENV") or "").strip().lower()
    if env_hint in {"dev", "development", "local", "test"}:
        return True
    return os.environ.get("FLASK_DEBUG", "").strip() == "1"


def _env_bool(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return bool(default)
    normalized = str(raw).strip().lower()
    if normalized in {"1", "true", "yes", "on", "y"}:
        return True
    if normalized in {"0", "false", "no", "off", "n"}:
        return False
    return bool(default)


app = Flask(__name__)
_configured_secret = (os.environ.get("FLASK_SECRET_KEY") or "").strip()
if not _configured_secret and not _is_local_dev_mode():
    raise RuntimeError(
        "FLASK_SECRET_KEY must be set for non-development environments."
    )
if not _configured_secret:
    _configured_secret = "dev-session-key"
    logger.warning("Using development session secret key.")
app.secret_key = _configured_secret
app.config.update(
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=_env_bool(
        "SESSION_COOKIE_SECURE",
        default=not _is_local_dev_mode(),
    ),
    MAX_CONTENT_LENGTH=int(os.environ.get("MAX_UPLOAD_BYTES", 10 * 1024 * 1024)),
)
_raw_web_concurrency = (os.environ.get("WEB_CONCURRENCY") or "").strip()
try:
    _configured_web_concurrency = int(_raw_web_concurrency) if _raw_web_concurrency else 1
except ValueError:
    _configured_web_concurrency = 1
if _configured_web_concurrency > 1:
    logger.warning(
        "WEB_CONCURRENCY=%s detected. Chat notifications are process-local; "
        "set WEB_CONCURRENCY=1 to avoid missed alerts across workers.",
        _configured_web_concurrency,
    )

SESSION_USER_ID_KEY = "user_id"
XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
HEADER_FILL = PatternFill(fill_type="solid", fgColor="FFE5E7EB")
HEADER_FONT = Font(bold=True, color="FF1F2937")

relay = NotificationRelay()
repository = SqliteRepository(relay=relay)
_INBOX_LOCK = threading.Lock()
_INBOXES = {}


def _seed_default_admin():
    username = (os.environ.get("DEFAULT_ADMIN_USERNAME") or "admin").strip()
    password = (os.environ.get("DEFAULT_ADMIN_PASSWORD") or "").strip()
    if not password and _is_local_dev_mode():
        password = "admin"
    if not password:
        if not db.count_users():
            logger.warning("No users exist and DEFAULT_ADMIN_PASSWORD is not set; nobody can log in.")
        return
    if db.ensure_default_admin(username, password):
        logger.info("Seeded default admin user '%s'.", username)


db.init_db()
_seed_default_admin()


def _json_session_expired_response():
    next_url = request.full_path if request else ""
    return jsonify(
        {
            "error": "Session expired",
            "redirect_url": url_for("login", next=next_url),
        }
    ), 401


def _current_session():
    if "app_session" in g:
        return g.app_session
    user_id = session.get(SESSION_USER_ID_KEY)
    user = repository.get("app_users", user_id) if user_id else None
    g.app_session = AppSession(user, repository) if user else None
    return g.app_session


def _require_session():
    if not _current_session():
        return _json_session_expired_response()
    return None


def _require_import_permission():
    if not _current_session().can_import:
        abort(403)


def _require_admin():
    if not _current_session().can_manage_users:
        abort(403)


def _request_data():
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form


def _default_loads_date():
    return (date.today() + timedelta(days=1)).isoformat()


def _read_order_filters(args):
    filters = {key: args.get(key) for key in order_view.DEFAULT_FILTERS if args.get(key) is not None}
    sort_key = args.get("sort") or order_view.DEFAULT_SORT_KEY
    sort_direction = (args.get("direction") or order_view.DEFAULT_SORT_DIRECTION).lower()
    return filters, sort_key, sort_direction


def _get_inbox(user_id):
    with _INBOX_LOCK:
        inbox = _INBOXES.get(user_id)
        if inbox is None:
            inbox = NotificationInbox(repository.subscribe_insert)
            _INBOXES[user_id] = inbox
        return inbox


@app.errorhandler(StoreWriteError)
def handle_store_write_error(exc):
    return jsonify({"error": f"The change could not be saved: {exc}", "refreshed": True}), 502


@app.errorhandler(OrderNotFoundError)
def handle_order_not_found(exc):
    return jsonify({"error": f"Order {exc} was not found."}), 404


@app.route("/login", methods=["POST"])
def login():
    payload = _request_data()
    if not db.count_users():
        return jsonify({"error": "No users are configured yet."}), 503
    user = user_service.authenticate(repository, payload.get("username"), payload.get("password") or "")
    if not user:
        return jsonify({"error": "Invalid username or password."}), 401
    session.clear()
    session[SESSION_USER_ID_KEY] = user["id"]
    _get_inbox(user["id"])
    return jsonify({"user": user_service.public_user(user)})


@app.route("/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"ok": True})


@app.route("/api/me")
def me():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    app_session = _current_session()
    return jsonify(
        {
            "user": user_service.public_user(app_session.user),
            "can_import": app_session.can_import,
            "can_manage_users": app_session.can_manage_users,
        }
    )


@app.route("/api/orders")
def orders():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    filters, sort_key, sort_direction = _read_order_filters(request.args)
    all_orders = _current_session().order_store.all()
    view = order_view.build_view(all_orders, filters, sort_key, sort_direction)
    stores = store_service.list_stores(repository)
    for order in view["orders"]:
        order["store_name"] = store_service.store_display_name(order.get("store"), stores)
        order["status_label"] = STATUS_LABELS.get(order.get("status"), order.get("status"))
        order["committed"] = is_committed(order)
    return jsonify(view)


@app.route("/api/orders/upload", methods=["POST"])
def api_orders_upload():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    _require_import_permission()
    file = request.files.get("file")
    if not file or not getattr(file, "filename", ""):
        return jsonify({"error": "Please choose a CSV file to upload."}), 400

    app_session = _current_session()
    text = decode_bytes(file.read())
    try:
        summary = import_orders(
            app_session.order_store,
            text,
            filename=file.filename,
            actor=app_session.actor_name,
        )
    except ImportValidationError as exc:
        response = {
            "error": str(exc),
            "blocked": True,
            "total_rows": exc.summary.get("total_rows") or 0,
            "new_orders": 0,
            "changed_orders": 0,
            "unchanged_orders": 0,
            "protected_orders": 0,
        }
        return jsonify(response), 400
    return jsonify(summary)


@app.route("/api/orders/sample.csv")
def orders_sample_csv():
    return Response(
        generate_sample_csv(),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=orders_sample.csv"},
    )


@app.route("/api/orders/recent")
def recent_orders():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    limit = request.args.get("limit", type=int) or 20
    edits = order_view.recent_edits(_current_session().order_store.all(), limit=limit)
    return jsonify({"orders": edits})


@app.route("/api/orders/<order_id>", methods=["GET", "POST"])
def order_detail(order_id):
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    app_session = _current_session()
    if request.method == "GET":
        order = app_session.order_store.get(order_id)
        if not order:
            raise OrderNotFoundError(order_id)
        return jsonify({"order": order})
    result = app_session.order_store.save_order(order_id, _request_data(), app_session.actor_name)
    if result["errors"]:
        return jsonify(result), 400
    return jsonify(result)


@app.route("/api/orders/<order_id>/status", methods=["POST"])
def order_status(order_id):
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    app_session = _current_session()
    status = (_request_data().get("status") or "").strip()
    result = app_session.order_store.update_status(order_id, status, app_session.actor_name)
    if result["errors"]:
        return jsonify(result), 400
    return jsonify(result)


def _autosize_columns(worksheet, minimum=10, maximum=48):
    for column_cells in worksheet.columns:
        width = max(len(str(cell.value or "")) for cell in column_cells)
        worksheet.column_dimensions[column_cells[0].column_letter].width = max(
            minimum, min(maximum, width + 2)
        )


def _write_header_row(worksheet, headers, row=1):
    for index, title in enumerate(headers, start=1):
        cell = worksheet.cell(row=row, column=index, value=title)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center")


def _build_orders_workbook(view_orders, stores, trucks):
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = "Pedidos"
    headers = [
        "Pedido",
        "Estado",
        "Fecha servicio",
        "Importe total",
        "Pendiente cobro",
        "CP",
        "Provincia",
        "Ciudad",
        "Dirección",
        "Teléfono 1",
        "Teléfono 2",
        "Camión",
        "Tienda",
        "Notas",
    ]
    _write_header_row(worksheet, headers)
    for order in view_orders:
        worksheet.append(
            [
                order.get("id"),
                STATUS_LABELS.get(order.get("status"), order.get("status")),
                order.get("service_date") or "",
                float(order.get("total_amount") or 0),
                float(order.get("pending_payment") or 0),
                order.get("zip_code") or "",
                order.get("province") or "",
                order.get("city") or "",
                order.get("address") or "",
                order.get("phone1") or "",
                order.get("phone2") or "",
                truck_service.truck_label(order.get("truck_id"), trucks),
                store_service.store_display_name(order.get("store"), stores),
                order.get("notes") or "",
            ]
        )
    for row in worksheet.iter_rows(min_row=2, min_col=4, max_col=5):
        for cell in row:
            cell.number_format = "#,##0.00"
    worksheet.freeze_panes = "A2"
    _autosize_columns(worksheet)
    return workbook


def _build_load_sheet_workbook(truck, service_date, load):
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = re.sub(r"[\[\]:*?/\\]", "_", f"Carga {truck.get('number')}")[:31]
    worksheet["A1"] = f"Hoja de carga - {truck.get('number')} {truck.get('name') or ''}".strip()
    worksheet["A1"].font = Font(bold=True, size=14)
    worksheet["A2"] = f"Fecha: {service_date}"
    worksheet["A3"] = f"Teléfono: {truck.get('phone') or '---'}"

    headers = ["#", "Pedido", "Ciudad", "Dirección", "CP", "Teléfono", "Pendiente cobro", "Notas"]
    _write_header_row(worksheet, headers, row=5)
    for index, order in enumerate(load, start=1):
        worksheet.append(
            [
                index,
                order.get("id"),
                order.get("city") or "",
                order.get("address") or "",
                order.get("zip_code") or "",
                order.get("phone1") or "",
                float(order.get("pending_payment") or 0),
                order.get("notes") or "",
            ]
        )
    summary = load_service.summarize_load(load)
    total_row = worksheet.max_row + 2
    worksheet.cell(row=total_row, column=6, value="Total pendiente").font = HEADER_FONT
    worksheet.cell(row=total_row, column=7, value=summary["pending_payment"]).font = HEADER_FONT
    for row in worksheet.iter_rows(min_row=6, min_col=7, max_col=7):
        for cell in row:
            cell.number_format = "#,##0.00"
    _autosize_columns(worksheet)
    return workbook


def _xlsx_response(workbook, filename):
    output = io.BytesIO()
    workbook.save(output)
    output.seek(0)
    return Response(
        output.getvalue(),
        mimetype=XLSX_MIMETYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@app.route("/api/orders/export.xlsx")
def export_orders():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    filters, sort_key, sort_direction = _read_order_filters(request.args)
    view = order_view.build_view(
        _current_session().order_store.all(), filters, sort_key, sort_direction
    )
    workbook = _build_orders_workbook(
        view["orders"],
        store_service.list_stores(repository),
        truck_service.list_trucks(repository),
    )
    return _xlsx_response(workbook, f"pedidos_{date.today().isoformat()}.xlsx")


@app.route("/api/loads")
def loads():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    service_date = (request.args.get("date") or "").strip() or _default_loads_date()
    board = load_service.load_board(
        _current_session().order_store.all(),
        truck_service.list_trucks(repository),
        service_date,
    )
    selected_truck_id = (request.args.get("truck_id") or "").strip()
    if selected_truck_id:
        board["selected_truck_id"] = selected_truck_id
    return jsonify(board)


@app.route("/api/loads/transfer", methods=["POST"])
def transfer_loads():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    app_session = _current_session()
    payload = _request_data()
    try:
        result = load_service.transfer_loads(
            app_session.order_store,
            (payload.get("source_truck_id") or "").strip(),
            (payload.get("dest_truck_id") or "").strip(),
            (payload.get("source_date") or "").strip(),
            (payload.get("target_date") or "").strip(),
            actor=app_session.actor_name,
        )
    except load_service.LoadTransferError as exc:
        return jsonify({"error": str(exc), "errors": exc.errors}), 400
    return jsonify(result)


@app.route("/api/loads/sheet.xlsx")
def load_sheet_export():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    truck_id = (request.args.get("truck_id") or "").strip()
    service_date = (request.args.get("date") or "").strip() or _default_loads_date()
    truck = truck_service.get_truck(repository, truck_id)
    if not truck:
        abort(404)
    load = load_service.truck_load(_current_session().order_store.all(), truck_id, service_date)
    workbook = _build_load_sheet_workbook(truck, service_date, load)
    safe_number = re.sub(r"[^A-Za-z0-9_-]+", "_", str(truck.get("number") or truck_id)).strip("_")
    return _xlsx_response(workbook, f"hoja_carga_{safe_number}_{service_date}.xlsx")


@app.route("/api/incidents", methods=["POST"])
def create_incident():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    app_session = _current_session()
    payload = _request_data()
    result = load_service.register_incident(
        app_session.order_store,
        (payload.get("truck_id") or "").strip(),
        (payload.get("service_date") or "").strip(),
        payload.get("description"),
        actor=app_session.actor_name,
        zip_code=payload.get("zip_code") or "",
        city=payload.get("city") or "",
        address=payload.get("address") or "",
    )
    if result["errors"]:
        return jsonify(result), 400
    return jsonify(result), 201


@app.route("/api/trucks", methods=["GET", "POST"])
def trucks():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    if request.method == "POST":
        _require_import_permission()
        result = truck_service.create_truck(repository, _request_data())
        if result["errors"]:
            return jsonify(result), 400
        return jsonify(result), 201
    return jsonify({"trucks": truck_service.list_trucks(repository)})


@app.route("/api/trucks/<truck_id>/delete", methods=["POST"])
def delete_truck(truck_id):
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    _require_admin()
    truck_service.delete_truck(repository, truck_id)
    return jsonify({"ok": True})


@app.route("/api/trucks/<truck_id>/calendar")
def truck_calendar(truck_id):
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    today = date.today()
    year = request.args.get("year", type=int) or today.year
    month = request.args.get("month", type=int) or today.month
    if month < 1 or month > 12:
        return jsonify({"error": "Month must be between 1 and 12."}), 400
    calendar_view = load_service.truck_calendar(
        _current_session().order_store.all(), truck_id, year, month
    )
    return jsonify(calendar_view)


@app.route("/api/stores", methods=["GET", "POST"])
def stores():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    if request.method == "POST":
        _require_admin()
        result = store_service.create_store(repository, _request_data())
        if result["errors"]:
            return jsonify(result), 400
        return jsonify(result), 201
    return jsonify({"stores": store_service.list_stores(repository)})


@app.route("/api/stores/<store_id>/delete", methods=["POST"])
def delete_store(store_id):
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    _require_admin()
    store_service.delete_store(repository, store_id)
    return jsonify({"ok": True})


@app.route("/api/users", methods=["GET", "POST"])
def users():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    if request.method == "POST":
        _require_admin()
        result = user_service.create_user(repository, _request_data())
        if result["errors"]:
            return jsonify(result), 400
        return jsonify(result), 201
    return jsonify({"users": user_service.list_users(repository)})


@app.route("/api/users/<user_id>/delete", methods=["POST"])
def delete_user(user_id):
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    _require_admin()
    result = user_service.delete_user(repository, user_id, _current_session().user)
    if result["errors"]:
        return jsonify(result), 400
    return jsonify({"ok": True})


@app.route("/api/chat/direct/<other_user_id>", methods=["GET", "POST"])
def direct_chat(other_user_id):
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    user_id = _current_session().user_id
    if request.method == "POST":
        result = chat.send_direct(repository, user_id, other_user_id, _request_data().get("content"))
        if result["errors"]:
            return jsonify(result), 400
        return jsonify({"errors": {}, "message": chat.message_payload(result["message"])}), 201
    chat.mark_read(repository, user_id, other_user_id)
    return jsonify({"messages": chat.list_direct(repository, user_id, other_user_id)})


@app.route("/api/chat/group", methods=["GET", "POST"])
def group_chat():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    user_id = _current_session().user_id
    if request.method == "POST":
        result = chat.send_group(repository, user_id, _request_data().get("content"))
        if result["errors"]:
            return jsonify(result), 400
        return jsonify({"errors": {}, "message": chat.message_payload(result["message"])}), 201
    return jsonify({"messages": chat.list_group(repository)})


@app.route("/api/notifications")
def notifications():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    app_session = _current_session()
    context = NotificationContext(
        current_user_id=app_session.user_id,
        users=user_service.list_users(repository),
    )
    inbox = _get_inbox(app_session.user_id)
    return jsonify(
        {
            "notifications": inbox.collect(context),
            "unread": chat.unread_counts(repository, app_session.user_id),
        }
    )


@app.route("/api/imports")
def import_history():
    session_redirect = _require_session()
    if session_redirect:
        return session_redirect
    history = repository.list_all("import_history")
    limit = request.args.get("limit", type=int) or 20
    return jsonify({"imports": history[:limit], "checked_at": datetime.now().isoformat(timespec="seconds")})


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app.run(debug=True)
