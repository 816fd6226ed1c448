# app.py
import os
import io
import re
import logging
import secrets
import unicodedata
from datetime import datetime, timedelta, date
from functools import wraps
from decimal import Decimal

from flask import Flask, request, jsonify, send_file, abort, g, Response
from flask_login import (
    LoginManager, login_user, logout_user,
    login_required, current_user
)
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from sqlalchemy import or_ as sa_or, func
from werkzeug.exceptions import HTTPException

from database import (
    db,
    now_utc, money, num, iso,
    OrderType, OrderSubtype, OrderStatus, ItemStatus, PaymentMethod, MemberRole,
    TableStatus, TransactionType, SubscriptionStatus,
    User, Establishment, EstablishmentMember,
    Category, Product, AddonGroup, Addon, CategoryAddonGroup, ProductAddonGroup,
    Customer, DiningTable, Order, OrderItem, OrderItemAddon, OrderStatusHistory,
    FinancialCategory, FinancialTransaction,
    SubscriptionPlan, Subscription,
    RateLimitLog, AuditLog
)
from order_status import (
    COMPLETED_STATUSES, PROGRESSED_STATUSES, READY_STATUSES, ITEM_STATUS_FLOW,
    get_status_flow, get_status_display, get_item_status_display, status_actions,
    is_status_finalized, is_valid_status_for, next_status, previous_status,
    next_item_status, order_type_label, payment_method_label
)
from pricing import (
    item_total, order_totals, net_after_fee, validate_addon_selection,
    payments_total, payments_match_total
)
from store_hours import (
    now_local, to_local, to_utc_naive, start_of_local_day,
    is_open, next_open_time, today_hours, next_available_days,
    schedule_slots, is_valid_slot, average_preparation_minutes
)
from formatters import (
    extract_phone_digits, build_theme_styles, is_valid_hex_color, to_decimal
)
from notifications import order_status_link
from receipts import build_receipt_pdf_bytes, build_ticket_text
from subscriptions import subscription_state, trial_window
from realtime import socketio, broadcast_change, notify_order_status


BASE_DIR = os.path.abspath(os.path.dirname(__file__))
DB_PATH = os.path.join(BASE_DIR, "restaurant.db")

app = Flask(__name__)

app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", secrets.token_hex(32))
app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", f"sqlite:///{DB_PATH}")
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
app.config["STORE_TIMEZONE"] = os.environ.get("STORE_TIMEZONE", "America/Sao_Paulo")
app.config["TRIAL_DAYS"] = int(os.environ.get("TRIAL_DAYS", "7"))
app.config["ORDERS_PAGE_SIZE"] = int(os.environ.get("ORDERS_PAGE_SIZE", "50"))
app.config["TEAM_MEMBER_RATE_LIMIT"] = int(os.environ.get("TEAM_MEMBER_RATE_LIMIT", "5"))
app.config["RESET_TOKEN_MAX_AGE"] = int(os.environ.get("RESET_TOKEN_MAX_AGE", "3600"))
app.config["LOG_LEVEL"] = os.environ.get("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=app.config["LOG_LEVEL"],
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s"
)
app.logger.setLevel(app.config["LOG_LEVEL"])
app.logger.info("Using database %s", app.config["SQLALCHEMY_DATABASE_URI"])

db.init_app(app)

login_manager = LoginManager(app)
login_manager.login_view = "api_login"

serializer = URLSafeTimedSerializer(app.config["SECRET_KEY"])

socketio.init_app(app)


ALL_PAGES = [
    "pedidos", "mesas", "financeiro", "catalogo", "meu-negocio",
    "clientes", "usuarios", "meu-plano", "configuracoes",
]

ROLE_PAGES = {
    MemberRole.OWNER.value: ALL_PAGES,
    MemberRole.MANAGER.value: ["pedidos", "mesas", "financeiro", "catalogo", "meu-negocio", "clientes", "configuracoes"],
    MemberRole.ATTENDANT.value: ["pedidos", "mesas", "catalogo", "clientes"],
    MemberRole.KITCHEN.value: ["pedidos"],
    MemberRole.WAITER.value: ["pedidos", "mesas"],
    MemberRole.EMPLOYEE.value: ["pedidos", "mesas", "catalogo", "clientes"],
}

ROLE_LABELS = {
    MemberRole.OWNER.value: "Proprietário",
    MemberRole.MANAGER.value: "Gerente",
    MemberRole.ATTENDANT.value: "Atendente",
    MemberRole.KITCHEN.value: "Cozinha",
    MemberRole.WAITER.value: "Garçom",
    MemberRole.EMPLOYEE.value: "Funcionário",
}

TEAM_ROLES = [
    MemberRole.MANAGER.value, MemberRole.ATTENDANT.value,
    MemberRole.KITCHEN.value, MemberRole.WAITER.value,
]

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DEFAULT_FINANCIAL_CATEGORIES = [
    ("Vendas", TransactionType.INCOME.value, "shopping-cart"),
    ("Fornecedores", TransactionType.EXPENSE.value, "truck"),
    ("Aluguel", TransactionType.EXPENSE.value, "home"),
    ("Salários", TransactionType.EXPENSE.value, "users"),
    ("Contas", TransactionType.EXPENSE.value, "file-text"),
    ("Outros", TransactionType.EXPENSE.value, "more-horizontal"),
]

DEFAULT_PLANS = [
    ("Plano Essencial", "Tudo para o seu delivery", "49.90", "269.40", "478.80",
     ["Pedidos ilimitados", "Cardápio digital", "Gestão de mesas", "Financeiro"]),
]

PAYMENT_TOGGLES = {
    PaymentMethod.PIX.value: "payment_pix_enabled",
    PaymentMethod.CREDIT.value: "payment_credit_enabled",
    PaymentMethod.DEBIT.value: "payment_debit_enabled",
    PaymentMethod.CASH.value: "payment_cash_enabled",
}

SERVICE_TOGGLES = {
    OrderType.DELIVERY.value: "service_delivery",
    OrderType.PICKUP.value: "service_pickup",
    OrderType.DINE_IN.value: "service_dine_in",
}

RATE_LIMIT_WINDOW = timedelta(hours=1)


class ApiError(Exception):
    def __init__(self, message, code=400):
        super().__init__(message)
        self.message = message
        self.code = code


def json_error(message, code=400):
    return jsonify({"success": False, "error": message}), code


def require_json():
    if not request.is_json:
        return json_error("Expected JSON body", 400)
    return None


def parse_int(value, default=None):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_date(value):
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ApiError(f"Invalid date: {value}")


def parse_datetime(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ApiError(f"Invalid datetime: {value}")


def norm_role(role) -> str:
    return (role or "").strip().lower()


def store_tz():
    return app.config["STORE_TIMEZONE"]


def local_today():
    return now_local(store_tz()).date()


def current_member():
    if "member" not in g:
        g.member = None
        if current_user.is_authenticated:
            g.member = (
                EstablishmentMember.query
                .filter_by(user_id=current_user.id)
                .order_by(EstablishmentMember.id.asc())
                .first()
            )
    return g.member


def current_establishment() -> Establishment:
    member = current_member()
    if not member:
        abort(403)
    return db.session.get(Establishment, member.establishment_id)


def establishment_subscription(est_id):
    sub = Subscription.query.filter_by(establishment_id=est_id).first()
    plan = db.session.get(SubscriptionPlan, sub.plan_id) if sub and sub.plan_id else None
    return subscription_state(sub, plan)


def require_page(*pages, check_subscription=True):
    """Member of an establishment whose role may open any of ``pages``.

    Without pages any member passes. Blocked subscriptions answer 402.
    """
    wanted = set(pages)

    def deco(fn):
        @wraps(fn)
        @login_required
        def wrapper(*args, **kwargs):
            member = current_member()
            if not member:
                return json_error("No establishment for this account", 403)
            allowed = set(ROLE_PAGES.get(norm_role(member.role), []))
            if wanted and not allowed.intersection(wanted):
                return json_error("Forbidden: insufficient role", 403)
            if check_subscription and establishment_subscription(member.establishment_id)["is_blocked"]:
                return json_error("Subscription inactive", 402)
            return fn(*args, **kwargs)
        return wrapper
    return deco


@login_manager.user_loader
def load_user(user_id):
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


@login_manager.unauthorized_handler
def _unauthorized():
    return json_error("Authentication required", 401)


@app.errorhandler(ApiError)
def _api_error(e):
    db.session.rollback()
    return json_error(e.message, e.code)


@app.errorhandler(403)
def _err_403(_e):
    return json_error("Forbidden", 403)


@app.errorhandler(404)
def _err_404(_e):
    return json_error("Not found", 404)


@app.errorhandler(405)
def _err_405(_e):
    return json_error("Method not allowed", 405)


@app.errorhandler(Exception)
def _err_unhandled(e):
    if isinstance(e, HTTPException):
        return json_error(e.description, e.code)
    db.session.rollback()
    app.logger.exception("Unhandled error on %s %s", request.method, request.path)
    return json_error("Internal server error", 500)


def audit(action, entity, entity_id=None, details=None, establishment_id=None):
    uid = current_user.id if current_user and current_user.is_authenticated else None
    if establishment_id is None:
        member = current_member()
        establishment_id = member.establishment_id if member else None

    log = AuditLog(
        user_id=uid,
        establishment_id=establishment_id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        ip=request.headers.get("X-Forwarded-For", request.remote_addr),
        details_json=(details or {}),
        created_at=now_utc()
    )
    db.session.add(log)
    db.session.commit()


# ---------------------------
# Domain helpers
# ---------------------------

def slugify(text):
    s = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    s = re.sub(r"[^a-zA-Z0-9]+", "-", s).strip("-").lower()
    return s or "loja"


def unique_slug(name, exclude_id=None):
    base = slugify(name)
    slug = base
    n = 2
    while True:
        q = Establishment.query.filter_by(slug=slug)
        if exclude_id:
            q = q.filter(Establishment.id != exclude_id)
        if not q.first():
            return slug
        slug = f"{base}-{n}"
        n += 1


def next_position(model, **filters):
    current = db.session.query(func.max(model.order_position)).filter_by(**filters).scalar()
    return (current if current is not None else -1) + 1


def next_order_number(est_id):
    current = db.session.query(func.max(Order.order_number)).filter_by(establishment_id=est_id).scalar()
    return (current or 0) + 1


def ensure_default_financial_categories(est_id):
    created = 0
    for name, kind, icon in DEFAULT_FINANCIAL_CATEGORIES:
        if FinancialCategory.query.filter_by(establishment_id=est_id, name=name, type=kind).first():
            continue
        db.session.add(FinancialCategory(
            establishment_id=est_id, name=name, type=kind, icon=icon, is_default=True, active=True
        ))
        created += 1
    db.session.flush()
    return created


def sales_category(est_id):
    cat = FinancialCategory.query.filter_by(
        establishment_id=est_id, name="Vendas", type=TransactionType.INCOME.value
    ).first()
    if not cat:
        ensure_default_financial_categories(est_id)
        cat = FinancialCategory.query.filter_by(
            establishment_id=est_id, name="Vendas", type=TransactionType.INCOME.value
        ).first()
    return cat


def upsert_customer(est_id, name, phone, address=None, origin=None):
    digits = extract_phone_digits(phone)
    if not digits:
        return None

    c = Customer.query.filter_by(establishment_id=est_id, phone=digits).first()
    if not c:
        c = Customer(establishment_id=est_id, phone=digits, name=name or "Cliente")
        db.session.add(c)
    elif name:
        c.name = name

    for field in ("address", "address_number", "complement", "neighborhood", "reference_point"):
        value = (address or {}).get(field)
        if value:
            setattr(c, field, str(value).strip())
    if origin:
        c.order_origin = origin
    db.session.flush()
    return c


def add_status_history(order, status):
    db.session.add(OrderStatusHistory(order_id=order.id, status=status, created_at=now_utc()))


def product_addon_groups(product):
    """Active addon groups offered for a product.

    Union of groups linked to the product, groups linked to its category
    and groups owned by its category.
    """
    group_ids = {
        link.addon_group_id for link in ProductAddonGroup.query.filter_by(product_id=product.id).all()
    }
    if product.category_id:
        group_ids.update(
            link.addon_group_id
            for link in CategoryAddonGroup.query.filter_by(category_id=product.category_id).all()
        )
        group_ids.update(
            grp.id for grp in AddonGroup.query.filter_by(
                establishment_id=product.establishment_id, category_id=product.category_id
            ).all()
        )
    if not group_ids:
        return []
    return (
        AddonGroup.query
        .filter(AddonGroup.id.in_(group_ids), AddonGroup.active.is_(True))
        .order_by(AddonGroup.order_position.asc(), AddonGroup.id.asc())
        .all()
    )


def addon_group_payload(grp, active_only=False):
    q = Addon.query.filter_by(addon_group_id=grp.id)
    if active_only:
        q = q.filter(Addon.active.is_(True))
    addons = q.order_by(Addon.order_position.asc(), Addon.id.asc()).all()
    d = grp.to_dict()
    d["addons"] = [a.to_dict() for a in addons]
    return d


def resolve_addons(product, raw_addons, validate=True):
    groups = product_addon_groups(product)
    group_ids = {grp.id for grp in groups}

    selected = []
    for ra in raw_addons or []:
        aid = parse_int(ra.get("id") or ra.get("addon_id"))
        addon = db.session.get(Addon, aid) if aid else None
        if not addon or not addon.active or addon.addon_group_id not in group_ids:
            raise ApiError("Adicional inválido para este produto")
        qty = parse_int(ra.get("quantity"), 1)
        if qty is None or qty < 1:
            raise ApiError("Quantidade de adicional inválida")
        selected.append({
            "addon": addon,
            "addon_group_id": addon.addon_group_id,
            "price": money(addon.price),
            "quantity": qty,
        })

    if validate:
        ok, message = validate_addon_selection([grp.to_dict() for grp in groups], selected)
        if not ok:
            raise ApiError(message)
    return selected


def resolve_items(est, raw_items):
    """Validate a list of cart lines against the catalog.

    Prices always come from the catalog rows, never from the request.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ApiError("Carrinho vazio")

    resolved = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ApiError("Item inválido")
        pid = parse_int(raw.get("product_id"))
        product = Product.query.filter_by(id=pid, establishment_id=est.id).first() if pid else None
        if not product or not product.active:
            raise ApiError("Produto indisponível")
        qty = parse_int(raw.get("quantity"), 1)
        if qty is None or qty < 1:
            raise ApiError("Quantidade inválida")
        resolved.append({
            "product": product,
            "quantity": qty,
            "observation": (raw.get("observation") or "").strip() or None,
            "addons": resolve_addons(product, raw.get("addons")),
        })
    return resolved


def add_items_to_order(order, resolved):
    created = []
    for r in resolved:
        p = r["product"]
        oi = OrderItem(
            order_id=order.id,
            product_id=p.id,
            product_name=p.name,
            product_price=money(p.price),
            quantity=r["quantity"],
            observation=r["observation"],
            total=item_total(p.price, r["quantity"], r["addons"]),
            item_status=ItemStatus.PENDING.value,
        )
        db.session.add(oi)
        db.session.flush()
        for a in r["addons"]:
            db.session.add(OrderItemAddon(
                order_item_id=oi.id,
                addon_id=a["addon"].id,
                addon_name=a["addon"].name,
                addon_price=a["price"],
                quantity=a["quantity"],
            ))
        created.append(oi)
    db.session.flush()
    return created


def recalculate_order_totals(order):
    items = OrderItem.query.filter_by(order_id=order.id).all()
    subtotal, total = order_totals([it.total for it in items], order.delivery_fee or 0)
    order.subtotal = subtotal
    order.total = total
    order.updated_at = now_utc()
    return subtotal, total


def item_addons(item_ids):
    grouped = {i: [] for i in item_ids}
    if not item_ids:
        return grouped
    rows = (
        OrderItemAddon.query
        .filter(OrderItemAddon.order_item_id.in_(item_ids))
        .order_by(OrderItemAddon.id.asc())
        .all()
    )
    for a in rows:
        grouped[a.order_item_id].append(a.to_dict())
    return grouped


def serialize_items(order_id):
    items = OrderItem.query.filter_by(order_id=order_id).order_by(OrderItem.id.asc()).all()
    addons = item_addons([it.id for it in items])
    out = []
    for it in items:
        d = it.to_dict()
        d["addons"] = addons.get(it.id, [])
        d["status_display"] = get_item_status_display(it.item_status)
        out.append(d)
    return out


def serialize_order(o, include_items=True):
    d = o.to_dict()
    d["status_display"] = get_status_display(o.status)
    d["actions"] = status_actions(o.order_type, o.status)
    d["is_finalized"] = is_status_finalized(o.status)
    d["order_type_label"] = order_type_label(o.order_type)
    d["payment_method_label"] = payment_method_label(o.payment_method)
    customer = db.session.get(Customer, o.customer_id) if o.customer_id else None
    d["customer"] = customer.to_dict() if customer else None
    if include_items:
        d["items"] = serialize_items(o.id)
    return d


def order_or_404(order_id, est) -> Order:
    return Order.query.filter_by(id=order_id, establishment_id=est.id).first_or_404()


def item_or_404(item_id, est):
    oi = db.session.get(OrderItem, item_id)
    if not oi:
        abort(404)
    order = order_or_404(oi.order_id, est)
    return oi, order


def ensure_order_editable(order):
    if is_status_finalized(order.status):
        raise ApiError("Pedido finalizado não pode ser alterado", 409)


def resolve_change_for(raw, payment_method, total):
    """Cash change amount for an order, or None when it does not apply."""
    if raw is None or raw == "":
        return None
    if payment_method != PaymentMethod.CASH.value:
        return None
    change_for = to_decimal(raw)
    if change_for is None:
        raise ApiError("Troco inválido")
    if change_for < money(total):
        raise ApiError("Troco deve ser maior que o total")
    return money(change_for)


def customer_payload(data):
    customer_data = data.get("customer") or {}
    if not isinstance(customer_data, dict):
        raise ApiError("Dados do cliente inválidos")
    return customer_data


def settled_elsewhere(order) -> bool:
    # table orders are paid on table close, open tabs on tab close
    return bool(order.table_id) or bool(order.is_open_tab)


def record_order_income(order, est):
    if order.status not in COMPLETED_STATUSES or settled_elsewhere(order):
        return None
    if FinancialTransaction.query.filter_by(order_id=order.id).first():
        return None
    return add_income(est, order.total, order.payment_method, f"Pedido #{order.order_number}", order.id)


def add_income(est, gross, method, description, order_id=None):
    cat = sales_category(est.id)
    fee, net = net_after_fee(gross, method, est.card_credit_fee, est.card_debit_fee)
    tx = FinancialTransaction(
        establishment_id=est.id,
        category_id=cat.id if cat else None,
        order_id=order_id,
        type=TransactionType.INCOME.value,
        gross_amount=money(gross),
        fee_amount=fee,
        net_amount=net,
        payment_method=method,
        description=description,
        transaction_date=local_today(),
    )
    db.session.add(tx)
    return tx


def whatsapp_link_for(order, est, status=None):
    customer = db.session.get(Customer, order.customer_id) if order.customer_id else None
    if not customer:
        return None
    return order_status_link(
        status or order.status,
        customer_name=customer.name,
        customer_phone=customer.phone,
        order_number=order.order_number,
        total=order.total,
        establishment_name=est.name,
        templates=est.whatsapp_message_templates,
    )


def apply_status(order, est, new_status):
    """Move an order to ``new_status`` and run the side effects.

    Returns the WhatsApp link for the customer when notifications are on.
    """
    if is_status_finalized(order.status):
        raise ApiError("Pedido finalizado não pode ser alterado", 409)
    if not is_valid_status_for(order.order_type, new_status):
        raise ApiError(f"Status inválido para este tipo de pedido: {new_status}")
    if new_status == order.status:
        raise ApiError("Pedido já está neste status")

    order.status = new_status
    order.updated_at = now_utc()
    add_status_history(order, new_status)
    record_order_income(order, est)
    db.session.commit()

    app.logger.info("Order %s (#%s) -> %s", order.id, order.order_number, new_status)
    broadcast_change(est.id, "orders", "UPDATE", order.id)
    notify_order_status(order.id, new_status)

    if est.whatsapp_notifications_enabled:
        return whatsapp_link_for(order, est, new_status)
    return None


def store_is_open(est, now=None):
    if est.temporary_closed:
        return False
    return is_open(est.opening_hours, now or now_local(store_tz()))


def preparation_average(est_id, start=None, end=None):
    q = Order.query.filter(
        Order.establishment_id == est_id,
        Order.status.in_(PROGRESSED_STATUSES),
    )
    if start:
        q = q.filter(Order.created_at >= start)
    if end:
        q = q.filter(Order.created_at < end)
    order_ids = [o.id for o in q.all()]
    if not order_ids:
        return None

    history = (
        OrderStatusHistory.query
        .filter(
            OrderStatusHistory.order_id.in_(order_ids),
            OrderStatusHistory.status.in_(["confirmed"] + READY_STATUSES),
        )
        .order_by(OrderStatusHistory.created_at.asc(), OrderStatusHistory.id.asc())
        .all()
    )
    by_order = {}
    for h in history:
        by_order.setdefault(h.order_id, []).append({"status": h.status, "created_at": h.created_at})
    return average_preparation_minutes(by_order)


def member_payload(member):
    user = db.session.get(User, member.user_id)
    return {
        "member_id": member.id,
        "user_id": member.user_id,
        "name": user.name if user else None,
        "email": user.email if user else None,
        "phone": user.phone if user else None,
        "role": member.role,
        "role_label": ROLE_LABELS.get(member.role, member.role),
        "created_at": iso(member.created_at),
    }


def account_payload(user, member):
    est = db.session.get(Establishment, member.establishment_id) if member else None
    role = member.role if member else None
    return {
        "user": user.to_dict(),
        "establishment": est.to_dict() if est else None,
        "role": role,
        "role_label": ROLE_LABELS.get(role) if role else None,
        "pages": ROLE_PAGES.get(role, []) if role else [],
        "is_owner": role == MemberRole.OWNER.value,
        "subscription": establishment_subscription(est.id) if est else None,
    }


# ---------------------------
# System
# ---------------------------

@app.route("/api/system/init", methods=["POST"])
def api_system_init():
    db.create_all()
    created = 0
    if SubscriptionPlan.query.count() == 0:
        for name, desc, monthly, semiannual, annual, features in DEFAULT_PLANS:
            db.session.add(SubscriptionPlan(
                name=name, description=desc,
                price_monthly=money(monthly), price_semiannual=money(semiannual), price_annual=money(annual),
                features=features, active=True
            ))
            created += 1
        db.session.commit()
    app.logger.info("Schema ready, %d plan(s) seeded", created)
    return jsonify({"success": True, "plans_created": created})


@app.route("/api/health", methods=["GET"])
def api_health():
    try:
        db.session.execute(db.select(func.count(User.id))).scalar()
        return jsonify({"success": True, "status": "ok"})
    except Exception as e:
        app.logger.warning("Health check failed: %s", e)
        return json_error("Database unavailable", 503)


# ---------------------------
# Auth
# ---------------------------

@app.route("/api/auth/register", methods=["POST"])
def api_register():
    bad = require_json()
    if bad:
        return bad

    data = request.get_json()
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    pw = data.get("password") or ""
    est_name = (data.get("establishment_name") or "").strip()

    if not name:
        return json_error("Name required", 400)
    if not email or len(email) > 254 or not EMAIL_RE.match(email):
        return json_error("Invalid email address", 400)
    if len(pw) < 6:
        return json_error("Password must be at least 6 characters", 400)
    if not est_name:
        return json_error("Establishment name required", 400)
    if User.query.filter_by(email=email).first():
        return json_error("Email already used", 400)

    u = User(name=name, email=email, phone=(data.get("phone") or "").strip() or None, is_active=True)
    u.set_password(pw)
    db.session.add(u)
    db.session.flush()

    est = Establishment(owner_id=u.id, name=est_name, slug=unique_slug(est_name), opening_hours={},
                        whatsapp_message_templates={})
    db.session.add(est)
    db.session.flush()

    db.session.add(EstablishmentMember(establishment_id=est.id, user_id=u.id, role=MemberRole.OWNER.value))

    plan = SubscriptionPlan.query.filter_by(active=True).order_by(SubscriptionPlan.id.asc()).first()
    start, end = trial_window(app.config["TRIAL_DAYS"])
    db.session.add(Subscription(
        establishment_id=est.id,
        plan_id=plan.id if plan else None,
        status=SubscriptionStatus.TRIALING.value,
        trial_starts_at=start,
        trial_ends_at=end,
    ))
    ensure_default_financial_categories(est.id)
    db.session.commit()

    login_user(u)
    audit("register", "user", u.id, {"establishment_id": est.id}, establishment_id=est.id)
    app.logger.info("Registered %s with establishment %s (%s)", u.email, est.id, est.slug)

    return jsonify(dict(account_payload(u, current_member()), success=True))


@app.route("/api/auth/login", methods=["POST"])
def api_login():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    email = (data.get("email") or "").strip().lower()
    pw = data.get("password") or ""
    user = User.query.filter_by(email=email).first()
    if not user or not user.is_active or not user.check_password(pw):
        return json_error("Invalid credentials", 401)

    login_user(user)
    audit("login", "user", user.id)
    return jsonify(dict(account_payload(user, current_member()), success=True))


@app.route("/api/auth/logout", methods=["POST"])
@login_required
def api_logout():
    audit("logout", "user", current_user.id)
    logout_user()
    return jsonify({"success": True})


@app.route("/api/auth/me", methods=["GET"])
@login_required
def api_me():
    return jsonify(dict(account_payload(current_user, current_member()), success=True))


@app.route("/api/auth/change-password", methods=["POST"])
@login_required
def api_change_password():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    old_pw = data.get("old_password") or ""
    new_pw = data.get("new_password") or ""
    if len(new_pw) < 6:
        return json_error("Password must be at least 6 characters", 400)
    if not current_user.check_password(old_pw):
        return json_error("Old password incorrect", 400)
    current_user.set_password(new_pw)
    db.session.commit()
    audit("change_password", "user", current_user.id)
    return jsonify({"success": True})


@app.route("/api/auth/forgot-password", methods=["POST"])
def api_forgot_password():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    email = (data.get("email") or "").strip().lower()
    user = User.query.filter_by(email=email).first()
    if not user:
        return jsonify({"success": True, "message": "If the account exists, a reset token was generated"})
    token = serializer.dumps({"uid": user.id, "email": user.email})
    audit("forgot_password", "user", user.id)
    return jsonify({"success": True, "reset_token": token})


@app.route("/api/auth/reset-password", methods=["POST"])
def api_reset_password():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    token = data.get("token") or ""
    new_pw = data.get("new_password") or ""
    if len(new_pw) < 6:
        return json_error("Password must be at least 6 characters", 400)
    try:
        payload = serializer.loads(token, max_age=app.config["RESET_TOKEN_MAX_AGE"])
    except SignatureExpired:
        return json_error("Token expired", 400)
    except BadSignature:
        return json_error("Invalid token", 400)

    user = db.session.get(User, int(payload["uid"]))
    if not user or user.email != payload.get("email"):
        return json_error("Invalid token", 400)
    user.set_password(new_pw)
    db.session.commit()
    audit("reset_password", "user", user.id)
    return jsonify({"success": True})


# ---------------------------
# Establishment
# ---------------------------

EST_TEXT_FIELDS = (
    "name", "description", "logo_url", "banner_url", "phone", "address", "neighborhood", "city",
    "delivery_info", "pix_key", "pix_key_type", "pix_holder_name", "printer_name", "print_mode",
)
EST_BOOL_FIELDS = (
    "service_delivery", "service_pickup", "service_dine_in", "allow_scheduling", "temporary_closed",
    "payment_pix_enabled", "payment_credit_enabled", "payment_debit_enabled", "payment_cash_enabled",
    "whatsapp_notifications_enabled", "notification_sound_enabled", "print_font_bold", "print_contrast_high",
)
EST_MONEY_FIELDS = ("min_order_value", "delivery_fee")
EST_INT_FIELDS = (
    "manual_preparation_time", "manual_delivery_time",
    "print_font_size", "print_margin_left", "print_margin_right",
)


@app.route("/api/establishment", methods=["GET"])
@require_page(check_subscription=False)
def api_establishment_get():
    est = current_establishment()
    d = est.to_dict()
    d["theme_styles"] = build_theme_styles(est.primary_color, est.secondary_color)
    d["is_open"] = store_is_open(est)
    return jsonify({"success": True, "establishment": d})


@app.route("/api/establishment", methods=["PUT"])
@require_page("meu-negocio")
def api_establishment_update():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()

    for f in EST_TEXT_FIELDS:
        if f in data:
            value = data.get(f)
            setattr(est, f, str(value).strip() if value is not None else None)
    if not est.name:
        return json_error("Name required", 400)

    for f in EST_BOOL_FIELDS:
        if f in data:
            setattr(est, f, bool(data.get(f)))

    for f in EST_MONEY_FIELDS:
        if f in data:
            value = to_decimal(data.get(f), Decimal("0"))
            if value < 0:
                return json_error(f"{f} must be positive", 400)
            setattr(est, f, money(value))

    for f in EST_INT_FIELDS:
        if f in data:
            value = parse_int(data.get(f))
            if value is None or value < 0:
                return json_error(f"{f} must be a positive integer", 400)
            setattr(est, f, value)

    for f in ("card_credit_fee", "card_debit_fee"):
        if f in data:
            value = to_decimal(data.get(f))
            if value is None or value < 0 or value > 100:
                return json_error(f"{f} must be between 0 and 100", 400)
            setattr(est, f, value)

    if "print_line_height" in data:
        value = to_decimal(data.get("print_line_height"))
        if value is None or value <= 0:
            return json_error("print_line_height must be positive", 400)
        est.print_line_height = value

    for f in ("primary_color", "secondary_color"):
        if f in data:
            if not is_valid_hex_color(data.get(f)):
                return json_error(f"{f} must be a hex color", 400)
            setattr(est, f, data.get(f))

    if "preparation_time_mode" in data:
        mode = data.get("preparation_time_mode")
        if mode not in ("auto_daily", "manual"):
            return json_error("preparation_time_mode must be auto_daily or manual", 400)
        est.preparation_time_mode = mode

    if "opening_hours" in data:
        hours = data.get("opening_hours") or {}
        if not isinstance(hours, dict):
            return json_error("opening_hours must be an object", 400)
        est.opening_hours = hours

    if "whatsapp_message_templates" in data:
        templates = data.get("whatsapp_message_templates") or {}
        if not isinstance(templates, dict):
            return json_error("whatsapp_message_templates must be an object", 400)
        est.whatsapp_message_templates = templates

    if "slug" in data:
        slug = slugify(data.get("slug"))
        if Establishment.query.filter(Establishment.slug == slug, Establishment.id != est.id).first():
            return json_error("Slug already in use", 409)
        est.slug = slug

    est.updated_at = now_utc()
    db.session.commit()
    audit("update", "establishment", est.id, {"fields": sorted(data.keys())})
    broadcast_change(est.id, "establishments", "UPDATE", est.id)
    return jsonify({"success": True, "establishment": est.to_dict()})


@app.route("/api/establishment/toggle-closed", methods=["POST"])
@require_page("meu-negocio", "pedidos")
def api_establishment_toggle_closed():
    est = current_establishment()
    est.temporary_closed = not bool(est.temporary_closed)
    est.updated_at = now_utc()
    db.session.commit()
    audit("toggle_closed", "establishment", est.id, {"temporary_closed": est.temporary_closed})
    broadcast_change(est.id, "establishments", "UPDATE", est.id)
    return jsonify({"success": True, "temporary_closed": est.temporary_closed, "is_open": store_is_open(est)})


# ---------------------------
# Subscription
# ---------------------------

@app.route("/api/subscription", methods=["GET"])
@require_page(check_subscription=False)
def api_subscription_get():
    est = current_establishment()
    return jsonify(dict(establishment_subscription(est.id), success=True))


@app.route("/api/subscription/plans", methods=["GET"])
@login_required
def api_subscription_plans():
    plans = SubscriptionPlan.query.filter_by(active=True).order_by(SubscriptionPlan.id.asc()).all()
    return jsonify({"success": True, "plans": [p.to_dict() for p in plans]})


# ---------------------------
# Team
# ---------------------------

def validate_member_fields(data, creating):
    email = data.get("email")
    name = data.get("name")
    phone = data.get("phone")
    role = data.get("role")
    password = data.get("password")

    if creating and (not email or not password or not role or not name):
        return "Missing required fields: email, password, role, name"
    if email is not None and (not isinstance(email, str) or len(email) > 254 or not EMAIL_RE.match(email.strip())):
        return "Invalid email address"
    if name is not None and (not isinstance(name, str) or not 1 <= len(name.strip()) <= 100):
        return "Name must be between 1 and 100 characters"
    if phone and len(str(phone)) > 20:
        return "Phone must be at most 20 characters"
    if role is not None and role not in TEAM_ROLES:
        return f"Invalid role. Must be one of: {', '.join(TEAM_ROLES)}"
    if password is not None and not 6 <= len(password) <= 128:
        return "Password must be between 6 and 128 characters"
    return None


def rate_limited(identifier, action, limit):
    since = now_utc() - RATE_LIMIT_WINDOW
    count = RateLimitLog.query.filter(
        RateLimitLog.identifier == identifier,
        RateLimitLog.action == action,
        RateLimitLog.created_at >= since,
    ).count()
    return count >= limit


def owner_only():
    member = current_member()
    if not member or member.role != MemberRole.OWNER.value:
        return json_error("Only the establishment owner can manage team members", 403)
    return None


@app.route("/api/staff", methods=["GET"])
@require_page("usuarios", "configuracoes")
def api_staff_list():
    est = current_establishment()
    members = (
        EstablishmentMember.query
        .filter_by(establishment_id=est.id)
        .order_by(EstablishmentMember.id.asc())
        .all()
    )
    return jsonify({"success": True, "members": [member_payload(m) for m in members]})


@app.route("/api/staff", methods=["POST"])
@require_page("usuarios")
def api_staff_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()

    error = validate_member_fields(data, creating=True)
    if error:
        return json_error(error, 400)

    identifier = str(current_user.id)
    if rate_limited(identifier, "create_team_member", app.config["TEAM_MEMBER_RATE_LIMIT"]):
        return json_error("Limite de criação de membros atingido. Aguarde uma hora e tente novamente.", 429)
    db.session.add(RateLimitLog(identifier=identifier, action="create_team_member", created_at=now_utc()))
    db.session.commit()

    forbidden = owner_only()
    if forbidden:
        return forbidden

    est = current_establishment()
    email = data["email"].strip().lower()
    user = User.query.filter_by(email=email).first()
    if user:
        if EstablishmentMember.query.filter_by(establishment_id=est.id, user_id=user.id).first():
            return json_error("Este email já é membro deste estabelecimento", 409)
    else:
        user = User(name=data["name"].strip(), email=email, phone=(data.get("phone") or None), is_active=True)
        user.set_password(data["password"])
        db.session.add(user)
        db.session.flush()

    member = EstablishmentMember(establishment_id=est.id, user_id=user.id, role=data["role"])
    db.session.add(member)
    db.session.commit()

    audit("create", "member", member.id, {"user_id": user.id, "role": member.role})
    app.logger.info("Team member %s added to establishment %s as %s", user.email, est.id, member.role)
    broadcast_change(est.id, "establishment_members", "INSERT", member.id)
    return jsonify({"success": True, "member": member_payload(member)})


@app.route("/api/staff/<int:member_id>", methods=["PUT"])
@require_page("usuarios")
def api_staff_update(member_id):
    bad = require_json()
    if bad:
        return bad
    forbidden = owner_only()
    if forbidden:
        return forbidden

    data = request.get_json()
    est = current_establishment()
    member = EstablishmentMember.query.filter_by(id=member_id, establishment_id=est.id).first_or_404()

    error = validate_member_fields(data, creating=False)
    if error:
        return json_error(error, 400)

    user = db.session.get(User, member.user_id)
    if data.get("role"):
        if member.role == MemberRole.OWNER.value:
            return json_error("Owner role cannot be changed", 400)
        member.role = data["role"]
    if data.get("name"):
        user.name = data["name"].strip()
    if "phone" in data:
        user.phone = data.get("phone") or None
    if data.get("email"):
        email = data["email"].strip().lower()
        other = User.query.filter(User.email == email, User.id != user.id).first()
        if other:
            return json_error("Email already used", 409)
        user.email = email
    if data.get("password"):
        user.set_password(data["password"])

    db.session.commit()
    audit("update", "member", member.id, {"fields": sorted(k for k in data.keys() if k != "password")})
    broadcast_change(est.id, "establishment_members", "UPDATE", member.id)
    return jsonify({"success": True, "member": member_payload(member)})


@app.route("/api/staff/<int:member_id>", methods=["DELETE"])
@require_page("usuarios")
def api_staff_delete(member_id):
    forbidden = owner_only()
    if forbidden:
        return forbidden
    est = current_establishment()
    member = EstablishmentMember.query.filter_by(id=member_id, establishment_id=est.id).first_or_404()
    if member.role == MemberRole.OWNER.value:
        return json_error("Owner cannot be removed", 400)
    db.session.delete(member)
    db.session.commit()
    audit("delete", "member", member_id)
    broadcast_change(est.id, "establishment_members", "DELETE", member_id)
    return jsonify({"success": True})


# ---------------------------
# Catalog: categories
# ---------------------------

def reorder_rows(model, ids, **scope):
    if not isinstance(ids, list) or not ids:
        raise ApiError("ids must be a non-empty list")
    rows = {r.id: r for r in model.query.filter(model.id.in_(ids)).filter_by(**scope).all()}
    if len(rows) != len(set(ids)):
        raise ApiError("Unknown id in ordering", 404)
    for pos, rid in enumerate(ids):
        rows[rid].order_position = pos
    db.session.commit()


@app.route("/api/categories", methods=["GET"])
@require_page("catalogo", "pedidos", "mesas")
def api_categories_list():
    est = current_establishment()
    rows = (
        Category.query.filter_by(establishment_id=est.id)
        .order_by(Category.order_position.asc(), Category.id.asc())
        .all()
    )
    return jsonify({"success": True, "categories": [c.to_dict() for c in rows]})


@app.route("/api/categories", methods=["POST"])
@require_page("catalogo")
def api_categories_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()
    name = (data.get("name") or "").strip()
    if not name:
        return json_error("Name required", 400)

    c = Category(
        establishment_id=est.id,
        name=name,
        description=(data.get("description") or "").strip() or None,
        order_position=next_position(Category, establishment_id=est.id),
        active=bool(data.get("active", True)),
    )
    db.session.add(c)
    db.session.commit()
    audit("create", "category", c.id, {"name": c.name})
    broadcast_change(est.id, "categories", "INSERT", c.id)
    return jsonify({"success": True, "category": c.to_dict()})


@app.route("/api/categories/<int:cat_id>", methods=["PUT"])
@require_page("catalogo")
def api_categories_update(cat_id):
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()
    c = Category.query.filter_by(id=cat_id, establishment_id=est.id).first_or_404()

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return json_error("Name required", 400)
        c.name = name
    if "description" in data:
        c.description = (data.get("description") or "").strip() or None
    if "active" in data:
        c.active = bool(data.get("active"))
    db.session.commit()
    audit("update", "category", c.id)
    broadcast_change(est.id, "categories", "UPDATE", c.id)
    return jsonify({"success": True, "category": c.to_dict()})


@app.route("/api/categories/<int:cat_id>", methods=["DELETE"])
@require_page("catalogo")
def api_categories_delete(cat_id):
    est = current_establishment()
    c = Category.query.filter_by(id=cat_id, establishment_id=est.id).first_or_404()

    Product.query.filter_by(category_id=c.id).update({"category_id": None})
    CategoryAddonGroup.query.filter_by(category_id=c.id).delete()
    AddonGroup.query.filter_by(category_id=c.id).update({"category_id": None})
    db.session.delete(c)
    db.session.commit()
    audit("delete", "category", cat_id)
    broadcast_change(est.id, "categories", "DELETE", cat_id)
    return jsonify({"success": True})


@app.route("/api/categories/reorder", methods=["POST"])
@require_page("catalogo")
def api_categories_reorder():
    bad = require_json()
    if bad:
        return bad
    est = current_establishment()
    reorder_rows(Category, request.get_json().get("ids"), establishment_id=est.id)
    broadcast_change(est.id, "categories", "UPDATE")
    return jsonify({"success": True})


# ---------------------------
# Catalog: products
# ---------------------------

def category_in_establishment(cat_id, est):
    if cat_id in (None, ""):
        return None
    c = Category.query.filter_by(id=parse_int(cat_id), establishment_id=est.id).first()
    if not c:
        raise ApiError("Category not found", 404)
    return c


@app.route("/api/products", methods=["GET"])
@require_page("catalogo", "pedidos", "mesas")
def api_products_list():
    est = current_establishment()
    q = Product.query.filter_by(establishment_id=est.id)
    cat_id = parse_int(request.args.get("category_id"))
    if cat_id:
        q = q.filter_by(category_id=cat_id)
    if request.args.get("active") == "true":
        q = q.filter(Product.active.is_(True))
    s = (request.args.get("search") or "").strip()
    if s:
        q = q.filter(Product.name.ilike(f"%{s}%"))
    rows = q.order_by(Product.order_position.asc(), Product.id.asc()).all()
    return jsonify({"success": True, "products": [p.to_dict() for p in rows]})


@app.route("/api/products", methods=["POST"])
@require_page("catalogo")
def api_products_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()

    name = (data.get("name") or "").strip()
    if not name:
        return json_error("Name required", 400)
    price = to_decimal(data.get("price"))
    if price is None or price < 0:
        return json_error("Valid price required", 400)
    cat = category_in_establishment(data.get("category_id"), est)

    p = Product(
        establishment_id=est.id,
        category_id=cat.id if cat else None,
        name=name,
        description=(data.get("description") or "").strip() or None,
        price=money(price),
        image_url=(data.get("image_url") or "").strip() or None,
        order_position=next_position(Product, establishment_id=est.id, category_id=cat.id if cat else None),
        active=bool(data.get("active", True)),
    )
    db.session.add(p)
    db.session.commit()
    audit("create", "product", p.id, {"name": p.name})
    broadcast_change(est.id, "products", "INSERT", p.id)
    return jsonify({"success": True, "product": p.to_dict()})


@app.route("/api/products/<int:product_id>", methods=["PUT"])
@require_page("catalogo")
def api_products_update(product_id):
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()
    p = Product.query.filter_by(id=product_id, establishment_id=est.id).first_or_404()

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return json_error("Name required", 400)
        p.name = name
    if "price" in data:
        price = to_decimal(data.get("price"))
        if price is None or price < 0:
            return json_error("Valid price required", 400)
        p.price = money(price)
    if "category_id" in data:
        cat = category_in_establishment(data.get("category_id"), est)
        p.category_id = cat.id if cat else None
    if "description" in data:
        p.description = (data.get("description") or "").strip() or None
    if "image_url" in data:
        p.image_url = (data.get("image_url") or "").strip() or None
    if "active" in data:
        p.active = bool(data.get("active"))

    db.session.commit()
    audit("update", "product", p.id)
    broadcast_change(est.id, "products", "UPDATE", p.id)
    return jsonify({"success": True, "product": p.to_dict()})


@app.route("/api/products/<int:product_id>", methods=["DELETE"])
@require_page("catalogo")
def api_products_delete(product_id):
    est = current_establishment()
    p = Product.query.filter_by(id=product_id, establishment_id=est.id).first_or_404()
    OrderItem.query.filter_by(product_id=p.id).update({"product_id": None})
    ProductAddonGroup.query.filter_by(product_id=p.id).delete()
    db.session.delete(p)
    db.session.commit()
    audit("delete", "product", product_id)
    broadcast_change(est.id, "products", "DELETE", product_id)
    return jsonify({"success": True})


@app.route("/api/products/reorder", methods=["POST"])
@require_page("catalogo")
def api_products_reorder():
    bad = require_json()
    if bad:
        return bad
    est = current_establishment()
    reorder_rows(Product, request.get_json().get("ids"), establishment_id=est.id)
    broadcast_change(est.id, "products", "UPDATE")
    return jsonify({"success": True})


# ---------------------------
# Catalog: addon groups and addons
# ---------------------------

def group_fields(data, grp):
    if "name" in data or grp.name is None:
        name = (data.get("name") or "").strip()
        if not name:
            raise ApiError("Name required")
        grp.name = name
    for f in ("min_selections", "max_selections"):
        if f in data:
            value = parse_int(data.get(f))
            if value is None or value < 0:
                raise ApiError(f"{f} must be zero or more")
            setattr(grp, f, value)
    if "required" in data:
        grp.required = bool(data.get("required"))
    if "active" in data:
        grp.active = bool(data.get("active"))
    if (grp.max_selections or 0) > 0 and (grp.min_selections or 0) > grp.max_selections:
        raise ApiError("min_selections cannot exceed max_selections")


def group_or_404(group_id, est) -> AddonGroup:
    return AddonGroup.query.filter_by(id=group_id, establishment_id=est.id).first_or_404()


@app.route("/api/addon-groups", methods=["GET"])
@require_page("catalogo", "pedidos", "mesas")
def api_addon_groups_list():
    est = current_establishment()
    q = AddonGroup.query.filter_by(establishment_id=est.id)
    cat_id = parse_int(request.args.get("category_id"))
    if cat_id:
        q = q.filter_by(category_id=cat_id)
    else:
        q = q.filter(AddonGroup.category_id.is_(None))
    rows = q.order_by(AddonGroup.order_position.asc(), AddonGroup.id.asc()).all()
    return jsonify({"success": True, "addon_groups": [addon_group_payload(grp) for grp in rows]})


@app.route("/api/addon-groups", methods=["POST"])
@require_page("catalogo")
def api_addon_groups_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()
    cat = category_in_establishment(data.get("category_id"), est)

    grp = AddonGroup(
        establishment_id=est.id,
        category_id=cat.id if cat else None,
        min_selections=0,
        max_selections=1,
        required=False,
        active=True,
        order_position=next_position(AddonGroup, establishment_id=est.id, category_id=cat.id if cat else None),
    )
    group_fields(data, grp)
    db.session.add(grp)
    db.session.commit()
    audit("create", "addon_group", grp.id, {"name": grp.name})
    broadcast_change(est.id, "addon_groups", "INSERT", grp.id)
    return jsonify({"success": True, "addon_group": addon_group_payload(grp)})


@app.route("/api/addon-groups/<int:group_id>", methods=["PUT"])
@require_page("catalogo")
def api_addon_groups_update(group_id):
    bad = require_json()
    if bad:
        return bad
    est = current_establishment()
    grp = group_or_404(group_id, est)
    group_fields(request.get_json(), grp)
    db.session.commit()
    audit("update", "addon_group", grp.id)
    broadcast_change(est.id, "addon_groups", "UPDATE", grp.id)
    return jsonify({"success": True, "addon_group": addon_group_payload(grp)})


@app.route("/api/addon-groups/<int:group_id>", methods=["DELETE"])
@require_page("catalogo")
def api_addon_groups_delete(group_id):
    est = current_establishment()
    grp = group_or_404(group_id, est)

    addon_ids = [a.id for a in Addon.query.filter_by(addon_group_id=grp.id).all()]
    if addon_ids:
        OrderItemAddon.query.filter(OrderItemAddon.addon_id.in_(addon_ids)).update(
            {"addon_id": None}, synchronize_session=False
        )
    Addon.query.filter_by(addon_group_id=grp.id).delete()
    CategoryAddonGroup.query.filter_by(addon_group_id=grp.id).delete()
    ProductAddonGroup.query.filter_by(addon_group_id=grp.id).delete()
    db.session.delete(grp)
    db.session.commit()
    audit("delete", "addon_group", group_id)
    broadcast_change(est.id, "addon_groups", "DELETE", group_id)
    return jsonify({"success": True})


@app.route("/api/addon-groups/reorder", methods=["POST"])
@require_page("catalogo")
def api_addon_groups_reorder():
    bad = require_json()
    if bad:
        return bad
    est = current_establishment()
    reorder_rows(AddonGroup, request.get_json().get("ids"), establishment_id=est.id)
    broadcast_change(est.id, "addon_groups", "UPDATE")
    return jsonify({"success": True})


@app.route("/api/addon-groups/<int:group_id>/addons", methods=["POST"])
@require_page("catalogo")
def api_addons_create(group_id):
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()
    grp = group_or_404(group_id, est)

    name = (data.get("name") or "").strip()
    if not name:
        return json_error("Name required", 400)
    price = to_decimal(data.get("price"), Decimal("0"))
    if price is None or price < 0:
        return json_error("Valid price required", 400)

    a = Addon(
        addon_group_id=grp.id,
        name=name,
        price=money(price),
        active=bool(data.get("active", True)),
        order_position=next_position(Addon, addon_group_id=grp.id),
    )
    db.session.add(a)
    db.session.commit()
    audit("create", "addon", a.id, {"group_id": grp.id})
    broadcast_change(est.id, "addons", "INSERT", a.id)
    return jsonify({"success": True, "addon": a.to_dict()})


@app.route("/api/addon-groups/<int:group_id>/addons/reorder", methods=["POST"])
@require_page("catalogo")
def api_addons_reorder(group_id):
    bad = require_json()
    if bad:
        return bad
    est = current_establishment()
    grp = group_or_404(group_id, est)
    reorder_rows(Addon, request.get_json().get("ids"), addon_group_id=grp.id)
    broadcast_change(est.id, "addons", "UPDATE")
    return jsonify({"success": True})


def addon_or_404(addon_id, est):
    a = db.session.get(Addon, addon_id)
    if not a:
        abort(404)
    group_or_404(a.addon_group_id, est)
    return a


@app.route("/api/addons/<int:addon_id>", methods=["PUT"])
@require_page("catalogo")
def api_addons_update(addon_id):
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()
    a = addon_or_404(addon_id, est)

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return json_error("Name required", 400)
        a.name = name
    if "price" in data:
        price = to_decimal(data.get("price"))
        if price is None or price < 0:
            return json_error("Valid price required", 400)
        a.price = money(price)
    if "active" in data:
        a.active = bool(data.get("active"))
    db.session.commit()
    audit("update", "addon", a.id)
    broadcast_change(est.id, "addons", "UPDATE", a.id)
    return jsonify({"success": True, "addon": a.to_dict()})


@app.route("/api/addons/<int:addon_id>", methods=["DELETE"])
@require_page("catalogo")
def api_addons_delete(addon_id):
    est = current_establishment()
    a = addon_or_404(addon_id, est)
    OrderItemAddon.query.filter_by(addon_id=a.id).update({"addon_id": None})
    db.session.delete(a)
    db.session.commit()
    audit("delete", "addon", addon_id)
    broadcast_change(est.id, "addons", "DELETE", addon_id)
    return jsonify({"success": True})


# ---------------------------
# Catalog: addon group links
# ---------------------------

@app.route("/api/categories/<int:cat_id>/addon-groups", methods=["GET"])
@require_page("catalogo")
def api_category_groups_list(cat_id):
    est = current_establishment()
    c = Category.query.filter_by(id=cat_id, establishment_id=est.id).first_or_404()
    ids = [link.addon_group_id for link in CategoryAddonGroup.query.filter_by(category_id=c.id).all()]
    rows = AddonGroup.query.filter(AddonGroup.id.in_(ids)).order_by(AddonGroup.order_position.asc()).all() if ids else []
    return jsonify({"success": True, "addon_groups": [grp.to_dict() for grp in rows]})


@app.route("/api/categories/<int:cat_id>/addon-groups", methods=["POST"])
@require_page("catalogo")
def api_category_groups_link(cat_id):
    bad = require_json()
    if bad:
        return bad
    est = current_establishment()
    c = Category.query.filter_by(id=cat_id, establishment_id=est.id).first_or_404()
    grp = group_or_404(parse_int(request.get_json().get("addon_group_id")), est)

    if not CategoryAddonGroup.query.filter_by(category_id=c.id, addon_group_id=grp.id).first():
        db.session.add(CategoryAddonGroup(category_id=c.id, addon_group_id=grp.id))
        db.session.commit()
        audit("link", "category_addon_group", c.id, {"addon_group_id": grp.id})
        broadcast_change(est.id, "category_addon_groups", "INSERT", c.id)
    return jsonify({"success": True})


@app.route("/api/categories/<int:cat_id>/addon-groups/<int:group_id>", methods=["DELETE"])
@require_page("catalogo")
def api_category_groups_unlink(cat_id, group_id):
    est = current_establishment()
    c = Category.query.filter_by(id=cat_id, establishment_id=est.id).first_or_404()
    link = CategoryAddonGroup.query.filter_by(category_id=c.id, addon_group_id=group_id).first_or_404()
    db.session.delete(link)
    db.session.commit()
    audit("unlink", "category_addon_group", c.id, {"addon_group_id": group_id})
    broadcast_change(est.id, "category_addon_groups", "DELETE", c.id)
    return jsonify({"success": True})


@app.route("/api/products/<int:product_id>/addon-groups/links", methods=["GET"])
@require_page("catalogo")
def api_product_groups_list(product_id):
    est = current_establishment()
    p = Product.query.filter_by(id=product_id, establishment_id=est.id).first_or_404()
    ids = [link.addon_group_id for link in ProductAddonGroup.query.filter_by(product_id=p.id).all()]
    rows = AddonGroup.query.filter(AddonGroup.id.in_(ids)).order_by(AddonGroup.order_position.asc()).all() if ids else []
    return jsonify({"success": True, "addon_groups": [grp.to_dict() for grp in rows]})


@app.route("/api/products/<int:product_id>/addon-groups", methods=["POST"])
@require_page("catalogo")
def api_product_groups_link(product_id):
    bad = require_json()
    if bad:
        return bad
    est = current_establishment()
    p = Product.query.filter_by(id=product_id, establishment_id=est.id).first_or_404()
    grp = group_or_404(parse_int(request.get_json().get("addon_group_id")), est)

    if not ProductAddonGroup.query.filter_by(product_id=p.id, addon_group_id=grp.id).first():
        db.session.add(ProductAddonGroup(product_id=p.id, addon_group_id=grp.id))
        db.session.commit()
        audit("link", "product_addon_group", p.id, {"addon_group_id": grp.id})
        broadcast_change(est.id, "product_addon_groups", "INSERT", p.id)
    return jsonify({"success": True})


@app.route("/api/products/<int:product_id>/addon-groups/<int:group_id>", methods=["DELETE"])
@require_page("catalogo")
def api_product_groups_unlink(product_id, group_id):
    est = current_establishment()
    p = Product.query.filter_by(id=product_id, establishment_id=est.id).first_or_404()
    link = ProductAddonGroup.query.filter_by(product_id=p.id, addon_group_id=group_id).first_or_404()
    db.session.delete(link)
    db.session.commit()
    audit("unlink", "product_addon_group", p.id, {"addon_group_id": group_id})
    broadcast_change(est.id, "product_addon_groups", "DELETE", p.id)
    return jsonify({"success": True})


@app.route("/api/products/<int:product_id>/addon-groups", methods=["GET"])
@require_page("catalogo", "pedidos", "mesas")
def api_product_groups_resolved(product_id):
    est = current_establishment()
    p = Product.query.filter_by(id=product_id, establishment_id=est.id).first_or_404()
    groups = [addon_group_payload(grp, active_only=True) for grp in product_addon_groups(p)]
    return jsonify({"success": True, "addon_groups": groups})


# ---------------------------
# Customers
# ---------------------------

def customer_stats_subquery(est_id):
    return (
        db.session.query(
            Order.customer_id.label("customer_id"),
            func.count(Order.id).label("total_orders"),
            func.coalesce(func.sum(Order.total), 0).label("total_spent"),
            func.max(Order.created_at).label("last_order_at"),
        )
        .filter(
            Order.establishment_id == est_id,
            Order.status != OrderStatus.CANCELLED.value,
            Order.customer_id.isnot(None),
        )
        .group_by(Order.customer_id)
        .subquery()
    )


@app.route("/api/customers", methods=["GET"])
@require_page("clientes")
def api_customers_list():
    est = current_establishment()
    stats = customer_stats_subquery(est.id)
    q = (
        db.session.query(Customer, stats.c.total_orders, stats.c.total_spent, stats.c.last_order_at)
        .outerjoin(stats, stats.c.customer_id == Customer.id)
        .filter(Customer.establishment_id == est.id)
    )

    s = (request.args.get("search") or "").strip()
    if s:
        digits = extract_phone_digits(s)
        conds = [Customer.name.ilike(f"%{s}%")]
        if digits:
            conds.append(Customer.phone.like(f"%{digits}%"))
        q = q.filter(sa_or(*conds))

    neighborhood = (request.args.get("neighborhood") or "").strip()
    if neighborhood:
        q = q.filter(Customer.neighborhood == neighborhood)

    sort = request.args.get("sort") or "recent"
    if sort == "orders":
        q = q.order_by(func.coalesce(stats.c.total_orders, 0).desc(), Customer.id.asc())
    elif sort == "spent":
        q = q.order_by(func.coalesce(stats.c.total_spent, 0).desc(), Customer.id.asc())
    elif sort == "name":
        q = q.order_by(Customer.name.asc(), Customer.id.asc())
    else:
        q = q.order_by(stats.c.last_order_at.is_(None), stats.c.last_order_at.desc(), Customer.id.desc())

    total_count = q.count()
    limit = min(max(parse_int(request.args.get("limit"), 50), 1), 200)
    offset = max(parse_int(request.args.get("offset"), 0), 0)
    rows = q.offset(offset).limit(limit).all()

    customers = []
    for c, total_orders, total_spent, last_order_at in rows:
        d = c.to_dict()
        d["total_orders"] = int(total_orders or 0)
        d["total_spent"] = num(total_spent)
        d["last_order_at"] = iso(last_order_at)
        customers.append(d)

    return jsonify({"success": True, "customers": customers, "total_count": total_count,
                    "limit": limit, "offset": offset})


@app.route("/api/customers/summary", methods=["GET"])
@require_page("clientes")
def api_customers_summary():
    est = current_establishment()
    valid = Order.query.filter(
        Order.establishment_id == est.id,
        Order.status != OrderStatus.CANCELLED.value,
    )
    orders = valid.all()
    with_orders = {o.customer_id for o in orders if o.customer_id}
    revenue = sum((money(o.total) for o in orders), Decimal("0.00"))
    return jsonify({
        "success": True,
        "total_customers": Customer.query.filter_by(establishment_id=est.id).count(),
        "customers_with_orders": len(with_orders),
        "total_orders": len(orders),
        "total_revenue": num(revenue),
    })


@app.route("/api/customers/neighborhoods", methods=["GET"])
@require_page("clientes")
def api_customers_neighborhoods():
    est = current_establishment()
    rows = (
        db.session.query(Customer.neighborhood)
        .filter(Customer.establishment_id == est.id, Customer.neighborhood.isnot(None), Customer.neighborhood != "")
        .distinct()
        .order_by(Customer.neighborhood.asc())
        .all()
    )
    return jsonify({"success": True, "neighborhoods": [r[0] for r in rows]})


@app.route("/api/customers/<int:customer_id>/orders", methods=["GET"])
@require_page("clientes")
def api_customer_orders(customer_id):
    est = current_establishment()
    c = Customer.query.filter_by(id=customer_id, establishment_id=est.id).first_or_404()
    rows = Order.query.filter_by(customer_id=c.id).order_by(Order.created_at.desc(), Order.id.desc()).all()
    return jsonify({"success": True, "customer": c.to_dict(),
                    "orders": [serialize_order(o, include_items=False) for o in rows]})


# ---------------------------
# Orders
# ---------------------------

@app.route("/api/orders", methods=["GET"])
@require_page("pedidos")
def api_orders_list():
    est = current_establishment()
    page_size = app.config["ORDERS_PAGE_SIZE"]
    offset = max(parse_int(request.args.get("offset"), 0), 0)

    q = Order.query.filter_by(establishment_id=est.id)
    statuses = [s for s in (request.args.get("status") or "").split(",") if s]
    if statuses:
        q = q.filter(Order.status.in_(statuses))
    order_type = request.args.get("order_type")
    if order_type:
        q = q.filter(Order.order_type == order_type)

    rows = q.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(page_size).all()
    next_offset = offset + page_size if len(rows) == page_size else None
    return jsonify({"success": True, "orders": [serialize_order(o) for o in rows], "next_offset": next_offset})


@app.route("/api/orders/<int:order_id>", methods=["GET"])
@require_page("pedidos", "mesas")
def api_orders_get(order_id):
    est = current_establishment()
    o = order_or_404(order_id, est)
    d = serialize_order(o)
    d["history"] = [
        h.to_dict() for h in
        OrderStatusHistory.query.filter_by(order_id=o.id).order_by(OrderStatusHistory.id.asc()).all()
    ]
    return jsonify({"success": True, "order": d})


@app.route("/api/orders/quick", methods=["POST"])
@require_page("pedidos")
def api_orders_quick():
    """Counter, table tab or delivery order typed in by staff."""
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()

    subtype = data.get("order_subtype") or OrderSubtype.COUNTER.value
    if subtype not in [s.value for s in OrderSubtype]:
        return json_error("Invalid order_subtype", 400)
    is_table = subtype == OrderSubtype.TABLE.value
    is_delivery = subtype == OrderSubtype.DELIVERY.value

    payment_method = data.get("payment_method")
    if payment_method and payment_method not in [m.value for m in PaymentMethod]:
        return json_error("Invalid payment method", 400)
    if not payment_method and not is_table:
        return json_error("Payment method required", 400)

    customer_data = customer_payload(data)
    name = str(customer_data.get("name") or "").strip()
    phone = str(customer_data.get("phone") or "").strip()
    if not name:
        return json_error("Customer name required", 400)

    table_number = (str(data.get("table_number") or "")).strip()
    if is_table:
        if not table_number:
            return json_error("Table number required", 400)
        dup = Order.query.filter(
            Order.establishment_id == est.id,
            Order.order_subtype == OrderSubtype.TABLE.value,
            Order.is_open_tab.is_(True),
            Order.table_number == table_number,
            Order.status != OrderStatus.CANCELLED.value,
        ).first()
        if dup:
            return json_error(f"DUPLICATE_TABLE:{table_number}", 409)

    address = data.get("customer_address") or {}
    if not isinstance(address, dict):
        return json_error("Invalid customer_address", 400)
    if is_delivery and not (address.get("address") and address.get("neighborhood")):
        return json_error("Delivery address required", 400)

    resolved = resolve_items(est, data.get("items"))

    origin = "table" if is_table else "delivery" if is_delivery else "counter"
    customer = upsert_customer(est.id, name, phone, address if is_delivery else None, origin)

    if is_delivery:
        fee = to_decimal(data.get("delivery_fee"), None)
        delivery_fee = money(fee if fee is not None else (est.delivery_fee or 0))
    else:
        delivery_fee = Decimal("0.00")

    o = Order(
        establishment_id=est.id,
        order_number=next_order_number(est.id),
        customer_id=customer.id if customer else None,
        status=OrderStatus.PENDING.value,
        order_type=OrderType.DELIVERY.value if is_delivery else OrderType.DINE_IN.value,
        order_subtype=None if is_delivery else subtype,
        payment_method=payment_method,
        delivery_fee=delivery_fee,
        notes=(data.get("notes") or "").strip() or None,
        customer_display_name=name if not phone else None,
        table_number=table_number if is_table else None,
        is_open_tab=is_table,
        created_at=now_utc(),
        updated_at=now_utc(),
    )
    db.session.add(o)
    db.session.flush()

    add_items_to_order(o, resolved)
    recalculate_order_totals(o)
    o.change_for = resolve_change_for(data.get("change_for"), payment_method, o.total)
    add_status_history(o, OrderStatus.PENDING.value)
    db.session.commit()

    audit("create", "order", o.id, {"order_number": o.order_number, "subtype": subtype})
    app.logger.info("Quick order #%s (%s) created for establishment %s", o.order_number, subtype, est.id)
    broadcast_change(est.id, "orders", "INSERT", o.id)
    return jsonify({"success": True, "order": serialize_order(o)})


@app.route("/api/orders/<int:order_id>/status", methods=["POST"])
@require_page("pedidos", "mesas")
def api_orders_set_status(order_id):
    bad = require_json()
    if bad:
        return bad
    est = current_establishment()
    o = order_or_404(order_id, est)
    new_status = (request.get_json().get("status") or "").strip()
    link = apply_status(o, est, new_status)
    audit("set_status", "order", o.id, {"status": new_status})
    return jsonify({"success": True, "order": serialize_order(o), "whatsapp_link": link})


@app.route("/api/orders/<int:order_id>/advance", methods=["POST"])
@require_page("pedidos", "mesas")
def api_orders_advance(order_id):
    est = current_establishment()
    o = order_or_404(order_id, est)
    target = next_status(o.order_type, o.status)
    if not target:
        return json_error("No next status", 409)
    link = apply_status(o, est, target)
    audit("set_status", "order", o.id, {"status": target})
    return jsonify({"success": True, "order": serialize_order(o), "whatsapp_link": link})


@app.route("/api/orders/<int:order_id>/revert", methods=["POST"])
@require_page("pedidos", "mesas")
def api_orders_revert(order_id):
    est = current_establishment()
    o = order_or_404(order_id, est)
    target = previous_status(o.order_type, o.status)
    if not target:
        return json_error("No previous status", 409)
    apply_status(o, est, target)
    audit("set_status", "order", o.id, {"status": target, "revert": True})
    return jsonify({"success": True, "order": serialize_order(o)})


@app.route("/api/orders/<int:order_id>/payment-method", methods=["PUT"])
@require_page("pedidos", "mesas")
def api_orders_payment_method(order_id):
    bad = require_json()
    if bad:
        return bad
    est = current_establishment()
    o = order_or_404(order_id, est)
    method = request.get_json().get("payment_method")
    if method not in [m.value for m in PaymentMethod]:
        return json_error("Invalid payment method", 400)

    o.payment_method = method
    o.updated_at = now_utc()
    txs = FinancialTransaction.query.filter_by(order_id=o.id).all()
    for tx in txs:
        fee, net = net_after_fee(tx.gross_amount, method, est.card_credit_fee, est.card_debit_fee)
        tx.payment_method = method
        tx.fee_amount = fee
        tx.net_amount = net
    db.session.commit()

    audit("set_payment_method", "order", o.id, {"payment_method": method, "transactions": len(txs)})
    broadcast_change(est.id, "orders", "UPDATE", o.id)
    if txs:
        broadcast_change(est.id, "financial_transactions", "UPDATE")
    return jsonify({"success": True, "order": serialize_order(o, include_items=False)})


@app.route("/api/orders/<int:order_id>/items", methods=["POST"])
@require_page("pedidos", "mesas")
def api_order_add_item(order_id):
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()
    o = order_or_404(order_id, est)
    ensure_order_editable(o)

    raw = data.get("items") if isinstance(data.get("items"), list) else [data]
    resolved = resolve_items(est, raw)
    created = add_items_to_order(o, resolved)
    recalculate_order_totals(o)
    db.session.commit()

    audit("add_item", "order", o.id, {"items": [it.id for it in created]})
    broadcast_change(est.id, "order_items", "INSERT", o.id)
    return jsonify({"success": True, "order": serialize_order(o), "item_ids": [it.id for it in created]})


@app.route("/api/order-items/<int:item_id>", methods=["PUT"])
@require_page("pedidos", "mesas")
def api_order_item_update(item_id):
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()
    oi, o = item_or_404(item_id, est)
    ensure_order_editable(o)

    if "quantity" in data:
        qty = parse_int(data.get("quantity"))
        if qty is None or qty < 1:
            return json_error("Quantidade inválida", 400)
        oi.quantity = qty
    if "observation" in data:
        oi.observation = (data.get("observation") or "").strip() or None

    if "addons" in data:
        product = db.session.get(Product, oi.product_id) if oi.product_id else None
        if not product:
            return json_error("Produto indisponível", 400)
        selected = resolve_addons(product, data.get("addons"))
        OrderItemAddon.query.filter_by(order_item_id=oi.id).delete()
        for a in selected:
            db.session.add(OrderItemAddon(
                order_item_id=oi.id,
                addon_id=a["addon"].id,
                addon_name=a["addon"].name,
                addon_price=a["price"],
                quantity=a["quantity"],
            ))
        db.session.flush()

    current_addons = OrderItemAddon.query.filter_by(order_item_id=oi.id).all()
    oi.total = item_total(oi.product_price, oi.quantity, current_addons)
    db.session.flush()
    recalculate_order_totals(o)
    db.session.commit()

    audit("update_item", "order", o.id, {"item_id": oi.id})
    broadcast_change(est.id, "order_items", "UPDATE", oi.id)
    return jsonify({"success": True, "order": serialize_order(o)})


@app.route("/api/order-items/<int:item_id>", methods=["DELETE"])
@require_page("pedidos", "mesas")
def api_order_item_delete(item_id):
    est = current_establishment()
    oi, o = item_or_404(item_id, est)
    ensure_order_editable(o)

    OrderItemAddon.query.filter_by(order_item_id=oi.id).delete()
    db.session.delete(oi)
    db.session.flush()
    recalculate_order_totals(o)
    db.session.commit()

    audit("delete_item", "order", o.id, {"item_id": item_id})
    broadcast_change(est.id, "order_items", "DELETE", item_id)
    return jsonify({"success": True, "order": serialize_order(o)})


@app.route("/api/order-items/<int:item_id>/status", methods=["POST"])
@require_page("pedidos", "mesas")
def api_order_item_status(item_id):
    est = current_establishment()
    oi, o = item_or_404(item_id, est)
    data = request.get_json(silent=True) or {}

    target = data.get("item_status") or next_item_status(oi.item_status)
    if not target:
        return json_error("Item already delivered", 409)
    if target not in ITEM_STATUS_FLOW:
        return json_error("Invalid item status", 400)

    oi.item_status = target
    db.session.commit()
    broadcast_change(est.id, "order_items", "UPDATE", oi.id)
    return jsonify({"success": True, "item": dict(oi.to_dict(), status_display=get_item_status_display(target))})


@app.route("/api/orders/open-tabs", methods=["GET"])
@require_page("pedidos", "mesas")
def api_orders_open_tabs():
    est = current_establishment()
    rows = (
        Order.query.filter(
            Order.establishment_id == est.id,
            Order.order_subtype == OrderSubtype.TABLE.value,
            Order.is_open_tab.is_(True),
            Order.status != OrderStatus.CANCELLED.value,
        )
        .order_by(Order.created_at.asc(), Order.id.asc())
        .all()
    )
    return jsonify({"success": True, "orders": [serialize_order(o) for o in rows]})


@app.route("/api/orders/<int:order_id>/close-tab", methods=["POST"])
@require_page("pedidos", "mesas")
def api_orders_close_tab(order_id):
    bad = require_json()
    if bad:
        return bad
    est = current_establishment()
    o = order_or_404(order_id, est)
    method = request.get_json().get("payment_method")
    if method not in [m.value for m in PaymentMethod]:
        return json_error("Invalid payment method", 400)
    if not o.is_open_tab:
        return json_error("Order is not an open tab", 409)
    if o.status == OrderStatus.CANCELLED.value:
        return json_error("Pedido cancelado", 409)

    o.payment_method = method
    o.is_open_tab = False
    o.status = OrderStatus.SERVED.value
    o.updated_at = now_utc()
    add_status_history(o, OrderStatus.SERVED.value)
    record_order_income(o, est)
    db.session.commit()

    audit("close_tab", "order", o.id, {"payment_method": method, "total": str(o.total)})
    app.logger.info("Tab #%s closed (%s)", o.order_number, method)
    broadcast_change(est.id, "orders", "UPDATE", o.id)
    notify_order_status(o.id, o.status)
    return jsonify({"success": True, "order": serialize_order(o)})


@app.route("/api/orders/preparation-time", methods=["GET"])
@require_page("pedidos")
def api_orders_preparation_time():
    est = current_establishment()
    return jsonify({"success": True, "preparation": preparation_average(est.id)})


@app.route("/api/orders/<int:order_id>/receipt.pdf", methods=["GET"])
@require_page("pedidos", "mesas")
def api_order_receipt_pdf(order_id):
    est = current_establishment()
    o = order_or_404(order_id, est)
    pdf_bytes = build_receipt_pdf_bytes(serialize_order(o), est.to_dict(), tz_name=store_tz())
    return send_file(
        io.BytesIO(pdf_bytes),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"pedido-{o.order_number}.pdf"
    )


@app.route("/api/orders/<int:order_id>/ticket", methods=["GET"])
@require_page("pedidos", "mesas")
def api_order_ticket(order_id):
    """Text ticket for the thermal print bridge; ``?items=1,2`` prints a subset."""
    est = current_establishment()
    o = order_or_404(order_id, est)
    raw_ids = [s for s in (request.args.get("items") or "").split(",") if s.strip()]
    item_ids = [parse_int(s) for s in raw_ids]
    if any(i is None for i in item_ids):
        return json_error("Invalid item id", 400)

    text = build_ticket_text(
        serialize_order(o), est.to_dict(),
        item_ids=item_ids or None,
        escpos=request.args.get("escpos") == "1",
        tz_name=store_tz(),
        now=now_utc() if item_ids else None,
    )
    if request.args.get("format") == "json":
        return jsonify({"success": True, "ticket": text, "print_settings": est.print_settings()})
    return Response(text, mimetype="text/plain")


@app.route("/api/orders/<int:order_id>/whatsapp-link", methods=["GET"])
@require_page("pedidos", "mesas")
def api_order_whatsapp_link(order_id):
    est = current_establishment()
    o = order_or_404(order_id, est)
    return jsonify({"success": True, "whatsapp_link": whatsapp_link_for(o, est, request.args.get("status"))})


# ---------------------------
# Tables
# ---------------------------

def table_payload(t):
    orders = Order.query.filter_by(table_id=t.id).order_by(Order.created_at.asc(), Order.id.asc()).all()
    active = [o for o in orders if o.status != OrderStatus.CANCELLED.value]
    serialized = [serialize_order(o) for o in orders]

    counts = {s: 0 for s in ITEM_STATUS_FLOW}
    for od in serialized:
        if od["status"] == OrderStatus.CANCELLED.value:
            continue
        for it in od["items"]:
            counts[it["item_status"]] = counts.get(it["item_status"], 0) + it["quantity"]

    total = sum((money(o.total) for o in active), Decimal("0.00"))
    d = t.to_dict()
    d["orders"] = serialized
    d["total"] = num(total)
    d["item_status_counts"] = counts
    return d


def table_total(t):
    orders = Order.query.filter(Order.table_id == t.id, Order.status != OrderStatus.CANCELLED.value).all()
    return money(sum((money(o.total) for o in orders), Decimal("0.00"))), orders


def open_table_or_404(table_id, est) -> DiningTable:
    t = DiningTable.query.filter_by(id=table_id, establishment_id=est.id).first_or_404()
    if t.status != TableStatus.OPEN.value:
        raise ApiError("Mesa já está fechada", 409)
    return t


@app.route("/api/tables", methods=["GET"])
@require_page("mesas")
def api_tables_list():
    est = current_establishment()
    rows = (
        DiningTable.query
        .filter_by(establishment_id=est.id, status=TableStatus.OPEN.value)
        .order_by(DiningTable.opened_at.asc(), DiningTable.id.asc())
        .all()
    )
    return jsonify({"success": True, "tables": [table_payload(t) for t in rows]})


@app.route("/api/tables", methods=["POST"])
@require_page("mesas")
def api_tables_open():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()

    number = str(data.get("table_number") or "").strip()
    if not number:
        return json_error("Table number required", 400)
    if DiningTable.query.filter_by(establishment_id=est.id, table_number=number,
                                   status=TableStatus.OPEN.value).first():
        return json_error(f"DUPLICATE_TABLE:{number}", 409)

    name = (data.get("customer_name") or "").strip() or None
    customer = upsert_customer(est.id, name, data.get("customer_phone"), origin="table")
    t = DiningTable(
        establishment_id=est.id,
        table_number=number,
        customer_id=customer.id if customer else None,
        customer_display_name=name,
        notes=(data.get("notes") or "").strip() or None,
        status=TableStatus.OPEN.value,
        opened_at=now_utc(),
    )
    db.session.add(t)
    db.session.commit()
    audit("open", "table", t.id, {"table_number": number})
    broadcast_change(est.id, "tables", "INSERT", t.id)
    return jsonify({"success": True, "table": table_payload(t)})


@app.route("/api/tables/<int:table_id>", methods=["GET"])
@require_page("mesas")
def api_tables_get(table_id):
    est = current_establishment()
    t = DiningTable.query.filter_by(id=table_id, establishment_id=est.id).first_or_404()
    return jsonify({"success": True, "table": table_payload(t)})


@app.route("/api/tables/<int:table_id>/orders", methods=["POST"])
@require_page("mesas")
def api_tables_add_order(table_id):
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()
    t = open_table_or_404(table_id, est)
    resolved = resolve_items(est, data.get("items"))

    o = Order(
        establishment_id=est.id,
        order_number=next_order_number(est.id),
        customer_id=t.customer_id,
        table_id=t.id,
        table_number=t.table_number,
        status=OrderStatus.PENDING.value,
        order_type=OrderType.DINE_IN.value,
        order_subtype=OrderSubtype.TABLE.value,
        delivery_fee=Decimal("0.00"),
        notes=(data.get("notes") or "").strip() or None,
        customer_display_name=t.customer_display_name,
        is_open_tab=False,
        created_at=now_utc(),
        updated_at=now_utc(),
    )
    db.session.add(o)
    db.session.flush()
    add_items_to_order(o, resolved)
    recalculate_order_totals(o)
    add_status_history(o, OrderStatus.PENDING.value)
    db.session.commit()

    audit("create", "order", o.id, {"table_id": t.id, "order_number": o.order_number})
    broadcast_change(est.id, "orders", "INSERT", o.id)
    broadcast_change(est.id, "tables", "UPDATE", t.id)
    return jsonify({"success": True, "id": o.id, "order_number": o.order_number, "total": num(o.total)})


@app.route("/api/tables/<int:table_id>/close", methods=["POST"])
@require_page("mesas")
def api_tables_close(table_id):
    """Settle every non-cancelled order of the table with split payments."""
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()
    t = open_table_or_404(table_id, est)

    payments = data.get("payments")
    if not isinstance(payments, list) or not payments:
        return json_error("Payments required", 400)
    for p in payments:
        if not isinstance(p, dict) or p.get("method") not in [m.value for m in PaymentMethod]:
            return json_error("Invalid payment method", 400)
        amount = to_decimal(p.get("amount"))
        if amount is None or amount <= 0:
            return json_error("Invalid payment amount", 400)

    total, orders = table_total(t)
    if not payments_match_total(payments, total):
        return json_error(
            f"Pagamentos ({payments_total(payments)}) não conferem com o total da mesa ({total})", 400
        )

    for o in orders:
        if not is_status_finalized(o.status):
            o.status = OrderStatus.SERVED.value
            add_status_history(o, OrderStatus.SERVED.value)
        o.is_open_tab = False
        o.updated_at = now_utc()
        if len(payments) == 1:
            o.payment_method = payments[0]["method"]

    for p in payments:
        add_income(est, p["amount"], p["method"], f"Mesa {t.table_number}")

    t.status = TableStatus.CLOSED.value
    t.closed_at = now_utc()
    db.session.commit()

    audit("close", "table", t.id, {"total": str(total), "payments": payments})
    app.logger.info("Table %s closed with %d payment(s), total %s", t.table_number, len(payments), total)
    broadcast_change(est.id, "tables", "UPDATE", t.id)
    broadcast_change(est.id, "orders", "UPDATE")
    broadcast_change(est.id, "financial_transactions", "INSERT")
    return jsonify({"success": True, "table": t.to_dict(), "total": num(total)})


# ---------------------------
# Finance
# ---------------------------

@app.route("/api/financial/categories", methods=["GET"])
@require_page("financeiro")
def api_fin_categories_list():
    est = current_establishment()
    q = FinancialCategory.query.filter_by(establishment_id=est.id, active=True)
    kind = request.args.get("type")
    if kind:
        q = q.filter_by(type=kind)
    rows = q.order_by(FinancialCategory.type.asc(), FinancialCategory.name.asc()).all()
    return jsonify({"success": True, "categories": [c.to_dict() for c in rows]})


@app.route("/api/financial/categories", methods=["POST"])
@require_page("financeiro")
def api_fin_categories_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()
    name = (data.get("name") or "").strip()
    kind = data.get("type")
    if not name:
        return json_error("Name required", 400)
    if kind not in [t.value for t in TransactionType]:
        return json_error("type must be income or expense", 400)

    c = FinancialCategory(establishment_id=est.id, name=name, type=kind,
                          icon=data.get("icon"), is_default=False, active=True)
    db.session.add(c)
    db.session.commit()
    audit("create", "financial_category", c.id)
    broadcast_change(est.id, "financial_categories", "INSERT", c.id)
    return jsonify({"success": True, "category": c.to_dict()})


@app.route("/api/financial/categories/<int:cat_id>", methods=["PUT"])
@require_page("financeiro")
def api_fin_categories_update(cat_id):
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = current_establishment()
    c = FinancialCategory.query.filter_by(id=cat_id, establishment_id=est.id).first_or_404()
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return json_error("Name required", 400)
        c.name = name
    if "icon" in data:
        c.icon = data.get("icon")
    if "active" in data:
        c.active = bool(data.get("active"))
    db.session.commit()
    audit("update", "financial_category", c.id)
    broadcast_change(est.id, "financial_categories", "UPDATE", c.id)
    return jsonify({"success": True, "category": c.to_dict()})


@app.route("/api/financial/categories/<int:cat_id>", methods=["DELETE"])
@require_page("financeiro")
def api_fin_categories_delete(cat_id):
    est = current_establishment()
    c = FinancialCategory.query.filter_by(id=cat_id, establishment_id=est.id).first_or_404()
    c.active = False
    db.session.commit()
    audit("deactivate", "financial_category", c.id)
    broadcast_change(est.id, "financial_categories", "UPDATE", c.id)
    return jsonify({"success": True})


@app.route("/api/financial/categories/initialize", methods=["POST"])
@require_page("financeiro")
def api_fin_categories_initialize():
    est = current_establishment()
    created = ensure_default_financial_categories(est.id)
    db.session.commit()
    if created:
        audit("initialize", "financial_category", None, {"created": created})
        broadcast_change(est.id, "financial_categories", "INSERT")
    return jsonify({"success": True, "created": created})


def filtered_transactions(est_id):
    q = FinancialTransaction.query.filter_by(establishment_id=est_id)
    start = parse_date(request.args.get("start_date"))
    end = parse_date(request.args.get("end_date"))
    if start:
        q = q.filter(FinancialTransaction.transaction_date >= start)
    if end:
        q = q.filter(FinancialTransaction.transaction_date <= end)
    kind = request.args.get("type")
    if kind:
        q = q.filter(FinancialTransaction.type == kind)
    cat_id = parse_int(request.args.get("category_id"))
    if cat_id:
        q = q.filter(FinancialTransaction.category_id == cat_id)
    method = request.args.get("payment_method")
    if method:
        q = q.filter(FinancialTransaction.payment_method == method)
    return q


def transaction_fields(data, tx, est):
    if "type" in data or tx.type is None:
        if data.get("type") not in [t.value for t in TransactionType]:
            raise ApiError("type must be income or expense")
        tx.type = data["type"]
    if "gross_amount" in data or tx.gross_amount is None:
        gross = to_decimal(data.get("gross_amount"))
        if gross is None or gross <= 0:
            raise ApiError("gross_amount must be positive")
        tx.gross_amount = money(gross)
        tx.fee_amount = Decimal("0.00")
        tx.net_amount = money(gross)
    if "category_id" in data:
        cat_id = parse_int(data.get("category_id"))
        if cat_id:
            cat = FinancialCategory.query.filter_by(id=cat_id, establishment_id=est.id).first()
            if not cat:
                raise ApiError("Category not found", 404)
            if cat.type != tx.type:
                raise ApiError("Category type does not match transaction type")
        tx.category_id = cat_id
    if "description" in data:
        tx.description = (data.get("description") or "").strip() or None
    if "payment_method" in data:
        method = data.get("payment_method")
        if method and method not in [m.value for m in PaymentMethod]:
            raise ApiError("Invalid payment method")
        tx.payment_method = method or None
    if "transaction_date" in data or tx.transaction_date is None:
        tx.transaction_date = parse_date(data.get("transaction_date")) or local_today()


@app.route("/api/financial/transactions", methods=["GET"])
@require_page("financeiro")
def api_fin_transactions_list():
    est = current_establishment()
    rows = (
        filtered_transactions(est.id)
        .order_by(FinancialTransaction.transaction_date.desc(), FinancialTransaction.id.desc())
        .all()
    )
    return jsonify({"success": True, "transactions": [tx.to_dict() for tx in rows]})


@app.route("/api/financial/transactions", methods=["POST"])
@require_page("financeiro")
def api_fin_transactions_create():
    bad = require_json()
    if bad:
        return bad
    est = current_establishment()
    tx = FinancialTransaction(establishment_id=est.id)
    transaction_fields(request.get_json(), tx, est)
    db.session.add(tx)
    db.session.commit()
    audit("create", "financial_transaction", tx.id, {"type": tx.type, "gross": str(tx.gross_amount)})
    broadcast_change(est.id, "financial_transactions", "INSERT", tx.id)
    return jsonify({"success": True, "transaction": tx.to_dict()})


@app.route("/api/financial/transactions/<int:tx_id>", methods=["PUT"])
@require_page("financeiro")
def api_fin_transactions_update(tx_id):
    bad = require_json()
    if bad:
        return bad
    est = current_establishment()
    tx = FinancialTransaction.query.filter_by(id=tx_id, establishment_id=est.id).first_or_404()
    transaction_fields(request.get_json(), tx, est)
    db.session.commit()
    audit("update", "financial_transaction", tx.id)
    broadcast_change(est.id, "financial_transactions", "UPDATE", tx.id)
    return jsonify({"success": True, "transaction": tx.to_dict()})


@app.route("/api/financial/transactions/<int:tx_id>", methods=["DELETE"])
@require_page("financeiro")
def api_fin_transactions_delete(tx_id):
    est = current_establishment()
    tx = FinancialTransaction.query.filter_by(id=tx_id, establishment_id=est.id).first_or_404()
    db.session.delete(tx)
    db.session.commit()
    audit("delete", "financial_transaction", tx_id)
    broadcast_change(est.id, "financial_transactions", "DELETE", tx_id)
    return jsonify({"success": True})


@app.route("/api/financial/summary", methods=["GET"])
@require_page("financeiro")
def api_fin_summary():
    est = current_establishment()
    rows = filtered_transactions(est.id).all()

    gross_income = Decimal("0.00")
    total_fees = Decimal("0.00")
    total_expenses = Decimal("0.00")
    for tx in rows:
        if tx.type == TransactionType.INCOME.value:
            gross_income += money(tx.net_amount)
            total_fees += money(tx.fee_amount)
        else:
            total_expenses += money(tx.gross_amount)

    net_income = gross_income - total_expenses
    return jsonify({
        "success": True,
        "gross_income": num(gross_income),
        "total_fees": num(total_fees),
        "total_expenses": num(total_expenses),
        "net_income": num(net_income),
        "balance": num(net_income),
        "transactions": len(rows),
    })


# ---------------------------
# Public storefront
# ---------------------------

def public_establishment_or_404(slug) -> Establishment:
    return Establishment.query.filter_by(slug=slug).first_or_404()


def public_order_payload(o, est):
    flow = get_status_flow(o.order_type)
    reached = flow.index(o.status) if o.status in flow else -1
    customer = db.session.get(Customer, o.customer_id) if o.customer_id else None
    items = []
    for it in serialize_items(o.id):
        items.append({
            "product_name": it["product_name"],
            "quantity": it["quantity"],
            "observation": it["observation"],
            "total": it["total"],
            "addons": [{"name": a["addon_name"], "quantity": a["quantity"], "price": a["addon_price"]}
                       for a in it["addons"]],
        })
    return {
        "id": o.id,
        "order_number": o.order_number,
        "establishment": {"name": est.name, "slug": est.slug, "phone": est.phone},
        "customer_name": customer.name if customer else o.customer_display_name,
        "status": o.status,
        "status_display": get_status_display(o.status),
        "is_finalized": is_status_finalized(o.status),
        "order_type": o.order_type,
        "order_type_label": order_type_label(o.order_type, public=True),
        "payment_method_label": payment_method_label(o.payment_method),
        "steps": [
            {"status": s, "label": get_status_display(s)["label"], "done": i <= reached}
            for i, s in enumerate(flow)
        ],
        "items": items,
        "subtotal": num(o.subtotal),
        "delivery_fee": num(o.delivery_fee),
        "total": num(o.total),
        "change_for": num(o.change_for) if o.change_for is not None else None,
        "scheduled_for": iso(o.scheduled_for),
        "created_at": iso(o.created_at),
    }


@app.route("/api/public/<slug>", methods=["GET"])
def api_public_store(slug):
    est = public_establishment_or_404(slug)
    now = now_local(store_tz())
    opened = store_is_open(est, now)
    d = est.to_public_dict()
    d["is_open"] = opened
    d["next_open_time"] = None if opened else next_open_time(est.opening_hours, now)
    d["today_hours"] = today_hours(est.opening_hours, now)
    d["has_opening_hours"] = bool(est.opening_hours)
    d["theme_styles"] = build_theme_styles(est.primary_color, est.secondary_color)
    return jsonify({"success": True, "establishment": d})


@app.route("/api/public/<slug>/menu", methods=["GET"])
def api_public_menu(slug):
    est = public_establishment_or_404(slug)
    cats = (
        Category.query.filter_by(establishment_id=est.id, active=True)
        .order_by(Category.order_position.asc(), Category.id.asc())
        .all()
    )
    products = (
        Product.query.filter_by(establishment_id=est.id, active=True)
        .order_by(Product.order_position.asc(), Product.id.asc())
        .all()
    )
    by_cat = {}
    for p in products:
        by_cat.setdefault(p.category_id, []).append(p.to_dict())

    menu = [dict(c.to_dict(), products=by_cat.get(c.id, [])) for c in cats]
    return jsonify({"success": True, "categories": menu})


@app.route("/api/public/<slug>/products/<int:product_id>/addons", methods=["GET"])
def api_public_product_addons(slug, product_id):
    est = public_establishment_or_404(slug)
    p = Product.query.filter_by(id=product_id, establishment_id=est.id, active=True).first_or_404()
    groups = [addon_group_payload(grp, active_only=True) for grp in product_addon_groups(p)]
    return jsonify({"success": True, "addon_groups": [grp for grp in groups if grp["addons"]]})


@app.route("/api/public/<slug>/schedule", methods=["GET"])
def api_public_schedule(slug):
    est = public_establishment_or_404(slug)
    if not est.allow_scheduling:
        return jsonify({"success": True, "allow_scheduling": False, "days": [], "slots": []})

    now = now_local(store_tz())
    days = next_available_days(est.opening_hours, 7, now)
    day = parse_date(request.args.get("date")) or (days[0] if days else None)
    slots = schedule_slots(est.opening_hours, day, now) if day else []
    return jsonify({
        "success": True,
        "allow_scheduling": True,
        "days": [d.isoformat() for d in days],
        "date": day.isoformat() if day else None,
        "slots": slots,
    })


@app.route("/api/public/<slug>/preparation-time", methods=["GET"])
def api_public_preparation_time(slug):
    est = public_establishment_or_404(slug)
    if est.preparation_time_mode == "manual":
        prep = est.manual_preparation_time or 30
        delivery = est.manual_delivery_time or 30
        return jsonify({"success": True, "mode": "manual", "preparation_minutes": prep,
                        "delivery_minutes": delivery, "total_minutes": prep + delivery})

    today = local_today()
    today_start = start_of_local_day(today, store_tz())
    yesterday_start = start_of_local_day(today - timedelta(days=1), store_tz())
    month_start = now_utc() - timedelta(days=30)

    result = (
        preparation_average(est.id, today_start)
        or preparation_average(est.id, yesterday_start, today_start)
        or preparation_average(est.id, month_start)
    )
    minutes = result["average_minutes"] if result else 30
    return jsonify({"success": True, "mode": "auto_daily", "preparation_minutes": minutes,
                    "delivery_minutes": 0, "total_minutes": minutes})


@app.route("/api/public/<slug>/checkout", methods=["POST"])
def api_public_checkout(slug):
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    est = public_establishment_or_404(slug)

    customer_data = customer_payload(data)
    name = str(customer_data.get("name") or "").strip()
    phone = extract_phone_digits(customer_data.get("phone"))
    if not name:
        return json_error("Nome é obrigatório", 400)
    if len(phone) < 10:
        return json_error("Telefone inválido", 400)

    order_type = data.get("order_type") or OrderType.DELIVERY.value
    if order_type not in SERVICE_TOGGLES:
        return json_error("Tipo de pedido inválido", 400)
    if not getattr(est, SERVICE_TOGGLES[order_type]):
        return json_error("Tipo de pedido indisponível", 400)

    if order_type == OrderType.DELIVERY.value:
        for field, label in (("address", "Endereço"), ("address_number", "Número"), ("neighborhood", "Bairro")):
            if not str(customer_data.get(field) or "").strip():
                return json_error(f"{label} é obrigatório", 400)

    payment_method = data.get("payment_method")
    if payment_method not in PAYMENT_TOGGLES or not getattr(est, PAYMENT_TOGGLES[payment_method]):
        return json_error("Forma de pagamento indisponível", 400)

    now = now_local(store_tz())
    scheduled_local = parse_datetime(data.get("scheduled_for"))
    if scheduled_local is not None:
        scheduled_local = to_local(scheduled_local, store_tz()) if scheduled_local.tzinfo else scheduled_local
        if not est.allow_scheduling:
            return json_error("Agendamento indisponível", 400)
        if not is_valid_slot(est.opening_hours, scheduled_local.replace(tzinfo=now.tzinfo), now):
            return json_error("Horário de agendamento indisponível", 400)
    elif not store_is_open(est, now):
        return json_error("Loja fechada no momento", 400)

    resolved = resolve_items(est, data.get("items"))
    item_totals = [item_total(r["product"].price, r["quantity"], r["addons"]) for r in resolved]
    delivery_fee = money(est.delivery_fee or 0) if order_type == OrderType.DELIVERY.value else Decimal("0.00")
    subtotal, total = order_totals(item_totals, delivery_fee)

    if est.min_order_value and subtotal < money(est.min_order_value):
        return json_error(f"Pedido mínimo de R$ {money(est.min_order_value)}", 400)

    change_for = resolve_change_for(data.get("change_for"), payment_method, total)

    address = customer_data if order_type == OrderType.DELIVERY.value else None
    customer = upsert_customer(est.id, name, phone, address, origin="online")

    o = Order(
        establishment_id=est.id,
        order_number=next_order_number(est.id),
        customer_id=customer.id,
        status=OrderStatus.PENDING.value,
        order_type=order_type,
        payment_method=payment_method,
        delivery_fee=delivery_fee,
        change_for=change_for,
        notes=(data.get("notes") or "").strip() or None,
        scheduled_for=to_utc_naive(scheduled_local, store_tz()) if scheduled_local else None,
        created_at=now_utc(),
        updated_at=now_utc(),
    )
    db.session.add(o)
    db.session.flush()
    add_items_to_order(o, resolved)
    recalculate_order_totals(o)
    add_status_history(o, OrderStatus.PENDING.value)
    db.session.commit()

    audit("checkout", "order", o.id, {"order_number": o.order_number, "total": str(o.total)},
          establishment_id=est.id)
    app.logger.info("Checkout #%s for %s total %s", o.order_number, est.slug, o.total)
    broadcast_change(est.id, "orders", "INSERT", o.id)
    return jsonify({"success": True, "order": public_order_payload(o, est)})


@app.route("/api/public/orders/<int:order_id>", methods=["GET"])
def api_public_order_track(order_id):
    o = db.session.get(Order, order_id)
    if not o:
        abort(404)
    est = db.session.get(Establishment, o.establishment_id)
    return jsonify({"success": True, "order": public_order_payload(o, est)})


@app.route("/api/public/<slug>/orders/<int:order_number>", methods=["GET"])
def api_public_order_track_by_number(slug, order_number):
    est = public_establishment_or_404(slug)
    o = Order.query.filter_by(establishment_id=est.id, order_number=order_number).first_or_404()
    return jsonify({"success": True, "order": public_order_payload(o, est)})


if __name__ == "__main__":
    with app.app_context():
        db.create_all()
    socketio.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "5000")), debug=True)
