# database.py
import enum
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash


db = SQLAlchemy()


def now_utc():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def money(x) -> Decimal:
    try:
        return Decimal(str(x)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except Exception:
        return Decimal("0.00")


def iso(dt):
    return dt.isoformat() if dt else None


def num(x):
    return float(money(x or 0))


class OrderType(str, enum.Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"
    DINE_IN = "dine_in"


class OrderSubtype(str, enum.Enum):
    COUNTER = "counter"
    TABLE = "table"
    DELIVERY = "delivery"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    READY_FOR_PICKUP = "ready_for_pickup"
    PICKED_UP = "picked_up"
    READY_TO_SERVE = "ready_to_serve"
    SERVED = "served"
    CANCELLED = "cancelled"


class ItemStatus(str, enum.Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"


class PaymentMethod(str, enum.Enum):
    PIX = "pix"
    CREDIT = "credit"
    DEBIT = "debit"
    CASH = "cash"
    CARD = "card"


class MemberRole(str, enum.Enum):
    OWNER = "owner"
    MANAGER = "manager"
    ATTENDANT = "attendant"
    KITCHEN = "kitchen"
    WAITER = "waiter"
    EMPLOYEE = "employee"


class TableStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class TransactionType(str, enum.Enum):
    INCOME = "income"
    EXPENSE = "expense"


class SubscriptionStatus(str, enum.Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"


# ---------------------------
# Accounts
# ---------------------------

class User(db.Model, UserMixin):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(40))
    email = db.Column(db.String(254), unique=True, index=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=now_utc)

    def set_password(self, pw):
        self.password_hash = generate_password_hash(pw)

    def check_password(self, pw):
        return check_password_hash(self.password_hash, pw)

    def get_id(self):
        return str(self.id)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }


class Establishment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    name = db.Column(db.String(160), nullable=False)
    slug = db.Column(db.String(160), unique=True, index=True, nullable=False)
    description = db.Column(db.String(600))
    logo_url = db.Column(db.String(500))
    banner_url = db.Column(db.String(500))

    phone = db.Column(db.String(40))
    address = db.Column(db.String(300))
    neighborhood = db.Column(db.String(120))
    city = db.Column(db.String(120))

    opening_hours = db.Column(db.JSON, default=dict)
    delivery_info = db.Column(db.String(300))
    min_order_value = db.Column(db.Numeric(10, 2), default=0)
    delivery_fee = db.Column(db.Numeric(10, 2), default=0)

    primary_color = db.Column(db.String(20), default="#ea580c")
    secondary_color = db.Column(db.String(20), default="#1e293b")

    service_delivery = db.Column(db.Boolean, default=True)
    service_pickup = db.Column(db.Boolean, default=True)
    service_dine_in = db.Column(db.Boolean, default=False)
    allow_scheduling = db.Column(db.Boolean, default=False)
    temporary_closed = db.Column(db.Boolean, default=False)

    payment_pix_enabled = db.Column(db.Boolean, default=True)
    payment_credit_enabled = db.Column(db.Boolean, default=True)
    payment_debit_enabled = db.Column(db.Boolean, default=True)
    payment_cash_enabled = db.Column(db.Boolean, default=True)
    pix_key = db.Column(db.String(160))
    pix_key_type = db.Column(db.String(30))
    pix_holder_name = db.Column(db.String(160))
    card_credit_fee = db.Column(db.Numeric(5, 2), default=0)
    card_debit_fee = db.Column(db.Numeric(5, 2), default=0)

    preparation_time_mode = db.Column(db.String(20), default="auto_daily")
    manual_preparation_time = db.Column(db.Integer, default=30)
    manual_delivery_time = db.Column(db.Integer, default=30)

    whatsapp_notifications_enabled = db.Column(db.Boolean, default=False)
    whatsapp_message_templates = db.Column(db.JSON, default=dict)
    notification_sound_enabled = db.Column(db.Boolean, default=True)

    printer_name = db.Column(db.String(160))
    print_mode = db.Column(db.String(20), default="browser")
    print_font_size = db.Column(db.Integer, default=12)
    print_font_bold = db.Column(db.Boolean, default=False)
    print_line_height = db.Column(db.Numeric(4, 2), default=1.4)
    print_margin_left = db.Column(db.Integer, default=0)
    print_margin_right = db.Column(db.Integer, default=0)
    print_contrast_high = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=now_utc)
    updated_at = db.Column(db.DateTime, default=now_utc)

    def print_settings(self):
        return {
            "printer_name": self.printer_name,
            "print_mode": self.print_mode,
            "font_size": self.print_font_size,
            "font_bold": bool(self.print_font_bold),
            "line_height": float(self.print_line_height or 1.4),
            "margin_left": self.print_margin_left or 0,
            "margin_right": self.print_margin_right or 0,
            "contrast_high": bool(self.print_contrast_high),
        }

    def to_public_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "logo_url": self.logo_url,
            "banner_url": self.banner_url,
            "phone": self.phone,
            "address": self.address,
            "neighborhood": self.neighborhood,
            "city": self.city,
            "opening_hours": self.opening_hours or {},
            "delivery_info": self.delivery_info,
            "min_order_value": num(self.min_order_value),
            "delivery_fee": num(self.delivery_fee),
            "primary_color": self.primary_color,
            "secondary_color": self.secondary_color,
            "service_delivery": bool(self.service_delivery),
            "service_pickup": bool(self.service_pickup),
            "service_dine_in": bool(self.service_dine_in),
            "allow_scheduling": bool(self.allow_scheduling),
            "temporary_closed": bool(self.temporary_closed),
            "payment_pix_enabled": bool(self.payment_pix_enabled),
            "payment_credit_enabled": bool(self.payment_credit_enabled),
            "payment_debit_enabled": bool(self.payment_debit_enabled),
            "payment_cash_enabled": bool(self.payment_cash_enabled),
            "pix_key": self.pix_key,
            "pix_key_type": self.pix_key_type,
            "pix_holder_name": self.pix_holder_name,
        }

    def to_dict(self):
        d = self.to_public_dict()
        d.update({
            "owner_id": self.owner_id,
            "card_credit_fee": float(self.card_credit_fee or 0),
            "card_debit_fee": float(self.card_debit_fee or 0),
            "preparation_time_mode": self.preparation_time_mode,
            "manual_preparation_time": self.manual_preparation_time,
            "manual_delivery_time": self.manual_delivery_time,
            "whatsapp_notifications_enabled": bool(self.whatsapp_notifications_enabled),
            "whatsapp_message_templates": self.whatsapp_message_templates or {},
            "notification_sound_enabled": bool(self.notification_sound_enabled),
            "print_settings": self.print_settings(),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        })
        return d


class EstablishmentMember(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    establishment_id = db.Column(db.Integer, db.ForeignKey("establishment.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    role = db.Column(db.String(30), nullable=False, default=MemberRole.EMPLOYEE.value)
    created_at = db.Column(db.DateTime, default=now_utc)
    __table_args__ = (db.UniqueConstraint("establishment_id", "user_id", name="uq_member"),)


# ---------------------------
# Catalog
# ---------------------------

class Category(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    establishment_id = db.Column(db.Integer, db.ForeignKey("establishment.id"), nullable=False, index=True)
    name = db.Column(db.String(140), nullable=False)
    description = db.Column(db.String(300))
    order_position = db.Column(db.Integer, default=0)
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "order_position": self.order_position,
            "active": bool(self.active),
        }


class Product(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    establishment_id = db.Column(db.Integer, db.ForeignKey("establishment.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("category.id"), index=True)
    name = db.Column(db.String(180), nullable=False)
    description = db.Column(db.String(500))
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    image_url = db.Column(db.String(500))
    order_position = db.Column(db.Integer, default=0)
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "category_id": self.category_id,
            "name": self.name,
            "description": self.description,
            "price": num(self.price),
            "image_url": self.image_url,
            "order_position": self.order_position,
            "active": bool(self.active),
        }


class AddonGroup(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    establishment_id = db.Column(db.Integer, db.ForeignKey("establishment.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("category.id"))
    name = db.Column(db.String(120), nullable=False)
    min_selections = db.Column(db.Integer, default=0)
    max_selections = db.Column(db.Integer, default=1)
    required = db.Column(db.Boolean, default=False)
    order_position = db.Column(db.Integer, default=0)
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "category_id": self.category_id,
            "name": self.name,
            "min_selections": self.min_selections or 0,
            "max_selections": self.max_selections or 0,
            "required": bool(self.required),
            "order_position": self.order_position,
            "active": bool(self.active),
        }


class Addon(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    addon_group_id = db.Column(db.Integer, db.ForeignKey("addon_group.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    order_position = db.Column(db.Integer, default=0)
    active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "addon_group_id": self.addon_group_id,
            "name": self.name,
            "price": num(self.price),
            "order_position": self.order_position,
            "active": bool(self.active),
        }


class CategoryAddonGroup(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("category.id"), nullable=False)
    addon_group_id = db.Column(db.Integer, db.ForeignKey("addon_group.id"), nullable=False)
    __table_args__ = (db.UniqueConstraint("category_id", "addon_group_id", name="uq_category_group"),)


class ProductAddonGroup(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False)
    addon_group_id = db.Column(db.Integer, db.ForeignKey("addon_group.id"), nullable=False)
    __table_args__ = (db.UniqueConstraint("product_id", "addon_group_id", name="uq_product_group"),)


# ---------------------------
# Customers, tables and orders
# ---------------------------

class Customer(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    establishment_id = db.Column(db.Integer, db.ForeignKey("establishment.id"), nullable=False, index=True)
    name = db.Column(db.String(140), nullable=False)
    phone = db.Column(db.String(20), index=True)
    address = db.Column(db.String(300))
    address_number = db.Column(db.String(20))
    complement = db.Column(db.String(120))
    neighborhood = db.Column(db.String(120))
    reference_point = db.Column(db.String(200))
    order_origin = db.Column(db.String(30))
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "address_number": self.address_number,
            "complement": self.complement,
            "neighborhood": self.neighborhood,
            "reference_point": self.reference_point,
            "order_origin": self.order_origin,
            "created_at": iso(self.created_at),
        }


class DiningTable(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    establishment_id = db.Column(db.Integer, db.ForeignKey("establishment.id"), nullable=False, index=True)
    table_number = db.Column(db.String(20), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customer.id"))
    customer_display_name = db.Column(db.String(140))
    status = db.Column(db.String(20), default=TableStatus.OPEN.value)
    notes = db.Column(db.String(300))
    opened_at = db.Column(db.DateTime, default=now_utc)
    closed_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            "id": self.id,
            "table_number": self.table_number,
            "customer_id": self.customer_id,
            "customer_display_name": self.customer_display_name,
            "status": self.status,
            "notes": self.notes,
            "opened_at": iso(self.opened_at),
            "closed_at": iso(self.closed_at),
        }


class Order(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    establishment_id = db.Column(db.Integer, db.ForeignKey("establishment.id"), nullable=False, index=True)
    order_number = db.Column(db.Integer, nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customer.id"))
    table_id = db.Column(db.Integer, db.ForeignKey("dining_table.id"))

    status = db.Column(db.String(30), default=OrderStatus.PENDING.value, index=True)
    order_type = db.Column(db.String(20), default=OrderType.DELIVERY.value)
    order_subtype = db.Column(db.String(20))
    payment_method = db.Column(db.String(20))

    subtotal = db.Column(db.Numeric(10, 2), default=0)
    delivery_fee = db.Column(db.Numeric(10, 2), default=0)
    total = db.Column(db.Numeric(10, 2), default=0)
    change_for = db.Column(db.Numeric(10, 2))

    notes = db.Column(db.String(600))
    scheduled_for = db.Column(db.DateTime)
    table_number = db.Column(db.String(20))
    is_open_tab = db.Column(db.Boolean, default=False)
    customer_display_name = db.Column(db.String(140))

    created_at = db.Column(db.DateTime, default=now_utc, index=True)
    updated_at = db.Column(db.DateTime, default=now_utc)

    __table_args__ = (db.UniqueConstraint("establishment_id", "order_number", name="uq_order_number"),)

    def to_dict(self):
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "table_id": self.table_id,
            "status": self.status,
            "order_type": self.order_type,
            "order_subtype": self.order_subtype,
            "payment_method": self.payment_method,
            "subtotal": num(self.subtotal),
            "delivery_fee": num(self.delivery_fee),
            "total": num(self.total),
            "change_for": num(self.change_for) if self.change_for is not None else None,
            "notes": self.notes,
            "scheduled_for": iso(self.scheduled_for),
            "table_number": self.table_number,
            "is_open_tab": bool(self.is_open_tab),
            "customer_display_name": self.customer_display_name,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class OrderItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("order.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"))
    product_name = db.Column(db.String(200), nullable=False)
    product_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    quantity = db.Column(db.Integer, default=1)
    observation = db.Column(db.String(300))
    total = db.Column(db.Numeric(10, 2), default=0)
    item_status = db.Column(db.String(20), default=ItemStatus.PENDING.value)
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_price": num(self.product_price),
            "quantity": self.quantity,
            "observation": self.observation,
            "total": num(self.total),
            "item_status": self.item_status,
        }


class OrderItemAddon(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_item.id"), nullable=False, index=True)
    addon_id = db.Column(db.Integer, db.ForeignKey("addon.id"))
    addon_name = db.Column(db.String(160), nullable=False)
    addon_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    quantity = db.Column(db.Integer, default=1)

    def to_dict(self):
        return {
            "id": self.id,
            "addon_id": self.addon_id,
            "addon_name": self.addon_name,
            "addon_price": num(self.addon_price),
            "quantity": self.quantity,
        }


class OrderStatusHistory(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("order.id"), nullable=False, index=True)
    status = db.Column(db.String(30), nullable=False)
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {"id": self.id, "status": self.status, "created_at": iso(self.created_at)}


# ---------------------------
# Finance
# ---------------------------

class FinancialCategory(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    establishment_id = db.Column(db.Integer, db.ForeignKey("establishment.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    type = db.Column(db.String(20), nullable=False)
    icon = db.Column(db.String(40))
    is_default = db.Column(db.Boolean, default=False)
    active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "icon": self.icon,
            "is_default": bool(self.is_default),
            "active": bool(self.active),
        }


class FinancialTransaction(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    establishment_id = db.Column(db.Integer, db.ForeignKey("establishment.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("financial_category.id"))
    order_id = db.Column(db.Integer, db.ForeignKey("order.id"), index=True)
    type = db.Column(db.String(20), nullable=False)
    gross_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    fee_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    net_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    payment_method = db.Column(db.String(20))
    description = db.Column(db.String(300))
    transaction_date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "category_id": self.category_id,
            "order_id": self.order_id,
            "type": self.type,
            "gross_amount": num(self.gross_amount),
            "fee_amount": num(self.fee_amount),
            "net_amount": num(self.net_amount),
            "payment_method": self.payment_method,
            "description": self.description,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "created_at": iso(self.created_at),
        }


# ---------------------------
# Subscriptions
# ---------------------------

class SubscriptionPlan(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.String(400))
    price_monthly = db.Column(db.Numeric(10, 2), default=0)
    price_semiannual = db.Column(db.Numeric(10, 2), default=0)
    price_annual = db.Column(db.Numeric(10, 2), default=0)
    features = db.Column(db.JSON, default=list)
    active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price_monthly": num(self.price_monthly),
            "price_semiannual": num(self.price_semiannual),
            "price_annual": num(self.price_annual),
            "features": self.features or [],
        }


class Subscription(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    establishment_id = db.Column(db.Integer, db.ForeignKey("establishment.id"), nullable=False, unique=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("subscription_plan.id"))
    status = db.Column(db.String(20), nullable=False, default=SubscriptionStatus.TRIALING.value)
    billing_cycle = db.Column(db.String(20))
    trial_starts_at = db.Column(db.DateTime)
    trial_ends_at = db.Column(db.DateTime)
    current_period_start = db.Column(db.DateTime)
    current_period_end = db.Column(db.DateTime)
    grace_period_ends_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "status": self.status,
            "billing_cycle": self.billing_cycle,
            "trial_starts_at": iso(self.trial_starts_at),
            "trial_ends_at": iso(self.trial_ends_at),
            "current_period_start": iso(self.current_period_start),
            "current_period_end": iso(self.current_period_end),
            "grace_period_ends_at": iso(self.grace_period_ends_at),
        }


# ---------------------------
# Bookkeeping
# ---------------------------

class RateLimitLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    identifier = db.Column(db.String(120), nullable=False, index=True)
    action = db.Column(db.String(80), nullable=False)
    created_at = db.Column(db.DateTime, default=now_utc)


class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    establishment_id = db.Column(db.Integer, db.ForeignKey("establishment.id"))
    action = db.Column(db.String(80), nullable=False)
    entity = db.Column(db.String(80), nullable=False)
    entity_id = db.Column(db.Integer)
    ip = db.Column(db.String(80))
    details_json = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=now_utc)
