# realtime.py
import logging

from flask_login import current_user
from flask_socketio import SocketIO, join_room, leave_room, emit

from database import db, EstablishmentMember, Order


logger = logging.getLogger(__name__)

socketio = SocketIO(cors_allowed_origins="*")


def establishment_room(establishment_id):
    return f"establishment_{establishment_id}"


def order_room(order_id):
    return f"order_{order_id}"


def broadcast_change(establishment_id, table, event, row_id=None):
    """Tell dashboard clients of an establishment that ``table`` changed.

    Payload is intentionally thin: clients refetch what they display.
    """
    socketio.emit(
        "changes",
        {"table": table, "event": event, "id": row_id},
        room=establishment_room(establishment_id),
    )


def notify_order_status(order_id, status):
    socketio.emit("status_change", {"order_id": order_id, "new_status": status}, room=order_room(order_id))


@socketio.on("subscribe")
def on_subscribe(data):
    if not current_user.is_authenticated:
        emit("error", {"error": "Authentication required"})
        return False

    est_id = (data or {}).get("establishment_id")
    member = EstablishmentMember.query.filter_by(
        establishment_id=est_id, user_id=current_user.id
    ).first()
    if not member:
        emit("error", {"error": "Forbidden"})
        return False

    join_room(establishment_room(est_id))
    logger.debug("user %s subscribed to establishment %s", current_user.id, est_id)
    emit("subscribed", {"establishment_id": est_id})
    return True


@socketio.on("unsubscribe")
def on_unsubscribe(data):
    est_id = (data or {}).get("establishment_id")
    leave_room(establishment_room(est_id))


@socketio.on("track_order")
def on_track_order(data):
    try:
        order_id = int((data or {}).get("order_id"))
    except (TypeError, ValueError):
        order_id = None
    order = db.session.get(Order, order_id) if order_id else None
    if not order:
        emit("error", {"error": "Order not found"})
        return False

    join_room(order_room(order.id))
    emit("status_change", {"order_id": order.id, "new_status": order.status})
    return True
