# order_status.py
from database import OrderStatus, OrderType, ItemStatus


STATUS_FLOW_BY_ORDER_TYPE = {
    OrderType.DELIVERY.value: [
        OrderStatus.PENDING.value,
        OrderStatus.CONFIRMED.value,
        OrderStatus.PREPARING.value,
        OrderStatus.READY.value,
        OrderStatus.OUT_FOR_DELIVERY.value,
        OrderStatus.DELIVERED.value,
    ],
    OrderType.PICKUP.value: [
        OrderStatus.PENDING.value,
        OrderStatus.CONFIRMED.value,
        OrderStatus.PREPARING.value,
        OrderStatus.READY_FOR_PICKUP.value,
        OrderStatus.PICKED_UP.value,
    ],
    OrderType.DINE_IN.value: [
        OrderStatus.PENDING.value,
        OrderStatus.CONFIRMED.value,
        OrderStatus.PREPARING.value,
        OrderStatus.READY_TO_SERVE.value,
        OrderStatus.SERVED.value,
    ],
}

STATUS_DISPLAY = {
    "pending": {"label": "Pendente", "variant": "destructive", "color": "bg-yellow-500"},
    "confirmed": {"label": "Confirmado", "variant": "default", "color": "bg-blue-500"},
    "preparing": {"label": "Preparando", "variant": "secondary", "color": "bg-orange-500"},
    "ready": {"label": "Pronto", "variant": "default", "color": "bg-green-500"},
    "ready_for_pickup": {"label": "Pronto para Retirada", "variant": "default", "color": "bg-green-500"},
    "ready_to_serve": {"label": "Pronto para Servir", "variant": "default", "color": "bg-green-500"},
    "out_for_delivery": {"label": "Saiu para Entrega", "variant": "secondary", "color": "bg-purple-500"},
    "delivered": {"label": "Entregue", "variant": "outline", "color": "bg-green-600"},
    "picked_up": {"label": "Retirado", "variant": "outline", "color": "bg-green-600"},
    "served": {"label": "Servido", "variant": "outline", "color": "bg-green-600"},
    "cancelled": {"label": "Cancelado", "variant": "destructive", "color": "bg-red-500"},
}

NEXT_STATUS_BUTTON_LABELS = {
    "pending": "",
    "confirmed": "Confirmar Pedido",
    "preparing": "Iniciar Preparo",
    "ready": "Marcar como Pronto",
    "ready_for_pickup": "Pronto p/ Retirada",
    "ready_to_serve": "Pronto p/ Servir",
    "out_for_delivery": "Saiu para Entrega",
    "delivered": "Marcar como Entregue",
    "picked_up": "Marcar como Retirado",
    "served": "Marcar como Servido",
    "cancelled": "Cancelar",
}

PREVIOUS_STATUS_BUTTON_LABELS = {
    "pending": "Voltar para Pendente",
    "confirmed": "Voltar para Confirmado",
    "preparing": "Voltar para Preparando",
    "ready": "Voltar para Pronto",
    "out_for_delivery": "Voltar para Saiu p/ Entrega",
    "delivered": "",
    "ready_for_pickup": "Voltar para Pronto p/ Retirada",
    "picked_up": "",
    "ready_to_serve": "Voltar para Pronto p/ Servir",
    "served": "",
    "cancelled": "",
}

# keyed by the current status; the label describes the move to the next one
QUICK_ACTION_LABELS = {
    "pending": "Confirmar",
    "confirmed": "Preparar",
    "preparing": "Pronto",
    "ready": "Saiu Entrega",
    "ready_for_pickup": "Retirado",
    "ready_to_serve": "Servido",
    "out_for_delivery": "Entregue",
    "delivered": "",
    "picked_up": "",
    "served": "",
    "cancelled": "",
}

ORDER_TYPE_LABELS = {
    "delivery": {"label": "Entrega", "icon": "\U0001F69A"},
    "pickup": {"label": "Retirada", "icon": "\U0001F4E6"},
    "dine_in": {"label": "No Local", "icon": "\U0001F37D\uFE0F"},
}

ORDER_TYPE_PUBLIC_LABELS = {
    "delivery": "Entrega",
    "pickup": "Retirada",
    "dine_in": "Consumo local",
}

PAYMENT_METHOD_LABELS = {
    "pix": "Pix",
    "credit": "Cartão de Crédito",
    "debit": "Cartão de Débito",
    "cash": "Dinheiro",
    "card": "Cartão",
}

STATUS_TO_WHATSAPP_TEMPLATE_KEY = {
    "confirmed": "confirmed",
    "preparing": "preparing",
    "ready_for_pickup": "ready_pickup",
    "ready": "ready_delivery",
    "out_for_delivery": "out_for_delivery",
    "delivered": "delivered",
    "picked_up": "picked_up",
    "served": "served",
}

FINALIZED_STATUSES = [
    OrderStatus.DELIVERED.value,
    OrderStatus.PICKED_UP.value,
    OrderStatus.SERVED.value,
    OrderStatus.CANCELLED.value,
]

# statuses that count as money received
COMPLETED_STATUSES = [
    OrderStatus.DELIVERED.value,
    OrderStatus.PICKED_UP.value,
    OrderStatus.SERVED.value,
]

READY_STATUSES = [
    OrderStatus.READY.value,
    OrderStatus.READY_FOR_PICKUP.value,
    OrderStatus.READY_TO_SERVE.value,
]

# orders that already went through the kitchen
PROGRESSED_STATUSES = [
    OrderStatus.READY.value,
    OrderStatus.OUT_FOR_DELIVERY.value,
    OrderStatus.DELIVERED.value,
    OrderStatus.READY_FOR_PICKUP.value,
    OrderStatus.PICKED_UP.value,
    OrderStatus.READY_TO_SERVE.value,
    OrderStatus.SERVED.value,
]

ITEM_STATUS_FLOW = [s.value for s in ItemStatus]

ITEM_STATUS_DISPLAY = {
    "pending": {"label": "Pendente", "variant": "secondary", "color": "bg-yellow-500"},
    "preparing": {"label": "Preparando", "variant": "default", "color": "bg-orange-500"},
    "ready": {"label": "Pronto", "variant": "default", "color": "bg-green-500"},
    "delivered": {"label": "Entregue", "variant": "outline", "color": "bg-green-600"},
}


def get_status_flow(order_type):
    return STATUS_FLOW_BY_ORDER_TYPE.get(order_type) or STATUS_FLOW_BY_ORDER_TYPE[OrderType.DELIVERY.value]


def get_status_display(status):
    key = status if status in STATUS_DISPLAY else OrderStatus.PENDING.value
    return dict(STATUS_DISPLAY[key], status=key)


def is_status_finalized(status) -> bool:
    return status in FINALIZED_STATUSES


def is_valid_status_for(order_type, status) -> bool:
    return status == OrderStatus.CANCELLED.value or status in get_status_flow(order_type)


def next_status(order_type, status):
    flow = get_status_flow(order_type)
    if status not in flow:
        return None
    idx = flow.index(status)
    if idx + 1 >= len(flow):
        return None
    return flow[idx + 1]


def previous_status(order_type, status):
    """Step back one position in the flow.

    Finalized orders never move back, and neither does the first status.
    """
    if is_status_finalized(status):
        return None
    flow = get_status_flow(order_type)
    if status not in flow:
        return None
    idx = flow.index(status)
    if idx == 0:
        return None
    return flow[idx - 1]


def status_actions(order_type, status):
    nxt = next_status(order_type, status)
    prev = previous_status(order_type, status)
    return {
        "next_status": nxt,
        "next_label": NEXT_STATUS_BUTTON_LABELS.get(nxt, "") if nxt else "",
        "quick_label": QUICK_ACTION_LABELS.get(status, ""),
        "previous_status": prev,
        "previous_label": PREVIOUS_STATUS_BUTTON_LABELS.get(prev, "") if prev else "",
        "can_cancel": not is_status_finalized(status),
    }


def order_type_label(order_type, with_icon=False, public=False):
    if public:
        return ORDER_TYPE_PUBLIC_LABELS.get(order_type, order_type or "")
    cfg = ORDER_TYPE_LABELS.get(order_type)
    if not cfg:
        return order_type or ""
    if with_icon:
        return f"{cfg['icon']} {cfg['label']}"
    return cfg["label"]


def payment_method_label(method):
    if not method:
        return ""
    return PAYMENT_METHOD_LABELS.get(method, method)


def whatsapp_template_key(status):
    return STATUS_TO_WHATSAPP_TEMPLATE_KEY.get(status)


def next_item_status(status):
    if status not in ITEM_STATUS_FLOW:
        return ITEM_STATUS_FLOW[0]
    idx = ITEM_STATUS_FLOW.index(status)
    if idx + 1 >= len(ITEM_STATUS_FLOW):
        return None
    return ITEM_STATUS_FLOW[idx + 1]


def get_item_status_display(status):
    key = status if status in ITEM_STATUS_DISPLAY else ItemStatus.PENDING.value
    return dict(ITEM_STATUS_DISPLAY[key], status=key)
