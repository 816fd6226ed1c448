# notifications.py
import re
from urllib.parse import quote

from formatters import format_decimal_br
from order_status import whatsapp_template_key


DEFAULT_TEMPLATES = {
    "confirmed": "✅ Olá {nome_cliente}! Seu pedido #{numero_pedido} foi confirmado! Valor: R$ {total}. Obrigado pela preferência! - {nome_estabelecimento}",
    "preparing": "\U0001F468\u200d\U0001F373 Olá {nome_cliente}! Seu pedido #{numero_pedido} está sendo preparado! - {nome_estabelecimento}",
    "ready_pickup": "\U0001F4E6 Olá {nome_cliente}! Seu pedido #{numero_pedido} está pronto para retirada! - {nome_estabelecimento}",
    "ready_delivery": "\U0001F69A Olá {nome_cliente}! Seu pedido #{numero_pedido} está pronto e aguardando o motoboy! - {nome_estabelecimento}",
    "out_for_delivery": "\U0001F6F5 Olá {nome_cliente}! Seu pedido #{numero_pedido} saiu para entrega! - {nome_estabelecimento}",
    "delivered": "\U0001F389 Olá {nome_cliente}! Seu pedido #{numero_pedido} foi entregue! Bom apetite! - {nome_estabelecimento}",
    "picked_up": "\U0001F389 Olá {nome_cliente}! Pedido #{numero_pedido} retirado com sucesso! Bom apetite! - {nome_estabelecimento}",
    "served": "\U0001F37D\ufe0f Olá {nome_cliente}! Seu pedido #{numero_pedido} foi servido! Bom apetite! - {nome_estabelecimento}",
}

WHATSAPP_BASE_URL = "https://wa.me/"

# same unreserved set as JavaScript's encodeURIComponent
_URI_SAFE = "-_.!~*'()"


def whatsapp_phone(phone) -> str:
    cleaned = re.sub(r"\D", "", phone or "")
    if cleaned.startswith("55") and len(cleaned) >= 12:
        return cleaned
    return f"55{cleaned}"


def merged_templates(overrides=None):
    templates = dict(DEFAULT_TEMPLATES)
    if isinstance(overrides, dict):
        templates.update({k: v for k, v in overrides.items() if v})
    return templates


def render_message(template, customer_name, order_number, total, establishment_name):
    return (
        template
        .replace("{nome_cliente}", customer_name or "Cliente")
        .replace("{numero_pedido}", str(order_number))
        .replace("{total}", format_decimal_br(total))
        .replace("{nome_estabelecimento}", establishment_name or "")
    )


def whatsapp_link(phone, message) -> str:
    return f"{WHATSAPP_BASE_URL}{whatsapp_phone(phone)}?text={quote(message, safe=_URI_SAFE)}"


def order_status_link(status, *, customer_name, customer_phone, order_number, total,
                      establishment_name, templates=None):
    """wa.me link telling the customer about a status change, or None.

    Statuses without a template and customers without a phone get no link.
    """
    key = whatsapp_template_key(status)
    if not key or not customer_phone:
        return None

    template = merged_templates(templates).get(key)
    if not template:
        return None

    message = render_message(template, customer_name, order_number, total, establishment_name)
    return whatsapp_link(customer_phone, message)
