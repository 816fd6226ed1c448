# receipts.py
import io
from datetime import datetime

from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from formatters import format_price, format_phone
from order_status import get_status_display, order_type_label, payment_method_label
from store_hours import to_local


LINE_WIDTH = 32
SEPARATOR = "-" * LINE_WIDTH
DOUBLE_SEPARATOR = "=" * LINE_WIDTH

# ESC/POS
ESC_BOLD_ON = "\x1b\x45\x01"
ESC_BOLD_OFF = "\x1b\x45\x00"
ESC_DOUBLE_ON = "\x1b\x21\x30"
ESC_DOUBLE_OFF = "\x1b\x21\x00"
ESC_CENTER = "\x1b\x61\x01"
ESC_LEFT = "\x1b\x61\x00"


def _local_stamp(value, tz_name=None):
    if not value:
        return ""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return to_local(value, tz_name).strftime("%d/%m/%Y %H:%M")


def _selected_items(order, item_ids=None):
    items = order.get("items") or []
    if item_ids:
        wanted = {int(i) for i in item_ids}
        items = [it for it in items if it.get("id") in wanted]
    return items


def _address_lines(customer):
    if not customer or not customer.get("address"):
        return []
    street = customer["address"]
    if customer.get("address_number"):
        street = f"{street}, {customer['address_number']}"
    lines = [street]
    if customer.get("complement"):
        lines.append(customer["complement"])
    if customer.get("neighborhood"):
        lines.append(customer["neighborhood"])
    if customer.get("reference_point"):
        lines.append(f"Ref: {customer['reference_point']}")
    return lines


def build_receipt_pdf_bytes(order, establishment, tz_name=None):
    """Render a full order receipt as PDF bytes.

    ``order`` is the serialized order (items with addons, customer);
    ``establishment`` only needs ``name``.
    """
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    w, h = letter

    x = 48
    y = h - 48
    lh = 14
    footer_y = 48

    def new_page_if_needed(room=lh):
        nonlocal y
        if y - room < footer_y + lh:
            c.showPage()
            y = h - 48
            c.setFont("Helvetica", 10)

    c.setFont("Helvetica-Bold", 16)
    c.drawString(x, y, str(establishment.get("name") or ""))
    y -= 22

    c.setFont("Helvetica", 10)
    c.drawString(x, y, f"Pedido #{order.get('order_number')}")
    y -= lh
    c.drawString(x, y, f"Data: {_local_stamp(order.get('created_at'), tz_name)}")
    y -= lh
    status = get_status_display(order.get("status"))["label"]
    c.drawString(x, y, f"Tipo: {order_type_label(order.get('order_type'))}   Status: {status}")
    y -= lh

    if order.get("table_number"):
        c.drawString(x, y, f"Mesa: {order['table_number']}")
        y -= lh

    if order.get("scheduled_for"):
        c.drawString(x, y, f"Agendado para: {_local_stamp(order['scheduled_for'], tz_name)}")
        y -= lh

    customer = order.get("customer")
    name = (customer or {}).get("name") or order.get("customer_display_name")
    if name:
        c.drawString(x, y, f"Cliente: {name}")
        y -= lh
    if customer and customer.get("phone"):
        c.drawString(x, y, f"Telefone: {format_phone(customer['phone'])}")
        y -= lh

    addr = _address_lines(customer) if order.get("order_type") == "delivery" else []
    if addr:
        c.drawString(x, y, "Endereço de entrega:")
        y -= lh
        c.setFont("Helvetica", 9)
        for line in addr:
            c.drawString(x + 14, y, line[:110])
            y -= 12
        c.setFont("Helvetica", 10)

    y -= 6
    c.setFont("Helvetica-Bold", 11)
    c.drawString(x, y, "Itens")
    y -= lh

    c.setFont("Helvetica", 10)
    for it in order.get("items") or []:
        txt = f"{it['quantity']} x {it['product_name']} @ {format_price(it['product_price'])} = {format_price(it['total'])}"
        c.drawString(x, y, txt[:110])
        y -= lh

        c.setFont("Helvetica", 9)
        for a in it.get("addons") or []:
            new_page_if_needed(12)
            c.setFont("Helvetica", 9)
            c.drawString(x + 16, y, f"+ {a['quantity']}x {a['addon_name']} ({format_price(a['addon_price'])})"[:110])
            y -= 12
        if it.get("observation"):
            new_page_if_needed(12)
            c.setFont("Helvetica", 9)
            c.drawString(x + 16, y, f"Obs: {it['observation']}"[:110])
            y -= 12
        c.setFont("Helvetica", 10)
        new_page_if_needed()

    # totals stay together on one page
    totals_lines = 3 + sum(1 for k in ("delivery_fee", "payment_method", "change_for", "notes") if order.get(k))
    new_page_if_needed(10 + totals_lines * lh + 18)

    y -= 10
    c.setFont("Helvetica-Bold", 11)
    c.drawString(x, y, "Totais")
    y -= lh
    c.setFont("Helvetica", 10)
    c.drawString(x, y, f"Subtotal: {format_price(order.get('subtotal') or 0)}")
    y -= lh
    if order.get("delivery_fee"):
        c.drawString(x, y, f"Taxa de entrega: {format_price(order['delivery_fee'])}")
        y -= lh
    c.setFont("Helvetica-Bold", 12)
    c.drawString(x, y, f"Total: {format_price(order.get('total') or 0)}")
    y -= 18

    c.setFont("Helvetica", 10)
    if order.get("payment_method"):
        c.drawString(x, y, f"Pagamento: {payment_method_label(order['payment_method'])}")
        y -= lh
    if order.get("change_for"):
        c.drawString(x, y, f"Troco para: {format_price(order['change_for'])}")
        y -= lh
    if order.get("notes"):
        c.drawString(x, y, f"Observações: {order['notes']}"[:110])
        y -= lh

    c.setFont("Helvetica", 9)
    c.drawString(x, footer_y, "Obrigado pela preferência!")
    c.showPage()
    c.save()

    buf.seek(0)
    return buf.getvalue()


def center_text(text, width=LINE_WIDTH):
    if len(text) >= width:
        return text
    return " " * ((width - len(text)) // 2) + text


def right_align_row(label, value, width=LINE_WIDTH):
    gap = width - len(label) - len(value)
    if gap <= 0:
        return f"{label} {value}"
    return label + " " * gap + value


def build_ticket_text(order, establishment, item_ids=None, escpos=False, show_addon_prices=True,
                      tz_name=None, now=None):
    """Plain 32-column ticket for thermal printers.

    With ``item_ids`` only those items are printed and the ticket is marked
    as a partial (new items) print with its own total.
    """
    def bold(s):
        return f"{ESC_BOLD_ON}{s}{ESC_BOLD_OFF}" if escpos else s

    def big(s):
        return f"{ESC_CENTER}{ESC_DOUBLE_ON}{s}{ESC_DOUBLE_OFF}{ESC_LEFT}" if escpos else center_text(s)

    def centered(s):
        return f"{ESC_CENTER}{s}{ESC_LEFT}" if escpos else center_text(s)

    partial = bool(item_ids)
    items = _selected_items(order, item_ids)
    lines = [centered(bold(str(establishment.get("name") or "").upper()))]

    if order.get("table_number"):
        lines.append(big(f"MESA {order['table_number']}"))
    lines.append(big(f"PEDIDO #{order.get('order_number')}"))
    lines.append(DOUBLE_SEPARATOR)
    if partial:
        lines.append(centered(bold("*** NOVOS ITENS ***")))
        lines.append(DOUBLE_SEPARATOR)

    stamp = now or order.get("created_at")
    lines.append(f"Data: {_local_stamp(stamp, tz_name)}")
    lines.append(f"Tipo: {order_type_label(order.get('order_type'))}")

    customer = order.get("customer")
    name = (customer or {}).get("name") or order.get("customer_display_name")
    if name and not partial:
        lines.append(f"Cliente: {name}")
        if customer and customer.get("phone"):
            lines.append(f"Tel: {format_phone(customer['phone'])}")
        if order.get("order_type") == "delivery":
            lines.extend(_address_lines(customer))
    lines.append(SEPARATOR)

    running = 0
    for it in items:
        running += float(it.get("total") or 0)
        lines.append(right_align_row(f"{it['quantity']}x {it['product_name']}", format_price(it["total"])))
        for a in it.get("addons") or []:
            extra = f" ({format_price(a['addon_price'])})" if show_addon_prices else ""
            lines.append(f"  + {a['quantity']}x {a['addon_name']}{extra}")
        if it.get("observation"):
            lines.append(f"  Obs: {it['observation']}")
    lines.append(SEPARATOR)

    if partial:
        lines.append(bold(right_align_row("TOTAL NOVOS", format_price(running))))
        lines.append(centered("Comanda parcial"))
    else:
        lines.append(right_align_row("Subtotal", format_price(order.get("subtotal") or 0)))
        if order.get("delivery_fee"):
            lines.append(right_align_row("Entrega", format_price(order["delivery_fee"])))
        lines.append(bold(right_align_row("TOTAL", format_price(order.get("total") or 0))))
        if order.get("payment_method"):
            lines.append(f"Pagamento: {payment_method_label(order['payment_method'])}")
        if order.get("change_for"):
            lines.append(f"Troco para: {format_price(order['change_for'])}")
        if order.get("notes"):
            lines.append(f"Obs: {order['notes']}")

    return "\n".join(lines) + "\n"
