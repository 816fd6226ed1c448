# pricing.py
from decimal import Decimal

from database import money, PaymentMethod


TOLERANCE = Decimal("0.01")


def _get(obj, key, default=None):
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def addons_total(addons) -> Decimal:
    """Sum of price x quantity for a list of addon dicts or rows.

    Accepts both the cart shape (``price``) and the persisted shape
    (``addon_price``).
    """
    total = Decimal("0.00")
    for a in addons or []:
        price = _get(a, "price")
        if price is None:
            price = _get(a, "addon_price", 0)
        qty = int(_get(a, "quantity", 1) or 1)
        total += money(price) * Decimal(qty)
    return money(total)


def item_total(product_price, quantity, addons=None) -> Decimal:
    qty = int(quantity or 0)
    unit = money(product_price) + addons_total(addons)
    return money(unit * Decimal(qty))


def order_totals(item_totals, delivery_fee=0):
    subtotal = money(sum((money(t) for t in item_totals), Decimal("0.00")))
    total = money(subtotal + money(delivery_fee or 0))
    return subtotal, total


def card_fee(gross, payment_method, credit_fee_pct=0, debit_fee_pct=0) -> Decimal:
    if payment_method == PaymentMethod.CREDIT.value:
        pct = Decimal(str(credit_fee_pct or 0))
    elif payment_method == PaymentMethod.DEBIT.value:
        pct = Decimal(str(debit_fee_pct or 0))
    else:
        return Decimal("0.00")
    return money(money(gross) * pct / Decimal("100"))


def net_after_fee(gross, payment_method, credit_fee_pct=0, debit_fee_pct=0):
    fee = card_fee(gross, payment_method, credit_fee_pct, debit_fee_pct)
    return fee, money(money(gross) - fee)


def validate_addon_selection(groups, selected):
    """Check a product's addon selection against its groups.

    ``groups`` carry ``id``, ``name``, ``min_selections``, ``max_selections``
    and ``required``; ``selected`` entries carry ``addon_group_id`` and
    ``quantity``. Returns ``(valid, message)``.
    """
    known = {_get(g, "id") for g in groups}
    counts = {}
    for sa in selected or []:
        gid = _get(sa, "addon_group_id")
        if gid not in known:
            return False, "Adicional inválido para este produto"
        counts[gid] = counts.get(gid, 0) + int(_get(sa, "quantity", 1) or 1)

    for g in groups:
        gid = _get(g, "id")
        name = _get(g, "name")
        count = counts.get(gid, 0)
        min_sel = int(_get(g, "min_selections", 0) or 0)
        max_sel = int(_get(g, "max_selections", 0) or 0)
        if _get(g, "required") and count < min_sel:
            return False, f'Selecione pelo menos {min_sel} item(ns) em "{name}"'
        if max_sel > 0 and count > max_sel:
            return False, f'Selecione no máximo {max_sel} item(ns) em "{name}"'
    return True, None


def cart_totals(items):
    total_items = 0
    total_price = Decimal("0.00")
    for it in items or []:
        qty = int(_get(it, "quantity", 0) or 0)
        total_items += qty
        total_price += item_total(_get(it, "price", 0), qty, _get(it, "addons"))
    return total_items, money(total_price)


def payments_total(payments) -> Decimal:
    return money(sum((money(_get(p, "amount", 0)) for p in payments or []), Decimal("0.00")))


def payments_match_total(payments, total) -> bool:
    return abs(payments_total(payments) - money(total)) <= TOLERANCE
