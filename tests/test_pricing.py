from decimal import Decimal

from pricing import (
    addons_total,
    item_total,
    order_totals,
    card_fee,
    net_after_fee,
    validate_addon_selection,
    cart_totals,
    payments_total,
    payments_match_total,
)


CRUST = {"id": 1, "name": "Bordas", "min_selections": 1, "max_selections": 1, "required": True}
SAUCES = {"id": 2, "name": "Molhos", "min_selections": 0, "max_selections": 0, "required": False}


class TestTotals:
    def test_addons_total_accepts_both_shapes(self):
        assert addons_total([{"price": "1.50", "quantity": 2}]) == Decimal("3.00")
        assert addons_total([{"addon_price": "2.25"}]) == Decimal("2.25")
        assert addons_total(None) == Decimal("0.00")

    def test_item_total_includes_addons_per_unit(self):
        total = item_total(Decimal("10.00"), 2, [{"price": "1.50", "quantity": 2}])
        assert total == Decimal("26.00")

    def test_order_totals(self):
        subtotal, total = order_totals(["10.00", "5.50"], "4.00")
        assert subtotal == Decimal("15.50")
        assert total == Decimal("19.50")

    def test_cart_totals(self):
        count, price = cart_totals([
            {"price": "10", "quantity": 2, "addons": []},
            {"price": "5", "quantity": 1},
        ])
        assert count == 3
        assert price == Decimal("25.00")


class TestCardFees:
    def test_credit_and_debit(self):
        assert net_after_fee(100, "credit", 3.5, 2) == (Decimal("3.50"), Decimal("96.50"))
        assert net_after_fee(100, "debit", 3.5, 2) == (Decimal("2.00"), Decimal("98.00"))

    def test_other_methods_have_no_fee(self):
        assert card_fee(100, "pix", 3.5, 2) == Decimal("0.00")
        assert net_after_fee("50.00", "cash", 3.5, 2) == (Decimal("0.00"), Decimal("50.00"))

    def test_fee_rounds_half_up(self):
        assert card_fee("102.50", "credit", 5) == Decimal("5.13")


class TestAddonSelection:
    def test_required_group_needs_minimum(self):
        ok, message = validate_addon_selection([CRUST], [])
        assert not ok
        assert message == 'Selecione pelo menos 1 item(ns) em "Bordas"'

    def test_maximum_is_enforced(self):
        ok, message = validate_addon_selection([CRUST], [
            {"addon_group_id": 1, "quantity": 1},
            {"addon_group_id": 1, "quantity": 1},
        ])
        assert not ok
        assert message == 'Selecione no máximo 1 item(ns) em "Bordas"'

    def test_zero_maximum_means_unlimited(self):
        ok, _ = validate_addon_selection([SAUCES], [{"addon_group_id": 2, "quantity": 5}])
        assert ok

    def test_unknown_group_is_rejected(self):
        ok, message = validate_addon_selection([CRUST], [{"addon_group_id": 9}])
        assert not ok
        assert message == "Adicional inválido para este produto"

    def test_valid_selection(self):
        assert validate_addon_selection([CRUST, SAUCES], [{"addon_group_id": 1}]) == (True, None)


class TestPayments:
    def test_total(self):
        assert payments_total([{"amount": "10"}, {"amount": 5.5}]) == Decimal("15.50")

    def test_match_within_one_cent(self):
        payments = [{"amount": "10"}, {"amount": "5"}]
        assert payments_match_total(payments, "15.01")
        assert payments_match_total(payments, "15.00")
        assert not payments_match_total(payments, "15.02")
