from order_status import (
    get_status_flow,
    get_status_display,
    is_status_finalized,
    is_valid_status_for,
    next_status,
    previous_status,
    status_actions,
    order_type_label,
    payment_method_label,
    whatsapp_template_key,
    next_item_status,
    get_item_status_display,
)


class TestStatusFlow:
    def test_flows_per_order_type(self):
        assert get_status_flow("pickup") == [
            "pending", "confirmed", "preparing", "ready_for_pickup", "picked_up",
        ]
        assert get_status_flow("dine_in")[-1] == "served"
        assert get_status_flow("delivery")[-2:] == ["out_for_delivery", "delivered"]

    def test_unknown_type_falls_back_to_delivery(self):
        assert get_status_flow("drone") == get_status_flow("delivery")

    def test_next_status(self):
        assert next_status("delivery", "ready") == "out_for_delivery"
        assert next_status("pickup", "preparing") == "ready_for_pickup"
        assert next_status("dine_in", "served") is None
        assert next_status("dine_in", "out_for_delivery") is None

    def test_previous_status(self):
        assert previous_status("pickup", "preparing") == "confirmed"
        assert previous_status("delivery", "pending") is None
        assert previous_status("delivery", "delivered") is None
        assert previous_status("delivery", "cancelled") is None

    def test_valid_status_for_type(self):
        assert is_valid_status_for("pickup", "cancelled")
        assert is_valid_status_for("dine_in", "ready_to_serve")
        assert not is_valid_status_for("pickup", "out_for_delivery")

    def test_finalized(self):
        for status in ("delivered", "picked_up", "served", "cancelled"):
            assert is_status_finalized(status)
        assert not is_status_finalized("ready")


class TestStatusPresentation:
    def test_actions_for_pending_order(self):
        actions = status_actions("delivery", "pending")
        assert actions["next_status"] == "confirmed"
        assert actions["next_label"] == "Confirmar Pedido"
        assert actions["quick_label"] == "Confirmar"
        assert actions["previous_status"] is None
        assert actions["can_cancel"] is True

    def test_actions_for_finalized_order(self):
        actions = status_actions("pickup", "picked_up")
        assert actions["next_status"] is None
        assert actions["next_label"] == ""
        assert actions["can_cancel"] is False

    def test_unknown_status_displays_as_pending(self):
        display = get_status_display("bogus")
        assert display["status"] == "pending"
        assert display["label"] == "Pendente"

    def test_labels(self):
        assert order_type_label("delivery") == "Entrega"
        assert order_type_label("dine_in", public=True) == "Consumo local"
        assert order_type_label("pickup", with_icon=True).endswith("Retirada")
        assert payment_method_label("credit") == "Cartão de Crédito"
        assert payment_method_label(None) == ""

    def test_whatsapp_template_keys(self):
        assert whatsapp_template_key("ready") == "ready_delivery"
        assert whatsapp_template_key("ready_for_pickup") == "ready_pickup"
        assert whatsapp_template_key("pending") is None


class TestItemStatus:
    def test_item_status_cycle(self):
        assert next_item_status("pending") == "preparing"
        assert next_item_status("ready") == "delivered"
        assert next_item_status("delivered") is None
        assert next_item_status("weird") == "pending"

    def test_item_display(self):
        assert get_item_status_display("ready")["label"] == "Pronto"
        assert get_item_status_display(None)["status"] == "pending"
