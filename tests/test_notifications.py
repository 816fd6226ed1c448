from decimal import Decimal

from notifications import (
    DEFAULT_TEMPLATES,
    whatsapp_phone,
    merged_templates,
    render_message,
    whatsapp_link,
    order_status_link,
)


def test_country_code_is_added_once():
    assert whatsapp_phone("(11) 98765-4321") == "5511987654321"
    assert whatsapp_phone("5511987654321") == "5511987654321"


def test_render_message():
    template = "Olá {nome_cliente} #{numero_pedido} R$ {total} {nome_estabelecimento}"
    assert render_message(template, None, 7, Decimal("1234.5"), "Loja") == "Olá Cliente #7 R$ 1.234,50 Loja"


def test_link_is_uri_encoded():
    assert whatsapp_link("11987654321", "a b&c") == "https://wa.me/5511987654321?text=a%20b%26c"


def test_overrides_ignore_blank_templates():
    templates = merged_templates({"confirmed": "", "served": "Bom apetite"})
    assert templates["confirmed"] == DEFAULT_TEMPLATES["confirmed"]
    assert templates["served"] == "Bom apetite"


class TestOrderStatusLink:
    def kwargs(self, **extra):
        base = {
            "customer_name": "Ana",
            "customer_phone": "11987654321",
            "order_number": 3,
            "total": Decimal("50"),
            "establishment_name": "Pizzaria",
        }
        base.update(extra)
        return base

    def test_custom_template(self):
        link = order_status_link("confirmed", templates={"confirmed": "Oi {nome_cliente}"}, **self.kwargs())
        assert link == "https://wa.me/5511987654321?text=Oi%20Ana"

    def test_default_template(self):
        link = order_status_link("ready_for_pickup", **self.kwargs())
        assert link.startswith("https://wa.me/5511987654321?text=")
        assert "%233" in link

    def test_status_without_template(self):
        assert order_status_link("pending", **self.kwargs()) is None

    def test_customer_without_phone(self):
        assert order_status_link("confirmed", **self.kwargs(customer_phone=None)) is None
