from tests.conftest import register


def advance(client, order_id, times=1):
    resp = None
    for _ in range(times):
        resp = client.post(f"/api/orders/{order_id}/advance")
    return resp


class TestQuickOrder:
    def test_counter_order_uses_catalog_prices(self, quick_order):
        assert quick_order["order_number"] == 1
        assert quick_order["status"] == "pending"
        assert quick_order["order_type"] == "dine_in"
        assert quick_order["order_subtype"] == "counter"
        assert quick_order["subtotal"] == 102.5
        assert quick_order["total"] == 102.5
        assert quick_order["customer"]["phone"] == "11987654321"
        assert quick_order["customer_display_name"] is None
        pizza = quick_order["items"][0]
        assert pizza["total"] == 96.0
        assert pizza["addons"][0]["addon_name"] == "Catupiry"
        assert quick_order["actions"]["next_status"] == "confirmed"

    def test_price_in_payload_is_ignored(self, client, catalog):
        resp = client.post("/api/orders/quick", json={
            "payment_method": "cash",
            "customer": {"name": "Balcão"},
            "items": [{"product_id": catalog["soda"], "price": 0.01}],
        })
        order = resp.get_json()["order"]
        assert order["total"] == 6.5
        assert order["customer"] is None
        assert order["customer_display_name"] == "Balcão"

    def test_required_addon_group(self, client, catalog):
        resp = client.post("/api/orders/quick", json={
            "payment_method": "pix",
            "customer": {"name": "Ana"},
            "items": [{"product_id": catalog["pizza"]}],
        })
        assert resp.status_code == 400
        assert resp.get_json()["error"] == 'Selecione pelo menos 1 item(ns) em "Bordas"'

    def test_addon_from_another_product(self, client, catalog):
        resp = client.post("/api/orders/quick", json={
            "payment_method": "pix",
            "customer": {"name": "Ana"},
            "items": [{"product_id": catalog["soda"], "addons": [{"id": catalog["catupiry"]}]}],
        })
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Adicional inválido para este produto"

    def test_validation(self, client, catalog):
        no_payment = client.post("/api/orders/quick", json={
            "customer": {"name": "Ana"}, "items": [{"product_id": catalog["soda"]}],
        })
        assert no_payment.status_code == 400
        empty = client.post("/api/orders/quick", json={
            "payment_method": "pix", "customer": {"name": "Ana"}, "items": [],
        })
        assert empty.status_code == 400
        assert empty.get_json()["error"] == "Carrinho vazio"

    def test_change_only_for_cash(self, client, catalog):
        def soda_order(method, change_for):
            return client.post("/api/orders/quick", json={
                "payment_method": method,
                "change_for": change_for,
                "customer": {"name": "Ana"},
                "items": [{"product_id": catalog["soda"]}],
            })

        assert soda_order("pix", "1").get_json()["order"]["change_for"] is None
        assert soda_order("cash", "10,00").get_json()["order"]["change_for"] == 10.0

        too_low = soda_order("cash", "1")
        assert too_low.status_code == 400
        assert too_low.get_json()["error"] == "Troco deve ser maior que o total"
        junk = soda_order("cash", "muito")
        assert junk.status_code == 400
        assert junk.get_json()["error"] == "Troco inválido"
        assert len(client.get("/api/orders").get_json()["orders"]) == 2

    def test_malformed_customer(self, client, catalog):
        resp = client.post("/api/orders/quick", json={
            "payment_method": "pix", "customer": ["Ana"], "items": [{"product_id": catalog["soda"]}],
        })
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Dados do cliente inválidos"

    def test_delivery_subtype(self, client, catalog):
        resp = client.post("/api/orders/quick", json={
            "order_subtype": "delivery",
            "payment_method": "cash",
            "delivery_fee": "5.00",
            "customer": {"name": "Bia", "phone": "11912345678"},
            "customer_address": {"address": "Rua B", "address_number": "20", "neighborhood": "Centro"},
            "items": [{"product_id": catalog["pizza"], "addons": [{"id": catalog["cheddar"]}]}],
        })
        order = resp.get_json()["order"]
        assert order["order_type"] == "delivery"
        assert order["order_subtype"] is None
        assert order["delivery_fee"] == 5.0
        assert order["total"] == 51.0
        assert order["customer"]["neighborhood"] == "Centro"

    def test_duplicate_open_table_tab(self, client, catalog):
        payload = {
            "order_subtype": "table",
            "table_number": "5",
            "customer": {"name": "João"},
            "items": [{"product_id": catalog["soda"]}],
        }
        assert client.post("/api/orders/quick", json=payload).status_code == 200
        resp = client.post("/api/orders/quick", json=payload)
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "DUPLICATE_TABLE:5"


class TestStatusChanges:
    def test_advance_and_revert(self, client, quick_order):
        resp = advance(client, quick_order["id"])
        assert resp.get_json()["order"]["status"] == "confirmed"
        assert resp.get_json()["whatsapp_link"] is None

        resp = client.post(f"/api/orders/{quick_order['id']}/revert")
        assert resp.get_json()["order"]["status"] == "pending"
        assert client.post(f"/api/orders/{quick_order['id']}/revert").status_code == 409

        history = client.get(f"/api/orders/{quick_order['id']}").get_json()["order"]["history"]
        assert [h["status"] for h in history] == ["pending", "confirmed", "pending"]

    def test_status_must_belong_to_order_type(self, client, quick_order):
        resp = client.post(f"/api/orders/{quick_order['id']}/status", json={"status": "out_for_delivery"})
        assert resp.status_code == 400

    def test_completion_records_income_once(self, client, quick_order):
        resp = advance(client, quick_order["id"], 4)
        assert resp.get_json()["order"]["status"] == "served"

        txs = client.get("/api/financial/transactions").get_json()["transactions"]
        assert len(txs) == 1
        assert txs[0]["gross_amount"] == 102.5
        assert txs[0]["fee_amount"] == 0.0
        assert txs[0]["order_id"] == quick_order["id"]
        assert txs[0]["description"] == "Pedido #1"

        assert advance(client, quick_order["id"]).status_code == 409
        cancel = client.post(f"/api/orders/{quick_order['id']}/status", json={"status": "cancelled"})
        assert cancel.status_code == 409
        assert len(client.get("/api/financial/transactions").get_json()["transactions"]) == 1

    def test_cancel_records_nothing(self, client, quick_order):
        resp = client.post(f"/api/orders/{quick_order['id']}/status", json={"status": "cancelled"})
        assert resp.get_json()["order"]["status"] == "cancelled"
        assert client.get("/api/financial/transactions").get_json()["transactions"] == []

    def test_whatsapp_link_when_enabled(self, client, quick_order):
        client.put("/api/establishment", json={"whatsapp_notifications_enabled": True})
        link = advance(client, quick_order["id"]).get_json()["whatsapp_link"]
        assert link.startswith("https://wa.me/5511987654321?text=")

    def test_payment_method_change_recomputes_fees(self, client, quick_order):
        client.put("/api/establishment", json={"card_credit_fee": 5})
        advance(client, quick_order["id"], 4)

        resp = client.put(f"/api/orders/{quick_order['id']}/payment-method", json={"payment_method": "credit"})
        assert resp.get_json()["order"]["payment_method"] == "credit"
        tx = client.get("/api/financial/transactions").get_json()["transactions"][0]
        assert tx["payment_method"] == "credit"
        assert tx["fee_amount"] == 5.13
        assert tx["net_amount"] == 97.37

    def test_invalid_payment_method(self, client, quick_order):
        resp = client.put(f"/api/orders/{quick_order['id']}/payment-method", json={"payment_method": "bitcoin"})
        assert resp.status_code == 400


class TestItems:
    def test_add_update_delete_items(self, client, catalog, quick_order):
        order_id = quick_order["id"]
        pizza_item, soda_item = [it["id"] for it in quick_order["items"]]

        resp = client.post(f"/api/orders/{order_id}/items", json={"product_id": catalog["soda"], "quantity": 2})
        assert resp.get_json()["order"]["total"] == 115.5
        assert len(resp.get_json()["item_ids"]) == 1

        resp = client.put(f"/api/order-items/{pizza_item}", json={"quantity": 1})
        assert resp.get_json()["order"]["total"] == 67.5

        resp = client.put(f"/api/order-items/{pizza_item}", json={"addons": [{"id": catalog["cheddar"]}]})
        assert resp.get_json()["order"]["total"] == 65.5

        resp = client.delete(f"/api/order-items/{soda_item}")
        assert resp.get_json()["order"]["total"] == 59.0

    def test_finalized_orders_are_locked(self, client, catalog, quick_order):
        client.post(f"/api/orders/{quick_order['id']}/status", json={"status": "cancelled"})
        resp = client.post(f"/api/orders/{quick_order['id']}/items", json={"product_id": catalog["soda"]})
        assert resp.status_code == 409
        item_id = quick_order["items"][0]["id"]
        assert client.delete(f"/api/order-items/{item_id}").status_code == 409

    def test_item_status_cycle(self, client, quick_order):
        item_id = quick_order["items"][0]["id"]
        resp = client.post(f"/api/order-items/{item_id}/status")
        assert resp.get_json()["item"]["item_status"] == "preparing"
        resp = client.post(f"/api/order-items/{item_id}/status", json={"item_status": "delivered"})
        assert resp.get_json()["item"]["status_display"]["label"] == "Entregue"
        assert client.post(f"/api/order-items/{item_id}/status").status_code == 409


class TestOpenTabs:
    def open_tab(self, client, catalog):
        return client.post("/api/orders/quick", json={
            "order_subtype": "table",
            "table_number": "8",
            "customer": {"name": "João"},
            "items": [{"product_id": catalog["soda"], "quantity": 2}],
        }).get_json()["order"]

    def test_close_tab(self, client, catalog):
        tab = self.open_tab(client, catalog)
        tabs = client.get("/api/orders/open-tabs").get_json()["orders"]
        assert [t["id"] for t in tabs] == [tab["id"]]

        resp = client.post(f"/api/orders/{tab['id']}/close-tab", json={"payment_method": "cash"})
        order = resp.get_json()["order"]
        assert order["status"] == "served"
        assert order["is_open_tab"] is False
        assert order["payment_method"] == "cash"

        assert client.get("/api/orders/open-tabs").get_json()["orders"] == []
        txs = client.get("/api/financial/transactions").get_json()["transactions"]
        assert [t["gross_amount"] for t in txs] == [13.0]

    def test_tab_is_not_income_until_closed(self, client, catalog):
        tab = self.open_tab(client, catalog)
        advance(client, tab["id"], 4)
        assert client.get("/api/financial/transactions").get_json()["transactions"] == []

    def test_close_tab_requires_open_tab(self, client, quick_order):
        resp = client.post(f"/api/orders/{quick_order['id']}/close-tab", json={"payment_method": "pix"})
        assert resp.status_code == 409


class TestPrintAndShare:
    def test_receipt_pdf(self, client, quick_order):
        resp = client.get(f"/api/orders/{quick_order['id']}/receipt.pdf")
        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert resp.data[:4] == b"%PDF"

    def test_ticket(self, client, quick_order):
        resp = client.get(f"/api/orders/{quick_order['id']}/ticket")
        assert resp.mimetype == "text/plain"
        assert "PEDIDO #1" in resp.get_data(as_text=True)

        soda_item = quick_order["items"][1]["id"]
        partial = client.get(f"/api/orders/{quick_order['id']}/ticket?items={soda_item}&format=json").get_json()
        assert "*** NOVOS ITENS ***" in partial["ticket"]
        assert "Margherita" not in partial["ticket"]
        assert partial["print_settings"]["font_size"] == 12

        assert client.get(f"/api/orders/{quick_order['id']}/ticket?items=abc").status_code == 400

    def test_whatsapp_link(self, client, quick_order):
        resp = client.get(f"/api/orders/{quick_order['id']}/whatsapp-link?status=confirmed")
        assert resp.get_json()["whatsapp_link"].startswith("https://wa.me/5511987654321?text=")


class TestListing:
    def test_list_and_filters(self, client, quick_order):
        data = client.get("/api/orders").get_json()
        assert [o["id"] for o in data["orders"]] == [quick_order["id"]]
        assert data["next_offset"] is None
        assert client.get("/api/orders?status=confirmed,preparing").get_json()["orders"] == []
        assert len(client.get("/api/orders?status=pending").get_json()["orders"]) == 1

    def test_preparation_time_without_data(self, client, quick_order):
        assert client.get("/api/orders/preparation-time").get_json()["preparation"] is None

    def test_other_establishment_cannot_see_order(self, app, quick_order):
        other = app.test_client()
        register(other, email="rival@example.com", establishment_name="Rival")
        assert other.get(f"/api/orders/{quick_order['id']}").status_code == 404
        assert other.get("/api/orders").get_json()["orders"] == []

    def test_missing_order(self, client, owner):
        resp = client.get("/api/orders/999")
        assert resp.status_code == 404
        assert resp.get_json()["success"] is False
