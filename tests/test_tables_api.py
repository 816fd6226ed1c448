import pytest


@pytest.fixture
def table(client, catalog):
    resp = client.post("/api/tables", json={
        "table_number": "7", "customer_name": "Carlos", "customer_phone": "11955554444",
    })
    assert resp.status_code == 200
    return resp.get_json()["table"]


def add_round(client, table_id, items):
    return client.post(f"/api/tables/{table_id}/orders", json={"items": items})


class TestTableSession:
    def test_open_table(self, client, table):
        assert table["status"] == "open"
        assert table["customer_display_name"] == "Carlos"
        assert table["customer_id"] is not None
        assert table["total"] == 0.0

        dup = client.post("/api/tables", json={"table_number": "7"})
        assert dup.status_code == 409
        assert dup.get_json()["error"] == "DUPLICATE_TABLE:7"

    def test_rounds_accumulate(self, client, catalog, table):
        first = add_round(client, table["id"], [
            {"product_id": catalog["pizza"], "addons": [{"id": catalog["catupiry"]}]},
            {"product_id": catalog["soda"]},
        ]).get_json()
        assert first["order_number"] == 1
        assert first["total"] == 54.5
        add_round(client, table["id"], [{"product_id": catalog["soda"]}])

        tables = client.get("/api/tables").get_json()["tables"]
        assert len(tables) == 1
        assert tables[0]["total"] == 61.0
        assert len(tables[0]["orders"]) == 2
        assert tables[0]["orders"][0]["table_number"] == "7"
        assert tables[0]["item_status_counts"]["pending"] == 3

    def test_cancelled_round_is_not_charged(self, client, catalog, table):
        add_round(client, table["id"], [{"product_id": catalog["soda"]}])
        extra = add_round(client, table["id"], [{"product_id": catalog["soda"], "quantity": 3}]).get_json()
        client.post(f"/api/orders/{extra['id']}/status", json={"status": "cancelled"})
        detail = client.get(f"/api/tables/{table['id']}").get_json()["table"]
        assert detail["total"] == 6.5

    def test_round_advanced_alone_is_not_income(self, client, catalog, table):
        order = add_round(client, table["id"], [{"product_id": catalog["soda"]}]).get_json()
        for _ in range(4):
            client.post(f"/api/orders/{order['id']}/advance")
        assert client.get("/api/financial/transactions").get_json()["transactions"] == []


class TestCloseTable:
    def test_payments_must_match_total(self, client, catalog, table):
        add_round(client, table["id"], [{"product_id": catalog["soda"]}])
        resp = client.post(f"/api/tables/{table['id']}/close", json={
            "payments": [{"method": "pix", "amount": 5}],
        })
        assert resp.status_code == 400
        invalid = client.post(f"/api/tables/{table['id']}/close", json={
            "payments": [{"method": "voucher", "amount": 6.5}],
        })
        assert invalid.status_code == 400

    def test_split_payment_close(self, client, catalog, table):
        client.put("/api/establishment", json={"card_credit_fee": 10})
        add_round(client, table["id"], [
            {"product_id": catalog["pizza"], "addons": [{"id": catalog["catupiry"]}]},
            {"product_id": catalog["soda"]},
        ])
        add_round(client, table["id"], [{"product_id": catalog["soda"]}])

        resp = client.post(f"/api/tables/{table['id']}/close", json={
            "payments": [{"method": "pix", "amount": 40}, {"method": "credit", "amount": "21.00"}],
        })
        assert resp.status_code == 200
        assert resp.get_json()["total"] == 61.0
        assert resp.get_json()["table"]["status"] == "closed"

        txs = client.get("/api/financial/transactions").get_json()["transactions"]
        by_method = {t["payment_method"]: t for t in txs}
        assert set(by_method) == {"pix", "credit"}
        assert by_method["credit"]["fee_amount"] == 2.1
        assert by_method["credit"]["net_amount"] == 18.9
        assert all(t["description"] == "Mesa 7" for t in txs)

        assert client.get("/api/tables").get_json()["tables"] == []
        orders = client.get("/api/orders").get_json()["orders"]
        assert {o["status"] for o in orders} == {"served"}

    def test_closed_table_is_locked(self, client, catalog, table):
        add_round(client, table["id"], [{"product_id": catalog["soda"]}])
        client.post(f"/api/tables/{table['id']}/close", json={"payments": [{"method": "cash", "amount": 6.5}]})

        again = client.post(f"/api/tables/{table['id']}/close", json={"payments": [{"method": "cash", "amount": 1}]})
        assert again.status_code == 409
        assert add_round(client, table["id"], [{"product_id": catalog["soda"]}]).status_code == 409

        reopened = client.post("/api/tables", json={"table_number": "7"})
        assert reopened.status_code == 200
