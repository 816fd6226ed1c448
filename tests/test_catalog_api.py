import pytest


@pytest.fixture
def sauces(client, catalog):
    """Global sauce group, not owned by any category."""
    group = client.post("/api/addon-groups", json={
        "name": "Molhos", "min_selections": 0, "max_selections": 0,
    }).get_json()["addon_group"]["id"]
    client.post(f"/api/addon-groups/{group}/addons", json={"name": "Alho", "price": "2.00"})
    return group


def resolved_names(client, product_id):
    groups = client.get(f"/api/products/{product_id}/addon-groups").get_json()["addon_groups"]
    return [g["name"] for g in groups]


class TestCategoriesAndProducts:
    def test_reorder_categories(self, client, catalog):
        names = [c["name"] for c in client.get("/api/categories").get_json()["categories"]]
        assert names == ["Pizzas", "Bebidas"]
        client.post("/api/categories/reorder", json={"ids": [catalog["drinks"], catalog["pizzas"]]})
        names = [c["name"] for c in client.get("/api/categories").get_json()["categories"]]
        assert names == ["Bebidas", "Pizzas"]

    def test_reorder_with_unknown_id(self, client, catalog):
        resp = client.post("/api/categories/reorder", json={"ids": [catalog["drinks"], 999]})
        assert resp.status_code == 404

    def test_product_validation_and_update(self, client, catalog):
        assert client.post("/api/products", json={"name": "X", "price": "-1"}).status_code == 400
        assert client.post("/api/products", json={"name": "X", "price": 1, "category_id": 999}).status_code == 404

        resp = client.put(f"/api/products/{catalog['soda']}", json={"price": "7,00", "active": False})
        product = resp.get_json()["product"]
        assert product["price"] == 7.0
        assert product["active"] is False

        active = client.get("/api/products?active=true").get_json()["products"]
        assert [p["name"] for p in active] == ["Margherita"]

    def test_product_search_and_filter(self, client, catalog):
        found = client.get("/api/products?search=marg").get_json()["products"]
        assert [p["id"] for p in found] == [catalog["pizza"]]
        drinks = client.get(f"/api/products?category_id={catalog['drinks']}").get_json()["products"]
        assert [p["id"] for p in drinks] == [catalog["soda"]]

    def test_delete_product_keeps_order_history(self, client, catalog, quick_order):
        assert client.delete(f"/api/products/{catalog['soda']}").status_code == 200
        order = client.get(f"/api/orders/{quick_order['id']}").get_json()["order"]
        soda_line = order["items"][1]
        assert soda_line["product_name"] == "Refrigerante"
        assert soda_line["product_id"] is None

    def test_delete_category_detaches_products(self, client, catalog):
        client.delete(f"/api/categories/{catalog['pizzas']}")
        products = {p["id"]: p for p in client.get("/api/products").get_json()["products"]}
        assert products[catalog["pizza"]]["category_id"] is None


class TestAddonGroups:
    def test_group_limits(self, client, catalog):
        resp = client.post("/api/addon-groups", json={"name": "X", "min_selections": 3, "max_selections": 2})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "min_selections cannot exceed max_selections"
        assert client.post("/api/addon-groups", json={"name": "X", "min_selections": -1}).status_code == 400

    def test_global_and_category_listing(self, client, catalog, sauces):
        global_groups = client.get("/api/addon-groups").get_json()["addon_groups"]
        assert [g["name"] for g in global_groups] == ["Molhos"]
        assert global_groups[0]["addons"][0]["name"] == "Alho"
        owned = client.get(f"/api/addon-groups?category_id={catalog['pizzas']}").get_json()["addon_groups"]
        assert [g["name"] for g in owned] == ["Bordas"]
        assert [a["name"] for a in owned[0]["addons"]] == ["Catupiry", "Cheddar"]

    def test_product_and_category_links(self, client, catalog, sauces):
        assert resolved_names(client, catalog["pizza"]) == ["Bordas"]
        assert resolved_names(client, catalog["soda"]) == []

        client.post(f"/api/products/{catalog['pizza']}/addon-groups", json={"addon_group_id": sauces})
        assert resolved_names(client, catalog["pizza"]) == ["Bordas", "Molhos"]

        client.post(f"/api/categories/{catalog['drinks']}/addon-groups", json={"addon_group_id": sauces})
        assert resolved_names(client, catalog["soda"]) == ["Molhos"]
        linked = client.get(f"/api/categories/{catalog['drinks']}/addon-groups").get_json()["addon_groups"]
        assert [g["id"] for g in linked] == [sauces]

        client.delete(f"/api/products/{catalog['pizza']}/addon-groups/{sauces}")
        assert resolved_names(client, catalog["pizza"]) == ["Bordas"]
        client.delete(f"/api/categories/{catalog['drinks']}/addon-groups/{sauces}")
        assert resolved_names(client, catalog["soda"]) == []

    def test_inactive_addons_are_hidden(self, client, catalog):
        client.put(f"/api/addons/{catalog['cheddar']}", json={"active": False})
        groups = client.get(f"/api/products/{catalog['pizza']}/addon-groups").get_json()["addon_groups"]
        assert [a["name"] for a in groups[0]["addons"]] == ["Catupiry"]

    def test_addon_reorder_update_delete(self, client, catalog):
        client.post(f"/api/addon-groups/{catalog['crust']}/addons/reorder",
                    json={"ids": [catalog["cheddar"], catalog["catupiry"]]})
        client.put(f"/api/addons/{catalog['cheddar']}", json={"price": "7.50"})
        group = client.get(f"/api/addon-groups?category_id={catalog['pizzas']}").get_json()["addon_groups"][0]
        assert [(a["name"], a["price"]) for a in group["addons"]] == [("Cheddar", 7.5), ("Catupiry", 8.0)]

        assert client.delete(f"/api/addons/{catalog['cheddar']}").status_code == 200
        assert client.delete(f"/api/addons/{catalog['cheddar']}").status_code == 404

    def test_delete_group(self, client, catalog, quick_order):
        assert client.delete(f"/api/addon-groups/{catalog['crust']}").status_code == 200
        assert resolved_names(client, catalog["pizza"]) == []
        order = client.get(f"/api/orders/{quick_order['id']}").get_json()["order"]
        assert order["items"][0]["addons"][0]["addon_name"] == "Catupiry"
