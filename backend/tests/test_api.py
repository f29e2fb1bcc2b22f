"""
HTTP API tests through the Flask test client.

Verifies:
- Missing X-User-Id returns 401
- Checkout / edit / return round trip over JSON
- Typed ledger errors map to their HTTP status
"""

import pytest
from sqlalchemy.orm.exc import StaleDataError

from posledger.services import cashbox_service


def _create_product(client, headers, **overrides):
    body = {
        "sku": "API-001",
        "name": "Widget",
        "cost_price_cents": 600,
        "selling_price_cents": 1000,
        "initial_stock": 5,
    }
    body.update(overrides)
    resp = client.post("/api/products", json=body, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["product"]


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestActorRequired:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/sales"),
            ("POST", "/api/sales"),
            ("POST", "/api/sales/1/edit"),
            ("GET", "/api/cashbox"),
            ("GET", "/api/customers"),
            ("GET", "/api/reports/reconciliation"),
        ],
    )
    def test_requires_actor(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_rejects_malformed_actor(self, client, db_session):
        resp = client.get("/api/products", headers={"X-User-Id": "abc"})
        assert resp.status_code == 401


def test_health(client, db_session):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.get_json()["checks"]["database"]["status"] == "healthy"


# =============================================================================
# PRODUCTS
# =============================================================================


class TestProducts:

    def test_create_and_get(self, client, headers, db_session):
        product = _create_product(client, headers)
        assert product["current_stock"] == 5

        resp = client.get(f"/api/products/{product['id']}", headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["product"]["sku"] == "API-001"

    def test_stock_is_not_writable(self, client, headers, db_session):
        resp = client.post(
            "/api/products",
            json={"sku": "X", "name": "X", "cost_price_cents": 1, "selling_price_cents": 2, "current_stock": 99},
            headers=headers,
        )
        assert resp.status_code == 400

    def test_float_price_rejected(self, client, headers, db_session):
        resp = client.post(
            "/api/products",
            json={"sku": "X", "name": "X", "cost_price_cents": 1.5, "selling_price_cents": 2},
            headers=headers,
        )
        assert resp.status_code == 400

    def test_duplicate_sku_is_422(self, client, headers, db_session):
        _create_product(client, headers)
        resp = client.post(
            "/api/products",
            json={"sku": "API-001", "name": "Again", "cost_price_cents": 1, "selling_price_cents": 2},
            headers=headers,
        )
        assert resp.status_code == 422

    def test_manual_stock_movement(self, client, headers, db_session):
        product = _create_product(client, headers)

        resp = client.post(
            f"/api/products/{product['id']}/stock",
            json={"type": "out", "quantity": 6},
            headers=headers,
        )
        assert resp.status_code == 409
        assert resp.get_json()["details"]["current_stock"] == 5

        resp = client.post(
            f"/api/products/{product['id']}/stock",
            json={"type": "adjustment", "quantity": -2, "reason": "damaged"},
            headers=headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["product"]["current_stock"] == 3

        resp = client.get(f"/api/stock-movements?product_id={product['id']}", headers=headers)
        assert [m["type"] for m in resp.get_json()["movements"]] == ["adjustment", "in"]

    def test_missing_product_is_404(self, client, headers, db_session):
        resp = client.get("/api/products/999", headers=headers)
        assert resp.status_code == 404


# =============================================================================
# SALES
# =============================================================================


class TestSalesApi:

    def test_checkout_edit_return_round_trip(self, client, headers, cashbox):
        product = _create_product(client, headers)

        resp = client.post(
            "/api/sales",
            json={
                "items": [{"product_id": product["id"], "quantity": 2}],
                "amount_paid": "20.00",
                "total": "20.00",
            },
            headers=headers,
        )
        assert resp.status_code == 201, resp.get_json()
        sale = resp.get_json()["sale"]
        assert sale["total"] == "20.00"
        assert sale["status"] == "completed"

        resp = client.post(
            f"/api/sales/{sale['id']}/edit",
            json={
                "return_item_ids": [sale["items"][0]["id"]],
                "new_items": [{"product_id": product["id"], "quantity": 1, "unit_price": "15.00"}],
            },
            headers=headers,
        )
        assert resp.status_code == 200, resp.get_json()
        body = resp.get_json()
        assert body["sale"]["total"] == "15.00"
        assert body["settlement"]["price_diff_cents"] == -500

        cash = client.get("/api/cashbox", headers=headers).get_json()["cashbox"]
        assert cash["balance_lyd"] == "15.00"

        resp = client.post(f"/api/sales/{sale['id']}/return", headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["sale"]["status"] == "returned"

        product_now = client.get(f"/api/products/{product['id']}", headers=headers).get_json()["product"]
        assert product_now["current_stock"] == 5

        report = client.get("/api/reports/reconciliation", headers=headers).get_json()
        assert report["ok"] is True

    def test_empty_edit_is_400(self, client, headers, cashbox):
        product = _create_product(client, headers)
        sale = client.post(
            "/api/sales",
            json={"items": [{"product_id": product["id"], "quantity": 1}], "amount_paid_cents": 1000},
            headers=headers,
        ).get_json()["sale"]

        resp = client.post(
            f"/api/sales/{sale['id']}/edit",
            json={"return_item_ids": [], "new_items": []},
            headers=headers,
        )
        assert resp.status_code == 400
        assert "return or add" in resp.get_json()["error"]

    def test_insufficient_stock_is_409(self, client, headers, cashbox):
        product = _create_product(client, headers)
        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": product["id"], "quantity": 9}], "amount_paid_cents": 9000},
            headers=headers,
        )
        assert resp.status_code == 409
        assert resp.get_json()["details"]["requested_quantity"] == 9

    def test_total_mismatch_is_422(self, client, headers, cashbox):
        product = _create_product(client, headers)
        resp = client.post(
            "/api/sales",
            json={
                "items": [{"product_id": product["id"], "quantity": 2}],
                "amount_paid": "20.00",
                "total": "19.00",
            },
            headers=headers,
        )
        assert resp.status_code == 422

    def test_float_money_rejected(self, client, headers, cashbox):
        product = _create_product(client, headers)
        resp = client.post(
            "/api/sales",
            json={"items": [{"product_id": product["id"], "quantity": 1}], "amount_paid": 10.0},
            headers=headers,
        )
        assert resp.status_code == 400

    def test_missing_sale_is_404(self, client, headers, cashbox):
        assert client.get("/api/sales/777", headers=headers).status_code == 404
        assert client.post("/api/sales/777/return", headers=headers).status_code == 404

    def test_returning_twice_is_409(self, client, headers, cashbox):
        product = _create_product(client, headers)
        sale = client.post(
            "/api/sales",
            json={"items": [{"product_id": product["id"], "quantity": 1}], "amount_paid_cents": 1000},
            headers=headers,
        ).get_json()["sale"]

        assert client.post(f"/api/sales/{sale['id']}/return", headers=headers).status_code == 200
        assert client.post(f"/api/sales/{sale['id']}/cancel", headers=headers).status_code == 409


# =============================================================================
# CUSTOMERS / CASHBOX / FINANCE
# =============================================================================


def test_partial_sale_and_customer_payment(client, headers, cashbox):
    product = _create_product(client, headers)
    customer = client.post(
        "/api/customers", json={"name": "Salem", "phone": "0911234567"}, headers=headers
    ).get_json()["customer"]

    resp = client.post(
        "/api/sales",
        json={
            "items": [{"product_id": product["id"], "quantity": 3}],
            "amount_paid": "10.00",
            "customer_id": customer["id"],
            "payment_method": "partial",
        },
        headers=headers,
    )
    assert resp.status_code == 201, resp.get_json()

    resp = client.post(
        f"/api/customers/{customer['id']}/payment", json={"amount": "5.00"}, headers=headers
    )
    assert resp.status_code == 200
    assert resp.get_json()["customer"]["balance_owed"] == "15.00"

    detail = client.get(f"/api/customers/{customer['id']}", headers=headers).get_json()
    assert [e["entry_type"] for e in detail["ledger"]][:1] == ["payment"]


def test_manual_cashbox_entries_take_sign_from_type(client, headers, cashbox):
    resp = client.post(
        "/api/cashbox/transactions", json={"type": "deposit", "amount_lyd": "100.00"}, headers=headers
    )
    assert resp.status_code == 201

    resp = client.post(
        "/api/cashbox/transactions", json={"type": "withdrawal", "amount_lyd": "30.00"}, headers=headers
    )
    assert resp.status_code == 201
    assert resp.get_json()["transaction"]["amount_lyd_cents"] == -3000
    assert resp.get_json()["cashbox"]["balance_lyd"] == "70.00"

    resp = client.post(
        "/api/cashbox/transactions", json={"type": "refund", "amount_lyd": "1.00"}, headers=headers
    )
    assert resp.status_code == 400


def test_expense_and_revenue_endpoints(client, headers, cashbox):
    resp = client.post(
        "/api/revenues", json={"source": "Scrap sale", "amount": "50.00"}, headers=headers
    )
    assert resp.status_code == 201
    resp = client.post(
        "/api/expenses",
        json={"category": "utilities", "amount": "12.50", "description": "Electricity"},
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.get_json()["expense"]["expense_number"] == "EXP-00001"

    cash = client.get("/api/cashbox", headers=headers).get_json()["cashbox"]
    assert cash["balance_lyd"] == "37.50"

    listed = client.get("/api/expenses", headers=headers).get_json()["expenses"]
    assert len(listed) == 1


def test_concurrent_modification_is_409_and_rolls_back(client, headers, cashbox, monkeypatch):
    product = _create_product(client, headers)

    def stale(**kwargs):
        raise StaleDataError("UPDATE statement on table 'cashboxes' expected to update 1 row(s); 0 were matched.")

    monkeypatch.setattr(cashbox_service, "record_transaction", stale)

    resp = client.post(
        "/api/sales",
        json={"items": [{"product_id": product["id"], "quantity": 2}], "amount_paid_cents": 2000},
        headers=headers,
    )
    assert resp.status_code == 409
    assert "retry" in resp.get_json()["error"]

    product_now = client.get(f"/api/products/{product['id']}", headers=headers).get_json()["product"]
    assert product_now["current_stock"] == 5
    assert client.get("/api/sales", headers=headers).get_json()["sales"] == []


@pytest.mark.parametrize("cashbox_id", ["1.5", 1.5, True, "abc"])
def test_manual_cashbox_entry_rejects_malformed_cashbox_id(client, headers, cashbox, cashbox_id):
    resp = client.post(
        "/api/cashbox/transactions",
        json={"type": "deposit", "amount_lyd": "10.00", "cashbox_id": cashbox_id},
        headers=headers,
    )
    assert resp.status_code == 400
    assert "cashbox_id" in resp.get_json()["error"]


def test_manual_cashbox_entry_accepts_string_cashbox_id(client, headers, cashbox):
    resp = client.post(
        "/api/cashbox/transactions",
        json={"type": "deposit", "amount_lyd": "10.00", "cashbox_id": str(cashbox.id)},
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.get_json()["transaction"]["cashbox_id"] == cashbox.id


class TestCatalogueApi:

    def test_category_lifecycle(self, client, headers, db_session):
        resp = client.post("/api/categories", json={"name": "Drinks"}, headers=headers)
        assert resp.status_code == 201
        category = resp.get_json()["category"]

        product = _create_product(client, headers, category_id=category["id"], barcode="5449000000996")
        assert product["category"]["name"] == "Drinks"

        listed = client.get(f"/api/products?category_id={category['id']}", headers=headers).get_json()
        assert [p["id"] for p in listed["products"]] == [product["id"]]

        assert client.delete(f"/api/categories/{category['id']}", headers=headers).status_code == 409

        resp = client.patch(f"/api/categories/{category['id']}", json={"name": "Beverages"}, headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["category"]["name"] == "Beverages"

        assert client.post("/api/categories", json={"name": "Beverages"}, headers=headers).status_code == 422
        assert client.post("/api/categories", json={}, headers=headers).status_code == 400

    def test_unknown_category_on_product_is_404(self, client, headers, db_session):
        resp = client.post(
            "/api/products",
            json={"sku": "X", "name": "X", "cost_price_cents": 1, "selling_price_cents": 2, "category_id": 42},
            headers=headers,
        )
        assert resp.status_code == 404

    def test_lookup_and_search(self, client, headers, db_session):
        product = _create_product(client, headers, barcode="5449000000996", name="Cola")

        resp = client.get("/api/products/lookup?code=5449000000996", headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["product"]["id"] == product["id"]

        resp = client.get("/api/products/lookup?code=API-001", headers=headers)
        assert resp.get_json()["product"]["id"] == product["id"]

        assert client.get("/api/products/lookup?code=000", headers=headers).status_code == 404
        assert client.get("/api/products/lookup", headers=headers).status_code == 400

        found = client.get("/api/products/search?q=col", headers=headers).get_json()["products"]
        assert [p["id"] for p in found] == [product["id"]]
