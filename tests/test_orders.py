from mailer import mailer
from models import Order, Payment, Product, UserRole
from tests.conftest import auth, make_product, make_user


def _order(client, user, items, shipping, method="card", **extra):
    payload = dict(shipping, items=items, payment_method=method, **extra)
    return client.post("/api/orders", json=payload, headers=auth(user))


def test_create_order_snapshots_items_and_decrements_stock(client, db, buyer, product, shipping):
    res = _order(client, buyer, [{"product_id": product.id, "quantity": 2}], shipping)
    assert res.status_code == 201
    order = res.json()["data"]["order"]
    assert order["status"] == "pending"
    assert order["order_number"].startswith("GH-")
    assert order["subtotal_pesewas"] == 30000
    assert order["shipping_fee_pesewas"] == 1000
    assert order["total_pesewas"] == 31000
    assert order["items"][0]["product_name"] == "Kente Cloth"
    assert order["items"][0]["seller_id"] == product.seller_id
    assert order["active_payment"]["status"] == "pending"
    assert order["active_payment"]["amount_pesewas"] == 31000

    db.expire_all()
    assert db.get(Product, product.id).stock_quantity == 8
    assert mailer.outbox[-1]["subject"] == f"Order {order['order_number']} received"


def test_duplicate_lines_are_merged(client, buyer, product, shipping):
    res = _order(client, buyer, [{"product_id": product.id, "quantity": 1}, {"product_id": product.id, "quantity": 2}], shipping)
    items = res.json()["data"]["order"]["items"]
    assert len(items) == 1
    assert items[0]["quantity"] == 3


def test_insufficient_stock_rolls_back(client, db, buyer, seller, category, product, shipping):
    scarce = make_product(db, seller, category, name="Rare Mask", stock=1)
    res = _order(
        client,
        buyer,
        [{"product_id": product.id, "quantity": 1}, {"product_id": scarce.id, "quantity": 2}],
        shipping,
    )
    assert res.status_code == 400
    assert "Insufficient stock" in res.json()["message"]

    db.expire_all()
    assert db.get(Product, product.id).stock_quantity == 10
    assert db.query(Order).count() == 0


def test_backorder_products_can_oversell(client, db, buyer, seller, category, shipping):
    preorder = make_product(db, seller, category, name="Preorder Drum", stock=0, allow_backorder=True)
    res = _order(client, buyer, [{"product_id": preorder.id, "quantity": 2}], shipping)
    assert res.status_code == 201


def test_inactive_product_cannot_be_ordered(client, db, buyer, seller, category, shipping):
    gone = make_product(db, seller, category, name="Retired", is_active=False)
    res = _order(client, buyer, [{"product_id": gone.id, "quantity": 1}], shipping)
    assert res.status_code == 400


def test_order_from_saved_address(client, buyer, product, shipping):
    address = client.post(
        "/api/users/addresses",
        json={
            "label": "Home",
            "full_name": "Kojo Boateng",
            "phone": "0201234567",
            "region": "Ashanti",
            "city": "Kumasi",
            "street_address": "5 Prempeh II Street",
        },
        headers=auth(buyer),
    ).json()["data"]["address"]
    res = _order(
        client,
        buyer,
        [{"product_id": product.id, "quantity": 1}],
        {"customer_email": "buyer@example.com", "customer_phone": "0244123456"},
        address_id=address["id"],
    )
    assert res.status_code == 201
    assert res.json()["data"]["order"]["shipping_city"] == "Kumasi"


def test_incomplete_inline_shipping_is_rejected(client, buyer, product):
    res = _order(
        client,
        buyer,
        [{"product_id": product.id, "quantity": 1}],
        {"customer_email": "buyer@example.com", "customer_phone": "0244123456"},
    )
    assert res.status_code == 400


def test_empty_items_is_a_validation_error(client, buyer, shipping):
    res = _order(client, buyer, [], shipping)
    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "body.items"


def test_cash_on_delivery_starts_confirmed(client, buyer, product, shipping):
    res = _order(client, buyer, [{"product_id": product.id, "quantity": 1}], shipping, method="cash_on_delivery")
    order = res.json()["data"]["order"]
    assert order["status"] == "confirmed"
    assert order["confirmed_at"] is not None
    assert order["active_payment"]["method"] == "cash_on_delivery"


def test_buyer_lists_and_reads_own_orders(client, db, buyer, product, shipping):
    order = _order(client, buyer, [{"product_id": product.id, "quantity": 1}], shipping).json()["data"]["order"]

    listing = client.get("/api/orders", headers=auth(buyer)).json()["data"]
    assert [o["id"] for o in listing["orders"]] == [order["id"]]
    assert listing["pagination"]["total"] == 1

    by_number = client.get(f"/api/orders/{order['order_number']}", headers=auth(buyer))
    assert by_number.json()["data"]["order"]["id"] == order["id"]

    stranger = make_user(db, "stranger@example.com")
    assert client.get(f"/api/orders/{order['id']}", headers=auth(stranger)).status_code == 404


def test_buyer_cancel_restocks_and_cancels_payment(client, db, buyer, product, shipping):
    order = _order(client, buyer, [{"product_id": product.id, "quantity": 4}], shipping).json()["data"]["order"]

    res = client.post(f"/api/orders/{order['id']}/cancel", headers=auth(buyer))
    assert res.status_code == 200
    assert res.json()["data"]["order"]["status"] == "cancelled"

    db.expire_all()
    assert db.get(Product, product.id).stock_quantity == 10
    assert db.query(Payment).filter_by(order_id=order["id"]).one().status == "cancelled"

    again = client.post(f"/api/orders/{order['id']}/cancel", headers=auth(buyer))
    assert again.status_code == 400


def test_admin_status_updates_follow_transitions(client, buyer, admin, product, shipping):
    order = _order(client, buyer, [{"product_id": product.id, "quantity": 1}], shipping, method="cash_on_delivery").json()["data"]["order"]
    url = f"/api/admin/orders/{order['id']}/status"

    skip = client.put(url, json={"status": "delivered"}, headers=auth(admin))
    assert skip.status_code == 400

    for status in ("processing", "shipped"):
        res = client.put(url, json={"status": status, "tracking_number": "TRK-1"}, headers=auth(admin))
        assert res.status_code == 200
    shipped = res.json()["data"]["order"]
    assert shipped["status"] == "shipped"
    assert shipped["tracking_number"] == "TRK-1"
    assert shipped["shipped_at"] is not None

    assert client.post(f"/api/orders/{order['id']}/cancel", headers=auth(buyer)).status_code == 400
    assert client.put(url, json={"status": "cancelled"}, headers=auth(admin)).status_code == 400


def test_seller_sees_and_updates_only_own_orders(client, db, buyer, seller, product, shipping):
    order = _order(client, buyer, [{"product_id": product.id, "quantity": 2}], shipping, method="cash_on_delivery").json()["data"]["order"]
    other = make_user(db, "other-seller@example.com", role=UserRole.SELLER)

    mine = client.get("/api/seller/orders", headers=auth(seller)).json()["data"]["orders"]
    assert [o["id"] for o in mine] == [order["id"]]
    assert mine[0]["seller_total_pesewas"] == 30000
    assert client.get("/api/seller/orders", headers=auth(other)).json()["data"]["orders"] == []

    url = f"/api/seller/orders/{order['id']}/status"
    assert client.patch(url, json={"status": "processing"}, headers=auth(other)).status_code == 404
    res = client.patch(url, json={"status": "processing"}, headers=auth(seller))
    assert res.status_code == 200
    assert res.json()["data"]["order"]["status"] == "processing"


def test_seller_products_include_inactive(client, db, seller, category, product):
    make_product(db, seller, category, name="Draft Item", is_active=False)
    res = client.get("/api/seller/products", headers=auth(seller)).json()["data"]
    assert res["pagination"]["total"] == 2
    inactive = client.get("/api/seller/products", params={"status": "inactive"}, headers=auth(seller)).json()["data"]
    assert [p["name"] for p in inactive["products"]] == ["Draft Item"]


def test_admin_dashboard_and_inventory(client, db, admin, buyer, seller, category, product, shipping):
    make_product(db, seller, category, name="Low Item", stock=2)
    _order(client, buyer, [{"product_id": product.id, "quantity": 1}], shipping, method="cash_on_delivery")

    dash = client.get("/api/admin/dashboard", headers=auth(admin)).json()["data"]
    assert dash["users"]["total"] == 3
    assert dash["orders"]["total"] == 1
    assert dash["products"]["low_stock"] == 1
    assert dash["revenue"]["this_month_pesewas"] == 16000

    low = client.get("/api/admin/inventory/low-stock", headers=auth(admin)).json()["data"]["products"]
    assert [p["name"] for p in low] == ["Low Item"]

    res = client.put(f"/api/admin/inventory/{low[0]['id']}", json={"stock_quantity": 40}, headers=auth(admin))
    assert res.json()["data"]["change"] == 38
    assert client.get("/api/admin/inventory/low-stock", headers=auth(admin)).json()["data"]["products"] == []


def test_admin_suspends_user(client, admin, buyer):
    res = client.put(f"/api/admin/users/{buyer.id}/status", json={"status": "suspended"}, headers=auth(admin))
    assert res.status_code == 200
    assert client.get("/api/auth/me", headers=auth(buyer)).status_code == 403

    users = client.get("/api/admin/users", params={"status": "suspended"}, headers=auth(admin)).json()["data"]["users"]
    assert [u["email"] for u in users] == [buyer.email]


def test_admin_routes_require_admin(client, seller):
    assert client.get("/api/admin/dashboard", headers=auth(seller)).status_code == 403
