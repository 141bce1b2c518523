import hashlib
import hmac
import json

import pytest
from sqlalchemy import event

from config import settings
from database import engine
from errors import GatewayError
from gateways import MomoGateway, PaystackGateway, get_paystack
from main import app
from models import Order, Payment, Product
from reconciliation import confirm_payment, lock_payment
from tests.conftest import FakeClock, auth, make_user


def sign(body: bytes, secret: str = settings.PAYSTACK_SECRET_KEY) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


def post_webhook(client, payload, signature=None, url="/api/payments/paystack/webhook"):
    body = json.dumps(payload).encode()
    headers = {"Content-Type": "application/json"}
    if signature is not False:
        headers["x-paystack-signature"] = signature or sign(body)
    return client.post(url, content=body, headers=headers)


def charge_success(reference):
    return {"event": "charge.success", "data": {"reference": reference, "status": "success", "amount": 16000}}


class FailingPaystack(PaystackGateway):
    def verify_transaction(self, reference):
        return {"reference": reference, "status": "failed", "gateway_response": "Declined by issuer"}


class BrokenPaystack(PaystackGateway):
    def initialize_transaction(self, *args, **kwargs):
        raise GatewayError("connection refused")


@pytest.fixture()
def order(client, buyer, product, shipping):
    payload = dict(shipping, items=[{"product_id": product.id, "quantity": 1}], payment_method="card")
    return client.post("/api/orders", json=payload, headers=auth(buyer)).json()["data"]["order"]


@pytest.fixture()
def initialized(client, buyer, order):
    res = client.post(
        "/api/payments/paystack/initialize",
        json={"order_id": order["id"], "email": buyer.email},
        headers=auth(buyer),
    )
    assert res.status_code == 200, res.json()
    return res.json()["data"]


def _reload(db, order_id):
    db.expire_all()
    order = db.get(Order, order_id)
    return order, order.active_payment


@pytest.fixture()
def writes():
    statements = []

    def record(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith(("INSERT", "UPDATE", "DELETE")):
            statements.append(statement)

    event.listen(engine, "before_cursor_execute", record)
    yield statements
    event.remove(engine, "before_cursor_execute", record)


def test_paystack_initialize_moves_payment_to_processing(client, db, order, initialized):
    assert initialized["reference"].startswith("GHM-")
    assert "reference=" in initialized["authorization_url"]
    assert initialized["amount_pesewas"] == order["total_pesewas"]

    _, payment = _reload(db, order["id"])
    assert payment.id == initialized["payment_id"]
    assert payment.status == "processing"
    assert payment.gateway_provider == "paystack"
    assert payment.gateway_reference == initialized["reference"]


def test_second_initialize_while_processing_is_rejected(client, buyer, order, initialized):
    res = client.post(
        "/api/payments/paystack/initialize",
        json={"order_id": order["id"], "email": buyer.email},
        headers=auth(buyer),
    )
    assert res.status_code == 400
    assert res.json()["message"] == "Payment already in progress"


def test_initialize_for_someone_elses_order_is_not_found(client, db, order):
    stranger = make_user(db, "stranger@example.com")
    res = client.post(
        "/api/payments/paystack/initialize",
        json={"order_id": order["id"], "email": stranger.email},
        headers=auth(stranger),
    )
    assert res.status_code == 404


def test_provider_outage_maps_to_502(client, buyer, order):
    app.dependency_overrides[get_paystack] = lambda: BrokenPaystack("sk_test", sandbox=True)
    res = client.post(
        "/api/payments/paystack/initialize",
        json={"order_id": order["id"], "email": buyer.email},
        headers=auth(buyer),
    )
    assert res.status_code == 502
    assert res.json()["message"] == "Payment provider unavailable"


def test_webhook_confirms_payment_and_order_together(client, db, order, initialized):
    res = post_webhook(client, charge_success(initialized["reference"]))
    assert res.status_code == 200
    assert res.json() == {"success": True, "data": {"received": True}}

    stored_order, payment = _reload(db, order["id"])
    assert payment.status == "success"
    assert payment.confirmed_at is not None
    assert stored_order.status == "confirmed"
    assert stored_order.confirmed_at is not None


def test_webhook_alias_route(client, db, order, initialized):
    res = post_webhook(client, charge_success(initialized["reference"]), url="/api/webhooks/paystack")
    assert res.status_code == 200
    assert _reload(db, order["id"])[0].status == "confirmed"


def test_webhook_replay_performs_zero_writes(client, db, order, initialized, writes):
    assert post_webhook(client, charge_success(initialized["reference"])).status_code == 200
    assert writes
    writes.clear()

    res = post_webhook(client, charge_success(initialized["reference"]))
    assert res.status_code == 200
    assert res.json()["data"] == {"received": True}
    assert writes == []


@pytest.mark.parametrize(
    "payload",
    [
        {"event": "charge.success", "data": {"reference": "anything"}},
        {"event": "transfer.success", "data": {}},
        {"not": "even an event"},
    ],
)
def test_invalid_signature_is_always_rejected(client, payload, writes):
    res = post_webhook(client, payload, signature="0" * 128)
    assert res.status_code == 401
    assert res.json() == {"success": False, "message": "Invalid signature"}
    assert writes == []


def test_missing_signature_header_is_rejected(client, order, initialized):
    res = post_webhook(client, charge_success(initialized["reference"]), signature=False)
    assert res.status_code == 401


def test_missing_secret_rejects_every_webhook(client, order, initialized):
    app.dependency_overrides[get_paystack] = lambda: PaystackGateway("", sandbox=True)
    body = json.dumps(charge_success(initialized["reference"])).encode()
    res = client.post(
        "/api/payments/paystack/webhook",
        content=body,
        headers={"Content-Type": "application/json", "x-paystack-signature": sign(body, "")},
    )
    assert res.status_code == 401


def test_signature_covers_the_raw_body(client, order, initialized):
    body = json.dumps(charge_success(initialized["reference"])).encode()
    tampered = body.replace(b"16000", b"1")
    res = client.post(
        "/api/payments/paystack/webhook",
        content=tampered,
        headers={"Content-Type": "application/json", "x-paystack-signature": sign(body)},
    )
    assert res.status_code == 401


def test_late_webhook_leaves_cancelled_order_alone(client, db, buyer, product, order, initialized, writes):
    assert client.post(f"/api/orders/{order['id']}/cancel", headers=auth(buyer)).status_code == 200
    writes.clear()

    res = post_webhook(client, charge_success(initialized["reference"]))
    assert res.status_code == 200
    assert res.json()["data"] == {"received": True}
    assert writes == []

    db.expire_all()
    assert db.get(Order, order["id"]).status == "cancelled"
    assert db.get(Payment, initialized["payment_id"]).status == "cancelled"
    assert db.get(Product, product.id).stock_quantity == 10


def test_webhook_for_replaced_payment_keeps_one_active(client, db, buyer, order, initialized):
    client.post(f"/api/payments/{initialized['payment_id']}/cancel", headers=auth(buyer))
    retry = client.post(
        "/api/payments/paystack/initialize",
        json={"order_id": order["id"], "email": buyer.email},
        headers=auth(buyer),
    )
    assert retry.status_code == 200

    assert post_webhook(client, charge_success(initialized["reference"])).status_code == 200

    db.expire_all()
    statuses = [p.status for p in db.query(Payment).filter_by(order_id=order["id"]).order_by(Payment.id)]
    assert statuses == ["cancelled", "processing"]
    assert db.get(Order, order["id"]).status == "pending"


def test_payment_status_is_reread_under_lock(client, db, order, initialized, writes):
    stale = db.get(Payment, initialized["payment_id"])
    assert stale.status == "processing"

    post_webhook(client, charge_success(initialized["reference"]))
    writes.clear()

    payment = lock_payment(db, stale.id)
    assert payment is stale
    assert payment.status == "success"
    assert confirm_payment(db, payment) is False
    assert writes == []


def test_webhook_for_unknown_reference_is_acknowledged(client, writes):
    res = post_webhook(client, charge_success("GHM-UNKNOWN-000000"))
    assert res.status_code == 200
    assert writes == []


def test_other_events_are_acknowledged_and_ignored(client, db, order, initialized):
    res = post_webhook(client, {"event": "charge.failed", "data": {"reference": initialized["reference"]}})
    assert res.status_code == 200
    stored_order, payment = _reload(db, order["id"])
    assert payment.status == "processing"
    assert stored_order.status == "pending"


def test_client_verify_confirms_in_sandbox(client, db, buyer, order, initialized):
    res = client.get(f"/api/payments/paystack/verify/{initialized['reference']}", headers=auth(buyer))
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "success"
    assert res.json()["data"]["order_status"] == "confirmed"


def test_failed_verification_keeps_order_pending_for_retry(client, db, buyer, order, initialized):
    app.dependency_overrides[get_paystack] = lambda: FailingPaystack(settings.PAYSTACK_SECRET_KEY, sandbox=True)
    res = client.get(f"/api/payments/paystack/verify/{initialized['reference']}", headers=auth(buyer))
    assert res.json()["data"]["status"] == "failed"

    stored_order, payment = _reload(db, order["id"])
    assert payment.failure_reason == "Declined by issuer"
    assert stored_order.status == "pending"

    # the failed payment is reused by the retry
    app.dependency_overrides.clear()
    retry = client.post(
        "/api/payments/paystack/initialize",
        json={"order_id": order["id"], "email": buyer.email},
        headers=auth(buyer),
    )
    assert retry.status_code == 200
    assert retry.json()["data"]["payment_id"] == payment.id


def test_cancel_processing_payment_reopens_order(client, db, buyer, order, initialized):
    res = client.post(f"/api/payments/{initialized['payment_id']}/cancel", headers=auth(buyer))
    assert res.status_code == 200
    assert res.json()["data"]["payment"]["status"] == "cancelled"

    stored_order, active = _reload(db, order["id"])
    assert active is None
    assert stored_order.status == "pending"


def test_cancel_is_rejected_once_payment_succeeded(client, buyer, order, initialized):
    post_webhook(client, charge_success(initialized["reference"]))
    res = client.post(f"/api/payments/{initialized['payment_id']}/cancel", headers=auth(buyer))
    assert res.status_code == 400


def test_cancel_someone_elses_payment_is_not_found(client, db, order, initialized):
    stranger = make_user(db, "stranger@example.com")
    res = client.post(f"/api/payments/{initialized['payment_id']}/cancel", headers=auth(stranger))
    assert res.status_code == 404


def test_new_payment_row_only_after_cancel(client, db, buyer, order, initialized):
    client.post(f"/api/payments/{initialized['payment_id']}/cancel", headers=auth(buyer))
    res = client.post(
        "/api/payments/paystack/initialize",
        json={"order_id": order["id"], "email": buyer.email},
        headers=auth(buyer),
    )
    assert res.status_code == 200
    assert res.json()["data"]["payment_id"] != initialized["payment_id"]

    db.expire_all()
    statuses = [p.status for p in db.query(Payment).filter_by(order_id=order["id"]).order_by(Payment.id)]
    assert statuses == ["cancelled", "processing"]


def test_momo_flow(client, db, buyer, order):
    res = client.post(
        "/api/payments/momo/initialize",
        json={"order_id": order["id"], "phone_number": "024 412 3456"},
        headers=auth(buyer),
    )
    assert res.status_code == 200
    reference = res.json()["data"]["reference"]

    _, payment = _reload(db, order["id"])
    assert payment.method == "momo_mtn"
    assert payment.gateway_provider == "mtn_momo"
    assert payment.momo_phone_number == "0244123456"

    verify = client.get(f"/api/payments/momo/verify/{reference}", headers=auth(buyer))
    assert verify.json()["data"]["status"] == "success"
    assert _reload(db, order["id"])[0].status == "confirmed"


def test_momo_sandbox_forgets_settled_requests():
    clock = FakeClock()
    gateway = MomoGateway("https://sandbox.momodeveloper.mtn.com", sandbox=True, sandbox_delay=5, clock=clock)
    reference = gateway.request_to_pay(16000, "GHS", "GH-20260101-AAAA", "233244123456", "Order")

    assert gateway.get_status(reference)["status"] == "PENDING"
    clock.advance(5)
    assert gateway.get_status(reference)["status"] == "SUCCESSFUL"
    assert gateway._pending == {}
    with pytest.raises(GatewayError):
        gateway.get_status(reference)


def test_momo_rejects_non_mtn_numbers(client, buyer, order):
    res = client.post(
        "/api/payments/momo/initialize",
        json={"order_id": order["id"], "phone_number": "0201234567"},
        headers=auth(buyer),
    )
    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "body.phone_number"


def test_order_payment_and_static_metadata(client, buyer, order):
    res = client.get(f"/api/payments/order/{order['id']}", headers=auth(buyer))
    assert res.json()["data"]["payment"]["status"] == "pending"

    assert client.get("/api/payments/methods").json()["data"]["currency"] == "GHS"
    assert client.get("/api/payments/paystack/config").json()["data"]["channels"] == ["card", "mobile_money"]
