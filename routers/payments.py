import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from config import settings
from database import get_db
from errors import ApiError, GatewayError, ok
from gateways import MomoGateway, PaystackGateway, get_momo, get_paystack
from limiter import limiter
from models import (
    GatewayProvider,
    Order,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    User,
    utcnow,
)
from reconciliation import cancel_payment, confirm_payment, fail_payment, handle_paystack_event, lock_payment
from schemas import MomoInitRequest, PaymentOut, PaystackInitRequest, WebhookEvent
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

PAYSTACK_METHODS = {
    PaymentMethod.CARD.value,
    PaymentMethod.BANK_TRANSFER.value,
    PaymentMethod.MOMO_VODAFONE.value,
    PaymentMethod.MOMO_AIRTELTIGO.value,
}
PROVIDER_UNAVAILABLE = "Payment provider unavailable"


def payable_order(db: Session, order_id: int, user: User) -> Order:
    order = db.get(Order, order_id)
    if not order or order.user_id != user.id or order.status != OrderStatus.PENDING:
        raise ApiError(404, "Order not found or already paid")
    active = order.active_payment
    if active is not None and active.status == PaymentStatus.PROCESSING:
        raise ApiError(400, "Payment already in progress")
    if active is not None and active.status == PaymentStatus.SUCCESS:
        raise ApiError(400, "Order has already been paid")
    return order


def start_payment(db: Session, order: Order, method: PaymentMethod, provider: GatewayProvider, reference: str, momo_phone: str | None = None) -> Payment:
    """Moves the order's active payment to processing, creating one only
    when every earlier payment was cancelled."""
    payment = order.active_payment
    if payment is None:
        payment = Payment(order_id=order.id, amount_pesewas=order.total_pesewas)
        db.add(payment)
    payment.method = method.value
    payment.status = PaymentStatus.PROCESSING.value
    payment.amount_pesewas = order.total_pesewas
    payment.gateway_provider = provider.value
    payment.gateway_reference = reference
    payment.failure_reason = None
    payment.initiated_at = utcnow()
    if momo_phone:
        payment.momo_phone_number = momo_phone
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Payment %s processing via %s (%s)", payment.id, provider.value, reference)
    return payment


def owned_payment(db: Session, user: User, **criteria) -> Payment:
    stmt = select(Payment).join(Order).where(Order.user_id == user.id)
    for field, value in criteria.items():
        stmt = stmt.where(getattr(Payment, field) == value)
    payment = db.execute(stmt).scalar_one_or_none()
    if payment is None:
        raise ApiError(404, "Payment not found")
    return payment


def _verify_result(payment: Payment):
    return {
        "status": payment.status,
        "order_number": payment.order.order_number,
        "order_status": payment.order.status,
        "payment": PaymentOut.model_validate(payment),
    }


# -----------------------------
# Paystack
# -----------------------------
@router.post("/paystack/initialize")
@limiter.limit(settings.PAYMENT_RATE_LIMIT)
def paystack_initialize(
    request: Request,
    body: PaystackInitRequest,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PaystackGateway = Depends(get_paystack),
):
    order = payable_order(db, body.order_id, current)
    active = order.active_payment
    method = PaymentMethod(active.method) if active and active.method in PAYSTACK_METHODS else PaymentMethod.CARD

    reference = gateway.generate_reference()
    try:
        result = gateway.initialize_transaction(
            email=body.email,
            amount=order.total_pesewas,
            reference=reference,
            currency=settings.CURRENCY,
            callback_url=body.callback_url,
            metadata={"order_id": order.id, "order_number": order.order_number},
        )
    except GatewayError:
        logger.exception("Paystack initialize failed for order %s", order.order_number)
        raise ApiError(502, PROVIDER_UNAVAILABLE)

    payment = start_payment(db, order, method, GatewayProvider.PAYSTACK, reference)
    return ok(
        {
            "payment_id": payment.id,
            "reference": reference,
            "authorization_url": result.get("authorization_url"),
            "access_code": result.get("access_code"),
            "amount_pesewas": order.total_pesewas,
            "provider": GatewayProvider.PAYSTACK.value,
        },
        "Redirect to complete payment",
    )


@router.get("/paystack/verify/{reference}")
def paystack_verify(
    reference: str,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PaystackGateway = Depends(get_paystack),
):
    payment = owned_payment(db, current, gateway_reference=reference)
    if payment.status in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
        try:
            result = gateway.verify_transaction(reference)
        except GatewayError:
            logger.exception("Paystack verify failed for %s", reference)
            raise ApiError(502, PROVIDER_UNAVAILABLE)
        payment = lock_payment(db, payment.id)
        status = result.get("status")
        if status == "success":
            confirm_payment(db, payment)
        elif status in ("failed", "abandoned", "reversed"):
            fail_payment(db, payment, result.get("gateway_response") or f"Payment {status}")
    return ok(_verify_result(payment))


async def receive_paystack_webhook(request: Request, db: Session, gateway: PaystackGateway):
    payload = await request.body()
    if not gateway.verify_signature(payload, request.headers.get("x-paystack-signature")):
        logger.warning("Rejected Paystack webhook with invalid signature from %s", request.client.host if request.client else "-")
        raise ApiError(401, "Invalid signature")
    try:
        event = WebhookEvent.model_validate_json(payload)
    except ValidationError:
        raise ApiError(400, "Invalid webhook payload")
    await run_in_threadpool(handle_paystack_event, db, event)
    return ok({"received": True})


@router.post("/paystack/webhook")
@limiter.exempt
async def paystack_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaystackGateway = Depends(get_paystack),
):
    return await receive_paystack_webhook(request, db, gateway)


@router.get("/paystack/config")
def paystack_config(gateway: PaystackGateway = Depends(get_paystack)):
    return ok({"public_key": gateway.public_key, "currency": settings.CURRENCY, "channels": ["card", "mobile_money"]})


# -----------------------------
# MTN MoMo
# -----------------------------
@router.post("/momo/initialize")
@limiter.limit(settings.PAYMENT_RATE_LIMIT)
def momo_initialize(
    request: Request,
    body: MomoInitRequest,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: MomoGateway = Depends(get_momo),
):
    order = payable_order(db, body.order_id, current)
    try:
        reference = gateway.request_to_pay(
            amount=order.total_pesewas,
            currency=settings.CURRENCY,
            external_id=order.order_number,
            phone=gateway.format_phone_number(body.phone_number),
            message=f"Payment for order {order.order_number}",
        )
    except GatewayError:
        logger.exception("MoMo request to pay failed for order %s", order.order_number)
        raise ApiError(502, PROVIDER_UNAVAILABLE)

    payment = start_payment(db, order, PaymentMethod.MOMO_MTN, GatewayProvider.MTN_MOMO, reference, body.phone_number)
    return ok(
        {
            "payment_id": payment.id,
            "reference": reference,
            "amount_pesewas": order.total_pesewas,
            "provider": GatewayProvider.MTN_MOMO.value,
        },
        "Approve the payment on your phone",
    )


@router.get("/momo/verify/{reference}")
def momo_verify(
    reference: str,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: MomoGateway = Depends(get_momo),
):
    payment = owned_payment(db, current, gateway_reference=reference)
    if payment.status in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
        try:
            result = gateway.get_status(reference)
        except GatewayError:
            logger.exception("MoMo status check failed for %s", reference)
            raise ApiError(502, PROVIDER_UNAVAILABLE)
        payment = lock_payment(db, payment.id)
        if result["status"] == "SUCCESSFUL":
            confirm_payment(db, payment)
        elif result["status"] == "FAILED":
            fail_payment(db, payment, result.get("reason") or "Payment declined")
    return ok(_verify_result(payment))


# -----------------------------
# Shared
# -----------------------------
@router.get("/order/{order_id}")
def order_payment(order_id: int, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = db.get(Order, order_id)
    if not order or order.user_id != current.id or order.active_payment is None:
        raise ApiError(404, "Payment not found")
    return ok(
        {
            "payment": PaymentOut.model_validate(order.active_payment),
            "order_number": order.order_number,
            "order_status": order.status,
        }
    )


@router.post("/{payment_id}/cancel")
def cancel(
    payment_id: int,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    paystack: PaystackGateway = Depends(get_paystack),
    momo: MomoGateway = Depends(get_momo),
):
    payment = owned_payment(db, current, id=payment_id)
    gateway = {GatewayProvider.PAYSTACK.value: paystack, GatewayProvider.MTN_MOMO.value: momo}.get(payment.gateway_provider)
    cancel_payment(db, payment, gateway)
    return ok({"payment": PaymentOut.model_validate(payment)}, "Payment cancelled")


@router.get("/methods")
def payment_methods():
    return ok(
        {
            "methods": [
                {"id": "paystack", "name": "Card / Mobile Money", "description": "Visa, Mastercard, or Mobile Money"},
                {"id": PaymentMethod.MOMO_MTN.value, "name": "MTN Mobile Money", "description": "Direct MTN MoMo payment"},
                {"id": PaymentMethod.CASH_ON_DELIVERY.value, "name": "Cash on Delivery", "description": "Pay when your order arrives"},
            ],
            "default_method": "paystack",
            "currency": settings.CURRENCY,
        }
    )
