"""
Payment state transitions.

Every function here changes a Payment and its Order together and commits
once, so either both rows move or neither does. Rows are read with
``FOR UPDATE`` so concurrent deliveries for the same payment queue up
behind each other on databases that support row locks.
"""
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import ApiError
from models import (
    CANCELLABLE_PAYMENT_STATUSES,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


def _locked(stmt):
    return stmt.with_for_update().execution_options(populate_existing=True)


def lock_payment(db: Session, payment_id: int) -> Payment:
    return db.execute(_locked(select(Payment).where(Payment.id == payment_id))).scalar_one()


def lock_payment_by_reference(db: Session, reference: str) -> Payment | None:
    return db.execute(_locked(select(Payment).where(Payment.gateway_reference == reference))).scalar_one_or_none()


def lock_order(db: Session, order_id: int) -> Order:
    return db.execute(_locked(select(Order).where(Order.id == order_id))).scalar_one()


def confirm_payment(db: Session, payment: Payment) -> bool:
    """Moves a pending or processing payment to success and its pending
    order to confirmed.

    Anything else is left alone and False is returned without a write:
    duplicate notifications for a succeeded payment, late notifications
    for a cancelled or failed one, and orders that were cancelled in the
    meantime.
    """
    if payment.status not in CANCELLABLE_PAYMENT_STATUSES:
        if payment.status != PaymentStatus.SUCCESS:
            logger.warning("Not confirming payment %s in status %s", payment.id, payment.status)
        return False
    order = lock_order(db, payment.order_id)
    if order.status == OrderStatus.CANCELLED:
        logger.warning("Not confirming payment %s: order %s is cancelled", payment.id, order.order_number)
        return False
    now = utcnow()
    payment.status = PaymentStatus.SUCCESS.value
    payment.confirmed_at = now
    payment.failure_reason = None
    if order.status == OrderStatus.PENDING:
        order.status = OrderStatus.CONFIRMED.value
        order.confirmed_at = now
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Payment %s confirmed; order %s confirmed", payment.id, order.order_number)
    return True


def fail_payment(db: Session, payment: Payment, reason: str | None = None) -> bool:
    if payment.status not in CANCELLABLE_PAYMENT_STATUSES:
        return False
    payment.status = PaymentStatus.FAILED.value
    payment.failed_at = utcnow()
    payment.failure_reason = (reason or "Payment failed")[:255]
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Payment %s failed: %s", payment.id, payment.failure_reason)
    return True


def cancel_payment(db: Session, payment: Payment, gateway=None):
    """Cancels a pending or processing payment and reopens its order.

    The provider cancel call is best effort: its failure is logged and the
    local cancellation still goes ahead.
    """
    payment = lock_payment(db, payment.id)
    if payment.status not in CANCELLABLE_PAYMENT_STATUSES:
        raise ApiError(400, f"Cannot cancel a payment that is {payment.status}.")

    if gateway is not None and payment.gateway_reference:
        try:
            gateway.cancel(payment.gateway_reference)
        except Exception:
            logger.warning("Provider cancel failed for %s", payment.gateway_reference, exc_info=True)

    order = lock_order(db, payment.order_id)
    payment.status = PaymentStatus.CANCELLED.value
    if order.status != OrderStatus.CANCELLED:
        order.status = OrderStatus.PENDING.value
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Payment %s cancelled", payment.id)


def handle_paystack_event(db: Session, event) -> bool:
    """Applies a verified Paystack event. Returns True when something changed.

    Only ``charge.success`` for a pending or processing payment moves
    state; other events, unknown references and late deliveries are
    acknowledged without touching the database.
    """
    if event.event != "charge.success" or not event.data.reference:
        logger.info("Ignoring Paystack event %s", event.event)
        return False
    payment = lock_payment_by_reference(db, event.data.reference)
    if payment is None:
        logger.warning("Webhook for unknown reference %s", event.data.reference)
        return False
    return confirm_payment(db, payment)
