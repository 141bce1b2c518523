"""
Buyer-facing order routes.

Checkout runs in a single transaction: product rows are locked, stock is
decremented, and the order, its items and its pending payment are
inserted together. A request without ``items`` checks out the caller's
cart, which is emptied in the same transaction.
"""
import logging
from collections import OrderedDict
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from cache import PRODUCTS, SEARCH, ResponseCache, get_cache, invalidate_catalog
from config import settings
from database import get_db
from errors import ApiError, ok, paginate
from helpers import generate_order_number, page_params
from mailer import Mailer, get_mailer
from models import (
    ORDER_TRANSITIONS,
    Address,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Product,
    User,
    UserRole,
    utcnow,
)
from routers.cart import clear_cart, load_cart
from schemas import OrderCreate, OrderOut, OrderSummary
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

BUYER_CANCELLABLE = (OrderStatus.PENDING, OrderStatus.CONFIRMED)
SHIPPING_FIELDS = ("full_name", "phone", "region", "city", "area", "street_address", "gps_address")


def order_with_details():
    return select(Order).options(selectinload(Order.items), selectinload(Order.payments))


def shipping_snapshot(db: Session, user: User, body: OrderCreate) -> dict:
    if body.address_id is not None:
        address = db.get(Address, body.address_id)
        if not address or address.user_id != user.id:
            raise ApiError(404, "Address not found.")
        return {f"shipping_{field}": getattr(address, field) for field in SHIPPING_FIELDS}

    snapshot = {f"shipping_{field}": getattr(body, f"shipping_{field}") for field in SHIPPING_FIELDS}
    missing = [
        key for key in ("shipping_full_name", "shipping_phone", "shipping_region", "shipping_city", "shipping_street_address")
        if not snapshot[key]
    ]
    if missing:
        raise ApiError(400, f"Shipping address is incomplete: {', '.join(missing)}.")
    return snapshot


def _new_order_number(db: Session) -> str:
    while True:
        number = generate_order_number()
        if not db.execute(select(Order.id).where(Order.order_number == number)).first():
            return number


def restock(order: Order):
    for item in order.items:
        product = item.product
        if product is not None and product.track_inventory:
            product.stock_quantity += item.quantity


@router.post("", status_code=201)
def create_order(
    body: OrderCreate,
    background: BackgroundTasks,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    cache: ResponseCache = Depends(get_cache),
):
    shipping = shipping_snapshot(db, current, body)

    from_cart = body.items is None
    quantities = OrderedDict()
    if from_cart:
        for line in load_cart(db, current.id):
            quantities[line.product_id] = line.quantity
        if not quantities:
            raise ApiError(400, "Your cart is empty. Add items before checkout.")
    else:
        for item in body.items:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

    products = {
        p.id: p
        for p in db.execute(
            select(Product).where(Product.id.in_(list(quantities))).with_for_update()
        ).scalars()
    }

    items = []
    sellers = set()
    subtotal = 0
    for product_id, quantity in quantities.items():
        product = products.get(product_id)
        if product is None or not product.is_active:
            db.rollback()
            raise ApiError(400, f"Product {product_id} is not available.")
        if product.track_inventory and not product.allow_backorder and product.stock_quantity < quantity:
            db.rollback()
            raise ApiError(400, f"Insufficient stock for {product.name}. Only {product.stock_quantity} left.")
        if product.track_inventory:
            product.stock_quantity = max(product.stock_quantity - quantity, 0)

        line_total = product.price_pesewas * quantity
        subtotal += line_total
        sellers.add(product.seller_id)
        items.append(
            OrderItem(
                product_id=product.id,
                seller_id=product.seller_id,
                product_name=product.name,
                product_image=product.images[0] if product.images else None,
                quantity=quantity,
                unit_price_pesewas=product.price_pesewas,
                total_price_pesewas=line_total,
            )
        )

    shipping_fee = settings.SHIPPING_FEE_PESEWAS * len(sellers)
    cash_on_delivery = body.payment_method == PaymentMethod.CASH_ON_DELIVERY
    now = utcnow()
    order = Order(
        order_number=_new_order_number(db),
        user_id=current.id,
        status=(OrderStatus.CONFIRMED if cash_on_delivery else OrderStatus.PENDING).value,
        subtotal_pesewas=subtotal,
        shipping_fee_pesewas=shipping_fee,
        total_pesewas=subtotal + shipping_fee,
        customer_email=body.customer_email.lower(),
        customer_phone=body.customer_phone,
        notes=body.delivery_notes,
        confirmed_at=now if cash_on_delivery else None,
        items=items,
        **shipping,
    )
    order.payments.append(
        Payment(
            method=body.payment_method.value,
            status=PaymentStatus.PENDING.value,
            amount_pesewas=order.total_pesewas,
            momo_phone_number=body.momo_phone_number,
        )
    )
    db.add(order)
    if from_cart:
        clear_cart(db, current.id)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Order %s created for user %s (%s)", order.order_number, current.id, body.payment_method.value)
    invalidate_catalog(cache, PRODUCTS, SEARCH)
    background.add_task(mailer.send_order_confirmation, order.customer_email, order.order_number, order.total_pesewas)
    return ok({"order": OrderOut.model_validate(order)}, "Order placed successfully!")


@router.get("")
def list_orders(
    page: int = 1,
    limit: int = 10,
    status: Optional[OrderStatus] = None,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    page, limit, offset = page_params(page, limit)
    stmt = select(Order).where(Order.user_id == current.id)
    if status is not None:
        stmt = stmt.where(Order.status == status.value)
    total = db.scalar(select(func.count()).select_from(stmt.subquery()))
    orders = db.execute(stmt.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit)).scalars().all()
    return ok({"orders": [OrderSummary.model_validate(o) for o in orders], "pagination": paginate(page, limit, total)})


@router.get("/{id_or_number}")
def get_order(id_or_number: str, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    stmt = order_with_details()
    if id_or_number.isdigit():
        stmt = stmt.where(Order.id == int(id_or_number))
    else:
        stmt = stmt.where(Order.order_number == id_or_number)
    order = db.execute(stmt).scalar_one_or_none()
    if not order or (order.user_id != current.id and current.role != UserRole.ADMIN):
        raise ApiError(404, "Order not found.")
    return ok({"order": OrderOut.model_validate(order)})


@router.post("/{order_id}/cancel")
def cancel_order(
    order_id: int,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    order = db.execute(order_with_details().where(Order.id == order_id).with_for_update()).scalar_one_or_none()
    if not order or order.user_id != current.id:
        raise ApiError(404, "Order not found.")
    if order.status not in BUYER_CANCELLABLE:
        raise ApiError(400, f"Cannot cancel an order that is {order.status}.")

    restock(order)
    payment = order.active_payment
    if payment is not None and payment.status != PaymentStatus.SUCCESS:
        payment.status = PaymentStatus.CANCELLED.value
    order.status = OrderStatus.CANCELLED.value
    order.cancelled_at = utcnow()
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Order %s cancelled by buyer", order.order_number)
    invalidate_catalog(cache, PRODUCTS, SEARCH)
    return ok({"order": OrderOut.model_validate(order)}, "Order cancelled successfully")


STATUS_TIMESTAMPS = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def transition_order(db: Session, order: Order, new_status: OrderStatus, tracking_number=None, notes=None):
    """Staff-driven status change, restricted to ORDER_TRANSITIONS."""
    current_status = OrderStatus(order.status)
    if new_status not in ORDER_TRANSITIONS[current_status]:
        raise ApiError(400, f"Cannot change order status from {current_status.value} to {new_status.value}.")

    if new_status == OrderStatus.CANCELLED:
        restock(order)
        payment = order.active_payment
        if payment is not None and payment.status != PaymentStatus.SUCCESS:
            payment.status = PaymentStatus.CANCELLED.value
    order.status = new_status.value
    if new_status in STATUS_TIMESTAMPS:
        setattr(order, STATUS_TIMESTAMPS[new_status], utcnow())
    if tracking_number:
        order.tracking_number = tracking_number
    if notes:
        order.notes = notes
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Order %s moved %s -> %s", order.order_number, current_status.value, new_status.value)
