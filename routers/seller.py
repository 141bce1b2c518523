from typing import Literal, Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from cache import PRODUCTS, SEARCH, ResponseCache, get_cache, invalidate_catalog
from database import get_db
from errors import ApiError, ok, paginate
from helpers import page_params
from models import Order, OrderItem, OrderStatus, Product, User, UserRole
from routers.orders import transition_order
from routers.products import fetch_page, product_query
from schemas import OrderItemOut, OrderOut, OrderStatusUpdate, OrderSummary
from security import get_current_seller

router = APIRouter(prefix="/seller", tags=["seller"])


@router.get("/products")
def my_products(
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    status: Optional[Literal["active", "inactive", "out_of_stock"]] = None,
    current: User = Depends(get_current_seller),
    db: Session = Depends(get_db),
):
    stmt = product_query(db, search=search, seller_id=current.id, active_only=False)
    if status == "active":
        stmt = stmt.where(Product.is_active.is_(True))
    elif status == "inactive":
        stmt = stmt.where(Product.is_active.is_(False))
    elif status == "out_of_stock":
        stmt = stmt.where(Product.track_inventory.is_(True), Product.stock_quantity <= 0)
    products, pagination = fetch_page(db, stmt, [Product.created_at.desc(), Product.id.desc()], page, limit)
    return ok({"products": products, "pagination": pagination})


@router.get("/orders")
def my_orders(
    page: int = 1,
    limit: int = 20,
    status: Optional[OrderStatus] = None,
    current: User = Depends(get_current_seller),
    db: Session = Depends(get_db),
):
    page, limit, offset = page_params(page, limit)
    stmt = select(Order).where(Order.items.any(OrderItem.seller_id == current.id))
    if status is not None:
        stmt = stmt.where(Order.status == status.value)
    total = db.scalar(select(func.count()).select_from(stmt.subquery()))
    orders = db.execute(
        stmt.options(selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()

    results = []
    for order in orders:
        mine = [item for item in order.items if item.seller_id == current.id]
        results.append(
            dict(
                OrderSummary.model_validate(order).model_dump(),
                items=[OrderItemOut.model_validate(item) for item in mine],
                seller_total_pesewas=sum(item.total_price_pesewas for item in mine),
            )
        )
    return ok({"orders": results, "pagination": paginate(page, limit, total)})


@router.patch("/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    current: User = Depends(get_current_seller),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    stmt = select(Order).where(Order.id == order_id)
    if current.role != UserRole.ADMIN:
        stmt = stmt.where(Order.items.any(OrderItem.seller_id == current.id))
    order = db.execute(stmt.with_for_update()).scalar_one_or_none()
    if not order:
        raise ApiError(404, "Order not found.")

    transition_order(db, order, body.status, body.tracking_number, body.notes)
    if body.status == OrderStatus.CANCELLED:
        invalidate_catalog(cache, PRODUCTS, SEARCH)
    return ok({"order": OrderOut.model_validate(order)}, f"Order status updated to {order.status}")
