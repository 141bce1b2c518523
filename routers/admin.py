from datetime import datetime, time, timedelta
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from cache import PRODUCTS, SEARCH, ResponseCache, get_cache, invalidate_catalog
from config import settings
from database import get_db
from errors import ApiError, ok, paginate
from helpers import page_params
from models import AccountStatus, Order, OrderStatus, Product, User, UserRole, utcnow
from routers.orders import transition_order
from schemas import OrderOut, OrderStatusUpdate, OrderSummary, ProductOut, StockUpdate, UserOut, UserStatusUpdate
from security import get_current_admin

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(get_current_admin)])

REVENUE_STATUSES = [
    OrderStatus.CONFIRMED.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
]


def _month_start(day: datetime) -> datetime:
    return datetime.combine(day.date().replace(day=1), time.min)


def _revenue(db: Session, start: datetime, end: datetime | None = None) -> int:
    stmt = select(func.coalesce(func.sum(Order.total_pesewas), 0)).where(
        Order.status.in_(REVENUE_STATUSES), Order.created_at >= start
    )
    if end is not None:
        stmt = stmt.where(Order.created_at < end)
    return db.scalar(stmt)


def _low_stock_filter(stmt):
    return stmt.where(
        Product.track_inventory.is_(True),
        Product.is_active.is_(True),
        Product.stock_quantity <= Product.low_stock_threshold,
    )


@router.get("/dashboard")
def dashboard(db: Session = Depends(get_db)):
    now = utcnow()
    start_of_today = datetime.combine(now.date(), time.min)
    start_of_month = _month_start(now)
    start_of_last_month = _month_start(start_of_month - timedelta(days=1))

    this_month = _revenue(db, start_of_month)
    last_month = _revenue(db, start_of_last_month, start_of_month)
    growth = round((this_month - last_month) / last_month * 100, 1) if last_month else 0

    def count(model, *criteria):
        return db.scalar(select(func.count(model.id)).where(*criteria))

    return ok(
        {
            "users": {
                "total": count(User),
                "new_today": count(User, User.created_at >= start_of_today),
            },
            "products": {
                "total": count(Product),
                "active": count(Product, Product.is_active.is_(True)),
                "low_stock": db.scalar(_low_stock_filter(select(func.count(Product.id)))),
            },
            "orders": {
                "total": count(Order),
                "today": count(Order, Order.created_at >= start_of_today),
                "pending": count(Order, Order.status == OrderStatus.PENDING.value),
            },
            "revenue": {
                "this_month_pesewas": this_month,
                "last_month_pesewas": last_month,
                "growth": growth,
                "currency": settings.CURRENCY,
            },
        }
    )


@router.get("/users")
def list_users(
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    status: Optional[AccountStatus] = None,
    role: Optional[UserRole] = None,
    db: Session = Depends(get_db),
):
    page, limit, offset = page_params(page, limit, max_limit=100)
    stmt = select(User)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(User.email.ilike(pattern), User.first_name.ilike(pattern), User.last_name.ilike(pattern), User.phone.ilike(pattern))
        )
    if status is not None:
        stmt = stmt.where(User.status == status.value)
    if role is not None:
        stmt = stmt.where(User.role == role.value)
    total = db.scalar(select(func.count()).select_from(stmt.subquery()))
    users = db.execute(stmt.order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(limit)).scalars().all()
    return ok({"users": [UserOut.model_validate(u) for u in users], "pagination": paginate(page, limit, total)})


@router.put("/users/{user_id}/status")
def update_user_status(user_id: int, body: UserStatusUpdate, db: Session = Depends(get_db), admin: User = Depends(get_current_admin)):
    user = db.get(User, user_id)
    if not user:
        raise ApiError(404, "User not found.")
    if user.id == admin.id:
        raise ApiError(400, "You cannot change your own account status.")
    user.status = body.status.value
    db.commit()
    return ok({"user": UserOut.model_validate(user)}, f"User {body.status.value} successfully")


@router.get("/orders")
def list_orders(
    page: int = 1,
    limit: int = 20,
    status: Optional[OrderStatus] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    page, limit, offset = page_params(page, limit, max_limit=100)
    stmt = select(Order)
    if status is not None:
        stmt = stmt.where(Order.status == status.value)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(Order.order_number.ilike(pattern), Order.customer_email.ilike(pattern), Order.shipping_full_name.ilike(pattern))
        )
    total = db.scalar(select(func.count()).select_from(stmt.subquery()))
    orders = db.execute(
        stmt.options(selectinload(Order.items), selectinload(Order.payments))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()

    results = []
    for order in orders:
        payment = order.active_payment
        results.append(
            dict(
                OrderSummary.model_validate(order).model_dump(),
                item_count=len(order.items),
                payment_status=payment.status if payment else None,
                payment_method=payment.method if payment else None,
            )
        )
    return ok({"orders": results, "pagination": paginate(page, limit, total)})


@router.put("/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    order = db.execute(select(Order).where(Order.id == order_id).with_for_update()).scalar_one_or_none()
    if not order:
        raise ApiError(404, "Order not found.")
    transition_order(db, order, body.status, body.tracking_number, body.notes)
    if body.status == OrderStatus.CANCELLED:
        invalidate_catalog(cache, PRODUCTS, SEARCH)
    return ok({"order": OrderOut.model_validate(order)}, f"Order status updated to {order.status}")


@router.get("/inventory/low-stock")
def low_stock(db: Session = Depends(get_db)):
    stmt = _low_stock_filter(select(Product)).order_by(Product.stock_quantity.asc(), Product.id).limit(50)
    products = db.execute(stmt).scalars().all()
    return ok({"products": [ProductOut.model_validate(p) for p in products]})


@router.put("/inventory/{product_id}")
def update_inventory(
    product_id: int,
    body: StockUpdate,
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    product = db.get(Product, product_id)
    if not product:
        raise ApiError(404, "Product not found.")
    previous = product.stock_quantity
    product.stock_quantity = body.stock_quantity
    if body.low_stock_threshold is not None:
        product.low_stock_threshold = body.low_stock_threshold
    db.commit()
    invalidate_catalog(cache, PRODUCTS, SEARCH)
    return ok(
        {
            "product": ProductOut.model_validate(product),
            "previous_quantity": previous,
            "change": product.stock_quantity - previous,
        },
        "Inventory updated",
    )
