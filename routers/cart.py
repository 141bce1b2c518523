"""
Per-user shopping cart.

Lines are keyed by product, so adding a product twice raises its
quantity. Checkout (``POST /orders`` without ``items``) reads the cart
and empties it in the same transaction that creates the order.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload

from database import get_db
from errors import ApiError, ok
from models import CartItem, Product, User
from schemas import CartItemIn, CartItemOut, CartQuantity
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])


def load_cart(db: Session, user_id: int):
    stmt = (
        select(CartItem)
        .where(CartItem.user_id == user_id)
        .options(selectinload(CartItem.product))
        .order_by(CartItem.created_at.desc(), CartItem.id.desc())
    )
    return db.execute(stmt).scalars().all()


def clear_cart(db: Session, user_id: int):
    db.execute(delete(CartItem).where(CartItem.user_id == user_id))


def _check_stock(product: Product, quantity: int):
    if product.track_inventory and not product.allow_backorder and product.stock_quantity < quantity:
        raise ApiError(400, f"Only {product.stock_quantity} of {product.name} left in stock.")


def _cart_line(db: Session, user: User, product_id: int) -> CartItem:
    line = db.execute(
        select(CartItem).where(CartItem.user_id == user.id, CartItem.product_id == product_id)
    ).scalar_one_or_none()
    if line is None:
        raise ApiError(404, "Item not in cart.")
    return line


def cart_view(db: Session, user: User):
    items = load_cart(db, user.id)
    available = [i for i in items if i.product.is_active]
    return {
        "items": [CartItemOut.model_validate(i) for i in items],
        "item_count": sum(i.quantity for i in available),
        "subtotal_pesewas": sum(i.product.price_pesewas * i.quantity for i in available),
    }


@router.get("")
def get_cart(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok({"cart": cart_view(db, current)})


@router.post("/items", status_code=201)
def add_to_cart(body: CartItemIn, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    product = db.get(Product, body.product_id)
    if not product or not product.is_active:
        raise ApiError(404, "Product not found.")

    line = db.execute(
        select(CartItem).where(CartItem.user_id == current.id, CartItem.product_id == product.id)
    ).scalar_one_or_none()
    quantity = body.quantity + (line.quantity if line else 0)
    _check_stock(product, quantity)
    if line is None:
        db.add(CartItem(user_id=current.id, product_id=product.id, quantity=quantity, price_at_add_pesewas=product.price_pesewas))
    else:
        line.quantity = quantity
    db.commit()
    return ok({"cart": cart_view(db, current)}, "Item added to cart!")


@router.put("/items/{product_id}")
def update_cart_item(
    product_id: int,
    body: CartQuantity,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    line = _cart_line(db, current, product_id)
    _check_stock(line.product, body.quantity)
    line.quantity = body.quantity
    db.commit()
    return ok({"cart": cart_view(db, current)}, "Cart updated!")


@router.delete("/items/{product_id}")
def remove_cart_item(product_id: int, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    db.delete(_cart_line(db, current, product_id))
    db.commit()
    return ok({"cart": cart_view(db, current)}, "Item removed from cart!")


@router.delete("")
def empty_cart(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    clear_cart(db, current.id)
    db.commit()
    logger.info("Cart cleared for user %s", current.id)
    return ok(message="Cart cleared!")
