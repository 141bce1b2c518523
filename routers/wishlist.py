from fastapi import APIRouter, Depends, Response
from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload

from database import get_db
from errors import ApiError, ok
from models import CartItem, Product, User, WishlistItem
from schemas import WishlistAdd, WishlistItemOut
from security import get_current_user

router = APIRouter(prefix="/wishlist", tags=["wishlist"])


def _entries(db: Session, user_id: int):
    stmt = (
        select(WishlistItem)
        .where(WishlistItem.user_id == user_id)
        .options(selectinload(WishlistItem.product))
        .order_by(WishlistItem.created_at.desc(), WishlistItem.id.desc())
    )
    return db.execute(stmt).scalars().all()


def _entry(db: Session, user_id: int, product_id: int) -> WishlistItem | None:
    return db.execute(
        select(WishlistItem).where(WishlistItem.user_id == user_id, WishlistItem.product_id == product_id)
    ).scalar_one_or_none()


@router.get("")
def get_wishlist(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    items = [WishlistItemOut.model_validate(e) for e in _entries(db, current.id)]
    return ok({"item_count": len(items), "items": items})


@router.post("/items", status_code=201)
def add_to_wishlist(
    body: WishlistAdd,
    response: Response,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    product = db.get(Product, body.product_id)
    if not product or not product.is_active:
        raise ApiError(404, "Product not found.")

    existing = _entry(db, current.id, product.id)
    if existing is not None:
        if body.note is not None:
            existing.note = body.note
            db.commit()
        response.status_code = 200
        return ok({"already_exists": True, "id": existing.id}, "Product already in wishlist")

    entry = WishlistItem(user_id=current.id, product_id=product.id, note=body.note)
    db.add(entry)
    db.commit()
    return ok({"already_exists": False, "id": entry.id}, f"{product.name} added to wishlist")


@router.get("/check/{product_id}")
def check_wishlist(product_id: int, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    entry = _entry(db, current.id, product_id)
    return ok({"in_wishlist": entry is not None, "item_id": entry.id if entry else None})


@router.delete("/items/{product_id}")
def remove_from_wishlist(product_id: int, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    entry = _entry(db, current.id, product_id)
    if entry is None:
        raise ApiError(404, "Product not found in wishlist.")
    db.delete(entry)
    db.commit()
    return ok(message="Product removed from wishlist")


@router.post("/move-to-cart")
def move_to_cart(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Adds every available wishlist product to the cart (quantity 1 when
    not already there) and empties the wishlist."""
    entries = _entries(db, current.id)
    if not entries:
        raise ApiError(400, "Wishlist is empty.")

    in_cart = set(db.execute(select(CartItem.product_id).where(CartItem.user_id == current.id)).scalars())
    moved, skipped = 0, []
    for entry in entries:
        product = entry.product
        if not product.is_active or not product.in_stock:
            skipped.append(product.name)
            continue
        if product.id not in in_cart:
            db.add(CartItem(user_id=current.id, product_id=product.id, quantity=1, price_at_add_pesewas=product.price_pesewas))
        moved += 1
    db.execute(delete(WishlistItem).where(WishlistItem.user_id == current.id))
    db.commit()
    return ok(
        {"moved_count": moved, "skipped_count": len(skipped), "skipped_items": skipped},
        f"Moved {moved} item(s) to cart",
    )


@router.delete("")
def clear_wishlist(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    db.execute(delete(WishlistItem).where(WishlistItem.user_id == current.id))
    db.commit()
    return ok(message="Wishlist cleared")
