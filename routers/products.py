from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from cache import PRODUCTS, SEARCH, ResponseCache, get_cache, invalidate_catalog, request_key
from config import settings
from database import get_db
from errors import ApiError, ok, paginate
from helpers import page_params, slugify, unique_suffix
from models import Category, OrderItem, Product, User, UserRole
from schemas import ProductIn, ProductOut, ProductUpdate, SortField
from security import get_current_seller

router = APIRouter(prefix="/products", tags=["products"])


def category_ids_for(db: Session, id_or_slug: str):
    """The category plus its direct children, or None when it doesn't exist."""
    stmt = select(Category)
    if id_or_slug.isdigit():
        stmt = stmt.where(Category.id == int(id_or_slug))
    else:
        stmt = stmt.where(Category.slug == id_or_slug)
    category = db.execute(stmt).scalar_one_or_none()
    if category is None:
        return None
    return [category.id] + [child.id for child in category.children]


def product_query(
    db: Session,
    *,
    category: str | None = None,
    search: str | None = None,
    in_stock: bool | None = None,
    min_price: int | None = None,
    max_price: int | None = None,
    featured: bool | None = None,
    seller_id: int | None = None,
    active_only: bool = True,
):
    stmt = select(Product)
    if active_only:
        stmt = stmt.where(Product.is_active.is_(True))
    if seller_id is not None:
        stmt = stmt.where(Product.seller_id == seller_id)
    if category:
        ids = category_ids_for(db, category)
        # unknown category matches nothing
        stmt = stmt.where(Product.category_id.in_(ids or [-1]))
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
    if in_stock:
        stmt = stmt.where(
            or_(Product.stock_quantity > 0, Product.track_inventory.is_(False), Product.allow_backorder.is_(True))
        )
    if min_price is not None:
        stmt = stmt.where(Product.price_pesewas >= min_price)
    if max_price is not None:
        stmt = stmt.where(Product.price_pesewas <= max_price)
    if featured is not None:
        stmt = stmt.where(Product.is_featured.is_(featured))
    return stmt


def fetch_page(db: Session, stmt, order_by, page: int, limit: int):
    page, limit, offset = page_params(page, limit)
    total = db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery()))
    rows = (
        db.execute(stmt.options(selectinload(Product.category)).order_by(*order_by).offset(offset).limit(limit))
        .scalars()
        .all()
    )
    return [ProductOut.model_validate(p) for p in rows], paginate(page, limit, total)


def find_product(db: Session, id_or_slug: str) -> Product | None:
    if id_or_slug.isdigit():
        return db.get(Product, int(id_or_slug))
    return db.execute(select(Product).where(Product.slug == id_or_slug)).scalar_one_or_none()


def _owned_product(db: Session, product_id: int, current: User) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise ApiError(404, "Product not found.")
    if current.role != UserRole.ADMIN and product.seller_id != current.id:
        raise ApiError(403, "You can only modify your own products.")
    return product


def _check_category(db: Session, category_id: int):
    if not db.get(Category, category_id):
        raise ApiError(404, "Category not found.")


def _check_sku(db: Session, sku: str | None, exclude_id: int | None = None):
    if not sku:
        return
    stmt = select(Product.id).where(Product.sku == sku)
    if exclude_id is not None:
        stmt = stmt.where(Product.id != exclude_id)
    if db.execute(stmt).first():
        raise ApiError(409, "A product with this SKU already exists.")


def _unique_slug(db: Session, name: str) -> str:
    slug = slugify(name)
    if db.execute(select(Product.id).where(Product.slug == slug)).first():
        slug = f"{slug}-{unique_suffix()}"
    return slug


@router.get("")
def list_products(
    request: Request,
    page: int = 1,
    limit: int = 12,
    category: Optional[str] = None,
    search: Optional[str] = None,
    in_stock: Optional[bool] = None,
    min_price: Optional[int] = Query(None, ge=0),
    max_price: Optional[int] = Query(None, ge=0),
    sort_by: SortField = "created_at",
    order: Literal["asc", "desc"] = "desc",
    featured: Optional[bool] = None,
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    def produce():
        stmt = product_query(
            db,
            category=category,
            search=search,
            in_stock=in_stock,
            min_price=min_price,
            max_price=max_price,
            featured=featured,
        )
        column = getattr(Product, sort_by)
        primary = column.asc() if order == "asc" else column.desc()
        products, pagination = fetch_page(db, stmt, [primary, Product.id.desc()], page, limit)
        return {"products": products, "pagination": pagination}

    data = cache.remember(request_key(PRODUCTS, request), settings.PRODUCTS_CACHE_TTL, produce)
    return ok(data)


@router.get("/{id_or_slug}")
def get_product(
    id_or_slug: str,
    request: Request,
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    def produce():
        product = find_product(db, id_or_slug)
        if not product or not product.is_active:
            raise ApiError(404, "Product not found.")
        return {"product": ProductOut.model_validate(product)}

    data = cache.remember(request_key(PRODUCTS, request), settings.PRODUCTS_CACHE_TTL, produce)
    return ok(data)


@router.post("", status_code=201)
def create_product(
    body: ProductIn,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_seller),
    cache: ResponseCache = Depends(get_cache),
):
    _check_category(db, body.category_id)
    _check_sku(db, body.sku)

    product = Product(seller_id=current.id, slug=_unique_slug(db, body.name), **body.model_dump())
    db.add(product)
    db.commit()
    invalidate_catalog(cache, PRODUCTS, SEARCH)
    return ok({"product": ProductOut.model_validate(product)}, "Product created successfully!")


@router.put("/{product_id}")
def update_product(
    product_id: int,
    body: ProductUpdate,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_seller),
    cache: ResponseCache = Depends(get_cache),
):
    product = _owned_product(db, product_id, current)
    data = body.model_dump(exclude_unset=True)
    if data.get("category_id") is not None:
        _check_category(db, data["category_id"])
    if "sku" in data:
        _check_sku(db, data["sku"], exclude_id=product.id)
    if data.get("name") and data["name"] != product.name:
        product.slug = _unique_slug(db, data["name"])
    for field, value in data.items():
        setattr(product, field, value)
    db.commit()
    invalidate_catalog(cache, PRODUCTS, SEARCH)
    return ok({"product": ProductOut.model_validate(product)}, "Product updated successfully!")


@router.delete("/{product_id}")
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    current: User = Depends(get_current_seller),
    cache: ResponseCache = Depends(get_cache),
):
    product = _owned_product(db, product_id, current)
    ordered = db.execute(select(OrderItem.id).where(OrderItem.product_id == product.id).limit(1)).first()
    if ordered:
        # order history keeps pointing at it
        product.is_active = False
    else:
        db.delete(product)
    db.commit()
    invalidate_catalog(cache, PRODUCTS, SEARCH)
    return ok(message="Product deleted successfully!")
