from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cache import CATEGORIES, PRODUCTS, ResponseCache, get_cache, invalidate_catalog, request_key
from config import settings
from database import get_db
from errors import ApiError, ok
from helpers import slugify, unique_suffix
from models import Category, Product, User
from schemas import CategoryIn, CategoryOut, CategoryUpdate
from security import get_current_admin

router = APIRouter(prefix="/categories", tags=["categories"])


def build_tree(categories):
    """Nests a flat, sort-ordered category list under its parents."""
    nodes = {c.id: dict(CategoryOut.model_validate(c).model_dump(), children=[]) for c in categories}
    roots = []
    for category in categories:
        node = nodes[category.id]
        parent = nodes.get(category.parent_id)
        if parent is not None:
            parent["children"].append(node)
        else:
            roots.append(node)
    return roots


def find_category(db: Session, id_or_slug: str) -> Category | None:
    if id_or_slug.isdigit():
        return db.get(Category, int(id_or_slug))
    return db.execute(select(Category).where(Category.slug == id_or_slug)).scalar_one_or_none()


def _name_taken(db: Session, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(Category.id).where(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        stmt = stmt.where(Category.id != exclude_id)
    return db.execute(stmt).first() is not None


def _unique_slug(db: Session, name: str) -> str:
    slug = slugify(name)
    if db.execute(select(Category.id).where(Category.slug == slug)).first():
        slug = f"{slug}-{unique_suffix()}"
    return slug


def _check_parent(db: Session, parent_id: int | None, category_id: int | None = None):
    if parent_id is None:
        return
    if parent_id == category_id:
        raise ApiError(400, "A category cannot be its own parent.")
    parent = db.get(Category, parent_id)
    if not parent:
        raise ApiError(404, "Parent category not found.")
    seen = {parent.id}
    while parent.parent_id is not None and parent.parent_id not in seen:
        if parent.parent_id == category_id:
            raise ApiError(400, "A category cannot be placed under one of its own subcategories.")
        seen.add(parent.parent_id)
        parent = db.get(Category, parent.parent_id)


@router.get("")
def list_categories(
    request: Request,
    tree: bool = False,
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    def produce():
        stmt = select(Category).where(Category.is_active.is_(True)).order_by(Category.sort_order, Category.name)
        categories = db.execute(stmt).scalars().all()
        if tree:
            return {"categories": build_tree(categories)}
        return {"categories": [CategoryOut.model_validate(c) for c in categories]}

    data = cache.remember(request_key(CATEGORIES, request), settings.CATEGORIES_CACHE_TTL, produce)
    return ok(data)


@router.get("/{id_or_slug}")
def get_category(
    id_or_slug: str,
    request: Request,
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    def produce():
        category = find_category(db, id_or_slug)
        if not category:
            raise ApiError(404, "Category not found.")
        children = [CategoryOut.model_validate(c) for c in category.children if c.is_active]
        return {"category": dict(CategoryOut.model_validate(category).model_dump(), children=children)}

    data = cache.remember(request_key(CATEGORIES, request), settings.CATEGORIES_CACHE_TTL, produce)
    return ok(data)


@router.post("", status_code=201)
def create_category(
    body: CategoryIn,
    db: Session = Depends(get_db),
    admin: User = Depends(get_current_admin),
    cache: ResponseCache = Depends(get_cache),
):
    if _name_taken(db, body.name):
        raise ApiError(409, "A category with this name already exists.")
    _check_parent(db, body.parent_id)

    category = Category(slug=_unique_slug(db, body.name), **body.model_dump())
    db.add(category)
    db.commit()
    invalidate_catalog(cache, CATEGORIES, PRODUCTS)
    return ok({"category": CategoryOut.model_validate(category)}, "Category created successfully")


@router.put("/{category_id}")
def update_category(
    category_id: int,
    body: CategoryUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_current_admin),
    cache: ResponseCache = Depends(get_cache),
):
    category = db.get(Category, category_id)
    if not category:
        raise ApiError(404, "Category not found.")

    data = body.model_dump(exclude_unset=True)
    if data.get("name") and data["name"].lower() != category.name.lower():
        if _name_taken(db, data["name"], exclude_id=category.id):
            raise ApiError(409, "A category with this name already exists.")
        category.slug = _unique_slug(db, data["name"])
    if "parent_id" in data:
        _check_parent(db, data["parent_id"], category.id)
    for field, value in data.items():
        setattr(category, field, value)
    db.commit()
    invalidate_catalog(cache, CATEGORIES, PRODUCTS)
    return ok({"category": CategoryOut.model_validate(category)}, "Category updated successfully")


@router.delete("/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(get_current_admin),
    cache: ResponseCache = Depends(get_cache),
):
    category = db.get(Category, category_id)
    if not category:
        raise ApiError(404, "Category not found.")
    product_count = db.scalar(select(func.count(Product.id)).where(Product.category_id == category.id))
    if product_count:
        raise ApiError(400, f"Cannot delete category with {product_count} products. Move or delete them first.")
    if category.children:
        raise ApiError(400, "Cannot delete category with subcategories.")

    db.delete(category)
    db.commit()
    invalidate_catalog(cache, CATEGORIES, PRODUCTS)
    return ok(message="Category deleted successfully")
