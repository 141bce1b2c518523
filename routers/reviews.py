"""
Product reviews.

One review per buyer per product. A review counts as a verified purchase
when the reviewer has a delivered order containing the product. The
product's ``average_rating`` and ``review_count`` are recomputed from
approved reviews after every write.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from cache import PRODUCTS, SEARCH, ResponseCache, get_cache, invalidate_catalog
from database import get_db
from errors import ApiError, ok, paginate
from helpers import page_params
from models import Order, OrderItem, OrderStatus, Product, Review, User
from schemas import ReviewIn, ReviewOut, ReviewSort, ReviewUpdate
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reviews", tags=["reviews"])

REVIEW_ORDER = {
    "recent": (Review.created_at.desc(), Review.id.desc()),
    "rating_high": (Review.rating.desc(), Review.created_at.desc()),
    "rating_low": (Review.rating.asc(), Review.created_at.desc()),
}


def refresh_rating(db: Session, product: Product):
    average, count = db.execute(
        select(func.avg(Review.rating), func.count(Review.id)).where(
            Review.product_id == product.id, Review.is_approved.is_(True)
        )
    ).one()
    product.average_rating = round(float(average or 0), 2)
    product.review_count = count


def _bought(db: Session, user_id: int, product_id: int) -> bool:
    stmt = (
        select(OrderItem.id)
        .join(Order)
        .where(
            OrderItem.product_id == product_id,
            Order.user_id == user_id,
            Order.status == OrderStatus.DELIVERED.value,
        )
        .limit(1)
    )
    return db.execute(stmt).first() is not None


def _own_review(db: Session, review_id: int, user: User) -> Review:
    review = db.get(Review, review_id)
    if not review or review.user_id != user.id:
        raise ApiError(404, "Review not found.")
    return review


def _reviewer(user: User):
    initial = f" {user.last_name[:1]}." if user.last_name else ""
    return {"id": user.id, "name": f"{user.first_name}{initial}", "avatar": user.avatar_url}


def _save(db: Session, review: Review, cache: ResponseCache):
    db.flush()
    refresh_rating(db, review.product)
    db.commit()
    invalidate_catalog(cache, PRODUCTS, SEARCH)


@router.get("/product/{product_id}")
def product_reviews(
    product_id: int,
    page: int = 1,
    limit: int = 10,
    sort: ReviewSort = "recent",
    rating: Optional[int] = Query(None, ge=1, le=5),
    db: Session = Depends(get_db),
):
    product = db.get(Product, product_id)
    if not product or not product.is_active:
        raise ApiError(404, "Product not found.")

    page, limit, offset = page_params(page, limit)
    stmt = select(Review).where(Review.product_id == product_id, Review.is_approved.is_(True))
    if rating is not None:
        stmt = stmt.where(Review.rating == rating)
    total = db.scalar(select(func.count()).select_from(stmt.subquery()))
    reviews = (
        db.execute(stmt.options(selectinload(Review.user)).order_by(*REVIEW_ORDER[sort]).offset(offset).limit(limit))
        .scalars()
        .all()
    )

    distribution = {star: 0 for star in range(1, 6)}
    counts = db.execute(
        select(Review.rating, func.count(Review.id))
        .where(Review.product_id == product_id, Review.is_approved.is_(True))
        .group_by(Review.rating)
    )
    for star, count in counts:
        distribution[star] = count

    return ok(
        {
            "reviews": [dict(ReviewOut.model_validate(r).model_dump(), user=_reviewer(r.user)) for r in reviews],
            "summary": {
                "average_rating": product.average_rating,
                "total_reviews": product.review_count,
                "distribution": distribution,
            },
            "pagination": paginate(page, limit, total),
        }
    )


@router.post("/product/{product_id}", status_code=201)
def create_review(
    product_id: int,
    body: ReviewIn,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    product = db.get(Product, product_id)
    if not product or not product.is_active:
        raise ApiError(404, "Product not found.")
    already = db.execute(
        select(Review.id).where(Review.product_id == product_id, Review.user_id == current.id)
    ).first()
    if already:
        raise ApiError(400, "You have already reviewed this product.")

    review = Review(
        product=product,
        user_id=current.id,
        is_verified_purchase=_bought(db, current.id, product_id),
        **body.model_dump(),
    )
    db.add(review)
    try:
        _save(db, review, cache)
    except IntegrityError:
        db.rollback()
        raise ApiError(400, "You have already reviewed this product.")
    logger.info("Review %s added to product %s", review.id, product_id)
    return ok({"review": ReviewOut.model_validate(review)}, "Review submitted successfully")


@router.put("/{review_id}")
def update_review(
    review_id: int,
    body: ReviewUpdate,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    review = _own_review(db, review_id, current)
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(review, field, value)
    _save(db, review, cache)
    return ok({"review": ReviewOut.model_validate(review)}, "Review updated successfully")


@router.delete("/{review_id}")
def delete_review(
    review_id: int,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    review = _own_review(db, review_id, current)
    product = review.product
    db.delete(review)
    db.flush()
    refresh_rating(db, product)
    db.commit()
    invalidate_catalog(cache, PRODUCTS, SEARCH)
    return ok(message="Review deleted successfully")


@router.get("/my-reviews")
def my_reviews(
    page: int = 1,
    limit: int = 10,
    current: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    page, limit, offset = page_params(page, limit)
    stmt = select(Review).where(Review.user_id == current.id)
    total = db.scalar(select(func.count()).select_from(stmt.subquery()))
    reviews = (
        db.execute(
            stmt.options(selectinload(Review.product))
            .order_by(Review.created_at.desc(), Review.id.desc())
            .offset(offset)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return ok(
        {
            "reviews": [
                dict(
                    ReviewOut.model_validate(r).model_dump(),
                    product={
                        "id": r.product.id,
                        "name": r.product.name,
                        "slug": r.product.slug,
                        "image": r.product.images[0] if r.product.images else None,
                    },
                )
                for r in reviews
            ],
            "pagination": paginate(page, limit, total),
        }
    )
