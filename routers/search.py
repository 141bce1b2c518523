from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from cache import SEARCH, ResponseCache, get_cache, request_key
from config import settings
from database import get_db
from errors import ok
from limiter import limiter
from models import Product
from routers.products import fetch_page, product_query

router = APIRouter(prefix="/search", tags=["search"])

SEARCH_SORTS = {
    "relevance": [Product.is_featured.desc(), Product.created_at.desc()],
    "price_asc": [Product.is_featured.desc(), Product.price_pesewas.asc()],
    "price_desc": [Product.is_featured.desc(), Product.price_pesewas.desc()],
    "newest": [Product.created_at.desc()],
}


@router.get("")
@limiter.limit(settings.SEARCH_RATE_LIMIT)
def search_products(
    request: Request,
    q: str = Query(..., min_length=1, max_length=100),
    category: Optional[str] = None,
    min_price: Optional[int] = Query(None, ge=0),
    max_price: Optional[int] = Query(None, ge=0),
    in_stock: Optional[bool] = None,
    sort: Literal["relevance", "price_asc", "price_desc", "newest"] = "relevance",
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    def produce():
        stmt = product_query(
            db,
            category=category,
            search=q,
            in_stock=in_stock,
            min_price=min_price,
            max_price=max_price,
        )
        products, pagination = fetch_page(db, stmt, SEARCH_SORTS[sort] + [Product.id.desc()], page, limit)
        return {"query": q, "products": products, "pagination": pagination}

    data = cache.remember(request_key(SEARCH, request), settings.SEARCH_CACHE_TTL, produce)
    return ok(data)
