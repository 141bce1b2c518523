import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cache import ResponseCache
from config import settings
from database import get_db, init_db
from errors import register_exception_handlers
from limiter import limiter
from routers import admin, auth, cart, categories, orders, payments, products, reviews, search, seller, uploads, users, webhooks, wishlist

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("marketplace")

API_NAME = "Marketplace API"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate()
    init_db()
    app.state.cache = ResponseCache()
    logger.info("%s started (%s)", API_NAME, settings.ENVIRONMENT)
    yield
    app.state.cache.clear()
    logger.info("%s stopped", API_NAME)


app = FastAPI(title=API_NAME, lifespan=lifespan)
app.state.limiter = limiter

app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

for module in (auth, users, categories, products, reviews, search, cart, wishlist, orders, payments, webhooks, seller, admin, uploads):
    app.include_router(module.router, prefix="/api")

os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")


@app.get("/")
@limiter.exempt
def read_root():
    return {"name": API_NAME, "status": "ok"}


@app.get("/api/health")
@limiter.exempt
def health(db: Session = Depends(get_db)):
    info = {"success": True, "status": "healthy", "environment": settings.ENVIRONMENT, "database": "disconnected"}
    try:
        db.execute(text("SELECT 1"))
        info["database"] = "connected"
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        info["success"] = False
        info["status"] = "degraded"
    return info


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
