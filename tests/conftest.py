import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_marketplace_webhook"
os.environ["MOMO_SANDBOX_DELAY_SECONDS"] = "0"
os.environ["MAX_UPLOAD_BYTES"] = str(64 * 1024)
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="marketplace-uploads-")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from database import Base, SessionLocal, engine  # noqa: E402
from limiter import limiter  # noqa: E402
from main import app  # noqa: E402
from models import AccountStatus, Category, Product, User, UserRole  # noqa: E402
from security import get_password_hash, token_for  # noqa: E402

PASSWORD = "secret123"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture()
def client():
    Base.metadata.create_all(bind=engine)
    limiter.reset()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db(client):
    session = SessionLocal()
    yield session
    session.close()


def make_user(db, email, role=UserRole.BUYER, status=AccountStatus.ACTIVE, first_name="Ama"):
    user = User(
        email=email,
        password_hash=get_password_hash(PASSWORD),
        first_name=first_name,
        last_name="Mensah",
        role=role.value,
        status=status.value,
    )
    db.add(user)
    db.commit()
    return user


def auth(user):
    return {"Authorization": f"Bearer {token_for(user)}"}


def make_product(db, seller, category, name="Kente Cloth", price=15000, stock=10, **extra):
    product = Product(
        seller_id=seller.id,
        category_id=category.id,
        name=name,
        slug=name.lower().replace(" ", "-"),
        price_pesewas=price,
        stock_quantity=stock,
        **extra,
    )
    db.add(product)
    db.commit()
    return product


@pytest.fixture()
def buyer(db):
    return make_user(db, "buyer@example.com")


@pytest.fixture()
def seller(db):
    return make_user(db, "seller@example.com", role=UserRole.SELLER, first_name="Kofi")


@pytest.fixture()
def admin(db):
    return make_user(db, "admin@example.com", role=UserRole.ADMIN, first_name="Esi")


@pytest.fixture()
def category(db):
    category = Category(name="Fashion", slug="fashion")
    db.add(category)
    db.commit()
    return category


@pytest.fixture()
def product(db, seller, category):
    return make_product(db, seller, category)


@pytest.fixture()
def shipping():
    return {
        "shipping_full_name": "Ama Mensah",
        "shipping_phone": "0244123456",
        "shipping_region": "Greater Accra",
        "shipping_city": "Accra",
        "shipping_street_address": "12 Oxford Street, Osu",
        "customer_email": "buyer@example.com",
        "customer_phone": "0244123456",
    }
