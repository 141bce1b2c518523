from models import Category, UserRole
from tests.conftest import auth, make_product, make_user


def _names(res):
    return [p["name"] for p in res.json()["data"]["products"]]


def test_admin_creates_category_with_slug(client, admin):
    res = client.post("/api/categories", json={"name": "Home & Kitchen"}, headers=auth(admin))
    assert res.status_code == 201
    assert res.json()["data"]["category"]["slug"] == "home-kitchen"


def test_category_names_are_unique_ignoring_case(client, admin, category):
    res = client.post("/api/categories", json={"name": "FASHION"}, headers=auth(admin))
    assert res.status_code == 409


def test_only_admin_manages_categories(client, seller):
    res = client.post("/api/categories", json={"name": "Electronics"}, headers=auth(seller))
    assert res.status_code == 403
    assert res.json()["message"] == "Admin access required."


def test_category_tree_nests_children(client, db, category):
    db.add(Category(name="Men's Wear", slug="mens-wear", parent_id=category.id))
    db.add(Category(name="Books", slug="books", sort_order=1))
    db.commit()

    tree = client.get("/api/categories", params={"tree": "true"}).json()["data"]["categories"]
    by_slug = {node["slug"]: node for node in tree}
    assert set(by_slug) == {"fashion", "books"}
    assert [child["slug"] for child in by_slug["fashion"]["children"]] == ["mens-wear"]

    flat = client.get("/api/categories").json()["data"]["categories"]
    assert len(flat) == 3


def test_category_cannot_move_under_its_own_descendant(client, db, admin, category):
    child = Category(name="Men's Wear", slug="mens-wear", parent_id=category.id)
    db.add(child)
    db.commit()
    grandchild = Category(name="Smocks", slug="smocks", parent_id=child.id)
    db.add(grandchild)
    db.commit()

    res = client.put(f"/api/categories/{category.id}", json={"parent_id": grandchild.id}, headers=auth(admin))
    assert res.status_code == 400
    assert client.put(f"/api/categories/{category.id}", json={"parent_id": child.id}, headers=auth(admin)).status_code == 400

    tree = client.get("/api/categories", params={"tree": "true"}).json()["data"]["categories"]
    assert [node["slug"] for node in tree] == ["fashion"]


def test_get_category_by_id_or_slug(client, category):
    assert client.get(f"/api/categories/{category.id}").json()["data"]["category"]["name"] == "Fashion"
    assert client.get("/api/categories/fashion").json()["data"]["category"]["id"] == category.id
    assert client.get("/api/categories/missing").status_code == 404


def test_category_with_products_cannot_be_deleted(client, admin, product, category):
    res = client.delete(f"/api/categories/{category.id}", headers=auth(admin))
    assert res.status_code == 400


def test_category_write_drops_cached_categories(client, admin, category):
    assert len(client.get("/api/categories").json()["data"]["categories"]) == 1
    client.post("/api/categories", json={"name": "Beauty"}, headers=auth(admin))
    assert len(client.get("/api/categories").json()["data"]["categories"]) == 2


def test_seller_creates_product(client, seller, category):
    res = client.post(
        "/api/products",
        json={
            "name": "Kente Stole",
            "price_pesewas": 12000,
            "category_id": category.id,
            "stock_quantity": 3,
            "sku": "KNT-001",
            "images": ["http://testserver/uploads/products/a.png"],
        },
        headers=auth(seller),
    )
    assert res.status_code == 201
    product = res.json()["data"]["product"]
    assert product["slug"] == "kente-stole"
    assert product["seller_id"] == seller.id
    assert product["in_stock"] is True
    assert product["category"]["slug"] == "fashion"


def test_buyer_cannot_create_product(client, buyer, category):
    res = client.post("/api/products", json={"name": "Thing", "price_pesewas": 100, "category_id": category.id}, headers=auth(buyer))
    assert res.status_code == 403


def test_duplicate_sku_conflicts(client, seller, category):
    payload = {"name": "Beads", "price_pesewas": 500, "category_id": category.id, "sku": "BEAD-1"}
    assert client.post("/api/products", json=payload, headers=auth(seller)).status_code == 201
    res = client.post("/api/products", json=dict(payload, name="More Beads"), headers=auth(seller))
    assert res.status_code == 409


def test_only_owner_or_admin_updates_product(client, db, product, admin):
    other = make_user(db, "other-seller@example.com", role=UserRole.SELLER)
    res = client.put(f"/api/products/{product.id}", json={"price_pesewas": 1}, headers=auth(other))
    assert res.status_code == 403

    res = client.put(f"/api/products/{product.id}", json={"price_pesewas": 14000}, headers=auth(admin))
    assert res.status_code == 200
    assert res.json()["data"]["product"]["price_pesewas"] == 14000


def test_product_filters_and_sorting(client, db, seller, category):
    make_product(db, seller, category, name="Cheap Beads", price=500, stock=0)
    make_product(db, seller, category, name="Smock", price=30000, stock=2, is_featured=True)
    make_product(db, seller, category, name="Hidden", price=1000, is_active=False)

    assert _names(client.get("/api/products", params={"sort_by": "price_pesewas", "order": "asc"})) == ["Cheap Beads", "Smock"]
    assert _names(client.get("/api/products", params={"in_stock": "true"})) == ["Smock"]
    assert _names(client.get("/api/products", params={"min_price": 1000})) == ["Smock"]
    assert _names(client.get("/api/products", params={"featured": "true"})) == ["Smock"]
    assert _names(client.get("/api/products", params={"search": "bead"})) == ["Cheap Beads"]
    assert _names(client.get("/api/products", params={"category": "fashion", "max_price": 600})) == ["Cheap Beads"]
    assert client.get("/api/products", params={"category": "nope"}).json()["data"]["pagination"]["total"] == 0


def test_product_listing_paginates(client, db, seller, category):
    for i in range(5):
        make_product(db, seller, category, name=f"Item {i}", price=100 + i)
    res = client.get("/api/products", params={"limit": 2, "page": 3}).json()["data"]
    assert res["pagination"] == {"page": 3, "limit": 2, "total": 5, "total_pages": 3}
    assert len(res["products"]) == 1


def test_invalid_sort_field_is_a_validation_error(client):
    res = client.get("/api/products", params={"sort_by": "password_hash"})
    assert res.status_code == 400
    assert res.json()["errors"][0]["field"] == "query.sort_by"


def test_get_product_by_slug_and_inactive_is_hidden(client, db, seller, category, product):
    assert client.get(f"/api/products/{product.slug}").json()["data"]["product"]["id"] == product.id
    hidden = make_product(db, seller, category, name="Hidden Thing", is_active=False)
    assert client.get(f"/api/products/{hidden.id}").status_code == 404


def test_delete_product(client, seller, product):
    res = client.delete(f"/api/products/{product.id}", headers=auth(seller))
    assert res.status_code == 200
    assert client.get(f"/api/products/{product.id}").status_code == 404


def test_search(client, db, seller, category):
    make_product(db, seller, category, name="Kente Bag", description="Handwoven")
    make_product(db, seller, category, name="Sandals")
    res = client.get("/api/search", params={"q": "handwoven"})
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["query"] == "handwoven"
    assert [p["name"] for p in data["products"]] == ["Kente Bag"]


def test_search_requires_query(client):
    assert client.get("/api/search").status_code == 400
