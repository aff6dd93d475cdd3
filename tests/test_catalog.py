from datetime import datetime, timedelta, timezone

import pytest

from conftest import auth, make_admin, product_payload, register
from product_service import ProductService


@pytest.fixture
def owner_id(client, db):
    register(client, email="seller@x.com", name="Sam Seller")
    return str(db["user"].find_one({"email": "seller@x.com"})["_id"])


@pytest.fixture
def seed(db, owner_id):
    service = ProductService(db)

    def create(**overrides):
        return service.create_product(product_payload(**overrides), owner_id)

    return create


def names(products):
    return [p["name"] for p in products]


# --------------------- Search ---------------------

def test_price_range_includes_bounds_only(client, seed):
    for price in (9.99, 10, 50, 50.01):
        seed(name=f"Item {price}", price=price, original_price=None)

    response = client.get("/api/products/search", params={"minPrice": 10, "maxPrice": 50})
    assert response.status_code == 200
    body = response.json()
    assert sorted(p["price"] for p in body["products"]) == [10, 50]
    assert body["pagination"]["total"] == 2
    assert body["filters"] == {"min_price": 10, "max_price": 50}


def test_search_paginates_with_totals(client, seed):
    for i in range(5):
        seed(name=f"Book {i}", category="books", price=10 + i)
    seed(name="Racket", category="sports")

    params = {"category": "books", "sortBy": "price", "sortOrder": "asc", "limit": 2}
    first = client.get("/api/products/search", params=params).json()
    assert names(first["products"]) == ["Book 0", "Book 1"]
    assert first["pagination"] == {
        "page": 1, "limit": 2, "total": 5, "total_pages": 3,
        "has_next_page": True, "has_prev_page": False,
    }

    last = client.get("/api/products/search", params={**params, "page": 3}).json()
    assert names(last["products"]) == ["Book 4"]
    assert last["pagination"]["has_next_page"] is False
    assert last["pagination"]["has_prev_page"] is True


def test_search_computes_derived_fields(client, seed):
    seed(name="Quarter off", price=75, original_price=100, inventory={"quantity": 10})
    seed(name="Third off", price=2, original_price=3, inventory={"quantity": 3})
    seed(name="Two thirds off", price=1, original_price=3, inventory={"quantity": 0})
    seed(name="Full price", price=5, original_price=None, inventory={"quantity": 6, "low_stock_threshold": 6})

    products = {p["name"]: p for p in client.get("/api/products/search").json()["products"]}
    assert products["Quarter off"]["discount_percentage"] == 25
    assert products["Third off"]["discount_percentage"] == 33
    assert products["Two thirds off"]["discount_percentage"] == 67
    assert products["Full price"]["discount_percentage"] == 0

    assert products["Quarter off"]["stock_status"] == "in-stock"
    assert products["Third off"]["stock_status"] == "low-stock"
    assert products["Two thirds off"]["stock_status"] == "out-of-stock"
    assert products["Full price"]["stock_status"] == "low-stock"


def test_search_in_stock_filter(client, seed):
    seed(name="Available", inventory={"quantity": 2})
    seed(name="Gone", inventory={"quantity": 0})

    in_stock = client.get("/api/products/search", params={"inStock": "true"}).json()
    assert names(in_stock["products"]) == ["Available"]
    everything = client.get("/api/products/search", params={"inStock": "false"}).json()
    assert everything["pagination"]["total"] == 2


def test_search_seller_exposes_public_fields_only(client, db, seed):
    seed()
    db["user"].update_one(
        {"email": "seller@x.com"},
        {"$set": {"verification.password_reset_token": "secret-reset-token"}},
    )

    product = client.get("/api/products/search").json()["products"][0]
    assert set(product["seller"]) <= {"id", "name", "email"}
    assert product["seller"]["name"] == "Sam Seller"
    assert product["seller"]["email"] == "seller@x.com"

    plain = client.get("/api/products/search", params={"populate": "false"}).json()["products"][0]
    assert "seller" not in plain


# --------------------- Listing ---------------------

def test_listing_is_newest_first_and_limited(client, seed):
    for i in range(3):
        seed(name=f"Lamp {i}")

    products = client.get("/api/products", params={"limit": 2}).json()
    assert names(products) == ["Lamp 2", "Lamp 1"]
    assert all("seller" not in p for p in products)
    assert products[0]["stock_status"] == "low-stock"


def test_listing_populates_seller_on_request(client, seed):
    seed()
    product = client.get("/api/products", params={"populate": "true"}).json()[0]
    assert set(product["seller"]) <= {"id", "name", "email"}
    assert product["seller"]["name"] == "Sam Seller"


def test_listing_rejects_out_of_range_limit(client):
    assert client.get("/api/products", params={"limit": 0}).status_code == 400
    assert client.get("/api/products", params={"limit": 101}).status_code == 400


# --------------------- Catalogue views ---------------------

def test_categories_are_counted(client, seed):
    seed(category="books", brand="Penguin", subcategory="fiction")
    seed(category="books", brand="Penguin")
    seed(category="sports", brand="Trek")

    body = client.get("/api/products/categories").json()
    assert body["categories"] == [{"name": "books", "count": 2}, {"name": "sports", "count": 1}]
    assert body["subcategories"] == [{"name": "fiction", "count": 1}]
    assert body["brands"] == [{"name": "Penguin", "count": 2}, {"name": "Trek", "count": 1}]


def test_trending_prefers_rated_recent_products(client, db, seed):
    star = seed(name="Star")
    stale = seed(name="Stale")
    seed(name="Unrated")
    seed(name="Sold out", status="sold")

    products = db["product"]
    products.update_one({"name": "Star"}, {"$set": {"ratings": {"average": 5, "count": 10}}})
    products.update_one(
        {"name": "Stale"},
        {"$set": {
            "ratings": {"average": 4, "count": 0},
            "created_at": datetime.now(timezone.utc) - timedelta(days=30),
        }},
    )

    trending = client.get("/api/products/trending").json()
    assert names(trending) == ["Star", "Stale", "Unrated"]
    assert trending[0]["id"] == star["id"]
    assert trending[1]["id"] == stale["id"]


def test_similar_products_share_category_and_sort_by_rating(client, db, seed):
    target = seed(name="Target", category="books")
    seed(name="Good match", category="books")
    seed(name="Weak match", category="books")
    seed(name="Sold match", category="books", status="sold")
    seed(name="Empty match", category="books", inventory={"quantity": 0})
    seed(name="Other category", category="sports")

    db["product"].update_one({"name": "Good match"}, {"$set": {"ratings.average": 4.5}})
    db["product"].update_one({"name": "Weak match"}, {"$set": {"ratings.average": 2}})

    similar = client.get(f"/api/products/{target['id']}/similar").json()
    assert names(similar) == ["Good match", "Weak match"]
    assert client.get(f"/api/products/{target['id']}/similar", params={"limit": 1}).json()[0]["name"] == "Good match"


def test_analytics_summarises_inventory(client, db, seed):
    seed(name="Plenty", price=10, inventory={"quantity": 10})
    seed(name="Few left", price=20, inventory={"quantity": 3})
    seed(name="None left", price=30, category="books", inventory={"quantity": 0}, status="inactive")
    db["product"].update_one({"name": "Plenty"}, {"$set": {"ratings.average": 4.8}})

    token = register(client, email="boss@x.com", name="Bea Boss")["token"]
    make_admin(db, "boss@x.com")

    response = client.get("/api/products/analytics", headers=auth(token))
    assert response.status_code == 200
    body = response.json()
    assert body["total_products"] == 3
    assert body["active_products"] == 2
    assert body["low_stock_products"] == 1
    assert body["out_of_stock_products"] == 1
    assert body["average_price"] == pytest.approx(20)
    assert body["price_range"] == {"min": 10, "max": 30}
    assert body["category_distribution"] == [
        {"category": "sports", "count": 2},
        {"category": "books", "count": 1},
    ]
    assert names(body["top_rated_products"]) == ["Plenty"]
    assert len(body["recent_products"]) == 3
