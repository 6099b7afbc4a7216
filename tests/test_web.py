from urllib.parse import parse_qs, unquote, urlparse

import pytest
from fastapi.testclient import TestClient

from storefront.constants import COUPON_ALREADY_APPLIED, COUPON_NEEDS_ITEMS, COUPONS
from storefront.db.sqlite import StoreError
from storefront.services.admin_auth import create_admin
from storefront.web.main import create_app

from conftest import NOW


@pytest.fixture
def app(cfg):
    return create_app(cfg, clock=lambda: NOW)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def web_store(app, client):
    return app.state.store


def _msg(resp):
    return parse_qs(urlparse(resp.headers["location"]).query).get("msg", [""])[0]


def test_pages_render(client, web_store):
    web_store.insert("products", {"name": "Toor Dal", "price": 140.0})
    home = client.get("/").text
    assert "Toor Dal" in home
    assert 'href="https://wa.me/911234567890"' in home
    assert "Toor Dal" in client.get("/products", params={"q": "dal"}).text
    assert "Toor Dal" not in client.get("/products", params={"q": "oil"}).text
    assert "Your cart is empty" in client.get("/cart").text


def test_cart_flow_and_checkout(client, web_store):
    pid = web_store.insert("products", {"name": "Ghee", "price": 500.0})["id"]

    resp = client.post("/cart/add", data={"product_id": pid, "next": "/products"}, follow_redirects=False)
    assert resp.status_code == 303
    assert _msg(resp) == "Added Ghee to cart"

    page = client.get("/cart").text
    assert "Ghee" in page
    assert "₹500.00" in page

    resp = client.post("/cart/checkout", data={"name": "Asha", "phone": "999", "address": "MG Road"}, follow_redirects=False)
    assert resp.status_code == 303
    link = resp.headers["location"]
    assert link.startswith("https://wa.me/911234567890?text=")
    assert "Name: Asha" in unquote(link)

    client.post("/cart/update", data={"product_id": pid, "quantity": "0"})
    resp = client.post("/cart/checkout", data={"name": "Asha", "phone": "999", "address": "MG Road"}, follow_redirects=False)
    assert resp.headers["location"].startswith("/cart")
    assert _msg(resp) == "Your cart is empty"


def test_unknown_product_is_reported(client):
    resp = client.post("/cart/add", data={"product_id": "missing"}, follow_redirects=False)
    assert _msg(resp) == "Product not found"


def test_coupon_apply_counts_usage(client, web_store):
    row = web_store.insert(
        COUPONS,
        {
            "code": "SAVE10",
            "discount_amount": 10,
            "is_percentage": True,
            "start_date": "2026-10-01T00:00:00+00:00",
            "expiry_date": "2026-10-31T23:59:59+00:00",
            "usage_limit": 5,
            "usage_count": 2,
            "active": True,
        },
    )
    pid = web_store.insert("products", {"name": "Ghee", "price": 500.0})["id"]
    client.post("/cart/add", data={"product_id": pid})

    resp = client.post("/cart/coupon", data={"code": "save10"}, follow_redirects=False)
    assert _msg(resp) == "Coupon applied successfully!"
    assert web_store.select_one(COUPONS, {"id": row["id"]})["usage_count"] == 3

    page = client.get("/cart").text
    assert "Discount (SAVE10): -₹50.00" in page
    assert "Total: ₹450.00" in page

    client.post("/cart/coupon/remove")
    assert "Discount (SAVE10)" not in client.get("/cart").text
    assert web_store.select_one(COUPONS, {"id": row["id"]})["usage_count"] == 3

    resp = client.post("/cart/coupon", data={"code": "BOGUS"}, follow_redirects=False)
    assert _msg(resp) == "Invalid coupon code. Please try again."


def test_admin_pages_require_login(client, web_store):
    resp = client.get("/admin/coupons", follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/admin/login?next=%2Fadmin%2Fcoupons"

    create_admin(web_store, "admin@example.com", "s3cret")
    resp = client.post(
        "/admin/login",
        data={"email": "admin@example.com", "password": "wrong", "next": "/admin/coupons"},
        follow_redirects=False,
    )
    assert resp.headers["location"].startswith("/admin/login?next=%2Fadmin%2Fcoupons")
    assert _msg(resp) == "Invalid email or password"

    resp = client.post(
        "/admin/login",
        data={"email": "admin@example.com", "password": "s3cret", "next": "/admin/coupons"},
        follow_redirects=False,
    )
    assert urlparse(resp.headers["location"]).path == "/admin/coupons"
    assert client.get("/admin/coupons").status_code == 200

    resp = client.post(
        "/admin/coupons/save",
        data={
            "code": "welcome",
            "discount_amount": "50",
            "start_date": "2026-10-01",
            "expiry_date": "2026-10-31",
            "active": "true",
        },
        follow_redirects=False,
    )
    assert _msg(resp) == "Coupon added successfully"
    row = web_store.select_one(COUPONS, {"code": "WELCOME"})
    assert row["is_percentage"] is False
    assert "WELCOME" in client.get("/admin/coupons").text

    client.post("/admin/logout")
    assert client.get("/admin/products", follow_redirects=False).status_code == 303


def test_admin_manages_products(client, web_store):
    create_admin(web_store, "admin@example.com", "s3cret")
    client.post("/admin/login", data={"email": "admin@example.com", "password": "s3cret"})

    resp = client.post("/admin/categories/save", data={"name": "Oils"}, follow_redirects=False)
    assert _msg(resp) == "Category added successfully"
    cat = web_store.select_one("categories", {"name": "Oils"})

    resp = client.post(
        "/admin/products/save",
        data={"name": "Groundnut Oil", "price": "210", "category_id": cat["id"], "stock": "12"},
        files={"image": ("oil.png", b"\x89PNG", "image/png")},
        follow_redirects=False,
    )
    assert _msg(resp) == "Product added successfully"
    product = web_store.select_one("products", {"name": "Groundnut Oil"})
    assert product["image_url"].endswith(".png")
    assert client.get(f"/media/product_images/{product['image_url']}").content == b"\x89PNG"

    page = client.get("/admin/products", params={"category": "Oils"}).text
    assert "Groundnut Oil" in page

    resp = client.post(
        "/admin/products/save",
        data={"name": "Bad", "price": "1"},
        files={"image": ("oil.gif", b"GIF", "image/gif")},
        follow_redirects=False,
    )
    assert _msg(resp) == "image must be PNG, JPG or WebP"

    resp = client.post("/admin/products/delete", data={"ids": [product["id"]]}, follow_redirects=False)
    assert _msg(resp) == "Deleted 1 product(s)"


def _backend_down(*args, **kwargs):
    raise StoreError("backend down")


def test_coupon_needs_items_and_applies_once(client, web_store):
    row = web_store.insert(
        COUPONS,
        {
            "code": "SAVE10",
            "discount_amount": 10,
            "is_percentage": True,
            "start_date": "2026-10-01T00:00:00+00:00",
            "expiry_date": "2026-10-31T23:59:59+00:00",
            "usage_limit": 5,
            "usage_count": 2,
            "active": True,
        },
    )
    for _ in range(3):
        resp = client.post("/cart/coupon", data={"code": "SAVE10"}, follow_redirects=False)
        assert _msg(resp) == COUPON_NEEDS_ITEMS
    assert web_store.select_one(COUPONS, {"id": row["id"]})["usage_count"] == 2

    pid = web_store.insert("products", {"name": "Ghee", "price": 500.0})["id"]
    client.post("/cart/add", data={"product_id": pid})
    client.post("/cart/coupon", data={"code": "SAVE10"})
    for _ in range(2):
        resp = client.post("/cart/coupon", data={"code": "SAVE10"}, follow_redirects=False)
        assert _msg(resp) == COUPON_ALREADY_APPLIED
    assert web_store.select_one(COUPONS, {"id": row["id"]})["usage_count"] == 3


def test_catalog_outage_renders_notice(client, web_store, monkeypatch):
    create_admin(web_store, "admin@example.com", "s3cret")
    client.post("/admin/login", data={"email": "admin@example.com", "password": "s3cret"})
    monkeypatch.setattr(web_store, "select", _backend_down)

    resp = client.get("/products")
    assert resp.status_code == 200
    assert "Could not load categories. Please try again." in resp.text
    assert "No products found." in resp.text

    assert client.get("/").status_code == 200

    resp = client.get("/admin/coupons")
    assert resp.status_code == 200
    assert "Could not load coupons. Please try again." in resp.text

    resp = client.post("/cart/add", data={"product_id": "abc"}, follow_redirects=False)
    assert _msg(resp) == "Could not load product. Please try again."


def test_client_storage_outage_is_not_fatal(client, web_store, monkeypatch):
    client.get("/")
    monkeypatch.setattr(web_store, "kv_get", _backend_down)

    resp = client.get("/cart")
    assert resp.status_code == 200
    assert "Could not load your cart. Please try again." in resp.text

    resp = client.post("/cart/clear", follow_redirects=False)
    assert resp.status_code == 303
    assert _msg(resp) == "The store is unavailable right now. Please try again."
