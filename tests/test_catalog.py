import pytest

from storefront.constants import CATEGORIES, COUPONS, IMAGE_BUCKET, IMAGE_MAX_BYTES, PRODUCTS
from storefront.services import catalog


def test_category_and_product_crud(store, objects):
    ok, msg = catalog.save_category(store, None, "Grains", "Rice and dal")
    assert ok, msg
    grains = catalog.list_categories(store)[0]

    ok, msg = catalog.save_product(store, None, "Basmati Rice", "120.50", grains["id"], "7", "Long grain")
    assert ok, msg
    ok, msg = catalog.save_product(store, None, "Soap", 35, None)
    assert ok, msg

    rows = catalog.list_products(store)
    assert [r["name"] for r in rows] == ["Basmati Rice", "Soap"]
    assert rows[0]["category"]["name"] == "Grains"
    assert rows[0]["stock"] == 7
    assert rows[1]["category"] is None

    assert [r["name"] for r in catalog.list_products(store, category="Grains")] == ["Basmati Rice"]
    assert [r["name"] for r in catalog.list_products(store, query="long")] == ["Basmati Rice"]
    assert [r["name"] for r in catalog.list_products(store, category="All", query="SOAP")] == ["Soap"]

    pid = rows[1]["id"]
    ok, _ = catalog.save_product(store, pid, "Neem Soap", "40", None)
    assert ok
    assert catalog.get_product(store, pid).price == 40.0

    ok, _ = catalog.delete_category(store, objects, grains["id"])
    assert ok
    assert store.select_one(PRODUCTS, {"name": "Basmati Rice"})["category_id"] is None

    ok, msg = catalog.delete_products(store, objects, [r["id"] for r in rows])
    assert ok and msg == "Deleted 2 product(s)"
    assert catalog.list_products(store) == []


@pytest.mark.parametrize(
    "name,price,error",
    [("", "10", "product name is required"), ("Dal", "-1", "price must be >= 0"), ("Dal", "abc", "price must be a number")],
)
def test_product_validation(store, name, price, error):
    assert catalog.save_product(store, None, name, price) == (False, error)


def test_duplicate_category_name_is_reported(store):
    assert catalog.save_category(store, None, "Oils")[0]
    ok, msg = catalog.save_category(store, None, "Oils")
    assert not ok
    assert msg.startswith("Failed to save category")


def test_coupon_is_saved_upper_cased_with_defaults(store):
    ok, msg = catalog.save_coupon(store, None, "diwali", "15", True, "2026-10-01", "2026-10-31")
    assert ok, msg
    row = catalog.list_coupons(store)[0]
    assert row["code"] == "DIWALI"
    assert row["usage_count"] == 0
    assert row["usage_limit"] is None
    assert row["active"] is True
    assert row["success_message"] == "Coupon applied successfully!"
    assert row["start_date"].startswith("2026-10-01T00:00:00")
    assert row["expiry_date"].startswith("2026-10-31T23:59:59")


def test_coupon_update_keeps_usage_count(store, add_coupon):
    row = add_coupon(usage_count=3)
    ok, _ = catalog.save_coupon(store, row["id"], "SAVE10", "20", True, "2026-10-01", "2026-12-31", "10", "", False)
    assert ok
    updated = store.select_one(COUPONS, {"id": row["id"]})
    assert updated["discount_amount"] == 20
    assert updated["usage_count"] == 3
    assert updated["usage_limit"] == 10
    assert updated["active"] is False


@pytest.mark.parametrize(
    "code,amount,pct,start,expiry,error",
    [
        ("AB", "10", True, "2026-10-01", "2026-10-31", "coupon code must be at least 3 characters"),
        ("ABC", "0", False, "2026-10-01", "2026-10-31", "discount must be at least 1"),
        ("ABC", "150", True, "2026-10-01", "2026-10-31", "percentage discount cannot exceed 100%"),
        ("ABC", "10", True, "2026-11-01", "2026-10-31", "start date must be before or equal to expiry date"),
        ("ABC", "10", True, "soon", "2026-10-31", "bad date: 'soon'"),
    ],
)
def test_coupon_validation(store, code, amount, pct, start, expiry, error):
    assert catalog.save_coupon(store, None, code, amount, pct, start, expiry) == (False, error)
    assert catalog.list_coupons(store) == []


def test_delete_missing_coupon(store):
    assert catalog.delete_coupon(store, "nope") == (False, "coupon not found")


def test_image_upload_rules(store, objects):
    assert catalog.store_image(objects, "photo.gif", b"GIF89a") == (False, "image must be PNG, JPG or WebP")
    assert catalog.store_image(objects, "photo.png", b"") == (False, "image is empty")
    assert catalog.store_image(objects, "big.jpg", b"x" * (IMAGE_MAX_BYTES + 1)) == (False, "image is larger than 5MB")

    ok, name = catalog.store_image(objects, "Photo.PNG", b"\x89PNG")
    assert ok
    assert name.endswith(".png")
    assert objects.exists(IMAGE_BUCKET, name)
    assert catalog.image_url(objects, name) == f"/media/{IMAGE_BUCKET}/{name}"
    assert catalog.image_url(objects, "https://cdn.example.com/a.jpg") == "https://cdn.example.com/a.jpg"


def test_deleting_category_removes_its_image(store, objects):
    ok, name = catalog.store_image(objects, "cat.jpg", b"jpeg")
    catalog.save_category(store, None, "Spices", image=name)
    row = store.select_one(CATEGORIES, {"name": "Spices"})
    catalog.delete_category(store, objects, row["id"])
    assert not objects.exists(IMAGE_BUCKET, name)


def test_new_image_replaces_the_old_one(store, objects):
    _, first = catalog.store_image(objects, "a.png", b"one")
    catalog.save_product(store, None, "Ghee", "500", image=first)
    pid = store.select_one(PRODUCTS, {"name": "Ghee"})["id"]

    catalog.save_product(store, pid, "Ghee", "520", objects=objects)
    assert objects.exists(IMAGE_BUCKET, first)

    _, second = catalog.store_image(objects, "b.png", b"two")
    ok, _ = catalog.save_product(store, pid, "Ghee", "520", image=second, objects=objects)
    assert ok
    assert not objects.exists(IMAGE_BUCKET, first)
    assert objects.exists(IMAGE_BUCKET, second)
    assert store.select_one(PRODUCTS, {"id": pid})["image_url"] == second

    _, logo = catalog.store_image(objects, "c.jpg", b"cat")
    catalog.save_category(store, None, "Dairy", image=logo)
    cid = store.select_one(CATEGORIES, {"name": "Dairy"})["id"]
    _, fresh = catalog.store_image(objects, "d.jpg", b"cat2")
    catalog.save_category(store, cid, "Dairy", image=fresh, objects=objects)
    assert not objects.exists(IMAGE_BUCKET, logo)
    assert objects.exists(IMAGE_BUCKET, fresh)
