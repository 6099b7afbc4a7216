from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

from storefront.constants import (
    CATEGORIES,
    COUPONS,
    DEFAULT_SUCCESS_MESSAGE,
    IMAGE_BUCKET,
    IMAGE_EXTENSIONS,
    IMAGE_MAX_BYTES,
    PRODUCTS,
)
from storefront.db.sqlite import SqliteStore, StoreError
from storefront.services.coupons import canonical_code
from storefront.services.models import Product
from storefront.services.storage import ObjectStorage
from storefront.utils.validators import (
    parse_day,
    parse_number,
    parse_optional_int,
    require_non_negative_number,
    require_text,
)

logger = logging.getLogger(__name__)


# ---------------- images ----------------

def store_image(objects: ObjectStorage, filename: str, data: bytes) -> Tuple[bool, str]:
    """Returns (True, object_name) or (False, error)."""
    ext = os.path.splitext(filename or "")[1].lower()
    if ext not in IMAGE_EXTENSIONS:
        return False, "image must be PNG, JPG or WebP"
    if not data:
        return False, "image is empty"
    if len(data) > IMAGE_MAX_BYTES:
        return False, "image is larger than 5MB"
    name = f"{uuid.uuid4().hex}{ext}"
    try:
        objects.upload(IMAGE_BUCKET, name, data)
    except OSError as e:
        logger.exception("image upload failed")
        return False, f"image upload failed: {e}"
    return True, name


def image_url(objects: ObjectStorage, name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    if name.startswith(("http://", "https://", "/")):
        return name
    return objects.public_url(IMAGE_BUCKET, name)


def _drop_image(objects: ObjectStorage, name: Optional[str]) -> None:
    if name and not name.startswith(("http://", "https://", "/")):
        try:
            objects.remove(IMAGE_BUCKET, name)
        except (OSError, ValueError):
            logger.warning("could not remove image %s", name)


def _replace_image(
    store: SqliteStore,
    objects: Optional[ObjectStorage],
    table: str,
    row_id: str,
    values: Dict[str, Any],
) -> bool:
    """Updates the row and drops its previous image when a new one took its place."""
    before = store.select_one(table, {"id": row_id}) if objects is not None and "image_url" in values else None
    if not store.update(table, row_id, values):
        return False
    old = before.get("image_url") if before else None
    if old and old != values["image_url"]:
        _drop_image(objects, old)
    return True


# ---------------- categories ----------------

def list_categories(store: SqliteStore) -> List[Dict[str, Any]]:
    return store.select(CATEGORIES, order_by="name")


def save_category(
    store: SqliteStore,
    category_id: Optional[str],
    name: str,
    description: Optional[str] = None,
    image: Optional[str] = None,
    objects: Optional[ObjectStorage] = None,
) -> Tuple[bool, str]:
    try:
        values: Dict[str, Any] = {
            "name": require_text(name, "category name"),
            "description": (description or "").strip() or None,
        }
        if image is not None:
            values["image_url"] = image
        if category_id:
            if not _replace_image(store, objects, CATEGORIES, category_id, values):
                return False, "category not found"
            return True, "Category updated successfully"
        store.insert(CATEGORIES, values)
        return True, "Category added successfully"
    except ValueError as e:
        return False, str(e)
    except StoreError as e:
        logger.exception("saving category failed")
        return False, f"Failed to save category: {e}"


def delete_category(store: SqliteStore, objects: ObjectStorage, category_id: str) -> Tuple[bool, str]:
    try:
        row = store.select_one(CATEGORIES, {"id": category_id})
        if row is None:
            return False, "category not found"
        store.delete(CATEGORIES, category_id)
    except StoreError as e:
        logger.exception("deleting category failed")
        return False, f"Failed to delete category: {e}"
    _drop_image(objects, row.get("image_url"))
    return True, "Category deleted successfully"


# ---------------- products ----------------

def list_products(
    store: SqliteStore,
    category: Optional[str] = None,
    query: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Products with their category row under "category", filtered by category name and search text."""
    cats = {c["id"]: c for c in store.select(CATEGORIES)}
    rows = store.select(PRODUCTS, order_by="name")

    q = (query or "").strip().lower()
    out = []
    for r in rows:
        cat = cats.get(r.get("category_id"))
        if category and category != "All" and (cat is None or cat["name"] != category):
            continue
        if q and q not in r["name"].lower() and q not in (r.get("description") or "").lower():
            continue
        out.append({**r, "category": cat})
    return out


def get_product(store: SqliteStore, product_id: str) -> Optional[Product]:
    row = store.select_one(PRODUCTS, {"id": product_id})
    return Product.from_row(row) if row else None


def save_product(
    store: SqliteStore,
    product_id: Optional[str],
    name: str,
    price,
    category_id: Optional[str] = None,
    stock=None,
    description: Optional[str] = None,
    image: Optional[str] = None,
    objects: Optional[ObjectStorage] = None,
) -> Tuple[bool, str]:
    try:
        p = parse_number(price, "price")
        require_non_negative_number(p, "price")
        values: Dict[str, Any] = {
            "name": require_text(name, "product name"),
            "price": p,
            "category_id": category_id or None,
            "stock": parse_optional_int(stock, "stock"),
            "description": (description or "").strip() or None,
        }
        if image is not None:
            values["image_url"] = image
        if product_id:
            if not _replace_image(store, objects, PRODUCTS, product_id, values):
                return False, "product not found"
            return True, "Product updated successfully"
        store.insert(PRODUCTS, values)
        return True, "Product added successfully"
    except ValueError as e:
        return False, str(e)
    except StoreError as e:
        logger.exception("saving product failed")
        return False, f"Failed to save product: {e}"


def delete_products(store: SqliteStore, objects: ObjectStorage, ids: Iterable[str]) -> Tuple[bool, str]:
    ids = [i for i in ids if i]
    if not ids:
        return False, "no products selected"
    try:
        images = [r.get("image_url") for r in store.select(PRODUCTS) if r["id"] in ids]
        n = store.delete_many(PRODUCTS, ids)
    except StoreError as e:
        logger.exception("deleting products failed")
        return False, f"Failed to delete products: {e}"
    for name in images:
        _drop_image(objects, name)
    return True, f"Deleted {n} product(s)"


# ---------------- coupons ----------------

def list_coupons(store: SqliteStore) -> List[Dict[str, Any]]:
    return store.select(COUPONS, order_by="created_at", descending=True)


def save_coupon(
    store: SqliteStore,
    coupon_id: Optional[str],
    code: str,
    discount_amount,
    is_percentage: bool,
    start_date,
    expiry_date,
    usage_limit=None,
    success_message: Optional[str] = None,
    active: bool = True,
) -> Tuple[bool, str]:
    try:
        code = canonical_code(require_text(code, "coupon code", min_len=3))
        amount = parse_number(discount_amount, "discount")
        if amount < 1:
            raise ValueError("discount must be at least 1")
        if is_percentage and amount > 100:
            raise ValueError("percentage discount cannot exceed 100%")
        start = parse_day(start_date)
        expiry = parse_day(expiry_date, end_of_day=True)
        if start > expiry:
            raise ValueError("start date must be before or equal to expiry date")
        limit = parse_optional_int(usage_limit, "usage limit")
        if limit is not None and limit < 0:
            raise ValueError("usage limit must be >= 0")

        values = {
            "code": code,
            "discount_amount": amount,
            "is_percentage": bool(is_percentage),
            "start_date": start.isoformat(),
            "expiry_date": expiry.isoformat(),
            "usage_limit": limit,
            "success_message": (success_message or "").strip() or DEFAULT_SUCCESS_MESSAGE,
            "active": bool(active),
        }
        if coupon_id:
            if not store.update(COUPONS, coupon_id, values):
                return False, "coupon not found"
            return True, "Coupon updated successfully"
        store.insert(COUPONS, {**values, "usage_count": 0})
        return True, "Coupon added successfully"
    except ValueError as e:
        return False, str(e)
    except StoreError as e:
        logger.exception("saving coupon failed")
        return False, f"Failed to save coupon: {e}"


def delete_coupon(store: SqliteStore, coupon_id: str) -> Tuple[bool, str]:
    try:
        if not store.delete(COUPONS, coupon_id):
            return False, "coupon not found"
    except StoreError as e:
        logger.exception("deleting coupon failed")
        return False, f"Failed to delete coupon: {e}"
    return True, "Coupon deleted successfully"
