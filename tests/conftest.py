import dataclasses
from datetime import datetime, timedelta, timezone

import pytest

from storefront.config import settings
from storefront.constants import COUPONS, PRODUCTS
from storefront.db.sqlite import SqliteStore
from storefront.services.client_storage import ClientStorage
from storefront.services.models import Product
from storefront.services.storage import ObjectStorage

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def cfg(tmp_path):
    return dataclasses.replace(
        settings,
        store_name="Test Store",
        whatsapp_number="911234567890",
        currency_symbol="₹",
        decimals=2,
        db_path=str(tmp_path / "storefront.db"),
        media_dir=str(tmp_path / "media"),
        public_base_url="",
        secret_key="test-secret",
        session_ttl_hours=24.0,
        admin_email="",
        admin_password="",
    )


@pytest.fixture
def store(cfg):
    s = SqliteStore(cfg.db_path)
    s.init_db()
    return s


@pytest.fixture
def storage(store):
    return ClientStorage(store, "client-1")


@pytest.fixture
def objects(cfg):
    return ObjectStorage(cfg.media_dir)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def add_coupon(store):
    def _add(**overrides):
        row = {
            "code": "SAVE10",
            "discount_amount": 10,
            "is_percentage": True,
            "start_date": (NOW - timedelta(days=1)).isoformat(),
            "expiry_date": (NOW + timedelta(days=1)).isoformat(),
            "usage_limit": 5,
            "usage_count": 2,
            "active": True,
            "success_message": None,
        }
        row.update(overrides)
        return store.insert(COUPONS, row)

    return _add


@pytest.fixture
def add_product(store):
    def _add(name="Rice 1kg", price=60.0, **extra):
        row = store.insert(PRODUCTS, {"name": name, "price": price, **extra})
        return Product.from_row(row)

    return _add
