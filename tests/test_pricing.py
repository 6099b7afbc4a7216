import copy

import pytest

from storefront.services import pricing
from storefront.services.models import CartEntry, Product
from storefront.services.pricing import AppliedCoupon


def _entry(pid, price, qty):
    return CartEntry(product=Product(id=pid, name=f"p{pid}", price=price), quantity=qty)


def test_subtotal_empty_cart_is_zero():
    assert pricing.subtotal([]) == 0


def test_subtotal_sums_price_times_quantity():
    entries = [_entry("a", 40.0, 2), _entry("b", 12.5, 3), _entry("c", 150.0, 1)]
    assert pricing.line_total(entries[1]) == 37.5
    assert pricing.subtotal(entries) == 40.0 * 2 + 12.5 * 3 + 150.0


def test_no_coupon_means_no_discount():
    assert pricing.discount_amount(500.0, None) == 0
    assert pricing.final_total(500.0, None) == 500.0


@pytest.mark.parametrize("sub,d", [(500.0, 10), (123.4, 33), (80.0, 100), (0.0, 50)])
def test_percentage_discount(sub, d):
    coupon = AppliedCoupon(code="P", discount_amount=d, is_percentage=True)
    assert pricing.discount_amount(sub, coupon) == sub * d / 100
    assert pricing.final_total(sub, coupon) >= 0


@pytest.mark.parametrize("sub,d,expected", [(500.0, 100, 100), (60.0, 100, 60.0), (0.0, 25, 0.0)])
def test_fixed_discount_is_capped_at_subtotal(sub, d, expected):
    coupon = AppliedCoupon(code="F", discount_amount=d, is_percentage=False)
    assert pricing.discount_amount(sub, coupon) == expected
    assert pricing.discount_amount(sub, coupon) <= sub
    assert pricing.final_total(sub, coupon) >= 0


def test_pricing_does_not_touch_inputs():
    entries = [_entry("a", 40.0, 2)]
    before = copy.deepcopy(entries)
    coupon = AppliedCoupon(code="SAVE10", discount_amount=10, is_percentage=True)
    first = pricing.final_total(pricing.subtotal(entries), coupon)
    second = pricing.final_total(pricing.subtotal(entries), coupon)
    assert first == second == 72.0
    assert entries == before


def test_applied_coupon_dict_shape():
    coupon = AppliedCoupon(code="SAVE10", discount_amount=10.0, is_percentage=True)
    assert coupon.to_dict() == {"code": "SAVE10", "discountAmount": 10.0, "isPercentage": True}
    assert AppliedCoupon.from_dict(coupon.to_dict()) == coupon
