from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from storefront.services.models import CartEntry


@dataclass(frozen=True)
class AppliedCoupon:
    """Discount terms captured when the coupon was validated."""

    code: str
    discount_amount: float
    is_percentage: bool

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "discountAmount": self.discount_amount,
            "isPercentage": self.is_percentage,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AppliedCoupon":
        return cls(
            code=str(data["code"]),
            discount_amount=float(data["discountAmount"]),
            is_percentage=bool(data["isPercentage"]),
        )


def line_total(entry: CartEntry) -> float:
    return entry.product.price * entry.quantity


def subtotal(entries: Iterable[CartEntry]) -> float:
    return sum((line_total(e) for e in entries), 0.0)


def discount_amount(sub: float, coupon: Optional[AppliedCoupon]) -> float:
    if coupon is None:
        return 0.0
    if coupon.is_percentage:
        return sub * coupon.discount_amount / 100
    # fixed discount never takes the total below zero
    return min(coupon.discount_amount, sub)


def final_total(sub: float, coupon: Optional[AppliedCoupon]) -> float:
    return sub - discount_amount(sub, coupon)
