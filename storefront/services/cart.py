from __future__ import annotations

import logging
from typing import Callable, List, Optional, Tuple
from urllib.parse import quote

from storefront.config import Settings, settings
from storefront.constants import (
    COUPON_ALREADY_APPLIED,
    COUPON_NEEDS_ITEMS,
    KEY_APPLIED_COUPON,
    KEY_CART,
    KEY_CUSTOMER_INFO,
)
from storefront.services import pricing
from storefront.services.client_storage import ClientStorage
from storefront.services.models import CartEntry, CustomerInfo, Product
from storefront.services.pricing import AppliedCoupon
from storefront.utils.formatters import money

logger = logging.getLogger(__name__)

Notifier = Callable[[str], None]


def _silent(_: str) -> None:
    return None


class CartStore:
    """
    Cart entries plus customer details for one client.

    State is loaded from the client's storage slot on construction and written
    back after every mutation. Entries are unique by product id and never
    hold a quantity below 1.
    """

    def __init__(
        self,
        storage: ClientStorage,
        notify: Notifier = _silent,
        cfg: Settings = settings,
    ) -> None:
        self.storage = storage
        self.notify = notify
        self.cfg = cfg
        self.entries: List[CartEntry] = self._load_entries()
        self.customer_info: Optional[CustomerInfo] = self._load_customer_info()

    # ---------------- persistence ----------------

    def _load_entries(self) -> List[CartEntry]:
        raw = self.storage.get_json(KEY_CART)
        if raw is None:
            return []
        try:
            entries = [CartEntry.from_dict(d) for d in raw]
        except (KeyError, TypeError, ValueError):
            logger.warning("saved cart for %s is malformed, starting empty", self.storage.client_id)
            return []

        seen = set()
        out = []
        for e in entries:
            if e.product.id in seen:
                continue
            seen.add(e.product.id)
            out.append(e)
        return out

    def _load_customer_info(self) -> Optional[CustomerInfo]:
        raw = self.storage.get_json(KEY_CUSTOMER_INFO)
        if raw is None:
            return None
        try:
            return CustomerInfo.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("saved customer info for %s is malformed", self.storage.client_id)
            return None

    def _save(self) -> None:
        self.storage.set_json(KEY_CART, [e.to_dict() for e in self.entries])

    # ---------------- mutations ----------------

    def add_to_cart(self, product: Product) -> None:
        for i, e in enumerate(self.entries):
            if e.product.id == product.id:
                self.entries[i] = CartEntry(product=e.product, quantity=e.quantity + 1)
                break
        else:
            self.entries.append(CartEntry(product=product, quantity=1))
        self._save()
        self.notify(f"Added {product.name} to cart")

    def remove_from_cart(self, product_id: str) -> None:
        self.entries = [e for e in self.entries if e.product.id != product_id]
        self._save()

    def update_quantity(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove_from_cart(product_id)
            return
        self.entries = [
            CartEntry(product=e.product, quantity=quantity) if e.product.id == product_id else e
            for e in self.entries
        ]
        self._save()

    def clear_cart(self) -> None:
        self.entries = []
        self._save()

    def set_customer_info(self, info: CustomerInfo) -> None:
        self.customer_info = info
        self.storage.set_json(KEY_CUSTOMER_INFO, info.to_dict())

    def apply_coupon(self, applied: AppliedCoupon) -> None:
        self.storage.set_json(KEY_APPLIED_COUPON, applied.to_dict())

    def remove_coupon(self) -> None:
        self.storage.remove(KEY_APPLIED_COUPON)

    # ---------------- reads ----------------

    def get_cart_total(self) -> float:
        return pricing.subtotal(self.entries)

    def item_count(self) -> int:
        return sum(e.quantity for e in self.entries)

    def is_empty(self) -> bool:
        return not self.entries

    def can_apply_coupon(self) -> Tuple[bool, str]:
        """One coupon per cart, and only once there is something to discount."""
        if self.is_empty():
            return False, COUPON_NEEDS_ITEMS
        if self.applied_coupon() is not None:
            return False, COUPON_ALREADY_APPLIED
        return True, ""

    def applied_coupon(self) -> Optional[AppliedCoupon]:
        raw = self.storage.get_json(KEY_APPLIED_COUPON)
        if raw is None:
            return None
        try:
            return AppliedCoupon.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("saved coupon for %s is malformed, dropping it", self.storage.client_id)
            self.storage.remove(KEY_APPLIED_COUPON)
            return None

    def generate_checkout_message(self, applied_coupon: Optional[AppliedCoupon] = None) -> str:
        if not self.entries:
            return ""

        cfg = self.cfg
        lines = [f"🛒 *New Order from {cfg.store_name}* 🛒", ""]

        if self.customer_info:
            lines += [
                "*Customer Details*",
                f"Name: {self.customer_info.name}",
                f"Phone: {self.customer_info.phone}",
                f"Address: {self.customer_info.address}",
                "",
            ]

        lines.append("*Order Summary*")
        for n, e in enumerate(self.entries, start=1):
            lines.append(
                f"{n}. {e.product.name} - {money(e.product.price, cfg)} x {e.quantity} "
                f"= {money(pricing.line_total(e), cfg)}"
            )

        sub = self.get_cart_total()
        lines += ["", f"Subtotal: {money(sub, cfg)}"]
        if applied_coupon is not None:
            disc = pricing.discount_amount(sub, applied_coupon)
            lines.append(f"Discount ({applied_coupon.code}): -{money(disc, cfg)}")
        lines += [
            f"*Total Amount: {money(pricing.final_total(sub, applied_coupon), cfg)}*",
            "",
            "Thank you for your order!",
        ]

        text = "\n".join(lines)
        return f"https://wa.me/{cfg.whatsapp_number}?text={quote(text, safe='')}"
