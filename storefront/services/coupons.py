from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from storefront.constants import COUPON_MESSAGES, COUPONS
from storefront.db.sqlite import SqliteStore, StoreError
from storefront.services.pricing import AppliedCoupon

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class CouponOutcome(str, enum.Enum):
    APPLIED = "applied"
    INVALID_CODE = "invalid_code"
    EXPIRED = "expired"
    LIMIT_REACHED = "limit_reached"


@dataclass(frozen=True)
class CouponValidation:
    outcome: CouponOutcome
    message: str
    applied: Optional[AppliedCoupon] = None
    coupon_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is CouponOutcome.APPLIED


def _failed(outcome: CouponOutcome) -> CouponValidation:
    return CouponValidation(outcome=outcome, message=COUPON_MESSAGES[outcome.value])


def canonical_code(raw: str) -> str:
    return (raw or "").strip().upper()


class CouponValidator:
    def __init__(self, store: SqliteStore, now: Clock = utc_now) -> None:
        self.store = store
        self.now = now

    def _lookup(self, code: str) -> Optional[Dict[str, Any]]:
        try:
            return self.store.select_one(COUPONS, {"code": code, "active": 1})
        except StoreError:
            logger.exception("coupon lookup failed for %s", code)
            return None

    def validate(self, raw_code: str) -> CouponValidation:
        code = canonical_code(raw_code)
        if not code:
            return _failed(CouponOutcome.INVALID_CODE)

        row = self._lookup(code)
        if row is None:
            return _failed(CouponOutcome.INVALID_CODE)

        try:
            start = parse_timestamp(row["start_date"])
            expiry = parse_timestamp(row["expiry_date"])
        except (TypeError, ValueError):
            logger.warning("coupon %s has unreadable dates", code)
            return _failed(CouponOutcome.INVALID_CODE)

        now = self.now()
        if now < start or now > expiry:
            return _failed(CouponOutcome.EXPIRED)

        limit = row.get("usage_limit")
        if limit is not None and int(row.get("usage_count") or 0) >= int(limit):
            return _failed(CouponOutcome.LIMIT_REACHED)

        applied = AppliedCoupon(
            code=str(row["code"]),
            discount_amount=float(row["discount_amount"]),
            is_percentage=bool(row["is_percentage"]),
        )
        return CouponValidation(
            outcome=CouponOutcome.APPLIED,
            message=row.get("success_message") or COUPON_MESSAGES["applied"],
            applied=applied,
            coupon_id=str(row["id"]),
        )

    def record_usage(self, coupon_id: str) -> None:
        """Bump usage_count after a successful apply. Failures are only logged."""
        try:
            if not self.store.increment(COUPONS, coupon_id, "usage_count"):
                logger.warning("coupon %s vanished before usage was recorded", coupon_id)
        except StoreError:
            logger.exception("failed to record usage for coupon %s", coupon_id)
