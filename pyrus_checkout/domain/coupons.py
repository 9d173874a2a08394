"""Coupon validation and discount computation"""

from decimal import Decimal
from typing import Dict, Optional, Protocol

from pyrus_checkout.domain.exceptions import CouponMinimumNotMet, EmptyCoupon, InvalidCoupon
from pyrus_checkout.domain.models import Coupon, CouponApplication
from pyrus_checkout.utils.money import round_half_up


class CouponLookup(Protocol):
    """Coupon table. Implementations raise CouponLookupFailed when unreachable."""

    async def lookup(self, code: str) -> Optional[Coupon]:
        ...


class StaticCouponTable:
    """In-process coupon table built from configuration"""

    def __init__(self, codes: Dict[str, int], min_spend: Optional[Dict[str, int]] = None):
        min_spend = {normalize_code(k): v for k, v in (min_spend or {}).items()}
        self._coupons = {
            normalize_code(code): Coupon(
                code=normalize_code(code),
                discount_percent=percent,
                min_monthly_spend=Decimal(min_spend.get(normalize_code(code), 0)),
            )
            for code, percent in codes.items()
        }

    async def lookup(self, code: str) -> Optional[Coupon]:
        return self._coupons.get(normalize_code(code))


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def compute_discount(due_today: Decimal, discount_percent: int) -> Decimal:
    """
    Discount off due today, rounded half-up to the nearest currency unit.

    Example:
        1197 at 10% → 119.7 → 120
    """
    return round_half_up(due_today * discount_percent / Decimal(100))


class CouponEngine:
    """Validates coupon codes against an injected lookup"""

    def __init__(self, lookup: CouponLookup):
        self.lookup = lookup

    async def apply(
        self,
        code: str,
        due_today: Decimal,
        monthly_total: Optional[Decimal] = None,
    ) -> CouponApplication:
        """
        Validate a code and price its discount.

        Raises:
            EmptyCoupon: Code is blank
            InvalidCoupon: Code is not in the table
            CouponMinimumNotMet: Monthly spend below the coupon's minimum
            CouponLookupFailed: Table unreachable (raised by the lookup)
        """
        normalized = normalize_code(code)
        if not normalized:
            raise EmptyCoupon("Please enter a coupon code")

        coupon = await self.lookup.lookup(normalized)
        if coupon is None or not 1 <= coupon.discount_percent <= 100:
            raise InvalidCoupon(f"Coupon code {normalized} is not valid")

        if (
            monthly_total is not None
            and coupon.min_monthly_spend > 0
            and monthly_total < coupon.min_monthly_spend
        ):
            raise CouponMinimumNotMet(
                f"This coupon requires a minimum of ${coupon.min_monthly_spend}/mo "
                f"(current: ${monthly_total}/mo)"
            )

        return CouponApplication(
            code=normalized,
            discount_percent=coupon.discount_percent,
            amount=compute_discount(due_today, coupon.discount_percent),
        )
