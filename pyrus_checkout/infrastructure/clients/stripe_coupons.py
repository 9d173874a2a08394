"""Coupon lookup against Stripe promotion codes, with the configured table as fallback"""

import asyncio
import logging
from decimal import Decimal
from typing import Optional

import stripe

from pyrus_checkout.config import settings
from pyrus_checkout.domain.coupons import StaticCouponTable, normalize_code
from pyrus_checkout.domain.exceptions import CouponLookupFailed
from pyrus_checkout.domain.models import Coupon
from pyrus_checkout.infrastructure.clients.stripe_processor import require_stripe

logger = logging.getLogger(__name__)


class StripeCouponLookup:
    """Remote coupon table"""

    def __init__(self, fallback: StaticCouponTable, timeout: float | None = None):
        self.fallback = fallback
        self.timeout = timeout or settings.stripe_api_timeout_seconds

    async def lookup(self, code: str) -> Optional[Coupon]:
        """
        Active percent-off promotion code in Stripe, else the static table.

        Amount-off coupons are not supported and read as unknown.

        Raises:
            CouponLookupFailed: Stripe unreachable or timed out
        """
        normalized = normalize_code(code)
        require_stripe()
        try:
            promo_codes = await asyncio.wait_for(
                asyncio.to_thread(
                    stripe.PromotionCode.list,
                    code=normalized,
                    active=True,
                    limit=1,
                    expand=["data.coupon"],
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise CouponLookupFailed(f"Coupon service timeout after {self.timeout}s") from e
        except stripe.StripeError as e:
            logger.error(f"Stripe coupon lookup failed: {e}")
            raise CouponLookupFailed("Failed to validate coupon") from e

        data = promo_codes["data"]
        if data:
            coupon = data[0]["coupon"]
            if coupon["valid"] and coupon["percent_off"]:
                static = await self.fallback.lookup(normalized)
                return Coupon(
                    code=normalized,
                    discount_percent=int(coupon["percent_off"]),
                    min_monthly_spend=static.min_monthly_spend if static else Decimal(0),
                )
            return None

        return await self.fallback.lookup(normalized)
