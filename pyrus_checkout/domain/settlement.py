"""Settlement totals: what is charged today and what recurs"""

from typing import Optional

from pyrus_checkout.domain.models import ZERO, CouponApplication, PaymentQuote, PriceBreakdown


def build_quote(
    breakdown: PriceBreakdown,
    coupon: Optional[CouponApplication] = None,
) -> PaymentQuote:
    """
    Combine aggregator output with an optional coupon.

    Requirements:
    - final_due_today = max(0, due_today - coupon discount)
    - Coupons never touch monthly_total, which is the recurring amount
    - Without a coupon the quote is exactly the pre-coupon quote
    """
    coupon_discount = coupon.amount if coupon else ZERO
    final_due_today = max(ZERO, breakdown.due_today - coupon_discount)

    return PaymentQuote(
        full_price_monthly=breakdown.full_price_monthly,
        bundle_savings=breakdown.bundle_savings,
        free_items_value=breakdown.free_items_value,
        monthly_total=breakdown.monthly_total,
        onetime_total=breakdown.onetime_total,
        due_today=breakdown.due_today,
        coupon_discount=coupon_discount,
        final_due_today=final_due_today,
        coupon=coupon,
    )


def requires_payment(quote: PaymentQuote) -> bool:
    """Zero-amount orders settle without contacting the processor"""
    return quote.final_due_today > 0
