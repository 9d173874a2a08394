"""Price aggregation - core business logic for cart totals"""

from decimal import Decimal
from typing import List

from pyrus_checkout.domain.models import (
    ZERO,
    LineItem,
    MonthlyLineItem,
    OneTimeLineItem,
    PriceBreakdown,
)


def _list_price(item: MonthlyLineItem) -> Decimal:
    """Per-unit price at list: bundles are listed at their full price"""
    if item.is_bundle and item.full_price is not None and item.full_price > 0:
        return item.full_price
    return item.price


def _bundle_savings(item: MonthlyLineItem) -> Decimal:
    if item.is_bundle and item.full_price is not None and item.full_price > 0:
        return (item.full_price - item.price) * item.quantity
    return ZERO


def _free_value(item: MonthlyLineItem) -> Decimal:
    """Complimentary value; a fully free item is never counted again per unit"""
    if item.is_free:
        return item.price * item.quantity
    if item.free_quantity > 0:
        return item.price * item.free_quantity
    return ZERO


def aggregate(items: List[LineItem]) -> PriceBreakdown:
    """
    Turn a cart into its pre-coupon figures.

    Requirements:
    - One-time items only feed onetime_total
    - full_price_monthly is what the customer would pay at list price
    - monthly_total = full - bundle savings - free value, clamped at zero
      only on the final figure so the intermediate terms stay auditable
    - due_today = one full recurring cycle plus one-time fees

    Example:
        bundle full 300 / price 250 + standalone 50
        → full 350, savings 50, monthly 300
    """
    full_price_monthly = ZERO
    bundle_savings = ZERO
    free_items_value = ZERO
    onetime_total = ZERO

    for item in items:
        if isinstance(item, OneTimeLineItem):
            if item.price > 0:
                onetime_total += item.price * item.quantity
            continue

        if item.price > 0:
            full_price_monthly += _list_price(item) * item.quantity
            bundle_savings += _bundle_savings(item)

        free_items_value += _free_value(item)

    monthly_total = max(ZERO, full_price_monthly - bundle_savings - free_items_value)

    return PriceBreakdown(
        full_price_monthly=full_price_monthly,
        bundle_savings=bundle_savings,
        free_items_value=free_items_value,
        monthly_total=monthly_total,
        onetime_total=onetime_total,
        due_today=monthly_total + onetime_total,
    )
