"""Decoding of builder cart payloads into priced line items"""

import logging
from typing import Any, Dict, List

from pyrus_checkout.domain.models import (
    BundleProduct,
    CartItem,
    LineItem,
    MonthlyLineItem,
    OneTimeLineItem,
)
from pyrus_checkout.utils.money import to_decimal

logger = logging.getLogger(__name__)


def parse_cart_item(data: Dict[str, Any]) -> CartItem:
    """
    Build a CartItem from the builder's camelCase JSON shape.

    Raises:
        KeyError, ValueError: On a payload the builder could not have produced
    """
    return CartItem(
        id=str(data["id"]),
        name=data.get("name") or "",
        description=data.get("description") or "",
        quantity=int(data.get("quantity") or 1),
        monthly_price=to_decimal(data.get("monthlyPrice")),
        onetime_price=to_decimal(data.get("onetimePrice")),
        pricing_type=data.get("pricingType") or "monthly",
        category=data.get("category"),
        bundle_products=[
            BundleProduct(
                id=str(p.get("id", "")),
                name=p.get("name") or "",
                monthly_price=to_decimal(p.get("monthlyPrice")),
            )
            for p in data.get("bundleProducts") or []
        ],
        full_price=to_decimal(data["fullPrice"]) if data.get("fullPrice") is not None else None,
        is_free=bool(data.get("isFree", False)),
        free_quantity=int(data.get("freeQuantity") or 0),
    )


def parse_cart(items: List[Dict[str, Any]]) -> List[CartItem]:
    return [parse_cart_item(item) for item in items]


def to_line_item(item: CartItem) -> LineItem:
    """
    Select the one price that applies to this purchase.

    pricing_type is the only selector: an item carrying both prices becomes
    either a MonthlyLineItem or a OneTimeLineItem, never both.
    """
    if item.pricing_type == "onetime":
        return OneTimeLineItem(
            id=item.id,
            name=item.name,
            description=item.description,
            price=item.onetime_price,
            quantity=item.quantity,
        )

    free_quantity = item.free_quantity
    if free_quantity > item.quantity:
        logger.warning(
            "Free quantity exceeds quantity, clamping",
            extra={"item_id": item.id, "quantity": item.quantity, "free_quantity": free_quantity},
        )
        free_quantity = item.quantity

    return MonthlyLineItem(
        id=item.id,
        name=item.name,
        description=item.description,
        price=item.monthly_price,
        quantity=item.quantity,
        is_bundle=item.category == "bundle",
        full_price=item.full_price,
        bundle_products=tuple(item.bundle_products),
        is_free=item.is_free,
        free_quantity=max(free_quantity, 0),
    )


def to_line_items(items: List[CartItem]) -> List[LineItem]:
    return [to_line_item(item) for item in items]


def serialize_cart_item(item: CartItem) -> Dict[str, Any]:
    """Inverse of parse_cart_item, used by the cart store"""
    data: Dict[str, Any] = {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "quantity": item.quantity,
        "monthlyPrice": str(item.monthly_price),
        "onetimePrice": str(item.onetime_price),
        "pricingType": item.pricing_type,
        "isFree": item.is_free,
        "freeQuantity": item.free_quantity,
    }
    if item.category is not None:
        data["category"] = item.category
    if item.full_price is not None:
        data["fullPrice"] = str(item.full_price)
    if item.bundle_products:
        data["bundleProducts"] = [
            {"id": p.id, "name": p.name, "monthlyPrice": str(p.monthly_price)}
            for p in item.bundle_products
        ]
    return data
