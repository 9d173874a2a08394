"""Pydantic schemas for API request/response validation"""

from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pyrus_checkout.domain.checkout import CheckoutSession, PaymentMethod
from pyrus_checkout.domain.models import BundleProduct, CartItem, PaymentQuote


class BundleProductSchema(BaseModel):
    """Constituent product of a bundle"""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    monthly_price: Decimal = Field(Decimal(0), ge=0, alias="monthlyPrice")


class CartItemSchema(BaseModel):
    """Cart line in the builder's camelCase shape"""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    quantity: int = Field(..., gt=0)
    monthly_price: Decimal = Field(Decimal(0), ge=0, alias="monthlyPrice")
    onetime_price: Decimal = Field(Decimal(0), ge=0, alias="onetimePrice")
    pricing_type: Literal["monthly", "onetime"] = Field("monthly", alias="pricingType")
    category: Optional[str] = None
    bundle_products: List[BundleProductSchema] = Field(default_factory=list, alias="bundleProducts")
    full_price: Optional[Decimal] = Field(None, ge=0, alias="fullPrice")
    is_free: bool = Field(False, alias="isFree")
    free_quantity: int = Field(0, ge=0, alias="freeQuantity")

    @model_validator(mode="after")
    def free_quantity_within_quantity(self) -> "CartItemSchema":
        if self.free_quantity > self.quantity:
            raise ValueError("freeQuantity cannot exceed quantity")
        return self

    def to_domain(self) -> CartItem:
        return CartItem(
            id=self.id,
            name=self.name,
            description=self.description,
            quantity=self.quantity,
            monthly_price=self.monthly_price,
            onetime_price=self.onetime_price,
            pricing_type=self.pricing_type,
            category=self.category,
            bundle_products=[
                BundleProduct(id=p.id, name=p.name, monthly_price=p.monthly_price)
                for p in self.bundle_products
            ],
            full_price=self.full_price,
            is_free=self.is_free,
            free_quantity=self.free_quantity,
        )

    @classmethod
    def from_domain(cls, item: CartItem) -> "CartItemSchema":
        return cls(
            id=item.id,
            name=item.name,
            description=item.description,
            quantity=item.quantity,
            monthly_price=item.monthly_price,
            onetime_price=item.onetime_price,
            pricing_type=item.pricing_type,
            category=item.category,
            bundle_products=[
                BundleProductSchema(id=p.id, name=p.name, monthly_price=p.monthly_price)
                for p in item.bundle_products
            ],
            full_price=item.full_price,
            is_free=item.is_free,
            free_quantity=item.free_quantity,
        )


class CartRequest(BaseModel):
    """Request body for PUT /v1/cart/{client_id}/{tier}"""

    items: List[CartItemSchema]


class CartResponse(BaseModel):
    """Response for cart endpoints"""

    client_id: str
    tier: str
    items: List[CartItemSchema]


class CouponRequest(BaseModel):
    """Request body for POST .../coupon"""

    code: str


class PaymentMethodRequest(BaseModel):
    """Request body for POST .../payment-method"""

    method: PaymentMethod
    payment_method_id: Optional[str] = None

    @model_validator(mode="after")
    def saved_card_needs_id(self) -> "PaymentMethodRequest":
        if self.method == PaymentMethod.CARD_ON_FILE and not self.payment_method_id:
            raise ValueError("payment_method_id is required for card_on_file")
        return self


class QuoteSchema(BaseModel):
    """Quote as shown on the checkout page"""

    full_price_monthly: Decimal
    bundle_savings: Decimal
    free_items_value: Decimal
    monthly_total: Decimal
    onetime_total: Decimal
    due_today: Decimal
    coupon_code: Optional[str] = None
    discount_percent: int = 0
    coupon_discount: Decimal
    final_due_today: Decimal
    recurring_amount: Decimal

    @classmethod
    def from_domain(cls, quote: PaymentQuote) -> "QuoteSchema":
        return cls(
            full_price_monthly=quote.full_price_monthly,
            bundle_savings=quote.bundle_savings,
            free_items_value=quote.free_items_value,
            monthly_total=quote.monthly_total,
            onetime_total=quote.onetime_total,
            due_today=quote.due_today,
            coupon_code=quote.coupon.code if quote.coupon else None,
            discount_percent=quote.coupon.discount_percent if quote.coupon else 0,
            coupon_discount=quote.coupon_discount,
            final_due_today=quote.final_due_today,
            recurring_amount=quote.recurring_amount,
        )


class CheckoutResponse(BaseModel):
    """Current checkout state"""

    client_id: str
    tier: str
    state: str
    quote: Optional[QuoteSchema] = None
    payment_method: Optional[str] = None
    client_secret: Optional[str] = None
    error: Optional[str] = None
    capture_status: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def from_session(cls, session: CheckoutSession, **extra) -> "CheckoutResponse":
        return cls(
            client_id=session.client_id,
            tier=session.tier,
            state=session.state.value,
            quote=QuoteSchema.from_domain(session.quote) if session.quote else None,
            payment_method=session.payment_method.value if session.payment_method else None,
            client_secret=session.client_secret,
            error=session.last_error,
            **extra,
        )


class SettlementItem(BaseModel):
    """Single settlement in history"""

    settlement_id: str
    tier: str
    final_amount: Decimal
    recurring_amount: Decimal
    payment_path: str
    coupon_code: Optional[str] = None
    created_at: str


class SettlementHistoryResponse(BaseModel):
    """Response for GET /v1/settlements"""

    client_id: str
    settlements: List[SettlementItem]
