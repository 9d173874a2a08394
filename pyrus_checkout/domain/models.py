"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple, Union


ZERO = Decimal("0")


@dataclass
class BundleProduct:
    """Constituent product of a bundle"""

    id: str
    name: str
    monthly_price: Decimal


@dataclass
class CartItem:
    """Cart line as produced by the recommendation/cart builder"""

    id: str
    name: str
    quantity: int
    monthly_price: Decimal
    onetime_price: Decimal
    pricing_type: str  # "monthly" or "onetime"
    description: str = ""
    category: Optional[str] = None
    bundle_products: List[BundleProduct] = field(default_factory=list)
    full_price: Optional[Decimal] = None
    is_free: bool = False
    free_quantity: int = 0


@dataclass(frozen=True)
class MonthlyLineItem:
    """Recurring line billed every cycle, first cycle due today"""

    id: str
    name: str
    price: Decimal
    quantity: int
    description: str = ""
    is_bundle: bool = False
    full_price: Optional[Decimal] = None
    bundle_products: Tuple[BundleProduct, ...] = ()
    is_free: bool = False
    free_quantity: int = 0


@dataclass(frozen=True)
class OneTimeLineItem:
    """Setup fee or other one-off charge, billed on the first invoice only"""

    id: str
    name: str
    price: Decimal
    quantity: int
    description: str = ""


LineItem = Union[MonthlyLineItem, OneTimeLineItem]


@dataclass(frozen=True)
class Coupon:
    """Coupon table entry"""

    code: str
    discount_percent: int
    min_monthly_spend: Decimal = ZERO


@dataclass(frozen=True)
class CouponApplication:
    """Validated coupon and the amount it takes off due today"""

    code: str
    discount_percent: int
    amount: Decimal


@dataclass(frozen=True)
class PriceBreakdown:
    """Pre-coupon cart figures"""

    full_price_monthly: Decimal
    bundle_savings: Decimal
    free_items_value: Decimal
    monthly_total: Decimal
    onetime_total: Decimal
    due_today: Decimal


@dataclass(frozen=True)
class PaymentQuote:
    """Everything the customer sees before paying"""

    full_price_monthly: Decimal
    bundle_savings: Decimal
    free_items_value: Decimal
    monthly_total: Decimal
    onetime_total: Decimal
    due_today: Decimal
    coupon_discount: Decimal
    final_due_today: Decimal
    coupon: Optional[CouponApplication] = None

    @property
    def recurring_amount(self) -> Decimal:
        """Amount billed on every later cycle (coupons never apply)"""
        return self.monthly_total


@dataclass(frozen=True)
class PaymentIntentHandle:
    """Processor authorization bound to a single amount"""

    intent_id: str
    client_secret: str
    amount_cents: int


class CaptureStatus(str, Enum):
    SUCCEEDED = "succeeded"
    REQUIRES_ACTION = "requires_action"
    ERROR = "error"


@dataclass(frozen=True)
class CaptureResult:
    """Outcome reported by the processor for a capture attempt"""

    status: CaptureStatus
    message: Optional[str] = None
    reference: Optional[str] = None
    client_secret: Optional[str] = None  # needed by the capture surface for step-up


@dataclass(frozen=True)
class SettlementRecord:
    """Emitted once per checkout when the charge (or free order) completes"""

    client_id: str
    tier: str
    final_amount: Decimal
    recurring_amount: Decimal
    payment_path: str  # "new_card", "card_on_file" or "no_payment"
    coupon_code: Optional[str] = None
    processor_reference: Optional[str] = None


@dataclass
class ClientProfile:
    """Client record fields checkout reads"""

    id: str
    name: str
    contact_email: Optional[str] = None
    growth_stage: Optional[str] = None
    stripe_customer_id: Optional[str] = None
