"""Checkout state machine - sequences quote, payment and settlement for one client/tier"""

import asyncio
import json
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol

from pyrus_checkout.domain.cart import to_line_items
from pyrus_checkout.domain.coupons import CouponEngine
from pyrus_checkout.domain.exceptions import (
    ClientNotFound,
    CouponError,
    EmptyCart,
    InvalidCheckoutTransition,
    PaymentDeclined,
    PaymentSetupFailed,
)
from pyrus_checkout.domain.intents import PaymentIntentOrchestrator
from pyrus_checkout.domain.models import (
    CaptureResult,
    CaptureStatus,
    CartItem,
    ClientProfile,
    CouponApplication,
    PaymentIntentHandle,
    PaymentQuote,
    PriceBreakdown,
    SettlementRecord,
)
from pyrus_checkout.domain.pricing import aggregate
from pyrus_checkout.domain.settlement import build_quote, requires_payment
from pyrus_checkout.utils.money import to_minor_units

logger = logging.getLogger(__name__)


class CheckoutState(str, Enum):
    LOADING = "loading"
    EMPTY_CART = "empty_cart"
    QUOTE_READY = "quote_ready"
    PAYMENT_METHOD_SELECTED = "payment_method_selected"
    CARD_CAPTURE_PENDING = "card_capture_pending"
    AUTHORIZING = "authorizing"
    SETTLED = "settled"
    POST_SETTLEMENT = "post_settlement"
    ERROR = "error"


class PaymentMethod(str, Enum):
    CARD_ON_FILE = "card_on_file"
    NEW_CARD = "new_card"


COUPON_STATES = {
    CheckoutState.QUOTE_READY,
    CheckoutState.PAYMENT_METHOD_SELECTED,
    CheckoutState.CARD_CAPTURE_PENDING,
}

METHOD_STATES = {
    CheckoutState.QUOTE_READY,
    CheckoutState.PAYMENT_METHOD_SELECTED,
    CheckoutState.CARD_CAPTURE_PENDING,
}


class CartStore(Protocol):
    def load_cart(self, client_id: str, tier: str) -> List[CartItem]:
        ...


class ClientRecords(Protocol):
    def get_client(self, client_id: str) -> Optional[ClientProfile]:
        ...

    def update_growth_stage(self, client_id: str, stage: str) -> None:
        ...

    def record_settlement(self, record: SettlementRecord) -> None:
        ...

    def set_stripe_customer_id(self, client_id: str, customer_id: str) -> None:
        ...


class OnboardingHandoff(Protocol):
    async def hand_off(self, record: SettlementRecord) -> None:
        ...


class CheckoutSession:
    """
    One authoritative checkout state per client and tier.

    Flow:
    1. load: fetch client + cart, price it (loading → quote_ready)
    2. select_payment_method: card on file or new card
    3. expand_card_form: new card only, first point the processor is contacted
    4. confirm: authorize (or settle directly when nothing is due)
    5. settlement side effects run exactly once
    """

    def __init__(
        self,
        client_id: str,
        tier: str,
        coupon_engine: CouponEngine,
        orchestrator: PaymentIntentOrchestrator,
        onboarding: OnboardingHandoff,
        settled_growth_stage: str = "onboarding",
    ):
        self.client_id = client_id
        self.tier = tier
        self.coupon_engine = coupon_engine
        self.orchestrator = orchestrator
        self.onboarding = onboarding
        self.settled_growth_stage = settled_growth_stage

        self.state = CheckoutState.LOADING
        self.client: Optional[ClientProfile] = None
        self.cart: List[CartItem] = []
        self.breakdown: Optional[PriceBreakdown] = None
        self.quote: Optional[PaymentQuote] = None
        self.payment_method: Optional[PaymentMethod] = None
        self.saved_payment_method_id: Optional[str] = None
        self.last_error: Optional[str] = None
        self.settlement: Optional[SettlementRecord] = None
        # Serializes every event on this checkout; nothing below is re-entrant
        self._lock = asyncio.Lock()

    # -- loading -----------------------------------------------------------

    def load(self, cart_store: CartStore, client_records: ClientRecords) -> PaymentQuote:
        """
        Raises:
            ClientNotFound: Unknown client
            EmptyCart: Nothing to settle (terminal)
        """
        self._require({CheckoutState.LOADING}, "load checkout")

        client = client_records.get_client(self.client_id)
        if client is None:
            raise ClientNotFound(f"Client {self.client_id} not found")
        self.client = client
        self.orchestrator.customer_id = client.stripe_customer_id

        self.cart = cart_store.load_cart(self.client_id, self.tier)
        if not self.cart:
            self.state = CheckoutState.EMPTY_CART
            raise EmptyCart(f"No items in cart for {self.client_id}/{self.tier}")

        self.breakdown = aggregate(to_line_items(self.cart))
        self.quote = build_quote(self.breakdown)
        self.state = CheckoutState.QUOTE_READY
        return self.quote

    # -- coupons -----------------------------------------------------------

    async def apply_coupon(self, code: str) -> PaymentQuote:
        """
        Raises:
            EmptyCoupon, InvalidCoupon, CouponMinimumNotMet: Input errors, quote unchanged
            CouponLookupFailed: Coupon table unreachable, quote unchanged
        """
        async with self._lock:
            self._require(COUPON_STATES, "apply a coupon")
            application = await self.coupon_engine.apply(
                code, self.breakdown.due_today, self.breakdown.monthly_total
            )
            await self._requote(application)
            return self.quote

    async def remove_coupon(self) -> PaymentQuote:
        async with self._lock:
            self._require(COUPON_STATES, "remove a coupon")
            await self._requote(None)
            return self.quote

    async def _requote(self, coupon: Optional[CouponApplication]) -> None:
        previous = self.quote
        self.quote = build_quote(self.breakdown, coupon)

        unchanged = (
            previous.final_due_today == self.quote.final_due_today
            and previous.coupon == self.quote.coupon
        )
        if unchanged:
            return

        await self.orchestrator.invalidate()
        if self.state == CheckoutState.AUTHORIZING:
            # Only reachable through settlement-time coupon re-validation
            if self.payment_method == PaymentMethod.NEW_CARD:
                self.state = CheckoutState.CARD_CAPTURE_PENDING
            else:
                self.state = CheckoutState.PAYMENT_METHOD_SELECTED
        if self.state == CheckoutState.CARD_CAPTURE_PENDING and requires_payment(self.quote):
            await self._reauthorize()

    async def _reauthorize(self) -> None:
        """Card form stays open on failure; confirm or the next change tries again"""
        try:
            await self.orchestrator.ensure_customer(self.client)
            await self.orchestrator.ensure_intent(self.amount_cents, self._metadata())
            self.last_error = None
        except PaymentSetupFailed as e:
            self.last_error = str(e)
            logger.warning(
                f"Re-authorization after quote change failed: {e}",
                extra={"client_id": self.client_id, "tier": self.tier},
            )

    # -- payment method ----------------------------------------------------

    async def select_payment_method(
        self, method: PaymentMethod, payment_method_id: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._require(METHOD_STATES, "choose a payment method")
            if method == PaymentMethod.CARD_ON_FILE and not payment_method_id:
                raise ValueError("A saved payment method id is required for card on file")

            if method == PaymentMethod.CARD_ON_FILE:
                # A capture form handle is never used for a saved card
                await self.orchestrator.invalidate()

            self.payment_method = method
            self.saved_payment_method_id = payment_method_id if method == PaymentMethod.CARD_ON_FILE else None
            self.state = CheckoutState.PAYMENT_METHOD_SELECTED

    async def expand_card_form(self) -> Optional[PaymentIntentHandle]:
        """
        Open the new-card capture form. Contacts the processor only now, and
        only when something is due.

        Raises:
            PaymentSetupFailed: Authorization could not be created (state → error)
        """
        async with self._lock:
            self._require({CheckoutState.PAYMENT_METHOD_SELECTED}, "open the card form")
            if self.payment_method != PaymentMethod.NEW_CARD:
                raise InvalidCheckoutTransition(self.state.value, "open the card form for a saved card")

            self.state = CheckoutState.CARD_CAPTURE_PENDING
            if not requires_payment(self.quote):
                return None
            return await self._authorize_current()

    async def retry(self) -> Optional[PaymentIntentHandle]:
        """Return from error to card capture and re-issue the authorization"""
        async with self._lock:
            self._require({CheckoutState.ERROR}, "retry payment")
            self.last_error = None

            if self.payment_method == PaymentMethod.CARD_ON_FILE:
                self.state = CheckoutState.PAYMENT_METHOD_SELECTED
                return None

            self.state = CheckoutState.CARD_CAPTURE_PENDING
            if not requires_payment(self.quote):
                return None
            return await self._authorize_current()

    async def _authorize_current(self) -> Optional[PaymentIntentHandle]:
        try:
            await self.orchestrator.ensure_customer(self.client)
            return await self.orchestrator.ensure_intent(self.amount_cents, self._metadata())
        except PaymentSetupFailed as e:
            self._fail(str(e))
            raise

    # -- confirmation ------------------------------------------------------

    async def confirm(
        self,
        client_records: ClientRecords,
        commit: Optional[Callable[[], None]] = None,
    ) -> CaptureResult:
        """
        User confirmed payment.

        - Nothing due: settle immediately, no processor round trip
        - Card on file: charge the saved method, or re-check an intent
          waiting on customer authentication
        - New card: check the capture on the live handle

        commit persists what settlement wrote to client_records; onboarding
        is only handed the settlement once it returns.

        Raises:
            InvalidCoupon, CouponMinimumNotMet: Coupon no longer valid; it is removed
            PaymentSetupFailed: Processor failure (state → error)
            PaymentDeclined: Processor rejected the charge (state → error)
        """
        async with self._lock:
            return await self._confirm(client_records, commit)

    async def _confirm(
        self,
        client_records: ClientRecords,
        commit: Optional[Callable[[], None]],
    ) -> CaptureResult:
        if self.state == CheckoutState.POST_SETTLEMENT:
            # Settled once; confirming again never charges twice
            return CaptureResult(status=CaptureStatus.SUCCEEDED, reference=self._reference())

        if self.state == CheckoutState.SETTLED:
            # Money moved but the settlement was never committed
            await self._post_settlement(client_records, commit)
            return CaptureResult(status=CaptureStatus.SUCCEEDED, reference=self._reference())

        self._require(
            {
                CheckoutState.QUOTE_READY,
                CheckoutState.PAYMENT_METHOD_SELECTED,
                CheckoutState.CARD_CAPTURE_PENDING,
                CheckoutState.AUTHORIZING,
            },
            "confirm payment",
        )

        await self._revalidate_coupon()

        if not requires_payment(self.quote):
            result = CaptureResult(status=CaptureStatus.SUCCEEDED)
            await self._settle("no_payment", result, client_records, commit)
            return result

        if self.payment_method is None or self.state == CheckoutState.QUOTE_READY:
            raise InvalidCheckoutTransition(self.state.value, "confirm payment without a payment method")

        if self.payment_method == PaymentMethod.NEW_CARD:
            result = await self._confirm_new_card()
        else:
            result = await self._confirm_card_on_file()

        if result.status == CaptureStatus.SUCCEEDED:
            await self._settle(self.payment_method.value, result, client_records, commit)
        elif result.status == CaptureStatus.REQUIRES_ACTION:
            logger.info(
                "Payment requires customer action",
                extra={"client_id": self.client_id, "tier": self.tier},
            )
        else:
            message = result.message or "Payment failed. Please try again."
            self._fail(message)
            raise PaymentDeclined(message)

        return result

    async def _confirm_new_card(self) -> CaptureResult:
        if self.state == CheckoutState.PAYMENT_METHOD_SELECTED:
            raise InvalidCheckoutTransition(self.state.value, "confirm before opening the card form")

        if self.orchestrator.handle_for(self.amount_cents) is None:
            handle = await self._authorize_current()
            if handle is None:
                raise PaymentSetupFailed("Payment is still being prepared, please try again in a moment")

        self.state = CheckoutState.AUTHORIZING
        try:
            return await self.orchestrator.capture(self.amount_cents)
        except PaymentSetupFailed as e:
            self._fail(str(e))
            raise

    async def _confirm_card_on_file(self) -> CaptureResult:
        self.state = CheckoutState.AUTHORIZING
        try:
            if self.orchestrator.handle_for(self.amount_cents) is not None:
                # Intent from an earlier charge is waiting on step-up
                return await self.orchestrator.capture(self.amount_cents)
            await self.orchestrator.ensure_customer(self.client)
            return await self.orchestrator.charge_saved_method(self.amount_cents, self.saved_payment_method_id)
        except PaymentSetupFailed as e:
            self._fail(str(e))
            raise

    async def _revalidate_coupon(self) -> None:
        """Coupons are checked again against the table before any money moves"""
        applied = self.quote.coupon
        if applied is None:
            return
        try:
            current = await self.coupon_engine.apply(
                applied.code, self.breakdown.due_today, self.breakdown.monthly_total
            )
        except CouponError:
            logger.warning(
                "Coupon no longer valid at settlement, removing",
                extra={"client_id": self.client_id, "coupon_code": applied.code},
            )
            await self._requote(None)
            raise
        if current != applied:
            await self._requote(current)

    # -- settlement --------------------------------------------------------

    async def _settle(
        self,
        payment_path: str,
        result: CaptureResult,
        client_records: ClientRecords,
        commit: Optional[Callable[[], None]],
    ) -> None:
        self.state = CheckoutState.SETTLED
        self.settlement = SettlementRecord(
            client_id=self.client_id,
            tier=self.tier,
            final_amount=self.quote.final_due_today,
            recurring_amount=self.quote.recurring_amount,
            payment_path=payment_path,
            coupon_code=self.quote.coupon.code if self.quote.coupon else None,
            processor_reference=result.reference,
        )
        await self._post_settlement(client_records, commit)

    async def _post_settlement(
        self,
        client_records: ClientRecords,
        commit: Optional[Callable[[], None]],
    ) -> None:
        """
        Fires once: record, move the client's lifecycle stage, commit, then
        hand off to onboarding. A failed commit leaves the session settled so
        confirming again writes the records again. The cart is kept;
        onboarding still reads it.
        """
        if self.state != CheckoutState.SETTLED:
            return

        client_records.record_settlement(self.settlement)
        client_records.update_growth_stage(self.client_id, self.settled_growth_stage)
        customer_id = self.orchestrator.customer_id
        if customer_id and customer_id != self.client.stripe_customer_id:
            client_records.set_stripe_customer_id(self.client_id, customer_id)
        if commit is not None:
            commit()

        self.state = CheckoutState.POST_SETTLEMENT
        await self.onboarding.hand_off(self.settlement)

        logger.info(
            "Checkout settled",
            extra={
                "client_id": self.client_id,
                "tier": self.tier,
                "payment_path": self.settlement.payment_path,
                "final_amount": str(self.settlement.final_amount),
            },
        )

    # -- helpers -----------------------------------------------------------

    @property
    def amount_cents(self) -> int:
        return to_minor_units(self.quote.final_due_today)

    @property
    def client_secret(self) -> Optional[str]:
        if self.quote is None:
            return None
        handle = self.orchestrator.handle_for(self.amount_cents)
        return handle.client_secret if handle else None

    def _metadata(self) -> Dict[str, str]:
        coupon = self.quote.coupon
        return {
            "pyrus_client_id": self.client_id,
            "tier": self.tier,
            "items": json.dumps([{"id": i.id, "name": i.name, "qty": i.quantity} for i in self.cart]),
            "coupon_code": coupon.code if coupon else "",
            "discount_percent": str(coupon.discount_percent) if coupon else "0",
        }

    def _reference(self) -> Optional[str]:
        return self.settlement.processor_reference if self.settlement else None

    def _fail(self, message: str) -> None:
        self.state = CheckoutState.ERROR
        self.last_error = message
        logger.warning(
            f"Checkout payment error: {message}",
            extra={"client_id": self.client_id, "tier": self.tier},
        )

    def _require(self, allowed, event: str) -> None:
        if self.state not in allowed:
            raise InvalidCheckoutTransition(self.state.value, event)
