"""Unit tests for the checkout state machine"""

import asyncio
import pytest
from decimal import Decimal
from typing import Dict, Optional
from pyrus_checkout.domain.checkout import CheckoutSession, CheckoutState, PaymentMethod
from pyrus_checkout.domain.coupons import CouponEngine
from pyrus_checkout.domain.exceptions import (
    ClientNotFound,
    EmptyCart,
    InvalidCheckoutTransition,
    InvalidCoupon,
    PaymentDeclined,
    PaymentSetupFailed,
)
from pyrus_checkout.domain.intents import PaymentIntentOrchestrator
from pyrus_checkout.domain.models import CaptureStatus, ClientProfile, Coupon
from conftest import FakeCartStore, FakeClientRecords, monthly_item, onetime_item


class MutableCouponTable:
    """Coupon table whose entries can be withdrawn mid-checkout"""

    def __init__(self, codes: Dict[str, int]):
        self.codes = dict(codes)

    async def lookup(self, code: str) -> Optional[Coupon]:
        if code not in self.codes:
            return None
        return Coupon(code=code, discount_percent=self.codes[code])


@pytest.fixture
def cart_store() -> FakeCartStore:
    return FakeCartStore([monthly_item("seo", 499, 1), monthly_item("ppc", 349, 2)])


@pytest.fixture
def session(processor, coupon_engine, onboarding) -> CheckoutSession:
    return CheckoutSession(
        client_id="client_1",
        tier="growth",
        coupon_engine=coupon_engine,
        orchestrator=PaymentIntentOrchestrator(processor),
        onboarding=onboarding,
    )


def test_load_prices_cart(session, cart_store, client_records, processor):
    """Loading a cart reaches quote_ready without touching the processor"""
    quote = session.load(cart_store, client_records)

    assert session.state == CheckoutState.QUOTE_READY
    assert quote.monthly_total == Decimal("1197")
    assert quote.final_due_today == Decimal("1197")
    assert processor.total_calls == 0


def test_empty_cart_is_terminal(session, client_records, processor):
    with pytest.raises(EmptyCart):
        session.load(FakeCartStore([]), client_records)

    assert session.state == CheckoutState.EMPTY_CART
    assert processor.total_calls == 0


def test_unknown_client(session, cart_store, client_records):
    client_records.client = None
    with pytest.raises(ClientNotFound):
        session.load(cart_store, client_records)


async def test_processor_contacted_only_when_card_form_opens(session, cart_store, client_records, processor):
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.NEW_CARD)
    assert processor.total_calls == 0

    handle = await session.expand_card_form()

    assert session.state == CheckoutState.CARD_CAPTURE_PENDING
    assert handle.amount_cents == 119700
    assert session.client_secret == "pi_1_secret"
    assert handle.intent_id == processor.created[0].intent_id


async def test_coupon_during_card_capture_reissues_authorization(session, cart_store, client_records, processor):
    """1197 with 10% off: the 1197 handle is cancelled and a 1077 one replaces it"""
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.NEW_CARD)
    await session.expand_card_form()

    quote = await session.apply_coupon("save10")

    assert quote.coupon_discount == Decimal("120")
    assert quote.final_due_today == Decimal("1077")
    assert processor.cancelled == ["pi_1"]
    assert [h.amount_cents for h in processor.live] == [107700]
    assert session.client_secret == "pi_2_secret"
    assert session.state == CheckoutState.CARD_CAPTURE_PENDING


async def test_invalid_coupon_leaves_quote_untouched(session, cart_store, client_records, processor):
    session.load(cart_store, client_records)
    before = session.quote

    with pytest.raises(InvalidCoupon):
        await session.apply_coupon("BOGUS")

    assert session.quote == before
    assert processor.total_calls == 0


async def test_reapplying_same_coupon_does_not_reauthorize(session, cart_store, client_records, processor):
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.NEW_CARD)
    await session.expand_card_form()
    await session.apply_coupon("SAVE10")
    await session.apply_coupon("SAVE10")

    assert len(processor.created) == 2


async def test_full_discount_settles_without_processor(session, cart_store, client_records, processor, onboarding):
    """100% coupon: settled with zero processor calls"""
    session.load(cart_store, client_records)
    await session.apply_coupon("TEST2")

    result = await session.confirm(client_records)

    assert result.status == CaptureStatus.SUCCEEDED
    assert session.state == CheckoutState.POST_SETTLEMENT
    assert processor.total_calls == 0
    assert client_records.settlements[0].payment_path == "no_payment"
    assert client_records.settlements[0].final_amount == 0
    assert client_records.settlements[0].recurring_amount == Decimal("1197")
    assert len(onboarding.handoffs) == 1


async def test_zero_total_with_card_form_open_settles(session, client_records, processor):
    session.load(FakeCartStore([monthly_item("audit", 0, 1)]), client_records)
    await session.select_payment_method(PaymentMethod.NEW_CARD)

    assert await session.expand_card_form() is None
    await session.confirm(client_records)

    assert session.state == CheckoutState.POST_SETTLEMENT
    assert processor.total_calls == 0


async def test_card_on_file_charges_saved_method(session, cart_store, client_records, processor):
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.CARD_ON_FILE, "pm_saved")

    result = await session.confirm(client_records)

    assert result.status == CaptureStatus.SUCCEEDED
    assert processor.charges == [(119700, "pm_saved")]
    assert processor.created == []
    assert client_records.settlements[0].payment_path == "card_on_file"
    assert client_records.settlements[0].processor_reference == "pi_saved_1"


async def test_card_on_file_requires_id(session, cart_store, client_records):
    session.load(cart_store, client_records)
    with pytest.raises(ValueError):
        await session.select_payment_method(PaymentMethod.CARD_ON_FILE)


async def test_switching_to_card_on_file_cancels_capture_handle(session, cart_store, client_records, processor):
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.NEW_CARD)
    await session.expand_card_form()

    await session.select_payment_method(PaymentMethod.CARD_ON_FILE, "pm_saved")

    assert processor.live == []
    assert session.state == CheckoutState.PAYMENT_METHOD_SELECTED


async def test_new_card_settles_and_fires_side_effects(session, cart_store, client_records, processor, onboarding):
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.NEW_CARD)
    await session.expand_card_form()

    result = await session.confirm(client_records)

    assert result.status == CaptureStatus.SUCCEEDED
    assert session.state == CheckoutState.POST_SETTLEMENT
    assert client_records.stage_updates == [("client_1", "onboarding")]
    assert client_records.settlements[0].payment_path == "new_card"
    assert client_records.settlements[0].processor_reference == "pi_1"
    assert onboarding.handoffs[0].tier == "growth"


async def test_settlement_side_effects_run_once(session, cart_store, client_records, processor, onboarding):
    """Confirming a settled checkout again never charges or records twice"""
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.NEW_CARD)
    await session.expand_card_form()
    await session.confirm(client_records)

    again = await session.confirm(client_records)

    assert again.status == CaptureStatus.SUCCEEDED
    assert processor.confirm_calls == 1
    assert len(client_records.settlements) == 1
    assert len(onboarding.handoffs) == 1
    # Cart retained for onboarding
    assert len(session.cart) == 2
    assert len(cart_store.items) == 2


async def test_requires_action_stays_authorizing(session, cart_store, client_records, processor):
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.NEW_CARD)
    await session.expand_card_form()
    processor.next_status = CaptureStatus.REQUIRES_ACTION

    result = await session.confirm(client_records)

    assert result.status == CaptureStatus.REQUIRES_ACTION
    assert session.state == CheckoutState.AUTHORIZING
    assert client_records.settlements == []

    processor.next_status = CaptureStatus.SUCCEEDED
    await session.confirm(client_records)
    assert session.state == CheckoutState.POST_SETTLEMENT
    assert len(processor.created) == 1


async def test_decline_then_retry(session, cart_store, client_records, processor):
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.NEW_CARD)
    await session.expand_card_form()
    processor.next_status = CaptureStatus.ERROR
    processor.next_message = "Your card was declined."

    with pytest.raises(PaymentDeclined):
        await session.confirm(client_records)

    assert session.state == CheckoutState.ERROR
    assert session.last_error == "Your card was declined."

    handle = await session.retry()
    assert session.state == CheckoutState.CARD_CAPTURE_PENDING
    assert handle.intent_id == "pi_1"

    processor.next_status = CaptureStatus.SUCCEEDED
    await session.confirm(client_records)
    assert session.state == CheckoutState.POST_SETTLEMENT


async def test_setup_failure_moves_to_error(session, cart_store, client_records, processor):
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.NEW_CARD)
    processor.fail_create = True

    with pytest.raises(PaymentSetupFailed):
        await session.expand_card_form()
    assert session.state == CheckoutState.ERROR

    processor.fail_create = False
    handle = await session.retry()
    assert handle.amount_cents == 119700


async def test_confirm_requires_payment_method(session, cart_store, client_records):
    session.load(cart_store, client_records)
    with pytest.raises(InvalidCheckoutTransition):
        await session.confirm(client_records)


async def test_card_form_requires_new_card(session, cart_store, client_records):
    session.load(cart_store, client_records)
    with pytest.raises(InvalidCheckoutTransition):
        await session.expand_card_form()

    await session.select_payment_method(PaymentMethod.CARD_ON_FILE, "pm_saved")
    with pytest.raises(InvalidCheckoutTransition):
        await session.expand_card_form()


async def test_coupon_rejected_after_settlement(session, cart_store, client_records):
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.CARD_ON_FILE, "pm_saved")
    await session.confirm(client_records)

    with pytest.raises(InvalidCheckoutTransition):
        await session.apply_coupon("SAVE10")


async def test_withdrawn_coupon_rejected_at_settlement(processor, client_records, onboarding):
    """Coupon removed from the table between apply and confirm: nothing is charged"""
    table = MutableCouponTable({"SAVE10": 10})
    session = CheckoutSession(
        client_id="client_1",
        tier="growth",
        coupon_engine=CouponEngine(table),
        orchestrator=PaymentIntentOrchestrator(processor),
        onboarding=onboarding,
    )
    session.load(FakeCartStore([monthly_item("seo", 1000, 1), onetime_item("setup", 500, 1)]), client_records)
    await session.apply_coupon("SAVE10")
    await session.select_payment_method(PaymentMethod.CARD_ON_FILE, "pm_saved")
    del table.codes["SAVE10"]

    with pytest.raises(InvalidCoupon):
        await session.confirm(client_records)

    assert session.quote.coupon is None
    assert session.quote.final_due_today == Decimal("1500")
    assert processor.charges == []
    assert session.state == CheckoutState.PAYMENT_METHOD_SELECTED


async def test_concurrent_confirms_charge_once(session, cart_store, client_records, processor, onboarding):
    """Double-clicked confirm: the second waits for the first and finds it settled"""
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.CARD_ON_FILE, "pm_saved")
    processor.gate = asyncio.Event()

    both = asyncio.gather(session.confirm(client_records), session.confirm(client_records))
    await asyncio.sleep(0)
    processor.gate.set()
    first, second = await both

    assert first.status == second.status == CaptureStatus.SUCCEEDED
    assert len(processor.charges) == 1
    assert len(client_records.settlements) == 1
    assert len(onboarding.handoffs) == 1


async def test_saved_card_step_up_checks_waiting_intent(session, cart_store, client_records, processor):
    """Saved card needing 3-D Secure: confirming again reads the same intent back"""
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.CARD_ON_FILE, "pm_saved")
    processor.next_status = CaptureStatus.REQUIRES_ACTION

    result = await session.confirm(client_records)

    assert result.status == CaptureStatus.REQUIRES_ACTION
    assert session.state == CheckoutState.AUTHORIZING
    assert session.client_secret == "pi_saved_1_secret"

    processor.next_status = CaptureStatus.SUCCEEDED
    await session.confirm(client_records)

    assert session.state == CheckoutState.POST_SETTLEMENT
    assert processor.confirm_calls == 1
    assert len(processor.charges) == 1
    assert client_records.settlements[0].processor_reference == "pi_saved_1"


async def test_saved_card_lost_response_then_retry_charges_once(session, cart_store, client_records, processor):
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.CARD_ON_FILE, "pm_saved")
    processor.drop_charge_response = True

    with pytest.raises(PaymentSetupFailed):
        await session.confirm(client_records)
    assert session.state == CheckoutState.ERROR

    await session.retry()
    await session.confirm(client_records)

    assert session.state == CheckoutState.POST_SETTLEMENT
    assert processor.charges == [(119700, "pm_saved")]
    assert processor.charge_keys[0] == processor.charge_keys[1]


async def test_failed_commit_keeps_session_settled(session, cart_store, client_records, processor, onboarding):
    """Records not persisted: no hand-off yet, and confirming again records without charging"""
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.CARD_ON_FILE, "pm_saved")

    def failing_commit():
        raise RuntimeError("database unavailable")

    with pytest.raises(RuntimeError):
        await session.confirm(client_records, commit=failing_commit)

    assert session.state == CheckoutState.SETTLED
    assert onboarding.handoffs == []

    commits = []
    result = await session.confirm(client_records, commit=lambda: commits.append(True))

    assert result.status == CaptureStatus.SUCCEEDED
    assert result.reference == "pi_saved_1"
    assert session.state == CheckoutState.POST_SETTLEMENT
    assert commits == [True]
    assert len(processor.charges) == 1
    assert len(onboarding.handoffs) == 1


async def test_processor_customer_created_and_recorded(session, cart_store, client_records, processor):
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.NEW_CARD)
    await session.expand_card_form()
    await session.apply_coupon("SAVE10")

    await session.confirm(client_records)

    assert processor.customers == ["cus_client_1"]
    assert client_records.customer_ids == [("client_1", "cus_client_1")]


async def test_existing_processor_customer_reused(processor, coupon_engine, onboarding, cart_store):
    client_records = FakeClientRecords(
        ClientProfile(id="client_1", name="Acme Roofing", stripe_customer_id="cus_existing")
    )
    session = CheckoutSession(
        client_id="client_1",
        tier="growth",
        coupon_engine=coupon_engine,
        orchestrator=PaymentIntentOrchestrator(processor),
        onboarding=onboarding,
    )
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.CARD_ON_FILE, "pm_saved")

    await session.confirm(client_records)

    assert processor.customers == []
    assert session.orchestrator.customer_id == "cus_existing"
    assert client_records.customer_ids == []


async def test_reauthorization_failure_keeps_card_form_open(session, cart_store, client_records, processor):
    """Coupon applied while the card form is open and the processor is down"""
    session.load(cart_store, client_records)
    await session.select_payment_method(PaymentMethod.NEW_CARD)
    await session.expand_card_form()
    processor.fail_create = True

    quote = await session.apply_coupon("SAVE10")

    assert quote.final_due_today == Decimal("1077")
    assert session.state == CheckoutState.CARD_CAPTURE_PENDING
    assert session.last_error
    assert session.client_secret is None

    processor.fail_create = False
    result = await session.confirm(client_records)

    assert result.status == CaptureStatus.SUCCEEDED
    assert client_records.settlements[0].final_amount == Decimal("1077")
