"""/v1/checkout/{client_id}/{tier} - checkout state machine endpoints"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pyrus_checkout.api.v1.schemas import CheckoutResponse, CouponRequest, PaymentMethodRequest
from pyrus_checkout.api.dependencies import (
    CheckoutRegistry,
    get_checkout_registry,
    get_checkout_session,
    get_coupon_engine,
    get_onboarding_client,
    get_payment_processor,
    get_request_id,
)
from pyrus_checkout.config import settings
from pyrus_checkout.infrastructure.database.session import get_db
from pyrus_checkout.infrastructure.database.repositories import CartRepository, ClientRepository
from pyrus_checkout.infrastructure.clients.onboarding import OnboardingClient
from pyrus_checkout.domain.checkout import CheckoutSession, CheckoutState
from pyrus_checkout.domain.coupons import CouponEngine
from pyrus_checkout.domain.intents import PaymentIntentOrchestrator, PaymentProcessor
from pyrus_checkout.domain.models import CaptureStatus
from pyrus_checkout.domain.exceptions import (
    ClientNotFound,
    CouponLookupFailed,
    CouponMinimumNotMet,
    DomainException,
    EmptyCart,
    EmptyCoupon,
    InvalidCheckoutTransition,
    InvalidCoupon,
    PaymentDeclined,
    PaymentSetupFailed,
)
from pyrus_checkout.infrastructure.observability.metrics import coupon_counter, quote_counter, record_settlement
from pyrus_checkout.infrastructure.observability.logging import log_settlement

router = APIRouter()

STATUS_BY_ERROR = [
    (ClientNotFound, 404),
    (EmptyCart, 404),
    (EmptyCoupon, 422),
    (InvalidCoupon, 422),
    (CouponMinimumNotMet, 422),
    (CouponLookupFailed, 503),
    (PaymentSetupFailed, 502),
    (PaymentDeclined, 402),
    (InvalidCheckoutTransition, 409),
]

COUPON_OUTCOMES = {
    EmptyCoupon: "empty",
    InvalidCoupon: "invalid",
    CouponMinimumNotMet: "minimum_not_met",
    CouponLookupFailed: "lookup_failed",
}


def to_http_error(error: DomainException, request_id: str) -> HTTPException:
    """Map domain errors to user-readable HTTP errors"""
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            logging.warning(f"Checkout error: {error}", extra={"request_id": request_id})
            return HTTPException(status_code=status_code, detail=str(error))
    logging.error(f"Unexpected checkout error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/checkout/{client_id}/{tier}", response_model=CheckoutResponse)
async def start_checkout(
    client_id: str,
    tier: str,
    request: Request,
    db: Session = Depends(get_db),
    registry: CheckoutRegistry = Depends(get_checkout_registry),
    processor: PaymentProcessor = Depends(get_payment_processor),
    coupon_engine: CouponEngine = Depends(get_coupon_engine),
    onboarding: OnboardingClient = Depends(get_onboarding_client),
):
    """
    Load cart and client, compute the quote.

    A new start replaces any earlier session for the same client and tier.
    """
    request_id = get_request_id(request)
    session = CheckoutSession(
        client_id=client_id,
        tier=tier,
        coupon_engine=coupon_engine,
        orchestrator=PaymentIntentOrchestrator(processor),
        onboarding=onboarding,
        settled_growth_stage=settings.settled_growth_stage,
    )
    await registry.replace(session)

    try:
        session.load(CartRepository(db), ClientRepository(db))
    except DomainException as e:
        raise to_http_error(e, request_id)

    quote_counter.inc()
    return CheckoutResponse.from_session(session)


@router.get("/checkout/{client_id}/{tier}", response_model=CheckoutResponse)
def get_checkout(session: CheckoutSession = Depends(get_checkout_session)):
    return CheckoutResponse.from_session(session)


@router.post("/checkout/{client_id}/{tier}/coupon", response_model=CheckoutResponse)
async def apply_coupon(
    request_body: CouponRequest,
    request: Request,
    session: CheckoutSession = Depends(get_checkout_session),
):
    """Apply a coupon; input errors leave the quote and any live authorization untouched"""
    try:
        await session.apply_coupon(request_body.code)
    except DomainException as e:
        coupon_counter.labels(outcome=COUPON_OUTCOMES.get(type(e), "error")).inc()
        raise to_http_error(e, get_request_id(request))

    coupon_counter.labels(outcome="applied").inc()
    return CheckoutResponse.from_session(session)


@router.delete("/checkout/{client_id}/{tier}/coupon", response_model=CheckoutResponse)
async def remove_coupon(request: Request, session: CheckoutSession = Depends(get_checkout_session)):
    try:
        await session.remove_coupon()
    except DomainException as e:
        raise to_http_error(e, get_request_id(request))

    coupon_counter.labels(outcome="removed").inc()
    return CheckoutResponse.from_session(session)


@router.post("/checkout/{client_id}/{tier}/payment-method", response_model=CheckoutResponse)
async def select_payment_method(
    request_body: PaymentMethodRequest,
    request: Request,
    session: CheckoutSession = Depends(get_checkout_session),
):
    try:
        await session.select_payment_method(request_body.method, request_body.payment_method_id)
    except DomainException as e:
        raise to_http_error(e, get_request_id(request))
    return CheckoutResponse.from_session(session)


@router.post("/checkout/{client_id}/{tier}/card-form", response_model=CheckoutResponse)
async def expand_card_form(request: Request, session: CheckoutSession = Depends(get_checkout_session)):
    """Open the card capture form; the response carries the client secret for the capture surface"""
    try:
        await session.expand_card_form()
    except DomainException as e:
        raise to_http_error(e, get_request_id(request))
    return CheckoutResponse.from_session(session)


@router.post("/checkout/{client_id}/{tier}/retry", response_model=CheckoutResponse)
async def retry_payment(request: Request, session: CheckoutSession = Depends(get_checkout_session)):
    try:
        await session.retry()
    except DomainException as e:
        raise to_http_error(e, get_request_id(request))
    return CheckoutResponse.from_session(session)


@router.post("/checkout/{client_id}/{tier}/confirm", response_model=CheckoutResponse)
async def confirm_checkout(
    request: Request,
    db: Session = Depends(get_db),
    session: CheckoutSession = Depends(get_checkout_session),
):
    """
    Confirm payment.

    Flow:
    1. Re-validate the coupon
    2. Settle directly when nothing is due, else check the capture / charge the saved card
    3. On success: record settlement, update lifecycle stage, commit, then hand off to onboarding
    """
    request_id = get_request_id(request)
    already_settled = session.state == CheckoutState.POST_SETTLEMENT

    try:
        result = await session.confirm(ClientRepository(db), commit=db.commit)
    except DomainException as e:
        db.rollback()
        raise to_http_error(e, request_id)
    except SQLAlchemyError as e:
        # Charge already taken; the session stays settled and confirming again re-records
        db.rollback()
        logging.error(
            f"Failed to record settlement: {e}",
            extra={"request_id": request_id, "client_id": session.client_id, "tier": session.tier},
        )
        raise HTTPException(status_code=503, detail="Payment received but not yet recorded. Please confirm again.")

    if result.status == CaptureStatus.SUCCEEDED and not already_settled:
        record = session.settlement
        record_settlement(record.payment_path, record.final_amount)
        log_settlement(
            request_id,
            record.client_id,
            record.tier,
            record.payment_path,
            str(record.final_amount),
            record.coupon_code,
        )

    return CheckoutResponse.from_session(session, capture_status=result.status.value, message=result.message)
