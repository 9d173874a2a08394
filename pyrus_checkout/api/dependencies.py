"""Dependency injection for FastAPI endpoints"""

from functools import lru_cache
from typing import Dict, Optional, Tuple

from fastapi import Depends, HTTPException, Request

from pyrus_checkout.config import settings
from pyrus_checkout.domain.checkout import CheckoutSession
from pyrus_checkout.domain.coupons import CouponEngine, CouponLookup, StaticCouponTable
from pyrus_checkout.domain.intents import PaymentProcessor
from pyrus_checkout.infrastructure.clients.onboarding import OnboardingClient
from pyrus_checkout.infrastructure.clients.stripe_coupons import StripeCouponLookup
from pyrus_checkout.infrastructure.clients.stripe_processor import StripePaymentProcessor


class CheckoutRegistry:
    """Live checkout sessions, one per client + tier"""

    def __init__(self):
        self._sessions: Dict[Tuple[str, str], CheckoutSession] = {}

    def get(self, client_id: str, tier: str) -> Optional[CheckoutSession]:
        return self._sessions.get((client_id, tier))

    async def replace(self, session: CheckoutSession) -> None:
        """Start over; the previous session's handle is released"""
        previous = self._sessions.get((session.client_id, session.tier))
        if previous is not None:
            await previous.orchestrator.invalidate()
        self._sessions[(session.client_id, session.tier)] = session


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_checkout_registry(request: Request) -> CheckoutRegistry:
    return request.app.state.checkout_registry


def get_checkout_session(client_id: str, tier: str, request: Request) -> CheckoutSession:
    """Existing session for the path's client + tier, 404 otherwise"""
    session = get_checkout_registry(request).get(client_id, tier)
    if session is None:
        raise HTTPException(status_code=404, detail="Checkout not started")
    return session


def get_payment_processor() -> PaymentProcessor:
    """Provide payment processor instance"""
    return StripePaymentProcessor()


def get_coupon_lookup() -> CouponLookup:
    """Provide coupon table: static, or Stripe promotion codes in front of it"""
    table = StaticCouponTable(settings.coupon_codes, settings.coupon_min_spend)
    if settings.use_remote_coupons:
        return StripeCouponLookup(fallback=table)
    return table


def get_coupon_engine(lookup: CouponLookup = Depends(get_coupon_lookup)) -> CouponEngine:
    return CouponEngine(lookup)


@lru_cache
def get_onboarding_client() -> OnboardingClient:
    """Provide onboarding webhook client (shared so queued deliveries outlive the request)"""
    return OnboardingClient()
