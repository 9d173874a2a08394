"""Stripe adapter: PaymentIntent lifecycle behind the PaymentProcessor interface"""

import asyncio
import logging
from typing import Any, Dict, Optional

import stripe

from pyrus_checkout.config import settings
from pyrus_checkout.domain.exceptions import PaymentDeclined, PaymentSetupFailed
from pyrus_checkout.domain.models import CaptureResult, CaptureStatus, ClientProfile, PaymentIntentHandle
from pyrus_checkout.infrastructure.observability.metrics import (
    authorization_counter,
    processor_failure_counter,
)

logger = logging.getLogger(__name__)

# PaymentIntent statuses that mean the customer still has a step to complete
PENDING_STATUSES = {"requires_action", "requires_confirmation", "processing"}


def require_stripe() -> Any:
    """
    Configure the SDK from settings and return the module.

    The request timeout lives on the SDK's HTTP client: a call that gives up
    has really given up, and its idempotency key makes the retry safe.
    """
    if settings.stripe_secret_key:
        stripe.api_key = settings.stripe_secret_key
    stripe.max_network_retries = settings.stripe_max_network_retries
    if not isinstance(stripe.default_http_client, stripe.RequestsClient):
        stripe.default_http_client = stripe.RequestsClient(timeout=settings.stripe_api_timeout_seconds)
    return stripe


def _field(obj: Any, key: str) -> Any:
    try:
        return obj[key]
    except KeyError:
        return None


def to_capture_result(intent: Any) -> CaptureResult:
    """Map a PaymentIntent to the capture outcome checkout understands"""
    status = _field(intent, "status")
    if status == "succeeded":
        return CaptureResult(status=CaptureStatus.SUCCEEDED, reference=_field(intent, "id"))
    if status in PENDING_STATUSES:
        return CaptureResult(
            status=CaptureStatus.REQUIRES_ACTION,
            message="Additional authentication required. Please complete the verification.",
            reference=_field(intent, "id"),
            client_secret=_field(intent, "client_secret"),
        )
    error = _field(intent, "last_payment_error") or {}
    return CaptureResult(
        status=CaptureStatus.ERROR,
        message=_field(error, "message") or "Unexpected payment status. Please try again.",
        reference=_field(intent, "id"),
    )


class StripePaymentProcessor:
    """Payment processor backed by Stripe PaymentIntents"""

    def __init__(self, currency: str | None = None):
        self.currency = currency or settings.currency

    async def ensure_customer(self, client: ClientProfile) -> str:
        """Create the Stripe customer for a client that has none yet"""
        if client.stripe_customer_id:
            return client.stripe_customer_id

        params: Dict[str, Any] = {
            "name": client.name,
            "metadata": {"pyrus_client_id": client.id},
            "idempotency_key": f"pyrus-customer-{client.id}",
        }
        if client.contact_email:
            params["email"] = client.contact_email

        customer = await self._run(stripe.Customer.create, **params)
        logger.info(
            "Created Stripe customer",
            extra={"client_id": client.id, "customer_id": customer["id"]},
        )
        return customer["id"]

    async def create_authorization(
        self,
        amount_cents: int,
        metadata: Dict[str, str],
        customer_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntentHandle:
        """
        Create a PaymentIntent for exactly amount_cents.

        Raises:
            PaymentSetupFailed: On Stripe errors or timeout
        """
        params: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": self.currency,
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_id:
            params["customer"] = customer_id
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        intent = await self._run(stripe.PaymentIntent.create, **params)
        authorization_counter.labels(outcome="created").inc()
        logger.info(
            "Created payment intent",
            extra={"intent_id": intent["id"], "amount_cents": amount_cents},
        )
        return PaymentIntentHandle(
            intent_id=intent["id"],
            client_secret=intent["client_secret"],
            amount_cents=intent["amount"],
        )

    async def cancel_authorization(self, handle: PaymentIntentHandle) -> None:
        await self._run(stripe.PaymentIntent.cancel, handle.intent_id)
        authorization_counter.labels(outcome="cancelled").inc()

    async def confirm(self, handle: PaymentIntentHandle) -> CaptureResult:
        """Card capture happens on the client; read back what Stripe recorded"""
        intent = await self._run(stripe.PaymentIntent.retrieve, handle.intent_id)
        if intent["amount"] != handle.amount_cents:
            raise PaymentSetupFailed("Payment amount does not match the current total. Please try again.")
        return to_capture_result(intent)

    async def charge_saved_method(
        self,
        amount_cents: int,
        payment_method_id: str,
        metadata: Dict[str, str],
        customer_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CaptureResult:
        params: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": self.currency,
            "metadata": metadata,
            "payment_method": payment_method_id,
            "confirm": True,
            "off_session": True,
        }
        if customer_id:
            params["customer"] = customer_id
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            intent = await self._run(stripe.PaymentIntent.create, **params)
        except PaymentDeclined as e:
            # Declines come back as errors for off-session charges
            return CaptureResult(status=CaptureStatus.ERROR, message=str(e))
        return to_capture_result(intent)

    async def _run(self, fn, *args, **kwargs):
        """Run a blocking SDK call off the event loop; it finishes or fails on its own timeout"""
        require_stripe()
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except stripe.CardError as e:
            raise PaymentDeclined(e.user_message or "Your card was declined.") from e
        except stripe.StripeError as e:
            processor_failure_counter.inc()
            logger.error(f"Stripe error: {e}")
            raise PaymentSetupFailed(e.user_message or "Failed to set up payment. Please try again.") from e
