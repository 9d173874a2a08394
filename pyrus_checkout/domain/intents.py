"""Payment intent orchestration - one live, amount-matching authorization per checkout"""

import logging
import uuid
from typing import Dict, Optional, Protocol

from pyrus_checkout.domain.exceptions import PaymentSetupFailed
from pyrus_checkout.domain.models import CaptureResult, CaptureStatus, ClientProfile, PaymentIntentHandle

logger = logging.getLogger(__name__)


class PaymentProcessor(Protocol):
    """
    Remote payment processor. Never sees raw card data.

    Requests carrying the same idempotency_key must return the original
    result instead of creating a second intent or charge.
    """

    async def ensure_customer(self, client: ClientProfile) -> str:
        ...

    async def create_authorization(
        self,
        amount_cents: int,
        metadata: Dict[str, str],
        customer_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntentHandle:
        ...

    async def cancel_authorization(self, handle: PaymentIntentHandle) -> None:
        ...

    async def confirm(self, handle: PaymentIntentHandle) -> CaptureResult:
        ...

    async def charge_saved_method(
        self,
        amount_cents: int,
        payment_method_id: str,
        metadata: Dict[str, str],
        customer_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CaptureResult:
        ...


class PaymentIntentOrchestrator:
    """
    Keeps at most one valid handle with the processor.

    Rules:
    - A handle is reused only for the exact amount it was created with
    - Only one authorization request is in flight; triggers arriving
      meanwhile are ignored, but the latest requested amount is remembered
    - A result that no longer matches the wanted amount is cancelled and
      discarded, never applied
    - Every request carries an idempotency key that only advances once the
      processor has answered, so a retry after a timeout replays the
      original request instead of charging again
    """

    def __init__(
        self,
        processor: PaymentProcessor,
        customer_id: Optional[str] = None,
        key_prefix: Optional[str] = None,
    ):
        self.processor = processor
        self.customer_id = customer_id
        self.key_prefix = key_prefix or uuid.uuid4().hex
        self._handle: Optional[PaymentIntentHandle] = None
        self._target_cents: Optional[int] = None
        self._in_flight = False
        self._metadata: Dict[str, str] = {}
        self._auth_seq = 0
        self._charge_attempt = 0
        self._saved_intent_id: Optional[str] = None

    @property
    def handle(self) -> Optional[PaymentIntentHandle]:
        return self._handle

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def handle_for(self, amount_cents: int) -> Optional[PaymentIntentHandle]:
        """Live handle if it was created for exactly this amount"""
        if self._handle is not None and self._handle.amount_cents == amount_cents:
            return self._handle
        return None

    async def ensure_customer(self, client: ClientProfile) -> str:
        """Processor customer for this client, created on first use"""
        if not self.customer_id:
            self.customer_id = await self.processor.ensure_customer(client)
            logger.info(
                "Created processor customer",
                extra={"client_id": client.id, "customer_id": self.customer_id},
            )
        return self.customer_id

    async def ensure_intent(
        self, amount_cents: int, metadata: Optional[Dict[str, str]] = None
    ) -> Optional[PaymentIntentHandle]:
        """
        Return a handle valid for amount_cents, creating one if needed.

        Returns None for a zero amount, or when another request is already in
        flight (that request will settle on the latest amount).

        Raises:
            PaymentSetupFailed: Processor unreachable, rejected the request or timed out
        """
        self._target_cents = amount_cents
        if metadata is not None:
            self._metadata = dict(metadata)

        if amount_cents == 0:
            await self.invalidate()
            return None

        existing = self.handle_for(amount_cents)
        if existing is not None:
            return existing

        if self._in_flight:
            logger.info(
                "Authorization already in flight, trigger ignored",
                extra={"amount_cents": amount_cents},
            )
            return None

        self._in_flight = True
        try:
            while True:
                requested = self._target_cents
                handle = await self._create(requested)

                if self._target_cents == requested:
                    await self._supersede(handle)
                    return handle

                logger.info(
                    "Discarding stale authorization",
                    extra={"intent_id": handle.intent_id, "amount_cents": handle.amount_cents},
                )
                await self._cancel(handle)

                if not self._target_cents:
                    return None

                # Target moved back to the amount of the handle still held
                current = self.handle_for(self._target_cents)
                if current is not None:
                    return current
        finally:
            self._in_flight = False

    async def invalidate(self) -> None:
        """Drop the live handle and any pending result (coupon change, navigation)"""
        self._target_cents = None
        handle, self._handle = self._handle, None
        if handle is not None:
            if handle.intent_id == self._saved_intent_id:
                # A dropped saved-card intent is never replayed
                self._saved_intent_id = None
                self._charge_attempt += 1
            await self._cancel(handle)

    async def capture(self, amount_cents: int) -> CaptureResult:
        """
        Ask the processor for the outcome of the capture on the live handle.

        Raises:
            PaymentSetupFailed: No handle for this amount (stale or never created)
        """
        handle = self.handle_for(amount_cents)
        if handle is None:
            raise PaymentSetupFailed("Payment details are out of date, please re-enter your card")

        result = await self.processor.confirm(handle)
        if result.status == CaptureStatus.SUCCEEDED:
            # Consumed: a settled handle is never reused
            self._handle = None
            self._target_cents = None
        elif result.status == CaptureStatus.ERROR and handle.intent_id == self._saved_intent_id:
            await self.invalidate()
        return result

    async def charge_saved_method(self, amount_cents: int, payment_method_id: str) -> CaptureResult:
        """
        Card on file: charge directly.

        An intent waiting on customer authentication becomes the live handle,
        so the next confirmation checks it through capture() instead of
        charging again.
        """
        key = f"{self.key_prefix}-charge-{payment_method_id}-{amount_cents}-{self._charge_attempt}"
        result = await self.processor.charge_saved_method(
            amount_cents,
            payment_method_id,
            self._metadata,
            customer_id=self.customer_id,
            idempotency_key=key,
        )

        if result.status == CaptureStatus.REQUIRES_ACTION and result.reference:
            self._target_cents = amount_cents
            self._saved_intent_id = result.reference
            await self._supersede(
                PaymentIntentHandle(
                    intent_id=result.reference,
                    client_secret=result.client_secret or "",
                    amount_cents=amount_cents,
                )
            )
        elif result.status == CaptureStatus.ERROR:
            # Declined: the next attempt is a new charge
            self._charge_attempt += 1
        return result

    async def _create(self, amount_cents: int) -> PaymentIntentHandle:
        key = f"{self.key_prefix}-auth-{amount_cents}-{self._auth_seq}"
        handle = await self.processor.create_authorization(
            amount_cents, self._metadata, customer_id=self.customer_id, idempotency_key=key
        )
        self._auth_seq += 1
        return handle

    async def _supersede(self, handle: PaymentIntentHandle) -> None:
        previous, self._handle = self._handle, handle
        if previous is not None and previous.intent_id != handle.intent_id:
            await self._cancel(previous)

    async def _cancel(self, handle: PaymentIntentHandle) -> None:
        try:
            await self.processor.cancel_authorization(handle)
        except PaymentSetupFailed as e:
            # Already dropped locally; an uncancelled intent expires on the processor side
            logger.warning(
                f"Could not cancel superseded authorization: {e}",
                extra={"intent_id": handle.intent_id},
            )
