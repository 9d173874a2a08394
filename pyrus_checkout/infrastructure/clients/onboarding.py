"""Onboarding webhook client with exponential backoff retry logic"""

import asyncio
import logging
from typing import Any, Dict, Set

import httpx

from pyrus_checkout.config import settings
from pyrus_checkout.domain.models import SettlementRecord
from pyrus_checkout.infrastructure.observability.metrics import (
    webhook_failure_counter,
    webhook_latency_histogram,
)

logger = logging.getLogger(__name__)


def settlement_payload(record: SettlementRecord) -> Dict[str, Any]:
    return {
        "event": "CHECKOUT_SETTLED",
        "client_id": record.client_id,
        "tier": record.tier,
        "final_amount": str(record.final_amount),
        "recurring_amount": str(record.recurring_amount),
        "payment_path": record.payment_path,
        "coupon_code": record.coupon_code,
    }


class OnboardingClient:
    """Hands settled checkouts to the onboarding flow"""

    def __init__(self, webhook_url: str | None = None):
        self.webhook_url = webhook_url or settings.onboarding_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base
        self._pending: Set[asyncio.Task] = set()

    async def hand_off(self, record: SettlementRecord) -> None:
        """Queue delivery; the charge has already succeeded, so the caller never waits on retries"""
        task = asyncio.create_task(self._deliver(settlement_payload(record)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, payload: Dict[str, Any]) -> None:
        try:
            await self.send_settlement_event(payload)
        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            logger.error(
                f"Onboarding hand-off failed after {self.max_retries} attempts: {e}",
                extra={"client_id": payload["client_id"], "tier": payload["tier"]},
            )

    async def send_settlement_event(self, payload: Dict[str, Any]) -> None:
        """
        Send settlement event to onboarding with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s, 16s (base^attempt)
        - Retries on 5xx errors and network failures
        - Tracks latency histogram and failure counter
        """
        attempt = 0
        async with httpx.AsyncClient() as client:
            while attempt < self.max_retries:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=payload,
                            timeout=settings.http_timeout_seconds,
                        )
                        response.raise_for_status()
                        return

                except (httpx.HTTPStatusError, httpx.RequestError):
                    attempt += 1
                    webhook_failure_counter.inc()

                    if attempt >= self.max_retries:
                        raise

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
