from __future__ import annotations

import logging
import time
from urllib.parse import quote

import httpx

from cemap_quiz.providers.base import PaymentStatus, PaymentVerifier

log = logging.getLogger("cemap_quiz.payments")

# Product names used in older PaymentIntent metadata
_PRODUCT_ALIASES = {"cemap_full_exam": "exam"}


class StripeVerifier(PaymentVerifier):
    """Reads a PaymentIntent from the Stripe REST API (no SDK)."""

    def __init__(
        self,
        api_key: str,
        api_base: str = "https://api.stripe.com",
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 15.0,
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.transport = transport
        self.timeout = timeout

    async def retrieve(self, reference: str) -> PaymentStatus | None:
        t0 = time.monotonic()
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport, auth=(self.api_key, "")
        ) as client:
            # Quoted as one path segment so "../x" cannot reach another endpoint
            resp = await client.get(
                f"{self.api_base}/v1/payment_intents/{quote(reference, safe='')}"
            )
            if resp.status_code == 404:
                log.info("Payment %s not found", reference)
                return None
            resp.raise_for_status()
            data = resp.json()
        log.info(
            "Payment %s: %s (%.1fs)", reference, data.get("status"), time.monotonic() - t0
        )
        metadata = data.get("metadata") or {}
        product = metadata.get("purchaseType") or metadata.get("product")
        return PaymentStatus(
            reference=data.get("id", reference),
            status=data.get("status", ""),
            amount=int(data.get("amount") or 0),
            currency=data.get("currency", ""),
            product=_PRODUCT_ALIASES.get(product, product),
        )

    def name(self) -> str:
        return "Stripe"
