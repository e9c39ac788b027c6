from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional
from uuid import uuid4

import stripe
from django.conf import settings

from payments.exceptions import GatewayUnavailable

logger = logging.getLogger(__name__)


@dataclass
class GatewayIntent:
    """What the gateway hands back when a payment intent is opened."""

    payment_url: str
    gateway_id: str


@dataclass
class GatewayStatus:
    code: str
    payload: dict = field(default_factory=dict)


def build_preview_url(*, reference: str, amount: Decimal) -> str:
    return (
        f"{settings.FRONTEND_URL.rstrip('/')}/payments/preview?"
        f"reference={reference}&amount={amount}"
    )


def _resolve_timeout(timeout: Optional[float]) -> float:
    if timeout is None:
        return settings.PAYMENTS_GATEWAY_TIMEOUT
    return timeout


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


class StubGateway:
    """
    Stand-in for the payment gateway when running without credentials.

    Tests and local development never reach the network; intents get
    predictable identifiers and a preview URL, and verification reports the
    status code configured in ``PAYMENTS_STUB_VERIFY_STATUS``.
    """

    name = "stub"

    def create_intent(
        self,
        *,
        reference: str,
        amount: Decimal,
        currency: str,
        user_details: Mapping[str, Any],
        timeout: Optional[float] = None,
    ) -> GatewayIntent:
        return GatewayIntent(
            payment_url=build_preview_url(reference=reference, amount=amount),
            gateway_id=f"cs_test_{uuid4().hex}",
        )

    def verify(self, reference: str, *, gateway_id: str = "", timeout: Optional[float] = None) -> GatewayStatus:
        code = settings.PAYMENTS_STUB_VERIFY_STATUS
        return GatewayStatus(code=code, payload={"reference": reference, "state": code, "stub": True})


class StripeGateway:
    """
    Stripe Checkout backed gateway; one Checkout Session per payment reference.

    Each adapter owns its `stripe.StripeClient` objects, one per deadline, so
    concurrent calls never share or overwrite module-level Stripe state.
    """

    name = "stripe"

    def __init__(self, api_key: str):
        self.api_key = api_key
        self._clients: Dict[float, stripe.StripeClient] = {}

    def _client(self, timeout: Optional[float]) -> stripe.StripeClient:
        deadline = _resolve_timeout(timeout)
        client = self._clients.get(deadline)
        if client is None:
            client = stripe.StripeClient(self.api_key, http_client=stripe.RequestsClient(timeout=deadline))
            client = self._clients.setdefault(deadline, client)
        return client

    def create_intent(
        self,
        *,
        reference: str,
        amount: Decimal,
        currency: str,
        user_details: Mapping[str, Any],
        timeout: Optional[float] = None,
    ) -> GatewayIntent:
        frontend_url = settings.FRONTEND_URL.rstrip("/")
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "client_reference_id": reference,
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": currency,
                        "unit_amount": to_minor_units(amount),
                        "product_data": {"name": f"Slot booking {reference}"},
                    },
                }
            ],
            "success_url": f"{frontend_url}/customer/payment?reference={reference}",
            "cancel_url": f"{frontend_url}/customer/payment-fail?reference={reference}",
            "metadata": {"reference": reference},
            "payment_intent_data": {"metadata": {"reference": reference}},
        }
        if user_details.get("email"):
            params["customer_email"] = user_details["email"]
        try:
            session = self._client(timeout).v1.checkout.sessions.create(params)
        except stripe.StripeError as exc:
            logger.warning("Stripe refused checkout session for %s: %s", reference, exc)
            raise GatewayUnavailable(str(exc), reference=reference) from exc
        return GatewayIntent(payment_url=session.url, gateway_id=session.id)

    def verify(self, reference: str, *, gateway_id: str = "", timeout: Optional[float] = None) -> GatewayStatus:
        if not gateway_id:
            raise GatewayUnavailable("No checkout session recorded for this payment.", reference=reference)
        try:
            session = self._client(timeout).v1.checkout.sessions.retrieve(gateway_id)
        except stripe.StripeError as exc:
            logger.warning("Stripe status lookup failed for %s: %s", reference, exc)
            raise GatewayUnavailable(str(exc), reference=reference) from exc

        # An expired session can never be paid; otherwise payment_status is authoritative.
        if session.status == "expired":
            code = "expired"
        else:
            code = session.payment_status
        payload = {
            "id": session.id,
            "status": session.status,
            "payment_status": session.payment_status,
            "payment_intent": session.payment_intent,
        }
        return GatewayStatus(code=code, payload=payload)


def _get_stripe_api_key() -> Optional[str]:
    key = getattr(settings, "STRIPE_SECRET_KEY", "")
    return key or None


def _should_use_stub() -> bool:
    if getattr(settings, "STRIPE_USE_STUB", False):
        return True
    return _get_stripe_api_key() is None


@lru_cache(maxsize=4)
def _stripe_gateway(api_key: str) -> StripeGateway:
    return StripeGateway(api_key)


def get_gateway():
    """Return the configured gateway adapter (stub unless Stripe is fully configured)."""

    if _should_use_stub():
        return StubGateway()
    return _stripe_gateway(_get_stripe_api_key())
