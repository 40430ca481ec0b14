"""Payment gateway adapter (Stripe hosted checkout)."""

from typing import Any, Dict, List, Optional

import stripe
from pydantic import BaseModel

from config import Settings
from errors import ExternalServiceError, ValidationError
from log import get_logger

logger = get_logger(__name__)


class CheckoutSession(BaseModel):
    id: str
    url: Optional[str] = None
    payment_intent: Optional[str] = None
    payment_status: str = "unpaid"
    metadata: Dict[str, str] = {}


class WebhookEvent(BaseModel):
    type: str
    session: Optional[CheckoutSession] = None


class LineItem(BaseModel):
    name: str
    unit_amount: int  # smallest currency unit
    quantity: int
    images: List[str] = []


def _to_session(obj: Any) -> CheckoutSession:
    if hasattr(obj, "to_dict"):
        obj = obj.to_dict()
    payment_intent = obj.get("payment_intent")
    if payment_intent is not None and not isinstance(payment_intent, str):
        payment_intent = payment_intent.get("id")
    return CheckoutSession(
        id=obj.get("id"),
        url=obj.get("url"),
        payment_intent=payment_intent,
        payment_status=obj.get("payment_status") or "unpaid",
        metadata=dict(obj.get("metadata") or {}),
    )


class StripeGateway:
    def __init__(self, secret_key: str, webhook_secret: Optional[str] = None, currency: str = "usd"):
        self._api_key = secret_key
        self._webhook_secret = webhook_secret
        self.currency = currency

    def create_checkout_session(
        self,
        line_items: List[LineItem],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                api_key=self._api_key,
                payment_method_types=["card"],
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": self.currency,
                            "product_data": {"name": item.name, "images": item.images[:8]},
                            "unit_amount": item.unit_amount,
                        },
                        "quantity": item.quantity,
                    }
                    for item in line_items
                ],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error("stripe checkout session failed", error=str(e))
            raise ExternalServiceError("Payment provider error") from e
        return _to_session(session)

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self._api_key)
        except stripe.StripeError as e:
            logger.error("stripe session lookup failed", session_id=session_id, error=str(e))
            raise ExternalServiceError("Payment provider error") from e
        return _to_session(session)

    def parse_webhook_event(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        if not self._webhook_secret:
            raise ExternalServiceError("Payment webhook is not configured")
        try:
            event = stripe.Webhook.construct_event(payload, signature or "", self._webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise ValidationError("Invalid webhook signature") from e
        session = None
        if event.type.startswith("checkout.session."):
            session = _to_session(event.data.object)
        return WebhookEvent(type=event.type, session=session)


def build_payment_gateway(settings: Settings) -> Optional[StripeGateway]:
    if not settings.payments_configured:
        logger.warning("payment gateway disabled, STRIPE_SECRET_KEY is not set")
        return None
    return StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret, settings.payment_currency)
