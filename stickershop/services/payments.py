from __future__ import annotations

import logging
from typing import Any, Dict, Tuple

import stripe

from stickershop.config import settings

logger = logging.getLogger(__name__)


def _configure() -> None:
    if not settings.stripe_secret_key:
        raise RuntimeError("STRIPE_SECRET_KEY is empty. Set STRIPE_SECRET_KEY in .env")
    stripe.api_key = settings.stripe_secret_key


def create_payment_intent(order: Dict[str, Any]) -> Dict[str, Any]:
    """The charged amount always comes from the stored order, never from the caller."""
    _configure()
    intent = stripe.PaymentIntent.create(
        amount=int(order["total"]),
        currency=settings.currency.lower(),
        metadata={"order_id": str(order["id"])},
        automatic_payment_methods={"enabled": True},
    )
    logger.info("Payment intent %s created for order %s (%s)", intent.id, order["id"], order["total"])
    return {"clientSecret": intent.client_secret, "paymentIntentId": intent.id, "amount": int(order["total"])}


def verify_payment(payment_intent_id: str, order: Dict[str, Any]) -> Tuple[bool, str]:
    _configure()
    intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    if intent.status != "succeeded":
        return False, f"Payment not completed (status: {intent.status})"
    if int(intent.amount) != int(order["total"]):
        return False, "Payment amount does not match the order total"
    if (intent.metadata or {}).get("order_id") != str(order["id"]):
        return False, "Payment belongs to a different order"
    return True, "ok"
