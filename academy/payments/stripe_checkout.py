"""
Stripe Checkout for card payments.

Certificates and attempt resets can be paid by card. The session metadata
carries a `kind` plus the ids the webhook needs to fulfil the order; nothing
is granted here, fulfilment happens in `academy.payments.signals` once
dj-stripe has stored the verified `checkout.session.completed` event.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict

import stripe
from django.conf import settings
from djstripe.models import Customer

from .exceptions import PaymentError

stripe.api_key = settings.STRIPE_SECRET_KEY

logger = logging.getLogger(__name__)

KIND_CERTIFICATE = "certificate"
KIND_ATTEMPT_RESET = "attempt_reset"


def usd_to_cents(amount_usd) -> int:
    return int((Decimal(str(amount_usd)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def create_checkout_session(
    user,
    product_name: str,
    amount_usd,
    metadata: Dict[str, str],
    success_path: str,
    cancel_path: str,
) -> Dict[str, str]:
    """
    One-off Checkout Session for a single line item.

    Returns:
        {"checkout_url": ..., "session_id": ...}
    """
    customer, _ = Customer.get_or_create(subscriber=user)
    metadata = {key: str(value) for key, value in metadata.items()}
    metadata["user_id"] = str(user.pk)

    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            customer=customer.id,
            line_items=[
                {
                    "price_data": {
                        "currency": settings.DEFAULT_CURRENCY,
                        "unit_amount": usd_to_cents(amount_usd),
                        "product_data": {"name": product_name},
                    },
                    "quantity": 1,
                }
            ],
            success_url=f"{settings.FRONTEND_URL}{success_path}?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.FRONTEND_URL}{cancel_path}",
            metadata=metadata,
        )
    except stripe.error.StripeError as exc:
        logger.warning("Stripe Checkout creation failed for user %s: %s", user.pk, exc)
        raise PaymentError(
            "Stripe Checkout could not be created",
            details={"stripe_error": getattr(exc, "user_message", None) or str(exc)},
        ) from exc

    logger.info("Created Stripe Checkout %s (%s) for user %s", session.id, metadata.get("kind"), user.pk)
    return {"checkout_url": session.url, "session_id": session.id}


def publishable_key() -> str:
    return (
        settings.STRIPE_LIVE_PUBLISHABLE_KEY
        if settings.STRIPE_LIVE_MODE
        else settings.STRIPE_TEST_PUBLISHABLE_KEY
    )
