"""
Stripe webhook fulfilment.

dj-stripe verifies and stores every webhook as a `djstripe.models.Event`; we
react to newly saved rows through `post_save`. Card payments only exist for
certificates and attempt resets, so only `checkout.session.completed` is
acted on and the session metadata `kind` decides what to fulfil.

Both fulfilments are idempotent: a certificate is keyed by its attempt and
an attempt reset by the Checkout Session id, so replayed events are no-ops.
Handlers never re-raise; a failing fulfilment is logged for manual follow-up.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from django.contrib.auth import get_user_model
from django.db.models.signals import post_save
from django.dispatch import receiver
from djstripe.models import Event

from ..certifications.models import CertificationAttempt, ProfessionalCertification
from ..certifications.services import issue_certificate, perform_attempt_reset
from .stripe_checkout import KIND_ATTEMPT_RESET, KIND_CERTIFICATE

logger = logging.getLogger(__name__)
User = get_user_model()


def _extract_data_object(event: Event) -> Dict[str, Any]:
    """Return the Stripe `data.object` payload stored on a dj-stripe Event."""
    data = event.data or {}
    if isinstance(data.get("data"), dict) and isinstance(data["data"].get("object"), dict):
        return data["data"]["object"]
    if isinstance(data.get("object"), dict):
        return data["object"]
    return {}


def _get_user(user_id) -> Optional[User]:
    if not user_id:
        logger.warning("Checkout session without user_id in metadata")
        return None
    user = User.objects.filter(pk=user_id).first()
    if user is None:
        logger.error("Stripe webhook: user %s not found", user_id)
    return user


def _amount_usd(session: Dict[str, Any]) -> Optional[Decimal]:
    amount_total = session.get("amount_total")
    if amount_total is None:
        return None
    return Decimal(amount_total) / 100


@receiver(post_save, sender=Event)
def on_djstripe_event_created(sender, instance: Event, created: bool, **kwargs):
    if not created:
        return

    event_type = instance.type
    logger.info("[webhook] %s (event_id=%s)", event_type, instance.id)

    try:
        if event_type == "checkout.session.completed":
            _handle_checkout_session_completed(_extract_data_object(instance))
        else:
            logger.debug("Unhandled event type: %s", event_type)
    except Exception as exc:
        logger.exception("Error handling event %s: %s", event_type, exc)


def _handle_checkout_session_completed(session: Dict[str, Any]) -> None:
    metadata = session.get("metadata") or {}
    kind = metadata.get("kind")
    session_id = session.get("id")

    if session.get("payment_status") not in (None, "paid"):
        logger.info("Checkout %s completed without payment (%s)", session_id, session.get("payment_status"))
        return

    user = _get_user(metadata.get("user_id"))
    if user is None:
        return

    if kind == KIND_CERTIFICATE:
        _fulfil_certificate(user, metadata.get("attempt_id"), session_id, _amount_usd(session))
    elif kind == KIND_ATTEMPT_RESET:
        _fulfil_attempt_reset(user, metadata.get("certification_id"), session_id)
    else:
        logger.debug("Checkout %s has no academy fulfilment kind (%s)", session_id, kind)


def _fulfil_certificate(user, attempt_id, session_id: str, amount: Optional[Decimal]) -> None:
    attempt = (
        CertificationAttempt.objects.select_related("certification", "user__profile")
        .filter(pk=attempt_id, user=user, passed=True, status=CertificationAttempt.Status.COMPLETED)
        .first()
    )
    if attempt is None:
        logger.error("Checkout %s: eligible attempt %s not found for user %s", session_id, attempt_id, user.pk)
        return

    certificate = issue_certificate(attempt, "stripe", payment_id=session_id, amount=amount)
    logger.info("Checkout %s fulfilled certificate %s", session_id, certificate.certificate_number)


def _fulfil_attempt_reset(user, certification_id, session_id: str) -> None:
    certification = ProfessionalCertification.objects.filter(pk=certification_id).first()
    if certification is None:
        logger.error("Checkout %s: certification %s not found", session_id, certification_id)
        return

    reset = perform_attempt_reset(user, certification, "stripe", payment_id=session_id)
    logger.info("Checkout %s fulfilled attempt reset %s", session_id, reset.pk)
