"""
Course purchase flow.

A student pays the escrow contract from their wallet, then reports the
transaction here. The backend checks the receipt, stores the purchase and
registers the escrow on-chain with the instructor's payout wallet and the
effective fee split. `PAYMENT_MODE=dummy` skips every chain call.
"""

import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from ...certifications.services import issue_course_certificate
from ...courses.models import Course, Lesson
from ...users.achievements import check_achievements
from ...users.levels import XP_REWARDS, award_xp
from ...users.wallet import is_valid_tx_hash, is_valid_wallet_address
from ..exceptions import EscrowNotFoundError, EscrowRegistrationError, PaymentError
from ..models import InstructorFeeSettings, PaymentToken, PlatformSettings, Purchase
from . import pricing
from .blockchain import EscrowClient, rpc_errors

logger = logging.getLogger(__name__)


def is_dummy_mode() -> bool:
    return settings.PAYMENT_MODE == "dummy"


def dummy_hash(prefix: str = "") -> str:
    if prefix:
        return f"{prefix}_{secrets.token_hex(16)}"
    return "0x" + secrets.token_hex(32)


def _get_course(course_id) -> Course:
    course = Course.objects.select_related("instructor__profile").filter(pk=course_id).first()
    if course is None:
        raise PaymentError("Course not found", status_code=404)
    return course


def _get_token(token_id) -> PaymentToken:
    token = PaymentToken.objects.filter(pk=token_id, is_active=True, is_enabled=True).first()
    if token is None:
        raise PaymentError("Payment token not found", status_code=404)
    return token


def _instructor_wallet(course: Course, token: PaymentToken):
    wallet = course.instructor.profile.wallet_for_chain(token.blockchain, token.chain_id)
    if wallet is None:
        raise PaymentError("Instructor has not configured payment wallet for this chain")
    return wallet


def _has_active_purchase(user, course: Course) -> bool:
    return Purchase.objects.filter(user=user, course=course, status=Purchase.Status.ACTIVE).exists()


def calculate_payment(user, course_id, token_id) -> Dict[str, Any]:
    """Quote a course price in the selected token with the fee split."""
    if not course_id or not token_id:
        raise PaymentError("course_id and token_id are required")

    course = _get_course(course_id)
    if course.status != Course.Status.PUBLISHED:
        raise PaymentError("Course is not available")
    if _has_active_purchase(user, course):
        raise PaymentError("Course already purchased")

    token = _get_token(token_id)
    wallet = _instructor_wallet(course, token)

    price_usd = course.effective_price
    token_price = pricing.token_price_usd(token)
    amount = pricing.token_amount(price_usd, token_price, token.decimals)

    fees = InstructorFeeSettings.get_effective_fees(course.instructor)
    platform = PlatformSettings.get_settings()
    split = pricing.split_fees(amount, fees["platform_fee_percentage"], platform.revenue_split_percentage)

    return {
        "course_id": course.pk,
        "course_price_usd": str(price_usd),
        "token_id": token.pk,
        "token_symbol": token.symbol,
        "token_decimals": token.decimals,
        "token_price_usd": str(token_price),
        "token_amount": str(amount),
        "platform_amount": str(split["platform_amount"]),
        "instructor_amount": str(split["instructor_amount"]),
        "revenue_split_amount": str(split["revenue_split_amount"]),
        "platform_fee_percentage": fees["platform_fee_percentage"] / 100,
        "instructor_fee_percentage": fees["instructor_fee_percentage"] / 100,
        "revenue_split_percentage": platform.revenue_split_percentage / 100,
        "blockchain": token.blockchain,
        "chain_id": token.chain_id,
        "instructor_address": wallet.address,
        "escrow_contract_address": token.payment_contract_address,
        "payment_mode": settings.PAYMENT_MODE,
    }


def _verify_payment_transaction(client: EscrowClient, token: PaymentToken, transaction_hash: str) -> None:
    receipt = client.get_transaction_receipt(transaction_hash)
    if receipt is None:
        raise PaymentError("Transaction not found on blockchain")
    if receipt["status"] != 1:
        raise PaymentError("Transaction failed")
    if (receipt.get("to") or "").lower() != token.payment_contract_address.lower():
        raise PaymentError("Transaction not sent to escrow contract")


def _record_enrollment(purchase: Purchase) -> None:
    Course.objects.filter(pk=purchase.course_id).update(enrollment_count=F("enrollment_count") + 1)
    purchase.user.profile.increment("courses_enrolled")
    check_achievements(purchase.user)


def process_purchase(user, data: Dict[str, Any]) -> Purchase:
    """
    Store a paid purchase and lock its funds in escrow.

    Raises:
        PaymentError: validation failures (400/403/404)
        EscrowRegistrationError: paid, but escrow registration failed (500)
    """
    dummy = is_dummy_mode()
    course_id = data.get("course_id")
    token_id = data.get("token_id")
    transaction_hash = (data.get("transaction_hash") or "").strip()
    student_address = (data.get("student_address") or "").strip()
    amount_in_token = data.get("amount_in_token")

    if not course_id or not token_id or not student_address or not amount_in_token:
        raise PaymentError("Missing required parameters")
    if not transaction_hash and not dummy:
        raise PaymentError("Missing required parameters")
    if transaction_hash and not dummy and not is_valid_tx_hash(transaction_hash):
        raise PaymentError("Invalid transaction hash")
    if not is_valid_wallet_address(student_address):
        raise PaymentError("Invalid wallet address")
    try:
        amount = int(amount_in_token)
    except (TypeError, ValueError):
        raise PaymentError("Invalid token amount")
    if amount <= 0:
        raise PaymentError("Invalid token amount")

    if transaction_hash and Purchase.objects.filter(transaction_hash=transaction_hash).exists():
        raise PaymentError("Transaction already processed")

    course = _get_course(course_id)
    token = _get_token(token_id)

    if (user.profile.wallet_address or "") != student_address.lower():
        raise PaymentError("Wallet address does not match user", status_code=403)
    if _has_active_purchase(user, course):
        raise PaymentError("Course already purchased")
    wallet = _instructor_wallet(course, token)

    client = None
    if not dummy:
        with rpc_errors("Could not verify transaction"):
            client = EscrowClient.for_token(token)
            _verify_payment_transaction(client, token, transaction_hash)

    token_price = pricing.token_price_usd(token)
    fees = InstructorFeeSettings.get_effective_fees(course.instructor)
    platform = PlatformSettings.get_settings()
    split = pricing.split_fees(amount, fees["platform_fee_percentage"], platform.revenue_split_percentage)
    escrow_period_days = course.refund_period_days or platform.default_escrow_period_days

    purchase = Purchase(
        user=user,
        course=course,
        payment_token=token,
        amount_in_token=str(amount),
        amount_in_usd=pricing.token_units_to_usd(amount, token_price, token.decimals),
        platform_amount=str(split["platform_amount"]),
        instructor_amount=str(split["instructor_amount"]),
        revenue_split_amount=str(split["revenue_split_amount"]),
        platform_fee_percentage=fees["platform_fee_percentage"],
        instructor_fee_percentage=fees["instructor_fee_percentage"],
        transaction_hash=transaction_hash or dummy_hash(),
        blockchain=token.blockchain,
        from_address=student_address.lower(),
        to_address=token.payment_contract_address.lower(),
        escrow_release_date=timezone.now() + timedelta(days=escrow_period_days),
        status=Purchase.Status.ACTIVE,
        escrow_status=Purchase.EscrowStatus.DUMMY if dummy else Purchase.EscrowStatus.PENDING,
    )
    if dummy:
        purchase.escrow_id = dummy_hash("dummy_escrow")

    try:
        purchase.save()
    except IntegrityError:
        raise PaymentError("Transaction already processed")

    if not dummy:
        try:
            escrow = client.create_escrow(
                student=student_address,
                instructor=wallet.address,
                amount=amount,
                course_id=course.pk,
                escrow_period_days=escrow_period_days,
                platform_fee_percentage=fees["platform_fee_percentage"],
            )
        except PaymentError as exc:
            logger.error("Escrow registration failed for purchase %s: %s", purchase.pk, exc.message)
            purchase.escrow_status = Purchase.EscrowStatus.FAILED
            purchase.save(update_fields=["escrow_status", "updated_at"])
            raise EscrowRegistrationError(
                "Payment received but escrow registration failed. Contact support.",
                details={"purchase_id": purchase.pk},
            ) from exc

        purchase.escrow_id = escrow["escrow_id"]
        purchase.escrow_created_tx_hash = escrow["transaction_hash"]
        purchase.escrow_status = Purchase.EscrowStatus.LOCKED
        purchase.save(update_fields=["escrow_id", "escrow_created_tx_hash", "escrow_status", "updated_at"])

    _record_enrollment(purchase)
    logger.info(
        "Purchase %s: user %s bought course %s for %s %s (escrow %s)",
        purchase.pk,
        user.pk,
        course.pk,
        purchase.amount_in_token,
        token.symbol,
        purchase.escrow_id,
    )
    return purchase


def get_owned_purchase(user, purchase_id) -> Purchase:
    purchase = (
        Purchase.objects.select_related("course", "payment_token").filter(pk=purchase_id).first()
    )
    if purchase is None:
        raise PaymentError("Purchase not found", status_code=404)
    return purchase


def request_refund(user, purchase_id, reason: Optional[str] = None) -> Purchase:
    if not purchase_id:
        raise PaymentError("purchase_id is required")

    purchase = get_owned_purchase(user, purchase_id)
    if purchase.user_id != user.pk:
        raise PaymentError("Not authorized to refund this purchase", status_code=403)

    eligible, why_not = purchase.check_refund_eligibility()
    if not eligible:
        raise PaymentError(why_not)

    if is_dummy_mode() or purchase.escrow_status == Purchase.EscrowStatus.DUMMY:
        tx_hash = dummy_hash("dummy_refund")
    else:
        with rpc_errors("Refund failed on blockchain"):
            client = EscrowClient.for_token(purchase.payment_token)
            escrow_id = client.find_student_escrow(purchase.from_address, purchase.course_id)
            if escrow_id is None:
                raise EscrowNotFoundError("Escrow not found on blockchain")
            tx_hash = client.refund_escrow(escrow_id)

    purchase.mark_refunded(tx_hash, reason=reason or "")
    logger.info("Refunded purchase %s for user %s (tx %s)", purchase.pk, user.pk, tx_hash)
    return purchase


def complete_lesson(user, purchase_id, lesson_id, watch_time: int = 0) -> Dict[str, Any]:
    purchase = get_owned_purchase(user, purchase_id)
    if purchase.user_id != user.pk:
        raise PaymentError("Not authorized", status_code=403)

    lesson = Lesson.objects.filter(pk=lesson_id, section__course_id=purchase.course_id).first()
    if lesson is None:
        raise PaymentError("Lesson not found in this course", status_code=404)

    with transaction.atomic():
        purchase = Purchase.objects.select_for_update().select_related("course").get(pk=purchase.pk)
        already_done = lesson.pk in purchase.completed_lessons
        course_completed = purchase.complete_lesson(lesson.pk, watch_time)

    xp = None
    certificate = None
    if not already_done:
        xp = award_xp(user.profile, XP_REWARDS["lesson_completed"])
    if course_completed:
        Course.objects.filter(pk=purchase.course_id).update(completion_count=F("completion_count") + 1)
        user.profile.increment("courses_completed")
        xp = award_xp(user.profile, XP_REWARDS["course_completed"])
        certificate = issue_course_certificate(purchase)
        logger.info("User %s completed course %s", user.pk, purchase.course_id)

    achievements = [] if already_done else check_achievements(user)
    return {
        "purchase": purchase,
        "course_completed": course_completed,
        "xp": xp,
        "certificate": certificate,
        "achievements": achievements,
    }


def refund_summary(purchase: Purchase) -> Dict[str, Any]:
    eligible, reason = purchase.check_refund_eligibility()
    return {
        "refund_eligible": eligible and purchase.status == Purchase.Status.ACTIVE,
        "refund_ineligible_reason": reason,
        "days_until_release": purchase.days_until_release,
    }

