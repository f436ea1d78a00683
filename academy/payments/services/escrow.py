"""
Escrow Settlement

Automatic release of matured escrows plus the manual admin overrides
(release, refund, free access grant, access removal). Every admin override
writes an AdminAuditLog row.

Automatic release:
- purchases with escrow_status=locked, status=active and a release date in
  the past, at most ESCROW_RELEASE_LIMIT per run
- grouped per chain, each escrow verified on-chain before release
- released in batches of ESCROW_RELEASE_BATCH_SIZE; a failed batch is
  retried escrow by escrow
- a cache lock keeps two runs from overlapping

Author: Academy Development Team
Version: 1.0.0
"""

import logging
import time
from collections import defaultdict
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.contrib.auth.models import User
from django.core.cache import cache
from django.db import IntegrityError, transaction
from django.utils import timezone

from ...courses.models import Course
from ...permissions import is_super_admin
from ...users.wallet import is_valid_wallet_address, recover_signer
from ..exceptions import EscrowNotFoundError, PaymentError
from ..models import AdminAuditLog, Purchase
from .blockchain import RPC_ERRORS, EscrowClient, rpc_errors
from .purchases import dummy_hash, is_dummy_mode

logger = logging.getLogger(__name__)

RELEASE_LOCK_KEY = "escrow-release-lock"
RELEASE_LOCK_TIMEOUT = 60 * 60
ZERO_ADDRESS = "0x" + "0" * 40
RELEASE_ERRORS = (PaymentError,) + RPC_ERRORS


class EscrowReleaseInProgress(PaymentError):
    default_status_code = 409


def record_admin_action(admin, action: str, target_type: str, target_id, details: Dict[str, Any], ip_address=None) -> AdminAuditLog:
    entry = AdminAuditLog.objects.create(
        admin=admin,
        action=action,
        target_type=target_type,
        target_id=str(target_id),
        details=details,
        ip_address=ip_address,
    )
    logger.info("Admin %s performed %s on %s:%s", admin.pk, action, target_type, target_id)
    return entry


def _is_dummy_escrow(purchase: Purchase) -> bool:
    return is_dummy_mode() or purchase.escrow_status == Purchase.EscrowStatus.DUMMY


# --- automatic release ---


def due_escrows_queryset(now=None):
    now = now or timezone.now()
    return (
        Purchase.objects.filter(
            escrow_status=Purchase.EscrowStatus.LOCKED,
            status=Purchase.Status.ACTIVE,
            escrow_release_date__lte=now,
        )
        .select_related("payment_token")
        .order_by("escrow_release_date")
    )


def _release_group(client: EscrowClient, purchases: List[Purchase], stats: Dict[str, int]) -> None:
    batch_size = max(1, settings.ESCROW_RELEASE_BATCH_SIZE)
    for start in range(0, len(purchases), batch_size):
        batch = purchases[start:start + batch_size]
        try:
            tx_hash = client.batch_release_escrows([p.escrow_id for p in batch])
        except RELEASE_ERRORS as exc:
            logger.warning("Batch release of %s escrows failed (%s), releasing one by one", len(batch), exc)
        else:
            for purchase in batch:
                purchase.mark_released(tx_hash)
            stats["released"] += len(batch)
            continue

        for purchase in batch:
            try:
                tx_hash = client.release_escrow(purchase.escrow_id)
            except RELEASE_ERRORS:
                logger.exception("Release of escrow %s (purchase %s) failed", purchase.escrow_id, purchase.pk)
                stats["failed"] += 1
                continue
            purchase.mark_released(tx_hash)
            stats["released"] += 1


def _process_group(
    blockchain: str, chain_id: int, group: List[Purchase], now, dry_run: bool, stats: Dict[str, Any]
) -> None:
    client = EscrowClient.for_token(group[0].payment_token)
    releasable = []
    for purchase in group:
        try:
            escrow = client.get_escrow(purchase.escrow_id)
        except RELEASE_ERRORS:
            logger.exception("Could not verify escrow %s", purchase.escrow_id)
            stats["failed"] += 1
            continue
        if not escrow.is_due(now):
            logger.info(
                "Escrow %s not releasable on-chain (released=%s refunded=%s)",
                purchase.escrow_id,
                escrow.is_released,
                escrow.is_refunded,
            )
            stats["skipped"] += 1
            continue
        releasable.append(purchase)

    stats["escrow_ids"].extend(p.escrow_id for p in releasable)
    if dry_run or not releasable:
        return
    logger.info("Releasing %s escrows on %s chain %s", len(releasable), blockchain, chain_id)
    _release_group(client, releasable, stats)


def release_due_escrows(dry_run: bool = False, now=None) -> Dict[str, Any]:
    """Release every matured escrow. Returns counters for the run."""
    if not cache.add(RELEASE_LOCK_KEY, "1", timeout=RELEASE_LOCK_TIMEOUT):
        raise EscrowReleaseInProgress("Escrow release already running")

    try:
        now = now or timezone.now()
        stats = {"found": 0, "released": 0, "failed": 0, "skipped": 0, "dry_run": dry_run, "escrow_ids": []}
        purchases = list(due_escrows_queryset(now)[: settings.ESCROW_RELEASE_LIMIT])
        stats["found"] = len(purchases)

        groups: Dict[tuple, List[Purchase]] = defaultdict(list)
        for purchase in purchases:
            if not purchase.escrow_id or purchase.payment_token is None:
                logger.warning("Purchase %s has no escrow id, skipping", purchase.pk)
                stats["skipped"] += 1
                continue
            groups[(purchase.blockchain, purchase.payment_token.chain_id)].append(purchase)

        for (blockchain, chain_id), group in groups.items():
            try:
                _process_group(blockchain, chain_id, group, now, dry_run, stats)
            except RELEASE_ERRORS:
                logger.exception(
                    "Escrow release on %s chain %s aborted, continuing with next chain", blockchain, chain_id
                )
                stats["failed"] += sum(
                    1 for p in group if p.escrow_status != Purchase.EscrowStatus.RELEASED
                )

        logger.info(
            "Escrow release run finished: found=%s released=%s failed=%s skipped=%s dry_run=%s",
            stats["found"],
            stats["released"],
            stats["failed"],
            stats["skipped"],
            dry_run,
        )
        return stats
    finally:
        cache.delete(RELEASE_LOCK_KEY)


def release_specific_escrow(purchase: Purchase, released_by=None, reason: str = "", signature: str = "") -> str:
    if _is_dummy_escrow(purchase):
        tx_hash = dummy_hash()
    else:
        with rpc_errors("Escrow release failed on blockchain"):
            client = EscrowClient.for_token(purchase.payment_token)
            tx_hash = client.release_escrow(purchase.escrow_id)
    purchase.mark_released(tx_hash, released_by=released_by, reason=reason, signature=signature)
    return tx_hash


# --- admin overrides ---


def release_message(escrow_id: str, reason: str, timestamp) -> str:
    return f"Release escrow {escrow_id}\nReason: {reason}\nTimestamp: {timestamp}"


def _verify_admin_signature(admin, escrow_id, reason, signature, signer_address, timestamp) -> None:
    if not signature or not signer_address:
        raise PaymentError("Wallet signature required for security")
    if not is_valid_wallet_address(signer_address):
        raise PaymentError("Invalid wallet address")

    signer_address = signer_address.lower()
    profile = admin.profile
    if not profile.wallet_address:
        profile.wallet_address = signer_address
        try:
            with transaction.atomic():
                profile.save(update_fields=["wallet_address", "updated_at"])
        except IntegrityError:
            raise PaymentError("Signer wallet belongs to another account", status_code=403)
        logger.info("Registered signing wallet %s for admin %s", signer_address, admin.pk)
    elif profile.wallet_address != signer_address:
        raise PaymentError("Signer does not match your registered wallet", status_code=403)

    try:
        signed_at_ms = int(timestamp)
    except (TypeError, ValueError):
        raise PaymentError("Invalid signature timestamp")
    age_seconds = abs(time.time() * 1000 - signed_at_ms) / 1000
    if age_seconds > settings.ADMIN_SIGNATURE_MAX_AGE_SECONDS:
        raise PaymentError("Signature expired", status_code=403)

    recovered = recover_signer(release_message(escrow_id, reason, timestamp), signature)
    if recovered != signer_address:
        raise PaymentError("Invalid wallet signature", status_code=403)


def _get_escrow_purchase(escrow_id) -> Purchase:
    purchase = (
        Purchase.objects.select_related("payment_token", "course", "user")
        .filter(escrow_id=escrow_id)
        .exclude(escrow_id="")
        .first()
    )
    if purchase is None:
        raise EscrowNotFoundError("Escrow not found")
    return purchase


def manual_release(
    admin,
    escrow_id: str,
    reason: str,
    signature: Optional[str],
    signer_address: Optional[str],
    timestamp,
    ip_address=None,
) -> Purchase:
    reason = (reason or "").strip()
    if not reason:
        raise PaymentError("Reason is required")

    _verify_admin_signature(admin, escrow_id, reason, signature, signer_address, timestamp)

    purchase = _get_escrow_purchase(escrow_id)
    if purchase.escrow_status == Purchase.EscrowStatus.RELEASED:
        raise PaymentError("Escrow already released")
    if purchase.escrow_status == Purchase.EscrowStatus.REFUNDED or purchase.status == Purchase.Status.REFUNDED:
        raise PaymentError("Cannot release - escrow was refunded")

    threshold = Decimal(str(settings.ESCROW_LARGE_AMOUNT_THRESHOLD_USD))
    if purchase.amount_in_usd > threshold and not is_super_admin(admin):
        raise PaymentError(
            f"Escrows above ${threshold} require a super admin",
            status_code=403,
        )

    was_due = purchase.escrow_release_date is not None and purchase.escrow_release_date <= timezone.now()
    tx_hash = release_specific_escrow(purchase, released_by=admin, reason=reason, signature=signature)

    record_admin_action(
        admin,
        AdminAuditLog.Action.MANUAL_ESCROW_RELEASE,
        AdminAuditLog.TargetType.PURCHASE,
        purchase.pk,
        {
            "escrow_id": escrow_id,
            "reason": reason,
            "transaction_hash": tx_hash,
            "amount_in_usd": str(purchase.amount_in_usd),
            "released_early": not was_due,
            "signer_address": signer_address.lower(),
        },
        ip_address,
    )
    return purchase


def manual_refund(admin, escrow_id: str, reason: str, ip_address=None) -> Purchase:
    purchase = _get_escrow_purchase(escrow_id)
    if purchase.escrow_status == Purchase.EscrowStatus.REFUNDED or purchase.status == Purchase.Status.REFUNDED:
        raise PaymentError("Already refunded")
    if purchase.escrow_status == Purchase.EscrowStatus.RELEASED:
        raise PaymentError("Already released, cannot refund")

    if _is_dummy_escrow(purchase):
        tx_hash = dummy_hash("dummy_refund")
    else:
        with rpc_errors("Escrow refund failed on blockchain"):
            client = EscrowClient.for_token(purchase.payment_token)
            tx_hash = client.refund_escrow(purchase.escrow_id)

    purchase.mark_refunded(tx_hash, reason=reason or "Refunded by admin")
    record_admin_action(
        admin,
        AdminAuditLog.Action.MANUAL_ESCROW_REFUND,
        AdminAuditLog.TargetType.PURCHASE,
        purchase.pk,
        {"escrow_id": escrow_id, "reason": reason, "transaction_hash": tx_hash},
        ip_address,
    )
    return purchase


def _get_user_and_course(user_id, course_id):
    user = User.objects.filter(pk=user_id).first() if user_id else None
    if user is None:
        raise PaymentError("User not found", status_code=404)
    course = Course.objects.filter(pk=course_id).first() if course_id else None
    if course is None:
        raise PaymentError("Course not found", status_code=404)
    return user, course


def grant_free_access(admin, user_id, course_id, reason: str = "", ip_address=None) -> Purchase:
    user, course = _get_user_and_course(user_id, course_id)
    if Purchase.objects.filter(user=user, course=course, status=Purchase.Status.ACTIVE).exists():
        raise PaymentError("User already has access")

    purchase = Purchase.objects.create(
        user=user,
        course=course,
        amount_in_token="0",
        amount_in_usd=Decimal("0"),
        transaction_hash=None,
        blockchain="admin",
        from_address=ZERO_ADDRESS,
        escrow_status=Purchase.EscrowStatus.RELEASED,
        refund_eligible=False,
        granted_by_admin=admin,
        grant_reason=reason or "",
        status=Purchase.Status.ACTIVE,
    )
    record_admin_action(
        admin,
        AdminAuditLog.Action.GRANT_FREE_COURSE_ACCESS,
        AdminAuditLog.TargetType.PURCHASE,
        purchase.pk,
        {"user_id": user.pk, "course_id": course.pk, "reason": reason},
        ip_address,
    )
    return purchase


def remove_access(admin, user_id, course_id, reason: str = "", ip_address=None) -> Purchase:
    user, course = _get_user_and_course(user_id, course_id)
    purchase = Purchase.objects.filter(user=user, course=course, status=Purchase.Status.ACTIVE).first()
    if purchase is None:
        raise PaymentError("Access not found", status_code=404)

    purchase.status = Purchase.Status.REVOKED
    purchase.revoked_at = timezone.now()
    purchase.revoked_by = admin
    purchase.revoke_reason = reason or ""
    purchase.save(update_fields=["status", "revoked_at", "revoked_by", "revoke_reason", "updated_at"])

    record_admin_action(
        admin,
        AdminAuditLog.Action.REMOVE_COURSE_ACCESS,
        AdminAuditLog.TargetType.PURCHASE,
        purchase.pk,
        {"user_id": user.pk, "course_id": course.pk, "reason": reason},
        ip_address,
    )
    return purchase
