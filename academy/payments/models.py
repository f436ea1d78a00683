"""
Academy Payment Models

Crypto course payments settle through an on-chain escrow contract: the
student's tokens are locked until the refund window closes, then released to
the instructor (minus platform fee). Amounts in token units are stored as
integer strings because 18-decimal values overflow database integers.

Models:
- PaymentToken: accepted token per chain with its escrow contract and oracle
- PlatformSettings: singleton with fee and escrow defaults
- InstructorFeeSettings: per-instructor fee overrides
- Purchase: course access record with escrow, refund and progress state
- AdminAuditLog: trail of manual admin interventions

Author: Academy Development Team
Version: 1.0.0
"""

import math
from datetime import timedelta
from decimal import Decimal
from typing import Optional, Tuple

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

User = settings.AUTH_USER_MODEL

DEFAULT_ESCROW_PERIOD_DAYS = 14

percentage_validators = [MinValueValidator(0), MaxValueValidator(100)]


class PaymentToken(models.Model):
    class Blockchain(models.TextChoices):
        EVM = "evm", _("EVM")

    class PriceOracle(models.TextChoices):
        COINGECKO = "coingecko", _("CoinGecko")
        CHAINLINK = "chainlink", _("Chainlink")
        FIXED = "fixed", _("Fixed price")

    symbol = models.CharField(max_length=20, unique=True)
    name = models.CharField(max_length=100)
    icon = models.CharField(max_length=500, blank=True)
    blockchain = models.CharField(max_length=10, choices=Blockchain.choices, default=Blockchain.EVM)
    chain_id = models.PositiveBigIntegerField()
    chain_name = models.CharField(max_length=100)
    rpc_url = models.URLField(max_length=500)
    explorer_url = models.URLField(max_length=500)
    contract_address = models.CharField(max_length=42)
    decimals = models.PositiveSmallIntegerField(default=18, validators=[MaxValueValidator(36)])
    is_native = models.BooleanField(default=False)
    payment_contract_address = models.CharField(
        max_length=42, help_text=_("Escrow contract receiving payments")
    )
    is_stablecoin = models.BooleanField(default=False)
    price_oracle_type = models.CharField(
        max_length=20, choices=PriceOracle.choices, default=PriceOracle.COINGECKO
    )
    coingecko_id = models.CharField(max_length=100, blank=True)
    chainlink_price_feed = models.CharField(max_length=42, blank=True)
    fixed_usd_price = models.DecimalField(max_digits=20, decimal_places=8, default=Decimal("1.0"))
    is_active = models.BooleanField(default=True)
    is_enabled = models.BooleanField(default=True)
    display_order = models.IntegerField(default=0)
    color = models.CharField(max_length=20, blank=True)
    badge = models.CharField(max_length=30, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Payment Token")
        verbose_name_plural = _("Payment Tokens")
        ordering = ["display_order", "symbol"]

    def __str__(self):
        return f"{self.symbol} ({self.chain_name})"

    def save(self, *args, **kwargs):
        self.symbol = self.symbol.upper()
        super().save(*args, **kwargs)

    @property
    def is_available(self) -> bool:
        return self.is_active and self.is_enabled


class PlatformSettings(models.Model):
    """Single row holding platform-wide fee and escrow defaults."""

    default_platform_fee_percentage = models.PositiveSmallIntegerField(
        default=20, validators=percentage_validators
    )
    default_instructor_fee_percentage = models.PositiveSmallIntegerField(
        default=80, validators=percentage_validators
    )
    revenue_split_percentage = models.PositiveSmallIntegerField(
        default=20,
        validators=percentage_validators,
        help_text=_("Share of the platform fee sent to revenue split wallets"),
    )
    default_escrow_period_days = models.PositiveSmallIntegerField(
        default=DEFAULT_ESCROW_PERIOD_DAYS,
        validators=[MinValueValidator(1), MaxValueValidator(90)],
    )
    default_min_watch_percentage = models.PositiveSmallIntegerField(
        default=20, validators=percentage_validators
    )
    default_max_watch_time_minutes = models.PositiveIntegerField(
        default=30, validators=[MinValueValidator(5), MaxValueValidator(1440)]
    )
    platform_wallets = models.JSONField(default=dict, blank=True)
    revenue_split_wallets = models.JSONField(default=dict, blank=True)
    updated_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Platform Settings")
        verbose_name_plural = _("Platform Settings")

    def __str__(self):
        return "Platform settings"

    def clean(self):
        if self.default_platform_fee_percentage + self.default_instructor_fee_percentage != 100:
            raise ValidationError(_("Platform and instructor fees must add up to 100"))

    def save(self, *args, **kwargs):
        self.pk = 1
        super().save(*args, **kwargs)

    @classmethod
    def get_settings(cls) -> "PlatformSettings":
        obj, _created = cls.objects.get_or_create(pk=1)
        return obj


class InstructorFeeSettings(models.Model):
    instructor = models.OneToOneField(
        User, on_delete=models.CASCADE, related_name="fee_settings"
    )
    custom_platform_fee_percentage = models.PositiveSmallIntegerField(
        null=True, blank=True, validators=percentage_validators
    )
    custom_instructor_fee_percentage = models.PositiveSmallIntegerField(
        null=True, blank=True, validators=percentage_validators
    )
    use_custom_fees = models.BooleanField(default=False)
    admin_notes = models.TextField(max_length=500, blank=True)
    updated_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Instructor Fee Settings")
        verbose_name_plural = _("Instructor Fee Settings")

    def __str__(self):
        return f"Fees for {self.instructor}"

    def clean(self):
        if self.use_custom_fees:
            if self.custom_platform_fee_percentage is None or self.custom_instructor_fee_percentage is None:
                raise ValidationError(_("Custom fees require both percentages"))
            if self.custom_platform_fee_percentage + self.custom_instructor_fee_percentage != 100:
                raise ValidationError(_("Platform and instructor fees must add up to 100"))

    @classmethod
    def get_effective_fees(cls, instructor) -> dict:
        """Fee split applied to an instructor's sales."""
        custom = cls.objects.filter(instructor=instructor).first()
        if (
            custom
            and custom.use_custom_fees
            and custom.custom_platform_fee_percentage is not None
            and custom.custom_instructor_fee_percentage is not None
        ):
            return {
                "platform_fee_percentage": custom.custom_platform_fee_percentage,
                "instructor_fee_percentage": custom.custom_instructor_fee_percentage,
                "is_custom": True,
            }

        platform = PlatformSettings.get_settings()
        return {
            "platform_fee_percentage": platform.default_platform_fee_percentage,
            "instructor_fee_percentage": platform.default_instructor_fee_percentage,
            "is_custom": False,
        }


class Purchase(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        ACTIVE = "active", _("Active")
        REFUNDED = "refunded", _("Refunded")
        EXPIRED = "expired", _("Expired")
        DISPUTED = "disputed", _("Disputed")
        FAILED = "failed", _("Failed")
        REVOKED = "revoked", _("Revoked")

    class EscrowStatus(models.TextChoices):
        PENDING = "pending", _("Pending registration")
        LOCKED = "locked", _("Locked")
        RELEASED = "released", _("Released")
        REFUNDED = "refunded", _("Refunded")
        FAILED = "failed", _("Failed")
        DUMMY = "dummy", _("Dummy")

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="purchases")
    course = models.ForeignKey("academy.Course", on_delete=models.PROTECT, related_name="purchases")
    payment_token = models.ForeignKey(
        PaymentToken, null=True, blank=True, on_delete=models.PROTECT, related_name="purchases"
    )

    amount_in_token = models.CharField(max_length=80, default="0")
    amount_in_usd = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0"))
    platform_amount = models.CharField(max_length=80, default="0")
    instructor_amount = models.CharField(max_length=80, default="0")
    revenue_split_amount = models.CharField(max_length=80, default="0")
    platform_fee_percentage = models.PositiveSmallIntegerField(default=0)
    instructor_fee_percentage = models.PositiveSmallIntegerField(default=0)

    transaction_hash = models.CharField(max_length=100, unique=True, null=True, blank=True)
    blockchain = models.CharField(max_length=20, blank=True)
    from_address = models.CharField(max_length=42, blank=True)
    to_address = models.CharField(max_length=42, blank=True)

    escrow_id = models.CharField(max_length=100, blank=True, db_index=True)
    escrow_status = models.CharField(
        max_length=20, choices=EscrowStatus.choices, default=EscrowStatus.PENDING
    )
    escrow_release_date = models.DateTimeField(null=True, blank=True)
    escrow_released_at = models.DateTimeField(null=True, blank=True)
    escrow_created_tx_hash = models.CharField(max_length=100, blank=True)
    escrow_release_tx_hash = models.CharField(max_length=100, blank=True)
    escrow_released_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    escrow_release_reason = models.TextField(blank=True)
    escrow_release_signature = models.CharField(max_length=200, blank=True)

    refund_eligible = models.BooleanField(default=True)
    refund_requested_at = models.DateTimeField(null=True, blank=True)
    refund_processed_at = models.DateTimeField(null=True, blank=True)
    refund_transaction_hash = models.CharField(max_length=100, blank=True)
    refund_reason = models.TextField(blank=True)

    granted_by_admin = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    grant_reason = models.TextField(blank=True)

    progress = models.PositiveSmallIntegerField(default=0, validators=percentage_validators)
    total_watch_time = models.PositiveIntegerField(default=0, help_text=_("Seconds"))
    completed_lessons = models.JSONField(default=list, blank=True)
    last_accessed_lesson = models.ForeignKey(
        "academy.Lesson", null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    last_accessed_at = models.DateTimeField(null=True, blank=True)
    is_completed = models.BooleanField(default=False)
    completed_at = models.DateTimeField(null=True, blank=True)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)
    revoked_at = models.DateTimeField(null=True, blank=True)
    revoked_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    revoke_reason = models.TextField(blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Purchase")
        verbose_name_plural = _("Purchases")
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "course", "status"]),
            models.Index(fields=["escrow_status", "escrow_release_date"]),
        ]

    def __str__(self):
        return f"{self.user} → {self.course} ({self.status})"

    # --- escrow ---

    @property
    def escrow_period_days(self) -> int:
        if self.escrow_release_date and self.created_at:
            return max(0, (self.escrow_release_date - self.created_at).days)
        return DEFAULT_ESCROW_PERIOD_DAYS

    @property
    def days_until_release(self) -> Optional[int]:
        if not self.escrow_release_date:
            return None
        seconds = (self.escrow_release_date - timezone.now()).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    def check_refund_eligibility(self, now=None) -> Tuple[bool, Optional[str]]:
        """Returns (eligible, reason); reasons are checked in a fixed order."""
        now = now or timezone.now()
        days_since_purchase = (now - self.created_at).days
        if days_since_purchase > self.escrow_period_days:
            return False, "Refund period has expired"
        if self.escrow_status == self.EscrowStatus.RELEASED:
            return False, "Payment already released"
        if self.escrow_status == self.EscrowStatus.REFUNDED:
            return False, "Already refunded"
        return True, None

    def mark_released(self, tx_hash: str, released_by=None, reason: str = "", signature: str = "") -> None:
        self.escrow_status = self.EscrowStatus.RELEASED
        self.escrow_released_at = timezone.now()
        self.escrow_release_tx_hash = tx_hash or ""
        self.escrow_released_by = released_by
        if reason:
            self.escrow_release_reason = reason
        if signature:
            self.escrow_release_signature = signature
        self.refund_eligible = False
        self.save()

    def mark_refunded(self, tx_hash: str, reason: str = "") -> None:
        now = timezone.now()
        self.status = self.Status.REFUNDED
        self.escrow_status = self.EscrowStatus.REFUNDED
        self.refund_requested_at = self.refund_requested_at or now
        self.refund_processed_at = now
        self.refunded_at = now
        self.refund_transaction_hash = tx_hash or ""
        if reason:
            self.refund_reason = reason
        self.refund_eligible = False
        self.save()

    # --- learning progress ---

    def complete_lesson(self, lesson_id: int, watch_time: int = 0) -> bool:
        """
        Record a finished lesson. Returns True when this call completed the
        whole course.
        """
        if lesson_id not in self.completed_lessons:
            self.completed_lessons = self.completed_lessons + [lesson_id]
        self.total_watch_time += max(0, int(watch_time or 0))
        self.last_accessed_lesson_id = lesson_id
        self.last_accessed_at = timezone.now()

        total = self.course.total_lessons
        if total:
            self.progress = min(100, round(len(self.completed_lessons) / total * 100))

        newly_completed = self.progress >= 100 and not self.is_completed
        if newly_completed:
            self.is_completed = True
            self.completed_at = timezone.now()
        self.save()
        return newly_completed


class AdminAuditLog(models.Model):
    class Action(models.TextChoices):
        MANUAL_ESCROW_RELEASE = "manual_escrow_release", _("Manual escrow release")
        MANUAL_ESCROW_REFUND = "manual_escrow_refund", _("Manual escrow refund")
        GRANT_FREE_COURSE_ACCESS = "grant_free_course_access", _("Grant free course access")
        REMOVE_COURSE_ACCESS = "remove_course_access", _("Remove course access")

    class TargetType(models.TextChoices):
        PURCHASE = "Purchase", _("Purchase")
        USER = "User", _("User")
        COURSE = "Course", _("Course")

    admin = models.ForeignKey(User, on_delete=models.PROTECT, related_name="admin_audit_logs")
    action = models.CharField(max_length=40, choices=Action.choices)
    target_type = models.CharField(max_length=20, choices=TargetType.choices)
    target_id = models.CharField(max_length=64)
    details = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Admin Audit Log")
        verbose_name_plural = _("Admin Audit Logs")
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.action} by {self.admin} on {self.target_type}:{self.target_id}"


__all__ = [
    "PaymentToken",
    "PlatformSettings",
    "InstructorFeeSettings",
    "Purchase",
    "AdminAuditLog",
    "DEFAULT_ESCROW_PERIOD_DAYS",
]
