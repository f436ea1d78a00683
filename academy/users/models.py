"""
Academy User Models

Extends Django's built-in User with the marketplace profile (wallet identity,
role, instructor status, XP and level), the payout wallets instructors
register per chain, and the instructor application workflow.

Models:
- Profile: wallet identity, role flags, gamification and counters
- PaymentWallet: payout address per blockchain and chain id
- InstructorApplication: one application per user, reviewed by admins
- UnlockedAchievement: achievements a user has reached, with the XP granted

Author: Academy Development Team
Version: 1.0.0
"""

from typing import Optional

from django.conf import settings
from django.core.validators import MinValueValidator, RegexValidator
from django.db import models
from django.db.models import F
from django.db.models.signals import post_save
from django.dispatch import receiver
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

wallet_address_validator = RegexValidator(
    regex=r"^0x[a-fA-F0-9]{40}$",
    message=_("Invalid wallet address format"),
)


class Profile(models.Model):
    """
    Marketplace profile attached to every Django user.

    Students are created on first wallet sign-in; staff accounts created in
    the admin may have no wallet. The wallet address is always stored
    lower-cased so lookups are case-insensitive.
    """

    class Role(models.TextChoices):
        STUDENT = "student", _("Student")
        INSTRUCTOR = "instructor", _("Instructor")
        ADMIN = "admin", _("Admin")

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="profile",
        verbose_name=_("User"),
    )
    wallet_address = models.CharField(
        max_length=42,
        unique=True,
        null=True,
        blank=True,
        validators=[wallet_address_validator],
        help_text=_("EVM wallet used to sign in, stored lower-case"),
    )
    display_name = models.CharField(max_length=50, blank=True)
    bio = models.TextField(max_length=500, blank=True)
    avatar = models.URLField(blank=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.STUDENT)

    is_instructor = models.BooleanField(default=False)
    instructor_verified = models.BooleanField(default=False)
    instructor_bio = models.TextField(max_length=1000, blank=True)
    expertise = models.JSONField(default=list, blank=True)
    social_links = models.JSONField(default=dict, blank=True)

    is_super_admin = models.BooleanField(
        default=False,
        help_text=_("May release escrows above the large amount threshold"),
    )
    is_banned = models.BooleanField(default=False)

    total_xp = models.PositiveIntegerField(default=0)
    level = models.PositiveSmallIntegerField(default=1)

    courses_enrolled = models.PositiveIntegerField(default=0)
    courses_completed = models.PositiveIntegerField(default=0)
    certificates_earned = models.PositiveIntegerField(default=0)
    reviews_written = models.PositiveIntegerField(default=0)
    total_courses_created = models.PositiveIntegerField(default=0)

    last_login_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("User Profile")
        verbose_name_plural = _("User Profiles")
        db_table = "academy_profile"

    def __str__(self) -> str:
        return f"{self.user.username} Profile"

    def save(self, *args, **kwargs):
        if self.wallet_address:
            self.wallet_address = self.wallet_address.lower()
        super().save(*args, **kwargs)

    @property
    def public_name(self) -> str:
        return self.display_name or self.user.username

    def wallet_for_chain(self, blockchain: str, chain_id: int) -> Optional["PaymentWallet"]:
        """Payout wallet registered for a given chain, primary first."""
        return (
            self.user.payment_wallets.filter(blockchain=blockchain, chain_id=chain_id)
            .order_by("-is_primary", "created_at")
            .first()
        )

    def increment(self, field: str, amount: int = 1) -> None:
        """Atomically bump one of the counter fields."""
        Profile.objects.filter(pk=self.pk).update(**{field: F(field) + amount})


class PaymentWallet(models.Model):
    """Address that receives instructor payouts on one chain."""

    class Blockchain(models.TextChoices):
        EVM = "evm", _("EVM")

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payment_wallets",
    )
    blockchain = models.CharField(
        max_length=10, choices=Blockchain.choices, default=Blockchain.EVM
    )
    chain_id = models.PositiveBigIntegerField()
    address = models.CharField(max_length=42, validators=[wallet_address_validator])
    label = models.CharField(max_length=50, blank=True)
    is_primary = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Payment Wallet")
        verbose_name_plural = _("Payment Wallets")
        ordering = ["-is_primary", "created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "blockchain", "chain_id"],
                name="unique_payment_wallet_per_chain",
            )
        ]

    def __str__(self) -> str:
        return f"{self.user.username} {self.blockchain}:{self.chain_id} {self.address}"

    def save(self, *args, **kwargs):
        self.address = self.address.lower()
        super().save(*args, **kwargs)


class InstructorApplication(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        UNDER_REVIEW = "under-review", _("Under review")
        APPROVED = "approved", _("Approved")
        REJECTED = "rejected", _("Rejected")

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="instructor_application",
    )
    full_name = models.CharField(max_length=120)
    email = models.EmailField()
    expertise = models.JSONField(default=list)
    years_of_experience = models.PositiveSmallIntegerField(default=0)
    bio = models.TextField(max_length=1000)
    portfolio = models.URLField(blank=True)
    twitter = models.CharField(max_length=120, blank=True)
    linkedin = models.CharField(max_length=200, blank=True)
    website = models.URLField(blank=True)
    discord = models.CharField(max_length=120, blank=True)
    has_teaching_experience = models.BooleanField(default=False)
    teaching_experience_details = models.TextField(blank=True)
    proposed_courses = models.JSONField(
        default=list,
        blank=True,
        help_text=_("List of {title, description, category}"),
    )
    motivation = models.TextField(max_length=500, blank=True)

    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.PENDING
    )
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="reviewed_instructor_applications",
    )
    reviewed_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    admin_notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Instructor Application")
        verbose_name_plural = _("Instructor Applications")
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.full_name} ({self.status})"

    def _mark_reviewed(self, admin, status: str, admin_notes: str = "") -> None:
        self.status = status
        self.reviewed_by = admin
        self.reviewed_at = timezone.now()
        if admin_notes:
            self.admin_notes = admin_notes

    def approve(self, admin, admin_notes: str = "") -> None:
        """Approve and turn the applicant into a verified instructor."""
        self._mark_reviewed(admin, self.Status.APPROVED, admin_notes)
        self.save()

        profile = self.user.profile
        profile.is_instructor = True
        profile.instructor_verified = True
        if profile.role == Profile.Role.STUDENT:
            profile.role = Profile.Role.INSTRUCTOR
        profile.instructor_bio = self.bio
        profile.expertise = self.expertise
        profile.social_links = {
            "twitter": self.twitter,
            "linkedin": self.linkedin,
            "website": self.website,
        }
        profile.save()

    def reject(self, admin, rejection_reason: str, admin_notes: str = "") -> None:
        self._mark_reviewed(admin, self.Status.REJECTED, admin_notes)
        self.rejection_reason = rejection_reason
        self.save()

    def mark_under_review(self, admin) -> None:
        self._mark_reviewed(admin, self.Status.UNDER_REVIEW)
        self.save()


class UnlockedAchievement(models.Model):
    """An achievement from the catalog in `users.achievements` reached by a user."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="achievements",
    )
    achievement_id = models.CharField(max_length=50)
    xp_earned = models.PositiveIntegerField(default=0)
    unlocked_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Unlocked Achievement")
        verbose_name_plural = _("Unlocked Achievements")
        ordering = ["unlocked_at"]
        constraints = [
            models.UniqueConstraint(fields=["user", "achievement_id"], name="unique_user_achievement")
        ]

    def __str__(self) -> str:
        return f"{self.achievement_id} for {self.user}"


# --- Signal Handlers for Automatic Profile Management ---


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def create_user_profile(sender, instance, created: bool, **kwargs) -> None:
    """Every user gets a profile; wallet sign-in fills in the address afterwards."""
    if created:
        Profile.objects.get_or_create(user=instance)


__all__ = [
    "Profile",
    "PaymentWallet",
    "InstructorApplication",
    "UnlockedAchievement",
    "wallet_address_validator",
]
