"""
Academy Course Models

Courses are authored by verified instructors as sections of ordered video
lessons. Videos live in S3-compatible storage and are only handed out through
short-lived video sessions.

Models:
- Course: catalog entry with pricing, publishing state and rating statistics
- Section / Lesson: ordered course content
- VideoSession: time-limited token gating presigned video URLs

Author: Academy Development Team
Version: 1.0.0
"""

import re
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Sum
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

User = settings.AUTH_USER_MODEL

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")
# first path segments of fixed routes under /courses/
RESERVED_SLUGS = frozenset(
    {"mine", "instructor", "categories", "sections", "lessons", "video-session", "storage"}
)


class Course(models.Model):
    class Category(models.TextChoices):
        WEB3_DEVELOPMENT = "Web3 Development", _("Web3 Development")
        BLOCKCHAIN_FUNDAMENTALS = "Blockchain Fundamentals", _("Blockchain Fundamentals")
        DEFI = "DeFi", _("DeFi")
        NFTS = "NFTs & Digital Art", _("NFTs & Digital Art")
        SMART_CONTRACTS = "Smart Contracts", _("Smart Contracts")
        COMMUNITY_BUILDING = "Community Building", _("Community Building")
        MARKETING = "Marketing & Growth", _("Marketing & Growth")
        TRADING = "Trading & Investment", _("Trading & Investment")
        SECURITY = "Security & Auditing", _("Security & Auditing")
        DAOS = "DAOs & Governance", _("DAOs & Governance")
        GAMING = "Gaming & Metaverse", _("Gaming & Metaverse")
        CONTENT_CREATION = "Content Creation", _("Content Creation")
        BUSINESS = "Business & Entrepreneurship", _("Business & Entrepreneurship")
        DESIGN = "Design & UX", _("Design & UX")
        LEGAL = "Legal & Compliance", _("Legal & Compliance")

    class Level(models.TextChoices):
        BEGINNER = "beginner", _("Beginner")
        INTERMEDIATE = "intermediate", _("Intermediate")
        ADVANCED = "advanced", _("Advanced")
        ALL = "all", _("All levels")

    class Status(models.TextChoices):
        DRAFT = "draft", _("Draft")
        PENDING = "pending", _("Pending review")
        PUBLISHED = "published", _("Published")
        ARCHIVED = "archived", _("Archived")

    title = models.CharField(max_length=200)
    slug = models.SlugField(max_length=220, unique=True, blank=True)
    subtitle = models.CharField(max_length=200, blank=True)
    description = models.TextField(blank=True)
    instructor = models.ForeignKey(User, on_delete=models.CASCADE, related_name="courses")
    thumbnail = models.CharField(max_length=500, blank=True)
    preview_video_key = models.CharField(max_length=500, blank=True)

    price_usd = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0"))],
    )
    discount_price_usd = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal("0"))],
    )
    discount_end_date = models.DateTimeField(null=True, blank=True)

    category = models.CharField(max_length=40, choices=Category.choices)
    tags = models.JSONField(default=list, blank=True)
    requirements = models.JSONField(default=list, blank=True)
    what_you_will_learn = models.JSONField(default=list, blank=True)
    target_audience = models.JSONField(default=list, blank=True)
    level = models.CharField(max_length=20, choices=Level.choices, default=Level.BEGINNER)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    published_at = models.DateTimeField(null=True, blank=True)
    refund_period_days = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(90)],
        help_text=_("Escrow period override; platform default when empty"),
    )
    has_certificate = models.BooleanField(default=True)
    has_lifetime_access = models.BooleanField(default=True)

    total_lessons = models.PositiveIntegerField(default=0)
    total_duration = models.PositiveIntegerField(default=0, help_text=_("Seconds"))
    enrollment_count = models.PositiveIntegerField(default=0)
    completion_count = models.PositiveIntegerField(default=0)

    average_rating = models.DecimalField(max_digits=3, decimal_places=2, default=Decimal("0"))
    total_ratings = models.PositiveIntegerField(default=0)
    rating_1 = models.PositiveIntegerField(default=0)
    rating_2 = models.PositiveIntegerField(default=0)
    rating_3 = models.PositiveIntegerField(default=0)
    rating_4 = models.PositiveIntegerField(default=0)
    rating_5 = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Course")
        verbose_name_plural = _("Courses")
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "category"]),
            models.Index(fields=["instructor", "status"]),
        ]

    def __str__(self):
        return self.title

    # --- slugs ---

    @staticmethod
    def slugify_title(title: str) -> str:
        return _SLUG_STRIP_RE.sub("-", (title or "").lower()).strip("-") or "course"

    @classmethod
    def generate_unique_slug(cls, title: str, exclude_pk: Optional[int] = None) -> str:
        base = cls.slugify_title(title)
        candidate = base
        counter = 1
        queryset = cls.objects.all()
        if exclude_pk is not None:
            queryset = queryset.exclude(pk=exclude_pk)
        while candidate in RESERVED_SLUGS or queryset.filter(slug=candidate).exists():
            candidate = f"{base}-{counter}"
            counter += 1
        return candidate

    def save(self, *args, **kwargs):
        if not self.slug:
            self.slug = self.generate_unique_slug(self.title, exclude_pk=self.pk)
        super().save(*args, **kwargs)

    # --- pricing ---

    @property
    def has_active_discount(self) -> bool:
        return (
            self.discount_price_usd is not None
            and self.discount_end_date is not None
            and self.discount_end_date > timezone.now()
        )

    @property
    def effective_price(self) -> Decimal:
        return self.discount_price_usd if self.has_active_discount else self.price_usd

    # --- ownership and access ---

    def is_instructor(self, user) -> bool:
        return bool(user and user.is_authenticated and self.instructor_id == user.pk)

    def has_purchased(self, user) -> bool:
        if not user or not user.is_authenticated:
            return False
        return self.purchases.filter(user=user, status="active").exists()

    def can_access_content(self, user) -> bool:
        return self.is_instructor(user) or self.has_purchased(user)

    # --- statistics ---

    def recalculate_totals(self) -> None:
        """Recompute lesson count and duration from the lessons table."""
        totals = Lesson.objects.filter(section__course_id=self.pk).aggregate(
            count=models.Count("id"), duration=Sum("duration")
        )
        self.total_lessons = totals["count"] or 0
        self.total_duration = totals["duration"] or 0
        Course.objects.filter(pk=self.pk).update(
            total_lessons=self.total_lessons, total_duration=self.total_duration
        )

    def update_rating(self, new_rating: Optional[int] = None, old_rating: Optional[int] = None) -> None:
        """
        Move a review between rating buckets. `old_rating` is removed and
        `new_rating` added; either may be None (new review / deleted review).
        """
        if old_rating:
            field = f"rating_{old_rating}"
            setattr(self, field, max(0, getattr(self, field) - 1))
        if new_rating:
            field = f"rating_{new_rating}"
            setattr(self, field, getattr(self, field) + 1)

        counts = {star: getattr(self, f"rating_{star}") for star in range(1, 6)}
        total = sum(counts.values())
        self.total_ratings = total
        if total:
            weighted = sum(star * count for star, count in counts.items())
            self.average_rating = (Decimal(weighted) / Decimal(total)).quantize(Decimal("0.01"))
        else:
            self.average_rating = Decimal("0")
        self.save(
            update_fields=[
                "rating_1",
                "rating_2",
                "rating_3",
                "rating_4",
                "rating_5",
                "total_ratings",
                "average_rating",
                "updated_at",
            ]
        )

    @property
    def rating_distribution(self):
        return {str(star): getattr(self, f"rating_{star}") for star in range(1, 6)}

    # --- publishing ---

    def publish_blocker(self) -> Optional[str]:
        """First reason the course cannot be published, or None."""
        if not self.thumbnail or "placeholder" in self.thumbnail:
            return "Please upload a thumbnail"
        sections = list(self.sections.prefetch_related("lessons"))
        if not sections:
            return "Add at least one section"
        lessons = [lesson for section in sections for lesson in section.lessons.all()]
        if not lessons:
            return "Add at least one lesson"
        if any(not lesson.video_key for lesson in lessons):
            return "All lessons must have videos uploaded"
        return None

    def publish(self) -> None:
        self.status = self.Status.PUBLISHED
        self.published_at = timezone.now()
        self.save(update_fields=["status", "published_at", "updated_at"])


class Section(models.Model):
    course = models.ForeignKey(Course, on_delete=models.CASCADE, related_name="sections")
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    order = models.PositiveIntegerField(default=0)

    class Meta:
        verbose_name = _("Section")
        verbose_name_plural = _("Sections")
        ordering = ["order", "id"]

    def __str__(self):
        return f"{self.course.title}: {self.title}"


class Lesson(models.Model):
    section = models.ForeignKey(Section, on_delete=models.CASCADE, related_name="lessons")
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    video_key = models.CharField(
        max_length=500, blank=True, help_text=_("Object key in the video bucket")
    )
    duration = models.PositiveIntegerField(default=0, help_text=_("Seconds"))
    order = models.PositiveIntegerField(default=0)
    is_preview = models.BooleanField(default=False)
    resources = models.JSONField(
        default=list, blank=True, help_text=_("List of {title, url, type}")
    )

    class Meta:
        verbose_name = _("Lesson")
        verbose_name_plural = _("Lessons")
        ordering = ["order", "id"]

    def __str__(self):
        return self.title

    @property
    def course(self) -> Course:
        return self.section.course


class VideoSession(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="video_sessions")
    course = models.ForeignKey(Course, on_delete=models.CASCADE, related_name="video_sessions")
    session_token = models.CharField(max_length=64, unique=True)
    expires_at = models.DateTimeField()
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=500, blank=True)
    video_keys = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Video Session")
        verbose_name_plural = _("Video Sessions")
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["user", "course", "is_active"])]

    def __str__(self):
        return f"Video session {self.session_token[:8]}... ({self.user_id})"

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= timezone.now()

    @property
    def remaining_seconds(self) -> int:
        return max(0, int((self.expires_at - timezone.now()).total_seconds()))

    def deactivate(self) -> None:
        self.is_active = False
        self.save(update_fields=["is_active"])


# --- Keep course totals in sync with lessons ---


@receiver(post_save, sender=Lesson)
@receiver(post_delete, sender=Lesson)
def refresh_course_totals(sender, instance: Lesson, **kwargs) -> None:
    section = Section.objects.filter(pk=instance.section_id).select_related("course").first()
    if section is not None:
        section.course.recalculate_totals()


__all__ = ["Course", "Section", "Lesson", "VideoSession"]
