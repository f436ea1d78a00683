"""
Academy Certification Models

Professional certification tests that stand apart from courses: a question
pool per certification, timed attempts drawn from the pool, paid attempt
resets and paid certificates with a public verification number.

Models:
- ProfessionalCertification: the test definition and its statistics
- CertificationQuestion: multiple-choice or true/false pool question
- CertificationAttempt: one sitting with its drawn question set and results
- AttemptReset: record of a paid reset of a user's attempts
- ProfessionalCertificate: issued certificate for a passed attempt
- CourseCertificate: certificate of completion for a finished course

Author: Academy Development Team
Version: 1.0.0
"""

from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Avg, Q, Sum
from django.utils import timezone
from django.utils.text import slugify
from django.utils.translation import gettext_lazy as _

User = settings.AUTH_USER_MODEL

# first path segments of fixed routes under /certifications/
RESERVED_SLUGS = frozenset({"attempts", "certificates", "verify"})


def grade_for_score(score) -> str:
    score = score or 0
    if score >= 95:
        return "Outstanding"
    if score >= 85:
        return "Excellent"
    if score >= 75:
        return "Very Good"
    if score >= 70:
        return "Good"
    if score >= 60:
        return "Pass"
    return "Fail"


class ProfessionalCertification(models.Model):
    class Level(models.TextChoices):
        BEGINNER = "beginner", _("Beginner")
        INTERMEDIATE = "intermediate", _("Intermediate")
        ADVANCED = "advanced", _("Advanced")

    class Status(models.TextChoices):
        DRAFT = "draft", _("Draft")
        PUBLISHED = "published", _("Published")
        ARCHIVED = "archived", _("Archived")

    title = models.CharField(max_length=200)
    slug = models.SlugField(max_length=220, unique=True, blank=True)
    description = models.TextField()
    thumbnail = models.CharField(max_length=500, blank=True)
    category = models.CharField(max_length=100)
    subcategories = models.JSONField(default=list, blank=True)
    level = models.CharField(max_length=20, choices=Level.choices, default=Level.INTERMEDIATE)
    tags = models.JSONField(default=list, blank=True)

    questions_per_test = models.PositiveSmallIntegerField(default=10, validators=[MinValueValidator(1)])
    duration = models.PositiveSmallIntegerField(default=60, help_text=_("Minutes"), validators=[MinValueValidator(1)])
    passing_score = models.PositiveSmallIntegerField(
        default=70, validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    max_attempts = models.PositiveSmallIntegerField(default=3, validators=[MinValueValidator(1)])

    certificate_price_usd = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal("5.00"))
    discount_price_usd = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    discount_end_date = models.DateTimeField(null=True, blank=True)
    attempt_reset_enabled = models.BooleanField(default=True)
    attempt_reset_price_usd = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal("5.00"))

    allow_copy_paste = models.BooleanField(default=False)
    allow_tab_switch = models.BooleanField(default=False)
    tab_switch_warnings = models.PositiveSmallIntegerField(default=2)
    shuffle_questions = models.BooleanField(default=True)
    shuffle_options = models.BooleanField(default=True)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    published_at = models.DateTimeField(null=True, blank=True)

    total_attempts = models.PositiveIntegerField(default=0)
    total_passed = models.PositiveIntegerField(default=0)
    average_score = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0"))

    created_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name="+"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Professional Certification")
        verbose_name_plural = _("Professional Certifications")
        ordering = ["-published_at", "-created_at"]

    def __str__(self):
        return self.title

    def save(self, *args, **kwargs):
        if not self.slug:
            base = slugify(self.title)[:200] or "certification"
            slug, counter = base, 1
            while (
                slug in RESERVED_SLUGS
                or ProfessionalCertification.objects.filter(slug=slug).exclude(pk=self.pk).exists()
            ):
                counter += 1
                slug = f"{base}-{counter}"
            self.slug = slug
        if self.status == self.Status.PUBLISHED and not self.published_at:
            self.published_at = timezone.now()
        super().save(*args, **kwargs)

    @property
    def total_questions(self) -> int:
        return self.questions.count()

    @property
    def total_points(self) -> int:
        return self.questions.aggregate(total=Sum("points"))["total"] or 0

    @property
    def has_active_discount(self) -> bool:
        return (
            self.discount_price_usd is not None
            and self.discount_end_date is not None
            and self.discount_end_date > timezone.now()
        )

    @property
    def current_certificate_price(self) -> Decimal:
        return self.discount_price_usd if self.has_active_discount else self.certificate_price_usd

    def attempts_used(self, user) -> int:
        return self.attempts.filter(
            user=user,
            status__in=[CertificationAttempt.Status.COMPLETED, CertificationAttempt.Status.CANCELLED],
        ).count()

    def refresh_statistics(self) -> None:
        completed = self.attempts.filter(status=CertificationAttempt.Status.COMPLETED)
        stats = completed.aggregate(
            average=Avg("score"),
            passed=models.Count("id", filter=Q(passed=True)),
            total=models.Count("id"),
        )
        self.total_attempts = stats["total"] or 0
        self.total_passed = stats["passed"] or 0
        self.average_score = Decimal(str(round(stats["average"] or 0, 2)))
        self.save(update_fields=["total_attempts", "total_passed", "average_score", "updated_at"])


class CertificationQuestion(models.Model):
    class Type(models.TextChoices):
        MULTIPLE_CHOICE = "multiple-choice", _("Multiple choice")
        TRUE_FALSE = "true-false", _("True / false")

    certification = models.ForeignKey(
        ProfessionalCertification, on_delete=models.CASCADE, related_name="questions"
    )
    question = models.TextField()
    type = models.CharField(max_length=20, choices=Type.choices, default=Type.MULTIPLE_CHOICE)
    options = models.JSONField(default=list, blank=True, help_text=_('[{"text": ..., "is_correct": bool}]'))
    correct_answer = models.BooleanField(null=True, blank=True)
    points = models.PositiveSmallIntegerField(default=1)
    explanation = models.TextField(blank=True)
    order = models.PositiveIntegerField(default=0)

    class Meta:
        verbose_name = _("Certification Question")
        verbose_name_plural = _("Certification Questions")
        ordering = ["order", "id"]

    def __str__(self):
        return self.question[:80]

    @property
    def correct_option_text(self):
        for option in self.options or []:
            if option.get("is_correct"):
                return option.get("text")
        return None


class CertificationAttempt(models.Model):
    class Status(models.TextChoices):
        IN_PROGRESS = "in-progress", _("In progress")
        PROCESSING = "processing", _("Processing")
        COMPLETED = "completed", _("Completed")
        CANCELLED = "cancelled", _("Cancelled")

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="certification_attempts")
    certification = models.ForeignKey(
        ProfessionalCertification, on_delete=models.CASCADE, related_name="attempts"
    )
    attempt_number = models.PositiveSmallIntegerField()
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.IN_PROGRESS)
    session_token = models.CharField(max_length=64, blank=True)
    question_set = models.JSONField(default=list, blank=True)

    started_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)
    duration = models.PositiveIntegerField(default=0, help_text=_("Seconds"))

    total_questions = models.PositiveSmallIntegerField(default=0)
    answers = models.JSONField(default=list, blank=True)
    correct_answers = models.PositiveSmallIntegerField(default=0)
    incorrect_answers = models.PositiveSmallIntegerField(default=0)
    unanswered_questions = models.PositiveSmallIntegerField(default=0)
    score = models.PositiveSmallIntegerField(default=0)
    passed = models.BooleanField(default=False)
    cancel_reason = models.CharField(max_length=200, blank=True)

    tab_switches = models.PositiveIntegerField(default=0)
    copy_attempts = models.PositiveIntegerField(default=0)
    paste_attempts = models.PositiveIntegerField(default=0)
    right_click_attempts = models.PositiveIntegerField(default=0)
    tab_switch_timestamps = models.JSONField(default=list, blank=True)
    user_agent = models.CharField(max_length=500, blank=True)
    ip_hash = models.CharField(max_length=16, blank=True)

    certificate_issued = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Certification Attempt")
        verbose_name_plural = _("Certification Attempts")
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "certification", "status"]),
        ]

    def __str__(self):
        return f"{self.user} attempt {self.attempt_number} on {self.certification}"

    @property
    def deadline(self):
        return self.started_at + timedelta(minutes=self.certification.duration)

    @property
    def time_remaining(self) -> int:
        return max(0, int((self.deadline - timezone.now()).total_seconds()))

    @property
    def grade(self) -> str:
        return grade_for_score(self.score)

    def cancel(self, reason: str) -> None:
        self.status = self.Status.CANCELLED
        self.cancel_reason = reason
        self.completed_at = timezone.now()
        self.session_token = ""
        self.save(update_fields=["status", "cancel_reason", "completed_at", "session_token", "updated_at"])


class AttemptReset(models.Model):
    class PaymentMethod(models.TextChoices):
        STRIPE = "stripe", _("Stripe")
        EVM = "evm", _("EVM")
        SOLANA = "solana", _("Solana")

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="attempt_resets")
    certification = models.ForeignKey(
        ProfessionalCertification, on_delete=models.CASCADE, related_name="attempt_resets"
    )
    payment_amount = models.DecimalField(max_digits=8, decimal_places=2)
    payment_currency = models.CharField(max_length=10, default="USD")
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices)
    payment_id = models.CharField(max_length=255, blank=True, db_index=True)
    transaction_hash = models.CharField(max_length=100, blank=True)
    attempts_reset_count = models.PositiveSmallIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Attempt Reset")
        verbose_name_plural = _("Attempt Resets")
        ordering = ["-created_at"]

    def __str__(self):
        return f"Reset for {self.user} on {self.certification}"


class ProfessionalCertificate(models.Model):
    class Status(models.TextChoices):
        PENDING_PAYMENT = "pending-payment", _("Pending payment")
        ACTIVE = "active", _("Active")
        REVOKED = "revoked", _("Revoked")
        EXPIRED = "expired", _("Expired")

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="professional_certificates")
    certification = models.ForeignKey(
        ProfessionalCertification, on_delete=models.PROTECT, related_name="certificates"
    )
    attempt = models.OneToOneField(
        CertificationAttempt, on_delete=models.PROTECT, related_name="certificate"
    )
    certificate_number = models.CharField(max_length=40, unique=True)
    certificate_type = models.CharField(max_length=40, default="professional")

    student_name = models.CharField(max_length=100)
    student_wallet = models.CharField(max_length=42, blank=True)
    certification_title = models.CharField(max_length=200)
    category = models.CharField(max_length=100)
    level = models.CharField(max_length=20)
    score = models.PositiveSmallIntegerField()
    grade = models.CharField(max_length=20)
    total_questions = models.PositiveSmallIntegerField()
    correct_answers = models.PositiveSmallIntegerField()
    test_duration = models.PositiveIntegerField(default=0, help_text=_("Seconds"))
    completed_date = models.DateTimeField()
    attempt_number = models.PositiveSmallIntegerField()

    verification_url = models.URLField(max_length=500)
    verification_code = models.CharField(max_length=16)

    paid = models.BooleanField(default=False)
    payment_amount = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal("0"))
    payment_currency = models.CharField(max_length=10, default="USD")
    payment_method = models.CharField(max_length=20, blank=True)
    payment_id = models.CharField(max_length=255, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING_PAYMENT)
    issued_date = models.DateTimeField(default=timezone.now)
    is_valid = models.BooleanField(default=True)
    revoked_reason = models.TextField(blank=True)
    revoked_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = _("Professional Certificate")
        verbose_name_plural = _("Professional Certificates")
        ordering = ["-issued_date"]

    def __str__(self):
        return f"{self.certificate_number} ({self.student_name})"

    def revoke(self, reason: str) -> None:
        self.status = self.Status.REVOKED
        self.is_valid = False
        self.revoked_reason = reason
        self.revoked_at = timezone.now()
        self.save(update_fields=["status", "is_valid", "revoked_reason", "revoked_at"])


def completion_grade(score) -> str:
    """Grade band printed on course completion certificates."""
    score = score or 0
    if score >= 95:
        return "Outstanding"
    if score >= 85:
        return "Excellent"
    if score >= 75:
        return "Good"
    if score >= 60:
        return "Pass"
    return "Completed"


class CourseCertificate(models.Model):
    """Certificate of completion issued when a purchased course reaches 100%."""

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="course_certificates")
    course = models.ForeignKey("academy.Course", on_delete=models.PROTECT, related_name="certificates")
    purchase = models.OneToOneField(
        "academy.Purchase", on_delete=models.PROTECT, related_name="certificate"
    )
    certificate_number = models.CharField(max_length=40, unique=True)

    student_name = models.CharField(max_length=100)
    student_wallet = models.CharField(max_length=42, blank=True)
    course_title = models.CharField(max_length=200)
    instructor_name = models.CharField(max_length=100)
    category = models.CharField(max_length=100)
    skills = models.JSONField(default=list, blank=True)
    completed_date = models.DateTimeField()
    grade = models.CharField(max_length=20)
    final_score = models.PositiveSmallIntegerField(default=100)
    total_hours = models.DecimalField(max_digits=6, decimal_places=1, default=Decimal("0"))
    total_lessons = models.PositiveIntegerField(default=0)

    verification_url = models.URLField(max_length=500)
    issued_date = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = _("Course Certificate")
        verbose_name_plural = _("Course Certificates")
        ordering = ["-completed_date"]
        constraints = [
            models.UniqueConstraint(fields=["user", "course"], name="unique_course_certificate")
        ]

    def __str__(self):
        return f"{self.certificate_number} ({self.course_title})"


__all__ = [
    "ProfessionalCertification",
    "CertificationQuestion",
    "CertificationAttempt",
    "AttemptReset",
    "ProfessionalCertificate",
    "CourseCertificate",
    "grade_for_score",
    "completion_grade",
]
