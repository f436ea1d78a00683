"""
Academy Django Admin Configuration

Admin registrations for every academy model, rendered through jazzmin.

Sections:
- Users: Django users with the academy profile inline, payment wallets,
  instructor applications, unlocked achievements
- Courses: courses with section inlines, sections with lesson inlines
- Payments: tokens, fee settings, purchases and the admin audit log
- Learning: notes, questions and reviews
- Certifications: certifications with their question pool, attempts,
  resets, professional and course certificates

Author: Academy Development Team
Version: 1.0.0
"""

from typing import Optional

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.contrib.auth.models import User
from django.db.models import QuerySet
from django.http import HttpRequest
from django.utils.translation import gettext_lazy as _

from .models import (
    AdminAuditLog,
    AttemptReset,
    CertificationAttempt,
    CertificationQuestion,
    Course,
    CourseCertificate,
    InstructorApplication,
    InstructorFeeSettings,
    Lesson,
    Note,
    PaymentToken,
    PaymentWallet,
    PlatformSettings,
    ProfessionalCertificate,
    ProfessionalCertification,
    Profile,
    Purchase,
    Question,
    QuestionReply,
    Review,
    Section,
    UnlockedAchievement,
    VideoSession,
)

# --- Users ---


class ProfileInline(admin.StackedInline):
    model = Profile
    can_delete = False
    verbose_name_plural = "Academy Profile"
    fk_name = "user"
    fields = (
        "wallet_address",
        "display_name",
        "role",
        "is_instructor",
        "instructor_verified",
        "is_super_admin",
        "is_banned",
        "total_xp",
        "level",
    )
    readonly_fields = ("total_xp", "level")

    def get_extra(self, request: HttpRequest, obj: Optional[User] = None, **kwargs) -> int:
        return 0


class UserAdmin(BaseUserAdmin):
    inlines = (ProfileInline,)
    list_display = ("username", "get_wallet", "get_role", "is_staff", "is_active")
    list_select_related = ("profile",)
    list_filter = ("is_staff", "is_superuser", "is_active", "profile__role", "profile__is_instructor")
    search_fields = ("username", "email", "profile__wallet_address", "profile__display_name")
    ordering = ("username",)

    @admin.display(description=_("Wallet"))
    def get_wallet(self, instance: User) -> Optional[str]:
        try:
            return instance.profile.wallet_address
        except Profile.DoesNotExist:
            return None

    @admin.display(description=_("Role"))
    def get_role(self, instance: User) -> Optional[str]:
        try:
            return instance.profile.get_role_display()
        except Profile.DoesNotExist:
            return None


admin.site.unregister(User)
admin.site.register(User, UserAdmin)


@admin.register(PaymentWallet)
class PaymentWalletAdmin(admin.ModelAdmin):
    list_display = ("user", "blockchain", "chain_id", "address", "is_primary")
    list_filter = ("blockchain", "chain_id", "is_primary")
    search_fields = ("user__username", "address", "label")
    autocomplete_fields = ("user",)


@admin.register(InstructorApplication)
class InstructorApplicationAdmin(admin.ModelAdmin):
    list_display = ("full_name", "user", "email", "status", "created_at", "reviewed_at")
    list_filter = ("status", "has_teaching_experience")
    search_fields = ("full_name", "email", "user__username")
    readonly_fields = ("created_at", "updated_at", "reviewed_at", "reviewed_by")


@admin.register(UnlockedAchievement)
class UnlockedAchievementAdmin(admin.ModelAdmin):
    list_display = ("user", "achievement_id", "xp_earned", "unlocked_at")
    list_filter = ("achievement_id",)
    search_fields = ("user__username", "achievement_id")
    readonly_fields = ("unlocked_at",)


# --- Courses ---


class SectionInline(admin.TabularInline):
    model = Section
    extra = 0
    fields = ("title", "order")
    ordering = ("order",)
    show_change_link = True


class LessonInline(admin.TabularInline):
    model = Lesson
    extra = 1
    fields = ("title", "video_key", "duration", "order", "is_preview")
    ordering = ("order",)


@admin.register(Course)
class CourseAdmin(admin.ModelAdmin):
    list_display = ("title", "instructor", "category", "level", "price_usd", "status", "enrollment_count", "average_rating")
    list_filter = ("status", "category", "level", "has_certificate")
    search_fields = ("title", "subtitle", "instructor__username")
    readonly_fields = (
        "slug",
        "published_at",
        "total_lessons",
        "total_duration",
        "enrollment_count",
        "completion_count",
        "average_rating",
        "total_ratings",
    )
    autocomplete_fields = ("instructor",)
    inlines = [SectionInline]

    def get_queryset(self, request: HttpRequest) -> QuerySet:
        return super().get_queryset(request).select_related("instructor")


@admin.register(Section)
class SectionAdmin(admin.ModelAdmin):
    list_display = ("title", "course", "order")
    search_fields = ("title", "course__title")
    ordering = ("course", "order")
    inlines = [LessonInline]


@admin.register(VideoSession)
class VideoSessionAdmin(admin.ModelAdmin):
    list_display = ("user", "course", "is_active", "expires_at", "created_at")
    list_filter = ("is_active",)
    search_fields = ("user__username", "course__title", "session_token")
    readonly_fields = ("session_token", "created_at")


# --- Payments ---


@admin.register(PaymentToken)
class PaymentTokenAdmin(admin.ModelAdmin):
    list_display = ("symbol", "name", "chain_name", "chain_id", "price_oracle_type", "is_active", "is_enabled", "display_order")
    list_filter = ("blockchain", "chain_id", "is_active", "is_enabled", "is_stablecoin")
    search_fields = ("symbol", "name", "contract_address")
    ordering = ("display_order", "symbol")


@admin.register(PlatformSettings)
class PlatformSettingsAdmin(admin.ModelAdmin):
    list_display = (
        "default_platform_fee_percentage",
        "default_instructor_fee_percentage",
        "revenue_split_percentage",
        "default_escrow_period_days",
        "updated_at",
    )

    def has_add_permission(self, request: HttpRequest) -> bool:
        return not PlatformSettings.objects.exists()


@admin.register(InstructorFeeSettings)
class InstructorFeeSettingsAdmin(admin.ModelAdmin):
    list_display = ("instructor", "use_custom_fees", "custom_platform_fee_percentage", "custom_instructor_fee_percentage")
    list_filter = ("use_custom_fees",)
    search_fields = ("instructor__username",)


@admin.register(Purchase)
class PurchaseAdmin(admin.ModelAdmin):
    list_display = ("user", "course", "amount_in_usd", "payment_token", "status", "escrow_status", "escrow_release_date", "created_at")
    list_filter = ("status", "escrow_status", "blockchain", "is_completed")
    search_fields = ("user__username", "course__title", "transaction_hash", "escrow_id")
    readonly_fields = ("transaction_hash", "escrow_created_tx_hash", "escrow_release_tx_hash", "created_at", "updated_at")
    date_hierarchy = "created_at"

    def get_queryset(self, request: HttpRequest) -> QuerySet:
        return super().get_queryset(request).select_related("user", "course", "payment_token")


@admin.register(AdminAuditLog)
class AdminAuditLogAdmin(admin.ModelAdmin):
    list_display = ("admin", "action", "target_type", "target_id", "ip_address", "created_at")
    list_filter = ("action", "target_type")
    search_fields = ("admin__username", "target_id")
    readonly_fields = ("admin", "action", "target_type", "target_id", "details", "ip_address", "created_at")

    def has_change_permission(self, request: HttpRequest, obj=None) -> bool:
        return False


# --- Learning ---


@admin.register(Note)
class NoteAdmin(admin.ModelAdmin):
    list_display = ("user", "course", "lesson", "timestamp", "created_at")
    search_fields = ("user__username", "content")


class QuestionReplyInline(admin.TabularInline):
    model = QuestionReply
    extra = 0
    fields = ("user", "text", "created_at")
    readonly_fields = ("created_at",)


@admin.register(Question)
class QuestionAdmin(admin.ModelAdmin):
    list_display = ("student", "course", "lesson", "status", "created_at")
    list_filter = ("status",)
    search_fields = ("question", "student__username", "course__title")
    inlines = [QuestionReplyInline]


@admin.register(Review)
class ReviewAdmin(admin.ModelAdmin):
    list_display = ("user", "course", "rating", "status", "helpful_count", "created_at")
    list_filter = ("status", "rating")
    search_fields = ("user__username", "course__title", "title", "comment")
    readonly_fields = ("helpful_count", "not_helpful_count", "is_edited", "edited_at")


# --- Certifications ---


class CertificationQuestionInline(admin.StackedInline):
    model = CertificationQuestion
    extra = 1
    fields = ("question", "type", "options", "correct_answer", "points", "explanation", "order")
    ordering = ("order",)


@admin.register(ProfessionalCertification)
class ProfessionalCertificationAdmin(admin.ModelAdmin):
    list_display = ("title", "category", "level", "status", "questions_per_test", "passing_score", "total_attempts", "total_passed")
    list_filter = ("status", "category", "level")
    search_fields = ("title", "description")
    readonly_fields = ("slug", "published_at", "total_attempts", "total_passed", "average_score")
    inlines = [CertificationQuestionInline]


@admin.register(CertificationAttempt)
class CertificationAttemptAdmin(admin.ModelAdmin):
    list_display = ("user", "certification", "attempt_number", "status", "score", "passed", "tab_switches", "started_at")
    list_filter = ("status", "passed", "certification")
    search_fields = ("user__username", "certification__title")
    readonly_fields = ("session_token", "question_set", "answers", "ip_hash", "user_agent")


@admin.register(AttemptReset)
class AttemptResetAdmin(admin.ModelAdmin):
    list_display = ("user", "certification", "payment_method", "payment_amount", "created_at")
    list_filter = ("payment_method",)
    search_fields = ("user__username", "payment_id", "transaction_hash")


@admin.register(ProfessionalCertificate)
class ProfessionalCertificateAdmin(admin.ModelAdmin):
    list_display = ("certificate_number", "student_name", "certification_title", "score", "grade", "status", "issued_date")
    list_filter = ("status", "is_valid", "payment_method", "level")
    search_fields = ("certificate_number", "student_name", "user__username", "verification_code")
    readonly_fields = ("certificate_number", "verification_code", "verification_url", "attempt")


@admin.register(CourseCertificate)
class CourseCertificateAdmin(admin.ModelAdmin):
    list_display = ("certificate_number", "student_name", "course_title", "grade", "completed_date", "issued_date")
    list_filter = ("grade", "category")
    search_fields = ("certificate_number", "student_name", "course_title", "user__username")
    readonly_fields = ("certificate_number", "verification_url", "purchase")
