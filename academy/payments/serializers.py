"""
Academy Payment Serializers

Author: Academy Development Team
Version: 1.0.0
"""

from django.utils import timezone
from rest_framework import serializers

from ..users.models import Profile
from .models import AdminAuditLog, InstructorFeeSettings, PaymentToken, PlatformSettings, Purchase
from .services import pricing


class PaymentTokenSerializer(serializers.ModelSerializer):
    """Public view of an accepted token with its live USD price."""

    current_price_usd = serializers.SerializerMethodField()

    class Meta:
        model = PaymentToken
        fields = [
            "id",
            "symbol",
            "name",
            "icon",
            "blockchain",
            "chain_id",
            "chain_name",
            "explorer_url",
            "contract_address",
            "decimals",
            "is_native",
            "payment_contract_address",
            "is_stablecoin",
            "display_order",
            "color",
            "badge",
            "current_price_usd",
        ]

    def get_current_price_usd(self, obj):
        return str(pricing.token_price_usd(obj))


class PaymentTokenAdminSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentToken
        fields = "__all__"
        read_only_fields = ["id", "created_at", "updated_at"]
        extra_kwargs = {
            "payment_contract_address": {"required": True},
            "price_oracle_type": {"required": True},
            "decimals": {"required": True},
        }


class PlatformSettingsSerializer(serializers.ModelSerializer):
    class Meta:
        model = PlatformSettings
        fields = [
            "default_platform_fee_percentage",
            "default_instructor_fee_percentage",
            "revenue_split_percentage",
            "default_escrow_period_days",
            "default_min_watch_percentage",
            "default_max_watch_time_minutes",
            "platform_wallets",
            "revenue_split_wallets",
            "updated_at",
        ]
        read_only_fields = ["updated_at"]

    def validate(self, attrs):
        platform = attrs.get(
            "default_platform_fee_percentage",
            getattr(self.instance, "default_platform_fee_percentage", None),
        )
        instructor = attrs.get(
            "default_instructor_fee_percentage",
            getattr(self.instance, "default_instructor_fee_percentage", None),
        )
        if platform is not None and instructor is not None and platform + instructor != 100:
            raise serializers.ValidationError("Platform and instructor fees must add up to 100")
        return attrs


class InstructorFeeSettingsSerializer(serializers.ModelSerializer):
    instructor_username = serializers.CharField(source="instructor.username", read_only=True)
    effective_fees = serializers.SerializerMethodField()

    class Meta:
        model = InstructorFeeSettings
        fields = [
            "id",
            "instructor",
            "instructor_username",
            "custom_platform_fee_percentage",
            "custom_instructor_fee_percentage",
            "use_custom_fees",
            "admin_notes",
            "effective_fees",
            "updated_at",
        ]
        read_only_fields = ["id", "instructor", "updated_at"]

    def get_effective_fees(self, obj):
        return InstructorFeeSettings.get_effective_fees(obj.instructor)

    def validate(self, attrs):
        use_custom = attrs.get("use_custom_fees", getattr(self.instance, "use_custom_fees", False))
        if not use_custom:
            return attrs
        platform = attrs.get(
            "custom_platform_fee_percentage",
            getattr(self.instance, "custom_platform_fee_percentage", None),
        )
        instructor = attrs.get(
            "custom_instructor_fee_percentage",
            getattr(self.instance, "custom_instructor_fee_percentage", None),
        )
        if platform is None or instructor is None:
            raise serializers.ValidationError("Custom fees require both percentages")
        if platform + instructor != 100:
            raise serializers.ValidationError("Platform and instructor fees must add up to 100")
        return attrs


def _course_summary(course):
    return {
        "id": course.pk,
        "title": course.title,
        "slug": course.slug,
        "thumbnail": course.thumbnail,
        "total_lessons": course.total_lessons,
        "instructor": course.instructor.username,
    }


class PurchaseSerializer(serializers.ModelSerializer):
    """A student's own purchase with refund window information."""

    course = serializers.SerializerMethodField()
    token_symbol = serializers.CharField(source="payment_token.symbol", read_only=True, default=None)
    refund_eligible = serializers.SerializerMethodField()
    refund_ineligible_reason = serializers.SerializerMethodField()
    days_until_release = serializers.IntegerField(read_only=True)

    class Meta:
        model = Purchase
        fields = [
            "id",
            "course",
            "token_symbol",
            "amount_in_token",
            "amount_in_usd",
            "transaction_hash",
            "blockchain",
            "escrow_id",
            "escrow_status",
            "escrow_release_date",
            "refund_eligible",
            "refund_ineligible_reason",
            "days_until_release",
            "refund_transaction_hash",
            "progress",
            "total_watch_time",
            "completed_lessons",
            "last_accessed_lesson",
            "last_accessed_at",
            "is_completed",
            "completed_at",
            "status",
            "created_at",
        ]
        read_only_fields = fields

    def get_course(self, obj):
        return _course_summary(obj.course)

    def _eligibility(self, obj):
        if obj.status != Purchase.Status.ACTIVE or obj.granted_by_admin_id:
            return False, "Purchase is not refundable"
        return obj.check_refund_eligibility(timezone.now())

    def get_refund_eligible(self, obj):
        return self._eligibility(obj)[0]

    def get_refund_ineligible_reason(self, obj):
        return self._eligibility(obj)[1]


class EscrowAdminSerializer(serializers.ModelSerializer):
    student = serializers.CharField(source="user.username", read_only=True)
    course_title = serializers.CharField(source="course.title", read_only=True)
    token_symbol = serializers.CharField(source="payment_token.symbol", read_only=True, default=None)
    can_release = serializers.SerializerMethodField()
    can_refund = serializers.SerializerMethodField()
    days_until_release = serializers.IntegerField(read_only=True)

    class Meta:
        model = Purchase
        fields = [
            "id",
            "student",
            "course",
            "course_title",
            "token_symbol",
            "amount_in_token",
            "amount_in_usd",
            "platform_amount",
            "instructor_amount",
            "blockchain",
            "from_address",
            "transaction_hash",
            "escrow_id",
            "escrow_status",
            "escrow_release_date",
            "escrow_released_at",
            "escrow_release_tx_hash",
            "escrow_release_reason",
            "status",
            "can_release",
            "can_refund",
            "days_until_release",
            "created_at",
        ]
        read_only_fields = fields

    def _locked(self, obj):
        return obj.escrow_status == Purchase.EscrowStatus.LOCKED and obj.escrow_release_date is not None

    def get_can_release(self, obj):
        return self._locked(obj) and timezone.now() >= obj.escrow_release_date

    def get_can_refund(self, obj):
        return self._locked(obj) and timezone.now() < obj.escrow_release_date


class AdminPurchaseSerializer(serializers.ModelSerializer):
    course = serializers.SerializerMethodField()
    granted_by = serializers.CharField(source="granted_by_admin.username", read_only=True, default=None)
    revoked_by_username = serializers.CharField(source="revoked_by.username", read_only=True, default=None)

    class Meta:
        model = Purchase
        fields = [
            "id",
            "course",
            "amount_in_usd",
            "transaction_hash",
            "escrow_status",
            "status",
            "progress",
            "granted_by",
            "grant_reason",
            "revoked_at",
            "revoked_by_username",
            "revoke_reason",
            "created_at",
        ]
        read_only_fields = fields

    def get_course(self, obj):
        return _course_summary(obj.course)


class AdminAuditLogSerializer(serializers.ModelSerializer):
    admin_username = serializers.CharField(source="admin.username", read_only=True)

    class Meta:
        model = AdminAuditLog
        fields = [
            "id",
            "admin",
            "admin_username",
            "action",
            "target_type",
            "target_id",
            "details",
            "ip_address",
            "created_at",
        ]
        read_only_fields = fields


class InstructorFeeListSerializer(serializers.ModelSerializer):
    """Instructor profile row for the fee settings overview."""

    id = serializers.IntegerField(source="user.pk")
    username = serializers.CharField(source="user.username")
    effective_fees = serializers.SerializerMethodField()

    class Meta:
        model = Profile
        fields = ["id", "username", "display_name", "wallet_address", "effective_fees"]

    def get_effective_fees(self, obj):
        return InstructorFeeSettings.get_effective_fees(obj.user)
