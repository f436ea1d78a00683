"""
Academy User Serializers

Serializers for the signed-in user, public profiles, payout wallets and
instructor applications.

Author: Academy Development Team
Version: 1.0.0
"""

from typing import Any, Dict

from django.contrib.auth.models import User
from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from .levels import level_progress
from .models import InstructorApplication, PaymentWallet, Profile
from .wallet import is_valid_wallet_address


class ProfileSerializer(serializers.ModelSerializer):
    class Meta:
        model = Profile
        fields = [
            "wallet_address",
            "display_name",
            "bio",
            "avatar",
            "role",
            "is_instructor",
            "instructor_verified",
            "instructor_bio",
            "expertise",
            "social_links",
            "is_super_admin",
            "total_xp",
            "level",
            "courses_enrolled",
            "courses_completed",
            "certificates_earned",
            "reviews_written",
            "total_courses_created",
            "last_login_at",
        ]
        read_only_fields = fields


class UserSerializer(serializers.ModelSerializer):
    """The signed-in user with profile and level progress."""

    profile = ProfileSerializer(read_only=True)
    level_progress = serializers.SerializerMethodField()
    is_admin = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "date_joined",
            "is_admin",
            "profile",
            "level_progress",
        ]

    def get_level_progress(self, obj: User) -> Dict[str, Any]:
        return level_progress(obj.profile.total_xp)

    def get_is_admin(self, obj: User) -> bool:
        from ..permissions import is_platform_admin

        return is_platform_admin(obj)


class ProfileUpdateSerializer(serializers.Serializer):
    username = serializers.RegexField(
        r"^[a-zA-Z0-9_]{3,30}$", required=False, help_text=_("3-30 letters, digits or _")
    )
    email = serializers.EmailField(required=False, allow_blank=True)
    display_name = serializers.CharField(max_length=50, required=False, allow_blank=True)
    bio = serializers.CharField(max_length=500, required=False, allow_blank=True)
    avatar = serializers.URLField(required=False, allow_blank=True)
    social_links = serializers.DictField(child=serializers.CharField(allow_blank=True), required=False)

    def validate_username(self, value: str) -> str:
        user = self.context["request"].user
        if User.objects.filter(username__iexact=value).exclude(pk=user.pk).exists():
            raise serializers.ValidationError(_("Username is already taken"))
        return value

    def save(self, user: User) -> User:
        data = self.validated_data
        for field in ("username", "email"):
            if field in data:
                setattr(user, field, data[field])
        user.save()

        profile = user.profile
        for field in ("display_name", "bio", "avatar", "social_links"):
            if field in data:
                setattr(profile, field, data[field])
        profile.save()
        return user


class PublicProfileSerializer(serializers.ModelSerializer):
    display_name = serializers.CharField(source="profile.public_name")
    bio = serializers.CharField(source="profile.bio")
    avatar = serializers.CharField(source="profile.avatar")
    is_instructor = serializers.BooleanField(source="profile.is_instructor")
    instructor_bio = serializers.CharField(source="profile.instructor_bio")
    expertise = serializers.JSONField(source="profile.expertise")
    social_links = serializers.JSONField(source="profile.social_links")
    level = serializers.IntegerField(source="profile.level")
    published_courses = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            "username",
            "display_name",
            "bio",
            "avatar",
            "is_instructor",
            "instructor_bio",
            "expertise",
            "social_links",
            "level",
            "published_courses",
            "date_joined",
        ]

    def get_published_courses(self, obj: User) -> int:
        return obj.courses.filter(status="published").count()


class PaymentWalletSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentWallet
        fields = ["id", "blockchain", "chain_id", "address", "label", "is_primary", "created_at"]
        read_only_fields = ["id", "is_primary", "created_at"]

    def validate_address(self, value: str) -> str:
        if not is_valid_wallet_address(value):
            raise serializers.ValidationError(_("Invalid wallet address format"))
        return value.lower()

    def validate(self, attrs):
        user = self.context["request"].user
        exists = PaymentWallet.objects.filter(
            user=user, blockchain=attrs.get("blockchain", PaymentWallet.Blockchain.EVM), chain_id=attrs["chain_id"]
        ).exists()
        if exists:
            raise serializers.ValidationError(_("A wallet for this chain is already registered"))
        return attrs


class InstructorApplicationSerializer(serializers.ModelSerializer):
    class Meta:
        model = InstructorApplication
        fields = [
            "id",
            "full_name",
            "email",
            "expertise",
            "years_of_experience",
            "bio",
            "portfolio",
            "twitter",
            "linkedin",
            "website",
            "discord",
            "has_teaching_experience",
            "teaching_experience_details",
            "proposed_courses",
            "motivation",
            "status",
            "rejection_reason",
            "reviewed_at",
            "created_at",
        ]
        read_only_fields = ["id", "status", "rejection_reason", "reviewed_at", "created_at"]

    def validate_expertise(self, value):
        if not isinstance(value, list) or not value:
            raise serializers.ValidationError(_("At least one area of expertise is required"))
        return value

    def validate_proposed_courses(self, value):
        if not isinstance(value, list):
            raise serializers.ValidationError(_("Proposed courses must be a list"))
        for course in value:
            if not isinstance(course, dict) or not course.get("title"):
                raise serializers.ValidationError(_("Each proposed course needs a title"))
        return value


class InstructorApplicationAdminSerializer(InstructorApplicationSerializer):
    username = serializers.CharField(source="user.username", read_only=True)
    wallet_address = serializers.CharField(source="user.profile.wallet_address", read_only=True)
    reviewed_by = serializers.CharField(source="reviewed_by.username", read_only=True, default=None)

    class Meta(InstructorApplicationSerializer.Meta):
        fields = InstructorApplicationSerializer.Meta.fields + [
            "username",
            "wallet_address",
            "reviewed_by",
            "admin_notes",
        ]
