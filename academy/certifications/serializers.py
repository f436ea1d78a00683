from django.db import transaction
from rest_framework import serializers

from .models import (
    RESERVED_SLUGS,
    CertificationAttempt,
    CertificationQuestion,
    CourseCertificate,
    ProfessionalCertificate,
    ProfessionalCertification,
)

CATALOG_FIELDS = [
    "id",
    "title",
    "slug",
    "description",
    "thumbnail",
    "category",
    "subcategories",
    "level",
    "tags",
    "questions_per_test",
    "duration",
    "passing_score",
    "max_attempts",
    "certificate_price_usd",
    "discount_price_usd",
    "discount_end_date",
    "current_certificate_price",
    "attempt_reset_enabled",
    "attempt_reset_price_usd",
    "allow_copy_paste",
    "allow_tab_switch",
    "tab_switch_warnings",
    "total_attempts",
    "total_passed",
    "average_score",
    "published_at",
]


class CertificationCatalogSerializer(serializers.ModelSerializer):
    """Public certification data; the question pool is never included."""

    current_certificate_price = serializers.DecimalField(max_digits=8, decimal_places=2, read_only=True)

    class Meta:
        model = ProfessionalCertification
        fields = CATALOG_FIELDS
        read_only_fields = fields


class CertificationQuestionSerializer(serializers.ModelSerializer):
    id = serializers.IntegerField(required=False)

    class Meta:
        model = CertificationQuestion
        fields = ["id", "question", "type", "options", "correct_answer", "points", "explanation", "order"]

    def validate(self, attrs):
        question_type = attrs.get("type", CertificationQuestion.Type.MULTIPLE_CHOICE)
        if question_type == CertificationQuestion.Type.MULTIPLE_CHOICE:
            options = attrs.get("options") or []
            if len(options) < 2:
                raise serializers.ValidationError("Multiple-choice questions need at least two options")
            if sum(1 for option in options if option.get("is_correct")) != 1:
                raise serializers.ValidationError("Exactly one option must be correct")
        elif attrs.get("correct_answer") is None:
            raise serializers.ValidationError("True/false questions need a correct_answer")
        return attrs


class CertificationAdminSerializer(serializers.ModelSerializer):
    """Full certification with its question pool; nested writes replace the pool."""

    questions = CertificationQuestionSerializer(many=True, required=False)
    total_questions = serializers.IntegerField(read_only=True)
    total_points = serializers.IntegerField(read_only=True)

    class Meta:
        model = ProfessionalCertification
        fields = CATALOG_FIELDS[:-1] + [
            "shuffle_questions",
            "shuffle_options",
            "status",
            "published_at",
            "questions",
            "total_questions",
            "total_points",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "total_attempts",
            "total_passed",
            "average_score",
            "published_at",
            "created_at",
            "updated_at",
        ]
        extra_kwargs = {"slug": {"required": False}}

    def validate_slug(self, value):
        if value in RESERVED_SLUGS:
            raise serializers.ValidationError("This slug is reserved")
        return value

    def _replace_questions(self, certification, questions):
        certification.questions.all().delete()
        pool = []
        for index, question in enumerate(questions):
            data = {key: value for key, value in question.items() if key != "id"}
            data.setdefault("order", index)
            pool.append(CertificationQuestion(certification=certification, **data))
        CertificationQuestion.objects.bulk_create(pool)

    @transaction.atomic
    def create(self, validated_data):
        questions = validated_data.pop("questions", [])
        certification = ProfessionalCertification.objects.create(**validated_data)
        self._replace_questions(certification, questions)
        return certification

    @transaction.atomic
    def update(self, instance, validated_data):
        questions = validated_data.pop("questions", None)
        certification = super().update(instance, validated_data)
        if questions is not None:
            self._replace_questions(certification, questions)
        return certification


class AttemptSummarySerializer(serializers.ModelSerializer):
    certification = serializers.SerializerMethodField()
    grade = serializers.CharField(read_only=True)

    class Meta:
        model = CertificationAttempt
        fields = [
            "id",
            "certification",
            "attempt_number",
            "status",
            "score",
            "grade",
            "passed",
            "total_questions",
            "correct_answers",
            "incorrect_answers",
            "unanswered_questions",
            "duration",
            "started_at",
            "completed_at",
            "certificate_issued",
        ]
        read_only_fields = fields

    def get_certification(self, obj):
        certification = obj.certification
        return {
            "id": certification.pk,
            "title": certification.title,
            "slug": certification.slug,
            "thumbnail": certification.thumbnail,
            "category": certification.category,
            "level": certification.level,
        }


class AdminAttemptSerializer(AttemptSummarySerializer):
    username = serializers.CharField(source="user.username", read_only=True)

    class Meta(AttemptSummarySerializer.Meta):
        fields = AttemptSummarySerializer.Meta.fields + [
            "username",
            "cancel_reason",
            "tab_switches",
            "copy_attempts",
            "paste_attempts",
            "right_click_attempts",
            "user_agent",
            "ip_hash",
        ]
        read_only_fields = fields


class CertificateSerializer(serializers.ModelSerializer):
    certification_slug = serializers.CharField(source="certification.slug", read_only=True)

    class Meta:
        model = ProfessionalCertificate
        fields = [
            "id",
            "certificate_number",
            "certificate_type",
            "certification",
            "certification_slug",
            "certification_title",
            "student_name",
            "student_wallet",
            "category",
            "level",
            "score",
            "grade",
            "total_questions",
            "correct_answers",
            "test_duration",
            "completed_date",
            "attempt_number",
            "verification_url",
            "verification_code",
            "payment_amount",
            "payment_currency",
            "payment_method",
            "paid_at",
            "status",
            "issued_date",
            "is_valid",
        ]
        read_only_fields = fields


class AdminCertificateSerializer(CertificateSerializer):
    username = serializers.CharField(source="user.username", read_only=True)

    class Meta(CertificateSerializer.Meta):
        fields = CertificateSerializer.Meta.fields + ["username", "payment_id", "revoked_reason", "revoked_at"]
        read_only_fields = fields


class PublicCertificateSerializer(serializers.ModelSerializer):
    class Meta:
        model = ProfessionalCertificate
        fields = [
            "certificate_number",
            "student_name",
            "certification_title",
            "category",
            "level",
            "score",
            "grade",
            "completed_date",
            "issued_date",
            "status",
            "is_valid",
        ]
        read_only_fields = fields


class CourseCertificateSerializer(serializers.ModelSerializer):
    course_slug = serializers.CharField(source="course.slug", read_only=True)
    course_thumbnail = serializers.CharField(source="course.thumbnail", read_only=True)

    class Meta:
        model = CourseCertificate
        fields = [
            "id",
            "certificate_number",
            "course",
            "course_slug",
            "course_thumbnail",
            "course_title",
            "instructor_name",
            "student_name",
            "student_wallet",
            "category",
            "skills",
            "grade",
            "final_score",
            "total_hours",
            "total_lessons",
            "completed_date",
            "verification_url",
            "issued_date",
        ]
        read_only_fields = fields


class PublicCourseCertificateSerializer(serializers.ModelSerializer):
    class Meta:
        model = CourseCertificate
        fields = [
            "certificate_number",
            "student_name",
            "course_title",
            "instructor_name",
            "category",
            "grade",
            "total_hours",
            "completed_date",
            "issued_date",
        ]
        read_only_fields = fields
