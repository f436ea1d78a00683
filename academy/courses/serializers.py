from django.db import transaction
from rest_framework import serializers

from .models import Course, Lesson, Section, VideoSession


def instructor_summary(user):
    profile = user.profile
    return {
        "id": user.pk,
        "username": user.username,
        "display_name": profile.public_name,
        "avatar": profile.avatar,
        "instructor_verified": profile.instructor_verified,
    }


class LessonSerializer(serializers.ModelSerializer):
    """
    Lesson with its video key hidden unless the caller may watch it.

    The context flag `show_videos` is set for the instructor and for students
    with an active purchase; preview lessons are always visible.
    """

    has_video = serializers.SerializerMethodField()

    class Meta:
        model = Lesson
        fields = [
            "id",
            "section",
            "title",
            "description",
            "video_key",
            "has_video",
            "duration",
            "order",
            "is_preview",
            "resources",
        ]
        read_only_fields = ["id", "section", "order"]

    def get_has_video(self, obj):
        return bool(obj.video_key)

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if not self.context.get("show_videos", True) and not instance.is_preview:
            data["video_key"] = None
        return data


class SectionSerializer(serializers.ModelSerializer):
    lessons = LessonSerializer(many=True, read_only=True)

    class Meta:
        model = Section
        fields = ["id", "course", "title", "description", "order", "lessons"]
        read_only_fields = ["id", "course", "order"]


class CourseListSerializer(serializers.ModelSerializer):
    instructor = serializers.SerializerMethodField()
    effective_price = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)

    class Meta:
        model = Course
        fields = [
            "id",
            "title",
            "slug",
            "subtitle",
            "thumbnail",
            "price_usd",
            "discount_price_usd",
            "discount_end_date",
            "effective_price",
            "category",
            "level",
            "status",
            "average_rating",
            "total_ratings",
            "enrollment_count",
            "total_lessons",
            "total_duration",
            "instructor",
            "published_at",
            "created_at",
        ]

    def get_instructor(self, obj):
        return instructor_summary(obj.instructor)


class CourseDetailSerializer(CourseListSerializer):
    sections = serializers.SerializerMethodField()
    rating_distribution = serializers.JSONField(read_only=True)
    has_purchased = serializers.SerializerMethodField()
    is_instructor = serializers.SerializerMethodField()

    class Meta(CourseListSerializer.Meta):
        fields = CourseListSerializer.Meta.fields + [
            "description",
            "tags",
            "requirements",
            "what_you_will_learn",
            "target_audience",
            "refund_period_days",
            "has_certificate",
            "has_lifetime_access",
            "completion_count",
            "rating_distribution",
            "sections",
            "has_purchased",
            "is_instructor",
        ]

    def _user(self):
        request = self.context.get("request")
        return getattr(request, "user", None)

    def get_has_purchased(self, obj):
        return obj.has_purchased(self._user())

    def get_is_instructor(self, obj):
        return obj.is_instructor(self._user())

    def get_sections(self, obj):
        show_videos = obj.can_access_content(self._user())
        sections = obj.sections.prefetch_related("lessons")
        return SectionSerializer(sections, many=True, context={"show_videos": show_videos}).data


class LessonWriteSerializer(serializers.ModelSerializer):
    class Meta:
        model = Lesson
        fields = ["title", "description", "video_key", "duration", "is_preview", "resources"]


class SectionWriteSerializer(serializers.ModelSerializer):
    lessons = LessonWriteSerializer(many=True, required=False)

    class Meta:
        model = Section
        fields = ["title", "description", "lessons"]


class CourseWriteSerializer(serializers.ModelSerializer):
    """
    Instructor-editable course fields. A `sections` list, when given,
    replaces the whole curriculum.
    """

    sections = SectionWriteSerializer(many=True, required=False)

    class Meta:
        model = Course
        fields = [
            "title",
            "subtitle",
            "description",
            "thumbnail",
            "preview_video_key",
            "price_usd",
            "discount_price_usd",
            "discount_end_date",
            "category",
            "tags",
            "requirements",
            "what_you_will_learn",
            "target_audience",
            "level",
            "refund_period_days",
            "has_certificate",
            "has_lifetime_access",
            "sections",
        ]

    def _replace_sections(self, course, sections_data):
        course.sections.all().delete()
        for section_order, section_data in enumerate(sections_data, start=1):
            lessons_data = section_data.pop("lessons", [])
            section = Section.objects.create(course=course, order=section_order, **section_data)
            for lesson_order, lesson_data in enumerate(lessons_data, start=1):
                Lesson.objects.create(section=section, order=lesson_order, **lesson_data)
        course.recalculate_totals()

    @transaction.atomic
    def create(self, validated_data):
        sections_data = validated_data.pop("sections", None)
        course = Course.objects.create(**validated_data)
        if sections_data:
            self._replace_sections(course, sections_data)
        return course

    @transaction.atomic
    def update(self, instance, validated_data):
        sections_data = validated_data.pop("sections", None)
        course = super().update(instance, validated_data)
        if sections_data is not None:
            self._replace_sections(course, sections_data)
        return course


class VideoSessionSerializer(serializers.ModelSerializer):
    expires_in = serializers.IntegerField(source="remaining_seconds", read_only=True)

    class Meta:
        model = VideoSession
        fields = ["session_token", "course", "expires_at", "expires_in"]
