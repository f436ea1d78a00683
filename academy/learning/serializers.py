from rest_framework import serializers

from .models import Note, Question, QuestionReply, Review


def _author(user):
    return {
        "id": user.pk,
        "username": user.username,
        "display_name": user.profile.public_name,
        "avatar": user.profile.avatar,
    }


class NoteSerializer(serializers.ModelSerializer):
    class Meta:
        model = Note
        fields = ["id", "course", "lesson", "content", "timestamp", "created_at", "updated_at"]
        read_only_fields = ["id", "course", "lesson", "created_at", "updated_at"]

    def validate_content(self, value):
        value = (value or "").strip()
        if not value:
            raise serializers.ValidationError("Note content is required")
        return value


class QuestionReplySerializer(serializers.ModelSerializer):
    user = serializers.SerializerMethodField()
    is_instructor = serializers.SerializerMethodField()

    class Meta:
        model = QuestionReply
        fields = ["id", "user", "text", "is_instructor", "created_at"]
        read_only_fields = fields

    def get_user(self, obj):
        return _author(obj.user)

    def get_is_instructor(self, obj):
        return obj.user_id == obj.question.course.instructor_id


class QuestionSerializer(serializers.ModelSerializer):
    student = serializers.SerializerMethodField()
    lesson_title = serializers.CharField(source="lesson.title", read_only=True)
    replies = QuestionReplySerializer(many=True, read_only=True)

    class Meta:
        model = Question
        fields = [
            "id",
            "course",
            "lesson",
            "lesson_title",
            "student",
            "question",
            "status",
            "replies",
            "created_at",
        ]
        read_only_fields = fields

    def get_student(self, obj):
        return _author(obj.student)


class ReviewSerializer(serializers.ModelSerializer):
    user = serializers.SerializerMethodField()

    class Meta:
        model = Review
        fields = [
            "id",
            "user",
            "course",
            "rating",
            "title",
            "comment",
            "content_quality",
            "instructor_quality",
            "value_for_money",
            "helpful_count",
            "not_helpful_count",
            "instructor_response",
            "instructor_responded_at",
            "status",
            "is_edited",
            "edited_at",
            "created_at",
        ]
        read_only_fields = [
            "id",
            "user",
            "course",
            "helpful_count",
            "not_helpful_count",
            "instructor_response",
            "instructor_responded_at",
            "status",
            "is_edited",
            "edited_at",
            "created_at",
        ]

    def get_user(self, obj):
        return _author(obj.user)


class ReviewAdminSerializer(ReviewSerializer):
    course_title = serializers.CharField(source="course.title", read_only=True)

    class Meta(ReviewSerializer.Meta):
        fields = ReviewSerializer.Meta.fields + ["course_title", "flag_reason"]
