import re

from django.conf import settings
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ...permissions import is_platform_admin
from ..models import Course, Lesson
from ..serializers import VideoSessionSerializer
from ..services import video_sessions
from ..services.storage_service import VideoStorageService

COURSE_KEY_RE = re.compile(r"^courses/(\d+)/")


def _owns_key(user, key: str) -> bool:
    """Instructors may only sign objects stored under their own courses."""
    match = COURSE_KEY_RE.match(key)
    if not match or ".." in key.split("/"):
        return False
    return Course.objects.filter(pk=match.group(1), instructor=user).exists()


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def create_video_session(request, course_id):
    course = get_object_or_404(Course, pk=course_id)
    try:
        session = video_sessions.create_session(request.user, course, request)
    except video_sessions.VideoSessionError as exc:
        return Response({"error": exc.message}, status=exc.status_code)
    return Response(VideoSessionSerializer(session).data, status=status.HTTP_201_CREATED)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def invalidate_video_session(request):
    session_token = request.data.get("session_token")
    if not video_sessions.invalidate_session(session_token, request.user):
        return Response({"error": "Session not found"}, status=status.HTTP_404_NOT_FOUND)
    return Response({"message": "Session invalidated"})


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def get_lesson_video(request, lesson_id):
    """
    Presigned URL for a lesson video. The `session` query parameter must be
    an active video session of the caller for the lesson's course.
    """
    lesson = get_object_or_404(Lesson.objects.select_related("section__course"), pk=lesson_id)
    course = lesson.section.course

    try:
        session = video_sessions.validate_session(
            request.query_params.get("session"), request.user, course
        )
    except video_sessions.VideoSessionError as exc:
        return Response({"error": exc.message}, status=exc.status_code)

    if not lesson.video_key:
        return Response({"error": "Lesson has no video"}, status=status.HTTP_404_NOT_FOUND)

    expires_in = min(settings.VIDEO_URL_EXPIRES_SECONDS, session.remaining_seconds)
    presigned_url = VideoStorageService().generate_presigned_url(lesson.video_key, expires_in)
    if not presigned_url:
        return Response(
            {"error": "Could not generate video URL"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return Response(
        {
            "presigned_url": presigned_url,
            "expires_in": expires_in,
            "lesson_id": lesson.pk,
            "title": lesson.title,
            "duration": lesson.duration,
        }
    )


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def sign_storage_key(request):
    """Presigned URL by key for instructors and admins (thumbnails, resources)."""
    profile = request.user.profile
    if not (profile.is_instructor or is_platform_admin(request.user)):
        return Response({"error": "Not authorized"}, status=status.HTTP_403_FORBIDDEN)

    key = request.query_params.get("key")
    if not key:
        return Response({"error": "Key parameter missing"}, status=status.HTTP_400_BAD_REQUEST)

    storage = VideoStorageService()
    normalized_key = storage.normalize_key(key)
    if not is_platform_admin(request.user) and not _owns_key(request.user, normalized_key):
        return Response({"error": "Not authorized to sign this key"}, status=status.HTTP_403_FORBIDDEN)

    presigned_url = storage.generate_presigned_url(normalized_key)
    if not presigned_url:
        return Response(
            {"error": "Could not generate presigned URL"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    return Response(
        {
            "presigned_url": presigned_url,
            "expires_in": settings.VIDEO_URL_EXPIRES_SECONDS,
            "key": key,
        }
    )
