"""
Video session issuance and validation.

A session grants one user access to one course's videos for a few hours.
Opening a new session deactivates the user's previous ones for that course,
so a token cannot be shared across devices for long.
"""

import logging
import secrets
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from ..models import Course, Lesson, VideoSession

logger = logging.getLogger(__name__)


class VideoSessionError(Exception):
    def __init__(self, message: str, status_code: int = 403):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def client_ip(request) -> str:
    forwarded = request.META.get("HTTP_X_FORWARDED_FOR")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.META.get("REMOTE_ADDR")


def create_session(user, course: Course, request=None) -> VideoSession:
    """Open a session for a user who teaches or bought the course."""
    is_instructor = course.is_instructor(user)
    if not is_instructor and not course.has_purchased(user):
        raise VideoSessionError("Access denied: Purchase required")

    hours = (
        settings.VIDEO_SESSION_HOURS_INSTRUCTOR
        if is_instructor
        else settings.VIDEO_SESSION_HOURS_STUDENT
    )
    video_keys = list(
        Lesson.objects.filter(section__course=course)
        .exclude(video_key="")
        .values_list("video_key", flat=True)
    )

    with transaction.atomic():
        VideoSession.objects.filter(user=user, course=course, is_active=True).update(is_active=False)
        session = VideoSession.objects.create(
            user=user,
            course=course,
            session_token=secrets.token_hex(32),
            expires_at=timezone.now() + timedelta(hours=hours),
            ip_address=client_ip(request) if request is not None else None,
            user_agent=(request.META.get("HTTP_USER_AGENT", "") if request is not None else "")[:500],
            video_keys=video_keys,
        )

    logger.info("Video session opened for user %s on course %s (%sh)", user.pk, course.pk, hours)
    return session


def validate_session(session_token: str, user, course: Course) -> VideoSession:
    """Active, unexpired session of `user` for `course`, else VideoSessionError."""
    if not session_token:
        raise VideoSessionError("Session token required", status_code=400)

    session = VideoSession.objects.filter(
        session_token=session_token, user=user, course=course, is_active=True
    ).first()
    if session is None:
        raise VideoSessionError("Invalid session")
    if session.is_expired:
        session.deactivate()
        raise VideoSessionError("Session expired")
    return session


def invalidate_session(session_token: str, user) -> bool:
    updated = VideoSession.objects.filter(
        session_token=session_token, user=user, is_active=True
    ).update(is_active=False)
    return bool(updated)


def cleanup_expired_sessions() -> int:
    deleted, _ = VideoSession.objects.filter(expires_at__lt=timezone.now()).delete()
    if deleted:
        logger.info("Deleted %s expired video sessions", deleted)
    return deleted
