from datetime import timedelta
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework import status

from academy.courses.models import VideoSession
from academy.courses.services.storage_service import VideoStorageService
from academy.tests.utils import (
    authenticate,
    create_admin,
    create_course,
    create_instructor,
    create_purchase,
    create_user,
)

PRESIGNED = "https://videos.example.org/signed"


class VideoSessionTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.instructor = create_instructor()
        cls.student = create_user("student", wallet_address="0x" + "a" * 40)
        cls.outsider = create_user("outsider")
        cls.course = create_course(cls.instructor)
        cls.lesson = cls.course.sections.first().lessons.first()
        create_purchase(cls.student, cls.course)

    def _open_session(self, user):
        authenticate(self.client, user)
        return self.client.post(f"/api/academy/courses/{self.course.pk}/video-session/")

    def test_purchase_required(self):
        response = self._open_session(self.outsider)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.json()["error"], "Access denied: Purchase required")

    def test_new_session_deactivates_previous(self):
        first = self._open_session(self.student).json()["session_token"]
        second = self._open_session(self.student).json()["session_token"]
        self.assertNotEqual(first, second)
        self.assertFalse(VideoSession.objects.get(session_token=first).is_active)
        self.assertTrue(VideoSession.objects.get(session_token=second).is_active)

    def test_instructor_sessions_last_longer(self):
        student_expiry = self._open_session(self.student).json()["expires_in"]
        instructor_expiry = self._open_session(self.instructor).json()["expires_in"]
        self.assertGreater(instructor_expiry, student_expiry)

    @mock.patch("academy.courses.views.video_views.VideoStorageService")
    def test_lesson_video_with_valid_session(self, storage):
        storage.return_value.generate_presigned_url.return_value = PRESIGNED
        token = self._open_session(self.student).json()["session_token"]

        response = self.client.get(f"/api/academy/courses/lessons/{self.lesson.pk}/video/", {"session": token})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["presigned_url"], PRESIGNED)
        storage.return_value.generate_presigned_url.assert_called_once()

    def test_lesson_video_rejects_foreign_session(self):
        token = self._open_session(self.instructor).json()["session_token"]
        authenticate(self.client, self.student)
        response = self.client.get(f"/api/academy/courses/lessons/{self.lesson.pk}/video/", {"session": token})
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_cleanup_command_deletes_expired_sessions(self):
        VideoSession.objects.create(
            user=self.student,
            course=self.course,
            session_token="expired",
            expires_at=timezone.now() - timedelta(minutes=1),
        )
        out = StringIO()
        call_command("cleanup_video_sessions", stdout=out)
        self.assertFalse(VideoSession.objects.filter(session_token="expired").exists())
        self.assertIn("Deleted 1", out.getvalue())


@mock.patch.object(VideoStorageService, "generate_presigned_url", return_value=PRESIGNED)
class StorageSigningTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.instructor = create_instructor()
        cls.rival = create_instructor("rival", wallet_address="0x" + "3" * 40)
        cls.course = create_course(cls.instructor)

    def _sign(self, user, key):
        authenticate(self.client, user)
        return self.client.get("/api/academy/courses/storage/sign/", {"key": key})

    def test_instructor_signs_own_course_keys(self, generate_presigned_url):
        response = self._sign(self.instructor, f"/courses/{self.course.pk}/thumb.png")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["presigned_url"], PRESIGNED)
        generate_presigned_url.assert_called_once_with(f"courses/{self.course.pk}/thumb.png")

    def test_other_instructors_cannot_sign(self, generate_presigned_url):
        response = self._sign(self.rival, f"courses/{self.course.pk}/lesson-1.mp4")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        generate_presigned_url.assert_not_called()

    def test_keys_outside_courses_are_refused(self, generate_presigned_url):
        for key in ("private/payroll.csv", f"courses/{self.course.pk}/../../private/payroll.csv"):
            self.assertEqual(self._sign(self.instructor, key).status_code, status.HTTP_403_FORBIDDEN)
        generate_presigned_url.assert_not_called()

    def test_admins_sign_any_key(self, generate_presigned_url):
        response = self._sign(create_admin(), "branding/logo.png")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
