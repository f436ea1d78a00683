from decimal import Decimal
from unittest import mock

from django.test import TestCase
from rest_framework import status

from academy.courses.models import Course, Lesson, Section
from academy.courses.services.storage_service import VideoStorageService
from academy.payments.models import Purchase
from academy.tests.utils import (
    authenticate,
    create_admin,
    create_course,
    create_instructor,
    create_purchase,
    create_user,
)

COURSES_URL = "/api/academy/courses/"


class CourseCatalogTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.instructor = create_instructor()
        cls.published = create_course(cls.instructor, title="DeFi Deep Dive", category=Course.Category.DEFI)
        cls.cheap = create_course(cls.instructor, title="Wallet Basics", price_usd=Decimal("10.00"))
        cls.draft = create_course(cls.instructor, title="Unfinished", status=Course.Status.DRAFT)

    def test_catalog_lists_only_published_courses(self):
        response = self.client.get(COURSES_URL)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        titles = {course["title"] for course in response.json()["courses"]}
        self.assertEqual(titles, {"DeFi Deep Dive", "Wallet Basics"})
        self.assertEqual(response.json()["pagination"]["total"], 2)

    def test_catalog_filters_and_sorts(self):
        response = self.client.get(COURSES_URL, {"category": Course.Category.DEFI})
        self.assertEqual([c["title"] for c in response.json()["courses"]], ["DeFi Deep Dive"])

        response = self.client.get(COURSES_URL, {"sort": "price-low"})
        self.assertEqual(response.json()["courses"][0]["title"], "Wallet Basics")

    def test_search_matches_title(self):
        response = self.client.get(COURSES_URL, {"search": "wallet"})
        self.assertEqual(len(response.json()["courses"]), 1)

    def test_draft_detail_hidden_from_public(self):
        response = self.client.get(f"{COURSES_URL}{self.draft.slug}/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_draft_detail_visible_to_instructor(self):
        authenticate(self.client, self.instructor)
        response = self.client.get(f"{COURSES_URL}{self.draft.slug}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.json()["is_instructor"])

    def test_categories_count_published_courses(self):
        response = self.client.get(f"{COURSES_URL}categories/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        categories = {entry["value"]: entry["course_count"] for entry in response.json()["categories"]}
        self.assertEqual(len(categories), len(Course.Category.choices))
        self.assertEqual(categories[Course.Category.DEFI], 1)
        self.assertEqual(sum(categories.values()), 2)

    def test_lesson_totals_follow_lessons(self):
        self.assertEqual(self.published.total_lessons, 2)
        self.assertEqual(self.published.total_duration, 600)


class CourseAuthoringTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.instructor = create_instructor()
        cls.student = create_user("student")
        cls.admin = create_admin()

    def test_only_verified_instructors_create_courses(self):
        authenticate(self.client, self.student)
        response = self.client.post(
            COURSES_URL,
            {"title": "Nope", "price_usd": "10.00", "category": Course.Category.DEFI},
            content_type="application/json",
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_created_course_is_draft_with_unique_slug(self):
        authenticate(self.client, self.instructor)
        slugs = []
        for _ in range(2):
            response = self.client.post(
                COURSES_URL,
                {"title": "Intro to DAOs", "price_usd": "25.00", "category": Course.Category.DAOS},
                content_type="application/json",
            )
            self.assertEqual(response.status_code, status.HTTP_201_CREATED)
            self.assertEqual(response.json()["status"], Course.Status.DRAFT)
            slugs.append(response.json()["slug"])
        self.assertEqual(slugs, ["intro-to-daos", "intro-to-daos-1"])

    def test_titles_matching_fixed_routes_get_suffixed_slugs(self):
        course = create_course(self.instructor, title="Mine")
        self.assertEqual(course.slug, "mine-1")

        response = self.client.get(f"{COURSES_URL}{course.slug}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["title"], "Mine")

        self.assertEqual(Course.generate_unique_slug("Instructor"), "instructor-1")

    def test_publish_requires_videos(self):
        course = create_course(self.instructor, status=Course.Status.DRAFT, lessons=0)
        section = course.sections.first()
        Lesson.objects.create(section=section, title="No video yet", order=1)

        authenticate(self.client, self.instructor)
        response = self.client.post(f"{COURSES_URL}{course.slug}/publish/")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error"], "All lessons must have videos uploaded")

    def test_publish_stamps_published_at(self):
        course = create_course(self.instructor, status=Course.Status.DRAFT)
        authenticate(self.client, self.instructor)
        response = self.client.post(f"{COURSES_URL}{course.slug}/publish/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        course.refresh_from_db()
        self.assertEqual(course.status, Course.Status.PUBLISHED)
        self.assertIsNotNone(course.published_at)

    def test_other_users_cannot_edit(self):
        course = create_course(self.instructor)
        authenticate(self.client, self.student)
        response = self.client.patch(
            f"{COURSES_URL}{course.slug}/", {"title": "Hijacked"}, content_type="application/json"
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_add_section_appends_order(self):
        course = create_course(self.instructor)
        authenticate(self.client, self.instructor)
        response = self.client.post(
            f"{COURSES_URL}{course.slug}/sections/", {"title": "Advanced"}, content_type="application/json"
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Section.objects.get(pk=response.json()["id"]).order, 2)

    def test_course_with_purchases_cannot_be_deleted(self):
        course = create_course(self.instructor)
        purchase = create_purchase(self.student, course)
        authenticate(self.client, self.instructor)

        response = self.client.delete(f"{COURSES_URL}{course.slug}/")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(Purchase.objects.filter(pk=purchase.pk, escrow_status=Purchase.EscrowStatus.LOCKED).exists())
        self.assertTrue(Course.objects.filter(pk=course.pk).exists())

    @mock.patch.object(VideoStorageService, "delete_object", return_value=True)
    def test_delete_course_removes_videos(self, delete_object):
        course = create_course(self.instructor)
        authenticate(self.client, self.instructor)

        response = self.client.delete(f"{COURSES_URL}{course.slug}/")

        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Course.objects.filter(pk=course.pk).exists())
        self.assertEqual(delete_object.call_count, 2)

    def test_update_with_sections_replaces_curriculum(self):
        course = create_course(self.instructor)
        authenticate(self.client, self.instructor)
        sections = [
            {
                "title": "Foundations",
                "lessons": [
                    {"title": "Accounts", "video_key": f"courses/{course.pk}/accounts.mp4", "duration": 120},
                    {"title": "Gas", "video_key": f"courses/{course.pk}/gas.mp4", "duration": 180},
                ],
            },
            {"title": "Security", "lessons": [{"title": "Reentrancy", "duration": 600}]},
        ]

        response = self.client.patch(
            f"{COURSES_URL}{course.slug}/", {"sections": sections}, content_type="application/json"
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            list(Section.objects.filter(course=course).order_by("order").values_list("title", "order")),
            [("Foundations", 1), ("Security", 2)],
        )
        self.assertFalse(Lesson.objects.filter(section__course=course, title="Lesson 1").exists())
        course.refresh_from_db()
        self.assertEqual(course.total_lessons, 3)
        self.assertEqual(course.total_duration, 900)

    def test_update_without_sections_keeps_curriculum(self):
        course = create_course(self.instructor)
        authenticate(self.client, self.instructor)
        self.client.patch(f"{COURSES_URL}{course.slug}/", {"subtitle": "Now with Foundry"}, content_type="application/json")
        self.assertEqual(Lesson.objects.filter(section__course=course).count(), 2)

    def test_admin_status_change_validates_status(self):
        course = create_course(self.instructor)
        authenticate(self.client, self.admin)
        response = self.client.patch(
            f"/api/academy/admin/courses/{course.slug}/status/", {"status": "gone"}, content_type="application/json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.patch(
            f"/api/academy/admin/courses/{course.slug}/status/",
            {"status": Course.Status.ARCHIVED},
            content_type="application/json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["status"], Course.Status.ARCHIVED)


class InstructorCourseTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.instructor = create_instructor()
        cls.rival = create_instructor("vitalik", wallet_address="0x" + "3" * 40)
        cls.course = create_course(cls.instructor, price_usd=Decimal("40.00"))
        cls.draft = create_course(cls.instructor, title="Coming soon", status=Course.Status.DRAFT)
        create_course(cls.rival, title="Rival course")
        create_purchase(create_user("alice"), cls.course, is_completed=True)
        create_purchase(create_user("bob"), cls.course)
        create_purchase(create_user("carol"), cls.course, status=Purchase.Status.REFUNDED)

    def test_stats_cover_own_courses_only(self):
        authenticate(self.client, self.instructor)
        body = self.client.get(f"{COURSES_URL}mine/stats/").json()

        rows = {row["slug"]: row for row in body["courses"]}
        self.assertEqual(set(rows), {self.course.slug, self.draft.slug})
        self.assertEqual(rows[self.course.slug]["students"], 2)
        self.assertEqual(rows[self.course.slug]["completion_rate"], 50)
        self.assertEqual(Decimal(rows[self.course.slug]["revenue"]), Decimal("80.00"))
        self.assertEqual(rows[self.draft.slug]["completion_rate"], 0)
        self.assertEqual(body["totals"]["courses"], 2)
        self.assertEqual(body["totals"]["students"], 2)

    def test_stats_require_sign_in(self):
        response = self.client.get(f"{COURSES_URL}mine/stats/")
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_public_listing_by_instructor_hides_drafts(self):
        response = self.client.get(f"{COURSES_URL}instructor/{self.instructor.username}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([course["slug"] for course in response.json()], [self.course.slug])

    def test_unknown_instructor_listing(self):
        response = self.client.get(f"{COURSES_URL}instructor/nobody/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class StorageKeyTests(TestCase):
    def test_normalize_key_strips_bucket_and_slashes(self):
        service = VideoStorageService()
        key = f"/{service.bucket}/courses/1/intro%20video.mp4"
        self.assertEqual(service.normalize_key(key), "courses/1/intro video.mp4")
