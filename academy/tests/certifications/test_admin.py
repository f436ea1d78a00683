from decimal import Decimal

from django.test import TestCase
from rest_framework import status

from academy.certifications.models import ProfessionalCertificate, ProfessionalCertification
from academy.certifications.services import issue_certificate, perform_attempt_reset
from academy.tests.utils import (
    authenticate,
    create_admin,
    create_certification,
    create_completed_attempt,
    create_user,
)

ADMIN_URL = "/api/academy/admin/certifications/"


class AdminCertificationTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.admin = create_admin()
        cls.student = create_user("student")

    def setUp(self):
        authenticate(self.client, self.admin)

    def _question(self, text, correct="Yes"):
        return {
            "question": text,
            "type": "multiple-choice",
            "options": [{"text": "Yes", "is_correct": correct == "Yes"}, {"text": "No", "is_correct": correct == "No"}],
            "points": 1,
        }

    def test_create_with_question_pool(self):
        payload = {
            "title": "DeFi Analyst",
            "description": "Lending, AMMs and oracles.",
            "category": "defi",
            "questions_per_test": 2,
            "questions": [
                self._question("Is Uniswap an AMM?"),
                self._question("Are oracles trustless by default?", correct="No"),
                {"question": "Aave supports flash loans", "type": "true-false", "correct_answer": True},
            ],
        }

        response = self.client.post(ADMIN_URL, payload, content_type="application/json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        certification = ProfessionalCertification.objects.get(slug="defi-analyst")
        self.assertEqual(certification.created_by, self.admin)
        self.assertEqual(certification.status, ProfessionalCertification.Status.DRAFT)
        self.assertEqual(list(certification.questions.values_list("order", flat=True)), [0, 1, 2])

    def test_multiple_choice_needs_exactly_one_correct_option(self):
        bad = self._question("Broken")
        bad["options"][1]["is_correct"] = True
        payload = {"title": "Broken", "description": "x", "category": "defi", "questions": [bad]}

        response = self.client.post(ADMIN_URL, payload, content_type="application/json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(ProfessionalCertification.objects.exists())

    def test_update_replaces_question_pool(self):
        certification = create_certification(questions=5)
        response = self.client.patch(
            f"{ADMIN_URL}{certification.pk}/",
            {"questions": [self._question("Only one")]},
            content_type="application/json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["total_questions"], 1)

    def test_reserved_slugs_are_avoided(self):
        certification = create_certification(title="Attempts")
        self.assertEqual(certification.slug, "attempts-2")

        payload = {"title": "Verify", "slug": "verify", "description": "x", "category": "defi", "questions": []}
        response = self.client.post(ADMIN_URL, payload, content_type="application/json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("slug", response.json())

    def test_status_change(self):
        certification = create_certification(status=ProfessionalCertification.Status.DRAFT)
        url = f"{ADMIN_URL}{certification.pk}/status/"

        response = self.client.patch(url, {"status": "live"}, content_type="application/json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error"], "Invalid status")

        response = self.client.patch(url, {"status": "published"}, content_type="application/json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        certification.refresh_from_db()
        self.assertIsNotNone(certification.published_at)

    def test_delete_refused_once_certificates_exist(self):
        certification = create_certification()
        issue_certificate(create_completed_attempt(self.student, certification), "evm")

        response = self.client.delete(f"{ADMIN_URL}{certification.pk}/")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(ProfessionalCertification.objects.filter(pk=certification.pk).exists())

    def test_revoke_certificate(self):
        certificate = issue_certificate(create_completed_attempt(self.student, create_certification()), "evm")
        url = f"{ADMIN_URL}certificates/{certificate.pk}/revoke/"

        response = self.client.post(url, {}, content_type="application/json")
        self.assertEqual(response.json()["error"], "Revocation reason required")

        response = self.client.post(url, {"reason": "Identity fraud"}, content_type="application/json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        certificate.refresh_from_db()
        self.assertEqual(certificate.status, ProfessionalCertificate.Status.REVOKED)
        self.assertFalse(certificate.is_valid)

        response = self.client.post(url, {"reason": "Again"}, content_type="application/json")
        self.assertEqual(response.json()["error"], "Certificate already revoked")

    def test_attempts_and_certificates_listing(self):
        certification = create_certification()
        attempt = create_completed_attempt(self.student, certification)
        issue_certificate(attempt, "evm")

        attempts = self.client.get(f"{ADMIN_URL}{certification.pk}/attempts/").json()
        self.assertEqual(attempts["attempts"][0]["username"], "student")

        certificates = self.client.get(f"{ADMIN_URL}certificates/", {"search": "stud"}).json()
        self.assertEqual(certificates["pagination"]["total"], 1)

    def test_stats(self):
        certification = create_certification(certificate_price_usd=Decimal("10.00"))
        passed = create_completed_attempt(self.student, certification, score=90)
        create_completed_attempt(self.student, certification, score=50)
        issue_certificate(passed, "evm")
        perform_attempt_reset(self.student, certification, "evm", transaction_hash="0x" + "1" * 64)

        body = self.client.get(f"{ADMIN_URL}stats/").json()

        self.assertEqual(body["certifications"]["published"], 1)
        self.assertEqual(body["attempts"]["total"], 1)
        self.assertEqual(body["certificates"]["active"], 1)
        self.assertEqual(Decimal(body["revenue"]["certificates"]), Decimal("10.00"))
        self.assertEqual(Decimal(body["revenue"]["attempt_resets"]), Decimal("5.00"))
        self.assertEqual(Decimal(body["revenue"]["total"]), Decimal("15.00"))

    def test_students_are_refused(self):
        authenticate(self.client, self.student)
        self.assertEqual(self.client.get(ADMIN_URL).status_code, status.HTTP_403_FORBIDDEN)
