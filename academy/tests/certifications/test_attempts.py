from datetime import timedelta
from unittest import mock

from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.throttling import ScopedRateThrottle

from academy.certifications.models import (
    AttemptReset,
    CertificationAttempt,
    ProfessionalCertification,
)
from academy.certifications.services import grade_answers
from academy.tests.utils import (
    authenticate,
    create_certification,
    create_completed_attempt,
    create_user,
)
from academy.users.models import Profile

CATALOG_URL = "/api/academy/certifications/"


def _start_url(certification):
    return f"/api/academy/certifications/{certification.pk}/start/"


def _submit_url(attempt_id):
    return f"/api/academy/certifications/attempts/{attempt_id}/submit/"


def _reset_url(certification):
    return f"/api/academy/certifications/{certification.pk}/reset/"


class CertificationCatalogTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.published = create_certification()
        cls.draft = create_certification(title="Rust for Solana", status=ProfessionalCertification.Status.DRAFT)
        cls.student = create_user("student")

    def test_catalog_lists_published_only(self):
        response = self.client.get(CATALOG_URL)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        slugs = [item["slug"] for item in response.json()["certifications"]]
        self.assertEqual(slugs, [self.published.slug])
        self.assertNotIn("questions", response.json()["certifications"][0])

    def test_catalog_shows_attempts_to_signed_in_users(self):
        create_completed_attempt(self.student, self.published, score=40)
        authenticate(self.client, self.student)

        item = self.client.get(CATALOG_URL).json()["certifications"][0]

        self.assertEqual(item["user_attempts"], 1)
        self.assertTrue(item["can_take_test"])

    def test_detail_by_slug(self):
        response = self.client.get(f"{CATALOG_URL}{self.published.slug}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["total_questions"], 5)
        self.assertNotIn("attempts_used", response.json())

    def test_draft_detail_is_hidden(self):
        response = self.client.get(f"{CATALOG_URL}{self.draft.slug}/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class AttemptTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.certification = create_certification(questions=6, questions_per_test=4, max_attempts=2)
        cls.student = create_user("student")

    def setUp(self):
        cache.clear()
        authenticate(self.client, self.student)

    def _start(self):
        return self.client.post(_start_url(self.certification), content_type="application/json")

    def _correct_answers(self, attempt_id, how_many=None):
        attempt = CertificationAttempt.objects.get(pk=attempt_id)
        answers = []
        for question in attempt.question_set[:how_many]:
            right = next(option["text"] for option in question["options"] if option["is_correct"])
            answers.append({"question_id": question["id"], "answer": right, "time_spent": 20})
        return answers

    def _submit(self, started, answers, **extra):
        payload = {"answers": answers, "session_token": started["session_token"], **extra}
        return self.client.post(_submit_url(started["attempt_id"]), payload, content_type="application/json")

    def test_start_draws_questions_without_solutions(self):
        response = self._start()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        body = response.json()
        self.assertEqual(len(body["questions"]), 4)
        self.assertEqual(body["attempt_number"], 1)
        self.assertFalse(body["resumed"])
        for question in body["questions"]:
            self.assertNotIn("correct_answer", question)
            self.assertNotIn("explanation", question)
            for option in question["options"]:
                self.assertEqual(set(option), {"text"})

    def test_start_resumes_open_attempt(self):
        first = self._start().json()
        second = self._start()

        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.assertTrue(second.json()["resumed"])
        self.assertEqual(second.json()["attempt_id"], first["attempt_id"])
        self.assertEqual(CertificationAttempt.objects.count(), 1)

    @mock.patch.dict(ScopedRateThrottle.THROTTLE_RATES, {"certification_attempts": "2/min"})
    def test_start_requests_are_rate_limited(self):
        self._start()
        self._start()

        response = self._start()

        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(CertificationAttempt.objects.count(), 1)

    def test_expired_open_attempt_is_cancelled_on_start(self):
        first = self._start().json()
        CertificationAttempt.objects.filter(pk=first["attempt_id"]).update(
            started_at=timezone.now() - timedelta(minutes=31)
        )

        response = self._start()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.json()["attempt_number"], 2)
        old = CertificationAttempt.objects.get(pk=first["attempt_id"])
        self.assertEqual(old.status, CertificationAttempt.Status.CANCELLED)

    def test_insufficient_question_pool(self):
        certification = create_certification(title="Tiny pool", questions=2, questions_per_test=3)
        response = self.client.post(_start_url(certification), content_type="application/json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error"], "Insufficient questions. Need 3, have 2")

    def test_maximum_attempts(self):
        create_completed_attempt(self.student, self.certification, score=10)
        create_completed_attempt(self.student, self.certification, score=20)

        response = self._start()

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.json()["error"], "Maximum attempts reached")
        self.assertTrue(response.json()["can_reset_attempts"])

    def test_submit_all_correct(self):
        started = self._start().json()

        response = self._submit(started, self._correct_answers(started["attempt_id"]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        results = response.json()["results"]
        self.assertEqual(results["score"], 100)
        self.assertTrue(results["passed"])
        self.assertEqual(results["grade"], "Outstanding")
        self.assertEqual(results["correct_answers"], 4)

        self.assertEqual(Profile.objects.get(user=self.student).total_xp, 200)
        self.certification.refresh_from_db()
        self.assertEqual(self.certification.total_attempts, 1)
        self.assertEqual(self.certification.total_passed, 1)

    def test_submit_partial_answers(self):
        started = self._start().json()

        results = self._submit(started, self._correct_answers(started["attempt_id"], how_many=2)).json()["results"]

        self.assertEqual(results["score"], 50)
        self.assertFalse(results["passed"])
        self.assertEqual(results["unanswered_questions"], 2)
        self.assertEqual(results["grade"], "Fail")
        self.assertEqual(Profile.objects.get(user=self.student).total_xp, 0)

    def test_wrong_session_token_keeps_attempt_open(self):
        started = self._start().json()

        response = self._submit({**started, "session_token": "forged"}, [])
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.json()["error"], "Invalid session")

        response = self._submit(started, self._correct_answers(started["attempt_id"]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_attempt_cannot_be_submitted_twice(self):
        started = self._start().json()
        self._submit(started, [])
        response = self._submit(started, [])
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.json()["error"], "Invalid attempt or already submitted")

    def test_late_submission_is_cancelled(self):
        started = self._start().json()
        CertificationAttempt.objects.filter(pk=started["attempt_id"]).update(
            started_at=timezone.now() - timedelta(minutes=32)
        )

        response = self._submit(started, self._correct_answers(started["attempt_id"]))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error"], "Time limit exceeded")
        attempt = CertificationAttempt.objects.get(pk=started["attempt_id"])
        self.assertEqual(attempt.status, CertificationAttempt.Status.CANCELLED)
        self.assertEqual(self.certification.attempts_used(self.student), 1)

    def test_security_log_is_recorded(self):
        started = self._start().json()
        log = [
            {"type": "tab-switch", "timestamp": "2026-01-01T10:00:00Z"},
            {"type": "tab-switch", "timestamp": "2026-01-01T10:05:00Z"},
            {"type": "copy-attempt"},
            {"type": "unknown"},
        ]

        self._submit(started, [], security_log=log)

        attempt = CertificationAttempt.objects.get(pk=started["attempt_id"])
        self.assertEqual(attempt.tab_switches, 2)
        self.assertEqual(attempt.copy_attempts, 1)
        self.assertEqual(len(attempt.tab_switch_timestamps), 2)

    def test_review_reveals_solutions_after_completion(self):
        started = self._start().json()
        self._submit(started, self._correct_answers(started["attempt_id"], how_many=1))

        response = self.client.get(f"/api/academy/certifications/attempts/{started['attempt_id']}/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        review = response.json()["review"]
        self.assertEqual(len(review), 4)
        self.assertTrue(review[0]["is_correct"])
        self.assertIsNone(review[1]["user_answer"])

    def test_my_attempts_lists_completed_only(self):
        create_completed_attempt(self.student, self.certification)
        self._start()
        response = self.client.get("/api/academy/certifications/attempts/")
        self.assertEqual(len(response.json()["attempts"]), 1)


class GradingTests(TestCase):
    QUESTION_SET = [
        {
            "id": 1,
            "type": "multiple-choice",
            "options": [{"text": "a", "is_correct": False}, {"text": "b", "is_correct": True}],
            "correct_answer": None,
            "points": 1,
        },
        {"id": 2, "type": "true-false", "options": [], "correct_answer": False, "points": 2},
        {"id": 3, "type": "true-false", "options": [], "correct_answer": True, "points": 1},
    ]

    def test_true_false_accepts_strings(self):
        result = grade_answers(
            self.QUESTION_SET,
            [{"question_id": 2, "answer": "false"}, {"question_id": 3, "answer": True}],
        )
        self.assertEqual(result["correct"], 2)
        self.assertEqual(result["unanswered"], 1)
        self.assertEqual(result["score"], 67)

    def test_duplicate_and_unknown_answers_are_ignored(self):
        result = grade_answers(
            self.QUESTION_SET,
            [
                {"question_id": 1, "answer": "b"},
                {"question_id": 1, "answer": "a"},
                {"question_id": 99, "answer": "b"},
                "garbage",
            ],
        )
        self.assertEqual(len(result["answers"]), 1)
        self.assertEqual(result["correct"], 1)
        self.assertEqual(result["score"], 33)


class AttemptResetTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.certification = create_certification(max_attempts=2)
        cls.student = create_user("student")

    def setUp(self):
        authenticate(self.client, self.student)

    def _exhaust_attempts(self):
        create_completed_attempt(self.student, self.certification, score=10)
        create_completed_attempt(self.student, self.certification, score=20)

    def _reset(self, payload):
        return self.client.post(_reset_url(self.certification), payload, content_type="application/json")

    def test_crypto_reset_clears_attempts(self):
        self._exhaust_attempts()

        response = self._reset({"payment_method": "evm", "transaction_hash": "0x" + "a" * 64})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["attempts_available"], 2)
        self.assertEqual(self.certification.attempts_used(self.student), 0)
        reset = AttemptReset.objects.get()
        self.assertEqual(reset.payment_method, AttemptReset.PaymentMethod.EVM)
        self.assertEqual(reset.attempts_reset_count, 2)

    def test_reset_needs_exhausted_attempts(self):
        create_completed_attempt(self.student, self.certification, score=10)
        response = self._reset({"payment_method": "evm", "transaction_hash": "0x" + "a" * 64})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error"], "You still have attempts remaining")

    def test_reset_disabled(self):
        ProfessionalCertification.objects.filter(pk=self.certification.pk).update(attempt_reset_enabled=False)
        self._exhaust_attempts()
        response = self._reset({"payment_method": "evm", "transaction_hash": "0x" + "a" * 64})
        self.assertEqual(response.json()["error"], "Attempt reset not available for this certification")

    def test_malformed_transaction_hash(self):
        self._exhaust_attempts()
        response = self._reset({"payment_method": "evm", "transaction_hash": "0x1234"})
        self.assertEqual(response.json()["error"], "Invalid transaction hash")
        self.assertEqual(self.certification.attempts_used(self.student), 2)

    def test_unknown_payment_method(self):
        self._exhaust_attempts()
        response = self._reset({"payment_method": "paypal"})
        self.assertEqual(response.json()["error"], "Invalid payment method")

    @mock.patch("academy.certifications.services.stripe_checkout.create_checkout_session")
    def test_card_reset_redirects_to_checkout(self, create_checkout_session):
        create_checkout_session.return_value = {
            "checkout_url": "https://checkout.stripe.com/c/pay/cs_test_1",
            "session_id": "cs_test_1",
        }
        self._exhaust_attempts()

        response = self._reset({"payment_method": "stripe"})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.json()["requires_redirect"])
        self.assertEqual(response.json()["session_id"], "cs_test_1")
        metadata = create_checkout_session.call_args[0][3]
        self.assertEqual(metadata, {"kind": "attempt_reset", "certification_id": self.certification.pk})
        self.assertEqual(self.certification.attempts_used(self.student), 2)
