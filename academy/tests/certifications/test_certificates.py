import re
from decimal import Decimal
from unittest import mock

from django.test import TestCase, override_settings
from rest_framework import status

from academy.certifications.models import AttemptReset, ProfessionalCertificate
from academy.certifications.services import issue_certificate, perform_attempt_reset
from academy.payments.signals import on_djstripe_event_created
from academy.tests.utils import (
    authenticate,
    create_certification,
    create_completed_attempt,
    create_user,
)
from academy.users.models import Profile

PURCHASE_URL = "/api/academy/certifications/certificates/purchase/"
CERTIFICATE_NUMBER_RE = re.compile(r"^FA-\d{4}-[0-9A-F]{6}$")


@override_settings(CERTIFICATE_NUMBER_PREFIX="FA", FRONTEND_URL="https://academy.example.org")
class CertificatePurchaseTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.certification = create_certification(certificate_price_usd=Decimal("9.00"))
        cls.student = create_user("student", wallet_address="0x" + "a" * 40, display_name="Ada Lovelace")

    def setUp(self):
        authenticate(self.client, self.student)
        self.attempt = create_completed_attempt(self.student, self.certification, score=88)

    def _purchase(self, **payload):
        body = {"attempt_id": self.attempt.pk, "payment_method": "evm", "transaction_hash": "0x" + "b" * 64}
        body.update(payload)
        return self.client.post(PURCHASE_URL, body, content_type="application/json")

    def test_eligible_certificates(self):
        create_completed_attempt(self.student, self.certification, score=30)

        response = self.client.get("/api/academy/certifications/certificates/eligible/")

        eligible = response.json()["eligible"]
        self.assertEqual([item["id"] for item in eligible], [self.attempt.pk])
        self.assertEqual(eligible[0]["certificate_price"], "9.00")
        self.assertFalse(eligible[0]["has_discount"])

    def test_crypto_purchase_issues_certificate(self):
        response = self._purchase()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        certificate = response.json()["certificate"]
        self.assertRegex(certificate["certificate_number"], CERTIFICATE_NUMBER_RE)
        self.assertEqual(certificate["student_name"], "Ada Lovelace")
        self.assertEqual(certificate["grade"], "Excellent")
        self.assertEqual(certificate["payment_amount"], "9.00")
        self.assertEqual(
            certificate["verification_url"],
            f"https://academy.example.org/verify-professional/{certificate['certificate_number']}",
        )

        self.attempt.refresh_from_db()
        self.assertTrue(self.attempt.certificate_issued)
        self.assertEqual(Profile.objects.get(user=self.student).certificates_earned, 1)

    def test_certificate_cannot_be_bought_twice(self):
        self._purchase()
        response = self._purchase(transaction_hash="0x" + "c" * 64)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error"], "Certificate already purchased")

    def test_failed_attempt_is_not_eligible(self):
        failed = create_completed_attempt(self.student, self.certification, score=30)
        response = self._purchase(attempt_id=failed.pk)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.json()["error"], "Eligible attempt not found")

    def test_someone_elses_attempt(self):
        authenticate(self.client, create_user("intruder"))
        response = self._purchase()
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_malformed_transaction_hash(self):
        response = self._purchase(transaction_hash="not-a-hash")
        self.assertEqual(response.json()["error"], "Invalid transaction hash")
        self.assertFalse(ProfessionalCertificate.objects.exists())

    @mock.patch("academy.certifications.services.stripe_checkout.create_checkout_session")
    def test_card_purchase_redirects_to_checkout(self, create_checkout_session):
        create_checkout_session.return_value = {"checkout_url": "https://checkout.stripe.com/x", "session_id": "cs_1"}

        response = self._purchase(payment_method="stripe", transaction_hash=None)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["checkout_url"], "https://checkout.stripe.com/x")
        self.assertEqual(create_checkout_session.call_args[0][2], Decimal("9.00"))
        self.assertFalse(ProfessionalCertificate.objects.exists())

    def test_my_certificates_and_public_verification(self):
        number = self._purchase().json()["certificate"]["certificate_number"]

        mine = self.client.get("/api/academy/certifications/certificates/").json()["certificates"]
        self.assertEqual([item["certificate_number"] for item in mine], [number])

        self.client.cookies.clear()
        response = self.client.get(f"/api/academy/certifications/verify/{number}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.json()["verified"])
        self.assertNotIn("student_wallet", response.json()["certificate"])

    def test_revoked_certificate_fails_verification(self):
        number = self._purchase().json()["certificate"]["certificate_number"]
        ProfessionalCertificate.objects.get(certificate_number=number).revoke("Cheating")

        response = self.client.get(f"/api/academy/certifications/verify/{number}/")

        self.assertFalse(response.json()["verified"])
        self.assertEqual(response.json()["certificate"]["status"], ProfessionalCertificate.Status.REVOKED)

    def test_unknown_certificate_number(self):
        response = self.client.get("/api/academy/certifications/verify/FA-2026-000000/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_reset_keeps_attempts_with_certificates(self):
        issue_certificate(self.attempt, "evm", payment_id="0x" + "d" * 64)
        failed = create_completed_attempt(self.student, self.certification, score=20)

        perform_attempt_reset(self.student, self.certification, "evm", transaction_hash="0x" + "e" * 64)

        remaining = list(self.certification.attempts.filter(user=self.student).values_list("pk", flat=True))
        self.assertEqual(remaining, [self.attempt.pk])
        self.assertNotIn(failed.pk, remaining)


class StripeFulfilmentTests(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.certification = create_certification(max_attempts=1, attempt_reset_price_usd=Decimal("4.00"))
        cls.student = create_user("student")

    def _event(self, metadata, payment_status="paid", amount_total=900, session_id="cs_test_123"):
        return mock.Mock(
            id="evt_test_1",
            type="checkout.session.completed",
            data={
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "payment_status": payment_status,
                    "amount_total": amount_total,
                    "metadata": metadata,
                }
            },
        )

    def _deliver(self, event, created=True):
        on_djstripe_event_created(sender=None, instance=event, created=created)

    def test_certificate_checkout_completed(self):
        attempt = create_completed_attempt(self.student, self.certification, score=75)
        event = self._event({"kind": "certificate", "attempt_id": str(attempt.pk), "user_id": str(self.student.pk)})

        self._deliver(event)
        self._deliver(event)

        certificate = ProfessionalCertificate.objects.get()
        self.assertEqual(certificate.attempt, attempt)
        self.assertEqual(certificate.payment_method, "stripe")
        self.assertEqual(certificate.payment_id, "cs_test_123")
        self.assertEqual(certificate.payment_amount, Decimal("9.00"))
        self.assertEqual(certificate.grade, "Very Good")

    def test_attempt_reset_checkout_completed(self):
        create_completed_attempt(self.student, self.certification, score=20)
        event = self._event(
            {
                "kind": "attempt_reset",
                "certification_id": str(self.certification.pk),
                "user_id": str(self.student.pk),
            },
            amount_total=400,
        )

        self._deliver(event)
        self._deliver(event)

        reset = AttemptReset.objects.get()
        self.assertEqual(reset.payment_method, AttemptReset.PaymentMethod.STRIPE)
        self.assertEqual(reset.payment_id, "cs_test_123")
        self.assertEqual(reset.payment_amount, Decimal("4.00"))
        self.assertEqual(self.certification.attempts_used(self.student), 0)

    def test_unpaid_session_is_ignored(self):
        attempt = create_completed_attempt(self.student, self.certification, score=75)
        event = self._event(
            {"kind": "certificate", "attempt_id": str(attempt.pk), "user_id": str(self.student.pk)},
            payment_status="unpaid",
        )
        self._deliver(event)
        self.assertFalse(ProfessionalCertificate.objects.exists())

    def test_updated_events_are_ignored(self):
        attempt = create_completed_attempt(self.student, self.certification, score=75)
        event = self._event({"kind": "certificate", "attempt_id": str(attempt.pk), "user_id": str(self.student.pk)})
        self._deliver(event, created=False)
        self.assertFalse(ProfessionalCertificate.objects.exists())

    def test_unknown_user_does_not_raise(self):
        event = self._event({"kind": "certificate", "attempt_id": "1", "user_id": "9999"})
        self._deliver(event)
        self.assertFalse(ProfessionalCertificate.objects.exists())

    def test_failed_attempt_is_not_fulfilled(self):
        attempt = create_completed_attempt(self.student, self.certification, score=10)
        event = self._event({"kind": "certificate", "attempt_id": str(attempt.pk), "user_id": str(self.student.pk)})
        self._deliver(event)
        self.assertFalse(ProfessionalCertificate.objects.exists())
