import time
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.core.cache import cache
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings
from eth_account import Account
from eth_account.messages import encode_defunct
from rest_framework import status
from web3.exceptions import ContractLogicError

from academy.payments.exceptions import BlockchainError, PaymentConfigurationError
from academy.payments.models import AdminAuditLog, Purchase
from academy.payments.services import escrow
from academy.tests.utils import (
    authenticate,
    create_admin,
    create_course,
    create_instructor,
    create_purchase,
    create_token,
    create_user,
)


def _release_url(escrow_id):
    return f"/api/academy/admin/escrows/{escrow_id}/release/"


def _refund_url(escrow_id):
    return f"/api/academy/admin/escrows/{escrow_id}/refund/"


class EscrowTestCase(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.instructor = create_instructor()
        cls.token = create_token()
        cls.course = create_course(cls.instructor)
        cls.student = create_user("student", wallet_address="0x" + "a" * 40)

    def setUp(self):
        cache.clear()


@override_settings(PAYMENT_MODE="dummy")
class ManualReleaseTests(EscrowTestCase):
    def setUp(self):
        super().setUp()
        self.account = Account.create()
        self.admin = create_admin()
        authenticate(self.client, self.admin)
        self.purchase = create_purchase(self.student, self.course, token=self.token)

    def _signed_payload(self, reason="Instructor dispute resolved", account=None, timestamp=None, escrow_id=None):
        account = account or self.account
        timestamp = timestamp if timestamp is not None else int(time.time() * 1000)
        message = escrow.release_message(escrow_id or self.purchase.escrow_id, reason, timestamp)
        signed = account.sign_message(encode_defunct(text=message))
        return {
            "reason": reason,
            "signature": signed.signature.hex(),
            "signer_address": self.account.address,
            "timestamp": timestamp,
        }

    def _release(self, payload, escrow_id=None):
        return self.client.post(
            _release_url(escrow_id or self.purchase.escrow_id), payload, content_type="application/json"
        )

    def test_release_with_valid_signature(self):
        response = self._release(self._signed_payload())

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["message"], "Escrow released")
        self.purchase.refresh_from_db()
        self.assertEqual(self.purchase.escrow_status, Purchase.EscrowStatus.RELEASED)
        self.assertEqual(self.purchase.escrow_released_by, self.admin)
        self.assertEqual(self.purchase.escrow_release_reason, "Instructor dispute resolved")

        log = AdminAuditLog.objects.get()
        self.assertEqual(log.action, AdminAuditLog.Action.MANUAL_ESCROW_RELEASE)
        self.assertEqual(log.target_id, str(self.purchase.pk))
        self.assertTrue(log.details["released_early"])
        self.assertEqual(log.details["signer_address"], self.account.address.lower())

    def test_first_signature_registers_admin_wallet(self):
        self._release(self._signed_payload())
        self.admin.profile.refresh_from_db()
        self.assertEqual(self.admin.profile.wallet_address, self.account.address.lower())

    def test_reason_required(self):
        payload = self._signed_payload()
        payload["reason"] = "  "
        response = self._release(payload)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error"], "Reason is required")

    def test_signature_required(self):
        response = self._release({"reason": "Dispute"})
        self.assertEqual(response.json()["error"], "Wallet signature required for security")

    def test_signature_from_another_wallet(self):
        payload = self._signed_payload(account=Account.create())
        response = self._release(payload)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.json()["error"], "Invalid wallet signature")
        self.purchase.refresh_from_db()
        self.assertEqual(self.purchase.escrow_status, Purchase.EscrowStatus.LOCKED)

    def test_signer_must_match_registered_wallet(self):
        profile = self.admin.profile
        profile.wallet_address = "0x" + "5" * 40
        profile.save()
        response = self._release(self._signed_payload())
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.json()["error"], "Signer does not match your registered wallet")

    def test_stale_signature(self):
        ten_minutes_ago = int(time.time() * 1000) - 10 * 60 * 1000
        response = self._release(self._signed_payload(timestamp=ten_minutes_ago))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.json()["error"], "Signature expired")

    def test_already_released(self):
        self.purchase.mark_released("0x" + "1" * 64)
        response = self._release(self._signed_payload())
        self.assertEqual(response.json()["error"], "Escrow already released")

    def test_refunded_escrow_cannot_be_released(self):
        self.purchase.mark_refunded("0x" + "1" * 64)
        response = self._release(self._signed_payload())
        self.assertEqual(response.json()["error"], "Cannot release - escrow was refunded")

    def test_large_escrow_needs_super_admin(self):
        Purchase.objects.filter(pk=self.purchase.pk).update(amount_in_usd=Decimal("1500.00"))
        response = self._release(self._signed_payload())
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        profile = self.admin.profile
        profile.is_super_admin = True
        profile.save()
        response = self._release(self._signed_payload())
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_unknown_escrow(self):
        response = self._release(self._signed_payload(escrow_id="999"), escrow_id="999")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_students_cannot_release(self):
        authenticate(self.client, self.student)
        response = self._release(self._signed_payload())
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(AdminAuditLog.objects.exists())


@override_settings(PAYMENT_MODE="dummy")
class AdminOverrideTests(EscrowTestCase):
    def setUp(self):
        super().setUp()
        self.admin = create_admin()
        authenticate(self.client, self.admin)

    def test_manual_refund(self):
        purchase = create_purchase(self.student, self.course, token=self.token)

        response = self.client.post(
            _refund_url(purchase.escrow_id), {"reason": "Course removed"}, content_type="application/json"
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.json()["transaction_hash"].startswith("dummy_refund_"))
        purchase.refresh_from_db()
        self.assertEqual(purchase.status, Purchase.Status.REFUNDED)
        self.assertEqual(AdminAuditLog.objects.get().action, AdminAuditLog.Action.MANUAL_ESCROW_REFUND)

    def test_refund_of_released_escrow(self):
        purchase = create_purchase(
            self.student, self.course, token=self.token, escrow_status=Purchase.EscrowStatus.RELEASED
        )
        response = self.client.post(_refund_url(purchase.escrow_id), {}, content_type="application/json")
        self.assertEqual(response.json()["error"], "Already released, cannot refund")

    def test_grant_and_remove_access(self):
        payload = {"user_id": self.student.pk, "course_id": self.course.pk, "reason": "Scholarship"}

        response = self.client.post("/api/academy/admin/access/grant/", payload, content_type="application/json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(self.course.has_purchased(self.student))

        response = self.client.post("/api/academy/admin/access/grant/", payload, content_type="application/json")
        self.assertEqual(response.json()["error"], "User already has access")

        response = self.client.post("/api/academy/admin/access/remove/", payload, content_type="application/json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(self.course.has_purchased(self.student))

        response = self.client.post("/api/academy/admin/access/remove/", payload, content_type="application/json")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.json()["error"], "Access not found")

        actions = list(AdminAuditLog.objects.order_by("pk").values_list("action", flat=True))
        self.assertEqual(
            actions,
            [AdminAuditLog.Action.GRANT_FREE_COURSE_ACCESS, AdminAuditLog.Action.REMOVE_COURSE_ACCESS],
        )

    def test_audit_log_listing(self):
        create_purchase(self.student, self.course, token=self.token)
        self.client.post(
            "/api/academy/admin/access/grant/",
            {"user_id": create_user("guest").pk, "course_id": self.course.pk},
            content_type="application/json",
        )

        response = self.client.get("/api/academy/admin/audit-logs/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()["pagination"]["total"], 1)
        self.assertEqual(response.json()["logs"][0]["action"], AdminAuditLog.Action.GRANT_FREE_COURSE_ACCESS)

    def test_escrow_listing_filters_by_status(self):
        create_purchase(self.student, self.course, token=self.token)
        create_purchase(
            create_user("other"), self.course, token=self.token, escrow_status=Purchase.EscrowStatus.RELEASED
        )
        response = self.client.get("/api/academy/admin/escrows/", {"status": "locked"})
        self.assertEqual(response.json()["pagination"]["total"], 1)


@override_settings(ESCROW_RELEASE_BATCH_SIZE=2)
class AutomaticReleaseTests(EscrowTestCase):
    def setUp(self):
        super().setUp()
        patcher = mock.patch("academy.payments.services.escrow.EscrowClient")
        self.escrow_client_class = patcher.start()
        self.addCleanup(patcher.stop)
        self.client_mock = self.escrow_client_class.for_token.return_value
        self.client_mock.get_escrow.return_value.is_due.return_value = True
        self.client_mock.batch_release_escrows.return_value = "0x" + "b" * 64
        self.client_mock.release_escrow.return_value = "0x" + "c" * 64

    def _due_purchases(self, count):
        return [
            create_purchase(create_user(f"student-{n}"), self.course, token=self.token, days_ago=15)
            for n in range(count)
        ]

    def test_releases_due_escrows_in_batches(self):
        due = self._due_purchases(3)
        create_purchase(self.student, self.course, token=self.token)

        stats = escrow.release_due_escrows()

        self.assertEqual(stats["found"], 3)
        self.assertEqual(stats["released"], 3)
        self.assertEqual(self.client_mock.batch_release_escrows.call_count, 2)
        for purchase in due:
            purchase.refresh_from_db()
            self.assertEqual(purchase.escrow_status, Purchase.EscrowStatus.RELEASED)
            self.assertEqual(purchase.escrow_release_tx_hash, "0x" + "b" * 64)

    def test_failed_batch_falls_back_to_single_releases(self):
        self._due_purchases(2)
        self.client_mock.batch_release_escrows.side_effect = BlockchainError("gas")
        self.client_mock.release_escrow.side_effect = ["0x" + "c" * 64, BlockchainError("reverted")]

        stats = escrow.release_due_escrows()

        self.assertEqual(stats["released"], 1)
        self.assertEqual(stats["failed"], 1)
        self.assertEqual(Purchase.objects.filter(escrow_status=Purchase.EscrowStatus.LOCKED).count(), 1)

    def test_misconfigured_chain_does_not_stop_other_chains(self):
        broken_token = create_token(symbol="weth", chain_id=1, payment_contract_address="")
        broken = create_purchase(create_user("mainnet-student"), self.course, token=broken_token, days_ago=16)
        healthy = self._due_purchases(1)[0]

        def for_token(token):
            if token.pk == broken_token.pk:
                raise PaymentConfigurationError("RPC URL and escrow contract address are required")
            return self.client_mock

        self.escrow_client_class.for_token.side_effect = for_token

        stats = escrow.release_due_escrows()

        self.assertEqual(stats["released"], 1)
        self.assertEqual(stats["failed"], 1)
        healthy.refresh_from_db()
        broken.refresh_from_db()
        self.assertEqual(healthy.escrow_status, Purchase.EscrowStatus.RELEASED)
        self.assertEqual(broken.escrow_status, Purchase.EscrowStatus.LOCKED)

    def test_raw_rpc_errors_fall_back_to_single_releases(self):
        self._due_purchases(1)
        self.client_mock.batch_release_escrows.side_effect = ContractLogicError("execution reverted")

        stats = escrow.release_due_escrows()

        self.assertEqual(stats["released"], 1)
        self.client_mock.release_escrow.assert_called_once()

    def test_escrow_not_due_on_chain_is_skipped(self):
        self._due_purchases(1)
        self.client_mock.get_escrow.return_value.is_due.return_value = False

        stats = escrow.release_due_escrows()

        self.assertEqual(stats["skipped"], 1)
        self.client_mock.batch_release_escrows.assert_not_called()

    def test_dry_run_releases_nothing(self):
        due = self._due_purchases(1)
        stats = escrow.release_due_escrows(dry_run=True)
        self.assertEqual(stats["escrow_ids"], [due[0].escrow_id])
        self.client_mock.batch_release_escrows.assert_not_called()

    def test_concurrent_run_is_refused(self):
        cache.add(escrow.RELEASE_LOCK_KEY, "1")
        with self.assertRaises(escrow.EscrowReleaseInProgress):
            escrow.release_due_escrows()

    def test_lock_is_released_after_run(self):
        escrow.release_due_escrows()
        self.assertIsNone(cache.get(escrow.RELEASE_LOCK_KEY))

    def test_command_output(self):
        self._due_purchases(1)
        out = StringIO()
        call_command("release_escrows", stdout=out)
        self.assertIn("released=1", out.getvalue())

    def test_command_with_nothing_due(self):
        out = StringIO()
        call_command("release_escrows", stdout=out)
        self.assertIn("No escrows due for release", out.getvalue())

    def test_command_reports_running_release(self):
        self._due_purchases(1)
        cache.add(escrow.RELEASE_LOCK_KEY, "1")
        with self.assertRaises(CommandError):
            call_command("release_escrows", stdout=StringIO())
