from unittest import mock

from django.core.cache import cache
from django.db import IntegrityError
from django.test import TestCase
from eth_account import Account
from eth_account.messages import encode_defunct
from rest_framework import status
from rest_framework.throttling import ScopedRateThrottle

from academy.tests.utils import create_user
from academy.users.models import Profile
from academy.users.views.auth_views import get_or_create_wallet_user

NONCE_URL = "/api/academy/auth/nonce/"
VERIFY_URL = "/api/academy/auth/verify/"


class WalletAuthTests(TestCase):
    def setUp(self):
        cache.clear()
        self.account = Account.create()
        self.address = self.account.address

    def _sign(self, message, account=None):
        signed = (account or self.account).sign_message(encode_defunct(text=message))
        return signed.signature.hex()

    def _request_nonce(self):
        response = self.client.post(NONCE_URL, {"wallet_address": self.address}, content_type="application/json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        return response.json()

    def test_nonce_rejects_malformed_address(self):
        response = self.client.post(NONCE_URL, {"wallet_address": "0x123"}, content_type="application/json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json()["error"], "Invalid wallet address format")

    @mock.patch.dict(ScopedRateThrottle.THROTTLE_RATES, {"wallet_auth": "2/min"})
    def test_nonce_requests_are_rate_limited(self):
        self._request_nonce()
        self._request_nonce()

        response = self.client.post(NONCE_URL, {"wallet_address": self.address}, content_type="application/json")

        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)

    def test_nonce_message_contains_wallet_and_nonce(self):
        body = self._request_nonce()
        self.assertIn(self.address.lower(), body["message"])
        self.assertIn(body["nonce"], body["message"])

    def test_verify_creates_user_and_sets_cookies(self):
        message = self._request_nonce()["message"]
        response = self.client.post(
            VERIFY_URL,
            {"wallet_address": self.address, "signature": self._sign(message)},
            content_type="application/json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.json()["is_new_user"])
        self.assertIn("access_token", response.cookies)
        self.assertIn("refresh_token", response.cookies)
        self.assertTrue(Profile.objects.filter(wallet_address=self.address.lower()).exists())

    def test_second_sign_in_reuses_user(self):
        for expected_new in (True, False):
            message = self._request_nonce()["message"]
            response = self.client.post(
                VERIFY_URL,
                {"wallet_address": self.address, "signature": self._sign(message)},
                content_type="application/json",
            )
            self.assertEqual(response.json()["is_new_user"], expected_new)
        self.assertEqual(Profile.objects.filter(wallet_address=self.address.lower()).count(), 1)

    def test_signature_from_other_wallet_is_rejected(self):
        message = self._request_nonce()["message"]
        response = self.client.post(
            VERIFY_URL,
            {"wallet_address": self.address, "signature": self._sign(message, Account.create())},
            content_type="application/json",
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_nonce_cannot_be_reused(self):
        message = self._request_nonce()["message"]
        payload = {"wallet_address": self.address, "signature": self._sign(message)}
        first = self.client.post(VERIFY_URL, payload, content_type="application/json")
        second = self.client.post(VERIFY_URL, payload, content_type="application/json")
        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(second.status_code, status.HTTP_400_BAD_REQUEST)

    def test_nonce_consumed_concurrently_is_rejected(self):
        message = self._request_nonce()["message"]
        with mock.patch("academy.users.views.auth_views.WalletNonceManager.consume", return_value=False):
            response = self.client.post(
                VERIFY_URL,
                {"wallet_address": self.address, "signature": self._sign(message)},
                content_type="application/json",
            )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Profile.objects.filter(wallet_address=self.address.lower()).exists())

    def test_refresh_without_cookie(self):
        response = self.client.post("/api/academy/auth/refresh/")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_logout_clears_cookies(self):
        response = self.client.post("/api/academy/auth/logout/")
        self.assertEqual(response.status_code, status.HTTP_205_RESET_CONTENT)
        self.assertEqual(response.cookies["access_token"].value, "")


class WalletUserCreationTests(TestCase):
    def test_concurrent_registration_returns_existing_user(self):
        wallet = "0x" + "c" * 40

        def register_rival():
            create_user("rival", wallet_address=wallet)
            return "rival"

        with mock.patch("academy.users.views.auth_views._generate_username", side_effect=register_rival):
            user, created = get_or_create_wallet_user(wallet)

        self.assertFalse(created)
        self.assertEqual(user.username, "rival")
        self.assertEqual(Profile.objects.filter(wallet_address=wallet).count(), 1)

    def test_username_collision_without_wallet_owner_propagates(self):
        create_user("taken")
        with mock.patch("academy.users.views.auth_views._generate_username", return_value="taken"):
            with self.assertRaises(IntegrityError):
                get_or_create_wallet_user("0x" + "d" * 40)
