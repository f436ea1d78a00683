"""
Academy Wallet Authentication Views

Sign-in with an EVM wallet: the client asks for a nonce, signs the returned
message with its wallet and posts the signature back. On success JWT tokens
are stored in secure HTTP-only cookies, never in the response body.

Views:
- WalletNonceView: issue a one-time sign-in challenge
- WalletVerifyView: verify the signature, find or create the user, set cookies
- CustomTokenRefreshView: rotate tokens from the refresh cookie
- LogoutView: blacklist the refresh token and clear cookies

Author: Academy Development Team
Version: 1.0.0
"""

import logging
import secrets

from django.conf import settings
from django.contrib.auth.models import User
from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer
from rest_framework_simplejwt.tokens import RefreshToken

from ..models import Profile
from ..serializers import UserSerializer
from ..wallet import WalletNonceManager, is_valid_wallet_address, signature_matches

logger = logging.getLogger(__name__)


def set_auth_cookies(response: Response, access: str = None, refresh: str = None) -> Response:
    """
    Store tokens in HTTP-only cookies:
     * httponly=True → no JavaScript access (mitigates XSS)
     * secure / samesite come from settings so local HTTP development works
    """
    jwt_settings = settings.SIMPLE_JWT
    if refresh:
        response.set_cookie(
            "refresh_token",
            refresh,
            httponly=True,
            secure=settings.AUTH_COOKIE_SECURE,
            samesite=settings.AUTH_COOKIE_SAMESITE,
            path="/",
            max_age=jwt_settings["REFRESH_TOKEN_LIFETIME"],
        )
    if access:
        response.set_cookie(
            "access_token",
            access,
            httponly=True,
            secure=settings.AUTH_COOKIE_SECURE,
            samesite=settings.AUTH_COOKIE_SAMESITE,
            path="/",
            max_age=jwt_settings["ACCESS_TOKEN_LIFETIME"],
        )
    return response


def _generate_username() -> str:
    while True:
        candidate = f"user_{secrets.token_hex(4)}"
        if not User.objects.filter(username=candidate).exists():
            return candidate


def get_or_create_wallet_user(wallet_address: str):
    """Returns (user, created) for a lower-cased wallet address."""
    wallet_address = wallet_address.lower()
    profile = Profile.objects.select_related("user").filter(wallet_address=wallet_address).first()
    if profile:
        return profile.user, False

    try:
        with transaction.atomic():
            user = User(username=_generate_username())
            user.set_unusable_password()
            user.save()
            profile = user.profile
            profile.wallet_address = wallet_address
            profile.save()
    except IntegrityError:
        # a concurrent sign-in registered this wallet first
        profile = Profile.objects.select_related("user").filter(wallet_address=wallet_address).first()
        if profile is None:
            raise
        return profile.user, False

    logger.info("Created user %s for wallet %s...", user.username, wallet_address[:10])
    return user, True


class WalletNonceView(APIView):
    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "wallet_auth"

    def post(self, request):
        wallet_address = request.data.get("wallet_address")
        if not is_valid_wallet_address(wallet_address):
            return Response(
                {"error": "Invalid wallet address format"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        nonce, message = WalletNonceManager.create(wallet_address)
        return Response(
            {
                "nonce": nonce,
                "message": message,
                "expires_in": settings.WALLET_NONCE_TTL_SECONDS,
            }
        )


class WalletVerifyView(APIView):
    """
    Verify a signed nonce and sign the wallet in.

    Request Body:
        {"wallet_address": "0x...", "signature": "0x..."}
    """

    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "wallet_auth"

    def post(self, request):
        wallet_address = request.data.get("wallet_address")
        signature = request.data.get("signature")

        if not wallet_address or not signature:
            return Response(
                {"error": "wallet_address and signature are required"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        if not is_valid_wallet_address(wallet_address):
            return Response(
                {"error": "Invalid wallet address format"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        message = WalletNonceManager.get_message(wallet_address)
        if message is None:
            return Response(
                {"error": "Nonce not found or expired. Please request a new nonce."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        if not signature_matches(message, signature, wallet_address):
            logger.warning("Invalid wallet signature for %s...", wallet_address[:10])
            return Response(
                {"error": "Invalid signature"}, status=status.HTTP_401_UNAUTHORIZED
            )

        if not WalletNonceManager.consume(wallet_address):
            return Response(
                {"error": "Nonce not found or expired. Please request a new nonce."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        user, created = get_or_create_wallet_user(wallet_address)

        if user.profile.is_banned or not user.is_active:
            return Response(
                {"error": "Account is banned"}, status=status.HTTP_403_FORBIDDEN
            )

        now = timezone.now()
        user.last_login = now
        user.save(update_fields=["last_login"])
        Profile.objects.filter(pk=user.profile.pk).update(last_login_at=now)
        user.profile.refresh_from_db()

        refresh = RefreshToken.for_user(user)
        response = Response(
            {"is_new_user": created, "user": UserSerializer(user).data},
            status=status.HTTP_200_OK,
        )
        return set_auth_cookies(response, access=str(refresh.access_token), refresh=str(refresh))


class CustomTokenRefreshView(APIView):
    """
    Refresh JWT tokens from the `refresh_token` cookie and store the new pair
    in cookies again.
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        refresh_token = request.COOKIES.get("refresh_token")
        if not refresh_token:
            return Response(
                {"detail": "Refresh token not provided"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        serializer = TokenRefreshSerializer(data={"refresh": refresh_token})
        try:
            serializer.is_valid(raise_exception=True)
        except TokenError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        response = Response(status=status.HTTP_200_OK)
        return set_auth_cookies(response, access=data.get("access"), refresh=data.get("refresh"))


class LogoutView(APIView):
    """
    Blacklist the refresh token (if present) and delete both auth cookies.
    Always answers 205 Reset Content, even with an expired access cookie.
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        refresh_token = request.COOKIES.get("refresh_token")
        if refresh_token:
            try:
                RefreshToken(refresh_token).blacklist()
            except TokenError as exc:
                logger.info("Logout with unusable refresh token: %s", exc)

        response = Response({"detail": "Successfully logged out."}, status=status.HTTP_205_RESET_CONTENT)
        response.delete_cookie("refresh_token")
        response.delete_cookie("access_token")
        return response
