from typing import Optional, TypeVar

from django.contrib.auth.models import AbstractBaseUser
from django.utils.translation import gettext_lazy as _
from rest_framework import HTTP_HEADER_ENCODING
from rest_framework.request import Request

from rest_framework_simplejwt.exceptions import AuthenticationFailed
from rest_framework_simplejwt.models import TokenUser
from rest_framework_simplejwt.tokens import Token
from rest_framework_simplejwt.authentication import JWTAuthentication as BaseJWTAuthentication

AuthUser = TypeVar("AuthUser", AbstractBaseUser, TokenUser)

ACCESS_COOKIE_NAME = "access_token"


class JWTAuthentication(BaseJWTAuthentication):
    """
    Reads the JWT from the `access_token` cookie, falling back to the
    Authorization header for API clients. Banned accounts are rejected.
    """

    www_authenticate_realm = "api"
    media_type = "application/json"

    def authenticate(self, request: Request) -> Optional[tuple[AuthUser, Token]]:
        cookie = request.COOKIES.get(ACCESS_COOKIE_NAME) or None
        if cookie is None:
            return super().authenticate(request)

        raw_token = cookie.encode(HTTP_HEADER_ENCODING)
        validated_token = self.get_validated_token(raw_token)

        return self.get_user(validated_token), validated_token

    def get_user(self, validated_token: Token) -> AuthUser:
        user = super().get_user(validated_token)
        profile = getattr(user, "profile", None)
        if profile is not None and profile.is_banned:
            raise AuthenticationFailed(_("Account is banned"), code="user_banned")
        return user
