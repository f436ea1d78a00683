"""
Profile, payout wallet, level and achievement endpoints for the signed-in
user, plus the public instructor/student profile.
"""

from django.contrib.auth.models import User
from django.shortcuts import get_object_or_404
from rest_framework import generics, permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.views import APIView

from ..achievements import check_achievements, user_achievements
from ..levels import level_milestones, level_progress
from ..models import PaymentWallet
from ..serializers import (
    PaymentWalletSerializer,
    ProfileUpdateSerializer,
    PublicProfileSerializer,
    UserSerializer,
)


class CurrentUserView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response(UserSerializer(request.user).data)

    def patch(self, request):
        serializer = ProfileUpdateSerializer(data=request.data, context={"request": request})
        serializer.is_valid(raise_exception=True)
        user = serializer.save(request.user)
        check_achievements(user)
        return Response(UserSerializer(user).data)


class PaymentWalletListCreateView(generics.ListCreateAPIView):
    serializer_class = PaymentWalletSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return PaymentWallet.objects.filter(user=self.request.user)

    def perform_create(self, serializer):
        # The first wallet on a chain family becomes the primary one
        is_first = not PaymentWallet.objects.filter(user=self.request.user).exists()
        serializer.save(user=self.request.user, is_primary=is_first)


class PaymentWalletDeleteView(generics.DestroyAPIView):
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return PaymentWallet.objects.filter(user=self.request.user)

    def perform_destroy(self, instance):
        was_primary = instance.is_primary
        instance.delete()
        if was_primary:
            successor = self.get_queryset().order_by("created_at", "pk").first()
            if successor:
                successor.is_primary = True
                successor.save(update_fields=["is_primary"])


class PublicProfileView(generics.RetrieveAPIView):
    serializer_class = PublicProfileSerializer
    permission_classes = [permissions.AllowAny]
    lookup_field = "username"

    def get_queryset(self):
        return User.objects.select_related("profile").filter(is_active=True, profile__is_banned=False)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def get_level_progress(request):
    profile = request.user.profile
    return Response({"level": profile.level, **level_progress(profile.total_xp)})


@api_view(["GET"])
@permission_classes([permissions.AllowAny])
def get_level_milestones(request):
    return Response({"milestones": level_milestones()}, status=status.HTTP_200_OK)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def get_achievements(request):
    achievements = user_achievements(request.user)
    return Response(
        {
            "achievements": achievements,
            "unlocked_count": sum(1 for achievement in achievements if achievement["unlocked"]),
            "total": len(achievements),
        }
    )
