"""
Student-facing payment endpoints: token list and quotes, purchase
confirmation, refunds and learning progress.
"""

import logging

from django.shortcuts import get_object_or_404
from rest_framework import generics, permissions, status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from ...certifications.serializers import CourseCertificateSerializer
from ...courses.serializers import instructor_summary
from ...throttling import RefundRateThrottle
from ...users.levels import level_progress
from ..exceptions import PaymentError, error_response
from ..models import PaymentToken, Purchase
from ..serializers import PaymentTokenSerializer, PurchaseSerializer
from ..services import pricing, purchases
from ..stripe_checkout import publishable_key

logger = logging.getLogger(__name__)


class PaymentTokenListView(generics.ListAPIView):
    serializer_class = PaymentTokenSerializer
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def get_queryset(self):
        return PaymentToken.objects.filter(is_active=True, is_enabled=True).order_by("display_order", "symbol")


@api_view(["GET"])
@permission_classes([permissions.AllowAny])
def token_price(request, token_id):
    token = get_object_or_404(PaymentToken, pk=token_id, is_active=True)
    return Response(
        {
            "token_id": token.pk,
            "symbol": token.symbol,
            "price_usd": str(pricing.token_price_usd(token)),
            "oracle": token.price_oracle_type,
        }
    )


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def calculate_payment(request):
    try:
        quote = purchases.calculate_payment(
            request.user, request.data.get("course_id"), request.data.get("token_id")
        )
    except PaymentError as exc:
        return error_response(exc)
    return Response(quote)


class PurchaseView(APIView):
    """
    POST: confirm a course payment by transaction hash.
    """

    permission_classes = [permissions.IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "purchases"

    def post(self, request):
        try:
            purchase = purchases.process_purchase(request.user, request.data)
        except PaymentError as exc:
            return error_response(exc)
        return Response(
            {
                "message": "Purchase successful",
                "purchase": PurchaseSerializer(purchase).data,
            },
            status=status.HTTP_201_CREATED,
        )


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
@throttle_classes([RefundRateThrottle])
def request_refund(request):
    try:
        purchase = purchases.request_refund(
            request.user, request.data.get("purchase_id"), request.data.get("reason")
        )
    except PaymentError as exc:
        return error_response(exc)
    return Response(
        {
            "message": "Refund processed successfully",
            "refund_transaction_hash": purchase.refund_transaction_hash,
            "purchase": PurchaseSerializer(purchase).data,
        }
    )


class MyPurchasesView(generics.ListAPIView):
    serializer_class = PurchaseSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        queryset = Purchase.objects.filter(user=self.request.user).select_related(
            "course__instructor", "payment_token"
        )
        status_filter = self.request.query_params.get("status")
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def purchase_for_course(request, course_id):
    purchase = (
        Purchase.objects.filter(user=request.user, course_id=course_id)
        .exclude(status=Purchase.Status.REVOKED)
        .select_related("course__instructor", "payment_token")
        .first()
    )
    if purchase is None:
        return Response({"has_purchased": False, "purchase": None})
    return Response(
        {
            "has_purchased": purchase.status == Purchase.Status.ACTIVE,
            "purchase": PurchaseSerializer(purchase).data,
        }
    )


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def complete_lesson(request, purchase_id):
    lesson_id = request.data.get("lesson_id")
    if not lesson_id:
        return Response({"error": "lesson_id is required"}, status=status.HTTP_400_BAD_REQUEST)
    try:
        watch_time = int(request.data.get("watch_time") or 0)
    except (TypeError, ValueError):
        return Response({"error": "watch_time must be a number"}, status=status.HTTP_400_BAD_REQUEST)

    try:
        result = purchases.complete_lesson(request.user, purchase_id, lesson_id, watch_time)
    except PaymentError as exc:
        return error_response(exc)

    purchase = result["purchase"]
    return Response(
        {
            "progress": purchase.progress,
            "completed_lessons": purchase.completed_lessons,
            "total_watch_time": purchase.total_watch_time,
            "is_completed": purchase.is_completed,
            "course_completed": result["course_completed"],
            "xp": result["xp"],
            "level_progress": level_progress(request.user.profile.total_xp),
            "achievements": result["achievements"],
            "certificate": (
                CourseCertificateSerializer(result["certificate"]).data if result["certificate"] else None
            ),
        }
    )


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def my_learning(request):
    """Active purchases with course summary for the student dashboard."""
    active = (
        Purchase.objects.filter(user=request.user, status=Purchase.Status.ACTIVE)
        .select_related("course__instructor__profile")
        .order_by("-last_accessed_at", "-created_at")
    )
    return Response(
        [
            {
                "purchase_id": purchase.pk,
                "course": {
                    "id": purchase.course.pk,
                    "title": purchase.course.title,
                    "slug": purchase.course.slug,
                    "thumbnail": purchase.course.thumbnail,
                    "total_lessons": purchase.course.total_lessons,
                    "instructor": instructor_summary(purchase.course.instructor),
                },
                "progress": purchase.progress,
                "is_completed": purchase.is_completed,
                "last_accessed_lesson": purchase.last_accessed_lesson_id,
                "last_accessed_at": purchase.last_accessed_at,
            }
            for purchase in active
        ]
    )


class StripeConfigView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def get(self, request):
        return Response({"publishable_key": publishable_key()})
