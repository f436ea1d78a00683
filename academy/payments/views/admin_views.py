"""
Admin payment endpoints: token management, fee configuration, escrow
oversight and manual overrides, audit trail.
"""

from django.contrib.auth.models import User
from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.views import APIView

from ...courses.services.video_sessions import client_ip
from ...pagination import paginate
from ...permissions import IsPlatformAdmin
from ...users.models import Profile
from ..exceptions import PaymentError, error_response
from ..models import AdminAuditLog, InstructorFeeSettings, PaymentToken, PlatformSettings, Purchase
from ..serializers import (
    AdminAuditLogSerializer,
    AdminPurchaseSerializer,
    EscrowAdminSerializer,
    InstructorFeeListSerializer,
    InstructorFeeSettingsSerializer,
    PaymentTokenAdminSerializer,
    PlatformSettingsSerializer,
)
from ..services import escrow


class AdminTokenListCreateView(generics.ListCreateAPIView):
    queryset = PaymentToken.objects.all().order_by("display_order", "symbol")
    serializer_class = PaymentTokenAdminSerializer
    permission_classes = [IsPlatformAdmin]


class AdminTokenDetailView(generics.RetrieveUpdateDestroyAPIView):
    queryset = PaymentToken.objects.all()
    serializer_class = PaymentTokenAdminSerializer
    permission_classes = [IsPlatformAdmin]

    def destroy(self, request, *args, **kwargs):
        token = self.get_object()
        if token.purchases.exists():
            return Response(
                {"error": "Token has purchases; disable it instead"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        token.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


class AdminPlatformSettingsView(APIView):
    permission_classes = [IsPlatformAdmin]

    def get(self, request):
        return Response(PlatformSettingsSerializer(PlatformSettings.get_settings()).data)

    def put(self, request):
        instance = PlatformSettings.get_settings()
        serializer = PlatformSettingsSerializer(instance, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save(updated_by=request.user)
        return Response(serializer.data)

    patch = put


def _get_instructor(user_id) -> User:
    user = User.objects.filter(pk=user_id, profile__is_instructor=True).first()
    if user is None:
        raise PaymentError("Instructor not found", status_code=404)
    return user


class AdminInstructorFeeView(APIView):
    """Fee overrides of one instructor."""

    permission_classes = [IsPlatformAdmin]

    def get(self, request, user_id):
        try:
            instructor = _get_instructor(user_id)
        except PaymentError as exc:
            return error_response(exc)
        fee_settings = InstructorFeeSettings.objects.filter(instructor=instructor).first()
        return Response(
            {
                "instructor": {"id": instructor.pk, "username": instructor.username},
                "settings": InstructorFeeSettingsSerializer(fee_settings).data if fee_settings else None,
                "effective_fees": InstructorFeeSettings.get_effective_fees(instructor),
            }
        )

    def put(self, request, user_id):
        try:
            instructor = _get_instructor(user_id)
        except PaymentError as exc:
            return error_response(exc)
        fee_settings, _ = InstructorFeeSettings.objects.get_or_create(instructor=instructor)
        serializer = InstructorFeeSettingsSerializer(fee_settings, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save(updated_by=request.user)
        return Response(serializer.data)

    patch = put


class AdminInstructorFeeListView(generics.ListAPIView):
    serializer_class = InstructorFeeListSerializer
    permission_classes = [IsPlatformAdmin]

    def get_queryset(self):
        return Profile.objects.filter(is_instructor=True).select_related("user").order_by("user__username")


@api_view(["GET"])
@permission_classes([IsPlatformAdmin])
def admin_escrows(request):
    queryset = (
        Purchase.objects.exclude(escrow_id="")
        .select_related("user", "course", "payment_token")
        .order_by("escrow_release_date")
    )
    escrow_status = request.query_params.get("status")
    if escrow_status:
        queryset = queryset.filter(escrow_status=escrow_status)
    blockchain = request.query_params.get("blockchain")
    if blockchain:
        queryset = queryset.filter(blockchain=blockchain)

    page_obj, pagination = paginate(queryset, request, default_limit=50)
    return Response(
        {
            "escrows": EscrowAdminSerializer(page_obj.object_list, many=True).data,
            "pagination": pagination,
        }
    )


@api_view(["POST"])
@permission_classes([IsPlatformAdmin])
def admin_release_escrow(request, escrow_id):
    try:
        purchase = escrow.manual_release(
            request.user,
            escrow_id,
            request.data.get("reason"),
            request.data.get("signature"),
            request.data.get("signer_address"),
            request.data.get("timestamp"),
            ip_address=client_ip(request),
        )
    except PaymentError as exc:
        return error_response(exc)
    return Response(
        {
            "message": "Escrow released",
            "transaction_hash": purchase.escrow_release_tx_hash,
            "escrow": EscrowAdminSerializer(purchase).data,
        }
    )


@api_view(["POST"])
@permission_classes([IsPlatformAdmin])
def admin_refund_escrow(request, escrow_id):
    try:
        purchase = escrow.manual_refund(
            request.user, escrow_id, request.data.get("reason", ""), ip_address=client_ip(request)
        )
    except PaymentError as exc:
        return error_response(exc)
    return Response(
        {
            "message": "Escrow refunded",
            "transaction_hash": purchase.refund_transaction_hash,
            "escrow": EscrowAdminSerializer(purchase).data,
        }
    )


@api_view(["POST"])
@permission_classes([IsPlatformAdmin])
def admin_grant_access(request):
    try:
        purchase = escrow.grant_free_access(
            request.user,
            request.data.get("user_id"),
            request.data.get("course_id"),
            request.data.get("reason", ""),
            ip_address=client_ip(request),
        )
    except PaymentError as exc:
        return error_response(exc)
    return Response(
        {"message": "Access granted", "purchase": AdminPurchaseSerializer(purchase).data},
        status=status.HTTP_201_CREATED,
    )


@api_view(["POST"])
@permission_classes([IsPlatformAdmin])
def admin_remove_access(request):
    try:
        purchase = escrow.remove_access(
            request.user,
            request.data.get("user_id"),
            request.data.get("course_id"),
            request.data.get("reason", ""),
            ip_address=client_ip(request),
        )
    except PaymentError as exc:
        return error_response(exc)
    return Response({"message": "Access removed", "purchase": AdminPurchaseSerializer(purchase).data})


@api_view(["GET"])
@permission_classes([IsPlatformAdmin])
def admin_user_purchases(request, user_id):
    user = get_object_or_404(User, pk=user_id)
    user_purchases = Purchase.objects.filter(user=user).select_related(
        "course__instructor", "granted_by_admin", "revoked_by"
    )
    return Response(
        {
            "user": {"id": user.pk, "username": user.username},
            "purchases": AdminPurchaseSerializer(user_purchases, many=True).data,
        }
    )


@api_view(["GET"])
@permission_classes([IsPlatformAdmin])
def admin_audit_logs(request):
    queryset = AdminAuditLog.objects.select_related("admin")
    action = request.query_params.get("action")
    if action:
        queryset = queryset.filter(action=action)
    admin_id = request.query_params.get("admin")
    if admin_id:
        queryset = queryset.filter(admin_id=admin_id)

    page_obj, pagination = paginate(queryset, request, default_limit=50)
    return Response(
        {
            "logs": AdminAuditLogSerializer(page_obj.object_list, many=True).data,
            "pagination": pagination,
        }
    )
