"""
Instructor application workflow: students apply once, admins review.
"""

import logging

from django.shortcuts import get_object_or_404
from rest_framework import generics, permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.views import APIView

from ...permissions import IsPlatformAdmin
from ..models import InstructorApplication
from ..serializers import (
    InstructorApplicationAdminSerializer,
    InstructorApplicationSerializer,
)

logger = logging.getLogger(__name__)


class InstructorApplicationView(APIView):
    """
    GET: the caller's own application (404 when none).
    POST: submit a new application.
    """

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        application = InstructorApplication.objects.filter(user=request.user).first()
        if application is None:
            return Response(
                {"error": "No application found"}, status=status.HTTP_404_NOT_FOUND
            )
        return Response(InstructorApplicationSerializer(application).data)

    def post(self, request):
        existing = InstructorApplication.objects.filter(user=request.user).first()
        if existing is not None:
            return Response(
                {
                    "error": "You have already submitted an application",
                    "status": existing.status,
                },
                status=status.HTTP_400_BAD_REQUEST,
            )

        if not all(request.data.get(field) for field in ("full_name", "email", "bio")):
            return Response(
                {"error": "Missing required fields: full_name, email, and bio are required"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        expertise = request.data.get("expertise")
        if not isinstance(expertise, list) or not expertise:
            return Response(
                {"error": "At least one area of expertise is required"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        serializer = InstructorApplicationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        application = serializer.save(user=request.user)
        logger.info("Instructor application %s submitted by %s", application.pk, request.user.username)
        return Response(
            {
                "message": "Application submitted successfully",
                "application": InstructorApplicationSerializer(application).data,
            },
            status=status.HTTP_201_CREATED,
        )


class AdminApplicationListView(generics.ListAPIView):
    serializer_class = InstructorApplicationAdminSerializer
    permission_classes = [IsPlatformAdmin]

    def get_queryset(self):
        queryset = InstructorApplication.objects.select_related("user__profile", "reviewed_by")
        application_status = self.request.query_params.get("status")
        if application_status:
            queryset = queryset.filter(status=application_status)
        return queryset


@api_view(["POST"])
@permission_classes([IsPlatformAdmin])
def approve_application(request, pk):
    application = get_object_or_404(InstructorApplication, pk=pk)
    if application.status == InstructorApplication.Status.APPROVED:
        return Response(
            {"error": "Application already approved"}, status=status.HTTP_400_BAD_REQUEST
        )

    application.approve(request.user, request.data.get("admin_notes", ""))
    logger.info("Instructor application %s approved by %s", application.pk, request.user.username)
    return Response(InstructorApplicationAdminSerializer(application).data)


@api_view(["POST"])
@permission_classes([IsPlatformAdmin])
def reject_application(request, pk):
    application = get_object_or_404(InstructorApplication, pk=pk)
    reason = (request.data.get("rejection_reason") or "").strip()
    if not reason:
        return Response(
            {"error": "Rejection reason is required"}, status=status.HTTP_400_BAD_REQUEST
        )

    application.reject(request.user, reason, request.data.get("admin_notes", ""))
    logger.info("Instructor application %s rejected by %s", application.pk, request.user.username)
    return Response(InstructorApplicationAdminSerializer(application).data)


@api_view(["POST"])
@permission_classes([IsPlatformAdmin])
def review_application(request, pk):
    application = get_object_or_404(InstructorApplication, pk=pk)
    if application.status != InstructorApplication.Status.PENDING:
        return Response(
            {"error": "Only pending applications can be moved to review"},
            status=status.HTTP_400_BAD_REQUEST,
        )
    application.mark_under_review(request.user)
    return Response(InstructorApplicationAdminSerializer(application).data)
