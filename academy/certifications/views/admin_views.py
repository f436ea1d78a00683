"""
Certification administration: certification and question pool CRUD, status
changes, attempt and certificate oversight, revocation and dashboard stats.
"""

import logging

from django.db.models import Avg, Count, Q, Sum
from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ...pagination import paginate
from ...permissions import IsPlatformAdmin
from ..models import AttemptReset, CertificationAttempt, ProfessionalCertificate, ProfessionalCertification
from ..serializers import AdminAttemptSerializer, AdminCertificateSerializer, CertificationAdminSerializer

logger = logging.getLogger(__name__)


class AdminCertificationListCreateView(generics.ListCreateAPIView):
    serializer_class = CertificationAdminSerializer
    permission_classes = [IsPlatformAdmin]

    def get_queryset(self):
        queryset = ProfessionalCertification.objects.prefetch_related("questions").order_by("-created_at")
        if self.request.query_params.get("status"):
            queryset = queryset.filter(status=self.request.query_params["status"])
        return queryset

    def perform_create(self, serializer):
        certification = serializer.save(created_by=self.request.user)
        logger.info("Certification %s created by %s", certification.slug, self.request.user.username)


class AdminCertificationDetailView(generics.RetrieveUpdateDestroyAPIView):
    queryset = ProfessionalCertification.objects.prefetch_related("questions")
    serializer_class = CertificationAdminSerializer
    permission_classes = [IsPlatformAdmin]

    def destroy(self, request, *args, **kwargs):
        certification = self.get_object()
        if certification.certificates.exists():
            return Response(
                {"error": "Certification has issued certificates; archive it instead"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        certification.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(["PATCH"])
@permission_classes([IsPlatformAdmin])
def admin_certification_status(request, pk):
    certification = get_object_or_404(ProfessionalCertification, pk=pk)
    new_status = request.data.get("status")
    if new_status not in ProfessionalCertification.Status.values:
        return Response({"error": "Invalid status"}, status=status.HTTP_400_BAD_REQUEST)

    certification.status = new_status
    certification.save()
    logger.info("Certification %s set to %s by %s", certification.pk, new_status, request.user.username)
    return Response(
        {
            "message": f"Certification {new_status}",
            "certification": CertificationAdminSerializer(certification).data,
        }
    )


@api_view(["GET"])
@permission_classes([IsPlatformAdmin])
def admin_certification_attempts(request, pk):
    certification = get_object_or_404(ProfessionalCertification, pk=pk)
    attempts = certification.attempts.select_related("user", "certification")
    if request.query_params.get("status"):
        attempts = attempts.filter(status=request.query_params["status"])
    page_obj, pagination = paginate(attempts, request)
    return Response(
        {
            "attempts": AdminAttemptSerializer(page_obj.object_list, many=True).data,
            "pagination": pagination,
        }
    )


@api_view(["GET"])
@permission_classes([IsPlatformAdmin])
def admin_certificates(request):
    certificates = ProfessionalCertificate.objects.select_related("user", "certification")
    params = request.query_params
    if params.get("status"):
        certificates = certificates.filter(status=params["status"])
    if params.get("certification"):
        certificates = certificates.filter(certification_id=params["certification"])
    if params.get("search"):
        search = params["search"]
        certificates = certificates.filter(
            Q(certificate_number__icontains=search)
            | Q(student_name__icontains=search)
            | Q(user__username__icontains=search)
        )
    page_obj, pagination = paginate(certificates, request)
    return Response(
        {
            "certificates": AdminCertificateSerializer(page_obj.object_list, many=True).data,
            "pagination": pagination,
        }
    )


@api_view(["POST"])
@permission_classes([IsPlatformAdmin])
def admin_revoke_certificate(request, pk):
    certificate = get_object_or_404(ProfessionalCertificate, pk=pk)
    reason = (request.data.get("reason") or "").strip()
    if not reason:
        return Response({"error": "Revocation reason required"}, status=status.HTTP_400_BAD_REQUEST)
    if certificate.status == ProfessionalCertificate.Status.REVOKED:
        return Response({"error": "Certificate already revoked"}, status=status.HTTP_400_BAD_REQUEST)

    certificate.revoke(reason)
    logger.warning("Certificate %s revoked by %s: %s", certificate.certificate_number, request.user.username, reason)
    return Response(
        {"message": "Certificate revoked", "certificate": AdminCertificateSerializer(certificate).data}
    )


@api_view(["GET"])
@permission_classes([IsPlatformAdmin])
def admin_certification_stats(request):
    certifications = ProfessionalCertification.objects.aggregate(
        total=Count("id"),
        published=Count("id", filter=Q(status=ProfessionalCertification.Status.PUBLISHED)),
        draft=Count("id", filter=Q(status=ProfessionalCertification.Status.DRAFT)),
    )
    attempts = CertificationAttempt.objects.filter(status=CertificationAttempt.Status.COMPLETED).aggregate(
        total=Count("id"),
        passed=Count("id", filter=Q(passed=True)),
        average_score=Avg("score"),
    )
    certificates = ProfessionalCertificate.objects.filter(paid=True).aggregate(
        total=Count("id"),
        active=Count("id", filter=Q(status=ProfessionalCertificate.Status.ACTIVE)),
        revoked=Count("id", filter=Q(status=ProfessionalCertificate.Status.REVOKED)),
        revenue=Sum("payment_amount"),
    )
    reset_revenue = AttemptReset.objects.aggregate(total=Sum("payment_amount"))["total"] or 0

    pass_rate = round(attempts["passed"] * 100 / attempts["total"], 2) if attempts["total"] else 0
    certificate_revenue = certificates.pop("revenue") or 0
    return Response(
        {
            "certifications": certifications,
            "attempts": {
                "total": attempts["total"],
                "passed": attempts["passed"],
                "pass_rate": pass_rate,
                "average_score": round(attempts["average_score"] or 0, 2),
            },
            "certificates": certificates,
            "revenue": {
                "certificates": str(certificate_revenue),
                "attempt_resets": str(reset_revenue),
                "total": str(certificate_revenue + reset_revenue),
            },
        }
    )
