"""
Paid certificates: what the caller may buy, buying it, listing owned
certificates and the public verification lookup. Course completion
certificates are listed here too and share the verification lookup.
"""

from django.shortcuts import get_object_or_404
from rest_framework import permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from .. import services
from ...payments.exceptions import PaymentError
from ..exceptions import CertificationError, error_response
from ..models import CourseCertificate, ProfessionalCertificate
from ..serializers import (
    AttemptSummarySerializer,
    CertificateSerializer,
    CourseCertificateSerializer,
    PublicCertificateSerializer,
    PublicCourseCertificateSerializer,
)


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def eligible_certificates(request):
    eligible = []
    for attempt in services.eligible_attempts(request.user):
        entry = AttemptSummarySerializer(attempt).data
        certification = attempt.certification
        entry["certificate_price"] = str(certification.current_certificate_price)
        entry["original_price"] = str(certification.certificate_price_usd)
        entry["has_discount"] = certification.has_active_discount
        eligible.append(entry)
    return Response({"eligible": eligible})


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def purchase_certificate(request):
    try:
        result = services.purchase_certificate(
            request.user,
            request.data.get("attempt_id"),
            request.data.get("payment_method"),
            transaction_hash=request.data.get("transaction_hash"),
        )
    except (CertificationError, PaymentError) as exc:
        return error_response(exc)

    if result.get("requires_redirect"):
        return Response(result)
    return Response(
        {"message": result["message"], "certificate": CertificateSerializer(result["certificate"]).data},
        status=status.HTTP_201_CREATED,
    )


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def my_certificates(request):
    certificates = ProfessionalCertificate.objects.filter(
        user=request.user, paid=True, status=ProfessionalCertificate.Status.ACTIVE
    ).select_related("certification")
    return Response({"certificates": CertificateSerializer(certificates, many=True).data})


@api_view(["GET"])
@permission_classes([permissions.AllowAny])
def verify_certificate(request, certificate_number):
    certificate = ProfessionalCertificate.objects.filter(certificate_number=certificate_number, paid=True).first()
    if certificate is not None:
        return Response(
            {
                "verified": certificate.is_valid,
                "certificate_type": "professional",
                "certificate": PublicCertificateSerializer(certificate).data,
            }
        )

    course_certificate = get_object_or_404(CourseCertificate, certificate_number=certificate_number)
    return Response(
        {
            "verified": True,
            "certificate_type": "course",
            "certificate": PublicCourseCertificateSerializer(course_certificate).data,
        }
    )


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def my_course_certificates(request):
    certificates = CourseCertificate.objects.filter(user=request.user).select_related("course")
    return Response({"certificates": CourseCertificateSerializer(certificates, many=True).data})


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def course_certificate_detail(request, pk):
    certificate = get_object_or_404(CourseCertificate.objects.select_related("course"), pk=pk)
    if certificate.user_id != request.user.pk:
        return Response(
            {"error": "Not authorized to view this certificate"}, status=status.HTTP_403_FORBIDDEN
        )
    return Response({"certificate": CourseCertificateSerializer(certificate).data})
