"""
Public certification catalog. Signed-in users additionally see how many
attempts they have used and whether they may start another one.
"""

from django.db.models import Count, Q
from django.shortcuts import get_object_or_404
from rest_framework import permissions
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ...pagination import paginate
from ..models import CertificationAttempt, ProfessionalCertification
from ..serializers import AttemptSummarySerializer, CertificationCatalogSerializer

COUNTED_STATUSES = [CertificationAttempt.Status.COMPLETED, CertificationAttempt.Status.CANCELLED]


def _published():
    return ProfessionalCertification.objects.filter(status=ProfessionalCertification.Status.PUBLISHED)


@api_view(["GET"])
@permission_classes([permissions.AllowAny])
def certification_catalog(request):
    params = request.query_params
    queryset = _published()
    if params.get("category"):
        queryset = queryset.filter(category=params["category"])
    if params.get("level"):
        queryset = queryset.filter(level=params["level"])
    search = params.get("search")
    if search:
        queryset = queryset.filter(Q(title__icontains=search) | Q(description__icontains=search))

    page_obj, pagination = paginate(queryset, request, default_limit=12)
    certifications = CertificationCatalogSerializer(page_obj.object_list, many=True).data

    if request.user.is_authenticated:
        used = dict(
            CertificationAttempt.objects.filter(
                user=request.user,
                certification__in=[item["id"] for item in certifications],
                status__in=COUNTED_STATUSES,
            )
            .order_by()
            .values_list("certification")
            .annotate(total=Count("id"))
        )
        for item in certifications:
            item["user_attempts"] = used.get(item["id"], 0)
            item["can_take_test"] = item["user_attempts"] < item["max_attempts"]

    return Response({"certifications": certifications, "pagination": pagination})


@api_view(["GET"])
@permission_classes([permissions.AllowAny])
def certification_detail(request, slug):
    certification = get_object_or_404(_published(), slug=slug)
    data = CertificationCatalogSerializer(certification).data
    data["total_questions"] = certification.total_questions

    if request.user.is_authenticated:
        attempts = certification.attempts.filter(user=request.user, status__in=COUNTED_STATUSES)
        used = attempts.count()
        data["attempts"] = AttemptSummarySerializer(attempts, many=True).data
        data["attempts_used"] = used
        data["can_take_test"] = used < certification.max_attempts
        data["has_pending_certificate"] = attempts.filter(passed=True, certificate_issued=False).exists()

    return Response(data)
