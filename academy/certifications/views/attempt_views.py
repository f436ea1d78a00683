"""
Taking a certification test: start or resume an attempt, submit answers,
review past attempts and pay to reset exhausted attempts.
"""

from django.shortcuts import get_object_or_404
from rest_framework import permissions, status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.response import Response

from .. import services
from ...payments.exceptions import PaymentError
from ...throttling import AttemptStartRateThrottle
from ..exceptions import CertificationError, error_response
from ..models import CertificationAttempt
from ..serializers import AttemptSummarySerializer


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
@throttle_classes([AttemptStartRateThrottle])
def start_attempt(request, certification_id):
    try:
        payload = services.start_attempt(request.user, certification_id, request=request)
    except CertificationError as exc:
        return error_response(exc)
    return Response(payload, status=status.HTTP_200_OK if payload["resumed"] else status.HTTP_201_CREATED)


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def submit_attempt(request, attempt_id):
    try:
        results = services.submit_attempt(
            request.user,
            attempt_id,
            request.data.get("answers", []),
            request.data.get("session_token"),
            security_log=request.data.get("security_log"),
        )
    except CertificationError as exc:
        return error_response(exc)
    return Response({"message": "Test submitted", "results": results})


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def my_attempts(request):
    attempts = CertificationAttempt.objects.filter(
        user=request.user, status=CertificationAttempt.Status.COMPLETED
    ).select_related("certification")
    certification = request.query_params.get("certification")
    if certification:
        attempts = attempts.filter(certification_id=certification)
    return Response({"attempts": AttemptSummarySerializer(attempts, many=True).data})


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def attempt_detail(request, attempt_id):
    attempt = get_object_or_404(
        CertificationAttempt.objects.select_related("certification"),
        pk=attempt_id,
        user=request.user,
        status=CertificationAttempt.Status.COMPLETED,
    )
    data = AttemptSummarySerializer(attempt).data
    data["review"] = services.attempt_review(attempt)
    return Response(data)


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def reset_attempts(request, certification_id):
    try:
        result = services.reset_attempts(
            request.user,
            certification_id,
            request.data.get("payment_method"),
            payment_id=request.data.get("payment_id"),
            transaction_hash=request.data.get("transaction_hash"),
        )
    except (CertificationError, PaymentError) as exc:
        return error_response(exc)
    return Response(result)
