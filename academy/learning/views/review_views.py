"""
Course reviews: students with an active purchase review once per course,
admins moderate, the instructor may respond publicly.
"""

import logging

from django.db import IntegrityError, transaction
from django.db.models import F
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.views import APIView

from ...courses.models import Course
from ...pagination import paginate
from ...payments.models import Purchase
from ...permissions import IsPlatformAdmin
from ...users.achievements import check_achievements
from ...users.levels import XP_REWARDS, award_xp
from ..models import Review, ReviewVote
from ..serializers import ReviewAdminSerializer, ReviewSerializer

logger = logging.getLogger(__name__)

REVIEW_SORTS = {
    "helpful": ["-helpful_count", "-created_at"],
    "recent": ["-created_at"],
    "rating-high": ["-rating", "-created_at"],
    "rating-low": ["rating", "-created_at"],
}

EDITABLE_FIELDS = ("rating", "title", "comment", "content_quality", "instructor_quality", "value_for_money")


class CourseReviewsView(APIView):
    """
    GET: published reviews of a course.
    POST: review a purchased course; stays pending until moderated.
    """

    def get_permissions(self):
        if self.request.method == "POST":
            return [permissions.IsAuthenticated()]
        return [permissions.AllowAny()]

    def get(self, request, course_id):
        course = get_object_or_404(Course, pk=course_id)
        sort = request.query_params.get("sort", "helpful")
        reviews = (
            Review.objects.filter(course=course, status=Review.Status.PUBLISHED)
            .select_related("user__profile")
            .order_by(*REVIEW_SORTS.get(sort, REVIEW_SORTS["helpful"]))
        )
        page_obj, pagination = paginate(reviews, request, default_limit=10)
        return Response(
            {
                "reviews": ReviewSerializer(page_obj.object_list, many=True).data,
                "pagination": pagination,
                "average_rating": str(course.average_rating),
                "total_ratings": course.total_ratings,
                "rating_distribution": course.rating_distribution,
            }
        )

    def post(self, request, course_id):
        course = get_object_or_404(Course, pk=course_id)
        purchase = Purchase.objects.filter(
            user=request.user, course=course, status=Purchase.Status.ACTIVE
        ).first()
        if purchase is None:
            return Response(
                {"error": "You must purchase this course to review it"},
                status=status.HTTP_403_FORBIDDEN,
            )
        if Review.objects.filter(user=request.user, course=course).exists():
            return Response(
                {"error": "You have already reviewed this course"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        serializer = ReviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            with transaction.atomic():
                review = serializer.save(user=request.user, course=course, purchase=purchase)
        except IntegrityError:
            return Response(
                {"error": "You have already reviewed this course"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        request.user.profile.increment("reviews_written")
        check_achievements(request.user)
        return Response(
            {"message": "Review submitted for moderation", "review": ReviewSerializer(review).data},
            status=status.HTTP_201_CREATED,
        )


class ReviewDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def _get_own_review(self, request, pk):
        review = get_object_or_404(Review.objects.select_related("course", "user__profile"), pk=pk)
        if review.user_id != request.user.pk:
            return review, Response({"error": "Not authorized"}, status=status.HTTP_403_FORBIDDEN)
        return review, None

    def patch(self, request, pk):
        review, denied = self._get_own_review(request, pk)
        if denied:
            return denied
        serializer = ReviewSerializer(review, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        changes = {field: serializer.validated_data[field] for field in EDITABLE_FIELDS if field in serializer.validated_data}
        review.edit(**changes)
        return Response(ReviewSerializer(review).data)

    put = patch

    def delete(self, request, pk):
        review, denied = self._get_own_review(request, pk)
        if denied:
            return denied
        if review.is_published:
            review.course.update_rating(old_rating=review.rating)
        review.delete()
        return Response({"message": "Review deleted"})


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def vote_review(request, pk):
    review = get_object_or_404(Review, pk=pk, status=Review.Status.PUBLISHED)
    vote = request.data.get("vote")
    if vote not in ReviewVote.Vote.values:
        return Response(
            {"error": "Vote must be 'helpful' or 'not-helpful'"},
            status=status.HTTP_400_BAD_REQUEST,
        )

    counter = {ReviewVote.Vote.HELPFUL: "helpful_count", ReviewVote.Vote.NOT_HELPFUL: "not_helpful_count"}
    with transaction.atomic():
        existing = ReviewVote.objects.select_for_update().filter(review=review, user=request.user).first()
        if existing is None:
            ReviewVote.objects.create(review=review, user=request.user, vote=vote)
            Review.objects.filter(pk=review.pk).update(**{counter[vote]: F(counter[vote]) + 1})
        elif existing.vote != vote:
            old_field = counter[existing.vote]
            Review.objects.filter(pk=review.pk).update(
                **{counter[vote]: F(counter[vote]) + 1, old_field: F(old_field) - 1}
            )
            existing.vote = vote
            existing.save(update_fields=["vote"])

    review.refresh_from_db(fields=["helpful_count", "not_helpful_count"])
    return Response(
        {
            "helpful_count": review.helpful_count,
            "not_helpful_count": review.not_helpful_count,
            "vote": vote,
        }
    )


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def respond_to_review(request, pk):
    review = get_object_or_404(Review.objects.select_related("course"), pk=pk)
    if review.course.instructor_id != request.user.pk:
        return Response(
            {"error": "Only the course instructor can respond to reviews"},
            status=status.HTTP_403_FORBIDDEN,
        )
    response_text = (request.data.get("response") or "").strip()
    if not response_text:
        return Response({"error": "Response text is required"}, status=status.HTTP_400_BAD_REQUEST)

    review.instructor_response = response_text[:1000]
    review.instructor_responded_at = timezone.now()
    review.save(update_fields=["instructor_response", "instructor_responded_at", "updated_at"])
    return Response(ReviewSerializer(review).data)


@api_view(["GET"])
@permission_classes([IsPlatformAdmin])
def admin_reviews(request):
    reviews = Review.objects.select_related("user__profile", "course")
    review_status = request.query_params.get("status")
    if review_status:
        reviews = reviews.filter(status=review_status)
    page_obj, pagination = paginate(reviews, request, default_limit=20)
    return Response(
        {
            "reviews": ReviewAdminSerializer(page_obj.object_list, many=True).data,
            "pagination": pagination,
        }
    )


@api_view(["PATCH"])
@permission_classes([IsPlatformAdmin])
def admin_moderate_review(request, pk):
    review = get_object_or_404(Review.objects.select_related("course", "user__profile"), pk=pk)
    new_status = request.data.get("status")
    if new_status not in Review.Status.values:
        return Response({"error": "Invalid status"}, status=status.HTTP_400_BAD_REQUEST)

    first_publish = review.set_status(new_status, request.data.get("flag_reason", ""))
    if first_publish:
        award_xp(review.user.profile, XP_REWARDS["review_published"])
    logger.info("Review %s moderated to %s by %s", review.pk, new_status, request.user.pk)
    return Response(ReviewAdminSerializer(review).data)
