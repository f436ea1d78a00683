from decimal import Decimal

from django.contrib.auth.models import User
from django.db.models import Count, Q, Sum
from django.shortcuts import get_object_or_404
from rest_framework import generics, permissions
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from ..models import Course
from ..serializers import CourseListSerializer


class InstructorCourseListView(generics.ListAPIView):
    """All courses of the signed-in instructor, drafts included."""

    serializer_class = CourseListSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return Course.objects.filter(instructor=self.request.user).select_related("instructor__profile")


@api_view(["GET"])
@permission_classes([permissions.IsAuthenticated])
def instructor_courses_with_stats(request):
    courses = (
        Course.objects.filter(instructor=request.user)
        .select_related("instructor__profile")
        .annotate(
            students=Count("purchases", filter=Q(purchases__status="active"), distinct=True),
            completed=Count(
                "purchases",
                filter=Q(purchases__status="active", purchases__is_completed=True),
                distinct=True,
            ),
            review_count=Count("reviews", distinct=True),
        )
    )

    results = []
    total_students = 0
    total_revenue = Decimal("0")
    for course in courses:
        revenue = course.price_usd * course.students
        completion_rate = round(course.completed / course.students * 100) if course.students else 0
        total_students += course.students
        total_revenue += revenue
        results.append(
            {
                **CourseListSerializer(course).data,
                "students": course.students,
                "revenue": str(revenue),
                "completion_rate": completion_rate,
                "reviews": course.review_count,
            }
        )

    return Response(
        {
            "courses": results,
            "totals": {
                "courses": len(results),
                "students": total_students,
                "revenue": str(total_revenue),
            },
        }
    )


class CoursesByInstructorView(generics.ListAPIView):
    serializer_class = CourseListSerializer
    permission_classes = [permissions.AllowAny]

    def get_queryset(self):
        instructor = get_object_or_404(User, username=self.kwargs["username"])
        return Course.objects.filter(
            instructor=instructor, status=Course.Status.PUBLISHED
        ).select_related("instructor__profile")
