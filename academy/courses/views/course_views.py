import logging

from django.db.models import Count, Q
from django.shortcuts import get_object_or_404
from rest_framework import generics, permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.views import APIView

from ...pagination import paginate
from ...permissions import IsPlatformAdmin, is_verified_instructor
from ..models import Course, Lesson, Section
from ..serializers import (
    CourseDetailSerializer,
    CourseListSerializer,
    CourseWriteSerializer,
    LessonSerializer,
    SectionSerializer,
)
from ..services.storage_service import VideoStorageService

logger = logging.getLogger(__name__)

SORT_ORDERS = {
    "newest": ["-published_at", "-created_at"],
    "popular": ["-enrollment_count", "-published_at"],
    "rating": ["-average_rating", "-total_ratings"],
    "price-low": ["price_usd", "-published_at"],
    "price-high": ["-price_usd", "-published_at"],
}


def _filter_published_courses(params):
    queryset = Course.objects.filter(status=Course.Status.PUBLISHED).select_related(
        "instructor__profile"
    )

    search = params.get("search")
    if search:
        queryset = queryset.filter(
            Q(title__icontains=search)
            | Q(subtitle__icontains=search)
            | Q(description__icontains=search)
        )
    if params.get("category"):
        queryset = queryset.filter(category=params["category"])
    if params.get("level"):
        queryset = queryset.filter(level=params["level"])

    for param, lookup in (("min_price", "price_usd__gte"), ("max_price", "price_usd__lte"), ("rating", "average_rating__gte")):
        value = params.get(param)
        if value in (None, ""):
            continue
        try:
            queryset = queryset.filter(**{lookup: float(value)})
        except ValueError:
            continue

    sort = params.get("sort", "newest")
    return queryset.order_by(*SORT_ORDERS.get(sort, SORT_ORDERS["newest"]))


class CourseListCreateView(APIView):
    """
    GET: browse published courses with filters, sorting and pagination.
    POST: verified instructors create a draft course.
    """

    def get_permissions(self):
        if self.request.method == "POST":
            return [permissions.IsAuthenticated()]
        return [permissions.AllowAny()]

    def get(self, request):
        queryset = _filter_published_courses(request.query_params)
        page, meta = paginate(queryset, request, default_limit=12)
        return Response(
            {
                "courses": CourseListSerializer(page.object_list, many=True).data,
                "pagination": meta,
            }
        )

    def post(self, request):
        if not is_verified_instructor(request.user):
            return Response(
                {"error": "Only verified instructors can create courses"},
                status=status.HTTP_403_FORBIDDEN,
            )

        serializer = CourseWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        course = serializer.save(instructor=request.user, status=Course.Status.DRAFT)
        request.user.profile.increment("total_courses_created")
        logger.info("Course %s created by %s", course.slug, request.user.username)
        return Response(
            CourseDetailSerializer(course, context={"request": request}).data,
            status=status.HTTP_201_CREATED,
        )


@api_view(["GET"])
@permission_classes([permissions.AllowAny])
def course_categories(request):
    """Every course category with the number of published courses in it."""
    counts = dict(
        Course.objects.filter(status=Course.Status.PUBLISHED)
        .order_by()
        .values_list("category")
        .annotate(total=Count("id"))
    )
    return Response(
        {
            "categories": [
                {"value": value, "label": label, "course_count": counts.get(value, 0)}
                for value, label in Course.Category.choices
            ]
        }
    )


class CourseDetailView(APIView):
    """Course by slug: public read, instructor-only update and delete."""

    def get_permissions(self):
        if self.request.method == "GET":
            return [permissions.AllowAny()]
        return [permissions.IsAuthenticated()]

    def get(self, request, slug):
        course = get_object_or_404(Course.objects.select_related("instructor__profile"), slug=slug)
        if course.status != Course.Status.PUBLISHED and not course.is_instructor(request.user):
            return Response(
                {"error": "Course not available"}, status=status.HTTP_403_FORBIDDEN
            )
        return Response(CourseDetailSerializer(course, context={"request": request}).data)

    def patch(self, request, slug):
        course = get_object_or_404(Course, slug=slug)
        if not course.is_instructor(request.user):
            return Response({"error": "Not authorized"}, status=status.HTTP_403_FORBIDDEN)

        serializer = CourseWriteSerializer(course, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        course = serializer.save()
        return Response(CourseDetailSerializer(course, context={"request": request}).data)

    def delete(self, request, slug):
        course = get_object_or_404(Course, slug=slug)
        if not course.is_instructor(request.user):
            return Response({"error": "Not authorized"}, status=status.HTTP_403_FORBIDDEN)
        if course.purchases.exists():
            return Response(
                {"error": "Course has purchases; archive it instead"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        video_keys = list(
            Lesson.objects.filter(section__course=course)
            .exclude(video_key="")
            .values_list("video_key", flat=True)
        )
        course.delete()

        storage = VideoStorageService()
        for key in video_keys:
            storage.delete_object(key)

        logger.info("Course %s deleted by %s", slug, request.user.username)
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def publish_course(request, slug):
    course = get_object_or_404(Course, slug=slug)
    if not course.is_instructor(request.user):
        return Response({"error": "Not authorized"}, status=status.HTTP_403_FORBIDDEN)

    blocker = course.publish_blocker()
    if blocker:
        return Response({"error": blocker}, status=status.HTTP_400_BAD_REQUEST)

    course.publish()
    logger.info("Course %s published", course.slug)
    return Response(CourseDetailSerializer(course, context={"request": request}).data)


@api_view(["PATCH"])
@permission_classes([IsPlatformAdmin])
def admin_update_course_status(request, slug):
    course = get_object_or_404(Course, slug=slug)
    new_status = request.data.get("status")
    if new_status not in Course.Status.values:
        return Response({"error": "Invalid status"}, status=status.HTTP_400_BAD_REQUEST)

    course.status = new_status
    if new_status == Course.Status.PUBLISHED and course.published_at is None:
        course.publish()
    else:
        course.save(update_fields=["status", "updated_at"])
    return Response(CourseListSerializer(course).data)


# --- Curriculum editing (owning instructor only) ---


class _InstructorOwnedMixin:
    permission_classes = [permissions.IsAuthenticated]

    def check_course_owner(self, course):
        if not course.is_instructor(self.request.user):
            self.permission_denied(self.request, message="Not authorized")


class SectionCreateView(_InstructorOwnedMixin, generics.CreateAPIView):
    serializer_class = SectionSerializer

    def perform_create(self, serializer):
        course = get_object_or_404(Course, slug=self.kwargs["slug"])
        self.check_course_owner(course)
        next_order = Section.objects.filter(course=course).count() + 1
        serializer.save(course=course, order=next_order)


class SectionDetailView(_InstructorOwnedMixin, generics.RetrieveUpdateDestroyAPIView):
    serializer_class = SectionSerializer
    queryset = Section.objects.select_related("course")

    def get_object(self):
        section = super().get_object()
        self.check_course_owner(section.course)
        return section


class LessonCreateView(_InstructorOwnedMixin, generics.CreateAPIView):
    serializer_class = LessonSerializer

    def perform_create(self, serializer):
        section = get_object_or_404(Section.objects.select_related("course"), pk=self.kwargs["pk"])
        self.check_course_owner(section.course)
        next_order = Lesson.objects.filter(section=section).count() + 1
        serializer.save(section=section, order=next_order)


class LessonDetailView(_InstructorOwnedMixin, generics.RetrieveUpdateDestroyAPIView):
    serializer_class = LessonSerializer
    queryset = Lesson.objects.select_related("section__course")

    def get_object(self):
        lesson = super().get_object()
        self.check_course_owner(lesson.section.course)
        return lesson
