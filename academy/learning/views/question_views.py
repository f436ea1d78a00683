from django.shortcuts import get_object_or_404
from rest_framework import permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.views import APIView

from ...courses.models import Course, Lesson
from ..models import Question, QuestionReply
from ..serializers import QuestionSerializer


class CourseQuestionsView(APIView):
    """Q&A thread of a course, newest first, optionally for one lesson."""

    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, course_id):
        course = get_object_or_404(Course, pk=course_id)
        questions = (
            Question.objects.filter(course=course)
            .select_related("student__profile", "lesson", "course")
            .prefetch_related("replies__user__profile")
        )
        lesson_id = request.query_params.get("lesson")
        if lesson_id:
            questions = questions.filter(lesson_id=lesson_id)
        return Response(QuestionSerializer(questions, many=True).data)


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def create_question(request):
    course_id = request.data.get("course")
    lesson_id = request.data.get("lesson")
    text = (request.data.get("question") or "").strip()
    if not course_id or not lesson_id or not text:
        return Response({"error": "Missing required fields"}, status=status.HTTP_400_BAD_REQUEST)

    course = get_object_or_404(Course, pk=course_id)
    lesson = get_object_or_404(Lesson, pk=lesson_id, section__course=course)
    question = Question.objects.create(course=course, lesson=lesson, student=request.user, question=text)
    return Response(QuestionSerializer(question).data, status=status.HTTP_201_CREATED)


@api_view(["POST"])
@permission_classes([permissions.IsAuthenticated])
def reply_to_question(request, pk):
    question = get_object_or_404(Question.objects.select_related("course"), pk=pk)
    text = (request.data.get("text") or "").strip()
    if not text:
        return Response({"error": "Reply text is required"}, status=status.HTTP_400_BAD_REQUEST)
    if question.course.instructor_id != request.user.pk:
        return Response(
            {"error": "Only the course instructor can reply to questions"},
            status=status.HTTP_403_FORBIDDEN,
        )

    QuestionReply.objects.create(question=question, user=request.user, text=text)
    question.status = Question.Status.ANSWERED
    question.save(update_fields=["status", "updated_at"])
    return Response(QuestionSerializer(question).data, status=status.HTTP_201_CREATED)


class QuestionDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def delete(self, request, pk):
        question = get_object_or_404(Question.objects.select_related("course"), pk=pk)
        if request.user.pk not in (question.student_id, question.course.instructor_id):
            return Response({"error": "Not authorized"}, status=status.HTTP_403_FORBIDDEN)
        question.delete()
        return Response({"message": "Question deleted"})
