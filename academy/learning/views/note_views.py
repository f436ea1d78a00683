from django.shortcuts import get_object_or_404
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from ...courses.models import Lesson
from ..models import Note
from ..serializers import NoteSerializer


class LessonNotesView(APIView):
    """
    GET: the caller's notes on a lesson, in video order.
    POST: add a note at a video timestamp.
    """

    permission_classes = [permissions.IsAuthenticated]

    def _get_lesson(self, request, lesson_id):
        lesson = get_object_or_404(Lesson.objects.select_related("section__course"), pk=lesson_id)
        if not lesson.section.course.can_access_content(request.user):
            return lesson, Response({"error": "Access denied"}, status=status.HTTP_403_FORBIDDEN)
        return lesson, None

    def get(self, request, lesson_id):
        lesson, denied = self._get_lesson(request, lesson_id)
        if denied:
            return denied
        notes = Note.objects.filter(user=request.user, lesson=lesson)
        return Response(NoteSerializer(notes, many=True).data)

    def post(self, request, lesson_id):
        lesson, denied = self._get_lesson(request, lesson_id)
        if denied:
            return denied
        if not (request.data.get("content") or "").strip():
            return Response({"error": "Note content is required"}, status=status.HTTP_400_BAD_REQUEST)

        serializer = NoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        note = serializer.save(user=request.user, lesson=lesson, course=lesson.section.course)
        return Response(NoteSerializer(note).data, status=status.HTTP_201_CREATED)


class NoteDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def _get_own_note(self, request, pk):
        note = get_object_or_404(Note, pk=pk)
        if note.user_id != request.user.pk:
            return note, Response({"error": "Unauthorized"}, status=status.HTTP_403_FORBIDDEN)
        return note, None

    def patch(self, request, pk):
        note, denied = self._get_own_note(request, pk)
        if denied:
            return denied
        serializer = NoteSerializer(note, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)

    put = patch

    def delete(self, request, pk):
        note, denied = self._get_own_note(request, pk)
        if denied:
            return denied
        note.delete()
        return Response({"message": "Note deleted"})
