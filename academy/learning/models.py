"""
Academy Learning Models

Student activity around a course: timestamped lesson notes, Q&A threads
answered by the instructor, and moderated reviews with helpfulness votes.

Author: Academy Development Team
Version: 1.0.0
"""

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

User = settings.AUTH_USER_MODEL

rating_validators = [MinValueValidator(1), MaxValueValidator(5)]


class Note(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="notes")
    course = models.ForeignKey("academy.Course", on_delete=models.CASCADE, related_name="notes")
    lesson = models.ForeignKey("academy.Lesson", on_delete=models.CASCADE, related_name="notes")
    content = models.TextField(max_length=5000)
    timestamp = models.PositiveIntegerField(default=0, help_text=_("Seconds into the video"))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Note")
        verbose_name_plural = _("Notes")
        ordering = ["timestamp", "created_at"]
        indexes = [models.Index(fields=["user", "lesson"])]

    def __str__(self):
        return f"Note by {self.user} on {self.lesson} @ {self.timestamp}s"


class Question(models.Model):
    class Status(models.TextChoices):
        UNANSWERED = "unanswered", _("Unanswered")
        ANSWERED = "answered", _("Answered")

    course = models.ForeignKey("academy.Course", on_delete=models.CASCADE, related_name="questions")
    student = models.ForeignKey(User, on_delete=models.CASCADE, related_name="questions")
    lesson = models.ForeignKey("academy.Lesson", on_delete=models.CASCADE, related_name="questions")
    question = models.TextField(max_length=2000)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.UNANSWERED)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Question")
        verbose_name_plural = _("Questions")
        ordering = ["-created_at"]

    def __str__(self):
        return f"Question by {self.student} on {self.course}"


class QuestionReply(models.Model):
    question = models.ForeignKey(Question, on_delete=models.CASCADE, related_name="replies")
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="question_replies")
    text = models.TextField(max_length=2000)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Question Reply")
        verbose_name_plural = _("Question Replies")
        ordering = ["created_at"]

    def __str__(self):
        return f"Reply by {self.user} to question {self.question_id}"


class Review(models.Model):
    """
    Course review. Only published reviews count towards the course rating;
    the rating buckets are moved whenever a review enters or leaves the
    published state.
    """

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        PUBLISHED = "published", _("Published")
        FLAGGED = "flagged", _("Flagged")
        REMOVED = "removed", _("Removed")

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="reviews")
    course = models.ForeignKey("academy.Course", on_delete=models.CASCADE, related_name="reviews")
    purchase = models.ForeignKey(
        "academy.Purchase", null=True, blank=True, on_delete=models.SET_NULL, related_name="reviews"
    )
    rating = models.PositiveSmallIntegerField(validators=rating_validators)
    title = models.CharField(max_length=100, blank=True)
    comment = models.TextField(max_length=1000)
    content_quality = models.PositiveSmallIntegerField(null=True, blank=True, validators=rating_validators)
    instructor_quality = models.PositiveSmallIntegerField(null=True, blank=True, validators=rating_validators)
    value_for_money = models.PositiveSmallIntegerField(null=True, blank=True, validators=rating_validators)

    helpful_count = models.PositiveIntegerField(default=0)
    not_helpful_count = models.PositiveIntegerField(default=0)

    instructor_response = models.TextField(max_length=1000, blank=True)
    instructor_responded_at = models.DateTimeField(null=True, blank=True)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    flag_reason = models.TextField(blank=True)
    is_edited = models.BooleanField(default=False)
    edited_at = models.DateTimeField(null=True, blank=True)
    xp_awarded = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Review")
        verbose_name_plural = _("Reviews")
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(fields=["user", "course"], name="unique_review_per_course"),
        ]

    def __str__(self):
        return f"{self.rating}★ by {self.user} on {self.course}"

    @property
    def is_published(self) -> bool:
        return self.status == self.Status.PUBLISHED

    def edit(self, **changes) -> None:
        """Apply owner edits and keep the course rating in sync."""
        old_rating = self.rating
        for field, value in changes.items():
            setattr(self, field, value)
        self.is_edited = True
        self.edited_at = timezone.now()
        self.save()
        if self.is_published and old_rating != self.rating:
            self.course.update_rating(new_rating=self.rating, old_rating=old_rating)

    def set_status(self, new_status: str, flag_reason: str = "") -> bool:
        """
        Change moderation status. Returns True only the first time the
        review gets published, so the author is rewarded once.
        """
        was_published = self.is_published
        self.status = new_status
        if flag_reason:
            self.flag_reason = flag_reason
        first_publish = self.is_published and not self.xp_awarded
        if first_publish:
            self.xp_awarded = True
        self.save(update_fields=["status", "flag_reason", "xp_awarded", "updated_at"])

        if not was_published and self.is_published:
            self.course.update_rating(new_rating=self.rating)
            return first_publish
        if was_published and not self.is_published:
            self.course.update_rating(old_rating=self.rating)
        return False


class ReviewVote(models.Model):
    class Vote(models.TextChoices):
        HELPFUL = "helpful", _("Helpful")
        NOT_HELPFUL = "not-helpful", _("Not helpful")

    review = models.ForeignKey(Review, on_delete=models.CASCADE, related_name="votes")
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="review_votes")
    vote = models.CharField(max_length=20, choices=Vote.choices)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Review Vote")
        verbose_name_plural = _("Review Votes")
        constraints = [
            models.UniqueConstraint(fields=["review", "user"], name="unique_review_vote"),
        ]

    def __str__(self):
        return f"{self.vote} by {self.user} on review {self.review_id}"


__all__ = ["Note", "Question", "QuestionReply", "Review", "ReviewVote"]
