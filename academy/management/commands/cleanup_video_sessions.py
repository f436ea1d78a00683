"""
Delete expired video sessions. Can run manually or from cron.
"""

from django.core.management.base import BaseCommand
from django.utils import timezone

from academy.courses.models import VideoSession
from academy.courses.services.video_sessions import cleanup_expired_sessions


class Command(BaseCommand):
    """
    Usage:
        python manage.py cleanup_video_sessions
        python manage.py cleanup_video_sessions --dry-run
    """

    help = "Delete expired video playback sessions"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only report how many sessions would be deleted",
        )

    def handle(self, *args, **options):
        expired = VideoSession.objects.filter(expires_at__lt=timezone.now()).count()
        if expired == 0:
            self.stdout.write(self.style.SUCCESS("No expired video sessions found"))
            return

        if options["dry_run"]:
            self.stdout.write(self.style.WARNING(f"DRY RUN: would delete {expired} expired video sessions"))
            return

        deleted = cleanup_expired_sessions()
        self.stdout.write(self.style.SUCCESS(f"Deleted {deleted} expired video sessions"))
