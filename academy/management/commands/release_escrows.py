"""
Release matured escrows to instructors.

Meant to run from cron, for example hourly:
    0 * * * * cd /path/to/project && python manage.py release_escrows
"""

from django.core.management.base import BaseCommand, CommandError

from academy.payments.services.escrow import EscrowReleaseInProgress, due_escrows_queryset, release_due_escrows


class Command(BaseCommand):
    """
    Usage:
        python manage.py release_escrows
        python manage.py release_escrows --dry-run
        python manage.py release_escrows --verbose
    """

    help = "Release locked escrows whose release date has passed"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Verify due escrows on-chain without sending release transactions",
        )
        parser.add_argument(
            "--verbose",
            action="store_true",
            help="List the escrow ids that were (or would be) released",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]

        due = due_escrows_queryset().count()
        if due == 0:
            self.stdout.write(self.style.SUCCESS("No escrows due for release"))
            return

        self.stdout.write(f"{due} escrow(s) due for release")
        try:
            stats = release_due_escrows(dry_run=dry_run)
        except EscrowReleaseInProgress as exc:
            raise CommandError(exc.message) from exc

        if options["verbose"]:
            for escrow_id in stats["escrow_ids"]:
                self.stdout.write(f"   - {escrow_id}")

        summary = (
            f"found={stats['found']} released={stats['released']} "
            f"failed={stats['failed']} skipped={stats['skipped']}"
        )
        if dry_run:
            self.stdout.write(
                self.style.WARNING(f"DRY RUN: {len(stats['escrow_ids'])} escrow(s) releasable ({summary})")
            )
        elif stats["failed"]:
            self.stdout.write(self.style.ERROR(f"Escrow release finished with failures ({summary})"))
        else:
            self.stdout.write(self.style.SUCCESS(f"Escrow release finished ({summary})"))
