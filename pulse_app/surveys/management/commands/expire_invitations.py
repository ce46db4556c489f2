#!/usr/bin/env python3
"""
Django management command to expire invitations of surveys that are over.

A pending invitation expires when its survey is completed or archived, or
when the survey's end date has passed.

Usage:
    python manage.py expire_invitations
    python manage.py expire_invitations --dry-run
"""

from django.core.management.base import BaseCommand
from django.db.models import Q
from django.utils import timezone

from pulse_app.surveys.models import Survey, SurveyInvitation


class Command(BaseCommand):
    help = "Mark pending invitations of finished surveys as expired"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be done without actually doing it",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]
        now = timezone.now()

        if dry_run:
            self.stdout.write(
                self.style.WARNING("DRY RUN MODE - No changes will be made")
            )

        finished = Q(
            survey__status__in=[Survey.Status.COMPLETED, Survey.Status.ARCHIVED]
        ) | Q(survey__end_date__lt=now)
        stale = SurveyInvitation.objects.filter(
            finished, status=SurveyInvitation.Status.PENDING
        )
        count = stale.count()

        if dry_run:
            self.stdout.write(
                self.style.WARNING(f"Would expire {count} pending invitations")
            )
            return

        expired = stale.update(status=SurveyInvitation.Status.EXPIRED, updated_at=now)
        self.stdout.write(self.style.SUCCESS(f"Expired {expired} pending invitations"))
