# students/management/commands/cleanup_abandoned_enrollments.py

"""
Withdraw Mahad registrations that never paid.

USAGE:
    python manage.py cleanup_abandoned_enrollments

Also exposed as POST /billing/cron/cleanup-abandoned-enrollments/ for the
hosted scheduler.
"""

from django.core.management.base import BaseCommand
import logging

from students.services import cleanup_abandoned_enrollments

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Withdraw Mahad enrollments with no subscription 24 hours after checkout started'

    def handle(self, *args, **options):
        self.stdout.write(self.style.WARNING('Checking Stripe customers for abandoned enrollments...'))

        results = cleanup_abandoned_enrollments()

        self.stdout.write(f"  Checked:   {results['checked']}")
        self.stdout.write(f"  Abandoned: {results['abandoned']}")
        self.stdout.write(f"  Cleaned:   {results['cleaned']}")

        if results['errors']:
            self.stderr.write(self.style.ERROR(f"  Errors:    {results['errors']}"))
        else:
            self.stdout.write(self.style.SUCCESS('Cleanup complete'))
