# dugsi/management/commands/auto_clock_out_checkins.py

"""
Close teacher check-ins nobody clocked out of.

USAGE:
    python manage.py auto_clock_out_checkins

Run nightly from the scheduler.
"""

from django.core.management.base import BaseCommand

from dugsi.services import TeacherCheckInService, MAX_SHIFT_HOURS
from utils.context import RequestContext


class Command(BaseCommand):
    help = f'Clock out teacher check-ins left open longer than {MAX_SHIFT_HOURS} hours'

    def handle(self, *args, **options):
        with RequestContext(request_path='cron:auto_clock_out', program='DUGSI_PROGRAM', is_automated=True):
            count = TeacherCheckInService.auto_clock_out_stale_checkins()

        if count:
            self.stdout.write(self.style.SUCCESS(f'Auto clocked out {count} check-in(s)'))
        else:
            self.stdout.write('No stale check-ins found')
